"""seir-tracing: Agent-based SEIR epidemic simulation with contact tracing.

An individual-based model coupling:
  - Per-agent SEIR health-state machines driven by pluggable transition models
  - Aggregated exposure → infection resolution (one draw per timestep)
  - Location visit schedules split at health-state boundaries
  - Diagnostic testing and contact-report propagation via risk-score policies
"""

__version__ = "0.1.0"
