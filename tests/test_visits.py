"""Tests for seir_tracing.visits — duration-specified visit generation."""

import numpy as np
import pytest

from seir_tracing.config import LocationVisit
from seir_tracing.risk_score import (
    NullRiskScore,
    TracingRiskScore,
    VisitAdjustment,
)
from seir_tracing.types import (
    SECONDS_PER_DAY,
    Contact,
    Exposure,
    TestResult,
    Timestep,
)
from seir_tracing.visits import (
    DurationSpecifiedVisitGenerator,
    LocationDuration,
    exponential_duration_sampler,
    make_visit_generator,
)


def _fixed(value):
    return lambda adjustment: value * adjustment


class TestExponentialDurationSampler:
    def test_zero_adjustment(self):
        sample = exponential_duration_sampler(3600.0, np.random.default_rng(0))
        assert sample(0.0) == 0.0

    def test_mean_scales_with_adjustment(self):
        sample = exponential_duration_sampler(100.0, np.random.default_rng(0))
        draws = [sample(0.5) for _ in range(20000)]
        assert np.mean(draws) == pytest.approx(50.0, rel=0.05)


class TestDurationSpecifiedVisitGenerator:
    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            DurationSpecifiedVisitGenerator([])

    def test_normalised_to_timestep(self):
        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(2.0)),
            LocationDuration(1, _fixed(1.0)),
            LocationDuration(0, _fixed(1.0)),
        ])
        ts = Timestep(start_time=86400.0, duration=86400.0)
        visits = gen.generate_visits(ts, NullRiskScore())

        assert [v.location_uuid for v in visits] == [0, 1, 0]
        assert visits[0].start_time == ts.start_time
        assert visits[-1].end_time == ts.end_time
        for a, b in zip(visits, visits[1:]):
            assert a.end_time == b.start_time
        assert [v.duration for v in visits] == pytest.approx(
            [43200.0, 21600.0, 21600.0])

    def test_raw_visits_unannotated(self):
        gen = DurationSpecifiedVisitGenerator([LocationDuration(5, _fixed(1.0))])
        (visit,) = gen.generate_visits(Timestep(0.0, 100.0), NullRiskScore())
        assert visit.agent_uuid == -1
        assert (visit.start_time, visit.end_time) == (0.0, 100.0)

    def test_all_zero_splits_evenly(self, caplog):
        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(0.0)),
            LocationDuration(1, _fixed(0.0)),
        ])
        with caplog.at_level('WARNING', logger='seir_tracing.visits'):
            visits = gen.generate_visits(Timestep(0.0, 100.0), NullRiskScore())
        assert [v.duration for v in visits] == pytest.approx([50.0, 50.0])
        assert "evenly" in caplog.text

    def test_adjustment_passed_to_sampler(self):
        seen = []

        def sampler(adjustment):
            seen.append(adjustment)
            return 1.0

        risk = TracingRiskScore(
            test_latency=0.0, quarantine_duration=10 * SECONDS_PER_DAY,
            retention_duration=0.0, exempt_locations=[0])
        risk.add_exposure_notification(
            Contact(7, Exposure(start_time=0.0, duration=3600.0)),
            TestResult(0.0, 10.0, False, 1.0))
        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, sampler), LocationDuration(1, sampler),
        ])
        gen.generate_visits(Timestep(0.0, SECONDS_PER_DAY), risk)
        assert seen == [1.0, 0.0]

    def test_stay_away_collapses_onto_exempt_location(self):
        class HomeOnly(NullRiskScore):
            def get_visit_adjustment(self, timestep, location_uuid):
                return VisitAdjustment(1.0, 1.0 if location_uuid == 0 else 0.0)

        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(8.0)),
            LocationDuration(1, _fixed(8.0)),
        ])
        visits = gen.generate_visits(Timestep(0.0, 24.0), HomeOnly())
        assert [v.duration for v in visits] == pytest.approx([24.0, 0.0])


class TestRestrictedVisits:
    """Quarantine must never move time towards restricted locations."""

    def _home_and_shops(self):
        return DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(20.0)),
            LocationDuration(2, _fixed(4.0)),
        ])

    def _notified(self, exempt):
        risk = TracingRiskScore(
            test_latency=0.0, quarantine_duration=10 * SECONDS_PER_DAY,
            retention_duration=0.0, exempt_locations=exempt)
        risk.add_exposure_notification(
            Contact(7, Exposure(start_time=0.0, duration=3600.0)),
            TestResult(0.0, 10.0, False, 1.0))
        return risk

    def test_no_exempt_location_stays_at_first(self, caplog):
        gen = self._home_and_shops()
        ts = Timestep(0.0, SECONDS_PER_DAY)
        free = gen.generate_visits(ts, NullRiskScore())
        with caplog.at_level('WARNING', logger='seir_tracing.visits'):
            quarantined = gen.generate_visits(ts, self._notified(exempt=()))

        assert quarantined[1].duration <= free[1].duration
        assert [v.duration for v in quarantined] == pytest.approx(
            [SECONDS_PER_DAY, 0.0])
        assert "evenly" not in caplog.text

    def test_zero_samples_split_over_permitted_only(self):
        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(0.0)),
            LocationDuration(1, _fixed(0.0)),
            LocationDuration(3, _fixed(0.0)),
        ])
        risk = self._notified(exempt=[0, 3])
        visits = gen.generate_visits(Timestep(0.0, 90.0), risk)
        assert [v.duration for v in visits] == pytest.approx([45.0, 0.0, 45.0])

    def test_frequency_adjustment_scales_time(self):
        class HalfShopping(NullRiskScore):
            def get_visit_adjustment(self, timestep, location_uuid):
                return VisitAdjustment(0.5 if location_uuid == 2 else 1.0, 1.0)

        gen = DurationSpecifiedVisitGenerator([
            LocationDuration(0, _fixed(16.0)),
            LocationDuration(2, _fixed(8.0)),
        ])
        visits = gen.generate_visits(Timestep(0.0, 20.0), HalfShopping())
        assert [v.duration for v in visits] == pytest.approx([16.0, 4.0])


class TestMakeVisitGenerator:
    def test_from_config_entries(self):
        gen = make_visit_generator(
            [LocationVisit(uuid=3, mean_hours=10.0),
             LocationVisit(uuid=4, mean_hours=2.0)],
            np.random.default_rng(0),
        )
        visits = gen.generate_visits(Timestep(0.0, SECONDS_PER_DAY), NullRiskScore())
        assert [v.location_uuid for v in visits] == [3, 4]
        assert sum(v.duration for v in visits) == pytest.approx(SECONDS_PER_DAY)
