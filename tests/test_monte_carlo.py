from __future__ import annotations

import math
from datetime import date, timedelta

import numpy as np
import pytest
from scipy.stats import ks_2samp

from hiring_oracle.common.errors import EmptySimulation, InvalidParameter
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.distributions import ConstantDuration, LogNormalDuration
from hiring_oracle.forecasting.domain.models import (
    ConfidenceLevel,
    PipelineCandidate,
    SimulationParameters,
    SingleCandidateContext,
)
from hiring_oracle.forecasting.simulator.monte_carlo import (
    MonteCarloHiringForecaster,
    run_pipeline_simulation,
    run_simulation,
    stage_path,
)


START = date(2025, 3, 3)


def _example_params() -> SimulationParameters:
    return SimulationParameters(
        conversion_rates={CanonicalStage.SCREEN: 0.6, CanonicalStage.ONSITE: 0.5, CanonicalStage.OFFER: 0.8},
        stage_durations={
            CanonicalStage.SCREEN: ConstantDuration(days=5),
            CanonicalStage.ONSITE: ConstantDuration(days=10),
            CanonicalStage.OFFER: ConstantDuration(days=3),
        },
    )


def _lognormal_params(screen_rate: float = 0.6) -> SimulationParameters:
    return SimulationParameters(
        conversion_rates={
            CanonicalStage.SCREEN: screen_rate,
            CanonicalStage.HM_SCREEN: 0.6,
            CanonicalStage.ONSITE: 0.5,
            CanonicalStage.OFFER: 0.8,
        },
        stage_durations={
            CanonicalStage.SCREEN: LogNormalDuration(mu=math.log(6), sigma=0.5),
            CanonicalStage.HM_SCREEN: LogNormalDuration(mu=math.log(8), sigma=0.5),
            CanonicalStage.ONSITE: LogNormalDuration(mu=math.log(10), sigma=0.4),
            CanonicalStage.OFFER: ConstantDuration(days=4),
        },
    )


def test_example_single_candidate_forecast() -> None:
    ctx = SingleCandidateContext(current_stage=CanonicalStage.SCREEN, start_date=START, seed="t1", iterations=1000)
    res = run_simulation(ctx, _example_params())

    assert res.p50_date == START + timedelta(days=18)
    assert set(res.simulated_days) == {18}
    assert 0.19 < res.hire_probability < 0.29
    assert res.debug.seed == "t1"
    assert res.debug.successes == len(res.simulated_days)


def test_percentiles_are_ordered() -> None:
    candidates = [PipelineCandidate(f"c{i}", CanonicalStage.SCREEN) for i in range(3)]
    res = run_pipeline_simulation(candidates, _lognormal_params(), START, seed="order", iterations=2000)

    assert res.start_date <= res.p10_date <= res.p50_date <= res.p90_date
    assert list(res.simulated_days) == sorted(res.simulated_days)
    assert res.probability_by(res.p90_date) >= 0.9


def test_same_seed_same_result_regardless_of_workers() -> None:
    candidates = [
        PipelineCandidate("a", CanonicalStage.SCREEN),
        PipelineCandidate("b", CanonicalStage.ONSITE),
    ]
    params = _lognormal_params()
    one = run_pipeline_simulation(candidates, params, START, "det", 1000, workers=1)
    again = run_pipeline_simulation(candidates, params, START, "det", 1000, workers=1)
    four = run_pipeline_simulation(candidates, params, START, "det", 1000, workers=4)

    assert one == again
    assert one.simulated_days == four.simulated_days
    assert one.p50_date == four.p50_date


def test_different_seeds_differ() -> None:
    candidates = [PipelineCandidate("a", CanonicalStage.SCREEN)]
    a = run_pipeline_simulation(candidates, _lognormal_params(), START, "s1", 1000)
    b = run_pipeline_simulation(candidates, _lognormal_params(), START, "s2", 1000)
    assert a.simulated_days != b.simulated_days


def test_missing_seed_is_generated_and_reported() -> None:
    ctx = SingleCandidateContext(current_stage=CanonicalStage.SCREEN, start_date=START, iterations=1000)
    res = run_simulation(ctx, _example_params())
    assert res.debug.seed


def test_no_hire_returns_horizon_dates() -> None:
    params = SimulationParameters(
        conversion_rates={CanonicalStage.SCREEN: 0.0},
        stage_durations={CanonicalStage.SCREEN: ConstantDuration(days=5)},
    )
    res = run_pipeline_simulation([PipelineCandidate("a", CanonicalStage.SCREEN)], params, START, "none", 500)

    horizon = START + timedelta(days=365)
    assert res.is_empty
    assert res.p10_date == res.p50_date == res.p90_date == horizon
    assert res.hire_probability == 0.0
    assert res.confidence_level == ConfidenceLevel.LOW
    assert res.probability_by(horizon) is None


def test_inactive_and_hired_candidates() -> None:
    params = _example_params()
    assert stage_path(CanonicalStage.REJECTED, params) is None
    assert stage_path(CanonicalStage.APPLIED, params) is None
    assert stage_path(CanonicalStage.HIRED, params) == ()
    # HM_SCREEN is not configured, so it is skipped.
    assert stage_path("Phone Screen", params) == (
        CanonicalStage.SCREEN,
        CanonicalStage.ONSITE,
        CanonicalStage.OFFER,
    )

    rejected = run_pipeline_simulation([PipelineCandidate("r", CanonicalStage.REJECTED)], params, START, "x", 100)
    assert rejected.is_empty

    hired = run_pipeline_simulation([PipelineCandidate("h", CanonicalStage.HIRED)], params, START, "x", 100)
    assert hired.hire_probability == 1.0
    assert hired.p50_date == START


def test_pipeline_takes_earliest_hire() -> None:
    params = _example_params()
    candidates = [
        PipelineCandidate("late", CanonicalStage.SCREEN),
        PipelineCandidate("early", CanonicalStage.OFFER),
    ]
    res = run_pipeline_simulation(candidates, params, START, "earliest", 1000)
    assert set(res.simulated_days) <= {3, 18}
    # The OFFER candidate hires in 80% of iterations and always wins when it does.
    assert res.p10_date == START + timedelta(days=3)


def test_higher_conversion_does_not_delay_p50() -> None:
    candidates = [PipelineCandidate(f"c{i}", CanonicalStage.SCREEN) for i in range(4)]
    seeds = [f"mono-{i}" for i in range(8)]

    def mean_p50(rate: float) -> float:
        days = [
            run_pipeline_simulation(candidates, _lognormal_params(rate), START, s, 1000).percentile_days(0.5)
            for s in seeds
        ]
        return float(np.mean(days))

    assert mean_p50(0.9) <= mean_p50(0.3)


def test_single_candidate_matches_one_candidate_pipeline() -> None:
    params = _lognormal_params()
    ctx = SingleCandidateContext(current_stage=CanonicalStage.SCREEN, start_date=START, seed="same", iterations=2000)
    single = run_simulation(ctx, params)
    pipeline = run_pipeline_simulation([PipelineCandidate("only", CanonicalStage.SCREEN)], params, START, "same", 2000)
    assert single.simulated_days == pipeline.simulated_days

    other = run_pipeline_simulation([PipelineCandidate("only", CanonicalStage.SCREEN)], params, START, "other", 2000)
    assert ks_2samp(single.simulated_days, other.simulated_days).pvalue > 0.001


def test_invalid_execution_settings() -> None:
    ctx = SingleCandidateContext(current_stage=CanonicalStage.SCREEN, start_date=START, seed="x", iterations=-1)
    with pytest.raises(InvalidParameter):
        run_simulation(ctx, _example_params())
    with pytest.raises(InvalidParameter):
        run_pipeline_simulation([], _example_params(), START, "x", 100, workers=0)


def test_forecaster_defaults_unconfigured_rate() -> None:
    params = SimulationParameters(
        conversion_rates={},
        stage_durations={CanonicalStage.OFFER: ConstantDuration(days=2)},
    )
    forecaster = MonteCarloHiringForecaster(default_rate=1.0)
    res = forecaster.forecast([PipelineCandidate("o", CanonicalStage.OFFER)], params, START, "d", 1000)
    assert res.hire_probability == 1.0
    assert res.p50_date == START + timedelta(days=2)


def test_percentile_of_empty_result_raises() -> None:
    params = SimulationParameters(
        conversion_rates={CanonicalStage.SCREEN: 0.0},
        stage_durations={CanonicalStage.SCREEN: ConstantDuration(days=5)},
    )
    res = run_pipeline_simulation([PipelineCandidate("a", CanonicalStage.SCREEN)], params, START, "none", 200)
    assert res.confidence_intervals == ()
    assert res.debug.bootstrap_samples == 0
    with pytest.raises(EmptySimulation):
        res.percentile_days(0.5)


def test_bootstrap_intervals_bracket_percentiles() -> None:
    candidates = [PipelineCandidate(f"c{i}", CanonicalStage.SCREEN) for i in range(2)]
    res = run_pipeline_simulation(candidates, _lognormal_params(), START, "ci", 2000)

    assert [ci.percentile for ci in res.confidence_intervals] == [0.1, 0.5, 0.9]
    assert res.debug.bootstrap_samples == 200
    for ci in res.confidence_intervals:
        assert ci.estimate_days == res.percentile_days(ci.percentile)
        assert ci.lower_days <= ci.estimate_days <= ci.upper_days
    p50 = res.interval(0.5)
    assert p50 is not None
    assert START + timedelta(days=p50.lower_days) <= res.p50_date <= START + timedelta(days=p50.upper_days)


def test_bootstrap_is_seeded_and_leaves_samples_alone() -> None:
    candidates = [PipelineCandidate("a", CanonicalStage.SCREEN)]
    params = _lognormal_params()
    a = run_pipeline_simulation(candidates, params, START, "boot", 1000)
    b = run_pipeline_simulation(candidates, params, START, "boot", 1000)
    plain = run_pipeline_simulation(candidates, params, START, "boot", 1000, bootstrap_samples=0)

    assert a.confidence_intervals == b.confidence_intervals
    assert plain.simulated_days == a.simulated_days
    assert all(ci.lower_days == ci.upper_days == ci.estimate_days for ci in plain.confidence_intervals)
