from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Sequence

import numpy as np

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.common.seeding import SeedContext
from hiring_oracle.common.time_utils import add_days
from hiring_oracle.domain.entities import CanonicalStage, normalize_stage
from hiring_oracle.forecasting.domain.distributions import (
    DEFAULT_DURATION_DAYS,
    ConstantDuration,
    StageDurationDistribution,
)
from hiring_oracle.forecasting.domain.models import (
    ConfidenceLevel,
    ConfidenceReason,
    ForecastResult,
    PercentileInterval,
    PipelineCandidate,
    PipelineForecaster,
    SimulationDebug,
    SimulationParameters,
    SingleCandidateContext,
    STAGE_ORDER,
    nearest_rank,
    nearest_rank_index,
)
from hiring_oracle.forecasting.simulator.confidence import assess_confidence


logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 250
DEFAULT_NO_HIRE_HORIZON_DAYS = 365
DEFAULT_CONVERSION_RATE = 0.5
DEFAULT_BOOTSTRAP_SAMPLES = 200
REPORTED_PERCENTILES = (0.1, 0.5, 0.9)

_NO_HIRE = np.iinfo(np.int64).max


@dataclass(frozen=True)
class _StageStep:
    stage: CanonicalStage
    rate: float
    duration: StageDurationDistribution


def stage_path(current_stage: CanonicalStage | str, params: SimulationParameters) -> tuple[CanonicalStage, ...] | None:
    """Stages a candidate still has to pass, or None if the candidate is inactive.

    The path runs from the current stage up to (not including) HIRED and keeps
    only stages the parameters configure; the rest are pass-through.
    """
    stage = normalize_stage(current_stage)
    if stage == CanonicalStage.HIRED:
        return ()
    if stage is None or stage not in STAGE_ORDER:
        return None
    start = STAGE_ORDER.index(stage)
    return tuple(s for s in STAGE_ORDER[start:-1] if params.configures(s))


def _resolve_steps(
    path: Sequence[CanonicalStage],
    params: SimulationParameters,
    default_rate: float,
    default_duration_days: float,
) -> tuple[_StageStep, ...]:
    steps: list[_StageStep] = []
    for stage in path:
        rate = params.conversion_rates.get(stage)
        if rate is None:
            logger.debug("No conversion rate for %s; defaulting to %.2f", stage.value, default_rate)
            rate = default_rate
        duration = params.stage_durations.get(stage)
        if duration is None:
            logger.debug("No duration for %s; defaulting to %.1f days", stage.value, default_duration_days)
            duration = ConstantDuration(days=default_duration_days)
        steps.append(_StageStep(stage=stage, rate=float(rate), duration=duration))
    return tuple(steps)


def _simulate_block(
    paths: Sequence[tuple[_StageStep, ...]],
    n: int,
    conv_rng: np.random.Generator,
    dur_rng: np.random.Generator,
) -> np.ndarray:
    """Earliest hire day per iteration for one block; _NO_HIRE where nobody is hired."""
    best = np.full(n, _NO_HIRE, dtype=np.int64)
    for steps in paths:
        alive = np.ones(n, dtype=bool)
        elapsed = np.zeros(n, dtype=np.int64)
        for step in steps:
            # Conversion first, then duration, so both streams advance identically
            # whatever the rates are.
            passed = conv_rng.random(n) < step.rate
            days = step.duration.sample(n, dur_rng)
            alive &= passed
            elapsed += np.where(alive, days, 0)
        best = np.where(alive, np.minimum(best, elapsed), best)
    return best


def _validate(iterations: int, workers: int, block_size: int) -> None:
    if iterations < 0:
        raise InvalidParameter(f"iterations must be >= 0, got {iterations}")
    if workers < 1:
        raise InvalidParameter(f"workers must be >= 1, got {workers}")
    if block_size < 1:
        raise InvalidParameter(f"block_size must be >= 1, got {block_size}")


def _run_blocks(
    paths: Sequence[tuple[_StageStep, ...]],
    seed: SeedContext,
    iterations: int,
    workers: int,
    block_size: int,
) -> np.ndarray:
    n_blocks = math.ceil(iterations / block_size)

    def run(block: int) -> np.ndarray:
        n = min(block_size, iterations - block * block_size)
        conv_rng, dur_rng = seed.block_generators(block)
        return _simulate_block(paths, n, conv_rng, dur_rng)

    if n_blocks == 0:
        return np.empty(0, dtype=np.int64)
    if workers == 1 or n_blocks == 1:
        parts = [run(b) for b in range(n_blocks)]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            parts = list(pool.map(run, range(n_blocks)))
    return np.concatenate(parts)


def bootstrap_intervals(
    days: Sequence[int],
    rng: np.random.Generator,
    samples: int = DEFAULT_BOOTSTRAP_SAMPLES,
    percentiles: Sequence[float] = REPORTED_PERCENTILES,
) -> tuple[PercentileInterval, ...]:
    """Bootstrap 95% intervals around nearest-rank percentiles of sorted `days`.

    Each resample draws len(days) values with replacement; the bounds are the
    2.5% and 97.5% order statistics of the resampled percentiles, widened to
    include the point estimate.
    """
    n = len(days)
    if n == 0:
        return ()
    estimates = {q: nearest_rank(days, q) for q in percentiles}
    if samples <= 0:
        return tuple(PercentileInterval(q, estimates[q], estimates[q], estimates[q]) for q in percentiles)

    values = np.asarray(days, dtype=np.int64)
    resampled = np.sort(values[rng.integers(0, n, size=(samples, n))], axis=1)
    lo_idx = int(samples * 0.025)
    hi_idx = min(samples - 1, int(samples * 0.975))

    out: list[PercentileInterval] = []
    for q in percentiles:
        col = np.sort(resampled[:, nearest_rank_index(n, q)])
        est = estimates[q]
        out.append(
            PercentileInterval(
                percentile=q,
                estimate_days=est,
                lower_days=min(int(col[lo_idx]), est),
                upper_days=max(int(col[hi_idx]), est),
            )
        )
    return tuple(out)


def _build_result(
    samples: np.ndarray,
    params: SimulationParameters,
    stages: Sequence[CanonicalStage],
    start_date: date,
    seed: SeedContext,
    iterations: int,
    no_hire_horizon_days: int,
    prior_weight: float,
    bootstrap_samples: int = DEFAULT_BOOTSTRAP_SAMPLES,
) -> ForecastResult:
    hired = np.sort(samples[samples != _NO_HIRE])
    days = tuple(int(d) for d in hired)
    debug = SimulationDebug(
        seed=seed.seed,
        iterations=iterations,
        successes=len(days),
        bootstrap_samples=bootstrap_samples if days else 0,
    )

    if not days:
        horizon = add_days(start_date, no_hire_horizon_days)
        logger.info("No simulated hires in %d iterations (seed=%s)", iterations, seed.seed)
        return ForecastResult(
            start_date=start_date,
            simulated_days=(),
            p10_date=horizon,
            p50_date=horizon,
            p90_date=horizon,
            confidence_level=ConfidenceLevel.LOW,
            debug=debug,
            confidence_reasons=(
                ConfidenceReason("success_rate", "No simulated iteration resulted in a hire", "negative"),
            ),
        )

    level, reasons = assess_confidence(params, stages, days, iterations, prior_weight=prior_weight)
    return ForecastResult(
        start_date=start_date,
        simulated_days=days,
        p10_date=add_days(start_date, nearest_rank(days, 0.1)),
        p50_date=add_days(start_date, nearest_rank(days, 0.5)),
        p90_date=add_days(start_date, nearest_rank(days, 0.9)),
        confidence_level=level,
        debug=debug,
        confidence_reasons=reasons,
        confidence_intervals=bootstrap_intervals(days, seed.bootstrap_generator(), bootstrap_samples),
    )


def run_simulation(
    context: SingleCandidateContext,
    params: SimulationParameters,
    *,
    workers: int = 1,
    block_size: int = DEFAULT_BLOCK_SIZE,
    no_hire_horizon_days: int = DEFAULT_NO_HIRE_HORIZON_DAYS,
    default_rate: float = DEFAULT_CONVERSION_RATE,
    default_duration_days: float = DEFAULT_DURATION_DAYS,
    prior_weight: float = 5.0,
    bootstrap_samples: int = DEFAULT_BOOTSTRAP_SAMPLES,
) -> ForecastResult:
    """Simulate one candidate from its current stage to a hire.

    Without a seed a random one is drawn and reported in the result's debug.
    """
    _validate(context.iterations, workers, block_size)
    seed = SeedContext.from_seed(context.seed)

    path = stage_path(context.current_stage, params)
    paths = []
    if path is not None:
        paths.append(_resolve_steps(path, params, default_rate, default_duration_days))
    else:
        logger.debug("Candidate stage %s is not in the active pipeline", context.current_stage)

    samples = _run_blocks(paths, seed, context.iterations, workers, block_size)
    return _build_result(
        samples,
        params,
        path or (),
        context.start_date,
        seed,
        context.iterations,
        no_hire_horizon_days,
        prior_weight,
        bootstrap_samples,
    )


def run_pipeline_simulation(
    candidates: Sequence[PipelineCandidate],
    params: SimulationParameters,
    start_date: date,
    seed: str | None,
    iterations: int = 1000,
    *,
    workers: int = 1,
    block_size: int = DEFAULT_BLOCK_SIZE,
    no_hire_horizon_days: int = DEFAULT_NO_HIRE_HORIZON_DAYS,
    default_rate: float = DEFAULT_CONVERSION_RATE,
    default_duration_days: float = DEFAULT_DURATION_DAYS,
    prior_weight: float = 5.0,
    bootstrap_samples: int = DEFAULT_BOOTSTRAP_SAMPLES,
) -> ForecastResult:
    """Simulate every active candidate in parallel; each iteration keeps the earliest hire."""
    _validate(iterations, workers, block_size)
    seed_ctx = SeedContext.from_seed(seed)

    paths: list[tuple[_StageStep, ...]] = []
    stages: list[CanonicalStage] = []
    for candidate in candidates:
        path = stage_path(candidate.current_stage, params)
        if path is None:
            continue
        paths.append(_resolve_steps(path, params, default_rate, default_duration_days))
        stages.extend(path)

    if not paths:
        logger.info("No active candidates to simulate (%d supplied)", len(candidates))
    samples = _run_blocks(paths, seed_ctx, iterations, workers, block_size)
    return _build_result(
        samples,
        params,
        stages,
        start_date,
        seed_ctx,
        iterations,
        no_hire_horizon_days,
        prior_weight,
        bootstrap_samples,
    )


@dataclass
class MonteCarloHiringForecaster(PipelineForecaster):
    """Pipeline forecaster with fixed execution settings."""

    workers: int = 1
    block_size: int = DEFAULT_BLOCK_SIZE
    no_hire_horizon_days: int = DEFAULT_NO_HIRE_HORIZON_DAYS
    default_rate: float = DEFAULT_CONVERSION_RATE
    default_duration_days: float = DEFAULT_DURATION_DAYS
    prior_weight: float = 5.0
    bootstrap_samples: int = DEFAULT_BOOTSTRAP_SAMPLES

    def forecast(
        self,
        candidates: Sequence[PipelineCandidate],
        parameters: SimulationParameters,
        start_date: date,
        seed: str,
        iterations: int,
    ) -> ForecastResult:
        return run_pipeline_simulation(
            candidates,
            parameters,
            start_date,
            seed,
            iterations,
            workers=self.workers,
            block_size=self.block_size,
            no_hire_horizon_days=self.no_hire_horizon_days,
            default_rate=self.default_rate,
            default_duration_days=self.default_duration_days,
            prior_weight=self.prior_weight,
            bootstrap_samples=self.bootstrap_samples,
        )

    def forecast_candidate(self, context: SingleCandidateContext, parameters: SimulationParameters) -> ForecastResult:
        return run_simulation(
            context,
            parameters,
            workers=self.workers,
            block_size=self.block_size,
            no_hire_horizon_days=self.no_hire_horizon_days,
            default_rate=self.default_rate,
            default_duration_days=self.default_duration_days,
            prior_weight=self.prior_weight,
            bootstrap_samples=self.bootstrap_samples,
        )
