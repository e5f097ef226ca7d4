from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Sequence

from hiring_oracle.forecasting.capacity.models import (
    DEFAULT_QUEUE_FACTOR,
    MAX_QUEUE_DELAY_DAYS,
    CapacityPenaltyResult,
    CapacityPenaltyResultV11,
    CapacityProfile,
    CapacityRecommendation,
    GlobalDemand,
    PipelineByStage,
    StageQueueDiagnostic,
)
from hiring_oracle.forecasting.capacity.penalty import (
    apply_capacity_penalty,
    apply_capacity_penalty_v11,
    create_capacity_adjusted_params,
)
from hiring_oracle.forecasting.domain.models import (
    ConfidenceLevel,
    ConfidenceReason,
    ForecastResult,
    PipelineCandidate,
    SimulationParameters,
)
from hiring_oracle.forecasting.simulator.monte_carlo import MonteCarloHiringForecaster

logger = logging.getLogger(__name__)


QUEUE_MODEL_V1 = "v1.0"
QUEUE_MODEL_V11 = "v1.1"

CONSTRAINED_P50_DELTA_DAYS = 3
CONSTRAINED_TOTAL_DELAY_DAYS = 5.0


@dataclass(frozen=True)
class CapacityForecastDebug:
    iterations: int
    seed: str
    queue_model_version: str


@dataclass(frozen=True)
class CapacityAwareForecastResult:
    """Pipeline-only and capacity-adjusted forecasts side by side."""

    pipeline_only: ForecastResult
    capacity_aware: ForecastResult
    p50_delta_days: int
    capacity_bottlenecks: tuple[StageQueueDiagnostic, ...]
    capacity_confidence: ConfidenceLevel
    capacity_reasons: tuple[ConfidenceReason, ...]
    capacity_constrained: bool
    capacity_profile: CapacityProfile | None
    penalty: CapacityPenaltyResult | None
    debug: CapacityForecastDebug
    pipeline_probability_by_target: float | None = None
    capacity_probability_by_target: float | None = None
    recommendations: tuple[CapacityRecommendation, ...] = ()
    global_demand: GlobalDemand | None = None


def without_capacity(
    pipeline_only: ForecastResult,
    reason: str,
    target_date: date | None = None,
    queue_model_version: str = QUEUE_MODEL_V11,
) -> CapacityAwareForecastResult:
    """Result used when capacity cannot be inferred: the pipeline forecast stands alone."""
    prob = pipeline_only.probability_by(target_date) if target_date is not None else None
    return CapacityAwareForecastResult(
        pipeline_only=pipeline_only,
        capacity_aware=pipeline_only,
        p50_delta_days=0,
        capacity_bottlenecks=(),
        capacity_confidence=ConfidenceLevel.LOW,
        capacity_reasons=(ConfidenceReason("missing_data", reason, "negative"),),
        capacity_constrained=False,
        capacity_profile=None,
        penalty=None,
        debug=CapacityForecastDebug(
            iterations=pipeline_only.debug.iterations,
            seed=pipeline_only.debug.seed,
            queue_model_version=queue_model_version,
        ),
        pipeline_probability_by_target=prob,
        capacity_probability_by_target=prob,
    )


def run_capacity_aware_forecast(
    candidates: Sequence[PipelineCandidate],
    demand: GlobalDemand | PipelineByStage,
    params: SimulationParameters,
    profile: CapacityProfile | None,
    start_date: date,
    seed: str,
    iterations: int = 1000,
    target_date: date | None = None,
    *,
    forecaster: MonteCarloHiringForecaster | None = None,
    queue_factor: float = DEFAULT_QUEUE_FACTOR,
    max_delay_days: float = MAX_QUEUE_DELAY_DAYS,
) -> CapacityAwareForecastResult:
    """Forecast with and without queueing delay from owner capacity.

    `demand` is either the owners' global demand (v1.1 model) or the selected
    requisition's stage counts (v1.0 model). Both runs share `seed`, so the
    difference between them comes only from the added delays.
    """
    forecaster = forecaster or MonteCarloHiringForecaster()
    pipeline_only = forecaster.forecast(candidates, params, start_date, seed, iterations)

    if profile is None:
        logger.info("Capacity profile unavailable; returning pipeline-only forecast")
        return without_capacity(pipeline_only, "Capacity data unavailable", target_date)

    global_demand: GlobalDemand | None = None
    recommendations: tuple[CapacityRecommendation, ...] = ()
    reasons = list(profile.confidence_reasons)
    if isinstance(demand, GlobalDemand):
        penalty: CapacityPenaltyResult = apply_capacity_penalty_v11(
            params.stage_durations, demand, profile, queue_factor, max_delay_days
        )
        version = QUEUE_MODEL_V11
        global_demand = demand
        reasons.extend(demand.confidence_reasons)
        if isinstance(penalty, CapacityPenaltyResultV11):
            recommendations = penalty.recommendations
    else:
        penalty = apply_capacity_penalty(params.stage_durations, demand, profile, queue_factor, max_delay_days)
        version = QUEUE_MODEL_V1

    adjusted = create_capacity_adjusted_params(params, penalty, forecaster.default_duration_days)
    capacity_aware = forecaster.forecast(candidates, adjusted, start_date, seed, iterations)

    p50_delta = (capacity_aware.p50_date - pipeline_only.p50_date).days
    constrained = (
        p50_delta >= CONSTRAINED_P50_DELTA_DAYS
        or penalty.total_queue_delay_days >= CONSTRAINED_TOTAL_DELAY_DAYS
    )
    confidence = penalty.confidence
    if confidence == ConfidenceLevel.INSUFFICIENT:
        confidence = ConfidenceLevel.LOW

    logger.debug(
        "Capacity-aware forecast: p50 delta %d days, total queue delay %.1f days",
        p50_delta,
        penalty.total_queue_delay_days,
    )
    return CapacityAwareForecastResult(
        pipeline_only=pipeline_only,
        capacity_aware=capacity_aware,
        p50_delta_days=p50_delta,
        capacity_bottlenecks=penalty.top_bottlenecks,
        capacity_confidence=confidence,
        capacity_reasons=tuple(reasons),
        capacity_constrained=constrained,
        capacity_profile=profile,
        penalty=penalty,
        debug=CapacityForecastDebug(iterations=iterations, seed=seed, queue_model_version=version),
        pipeline_probability_by_target=pipeline_only.probability_by(target_date) if target_date else None,
        capacity_probability_by_target=capacity_aware.probability_by(target_date) if target_date else None,
        recommendations=recommendations,
        global_demand=global_demand,
    )
