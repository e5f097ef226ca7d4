from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Mapping, Sequence

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.domain.entities import Candidate, CanonicalStage, Requisition, User
from hiring_oracle.forecasting.capacity.models import (
    DEFAULT_QUEUE_FACTOR,
    HM_DEMAND_STAGES,
    MAX_QUEUE_DELAY_DAYS,
    RECRUITER_DEMAND_STAGES,
    STAGE_OWNERS,
    AdjustedDuration,
    CapacityPenaltyResult,
    CapacityPenaltyResultV11,
    CapacityProfile,
    CapacityRecommendation,
    GlobalDemand,
    PipelineByStage,
    StageQueueDiagnostic,
    WorkloadContext,
)
from hiring_oracle.forecasting.domain.distributions import (
    DEFAULT_DURATION_DAYS,
    ConstantDuration,
    StageDurationDistribution,
    median_days,
)
from hiring_oracle.forecasting.domain.models import (
    CAPACITY_LIMITED_STAGES,
    STAGE_LABELS,
    ConfidenceLevel,
    ConfidenceReason,
    SimulationParameters,
)

logger = logging.getLogger(__name__)


TOP_BOTTLENECKS = 3
TARGET_UTILIZATION = 0.9
REASSIGN_MIN_OPEN_REQS = 3


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# --- Demand -----------------------------------------------------------------


def compute_global_demand(
    selected_req_id: str,
    recruiter_id: str | None,
    hm_id: str | None,
    candidates: Sequence[Candidate],
    requisitions: Sequence[Requisition],
    users: Sequence[User] | None = None,
) -> GlobalDemand:
    """Per-stage demand across all open requisitions of the recruiter and HM.

    Only active candidates count. The selected requisition's own pipeline is
    reported alongside but does not feed demand.
    """
    open_reqs = [r for r in requisitions if r.is_open]
    recruiter_reqs = [r.req_id for r in open_reqs if recruiter_id and r.recruiter_id == recruiter_id]
    hm_reqs = [r.req_id for r in open_reqs if hm_id and r.hiring_manager_id == hm_id]
    recruiter_set, hm_set = set(recruiter_reqs), set(hm_reqs)

    active = [c for c in candidates if c.is_active]
    recruiter_cands = [c for c in active if c.req_id in recruiter_set]
    hm_cands = [c for c in active if c.req_id in hm_set]

    recruiter_demand = Counter(
        c.canonical_stage for c in recruiter_cands if c.canonical_stage in RECRUITER_DEMAND_STAGES
    )
    hm_demand = Counter(c.canonical_stage for c in hm_cands if c.canonical_stage in HM_DEMAND_STAGES)
    selected = Counter(
        c.canonical_stage for c in active if c.req_id == selected_req_id and c.canonical_stage is not None
    )

    names = {u.user_id: u.name for u in users or ()}
    reasons: list[ConfidenceReason] = []
    if recruiter_id and hm_id:
        scope, confidence = "global_by_recruiter", ConfidenceLevel.HIGH
        if len(recruiter_reqs) > 1:
            reasons.append(
                ConfidenceReason(
                    "sample_size",
                    f"Using global workload: Recruiter has {len(recruiter_reqs)} open reqs",
                    "positive",
                )
            )
    elif recruiter_id:
        scope, confidence = "global_by_recruiter", ConfidenceLevel.MEDIUM
        reasons.append(ConfidenceReason("missing_data", "hm_id missing - HM demand using cohort defaults", "neutral"))
    elif hm_id:
        scope, confidence = "global_by_hm", ConfidenceLevel.MEDIUM
        reasons.append(
            ConfidenceReason("missing_data", "recruiter_id missing - Recruiter demand using cohort defaults", "neutral")
        )
    else:
        scope, confidence = "single_req", ConfidenceLevel.LOW
        reasons.append(
            ConfidenceReason("missing_data", "Both recruiter_id and hm_id missing - using single-req fallback", "negative")
        )

    if sum(selected.values()) == 0:
        confidence = ConfidenceLevel.LOW
        reasons.append(ConfidenceReason("sample_size", "Selected req has 0 active candidates in pipeline", "negative"))

    return GlobalDemand(
        demand_scope=scope,
        recruiter_demand=dict(recruiter_demand),
        hm_demand=dict(hm_demand),
        recruiter_context=WorkloadContext(
            owner_id=recruiter_id,
            owner_name=names.get(recruiter_id) if recruiter_id else None,
            open_req_count=len(recruiter_reqs),
            total_candidates_in_flight=len(recruiter_cands),
            req_ids=tuple(recruiter_reqs),
        ),
        hm_context=WorkloadContext(
            owner_id=hm_id,
            owner_name=names.get(hm_id) if hm_id else None,
            open_req_count=len(hm_reqs),
            total_candidates_in_flight=len(hm_cands),
            req_ids=tuple(hm_reqs),
        ),
        selected_req_pipeline=dict(selected),
        confidence=confidence,
        confidence_reasons=tuple(reasons),
    )


def pipeline_by_stage(candidates: Sequence[Candidate]) -> dict[CanonicalStage, int]:
    """Count active candidates per canonical stage."""
    counts = Counter(c.canonical_stage for c in candidates if c.is_active and c.canonical_stage is not None)
    return dict(counts)


# --- Queueing ---------------------------------------------------------------


def calculate_queue_delay(
    demand: float,
    service_rate: float,
    queue_factor: float = DEFAULT_QUEUE_FACTOR,
    max_delay_days: float = MAX_QUEUE_DELAY_DAYS,
) -> float:
    """Extra dwell days when weekly demand exceeds the owner's weekly service rate.

    delay = ((demand - rate) / rate) * 7 * queue_factor, capped at max_delay_days.
    """
    if queue_factor < 0 or max_delay_days < 0:
        raise InvalidParameter("queue_factor and max_delay_days must be >= 0")
    if demand <= service_rate or service_rate <= 0:
        return 0.0
    raw = ((demand - service_rate) / service_rate) * 7.0 * queue_factor
    return float(min(raw, max_delay_days))


def _adjusted(stage: CanonicalStage, dist: StageDurationDistribution | None, delay: float) -> AdjustedDuration:
    original = median_days(dist)
    return AdjustedDuration(
        stage=stage,
        original_median_days=original,
        queue_delay_days=delay,
        adjusted_median_days=original + delay,
    )


def _diagnostic(
    stage: CanonicalStage,
    demand: int,
    rate: float,
    delay: float,
    owner: str,
    confidence: ConfidenceLevel,
) -> StageQueueDiagnostic:
    return StageQueueDiagnostic(
        stage=stage,
        stage_name=STAGE_LABELS.get(stage, stage.value),
        demand=demand,
        service_rate=rate,
        queue_delay_days=delay,
        is_bottleneck=delay > 0,
        bottleneck_owner_type=owner if delay > 0 else "none",
        confidence=confidence,
    )


def _top_bottlenecks(diagnostics: Sequence[StageQueueDiagnostic]) -> tuple[StageQueueDiagnostic, ...]:
    ranked = sorted((d for d in diagnostics if d.is_bottleneck), key=lambda d: d.queue_delay_days, reverse=True)
    return tuple(ranked[:TOP_BOTTLENECKS])


def _owner_for(stage: CanonicalStage, recruiter_demand: int, hm_demand: int) -> str:
    owner = STAGE_OWNERS.get(stage, "recruiter")
    if owner == "shared":
        return "recruiter" if recruiter_demand >= hm_demand else "hm"
    return owner


def apply_capacity_penalty(
    stage_durations: Mapping[CanonicalStage, StageDurationDistribution],
    pipeline: PipelineByStage,
    profile: CapacityProfile,
    queue_factor: float = DEFAULT_QUEUE_FACTOR,
    max_delay_days: float = MAX_QUEUE_DELAY_DAYS,
) -> CapacityPenaltyResult:
    """Queue delays from the selected requisition's own pipeline counts."""
    diagnostics: list[StageQueueDiagnostic] = []
    adjusted: dict[CanonicalStage, AdjustedDuration] = {}
    for stage in CAPACITY_LIMITED_STAGES:
        demand = int(pipeline.get(stage, 0))
        rate = profile.service_rate(stage)
        delay = calculate_queue_delay(demand, rate, queue_factor, max_delay_days)
        owner = _owner_for(stage, demand, 0)
        diagnostics.append(_diagnostic(stage, demand, rate, delay, owner, profile.stage_confidence(stage)))
        adjusted[stage] = _adjusted(stage, stage_durations.get(stage), delay)

    return CapacityPenaltyResult(
        adjusted_durations=adjusted,
        stage_diagnostics=tuple(diagnostics),
        top_bottlenecks=_top_bottlenecks(diagnostics),
        total_queue_delay_days=sum(a.queue_delay_days for a in adjusted.values()),
        confidence=ConfidenceLevel.worst([d.confidence for d in diagnostics]),
    )


def _stage_confidence_v11(stage: CanonicalStage, profile: CapacityProfile, demand: GlobalDemand) -> ConfidenceLevel:
    if profile.stage_capacity(stage) is None:
        return ConfidenceLevel.LOW
    owner = STAGE_OWNERS.get(stage)
    if owner == "recruiter" and not demand.recruiter_context.owner_id:
        return ConfidenceLevel.LOW
    if owner == "hm" and not demand.hm_context.owner_id:
        return ConfidenceLevel.LOW
    return profile.stage_confidence(stage)


def _aggregate_confidence_v11(
    confidences: Sequence[ConfidenceLevel],
    profile: CapacityProfile,
    demand: GlobalDemand,
) -> ConfidenceLevel:
    prior_count = 0
    if profile.used_cohort_fallback:
        prior_count += 2
    if profile.recruiter is None:
        prior_count += 2
    if profile.hm is None:
        prior_count += 1
    if prior_count >= 2:
        return ConfidenceLevel.LOW
    if not demand.recruiter_context.owner_id and not demand.hm_context.owner_id:
        return ConfidenceLevel.LOW
    if demand.selected_pipeline_size == 0:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.worst(confidences)


def _hedge(confidence: ConfidenceLevel) -> str:
    if confidence == ConfidenceLevel.HIGH:
        return "Based on observed patterns"
    if confidence == ConfidenceLevel.MEDIUM:
        return "Based on similar cohorts"
    return "Estimated (limited data)"


def generate_recommendations(
    bottlenecks: Sequence[StageQueueDiagnostic],
    demand: GlobalDemand,
    profile: CapacityProfile,
) -> tuple[CapacityRecommendation, ...]:
    hedge = _hedge(profile.overall_confidence)
    recs: list[CapacityRecommendation] = []

    for b in bottlenecks[:2]:
        label = STAGE_LABELS.get(b.stage, b.stage.value)
        target = math.ceil(b.demand / TARGET_UTILIZATION)
        if target > b.service_rate:
            recs.append(
                CapacityRecommendation(
                    type="increase_throughput",
                    description=f"{hedge}: Increase {label} throughput to ~{target}/week",
                    estimated_impact_days=_round_half_up(b.queue_delay_days * 0.7),
                    stage=b.stage,
                    current_value=b.service_rate,
                    target_value=float(target),
                    owner_type=b.bottleneck_owner_type,
                )
            )

        context = demand.hm_context if b.bottleneck_owner_type == "hm" else demand.recruiter_context
        if context.open_req_count > REASSIGN_MIN_OPEN_REQS and b.demand > 0:
            per_req = b.demand / context.open_req_count
            to_move = math.ceil((b.demand - b.service_rate) / per_req)
            if 0 < to_move < context.open_req_count:
                who = "HM" if b.bottleneck_owner_type == "hm" else "Recruiter"
                recs.append(
                    CapacityRecommendation(
                        type="reassign_workload",
                        description=f"{hedge}: Reassign ~{to_move} req(s) to reduce {who} load",
                        estimated_impact_days=_round_half_up(b.queue_delay_days * 0.5),
                        stage=b.stage,
                        current_value=float(context.open_req_count),
                        target_value=float(context.open_req_count - to_move),
                        owner_type=b.bottleneck_owner_type,
                    )
                )

    if demand.confidence == ConfidenceLevel.LOW:
        recs.append(
            CapacityRecommendation(
                type="improve_data",
                description="Add recruiter_id and hm_id to improve forecast accuracy",
                estimated_impact_days=0,
            )
        )
    return tuple(recs)


def apply_capacity_penalty_v11(
    stage_durations: Mapping[CanonicalStage, StageDurationDistribution],
    global_demand: GlobalDemand,
    profile: CapacityProfile,
    queue_factor: float = DEFAULT_QUEUE_FACTOR,
    max_delay_days: float = MAX_QUEUE_DELAY_DAYS,
) -> CapacityPenaltyResultV11:
    """Queue delays from the owners' total workload, with recommendations."""
    diagnostics: list[StageQueueDiagnostic] = []
    adjusted: dict[CanonicalStage, AdjustedDuration] = {}
    for stage in CAPACITY_LIMITED_STAGES:
        rec_d = int(global_demand.recruiter_demand.get(stage, 0))
        hm_d = int(global_demand.hm_demand.get(stage, 0))
        demand = max(rec_d, hm_d)
        rate = profile.service_rate(stage)
        delay = calculate_queue_delay(demand, rate, queue_factor, max_delay_days)
        owner = _owner_for(stage, rec_d, hm_d)
        confidence = _stage_confidence_v11(stage, profile, global_demand)
        diagnostics.append(_diagnostic(stage, demand, rate, delay, owner, confidence))
        adjusted[stage] = _adjusted(stage, stage_durations.get(stage), delay)
        if delay > 0:
            logger.debug("%s queue delay %.1f days (demand=%d, rate=%.2f/wk)", stage.value, delay, demand, rate)

    top = _top_bottlenecks(diagnostics)
    confidence = _aggregate_confidence_v11(
        [d.confidence for d in diagnostics] + [global_demand.confidence], profile, global_demand
    )
    return CapacityPenaltyResultV11(
        adjusted_durations=adjusted,
        stage_diagnostics=tuple(diagnostics),
        top_bottlenecks=top,
        total_queue_delay_days=sum(a.queue_delay_days for a in adjusted.values()),
        confidence=confidence,
        global_demand=global_demand,
        recommendations=generate_recommendations(top, global_demand, profile),
    )


def create_capacity_adjusted_params(
    params: SimulationParameters,
    penalty: CapacityPenaltyResult,
    default_duration_days: float = DEFAULT_DURATION_DAYS,
) -> SimulationParameters:
    """Copy of `params` with each penalised stage's duration shifted by its queue delay.

    Stages the parameters do not configure stay pass-through.
    """
    durations: dict[CanonicalStage, StageDurationDistribution] = dict(params.stage_durations)
    for stage, adj in penalty.adjusted_durations.items():
        if adj.queue_delay_days <= 0 or not params.configures(stage):
            continue
        base = durations.get(stage)
        if base is None:
            durations[stage] = ConstantDuration(days=default_duration_days + adj.queue_delay_days)
        else:
            durations[stage] = base.shifted(adj.queue_delay_days)
    return params.with_durations(durations)
