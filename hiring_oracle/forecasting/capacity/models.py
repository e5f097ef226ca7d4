from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.models import ConfidenceLevel, ConfidenceReason


MIN_WEEKS_FOR_CAPACITY = 4
MIN_TRANSITIONS_FOR_THROUGHPUT = 5
MAX_QUEUE_DELAY_DAYS = 21.0
DEFAULT_QUEUE_FACTOR = 1.0
MIN_THROUGHPUT_PER_WEEK = 0.1

# (min_weeks, min_transitions)
HIGH_CONFIDENCE_THRESHOLD = (8, 15)
MEDIUM_CONFIDENCE_THRESHOLD = (4, 5)

# "shared" stages are attributed to whichever owner carries more demand.
STAGE_OWNERS: Mapping[CanonicalStage, str] = {
    CanonicalStage.SCREEN: "recruiter",
    CanonicalStage.HM_SCREEN: "hm",
    CanonicalStage.ONSITE: "shared",
    CanonicalStage.OFFER: "recruiter",
}

RECRUITER_DEMAND_STAGES = (CanonicalStage.SCREEN, CanonicalStage.ONSITE, CanonicalStage.OFFER)
HM_DEMAND_STAGES = (CanonicalStage.HM_SCREEN,)

PipelineByStage = Mapping[CanonicalStage, int]


@dataclass(frozen=True)
class StageCapacity:
    """Weekly throughput an owner sustains for one stage."""

    stage: CanonicalStage
    throughput_per_week: float
    n_weeks: int
    n_transitions: int
    confidence: ConfidenceLevel
    prior_throughput: float | None = None
    observed_throughput: float | None = None


@dataclass(frozen=True)
class FeedbackTurnaround:
    median_hours: float
    p75_hours: float
    n: int
    confidence: ConfidenceLevel


@dataclass(frozen=True)
class RecruiterCapacity:
    recruiter_id: str
    screens_per_week: StageCapacity
    overall_confidence: ConfidenceLevel
    weeks_analyzed: int
    recruiter_name: str | None = None
    hm_screens_per_week: StageCapacity | None = None
    onsites_per_week: StageCapacity | None = None
    offers_per_week: StageCapacity | None = None
    confidence_reasons: tuple[ConfidenceReason, ...] = ()


@dataclass(frozen=True)
class HMCapacity:
    hm_id: str
    overall_confidence: ConfidenceLevel
    weeks_analyzed: int
    hm_name: str | None = None
    interviews_per_week: StageCapacity | None = None
    feedback_turnaround: FeedbackTurnaround | None = None
    confidence_reasons: tuple[ConfidenceReason, ...] = ()


@dataclass(frozen=True)
class CohortCapacityDefaults:
    """Per-person weekly throughput across everyone active in the window."""

    screens_per_week: float = 8.0
    hm_screens_per_week: float = 4.0
    onsites_per_week: float = 3.0
    offers_per_week: float = 1.5
    hm_feedback_hours: float = 48.0
    recruiters: int = 0
    hms: int = 0
    weeks: int = 0

    def for_stage(self, stage: CanonicalStage) -> float:
        return {
            CanonicalStage.SCREEN: self.screens_per_week,
            CanonicalStage.HM_SCREEN: self.hm_screens_per_week,
            CanonicalStage.ONSITE: self.onsites_per_week,
            CanonicalStage.OFFER: self.offers_per_week,
        }.get(stage, 5.0)


GLOBAL_CAPACITY_PRIORS = CohortCapacityDefaults()


@dataclass(frozen=True)
class CapacityProfile:
    recruiter: RecruiterCapacity | None
    hm: HMCapacity | None
    cohort_defaults: CohortCapacityDefaults
    overall_confidence: ConfidenceLevel
    confidence_reasons: tuple[ConfidenceReason, ...] = ()
    used_cohort_fallback: bool = False

    def stage_capacity(self, stage: CanonicalStage) -> StageCapacity | None:
        """The observed capacity that limits `stage`, or None when only defaults apply."""
        rec, hm = self.recruiter, self.hm
        if stage == CanonicalStage.SCREEN:
            return rec.screens_per_week if rec else None
        if stage == CanonicalStage.HM_SCREEN:
            if hm is not None and hm.interviews_per_week is not None:
                return hm.interviews_per_week
            return rec.hm_screens_per_week if rec else None
        if stage == CanonicalStage.ONSITE:
            return rec.onsites_per_week if rec else None
        if stage == CanonicalStage.OFFER:
            return rec.offers_per_week if rec else None
        return None

    def service_rate(self, stage: CanonicalStage) -> float:
        cap = self.stage_capacity(stage)
        if cap is not None and cap.throughput_per_week > 0:
            return cap.throughput_per_week
        return self.cohort_defaults.for_stage(stage)

    def stage_confidence(self, stage: CanonicalStage) -> ConfidenceLevel:
        cap = self.stage_capacity(stage)
        return cap.confidence if cap is not None else ConfidenceLevel.LOW


@dataclass(frozen=True)
class WorkloadContext:
    owner_id: str | None
    owner_name: str | None = None
    open_req_count: int = 0
    total_candidates_in_flight: int = 0
    req_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class GlobalDemand:
    """Per-stage demand across every open requisition the owners carry."""

    demand_scope: str  # "single_req", "global_by_recruiter", "global_by_hm"
    recruiter_demand: PipelineByStage
    hm_demand: PipelineByStage
    recruiter_context: WorkloadContext
    hm_context: WorkloadContext
    selected_req_pipeline: PipelineByStage
    confidence: ConfidenceLevel
    confidence_reasons: tuple[ConfidenceReason, ...] = ()

    @property
    def selected_pipeline_size(self) -> int:
        return sum(self.selected_req_pipeline.values())


@dataclass(frozen=True)
class StageQueueDiagnostic:
    stage: CanonicalStage
    stage_name: str
    demand: int
    service_rate: float
    queue_delay_days: float
    is_bottleneck: bool
    bottleneck_owner_type: str  # "recruiter", "hm", "shared", "none"
    confidence: ConfidenceLevel


@dataclass(frozen=True)
class AdjustedDuration:
    stage: CanonicalStage
    original_median_days: float
    queue_delay_days: float
    adjusted_median_days: float


@dataclass(frozen=True)
class CapacityRecommendation:
    type: str  # "increase_throughput", "reassign_workload", "improve_data"
    description: str
    estimated_impact_days: int
    stage: CanonicalStage | None = None
    current_value: float | None = None
    target_value: float | None = None
    owner_type: str | None = None


@dataclass(frozen=True)
class CapacityPenaltyResult:
    adjusted_durations: Mapping[CanonicalStage, AdjustedDuration]
    stage_diagnostics: tuple[StageQueueDiagnostic, ...]
    top_bottlenecks: tuple[StageQueueDiagnostic, ...]
    total_queue_delay_days: float
    confidence: ConfidenceLevel

    def delay_for(self, stage: CanonicalStage) -> float:
        adjusted = self.adjusted_durations.get(stage)
        return adjusted.queue_delay_days if adjusted is not None else 0.0


@dataclass(frozen=True)
class CapacityPenaltyResultV11(CapacityPenaltyResult):
    global_demand: GlobalDemand | None = None
    recommendations: tuple[CapacityRecommendation, ...] = ()

