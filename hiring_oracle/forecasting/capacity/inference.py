from __future__ import annotations

import logging
from typing import Iterable, Sequence

from hiring_oracle.common.errors import InsufficientData
from hiring_oracle.common.time_utils import DateRange
from hiring_oracle.domain.entities import (
    Candidate,
    CanonicalStage,
    Event,
    EventType,
    Requisition,
    User,
    normalize_stage,
)
from hiring_oracle.forecasting.capacity.models import (
    GLOBAL_CAPACITY_PRIORS,
    HIGH_CONFIDENCE_THRESHOLD,
    MEDIUM_CONFIDENCE_THRESHOLD,
    MIN_THROUGHPUT_PER_WEEK,
    MIN_TRANSITIONS_FOR_THROUGHPUT,
    MIN_WEEKS_FOR_CAPACITY,
    CapacityProfile,
    CohortCapacityDefaults,
    FeedbackTurnaround,
    HMCapacity,
    RecruiterCapacity,
    StageCapacity,
)
from hiring_oracle.forecasting.domain.models import ConfidenceLevel, ConfidenceReason
from hiring_oracle.forecasting.priors.shrinkage import shrink

logger = logging.getLogger(__name__)


def count_stage_transitions(events: Iterable[Event], target: CanonicalStage) -> int:
    """Number of stage-change events moving a candidate into `target`."""
    return sum(
        1
        for e in events
        if e.event_type == EventType.STAGE_CHANGE and normalize_stage(e.to_stage) == target
    )


def _in_window(events: Iterable[Event], window: DateRange, req_ids: set[str] | None = None) -> list[Event]:
    return [
        e for e in events
        if window.contains(e.event_at) and (req_ids is None or e.req_id in req_ids)
    ]


def _grade(n_weeks: int, n_transitions: int) -> ConfidenceLevel:
    if n_weeks >= HIGH_CONFIDENCE_THRESHOLD[0] and n_transitions >= HIGH_CONFIDENCE_THRESHOLD[1]:
        return ConfidenceLevel.HIGH
    if n_weeks >= MEDIUM_CONFIDENCE_THRESHOLD[0] and n_transitions >= MEDIUM_CONFIDENCE_THRESHOLD[1]:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _grade_count(n: int) -> ConfidenceLevel:
    if n >= HIGH_CONFIDENCE_THRESHOLD[1]:
        return ConfidenceLevel.HIGH
    if n >= MEDIUM_CONFIDENCE_THRESHOLD[1]:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def build_stage_capacity(
    stage: CanonicalStage,
    transitions: int,
    weeks: int,
    prior_throughput: float,
    prior_weight: float = MIN_WEEKS_FOR_CAPACITY,
) -> StageCapacity:
    """Weekly throughput for one stage, shrunk toward the cohort prior.

    Weeks observed act as the sample size; the prior counts as `prior_weight` weeks.
    """
    weeks = max(1, weeks)
    observed = transitions / weeks
    shrunk = shrink(observed, prior_throughput, weeks, prior_weight)
    return StageCapacity(
        stage=stage,
        throughput_per_week=max(MIN_THROUGHPUT_PER_WEEK, shrunk),
        n_weeks=weeks,
        n_transitions=transitions,
        confidence=_grade(weeks, transitions),
        prior_throughput=prior_throughput,
        observed_throughput=observed,
    )


def calculate_cohort_defaults(events: Sequence[Event], window: DateRange) -> CohortCapacityDefaults:
    """Per-person weekly rates over everyone active in the window.

    Stages with no transitions fall back to the global priors; every rate is
    floored so one quiet quarter cannot zero out capacity.
    """
    weeks = window.weeks
    in_window = _in_window(events, window)
    active = len({e.actor_user_id for e in in_window if e.actor_user_id}) or 1

    def per_person(stage: CanonicalStage, prior: float, share: float) -> float:
        count = count_stage_transitions(in_window, stage)
        if count == 0:
            return prior
        return count / weeks / max(1.0, active / share)

    return CohortCapacityDefaults(
        screens_per_week=max(1.0, per_person(CanonicalStage.SCREEN, GLOBAL_CAPACITY_PRIORS.screens_per_week, 2)),
        hm_screens_per_week=max(
            0.5, per_person(CanonicalStage.HM_SCREEN, GLOBAL_CAPACITY_PRIORS.hm_screens_per_week, 3)
        ),
        onsites_per_week=max(0.5, per_person(CanonicalStage.ONSITE, GLOBAL_CAPACITY_PRIORS.onsites_per_week, 2)),
        offers_per_week=max(0.25, per_person(CanonicalStage.OFFER, GLOBAL_CAPACITY_PRIORS.offers_per_week, 2)),
        hm_feedback_hours=GLOBAL_CAPACITY_PRIORS.hm_feedback_hours,
        recruiters=active,
        hms=active // 2,
        weeks=weeks,
    )


def _user_name(users: Sequence[User] | None, user_id: str) -> str | None:
    for user in users or ():
        if user.user_id == user_id:
            return user.name
    return None


def _recruiter_reasons(transitions: int, weeks: int, confidence: ConfidenceLevel) -> list[ConfidenceReason]:
    reasons: list[ConfidenceReason] = []
    if weeks >= HIGH_CONFIDENCE_THRESHOLD[0]:
        reasons.append(ConfidenceReason("sample_size", f"{weeks} weeks of history analyzed", "positive"))
    elif weeks >= MEDIUM_CONFIDENCE_THRESHOLD[0]:
        reasons.append(ConfidenceReason("sample_size", f"{weeks} weeks of history (moderate sample)", "neutral"))
    else:
        reasons.append(ConfidenceReason("sample_size", f"Only {weeks} weeks of history (limited)", "negative"))
    if transitions < MIN_TRANSITIONS_FOR_THROUGHPUT:
        reasons.append(
            ConfidenceReason("missing_data", f"Few stage transitions observed ({transitions})", "negative")
        )
    if confidence.rank <= ConfidenceLevel.LOW.rank:
        reasons.append(ConfidenceReason("shrinkage", "Estimates rely heavily on cohort priors", "negative"))
    return reasons


def _hm_reasons(transitions: int) -> list[ConfidenceReason]:
    if transitions >= HIGH_CONFIDENCE_THRESHOLD[1]:
        return [ConfidenceReason("sample_size", f"{transitions} HM interactions observed", "positive")]
    if transitions >= MEDIUM_CONFIDENCE_THRESHOLD[1]:
        return [ConfidenceReason("sample_size", f"{transitions} HM interactions (moderate)", "neutral")]
    return [ConfidenceReason("sample_size", f"Few HM interactions ({transitions})", "negative")]


def infer_recruiter_capacity(
    recruiter_id: str,
    events: Sequence[Event],
    requisitions: Sequence[Requisition],
    window: DateRange,
    cohort: CohortCapacityDefaults,
    users: Sequence[User] | None = None,
    prior_weight: float = MIN_WEEKS_FOR_CAPACITY,
) -> RecruiterCapacity | None:
    req_ids = {r.req_id for r in requisitions if r.recruiter_id == recruiter_id}
    if not req_ids:
        return None

    owned = _in_window(events, window, req_ids)
    weeks = window.weeks

    counts = {
        stage: count_stage_transitions(owned, stage)
        for stage in (CanonicalStage.SCREEN, CanonicalStage.HM_SCREEN, CanonicalStage.ONSITE, CanonicalStage.OFFER)
    }
    caps = {
        stage: build_stage_capacity(stage, n, weeks, cohort.for_stage(stage), prior_weight)
        for stage, n in counts.items()
    }

    # Screens are always reported; the other stages only when observed.
    kept = {stage: cap for stage, cap in caps.items() if stage == CanonicalStage.SCREEN or counts[stage] > 0}
    # Offers are reported but do not grade the recruiter.
    overall = ConfidenceLevel.worst([c.confidence for s, c in kept.items() if s != CanonicalStage.OFFER])

    return RecruiterCapacity(
        recruiter_id=recruiter_id,
        recruiter_name=_user_name(users, recruiter_id),
        screens_per_week=caps[CanonicalStage.SCREEN],
        hm_screens_per_week=kept.get(CanonicalStage.HM_SCREEN),
        onsites_per_week=kept.get(CanonicalStage.ONSITE),
        offers_per_week=kept.get(CanonicalStage.OFFER),
        overall_confidence=overall,
        weeks_analyzed=weeks,
        confidence_reasons=tuple(
            _recruiter_reasons(counts[CanonicalStage.SCREEN], weeks, caps[CanonicalStage.SCREEN].confidence)
        ),
    )


def infer_hm_capacity(
    hm_id: str,
    events: Sequence[Event],
    requisitions: Sequence[Requisition],
    window: DateRange,
    cohort: CohortCapacityDefaults,
    users: Sequence[User] | None = None,
    prior_weight: float = MIN_WEEKS_FOR_CAPACITY,
) -> HMCapacity | None:
    req_ids = {r.req_id for r in requisitions if r.hiring_manager_id == hm_id}
    if not req_ids:
        return None

    owned = _in_window(events, window, req_ids)
    weeks = window.weeks
    transitions = count_stage_transitions(owned, CanonicalStage.HM_SCREEN)
    interviews = build_stage_capacity(
        CanonicalStage.HM_SCREEN, transitions, weeks, cohort.hm_screens_per_week, prior_weight
    )

    feedback = [
        e for e in owned
        if e.event_type == EventType.FEEDBACK_SUBMITTED and e.actor_user_id == hm_id
    ]
    turnaround = None
    if len(feedback) >= MIN_TRANSITIONS_FOR_THROUGHPUT:
        # Submission counts only; the cohort turnaround stands in for timing.
        turnaround = FeedbackTurnaround(
            median_hours=cohort.hm_feedback_hours,
            p75_hours=cohort.hm_feedback_hours * 1.5,
            n=len(feedback),
            confidence=_grade_count(len(feedback)),
        )

    return HMCapacity(
        hm_id=hm_id,
        hm_name=_user_name(users, hm_id),
        interviews_per_week=interviews if transitions > 0 else None,
        feedback_turnaround=turnaround,
        overall_confidence=interviews.confidence,
        weeks_analyzed=weeks,
        confidence_reasons=tuple(_hm_reasons(transitions)),
    )


def build_capacity_profile(
    recruiter_id: str | None,
    hm_id: str | None,
    window: DateRange,
    events: Sequence[Event],
    candidates: Sequence[Candidate],
    requisitions: Sequence[Requisition],
    users: Sequence[User] | None = None,
    prior_weight: float = MIN_WEEKS_FOR_CAPACITY,
) -> CapacityProfile:
    """Infer a capacity profile, raising InsufficientData when there is nothing to infer from."""
    if not events:
        raise InsufficientData("no historical events to infer capacity from")
    if not recruiter_id and not hm_id:
        raise InsufficientData("neither recruiter_id nor hm_id is known")

    cohort = calculate_cohort_defaults(events, window)
    recruiter = (
        infer_recruiter_capacity(recruiter_id, events, requisitions, window, cohort, users, prior_weight)
        if recruiter_id
        else None
    )
    hm = infer_hm_capacity(hm_id, events, requisitions, window, cohort, users, prior_weight) if hm_id else None

    used_fallback = recruiter is None or hm is None
    reasons: list[ConfidenceReason] = []
    if recruiter is not None:
        reasons.extend(recruiter.confidence_reasons)
    if hm is not None:
        reasons.extend(hm.confidence_reasons)
    if used_fallback:
        reasons.append(
            ConfidenceReason("missing_data", "Using cohort defaults for some capacity estimates", "negative")
        )

    overall = ConfidenceLevel.worst(
        [
            recruiter.overall_confidence if recruiter else ConfidenceLevel.LOW,
            hm.overall_confidence if hm else ConfidenceLevel.LOW,
        ]
    )
    return CapacityProfile(
        recruiter=recruiter,
        hm=hm,
        cohort_defaults=cohort,
        overall_confidence=overall,
        confidence_reasons=tuple(reasons),
        used_cohort_fallback=used_fallback,
    )


def infer_capacity(
    recruiter_id: str | None,
    hm_id: str | None,
    lookback: DateRange,
    events: Sequence[Event],
    candidates: Sequence[Candidate],
    requisitions: Sequence[Requisition],
    users: Sequence[User] | None = None,
    prior_weight: float = MIN_WEEKS_FOR_CAPACITY,
) -> CapacityProfile | None:
    """Capacity profile for a requisition's owners, or None if capacity is unavailable."""
    try:
        return build_capacity_profile(
            recruiter_id, hm_id, lookback, events, candidates, requisitions, users, prior_weight
        )
    except InsufficientData as exc:
        logger.info("Capacity unavailable: %s", exc)
        return None
