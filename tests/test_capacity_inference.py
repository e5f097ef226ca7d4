from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hiring_oracle.common.time_utils import lookback_window
from hiring_oracle.domain.entities import CanonicalStage, Event, EventType, Requisition, User
from hiring_oracle.forecasting.capacity.inference import (
    build_capacity_profile,
    build_stage_capacity,
    calculate_cohort_defaults,
    count_stage_transitions,
    infer_capacity,
    infer_recruiter_capacity,
)
from hiring_oracle.forecasting.capacity.models import GLOBAL_CAPACITY_PRIORS
from hiring_oracle.forecasting.domain.models import ConfidenceLevel
from hiring_oracle.io.synthetic import SyntheticConfig, generate_synthetic_history


END = datetime(2025, 6, 30, tzinfo=timezone.utc)


def _stage_event(i: int, to_stage: str, req_id: str = "REQ-1", actor: str = "r1", days_ago: int = 3) -> Event:
    return Event(
        event_id=f"E{i}",
        candidate_id=f"C{i}",
        req_id=req_id,
        event_type=EventType.STAGE_CHANGE,
        event_at=END - timedelta(days=days_ago),
        from_stage="APPLIED",
        to_stage=to_stage,
        actor_user_id=actor,
    )


def test_count_stage_transitions_normalises_names() -> None:
    events = [_stage_event(0, "Phone Screen"), _stage_event(1, "SCREEN"), _stage_event(2, "Onsite")]
    assert count_stage_transitions(events, CanonicalStage.SCREEN) == 2
    assert count_stage_transitions(events, CanonicalStage.ONSITE) == 1


def test_stage_capacity_shrinks_toward_prior() -> None:
    cap = build_stage_capacity(CanonicalStage.SCREEN, transitions=24, weeks=12, prior_throughput=8.0, prior_weight=4)
    # (12 * 2.0 + 4 * 8.0) / 16
    assert cap.throughput_per_week == pytest.approx(3.5)
    assert cap.observed_throughput == pytest.approx(2.0)
    assert cap.confidence == ConfidenceLevel.HIGH

    thin = build_stage_capacity(CanonicalStage.SCREEN, transitions=0, weeks=2, prior_throughput=0.0)
    assert thin.throughput_per_week == pytest.approx(0.1)
    assert thin.confidence == ConfidenceLevel.LOW


def test_cohort_defaults_fall_back_to_global_priors() -> None:
    cohort = calculate_cohort_defaults([], lookback_window(END, 12))
    assert cohort.screens_per_week == GLOBAL_CAPACITY_PRIORS.screens_per_week
    assert cohort.offers_per_week == GLOBAL_CAPACITY_PRIORS.offers_per_week
    assert cohort.weeks == 12


def test_recruiter_capacity_counts_owned_requisitions_only() -> None:
    window = lookback_window(END, 12)
    reqs = [
        Requisition(req_id="REQ-1", title="Eng", recruiter_id="r1", hiring_manager_id="h1"),
        Requisition(req_id="REQ-2", title="Eng", recruiter_id="r2", hiring_manager_id="h1"),
    ]
    events = [_stage_event(i, "SCREEN") for i in range(24)]
    events += [_stage_event(100 + i, "SCREEN", req_id="REQ-2", actor="r2") for i in range(30)]
    # Outside the lookback window.
    events += [_stage_event(200 + i, "SCREEN", days_ago=200) for i in range(30)]
    cohort = calculate_cohort_defaults(events, window)

    cap = infer_recruiter_capacity("r1", events, reqs, window, cohort)
    assert cap is not None
    assert cap.screens_per_week.n_transitions == 24
    assert cap.onsites_per_week is None
    assert infer_recruiter_capacity("nobody", events, reqs, window, cohort) is None


def test_recruiter_confidence_ignores_offers() -> None:
    window = lookback_window(END, 12)
    reqs = [Requisition(req_id="REQ-1", title="Eng", recruiter_id="r1", hiring_manager_id="h1")]
    events = [_stage_event(i, "SCREEN") for i in range(24)] + [_stage_event(99, "OFFER")]
    cohort = calculate_cohort_defaults(events, window)

    cap = infer_recruiter_capacity("r1", events, reqs, window, cohort)
    assert cap is not None
    assert cap.offers_per_week is not None
    assert cap.offers_per_week.confidence == ConfidenceLevel.LOW
    assert cap.overall_confidence == ConfidenceLevel.HIGH


def test_capacity_unavailable_without_history() -> None:
    window = lookback_window(END, 12)
    assert infer_capacity("r1", "h1", window, [], [], []) is None
    assert infer_capacity(None, None, window, [_stage_event(0, "SCREEN")], [], []) is None


def test_profile_from_synthetic_history() -> None:
    history = generate_synthetic_history(SyntheticConfig(seed=3, end=END))
    req = history.requisitions[0]
    profile = build_capacity_profile(
        req.recruiter_id,
        req.hiring_manager_id,
        lookback_window(END, 12),
        history.events,
        history.candidates,
        history.requisitions,
        history.users,
    )

    assert profile.recruiter is not None
    assert profile.recruiter.recruiter_name is not None
    assert profile.hm is not None
    assert profile.service_rate(CanonicalStage.SCREEN) > 0
    assert all(isinstance(u, User) for u in history.users)
