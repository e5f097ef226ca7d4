from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from hiring_oracle.common.errors import InsufficientData
from hiring_oracle.config import OracleConfig
from hiring_oracle.domain.entities import CanonicalStage, Event, EventType
from hiring_oracle.forecasting.scenarios.scenarios import LeverAdjustments, ShrinkageScenario
from hiring_oracle.forecasting.services.forecasting_service import ForecastingService
from hiring_oracle.integration.event_bus import InMemoryEventBus
from hiring_oracle.integration.events import (
    CandidateRemoved,
    CandidateStageChanged,
    CapacityForecastComputed,
    ForecastComputed,
    HistoryLoaded,
    RequisitionOpened,
    SimulationParametersFitted,
)
from hiring_oracle.io.payloads import parameters_to_payload
from hiring_oracle.io.synthetic import SyntheticConfig, demo_parameters, generate_synthetic_history


START = date(2025, 6, 2)
NOW = datetime(2025, 6, 2, tzinfo=timezone.utc)


def _open(bus: InMemoryEventBus, req_id: str = "REQ-1", recruiter: str = "rec0", hm: str = "hm0") -> None:
    bus.publish(
        RequisitionOpened(occurred_at=NOW, req_id=req_id, recruiter_id=recruiter, hiring_manager_id=hm, start_date=START)
    )
    for i, stage in enumerate(["SCREEN", "Phone Screen", "HM Interview", "ONSITE"]):
        bus.publish(CandidateStageChanged(occurred_at=NOW, req_id=req_id, candidate_id=f"c{i}", new_stage=stage))
    bus.publish(
        SimulationParametersFitted(occurred_at=NOW, req_id=req_id, parameters=parameters_to_payload(demo_parameters()))
    )


def test_state_follows_events() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)

    st = svc.requisition("REQ-1")
    assert st.stage_counts() == {CanonicalStage.SCREEN: 2, CanonicalStage.HM_SCREEN: 1, CanonicalStage.ONSITE: 1}

    bus.publish(CandidateStageChanged(occurred_at=NOW, req_id="REQ-1", candidate_id="c0", new_stage="Rejected"))
    bus.publish(CandidateRemoved(occurred_at=NOW, req_id="REQ-1", candidate_id="c1"))
    bus.publish(CandidateStageChanged(occurred_at=NOW, req_id="REQ-1", candidate_id="c9", new_stage="Coffee chat"))
    assert st.stage_counts() == {CanonicalStage.HM_SCREEN: 1, CanonicalStage.ONSITE: 1}


def test_forecast_is_deterministic_and_cached() -> None:
    bus = InMemoryEventBus()
    published: list[ForecastComputed] = []
    bus.subscribe(ForecastComputed, published.append)
    svc = ForecastingService(bus=bus)
    _open(bus)

    first = svc.compute_forecast("REQ-1")["baseline"]
    second = svc.compute_forecast("REQ-1")["baseline"]

    assert first is second
    assert svc.cache is not None and svc.cache.hits == 1
    assert first.debug.seed.startswith("oracle-REQ-1-")
    assert len(published) == 2
    assert published[0].result["p50_date"] == first.p50_date.isoformat()

    # A pipeline change yields a new seed.
    bus.publish(CandidateStageChanged(occurred_at=NOW, req_id="REQ-1", candidate_id="c7", new_stage="OFFER"))
    third = svc.compute_forecast("REQ-1")["baseline"]
    assert third.debug.seed != first.debug.seed


def test_what_if_shares_seed_with_baseline() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)

    levers = LeverAdjustments(conversion_deltas={CanonicalStage.ONSITE: 20.0})
    results = svc.what_if("REQ-1", levers)

    assert set(results) == {"baseline", "what_if"}
    assert results["baseline"].debug.seed == results["what_if"].debug.seed
    assert results["what_if"].hire_probability >= results["baseline"].hire_probability


def test_levers_enter_seed_without_common_random_numbers() -> None:
    cfg = OracleConfig.model_validate({"knobs": {"common_random_numbers": False}})
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus, config=cfg)
    _open(bus)

    results = svc.what_if("REQ-1", LeverAdjustments(conversion_deltas={CanonicalStage.ONSITE: 20.0}))
    assert results["baseline"].debug.seed != results["what_if"].debug.seed


def test_custom_scenarios_are_keyed_by_id() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)

    results = svc.compute_forecast("REQ-1", scenarios=[ShrinkageScenario(prior_weight=50.0, scenario_id="heavy")])
    assert list(results) == ["heavy"]


def test_unknown_or_unfitted_requisitions() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    with pytest.raises(KeyError):
        svc.compute_forecast("nope")

    bus.publish(
        RequisitionOpened(occurred_at=NOW, req_id="REQ-2", recruiter_id=None, hiring_manager_id=None, start_date=START)
    )
    with pytest.raises(InsufficientData):
        svc.compute_forecast("REQ-2")


def test_auto_recompute_publishes_on_change() -> None:
    bus = InMemoryEventBus()
    published: list[ForecastComputed] = []
    bus.subscribe(ForecastComputed, published.append)
    ForecastingService(bus=bus, auto_recompute=True)
    _open(bus)
    before = len(published)

    bus.publish(CandidateStageChanged(occurred_at=NOW, req_id="REQ-1", candidate_id="c8", new_stage="OFFER"))
    assert len(published) == before + 1
    assert bus.failures == 0


def test_capacity_forecast_with_history() -> None:
    bus = InMemoryEventBus()
    published: list[CapacityForecastComputed] = []
    bus.subscribe(CapacityForecastComputed, published.append)
    svc = ForecastingService(bus=bus)

    history = generate_synthetic_history(SyntheticConfig(seed=11, end=NOW))
    bus.publish(
        HistoryLoaded(
            occurred_at=NOW,
            events=tuple(history.events),
            candidates=tuple(history.candidates),
            requisitions=tuple(history.requisitions),
            users=tuple(history.users),
        )
    )
    _open(bus)

    res = svc.compute_capacity_forecast("REQ-1", target_date=date(2025, 8, 1))
    assert res.capacity_profile is not None
    assert res.capacity_aware.p50_date >= res.pipeline_only.p50_date
    assert res.global_demand is not None
    assert res.global_demand.selected_pipeline_size == 4
    assert published and published[0].req_id == "REQ-1"


def test_capacity_forecast_without_history_falls_back() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)

    res = svc.compute_capacity_forecast("REQ-1")
    assert res.capacity_aware == res.pipeline_only
    assert res.p50_delta_days == 0


def test_submit_forecast_runs_in_background() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)
    try:
        future = svc.submit_forecast("REQ-1")
        assert future.result(timeout=60)["baseline"] == svc.compute_forecast("REQ-1")["baseline"]
    finally:
        svc.close()


def test_capacity_lookback_ends_at_requisition_start() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)

    screens = [
        Event(
            event_id=f"e{i}",
            candidate_id=f"h{i}",
            req_id="REQ-1",
            event_type=EventType.STAGE_CHANGE,
            event_at=NOW - timedelta(days=3 * i + 1),
            from_stage="APPLIED",
            to_stage="SCREEN",
        )
        for i in range(24)
    ]
    late = Event(
        event_id="late",
        candidate_id="h0",
        req_id="REQ-1",
        event_type=EventType.STAGE_CHANGE,
        event_at=NOW + timedelta(days=365),
        from_stage="ONSITE",
        to_stage="OFFER",
    )
    bus.publish(HistoryLoaded(occurred_at=NOW, events=tuple(screens) + (late,), candidates=(), requisitions=()))
    _open(bus)

    res = svc.compute_capacity_forecast("REQ-1")
    assert res.capacity_profile is not None
    recruiter = res.capacity_profile.recruiter
    assert recruiter is not None
    assert recruiter.screens_per_week.n_transitions == 24
    assert recruiter.offers_per_week is None


def test_forecast_without_cache_is_rejected() -> None:
    bus = InMemoryEventBus()
    svc = ForecastingService(bus=bus)
    _open(bus)
    svc.cache = None
    with pytest.raises(RuntimeError):
        svc.compute_forecast("REQ-1")
