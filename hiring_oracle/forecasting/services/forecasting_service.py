from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Sequence

from hiring_oracle.common.errors import InsufficientData
from hiring_oracle.common.seeding import derive_seed
from hiring_oracle.common.time_utils import as_datetime, lookback_window
from hiring_oracle.config import OracleConfig
from hiring_oracle.domain.entities import (
    TERMINAL_STAGES,
    Candidate,
    CandidateDisposition,
    CanonicalStage,
    Event,
    Requisition,
    RequisitionStatus,
    User,
    normalize_stage,
)
from hiring_oracle.forecasting.capacity.inference import infer_capacity
from hiring_oracle.forecasting.capacity.penalty import compute_global_demand
from hiring_oracle.forecasting.domain.models import ForecastResult, PipelineCandidate, SimulationParameters
from hiring_oracle.forecasting.scenarios.scenarios import (
    IdentityScenario,
    KnobSettings,
    LeverAdjustments,
    LeverScenario,
    Scenario,
)
from hiring_oracle.forecasting.services.capacity_forecast import (
    CapacityAwareForecastResult,
    run_capacity_aware_forecast,
)
from hiring_oracle.forecasting.services.result_cache import (
    ResultCache,
    generate_cache_key,
    hash_pipeline_counts,
)
from hiring_oracle.forecasting.simulator.monte_carlo import MonteCarloHiringForecaster
from hiring_oracle.integration.event_bus import EventBus
from hiring_oracle.integration.events import (
    CandidateRemoved,
    CandidateStageChanged,
    CapacityForecastComputed,
    ForecastComputed,
    HistoryLoaded,
    RequisitionOpened,
    SimulationParametersFitted,
)
from hiring_oracle.io.payloads import (
    capacity_forecast_to_payload,
    forecast_to_payload,
    parameters_from_payload,
)


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class RequisitionState:
    req_id: str
    recruiter_id: str | None
    hiring_manager_id: str | None
    start_date: date
    title: str = ""
    candidates: dict[str, CanonicalStage] = field(default_factory=dict)
    parameters: SimulationParameters | None = None

    def pipeline_candidates(self) -> list[PipelineCandidate]:
        return [
            PipelineCandidate(candidate_id=cid, current_stage=stage)
            for cid, stage in sorted(self.candidates.items())
        ]

    def stage_counts(self) -> dict[CanonicalStage, int]:
        counts: dict[CanonicalStage, int] = {}
        for stage in self.candidates.values():
            counts[stage] = counts.get(stage, 0) + 1
        return counts

    def as_requisition(self) -> Requisition:
        return Requisition(
            req_id=self.req_id,
            title=self.title,
            recruiter_id=self.recruiter_id,
            hiring_manager_id=self.hiring_manager_id,
            status=RequisitionStatus.OPEN,
            opened_at=as_datetime(self.start_date),
        )

    def as_candidates(self) -> list[Candidate]:
        return [
            Candidate(
                candidate_id=cid,
                req_id=self.req_id,
                current_stage=stage.value,
                disposition=CandidateDisposition.ACTIVE,
            )
            for cid, stage in sorted(self.candidates.items())
        ]


@dataclass
class HistorySnapshot:
    events: tuple[Event, ...] = ()
    candidates: tuple[Candidate, ...] = ()
    requisitions: tuple[Requisition, ...] = ()
    users: tuple[User, ...] = ()


@dataclass
class ForecastingService:
    """Event-driven hiring forecasts per requisition.

    Requisition state is built from domain events. Forecasts are seeded from
    the requisition, its pipeline and the calibration knobs, so an unchanged
    pipeline yields the same forecast and is served from the cache.
    """

    bus: EventBus
    config: OracleConfig = field(default_factory=OracleConfig)
    forecaster: MonteCarloHiringForecaster | None = None
    cache: ResultCache[ForecastResult] | None = None
    auto_recompute: bool = False

    _reqs: dict[str, RequisitionState] = field(default_factory=dict)
    _history: HistorySnapshot = field(default_factory=HistorySnapshot)
    _executor: ThreadPoolExecutor | None = None

    def __post_init__(self) -> None:
        sim = self.config.simulation
        if self.forecaster is None:
            self.forecaster = MonteCarloHiringForecaster(
                workers=sim.workers,
                block_size=sim.block_size,
                no_hire_horizon_days=sim.no_hire_horizon_days,
                default_rate=sim.default_conversion_rate,
                default_duration_days=sim.default_duration_days,
                prior_weight=self.config.shrinkage.prior_weight,
                bootstrap_samples=sim.bootstrap_samples,
            )
        if self.cache is None:
            self.cache = ResultCache(max_entries=self.config.cache.max_entries)

        self.bus.subscribe(RequisitionOpened, self._on_requisition_opened)
        self.bus.subscribe(CandidateStageChanged, self._on_stage_changed)
        self.bus.subscribe(CandidateRemoved, self._on_candidate_removed)
        self.bus.subscribe(SimulationParametersFitted, self._on_parameters_fitted)
        self.bus.subscribe(HistoryLoaded, self._on_history_loaded)

    def _maybe_recompute(self, req_ids: Sequence[str]) -> None:
        if not self.auto_recompute:
            return
        for rid in set(req_ids):
            st = self._reqs.get(rid)
            if st is None or st.parameters is None:
                continue
            try:
                self.compute_forecast(rid)
            except Exception:
                logger.exception("Auto forecast recompute failed for requisition %s", rid)

    # --- Event handlers -----------------------------------------------------

    def _on_requisition_opened(self, e: RequisitionOpened) -> None:
        existing = self._reqs.get(e.req_id)
        self._reqs[e.req_id] = RequisitionState(
            req_id=e.req_id,
            recruiter_id=e.recruiter_id,
            hiring_manager_id=e.hiring_manager_id,
            start_date=e.start_date,
            title=e.title,
            candidates=dict(existing.candidates) if existing else {},
            parameters=existing.parameters if existing else None,
        )
        self._maybe_recompute([e.req_id])

    def _on_stage_changed(self, e: CandidateStageChanged) -> None:
        st = self._reqs.get(e.req_id)
        if st is None:
            logger.warning("Stage change for unknown requisition %s", e.req_id)
            return
        stage = normalize_stage(e.new_stage)
        if stage is None:
            logger.warning("Unknown stage %r for candidate %s", e.new_stage, e.candidate_id)
            return
        if stage in TERMINAL_STAGES and stage != CanonicalStage.HIRED:
            st.candidates.pop(e.candidate_id, None)
        else:
            st.candidates[e.candidate_id] = stage
        self._maybe_recompute([e.req_id])

    def _on_candidate_removed(self, e: CandidateRemoved) -> None:
        st = self._reqs.get(e.req_id)
        if st is None:
            return
        st.candidates.pop(e.candidate_id, None)
        self._maybe_recompute([e.req_id])

    def _on_parameters_fitted(self, e: SimulationParametersFitted) -> None:
        st = self._reqs.get(e.req_id)
        if st is None:
            logger.warning("Parameters fitted for unknown requisition %s", e.req_id)
            return
        st.parameters = parameters_from_payload(e.parameters)
        self._maybe_recompute([e.req_id])

    def _on_history_loaded(self, e: HistoryLoaded) -> None:
        self._history = HistorySnapshot(
            events=tuple(e.events),
            candidates=tuple(e.candidates),
            requisitions=tuple(e.requisitions),
            users=tuple(e.users),
        )
        logger.info(
            "Loaded history: %d events, %d candidates, %d requisitions",
            len(self._history.events),
            len(self._history.candidates),
            len(self._history.requisitions),
        )

    # --- Forecast API -------------------------------------------------------

    def requisition(self, req_id: str) -> RequisitionState:
        st = self._reqs.get(req_id)
        if st is None:
            raise KeyError(f"Unknown requisition: {req_id}")
        return st

    def default_knobs(self) -> KnobSettings:
        k = self.config.knobs
        return KnobSettings(prior_weight=k.prior_weight, min_n_threshold=k.min_n_threshold, iterations=k.iterations)

    def _fitted(self, st: RequisitionState) -> SimulationParameters:
        if st.parameters is None:
            raise InsufficientData(f"no fitted parameters for requisition {st.req_id}")
        return st.parameters

    def _engine(self) -> tuple[MonteCarloHiringForecaster, ResultCache[ForecastResult]]:
        if self.forecaster is None or self.cache is None:
            raise RuntimeError("ForecastingService has no forecaster or cache configured")
        return self.forecaster, self.cache

    def _seed(self, st: RequisitionState, pipeline_hash: str, knobs: KnobSettings, levers: dict) -> str:
        if self.config.knobs.common_random_numbers:
            levers = {}
        return derive_seed(st.req_id, pipeline_hash, knobs.as_payload(), levers)

    def compute_forecast(
        self,
        req_id: str,
        scenarios: Sequence[Scenario] | None = None,
        knobs: KnobSettings | None = None,
    ) -> dict[str, ForecastResult]:
        st = self.requisition(req_id)
        knobs = knobs or self.default_knobs()
        calibrated = LeverScenario(knobs=knobs).apply_parameters(self._fitted(st))
        candidates = st.pipeline_candidates()
        pipeline_hash = hash_pipeline_counts(st.stage_counts())
        forecaster, cache = self._engine()

        results: dict[str, ForecastResult] = {}
        for sc in list(scenarios or [IdentityScenario()]):
            levers = sc.levers.as_payload() if isinstance(sc, LeverScenario) else {}
            seed = self._seed(st, pipeline_hash, knobs, levers)
            key = generate_cache_key(req_id, pipeline_hash, seed, knobs.as_payload(), {"scenario": repr(sc)})
            res = cache.get(key)
            if res is None:
                res = forecaster.forecast(
                    candidates, sc.apply_parameters(calibrated), st.start_date, seed, knobs.iterations
                )
                cache.put(key, res)
            results[sc.scenario_id] = res

            self.bus.publish(
                ForecastComputed(
                    occurred_at=_now(),
                    req_id=req_id,
                    result=forecast_to_payload(res),
                    scenario_id=sc.scenario_id,
                )
            )

        return results

    def what_if(
        self,
        req_id: str,
        levers: LeverAdjustments,
        knobs: KnobSettings | None = None,
    ) -> dict[str, ForecastResult]:
        """Baseline and lever-adjusted forecasts for one requisition."""
        knobs = knobs or self.default_knobs()
        return self.compute_forecast(
            req_id,
            scenarios=[IdentityScenario(), LeverScenario(levers=levers, knobs=knobs, scenario_id="what_if")],
            knobs=knobs,
        )

    def compute_capacity_forecast(
        self,
        req_id: str,
        target_date: date | None = None,
        knobs: KnobSettings | None = None,
    ) -> CapacityAwareForecastResult:
        st = self.requisition(req_id)
        knobs = knobs or self.default_knobs()
        params = LeverScenario(knobs=knobs).apply_parameters(self._fitted(st))
        pipeline_hash = hash_pipeline_counts(st.stage_counts())
        seed = self._seed(st, pipeline_hash, knobs, {})
        cap = self.config.capacity

        history = self._history
        requisitions = [r for r in history.requisitions if r.req_id != req_id] + [st.as_requisition()]
        candidates = [c for c in history.candidates if c.req_id != req_id] + st.as_candidates()

        profile = infer_capacity(
            st.recruiter_id,
            st.hiring_manager_id,
            lookback_window(st.start_date, cap.lookback_weeks),
            history.events,
            candidates,
            requisitions,
            history.users,
            prior_weight=cap.min_weeks_for_capacity,
        )
        demand = compute_global_demand(
            req_id, st.recruiter_id, st.hiring_manager_id, candidates, requisitions, history.users
        )
        result = run_capacity_aware_forecast(
            st.pipeline_candidates(),
            demand,
            params,
            profile,
            st.start_date,
            seed,
            knobs.iterations,
            target_date,
            forecaster=self.forecaster,
            queue_factor=cap.queue_factor,
            max_delay_days=cap.max_queue_delay_days,
        )
        self.bus.publish(
            CapacityForecastComputed(
                occurred_at=_now(),
                req_id=req_id,
                result=capacity_forecast_to_payload(result),
            )
        )
        return result

    def submit_forecast(
        self,
        req_id: str,
        scenarios: Sequence[Scenario] | None = None,
        knobs: KnobSettings | None = None,
    ) -> "Future[dict[str, ForecastResult]]":
        """Run `compute_forecast` on a background thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="oracle-forecast")
        return self._executor.submit(self.compute_forecast, req_id, scenarios, knobs)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
