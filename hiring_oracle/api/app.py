from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from hiring_oracle.common.errors import InsufficientData, InvalidParameter
from hiring_oracle.forecasting.domain.models import SingleCandidateContext
from hiring_oracle.forecasting.priors.shrinkage import DEFAULT_PRIOR_WEIGHT, shrink
from hiring_oracle.forecasting.scenarios.scenarios import KnobSettings
from hiring_oracle.forecasting.services.forecasting_service import ForecastingService
from hiring_oracle.forecasting.simulator.monte_carlo import MonteCarloHiringForecaster
from hiring_oracle.io.payloads import (
    candidates_from_payload,
    capacity_forecast_to_payload,
    forecast_to_payload,
    parameters_from_payload,
    stage_from_payload,
)


class SimulateRequest(BaseModel):
    parameters: dict[str, Any] = Field(..., description="Rates, durations and sample sizes keyed by stage")
    start_date: date
    current_stage: str | None = Field(None, description="Simulate a single candidate from this stage")
    candidates: list[dict[str, Any]] = Field(default_factory=list, description="Whole pipeline to simulate")
    seed: str | None = None
    iterations: int = Field(1000, ge=1)
    target_date: date | None = None
    include_samples: bool = False


class ShrinkRequest(BaseModel):
    observed: float
    prior: float
    n: float
    prior_weight: float = DEFAULT_PRIOR_WEIGHT


class ShrinkResponse(BaseModel):
    value: float


def create_app(
    forecasting: ForecastingService | None = None,
    forecaster: MonteCarloHiringForecaster | None = None,
) -> FastAPI:
    app = FastAPI(title="Hiring Oracle")
    forecaster = forecaster or (forecasting.forecaster if forecasting is not None else None)
    forecaster = forecaster or MonteCarloHiringForecaster()

    @app.post("/simulate")
    def simulate(req: SimulateRequest) -> dict[str, Any]:
        try:
            params = parameters_from_payload(req.parameters)
            if req.current_stage is not None:
                context = SingleCandidateContext(
                    current_stage=stage_from_payload(req.current_stage),
                    start_date=req.start_date,
                    seed=req.seed,
                    iterations=req.iterations,
                )
                result = forecaster.forecast_candidate(context, params)
            else:
                result = forecaster.forecast(
                    candidates_from_payload(req.candidates), params, req.start_date, req.seed, req.iterations
                )
        except InvalidParameter as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        out = forecast_to_payload(result, include_samples=req.include_samples)
        if req.target_date is not None:
            out["probability_by_target"] = result.probability_by(req.target_date)
        return out

    @app.post("/shrink", response_model=ShrinkResponse)
    def shrink_endpoint(req: ShrinkRequest) -> ShrinkResponse:
        try:
            return ShrinkResponse(value=shrink(req.observed, req.prior, req.n, req.prior_weight))
        except InvalidParameter as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    if forecasting is not None:

        def _knobs(prior_weight: str | None, min_n: str | None, iterations: int | None) -> KnobSettings:
            base = forecasting.default_knobs()
            return KnobSettings(
                prior_weight=prior_weight or base.prior_weight,
                min_n_threshold=min_n or base.min_n_threshold,
                iterations=iterations or base.iterations,
            )

        @app.get("/forecast/{req_id}")
        def forecast(
            req_id: str,
            prior_weight: str | None = None,
            min_n_threshold: str | None = None,
            iterations: int | None = None,
        ) -> dict[str, Any]:
            try:
                results = forecasting.compute_forecast(
                    req_id, knobs=_knobs(prior_weight, min_n_threshold, iterations)
                )
            except KeyError as exc:
                raise HTTPException(status_code=404, detail=f"Unknown requisition: {req_id}") from exc
            except InsufficientData as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except InvalidParameter as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
            return {k: forecast_to_payload(v) for k, v in results.items()}

        @app.get("/forecast/{req_id}/capacity")
        def capacity_forecast(req_id: str, target_date: date | None = None) -> dict[str, Any]:
            try:
                result = forecasting.compute_capacity_forecast(req_id, target_date=target_date)
            except KeyError as exc:
                raise HTTPException(status_code=404, detail=f"Unknown requisition: {req_id}") from exc
            except InsufficientData as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except InvalidParameter as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
            return capacity_forecast_to_payload(result)

    return app
