from __future__ import annotations

from typing import Any, Mapping, Sequence

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.common.time_utils import add_days
from hiring_oracle.domain.entities import CanonicalStage, normalize_stage
from hiring_oracle.forecasting.capacity.models import StageQueueDiagnostic
from hiring_oracle.forecasting.domain.distributions import (
    ConstantDuration,
    DurationBucket,
    EmpiricalDuration,
    LogNormalDuration,
    StageDurationDistribution,
)
from hiring_oracle.forecasting.domain.models import (
    ConfidenceReason,
    ForecastResult,
    PipelineCandidate,
    SimulationParameters,
)
from hiring_oracle.forecasting.services.capacity_forecast import CapacityAwareForecastResult


def stage_from_payload(raw: Any) -> CanonicalStage:
    stage = normalize_stage(raw)
    if stage is None:
        raise InvalidParameter(f"unknown stage: {raw!r}")
    return stage


def _stage_map(raw: Mapping[str, Any] | None) -> dict[CanonicalStage, Any]:
    return {stage_from_payload(k): v for k, v in (raw or {}).items()}


def duration_from_payload(payload: Mapping[str, Any]) -> StageDurationDistribution:
    """Decode a duration tagged by "type": constant, lognormal or empirical."""
    kind = str(payload.get("type", "")).lower()
    try:
        if kind == "constant":
            return ConstantDuration(days=float(payload["days"]))
        if kind == "lognormal":
            return LogNormalDuration(mu=float(payload["mu"]), sigma=float(payload["sigma"]))
        if kind == "empirical":
            buckets = tuple(
                DurationBucket(days=float(b["days"]), weight=float(b.get("weight", b.get("probability", 0.0))))
                for b in payload["buckets"]
            )
            return EmpiricalDuration(buckets=buckets)
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidParameter(f"malformed {kind} duration payload: {exc}") from exc
    raise InvalidParameter(f"unknown duration type: {kind!r}")


def duration_to_payload(dist: StageDurationDistribution) -> dict[str, Any]:
    if isinstance(dist, ConstantDuration):
        return {"type": dist.kind, "days": dist.days}
    if isinstance(dist, LogNormalDuration):
        return {"type": dist.kind, "mu": dist.mu, "sigma": dist.sigma}
    return {
        "type": dist.kind,
        "buckets": [{"days": b.days, "weight": b.weight} for b in dist.buckets],
    }


def parameters_from_payload(payload: Mapping[str, Any]) -> SimulationParameters:
    durations = {
        stage: duration_from_payload(raw) for stage, raw in _stage_map(payload.get("stage_durations")).items()
    }
    return SimulationParameters(
        conversion_rates={s: float(v) for s, v in _stage_map(payload.get("conversion_rates")).items()},
        stage_durations=durations,
        sample_sizes={str(k): int(v) for k, v in (payload.get("sample_sizes") or {}).items()},
        observed_rates={s: float(v) for s, v in _stage_map(payload.get("observed_rates")).items()},
        prior_rates={s: float(v) for s, v in _stage_map(payload.get("prior_rates")).items()},
    )


def parameters_to_payload(params: SimulationParameters) -> dict[str, Any]:
    return {
        "conversion_rates": {s.value: r for s, r in params.conversion_rates.items()},
        "stage_durations": {s.value: duration_to_payload(d) for s, d in params.stage_durations.items()},
        "sample_sizes": dict(params.sample_sizes),
        "observed_rates": {s.value: r for s, r in params.observed_rates.items()},
        "prior_rates": {s.value: r for s, r in params.prior_rates.items()},
    }


def candidates_from_payload(rows: Sequence[Mapping[str, Any]]) -> list[PipelineCandidate]:
    return [
        PipelineCandidate(
            candidate_id=str(row["candidate_id"]),
            current_stage=stage_from_payload(row["current_stage"]),
        )
        for row in rows
    ]


def _reasons(reasons: Sequence[ConfidenceReason]) -> list[dict[str, str]]:
    return [{"type": r.type, "message": r.message, "impact": r.impact} for r in reasons]


def forecast_to_payload(result: ForecastResult, include_samples: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "start_date": result.start_date.isoformat(),
        "p10_date": result.p10_date.isoformat(),
        "p50_date": result.p50_date.isoformat(),
        "p90_date": result.p90_date.isoformat(),
        "hire_probability": result.hire_probability,
        "confidence_level": result.confidence_level.value,
        "confidence_reasons": _reasons(result.confidence_reasons),
        "confidence_intervals": {
            f"p{round(ci.percentile * 100)}": {
                "lower_date": add_days(result.start_date, ci.lower_days).isoformat(),
                "upper_date": add_days(result.start_date, ci.upper_days).isoformat(),
                "lower_days": ci.lower_days,
                "upper_days": ci.upper_days,
            }
            for ci in result.confidence_intervals
        },
        "debug": {
            "seed": result.debug.seed,
            "iterations": result.debug.iterations,
            "successes": result.debug.successes,
            "bootstrap_samples": result.debug.bootstrap_samples,
        },
    }
    if include_samples:
        out["simulated_days"] = list(result.simulated_days)
    return out


def _diagnostic(d: StageQueueDiagnostic) -> dict[str, Any]:
    return {
        "stage": d.stage.value,
        "stage_name": d.stage_name,
        "demand": d.demand,
        "service_rate": d.service_rate,
        "queue_delay_days": d.queue_delay_days,
        "owner": d.bottleneck_owner_type,
        "confidence": d.confidence.value,
    }


def capacity_forecast_to_payload(result: CapacityAwareForecastResult) -> dict[str, Any]:
    return {
        "pipeline_only": forecast_to_payload(result.pipeline_only),
        "capacity_aware": forecast_to_payload(result.capacity_aware),
        "p50_delta_days": result.p50_delta_days,
        "capacity_constrained": result.capacity_constrained,
        "capacity_confidence": result.capacity_confidence.value,
        "capacity_reasons": _reasons(result.capacity_reasons),
        "bottlenecks": [_diagnostic(d) for d in result.capacity_bottlenecks],
        "total_queue_delay_days": result.penalty.total_queue_delay_days if result.penalty else 0.0,
        "pipeline_probability_by_target": result.pipeline_probability_by_target,
        "capacity_probability_by_target": result.capacity_probability_by_target,
        "recommendations": [
            {
                "type": r.type,
                "description": r.description,
                "estimated_impact_days": r.estimated_impact_days,
            }
            for r in result.recommendations
        ],
        "debug": {
            "seed": result.debug.seed,
            "iterations": result.debug.iterations,
            "queue_model_version": result.debug.queue_model_version,
        },
    }
