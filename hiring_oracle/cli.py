from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.common.logging_config import configure_logging
from hiring_oracle.config import EXAMPLE_CONFIG_TOML, OracleConfig
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.models import ForecastResult, SingleCandidateContext
from hiring_oracle.forecasting.priors.shrinkage import shrink
from hiring_oracle.forecasting.scenarios.scenarios import LeverAdjustments
from hiring_oracle.forecasting.services.forecasting_service import ForecastingService
from hiring_oracle.forecasting.simulator.monte_carlo import MonteCarloHiringForecaster
from hiring_oracle.integration.event_bus import InMemoryEventBus
from hiring_oracle.integration.events import (
    CandidateStageChanged,
    HistoryLoaded,
    RequisitionOpened,
    SimulationParametersFitted,
)
from hiring_oracle.io.payloads import (
    candidates_from_payload,
    capacity_forecast_to_payload,
    forecast_to_payload,
    parameters_from_payload,
    parameters_to_payload,
    stage_from_payload,
)
from hiring_oracle.io.synthetic import SyntheticConfig, demo_parameters, generate_synthetic_history


app = typer.Typer(add_completion=False)
console = Console()


def _load_config(path: Optional[str]) -> OracleConfig:
    if path is None:
        return OracleConfig()
    return OracleConfig.load(Path(path))


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Cannot read JSON from {path}: {exc}") from exc


def _forecast_table(title: str, results: dict[str, ForecastResult]) -> Table:
    table = Table(title=title)
    table.add_column("scenario")
    table.add_column("P10")
    table.add_column("P50")
    table.add_column("P90")
    table.add_column("P(hire)", justify="right")
    table.add_column("confidence")
    for sid, res in results.items():
        table.add_row(
            sid,
            res.p10_date.isoformat(),
            res.p50_date.isoformat(),
            res.p90_date.isoformat(),
            f"{res.hire_probability:.3f}",
            res.confidence_level.value,
        )
    return table


@app.command()
def demo(
    seed: int = typer.Option(7, help="Random seed for synthetic history"),
    config: Optional[str] = typer.Option(None, help="Path to an oracle config TOML"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables"),
) -> None:
    """Run an end-to-end demo on synthetic history: forecast, what-if and capacity."""
    cfg = _load_config(config)
    configure_logging(cfg.logging.level, cfg.logging.resolved_log_dir())

    history = generate_synthetic_history(SyntheticConfig(seed=seed))
    typer.echo(
        f"Generated {len(history.requisitions)} requisitions, {len(history.candidates)} candidates "
        f"and {len(history.events)} events"
    )

    bus = InMemoryEventBus()
    service = ForecastingService(bus=bus, config=cfg)
    now = datetime.now(tz=timezone.utc)
    params = parameters_to_payload(demo_parameters())

    bus.publish(
        HistoryLoaded(
            occurred_at=now,
            events=tuple(history.events),
            candidates=tuple(history.candidates),
            requisitions=tuple(history.requisitions),
            users=tuple(history.users),
        )
    )
    open_reqs = [r for r in history.requisitions if r.is_open]
    if not open_reqs:
        raise typer.BadParameter("synthetic history has no open requisitions; try another seed")
    req = open_reqs[0]

    bus.publish(
        RequisitionOpened(
            occurred_at=now,
            req_id=req.req_id,
            recruiter_id=req.recruiter_id,
            hiring_manager_id=req.hiring_manager_id,
            start_date=now.date(),
            title=req.title,
        )
    )
    for c in history.candidates:
        if c.req_id == req.req_id and c.is_active:
            bus.publish(
                CandidateStageChanged(
                    occurred_at=now,
                    req_id=req.req_id,
                    candidate_id=c.candidate_id,
                    new_stage=c.current_stage,
                )
            )
    bus.publish(SimulationParametersFitted(occurred_at=now, req_id=req.req_id, parameters=params))

    levers = LeverAdjustments(
        conversion_deltas={CanonicalStage.ONSITE: 10.0},
        duration_pct={CanonicalStage.HM_SCREEN: -25.0},
    )
    results = service.what_if(req.req_id, levers)
    capacity = service.compute_capacity_forecast(req.req_id)

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "req_id": req.req_id,
                    "forecasts": {k: forecast_to_payload(v) for k, v in results.items()},
                    "capacity": capacity_forecast_to_payload(capacity),
                },
                indent=2,
            )
        )
        return

    console.print(_forecast_table(f"Forecast for {req.req_id}", results))
    console.print(
        _forecast_table(
            "Capacity-aware",
            {"pipeline_only": capacity.pipeline_only, "capacity_aware": capacity.capacity_aware},
        )
    )
    console.print(
        f"P50 delta: {capacity.p50_delta_days} days "
        f"(constrained={capacity.capacity_constrained}, confidence={capacity.capacity_confidence.value})"
    )
    for d in capacity.capacity_bottlenecks:
        console.print(f"- {d.stage_name}: +{d.queue_delay_days:.1f} days ({d.bottleneck_owner_type})")
    for r in capacity.recommendations:
        console.print(f"* {r.description}")


@app.command()
def simulate(
    params: str = typer.Argument(..., help="JSON file with rates, durations and sample sizes"),
    start_date: str = typer.Option(..., help="ISO date the forecast starts from"),
    stage: Optional[str] = typer.Option(None, help="Simulate one candidate from this stage"),
    candidates: Optional[str] = typer.Option(None, help="JSON file listing candidate_id/current_stage rows"),
    seed: Optional[str] = typer.Option(None, help="Seed string; random when omitted"),
    iterations: int = typer.Option(1000, help="Monte Carlo iterations"),
    target_date: Optional[str] = typer.Option(None, help="Report the chance of filling by this ISO date"),
    config: Optional[str] = typer.Option(None, help="Path to an oracle config TOML"),
) -> None:
    """Simulate time-to-fill for one candidate or a whole pipeline."""
    cfg = _load_config(config)
    configure_logging(cfg.logging.level, cfg.logging.resolved_log_dir())
    sim = cfg.simulation
    forecaster = MonteCarloHiringForecaster(
        workers=sim.workers,
        block_size=sim.block_size,
        no_hire_horizon_days=sim.no_hire_horizon_days,
        default_rate=sim.default_conversion_rate,
        default_duration_days=sim.default_duration_days,
        prior_weight=cfg.shrinkage.prior_weight,
        bootstrap_samples=sim.bootstrap_samples,
    )

    if (stage is None) == (candidates is None):
        raise typer.BadParameter("Pass exactly one of --stage or --candidates")
    try:
        start = date.fromisoformat(start_date)
        target = date.fromisoformat(target_date) if target_date else None
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        parameters = parameters_from_payload(_read_json(params))
        if stage is not None:
            context = SingleCandidateContext(
                current_stage=stage_from_payload(stage),
                start_date=start,
                seed=seed,
                iterations=iterations,
            )
            result = forecaster.forecast_candidate(context, parameters)
        else:
            rows = _read_json(candidates)  # type: ignore[arg-type]
            result = forecaster.forecast(candidates_from_payload(rows), parameters, start, seed, iterations)
    except InvalidParameter as exc:
        raise typer.BadParameter(str(exc)) from exc

    out = forecast_to_payload(result)
    if target is not None:
        out["probability_by_target"] = result.probability_by(target)
    typer.echo(json.dumps(out, indent=2))


@app.command(name="shrink")
def shrink_cmd(
    observed: float = typer.Argument(..., help="Observed value, e.g. a conversion rate"),
    prior: float = typer.Argument(..., help="Prior value to shrink toward"),
    n: float = typer.Argument(..., help="Observed sample size"),
    prior_weight: float = typer.Option(5.0, help="Pseudo-count given to the prior"),
) -> None:
    """Print the sample-size-weighted blend of an observed value and its prior."""
    try:
        value = shrink(observed, prior, n, prior_weight)
    except InvalidParameter as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"{value:.6f}")


@app.command()
def init_config(
    path: str = typer.Argument(
        "oracle_config.toml",
        help="Where to write the oracle configuration TOML",
    ),
) -> None:
    """Write an example oracle_config.toml."""
    out = Path(path).expanduser()
    if out.exists():
        raise typer.BadParameter(f"Refusing to overwrite existing file: {out}")

    out.write_text(EXAMPLE_CONFIG_TOML, encoding="utf-8")
    logging.getLogger(__name__).debug("Wrote example config to %s", out)
    typer.echo(f"Wrote {out} (edit it, then run: hiring-oracle demo --config {out})")
