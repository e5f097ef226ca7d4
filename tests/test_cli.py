from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

import pytest
from typer.testing import CliRunner

from hiring_oracle.cli import app


runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_shrink_command() -> None:
    result = runner.invoke(app, ["shrink", "0.9", "0.5", "2", "--prior-weight", "20"])
    assert result.exit_code == 0
    assert result.stdout.strip().startswith("0.536")


def test_shrink_rejects_negative_sample_size() -> None:
    result = runner.invoke(app, ["shrink", "0.9", "0.5", "--", "-1"])
    assert result.exit_code != 0


def test_init_config_refuses_to_overwrite(tmp_path: Path) -> None:
    out = tmp_path / "oracle_config.toml"
    first = runner.invoke(app, ["init-config", str(out)])
    assert first.exit_code == 0
    assert "[simulation]" in out.read_text(encoding="utf-8")

    second = runner.invoke(app, ["init-config", str(out)])
    assert second.exit_code == 2


def test_simulate_command(tmp_path: Path) -> None:
    params = tmp_path / "params.json"
    params.write_text(
        json.dumps(
            {
                "conversion_rates": {"SCREEN": 1.0, "OFFER": 1.0},
                "stage_durations": {
                    "SCREEN": {"type": "constant", "days": 4},
                    "OFFER": {"type": "constant", "days": 2},
                },
            }
        ),
        encoding="utf-8",
    )
    result = runner.invoke(
        app,
        ["simulate", str(params), "--start-date", "2025-01-06", "--stage", "SCREEN", "--seed", "cli"],
    )
    assert result.exit_code == 0, result.output
    body = json.loads(result.stdout)
    assert body["p50_date"] == "2025-01-12"
    assert body["hire_probability"] == 1.0


def test_simulate_needs_exactly_one_source(tmp_path: Path) -> None:
    params = tmp_path / "params.json"
    params.write_text(json.dumps({"conversion_rates": {"SCREEN": 0.5}}), encoding="utf-8")
    result = runner.invoke(app, ["simulate", str(params), "--start-date", "2025-01-06"])
    assert result.exit_code == 2


def test_demo_runs_end_to_end() -> None:
    result = runner.invoke(app, ["demo", "--seed", "7", "--json"])
    assert result.exit_code == 0, result.output
    assert '"capacity"' in result.output
