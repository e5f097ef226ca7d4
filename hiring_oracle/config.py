from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path)).resolve()


def _read_toml(path: Path) -> dict[str, Any]:
    """Read TOML into a dict, supporting Python 3.10+.

    Uses tomllib when available, falls back to tomli.
    """
    data = path.read_bytes()
    try:
        import tomllib  # type: ignore[attr-defined]

        return tomllib.loads(data.decode("utf-8"))
    except ModuleNotFoundError:
        import tomli  # type: ignore[import-not-found]

        return tomli.loads(data)


class SimulationConfig(BaseModel):
    iterations: int = Field(default=1000, ge=1, description="Monte Carlo iterations per forecast")
    block_size: int = Field(default=250, ge=1, description="Iterations per independently seeded block")
    workers: int = Field(default=1, ge=1, description="Threads used to run iteration blocks")
    no_hire_horizon_days: int = Field(
        default=365,
        ge=1,
        description="Days after start reported for every percentile when no iteration hires",
    )
    default_conversion_rate: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Rate used for a configured stage without a fitted rate",
    )
    default_duration_days: float = Field(
        default=7.0,
        ge=0.0,
        description="Constant duration used for a configured stage without a fitted duration",
    )
    bootstrap_samples: int = Field(
        default=200,
        ge=0,
        description="Resamples behind the p10/p50/p90 confidence intervals; 0 disables them",
    )


class ShrinkageConfig(BaseModel):
    prior_weight: float = Field(default=5.0, gt=0.0, description="Pseudo-count given to the prior")


class CapacityConfig(BaseModel):
    lookback_weeks: int = Field(default=12, ge=1)
    max_queue_delay_days: float = Field(default=21.0, ge=0.0)
    queue_factor: float = Field(default=1.0, gt=0.0, description="Scales demand/capacity into days of delay")
    min_weeks_for_capacity: int = Field(
        default=4,
        ge=1,
        description="Weeks of pseudo-history the cohort prior counts for when shrinking throughput",
    )


class CacheConfig(BaseModel):
    max_entries: int = Field(default=50, ge=1)


class KnobConfig(BaseModel):
    prior_weight: str = Field(default="medium", description="low | medium | high")
    min_n_threshold: str = Field(default="standard", description="relaxed | standard | strict")
    iterations: int = Field(default=1000)
    common_random_numbers: bool = Field(
        default=True,
        description="Leave levers out of the seed so what-if runs share draws with the baseline",
    )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    log_dir: str | None = Field(default=None, description="Directory for oracle.log; console only when unset")

    def resolved_log_dir(self) -> str | None:
        return str(_expand(self.log_dir)) if self.log_dir else None


class OracleConfig(BaseModel):
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    shrinkage: ShrinkageConfig = Field(default_factory=ShrinkageConfig)
    capacity: CapacityConfig = Field(default_factory=CapacityConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    knobs: KnobConfig = Field(default_factory=KnobConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path) -> "OracleConfig":
        raw = _read_toml(_expand(str(path)))
        return cls.model_validate(raw)


EXAMPLE_CONFIG_TOML = """\
# Hiring oracle configuration

[simulation]
iterations = 1000
block_size = 250
workers = 1
no_hire_horizon_days = 365
default_conversion_rate = 0.5
default_duration_days = 7.0
bootstrap_samples = 200

[shrinkage]
prior_weight = 5.0

[capacity]
lookback_weeks = 12
max_queue_delay_days = 21.0
queue_factor = 1.0
min_weeks_for_capacity = 4

[cache]
max_entries = 50

[knobs]
prior_weight = "medium"
min_n_threshold = "standard"
iterations = 1000
common_random_numbers = true

[logging]
level = "INFO"
# log_dir = "~/.hiring-oracle/logs"
"""
