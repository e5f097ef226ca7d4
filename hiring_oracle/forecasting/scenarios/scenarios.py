from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.distributions import (
    DEFAULT_DURATION_DAYS,
    ConstantDuration,
    LogNormalDuration,
    StageDurationDistribution,
    scale_duration,
)
from hiring_oracle.forecasting.domain.models import SimulationParameters, duration_key, rate_key
from hiring_oracle.forecasting.priors.shrinkage import shrink_rate


PRIOR_WEIGHT_VALUES: Mapping[str, float] = {"low": 2.0, "medium": 5.0, "high": 10.0}
MIN_N_VALUES: Mapping[str, int] = {"relaxed": 3, "standard": 5, "strict": 10}

ITERATIONS_MIN = 1000
ITERATIONS_MAX = 10000
ITERATIONS_DEFAULT = 1000
ITERATIONS_PERFORMANCE_WARNING = 5000

MIN_ADJUSTED_RATE = 0.05
MAX_ADJUSTED_RATE = 0.99


@dataclass(frozen=True)
class KnobSettings:
    """User-facing calibration presets for a forecast."""

    prior_weight: str = "medium"
    min_n_threshold: str = "standard"
    iterations: int = ITERATIONS_DEFAULT

    def __post_init__(self) -> None:
        if self.prior_weight not in PRIOR_WEIGHT_VALUES:
            raise InvalidParameter(f"unknown prior weight preset: {self.prior_weight!r}")
        if self.min_n_threshold not in MIN_N_VALUES:
            raise InvalidParameter(f"unknown min-n preset: {self.min_n_threshold!r}")
        if not ITERATIONS_MIN <= self.iterations <= ITERATIONS_MAX:
            raise InvalidParameter(
                f"iterations must be within [{ITERATIONS_MIN}, {ITERATIONS_MAX}], got {self.iterations}"
            )

    @property
    def prior_weight_value(self) -> float:
        return PRIOR_WEIGHT_VALUES[self.prior_weight]

    @property
    def min_n_value(self) -> int:
        return MIN_N_VALUES[self.min_n_threshold]

    @property
    def performance_warning(self) -> bool:
        return self.iterations > ITERATIONS_PERFORMANCE_WARNING

    @property
    def is_default(self) -> bool:
        return self == DEFAULT_KNOB_SETTINGS

    def as_payload(self) -> dict[str, Any]:
        return {
            "prior_weight": self.prior_weight,
            "min_n_threshold": self.min_n_threshold,
            "iterations": self.iterations,
        }


DEFAULT_KNOB_SETTINGS = KnobSettings()


@dataclass(frozen=True)
class LeverAdjustments:
    """What-if levers: conversion deltas in percentage points, duration changes in percent."""

    conversion_deltas: Mapping[CanonicalStage, float] = field(default_factory=dict)
    duration_pct: Mapping[CanonicalStage, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for stage, pct in self.duration_pct.items():
            if not math.isfinite(pct) or pct <= -100:
                raise InvalidParameter(f"duration change for {stage} must be > -100%, got {pct}")

    @property
    def is_neutral(self) -> bool:
        return not any(self.conversion_deltas.values()) and not any(self.duration_pct.values())

    def as_payload(self) -> dict[str, Any]:
        return {
            "conversion": {s.value: v for s, v in sorted(self.conversion_deltas.items()) if v},
            "duration": {s.value: v for s, v in sorted(self.duration_pct.items()) if v},
        }


class Scenario(Protocol):
    scenario_id: str

    def apply_parameters(self, params: SimulationParameters) -> SimulationParameters:
        ...


@dataclass(frozen=True)
class IdentityScenario:
    scenario_id: str = "baseline"

    def apply_parameters(self, params: SimulationParameters) -> SimulationParameters:
        return params


@dataclass(frozen=True)
class ShrinkageScenario:
    """Re-shrink observed rates toward their priors with a different prior weight."""

    prior_weight: float
    scenario_id: str = "shrinkage"

    def rate_for(self, params: SimulationParameters, stage: CanonicalStage) -> float:
        obs = params.observed_rates.get(stage, params.conversion_rates.get(stage, 0.5))
        prior = params.prior_rates.get(stage, 0.5)
        return shrink_rate(obs, prior, params.sample_size(rate_key(stage)), self.prior_weight)

    def apply_parameters(self, params: SimulationParameters) -> SimulationParameters:
        return params.with_rates({stage: self.rate_for(params, stage) for stage in params.conversion_rates})


@dataclass(frozen=True)
class LeverScenario:
    """Apply what-if levers on top of knob-calibrated parameters."""

    levers: LeverAdjustments = field(default_factory=LeverAdjustments)
    knobs: KnobSettings = DEFAULT_KNOB_SETTINGS
    scenario_id: str = "levers"

    def apply_parameters(self, params: SimulationParameters) -> SimulationParameters:
        reshrink = self.knobs.prior_weight != DEFAULT_KNOB_SETTINGS.prior_weight
        shrinker = ShrinkageScenario(prior_weight=self.knobs.prior_weight_value)

        rates: dict[CanonicalStage, float] = {}
        for stage, rate in params.conversion_rates.items():
            base = shrinker.rate_for(params, stage) if reshrink else rate
            delta = self.levers.conversion_deltas.get(stage, 0.0)
            rates[stage] = min(MAX_ADJUSTED_RATE, max(MIN_ADJUSTED_RATE, base + delta / 100.0))

        min_n = self.knobs.min_n_value
        durations: dict[CanonicalStage, StageDurationDistribution] = {}
        fallback = set(params.fallback_stages)
        for stage, dist in params.stage_durations.items():
            multiplier = 1.0 + self.levers.duration_pct.get(stage, 0.0) / 100.0
            n = params.sample_size(duration_key(stage)) or params.sample_size(rate_key(stage))
            if isinstance(dist, LogNormalDuration) and n < min_n:
                durations[stage] = ConstantDuration(
                    days=max(1, math.floor(DEFAULT_DURATION_DAYS * multiplier + 0.5))
                )
                fallback.add(stage)
            elif multiplier != 1.0:
                durations[stage] = scale_duration(dist, multiplier)
            else:
                durations[stage] = dist

        return params.with_rates(rates).with_durations(durations, fallback_stages=frozenset(fallback))
