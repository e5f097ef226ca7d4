from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Mapping, Protocol, Sequence

from hiring_oracle.common.errors import EmptySimulation, InvalidParameter
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.distributions import StageDurationDistribution


STAGE_ORDER: tuple[CanonicalStage, ...] = (
    CanonicalStage.SCREEN,
    CanonicalStage.HM_SCREEN,
    CanonicalStage.ONSITE,
    CanonicalStage.OFFER,
    CanonicalStage.HIRED,
)

CAPACITY_LIMITED_STAGES: tuple[CanonicalStage, ...] = STAGE_ORDER[:-1]

STAGE_LABELS: Mapping[CanonicalStage, str] = {
    CanonicalStage.SCREEN: "Screen",
    CanonicalStage.HM_SCREEN: "HM Interview",
    CanonicalStage.ONSITE: "Onsite",
    CanonicalStage.OFFER: "Offer",
    CanonicalStage.HIRED: "Hired",
}


class ConfidenceLevel(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    @staticmethod
    def worst(levels: Sequence["ConfidenceLevel"]) -> "ConfidenceLevel":
        if not levels:
            return ConfidenceLevel.LOW
        return min(levels, key=lambda c: c.rank)

    def cap(self, ceiling: "ConfidenceLevel") -> "ConfidenceLevel":
        return self if self.rank <= ceiling.rank else ceiling


_CONFIDENCE_RANK = {
    ConfidenceLevel.INSUFFICIENT: 0,
    ConfidenceLevel.LOW: 1,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.HIGH: 3,
}


@dataclass(frozen=True)
class ConfidenceReason:
    type: str  # "sample_size", "volatility", "missing_data", "shrinkage", "fallback", "success_rate"
    message: str
    impact: str  # "positive", "neutral", "negative"


def rate_key(stage: CanonicalStage) -> str:
    return f"{stage.value}_rate"


def duration_key(stage: CanonicalStage) -> str:
    return f"{stage.value}_duration"


@dataclass(frozen=True)
class SimulationParameters:
    """Fitted conversion rates, stage durations and the sample sizes behind them.

    Treated as an immutable snapshot: transformations return new instances.
    """

    conversion_rates: Mapping[CanonicalStage, float]
    stage_durations: Mapping[CanonicalStage, StageDurationDistribution]
    sample_sizes: Mapping[str, int] = field(default_factory=dict)
    observed_rates: Mapping[CanonicalStage, float] = field(default_factory=dict)
    prior_rates: Mapping[CanonicalStage, float] = field(default_factory=dict)
    fallback_stages: frozenset[CanonicalStage] = frozenset()

    def __post_init__(self) -> None:
        if not self.conversion_rates and not self.stage_durations:
            raise InvalidParameter("simulation parameters must configure at least one stage")
        for name, rates in (
            ("conversion", self.conversion_rates),
            ("observed", self.observed_rates),
            ("prior", self.prior_rates),
        ):
            for stage, rate in rates.items():
                if not (math.isfinite(rate) and 0.0 <= rate <= 1.0):
                    raise InvalidParameter(f"{name} rate for {stage} must be in [0, 1], got {rate}")
        for key, n in self.sample_sizes.items():
            if n < 0:
                raise InvalidParameter(f"sample size {key} must be >= 0, got {n}")

    def configures(self, stage: CanonicalStage) -> bool:
        return stage in self.conversion_rates or stage in self.stage_durations

    def sample_size(self, key: str) -> int:
        return int(self.sample_sizes.get(key, 0))

    def with_rates(self, rates: Mapping[CanonicalStage, float]) -> "SimulationParameters":
        return replace(self, conversion_rates=dict(rates))

    def with_durations(
        self,
        durations: Mapping[CanonicalStage, StageDurationDistribution],
        fallback_stages: frozenset[CanonicalStage] | None = None,
    ) -> "SimulationParameters":
        return replace(
            self,
            stage_durations=dict(durations),
            fallback_stages=self.fallback_stages if fallback_stages is None else fallback_stages,
        )


@dataclass(frozen=True)
class PipelineCandidate:
    candidate_id: str
    current_stage: CanonicalStage


@dataclass(frozen=True)
class SingleCandidateContext:
    current_stage: CanonicalStage
    start_date: date
    seed: str | None = None
    iterations: int = 1000


@dataclass(frozen=True)
class SimulationDebug:
    seed: str
    iterations: int
    successes: int
    bootstrap_samples: int = 0


@dataclass(frozen=True)
class PercentileInterval:
    """Bootstrap bounds, in days after start, around one percentile estimate."""

    percentile: float
    estimate_days: int
    lower_days: int
    upper_days: int


@dataclass(frozen=True)
class ForecastResult:
    """Outcome of one simulation call; simulated_days is sorted ascending."""

    start_date: date
    simulated_days: tuple[int, ...]
    p10_date: date
    p50_date: date
    p90_date: date
    confidence_level: ConfidenceLevel
    debug: SimulationDebug
    confidence_reasons: tuple[ConfidenceReason, ...] = ()
    confidence_intervals: tuple[PercentileInterval, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.simulated_days

    @property
    def hire_probability(self) -> float:
        if self.debug.iterations <= 0:
            return 0.0
        return len(self.simulated_days) / self.debug.iterations

    def percentile_days(self, q: float) -> int:
        if self.is_empty:
            raise EmptySimulation("no simulated hires to take a percentile of")
        return nearest_rank(self.simulated_days, q)

    def interval(self, q: float) -> PercentileInterval | None:
        for ci in self.confidence_intervals:
            if ci.percentile == q:
                return ci
        return None

    def probability_by(self, target: date) -> float | None:
        """Share of successful iterations that fill on or before `target`."""
        if self.is_empty:
            return None
        limit = (target - self.start_date).days
        return sum(1 for d in self.simulated_days if d <= limit) / len(self.simulated_days)


def nearest_rank_index(n: int, q: float) -> int:
    if not 0.0 <= q <= 1.0:
        raise InvalidParameter(f"percentile must be in [0, 1], got {q}")
    return min(n - 1, max(0, math.ceil(round(q * n, 9)) - 1))


def nearest_rank(sorted_values: Sequence[int], q: float) -> int:
    return int(sorted_values[nearest_rank_index(len(sorted_values), q)])


class PipelineForecaster(Protocol):
    def forecast(
        self,
        candidates: Sequence[PipelineCandidate],
        parameters: SimulationParameters,
        start_date: date,
        seed: str,
        iterations: int,
    ) -> ForecastResult:
        ...
