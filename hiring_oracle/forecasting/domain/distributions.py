from __future__ import annotations

import math
from dataclasses import dataclass
from typing import ClassVar, Union

import numpy as np

from hiring_oracle.common.errors import InvalidParameter


MAX_STAGE_DAYS = 3650
DEFAULT_DURATION_DAYS = 7.0


def _round_days(values: np.ndarray, floor: int = 1) -> np.ndarray:
    # Half-up rounding, not numpy's round-half-to-even.
    out = np.floor(np.asarray(values, dtype=float) + 0.5)
    return np.clip(out, floor, MAX_STAGE_DAYS).astype(np.int64)


@dataclass(frozen=True)
class ConstantDuration:
    """Fixed dwell time. Also the small-sample fallback."""

    kind: ClassVar[str] = "constant"

    days: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.days) or self.days < 1:
            raise InvalidParameter(f"constant duration must be >= 1 day, got {self.days}")

    def sample(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return np.full(n, int(_round_days(np.array([self.days]))[0]), dtype=np.int64)

    def median_days(self) -> float:
        return float(self.days)

    def shifted(self, delay_days: float) -> "ConstantDuration":
        return ConstantDuration(days=self.days + max(0.0, delay_days))


@dataclass(frozen=True)
class LogNormalDuration:
    """Log-normal dwell time; mu and sigma are already in log-days."""

    kind: ClassVar[str] = "lognormal"

    mu: float
    sigma: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.mu) and math.isfinite(self.sigma)):
            raise InvalidParameter("lognormal mu and sigma must be finite")
        if self.sigma < 0:
            raise InvalidParameter(f"lognormal sigma must be >= 0, got {self.sigma}")

    def sample(self, n: int, rng: np.random.Generator) -> np.ndarray:
        z = rng.standard_normal(n)
        with np.errstate(over="ignore"):
            raw = np.exp(self.mu + self.sigma * z)
        return _round_days(raw, floor=1)

    def median_days(self) -> float:
        return float(math.exp(self.mu))

    def shifted(self, delay_days: float) -> "LogNormalDuration":
        # Move the median by the delay and keep the spread.
        new_median = math.exp(self.mu) + max(0.0, delay_days)
        return LogNormalDuration(mu=math.log(max(1.0, new_median)), sigma=self.sigma)


@dataclass(frozen=True)
class DurationBucket:
    days: float
    weight: float


@dataclass(frozen=True)
class EmpiricalDuration:
    """Discrete distribution over bucketed dwell times."""

    kind: ClassVar[str] = "empirical"

    buckets: tuple[DurationBucket, ...]

    def __post_init__(self) -> None:
        if not self.buckets:
            raise InvalidParameter("empirical duration needs at least one bucket")
        if any(b.weight < 0 or b.days < 0 for b in self.buckets):
            raise InvalidParameter("empirical buckets need non-negative days and weights")
        if sum(b.weight for b in self.buckets) <= 0:
            raise InvalidParameter("empirical bucket weights must sum to a positive value")

    @property
    def _cumulative(self) -> np.ndarray:
        w = np.array([b.weight for b in self.buckets], dtype=float)
        return np.cumsum(w / w.sum())

    def sample(self, n: int, rng: np.random.Generator) -> np.ndarray:
        u = rng.random(n)
        idx = np.searchsorted(self._cumulative, u, side="right")
        idx = np.minimum(idx, len(self.buckets) - 1)
        days = np.array([b.days for b in self.buckets], dtype=float)
        return _round_days(days[idx], floor=0)

    def median_days(self) -> float:
        ordered = sorted(self.buckets, key=lambda b: b.days)
        total = sum(b.weight for b in ordered)
        acc = 0.0
        for bucket in ordered:
            acc += bucket.weight / total
            if acc >= 0.5:
                return float(bucket.days)
        return float(ordered[-1].days)

    def shifted(self, delay_days: float) -> "EmpiricalDuration":
        d = max(0.0, delay_days)
        return EmpiricalDuration(
            buckets=tuple(DurationBucket(days=b.days + d, weight=b.weight) for b in self.buckets)
        )


StageDurationDistribution = Union[ConstantDuration, LogNormalDuration, EmpiricalDuration]


def sample_days(distribution: StageDurationDistribution, rng: np.random.Generator) -> int:
    """Draw a single dwell time in days."""
    return int(distribution.sample(1, rng)[0])


def median_days(distribution: StageDurationDistribution | None) -> float:
    if distribution is None:
        return DEFAULT_DURATION_DAYS
    return distribution.median_days()


def scale_duration(distribution: StageDurationDistribution, multiplier: float) -> StageDurationDistribution:
    """Stretch or shrink a distribution by a positive multiplier."""
    if multiplier <= 0 or not math.isfinite(multiplier):
        raise InvalidParameter(f"duration multiplier must be positive, got {multiplier}")
    if isinstance(distribution, LogNormalDuration):
        return LogNormalDuration(mu=distribution.mu + math.log(multiplier), sigma=distribution.sigma)
    if isinstance(distribution, ConstantDuration):
        return ConstantDuration(days=max(1, math.floor(distribution.days * multiplier + 0.5)))
    return EmpiricalDuration(
        buckets=tuple(
            DurationBucket(days=b.days * multiplier, weight=b.weight) for b in distribution.buckets
        )
    )
