from __future__ import annotations

import logging
import math
from typing import Mapping

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.distributions import (
    DEFAULT_DURATION_DAYS,
    ConstantDuration,
    StageDurationDistribution,
)
from hiring_oracle.forecasting.domain.models import SimulationParameters, duration_key, rate_key

logger = logging.getLogger(__name__)


DEFAULT_PRIOR_WEIGHT = 5.0


def shrink(observed: float, prior: float, n: float, prior_weight: float = DEFAULT_PRIOR_WEIGHT) -> float:
    """Blend an observed value toward a prior, weighted by sample size.

    shrunk = (n * observed + m * prior) / (n + m), where m is the prior's
    virtual sample size. n=0 returns the prior and m=0 returns the observation.
    """
    for name, value in (("observed", observed), ("prior", prior), ("n", n), ("prior_weight", prior_weight)):
        if not math.isfinite(value):
            raise InvalidParameter(f"{name} must be finite, got {value}")
    if n < 0 or prior_weight < 0:
        raise InvalidParameter(f"n and prior_weight must be >= 0, got n={n}, m={prior_weight}")
    if n == 0 and prior_weight == 0:
        raise InvalidParameter("shrinkage is undefined when both n and prior_weight are 0")
    return (n * observed + prior_weight * prior) / (n + prior_weight)


def shrink_rate(
    observed: float,
    prior: float,
    n: float,
    prior_weight: float = DEFAULT_PRIOR_WEIGHT,
) -> float:
    """Shrink a conversion rate; both rates must be probabilities."""
    for name, value in (("observed", observed), ("prior", prior)):
        if not (math.isfinite(value) and 0.0 <= value <= 1.0):
            raise InvalidParameter(f"{name} rate must be in [0, 1], got {value}")
    return shrink(observed, prior, n, prior_weight)


def shrink_rates(
    observed: Mapping[CanonicalStage, float],
    prior: Mapping[CanonicalStage, float],
    sample_sizes: Mapping[str, int],
    prior_weight: float = DEFAULT_PRIOR_WEIGHT,
    default_prior: float = 0.5,
) -> dict[CanonicalStage, float]:
    """Shrink every observed stage rate toward its prior."""
    out: dict[CanonicalStage, float] = {}
    for stage, obs in observed.items():
        n = int(sample_sizes.get(rate_key(stage), 0))
        out[stage] = shrink_rate(obs, prior.get(stage, default_prior), n, prior_weight)
    return out


def apply_min_n_fallback(
    params: SimulationParameters,
    min_n: int,
    fallback_days: float = DEFAULT_DURATION_DAYS,
) -> SimulationParameters:
    """Replace fitted durations backed by fewer than `min_n` samples with a constant.

    The duration sample size is preferred; the rate sample size is used when a
    stage has no duration count. Constant distributions are left as they are.
    """
    if min_n < 0:
        raise InvalidParameter(f"min_n must be >= 0, got {min_n}")

    durations: dict[CanonicalStage, StageDurationDistribution] = dict(params.stage_durations)
    fallback = set(params.fallback_stages)
    for stage, dist in params.stage_durations.items():
        if isinstance(dist, ConstantDuration):
            continue
        n = params.sample_size(duration_key(stage)) or params.sample_size(rate_key(stage))
        if n < min_n:
            logger.debug("Duration for %s backed by n=%d < %d; using %.1f-day fallback", stage.value, n, min_n, fallback_days)
            durations[stage] = ConstantDuration(days=fallback_days)
            fallback.add(stage)
    return params.with_durations(durations, fallback_stages=frozenset(fallback))
