from __future__ import annotations

from typing import Iterable, Sequence

from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.models import (
    ConfidenceLevel,
    ConfidenceReason,
    SimulationParameters,
    STAGE_LABELS,
    nearest_rank,
    rate_key,
)


HIGH_SAMPLE_SIZE = 15
MEDIUM_SAMPLE_SIZE = 5
MIN_SUCCESSES = 30
LOW_SUCCESS_RATE = 0.5
MEDIUM_SUCCESS_RATE = 0.8
HIGH_DISPERSION = 3.0
MEDIUM_DISPERSION = 1.5


def assess_confidence(
    params: SimulationParameters,
    stages: Iterable[CanonicalStage],
    sorted_days: Sequence[int],
    iterations: int,
    prior_weight: float = 5.0,
) -> tuple[ConfidenceLevel, tuple[ConfidenceReason, ...]]:
    """Grade a finished simulation HIGH, MEDIUM or LOW and explain why.

    `stages` are the stages the simulated candidates actually walk through;
    only their sample sizes count toward the grade.
    """
    reasons: list[ConfidenceReason] = []
    stages = list(dict.fromkeys(stages))

    sizes = [params.sample_size(rate_key(s)) for s in stages if rate_key(s) in params.sample_sizes]
    if not sizes:
        level = ConfidenceLevel.LOW
        reasons.append(
            ConfidenceReason("missing_data", "No historical sample sizes for the simulated stages", "negative")
        )
    else:
        min_n = min(sizes)
        if min_n >= HIGH_SAMPLE_SIZE:
            level = ConfidenceLevel.HIGH
            reasons.append(ConfidenceReason("sample_size", f"At least {min_n} observations per stage", "positive"))
        elif min_n >= MEDIUM_SAMPLE_SIZE:
            level = ConfidenceLevel.MEDIUM
            reasons.append(ConfidenceReason("sample_size", f"Smallest stage sample is {min_n}", "neutral"))
        else:
            level = ConfidenceLevel.LOW
            reasons.append(ConfidenceReason("sample_size", f"Smallest stage sample is only {min_n}", "negative"))

    successes = len(sorted_days)
    success_rate = successes / iterations if iterations > 0 else 0.0
    if success_rate < LOW_SUCCESS_RATE:
        level = ConfidenceLevel.LOW
        reasons.append(
            ConfidenceReason("success_rate", f"Only {success_rate:.0%} of simulations ended in a hire", "negative")
        )
    elif success_rate < MEDIUM_SUCCESS_RATE:
        level = level.cap(ConfidenceLevel.MEDIUM)
        reasons.append(
            ConfidenceReason("success_rate", f"{success_rate:.0%} of simulations ended in a hire", "neutral")
        )

    if successes < MIN_SUCCESSES:
        level = ConfidenceLevel.LOW
        reasons.append(
            ConfidenceReason("sample_size", f"Only {successes} successful simulations", "negative")
        )

    if successes:
        p10 = nearest_rank(sorted_days, 0.1)
        p50 = nearest_rank(sorted_days, 0.5)
        p90 = nearest_rank(sorted_days, 0.9)
        dispersion = (p90 - p10) / max(p50, 1)
        if dispersion > HIGH_DISPERSION:
            level = ConfidenceLevel.LOW
            reasons.append(ConfidenceReason("volatility", "Very wide spread between P10 and P90", "negative"))
        elif dispersion > MEDIUM_DISPERSION:
            level = level.cap(ConfidenceLevel.MEDIUM)
            reasons.append(ConfidenceReason("volatility", "Wide spread between P10 and P90", "neutral"))

    fallback = [s for s in stages if s in params.fallback_stages]
    if fallback:
        level = level.cap(ConfidenceLevel.MEDIUM)
        names = ", ".join(STAGE_LABELS.get(s, s.value) for s in fallback)
        reasons.append(ConfidenceReason("fallback", f"Fallback durations used for {names}", "negative"))

    shrunk = [
        s for s in stages
        if rate_key(s) in params.sample_sizes and params.sample_size(rate_key(s)) < prior_weight
    ]
    if shrunk:
        names = ", ".join(STAGE_LABELS.get(s, s.value) for s in shrunk)
        reasons.append(
            ConfidenceReason("shrinkage", f"Rates for {names} lean heavily on priors", "neutral")
        )

    return level, tuple(reasons)
