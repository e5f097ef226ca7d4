from __future__ import annotations

import math

import pytest

from hiring_oracle.common.errors import InvalidParameter
from hiring_oracle.domain.entities import CanonicalStage
from hiring_oracle.forecasting.domain.distributions import ConstantDuration, LogNormalDuration
from hiring_oracle.forecasting.domain.models import SimulationParameters, duration_key, rate_key
from hiring_oracle.forecasting.scenarios.scenarios import (
    IdentityScenario,
    KnobSettings,
    LeverAdjustments,
    LeverScenario,
    ShrinkageScenario,
)


PARAMS = SimulationParameters(
    conversion_rates={CanonicalStage.SCREEN: 0.6, CanonicalStage.ONSITE: 0.96},
    stage_durations={
        CanonicalStage.SCREEN: LogNormalDuration(mu=2.0, sigma=0.4),
        CanonicalStage.ONSITE: ConstantDuration(days=10),
        CanonicalStage.OFFER: LogNormalDuration(mu=1.0, sigma=0.2),
    },
    sample_sizes={
        rate_key(CanonicalStage.SCREEN): 20,
        duration_key(CanonicalStage.SCREEN): 20,
        rate_key(CanonicalStage.ONSITE): 10,
        duration_key(CanonicalStage.OFFER): 2,
    },
    observed_rates={CanonicalStage.SCREEN: 0.8, CanonicalStage.ONSITE: 1.0},
    prior_rates={CanonicalStage.SCREEN: 0.5, CanonicalStage.ONSITE: 0.5},
)


def test_knob_validation() -> None:
    assert KnobSettings().is_default
    assert KnobSettings(iterations=6000).performance_warning
    with pytest.raises(InvalidParameter):
        KnobSettings(prior_weight="huge")
    with pytest.raises(InvalidParameter):
        KnobSettings(min_n_threshold="loose")
    with pytest.raises(InvalidParameter):
        KnobSettings(iterations=500)


def test_identity_scenario_is_noop() -> None:
    assert IdentityScenario().apply_parameters(PARAMS) is PARAMS


def test_shrinkage_scenario_reshrinks_observed_rates() -> None:
    out = ShrinkageScenario(prior_weight=20).apply_parameters(PARAMS)
    assert out.conversion_rates[CanonicalStage.SCREEN] == pytest.approx((20 * 0.8 + 20 * 0.5) / 40)


def test_conversion_levers_are_clamped() -> None:
    levers = LeverAdjustments(conversion_deltas={CanonicalStage.SCREEN: 10.0, CanonicalStage.ONSITE: 10.0})
    out = LeverScenario(levers=levers).apply_parameters(PARAMS)
    assert out.conversion_rates[CanonicalStage.SCREEN] == pytest.approx(0.7)
    assert out.conversion_rates[CanonicalStage.ONSITE] == pytest.approx(0.99)


def test_duration_levers() -> None:
    levers = LeverAdjustments(duration_pct={CanonicalStage.SCREEN: -20.0, CanonicalStage.ONSITE: 50.0})
    out = LeverScenario(levers=levers).apply_parameters(PARAMS)

    screen = out.stage_durations[CanonicalStage.SCREEN]
    assert isinstance(screen, LogNormalDuration)
    assert screen.mu == pytest.approx(2.0 + math.log(0.8))
    assert out.stage_durations[CanonicalStage.ONSITE] == ConstantDuration(days=15)
    # OFFER has only 2 duration samples: replaced by the 7-day fallback.
    assert out.stage_durations[CanonicalStage.OFFER] == ConstantDuration(days=7)
    assert CanonicalStage.OFFER in out.fallback_stages


def test_strict_min_n_moves_more_stages_to_fallback() -> None:
    out = LeverScenario(knobs=KnobSettings(min_n_threshold="strict")).apply_parameters(PARAMS)
    assert isinstance(out.stage_durations[CanonicalStage.SCREEN], LogNormalDuration)
    relaxed = LeverScenario(knobs=KnobSettings(min_n_threshold="relaxed")).apply_parameters(PARAMS)
    assert CanonicalStage.OFFER in relaxed.fallback_stages


def test_lever_payload_drops_neutral_entries() -> None:
    levers = LeverAdjustments(
        conversion_deltas={CanonicalStage.SCREEN: 5.0, CanonicalStage.OFFER: 0.0},
        duration_pct={},
    )
    assert levers.as_payload() == {"conversion": {"SCREEN": 5.0}, "duration": {}}
    assert LeverAdjustments().is_neutral
    with pytest.raises(InvalidParameter):
        LeverAdjustments(duration_pct={CanonicalStage.SCREEN: -100.0})
