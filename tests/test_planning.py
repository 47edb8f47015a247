"""
Tests for the planning core.

Key properties:
1. Decision table: observed state category determines the plan shape
2. Field preservation: unspecified fields never appear in an Update
3. Plan invariants: no Initialize+Update, Close always precedes Initialize
"""

from __future__ import annotations

import pytest

from ledgersync.errors import SequencingViolation
from ledgersync.models import (
    ABSENT,
    DEFAULT_SPEC,
    Compatible,
    DesiredSpec,
    GeoPremium,
    Incompatible,
)
from ledgersync.planning import (
    Close,
    ConfigDelta,
    Initialize,
    InitializeDependent,
    Plan,
    Update,
    diff_config,
    plan_dependent,
    reconcile,
)


# -----------------------------------------------------------------------------
# Decision table
# -----------------------------------------------------------------------------


def test_absent_plans_initialize_with_defaults(addresses, desired):
    plan = reconcile(desired, ABSENT, addresses)

    assert plan.kinds == ["initialize"]
    params = plan.actions[0].params
    assert params.protocol_fee_bps == 250
    assert params.base_rate_per_mb == 1200
    assert params.tier_thresholds == DEFAULT_SPEC.tier_thresholds
    assert params.geo_premiums == DEFAULT_SPEC.geo_premiums
    assert params.treasury == addresses.authority
    assert params.oracle_authority == addresses.authority
    assert params.reputation_updater == addresses.authority
    assert plan.effect_summary.effect_type == "external_side_effect"


def test_incompatible_plans_close_then_initialize(addresses, desired):
    plan = reconcile(desired, Incompatible("unrecognized layout (218 bytes)", 218), addresses)

    assert plan.kinds == ["close", "initialize"]
    assert plan.actions[0].receiver == addresses.authority
    assert plan.effect_summary.requires_acknowledgment
    assert "[DESTRUCTIVE]" in plan.summary()


def test_close_receiver_can_be_configured(addresses, desired, address_factory):
    from dataclasses import replace

    custom = replace(addresses, receiver=address_factory(20))
    plan = reconcile(desired, Incompatible("x"), custom)
    assert plan.actions[0].receiver == address_factory(20)


def test_compatible_and_equal_is_empty(addresses, config_state):
    observed = Compatible(config_state(protocol_fee_bps=250))
    plan = reconcile(DesiredSpec(protocol_fee_bps=250), observed, addresses)

    assert plan.is_empty
    assert plan.effect_summary.effect_type == "read_only"
    assert plan.summary() == "Plan: no changes"


def test_compatible_and_differs_plans_update_of_changed_fields_only(addresses, config_state, desired):
    observed = Compatible(config_state(base_rate_per_mb=1200))
    plan = reconcile(desired, observed, addresses)

    assert plan.kinds == ["update"]
    assert plan.actions[0].delta.changed_fields() == ["protocol_fee_bps"]
    assert plan.actions[0].delta.protocol_fee_bps == 250


def test_unspecified_fields_are_never_reset(addresses, config_state):
    # Live value differs from the default; leaving it unspecified must keep it.
    observed = Compatible(config_state(tokens_per_5gb=1, geo_premiums=(GeoPremium(9, 100),)))
    plan = reconcile(DesiredSpec(protocol_fee_bps=999), observed, addresses)

    delta = plan.actions[0].delta
    assert delta.changed_fields() == ["protocol_fee_bps"]
    assert delta.tokens_per_5gb is None
    assert delta.geo_premiums is None


def test_geo_premium_order_does_not_matter(addresses, config_state):
    observed = Compatible(config_state())
    desired = DesiredSpec(geo_premiums=tuple(reversed(DEFAULT_SPEC.geo_premiums)))
    assert reconcile(desired, observed, addresses).is_empty


def test_treasury_drift_is_a_warning_not_an_update(addresses, config_state, address_factory):
    observed = Compatible(config_state())
    plan = reconcile(DesiredSpec(treasury=address_factory(30)), observed, addresses)

    assert plan.is_empty
    assert len(plan.warnings) == 1
    assert "treasury drift" in plan.warnings[0]
    assert "warning: treasury drift" in plan.summary()


def test_reconcile_is_deterministic(addresses, config_state, desired):
    observed = Compatible(config_state())
    assert reconcile(desired, observed, addresses) == reconcile(desired, observed, addresses)


def test_diff_config_tier_tables(config_state):
    desired = DesiredSpec(tier_thresholds=(1, 2, 3), tier_multipliers=(10_000, 12_000, 15_000))
    delta = diff_config(desired, config_state())
    assert delta.changed_fields() == ["tier_thresholds"]
    assert delta.to_dict() == {"tier_thresholds": [1, 2, 3]}


# -----------------------------------------------------------------------------
# Plan invariants
# -----------------------------------------------------------------------------


def test_plan_rejects_initialize_and_update(addresses, desired):
    init = Initialize(addresses.protocol_config, desired.with_defaults(addresses.authority))
    update = Update(addresses.protocol_config, ConfigDelta(protocol_fee_bps=1))
    with pytest.raises(ValueError, match="both initialize and update"):
        Plan((init, update))


@pytest.mark.parametrize("trailing", [False, True])
def test_plan_rejects_close_without_following_initialize(addresses, desired, trailing):
    close = Close(addresses.protocol_config, addresses.authority)
    init = Initialize(addresses.protocol_config, desired.with_defaults(addresses.authority))
    actions = (init, close) if trailing else (close,)
    with pytest.raises(ValueError, match="close must be immediately followed by initialize"):
        Plan(actions)


def test_plan_to_dict(addresses, desired):
    plan = reconcile(desired, ABSENT, addresses)
    data = plan.to_dict()
    assert data["actions"][0]["kind"] == "initialize"
    assert data["actions"][0]["params"]["protocol_fee_bps"] == 250
    assert data["effect_summary"]["effect_type"] == "external_side_effect"


# -----------------------------------------------------------------------------
# Dependent sequencing
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("primary", [ABSENT, Incompatible("unknown account discriminator")])
def test_plan_dependent_requires_compatible_primary(addresses, primary):
    with pytest.raises(SequencingViolation) as exc:
        plan_dependent(primary, addresses)
    assert exc.value.address == addresses.protocol_config
    assert "withheld" in exc.value.action


def test_plan_dependent_from_compatible_primary(addresses, config_state):
    plan = plan_dependent(Compatible(config_state()), addresses)
    assert plan.actions == (InitializeDependent(addresses.token_mint, addresses.protocol_config),)


def test_plan_dependent_targets_given_addresses(addresses, config_state, address_factory):
    plan = plan_dependent(
        Compatible(config_state()),
        addresses,
        primary_address=address_factory(43),
        dependent_address=address_factory(44),
    )
    assert plan.actions == (InitializeDependent(address_factory(44), address_factory(43)),)


# -----------------------------------------------------------------------------
# Desired-state validation
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"protocol_fee_bps": 10_001}, "protocol fee"),
        ({"tier_thresholds": (3, 2, 1), "tier_multipliers": (1, 2, 3)}, "ascending"),
        ({"tier_thresholds": (1, 2), "tier_multipliers": (1, 2)}, "exactly 3 tiers"),
        ({"tier_thresholds": (1, 2, 3)}, "together"),
        ({"tier_thresholds": (1, 2, 3), "tier_multipliers": (1, 2, 50_001)}, "tier multiplier"),
        ({"geo_premiums": (GeoPremium(1, 10), GeoPremium(1, 20))}, "duplicate region"),
        ({"geo_premiums": tuple(GeoPremium(i, 10) for i in range(11))}, "at most 10"),
        ({"base_rate_per_mb": -1}, "out of range"),
    ],
)
def test_desired_spec_validation(kwargs, message):
    with pytest.raises(ValueError, match=message):
        DesiredSpec(**kwargs)


def test_geo_premium_limit_is_desired_side_only(addresses, config_state):
    with pytest.raises(ValueError, match="geo premium must be <= 50000"):
        DesiredSpec(geo_premiums=(GeoPremium(0, 50_001),))

    # An account holding a premium above the limit still plans a plain Update.
    observed = Compatible(config_state(geo_premiums=(GeoPremium(0, 60_000),)))
    plan = reconcile(DesiredSpec(geo_premiums=DEFAULT_SPEC.geo_premiums), observed, addresses)
    assert plan.kinds == ["update"]
    assert plan.actions[0].delta.changed_fields() == ["geo_premiums"]


def test_desired_spec_normalises_lists():
    spec = DesiredSpec(tier_thresholds=[1, 2, 3], tier_multipliers=[1, 2, 3])
    assert spec.tier_thresholds == (1, 2, 3)
    assert spec.to_dict() == {"tier_thresholds": [1, 2, 3], "tier_multipliers": [1, 2, 3]}
