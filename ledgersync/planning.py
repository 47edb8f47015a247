"""
Planning: the decision core of a reconciliation run.

This module separates the diagnostic phase (compute a plan) from the action
phase (execute it). Everything here is pure: a Plan is data and has no side
effects until handed to the executor.

Decision table for the protocol config account:

    Absent                          -> [Initialize]
    Incompatible                    -> [Close, Initialize]
    Compatible, equal to desired    -> []
    Compatible, differs             -> [Update(changed fields only)]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Union

from .errors import SequencingViolation
from .models import (
    Absent,
    Compatible,
    DesiredSpec,
    GeoPremium,
    Incompatible,
    ObservedState,
    ProtocolConfigState,
    ResourceAddresses,
)

EffectType = Literal[
    "read_only",
    "external_side_effect",
    "mutation_destructive",
]


@dataclass(frozen=True)
class EffectSummary:
    """
    Predicted effects of a plan.

    Gate requirements are derived from this, not claimed by callers: a plan
    that closes an account is destructive and needs operator acknowledgment.
    """

    effect_type: EffectType
    reasons: list[str] = field(default_factory=list)

    @property
    def requires_acknowledgment(self) -> bool:
        return self.effect_type == "mutation_destructive"

    def to_dict(self) -> dict[str, Any]:
        return {"effect_type": self.effect_type, "reasons": list(self.reasons)}


# -----------------------------------------------------------------------------
# Field deltas
# -----------------------------------------------------------------------------

# Fields the update instruction can change. Treasury is fixed at initialization.
UPDATABLE_FIELDS = (
    "base_rate_per_mb",
    "protocol_fee_bps",
    "tier_thresholds",
    "tier_multipliers",
    "tokens_per_5gb",
    "geo_premiums",
    "reputation_updater",
    "oracle_authority",
)


def _geo_key(premiums: tuple[GeoPremium, ...]) -> list[tuple[int, int]]:
    return sorted((gp.region_code, gp.premium_bps) for gp in premiums)


def _field_equal(name: str, desired: Any, observed: Any) -> bool:
    if name == "geo_premiums":
        return _geo_key(desired) == _geo_key(observed)
    if isinstance(desired, (list, tuple)):
        return tuple(desired) == tuple(observed)
    return desired == observed


@dataclass(frozen=True)
class ConfigDelta:
    """
    Per-field update. ``None`` means "no change" and is encoded distinctly
    from a field explicitly set, so fields mutated concurrently by someone
    else are never clobbered with a stale value.
    """

    base_rate_per_mb: int | None = None
    protocol_fee_bps: int | None = None
    tier_thresholds: tuple[int, ...] | None = None
    tier_multipliers: tuple[int, ...] | None = None
    tokens_per_5gb: int | None = None
    geo_premiums: tuple[GeoPremium, ...] | None = None
    reputation_updater: str | None = None
    oracle_authority: str | None = None

    def changed_fields(self) -> list[str]:
        return [name for name in UPDATABLE_FIELDS if getattr(self, name) is not None]

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in self.changed_fields():
            value = getattr(self, name)
            if name == "geo_premiums":
                value = [gp.to_dict() for gp in value]
            elif isinstance(value, tuple):
                value = list(value)
            data[name] = value
        return data


def diff_config(desired: DesiredSpec, observed: ProtocolConfigState) -> ConfigDelta:
    """Build a delta holding only the desired fields that differ from observed."""
    changes: dict[str, Any] = {}
    for name in UPDATABLE_FIELDS:
        want = getattr(desired, name)
        if want is None:
            continue  # unspecified: leave unchanged, never reset to default
        if not _field_equal(name, want, getattr(observed, name)):
            changes[name] = want
    return ConfigDelta(**changes)


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Initialize:
    kind: ClassVar[str] = "initialize"
    address: str
    params: DesiredSpec  # fully populated (defaults applied)

    def describe(self) -> str:
        return f"initialize protocol config at {self.address}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "address": self.address, "params": self.params.to_dict()}


@dataclass(frozen=True)
class Update:
    kind: ClassVar[str] = "update"
    address: str
    delta: ConfigDelta

    def describe(self) -> str:
        return f"update protocol config at {self.address}: {', '.join(self.delta.changed_fields())}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "address": self.address, "delta": self.delta.to_dict()}


@dataclass(frozen=True)
class Close:
    kind: ClassVar[str] = "close"
    address: str
    receiver: str

    def describe(self) -> str:
        return f"close protocol config at {self.address} (rent to {self.receiver})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "address": self.address, "receiver": self.receiver}


@dataclass(frozen=True)
class InitializeDependent:
    kind: ClassVar[str] = "initialize_dependent"
    address: str  # token mint
    primary: str  # protocol config that will link it

    def describe(self) -> str:
        return f"initialize token mint at {self.address} (linked from {self.primary})"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "address": self.address, "primary": self.primary}


Action = Union[Initialize, Update, Close, InitializeDependent]


@dataclass(frozen=True)
class Plan:
    """Ordered, side-effect-free list of corrective actions."""

    actions: tuple[Action, ...] = ()
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.actions, tuple):
            object.__setattr__(self, "actions", tuple(self.actions))
        kinds = self.kinds
        if "initialize" in kinds and "update" in kinds:
            raise ValueError("a plan cannot both initialize and update")
        for i, kind in enumerate(kinds):
            if kind == "close" and (i + 1 >= len(kinds) or kinds[i + 1] != "initialize"):
                raise ValueError("close must be immediately followed by initialize")

    @property
    def kinds(self) -> list[str]:
        return [a.kind for a in self.actions]

    @property
    def is_empty(self) -> bool:
        return not self.actions

    @property
    def effect_summary(self) -> EffectSummary:
        if not self.actions:
            return EffectSummary("read_only", ["resource already matches desired state"])
        reasons = [a.describe() for a in self.actions]
        if "close" in self.kinds:
            reasons.append("closing erases the existing account data")
            return EffectSummary("mutation_destructive", reasons)
        return EffectSummary("external_side_effect", reasons)

    def summary(self) -> str:
        if not self.actions:
            lines = ["Plan: no changes"]
        else:
            lines = [f"Plan: {len(self.actions)} action(s)"]
            for i, action in enumerate(self.actions, start=1):
                lines.append(f"  {i}. {action.describe()}")
            if self.effect_summary.requires_acknowledgment:
                lines.append("  [DESTRUCTIVE] existing account data will be erased")
        for warning in self.warnings:
            lines.append(f"  warning: {warning}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "warnings": list(self.warnings),
            "effect_summary": self.effect_summary.to_dict(),
        }


# -----------------------------------------------------------------------------
# Reconcile
# -----------------------------------------------------------------------------


def reconcile(desired: DesiredSpec, observed: ObservedState, addresses: ResourceAddresses) -> Plan:
    """
    Compute the minimal plan that moves the protocol config towards ``desired``.

    The Incompatible branch is a destructive migration. It is only safe when
    no dependent resource links to the account; callers must establish that
    before executing (see ``engine.Reconciliation``).
    """
    address = addresses.protocol_config

    if isinstance(observed, Absent):
        return Plan((Initialize(address, desired.with_defaults(addresses.authority)),))

    if isinstance(observed, Incompatible):
        return Plan(
            (
                Close(address, addresses.close_receiver),
                Initialize(address, desired.with_defaults(addresses.authority)),
            )
        )

    if isinstance(observed, Compatible):
        record = observed.record
        if not isinstance(record, ProtocolConfigState):
            raise TypeError(f"expected a protocol config record, got {type(record).__name__}")

        warnings: list[str] = []
        if desired.treasury is not None and desired.treasury != record.treasury:
            warnings.append(
                f"treasury drift: account has {record.treasury}, desired {desired.treasury} "
                "(treasury is fixed at initialization)"
            )

        delta = diff_config(desired, record)
        if delta.is_empty:
            return Plan((), tuple(warnings))
        return Plan((Update(address, delta),), tuple(warnings))

    raise TypeError(f"unknown observed state: {observed!r}")


def plan_dependent(
    primary: ObservedState,
    addresses: ResourceAddresses,
    *,
    primary_address: str | None = None,
    dependent_address: str | None = None,
) -> Plan:
    """Single-action plan initializing the token mint; only valid from a compatible primary."""
    primary_address = primary_address or addresses.protocol_config
    dependent_address = dependent_address or addresses.token_mint
    if not isinstance(primary, Compatible) or not isinstance(primary.record, ProtocolConfigState):
        raise SequencingViolation(
            "token mint cannot be provisioned before the protocol config is compatible",
            address=primary_address,
            observed=primary.describe(),
            action=f"withheld: initialize token mint at {dependent_address}",
        )
    return Plan((InitializeDependent(dependent_address, primary_address),))
