"""Data models for desired and observed resource state."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Union

# Null identity: the all-zero 32-byte key, base58-encoded.
NULL_IDENTITY = "11111111111111111111111111111111"

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# Fixed by the on-chain account layout
TIER_COUNT = 3
MAX_GEO_REGIONS = 10

MAX_FEE_BPS = 10_000
MAX_TIER_MULTIPLIER = 50_000
MAX_GEO_PREMIUM_BPS = 50_000

U8_MAX = 2**8 - 1
U16_MAX = 2**16 - 1
U64_MAX = 2**64 - 1


def is_null_identity(address: str | None) -> bool:
    return not address or address == NULL_IDENTITY


def _check_range(name: str, value: int, upper: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0 or value > upper:
        raise ValueError(f"{name} out of range: {value}")


@dataclass(frozen=True)
class GeoPremium:
    region_code: int
    premium_bps: int

    def __post_init__(self) -> None:
        _check_range("region_code", self.region_code, U8_MAX)
        _check_range("premium_bps", self.premium_bps, U16_MAX)

    def to_dict(self) -> dict[str, int]:
        return {"region_code": self.region_code, "premium_bps": self.premium_bps}


@dataclass(frozen=True)
class ResourceAddresses:
    """Addresses the engine operates on, PDAs already resolved (see ``ledgersync.pda``)."""

    program_id: str
    authority: str
    protocol_config: str
    token_mint: str
    mint_authority: str
    receiver: str | None = None  # rent receiver on close; defaults to authority

    @property
    def close_receiver(self) -> str:
        return self.receiver or self.authority


@dataclass(frozen=True)
class DesiredSpec:
    """
    Target configuration for the protocol config account.

    Every field is optional: ``None`` means "no override". On Initialize the
    defaults in ``DEFAULT_SPEC`` (and the signing authority for identities)
    fill the gaps; on Update an unspecified field is always left unchanged.
    """

    base_rate_per_mb: int | None = None
    protocol_fee_bps: int | None = None
    tier_thresholds: tuple[int, ...] | None = None
    tier_multipliers: tuple[int, ...] | None = None
    tokens_per_5gb: int | None = None
    geo_premiums: tuple[GeoPremium, ...] | None = None
    oracle_authority: str | None = None
    treasury: str | None = None
    reputation_updater: str | None = None

    def __post_init__(self) -> None:
        # Normalise list inputs so the value stays hashable and comparable.
        for name in ("tier_thresholds", "tier_multipliers", "geo_premiums"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

        if self.base_rate_per_mb is not None:
            _check_range("base_rate_per_mb", self.base_rate_per_mb, U64_MAX)
        if self.tokens_per_5gb is not None:
            _check_range("tokens_per_5gb", self.tokens_per_5gb, U64_MAX)
        if self.protocol_fee_bps is not None:
            _check_range("protocol_fee_bps", self.protocol_fee_bps, U16_MAX)
            if self.protocol_fee_bps > MAX_FEE_BPS:
                raise ValueError(f"protocol fee must be <= {MAX_FEE_BPS} bps, got {self.protocol_fee_bps}")

        thresholds = self.tier_thresholds
        multipliers = self.tier_multipliers
        if (thresholds is None) != (multipliers is None):
            raise ValueError("tier_thresholds and tier_multipliers must be given together")
        if thresholds is not None and multipliers is not None:
            if len(thresholds) != len(multipliers):
                raise ValueError(
                    f"tier_thresholds ({len(thresholds)}) and tier_multipliers ({len(multipliers)}) differ in length"
                )
            if len(thresholds) != TIER_COUNT:
                raise ValueError(f"exactly {TIER_COUNT} tiers are supported, got {len(thresholds)}")
            for t in thresholds:
                _check_range("tier threshold", t, U64_MAX)
            if list(thresholds) != sorted(thresholds):
                raise ValueError("tier thresholds must be in ascending order")
            for m in multipliers:
                _check_range("tier multiplier", m, U16_MAX)
                if m > MAX_TIER_MULTIPLIER:
                    raise ValueError(f"tier multiplier must be <= {MAX_TIER_MULTIPLIER}, got {m}")

        if self.geo_premiums is not None:
            if len(self.geo_premiums) > MAX_GEO_REGIONS:
                raise ValueError(f"at most {MAX_GEO_REGIONS} geo regions fit the account, got {len(self.geo_premiums)}")
            codes = [gp.region_code for gp in self.geo_premiums]
            if len(set(codes)) != len(codes):
                raise ValueError("duplicate region code in geo premiums")
            for gp in self.geo_premiums:
                if gp.premium_bps > MAX_GEO_PREMIUM_BPS:
                    raise ValueError(f"geo premium must be <= {MAX_GEO_PREMIUM_BPS} bps, got {gp.premium_bps}")

    def with_defaults(self, authority: str) -> DesiredSpec:
        """Fill unspecified fields for Initialize."""
        values: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                value = getattr(DEFAULT_SPEC, f.name)
            values[f.name] = value
        for identity in ("oracle_authority", "treasury", "reputation_updater"):
            if values[identity] is None:
                values[identity] = authority
        return DesiredSpec(**values)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "geo_premiums":
                value = [gp.to_dict() for gp in value]
            elif isinstance(value, tuple):
                value = list(value)
            data[f.name] = value
        return data


DEFAULT_SPEC = DesiredSpec(
    base_rate_per_mb=1000,
    protocol_fee_bps=200,
    tier_thresholds=(100_000_000, 500_000_000, 1_000_000_000),
    tier_multipliers=(10_000, 12_000, 15_000),
    tokens_per_5gb=500_000_000,
    geo_premiums=(
        GeoPremium(region_code=0, premium_bps=5000),
        GeoPremium(region_code=1, premium_bps=4000),
        GeoPremium(region_code=2, premium_bps=2000),
    ),
)


@dataclass(frozen=True)
class ProtocolConfigState:
    """Decoded contents of the protocol config account."""

    authority: str
    treasury: str
    token_mint: str  # dependent-resource link; NULL_IDENTITY until the mint exists
    oracle_authority: str
    base_rate_per_mb: int
    protocol_fee_bps: int
    tier_thresholds: tuple[int, ...]
    tier_multipliers: tuple[int, ...]
    tokens_per_5gb: int
    geo_premiums: tuple[GeoPremium, ...]
    reputation_updater: str
    schema_version: int

    @property
    def has_dependent_link(self) -> bool:
        return not is_null_identity(self.token_mint)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority": self.authority,
            "treasury": self.treasury,
            "token_mint": self.token_mint,
            "oracle_authority": self.oracle_authority,
            "base_rate_per_mb": self.base_rate_per_mb,
            "protocol_fee_bps": self.protocol_fee_bps,
            "tier_thresholds": list(self.tier_thresholds),
            "tier_multipliers": list(self.tier_multipliers),
            "tokens_per_5gb": self.tokens_per_5gb,
            "geo_premiums": [gp.to_dict() for gp in self.geo_premiums],
            "reputation_updater": self.reputation_updater,
            "schema_version": self.schema_version,
        }


@dataclass(frozen=True)
class MintState:
    """Decoded SPL token mint."""

    mint_authority: str | None
    supply: int
    decimals: int
    is_initialized: bool
    freeze_authority: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint_authority": self.mint_authority,
            "supply": self.supply,
            "decimals": self.decimals,
            "is_initialized": self.is_initialized,
            "freeze_authority": self.freeze_authority,
        }


# -----------------------------------------------------------------------------
# Observed state: Absent | Incompatible | Compatible
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Absent:
    """No bytes stored at the address."""

    def describe(self) -> str:
        return "absent"

    def to_dict(self) -> dict[str, Any]:
        return {"state": "absent"}


@dataclass(frozen=True)
class Incompatible:
    """Bytes exist but do not decode under any schema this engine understands."""

    reason: str
    data_len: int = 0

    def describe(self) -> str:
        return f"incompatible ({self.reason})"

    def to_dict(self) -> dict[str, Any]:
        return {"state": "incompatible", "reason": self.reason, "data_len": self.data_len}


@dataclass(frozen=True)
class Compatible:
    """Bytes decoded into a typed record."""

    record: ProtocolConfigState | MintState

    def describe(self) -> str:
        if isinstance(self.record, ProtocolConfigState):
            return f"compatible (schema v{self.record.schema_version})"
        return "compatible (mint)"

    def to_dict(self) -> dict[str, Any]:
        return {"state": "compatible", "record": self.record.to_dict()}


ObservedState = Union[Absent, Incompatible, Compatible]

ABSENT = Absent()


@dataclass
class ProbeSnapshot:
    """Observed state of both resources, for display."""

    protocol_config: ObservedState
    token_mint: ObservedState
    addresses: ResourceAddresses
    token_mint_address: str  # the mint actually read: the linked one when the config has a link
    notes: list[str] = field(default_factory=list)
