"""
Account and instruction codec.

Accounts and instructions use the Anchor convention: an 8-byte
discriminator (first bytes of sha256("account:<Name>") or
sha256("global:<instruction>")) followed by Borsh-encoded fields.

Decoding never raises. Any parse failure (short buffer, unknown
discriminator, unrecognized layout, out-of-range count) is
reported as ``Incompatible`` so the reconciler can tell "provisioned under a
schema we do not understand" apart from a transport failure.
"""

from __future__ import annotations

import base64
import hashlib
import struct
from dataclasses import dataclass
from typing import Any

import base58

from .models import (
    MAX_GEO_REGIONS,
    SYSTEM_PROGRAM_ID,
    TIER_COUNT,
    TOKEN_PROGRAM_ID,
    Compatible,
    DesiredSpec,
    GeoPremium,
    Incompatible,
    MintState,
    ProtocolConfigState,
    ResourceAddresses,
)
from .planning import Action, Close, ConfigDelta, Initialize, InitializeDependent, Update

PUBKEY_LEN = 32


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


PROTOCOL_CONFIG_DISCRIMINATOR = account_discriminator("ProtocolConfig")

# Allocated account size -> schema version. The account is allocated with
# room for MAX_GEO_REGIONS premiums, so the size pins down the layout.
CONFIG_LAYOUTS: dict[int, int] = {
    8 + 32 * 4 + 8 + 2 + 8 * TIER_COUNT + 2 * TIER_COUNT + 8 + 4 + MAX_GEO_REGIONS * 3 + 32: 2,
}
CURRENT_SCHEMA_VERSION = 2
CONFIG_ACCOUNT_SIZE = next(size for size, version in CONFIG_LAYOUTS.items() if version == CURRENT_SCHEMA_VERSION)

MINT_ACCOUNT_SIZE = 82


def encode_pubkey(address: str) -> bytes:
    raw = base58.b58decode(address)
    if len(raw) != PUBKEY_LEN:
        raise ValueError(f"address {address!r} does not decode to {PUBKEY_LEN} bytes")
    return raw


def decode_pubkey(raw: bytes) -> str:
    return base58.b58encode(bytes(raw)).decode("ascii")


def is_valid_address(address: str) -> bool:
    try:
        encode_pubkey(address)
    except ValueError:
        return False
    return True


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise ValueError(f"buffer too short: need {end} bytes, have {len(self.data)}")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def unpack(self, fmt: str) -> Any:
        values = struct.unpack(fmt, self.take(struct.calcsize(fmt)))
        return values[0] if len(values) == 1 else values

    def pubkey(self) -> str:
        return decode_pubkey(self.take(PUBKEY_LEN))


def decode_config(data: bytes) -> Compatible | Incompatible:
    """Decode protocol config account bytes."""
    if len(data) < 8:
        return Incompatible("shorter than the account discriminator", len(data))
    if data[:8] != PROTOCOL_CONFIG_DISCRIMINATOR:
        return Incompatible("unknown account discriminator", len(data))

    version = CONFIG_LAYOUTS.get(len(data))
    if version is None:
        return Incompatible(f"unrecognized layout ({len(data)} bytes)", len(data))

    try:
        r = _Reader(data, 8)
        authority = r.pubkey()
        treasury = r.pubkey()
        token_mint = r.pubkey()
        oracle_authority = r.pubkey()
        base_rate = r.unpack("<Q")
        fee_bps = r.unpack("<H")
        thresholds = r.unpack(f"<{TIER_COUNT}Q")
        multipliers = r.unpack(f"<{TIER_COUNT}H")
        tokens_per_5gb = r.unpack("<Q")
        count = r.unpack("<I")
        if count > MAX_GEO_REGIONS:
            return Incompatible(f"geo premium count {count} exceeds {MAX_GEO_REGIONS}", len(data))
        premiums = []
        for _ in range(count):
            region, premium = r.unpack("<BH")
            premiums.append(GeoPremium(region_code=region, premium_bps=premium))
        reputation_updater = r.pubkey()
    except (ValueError, struct.error) as e:
        return Incompatible(f"malformed account data: {e}", len(data))

    # Bytes past the last field are ignored: an update that shrinks the geo
    # premiums leaves the old tail in place.
    return Compatible(
        ProtocolConfigState(
            authority=authority,
            treasury=treasury,
            token_mint=token_mint,
            oracle_authority=oracle_authority,
            base_rate_per_mb=base_rate,
            protocol_fee_bps=fee_bps,
            tier_thresholds=tuple(thresholds),
            tier_multipliers=tuple(multipliers),
            tokens_per_5gb=tokens_per_5gb,
            geo_premiums=tuple(premiums),
            reputation_updater=reputation_updater,
            schema_version=version,
        )
    )


def _coption_pubkey(r: _Reader) -> str | None:
    tag = r.unpack("<I")
    key = r.take(PUBKEY_LEN)
    if tag == 0:
        return None
    if tag != 1:
        raise ValueError(f"invalid COption tag {tag}")
    return decode_pubkey(key)


def decode_mint(data: bytes) -> Compatible | Incompatible:
    """Decode an SPL token mint account."""
    if len(data) != MINT_ACCOUNT_SIZE:
        return Incompatible(f"not a token mint ({len(data)} bytes)", len(data))
    try:
        r = _Reader(data)
        mint_authority = _coption_pubkey(r)
        supply = r.unpack("<Q")
        decimals = r.unpack("<B")
        initialized = r.unpack("<B")
        freeze_authority = _coption_pubkey(r)
    except (ValueError, struct.error) as e:
        return Incompatible(f"malformed mint data: {e}", len(data))
    if initialized != 1:
        return Incompatible("mint is not initialized", len(data))
    return Compatible(
        MintState(
            mint_authority=mint_authority,
            supply=supply,
            decimals=decimals,
            is_initialized=True,
            freeze_authority=freeze_authority,
        )
    )


# -----------------------------------------------------------------------------
# Encoding: accounts (used by test doubles and tooling that seeds accounts)
# -----------------------------------------------------------------------------


def _geo_bytes(premiums: tuple[GeoPremium, ...]) -> bytes:
    out = struct.pack("<I", len(premiums))
    for gp in premiums:
        out += struct.pack("<BH", gp.region_code, gp.premium_bps)
    return out


def encode_config(state: ProtocolConfigState) -> bytes:
    """Serialize a config record into its allocated account layout."""
    body = (
        PROTOCOL_CONFIG_DISCRIMINATOR
        + encode_pubkey(state.authority)
        + encode_pubkey(state.treasury)
        + encode_pubkey(state.token_mint)
        + encode_pubkey(state.oracle_authority)
        + struct.pack("<QH", state.base_rate_per_mb, state.protocol_fee_bps)
        + struct.pack(f"<{TIER_COUNT}Q", *state.tier_thresholds)
        + struct.pack(f"<{TIER_COUNT}H", *state.tier_multipliers)
        + struct.pack("<Q", state.tokens_per_5gb)
        + _geo_bytes(state.geo_premiums)
        + encode_pubkey(state.reputation_updater)
    )
    return body + bytes(CONFIG_ACCOUNT_SIZE - len(body))


def encode_mint(state: MintState) -> bytes:
    def coption(key: str | None) -> bytes:
        if key is None:
            return struct.pack("<I", 0) + bytes(PUBKEY_LEN)
        return struct.pack("<I", 1) + encode_pubkey(key)

    return (
        coption(state.mint_authority)
        + struct.pack("<QBB", state.supply, state.decimals, 1 if state.is_initialized else 0)
        + coption(state.freeze_authority)
    )


# -----------------------------------------------------------------------------
# Encoding: instructions
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountMeta:
    pubkey: str
    is_signer: bool
    is_writable: bool
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "pubkey": self.pubkey,
            "is_signer": self.is_signer,
            "is_writable": self.is_writable,
        }


@dataclass(frozen=True)
class ActionPayload:
    """Instruction ready for signing."""

    instruction: str
    program_id: str
    accounts: tuple[AccountMeta, ...]
    data: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "instruction": self.instruction,
            "program_id": self.program_id,
            "accounts": [a.to_dict() for a in self.accounts],
            "data": base64.b64encode(self.data).decode("ascii"),
        }


def _option(value: Any, encode) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + encode(value)


def _initialize_args(params: DesiredSpec) -> bytes:
    return (
        struct.pack("<QH", params.base_rate_per_mb, params.protocol_fee_bps)
        + struct.pack(f"<{TIER_COUNT}Q", *params.tier_thresholds)
        + struct.pack(f"<{TIER_COUNT}H", *params.tier_multipliers)
        + struct.pack("<Q", params.tokens_per_5gb)
        + _geo_bytes(params.geo_premiums)
        + encode_pubkey(params.oracle_authority)
    )


def _update_args(delta: ConfigDelta) -> bytes:
    return (
        _option(delta.base_rate_per_mb, lambda v: struct.pack("<Q", v))
        + _option(delta.protocol_fee_bps, lambda v: struct.pack("<H", v))
        + _option(delta.tier_thresholds, lambda v: struct.pack(f"<{TIER_COUNT}Q", *v))
        + _option(delta.tier_multipliers, lambda v: struct.pack(f"<{TIER_COUNT}H", *v))
        + _option(delta.tokens_per_5gb, lambda v: struct.pack("<Q", v))
        + _option(delta.geo_premiums, _geo_bytes)
        + _option(delta.reputation_updater, encode_pubkey)
        + _option(delta.oracle_authority, encode_pubkey)
    )


def encode_action(action: Action, addresses: ResourceAddresses) -> ActionPayload:
    """Encode an action as an instruction. Deterministic for a given action and addresses."""
    authority = AccountMeta(addresses.authority, True, True, "authority")

    if isinstance(action, Initialize):
        name = "initialize_protocol_config"
        accounts: tuple[AccountMeta, ...] = (
            AccountMeta(action.address, False, True, "protocol_config"),
            AccountMeta(action.params.treasury or addresses.authority, False, False, "treasury"),
            authority,
            AccountMeta(SYSTEM_PROGRAM_ID, False, False, "system_program"),
        )
        args = _initialize_args(action.params)
    elif isinstance(action, Update):
        name = "update_protocol_config"
        accounts = (
            AccountMeta(action.address, False, True, "protocol_config"),
            authority,
        )
        args = _update_args(action.delta)
    elif isinstance(action, Close):
        name = "close_protocol_config"
        accounts = (
            AccountMeta(action.address, False, True, "protocol_config"),
            authority,
            AccountMeta(action.receiver, False, True, "receiver"),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False, "system_program"),
        )
        args = b""
    elif isinstance(action, InitializeDependent):
        name = "initialize_arkham_mint"
        accounts = (
            AccountMeta(action.address, False, True, "arkham_mint"),
            AccountMeta(addresses.mint_authority, False, False, "mint_authority"),
            AccountMeta(action.primary, False, True, "protocol_config"),
            authority,
            AccountMeta(TOKEN_PROGRAM_ID, False, False, "token_program"),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False, "system_program"),
        )
        args = b""
    else:
        raise TypeError(f"unknown action: {action!r}")

    return ActionPayload(
        instruction=name,
        program_id=addresses.program_id,
        accounts=accounts,
        data=instruction_discriminator(name) + args,
    )


def decode_update_args(data: bytes) -> ConfigDelta:
    """Inverse of the update encoding; used to apply updates in test doubles and audits."""
    r = _Reader(data, 8)

    def opt(read):
        flag = r.unpack("<B")
        return read() if flag == 1 else None

    def geo() -> tuple[GeoPremium, ...]:
        count = r.unpack("<I")
        return tuple(GeoPremium(*r.unpack("<BH")) for _ in range(count))

    return ConfigDelta(
        base_rate_per_mb=opt(lambda: r.unpack("<Q")),
        protocol_fee_bps=opt(lambda: r.unpack("<H")),
        tier_thresholds=opt(lambda: tuple(r.unpack(f"<{TIER_COUNT}Q"))),
        tier_multipliers=opt(lambda: tuple(r.unpack(f"<{TIER_COUNT}H"))),
        tokens_per_5gb=opt(lambda: r.unpack("<Q")),
        geo_premiums=opt(geo),
        reputation_updater=opt(r.pubkey),
        oracle_authority=opt(r.pubkey),
    )


def decode_initialize_args(data: bytes) -> DesiredSpec:
    """Inverse of the initialize encoding (treasury travels as an account, not an argument)."""
    r = _Reader(data, 8)
    base_rate, fee = r.unpack("<QH")
    thresholds = tuple(r.unpack(f"<{TIER_COUNT}Q"))
    multipliers = tuple(r.unpack(f"<{TIER_COUNT}H"))
    tokens = r.unpack("<Q")
    count = r.unpack("<I")
    premiums = tuple(GeoPremium(*r.unpack("<BH")) for _ in range(count))
    oracle = r.pubkey()
    return DesiredSpec(
        base_rate_per_mb=base_rate,
        protocol_fee_bps=fee,
        tier_thresholds=thresholds,
        tier_multipliers=multipliers,
        tokens_per_5gb=tokens,
        geo_premiums=premiums,
        oracle_authority=oracle,
    )
