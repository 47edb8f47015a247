"""
Configuration loading.

One file describes where to talk to (network), what to talk about
(addresses) and what it should look like (desired). TOML is the primary
format; YAML is accepted by suffix.

    [network]
    rpc_url = "https://api.devnet.solana.com"
    signer_cmd = "node scripts/sign.js"
    rpc_auth = "env:RPC_TOKEN"

    [addresses]
    program_id = "..."
    authority = "..."
    # protocol_config, token_mint and mint_authority are derived from
    # program_id unless set here.

    [desired]
    protocol_fee_bps = 200
    oracle_authority = "..."

    [[desired.geo_premiums]]
    region_code = 0
    premium_bps = 5000
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .codec import is_valid_address
from .errors import ConfigError
from .ledger.rpc import LedgerRpcConfig
from .models import DesiredSpec, GeoPremium, ResourceAddresses
from .pda import DerivedAddresses
from .secrets import SecretsProvider, resolve_secret

DEFAULT_RPC_URL = "http://127.0.0.1:8899"
COMMITMENTS = ("processed", "confirmed", "finalized")


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class NetworkSettings:
    rpc_url: str = DEFAULT_RPC_URL
    commitment: str = "confirmed"
    timeout_s: float = 10.0
    confirm_timeout_s: float = 60.0
    poll_interval_s: float = 0.5
    signer_cmd: str | None = None
    rpc_auth: str | None = None  # secret reference, never the raw token

    def to_rpc_config(self, provider: SecretsProvider | None = None) -> LedgerRpcConfig:
        token = None
        if self.rpc_auth:
            token = resolve_secret(self.rpc_auth, provider)
            if token is None:
                raise ConfigError(f"rpc_auth secret {self.rpc_auth!r} could not be resolved")
        return LedgerRpcConfig(
            rpc_url=self.rpc_url,
            commitment=self.commitment,
            timeout_s=self.timeout_s,
            confirm_timeout_s=self.confirm_timeout_s,
            poll_interval_s=self.poll_interval_s,
            auth_token=token,
        )


@dataclass(frozen=True)
class AppConfig:
    path: Path
    network: NetworkSettings
    addresses: ResourceAddresses
    desired: DesiredSpec
    notes: tuple[str, ...] = ()


def _read_raw(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e
    else:
        import tomllib

        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"{path}: invalid TOML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a table/mapping")
    return data


def _address(section: dict[str, Any], key: str, *, required: bool = True) -> str | None:
    value = section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ConfigError(f"addresses.{key} is required")
        return None
    value = str(value).strip()
    if not is_valid_address(value):
        raise ConfigError(f"{key}: {value!r} is not a valid 32-byte base58 address")
    return value


def _int_or_none(section: dict[str, Any], key: str) -> int | None:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"desired.{key} must be an integer, got {value!r}")
    return value


def _int_list_or_none(section: dict[str, Any], key: str) -> tuple[int, ...] | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
        raise ConfigError(f"desired.{key} must be a list of integers")
    return tuple(value)


def parse_network(raw: dict[str, Any]) -> NetworkSettings:
    commitment = str(raw.get("commitment", "confirmed")).strip() or "confirmed"
    if commitment not in COMMITMENTS:
        raise ConfigError(f"network.commitment must be one of {', '.join(COMMITMENTS)}")

    def number(key: str, default: float) -> float:
        value = raw.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"network.{key} must be a positive number")
        return float(value)

    signer_cmd = raw.get("signer_cmd")
    rpc_auth = raw.get("rpc_auth")
    return NetworkSettings(
        rpc_url=str(raw.get("rpc_url", DEFAULT_RPC_URL)).strip() or DEFAULT_RPC_URL,
        commitment=commitment,
        timeout_s=number("timeout_s", 10.0),
        confirm_timeout_s=number("confirm_timeout_s", 60.0),
        poll_interval_s=number("poll_interval_s", 0.5),
        signer_cmd=str(signer_cmd) if isinstance(signer_cmd, str) and signer_cmd.strip() else None,
        rpc_auth=str(rpc_auth) if isinstance(rpc_auth, str) and rpc_auth.strip() else None,
    )


def parse_addresses(raw: dict[str, Any]) -> tuple[ResourceAddresses, list[str]]:
    """
    Resolve the resource addresses.

    The three program-derived addresses default to their derivation from
    ``program_id``. A configured value overrides the derived one; a mismatch
    is reported as a note rather than an error (e.g. a program redeployed
    under new seeds).
    """
    program_id = _address(raw, "program_id")
    derived = DerivedAddresses.for_program(program_id)  # type: ignore[arg-type]
    notes: list[str] = []
    resolved: dict[str, str] = {}
    for key in ("protocol_config", "token_mint", "mint_authority"):
        expected = getattr(derived, key)
        override = _address(raw, key, required=False)
        if override is not None and override != expected:
            notes.append(f"addresses.{key} overrides the derived address {expected}")
        resolved[key] = override or expected

    addresses = ResourceAddresses(
        program_id=program_id,  # type: ignore[arg-type]
        authority=_address(raw, "authority"),  # type: ignore[arg-type]
        receiver=_address(raw, "receiver", required=False),
        **resolved,
    )
    return addresses, notes


def parse_desired(raw: dict[str, Any]) -> DesiredSpec:
    geo_raw = raw.get("geo_premiums")
    geo: tuple[GeoPremium, ...] | None = None
    try:
        if geo_raw is not None:
            if not isinstance(geo_raw, list):
                raise ConfigError("desired.geo_premiums must be a list of {region_code, premium_bps}")
            items = []
            for entry in geo_raw:
                entry = _coerce_dict(entry)
                if "region_code" not in entry or "premium_bps" not in entry:
                    raise ConfigError("each geo premium needs region_code and premium_bps")
                items.append(GeoPremium(region_code=entry["region_code"], premium_bps=entry["premium_bps"]))
            geo = tuple(items)

        identities = {}
        for key in ("oracle_authority", "treasury", "reputation_updater"):
            value = raw.get(key)
            if value is not None:
                value = str(value).strip()
                if not is_valid_address(value):
                    raise ConfigError(f"desired.{key}: {value!r} is not a valid 32-byte base58 address")
            identities[key] = value

        return DesiredSpec(
            base_rate_per_mb=_int_or_none(raw, "base_rate_per_mb"),
            protocol_fee_bps=_int_or_none(raw, "protocol_fee_bps"),
            tier_thresholds=_int_list_or_none(raw, "tier_thresholds"),
            tier_multipliers=_int_list_or_none(raw, "tier_multipliers"),
            tokens_per_5gb=_int_or_none(raw, "tokens_per_5gb"),
            geo_premiums=geo,
            **identities,
        )
    except ConfigError:
        raise
    except ValueError as e:
        raise ConfigError(f"desired: {e}") from e


def load_config(path: Path) -> AppConfig:
    """Load and validate a config file."""
    data = _read_raw(path)
    addresses, notes = parse_addresses(_coerce_dict(data.get("addresses")))
    return AppConfig(
        path=path,
        network=parse_network(_coerce_dict(data.get("network"))),
        addresses=addresses,
        desired=parse_desired(_coerce_dict(data.get("desired"))),
        notes=tuple(notes),
    )
