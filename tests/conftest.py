"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from dataclasses import replace
from pathlib import Path
from typing import Callable

import base58
import pytest
from rich.console import Console

from ledgersync.codec import (
    CONFIG_ACCOUNT_SIZE,
    ActionPayload,
    PROTOCOL_CONFIG_DISCRIMINATOR,
    decode_config,
    decode_initialize_args,
    decode_update_args,
    encode_config,
    encode_mint,
)
from ledgersync.errors import TransientLedgerError
from ledgersync.ledger.client import Confirmed, ExecutionResult, Failed, FailureCause
from ledgersync.models import (
    DEFAULT_SPEC,
    MAX_GEO_REGIONS,
    NULL_IDENTITY,
    Compatible,
    DesiredSpec,
    MintState,
    ProtocolConfigState,
    ResourceAddresses,
)

# Size of the pre-reputation config layout (no reputation_updater field).
LEGACY_CONFIG_SIZE = 218


def make_address(seed: int) -> str:
    """Deterministic 32-byte base58 address (seed 0 is the null identity)."""
    return base58.b58encode(bytes([seed]) * 32).decode("ascii")


class InMemoryLedger:
    """
    Ledger double that applies instructions the way the on-chain program does.

    Failures can be scripted per instruction name; a scripted failure may
    still "land" (apply the mutation) to model a confirmation timeout.
    """

    def __init__(self, addresses: ResourceAddresses) -> None:
        self.addresses = addresses
        self.accounts: dict[str, bytes] = {}
        self.submissions: list[ActionPayload] = []
        self.fetches: list[str] = []
        self.fetch_errors = 0  # raise TransientLedgerError this many times
        self._failures: dict[str, list[tuple[Failed, bool]]] = {}
        self._tx = itertools.count(1)

    # -- seeding --------------------------------------------------------------

    def seed_config(self, state: ProtocolConfigState) -> None:
        self.accounts[self.addresses.protocol_config] = encode_config(state)

    def seed_mint(self, address: str | None = None, state: MintState | None = None) -> None:
        state = state or MintState(self.addresses.mint_authority, 0, 9, True, None)
        self.accounts[address or self.addresses.token_mint] = encode_mint(state)

    def seed_raw(self, address: str, data: bytes) -> None:
        self.accounts[address] = data

    def fail_on(self, instruction: str, cause: FailureCause, detail: str = "", *, land: bool = False) -> None:
        self._failures.setdefault(instruction, []).append((Failed(cause, detail, "sig-failed"), land))

    # -- inspection -----------------------------------------------------------

    @property
    def instructions(self) -> list[str]:
        return [p.instruction for p in self.submissions]

    def config(self) -> ProtocolConfigState:
        decoded = decode_config(self.accounts[self.addresses.protocol_config])
        assert isinstance(decoded, Compatible)
        return decoded.record  # type: ignore[return-value]

    # -- LedgerClient ---------------------------------------------------------

    def fetch_raw(self, address: str) -> bytes | None:
        self.fetches.append(address)
        if self.fetch_errors > 0:
            self.fetch_errors -= 1
            raise TransientLedgerError("connection refused")
        return self.accounts.get(address)

    def submit(self, payload: ActionPayload) -> ExecutionResult:
        self.submissions.append(payload)
        scripted = self._failures.get(payload.instruction)
        if scripted:
            failed, land = scripted.pop(0)
            if land:
                self._apply(payload)
            return failed
        rejection = self._apply(payload)
        if rejection is not None:
            return rejection
        return Confirmed(f"sig{next(self._tx)}")

    def _write_in_place(self, state: ProtocolConfigState) -> None:
        """Serialize over the existing buffer; bytes past the new end keep their old values."""
        address = self.addresses.protocol_config
        used = CONFIG_ACCOUNT_SIZE - 3 * (MAX_GEO_REGIONS - len(state.geo_premiums))
        data = bytearray(self.accounts[address])
        data[:used] = encode_config(state)[:used]
        self.accounts[address] = bytes(data)

    def _apply(self, payload: ActionPayload) -> Failed | None:
        accounts = {a.name: a.pubkey for a in payload.accounts}
        signer = accounts["authority"]
        name = payload.instruction

        if name == "initialize_protocol_config":
            address = accounts["protocol_config"]
            if address in self.accounts:
                return Failed(FailureCause.REJECTED, "account already in use")
            args = decode_initialize_args(payload.data)
            self.accounts[address] = encode_config(
                ProtocolConfigState(
                    authority=signer,
                    treasury=accounts["treasury"],
                    token_mint=NULL_IDENTITY,
                    oracle_authority=args.oracle_authority,
                    base_rate_per_mb=args.base_rate_per_mb,
                    protocol_fee_bps=args.protocol_fee_bps,
                    tier_thresholds=args.tier_thresholds,
                    tier_multipliers=args.tier_multipliers,
                    tokens_per_5gb=args.tokens_per_5gb,
                    geo_premiums=args.geo_premiums,
                    reputation_updater=signer,
                    schema_version=2,
                )
            )
            return None

        if name == "update_protocol_config":
            current = self.config()
            if current.authority != signer:
                return Failed(FailureCause.AUTHORITY_MISMATCH, "custom program error: 0x1780")
            delta = decode_update_args(payload.data)
            changes = {f: getattr(delta, f) for f in delta.changed_fields()}
            self._write_in_place(replace(current, **changes))
            return None

        if name == "close_protocol_config":
            self.accounts.pop(accounts["protocol_config"], None)
            return None

        if name == "initialize_arkham_mint":
            mint = accounts["arkham_mint"]
            if mint in self.accounts:
                return Failed(FailureCause.REJECTED, "account already in use")
            current = self.config()
            if current.authority != signer:
                return Failed(FailureCause.AUTHORITY_MISMATCH, "custom program error: 0x1780")
            self.seed_mint(mint, MintState(accounts["mint_authority"], 0, 9, True, None))
            self._write_in_place(replace(current, token_mint=mint))
            return None

        raise AssertionError(f"unexpected instruction {name}")


@pytest.fixture
def address_factory() -> Callable[[int], str]:
    return make_address


@pytest.fixture
def addresses() -> ResourceAddresses:
    return ResourceAddresses(
        program_id=make_address(1),
        authority=make_address(2),
        protocol_config=make_address(3),
        token_mint=make_address(4),
        mint_authority=make_address(5),
    )


@pytest.fixture
def ledger(addresses: ResourceAddresses) -> InMemoryLedger:
    return InMemoryLedger(addresses)


@pytest.fixture
def desired() -> DesiredSpec:
    return DesiredSpec(protocol_fee_bps=250, base_rate_per_mb=1200)


@pytest.fixture
def config_state(addresses: ResourceAddresses) -> Callable[..., ProtocolConfigState]:
    """Factory for a compatible config record built from the defaults."""

    def _make(**overrides) -> ProtocolConfigState:
        values = dict(
            authority=addresses.authority,
            treasury=addresses.authority,
            token_mint=NULL_IDENTITY,
            oracle_authority=addresses.authority,
            base_rate_per_mb=DEFAULT_SPEC.base_rate_per_mb,
            protocol_fee_bps=DEFAULT_SPEC.protocol_fee_bps,
            tier_thresholds=DEFAULT_SPEC.tier_thresholds,
            tier_multipliers=DEFAULT_SPEC.tier_multipliers,
            tokens_per_5gb=DEFAULT_SPEC.tokens_per_5gb,
            geo_premiums=DEFAULT_SPEC.geo_premiums,
            reputation_updater=addresses.authority,
            schema_version=2,
        )
        values.update(overrides)
        return ProtocolConfigState(**values)

    return _make


@pytest.fixture
def legacy_config_bytes() -> bytes:
    return PROTOCOL_CONFIG_DISCRIMINATOR + bytes(LEGACY_CONFIG_SIZE - 8)


@pytest.fixture
def quiet_console() -> Console:
    return Console(stderr=True, quiet=True)


@pytest.fixture
def config_file(tmp_path: Path, addresses: ResourceAddresses) -> Path:
    path = tmp_path / "ledgersync.toml"
    path.write_text(
        "\n".join(
            [
                "[network]",
                'rpc_url = "http://127.0.0.1:8899"',
                "",
                "[addresses]",
                f'program_id = "{addresses.program_id}"',
                f'authority = "{addresses.authority}"',
                f'protocol_config = "{addresses.protocol_config}"',
                f'token_mint = "{addresses.token_mint}"',
                f'mint_authority = "{addresses.mint_authority}"',
                "",
                "[desired]",
                "protocol_fee_bps = 250",
                "base_rate_per_mb = 1200",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path
