"""Reconcile, probe and audit commands."""

from __future__ import annotations

import json
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from rich.table import Table

from ..audit_log import default_audit_log_path, format_audit_entry, read_audit_log
from ..config import AppConfig, load_config
from ..engine import Reconciliation
from ..errors import ConfigError, ReconcileError, TransientLedgerError
from ..ledger.client import LedgerClient
from ..ledger.rpc import LedgerRpcClient
from ..ledger.signer import CommandSigner
from ..models import Compatible, MintState, ObservedState, ProtocolConfigState


def _load(config_path: Path, err: Console, **overrides: Any) -> AppConfig | None:
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        err.print(f"Config error: {e}", style="bold red")
        return None
    for note in cfg.notes:
        err.print(f"Note: {note}", style="yellow")
    network_overrides = {k: v for k, v in overrides.items() if v is not None}
    if network_overrides:
        cfg = replace(cfg, network=replace(cfg.network, **network_overrides))
    return cfg


def _build_client(cfg: AppConfig) -> LedgerClient:
    signer = CommandSigner(cfg.network.signer_cmd, timeout_s=cfg.network.timeout_s * 3) if cfg.network.signer_cmd else None
    return LedgerRpcClient(cfg.network.to_rpc_config(), signer)


def run_reconcile(
    config_path: Path,
    *,
    rpc_url: str | None = None,
    signer_cmd: str | None = None,
    confirm_timeout_s: float | None = None,
    allow_migration: bool = False,
    dry_run: bool = False,
    retries: int = 0,
    retry_delay_s: float = 2.0,
    audit_log: Path | None = None,
    output_json: bool = False,
    client: LedgerClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Run one reconciliation pass (retrying the whole pass on transient failures).

    Exit codes: 0 when both resources are in the desired state (or, with
    dry_run, when planning succeeded); 1 on any fatal condition.
    """
    err = Console(stderr=True)

    cfg = _load(
        config_path,
        err,
        rpc_url=rpc_url,
        signer_cmd=signer_cmd,
        confirm_timeout_s=confirm_timeout_s,
    )
    if cfg is None:
        return 1

    try:
        ledger = client or _build_client(cfg)
    except ConfigError as e:
        err.print(f"Config error: {e}", style="bold red")
        return 1

    audit_path = audit_log or default_audit_log_path(config_path)
    engine = Reconciliation(
        ledger,
        cfg.addresses,
        cfg.desired,
        console=err,
        audit_log_path=None if dry_run else audit_path,
        allow_migration=allow_migration,
    )

    attempts = max(retries, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            report = engine.run(dry_run=dry_run)
        except TransientLedgerError as e:
            failure: Exception = e
        except ReconcileError as e:
            if not e.transient or attempt == attempts:
                err.print(e.diagnostic(), style="red")
                if output_json:
                    print(json.dumps({"error": e.to_dict()}, indent=2))
                return 1
            failure = e
        else:
            if output_json:
                print(json.dumps(report.to_dict(), indent=2))
            elif dry_run:
                err.print("Dry run: no actions submitted.", style="dim")
            else:
                err.print(f"Reconcile complete ({report.submitted} submission(s)).", style="green")
            return 0

        if attempt == attempts:
            err.print(f"transient: {failure}", style="red")
            if output_json:
                print(json.dumps({"error": {"kind": "transient", "message": str(failure)}}, indent=2))
            return 1
        err.print(
            f"Transient failure (attempt {attempt}/{attempts}): {failure}; re-running in {retry_delay_s}s",
            style="yellow",
        )
        sleep(retry_delay_s)

    return 1


def _state_rows(observed: ObservedState) -> list[tuple[str, str]]:
    if not isinstance(observed, Compatible):
        return [("state", observed.describe())]
    rows = [("state", observed.describe())]
    record = observed.record
    if isinstance(record, ProtocolConfigState):
        data = record.to_dict()
        data["protocol_fee_bps"] = f"{record.protocol_fee_bps} ({record.protocol_fee_bps / 100}%)"
        data["geo_premiums"] = ", ".join(f"{gp.region_code}:{gp.premium_bps}" for gp in record.geo_premiums) or "none"
    elif isinstance(record, MintState):
        data = record.to_dict()
    else:
        data = {}
    rows.extend((k, str(v)) for k, v in data.items())
    return rows


def run_probe(
    config_path: Path,
    *,
    rpc_url: str | None = None,
    output_json: bool = False,
    client: LedgerClient | None = None,
) -> int:
    """Show the observed state of the config and its token mint (read-only)."""
    err = Console(stderr=True)
    cfg = _load(config_path, err, rpc_url=rpc_url)
    if cfg is None:
        return 1

    try:
        ledger = client or _build_client(cfg)
        engine = Reconciliation(ledger, cfg.addresses, cfg.desired, console=err)
        snapshot = engine.probe_all()
    except ConfigError as e:
        err.print(f"Config error: {e}", style="bold red")
        return 1
    except TransientLedgerError as e:
        err.print(f"transient: {e}", style="red")
        return 1

    if output_json:
        print(
            json.dumps(
                {
                    "protocol_config": {"address": cfg.addresses.protocol_config, **snapshot.protocol_config.to_dict()},
                    "token_mint": {"address": snapshot.token_mint_address, **snapshot.token_mint.to_dict()},
                    "notes": snapshot.notes,
                },
                indent=2,
            )
        )
        return 0

    console = Console()
    for title, address, observed in (
        ("Protocol Config", cfg.addresses.protocol_config, snapshot.protocol_config),
        ("Token Mint", snapshot.token_mint_address, snapshot.token_mint),
    ):
        table = Table(title=f"{title}: {address}")
        table.add_column("field", style="cyan", no_wrap=True)
        table.add_column("value")
        for key, value in _state_rows(observed):
            table.add_row(key, value)
        console.print(table)

    for note in snapshot.notes:
        err.print(f"Note: {note}", style="yellow")
    return 0


def run_audit(
    config_path: Path,
    *,
    audit_log: Path | None = None,
    last_n: int | None = None,
    output_json: bool = False,
) -> int:
    """Print entries from the submission audit log."""
    err = Console(stderr=True)
    path = audit_log or default_audit_log_path(config_path)
    entries = read_audit_log(path, last_n=last_n)

    if output_json:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return 0

    if not entries:
        err.print(f"No audit entries in {path}", style="dim")
        return 0

    console = Console()
    for entry in entries:
        style = "green" if entry.outcome == "confirmed" else "red"
        console.print(format_audit_entry(entry), style=style)
    return 0
