"""CLI entrypoint for ledgersync."""

import sys
from pathlib import Path

import click

from . import __version__

DEFAULT_CONFIG_NAMES = ("ledgersync.toml", "ledgersync.yaml", "ledgersync.yml")


def _auto_detect_config(start: Path) -> Path | None:
    """Find a ledgersync config by walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        for name in DEFAULT_CONFIG_NAMES:
            candidate = p / name
            if candidate.is_file():
                return candidate
    return None


@click.group()
@click.version_option(__version__, prog_name="ledgersync")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, file_okay=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to config file (defaults to auto-detected ./ledgersync.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None) -> None:
    """ledgersync - Idempotent reconciliation of on-chain protocol accounts.

    Probe the protocol config and its token mint, plan the minimal set of
    corrective actions, and apply them one at a time.
    """
    ctx.ensure_object(dict)
    if config is None:
        detected = _auto_detect_config(Path.cwd())
        if detected is None:
            raise click.ClickException("Config not found. Pass --config /path/to/ledgersync.toml.")
        config = detected

    if not config.is_file():
        raise click.BadParameter(f"File '{config}' does not exist.", param_hint="--config / -c")

    ctx.obj["config"] = config.resolve()


@cli.command()
@click.option("--rpc-url", type=str, default=None, help="Override network.rpc_url")
@click.option(
    "--signer-cmd",
    type=str,
    default=None,
    envvar="LEDGERSYNC_SIGNER_CMD",
    help="Command that signs a transaction (JSON on stdin, base64 on stdout)",
)
@click.option(
    "--timeout",
    "confirm_timeout_s",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait for each confirmation (overrides network.confirm_timeout_s)",
)
@click.option(
    "--allow-migration",
    is_flag=True,
    help="Permit closing and re-initializing a config that does not decode under the current schema",
)
@click.option(
    "--force",
    is_flag=True,
    help="Skip confirmation for destructive operations (required with --allow-migration in non-interactive contexts)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Probe and show the plan without submitting anything",
)
@click.option("--retries", type=click.IntRange(min=0), default=0, show_default=True, help="Re-run the pass on transient failures")
@click.option("--retry-delay", "retry_delay_s", type=float, default=2.0, show_default=True, help="Seconds between re-runs")
@click.option(
    "--audit-log",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Audit log path (defaults to .ledgersync/audit.log next to the config)",
)
@click.option("--json", "output_json", is_flag=True, help="Output the run report as JSON")
@click.pass_context
def reconcile(
    ctx: click.Context,
    rpc_url: str | None,
    signer_cmd: str | None,
    confirm_timeout_s: float | None,
    allow_migration: bool,
    force: bool,
    dry_run: bool,
    retries: int,
    retry_delay_s: float,
    audit_log: Path | None,
    output_json: bool,
) -> None:
    """Bring the protocol config and token mint to the desired state.

    Examples:

        ledgersync reconcile --dry-run

        ledgersync -c devnet.toml reconcile --signer-cmd "node sign.js" --retries 2
    """
    from rich.console import Console
    from .commands.reconcile_cmd import run_reconcile

    console = Console(stderr=True)

    # Governance: destructive operations require explicit acknowledgment
    if allow_migration and not dry_run:
        console.print(
            "[yellow]⚠ Governance notice:[/] --allow-migration may close the protocol config and erase its data.",
            style="dim",
        )
        console.print(f"  Config: {ctx.obj['config']}", style="dim")
        if not force:
            if not click.confirm("Proceed if a migration is required?"):
                console.print("Aborted.", style="dim")
                sys.exit(1)

    exit_code = run_reconcile(
        ctx.obj["config"],
        rpc_url=rpc_url,
        signer_cmd=signer_cmd,
        confirm_timeout_s=confirm_timeout_s,
        allow_migration=allow_migration,
        dry_run=dry_run,
        retries=retries,
        retry_delay_s=retry_delay_s,
        audit_log=audit_log,
        output_json=output_json,
    )
    sys.exit(exit_code)


@cli.command()
@click.option("--rpc-url", type=str, default=None, help="Override network.rpc_url")
@click.option("--json", "output_json", is_flag=True, help="Output observed state as JSON")
@click.pass_context
def probe(ctx: click.Context, rpc_url: str | None, output_json: bool) -> None:
    """Show the observed state of the protocol config and token mint (read-only)."""
    from .commands.reconcile_cmd import run_probe

    exit_code = run_probe(ctx.obj["config"], rpc_url=rpc_url, output_json=output_json)
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--audit-log",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Audit log path (defaults to .ledgersync/audit.log next to the config)",
)
@click.option("--last", "last_n", type=click.IntRange(min=1), default=None, help="Show only the last N entries")
@click.option("--json", "output_json", is_flag=True, help="Output entries as JSON")
@click.pass_context
def audit(ctx: click.Context, audit_log: Path | None, last_n: int | None, output_json: bool) -> None:
    """Show submissions recorded in the audit log."""
    from .commands.reconcile_cmd import run_audit

    exit_code = run_audit(ctx.obj["config"], audit_log=audit_log, last_n=last_n, output_json=output_json)
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
