"""
Reconciliation run: single pass over the protocol config and its token mint.

    probe -> reconcile -> [migration gate] -> execute -> dependent gate -> verify

A run is stateless: every decision is re-derived from a fresh probe, so a run
that failed half-way is recovered by running again. There is no background
loop and no internal parallelism; every ledger call blocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console

from .errors import MigrationNotConfirmed, MigrationUnsafe, NotConverged
from .executor import ActionExecutor, raise_for_results
from .gate import DependentResourceGate, GateOutcome
from .ledger.client import Confirmed, ExecutionResult, Failed, LedgerClient
from .models import (
    Absent,
    Compatible,
    DesiredSpec,
    ObservedState,
    ProbeSnapshot,
    ProtocolConfigState,
    ResourceAddresses,
)
from .planning import InitializeDependent, Plan, reconcile
from .prober import StateProber


@dataclass
class RunReport:
    """What one run observed, planned and did."""

    observed: ObservedState
    plan: Plan
    results: list[ExecutionResult] = field(default_factory=list)
    dependent: GateOutcome | None = None
    final: ObservedState | None = None
    follow_up: Plan | None = None
    dry_run: bool = False

    @property
    def submitted(self) -> int:
        count = len(self.results)
        if isinstance(self.dependent, (Confirmed, Failed)):
            count += 1
        return count

    def to_dict(self) -> dict[str, Any]:
        return {
            "observed": self.observed.to_dict(),
            "plan": self.plan.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "dependent": self.dependent.to_dict() if self.dependent is not None else None,
            "final": self.final.to_dict() if self.final is not None else None,
            "follow_up": self.follow_up.to_dict() if self.follow_up is not None else None,
            "dry_run": self.dry_run,
        }


class Reconciliation:
    """
    One reconciliation pass with explicit collaborators.

    The ledger client is passed in; prober, executor and gate are built
    around it so no component reaches for an ambient connection.
    """

    def __init__(
        self,
        client: LedgerClient,
        addresses: ResourceAddresses,
        desired: DesiredSpec,
        *,
        console: Console | None = None,
        audit_log_path: Path | None = None,
        allow_migration: bool = False,
    ) -> None:
        self.addresses = addresses
        self.desired = desired
        self.allow_migration = allow_migration
        self.console = console or Console(stderr=True)
        self.prober = StateProber(client)
        self.executor = ActionExecutor(client, addresses, console=self.console, audit_log_path=audit_log_path)
        self.gate = DependentResourceGate(self.prober, self.executor, addresses, console=self.console)

    # -------------------------------------------------------------------------
    # Read-only phase
    # -------------------------------------------------------------------------

    def plan(self) -> tuple[ObservedState, Plan]:
        """Probe the config and compute the plan. No submissions."""
        observed = self.prober.probe(self.addresses.protocol_config)
        return observed, reconcile(self.desired, observed, self.addresses)

    def probe_all(self) -> ProbeSnapshot:
        config = self.prober.probe(self.addresses.protocol_config)
        notes: list[str] = []
        mint_address = self.addresses.token_mint
        if isinstance(config, Compatible) and isinstance(config.record, ProtocolConfigState):
            if config.record.has_dependent_link:
                mint_address = config.record.token_mint
                if mint_address != self.addresses.token_mint:
                    notes.append(f"config links token mint {mint_address}, configured {self.addresses.token_mint}")
            else:
                notes.append("config has no token mint linked")
        return ProbeSnapshot(
            protocol_config=config,
            token_mint=self.prober.probe_mint(mint_address),
            addresses=self.addresses,
            token_mint_address=mint_address,
            notes=notes,
        )

    # -------------------------------------------------------------------------
    # Full pass
    # -------------------------------------------------------------------------

    def run(self, *, dry_run: bool = False) -> RunReport:
        config_address = self.addresses.protocol_config

        self.console.print(f"Checking protocol config {config_address}...", style="dim")
        observed, plan = self.plan()
        self.console.print(f"Status: {observed.describe()}", style="yellow")
        self.console.print(plan.summary(), style="dim")

        report = RunReport(observed=observed, plan=plan, dry_run=dry_run)
        if dry_run:
            return report

        if plan.effect_summary.requires_acknowledgment:
            self._check_migration(observed, plan)

        if not plan.is_empty:
            report.results = self.executor.execute(plan)
            raise_for_results(plan, report.results, observed=observed.describe())
            if "initialize" in plan.kinds:
                report.follow_up = self._settle_initialize(report)
        else:
            self.console.print("Protocol config is up to date.", style="green")

        self.console.print("Checking token mint...", style="dim")
        report.dependent = self.gate.maybe_provision_dependent(config_address, self.addresses.token_mint)
        if isinstance(report.dependent, Failed):
            dependent_plan = Plan((InitializeDependent(self.addresses.token_mint, config_address),))
            raise_for_results(dependent_plan, [report.dependent], observed="config compatible, token mint not linked")

        report.final = self._verify()
        return report

    def _settle_initialize(self, report: RunReport) -> Plan | None:
        """Initialize cannot set the reputation updater; converge remaining fields with an Update."""
        observed, follow_up = self.plan()
        if follow_up.is_empty or not isinstance(observed, Compatible):
            return None
        self.console.print(follow_up.summary(), style="dim")
        results = self.executor.execute(follow_up)
        report.results.extend(results)
        raise_for_results(follow_up, results, observed=observed.describe())
        return follow_up

    def _check_migration(self, observed: ObservedState, plan: Plan) -> None:
        """Close-and-reinitialize is destructive: require acknowledgment and an unoccupied mint address."""
        config_address = self.addresses.protocol_config
        withheld = "withheld: " + "; ".join(a.describe() for a in plan.actions)

        if not self.allow_migration:
            raise MigrationNotConfirmed(
                "protocol config exists but does not decode under the current schema; "
                "closing and re-initializing erases it (pass --allow-migration to proceed)",
                address=config_address,
                observed=observed.describe(),
                action=withheld,
            )

        # A mint created against the old record would lose its back-link.
        mint = self.prober.probe_mint(self.addresses.token_mint)
        if not isinstance(mint, Absent):
            raise MigrationUnsafe(
                "a token mint may still reference this config; refusing to close it",
                address=config_address,
                observed=f"config {observed.describe()}, token mint {self.addresses.token_mint} is {mint.describe()}",
                action=withheld,
            )

    def _verify(self) -> ObservedState:
        """Re-probe both resources and check that nothing is left to do."""
        config_address = self.addresses.protocol_config
        final = self.prober.probe(config_address)

        if not isinstance(final, Compatible) or not isinstance(final.record, ProtocolConfigState):
            raise NotConverged(
                "protocol config is not compatible after the run",
                address=config_address,
                observed=final.describe(),
            )

        remaining = reconcile(self.desired, final, self.addresses)
        if not remaining.is_empty:
            raise NotConverged(
                "protocol config still differs from the desired state after the run",
                address=config_address,
                observed=final.describe(),
                action="pending: " + "; ".join(a.describe() for a in remaining.actions),
            )

        if not final.record.has_dependent_link:
            raise NotConverged(
                "protocol config does not link a token mint after the run",
                address=config_address,
                observed=final.describe(),
            )
        mint = self.prober.probe_mint(final.record.token_mint)
        if not isinstance(mint, Compatible):
            raise NotConverged(
                "linked token mint is not a compatible mint after the run",
                address=final.record.token_mint,
                observed=mint.describe(),
            )

        for warning in remaining.warnings:
            self.console.print(f"Warning: {warning}", style="yellow")
        self.console.print("Protocol config and token mint are in the desired state.", style="green")
        return final
