"""
Dependent-resource gate.

The token mint's address is recorded inside the protocol config account, so
the mint can only be provisioned once the config is compatible. The link
field in a freshly probed config is the only signal used: local memory of
what a previous (possibly failed) run did is never trusted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union, cast

from rich.console import Console

from .errors import DependentIncompatible, OrphanedDependent, StaleLinkAnomaly
from .executor import ActionExecutor
from .ledger.client import ExecutionResult
from .models import Absent, Compatible, Incompatible, MintState, ProtocolConfigState, ResourceAddresses
from .planning import plan_dependent
from .prober import StateProber


@dataclass(frozen=True)
class Skipped:
    """Dependent resource already provisioned; nothing submitted."""

    address: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": "skipped", "address": self.address, "reason": self.reason}


GateOutcome = Union[ExecutionResult, Skipped]


class DependentResourceGate:
    def __init__(
        self,
        prober: StateProber,
        executor: ActionExecutor,
        addresses: ResourceAddresses,
        *,
        console: Console | None = None,
    ) -> None:
        self.prober = prober
        self.executor = executor
        self.addresses = addresses
        self.console = console or Console(stderr=True)

    def maybe_provision_dependent(
        self,
        primary_address: str | None = None,
        dependent_address: str | None = None,
    ) -> GateOutcome:
        """
        Provision the token mint if, and only if, the config says it is missing.

        Raises:
            SequencingViolation: config is not compatible (nothing submitted)
            StaleLinkAnomaly: config links a mint that does not exist
            DependentIncompatible: linked mint exists but does not decode
            OrphanedDependent: link is null but the mint address is occupied
        """
        primary_address = primary_address or self.addresses.protocol_config
        dependent_address = dependent_address or self.addresses.token_mint

        # Fresh probe: a pre-execution snapshot may predate a just-confirmed Initialize.
        primary = self.prober.probe(primary_address)
        plan = plan_dependent(
            primary,
            self.addresses,
            primary_address=primary_address,
            dependent_address=dependent_address,
        )
        # plan_dependent only returns for a compatible config record.
        record = cast(ProtocolConfigState, cast(Compatible, primary).record)

        if record.has_dependent_link:
            linked = record.token_mint
            if linked != dependent_address:
                self.console.print(
                    f"Config links token mint {linked}, configured address is {dependent_address}",
                    style="yellow",
                )
            observed = self.prober.probe_mint(linked)
            if isinstance(observed, Absent):
                raise StaleLinkAnomaly(
                    "protocol config links a token mint that does not exist; manual inspection required",
                    address=linked,
                    observed=f"config {primary_address} is {primary.describe()}, linked mint is absent",
                    action="withheld: no automatic repair of a stale link",
                )
            if isinstance(observed, Incompatible):
                raise DependentIncompatible(
                    "linked token mint exists but is not a decodable mint",
                    address=linked,
                    observed=observed.describe(),
                    action="withheld: initialize token mint",
                )
            mint = observed.record
            if isinstance(mint, MintState) and mint.mint_authority != self.addresses.mint_authority:
                self.console.print(
                    f"Token mint authority is {mint.mint_authority}, expected {self.addresses.mint_authority}",
                    style="yellow",
                )
            self.console.print(f"Token mint: already initialized at {linked}", style="green")
            return Skipped(linked, "linked token mint exists")

        existing = self.prober.probe_mint(dependent_address)
        if not isinstance(existing, Absent):
            raise OrphanedDependent(
                "an account already exists at the token mint address but the config does not link it "
                "(a previous mint initialization may have partially landed); manual intervention required",
                address=dependent_address,
                observed=f"config link is null, mint address is {existing.describe()}",
                action=f"withheld: {plan.actions[0].describe()}",
            )

        self.console.print("Token mint: not initialized", style="yellow")
        results = self.executor.execute(plan)
        return results[0]
