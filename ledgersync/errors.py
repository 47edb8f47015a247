"""
Error taxonomy for reconciliation runs.

Transient errors may be retried by re-running the whole pass (re-probe,
re-plan, re-execute). Every other kind halts the run. Each error carries the
address involved, a description of the observed state, and the action that
was attempted or withheld, which is what an operator needs to decide between
retrying, intervening manually, or redeploying.
"""

from __future__ import annotations

from typing import Any


class ConfigError(ValueError):
    """Configuration file is missing, unreadable or invalid."""


class SignerError(RuntimeError):
    """External transaction signer failed."""


class TransientLedgerError(RuntimeError):
    """Network or timeout failure talking to the ledger."""

    kind = "transient"


class ReconcileError(RuntimeError):
    """Base class for conditions that halt a reconciliation run."""

    kind = "fatal"
    transient = False

    def __init__(
        self,
        message: str,
        *,
        address: str | None = None,
        observed: str | None = None,
        action: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.address = address
        self.observed = observed
        self.action = action

    def diagnostic(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.address:
            lines.append(f"  address:  {self.address}")
        if self.observed:
            lines.append(f"  observed: {self.observed}")
        if self.action:
            lines.append(f"  action:   {self.action}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "address": self.address,
            "observed": self.observed,
            "action": self.action,
        }


class ActionFailed(ReconcileError):
    """A submitted action did not confirm. Subsequent actions were not attempted."""

    kind = "action_failed"

    def __init__(self, message: str, *, cause: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.cause = cause

    @property
    def transient(self) -> bool:  # type: ignore[override]
        # Timeout: the mutation may still land; re-probing tells the truth.
        return self.cause in {"timeout", "transport"}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["cause"] = self.cause
        return data


class AuthorityMismatch(ActionFailed):
    """Submission rejected because the signer lacks the required authority."""

    kind = "authority_mismatch"

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, cause="authority_mismatch", **kwargs)


class StaleLinkAnomaly(ReconcileError):
    """Config links a dependent resource that does not exist remotely."""

    kind = "stale_link_anomaly"


class OrphanedDependent(ReconcileError):
    """Dependent resource exists but the config does not link it."""

    kind = "orphaned_dependent"


class DependentIncompatible(ReconcileError):
    """Linked dependent resource exists but cannot be decoded."""

    kind = "dependent_incompatible"


class SequencingViolation(ReconcileError):
    """Dependent provisioning attempted before the primary resource is compatible."""

    kind = "sequencing_violation"


class MigrationNotConfirmed(ReconcileError):
    """Close-and-reinitialize migration needs explicit operator acknowledgment."""

    kind = "schema_incompatible"


class MigrationUnsafe(ReconcileError):
    """Close-and-reinitialize refused because a dependent resource may link to the account."""

    kind = "migration_unsafe"


class NotConverged(ReconcileError):
    """Final re-probe still differs from the desired state."""

    kind = "not_converged"
