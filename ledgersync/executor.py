"""
Plan execution.

Actions run strictly in plan order, one at a time: action i must confirm (or
fail) before action i+1 is submitted. A Close followed by an Initialize of
the same address must never overlap, otherwise the Initialize either fails on
an occupied address or builds on data that has not been cleared yet.

On the first failure execution stops; later actions in the same plan are
never attempted.
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from .audit_log import log_submission
from .codec import encode_action
from .errors import ActionFailed, AuthorityMismatch
from .ledger.client import ExecutionResult, Failed, FailureCause, LedgerClient
from .models import ResourceAddresses
from .planning import Plan, Update


class ActionExecutor:
    """Submit a plan's actions through a ledger client."""

    def __init__(
        self,
        client: LedgerClient,
        addresses: ResourceAddresses,
        *,
        console: Console | None = None,
        audit_log_path: Path | None = None,
    ) -> None:
        self.client = client
        self.addresses = addresses
        self.console = console or Console(stderr=True)
        self.audit_log_path = audit_log_path

    def execute(self, plan: Plan) -> list[ExecutionResult]:
        """Return one result per attempted action, in plan order."""
        results: list[ExecutionResult] = []
        for action in plan.actions:
            payload = encode_action(action, self.addresses)
            self.console.print(f"Submitting {payload.instruction} for {action.address}...", style="dim")

            result = self.client.submit(payload)
            results.append(result)

            if self.audit_log_path is not None:
                metadata: dict = {"instruction": payload.instruction}
                if isinstance(action, Update):
                    metadata["changed_fields"] = action.delta.changed_fields()
                log_submission(self.audit_log_path, action.kind, action.address, result.to_dict(), metadata)

            if isinstance(result, Failed):
                self.console.print(f"{payload.instruction} failed ({result.cause.value}): {result.detail}", style="red")
                break
            self.console.print(f"{payload.instruction} confirmed: {result.transaction_id}", style="green")
        return results


def raise_for_results(plan: Plan, results: list[ExecutionResult], *, observed: str) -> None:
    """Raise the matching Fatal if the plan did not run to completion."""
    for action, result in zip(plan.actions, results):
        if not isinstance(result, Failed):
            continue
        skipped = [a.describe() for a in plan.actions[len(results) :]]
        action_text = action.describe()
        if skipped:
            action_text += f"; not attempted: {'; '.join(skipped)}"
        message = f"{action.kind} failed: {result.detail or result.cause.value}"
        if result.cause == FailureCause.TIMEOUT:
            message += " (outcome unknown; re-run to re-probe)"
        if result.cause == FailureCause.AUTHORITY_MISMATCH:
            raise AuthorityMismatch(message, address=action.address, observed=observed, action=action_text)
        raise ActionFailed(message, cause=result.cause.value, address=action.address, observed=observed, action=action_text)
