"""Ledger client protocol and submission outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from ..codec import ActionPayload


class FailureCause(str, Enum):
    TIMEOUT = "timeout"  # confirmation wait expired; outcome unknown, re-probe
    AUTHORITY_MISMATCH = "authority_mismatch"  # signer lacks the required permission
    REJECTED = "rejected"  # program or preflight rejected the instruction
    TRANSPORT = "transport"  # network failure while submitting
    SIGNER = "signer"  # external signer failed; nothing was sent


@dataclass(frozen=True)
class Confirmed:
    transaction_id: str

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": "confirmed", "transaction_id": self.transaction_id}


@dataclass(frozen=True)
class Failed:
    cause: FailureCause
    detail: str = ""
    transaction_id: str | None = None  # set when the transaction was sent but not confirmed

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": "failed",
            "cause": self.cause.value,
            "detail": self.detail,
            "transaction_id": self.transaction_id,
        }


ExecutionResult = Union[Confirmed, Failed]


@runtime_checkable
class LedgerClient(Protocol):
    """
    Read/write access to the remote ledger.

    ``fetch_raw`` returns ``None`` when nothing is stored at the address and
    raises ``TransientLedgerError`` on network failure. ``submit`` blocks
    until the instruction confirms, fails, or the bounded wait expires; it
    never raises for remote outcomes.
    """

    def fetch_raw(self, address: str) -> bytes | None:
        ...

    def submit(self, payload: ActionPayload) -> ExecutionResult:
        ...
