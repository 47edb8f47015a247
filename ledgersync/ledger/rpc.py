"""Ledger JSON-RPC client (small, dependency-free).

Talks JSON-RPC 2.0 over HTTP to a ledger node:
  - getAccountInfo        raw account bytes (base64)
  - getLatestBlockhash    recent blockhash for signing
  - sendTransaction       submit a signed transaction
  - getSignatureStatuses  confirmation polling

Confirmation is an explicit polling loop with a bounded wait. When the wait
expires the result is ``Failed(TIMEOUT)``: the transaction may still land,
so callers must re-probe rather than assume either outcome.
"""

from __future__ import annotations

import base64
import itertools
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..errors import SignerError, TransientLedgerError
from .client import Confirmed, ExecutionResult, Failed, FailureCause

if TYPE_CHECKING:
    from ..codec import ActionPayload
    from .signer import TransactionSigner


_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}

# Program error codes that mean "the signer is not allowed to do this".
# 6016: UnauthorizedAdminAction (custom program error)
# 2001/2002: Anchor ConstraintHasOne / ConstraintSigner
# 3010: Anchor AccountNotSigner
AUTHORITY_ERROR_CODES = frozenset({6016, 2001, 2002, 3010})
_AUTHORITY_ERROR_NAMES = frozenset({"MissingRequiredSignature", "SignatureFailure", "InvalidAccountOwner"})

# sendTransaction: signature verification failed before preflight
_RPC_SIGNATURE_VERIFICATION_FAILURE = -32003


@dataclass(frozen=True)
class LedgerRpcConfig:
    rpc_url: str
    commitment: str = "confirmed"
    timeout_s: float = 10.0  # per HTTP request
    confirm_timeout_s: float = 60.0  # bounded wait for one confirmation
    poll_interval_s: float = 0.5
    auth_token: str | None = None


class RpcError(RuntimeError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


def classify_transaction_error(err: Any) -> FailureCause:
    """Map a transaction error value to a failure cause."""
    if isinstance(err, str):
        return FailureCause.AUTHORITY_MISMATCH if err in _AUTHORITY_ERROR_NAMES else FailureCause.REJECTED
    if isinstance(err, dict):
        ix_error = err.get("InstructionError")
        if isinstance(ix_error, list) and len(ix_error) == 2:
            detail = ix_error[1]
            if isinstance(detail, dict) and detail.get("Custom") in AUTHORITY_ERROR_CODES:
                return FailureCause.AUTHORITY_MISMATCH
            if isinstance(detail, str) and detail in _AUTHORITY_ERROR_NAMES:
                return FailureCause.AUTHORITY_MISMATCH
    return FailureCause.REJECTED


def _commitment_reached(status: str | None, wanted: str) -> bool:
    if status is None:
        return False
    return _COMMITMENT_RANK.get(status, -1) >= _COMMITMENT_RANK.get(wanted, 1)


class LedgerRpcClient:
    """Minimal ledger JSON-RPC client implementing ``LedgerClient``."""

    def __init__(
        self,
        cfg: LedgerRpcConfig,
        signer: TransactionSigner | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cfg = cfg
        self._signer = signer
        self._clock = clock
        self._sleep = sleep
        self._ids = itertools.count(1)

        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if cfg.auth_token:
            self._headers["Authorization"] = f"Bearer {cfg.auth_token}"

    @property
    def endpoint(self) -> str:
        return self._cfg.rpc_url

    def call(self, method: str, params: list[Any]) -> Any:
        """Issue one JSON-RPC call and return its ``result``."""
        body = json.dumps({"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}).encode("utf-8")
        req = Request(self._cfg.rpc_url, data=body, method="POST", headers=self._headers)
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            raise TransientLedgerError(f"RPC HTTP error {e.code}: {e.reason} ({method})") from e
        except URLError as e:
            raise TransientLedgerError(f"RPC connection error: {e.reason} ({method})") from e
        except TimeoutError as e:
            raise TransientLedgerError(f"RPC request timed out after {self._cfg.timeout_s}s ({method})") from e
        except json.JSONDecodeError as e:
            raise TransientLedgerError(f"RPC returned invalid JSON ({method})") from e

        error = payload.get("error")
        if error:
            raise RpcError(int(error.get("code", 0)), str(error.get("message", "unknown RPC error")), error.get("data"))
        return payload.get("result")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def fetch_raw(self, address: str) -> bytes | None:
        try:
            result = self.call(
                "getAccountInfo",
                [address, {"encoding": "base64", "commitment": self._cfg.commitment}],
            )
        except RpcError as e:
            raise TransientLedgerError(f"getAccountInfo({address}) failed: {e}") from e

        value = (result or {}).get("value")
        if value is None:
            return None
        data = value.get("data")
        if isinstance(data, list) and data:
            return base64.b64decode(data[0])
        if isinstance(data, str):
            return base64.b64decode(data)
        raise TransientLedgerError(f"getAccountInfo({address}) returned unexpected data encoding")

    def latest_blockhash(self) -> str:
        try:
            result = self.call("getLatestBlockhash", [{"commitment": self._cfg.commitment}])
        except RpcError as e:
            raise TransientLedgerError(f"getLatestBlockhash failed: {e}") from e
        return str(result["value"]["blockhash"])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def submit(self, payload: ActionPayload) -> ExecutionResult:
        if self._signer is None:
            return Failed(FailureCause.SIGNER, "no transaction signer configured")

        try:
            blockhash = self.latest_blockhash()
        except TransientLedgerError as e:
            return Failed(FailureCause.TRANSPORT, str(e))

        try:
            signed = self._signer.sign(payload, blockhash)
        except SignerError as e:
            return Failed(FailureCause.SIGNER, str(e))

        try:
            signature = self.call(
                "sendTransaction",
                [signed, {"encoding": "base64", "preflightCommitment": self._cfg.commitment}],
            )
        except RpcError as e:
            if e.code == _RPC_SIGNATURE_VERIFICATION_FAILURE:
                return Failed(FailureCause.AUTHORITY_MISMATCH, e.message)
            err = e.data.get("err") if isinstance(e.data, dict) else None
            cause = classify_transaction_error(err) if err is not None else FailureCause.REJECTED
            return Failed(cause, e.message)
        except TransientLedgerError as e:
            # The transaction may have reached the node; only a re-probe can tell.
            return Failed(FailureCause.TRANSPORT, str(e))

        return self.wait_for_confirmation(str(signature))

    def wait_for_confirmation(self, signature: str) -> ExecutionResult:
        """Poll until the signature reaches the configured commitment, fails, or the wait expires."""
        deadline = self._clock() + self._cfg.confirm_timeout_s
        while True:
            status: dict[str, Any] | None = None
            try:
                result = self.call("getSignatureStatuses", [[signature], {"searchTransactionHistory": False}])
                values = (result or {}).get("value") or [None]
                status = values[0]
            except (TransientLedgerError, RpcError):
                status = None  # keep polling until the deadline

            if status:
                err = status.get("err")
                if err is not None:
                    return Failed(classify_transaction_error(err), f"transaction failed: {err}", signature)
                if _commitment_reached(status.get("confirmationStatus"), self._cfg.commitment):
                    return Confirmed(signature)

            if self._clock() >= deadline:
                return Failed(
                    FailureCause.TIMEOUT,
                    f"not confirmed within {self._cfg.confirm_timeout_s}s",
                    signature,
                )
            self._sleep(self._cfg.poll_interval_s)
