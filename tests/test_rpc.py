"""Tests for the JSON-RPC ledger client (no network: ``call`` is scripted)."""

from __future__ import annotations

import base64
from typing import Any

import pytest

from ledgersync.codec import encode_action
from ledgersync.errors import SignerError, TransientLedgerError
from ledgersync.ledger.client import Confirmed, Failed, FailureCause, LedgerClient
from ledgersync.ledger.rpc import LedgerRpcClient, LedgerRpcConfig, RpcError, classify_transaction_error
from ledgersync.planning import Close


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class MockSigner:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests: list[tuple[Any, str]] = []

    def sign(self, payload, recent_blockhash: str) -> str:
        self.requests.append((payload, recent_blockhash))
        if self.error:
            raise self.error
        return "c2lnbmVk"


class ScriptedRpcClient(LedgerRpcClient):
    """Answers ``call`` from a per-method script instead of HTTP."""

    def __init__(self, script: dict[str, list[Any]], signer=None, **cfg: Any) -> None:
        self.clock = FakeClock()
        config = LedgerRpcConfig(rpc_url="http://rpc.invalid", **cfg)
        super().__init__(config, signer, clock=self.clock, sleep=self.clock.sleep)
        self.script = script
        self.calls: list[tuple[str, list[Any]]] = []

    def call(self, method: str, params: list[Any]) -> Any:
        self.calls.append((method, params))
        responses = self.script[method]
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _status(confirmation: str | None = "confirmed", err: Any = None) -> dict[str, Any]:
    return {"value": [{"confirmationStatus": confirmation, "err": err}]}


@pytest.fixture
def close_payload(addresses):
    return encode_action(Close(addresses.protocol_config, addresses.authority), addresses)


# -----------------------------------------------------------------------------
# Error classification
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "err, cause",
    [
        ({"InstructionError": [0, {"Custom": 6016}]}, FailureCause.AUTHORITY_MISMATCH),
        ({"InstructionError": [0, {"Custom": 2001}]}, FailureCause.AUTHORITY_MISMATCH),
        ({"InstructionError": [1, "MissingRequiredSignature"]}, FailureCause.AUTHORITY_MISMATCH),
        ("SignatureFailure", FailureCause.AUTHORITY_MISMATCH),
        ({"InstructionError": [0, {"Custom": 6000}]}, FailureCause.REJECTED),
        ({"InstructionError": [0, "AccountAlreadyInitialized"]}, FailureCause.REJECTED),
        ("BlockhashNotFound", FailureCause.REJECTED),
    ],
)
def test_classify_transaction_error(err, cause):
    assert classify_transaction_error(err) == cause


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


def test_client_satisfies_protocol():
    client = ScriptedRpcClient({})
    assert isinstance(client, LedgerClient)


def test_fetch_raw_decodes_base64():
    data = b"\x01\x02\x03"
    client = ScriptedRpcClient(
        {"getAccountInfo": [{"value": {"data": [base64.b64encode(data).decode(), "base64"]}}]}
    )
    assert client.fetch_raw("addr") == data
    method, params = client.calls[0]
    assert method == "getAccountInfo"
    assert params[1] == {"encoding": "base64", "commitment": "confirmed"}


def test_fetch_raw_missing_account_is_none():
    client = ScriptedRpcClient({"getAccountInfo": [{"value": None}]})
    assert client.fetch_raw("addr") is None


def test_fetch_raw_rpc_error_is_transient():
    client = ScriptedRpcClient({"getAccountInfo": [RpcError(-32005, "node is behind")]})
    with pytest.raises(TransientLedgerError):
        client.fetch_raw("addr")


# -----------------------------------------------------------------------------
# Submission and confirmation
# -----------------------------------------------------------------------------


def test_submit_confirms(close_payload):
    signer = MockSigner()
    client = ScriptedRpcClient(
        {
            "getLatestBlockhash": [{"value": {"blockhash": "hash1"}}],
            "sendTransaction": ["sig1"],
            "getSignatureStatuses": [_status("processed"), _status("confirmed")],
        },
        signer,
    )

    result = client.submit(close_payload)

    assert result == Confirmed("sig1")
    assert signer.requests[0][1] == "hash1"
    assert [m for m, _ in client.calls].count("getSignatureStatuses") == 2


def test_submit_without_signer_fails(close_payload):
    result = ScriptedRpcClient({}).submit(close_payload)
    assert isinstance(result, Failed)
    assert result.cause == FailureCause.SIGNER


def test_signer_error_is_reported(close_payload):
    client = ScriptedRpcClient(
        {"getLatestBlockhash": [{"value": {"blockhash": "h"}}]},
        MockSigner(SignerError("signer exited with 1")),
    )
    result = client.submit(close_payload)
    assert result.cause == FailureCause.SIGNER
    assert not any(m == "sendTransaction" for m, _ in client.calls)


def test_signature_verification_failure_is_authority_mismatch(close_payload):
    client = ScriptedRpcClient(
        {
            "getLatestBlockhash": [{"value": {"blockhash": "h"}}],
            "sendTransaction": [RpcError(-32003, "Transaction signature verification failure")],
        },
        MockSigner(),
    )
    assert client.submit(close_payload).cause == FailureCause.AUTHORITY_MISMATCH


def test_preflight_failure_is_classified(close_payload):
    err = {"err": {"InstructionError": [0, {"Custom": 6016}]}}
    client = ScriptedRpcClient(
        {
            "getLatestBlockhash": [{"value": {"blockhash": "h"}}],
            "sendTransaction": [RpcError(-32002, "Transaction simulation failed", err)],
        },
        MockSigner(),
    )
    assert client.submit(close_payload).cause == FailureCause.AUTHORITY_MISMATCH


def test_send_transport_error(close_payload):
    client = ScriptedRpcClient(
        {
            "getLatestBlockhash": [{"value": {"blockhash": "h"}}],
            "sendTransaction": [TransientLedgerError("connection reset")],
        },
        MockSigner(),
    )
    assert client.submit(close_payload).cause == FailureCause.TRANSPORT


def test_on_chain_failure_carries_signature():
    client = ScriptedRpcClient(
        {"getSignatureStatuses": [_status("confirmed", {"InstructionError": [0, {"Custom": 6016}]})]}
    )
    result = client.wait_for_confirmation("sig9")
    assert isinstance(result, Failed)
    assert result.cause == FailureCause.AUTHORITY_MISMATCH
    assert result.transaction_id == "sig9"


def test_confirmation_wait_is_bounded():
    client = ScriptedRpcClient(
        {"getSignatureStatuses": [{"value": [None]}]},
        confirm_timeout_s=2.0,
        poll_interval_s=0.5,
    )

    result = client.wait_for_confirmation("sig2")

    assert isinstance(result, Failed)
    assert result.cause == FailureCause.TIMEOUT
    assert result.transaction_id == "sig2"
    assert client.clock.now == pytest.approx(2.0)


def test_confirmation_polling_survives_transient_errors():
    client = ScriptedRpcClient(
        {"getSignatureStatuses": [TransientLedgerError("timeout"), _status("finalized")]},
        commitment="finalized",
    )
    assert client.wait_for_confirmation("sig3") == Confirmed("sig3")


def test_auth_header_is_set():
    client = LedgerRpcClient(LedgerRpcConfig(rpc_url="http://rpc.invalid", auth_token="tok"))
    assert client._headers["Authorization"] == "Bearer tok"
    assert client.endpoint == "http://rpc.invalid"
