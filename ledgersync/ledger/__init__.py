"""
Remote ledger access.

The engine consumes exactly two capabilities: ``fetch_raw`` (read the bytes
stored at an address) and ``submit`` (send one instruction and wait for its
confirmation). Clients are passed explicitly to each component; there is no
ambient connection object.
"""

from __future__ import annotations

from .client import (
    Confirmed,
    ExecutionResult,
    Failed,
    FailureCause,
    LedgerClient,
)
from .rpc import LedgerRpcClient, LedgerRpcConfig
from .signer import CommandSigner, TransactionSigner

__all__ = [
    # Client protocol
    "Confirmed",
    "ExecutionResult",
    "Failed",
    "FailureCause",
    "LedgerClient",
    # JSON-RPC implementation
    "LedgerRpcClient",
    "LedgerRpcConfig",
    # Signing
    "CommandSigner",
    "TransactionSigner",
]
