"""
Transaction signing.

Signing and wire-format transaction assembly belong to wallet tooling, not
to the reconciler. ``CommandSigner`` hands the instruction to an external
command as JSON on stdin and reads the base64 signed transaction from stdout:

    {"instruction": ..., "program_id": ..., "accounts": [...],
     "data": "<base64>", "recent_blockhash": "..."}
"""

from __future__ import annotations

import json
import shlex
import subprocess
from typing import TYPE_CHECKING, Protocol

from ..errors import SignerError

if TYPE_CHECKING:
    from ..codec import ActionPayload


class TransactionSigner(Protocol):
    def sign(self, payload: ActionPayload, recent_blockhash: str) -> str:
        """Return the signed transaction, base64-encoded."""
        ...


class CommandSigner:
    """Sign by running an external command."""

    def __init__(self, command: str | list[str], *, timeout_s: float = 30.0, env: dict[str, str] | None = None):
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise SignerError("signer command is empty")
        self.timeout_s = timeout_s
        self.env = env

    def sign(self, payload: ActionPayload, recent_blockhash: str) -> str:
        request = payload.to_dict()
        request["recent_blockhash"] = recent_blockhash
        try:
            result = subprocess.run(
                self.argv,
                input=json.dumps(request),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                env=self.env,
            )
        except FileNotFoundError as e:
            raise SignerError(f"signer command not found: {self.argv[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise SignerError(f"signer command timed out after {self.timeout_s}s") from e

        if result.returncode != 0:
            stderr = result.stderr.strip() or "<no output>"
            raise SignerError(f"signer exited with {result.returncode}: {stderr}")

        signed = result.stdout.strip()
        if not signed:
            raise SignerError("signer produced no transaction")
        return signed
