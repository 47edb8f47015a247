"""State probing: classify what is stored at an address."""

from __future__ import annotations

from .codec import decode_config, decode_mint
from .ledger.client import LedgerClient
from .models import ABSENT, ObservedState


class StateProber:
    """
    Read-only classification of remote resources.

    Each probe performs exactly one ``fetch_raw`` and yields a fresh value;
    nothing is cached between calls. Retry policy belongs to the caller.
    """

    def __init__(self, client: LedgerClient) -> None:
        self.client = client

    def probe(self, address: str) -> ObservedState:
        """Classify the protocol config account at ``address``."""
        raw = self.client.fetch_raw(address)
        if raw is None:
            return ABSENT
        return decode_config(raw)

    def probe_mint(self, address: str) -> ObservedState:
        """Classify the token mint account at ``address``."""
        raw = self.client.fetch_raw(address)
        if raw is None:
            return ABSENT
        return decode_mint(raw)
