"""
Program-derived addresses.

The config account, the token mint and the mint authority all live at
addresses derived from the program id and fixed seeds. Configured values
are treated as overrides of these.
"""

from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey

PROTOCOL_CONFIG_SEEDS: tuple[bytes, ...] = (b"protocol_config",)
ARKHAM_MINT_SEEDS: tuple[bytes, ...] = (b"arkham_mint",)
MINT_AUTHORITY_SEEDS: tuple[bytes, ...] = (b"arkham", b"mint", b"authority")


def find_program_address(seeds: tuple[bytes, ...], program_id: str) -> tuple[str, int]:
    """Return the off-curve address for ``seeds`` under ``program_id`` and its bump."""
    address, bump = Pubkey.find_program_address(list(seeds), Pubkey.from_string(program_id))
    return str(address), bump


@dataclass(frozen=True)
class DerivedAddresses:
    protocol_config: str
    token_mint: str
    mint_authority: str

    @classmethod
    def for_program(cls, program_id: str) -> DerivedAddresses:
        return cls(
            protocol_config=find_program_address(PROTOCOL_CONFIG_SEEDS, program_id)[0],
            token_mint=find_program_address(ARKHAM_MINT_SEEDS, program_id)[0],
            mint_authority=find_program_address(MINT_AUTHORITY_SEEDS, program_id)[0],
        )
