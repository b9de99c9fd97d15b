"""
Program-derived address helpers for the oracle program.

Every account the oracle program owns lives at a PDA derived from a fixed
namespace tag plus zero or more caller seeds:

    global_state                      -> singleton configuration
    vault_authority                   -> signer PDA for the stake vault
    token_vault                       -> stake accounting record
    governance                        -> governance parameters
    product   + symbol                -> product metadata
    price     + symbol                -> aggregate / per-publisher prices
    publisher + authority pubkey      -> publisher stake record
    proposal  + u64 LE counter        -> governance proposal

Derivation is pure: the same (namespace, seeds, program id) always yields the
same address, which is what lets independent callers agree on account
identity without a lookup service.
"""

from __future__ import annotations

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from oracle_gateway.errors import InvalidField

NAMESPACES = frozenset({
    "global_state",
    "vault_authority",
    "token_vault",
    "governance",
    "product",
    "price",
    "publisher",
    "proposal",
})

MAX_SEED_LEN = 32
MAX_SEEDS = 16  # includes the bump seed appended by the runtime


def counter_seed(value: int) -> bytes:
    """Encode a proposal counter the way the program does (u64 little-endian)."""
    if value < 0 or value >= 1 << 64:
        raise InvalidField("proposalId", "must fit in an unsigned 64-bit integer")
    return value.to_bytes(8, "little")


class ProgramAddresses:
    """PDA derivation bound to one program id."""

    def __init__(self, program_id: Pubkey):
        self.program_id = program_id

    def derive(self, namespace: str, *seeds: bytes) -> tuple[Pubkey, int]:
        if namespace not in NAMESPACES:
            raise ValueError(f"unknown PDA namespace {namespace!r}")
        parts = [namespace.encode()] + list(seeds)
        if len(parts) >= MAX_SEEDS:
            raise InvalidField("seeds", f"at most {MAX_SEEDS - 1} seeds allowed")
        for seed in parts:
            if len(seed) > MAX_SEED_LEN:
                raise InvalidField(
                    "seeds", f"seed longer than {MAX_SEED_LEN} bytes: {len(seed)}"
                )
        return Pubkey.find_program_address(parts, self.program_id)

    # ── singletons ───────────────────────────────────────────────

    def global_state(self) -> Pubkey:
        return self.derive("global_state")[0]

    def vault_authority(self) -> Pubkey:
        return self.derive("vault_authority")[0]

    def token_vault(self) -> Pubkey:
        return self.derive("token_vault")[0]

    def governance(self) -> Pubkey:
        return self.derive("governance")[0]

    # ── keyed accounts ───────────────────────────────────────────

    def product(self, symbol: str) -> Pubkey:
        return self.derive("product", symbol.encode("utf-8"))[0]

    def price(self, symbol: str) -> Pubkey:
        return self.derive("price", symbol.encode("utf-8"))[0]

    def publisher(self, authority: Pubkey) -> Pubkey:
        return self.derive("publisher", bytes(authority))[0]

    def proposal(self, proposal_id: int) -> Pubkey:
        return self.derive("proposal", counter_seed(proposal_id))[0]

    # ── token accounts ───────────────────────────────────────────

    def vault_token_account(self, mint: Pubkey) -> Pubkey:
        """Associated token account of the vault authority PDA (off-curve owner)."""
        return get_associated_token_address(self.vault_authority(), mint)

    @staticmethod
    def token_account(owner: Pubkey, mint: Pubkey) -> Pubkey:
        return get_associated_token_address(owner, mint)
