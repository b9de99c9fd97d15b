"""
Request translation: JSON bodies -> :class:`CallDescriptor`.

Every parser here runs before any remote call.  A request that fails local
validation never reaches the ledger, so a typo in a vote or an asset type is a
400 rather than a silently-misencoded transaction.

Numbers arrive either as JSON integers or as decimal strings (wide values do
not survive a round trip through JavaScript numbers).  Floats and booleans are
refused outright; there is no rounding anywhere.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from oracle_gateway.addresses import MAX_SEED_LEN, ProgramAddresses
from oracle_gateway.credentials import load_signer
from oracle_gateway.errors import InvalidEnumValue, InvalidField, MissingField
from oracle_gateway.program import (
    PROPOSAL_VARIANTS,
    AssetType,
    CallDescriptor,
    EmergencyPause,
    EmergencyUnpause,
    PriceType,
    Proposal,
    ProposalType,
    SlashPublisher,
    UpdateGovernanceParams,
    UpdateMinPublishers,
    UpdateRewardRate,
    VoteType,
)

_DECIMAL = re.compile(r"-?[0-9]+")
_MAX_DIGITS = 20  # u64 max is 20 digits

INT_RANGES: dict[str, tuple[int, int]] = {
    "u8": (0, (1 << 8) - 1),
    "u32": (0, (1 << 32) - 1),
    "u64": (0, (1 << 64) - 1),
    "i32": (-(1 << 31), (1 << 31) - 1),
    "i64": (-(1 << 63), (1 << 63) - 1),
}


# ═══════════════════════════════════════════════════════════════════
#  Field parsers
# ═══════════════════════════════════════════════════════════════════

def require(body: dict[str, Any], name: str) -> Any:
    value = body.get(name)
    if value is None or value == "":
        raise MissingField(name)
    return value


def parse_int(value: Any, field: str, width: str) -> int:
    """Parse a JSON integer or decimal string into a ``width``-ranged int."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidField(field, "must be an integer or a decimal string")
    if isinstance(value, str):
        text = value.strip()
        if not _DECIMAL.fullmatch(text):
            raise InvalidField(field, f"not a decimal integer: {value!r}")
        if len(text.lstrip("-")) > _MAX_DIGITS:
            raise InvalidField(field, f"more than {_MAX_DIGITS} digits")
        value = int(text)
    lo, hi = INT_RANGES[width]
    if not lo <= value <= hi:
        raise InvalidField(field, f"out of range for {width} ({lo}..{hi})")
    return value


def parse_pubkey(value: Any, field: str) -> Pubkey:
    if not isinstance(value, str):
        raise InvalidField(field, "must be a base58 address string")
    try:
        return Pubkey.from_string(value.strip())
    except ValueError:
        raise InvalidField(field, f"not a valid address: {value!r}") from None


def parse_enum(value: Any, field: str, enum_cls):
    allowed = [m.label for m in enum_cls]
    if not isinstance(value, str):
        raise InvalidEnumValue(field, value, allowed)
    try:
        return enum_cls[value.strip().upper()]
    except KeyError:
        raise InvalidEnumValue(field, value, allowed) from None


def parse_text(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise InvalidField(field, "must be a string")
    return value


def optional_text(body: dict[str, Any], name: str) -> str:
    """Absent and null both mean an empty string."""
    value = body.get(name)
    return "" if value is None else parse_text(value, name)


def parse_symbol(value: Any, field: str = "symbol") -> str:
    symbol = parse_text(value, field)
    if not symbol:
        raise MissingField(field)
    if len(symbol.encode("utf-8")) > MAX_SEED_LEN:
        raise InvalidField(field, f"longer than {MAX_SEED_LEN} bytes")
    return symbol


def parse_proposal_id(value: Any) -> int:
    return parse_int(value, "proposalId", "u64")


def _optional_int(params: dict[str, Any], name: str, width: str) -> Optional[int]:
    value = params.get(name)
    if value is None:
        return None
    return parse_int(value, name, width)


def parse_proposal_type(value: Any) -> ProposalType:
    """Parse ``{"type": "<Variant>", ...params}`` into a typed variant."""
    if not isinstance(value, dict):
        raise InvalidField("proposalType", 'must be an object like {"type": ...}')
    names = [v.__name__ for v in PROPOSAL_VARIANTS]
    kind = value.get("type")
    if not isinstance(kind, str):
        raise InvalidEnumValue("proposalType.type", kind, names)
    by_name = {n.lower(): n for n in names}
    kind = by_name.get(kind.strip().lower())
    if kind is None:
        raise InvalidEnumValue("proposalType.type", value.get("type"), names)

    if kind == "UpdateRewardRate":
        return UpdateRewardRate(
            new_rate=parse_int(require(value, "newRate"), "newRate", "u64"),
        )
    if kind == "UpdateMinPublishers":
        return UpdateMinPublishers(
            feed=parse_pubkey(require(value, "feed"), "feed"),
            new_min=parse_int(require(value, "newMin"), "newMin", "u8"),
        )
    if kind == "SlashPublisher":
        return SlashPublisher(
            publisher=parse_pubkey(require(value, "publisher"), "publisher"),
            percentage=parse_int(require(value, "percentage"), "percentage", "u8"),
        )
    if kind == "EmergencyPause":
        return EmergencyPause()
    if kind == "EmergencyUnpause":
        return EmergencyUnpause()
    return UpdateGovernanceParams(
        proposal_threshold=_optional_int(value, "proposalThreshold", "u64"),
        voting_period=_optional_int(value, "votingPeriod", "u64"),
        quorum_percentage=_optional_int(value, "quorumPercentage", "u8"),
        timelock_duration=_optional_int(value, "timelockDuration", "u64"),
    )


# ═══════════════════════════════════════════════════════════════════
#  Endpoint translators
# ═══════════════════════════════════════════════════════════════════

class RequestTranslator:
    """Builds one :class:`CallDescriptor` per mutating endpoint.

    ``fee_payer`` is an optional gateway-held keypair used for the calls that
    need no specific authority (proposal execution, price aggregation) when
    the request does not bring its own ``payerSecretKey``.
    """

    def __init__(self, addresses: ProgramAddresses, fee_payer: Optional[Keypair] = None):
        self.addresses = addresses
        self.fee_payer = fee_payer

    def _signer(self, body: dict[str, Any], field: str) -> Keypair:
        return load_signer(require(body, field), field=field)

    def _payer(self, body: dict[str, Any]) -> Keypair:
        if body.get("payerSecretKey"):
            return self._signer(body, "payerSecretKey")
        if self.fee_payer is not None:
            return self.fee_payer
        raise MissingField("payerSecretKey")

    # ── bootstrap ────────────────────────────────────────────────

    def initialize(self, body: dict[str, Any]) -> CallDescriptor:
        authority = self._signer(body, "authoritySecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        args = {
            "reward_rate": parse_int(require(body, "rewardRate"), "rewardRate", "u64"),
            "proposal_threshold": parse_int(
                require(body, "proposalThreshold"), "proposalThreshold", "u64"
            ),
            "voting_period": parse_int(require(body, "votingPeriod"), "votingPeriod", "u64"),
            "quorum_percentage": parse_int(
                require(body, "quorumPercentage"), "quorumPercentage", "u8"
            ),
            "timelock_duration": parse_int(
                require(body, "timelockDuration"), "timelockDuration", "u64"
            ),
            "total_supply": parse_int(require(body, "totalSupply"), "totalSupply", "u64"),
        }
        a = self.addresses
        return CallDescriptor(
            "initialize_program",
            args,
            {
                "global_state": a.global_state(),
                "vault_authority": a.vault_authority(),
                "token_vault": a.token_vault(),
                "governance_state": a.governance(),
                "token_mint": mint,
                "vault_token_account": a.vault_token_account(mint),
                "authority": authority.pubkey(),
            },
            [authority],
        )

    def create_product(self, body: dict[str, Any]) -> CallDescriptor:
        authority = self._signer(body, "authoritySecretKey")
        symbol = parse_symbol(require(body, "symbol"))
        args = {
            "symbol": symbol,
            "asset_type": parse_enum(require(body, "assetType"), "assetType", AssetType),
            "description": optional_text(body, "description"),
            "price_type": parse_enum(require(body, "priceType"), "priceType", PriceType),
            "min_publishers": parse_int(require(body, "minPublishers"), "minPublishers", "u8"),
            "exponent": parse_int(require(body, "exponent"), "exponent", "i32"),
        }
        a = self.addresses
        return CallDescriptor(
            "create_product",
            args,
            {
                "global_state": a.global_state(),
                "product_account": a.product(symbol),
                "price_account": a.price(symbol),
                "authority": authority.pubkey(),
            },
            [authority],
        )

    # ── publishers ───────────────────────────────────────────────

    def add_publisher(self, body: dict[str, Any]) -> CallDescriptor:
        payer = self._signer(body, "payerSecretKey")
        publisher = self._signer(body, "publisherAuthoritySecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        args = {
            "name": parse_text(require(body, "name"), "name"),
            "initial_stake": parse_int(require(body, "initialStake"), "initialStake", "u64"),
        }
        a = self.addresses
        return CallDescriptor(
            "add_publisher",
            args,
            {
                "global_state": a.global_state(),
                "publisher_account": a.publisher(publisher.pubkey()),
                "token_vault": a.token_vault(),
                "publisher_token_account": a.token_account(publisher.pubkey(), mint),
                "vault_token_account": a.vault_token_account(mint),
                "publisher_authority": publisher.pubkey(),
                "payer": payer.pubkey(),
            },
            [payer, publisher],
        )

    def stake(self, body: dict[str, Any]) -> CallDescriptor:
        publisher = self._signer(body, "publisherAuthoritySecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        amount = parse_int(require(body, "amount"), "amount", "u64")
        a = self.addresses
        return CallDescriptor(
            "stake_tokens",
            {"amount": amount},
            {
                "global_state": a.global_state(),
                "publisher_account": a.publisher(publisher.pubkey()),
                "token_vault": a.token_vault(),
                "publisher_token_account": a.token_account(publisher.pubkey(), mint),
                "vault_token_account": a.vault_token_account(mint),
                "publisher_authority": publisher.pubkey(),
            },
            [publisher],
        )

    def unstake(self, body: dict[str, Any]) -> CallDescriptor:
        publisher = self._signer(body, "publisherAuthoritySecretKey")
        amount = parse_int(require(body, "amount"), "amount", "u64")
        a = self.addresses
        return CallDescriptor(
            "unstake_tokens",
            {"amount": amount},
            {
                "global_state": a.global_state(),
                "publisher_account": a.publisher(publisher.pubkey()),
                "publisher_authority": publisher.pubkey(),
            },
            [publisher],
        )

    def withdraw_unbonded(self, body: dict[str, Any]) -> CallDescriptor:
        publisher = self._signer(body, "publisherAuthoritySecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        a = self.addresses
        return CallDescriptor(
            "withdraw_unbonded",
            {},
            {
                "global_state": a.global_state(),
                "publisher_account": a.publisher(publisher.pubkey()),
                "vault_authority": a.vault_authority(),
                "token_vault": a.token_vault(),
                "publisher_token_account": a.token_account(publisher.pubkey(), mint),
                "vault_token_account": a.vault_token_account(mint),
                "publisher_authority": publisher.pubkey(),
            },
            [publisher],
        )

    # ── prices ───────────────────────────────────────────────────

    def update_price(self, body: dict[str, Any]) -> CallDescriptor:
        publisher = self._signer(body, "publisherAuthoritySecretKey")
        symbol = parse_symbol(require(body, "symbol"))
        args = {
            "price": parse_int(require(body, "price"), "price", "i64"),
            "confidence": parse_int(require(body, "confidence"), "confidence", "u64"),
        }
        a = self.addresses
        return CallDescriptor(
            "update_price",
            args,
            {
                "global_state": a.global_state(),
                "product_account": a.product(symbol),
                "price_account": a.price(symbol),
                "publisher_account": a.publisher(publisher.pubkey()),
                "publisher_authority": publisher.pubkey(),
            },
            [publisher],
        )

    def aggregate_price(self, body: dict[str, Any]) -> CallDescriptor:
        symbol = parse_symbol(require(body, "symbol"))
        payer = self._payer(body)
        return CallDescriptor(
            "aggregate_price",
            {},
            {
                "product_account": self.addresses.product(symbol),
                "price_account": self.addresses.price(symbol),
            },
            [payer],
        )

    # ── governance ───────────────────────────────────────────────

    def create_proposal(self, body: dict[str, Any]) -> CallDescriptor:
        """The proposal account is left unset; see :meth:`assign_proposal`."""
        proposer = self._signer(body, "proposerSecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        args = {
            "proposal_type": parse_proposal_type(require(body, "proposalType")),
            "description": optional_text(body, "description"),
        }
        a = self.addresses
        return CallDescriptor(
            "create_proposal",
            args,
            {
                "global_state": a.global_state(),
                "governance_state": a.governance(),
                "proposer_token_account": a.token_account(proposer.pubkey(), mint),
                "proposer": proposer.pubkey(),
            },
            [proposer],
        )

    def assign_proposal(self, call: CallDescriptor, proposal_id: int) -> None:
        """Bind a new proposal to the governance counter read just before submit."""
        call.accounts["proposal"] = self.addresses.proposal(proposal_id)

    def vote(self, proposal_id: int, body: dict[str, Any]) -> CallDescriptor:
        vote = parse_enum(require(body, "vote"), "vote", VoteType)
        voter = self._signer(body, "voterSecretKey")
        mint = parse_pubkey(require(body, "tokenMintAddress"), "tokenMintAddress")
        return CallDescriptor(
            "vote_proposal",
            {"vote": vote},
            {
                "proposal": self.addresses.proposal(proposal_id),
                "voter_token_account": self.addresses.token_account(voter.pubkey(), mint),
                "voter": voter.pubkey(),
            },
            [voter],
        )

    def execute_proposal(self, proposal_id: int, body: dict[str, Any]) -> CallDescriptor:
        payer = self._payer(body)
        return CallDescriptor(
            "execute_proposal",
            {},
            {
                "proposal": self.addresses.proposal(proposal_id),
                "governance_state": self.addresses.governance(),
            },
            [payer],
        )

    def execute_action(self, proposal_id: int, body: dict[str, Any]) -> CallDescriptor:
        """Target accounts start absent; see :meth:`assign_targets`."""
        authority = self._signer(body, "authoritySecretKey")
        a = self.addresses
        return CallDescriptor(
            "execute_governance_action",
            {},
            {
                "global_state": a.global_state(),
                "proposal": a.proposal(proposal_id),
                "governance_state": a.governance(),
                "token_vault": a.token_vault(),
                "authority": authority.pubkey(),
            },
            [authority],
        )

    def assign_targets(self, call: CallDescriptor, proposal: Proposal) -> None:
        """Pass the account a stored proposal acts on.

        ``UpdateMinPublishers.feed`` names the price account itself;
        ``SlashPublisher.publisher`` names the publisher's authority, whose
        stake record is derived from it.
        """
        target = proposal.proposal_type
        if isinstance(target, UpdateMinPublishers):
            call.accounts["price_account"] = target.feed
        elif isinstance(target, SlashPublisher):
            call.accounts["publisher_account"] = self.addresses.publisher(target.publisher)

    # ── emergency ────────────────────────────────────────────────

    def _toggle_pause(self, method: str, body: dict[str, Any]) -> CallDescriptor:
        authority = self._signer(body, "authoritySecretKey")
        return CallDescriptor(
            method,
            {},
            {
                "global_state": self.addresses.global_state(),
                "authority": authority.pubkey(),
            },
            [authority],
        )

    def pause(self, body: dict[str, Any]) -> CallDescriptor:
        return self._toggle_pause("emergency_pause", body)

    def unpause(self, body: dict[str, Any]) -> CallDescriptor:
        return self._toggle_pause("emergency_unpause", body)
