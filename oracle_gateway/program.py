"""
Interface descriptor for the on-chain oracle program.

This module is the gateway's only knowledge of the external program: the
instruction table (name, Borsh argument layout, ordered account list), the
account layouts used to decode fetched state, the enum and proposal types, and
the custom error table.  It must match the deployed program exactly; drift
shows up only as remote rejections.

Encoding follows the Anchor conventions:

  - instruction data = sha256("global:<name>")[:8] + borsh(args)
  - account data     = sha256("account:<Name>")[:8] + borsh(fields)
  - enums            = u8 variant index + the variant's fields
"""

from __future__ import annotations

import abc
import hashlib
import typing
from dataclasses import dataclass, field
from dataclasses import fields as dc_fields
from enum import IntEnum

import borsh_construct as borsh
from anchorpy.borsh_extension import BorshPubkey
from anchorpy.coder.accounts import ACCOUNT_DISCRIMINATOR_SIZE
from anchorpy.error import AccountInvalidDiscriminator
from construct import Construct, Struct, Switch, this
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID

DEFAULT_PROGRAM_ID = "GqEkgwLMtTZ2XmP4LnwJUQbAQWUR3PMfTN8pNojBH6ks"

MAX_PUBLISHERS = 100
UNBONDING_PERIOD_SECONDS = 604_800


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(type_name: str) -> bytes:
    return hashlib.sha256(f"account:{type_name}".encode()).digest()[:8]


# ═══════════════════════════════════════════════════════════════════
#  Enums
# ═══════════════════════════════════════════════════════════════════

class _ProgramEnum(IntEnum):
    @property
    def label(self) -> str:
        return self.name.lower()


class PriceStatus(_ProgramEnum):
    TRADING = 0
    HALTED = 1
    AUCTION = 2
    UNKNOWN = 3


class AssetType(_ProgramEnum):
    CRYPTO = 0
    EQUITY = 1
    FOREX = 2
    COMMODITY = 3


class PriceType(_ProgramEnum):
    SPOT = 0
    FUTURES = 1
    OPTION = 2


class VoteType(_ProgramEnum):
    YES = 0
    NO = 1
    ABSTAIN = 2


# ═══════════════════════════════════════════════════════════════════
#  Proposal types (closed sum type)
# ═══════════════════════════════════════════════════════════════════

class ProposalType:
    """Base for the six proposal variants the program accepts."""

    index: typing.ClassVar[int]
    layout: typing.ClassVar[Construct]

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_encodable(self) -> dict[str, typing.Any]:
        values = {f.name: getattr(self, f.name) for f in dc_fields(self)}
        return {"index": self.index, "fields": values}


@dataclass(frozen=True)
class UpdateRewardRate(ProposalType):
    index: typing.ClassVar[int] = 0
    layout: typing.ClassVar[Construct] = borsh.CStruct("new_rate" / borsh.U64)
    new_rate: int


@dataclass(frozen=True)
class UpdateMinPublishers(ProposalType):
    index: typing.ClassVar[int] = 1
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "feed" / BorshPubkey,
        "new_min" / borsh.U8,
    )
    feed: Pubkey
    new_min: int


@dataclass(frozen=True)
class SlashPublisher(ProposalType):
    index: typing.ClassVar[int] = 2
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "publisher" / BorshPubkey,
        "percentage" / borsh.U8,
    )
    publisher: Pubkey
    percentage: int


@dataclass(frozen=True)
class EmergencyPause(ProposalType):
    index: typing.ClassVar[int] = 3
    layout: typing.ClassVar[Construct] = borsh.CStruct()


@dataclass(frozen=True)
class EmergencyUnpause(ProposalType):
    index: typing.ClassVar[int] = 4
    layout: typing.ClassVar[Construct] = borsh.CStruct()


@dataclass(frozen=True)
class UpdateGovernanceParams(ProposalType):
    index: typing.ClassVar[int] = 5
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "proposal_threshold" / borsh.Option(borsh.U64),
        "voting_period" / borsh.Option(borsh.U64),
        "quorum_percentage" / borsh.Option(borsh.U8),
        "timelock_duration" / borsh.Option(borsh.U64),
    )
    proposal_threshold: typing.Optional[int] = None
    voting_period: typing.Optional[int] = None
    quorum_percentage: typing.Optional[int] = None
    timelock_duration: typing.Optional[int] = None


PROPOSAL_VARIANTS: tuple[type[ProposalType], ...] = (
    UpdateRewardRate,
    UpdateMinPublishers,
    SlashPublisher,
    EmergencyPause,
    EmergencyUnpause,
    UpdateGovernanceParams,
)

ProposalTypeLayout = Struct(
    "index" / borsh.U8,
    "fields" / Switch(this.index, {v.index: v.layout for v in PROPOSAL_VARIANTS}),
)


def decode_proposal_type(obj: typing.Any) -> ProposalType:
    try:
        variant = PROPOSAL_VARIANTS[obj.index]
    except IndexError:
        raise ValueError(f"unknown proposal type index {obj.index}") from None
    return variant(**{f.name: obj.fields[f.name] for f in dc_fields(variant)})


# ═══════════════════════════════════════════════════════════════════
#  Account layouts
# ═══════════════════════════════════════════════════════════════════

class ProgramAccount(abc.ABC):
    """Decode/encode plumbing shared by every program-owned account type."""

    discriminator: typing.ClassVar[bytes]
    layout: typing.ClassVar[Construct]

    @classmethod
    def decode(cls, data: bytes):
        if data[:ACCOUNT_DISCRIMINATOR_SIZE] != cls.discriminator:
            raise AccountInvalidDiscriminator(
                f"The discriminator for this account is invalid (expected {cls.__name__})"
            )
        return cls.from_decoded(cls.layout.parse(data[ACCOUNT_DISCRIMINATOR_SIZE:]))

    @classmethod
    @abc.abstractmethod
    def from_decoded(cls, obj: typing.Any):
        ...

    @abc.abstractmethod
    def to_encodable(self) -> dict[str, typing.Any]:
        ...

    def encode(self) -> bytes:
        return self.discriminator + self.layout.build(self.to_encodable())


@dataclass
class PriceData:
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "price" / borsh.I64,
        "confidence" / borsh.U64,
        "exponent" / borsh.I32,
        "timestamp" / borsh.I64,
        "slot" / borsh.U64,
        "status" / borsh.U8,
    )
    price: int = 0
    confidence: int = 0
    exponent: int = 0
    timestamp: int = 0
    slot: int = 0
    status: PriceStatus = PriceStatus.UNKNOWN

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "PriceData":
        return cls(
            price=obj.price,
            confidence=obj.confidence,
            exponent=obj.exponent,
            timestamp=obj.timestamp,
            slot=obj.slot,
            status=PriceStatus(obj.status),
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "price": self.price,
            "confidence": self.confidence,
            "exponent": self.exponent,
            "timestamp": self.timestamp,
            "slot": self.slot,
            "status": int(self.status),
        }


@dataclass
class PublisherPrice:
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "publisher" / BorshPubkey,
        "price" / borsh.I64,
        "confidence" / borsh.U64,
        "timestamp" / borsh.I64,
        "slot" / borsh.U64,
        "stake" / borsh.U64,
        "active" / borsh.Bool,
    )
    publisher: Pubkey = field(default_factory=Pubkey.default)
    price: int = 0
    confidence: int = 0
    timestamp: int = 0
    slot: int = 0
    stake: int = 0
    active: bool = False

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "PublisherPrice":
        return cls(
            publisher=obj.publisher,
            price=obj.price,
            confidence=obj.confidence,
            timestamp=obj.timestamp,
            slot=obj.slot,
            stake=obj.stake,
            active=obj.active,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "publisher": self.publisher,
            "price": self.price,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "slot": self.slot,
            "stake": self.stake,
            "active": self.active,
        }


@dataclass
class EmaData:
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "ema_price" / borsh.I64,
        "ema_confidence" / borsh.U64,
        "num_observations" / borsh.U64,
    )
    ema_price: int = 0
    ema_confidence: int = 0
    num_observations: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "EmaData":
        return cls(
            ema_price=obj.ema_price,
            ema_confidence=obj.ema_confidence,
            num_observations=obj.num_observations,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "ema_price": self.ema_price,
            "ema_confidence": self.ema_confidence,
            "num_observations": self.num_observations,
        }


@dataclass
class GlobalState(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("GlobalState")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "authority" / BorshPubkey,
        "token_mint" / BorshPubkey,
        "token_vault" / BorshPubkey,
        "vault_authority" / BorshPubkey,
        "governance" / BorshPubkey,
        "paused" / borsh.Bool,
        "total_products" / borsh.U64,
        "total_publishers" / borsh.U64,
        "version" / borsh.U8,
        "bump" / borsh.U8,
        "vault_authority_bump" / borsh.U8,
    )
    authority: Pubkey
    token_mint: Pubkey
    token_vault: Pubkey
    vault_authority: Pubkey
    governance: Pubkey
    paused: bool = False
    total_products: int = 0
    total_publishers: int = 0
    version: int = 1
    bump: int = 0
    vault_authority_bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "GlobalState":
        return cls(
            authority=obj.authority,
            token_mint=obj.token_mint,
            token_vault=obj.token_vault,
            vault_authority=obj.vault_authority,
            governance=obj.governance,
            paused=obj.paused,
            total_products=obj.total_products,
            total_publishers=obj.total_publishers,
            version=obj.version,
            bump=obj.bump,
            vault_authority_bump=obj.vault_authority_bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "authority": self.authority,
            "token_mint": self.token_mint,
            "token_vault": self.token_vault,
            "vault_authority": self.vault_authority,
            "governance": self.governance,
            "paused": self.paused,
            "total_products": self.total_products,
            "total_publishers": self.total_publishers,
            "version": self.version,
            "bump": self.bump,
            "vault_authority_bump": self.vault_authority_bump,
        }


@dataclass
class ProductAccount(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("ProductAccount")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "symbol" / borsh.String,
        "asset_type" / borsh.U8,
        "description" / borsh.String,
        "price_account" / BorshPubkey,
        "authority" / BorshPubkey,
        "bump" / borsh.U8,
    )
    symbol: str
    asset_type: AssetType
    description: str
    price_account: Pubkey
    authority: Pubkey
    bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "ProductAccount":
        return cls(
            symbol=obj.symbol,
            asset_type=AssetType(obj.asset_type),
            description=obj.description,
            price_account=obj.price_account,
            authority=obj.authority,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "symbol": self.symbol,
            "asset_type": int(self.asset_type),
            "description": self.description,
            "price_account": self.price_account,
            "authority": self.authority,
            "bump": self.bump,
        }


def _empty_publishers() -> list[PublisherPrice]:
    return [PublisherPrice() for _ in range(MAX_PUBLISHERS)]


@dataclass
class PriceAccount(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("PriceAccount")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "product_account" / BorshPubkey,
        "price_type" / borsh.U8,
        "aggregate" / PriceData.layout,
        "publishers" / PublisherPrice.layout[MAX_PUBLISHERS],
        "publisher_count" / borsh.U8,
        "min_publishers" / borsh.U8,
        "last_update_slot" / borsh.U64,
        "ema" / EmaData.layout,
        "authority" / BorshPubkey,
        "exponent" / borsh.I32,
        "bump" / borsh.U8,
    )
    product_account: Pubkey
    authority: Pubkey
    price_type: PriceType = PriceType.SPOT
    aggregate: PriceData = field(default_factory=PriceData)
    publishers: list[PublisherPrice] = field(default_factory=_empty_publishers)
    publisher_count: int = 0
    min_publishers: int = 0
    last_update_slot: int = 0
    ema: EmaData = field(default_factory=EmaData)
    exponent: int = 0
    bump: int = 0

    @property
    def active_publishers(self) -> list[PublisherPrice]:
        return [p for p in self.publishers if p.active]

    @property
    def has_observations(self) -> bool:
        return self.ema.num_observations > 0 or self.aggregate.timestamp != 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "PriceAccount":
        return cls(
            product_account=obj.product_account,
            price_type=PriceType(obj.price_type),
            aggregate=PriceData.from_decoded(obj.aggregate),
            publishers=[PublisherPrice.from_decoded(p) for p in obj.publishers],
            publisher_count=obj.publisher_count,
            min_publishers=obj.min_publishers,
            last_update_slot=obj.last_update_slot,
            ema=EmaData.from_decoded(obj.ema),
            authority=obj.authority,
            exponent=obj.exponent,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "product_account": self.product_account,
            "price_type": int(self.price_type),
            "aggregate": self.aggregate.to_encodable(),
            "publishers": [p.to_encodable() for p in self.publishers],
            "publisher_count": self.publisher_count,
            "min_publishers": self.min_publishers,
            "last_update_slot": self.last_update_slot,
            "ema": self.ema.to_encodable(),
            "authority": self.authority,
            "exponent": self.exponent,
            "bump": self.bump,
        }


@dataclass
class PublisherAccount(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("PublisherAccount")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "authority" / BorshPubkey,
        "staked_amount" / borsh.U64,
        "stake_account" / BorshPubkey,
        "reputation" / borsh.U64,
        "name" / borsh.String,
        "registered_at" / borsh.I64,
        "slash_count" / borsh.U32,
        "last_slash_slot" / borsh.U64,
        "unbonding_amount" / borsh.U64,
        "unbonding_start" / borsh.I64,
        "bump" / borsh.U8,
    )
    authority: Pubkey
    stake_account: Pubkey
    name: str
    staked_amount: int = 0
    reputation: int = 0
    registered_at: int = 0
    slash_count: int = 0
    last_slash_slot: int = 0
    unbonding_amount: int = 0
    unbonding_start: int = 0
    bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "PublisherAccount":
        return cls(
            authority=obj.authority,
            staked_amount=obj.staked_amount,
            stake_account=obj.stake_account,
            reputation=obj.reputation,
            name=obj.name,
            registered_at=obj.registered_at,
            slash_count=obj.slash_count,
            last_slash_slot=obj.last_slash_slot,
            unbonding_amount=obj.unbonding_amount,
            unbonding_start=obj.unbonding_start,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "authority": self.authority,
            "staked_amount": self.staked_amount,
            "stake_account": self.stake_account,
            "reputation": self.reputation,
            "name": self.name,
            "registered_at": self.registered_at,
            "slash_count": self.slash_count,
            "last_slash_slot": self.last_slash_slot,
            "unbonding_amount": self.unbonding_amount,
            "unbonding_start": self.unbonding_start,
            "bump": self.bump,
        }


@dataclass
class TokenVault(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("TokenVault")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "total_staked" / borsh.U64,
        "total_rewards_distributed" / borsh.U64,
        "reward_rate" / borsh.U64,
        "last_distribution_slot" / borsh.U64,
        "token_mint" / BorshPubkey,
        "vault_token_account" / BorshPubkey,
        "vault_authority" / BorshPubkey,
        "authority" / BorshPubkey,
        "bump" / borsh.U8,
    )
    token_mint: Pubkey
    vault_token_account: Pubkey
    vault_authority: Pubkey
    authority: Pubkey
    total_staked: int = 0
    total_rewards_distributed: int = 0
    reward_rate: int = 0
    last_distribution_slot: int = 0
    bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "TokenVault":
        return cls(
            total_staked=obj.total_staked,
            total_rewards_distributed=obj.total_rewards_distributed,
            reward_rate=obj.reward_rate,
            last_distribution_slot=obj.last_distribution_slot,
            token_mint=obj.token_mint,
            vault_token_account=obj.vault_token_account,
            vault_authority=obj.vault_authority,
            authority=obj.authority,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "total_staked": self.total_staked,
            "total_rewards_distributed": self.total_rewards_distributed,
            "reward_rate": self.reward_rate,
            "last_distribution_slot": self.last_distribution_slot,
            "token_mint": self.token_mint,
            "vault_token_account": self.vault_token_account,
            "vault_authority": self.vault_authority,
            "authority": self.authority,
            "bump": self.bump,
        }


@dataclass
class GovernanceState(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("GovernanceState")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "governance_token" / BorshPubkey,
        "proposal_threshold" / borsh.U64,
        "voting_period" / borsh.U64,
        "quorum_percentage" / borsh.U8,
        "timelock_duration" / borsh.U64,
        "proposal_count" / borsh.U64,
        "total_supply" / borsh.U64,
        "authority" / BorshPubkey,
        "bump" / borsh.U8,
    )
    governance_token: Pubkey
    authority: Pubkey
    proposal_threshold: int = 0
    voting_period: int = 0
    quorum_percentage: int = 0
    timelock_duration: int = 0
    proposal_count: int = 0
    total_supply: int = 0
    bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "GovernanceState":
        return cls(
            governance_token=obj.governance_token,
            proposal_threshold=obj.proposal_threshold,
            voting_period=obj.voting_period,
            quorum_percentage=obj.quorum_percentage,
            timelock_duration=obj.timelock_duration,
            proposal_count=obj.proposal_count,
            total_supply=obj.total_supply,
            authority=obj.authority,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "governance_token": self.governance_token,
            "proposal_threshold": self.proposal_threshold,
            "voting_period": self.voting_period,
            "quorum_percentage": self.quorum_percentage,
            "timelock_duration": self.timelock_duration,
            "proposal_count": self.proposal_count,
            "total_supply": self.total_supply,
            "authority": self.authority,
            "bump": self.bump,
        }


@dataclass
class Proposal(ProgramAccount):
    discriminator: typing.ClassVar[bytes] = account_discriminator("Proposal")
    layout: typing.ClassVar[Construct] = borsh.CStruct(
        "proposer" / BorshPubkey,
        "proposal_type" / ProposalTypeLayout,
        "description" / borsh.String,
        "yes_votes" / borsh.U64,
        "no_votes" / borsh.U64,
        "abstain_votes" / borsh.U64,
        "start_slot" / borsh.U64,
        "end_slot" / borsh.U64,
        "executed" / borsh.Bool,
        "execution_time" / borsh.I64,
        "proposal_id" / borsh.U64,
        "bump" / borsh.U8,
    )
    proposer: Pubkey
    proposal_type: ProposalType
    description: str
    yes_votes: int = 0
    no_votes: int = 0
    abstain_votes: int = 0
    start_slot: int = 0
    end_slot: int = 0
    executed: bool = False
    execution_time: int = 0
    proposal_id: int = 0
    bump: int = 0

    @classmethod
    def from_decoded(cls, obj: typing.Any) -> "Proposal":
        return cls(
            proposer=obj.proposer,
            proposal_type=decode_proposal_type(obj.proposal_type),
            description=obj.description,
            yes_votes=obj.yes_votes,
            no_votes=obj.no_votes,
            abstain_votes=obj.abstain_votes,
            start_slot=obj.start_slot,
            end_slot=obj.end_slot,
            executed=obj.executed,
            execution_time=obj.execution_time,
            proposal_id=obj.proposal_id,
            bump=obj.bump,
        )

    def to_encodable(self) -> dict[str, typing.Any]:
        return {
            "proposer": self.proposer,
            "proposal_type": self.proposal_type.to_encodable(),
            "description": self.description,
            "yes_votes": self.yes_votes,
            "no_votes": self.no_votes,
            "abstain_votes": self.abstain_votes,
            "start_slot": self.start_slot,
            "end_slot": self.end_slot,
            "executed": self.executed,
            "execution_time": self.execution_time,
            "proposal_id": self.proposal_id,
            "bump": self.bump,
        }


# ═══════════════════════════════════════════════════════════════════
#  Instructions
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AccountSpec:
    name: str
    writable: bool = False
    signer: bool = False
    optional: bool = False


def _accounts(*specs: str) -> tuple[AccountSpec, ...]:
    """Parse ``"name:flags"`` entries; flags are w(ritable), s(igner), o(ptional)."""
    out = []
    for spec in specs:
        name, _, flags = spec.partition(":")
        out.append(AccountSpec(name, "w" in flags, "s" in flags, "o" in flags))
    return tuple(out)


# Accounts whose address never varies
WELL_KNOWN_ACCOUNTS: dict[str, Pubkey] = {
    "system_program": SYSTEM_PROGRAM_ID,
    "token_program": TOKEN_PROGRAM_ID,
}


@dataclass(frozen=True)
class InstructionSpec:
    name: str
    accounts: tuple[AccountSpec, ...]
    args: typing.Optional[Construct] = None

    @property
    def discriminator(self) -> bytes:
        return sighash(self.name)

    def encode_args(self, args: dict[str, typing.Any]) -> bytes:
        if self.args is None:
            if args:
                raise ValueError(f"{self.name} takes no arguments")
            return b""
        encodable = {
            k: v.to_encodable() if isinstance(v, ProposalType) else v
            for k, v in args.items()
        }
        try:
            return self.args.build(encodable)
        except KeyError as exc:
            raise ValueError(f"{self.name}: missing argument {exc}") from None

    def account_metas(
        self, accounts: dict[str, typing.Optional[Pubkey]], program_id: Pubkey
    ) -> list[AccountMeta]:
        unknown = set(accounts) - {a.name for a in self.accounts}
        if unknown:
            raise ValueError(f"{self.name}: unexpected accounts {sorted(unknown)}")
        metas = []
        for acc in self.accounts:
            key = accounts.get(acc.name) or WELL_KNOWN_ACCOUNTS.get(acc.name)
            if key is None:
                if not acc.optional:
                    raise ValueError(f"{self.name}: missing account {acc.name}")
                # absent optional accounts are passed as the program id
                metas.append(AccountMeta(program_id, False, False))
                continue
            metas.append(AccountMeta(key, acc.signer, acc.writable))
        return metas

    def build(
        self,
        args: dict[str, typing.Any],
        accounts: dict[str, typing.Optional[Pubkey]],
        program_id: Pubkey,
    ) -> Instruction:
        data = self.discriminator + self.encode_args(args)
        return Instruction(program_id, data, self.account_metas(accounts, program_id))


INSTRUCTIONS: dict[str, InstructionSpec] = {
    spec.name: spec
    for spec in (
        InstructionSpec(
            "initialize_program",
            _accounts(
                "global_state:w", "vault_authority", "token_vault:w",
                "governance_state:w", "token_mint", "vault_token_account",
                "authority:ws", "system_program",
            ),
            borsh.CStruct(
                "reward_rate" / borsh.U64,
                "proposal_threshold" / borsh.U64,
                "voting_period" / borsh.U64,
                "quorum_percentage" / borsh.U8,
                "timelock_duration" / borsh.U64,
                "total_supply" / borsh.U64,
            ),
        ),
        InstructionSpec(
            "create_product",
            _accounts(
                "global_state:w", "product_account:w", "price_account:w",
                "authority:ws", "system_program",
            ),
            borsh.CStruct(
                "symbol" / borsh.String,
                "asset_type" / borsh.U8,
                "description" / borsh.String,
                "price_type" / borsh.U8,
                "min_publishers" / borsh.U8,
                "exponent" / borsh.I32,
            ),
        ),
        InstructionSpec(
            "add_publisher",
            _accounts(
                "global_state:w", "publisher_account:w", "token_vault:w",
                "publisher_token_account:w", "vault_token_account:w",
                "publisher_authority:s", "payer:ws", "token_program",
                "system_program",
            ),
            borsh.CStruct("name" / borsh.String, "initial_stake" / borsh.U64),
        ),
        InstructionSpec(
            "update_price",
            _accounts(
                "global_state", "product_account", "price_account:w",
                "publisher_account", "publisher_authority:s",
            ),
            borsh.CStruct("price" / borsh.I64, "confidence" / borsh.U64),
        ),
        InstructionSpec(
            "stake_tokens",
            _accounts(
                "global_state", "publisher_account:w", "token_vault:w",
                "publisher_token_account:w", "vault_token_account:w",
                "publisher_authority:s", "token_program",
            ),
            borsh.CStruct("amount" / borsh.U64),
        ),
        InstructionSpec(
            "unstake_tokens",
            _accounts("global_state", "publisher_account:w", "publisher_authority:s"),
            borsh.CStruct("amount" / borsh.U64),
        ),
        InstructionSpec(
            "withdraw_unbonded",
            _accounts(
                "global_state", "publisher_account:w", "vault_authority",
                "token_vault:w", "publisher_token_account:w",
                "vault_token_account:w", "publisher_authority:s", "token_program",
            ),
        ),
        InstructionSpec(
            "aggregate_price",
            _accounts("product_account", "price_account:w"),
        ),
        InstructionSpec(
            "create_proposal",
            _accounts(
                "global_state", "governance_state:w", "proposal:w",
                "proposer_token_account", "proposer:ws", "system_program",
            ),
            borsh.CStruct(
                "proposal_type" / ProposalTypeLayout,
                "description" / borsh.String,
            ),
        ),
        InstructionSpec(
            "vote_proposal",
            _accounts("proposal:w", "voter_token_account", "voter:s"),
            borsh.CStruct("vote" / borsh.U8),
        ),
        InstructionSpec(
            "execute_proposal",
            _accounts("proposal:w", "governance_state"),
        ),
        InstructionSpec(
            "execute_governance_action",
            _accounts(
                "global_state:w", "proposal", "governance_state",
                "token_vault:w", "price_account:wo", "publisher_account:wo",
                "authority:s",
            ),
        ),
        InstructionSpec(
            "emergency_pause",
            _accounts("global_state:w", "authority:s"),
        ),
        InstructionSpec(
            "emergency_unpause",
            _accounts("global_state:w", "authority:s"),
        ),
    )
}


@dataclass
class CallDescriptor:
    """One instruction call, assembled per request and discarded after submit."""

    method: str
    args: dict[str, typing.Any] = field(default_factory=dict)
    accounts: dict[str, typing.Optional[Pubkey]] = field(default_factory=dict)
    signers: list[Keypair] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.method not in INSTRUCTIONS:
            raise ValueError(f"unknown instruction {self.method!r}")

    @property
    def spec(self) -> InstructionSpec:
        return INSTRUCTIONS[self.method]

    @property
    def fee_payer(self) -> Pubkey:
        if not self.signers:
            raise ValueError(f"{self.method}: no signer to pay fees")
        return self.signers[0].pubkey()

    def unique_signers(self) -> list[Keypair]:
        seen: set[Pubkey] = set()
        out = []
        for kp in self.signers:
            if kp.pubkey() not in seen:
                seen.add(kp.pubkey())
                out.append(kp)
        return out

    def to_instruction(self, program_id: Pubkey) -> Instruction:
        return self.spec.build(self.args, self.accounts, program_id)


# ═══════════════════════════════════════════════════════════════════
#  Custom error table
# ═══════════════════════════════════════════════════════════════════

ERROR_CODE_OFFSET = 6000

_ERRORS = [
    ("PriceNotTrading", "Price feed is not in trading status"),
    ("PriceStale", "Price data is stale"),
    ("InsufficientStake", "Insufficient stake amount"),
    ("UnauthorizedPublisher", "Publisher not authorized for this feed"),
    ("InsufficientPublishers", "Not enough publishers reporting"),
    ("InvalidPrice", "Invalid price data"),
    ("InvalidTimestamp", "Invalid timestamp"),
    ("ConfidenceTooLarge", "Confidence interval too large"),
    ("Overflow", "Arithmetic overflow"),
    ("PublisherExists", "Publisher already exists"),
    ("Unauthorized", "Unauthorized action"),
    ("ProposalNotApproved", "Proposal not approved"),
    ("UnbondingPeriodActive", "Unbonding period not elapsed"),
    ("SystemPaused", "System is paused"),
    ("InvalidSlashPercentage", "Invalid slash percentage"),
    ("VotingPeriodEnded", "Voting period ended"),
    ("QuorumNotReached", "Quorum not reached"),
    ("TimelockNotExpired", "Timelock not expired"),
    ("PublishersArrayFull", "Publishers array is full"),
    ("InvalidProposalType", "Invalid proposal type"),
    ("VotingPeriodActive", "Voting period active"),
]

PROGRAM_ERRORS: dict[int, tuple[str, str]] = {
    ERROR_CODE_OFFSET + i: entry for i, entry in enumerate(_ERRORS)
}


def lookup_error(code: int) -> typing.Optional[tuple[str, str]]:
    """Return ``(name, message)`` for a custom program error code."""
    return PROGRAM_ERRORS.get(code)
