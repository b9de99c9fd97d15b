"""
Response formatting for decoded program accounts.

Rules applied everywhere:

  - 64-bit integers are rendered as decimal strings (JSON numbers lose
    precision past 2**53); narrow ints (u8/u32/i32) stay numbers
  - public keys are rendered as base58
  - enum values are rendered as their lower-camel variant name
  - proposal payloads render back into the ``{type, ...params}`` request shape

Nothing here converts to floating point.
"""

from __future__ import annotations

from typing import Any, Optional

from solders.pubkey import Pubkey

from oracle_gateway.program import (
    EmaData,
    GlobalState,
    GovernanceState,
    PriceAccount,
    PriceData,
    PriceStatus,
    ProductAccount,
    Proposal,
    ProposalType,
    PublisherAccount,
    PublisherPrice,
    SlashPublisher,
    TokenVault,
    UpdateGovernanceParams,
    UpdateMinPublishers,
    UpdateRewardRate,
)


def wide(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


def address(key: Pubkey) -> str:
    return str(key)


def format_proposal_type(value: ProposalType) -> dict[str, Any]:
    out: dict[str, Any] = {"type": value.kind}
    if isinstance(value, UpdateRewardRate):
        out["newRate"] = wide(value.new_rate)
    elif isinstance(value, UpdateMinPublishers):
        out["feed"] = address(value.feed)
        out["newMin"] = value.new_min
    elif isinstance(value, SlashPublisher):
        out["publisher"] = address(value.publisher)
        out["percentage"] = value.percentage
    elif isinstance(value, UpdateGovernanceParams):
        out["proposalThreshold"] = wide(value.proposal_threshold)
        out["votingPeriod"] = wide(value.voting_period)
        out["quorumPercentage"] = value.quorum_percentage
        out["timelockDuration"] = wide(value.timelock_duration)
    return out


# ── prices ───────────────────────────────────────────────────────────

def _ema(ema: EmaData) -> dict[str, str]:
    return {
        "price": wide(ema.ema_price),
        "confidence": wide(ema.ema_confidence),
        "observations": wide(ema.num_observations),
    }


def _quote(quote: PublisherPrice) -> dict[str, Any]:
    return {
        "publisher": address(quote.publisher),
        "price": wide(quote.price),
        "confidence": wide(quote.confidence),
        "timestamp": wide(quote.timestamp),
        "slot": wide(quote.slot),
        "stake": wide(quote.stake),
    }


def format_price(symbol: str, account: PriceAccount) -> dict[str, Any]:
    """Aggregate, EMA and active per-publisher quotes for one symbol.

    A feed that has never aggregated has no meaningful aggregate yet; it is
    reported with ``hasObservations: false`` and status ``unknown`` whatever
    the zeroed record says.
    """
    agg: PriceData = account.aggregate
    observed = account.has_observations
    status = agg.status if observed else PriceStatus.UNKNOWN
    return {
        "symbol": symbol,
        "price": wide(agg.price),
        "confidence": wide(agg.confidence),
        "exponent": account.exponent,
        "timestamp": wide(agg.timestamp),
        "slot": wide(agg.slot),
        "status": status.label,
        "hasObservations": observed,
        "priceType": account.price_type.label,
        "publisherCount": account.publisher_count,
        "minPublishers": account.min_publishers,
        "lastUpdateSlot": wide(account.last_update_slot),
        "ema": _ema(account.ema),
        "publishers": [_quote(q) for q in account.active_publishers],
    }


def format_product(account: ProductAccount) -> dict[str, Any]:
    return {
        "symbol": account.symbol,
        "assetType": account.asset_type.label,
        "description": account.description,
        "priceAccount": address(account.price_account),
        "authority": address(account.authority),
    }


# ── publishers ───────────────────────────────────────────────────────

def format_publisher(account: PublisherAccount) -> dict[str, Any]:
    return {
        "authority": address(account.authority),
        "name": account.name,
        "stakedAmount": wide(account.staked_amount),
        "stakeAccount": address(account.stake_account),
        "reputation": wide(account.reputation),
        "registeredAt": wide(account.registered_at),
        "slashCount": account.slash_count,
        "lastSlashSlot": wide(account.last_slash_slot),
        "unbondingAmount": wide(account.unbonding_amount),
        "unbondingStart": wide(account.unbonding_start),
    }


# ── governance ───────────────────────────────────────────────────────

def format_proposal(account: Proposal) -> dict[str, Any]:
    return {
        "proposalId": wide(account.proposal_id),
        "proposer": address(account.proposer),
        "description": account.description,
        "yesVotes": wide(account.yes_votes),
        "noVotes": wide(account.no_votes),
        "abstainVotes": wide(account.abstain_votes),
        "startSlot": wide(account.start_slot),
        "endSlot": wide(account.end_slot),
        "executed": account.executed,
        "executionTime": wide(account.execution_time),
        "proposalType": format_proposal_type(account.proposal_type),
    }


def format_governance(account: GovernanceState) -> dict[str, Any]:
    return {
        "governanceToken": address(account.governance_token),
        "proposalThreshold": wide(account.proposal_threshold),
        "votingPeriod": wide(account.voting_period),
        "quorumPercentage": account.quorum_percentage,
        "timelockDuration": wide(account.timelock_duration),
        "proposalCount": wide(account.proposal_count),
        "totalSupply": wide(account.total_supply),
        "authority": address(account.authority),
    }


# ── program state ────────────────────────────────────────────────────

def format_global_state(account: GlobalState) -> dict[str, Any]:
    return {
        "authority": address(account.authority),
        "tokenMint": address(account.token_mint),
        "tokenVault": address(account.token_vault),
        "vaultAuthority": address(account.vault_authority),
        "governance": address(account.governance),
        "paused": account.paused,
        "totalProducts": wide(account.total_products),
        "totalPublishers": wide(account.total_publishers),
        "version": account.version,
    }


def format_vault(account: TokenVault) -> dict[str, Any]:
    return {
        "totalStaked": wide(account.total_staked),
        "totalRewardsDistributed": wide(account.total_rewards_distributed),
        "rewardRate": wide(account.reward_rate),
        "lastDistributionSlot": wide(account.last_distribution_slot),
        "tokenMint": address(account.token_mint),
        "vaultTokenAccount": address(account.vault_token_account),
        "vaultAuthority": address(account.vault_authority),
        "authority": address(account.authority),
    }
