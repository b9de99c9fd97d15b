"""
Shared pytest fixtures for the oracle gateway test suite.

``FakeProgram`` stands in for the ledger behind the invoker interface
(``submit`` / ``fetch`` / ``get_slot``).  It stores accounts in their encoded
on-chain form, so every read goes through the real account decoders, and it
applies just enough of the remote program's behaviour to exercise the
gateway end to end.
"""

from __future__ import annotations

import statistics

import pytest
from aiohttp.test_utils import TestClient, TestServer
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from oracle_gateway.api import APIServer
from oracle_gateway.errors import AccountNotFound, ProgramRejected
from oracle_gateway.program import (
    DEFAULT_PROGRAM_ID,
    CallDescriptor,
    GlobalState,
    GovernanceState,
    PriceAccount,
    PriceStatus,
    ProductAccount,
    Proposal,
    PublisherAccount,
    PublisherPrice,
    TokenVault,
    VoteType,
    lookup_error,
)

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)


def _keypair(n: int) -> Keypair:
    return Keypair.from_seed(bytes([n]) * 32)


def _reject(code: int) -> ProgramRejected:
    name, message = lookup_error(code)
    return ProgramRejected(message, code=code, name=name)


class FakeProgram:
    """In-memory oracle program keyed by account address."""

    def __init__(self, program_id: Pubkey = PROGRAM_ID):
        self.program_id = program_id
        self.accounts: dict[Pubkey, bytes] = {}
        self.calls: list[CallDescriptor] = []
        self.slot = 1000
        self.clock = 1_700_000_000
        self.closed = False

    # ── invoker interface ────────────────────────────────────────

    async def get_slot(self) -> int:
        return self.slot

    async def fetch(self, address: Pubkey, account_type):
        label = account_type.__name__.removesuffix("Account") or account_type.__name__
        if address not in self.accounts:
            raise AccountNotFound(label, str(address))
        return account_type.decode(self.accounts[address])

    async def submit(self, call: CallDescriptor) -> str:
        # building the instruction checks the account list is complete
        call.to_instruction(self.program_id)
        self.calls.append(call)
        self.slot += 1
        self.clock += 1
        handler = getattr(self, f"_on_{call.method}", None)
        if handler is not None:
            handler(call)
        return str(Signature.new_unique())

    async def close(self) -> None:
        self.closed = True

    # ── storage helpers ──────────────────────────────────────────

    def put(self, address: Pubkey, account) -> None:
        self.accounts[address] = account.encode()

    def get(self, address: Pubkey, account_type):
        return account_type.decode(self.accounts[address])

    def _global(self, call: CallDescriptor) -> GlobalState:
        return self.get(call.accounts["global_state"], GlobalState)

    def _require_authority(self, call: CallDescriptor, state: GlobalState) -> None:
        if call.accounts["authority"] != state.authority:
            raise _reject(6010)

    # ── instruction behaviour ────────────────────────────────────

    def _on_initialize_program(self, call: CallDescriptor) -> None:
        acc, args = call.accounts, call.args
        authority = acc["authority"]
        self.put(acc["global_state"], GlobalState(
            authority=authority,
            token_mint=acc["token_mint"],
            token_vault=acc["token_vault"],
            vault_authority=acc["vault_authority"],
            governance=acc["governance_state"],
        ))
        self.put(acc["token_vault"], TokenVault(
            token_mint=acc["token_mint"],
            vault_token_account=acc["vault_token_account"],
            vault_authority=acc["vault_authority"],
            authority=authority,
            reward_rate=args["reward_rate"],
        ))
        self.put(acc["governance_state"], GovernanceState(
            governance_token=acc["token_mint"],
            authority=authority,
            proposal_threshold=args["proposal_threshold"],
            voting_period=args["voting_period"],
            quorum_percentage=args["quorum_percentage"],
            timelock_duration=args["timelock_duration"],
            total_supply=args["total_supply"],
        ))

    def _on_create_product(self, call: CallDescriptor) -> None:
        state = self._global(call)
        self._require_authority(call, state)
        acc, args = call.accounts, call.args
        self.put(acc["product_account"], ProductAccount(
            symbol=args["symbol"],
            asset_type=args["asset_type"],
            description=args["description"],
            price_account=acc["price_account"],
            authority=acc["authority"],
        ))
        self.put(acc["price_account"], PriceAccount(
            product_account=acc["product_account"],
            authority=acc["authority"],
            price_type=args["price_type"],
            min_publishers=args["min_publishers"],
            exponent=args["exponent"],
        ))
        state.total_products += 1
        self.put(acc["global_state"], state)

    def _on_add_publisher(self, call: CallDescriptor) -> None:
        state = self._global(call)
        acc, args = call.accounts, call.args
        if acc["publisher_account"] in self.accounts:
            raise _reject(6009)
        self.put(acc["publisher_account"], PublisherAccount(
            authority=acc["publisher_authority"],
            stake_account=acc["publisher_token_account"],
            name=args["name"],
            staked_amount=args["initial_stake"],
            reputation=1000,
            registered_at=self.clock,
        ))
        state.total_publishers += 1
        self.put(acc["global_state"], state)

    def _on_update_price(self, call: CallDescriptor) -> None:
        if self._global(call).paused:
            raise _reject(6013)
        acc, args = call.accounts, call.args
        if args["price"] <= 0:
            raise _reject(6005)
        publisher = self.get(acc["publisher_account"], PublisherAccount)
        feed = self.get(acc["price_account"], PriceAccount)
        quote = PublisherPrice(
            publisher=publisher.authority,
            price=args["price"],
            confidence=args["confidence"],
            timestamp=self.clock,
            slot=self.slot,
            stake=publisher.staked_amount,
            active=True,
        )
        for i, existing in enumerate(feed.publishers):
            if existing.active and existing.publisher == publisher.authority:
                feed.publishers[i] = quote
                break
        else:
            free = next(i for i, p in enumerate(feed.publishers) if not p.active)
            feed.publishers[free] = quote
            feed.publisher_count += 1
        feed.last_update_slot = self.slot
        if feed.publisher_count >= feed.min_publishers:
            self._aggregate(feed)
        self.put(acc["price_account"], feed)

    def _on_aggregate_price(self, call: CallDescriptor) -> None:
        feed = self.get(call.accounts["price_account"], PriceAccount)
        if feed.publisher_count < feed.min_publishers:
            raise _reject(6004)
        self._aggregate(feed)
        self.put(call.accounts["price_account"], feed)

    def _aggregate(self, feed: PriceAccount) -> None:
        quotes = feed.active_publishers
        feed.aggregate.price = int(statistics.median_low(q.price for q in quotes))
        feed.aggregate.confidence = max(q.confidence for q in quotes)
        feed.aggregate.exponent = feed.exponent
        feed.aggregate.timestamp = self.clock
        feed.aggregate.slot = self.slot
        feed.aggregate.status = PriceStatus.TRADING
        feed.ema.ema_price = feed.aggregate.price
        feed.ema.ema_confidence = feed.aggregate.confidence
        feed.ema.num_observations += 1

    def _on_stake_tokens(self, call: CallDescriptor) -> None:
        publisher = self.get(call.accounts["publisher_account"], PublisherAccount)
        publisher.staked_amount += call.args["amount"]
        self.put(call.accounts["publisher_account"], publisher)

    def _on_unstake_tokens(self, call: CallDescriptor) -> None:
        publisher = self.get(call.accounts["publisher_account"], PublisherAccount)
        if call.args["amount"] > publisher.staked_amount:
            raise _reject(6002)
        publisher.staked_amount -= call.args["amount"]
        publisher.unbonding_amount += call.args["amount"]
        publisher.unbonding_start = self.clock
        self.put(call.accounts["publisher_account"], publisher)

    def _on_create_proposal(self, call: CallDescriptor) -> None:
        acc, args = call.accounts, call.args
        governance = self.get(acc["governance_state"], GovernanceState)
        self.put(acc["proposal"], Proposal(
            proposer=acc["proposer"],
            proposal_type=args["proposal_type"],
            description=args["description"],
            start_slot=self.slot,
            end_slot=self.slot + governance.voting_period,
            proposal_id=governance.proposal_count,
        ))
        governance.proposal_count += 1
        self.put(acc["governance_state"], governance)

    def _on_vote_proposal(self, call: CallDescriptor) -> None:
        proposal = self.get(call.accounts["proposal"], Proposal)
        vote = call.args["vote"]
        if vote == VoteType.YES:
            proposal.yes_votes += 1
        elif vote == VoteType.NO:
            proposal.no_votes += 1
        else:
            proposal.abstain_votes += 1
        self.put(call.accounts["proposal"], proposal)

    def _on_execute_proposal(self, call: CallDescriptor) -> None:
        proposal = self.get(call.accounts["proposal"], Proposal)
        if proposal.yes_votes <= proposal.no_votes:
            raise _reject(6011)
        proposal.executed = True
        proposal.execution_time = self.clock
        self.put(call.accounts["proposal"], proposal)

    def _on_emergency_pause(self, call: CallDescriptor) -> None:
        state = self._global(call)
        self._require_authority(call, state)
        state.paused = True
        self.put(call.accounts["global_state"], state)

    def _on_emergency_unpause(self, call: CallDescriptor) -> None:
        state = self._global(call)
        self._require_authority(call, state)
        state.paused = False
        self.put(call.accounts["global_state"], state)


# ── fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def program():
    """Fresh in-memory program."""
    return FakeProgram()


@pytest.fixture
def authority():
    return _keypair(1)


@pytest.fixture
def payer():
    return _keypair(2)


@pytest.fixture
def publisher_a():
    return _keypair(3)


@pytest.fixture
def publisher_b():
    return _keypair(4)


@pytest.fixture
def mint():
    return _keypair(9).pubkey()


@pytest.fixture
def make_client():
    """Factory for an aiohttp TestClient in front of an invoker."""

    def _make(invoker, api_config=None, fee_payer=None) -> TestClient:
        api = APIServer(
            invoker,
            host="127.0.0.1",
            port=0,
            api_config=api_config,
            fee_payer=fee_payer,
            rpc_url="http://fake-rpc",
        )
        return TestClient(TestServer(api.build_app()))

    return _make
