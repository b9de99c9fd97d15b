"""
End-to-end tests for the HTTP gateway against the in-memory program.

Covers:
  - Health and program state
  - Bootstrap, product registration and the "no observations yet" read
  - Publisher registration, staking and unbonding
  - Price submission by several publishers, wide-integer round trips
  - Governance proposals, votes, execution and action targets
  - Emergency pause surfacing as a program rejection
  - Error classification (validation / credential / not found / internal)
"""

from __future__ import annotations

import pytest

from oracle_gateway.addresses import ProgramAddresses
from oracle_gateway.credentials import encode_secret
from oracle_gateway.errors import RemoteUnavailable
from oracle_gateway.program import PriceAccount

# ─── Helpers ────────────────────────────────────────────────────────


def _init_body(authority, mint, **overrides):
    body = {
        "authoritySecretKey": encode_secret(authority),
        "tokenMintAddress": str(mint),
        "rewardRate": 100,
        "proposalThreshold": "1000",
        "votingPeriod": 50,
        "quorumPercentage": 10,
        "timelockDuration": 0,
        "totalSupply": "1000000000000",
    }
    body.update(overrides)
    return body


def _product_body(authority, symbol="BTC/USD", **overrides):
    body = {
        "authoritySecretKey": encode_secret(authority),
        "symbol": symbol,
        "assetType": "Crypto",
        "description": "Bitcoin / US Dollar",
        "priceType": "spot",
        "minPublishers": 1,
        "exponent": -8,
    }
    body.update(overrides)
    return body


def _publisher_body(payer, publisher, mint, name="pub", stake="5000000"):
    return {
        "payerSecretKey": encode_secret(payer),
        "publisherAuthoritySecretKey": encode_secret(publisher),
        "name": name,
        "initialStake": stake,
        "tokenMintAddress": str(mint),
    }


def _price_body(publisher, price, confidence="100", symbol="BTC/USD"):
    return {
        "publisherAuthoritySecretKey": encode_secret(publisher),
        "symbol": symbol,
        "price": price,
        "confidence": confidence,
    }


async def _bootstrap(client, authority, mint, symbol="BTC/USD"):
    resp = await client.post("/api/initialize", json=_init_body(authority, mint))
    assert resp.status == 200
    resp = await client.post("/api/products/create", json=_product_body(authority, symbol))
    assert resp.status == 200


async def _add_publisher(client, payer, publisher, mint, name="pub"):
    resp = await client.post(
        "/api/publishers/add", json=_publisher_body(payer, publisher, mint, name)
    )
    assert resp.status == 200
    return await resp.json()


# ═══════════════════════════════════════════════════════════════════
#  Health & state
# ═══════════════════════════════════════════════════════════════════

class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_reports_slot_and_program(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.get("/api/health")
            assert resp.status == 200
            data = await resp.json()
            assert data["success"] is True
            assert data["status"] == "healthy"
            assert data["currentSlot"] == program.slot
            assert data["programId"] == str(program.program_id)
            assert data["rpcUrl"] == "http://fake-rpc"

    @pytest.mark.asyncio
    async def test_unreachable_ledger_is_503(self, program, make_client):
        async def _down():
            raise RemoteUnavailable("RPC request failed: connection refused")

        program.get_slot = _down
        async with make_client(program) as client:
            resp = await client.get("/api/health")
            assert resp.status == 503
            data = await resp.json()
            assert data["status"] == "unhealthy"
            assert data["kind"] == "unavailable"


class TestProgramState:
    @pytest.mark.asyncio
    async def test_state_after_initialize(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            resp = await client.post("/api/initialize", json=_init_body(authority, mint))
            assert resp.status == 200
            data = await resp.json()
            addrs = ProgramAddresses(program.program_id)
            assert data["accounts"]["globalState"] == str(addrs.global_state())
            assert data["accounts"]["governanceState"] == str(addrs.governance())

            resp = await client.get("/api/state")
            assert resp.status == 200
            state = await resp.json()
            assert state["globalState"]["authority"] == str(authority.pubkey())
            assert state["globalState"]["paused"] is False
            assert state["governance"]["totalSupply"] == "1000000000000"
            assert state["vault"]["rewardRate"] == "100"

    @pytest.mark.asyncio
    async def test_state_before_initialize_is_404(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.get("/api/state")
            assert resp.status == 404
            assert (await resp.json())["kind"] == "not_found"


# ═══════════════════════════════════════════════════════════════════
#  Products & prices
# ═══════════════════════════════════════════════════════════════════

class TestProducts:
    @pytest.mark.asyncio
    async def test_new_feed_has_no_observations(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            resp = await client.get("/api/prices/BTC/USD")
            assert resp.status == 200
            data = await resp.json()
            assert data["symbol"] == "BTC/USD"
            assert data["hasObservations"] is False
            assert data["status"] == "unknown"
            assert data["price"] == "0"
            assert data["publisherCount"] == 0
            assert data["exponent"] == -8
            assert data["ema"] == {"price": "0", "confidence": "0", "observations": "0"}
            assert data["publishers"] == []

    @pytest.mark.asyncio
    async def test_create_returns_derived_accounts(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            await client.post("/api/initialize", json=_init_body(authority, mint))
            resp = await client.post("/api/products/create", json=_product_body(authority))
            data = await resp.json()
            addrs = ProgramAddresses(program.program_id)
            assert data["productAccount"] == str(addrs.product("BTC/USD"))
            assert data["priceAccount"] == str(addrs.price("BTC/USD"))

            resp = await client.get("/api/products/BTC/USD")
            assert resp.status == 200
            product = (await resp.json())["product"]
            assert product["assetType"] == "crypto"
            assert product["priceAccount"] == data["priceAccount"]

    @pytest.mark.asyncio
    async def test_null_description_defaults_to_empty(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            await client.post("/api/initialize", json=_init_body(authority, mint))
            resp = await client.post(
                "/api/products/create", json=_product_body(authority, description=None)
            )
            assert resp.status == 200
            resp = await client.get("/api/products/BTC/USD")
            assert (await resp.json())["product"]["description"] == ""

    @pytest.mark.asyncio
    async def test_unknown_asset_type_never_sent(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            await client.post("/api/initialize", json=_init_body(authority, mint))
            sent = len(program.calls)
            resp = await client.post(
                "/api/products/create", json=_product_body(authority, assetType="Stonks")
            )
            assert resp.status == 400
            data = await resp.json()
            assert data["kind"] == "validation"
            assert data["field"] == "assetType"
            assert "crypto" in data["allowed"]
            assert len(program.calls) == sent

    @pytest.mark.asyncio
    async def test_missing_symbol(self, program, make_client, authority):
        body = _product_body(authority)
        del body["symbol"]
        async with make_client(program) as client:
            resp = await client.post("/api/products/create", json=body)
            assert resp.status == 400
            assert (await resp.json())["field"] == "symbol"

    @pytest.mark.asyncio
    async def test_symbol_too_long_for_seed(self, program, make_client, authority):
        async with make_client(program) as client:
            resp = await client.post(
                "/api/products/create", json=_product_body(authority, symbol="X" * 33)
            )
            assert resp.status == 400
            assert program.calls == []

    @pytest.mark.asyncio
    async def test_unknown_symbol_is_404(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.get("/api/prices/DOGE/USD")
            assert resp.status == 404
            data = await resp.json()
            assert data["success"] is False
            assert data["kind"] == "not_found"


class TestPrices:
    @pytest.mark.asyncio
    async def test_two_publishers_reported_as_stored(
        self, program, make_client, authority, payer, publisher_a, publisher_b, mint
    ):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            await _add_publisher(client, payer, publisher_a, mint, "alpha")
            await _add_publisher(client, payer, publisher_b, mint, "beta")

            resp = await client.post("/api/prices/update", json=_price_body(publisher_a, "4500000000000"))
            assert resp.status == 200
            resp = await client.post("/api/prices/update", json=_price_body(publisher_b, 4500100000000))
            assert resp.status == 200

            resp = await client.get("/api/prices/BTC/USD")
            data = await resp.json()
            addrs = ProgramAddresses(program.program_id)
            stored = program.get(addrs.price("BTC/USD"), PriceAccount)
            assert data["hasObservations"] is True
            assert data["status"] == "trading"
            assert data["publisherCount"] == 2
            assert data["price"] == str(stored.aggregate.price)
            assert data["ema"]["observations"] == str(stored.ema.num_observations)
            quotes = {q["publisher"]: q["price"] for q in data["publishers"]}
            assert quotes == {
                str(publisher_a.pubkey()): "4500000000000",
                str(publisher_b.pubkey()): "4500100000000",
            }

    @pytest.mark.asyncio
    async def test_decimal_string_round_trip(
        self, program, make_client, authority, payer, publisher_a, mint
    ):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            await _add_publisher(client, payer, publisher_a, mint)
            resp = await client.post(
                "/api/prices/update", json=_price_body(publisher_a, "45000000000000")
            )
            assert resp.status == 200
            assert (await resp.json())["price"] == "45000000000000"

            resp = await client.get("/api/prices/BTC/USD")
            data = await resp.json()
            assert data["price"] == "45000000000000"
            assert data["publishers"][0]["price"] == "45000000000000"

    @pytest.mark.asyncio
    async def test_float_price_rejected(self, program, make_client, publisher_a):
        async with make_client(program) as client:
            resp = await client.post("/api/prices/update", json=_price_body(publisher_a, 1.5))
            assert resp.status == 400
            data = await resp.json()
            assert data["field"] == "price"
            assert program.calls == []

    @pytest.mark.asyncio
    async def test_oversized_digit_string_rejected(self, program, make_client, publisher_a):
        async with make_client(program) as client:
            resp = await client.post("/api/prices/update", json=_price_body(publisher_a, "9" * 5000))
            assert resp.status == 400
            data = await resp.json()
            assert data["kind"] == "validation"
            assert data["field"] == "price"
            assert program.calls == []

    @pytest.mark.asyncio
    async def test_pause_blocks_price_updates(
        self, program, make_client, authority, payer, publisher_a, mint
    ):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            await _add_publisher(client, payer, publisher_a, mint)

            resp = await client.post(
                "/api/emergency/pause",
                json={"authoritySecretKey": encode_secret(authority)},
            )
            assert resp.status == 200
            assert (await resp.json())["message"] == "System paused"

            resp = await client.post("/api/prices/update", json=_price_body(publisher_a, "100"))
            assert resp.status == 500
            data = await resp.json()
            assert data["success"] is False
            assert data["kind"] == "rejected"
            assert data["code"] == 6013
            assert data["name"] == "SystemPaused"
            assert data["error"] == "System is paused"

            resp = await client.post(
                "/api/emergency/unpause",
                json={"authoritySecretKey": encode_secret(authority)},
            )
            assert resp.status == 200
            resp = await client.post("/api/prices/update", json=_price_body(publisher_a, "100"))
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_pause_by_non_authority_rejected(self, program, make_client, authority, payer, mint):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            resp = await client.post(
                "/api/emergency/pause", json={"authoritySecretKey": encode_secret(payer)}
            )
            assert resp.status == 500
            assert (await resp.json())["name"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_aggregate_uses_configured_fee_payer(
        self, program, make_client, authority, payer, publisher_a, mint
    ):
        async with make_client(program, fee_payer=payer) as client:
            await _bootstrap(client, authority, mint)
            await _add_publisher(client, payer, publisher_a, mint)
            await client.post("/api/prices/update", json=_price_body(publisher_a, "250"))
            resp = await client.post("/api/prices/aggregate", json={"symbol": "BTC/USD"})
            assert resp.status == 200
            assert program.calls[-1].fee_payer == payer.pubkey()


# ═══════════════════════════════════════════════════════════════════
#  Publishers
# ═══════════════════════════════════════════════════════════════════

class TestPublishers:
    @pytest.mark.asyncio
    async def test_add_then_read(self, program, make_client, authority, payer, publisher_a, mint):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            data = await _add_publisher(client, payer, publisher_a, mint, "alpha")
            addrs = ProgramAddresses(program.program_id)
            assert data["publisherAccount"] == str(addrs.publisher(publisher_a.pubkey()))
            assert program.calls[-1].fee_payer == payer.pubkey()

            resp = await client.get(f"/api/publishers/{publisher_a.pubkey()}")
            assert resp.status == 200
            pub = (await resp.json())["publisher"]
            assert pub["name"] == "alpha"
            assert pub["stakedAmount"] == "5000000"
            assert pub["slashCount"] == 0

    @pytest.mark.asyncio
    async def test_stake_and_unstake(self, program, make_client, authority, payer, publisher_a, mint):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            await _add_publisher(client, payer, publisher_a, mint)
            secret = encode_secret(publisher_a)

            resp = await client.post("/api/publishers/stake", json={
                "publisherAuthoritySecretKey": secret,
                "amount": "1000000",
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 200
            assert (await resp.json())["amount"] == "1000000"

            resp = await client.post("/api/publishers/unstake", json={
                "publisherAuthoritySecretKey": secret,
                "amount": 2000000,
            })
            assert resp.status == 200
            assert (await resp.json())["unbondingPeriod"] == "7 days"

            resp = await client.get(f"/api/publishers/{publisher_a.pubkey()}")
            pub = (await resp.json())["publisher"]
            assert pub["stakedAmount"] == "4000000"
            assert pub["unbondingAmount"] == "2000000"

    @pytest.mark.asyncio
    async def test_withdraw_unbonded_accounts(self, program, make_client, publisher_a, mint):
        async with make_client(program) as client:
            resp = await client.post("/api/publishers/withdraw-unbonded", json={
                "publisherAuthoritySecretKey": encode_secret(publisher_a),
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 200
            call = program.calls[-1]
            assert call.method == "withdraw_unbonded"
            addrs = ProgramAddresses(program.program_id)
            assert call.accounts["vault_token_account"] == addrs.vault_token_account(mint)

    @pytest.mark.asyncio
    async def test_malformed_address_is_400(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.get("/api/publishers/not-a-key")
            assert resp.status == 400
            assert (await resp.json())["field"] == "address"

    @pytest.mark.asyncio
    async def test_unregistered_publisher_is_404(self, program, make_client, publisher_b):
        async with make_client(program) as client:
            resp = await client.get(f"/api/publishers/{publisher_b.pubkey()}")
            assert resp.status == 404


# ═══════════════════════════════════════════════════════════════════
#  Governance
# ═══════════════════════════════════════════════════════════════════

class TestGovernance:
    @pytest.mark.asyncio
    async def test_proposal_lifecycle(
        self, program, make_client, authority, payer, publisher_a, mint
    ):
        async with make_client(program, fee_payer=payer) as client:
            await _bootstrap(client, authority, mint)
            proposer = encode_secret(authority)

            resp = await client.post("/api/governance/proposals/create", json={
                "proposerSecretKey": proposer,
                "proposalType": {
                    "type": "SlashPublisher",
                    "publisher": str(publisher_a.pubkey()),
                    "percentage": 10,
                },
                "description": "slash alpha",
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 200
            created = await resp.json()
            assert created["proposalId"] == "0"
            addrs = ProgramAddresses(program.program_id)
            assert created["proposalAccount"] == str(addrs.proposal(0))

            resp = await client.post("/api/governance/proposals/0/vote", json={
                "voterSecretKey": proposer,
                "vote": "YES",
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 200
            assert (await resp.json())["vote"] == "yes"

            resp = await client.get("/api/governance/proposals/0")
            proposal = (await resp.json())["proposal"]
            assert proposal["yesVotes"] == "1"
            assert proposal["proposalType"] == {
                "type": "SlashPublisher",
                "publisher": str(publisher_a.pubkey()),
                "percentage": 10,
            }

            resp = await client.post("/api/governance/proposals/0/execute")
            assert resp.status == 200
            assert program.calls[-1].fee_payer == payer.pubkey()

            resp = await client.post(
                "/api/governance/proposals/0/execute-action",
                json={"authoritySecretKey": proposer},
            )
            assert resp.status == 200
            assert (await resp.json())["proposalType"] == "SlashPublisher"
            call = program.calls[-1]
            assert call.accounts["publisher_account"] == addrs.publisher(publisher_a.pubkey())
            assert call.accounts.get("price_account") is None

    @pytest.mark.asyncio
    async def test_proposal_ids_follow_counter(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            await _bootstrap(client, authority, mint)
            body = {
                "proposerSecretKey": encode_secret(authority),
                "proposalType": {"type": "EmergencyPause"},
                "description": "halt",
                "tokenMintAddress": str(mint),
            }
            ids = []
            for _ in range(2):
                resp = await client.post("/api/governance/proposals/create", json=body)
                ids.append((await resp.json())["proposalId"])
            assert ids == ["0", "1"]

    @pytest.mark.asyncio
    async def test_min_publishers_action_targets_feed(
        self, program, make_client, authority, mint
    ):
        async with make_client(program, fee_payer=authority) as client:
            await _bootstrap(client, authority, mint)
            addrs = ProgramAddresses(program.program_id)
            feed = addrs.price("BTC/USD")
            secret = encode_secret(authority)
            await client.post("/api/governance/proposals/create", json={
                "proposerSecretKey": secret,
                "proposalType": {"type": "UpdateMinPublishers", "feed": str(feed), "newMin": 3},
                "tokenMintAddress": str(mint),
            })
            await client.post("/api/governance/proposals/0/vote", json={
                "voterSecretKey": secret, "vote": "yes", "tokenMintAddress": str(mint),
            })
            await client.post("/api/governance/proposals/0/execute")
            resp = await client.post(
                "/api/governance/proposals/0/execute-action",
                json={"authoritySecretKey": secret},
            )
            assert resp.status == 200
            assert program.calls[-1].accounts["price_account"] == feed

    @pytest.mark.asyncio
    async def test_invalid_vote_never_sent(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            resp = await client.post("/api/governance/proposals/0/vote", json={
                "voterSecretKey": encode_secret(authority),
                "vote": "maybe",
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 400
            data = await resp.json()
            assert data["field"] == "vote"
            assert data["allowed"] == ["yes", "no", "abstain"]
            assert program.calls == []

    @pytest.mark.asyncio
    async def test_unknown_proposal_type(self, program, make_client, authority, mint):
        async with make_client(program) as client:
            resp = await client.post("/api/governance/proposals/create", json={
                "proposerSecretKey": encode_secret(authority),
                "proposalType": {"type": "MintForever"},
                "tokenMintAddress": str(mint),
            })
            assert resp.status == 400
            assert (await resp.json())["field"] == "proposalType.type"

    @pytest.mark.asyncio
    async def test_execute_without_payer(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.post("/api/governance/proposals/0/execute", json={})
            assert resp.status == 400
            assert (await resp.json())["field"] == "payerSecretKey"

    @pytest.mark.asyncio
    async def test_non_numeric_proposal_id(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.get("/api/governance/proposals/abc")
            assert resp.status == 400
            assert (await resp.json())["field"] == "proposalId"

    @pytest.mark.asyncio
    async def test_execute_action_on_missing_proposal(self, program, make_client, authority):
        async with make_client(program) as client:
            resp = await client.post(
                "/api/governance/proposals/7/execute-action",
                json={"authoritySecretKey": encode_secret(authority)},
            )
            assert resp.status == 404
            assert program.calls == []


# ═══════════════════════════════════════════════════════════════════
#  Error classification
# ═══════════════════════════════════════════════════════════════════

class TestErrorClassification:
    @pytest.mark.asyncio
    async def test_invalid_json(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.post(
                "/api/emergency/pause",
                data=b"{not json",
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
            assert (await resp.json())["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_body_must_be_object(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.post("/api/emergency/pause", json=["a", "b"])
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_undecodable_secret_is_credential_error(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.post(
                "/api/emergency/pause", json={"authoritySecretKey": "%%% not base64 %%%"}
            )
            assert resp.status == 400
            data = await resp.json()
            assert data["kind"] == "credential"
            assert "%%%" not in data["error"]

    @pytest.mark.asyncio
    async def test_short_secret_is_credential_error(self, program, make_client):
        async with make_client(program) as client:
            resp = await client.post(
                "/api/emergency/pause", json={"authoritySecretKey": "AAAA"}
            )
            assert resp.status == 400
            assert (await resp.json())["kind"] == "credential"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal(self, program, make_client, authority):
        async def _boom(call):
            raise RuntimeError("secret internals")

        program.submit = _boom
        async with make_client(program) as client:
            resp = await client.post(
                "/api/emergency/pause", json={"authoritySecretKey": encode_secret(authority)}
            )
            assert resp.status == 500
            data = await resp.json()
            assert data == {"success": False, "error": "Internal server error", "kind": "internal"}
