"""
REST / HTTP gateway for the staked price oracle.

Built on ``aiohttp``.  Every handler decodes its request, derives the
accounts it needs, and forwards exactly one instruction (or one account
read) through the shared :class:`RemoteInvoker`.  No oracle, staking or
governance rule is evaluated here; the remote program decides.

Endpoints
---------
GET  /api/health                                      Liveness + current slot
GET  /api/state                                       Global / governance / vault records
POST /api/initialize                                  Bootstrap the program
POST /api/products/create                             Register a price feed
GET  /api/products/{symbol}                           Product record
POST /api/publishers/add                              Register a publisher
GET  /api/publishers/{address}                        Publisher record (by authority)
POST /api/publishers/stake                            Add stake
POST /api/publishers/unstake                          Begin unbonding
POST /api/publishers/withdraw-unbonded                Withdraw after unbonding
POST /api/prices/update                               Submit an observation
POST /api/prices/aggregate                            Re-run aggregation (crank)
GET  /api/prices/{symbol}                             Aggregate + EMA + quotes
POST /api/governance/proposals/create                 Open a proposal
GET  /api/governance/proposals/{id}                   Proposal record
POST /api/governance/proposals/{id}/vote              Vote
POST /api/governance/proposals/{id}/execute           Finalize tally
POST /api/governance/proposals/{id}/execute-action    Apply the effect
POST /api/emergency/pause                             Kill switch on
POST /api/emergency/unpause                           Kill switch off

Symbols may contain ``/`` (``BTC/USD``); the symbol routes match the rest
of the path.

Errors
------
Every failure is a :class:`GatewayError` rendered as
``{"success": false, "error": ..., "kind": ...}`` with the status its kind
maps to (400 validation / credential, 404 not found, 500 rejected,
503 unavailable, 500 internal).

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).
- Optional TLS for the HTTP listener (``tls_cert`` / ``tls_key``).
- Request bodies carry secret keys and are never logged.

Usage:
    api = APIServer(invoker, host="0.0.0.0", port=3000)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import ssl as _ssl
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from aiohttp import web
from solders.keypair import Keypair

from oracle_gateway import __version__
from oracle_gateway.addresses import ProgramAddresses
from oracle_gateway.errors import GatewayError, RemoteUnavailable, ValidationError
from oracle_gateway.formatter import (
    format_global_state,
    format_governance,
    format_price,
    format_product,
    format_proposal,
    format_publisher,
    format_vault,
)
from oracle_gateway.program import (
    UNBONDING_PERIOD_SECONDS,
    GlobalState,
    GovernanceState,
    PriceAccount,
    ProductAccount,
    Proposal,
    PublisherAccount,
    TokenVault,
)
from oracle_gateway.translate import (
    RequestTranslator,
    parse_proposal_id,
    parse_pubkey,
    parse_symbol,
)

if TYPE_CHECKING:
    from oracle_gateway.config import APIConfig
    from oracle_gateway.invoker import RemoteInvoker

logger = logging.getLogger("oracle_gateway.api")


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

async def _read_body(request: web.Request) -> dict[str, Any]:
    """Parse the JSON object body; an empty body is an empty object."""
    if not request.can_read_body:
        return {}
    raw = await request.read()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _ok(payload: dict[str, Any]) -> web.Response:
    return web.json_response({"success": True, **payload})


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter.

    Once ``max_tracked`` addresses are held, buckets idle long
    enough to have refilled completely are dropped; a fresh bucket for the
    same address starts full, so forgetting them changes nothing.
    """

    __slots__ = ("_buckets", "_rpm", "_max_tracked")

    def __init__(self, rpm: int, max_tracked: int = 10_000):
        self._rpm = rpm  # 0 = unlimited
        self._max_tracked = max_tracked
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        if ip not in self._buckets and len(self._buckets) >= self._max_tracked:
            self._sweep()
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        # refill tokens
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False

    def _sweep(self) -> None:
        idle = time.monotonic() - 60.0
        for ip in [ip for ip, (_, last) in self._buckets.items() if last <= idle]:
            del self._buckets[ip]


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST/PUT/DELETE.

    Uses ``hmac.compare_digest`` for timing-safe comparison and only
    reads the key from the ``X-API-Key`` header (never from query params
    to avoid credential leakage in logs / Referer headers).
    """

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers.

    The ``*`` wildcard is **not** supported; operators must list concrete
    origins.
    """

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render :class:`GatewayError` as JSON; anything unexpected is a 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except GatewayError as exc:
        logger.warning(
            f"{request.method} {request.path} -> {exc.http_status} "
            f"{exc.kind.value}: {exc.message}"
        )
        return web.json_response(exc.to_dict(), status=exc.http_status)
    except Exception:
        logger.exception(f"{request.method} {request.path} failed")
        return web.json_response(
            {"success": False, "error": "Internal server error", "kind": "internal"},
            status=500,
        )


# ═══════════════════════════════════════════════════════════════════
#  Server
# ═══════════════════════════════════════════════════════════════════

class APIServer:
    """aiohttp router in front of one :class:`RemoteInvoker`."""

    def __init__(
        self,
        invoker: RemoteInvoker,
        host: str = "0.0.0.0",
        port: int = 3000,
        *,
        api_config: APIConfig | None = None,
        fee_payer: Optional[Keypair] = None,
        rpc_url: str = "",
    ):
        self.invoker = invoker
        self.host = host
        self.port = port
        self.rpc_url = rpc_url
        self.addresses = ProgramAddresses(invoker.program_id)
        self.translator = RequestTranslator(self.addresses, fee_payer=fee_payer)
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._ssl_ctx: _ssl.SSLContext | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536

        if self._api_config is not None:
            cfg = self._api_config

            max_body = cfg.max_body_bytes

            # Rate limiter
            if cfg.rate_limit_rpm > 0:
                self._rate_limiter = _TokenBucket(cfg.rate_limit_rpm)
                middlewares.append(_make_rate_limit_middleware(self._rate_limiter))

            # CORS
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))

            # API key auth
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))

            # Optional TLS for the API listener
            cert = getattr(cfg, "tls_cert", "") or ""
            key = getattr(cfg, "tls_key", "") or ""
            if cert and key:
                self._ssl_ctx = _ssl.SSLContext(_ssl.PROTOCOL_TLS_SERVER)
                self._ssl_ctx.minimum_version = _ssl.TLSVersion.TLSv1_2
                self._ssl_ctx.load_cert_chain(cert, key)

        middlewares.append(error_middleware)
        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        return app

    async def start(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port, ssl_context=self._ssl_ctx)
        await site.start()
        scheme = "https" if self._ssl_ctx else "http"
        logger.info(f"API listening on {scheme}://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/api/health", self._health)
        app.router.add_get("/api/state", self._state)
        app.router.add_post("/api/initialize", self._initialize)
        # Products
        app.router.add_post("/api/products/create", self._create_product)
        app.router.add_get("/api/products/{symbol:.+}", self._get_product)
        # Publishers
        app.router.add_post("/api/publishers/add", self._add_publisher)
        app.router.add_post("/api/publishers/stake", self._stake)
        app.router.add_post("/api/publishers/unstake", self._unstake)
        app.router.add_post("/api/publishers/withdraw-unbonded", self._withdraw_unbonded)
        app.router.add_get("/api/publishers/{address}", self._get_publisher)
        # Prices
        app.router.add_post("/api/prices/update", self._update_price)
        app.router.add_post("/api/prices/aggregate", self._aggregate_price)
        app.router.add_get("/api/prices/{symbol:.+}", self._get_price)
        # Governance
        app.router.add_post("/api/governance/proposals/create", self._create_proposal)
        app.router.add_get("/api/governance/proposals/{proposal_id}", self._get_proposal)
        app.router.add_post("/api/governance/proposals/{proposal_id}/vote", self._vote)
        app.router.add_post("/api/governance/proposals/{proposal_id}/execute", self._execute_proposal)
        app.router.add_post(
            "/api/governance/proposals/{proposal_id}/execute-action", self._execute_action
        )
        # Emergency
        app.router.add_post("/api/emergency/pause", self._pause)
        app.router.add_post("/api/emergency/unpause", self._unpause)

    # ── status ───────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        try:
            slot = await self.invoker.get_slot()
        except RemoteUnavailable as exc:
            return web.json_response({
                "success": False,
                "status": "unhealthy",
                "error": exc.message,
                "kind": exc.kind.value,
            }, status=exc.http_status)
        return _ok({
            "status": "healthy",
            "timestamp": _utc_now(),
            "rpcUrl": self.rpc_url,
            "programId": str(self.invoker.program_id),
            "currentSlot": slot,
            "version": __version__,
        })

    async def _state(self, _request: web.Request) -> web.Response:
        a = self.addresses
        global_state, governance, vault = await asyncio.gather(
            self.invoker.fetch(a.global_state(), GlobalState),
            self.invoker.fetch(a.governance(), GovernanceState),
            self.invoker.fetch(a.token_vault(), TokenVault),
        )
        return _ok({
            "programId": str(self.invoker.program_id),
            "globalState": format_global_state(global_state),
            "governance": format_governance(governance),
            "vault": format_vault(vault),
        })

    async def _initialize(self, request: web.Request) -> web.Response:
        call = self.translator.initialize(await _read_body(request))
        signature = await self.invoker.submit(call)
        acc = call.accounts
        return _ok({
            "signature": signature,
            "accounts": {
                "globalState": str(acc["global_state"]),
                "vaultAuthority": str(acc["vault_authority"]),
                "tokenVault": str(acc["token_vault"]),
                "governanceState": str(acc["governance_state"]),
            },
        })

    # ── products ─────────────────────────────────────────────────

    async def _create_product(self, request: web.Request) -> web.Response:
        call = self.translator.create_product(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "productAccount": str(call.accounts["product_account"]),
            "priceAccount": str(call.accounts["price_account"]),
        })

    async def _get_product(self, request: web.Request) -> web.Response:
        symbol = parse_symbol(request.match_info["symbol"])
        product = await self.invoker.fetch(self.addresses.product(symbol), ProductAccount)
        return _ok({"product": format_product(product)})

    # ── publishers ───────────────────────────────────────────────

    async def _add_publisher(self, request: web.Request) -> web.Response:
        call = self.translator.add_publisher(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "publisherAccount": str(call.accounts["publisher_account"]),
        })

    async def _get_publisher(self, request: web.Request) -> web.Response:
        authority = parse_pubkey(request.match_info["address"], "address")
        publisher = await self.invoker.fetch(
            self.addresses.publisher(authority), PublisherAccount
        )
        return _ok({"publisher": format_publisher(publisher)})

    async def _stake(self, request: web.Request) -> web.Response:
        call = self.translator.stake(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({"signature": signature, "amount": str(call.args["amount"])})

    async def _unstake(self, request: web.Request) -> web.Response:
        call = self.translator.unstake(await _read_body(request))
        signature = await self.invoker.submit(call)
        days = UNBONDING_PERIOD_SECONDS // 86_400
        return _ok({
            "signature": signature,
            "amount": str(call.args["amount"]),
            "unbondingPeriod": f"{days} days",
        })

    async def _withdraw_unbonded(self, request: web.Request) -> web.Response:
        call = self.translator.withdraw_unbonded(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({"signature": signature})

    # ── prices ───────────────────────────────────────────────────

    async def _update_price(self, request: web.Request) -> web.Response:
        call = self.translator.update_price(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "price": str(call.args["price"]),
            "confidence": str(call.args["confidence"]),
            "timestamp": _utc_now(),
        })

    async def _aggregate_price(self, request: web.Request) -> web.Response:
        body = await _read_body(request)
        call = self.translator.aggregate_price(body)
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "symbol": body["symbol"],
            "priceAccount": str(call.accounts["price_account"]),
        })

    async def _get_price(self, request: web.Request) -> web.Response:
        symbol = parse_symbol(request.match_info["symbol"])
        account = await self.invoker.fetch(self.addresses.price(symbol), PriceAccount)
        return _ok(format_price(symbol, account))

    # ── governance ───────────────────────────────────────────────

    async def _create_proposal(self, request: web.Request) -> web.Response:
        call = self.translator.create_proposal(await _read_body(request))
        governance = await self.invoker.fetch(self.addresses.governance(), GovernanceState)
        proposal_id = governance.proposal_count
        self.translator.assign_proposal(call, proposal_id)
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "proposalId": str(proposal_id),
            "proposalAccount": str(call.accounts["proposal"]),
        })

    async def _get_proposal(self, request: web.Request) -> web.Response:
        proposal_id = parse_proposal_id(request.match_info["proposal_id"])
        proposal = await self.invoker.fetch(self.addresses.proposal(proposal_id), Proposal)
        return _ok({"proposal": format_proposal(proposal)})

    async def _vote(self, request: web.Request) -> web.Response:
        proposal_id = parse_proposal_id(request.match_info["proposal_id"])
        call = self.translator.vote(proposal_id, await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "proposalId": str(proposal_id),
            "vote": call.args["vote"].label,
        })

    async def _execute_proposal(self, request: web.Request) -> web.Response:
        proposal_id = parse_proposal_id(request.match_info["proposal_id"])
        call = self.translator.execute_proposal(proposal_id, await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({"signature": signature, "proposalId": str(proposal_id)})

    async def _execute_action(self, request: web.Request) -> web.Response:
        proposal_id = parse_proposal_id(request.match_info["proposal_id"])
        call = self.translator.execute_action(proposal_id, await _read_body(request))
        proposal = await self.invoker.fetch(call.accounts["proposal"], Proposal)
        self.translator.assign_targets(call, proposal)
        signature = await self.invoker.submit(call)
        return _ok({
            "signature": signature,
            "proposalId": str(proposal_id),
            "proposalType": proposal.proposal_type.kind,
        })

    # ── emergency ────────────────────────────────────────────────

    async def _pause(self, request: web.Request) -> web.Response:
        call = self.translator.pause(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({"signature": signature, "message": "System paused"})

    async def _unpause(self, request: web.Request) -> web.Response:
        call = self.translator.unpause(await _read_body(request))
        signature = await self.invoker.submit(call)
        return _ok({"signature": signature, "message": "System unpaused"})
