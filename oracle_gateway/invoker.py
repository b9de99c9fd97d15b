"""
Remote invoker: the gateway's only path to the ledger.

Wraps one long-lived ``solana.rpc.async_api.AsyncClient`` and exposes three
operations:

  - ``submit(call)``  build, sign, send and confirm one instruction
  - ``fetch(addr, T)`` read and decode one program-owned account
  - ``get_slot()``     current ledger height (health check)

Every SDK or transport exception is translated into the gateway error
taxonomy here, so nothing above this module needs to know what the RPC
client raises.  Reads are retried a bounded number of times on transport
failures; submissions are attempted exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import httpx
from anchorpy.error import AccountInvalidDiscriminator
from construct import ConstructError
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from oracle_gateway.errors import (
    AccountNotFound,
    GatewayError,
    InvalidAccountData,
    ProgramRejected,
    RemoteUnavailable,
)
from oracle_gateway.program import CallDescriptor, ProgramAccount, lookup_error

logger = logging.getLogger("oracle_gateway.invoker")

T = TypeVar("T")
A = TypeVar("A", bound=ProgramAccount)

_ANCHOR_LOG = re.compile(
    r"Error Code: (\w+)\. Error Number: (\d+)\. Error Message: (.+?)\.?$"
)
_CUSTOM_CODE = re.compile(r"Custom\((\d+)\)")

_CONFIRMATION_LEVELS = [
    TransactionConfirmationStatus.Processed,
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
]
_COMMITMENT_INDEX = {"processed": 0, "confirmed": 1, "finalized": 2}


# ═══════════════════════════════════════════════════════════════════
#  Error translation
# ═══════════════════════════════════════════════════════════════════

def rejection_from(
    message: str, logs: Iterable[str] = (), err: Any = None
) -> ProgramRejected:
    """Name a rejection from program logs or a ``Custom(n)`` status when possible."""
    logs = list(logs or ())
    for line in reversed(logs):
        m = _ANCHOR_LOG.search(line)
        if m:
            return ProgramRejected(
                m.group(3), code=int(m.group(2)), name=m.group(1), logs=logs
            )
    for text in (str(err) if err is not None else "", message):
        m = _CUSTOM_CODE.search(text)
        if m:
            code = int(m.group(1))
            known = lookup_error(code)
            if known:
                return ProgramRejected(known[1], code=code, name=known[0], logs=logs)
            return ProgramRejected(
                f"Program rejected the transaction (custom error {code})",
                code=code,
                logs=logs,
            )
    return ProgramRejected(message or "Transaction rejected", logs=logs)


def translate_exception(exc: Exception) -> GatewayError:
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, RPCException):
        payload = exc.args[0] if exc.args else None
        message = getattr(payload, "message", None) or str(exc)
        data = getattr(payload, "data", None)
        return rejection_from(
            message, getattr(data, "logs", None) or (), getattr(data, "err", None)
        )
    if isinstance(exc, (SolanaRpcException, httpx.HTTPError, asyncio.TimeoutError, OSError)):
        return RemoteUnavailable(f"RPC request failed: {exc}")
    raise exc


# ═══════════════════════════════════════════════════════════════════
#  RemoteInvoker
# ═══════════════════════════════════════════════════════════════════

class RemoteInvoker:
    """Submission and account reads against one RPC endpoint."""

    def __init__(
        self,
        client: AsyncClient,
        program_id: Pubkey,
        *,
        commitment: str = "confirmed",
        confirm_timeout: float = 30.0,
        poll_interval: float = 0.5,
        read_retries: int = 2,
        retry_delay: float = 0.5,
    ):
        if commitment not in _COMMITMENT_INDEX:
            raise ValueError(f"unsupported commitment {commitment!r}")
        self.client = client
        self.program_id = program_id
        self.commitment = commitment
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.read_retries = read_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, rpc_cfg, program_id: Pubkey) -> "RemoteInvoker":
        client = AsyncClient(
            rpc_cfg.url, commitment=rpc_cfg.commitment, timeout=rpc_cfg.timeout
        )
        return cls(
            client,
            program_id,
            commitment=rpc_cfg.commitment,
            confirm_timeout=rpc_cfg.confirm_timeout,
            poll_interval=rpc_cfg.poll_interval,
            read_retries=rpc_cfg.read_retries,
            retry_delay=rpc_cfg.retry_delay,
        )

    async def close(self) -> None:
        await self.client.close()

    # ── plumbing ─────────────────────────────────────────────────

    async def _rpc(self, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except Exception as exc:
            raise translate_exception(exc) from exc

    async def _read(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await self._rpc(call)
            except RemoteUnavailable as exc:
                if attempt >= self.read_retries:
                    logger.error(f"{what} failed after {attempt + 1} attempts: {exc.message}")
                    raise
                attempt += 1
                logger.warning(
                    f"{what} failed ({exc.message}), retry {attempt}/{self.read_retries}"
                )
                await asyncio.sleep(self.retry_delay)

    # ── reads ────────────────────────────────────────────────────

    async def get_slot(self) -> int:
        resp = await self._read(
            "get_slot", lambda: self.client.get_slot(self.commitment)
        )
        return resp.value

    async def fetch(self, address: Pubkey, account_type: type[A]) -> A:
        label = account_type.__name__.removesuffix("Account") or account_type.__name__
        resp = await self._read(
            f"fetch {label} {address}",
            lambda: self.client.get_account_info(address, commitment=self.commitment),
        )
        info = resp.value
        if info is None:
            raise AccountNotFound(label, str(address))
        if info.owner != self.program_id:
            raise InvalidAccountData(
                f"{label} account {address} is owned by {info.owner}, not the oracle program"
            )
        try:
            return account_type.decode(bytes(info.data))
        except (AccountInvalidDiscriminator, ConstructError, ValueError) as exc:
            raise InvalidAccountData(
                f"{label} account {address} could not be decoded: {exc}"
            ) from exc

    # ── writes ───────────────────────────────────────────────────

    async def submit(self, call: CallDescriptor) -> str:
        """Sign and send ``call``; return the base58 signature once confirmed."""
        instruction = call.to_instruction(self.program_id)
        signers = call.unique_signers()
        latest = await self._read(
            "get_latest_blockhash",
            lambda: self.client.get_latest_blockhash(self.commitment),
        )
        blockhash = latest.value.blockhash
        message = Message.new_with_blockhash([instruction], call.fee_payer, blockhash)
        tx = Transaction(signers, message, blockhash)

        opts = TxOpts(skip_confirmation=True, preflight_commitment=self.commitment)
        try:
            resp = await self._rpc(lambda: self.client.send_raw_transaction(bytes(tx), opts=opts))
        except GatewayError as exc:
            logger.warning(f"{call.method} rejected ({exc.kind.value}): {exc.message}")
            raise
        signature = resp.value
        logger.info(f"{call.method} sent: {signature}")

        await self._confirm(call.method, signature)
        return str(signature)

    async def _confirm(self, method: str, signature: Signature) -> None:
        wanted = _COMMITMENT_INDEX[self.commitment]
        deadline = time.monotonic() + self.confirm_timeout
        while time.monotonic() < deadline:
            try:
                resp = await self._rpc(
                    lambda: self.client.get_signature_statuses([signature])
                )
            except RemoteUnavailable as exc:
                logger.debug(f"status check for {signature} failed: {exc.message}")
            else:
                status = resp.value[0] if resp.value else None
                if status is not None:
                    if status.err is not None:
                        exc = rejection_from("Transaction failed", err=status.err)
                        logger.warning(f"{method} failed on-chain: {exc.message}")
                        raise exc
                    if _confirmation_level(status.confirmation_status) >= wanted:
                        logger.info(f"{method} confirmed: {signature}")
                        return
            await asyncio.sleep(self.poll_interval)
        raise RemoteUnavailable(
            f"Transaction {signature} not confirmed within {self.confirm_timeout:g}s"
        )


def _confirmation_level(status: Optional[TransactionConfirmationStatus]) -> int:
    # no status reported means the slot is already rooted
    if status is None:
        return len(_CONFIRMATION_LEVELS) - 1
    for i, level in enumerate(_CONFIRMATION_LEVELS):
        if status == level:
            return i
    return 0
