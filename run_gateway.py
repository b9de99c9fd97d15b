#!/usr/bin/env python3
"""
Oracle Gateway Runner: starts the HTTP gateway with:
  - one shared RPC client for the configured ledger endpoint
  - the aiohttp API server (rate limit / API key / CORS / TLS per config)
  - an optional gateway-held fee payer for execute / aggregate calls

Usage:
    python run_gateway.py --config gateway.toml
    python run_gateway.py --port 3000 --rpc-url https://api.devnet.solana.com

Environment variables (alternative to flags):
    ORACLE_RPC_URL (or RPC_URL), ORACLE_API_PORT (or PORT), ORACLE_PROGRAM_ID,
    ORACLE_FEE_PAYER_KEYPAIR, ORACLE_API_KEY, ORACLE_LOG_LEVEL, ORACLE_LOG_FMT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from solders.pubkey import Pubkey  # noqa: E402

from oracle_gateway.api import APIServer  # noqa: E402
from oracle_gateway.config import GatewayConfig, load_config  # noqa: E402
from oracle_gateway.credentials import load_keypair_file  # noqa: E402
from oracle_gateway.invoker import RemoteInvoker  # noqa: E402
from oracle_gateway.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger("oracle_gateway.runner")


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="Oracle HTTP Gateway")
    p.add_argument("--config", default=None, help="Path to gateway.toml config file")
    p.add_argument("--host", default=None, help="Listen host")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--rpc-url", default=None, help="Ledger JSON-RPC endpoint")
    return p.parse_args(argv)


def build_config(args) -> GatewayConfig:
    # Load config (TOML + env overrides), then CLI flags override both
    cfg = load_config(args.config)
    if args.host:
        cfg.api.host = args.host
    if args.port:
        cfg.api.port = args.port
    if args.rpc_url:
        cfg.rpc.url = args.rpc_url
    return cfg


async def main(argv: list[str] | None = None):
    args = parse_args(argv)
    cfg = build_config(args)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    program_id = Pubkey.from_string(cfg.program.program_id)
    fee_payer = None
    if cfg.program.fee_payer_keypair:
        fee_payer = load_keypair_file(cfg.program.fee_payer_keypair)
        logger.info(f"Fee payer loaded: {fee_payer.pubkey()}")

    invoker = RemoteInvoker.from_config(cfg.rpc, program_id)
    api = APIServer(
        invoker,
        host=cfg.api.host,
        port=cfg.api.port,
        api_config=cfg.api,
        fee_payer=fee_payer,
        rpc_url=cfg.rpc.url,
    )
    await api.start()
    logger.info(f"RPC URL: {cfg.rpc.url} ({cfg.rpc.commitment})")
    logger.info(f"Program ID: {program_id}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await api.stop()
        await invoker.close()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
