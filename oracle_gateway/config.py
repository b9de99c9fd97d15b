"""
TOML-based configuration for the oracle gateway.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from oracle_gateway.config import load_config
    cfg = load_config("gateway.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from oracle_gateway.program import DEFAULT_PROGRAM_ID

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class RPCConfig:
    """Ledger RPC endpoint and confirmation policy."""
    url: str = "https://api.devnet.solana.com"
    commitment: str = "confirmed"      # processed | confirmed | finalized
    timeout: float = 30.0              # per-request HTTP timeout (seconds)
    confirm_timeout: float = 60.0      # how long to wait for a submitted tx
    poll_interval: float = 0.5
    read_retries: int = 2              # extra attempts for idempotent reads
    retry_delay: float = 0.5


@dataclass
class ProgramConfig:
    """Target program and the optional gateway-held fee payer."""
    program_id: str = DEFAULT_PROGRAM_ID
    # Solana CLI keypair file; pays for execute/aggregate when the request
    # carries no payerSecretKey.  Empty = every such request must bring one.
    fee_payer_keypair: str = ""


@dataclass
class APIConfig:
    """HTTP listener settings."""
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536
    tls_cert: str = ""
    tls_key: str = ""


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class GatewayConfig:
    """Top-level configuration container."""
    rpc: RPCConfig = field(default_factory=RPCConfig)
    program: ProgramConfig = field(default_factory=ProgramConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> GatewayConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        ORACLE_RPC_URL / RPC_URL     -> rpc.url
        ORACLE_COMMITMENT            -> rpc.commitment
        ORACLE_PROGRAM_ID            -> program.program_id
        ORACLE_FEE_PAYER_KEYPAIR     -> program.fee_payer_keypair
        ORACLE_API_HOST              -> api.host
        ORACLE_API_PORT / PORT       -> api.port
        ORACLE_API_KEY               -> api.api_key
        ORACLE_CORS_ORIGINS          -> api.cors_origins  (comma-separated)
        ORACLE_LOG_LEVEL             -> logging.level
        ORACLE_LOG_FMT               -> logging.format
    """
    cfg = GatewayConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("rpc", cfg.rpc),
                ("program", cfg.program),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("ORACLE_RPC_URL") or os.environ.get("RPC_URL"):
        cfg.rpc.url = v
    if v := os.environ.get("ORACLE_COMMITMENT"):
        cfg.rpc.commitment = v.lower()
    if v := os.environ.get("ORACLE_PROGRAM_ID"):
        cfg.program.program_id = v
    if v := os.environ.get("ORACLE_FEE_PAYER_KEYPAIR"):
        cfg.program.fee_payer_keypair = v
    if v := os.environ.get("ORACLE_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("ORACLE_API_PORT") or os.environ.get("PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("ORACLE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("ORACLE_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("ORACLE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("ORACLE_LOG_FMT"):
        cfg.logging.format = v

    return cfg
