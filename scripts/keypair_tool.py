#!/usr/bin/env python3
"""
Generate and inspect ed25519 keypairs for oracle gateway requests.

Every mutating endpoint takes its signer as a base64 secret key (64 bytes:
seed followed by public key).  This tool produces that encoding and converts
to and from the Solana CLI keypair file format (a JSON array of 64 bytes).

Usage:
    # New keypair, printed as base58 pubkey + base64 secret:
    python scripts/keypair_tool.py generate

    # ...and also saved in Solana CLI format:
    python scripts/keypair_tool.py generate ./my-keypair.json

    # Load a Solana CLI keypair file:
    python scripts/keypair_tool.py load ~/.config/solana/id.json

    # Public key for a base64 secret:
    python scripts/keypair_tool.py pubkey "BASE64_SECRET_KEY"

A saved keypair file can serve as the gateway's fee payer:

    [program]
    fee_payer_keypair = "./my-keypair.json"
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path so we can import oracle_gateway
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from oracle_gateway.credentials import (  # noqa: E402
    encode_secret,
    generate,
    load_keypair_file,
    load_signer,
    save_keypair_file,
)
from oracle_gateway.errors import InvalidCredential  # noqa: E402


def _cmd_generate(args: argparse.Namespace) -> int:
    print("\n── Generating new keypair ──\n")
    keypair = generate()
    print(f"  Public key:          {keypair.pubkey()}")
    print(f"  Secret key (base64): {encode_secret(keypair)}")
    print("\n  Store the secret key securely. Never share it.\n")
    if args.output:
        save_keypair_file(keypair, args.output)
        print(f"  Keypair saved to {args.output}\n")
    return 0


def _cmd_load(args: argparse.Namespace) -> int:
    print("\n── Loading keypair from file ──\n")
    keypair = load_keypair_file(args.path)
    print(f"  Public key:          {keypair.pubkey()}")
    print(f"  Secret key (base64): {encode_secret(keypair)}\n")
    return 0


def _cmd_pubkey(args: argparse.Namespace) -> int:
    keypair = load_signer(args.secret)
    print(f"  Public key: {keypair.pubkey()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Oracle gateway keypair utility.")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a new keypair")
    gen.add_argument("output", nargs="?", help="Optional Solana CLI keypair file to write")
    gen.set_defaults(func=_cmd_generate)

    load = sub.add_parser("load", help="Load a Solana CLI keypair file")
    load.add_argument("path", help="Path to the keypair JSON file")
    load.set_defaults(func=_cmd_load)

    pub = sub.add_parser("pubkey", help="Print the public key of a base64 secret key")
    pub.add_argument("secret", help="Base64-encoded 64-byte secret key")
    pub.set_defaults(func=_cmd_pubkey)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (InvalidCredential, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
