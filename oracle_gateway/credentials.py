"""
Signing identities for write calls.

Mutating endpoints receive the signer's raw ed25519 secret (64 bytes: the
32-byte seed followed by the 32-byte public key) as base64 text.  The keypair
is rebuilt for a single request and dropped afterwards; nothing here logs or
stores the secret.
"""

from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path

from solders.keypair import Keypair

from oracle_gateway.errors import InvalidCredential

SECRET_KEY_LEN = 64


def load_signer(encoded: object, field: str | None = None) -> Keypair:
    """Decode a base64 secret key into a :class:`Keypair`.

    Raises :class:`InvalidCredential` when the text is not base64, the key is
    not 64 bytes long, or its public half does not belong to its secret half.
    """
    if not isinstance(encoded, str) or not encoded.strip():
        raise InvalidCredential("expected a base64-encoded string", field=field)
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidCredential("not valid base64", field=field) from None
    return keypair_from_secret(raw, field=field)


def keypair_from_secret(raw: bytes, field: str | None = None) -> Keypair:
    if len(raw) != SECRET_KEY_LEN:
        raise InvalidCredential(
            f"expected {SECRET_KEY_LEN} bytes, got {len(raw)}", field=field
        )
    keypair = Keypair.from_seed(raw[:32])
    if bytes(keypair.pubkey()) != raw[32:]:
        raise InvalidCredential("public key does not match secret key", field=field)
    return keypair


def encode_secret(keypair: Keypair) -> str:
    """Inverse of :func:`load_signer`."""
    return base64.b64encode(bytes(keypair)).decode("ascii")


def generate() -> Keypair:
    return Keypair()


def load_keypair_file(path: str | Path) -> Keypair:
    """Read a Solana CLI keypair file (a JSON array of 64 byte values)."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise InvalidCredential(f"{path} is not a JSON byte array")
    try:
        raw = bytes(data)
    except (TypeError, ValueError):
        raise InvalidCredential(f"{path} contains non-byte values") from None
    return keypair_from_secret(raw)


def save_keypair_file(keypair: Keypair, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(list(bytes(keypair))))
