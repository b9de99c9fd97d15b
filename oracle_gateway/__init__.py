"""
Oracle Gateway - an HTTP gateway in front of an on-chain staked price oracle.

Key features:
- Deterministic program-derived addresses for every oracle account
- Per-request signing identities from base64 secret keys
- Typed, locally validated instruction arguments (Borsh / Anchor encoding)
- Decoded account reads with wide integers rendered as decimal strings
- Classified errors: validation, credential, not found, rejected, unavailable
"""

__version__ = "1.0.0"
__all__ = [
    "addresses",
    "credentials",
    "program",
    "translate",
    "invoker",
    "formatter",
    "api",
    "errors",
    "config",
    "logging_config",
]
