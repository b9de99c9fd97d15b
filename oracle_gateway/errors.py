"""
Error taxonomy for the oracle gateway.

Every failure raised by the gateway components is a :class:`GatewayError`
carrying an :class:`ErrorKind`.  The HTTP layer maps the kind to a status
code, so callers can tell their own mistakes (4xx) from ledger-side
rejections and network trouble (5xx).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable


class ErrorKind(str, Enum):
    """Classification shared by all gateway errors."""

    VALIDATION = "validation"
    CREDENTIAL = "credential"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CREDENTIAL: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.REJECTED: 500,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


class GatewayError(Exception):
    """Base class; ``kind`` decides the HTTP status."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "kind": self.kind.value,
        }
        body.update(self.details)
        return body


# ── client-side errors ──────────────────────────────────────────────

class ValidationError(GatewayError):
    kind = ErrorKind.VALIDATION


class MissingField(ValidationError):
    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}", details={"field": field})
        self.field = field


class InvalidField(ValidationError):
    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}", details={"field": field})
        self.field = field
        self.reason = reason


class InvalidEnumValue(ValidationError):
    def __init__(self, field: str, value: Any, allowed: Iterable[str]):
        allowed = list(allowed)
        super().__init__(
            f"Invalid {field} {value!r}; expected one of: {', '.join(allowed)}",
            details={"field": field, "allowed": allowed},
        )
        self.field = field
        self.value = value
        self.allowed = allowed


class InvalidCredential(GatewayError):
    kind = ErrorKind.CREDENTIAL

    def __init__(self, reason: str, *, field: str | None = None):
        label = field or "secret key"
        super().__init__(
            f"Invalid {label}: {reason}",
            details={"field": field} if field else None,
        )
        self.reason = reason


# ── ledger-side errors ──────────────────────────────────────────────

class AccountNotFound(GatewayError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, account_type: str, address: str):
        super().__init__(
            f"{account_type} account {address} not found",
            details={"address": address},
        )
        self.account_type = account_type
        self.address = address


class InvalidAccountData(GatewayError):
    kind = ErrorKind.REJECTED


class ProgramRejected(GatewayError):
    """The ledger or the oracle program refused the transaction."""

    kind = ErrorKind.REJECTED

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        name: str | None = None,
        logs: Iterable[str] = (),
    ):
        details: dict[str, Any] = {}
        if code is not None:
            details["code"] = code
        if name is not None:
            details["name"] = name
        super().__init__(message, details=details)
        self.code = code
        self.name = name
        self.logs = list(logs)


class RemoteUnavailable(GatewayError):
    """Network failure, RPC timeout, or a transaction that never confirmed."""

    kind = ErrorKind.UNAVAILABLE
