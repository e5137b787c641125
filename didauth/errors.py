"""Tagged error taxonomy for the authentication protocol."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure kinds, decided where the failure happens."""

    INVALID_INPUT = "invalid_input"
    UNKNOWN_IDENTITY = "unknown_identity"
    KEY_UNAVAILABLE = "key_unavailable"
    SIGNATURE_MISMATCH = "signature_mismatch"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    MALFORMED_CREDENTIAL = "malformed_credential"
    EXPIRED = "expired"
    IDENTITY_REVOKED = "identity_revoked"
    CHALLENGE_REJECTED = "challenge_rejected"

    NOT_FOUND = "not_found"
    INVALID_PUBLIC_KEY_FORMAT = "invalid_public_key_format"
    INVALID_SIGNATURE_FORMAT = "invalid_signature_format"
    BAD_SIGNATURE = "bad_signature"


_PUBLIC_MESSAGES = {
    ErrorKind.INVALID_INPUT: "Request parameters are invalid",
    ErrorKind.UNKNOWN_IDENTITY: "Authentication failed",
    ErrorKind.KEY_UNAVAILABLE: "Identity key could not be retrieved",
    ErrorKind.SIGNATURE_MISMATCH: "Authentication failed",
    ErrorKind.ORACLE_UNAVAILABLE: "Identity ledger is unavailable, retry later",
    ErrorKind.MALFORMED_CREDENTIAL: "Invalid credential",
    ErrorKind.EXPIRED: "Credential expired",
    ErrorKind.IDENTITY_REVOKED: "Identity is no longer registered",
    ErrorKind.CHALLENGE_REJECTED: "Challenge is not valid, request a new one",
    ErrorKind.NOT_FOUND: "Identity not found",
    ErrorKind.INVALID_PUBLIC_KEY_FORMAT: "Invalid public key format",
    ErrorKind.INVALID_SIGNATURE_FORMAT: "Invalid signature format",
    ErrorKind.BAD_SIGNATURE: "Invalid credential",
}


class DIDAuthError(Exception):
    """Raised by every component; ``detail`` stays server side."""

    def __init__(self, kind: ErrorKind, detail: str | None = None) -> None:
        self.kind = kind
        self.detail = detail or kind.value
        # Last protocol state reached before the failure, set by the login flow.
        self.failed_at: Optional[str] = None
        super().__init__(self.detail)

    @property
    def public_message(self) -> str:
        return _PUBLIC_MESSAGES[self.kind]

    def __repr__(self) -> str:
        return f"DIDAuthError({self.kind.value!r}, {self.detail!r})"


class ConfigError(ValueError):
    """Invalid or missing configuration."""


__all__ = ["ConfigError", "DIDAuthError", "ErrorKind"]
