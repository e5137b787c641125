"""Signed session credentials (HS256 JWT) for authenticated identities."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import jwt

from .constants import TOKEN_ALGORITHM, TOKEN_TYPE
from .errors import DIDAuthError, ErrorKind

logger = logging.getLogger(__name__)

_DECODE_OPTIONS = {
    "require": ["iat", "exp"],
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
}


@dataclass(frozen=True)
class SessionClaims:
    """Typed view of a session credential payload."""

    identity: str
    public_key: str
    issued_at: int
    expires_at: int
    token_type: str = TOKEN_TYPE

    def to_payload(self) -> Dict[str, Any]:
        return {
            "did": self.identity,
            "publicKey": self.public_key,
            "type": self.token_type,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }

    @staticmethod
    def from_payload(payload: Mapping[str, Any]) -> "SessionClaims":
        try:
            return SessionClaims(
                identity=str(payload["did"]),
                public_key=str(payload["publicKey"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                token_type=str(payload["type"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, f"Credential payload incomplete: {exc}") from exc


def _check_secret(secret: str) -> None:
    if not secret:
        raise ValueError("Credential secret must not be empty")


def mint(
    claims: Mapping[str, Any],
    secret: str,
    ttl: int,
    *,
    now: Optional[float] = None,
) -> str:
    """Sign ``claims`` with ``iat``/``exp`` set from ``now`` and ``ttl`` seconds."""

    _check_secret(secret)
    if ttl <= 0:
        raise ValueError("ttl must be positive")
    issued_at = int(time.time() if now is None else now)
    payload = dict(claims)
    payload["iat"] = issued_at
    payload["exp"] = issued_at + int(ttl)
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify(token: str, secret: str, *, now: Optional[float] = None) -> Dict[str, Any]:
    """Return the claims of a validly signed, unexpired token.

    Only ``HS256`` is accepted; the algorithm named in the token header is
    never trusted on its own.
    """

    _check_secret(secret)
    try:
        payload = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM], options=_DECODE_OPTIONS)
    except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as exc:
        raise DIDAuthError(ErrorKind.BAD_SIGNATURE, f"Credential signature rejected: {exc}") from exc
    except jwt.InvalidTokenError as exc:
        raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, f"Credential could not be decoded: {exc}") from exc

    expires_at = payload["exp"]
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, "Credential expiry is not numeric")
    current = time.time() if now is None else now
    if current >= expires_at:
        raise DIDAuthError(ErrorKind.EXPIRED, f"Credential expired at {expires_at}")
    return payload


class CredentialCodec:
    """Mint and verify session credentials with a fixed secret and lifetime."""

    def __init__(self, secret: str, ttl: int, clock: Callable[[], float] = time.time) -> None:
        _check_secret(secret)
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._secret = secret
        self.ttl = ttl
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def mint(self, identity: str, public_key: str, *, issued_at: Optional[int] = None) -> str:
        claims = {"did": identity, "publicKey": public_key, "type": TOKEN_TYPE}
        return mint(claims, self._secret, self.ttl, now=self.now() if issued_at is None else issued_at)

    def verify(self, token: str) -> SessionClaims:
        payload = verify(token, self._secret, now=self._clock())
        return SessionClaims.from_payload(payload)


__all__ = ["CredentialCodec", "SessionClaims", "mint", "verify"]
