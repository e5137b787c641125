"""DID challenge-response login and session credential lifecycle."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .challenge import ChallengeTracker, generate_challenge
from .config import Settings, format_duration, parse_duration
from .constants import DEFAULT_NAMESPACE, MIN_CHALLENGE_LENGTH, TOKEN_TYPE, did_pattern
from .crypto import normalize_public_key, validate_signature_format, verify_signature
from .errors import DIDAuthError, ErrorKind
from .oracle import CachingOracle, DIDDocument, IdentityOracle, LedgerOracle
from .store import IdentityRegistry
from .tokens import CredentialCodec, SessionClaims

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    IDLE = "idle"
    INPUT_VALIDATED = "input_validated"
    IDENTITY_CONFIRMED = "identity_confirmed"
    SIGNATURE_VERIFIED = "signature_verified"
    SESSION_ISSUED = "session_issued"
    FAILED = "failed"


@dataclass
class LoginAttempt:
    """Progress of a single login call through the protocol states."""

    identity: str
    state: LoginState = LoginState.IDLE
    history: List[LoginState] = field(default_factory=list)
    failure: Optional[ErrorKind] = None

    def advance(self, state: LoginState) -> None:
        self.history.append(self.state)
        self.state = state

    def fail(self, error: DIDAuthError) -> None:
        error.failed_at = self.state.value
        self.failure = error.kind
        self.advance(LoginState.FAILED)


@dataclass
class IssuedCredential:
    """A freshly minted session credential."""

    token: str
    identity: str
    public_key: str
    issued_at: int
    expires_at: int
    expires_in: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "identity": self.identity,
            "expiresIn": self.expires_in,
        }


class AuthenticationService:
    """Orchestrate challenge issuance, login, credential verification and renewal.

    The service holds no per-login state. The optional ``challenge_tracker``
    adds single-use, time-bounded challenges on top of the base protocol.
    """

    def __init__(
        self,
        oracle: IdentityOracle,
        codec: CredentialCodec,
        *,
        expires_in: Optional[str] = None,
        namespace: str = DEFAULT_NAMESPACE,
        challenge_tracker: Optional[ChallengeTracker] = None,
    ) -> None:
        if expires_in is None:
            expires_in = format_duration(codec.ttl)
        elif parse_duration(expires_in) != codec.ttl:
            raise ValueError(f"expires_in {expires_in!r} does not match the codec lifetime of {codec.ttl}s")
        self.oracle = oracle
        self.codec = codec
        self.expires_in = expires_in
        self.namespace = namespace
        self.challenge_tracker = challenge_tracker
        self._did_pattern = did_pattern(namespace)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        oracle: Optional[IdentityOracle] = None,
        clock: Callable[[], float] = time.time,
    ) -> "AuthenticationService":
        if oracle is None:
            oracle = build_oracle(settings)
        tracker = None
        if settings.challenge_tracking:
            tracker = ChallengeTracker(max_age=settings.challenge_max_age, clock=clock)
        return cls(
            oracle,
            CredentialCodec(settings.jwt_secret, settings.token_ttl_seconds, clock=clock),
            expires_in=settings.token_ttl,
            namespace=settings.did_namespace,
            challenge_tracker=tracker,
        )

    # -- input validation -------------------------------------------------

    def is_valid_identity(self, identity: object) -> bool:
        return isinstance(identity, str) and self._did_pattern.fullmatch(identity) is not None

    def _require_identity(self, identity: object) -> str:
        if not self.is_valid_identity(identity):
            raise DIDAuthError(ErrorKind.INVALID_INPUT, f"Malformed DID: {identity!r}")
        return identity  # type: ignore[return-value]

    def _validate_login_inputs(self, identity: object, signature: object, challenge: object) -> None:
        if not identity or not signature or not challenge:
            raise DIDAuthError(ErrorKind.INVALID_INPUT, "identity, signature and challenge are required")
        self._require_identity(identity)
        if not validate_signature_format(signature):  # type: ignore[arg-type]
            raise DIDAuthError(ErrorKind.INVALID_INPUT, "Signature must be 130 hex characters")
        if not isinstance(challenge, str) or len(challenge) < MIN_CHALLENGE_LENGTH:
            raise DIDAuthError(
                ErrorKind.INVALID_INPUT,
                f"Challenge must be a string of at least {MIN_CHALLENGE_LENGTH} characters",
            )

    # -- oracle access ----------------------------------------------------

    def _ask(self, query: Callable[[str], Any], identity: str) -> Any:
        try:
            return query(identity)
        except DIDAuthError:
            raise
        except Exception as exc:
            logger.exception("Identity oracle raised unexpectedly for %s", identity)
            raise DIDAuthError(ErrorKind.ORACLE_UNAVAILABLE, f"Oracle failure: {exc!r}") from exc

    def identity_exists(self, identity: str) -> bool:
        return bool(self._ask(self.oracle.exists, self._require_identity(identity)))

    def identity_public_key(self, identity: str) -> str:
        identity = self._require_identity(identity)
        if not self._ask(self.oracle.exists, identity):
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Identity {identity} is not registered")
        return self._ask(self.oracle.public_key, identity)

    def identity_document(self, identity: str) -> DIDDocument:
        identity = self._require_identity(identity)
        if not self._ask(self.oracle.exists, identity):
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Identity {identity} is not registered")
        return self._ask(self.oracle.document, identity)

    def check_identities(self, identities: Iterable[str]) -> List[Dict[str, Any]]:
        """Report existence for each DID; a failed lookup is reported, not treated as absent."""

        results: List[Dict[str, Any]] = []
        for identity in identities:
            try:
                results.append({"did": identity, "exists": self.identity_exists(identity), "error": None})
            except DIDAuthError as exc:
                logger.warning("Existence check for %s failed: %s", identity, exc.detail)
                results.append({"did": identity, "exists": None, "error": exc.kind.value})
        return results

    # -- protocol ---------------------------------------------------------

    def issue_challenge(self, identity: str) -> str:
        identity = self._require_identity(identity)
        if self.challenge_tracker is not None:
            return self.challenge_tracker.issue(identity)
        return generate_challenge(identity)

    def login(self, identity: str, signature: str, challenge: str) -> IssuedCredential:
        attempt = LoginAttempt(identity=str(identity))
        try:
            credential = self._run_login(attempt, identity, signature, challenge)
        except DIDAuthError as exc:
            attempt.fail(exc)
            logger.warning(
                "Login failed for %s at %s: %s (%s)",
                identity,
                exc.failed_at,
                exc.kind.value,
                exc.detail,
            )
            raise
        logger.info("Login succeeded for %s", identity)
        return credential

    def _run_login(
        self,
        attempt: LoginAttempt,
        identity: str,
        signature: str,
        challenge: str,
    ) -> IssuedCredential:
        self._validate_login_inputs(identity, signature, challenge)
        if self.challenge_tracker is not None:
            self.challenge_tracker.check(identity, challenge)
        attempt.advance(LoginState.INPUT_VALIDATED)
        logger.debug("Login for %s with signature %s...", identity, signature[:20])

        if not self._ask(self.oracle.exists, identity):
            raise DIDAuthError(ErrorKind.UNKNOWN_IDENTITY, f"{identity} is not registered on the ledger")

        try:
            registered_key = self._ask(self.oracle.public_key, identity)
        except DIDAuthError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                raise DIDAuthError(
                    ErrorKind.KEY_UNAVAILABLE,
                    f"{identity} exists but the ledger returned no key: {exc.detail}",
                ) from exc
            raise
        try:
            public_key = normalize_public_key(registered_key)
        except DIDAuthError as exc:
            raise DIDAuthError(
                ErrorKind.KEY_UNAVAILABLE,
                f"Ledger key for {identity} is unusable: {exc.detail}",
            ) from exc
        if public_key.parity_assumed:
            logger.warning("Key for %s has no parity byte; verifying against the even-y point", identity)
        attempt.advance(LoginState.IDENTITY_CONFIRMED)

        if not verify_signature(challenge, signature, public_key):
            raise DIDAuthError(
                ErrorKind.SIGNATURE_MISMATCH,
                f"Signature for {identity} does not recover to the registered key",
            )
        if self.challenge_tracker is not None:
            self.challenge_tracker.consume(identity, challenge)
        attempt.advance(LoginState.SIGNATURE_VERIFIED)

        credential = self._issue(identity, registered_key)
        attempt.advance(LoginState.SESSION_ISSUED)
        return credential

    def _issue(self, identity: str, public_key: str, issued_at: Optional[int] = None) -> IssuedCredential:
        if issued_at is None:
            issued_at = self.codec.now()
        token = self.codec.mint(identity, public_key, issued_at=issued_at)
        return IssuedCredential(
            token=token,
            identity=identity,
            public_key=public_key,
            issued_at=issued_at,
            expires_at=issued_at + self.codec.ttl,
            expires_in=self.expires_in,
        )

    def verify_credential(self, token: str) -> SessionClaims:
        if not isinstance(token, str) or not token:
            raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, "Token is missing")
        try:
            claims = self.codec.verify(token)
        except DIDAuthError as exc:
            if exc.kind is ErrorKind.BAD_SIGNATURE:
                raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, exc.detail) from exc
            raise
        if claims.token_type != TOKEN_TYPE:
            raise DIDAuthError(ErrorKind.MALFORMED_CREDENTIAL, f"Unexpected token type {claims.token_type!r}")
        if not self._ask(self.oracle.exists, claims.identity):
            raise DIDAuthError(ErrorKind.IDENTITY_REVOKED, f"{claims.identity} is no longer registered")
        return claims

    def refresh_credential(self, token: str) -> IssuedCredential:
        """Re-mint a still-valid credential with a new issuance window.

        The new window starts no earlier than one second after the old one so
        the renewed expiry is always later than the expiry being replaced.
        """

        claims = self.verify_credential(token)
        issued_at = max(self.codec.now(), claims.issued_at + 1)
        credential = self._issue(claims.identity, claims.public_key, issued_at=issued_at)
        logger.info("Refreshed credential for %s", claims.identity)
        return credential


def build_oracle(settings: Settings) -> IdentityOracle:
    oracle: IdentityOracle
    if settings.registry_path:
        oracle = IdentityRegistry(settings.registry_path, namespace=settings.did_namespace)
    else:
        oracle = LedgerOracle(
            settings.effective_rpc_url,
            settings.did_manager_address,
            timeout=settings.oracle_timeout,
        )
    if settings.oracle_cache_ttl > 0:
        oracle = CachingOracle(oracle, settings.oracle_cache_ttl)
    return oracle


__all__ = [
    "AuthenticationService",
    "IssuedCredential",
    "LoginAttempt",
    "LoginState",
    "build_oracle",
]
