"""Passwordless DID challenge-response authentication."""

from .auth import AuthenticationService, IssuedCredential, LoginAttempt, LoginState
from .challenge import Challenge, ChallengeTracker, generate_challenge
from .config import Settings, parse_duration
from .crypto import (
    KeyEncoding,
    NormalizedPublicKey,
    derive_verification_address,
    normalize_public_key,
    public_key_from_private,
    sign_message,
    verify_signature,
)
from .errors import ConfigError, DIDAuthError, ErrorKind
from .oracle import CachingOracle, DIDDocument, IdentityOracle, LedgerOracle
from .store import IdentityRecord, IdentityRegistry, generate_did
from .tokens import CredentialCodec, SessionClaims

__all__ = [
    "AuthenticationService",
    "IssuedCredential",
    "LoginAttempt",
    "LoginState",
    "Challenge",
    "ChallengeTracker",
    "generate_challenge",
    "Settings",
    "parse_duration",
    "KeyEncoding",
    "NormalizedPublicKey",
    "derive_verification_address",
    "normalize_public_key",
    "public_key_from_private",
    "sign_message",
    "verify_signature",
    "ConfigError",
    "DIDAuthError",
    "ErrorKind",
    "CachingOracle",
    "DIDDocument",
    "IdentityOracle",
    "LedgerOracle",
    "IdentityRecord",
    "IdentityRegistry",
    "generate_did",
    "CredentialCodec",
    "SessionClaims",
]
