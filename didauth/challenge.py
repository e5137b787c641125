"""Login challenge generation and optional server-side challenge tracking."""

from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .constants import (
    CHALLENGE_HEADER,
    CHALLENGE_NONCE_LABEL,
    CHALLENGE_SUBJECT_LABEL,
    CHALLENGE_TIMESTAMP_LABEL,
    NONCE_LENGTH,
)
from .errors import DIDAuthError, ErrorKind

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _random_nonce(length: int = NONCE_LENGTH) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


@dataclass(frozen=True)
class Challenge:
    """Fields bound into a login challenge message."""

    identity: str
    timestamp_ms: int
    nonce: str

    def render(self) -> str:
        return "\n".join(
            [
                CHALLENGE_HEADER,
                f"{CHALLENGE_SUBJECT_LABEL}: {self.identity}",
                f"{CHALLENGE_TIMESTAMP_LABEL}: {self.timestamp_ms}",
                f"{CHALLENGE_NONCE_LABEL}: {self.nonce}",
            ]
        )

    @staticmethod
    def parse(text: str) -> "Challenge":
        lines = text.split("\n")
        if len(lines) != 4 or lines[0] != CHALLENGE_HEADER:
            raise DIDAuthError(ErrorKind.CHALLENGE_REJECTED, "Challenge does not follow the login template")
        fields: Dict[str, str] = {}
        for line in lines[1:]:
            label, sep, value = line.partition(": ")
            if not sep:
                raise DIDAuthError(ErrorKind.CHALLENGE_REJECTED, f"Malformed challenge line: {line!r}")
            fields[label] = value
        try:
            return Challenge(
                identity=fields[CHALLENGE_SUBJECT_LABEL],
                timestamp_ms=int(fields[CHALLENGE_TIMESTAMP_LABEL]),
                nonce=fields[CHALLENGE_NONCE_LABEL],
            )
        except (KeyError, ValueError) as exc:
            raise DIDAuthError(ErrorKind.CHALLENGE_REJECTED, "Challenge fields are incomplete") from exc


def generate_challenge(identity: str, *, now_ms: Optional[int] = None) -> str:
    """Build a fresh challenge message for ``identity``."""

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    message = Challenge(identity=identity, timestamp_ms=now_ms, nonce=_random_nonce()).render()
    logger.debug("Generated challenge for %s at %d", identity, now_ms)
    return message


class ChallengeTracker:
    """Remember issued challenges so each can be used once within ``max_age``."""

    def __init__(self, max_age: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        if max_age <= 0:
            raise ValueError("max_age must be positive")
        self.max_age = max_age
        self._clock = clock
        self._issued: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._issued)

    def issue(self, identity: str) -> str:
        now = self._clock()
        challenge = generate_challenge(identity, now_ms=int(now * 1000))
        with self._lock:
            self._prune(now)
            self._issued[challenge] = (identity, now)
        return challenge

    def check(self, identity: str, challenge: str) -> None:
        """Reject challenges that were never issued, have aged out, or name another identity."""

        with self._lock:
            entry = self._issued.get(challenge)
        self._validate(entry, identity)

    def consume(self, identity: str, challenge: str) -> None:
        with self._lock:
            entry = self._issued.pop(challenge, None)
        self._validate(entry, identity)

    def _validate(self, entry: Optional[Tuple[str, float]], identity: str) -> None:
        if entry is None:
            raise DIDAuthError(ErrorKind.CHALLENGE_REJECTED, "Challenge was not issued or was already used")
        issued_to, issued_at = entry
        if issued_to != identity:
            raise DIDAuthError(
                ErrorKind.CHALLENGE_REJECTED,
                f"Challenge was issued to {issued_to}, presented by {identity}",
            )
        if self._clock() - issued_at > self.max_age:
            raise DIDAuthError(ErrorKind.CHALLENGE_REJECTED, "Challenge has expired")

    def _prune(self, now: float) -> None:
        stale = [key for key, (_, issued_at) in self._issued.items() if now - issued_at > self.max_age]
        for key in stale:
            del self._issued[key]


__all__ = ["Challenge", "ChallengeTracker", "generate_challenge"]
