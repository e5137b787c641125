"""Protocol constants shared by the DID authentication components."""

from __future__ import annotations

import re
from typing import Pattern

DEFAULT_NAMESPACE = "hebeu"

UUID4_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}"


def did_pattern(namespace: str = DEFAULT_NAMESPACE) -> Pattern[str]:
    return re.compile(rf"^did:{re.escape(namespace)}:{UUID4_PATTERN}$", re.IGNORECASE)


DID_PATTERN = did_pattern()

SIGNATURE_PATTERN = re.compile(r"^(0x)?[0-9a-f]{130}$", re.IGNORECASE)

SIGNATURE_BYTES = 65
MIN_CHALLENGE_LENGTH = 10

CHALLENGE_HEADER = "DID Login Challenge"
CHALLENGE_SUBJECT_LABEL = "DID"
CHALLENGE_TIMESTAMP_LABEL = "Timestamp"
CHALLENGE_NONCE_LABEL = "Nonce"
NONCE_LENGTH = 13

TOKEN_TYPE = "did_auth"
TOKEN_ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = "24h"

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"
