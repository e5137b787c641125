"""secp256k1 helpers for verifying personal-message signatures against DID keys."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from coincurve import PrivateKey, PublicKey
from Crypto.Hash import keccak

from .constants import PERSONAL_MESSAGE_PREFIX, SIGNATURE_BYTES, SIGNATURE_PATTERN
from .errors import DIDAuthError, ErrorKind

logger = logging.getLogger(__name__)

RawKey = Union[str, bytes]

_HEX = re.compile(r"^[0-9a-fA-F]*$")


class KeyEncoding(str, Enum):
    """Admissible public key encodings."""

    COMPRESSED = "compressed"
    UNCOMPRESSED = "uncompressed"
    RAW_NO_PREFIX = "raw_no_prefix"


@dataclass(frozen=True)
class NormalizedPublicKey:
    """A public key decoded from one of the admissible encodings.

    ``sec1`` always carries the format prefix byte (33 or 65 bytes). For
    ``RAW_NO_PREFIX`` keys only the X coordinate was supplied and the even-y
    prefix ``0x02`` was assumed: nothing proves the holder's point has even
    parity, so an odd-parity key supplied this way verifies against the
    wrong point and every signature from its holder is rejected.
    """

    encoding: KeyEncoding
    sec1: bytes

    @property
    def parity_assumed(self) -> bool:
        return self.encoding is KeyEncoding.RAW_NO_PREFIX

    def uncompressed(self) -> bytes:
        return PublicKey(self.sec1).format(compressed=False)

    def hex(self) -> str:
        return "0x" + self.sec1.hex()


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _strip_hex(value: str) -> str:
    value = value.strip()
    if value[:2].lower() == "0x":
        return value[2:]
    return value


def _invalid_key(detail: str) -> DIDAuthError:
    return DIDAuthError(ErrorKind.INVALID_PUBLIC_KEY_FORMAT, detail)


def normalize_public_key(raw: RawKey) -> NormalizedPublicKey:
    """Decode a hex (or raw bytes) public key into its tagged encoding."""

    if isinstance(raw, (bytes, bytearray)):
        cleaned = bytes(raw).hex()
    elif isinstance(raw, str):
        cleaned = _strip_hex(raw)
    else:
        raise _invalid_key(f"Unsupported public key type: {type(raw).__name__}")

    if not _HEX.fullmatch(cleaned):
        raise _invalid_key("Public key is not valid hex")
    if len(cleaned) not in (64, 66, 128, 130):
        raise _invalid_key(f"Unsupported public key length: {len(cleaned)} hex characters")
    data = bytes.fromhex(cleaned)

    if len(cleaned) == 64:
        encoding, sec1 = KeyEncoding.RAW_NO_PREFIX, b"\x02" + data
    elif len(cleaned) == 66:
        if data[0] not in (2, 3):
            raise _invalid_key(f"Compressed key prefix 0x{data[0]:02x} is not 0x02/0x03")
        encoding, sec1 = KeyEncoding.COMPRESSED, data
    elif len(cleaned) == 128:
        encoding, sec1 = KeyEncoding.UNCOMPRESSED, b"\x04" + data
    elif len(cleaned) == 130 and data[0] == 4:
        encoding, sec1 = KeyEncoding.UNCOMPRESSED, data
    else:
        raise _invalid_key(f"Unsupported public key length: {len(cleaned)} hex characters")

    try:
        PublicKey(sec1)
    except ValueError as exc:
        raise _invalid_key("Public key is not a point on secp256k1") from exc

    if encoding is KeyEncoding.RAW_NO_PREFIX:
        logger.debug("Assuming even y parity for 32-byte public key %s...", cleaned[:16])
    return NormalizedPublicKey(encoding=encoding, sec1=sec1)


def _address_from_uncompressed(point: bytes) -> str:
    return "0x" + keccak256(point[1:])[-20:].hex()


def derive_verification_address(public_key: RawKey | NormalizedPublicKey) -> str:
    """Keccak-256 over X||Y, low 20 bytes, as a lowercase 0x-prefixed address."""

    if not isinstance(public_key, NormalizedPublicKey):
        public_key = normalize_public_key(public_key)
    return _address_from_uncompressed(public_key.uncompressed())


def validate_signature_format(signature: str) -> bool:
    return isinstance(signature, str) and SIGNATURE_PATTERN.fullmatch(signature) is not None


def decode_signature(signature: str) -> bytes:
    if not validate_signature_format(signature):
        raise DIDAuthError(
            ErrorKind.INVALID_SIGNATURE_FORMAT,
            "Signature must be 130 hex characters (r, s, v)",
        )
    return bytes.fromhex(_strip_hex(signature))


def personal_message_hash(message: str | bytes) -> bytes:
    """Hash ``message`` with the length-prefixed personal-message scheme."""

    payload = message.encode("utf-8") if isinstance(message, str) else message
    return keccak256(PERSONAL_MESSAGE_PREFIX + str(len(payload)).encode("ascii") + payload)


def recover_address(message: str | bytes, signature: str) -> str | None:
    """Recover the signer address, or ``None`` when the signature cannot be decoded."""

    raw = decode_signature(signature)
    v = raw[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        logger.debug("Signature recovery id %d is out of range", raw[64])
        return None

    try:
        recovered = PublicKey.from_signature_and_message(
            raw[:64] + bytes([v]), personal_message_hash(message), hasher=None
        )
    except ValueError as exc:
        logger.debug("Signature recovery failed: %s", exc)
        return None
    return _address_from_uncompressed(recovered.format(compressed=False))


def verify_signature(
    message: str | bytes,
    signature: str,
    expected_public_key: RawKey | NormalizedPublicKey,
) -> bool:
    """Check that ``signature`` over ``message`` was made by ``expected_public_key``.

    Malformed key or signature *formats* raise ``DIDAuthError``; a well-formed
    signature that does not recover to the expected address returns ``False``.
    """

    expected = derive_verification_address(expected_public_key)
    recovered = recover_address(message, signature)
    if recovered is None:
        return False
    matches = recovered.lower() == expected.lower()
    logger.debug("Signature recovered %s, expected %s", recovered, expected)
    return matches


def generate_private_key() -> bytes:
    return PrivateKey().secret


def _private_key(private_key: RawKey) -> PrivateKey:
    if isinstance(private_key, str):
        private_key = bytes.fromhex(_strip_hex(private_key))
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")
    return PrivateKey(private_key)


def public_key_from_private(
    private_key: RawKey,
    encoding: KeyEncoding = KeyEncoding.UNCOMPRESSED,
) -> str:
    """Hex public key in the requested encoding, without ``0x`` prefix.

    ``UNCOMPRESSED`` yields the 128-character X||Y form registered by wallets;
    ``RAW_NO_PREFIX`` drops the parity byte of the compressed form.
    """

    public = _private_key(private_key).public_key
    if encoding is KeyEncoding.UNCOMPRESSED:
        return public.format(compressed=False)[1:].hex()
    if encoding is KeyEncoding.COMPRESSED:
        return public.format(compressed=True).hex()
    return public.format(compressed=True)[1:].hex()


def sign_message(message: str | bytes, private_key: RawKey) -> str:
    """Produce a ``0x``-prefixed personal-message signature with ``v`` in {27, 28}."""

    signature = _private_key(private_key).sign_recoverable(
        personal_message_hash(message), hasher=None
    )
    if len(signature) != SIGNATURE_BYTES:
        raise ValueError("Unexpected recoverable signature length")
    return "0x" + (signature[:64] + bytes([signature[64] + 27])).hex()


__all__ = [
    "KeyEncoding",
    "NormalizedPublicKey",
    "decode_signature",
    "derive_verification_address",
    "generate_private_key",
    "keccak256",
    "normalize_public_key",
    "personal_message_hash",
    "public_key_from_private",
    "recover_address",
    "sign_message",
    "validate_signature_format",
    "verify_signature",
]
