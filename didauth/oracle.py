"""Read-only clients for the ledger that registers DIDs and their public keys."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import httpx

from .crypto import keccak256
from .errors import DIDAuthError, ErrorKind

logger = logging.getLogger(__name__)

STATUS_FUNCTION = "getDidStatus(string)"
PUBLIC_KEY_FUNCTION = "getMainPubKeyHex(string)"
DOCUMENT_FUNCTION = "getDocument(string)"

# JSON-RPC error code used by execution clients for reverted calls.
_REVERT_CODE = 3


class IdentityOracle(Protocol):
    """What the authentication service needs from the ledger."""

    def exists(self, identity: str) -> bool:
        ...

    def public_key(self, identity: str) -> str:
        ...

    def document(self, identity: str) -> DIDDocument:
        ...


def function_selector(signature: str) -> bytes:
    return keccak256(signature.encode("ascii"))[:4]


def encode_string_call(signature: str, value: str) -> str:
    """ABI-encode a call to a function taking a single ``string`` argument."""

    data = value.encode("utf-8")
    padded = data + b"\x00" * (-len(data) % 32)
    encoded = (
        function_selector(signature)
        + (32).to_bytes(32, "big")
        + len(data).to_bytes(32, "big")
        + padded
    )
    return "0x" + encoded.hex()


def _unavailable(detail: str) -> DIDAuthError:
    return DIDAuthError(ErrorKind.ORACLE_UNAVAILABLE, detail)


def decode_bool(raw: bytes) -> bool:
    if len(raw) != 32:
        raise _unavailable(f"Expected a 32-byte bool result, got {len(raw)} bytes")
    return int.from_bytes(raw, "big") != 0


def _word(raw: bytes, start: int) -> int:
    if start + 32 > len(raw):
        raise _unavailable("Offset points outside the result")
    return int.from_bytes(raw[start : start + 32], "big")


def _string_at(raw: bytes, start: int) -> str:
    length = _word(raw, start)
    data = raw[start + 32 : start + 32 + length]
    if len(data) != length:
        raise _unavailable("String result is truncated")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise _unavailable("String result is not valid UTF-8") from exc


def decode_string(raw: bytes) -> str:
    if len(raw) < 64:
        raise _unavailable(f"String result too short: {len(raw)} bytes")
    return _string_at(raw, _word(raw, 0))


@dataclass(frozen=True)
class DIDDocument:
    """The DID document the ledger keeps for a registered identity."""

    did: str
    version: int
    created_at: str
    updated_at: str
    main_public_key: str
    reco_public_key: str
    service_endpoint: str
    did_proof: str
    owner: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "did": self.did,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "mainPublicKey": self.main_public_key,
            "recoPublicKey": self.reco_public_key,
            "serviceEndpoint": self.service_endpoint,
            "didProof": self.did_proof,
            "owner": self.owner,
        }


def decode_document(raw: bytes) -> DIDDocument:
    """Decode the ``DIDDocument`` tuple returned by ``getDocument(string)``.

    The result holds one offset to the tuple; inside it, string members are
    offsets relative to the tuple start, ``version`` is a uint256 and
    ``owner`` a left-padded address.
    """

    base = _word(raw, 0)
    head = [_word(raw, base + 32 * index) for index in range(9)]

    def text(index: int) -> str:
        return _string_at(raw, base + head[index])

    return DIDDocument(
        did=text(0),
        version=head[1],
        created_at=text(2),
        updated_at=text(3),
        main_public_key=text(4),
        reco_public_key=text(5),
        service_endpoint=text(6),
        did_proof=text(7),
        owner="0x" + head[8].to_bytes(32, "big")[-20:].hex(),
    )


def _is_revert(error: Dict[str, Any]) -> bool:
    if error.get("code") == _REVERT_CODE:
        return True
    data = error.get("data")
    return isinstance(data, str) and data.startswith("0x")


class LedgerOracle:
    """Query the DID manager contract through ``eth_call``."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._request_id = 0

    def close(self) -> None:
        self._client.close()

    def exists(self, identity: str) -> bool:
        raw = self._call(STATUS_FUNCTION, identity)
        if raw is None:
            return False
        return decode_bool(raw)

    def public_key(self, identity: str) -> str:
        raw = self._call(PUBLIC_KEY_FUNCTION, identity)
        if raw is None:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Key lookup reverted for {identity}")
        key = decode_string(raw)
        if not key:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"No public key registered for {identity}")
        return key

    def document(self, identity: str) -> DIDDocument:
        raw = self._call(DOCUMENT_FUNCTION, identity)
        if raw is None:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Document lookup reverted for {identity}")
        document = decode_document(raw)
        if not document.did:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"No document registered for {identity}")
        return document

    def _call(self, signature: str, identity: str) -> Optional[bytes]:
        """Run ``eth_call``; ``None`` means the contract reverted."""

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_call",
            "params": [
                {"to": self.contract_address, "data": encode_string_call(signature, identity)},
                "latest",
            ],
        }
        try:
            response = self._client.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            logger.error("Ledger call %s for %s failed: %s", signature, identity, exc)
            raise _unavailable(f"{signature} transport failure: {exc}") from exc
        except ValueError as exc:
            logger.error("Ledger call %s returned invalid JSON", signature)
            raise _unavailable(f"{signature} returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise _unavailable(f"{signature} returned a non-object response")
        error = body.get("error")
        if error:
            if isinstance(error, dict) and _is_revert(error):
                logger.info("Ledger call %s reverted for %s", signature, identity)
                return None
            logger.error("Ledger call %s for %s returned error: %s", signature, identity, error)
            raise _unavailable(f"{signature} JSON-RPC error: {error}")

        result = body.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise _unavailable(f"{signature} returned no result")
        try:
            return bytes.fromhex(result[2:])
        except ValueError as exc:
            raise _unavailable(f"{signature} result is not hex") from exc


class CachingOracle:
    """Memoise oracle answers for ``ttl`` seconds. Failures are never cached."""

    def __init__(
        self,
        inner: IdentityOracle,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.inner = inner
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def exists(self, identity: str) -> bool:
        return self._cached("exists", identity, self.inner.exists)

    def public_key(self, identity: str) -> str:
        return self._cached("public_key", identity, self.inner.public_key)

    def document(self, identity: str) -> DIDDocument:
        return self._cached("document", identity, self.inner.document)

    def invalidate(self, identity: Optional[str] = None) -> None:
        with self._lock:
            if identity is None:
                self._entries.clear()
                return
            for key in [key for key in self._entries if key[1] == identity]:
                del self._entries[key]

    def _cached(self, name: str, identity: str, fetch: Callable[[str], Any]) -> Any:
        key = (name, identity)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry[1] > now:
            return entry[0]
        value = fetch(identity)
        with self._lock:
            self._entries[key] = (value, now + self.ttl)
        return value


__all__ = [
    "CachingOracle",
    "DIDDocument",
    "IdentityOracle",
    "LedgerOracle",
    "decode_bool",
    "decode_document",
    "decode_string",
    "encode_string_call",
    "function_selector",
]
