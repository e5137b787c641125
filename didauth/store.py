"""JSON-backed identity registry, usable as a development oracle."""

from __future__ import annotations

import json
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .constants import DEFAULT_NAMESPACE, did_pattern
from .crypto import derive_verification_address, normalize_public_key
from .errors import DIDAuthError, ErrorKind
from .oracle import DIDDocument


def generate_did(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"did:{namespace}:{uuid.uuid4()}"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class IdentityRecord:
    """Registered identity and its main public key."""

    did: str
    public_key: str
    active: bool = True
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "did": self.did,
            "public_key": self.public_key,
            "active": self.active,
        }
        if self.created_at is not None:
            payload["created_at"] = self.created_at
        return payload

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "IdentityRecord":
        return IdentityRecord(
            did=str(data["did"]),
            public_key=str(data["public_key"]),
            active=bool(data.get("active", True)),
            created_at=data.get("created_at"),  # type: ignore[arg-type]
        )


class IdentityRegistry:
    """Persist identities in a JSON file and answer oracle queries from it."""

    def __init__(self, path: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.path = path
        self.namespace = namespace
        self._lock = threading.Lock()
        self._ensure_file()

    def _ensure_file(self) -> None:
        if not os.path.exists(self.path):
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump({"identities": []}, handle, indent=2)

    def _load(self) -> Dict[str, list]:
        with open(self.path, "r", encoding="utf-8") as handle:
            return json.load(handle)

    def _save(self, payload: Dict[str, list]) -> None:
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)

    def get(self, identity: str) -> Optional[IdentityRecord]:
        wanted = identity.lower()
        for raw in self._load().get("identities", []):
            if str(raw.get("did", "")).lower() == wanted:
                return IdentityRecord.from_dict(raw)
        return None

    def all(self) -> List[IdentityRecord]:
        return [IdentityRecord.from_dict(raw) for raw in self._load().get("identities", [])]

    def register(self, public_key: str, identity: Optional[str] = None) -> IdentityRecord:
        normalize_public_key(public_key)
        did = identity or generate_did(self.namespace)
        if not did_pattern(self.namespace).fullmatch(did):
            raise DIDAuthError(ErrorKind.INVALID_INPUT, f"Malformed DID: {did}")

        with self._lock:
            payload = self._load()
            identities = payload.setdefault("identities", [])
            if any(str(raw.get("did", "")).lower() == did.lower() for raw in identities):
                raise ValueError(f"Identity '{did}' already registered")
            record = IdentityRecord(did=did, public_key=public_key, created_at=_utcnow())
            identities.append(record.to_dict())
            self._save(payload)
        return record

    def revoke(self, identity: str) -> IdentityRecord:
        with self._lock:
            payload = self._load()
            for raw in payload.get("identities", []):
                if str(raw.get("did", "")).lower() == identity.lower():
                    raw["active"] = False
                    self._save(payload)
                    return IdentityRecord.from_dict(raw)
        raise DIDAuthError(ErrorKind.NOT_FOUND, f"Identity '{identity}' is not registered")

    def exists(self, identity: str) -> bool:
        record = self.get(identity)
        return record is not None and record.active

    def public_key(self, identity: str) -> str:
        record = self.get(identity)
        if record is None or not record.active:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Identity '{identity}' is not registered")
        return record.public_key

    def document(self, identity: str) -> DIDDocument:
        """Present a registry entry in the shape of the on-ledger DID document."""

        record = self.get(identity)
        if record is None or not record.active:
            raise DIDAuthError(ErrorKind.NOT_FOUND, f"Identity '{identity}' is not registered")
        created_at = record.created_at or ""
        return DIDDocument(
            did=record.did,
            version=1,
            created_at=created_at,
            updated_at=created_at,
            main_public_key=record.public_key,
            reco_public_key="",
            service_endpoint="",
            did_proof="",
            owner=derive_verification_address(record.public_key),
        )


__all__ = ["IdentityRecord", "IdentityRegistry", "generate_did"]
