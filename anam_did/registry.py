"""
Registry collaborators
======================

The Verification Pipeline consumes two external sources of truth through
narrow async interfaces:

- ``DIDResolver.get_document(did)``: DID Document or None
- ``CredentialStatusRegistry.get_status(vc_id)``: CredentialStatus

Production deployments back these with the chain / relational store. The
in-memory implementations here serve single-process deployments and tests.
"""

import copy
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from .clock import Clock, to_iso, utc_now
from .did_manager import extract_address_from_did_document, hash_did_document, normalize_address, parse_did
from .errors import InactiveError, NotFoundError, RevokedError, ValidationError

logger = logging.getLogger(__name__)


class CredentialStatus(Enum):
    """On-chain status of a credential"""
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    SUSPENDED = "SUSPENDED"
    UNKNOWN = "UNKNOWN"


class DIDResolver(Protocol):
    async def get_document(self, did: str) -> Optional[Dict[str, Any]]: ...


class CredentialStatusRegistry(Protocol):
    async def get_status(self, vc_id: str) -> CredentialStatus: ...


def ensure_active(status: CredentialStatus, vc_id: str) -> None:
    """
    Raise unless ``status`` is ACTIVE

    Raises:
        RevokedError: status is REVOKED
        InactiveError: status is SUSPENDED or UNKNOWN
    """
    if status is CredentialStatus.ACTIVE:
        return
    if status is CredentialStatus.REVOKED:
        raise RevokedError(f"Credential {vc_id} has been revoked")
    raise InactiveError(f"Credential {vc_id} is not active ({status.value})")


# ==================== DID REGISTRY ====================

class InMemoryDIDRegistry:
    """
    DID Documents keyed by DID, with an address index and the document hash
    that would be anchored on-chain
    """

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._hashes: Dict[str, str] = {}
        self._address_to_did: Dict[str, str] = {}  # lower-case address -> DID
        self._deactivated: set = set()
        self._lock = threading.Lock()

    def register(self, doc: Dict[str, Any]) -> str:
        """
        Store a DID Document

        Returns:
            The document hash

        Raises:
            ValidationError: if the document has no id or no address binding,
                or the address does not match the DID
        """
        did = doc.get("id") if isinstance(doc, dict) else None
        if not isinstance(did, str):
            raise ValidationError("DID Document must carry an id")
        address = extract_address_from_did_document(doc)
        if address is None or parse_did(did).address != address:
            raise ValidationError(f"DID Document {did} has no matching address binding")

        doc_hash = hash_did_document(doc)
        with self._lock:
            self._documents[did] = copy.deepcopy(doc)
            self._hashes[did] = doc_hash
            self._address_to_did[address.lower()] = did
            self._deactivated.discard(did)

        logger.info("Registered DID %s (hash: %s)", did, doc_hash)
        return doc_hash

    def resolve(self, did: str) -> Optional[Dict[str, Any]]:
        """DID Document if registered and not deactivated"""
        with self._lock:
            if did in self._deactivated:
                return None
            doc = self._documents.get(did)
        return copy.deepcopy(doc) if doc is not None else None

    async def get_document(self, did: str) -> Optional[Dict[str, Any]]:
        return self.resolve(did)

    def get_did_by_address(self, address: str) -> Optional[str]:
        try:
            key = normalize_address(address).lower()
        except ValidationError:
            return None
        return self._address_to_did.get(key)

    def resolve_by_address(self, address: str) -> Optional[Dict[str, Any]]:
        did = self.get_did_by_address(address)
        return self.resolve(did) if did else None

    def get_hash(self, did: str) -> Optional[str]:
        return self._hashes.get(did)

    def deactivate(self, did: str, clock: Clock = utc_now) -> bool:
        """Deactivate a DID; it no longer resolves"""
        with self._lock:
            doc = self._documents.get(did)
            if doc is None:
                return False
            doc["updated"] = to_iso(clock())
            self._deactivated.add(did)
        logger.info("Deactivated DID %s", did)
        return True

    def list_dids(self) -> List[str]:
        return list(self._documents.keys())

    def get_statistics(self) -> Dict[str, int]:
        total = len(self._documents)
        return {
            "total": total,
            "active": total - len(self._deactivated),
            "deactivated": len(self._deactivated),
            "linked_addresses": len(self._address_to_did),
        }


# ==================== CREDENTIAL STATUS ====================

class InMemoryStatusRegistry:
    """Credential status by VC id; unregistered ids are UNKNOWN"""

    def __init__(self):
        self._statuses: Dict[str, CredentialStatus] = {}
        self._lock = threading.Lock()

    def register(self, vc_id: str) -> None:
        """
        Register a newly issued credential as ACTIVE

        Raises:
            ValidationError: if ``vc_id`` is already registered
        """
        with self._lock:
            if vc_id in self._statuses:
                raise ValidationError(f"Credential {vc_id} is already registered")
            self._statuses[vc_id] = CredentialStatus.ACTIVE
        logger.info("Registered credential %s", vc_id)

    def revoke(self, vc_id: str) -> None:
        self._set(vc_id, CredentialStatus.REVOKED)

    def suspend(self, vc_id: str) -> None:
        self._set(vc_id, CredentialStatus.SUSPENDED)

    def reactivate(self, vc_id: str) -> None:
        """Lift a suspension; revocation is final"""
        with self._lock:
            current = self._statuses.get(vc_id)
            if current is None:
                raise NotFoundError(f"Credential {vc_id} not found")
            if current is CredentialStatus.REVOKED:
                raise RevokedError(f"Credential {vc_id} has been revoked")
            self._statuses[vc_id] = CredentialStatus.ACTIVE
        logger.info("Credential %s reactivated", vc_id)

    def _set(self, vc_id: str, status: CredentialStatus) -> None:
        with self._lock:
            if vc_id not in self._statuses:
                raise NotFoundError(f"Credential {vc_id} not found")
            self._statuses[vc_id] = status
        logger.info("Credential %s status: %s", vc_id, status.value)

    def status_of(self, vc_id: str) -> CredentialStatus:
        return self._statuses.get(vc_id, CredentialStatus.UNKNOWN)

    async def get_status(self, vc_id: str) -> CredentialStatus:
        return self.status_of(vc_id)
