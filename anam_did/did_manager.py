"""
DID Manager - DID strings and DID Documents (W3C DID Core 1.0)

DID Format: did:<method>:<role>:<checksum-address>
Example:    did:anam:user:0x742d35Cc6634C0532925a3b844Bc9e7595f8c1F5

The address is carried verbatim in the DID, so the mapping is invertible by
string parsing and two distinct addresses can never share a DID.

Reference: https://www.w3.org/TR/did-core/
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from .canonical import keccak_hex
from .clock import Clock, to_iso, utc_now
from .config import settings
from .errors import ValidationError

logger = logging.getLogger(__name__)

DID_CONTEXT = "https://www.w3.org/ns/did/v1"
VERIFICATION_KEY_TYPE = "EcdsaSecp256k1VerificationKey2019"
CAIP10_NAMESPACE = "eip155"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_ROLE_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


class DIDRole(Enum):
    """Roles a DID can be issued for"""
    USER = "user"
    ADMIN = "admin"
    APPROVER = "approver"
    ISSUER = "issuer"


@dataclass
class ParsedDID:
    """Components of a DID string"""
    method: str
    role: str
    address: str


# ==================== ADDRESSES ====================

def normalize_address(address: str) -> str:
    """
    Validate a 20-byte hex address and return its EIP-55 checksum form

    Raises:
        ValidationError: if the address is malformed or has a bad checksum
    """
    if not isinstance(address, str) or not _ADDRESS_RE.match(address) or not is_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


# ==================== DID STRINGS ====================

def create_did(role, address: str, method: Optional[str] = None) -> str:
    """
    Create a DID from a role and an on-chain address

    Args:
        role: DIDRole or role string (lower-case, no colons)
        address: 20-byte hex address
        method: DID method (defaults to settings.DID_METHOD)

    Returns:
        DID string did:<method>:<role>:<checksum-address>

    Raises:
        ValidationError: on malformed role or address
    """
    role_value = role.value if isinstance(role, DIDRole) else role
    if not isinstance(role_value, str) or not _ROLE_RE.match(role_value):
        raise ValidationError(f"Invalid DID role: {role_value!r}")
    return f"did:{method or settings.DID_METHOD}:{role_value}:{normalize_address(address)}"


def create_did_with_address(role, address: str) -> Tuple[str, str]:
    """Create a DID and return it together with the checksum address"""
    did = create_did(role, address)
    return did, parse_did(did).address


def parse_did(did: str) -> ParsedDID:
    """
    Parse a DID string into its components

    Raises:
        ValidationError: if the string is not did:<method>:<role>:<address>
    """
    if not isinstance(did, str):
        raise ValidationError("DID must be a string")
    parts = did.split(":")
    if len(parts) != 4 or parts[0] != "did" or not parts[1] or not _ROLE_RE.match(parts[2]):
        raise ValidationError(f"Invalid DID format, expected did:<method>:<role>:<address>: {did!r}")
    return ParsedDID(method=parts[1], role=parts[2], address=normalize_address(parts[3]))


def is_valid_did(did: Any) -> bool:
    try:
        parse_did(did)
        return True
    except ValidationError:
        return False


def verify_did_address(did: str, address: str) -> bool:
    """Check that a DID was derived from ``address``"""
    try:
        return parse_did(did).address == normalize_address(address)
    except ValidationError:
        return False


# ==================== DID DOCUMENTS ====================

def create_did_document(
    did: str,
    address: str,
    public_key: str,
    controller: Optional[str] = None,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Create a DID Document binding ``did`` to ``address``

    The verification method carries a CAIP-10 ``blockchainAccountId``
    (eip155:<chainId>:<address>) so any verifier can recover the address
    without out-of-band knowledge.

    Args:
        did: The DID
        address: Wallet address controlling the DID
        public_key: Hex public key (0x04 uncompressed)
        controller: Controller DID (defaults to the DID itself)
        clock: Time source for created/updated

    Returns:
        DID Document dict
    """
    parsed = parse_did(did)
    checksum_address = normalize_address(address)
    if parsed.address != checksum_address:
        raise ValidationError("DID does not belong to the given address")

    controller_did = controller or did
    key_id = f"{did}#keys-1"
    now = to_iso(clock())

    doc: Dict[str, Any] = {
        "@context": DID_CONTEXT,
        "id": did,
        "type": parsed.role.upper(),
        "controller": controller_did,
        "verificationMethod": [
            {
                "id": key_id,
                "type": VERIFICATION_KEY_TYPE,
                "controller": controller_did,
                "publicKeyHex": public_key,
                "blockchainAccountId": f"{CAIP10_NAMESPACE}:{settings.CHAIN_ID}:{checksum_address}",
            }
        ],
        "created": now,
        "updated": now,
    }

    # Issuers assert credentials, everyone else authenticates
    if parsed.role == DIDRole.ISSUER.value:
        doc["assertionMethod"] = [key_id]
    else:
        doc["authentication"] = [key_id]

    return doc


def hash_did_document(doc: Dict[str, Any]) -> str:
    """keccak256 of the canonical document, 0x + 64 hex (the on-chain anchor)"""
    return keccak_hex(doc)


def extract_address_from_did_document(doc: Any) -> Optional[str]:
    """
    Extract the controlling address from a DID Document

    Returns:
        Checksum address from the first well-formed blockchainAccountId,
        or None when the document is malformed
    """
    if not isinstance(doc, dict):
        return None
    methods = doc.get("verificationMethod")
    if not isinstance(methods, list):
        return None

    for vm in methods:
        if not isinstance(vm, dict):
            continue
        account_id = vm.get("blockchainAccountId")
        if not isinstance(account_id, str):
            continue
        parts = account_id.split(":")
        if len(parts) != 3 or parts[0] != CAIP10_NAMESPACE:
            continue
        try:
            return normalize_address(parts[2])
        except ValidationError:
            continue

    logger.debug("No blockchainAccountId found in DID document %s", doc.get("id"))
    return None
