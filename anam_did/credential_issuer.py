"""
Verifiable Credentials Issuer
=============================

Builds, signs and checks the signature of Verifiable Credentials
(W3C VC Data Model 2.0: validFrom / validUntil).

Credentials are plain JSON dicts so that fields added by other
implementations survive a verify round-trip untouched.

Signing:
- payload = canonical JSON of the VC with the ``proof`` field removed
- signature = EIP-191 personal-message secp256k1 signature of the payload
- proof = {type, created, proofPurpose, verificationMethod, jws}

Reference: https://www.w3.org/TR/vc-data-model-2.0/
"""

import copy
import logging
import secrets
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from .canonical import canonicalize, keccak_hex, without_field
from .clock import Clock, to_iso, utc_now
from .errors import ValidationError
from .wallet import sign_message, verify_message

logger = logging.getLogger(__name__)

VC_CONTEXT = ["https://www.w3.org/ns/credentials/v2"]
SIGNATURE_TYPE = "EcdsaSecp256k1Signature2019"


class CredentialType(Enum):
    """Types of credentials we issue"""
    KYC = "UndpKycCredential"
    ADMIN = "UndpAdminCredential"


# ==================== CREDENTIAL CREATION ====================

def generate_vc_id(prefix: str = "vc_kyc") -> str:
    """Random credential id such as ``vc_kyc_1a2b3c4d5e6f7a8b``"""
    return f"{prefix}_{secrets.token_hex(8)}"


def create_vc(
    issuer_did: str,
    subject_did: str,
    credential_type,
    claims: Dict[str, Any],
    vc_id: str,
    validity_days: int,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Create an unsigned Verifiable Credential

    Args:
        issuer_did: Issuer's DID
        subject_did: Subject's DID (becomes credentialSubject.id)
        credential_type: CredentialType or type string
        claims: Claims merged into credentialSubject
        vc_id: Caller-supplied, globally unique credential id
        validity_days: validUntil = validFrom + validity_days
        clock: Time source

    Returns:
        Unsigned VC dict
    """
    if not isinstance(vc_id, str) or not vc_id:
        raise ValidationError("vc_id must be a non-empty string")
    if not isinstance(issuer_did, str) or not issuer_did:
        raise ValidationError("issuer_did must be a non-empty string")
    if not isinstance(subject_did, str) or not subject_did:
        raise ValidationError("subject_did must be a non-empty string")

    type_value = credential_type.value if isinstance(credential_type, CredentialType) else credential_type
    valid_from = clock()
    valid_until = valid_from + timedelta(days=validity_days)

    # Claims cannot override the subject binding
    subject = {**copy.deepcopy(claims or {}), "id": subject_did}

    return {
        "@context": list(VC_CONTEXT),
        "id": vc_id,
        "type": ["VerifiableCredential", type_value],
        "issuer": {"id": issuer_did},
        "validFrom": to_iso(valid_from),
        "validUntil": to_iso(valid_until),
        "credentialSubject": subject,
    }


def get_issuer_did(vc: Dict[str, Any]) -> Optional[str]:
    """Issuer DID whether ``issuer`` is a string or an ``{id}`` object"""
    issuer = vc.get("issuer")
    if isinstance(issuer, str):
        return issuer
    if isinstance(issuer, dict) and isinstance(issuer.get("id"), str):
        return issuer["id"]
    return None


# ==================== SIGNING ====================

def vc_signing_payload(vc: Dict[str, Any]) -> str:
    """Canonical bytes (as text) covered by the issuer signature"""
    return canonicalize(without_field(vc, "proof"))


def sign_vc(
    vc: Dict[str, Any],
    issuer_private_key: str,
    verification_method: str,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Sign a Verifiable Credential

    Args:
        vc: Unsigned (or previously signed) VC; any existing proof is replaced
        issuer_private_key: Issuer's secp256k1 private key
        verification_method: Key reference, e.g. ``<issuerDid>#keys-1``

    Returns:
        A new VC dict carrying ``proof.jws``
    """
    signed = copy.deepcopy(without_field(vc, "proof"))
    jws = sign_message(vc_signing_payload(signed), issuer_private_key)

    signed["proof"] = {
        "type": SIGNATURE_TYPE,
        "created": to_iso(clock()),
        "proofPurpose": "assertionMethod",
        "verificationMethod": verification_method,
        "jws": jws,
    }
    logger.info("Signed credential %s", signed.get("id"))
    return signed


def verify_vc_signature(vc: Any, expected_issuer_address: str) -> bool:
    """
    Verify the issuer signature of a credential

    Recomputes the canonical payload without ``proof``, recovers the
    signer from ``proof.jws`` and compares it case-insensitively.
    Never raises: malformed input or a missing proof yields False.
    """
    try:
        if not isinstance(vc, dict):
            return False
        proof = vc.get("proof")
        if not isinstance(proof, dict):
            return False
        jws = proof.get("jws")
        if not isinstance(jws, str) or not jws:
            return False
        return verify_message(vc_signing_payload(vc), jws, expected_issuer_address)
    except Exception:
        logger.debug("Credential signature check failed", exc_info=True)
        return False


def hash_vc(vc: Dict[str, Any]) -> str:
    """keccak256 of the full canonical credential (proof included)"""
    return keccak_hex(vc)
