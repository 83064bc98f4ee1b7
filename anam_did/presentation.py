"""
Verifiable Presentations
========================

A holder bundles one or more signed credentials and binds them to a
single-use challenge. The challenge sits inside ``proof`` and is covered by
the signature: the payload is the canonical VP with only ``proof.jws``
removed.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from .canonical import canonicalize, without_field
from .clock import Clock, to_iso, utc_now
from .config import settings
from .credential_issuer import SIGNATURE_TYPE, VC_CONTEXT
from .wallet import sign_message, verify_message

logger = logging.getLogger(__name__)


def create_vp(
    holder_did: str,
    vcs: List[Dict[str, Any]],
    challenge: str,
    domain: Optional[str] = None,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """
    Create an unsigned Verifiable Presentation

    Args:
        holder_did: Holder's DID
        vcs: Signed credentials to embed (copied, order preserved)
        challenge: Challenge issued by the verifier
        domain: Proof domain (defaults to settings.VP_DOMAIN)

    Returns:
        VP dict whose proof has no ``jws`` yet
    """
    return {
        "@context": list(VC_CONTEXT),
        "type": ["VerifiablePresentation"],
        "holder": holder_did,
        "verifiableCredential": copy.deepcopy(list(vcs)),
        "proof": {
            "type": SIGNATURE_TYPE,
            "created": to_iso(clock()),
            "challenge": challenge,
            "domain": domain or settings.VP_DOMAIN,
            "proofPurpose": "authentication",
            "verificationMethod": f"{holder_did}#keys-1",
        },
    }


def vp_signing_payload(vp: Dict[str, Any]) -> str:
    """Canonical VP with ``proof.jws`` stripped; challenge stays in"""
    unsigned = dict(vp)
    proof = vp.get("proof")
    if isinstance(proof, dict):
        unsigned["proof"] = without_field(proof, "jws")
    return canonicalize(unsigned)


def sign_vp(vp: Dict[str, Any], holder_private_key: str) -> Dict[str, Any]:
    """Sign a presentation, returning a copy with ``proof.jws`` set"""
    signed = copy.deepcopy(vp)
    proof = signed.get("proof")
    if not isinstance(proof, dict):
        proof = {}
        signed["proof"] = proof
    proof.pop("jws", None)

    proof["jws"] = sign_message(vp_signing_payload(signed), holder_private_key)
    logger.info("Signed presentation for holder %s", signed.get("holder"))
    return signed


def verify_vp_signature(vp: Any, expected_holder_address: str) -> bool:
    """
    Verify the holder signature of a presentation

    Never raises: a missing proof or ``jws`` yields False.
    """
    try:
        if not isinstance(vp, dict):
            return False
        proof = vp.get("proof")
        if not isinstance(proof, dict):
            return False
        jws = proof.get("jws")
        if not isinstance(jws, str) or not jws:
            return False
        return verify_message(vp_signing_payload(vp), jws, expected_holder_address)
    except Exception:
        logger.debug("Presentation signature check failed", exc_info=True)
        return False
