"""
Verification Pipeline
=====================

Verifies a Verifiable Presentation against a challenge in seven ordered,
short-circuiting checks (local checks before collaborator lookups):

1. isStructureValid        - VP and embedded VC shape
2. isChallengeMatched      - challenge consumed once and equal to proof.challenge
3. isHolderSignatureValid  - holder DID -> address -> VP signature
4. isIssuerSignatureValid  - issuer DID -> address -> VC signature
5. isWithinValidity        - validFrom <= now <= validUntil (inclusive)
6. isActiveOnChain         - credential status registry reports ACTIVE
7. isSubjectMatchesHolder  - credentialSubject.id == vp.holder

Invalid presentations never raise: the result carries ``valid=False``, the
reason and the checks evaluated so far. Collaborator timeouts and errors
fail closed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .challenge_service import ChallengeService
from .clock import Clock, parse_iso, to_iso, utc_now
from .config import settings
from .credential_issuer import get_issuer_did, verify_vc_signature
from .did_manager import extract_address_from_did_document
from .errors import AnamDIDError, InactiveError, RevokedError
from .presentation import verify_vp_signature
from .registry import CredentialStatus, CredentialStatusRegistry, DIDResolver, ensure_active

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """A resolver or registry call timed out or failed"""


@dataclass
class VerificationChecks:
    """Outcome of each check; False until the check has passed"""
    structure_valid: bool = False
    challenge_matched: bool = False
    holder_signature_valid: bool = False
    issuer_signature_valid: bool = False
    within_validity: bool = False
    active_on_chain: bool = False
    subject_matches_holder: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "isStructureValid": self.structure_valid,
            "isChallengeMatched": self.challenge_matched,
            "isHolderSignatureValid": self.holder_signature_valid,
            "isIssuerSignatureValid": self.issuer_signature_valid,
            "isWithinValidity": self.within_validity,
            "isActiveOnChain": self.active_on_chain,
            "isSubjectMatchesHolder": self.subject_matches_holder,
        }


@dataclass
class VerificationResult:
    """Result of presentation verification"""
    valid: bool
    checks: VerificationChecks = field(default_factory=VerificationChecks)
    reason: Optional[str] = None
    credential_subject: Optional[Dict[str, Any]] = None
    verified_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"valid": self.valid, "checks": self.checks.to_dict()}
        if self.reason is not None:
            result["reason"] = self.reason
        if self.credential_subject is not None:
            result["credentialSubject"] = self.credential_subject
        if self.verified_at is not None:
            result["verifiedAt"] = self.verified_at
        return result


@dataclass
class _Failure:
    reason: str


REQUIRED_VP_FIELDS = ("@context", "type", "holder", "verifiableCredential", "proof")
REQUIRED_VC_FIELDS = ("@context", "id", "type", "issuer", "credentialSubject", "proof")


class VerificationPipeline:
    """
    Verifies presentations for one verifier

    Args:
        challenge_service: Issues and consumes the challenges
        did_resolver: Async DID -> DID Document lookup
        status_registry: Async VC id -> CredentialStatus lookup
        timeout: Seconds allowed per collaborator call
        clock: Time source for the validity window
    """

    def __init__(
        self,
        challenge_service: ChallengeService,
        did_resolver: DIDResolver,
        status_registry: CredentialStatusRegistry,
        timeout: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.challenge_service = challenge_service
        self.did_resolver = did_resolver
        self.status_registry = status_registry
        self.timeout = timeout if timeout is not None else settings.RESOLVER_TIMEOUT_SECONDS
        self._clock = clock

    # ==================== VERIFICATION ====================

    async def verify(self, vp: Any, challenge: Any) -> VerificationResult:
        """
        Verify a presentation bound to ``challenge``

        The challenge is consumed even when the presentation later fails.

        Returns:
            VerificationResult; ``credential_subject`` of the first VC on success
        """
        checks = VerificationChecks()

        # 1. Structure
        reason = self._check_structure(vp)
        if reason:
            return self._fail(checks, reason)
        checks.structure_valid = True
        vcs: List[Dict[str, Any]] = vp["verifiableCredential"]

        # 2. Challenge: consume once, then compare with the signed value
        try:
            self.challenge_service.verify(challenge)
        except AnamDIDError as e:
            return self._fail(checks, e.message, stage="challenge")
        if vp["proof"].get("challenge") != challenge:
            return self._fail(checks, "Challenge mismatch", stage="challenge")
        checks.challenge_matched = True

        try:
            # 3. Holder signature
            holder_address = await self._resolve_address(vp["holder"], "Holder")
            if isinstance(holder_address, _Failure):
                return self._fail(checks, holder_address.reason, did=vp["holder"], stage="holder_signature")
            if not verify_vp_signature(vp, holder_address):
                return self._fail(
                    checks, "Invalid VP holder signature", did=vp["holder"], stage="holder_signature"
                )
            checks.holder_signature_valid = True

            # 4. Issuer signatures
            for vc in vcs:
                issuer_address = await self._resolve_address(get_issuer_did(vc), "Issuer")
                if isinstance(issuer_address, _Failure):
                    return self._fail(checks, issuer_address.reason, vc_id=vc["id"], stage="issuer_signature")
                if not verify_vc_signature(vc, issuer_address):
                    return self._fail(
                        checks, "Invalid VC issuer signature", vc_id=vc["id"], stage="issuer_signature"
                    )
            checks.issuer_signature_valid = True

            # 5. Validity window
            now = self._clock()
            for vc in vcs:
                reason = self._check_validity(vc, now)
                if reason:
                    return self._fail(checks, reason, vc_id=vc["id"], stage="validity")
            checks.within_validity = True

            # 6. Credential status
            for vc in vcs:
                reason = await self._check_status(vc["id"])
                if reason:
                    return self._fail(checks, reason, vc_id=vc["id"], stage="status")
            checks.active_on_chain = True
        except CollaboratorError as e:
            return self._fail(checks, str(e), did=vp["holder"], stage="collaborator")

        # 7. Subject binding
        for vc in vcs:
            if vc["credentialSubject"].get("id") != vp["holder"]:
                return self._fail(
                    checks, "VC subject DID does not match VP holder DID", vc_id=vc["id"], stage="subject_binding"
                )
        checks.subject_matches_holder = True

        logger.info("Presentation from %s verified", vp["holder"], extra={"did": vp["holder"]})
        return VerificationResult(
            valid=True,
            checks=checks,
            credential_subject=vcs[0]["credentialSubject"],
            verified_at=to_iso(self._clock()),
        )

    # ==================== CHECKS ====================

    @staticmethod
    def _check_structure(vp: Any) -> Optional[str]:
        if not isinstance(vp, dict):
            return "Invalid VP structure"
        if any(not vp.get(name) for name in REQUIRED_VP_FIELDS):
            return "Invalid VP structure"
        if not isinstance(vp["holder"], str) or not isinstance(vp["proof"], dict):
            return "Invalid VP structure"
        vcs = vp["verifiableCredential"]
        if not isinstance(vcs, list) or not vcs:
            return "Invalid VP structure"

        for vc in vcs:
            if not isinstance(vc, dict) or not vc:
                return "No VC found in VP"
            if any(not vc.get(name) for name in REQUIRED_VC_FIELDS):
                return "Invalid VC structure"
            if not isinstance(vc["id"], str) or get_issuer_did(vc) is None:
                return "Invalid VC structure"
            if not isinstance(vc["credentialSubject"], dict) or not isinstance(vc["proof"], dict):
                return "Invalid VC structure"
            for name in ("validFrom", "validUntil"):
                if vc.get(name) is None:
                    continue
                try:
                    parse_iso(vc[name])
                except ValueError:
                    return f"Invalid VC {name} timestamp"
        return None

    @staticmethod
    def _check_validity(vc: Dict[str, Any], now) -> Optional[str]:
        valid_from = parse_iso(vc["validFrom"]) if vc.get("validFrom") is not None else None
        valid_until = parse_iso(vc["validUntil"]) if vc.get("validUntil") is not None else None

        if (valid_from is None or now >= valid_from) and (valid_until is None or now <= valid_until):
            return None

        reason = "VC is out of validity window"
        if valid_from is not None:
            reason += f" (validFrom={to_iso(valid_from)})"
        if valid_until is not None:
            reason += f" (validUntil={to_iso(valid_until)})"
        return reason

    async def _check_status(self, vc_id: str) -> Optional[str]:
        status = await self._call(lambda: self.status_registry.get_status(vc_id), "Credential status lookup")
        try:
            status = CredentialStatus(status)
        except ValueError:
            status = CredentialStatus.UNKNOWN

        try:
            ensure_active(status, vc_id)
        except RevokedError:
            logger.warning("Revoked credential presented: %s", vc_id, extra={"vc_id": vc_id, "stage": "status"})
            return "VC has been revoked"
        except InactiveError:
            return "VC not found or inactive on-chain"
        return None

    async def _resolve_address(self, did: Optional[str], role: str):
        if not did:
            return _Failure(f"{role} DID not found")
        document = await self._call(lambda: self.did_resolver.get_document(did), f"{role} DID resolution")
        if not document:
            return _Failure(f"{role} DID not found")
        address = extract_address_from_did_document(document)
        if not address:
            return _Failure(f"{role} wallet address not found in DID document")
        return address

    async def _call(self, lookup: Callable[[], Awaitable], stage: str):
        try:
            return await asyncio.wait_for(lookup(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("%s timed out after %ss", stage, self.timeout, extra={"stage": stage})
            raise CollaboratorError(f"{stage} timed out") from e
        except Exception as e:
            logger.exception("%s failed", stage, extra={"stage": stage})
            raise CollaboratorError(f"{stage} failed") from e

    def _fail(self, checks: VerificationChecks, reason: str, **context) -> VerificationResult:
        # context (did, vc_id, stage) is attached to the log record for JSON output
        logger.warning("Presentation rejected: %s", reason, extra=context)
        return VerificationResult(valid=False, checks=checks, reason=reason)

