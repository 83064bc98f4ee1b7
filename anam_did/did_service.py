"""
DID Service Integration
=======================

Wires the trust engine into one facade for the surrounding application:
- DID registration (wallet -> DID -> DID Document)
- Credential issuance and revocation
- Paper vouchers (mnemonic + credential under one password)
- Challenges and presentation verification
- The mobile-to-staff QR check-in flow via VP sessions
"""

import logging
from typing import Any, Dict, Optional, Tuple

from .challenge_service import Challenge, ChallengeService
from .clock import Clock, utc_now
from .credential_issuer import CredentialType, create_vc, generate_vc_id, sign_vc
from .credential_verifier import VerificationPipeline, VerificationResult
from .did_manager import DIDRole, create_did, create_did_document
from .errors import NotFoundError, ValidationError
from .registry import InMemoryDIDRegistry, InMemoryStatusRegistry
from .vault import build_paper_voucher, open_paper_voucher
from .vp_session import VPSession, VPSessionStatus, VPSessionStore
from .wallet import WalletInfo, get_address_from_private_key, get_public_key_from_private_key

logger = logging.getLogger(__name__)


class DIDService:
    """
    Main service class for DID operations

    Args:
        issuer_private_key: Issuer's secp256k1 key; its DID is registered
        did_registry: DID store/resolver (in-memory by default)
        status_registry: Credential status store (in-memory by default)
        challenge_service: Challenge Service (created if omitted)
        session_store: VP Session Store (created if omitted)
        clock: Time source shared by every component created here
    """

    def __init__(
        self,
        issuer_private_key: str,
        did_registry: Optional[InMemoryDIDRegistry] = None,
        status_registry: Optional[InMemoryStatusRegistry] = None,
        challenge_service: Optional[ChallengeService] = None,
        session_store: Optional[VPSessionStore] = None,
        clock: Clock = utc_now,
    ):
        self._clock = clock
        self.did_registry = did_registry or InMemoryDIDRegistry()
        self.status_registry = status_registry or InMemoryStatusRegistry()
        self.challenge_service = challenge_service or ChallengeService(clock=clock)
        self.session_store = session_store or VPSessionStore(clock=clock)
        self.pipeline = VerificationPipeline(
            challenge_service=self.challenge_service,
            did_resolver=self.did_registry,
            status_registry=self.status_registry,
            clock=clock,
        )

        self._issuer_private_key = issuer_private_key
        self.issuer_address = get_address_from_private_key(issuer_private_key)
        self.issuer_did, _ = self.register_did(
            DIDRole.ISSUER,
            self.issuer_address,
            get_public_key_from_private_key(issuer_private_key),
        )

    # ==================== DID OPERATIONS ====================

    def register_did(self, role, address: str, public_key: str) -> Tuple[str, Dict[str, Any]]:
        """
        Create and register a DID Document for an address

        Returns:
            Tuple of (did, did_document)
        """
        did = create_did(role, address)
        doc = create_did_document(did, address, public_key, clock=self._clock)
        self.did_registry.register(doc)
        return did, doc

    def register_wallet(self, wallet: WalletInfo, role=DIDRole.USER) -> Tuple[str, Dict[str, Any]]:
        return self.register_did(role, wallet.address, wallet.public_key)

    def resolve_did(self, did: str) -> Optional[Dict[str, Any]]:
        """Resolve DID to DID Document"""
        return self.did_registry.resolve(did)

    # ==================== CREDENTIALS ====================

    def issue_credential(
        self,
        subject_did: str,
        claims: Dict[str, Any],
        credential_type=CredentialType.KYC,
        validity_days: int = 365,
        vc_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Issue a signed credential and register it ACTIVE

        Args:
            subject_did: Subject's DID
            claims: Claims for credentialSubject
            credential_type: CredentialType or type string
            validity_days: Validity period
            vc_id: Credential id (generated when omitted)

        Returns:
            Signed VC dict
        """
        if self.did_registry.resolve(subject_did) is None:
            raise NotFoundError(f"Subject DID not registered: {subject_did}")

        vc = create_vc(
            issuer_did=self.issuer_did,
            subject_did=subject_did,
            credential_type=credential_type,
            claims=claims,
            vc_id=vc_id or generate_vc_id(),
            validity_days=validity_days,
            clock=self._clock,
        )
        signed = sign_vc(vc, self._issuer_private_key, f"{self.issuer_did}#keys-1", clock=self._clock)
        self.status_registry.register(signed["id"])
        logger.info("Issued credential %s to %s", signed["id"], subject_did)
        return signed

    def revoke_credential(self, vc_id: str) -> None:
        self.status_registry.revoke(vc_id)

    def suspend_credential(self, vc_id: str) -> None:
        self.status_registry.suspend(vc_id)

    # ==================== PAPER VOUCHERS ====================

    def issue_paper_voucher(
        self,
        wallet: WalletInfo,
        claims: Dict[str, Any],
        password: str,
        credential_type=CredentialType.KYC,
        validity_days: int = 365,
    ) -> Dict[str, Any]:
        """Register the wallet's DID, issue it a credential and seal both"""
        did = self.did_registry.get_did_by_address(wallet.address)
        if did is None:
            did, _ = self.register_wallet(wallet)
        vc = self.issue_credential(did, claims, credential_type, validity_days)
        return build_paper_voucher(wallet.address, wallet.mnemonic, vc, password)

    def open_paper_voucher(self, voucher: Dict[str, Any], password: str) -> Dict[str, Any]:
        return open_paper_voucher(voucher, password)

    # ==================== PRESENTATIONS ====================

    def issue_challenge(self) -> Challenge:
        return self.challenge_service.create()

    async def verify_presentation(self, vp: Dict[str, Any], challenge: str) -> VerificationResult:
        return await self.pipeline.verify(vp, challenge)

    # ==================== QR CHECK-IN ====================

    def submit_presentation(self, vp: Dict[str, Any], challenge: str) -> VPSession:
        """
        Accept a signed VP from the mobile app into a new session

        Raises:
            ValidationError: if the VP is not bound to ``challenge``
        """
        proof = vp.get("proof") if isinstance(vp, dict) else None
        if not isinstance(proof, dict) or proof.get("challenge") != challenge:
            raise ValidationError("VP proof challenge does not match provided challenge")
        session_id = self.session_store.create(vp, challenge)
        return self.session_store.get_info(session_id)

    async def verify_session(
        self,
        session_id: str,
        event_name: Optional[str] = None,
    ) -> VerificationResult:
        """
        Staff-side check-in: claim the session once, verify, record the outcome

        A claimed session always ends terminal: if verification raises, the
        session is marked failed before the error propagates.

        Raises:
            NotFoundError / ReplayError / ExpiredError: from the session claim
        """
        session = self.session_store.verify_and_mark_used(session_id)
        try:
            result = await self.pipeline.verify(session.vp, session.challenge)
        except Exception:
            logger.exception(
                "Verification of session %s raised", session_id[:10], extra={"session_id": session_id[:10]}
            )
            self.session_store.update_status(session_id, VPSessionStatus.FAILED)
            raise

        if result.valid:
            subject = result.credential_subject or {}
            checkin_data = {
                "eventName": event_name,
                "userName": subject.get("fullName") or subject.get("username"),
                "userDID": session.vp.get("holder"),
            }
            self.session_store.update_status(session_id, VPSessionStatus.VERIFIED, checkin_data)
        else:
            self.session_store.update_status(session_id, VPSessionStatus.FAILED)
        return result

    def get_session_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.session_store.get_status(session_id)
        return session.to_dict() if session else None

    # ==================== LIFECYCLE ====================

    def start(self) -> None:
        """Start the background sweepers"""
        self.challenge_service.start()
        self.session_store.start()

    def close(self) -> None:
        self.challenge_service.close()
        self.session_store.close()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "issuer": {"did": self.issuer_did, "address": self.issuer_address},
            "dids": self.did_registry.get_statistics(),
            "challenges": self.challenge_service.get_stats(),
            "sessions": self.session_store.get_stats(),
        }
