"""
Verification Pipeline Tests
===========================

End-to-end presentation verification against in-memory collaborators.
"""

import asyncio
import logging

import pytest

from anam_did.challenge_service import ChallengeService
from anam_did.credential_issuer import CredentialType, create_vc, sign_vc
from anam_did.credential_verifier import VerificationPipeline
from anam_did.did_manager import create_did, create_did_document
from anam_did.presentation import create_vp, sign_vp
from anam_did.registry import CredentialStatus, InMemoryDIDRegistry, InMemoryStatusRegistry
from anam_did.testing import FakeClock
from anam_did.wallet import derive_keys

TEST_MNEMONIC = "test test test test test test test test test test test junk"

ALL_CHECKS = [
    "isStructureValid",
    "isChallengeMatched",
    "isHolderSignatureValid",
    "isIssuerSignatureValid",
    "isWithinValidity",
    "isActiveOnChain",
    "isSubjectMatchesHolder",
]


def passed_until(checks, name):
    """True for every check before ``name``, False from ``name`` on"""
    index = ALL_CHECKS.index(name)
    return checks == {key: i < index for i, key in enumerate(ALL_CHECKS)}


class SlowResolver:
    async def get_document(self, did):
        await asyncio.sleep(1)
        return None


class FailingRegistry:
    async def get_status(self, vc_id):
        raise ConnectionError("registry unreachable")


class UnreachableResolver:
    def get_document(self, did):
        raise ConnectionError("resolver unreachable")


class TestVerificationPipeline:
    """Seven-step VP verification"""

    def setup_method(self):
        self.clock = FakeClock()
        self.issuer, self.holder, self.other = derive_keys(TEST_MNEMONIC, 3)

        self.did_registry = InMemoryDIDRegistry()
        self.status_registry = InMemoryStatusRegistry()
        self.challenges = ChallengeService(clock=self.clock)
        self.pipeline = VerificationPipeline(
            self.challenges, self.did_registry, self.status_registry, timeout=1.0, clock=self.clock
        )

        self.issuer_did = self._register("issuer", self.issuer)
        self.holder_did = self._register("user", self.holder)
        self.other_did = self._register("user", self.other)

    def _register(self, role, wallet):
        did = create_did(role, wallet.address)
        self.did_registry.register(create_did_document(did, wallet.address, wallet.public_key, clock=self.clock))
        return did

    def _issue(self, subject_did=None, vc_id="vc_kyc_pipeline1", signer=None, validity_days=365):
        vc = create_vc(
            self.issuer_did,
            subject_did or self.holder_did,
            CredentialType.KYC,
            {"fullName": "John Doe", "username": "john.doe"},
            vc_id,
            validity_days,
            clock=self.clock,
        )
        signed = sign_vc(vc, (signer or self.issuer).private_key, f"{self.issuer_did}#keys-1", clock=self.clock)
        self.status_registry.register(vc_id)
        return signed

    def _present(self, vcs, challenge=None):
        challenge = challenge or self.challenges.create().value
        vp = create_vp(self.holder_did, vcs, challenge, clock=self.clock)
        return sign_vp(vp, self.holder.private_key), challenge

    # ==================== SUCCESS ====================

    @pytest.mark.asyncio
    async def test_end_to_end_success(self):
        vp, challenge = self._present([self._issue()])
        result = await self.pipeline.verify(vp, challenge)

        assert result.valid
        assert result.reason is None
        assert all(result.checks.to_dict().values())
        assert result.credential_subject["id"] == self.holder_did
        assert result.credential_subject["fullName"] == "John Doe"
        print("✅ Presentation verified end to end")

    @pytest.mark.asyncio
    async def test_result_to_dict(self):
        vp, challenge = self._present([self._issue()])
        data = (await self.pipeline.verify(vp, challenge)).to_dict()

        assert data["valid"] is True
        assert list(data["checks"]) == ALL_CHECKS
        assert data["credentialSubject"]["username"] == "john.doe"
        assert "reason" not in data

    @pytest.mark.asyncio
    async def test_validity_bounds_inclusive(self):
        vc = self._issue(validity_days=1)
        self.clock.advance(days=1)
        vp, challenge = self._present([vc])

        result = await self.pipeline.verify(vp, challenge)
        assert result.valid

    @pytest.mark.asyncio
    async def test_multiple_credentials(self):
        vcs = [self._issue(vc_id="vc_kyc_a"), self._issue(vc_id="vc_kyc_b")]
        vp, challenge = self._present(vcs)

        result = await self.pipeline.verify(vp, challenge)
        assert result.valid

        self.status_registry.revoke("vc_kyc_b")
        vp, challenge = self._present(vcs)
        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "VC has been revoked"

    # ==================== STRUCTURE & CHALLENGE ====================

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vp", [None, "vp", {}, {"@context": ["x"], "type": ["VerifiablePresentation"]}])
    async def test_invalid_structure(self, vp):
        result = await self.pipeline.verify(vp, "0xabc")

        assert not result.valid
        assert result.reason == "Invalid VP structure"
        assert passed_until(result.checks.to_dict(), "isStructureValid")

    @pytest.mark.asyncio
    async def test_invalid_vc_structure(self):
        vc = self._issue()
        del vc["credentialSubject"]
        vp, challenge = self._present([vc])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Invalid VC structure"

    @pytest.mark.asyncio
    async def test_unknown_challenge(self):
        vp, _ = self._present([self._issue()], challenge="0x" + "11" * 32)
        result = await self.pipeline.verify(vp, "0x" + "11" * 32)

        assert result.reason == "Invalid challenge"
        assert passed_until(result.checks.to_dict(), "isChallengeMatched")

    @pytest.mark.asyncio
    async def test_replayed_presentation(self):
        vp, challenge = self._present([self._issue()])
        assert (await self.pipeline.verify(vp, challenge)).valid

        result = await self.pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "Challenge already used"

    @pytest.mark.asyncio
    async def test_expired_challenge(self):
        vp, challenge = self._present([self._issue()])
        self.clock.advance(seconds=301)

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Challenge expired"

    @pytest.mark.asyncio
    async def test_challenge_mismatch(self):
        vp, _ = self._present([self._issue()])
        other = self.challenges.create().value

        result = await self.pipeline.verify(vp, other)
        assert result.reason == "Challenge mismatch"
        assert passed_until(result.checks.to_dict(), "isChallengeMatched")
        # The presented challenge is consumed regardless
        assert self.challenges.get_info(other).used

    # ==================== SIGNATURES ====================

    @pytest.mark.asyncio
    async def test_tampered_presentation(self):
        vp, challenge = self._present([self._issue()])
        vp["verifiableCredential"][0]["credentialSubject"]["fullName"] = "Mallory"

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Invalid VP holder signature"
        assert passed_until(result.checks.to_dict(), "isHolderSignatureValid")

    @pytest.mark.asyncio
    async def test_unregistered_holder(self):
        self.did_registry.deactivate(self.holder_did)
        vp, challenge = self._present([self._issue()])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Holder DID not found"

    @pytest.mark.asyncio
    async def test_forged_issuer_signature(self):
        vp, challenge = self._present([self._issue(signer=self.other)])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Invalid VC issuer signature"
        assert passed_until(result.checks.to_dict(), "isIssuerSignatureValid")

    @pytest.mark.asyncio
    async def test_unregistered_issuer(self):
        self.did_registry.deactivate(self.issuer_did)
        vp, challenge = self._present([self._issue()])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "Issuer DID not found"

    # ==================== VALIDITY & STATUS ====================

    @pytest.mark.asyncio
    async def test_expired_credential(self):
        vc = self._issue(validity_days=1)
        self.clock.advance(days=1, seconds=1)
        vp, challenge = self._present([vc])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == (
            "VC is out of validity window"
            " (validFrom=2025-01-01T00:00:00.000Z) (validUntil=2025-01-02T00:00:00.000Z)"
        )
        assert passed_until(result.checks.to_dict(), "isWithinValidity")

    @pytest.mark.asyncio
    async def test_not_yet_valid_credential(self):
        self.clock.advance(seconds=60)
        vc = self._issue()
        self.clock.advance(seconds=-1)
        vp, challenge = self._present([vc])

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason.startswith("VC is out of validity window")

    @pytest.mark.asyncio
    async def test_revoked_credential(self):
        vp, challenge = self._present([self._issue()])
        self.status_registry.revoke("vc_kyc_pipeline1")

        result = await self.pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "VC has been revoked"
        assert passed_until(result.checks.to_dict(), "isActiveOnChain")

    @pytest.mark.asyncio
    async def test_suspended_credential(self):
        vp, challenge = self._present([self._issue()])
        self.status_registry.suspend("vc_kyc_pipeline1")

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "VC not found or inactive on-chain"

    @pytest.mark.asyncio
    async def test_unknown_credential(self):
        vc = self._issue()
        vp, challenge = self._present([vc])
        self.status_registry = InMemoryStatusRegistry()
        self.pipeline.status_registry = self.status_registry

        result = await self.pipeline.verify(vp, challenge)
        assert result.reason == "VC not found or inactive on-chain"
        assert self.status_registry.status_of(vc["id"]) is CredentialStatus.UNKNOWN

    # ==================== SUBJECT BINDING ====================

    @pytest.mark.asyncio
    async def test_subject_binding(self):
        vp, challenge = self._present([self._issue(subject_did=self.other_did)])

        result = await self.pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "VC subject DID does not match VP holder DID"
        assert passed_until(result.checks.to_dict(), "isSubjectMatchesHolder")

    # ==================== COLLABORATOR FAILURES ====================

    @pytest.mark.asyncio
    async def test_resolver_timeout_fails_closed(self):
        pipeline = VerificationPipeline(
            self.challenges, SlowResolver(), self.status_registry, timeout=0.01, clock=self.clock
        )
        vp, challenge = self._present([self._issue()])

        result = await pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "Holder DID resolution timed out"
        assert passed_until(result.checks.to_dict(), "isHolderSignatureValid")

    @pytest.mark.asyncio
    async def test_registry_error_fails_closed(self):
        pipeline = VerificationPipeline(
            self.challenges, self.did_registry, FailingRegistry(), clock=self.clock
        )
        vp, challenge = self._present([self._issue()])

        result = await pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "Credential status lookup failed"
        assert passed_until(result.checks.to_dict(), "isActiveOnChain")

    @pytest.mark.asyncio
    async def test_resolver_raising_before_await_fails_closed(self):
        pipeline = VerificationPipeline(
            self.challenges, UnreachableResolver(), self.status_registry, clock=self.clock
        )
        vp, challenge = self._present([self._issue()])

        result = await pipeline.verify(vp, challenge)
        assert not result.valid
        assert result.reason == "Holder DID resolution failed"
        assert passed_until(result.checks.to_dict(), "isHolderSignatureValid")

    # ==================== LOGGING ====================

    @pytest.mark.asyncio
    async def test_rejection_log_carries_context(self, caplog):
        vp, challenge = self._present([self._issue()])
        self.status_registry.revoke("vc_kyc_pipeline1")

        with caplog.at_level(logging.WARNING, logger="anam_did.credential_verifier"):
            await self.pipeline.verify(vp, challenge)

        rejected = [r for r in caplog.records if r.getMessage().startswith("Presentation rejected")]
        assert len(rejected) == 1
        assert rejected[0].vc_id == "vc_kyc_pipeline1"
        assert rejected[0].stage == "status"
