"""
Anam DID Trust Engine
=====================

Issues, signs, presents and verifies DID / VC / VP artifacts and protects
the secrets behind them.

Components:
- canonical: deterministic JSON shared by every signer and verifier
- did_manager: DID strings and DID Documents
- credential_issuer / presentation: sign and verify VCs and VPs
- credential_verifier: the seven-step VP verification pipeline
- challenge_service: single-use anti-replay challenges
- vault: PBKDF2 + AES-256-GCM vaults and paper vouchers
- vp_session: QR check-in session hand-off
- did_service: integration facade

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials 2.0: https://www.w3.org/TR/vc-data-model-2.0/
"""

from .canonical import canonicalize, keccak_hex
from .challenge_service import Challenge, ChallengeService
from .credential_issuer import CredentialType, create_vc, sign_vc, verify_vc_signature
from .credential_verifier import VerificationChecks, VerificationPipeline, VerificationResult
from .did_manager import (
    DIDRole,
    create_did,
    create_did_document,
    extract_address_from_did_document,
    hash_did_document,
    parse_did,
)
from .did_service import DIDService
from .errors import (
    AnamDIDError,
    CryptoError,
    ExpiredError,
    InactiveError,
    NotFoundError,
    ReplayError,
    RevokedError,
    ValidationError,
)
from .presentation import create_vp, sign_vp, verify_vp_signature
from .registry import CredentialStatus, InMemoryDIDRegistry, InMemoryStatusRegistry
from .vault import Vault, decrypt_vault, encrypt_vault
from .vp_session import VPSession, VPSessionStatus, VPSessionStore
from .wallet import WalletInfo, create_wallet_from_mnemonic, generate_wallet

__version__ = "1.0.0"
__all__ = [
    # Canonical form
    "canonicalize",
    "keccak_hex",

    # DIDs
    "DIDRole",
    "create_did",
    "create_did_document",
    "extract_address_from_did_document",
    "hash_did_document",
    "parse_did",

    # Wallets
    "WalletInfo",
    "create_wallet_from_mnemonic",
    "generate_wallet",

    # Credentials and presentations
    "CredentialType",
    "create_vc",
    "sign_vc",
    "verify_vc_signature",
    "create_vp",
    "sign_vp",
    "verify_vp_signature",

    # Verification
    "VerificationPipeline",
    "VerificationResult",
    "VerificationChecks",
    "CredentialStatus",
    "InMemoryDIDRegistry",
    "InMemoryStatusRegistry",

    # Stateful services
    "Challenge",
    "ChallengeService",
    "VPSession",
    "VPSessionStatus",
    "VPSessionStore",

    # Vault
    "Vault",
    "encrypt_vault",
    "decrypt_vault",

    # Errors
    "AnamDIDError",
    "ValidationError",
    "CryptoError",
    "ExpiredError",
    "ReplayError",
    "RevokedError",
    "InactiveError",
    "NotFoundError",

    # Service
    "DIDService",
]
