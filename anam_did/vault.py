"""
Vault Cipher
============

Password-based encryption for the secrets behind an identity: a wallet
mnemonic or a serialized signed credential.

Format (fixed, not negotiated per vault):
- key = PBKDF2-HMAC-SHA256(password, salt, 10000 iterations, 32 bytes)
- AES-256-GCM with a fresh 12-byte IV and 16-byte salt per vault
- ``{ciphertext, iv, salt, authTag}``, each base64

One password can seal both a mnemonic and a credential, which is what a
paper voucher carries: ``{address, vault, vc: {id, ...}}``.
"""

import base64
import binascii
import json
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CryptoError, ValidationError
from .wallet import create_wallet_from_mnemonic

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 10000
KEY_LENGTH = 32
SALT_LENGTH = 16
IV_LENGTH = 12
TAG_LENGTH = 16

VAULT_FIELDS = ("ciphertext", "iv", "salt", "authTag")
PASSWORD_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%^&*"

DECRYPT_ERROR = "Invalid password or corrupted vault"


@dataclass
class Vault:
    """Encrypted container, raw bytes in memory and base64 on the wire"""
    ciphertext: bytes
    iv: bytes
    salt: bytes
    auth_tag: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": _b64encode(self.ciphertext),
            "iv": _b64encode(self.iv),
            "salt": _b64encode(self.salt),
            "authTag": _b64encode(self.auth_tag),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vault":
        """
        Parse a ``{ciphertext, iv, salt, authTag}`` mapping

        Extra keys (e.g. a voucher's ``vc.id``) are ignored.

        Raises:
            ValidationError: missing field or invalid base64
        """
        if not isinstance(data, dict):
            raise ValidationError("Vault must be a JSON object")
        missing = [name for name in VAULT_FIELDS if not isinstance(data.get(name), str)]
        if missing:
            raise ValidationError(f"Vault is missing field(s): {', '.join(missing)}")
        return cls(
            ciphertext=_b64decode(data["ciphertext"], "ciphertext"),
            iv=_b64decode(data["iv"], "iv"),
            salt=_b64decode(data["salt"], "salt"),
            auth_tag=_b64decode(data["authTag"], "authTag"),
        )


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Vault field {field} is not valid base64") from e


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


# ==================== ENCRYPTION ====================

def encrypt_vault(secret: str, password: str) -> Vault:
    """
    Encrypt a secret under a password

    Args:
        secret: Plaintext (mnemonic or serialized VC)
        password: User password

    Returns:
        Vault with fresh salt and IV
    """
    if not isinstance(secret, str):
        raise ValidationError("Secret must be a string")
    if not isinstance(password, str) or not password:
        raise ValidationError("Password must be a non-empty string")

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(password, salt)

    # AESGCM appends the 16-byte tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, secret.encode("utf-8"), None)
    return Vault(
        ciphertext=sealed[:-TAG_LENGTH],
        iv=iv,
        salt=salt,
        auth_tag=sealed[-TAG_LENGTH:],
    )


def decrypt_vault(vault, password: str) -> str:
    """
    Decrypt a vault

    Args:
        vault: Vault or its wire dict
        password: User password

    Returns:
        The plaintext secret

    Raises:
        ValidationError: the container cannot be parsed
        CryptoError: wrong password or any tampered byte
    """
    if not isinstance(vault, Vault):
        vault = Vault.from_dict(vault)
    if not isinstance(password, str):
        raise CryptoError(DECRYPT_ERROR)

    try:
        key = _derive_key(password, vault.salt)
        plaintext = AESGCM(key).decrypt(vault.iv, vault.ciphertext + vault.auth_tag, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError) as e:
        # ValueError covers bad IV sizes and undecodable plaintext
        raise CryptoError(DECRYPT_ERROR) from e


def verify_vault_password(vault, password: str) -> bool:
    """True when ``password`` opens ``vault``; never raises"""
    try:
        decrypt_vault(vault, password)
        return True
    except (CryptoError, ValidationError):
        return False


def generate_password(length: int = 16) -> str:
    """Random password drawn from letters, digits and ``!@#$%^&*``"""
    if length <= 0:
        raise ValidationError("Password length must be positive")
    return "".join(secrets.choice(PASSWORD_CHARSET) for _ in range(length))


# ==================== PAPER VOUCHER ====================

def build_paper_voucher(
    address: str,
    mnemonic: str,
    signed_vc: Dict[str, Any],
    password: str,
) -> Dict[str, Any]:
    """
    Seal a wallet mnemonic and a signed VC under one password

    Returns:
        ``{address, vault: <mnemonic vault>, vc: {id, ciphertext, iv, salt, authTag}}``
    """
    vc_id = signed_vc.get("id") if isinstance(signed_vc, dict) else None
    if not isinstance(vc_id, str) or not vc_id:
        raise ValidationError("Signed VC must carry an id")

    wallet_vault = encrypt_vault(mnemonic, password)
    vc_vault = encrypt_vault(json.dumps(signed_vc, ensure_ascii=False), password)

    logger.info("Built paper voucher for %s (vc: %s)", address, vc_id)
    return {
        "address": address,
        "vault": wallet_vault.to_dict(),
        "vc": {"id": vc_id, **vc_vault.to_dict()},
    }


def open_paper_voucher(voucher: Dict[str, Any], password: str) -> Dict[str, Any]:
    """
    Decrypt both halves of a paper voucher

    Returns:
        ``{"address", "mnemonic", "vc"}``

    Raises:
        ValidationError: malformed voucher, or contents that do not match
            the voucher's address / VC id
        CryptoError: wrong password or tampered vault
    """
    if not isinstance(voucher, dict):
        raise ValidationError("Voucher must be a JSON object")
    address = voucher.get("address")
    vc_part = voucher.get("vc")
    if not isinstance(address, str) or not isinstance(vc_part, dict):
        raise ValidationError("Voucher must carry address and vc")

    mnemonic = decrypt_vault(voucher.get("vault"), password)
    wallet = create_wallet_from_mnemonic(mnemonic)
    if wallet.address.lower() != address.lower():
        raise ValidationError("Voucher mnemonic does not match its address")

    try:
        vc = json.loads(decrypt_vault(vc_part, password))
    except json.JSONDecodeError as e:
        raise ValidationError("Voucher credential is not valid JSON") from e
    if not isinstance(vc, dict) or vc.get("id") != vc_part.get("id"):
        raise ValidationError("Voucher credential id mismatch")

    logger.info("Opened paper voucher for %s", wallet.address)
    return {"address": wallet.address, "mnemonic": mnemonic, "vc": vc}
