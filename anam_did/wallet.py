"""
Wallet - Key utilities for DID holders and issuers

Supports:
- BIP-39 mnemonics (12 words) and BIP-44 derivation (m/44'/60'/0'/0/i)
- secp256k1 keys with Ethereum addresses
- EIP-191 personal-message signing and address recovery
"""

import logging
from dataclasses import dataclass
from typing import List

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_utils import decode_hex, to_hex

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"
DEFAULT_BASE_PATH = "m/44'/60'/0'/0"

Account.enable_unaudited_hdwallet_features()


@dataclass
class WalletInfo:
    """A derived wallet. The private key and mnemonic never leave the caller."""
    mnemonic: str
    private_key: str  # 0x + 64 hex
    public_key: str   # 0x04 + 128 hex (uncompressed)
    address: str      # EIP-55 checksum address
    path: str = DEFAULT_DERIVATION_PATH


# ==================== MNEMONICS ====================

def generate_mnemonic() -> str:
    """Generate a new 12-word BIP-39 mnemonic phrase"""
    _, mnemonic = Account.create_with_mnemonic(num_words=12)
    return mnemonic


def validate_mnemonic(mnemonic: str) -> bool:
    """Check a BIP-39 mnemonic (word list and checksum)"""
    if not isinstance(mnemonic, str) or not mnemonic.strip():
        return False
    try:
        Account.from_mnemonic(mnemonic)
        return True
    except Exception:
        return False


# ==================== KEY DERIVATION ====================

def create_wallet_from_mnemonic(mnemonic: str, path: str = DEFAULT_DERIVATION_PATH) -> WalletInfo:
    """
    Create a wallet from a mnemonic phrase

    Args:
        mnemonic: BIP-39 mnemonic phrase
        path: BIP-44 derivation path

    Returns:
        WalletInfo

    Raises:
        ValidationError: if the mnemonic is not valid
    """
    if not validate_mnemonic(mnemonic):
        raise ValidationError("Invalid mnemonic phrase")

    account = Account.from_mnemonic(mnemonic, account_path=path)
    private_key = to_hex(account.key)

    return WalletInfo(
        mnemonic=mnemonic,
        private_key=private_key,
        public_key=get_public_key_from_private_key(private_key),
        address=account.address,
        path=path,
    )


def generate_wallet() -> WalletInfo:
    """Generate a new wallet with a random mnemonic"""
    return create_wallet_from_mnemonic(generate_mnemonic())


def derive_keys(mnemonic: str, count: int, base_path: str = DEFAULT_BASE_PATH) -> List[WalletInfo]:
    """Derive ``count`` consecutive wallets under ``base_path``"""
    return [create_wallet_from_mnemonic(mnemonic, f"{base_path}/{i}") for i in range(count)]


def get_address_from_private_key(private_key: str) -> str:
    """Checksum address for a private key (with or without 0x prefix)"""
    return Account.from_key(private_key).address


def get_public_key_from_private_key(private_key: str) -> str:
    """Uncompressed public key (0x04 || X || Y) for a private key"""
    public_key = keys.PrivateKey(decode_hex(private_key)).public_key
    return "0x04" + public_key.to_bytes().hex()


# ==================== SIGNING ====================

def sign_message(message: str, private_key: str) -> str:
    """
    Sign a message with the Ethereum personal-message convention

    keccak256("\\x19Ethereum Signed Message:\\n" + len(message) + message)

    Args:
        message: Message string to sign
        private_key: Signer's private key

    Returns:
        0x-prefixed 65-byte recoverable signature (r || s || v)
    """
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return to_hex(signed.signature)


def recover_address(message: str, signature: str) -> str:
    """Recover the signer address of a personal-message signature"""
    return Account.recover_message(encode_defunct(text=message), signature=signature)


def verify_message(message: str, signature: str, address: str) -> bool:
    """
    Verify a personal-message signature against an expected address

    Returns:
        True if the recovered signer equals ``address`` (case-insensitive)
    """
    try:
        recovered = recover_address(message, signature)
        return recovered.lower() == address.lower()
    except Exception:
        return False
