"""
Vault Cipher Tests
==================
"""

import base64
import json
import re

import pytest

from anam_did.credential_issuer import create_vc, sign_vc
from anam_did.did_manager import create_did
from anam_did.errors import CryptoError, ValidationError
from anam_did.vault import (
    PASSWORD_CHARSET,
    Vault,
    build_paper_voucher,
    decrypt_vault,
    encrypt_vault,
    generate_password,
    open_paper_voucher,
    verify_vault_password,
)
from anam_did.wallet import generate_wallet

B64 = re.compile(r"^[A-Za-z0-9+/=]+$")


def _flip_first_byte(value: str) -> str:
    raw = bytearray(base64.b64decode(value))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestVaultCipher:
    """Test encryption round-trips and tamper detection"""

    def setup_method(self):
        self.secret = "abandon ability able about above absent absorb abstract absurd abuse access accident"
        self.password = "VoucherPassw0rd!"

    def test_round_trip(self):
        vault = encrypt_vault(self.secret, self.password)

        assert decrypt_vault(vault, self.password) == self.secret
        assert decrypt_vault(vault.to_dict(), self.password) == self.secret
        print("✅ Vault round-trip")

    def test_round_trip_unicode(self):
        secret = json.dumps({"name": "Zoë Ŧest 🎉"}, ensure_ascii=False)
        assert decrypt_vault(encrypt_vault(secret, "pässword"), "pässword") == secret

    def test_wire_format(self):
        wire = encrypt_vault(self.secret, self.password).to_dict()

        assert set(wire) == {"ciphertext", "iv", "salt", "authTag"}
        assert all(B64.match(value) for value in wire.values())
        assert len(base64.b64decode(wire["iv"])) == 12
        assert len(base64.b64decode(wire["salt"])) == 16
        assert len(base64.b64decode(wire["authTag"])) == 16

    def test_fresh_salt_and_iv(self):
        first = encrypt_vault(self.secret, self.password)
        second = encrypt_vault(self.secret, self.password)

        assert first.iv != second.iv
        assert first.salt != second.salt
        assert first.ciphertext != second.ciphertext

    def test_wrong_password(self):
        vault = encrypt_vault(self.secret, self.password)

        with pytest.raises(CryptoError, match="Invalid password or corrupted vault"):
            decrypt_vault(vault, "wrong-password")

    @pytest.mark.parametrize("field", ["ciphertext", "iv", "salt", "authTag"])
    def test_any_mutated_byte_fails(self, field):
        wire = encrypt_vault(self.secret, self.password).to_dict()
        wire[field] = _flip_first_byte(wire[field])

        with pytest.raises(CryptoError):
            decrypt_vault(wire, self.password)

    def test_missing_field(self):
        wire = encrypt_vault(self.secret, self.password).to_dict()
        del wire["authTag"]

        with pytest.raises(ValidationError):
            decrypt_vault(wire, self.password)

    def test_invalid_base64(self):
        wire = encrypt_vault(self.secret, self.password).to_dict()
        wire["iv"] = "not*base64!"

        with pytest.raises(ValidationError):
            Vault.from_dict(wire)

    def test_verify_vault_password(self):
        vault = encrypt_vault(self.secret, self.password)

        assert verify_vault_password(vault, self.password)
        assert not verify_vault_password(vault, "nope")
        assert not verify_vault_password({"iv": "x"}, self.password)

    def test_generate_password(self):
        password = generate_password()

        assert len(password) == 16
        assert all(ch in PASSWORD_CHARSET for ch in password)
        assert len(generate_password(32)) == 32
        assert generate_password() != generate_password()


class TestPaperVoucher:
    """Mnemonic vault + credential vault under one password"""

    def setup_method(self):
        self.password = "VoucherPassw0rd!"
        self.user = generate_wallet()
        issuer = generate_wallet()
        issuer_did = create_did("issuer", issuer.address)
        vc = create_vc(issuer_did, create_did("user", self.user.address), "UndpAdminCredential",
                       {"username": "john.doe", "fullName": "John Doe"}, "vc_kyc_voucher1", 730)
        self.vc = sign_vc(vc, issuer.private_key, f"{issuer_did}#keys-1")

    def test_build_voucher(self):
        voucher = build_paper_voucher(self.user.address, self.user.mnemonic, self.vc, self.password)

        assert voucher["address"] == self.user.address
        assert set(voucher["vault"]) == {"ciphertext", "iv", "salt", "authTag"}
        assert voucher["vc"]["id"] == "vc_kyc_voucher1"
        assert voucher["vault"]["iv"] != voucher["vc"]["iv"]
        assert voucher["vault"]["salt"] != voucher["vc"]["salt"]

    def test_open_voucher(self):
        voucher = build_paper_voucher(self.user.address, self.user.mnemonic, self.vc, self.password)
        opened = open_paper_voucher(voucher, self.password)

        assert opened["address"] == self.user.address
        assert opened["mnemonic"] == self.user.mnemonic
        assert opened["vc"] == self.vc
        print("✅ Paper voucher opened")

    def test_open_voucher_wrong_password(self):
        voucher = build_paper_voucher(self.user.address, self.user.mnemonic, self.vc, self.password)

        with pytest.raises(CryptoError):
            open_paper_voucher(voucher, "wrong")

    def test_open_voucher_address_mismatch(self):
        voucher = build_paper_voucher(self.user.address, self.user.mnemonic, self.vc, self.password)
        voucher["address"] = generate_wallet().address

        with pytest.raises(ValidationError):
            open_paper_voucher(voucher, self.password)

    def test_open_voucher_vc_id_mismatch(self):
        voucher = build_paper_voucher(self.user.address, self.user.mnemonic, self.vc, self.password)
        voucher["vc"]["id"] = "vc_kyc_other"

        with pytest.raises(ValidationError):
            open_paper_voucher(voucher, self.password)

    def test_build_requires_vc_id(self):
        with pytest.raises(ValidationError):
            build_paper_voucher(self.user.address, self.user.mnemonic, {"type": []}, self.password)
