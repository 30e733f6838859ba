"""Tests for the credential vault envelope format and key handling."""

import base64

import pytest

from shipnotes.core.vault import CredentialVault, generate_webhook_secret
from shipnotes.exceptions import InvalidEnvelopeError, TamperedCiphertextError, VaultKeyError

KEY = base64.b64encode(b"0" * 32).decode()


class TestKeyValidation:

    def test_missing_key(self):
        with pytest.raises(VaultKeyError):
            CredentialVault("")

    def test_not_base64(self):
        with pytest.raises(VaultKeyError):
            CredentialVault("not base64 !!")

    def test_wrong_length(self):
        with pytest.raises(VaultKeyError):
            CredentialVault(base64.b64encode(b"short").decode())


class TestEnvelope:

    def test_roundtrip(self):
        vault = CredentialVault(KEY)
        envelope = vault.encrypt("ghp_secret")
        assert vault.decrypt(envelope) == "ghp_secret"

    def test_envelope_shape(self):
        iv, tag, ciphertext = CredentialVault(KEY).encrypt("ghp_secret").split(":")
        assert len(bytes.fromhex(iv)) == 16
        assert len(bytes.fromhex(tag)) == 16
        assert len(bytes.fromhex(ciphertext)) == len("ghp_secret")

    def test_fresh_iv_per_encryption(self):
        vault = CredentialVault(KEY)
        assert vault.encrypt("same") != vault.encrypt("same")

    @pytest.mark.parametrize("envelope", ["", "abc", "aa:bb", "zz:zz:zz", "aa:bb:cc:dd"])
    def test_malformed_envelope(self, envelope):
        with pytest.raises(InvalidEnvelopeError, match="Invalid encrypted token format"):
            CredentialVault(KEY).decrypt(envelope)

    def test_tampered_ciphertext(self):
        vault = CredentialVault(KEY)
        iv, tag, ciphertext = vault.encrypt("ghp_secret").split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0x01, "02x") + ciphertext[2:]
        with pytest.raises(TamperedCiphertextError):
            vault.decrypt(f"{iv}:{tag}:{flipped}")

    def test_other_key_cannot_decrypt(self):
        envelope = CredentialVault(KEY).encrypt("ghp_secret")
        other = CredentialVault(base64.b64encode(b"1" * 32).decode())
        with pytest.raises(TamperedCiphertextError):
            other.decrypt(envelope)

    def test_decrypt_optional(self):
        vault = CredentialVault(KEY)
        assert vault.decrypt_optional(None) is None
        assert vault.decrypt_optional(vault.encrypt("x")) == "x"


def test_webhook_secret_is_64_hex_chars():
    secret = generate_webhook_secret()
    assert len(secret) == 64
    int(secret, 16)
