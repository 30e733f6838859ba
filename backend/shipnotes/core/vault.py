"""Credential vault: authenticated encryption for third-party secrets at rest.

Envelope format: ``<iv hex>:<auth tag hex>:<ciphertext hex>`` using
AES-256-GCM with a fresh 16-byte IV per encryption. Every segment is
recoverable on its own so a truncated or tampered value is rejected before
the cipher ever runs.

The key is provisioned out of band as base64 of exactly 32 bytes
(``INTEGRATION_ENCRYPTION_KEY``). There is no key versioning: rotating the
key makes every stored envelope undecryptable.
"""

import base64
import binascii
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import InvalidEnvelopeError, TamperedCiphertextError, VaultKeyError

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


class CredentialVault:
    """Encrypts and decrypts integration tokens and webhook secrets."""

    def __init__(self, encoded_key: str):
        self._aead = AESGCM(self._decode_key(encoded_key))

    @staticmethod
    def _decode_key(encoded_key: str) -> bytes:
        if not encoded_key:
            raise VaultKeyError(
                "INTEGRATION_ENCRYPTION_KEY is not set. "
                "Generate one with: openssl rand -base64 32"
            )
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise VaultKeyError("INTEGRATION_ENCRYPTION_KEY is not valid base64") from e
        if len(key) != KEY_LENGTH:
            raise VaultKeyError(
                f"INTEGRATION_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}"
            )
        return key

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        parts = envelope.split(":") if envelope else []
        if len(parts) != 3:
            raise InvalidEnvelopeError("Invalid encrypted token format")

        try:
            iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as e:
            raise InvalidEnvelopeError("Invalid encrypted token format") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise InvalidEnvelopeError("Invalid encrypted token format")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise TamperedCiphertextError("Encrypted token failed authentication") from e
        return plaintext.decode("utf-8")

    def decrypt_optional(self, envelope: str | None) -> str | None:
        """Decrypt a nullable column value."""
        if not envelope:
            return None
        return self.decrypt(envelope)


def generate_webhook_secret() -> str:
    """64 hex characters (32 random bytes)."""
    return secrets.token_hex(32)
