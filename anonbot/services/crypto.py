"""Webhook token encryption at rest – AES-256-GCM with a random nonce.

Stored format: ``enc:`` + base64(nonce[12] ‖ tag[16] ‖ ciphertext). Values
without the prefix are legacy plaintext tokens written before encryption was
enabled; they pass through unchanged and are re-encrypted by the caller.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENCRYPTED_TOKEN_PREFIX = "enc:"
NONCE_SIZE = 12
TAG_SIZE = 16


class DecryptionError(Exception):
    """A stored ``enc:`` token could not be turned back into a usable token."""


class TokenCipher:
    """Encrypt/decrypt webhook tokens; a no-op codec when *secret* is None."""

    def __init__(self, secret: str | None) -> None:
        self._aead: AESGCM | None = None
        if secret:
            key = hashlib.sha256(secret.encode("utf-8")).digest()
            self._aead = AESGCM(key)

    @property
    def enabled(self) -> bool:
        return self._aead is not None

    @staticmethod
    def is_encrypted(stored: str) -> bool:
        return stored.startswith(ENCRYPTED_TOKEN_PREFIX)

    def encrypt(self, token: str) -> str:
        if self._aead is None:
            return token
        nonce = os.urandom(NONCE_SIZE)
        # cryptography appends the tag to the ciphertext; store it up front
        sealed = self._aead.encrypt(nonce, token.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        payload = base64.b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{ENCRYPTED_TOKEN_PREFIX}{payload}"

    def decrypt(self, stored: str) -> str:
        """Return the plaintext token.

        Legacy plaintext values are returned unchanged. Raises
        ``DecryptionError`` when an ``enc:`` value cannot be decrypted.
        """
        if not self.is_encrypted(stored):
            return stored
        if self._aead is None:
            raise DecryptionError("token is encrypted but no secret is configured")

        try:
            data = base64.b64decode(stored[len(ENCRYPTED_TOKEN_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("token payload is not valid base64") from e
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("token payload is truncated")

        nonce = data[:NONCE_SIZE]
        tag = data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = data[NONCE_SIZE + TAG_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("token failed authentication") from e
        return plain.decode("utf-8")

    def needs_migration(self, stored: str) -> bool:
        """True for a legacy plaintext value that should be re-stored encrypted."""
        return self.enabled and not self.is_encrypted(stored)
