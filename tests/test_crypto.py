"""Tests for webhook token encryption at rest."""

from __future__ import annotations

import base64

import pytest

from anonbot.services.crypto import (
    ENCRYPTED_TOKEN_PREFIX,
    NONCE_SIZE,
    TAG_SIZE,
    DecryptionError,
    TokenCipher,
)


class TestEncryption:
    def test_round_trip(self):
        cipher = TokenCipher("secret")
        stored = cipher.encrypt("abc123")
        assert stored.startswith(ENCRYPTED_TOKEN_PREFIX)
        assert "abc123" not in stored
        assert cipher.decrypt(stored) == "abc123"

    def test_nonce_is_random(self):
        cipher = TokenCipher("secret")
        assert cipher.encrypt("abc123") != cipher.encrypt("abc123")

    def test_payload_layout(self):
        stored = TokenCipher("secret").encrypt("abc123")
        raw = base64.b64decode(stored[len(ENCRYPTED_TOKEN_PREFIX):])
        assert len(raw) == NONCE_SIZE + TAG_SIZE + len("abc123")

    def test_disabled_cipher_stores_plaintext(self):
        cipher = TokenCipher(None)
        assert not cipher.enabled
        assert cipher.encrypt("abc123") == "abc123"
        assert cipher.decrypt("abc123") == "abc123"


class TestLegacyAndCorruption:
    def test_plaintext_passes_through(self):
        cipher = TokenCipher("secret")
        assert cipher.decrypt("legacy-token") == "legacy-token"
        assert cipher.needs_migration("legacy-token")

    def test_encrypted_value_needs_no_migration(self):
        cipher = TokenCipher("secret")
        assert not cipher.needs_migration(cipher.encrypt("abc"))

    def test_disabled_cipher_never_migrates(self):
        assert not TokenCipher(None).needs_migration("legacy-token")

    def test_wrong_key_fails(self):
        stored = TokenCipher("secret").encrypt("abc123")
        with pytest.raises(DecryptionError):
            TokenCipher("other").decrypt(stored)

    def test_encrypted_value_without_key_fails(self):
        stored = TokenCipher("secret").encrypt("abc123")
        with pytest.raises(DecryptionError):
            TokenCipher(None).decrypt(stored)

    def test_tampered_ciphertext_fails(self):
        cipher = TokenCipher("secret")
        raw = bytearray(base64.b64decode(cipher.encrypt("abc123")[len(ENCRYPTED_TOKEN_PREFIX):]))
        raw[-1] ^= 0x01
        tampered = ENCRYPTED_TOKEN_PREFIX + base64.b64encode(bytes(raw)).decode()
        with pytest.raises(DecryptionError):
            cipher.decrypt(tampered)

    def test_truncated_payload_fails(self):
        short = ENCRYPTED_TOKEN_PREFIX + base64.b64encode(b"x" * 10).decode()
        with pytest.raises(DecryptionError, match="truncated"):
            TokenCipher("secret").decrypt(short)

    def test_bad_base64_fails(self):
        with pytest.raises(DecryptionError, match="base64"):
            TokenCipher("secret").decrypt(ENCRYPTED_TOKEN_PREFIX + "!!not base64!!")
