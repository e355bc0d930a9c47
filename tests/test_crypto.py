"""Tests for token hashing and secret encryption."""

import pytest

from sharegate.services.crypto import (
    DecryptionError,
    InvalidKeyError,
    decrypt,
    derive_key,
    encrypt,
    hash_secret,
    verify_secret,
)

HEX_KEY = "0" * 64


class TestTokenHashing:
    """Test suite for Argon2id token hashing."""

    def test_hash_verifies(self):
        secret = "f" * 64
        hashed = hash_secret(secret)
        assert hashed.startswith("$argon2id$")
        assert verify_secret(secret, hashed)

    def test_hash_is_salted(self):
        """Same secret hashes differently every time."""
        assert hash_secret("same-secret") != hash_secret("same-secret")

    def test_wrong_secret_fails(self):
        hashed = hash_secret("right")
        assert not verify_secret("wrong", hashed)

    def test_garbage_hash_fails_without_raising(self):
        assert not verify_secret("anything", "not-an-argon2-hash")


class TestEncryption:
    """Test suite for AES-256-GCM encryption."""

    def test_encrypt_decrypt_roundtrip(self):
        plaintext = "service-account-token"
        blob = encrypt(plaintext, HEX_KEY, aad="service_account:system")
        assert decrypt(blob, HEX_KEY, aad="service_account:system") == plaintext

    def test_blob_format(self):
        """nonce:tag:ciphertext, hex encoded, 12-byte nonce and 16-byte tag."""
        nonce, tag, ciphertext = encrypt("abc", HEX_KEY).split(":")
        assert len(bytes.fromhex(nonce)) == 12
        assert len(bytes.fromhex(tag)) == 16
        assert len(bytes.fromhex(ciphertext)) == 3

    def test_encrypt_produces_different_output(self):
        """Random nonce per call."""
        assert encrypt("Same message", HEX_KEY) != encrypt("Same message", HEX_KEY)

    def test_passphrase_is_stretched(self):
        blob = encrypt("secret", "pass")
        assert decrypt(blob, "pass") == "secret"
        assert derive_key("pass") != b"pass".ljust(32, b"\0")

    def test_wrong_passphrase_fails(self):
        blob = encrypt("secret", "passphrase-one")
        with pytest.raises(DecryptionError):
            decrypt(blob, "passphrase-two")

    def test_wrong_aad_fails(self):
        blob = encrypt("secret", HEX_KEY, aad="service_account:system")
        with pytest.raises(DecryptionError):
            decrypt(blob, HEX_KEY, aad="service_account:other")

    def test_missing_aad_fails(self):
        blob = encrypt("secret", HEX_KEY, aad="service_account:system")
        with pytest.raises(DecryptionError):
            decrypt(blob, HEX_KEY)

    def test_tampered_ciphertext_fails(self):
        nonce, tag, ciphertext = encrypt("secret value", HEX_KEY).split(":")
        flipped = bytearray(bytes.fromhex(ciphertext))
        flipped[0] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(f"{nonce}:{tag}:{flipped.hex()}", HEX_KEY)

    def test_tampered_tag_fails(self):
        nonce, tag, ciphertext = encrypt("secret value", HEX_KEY).split(":")
        bad_tag = ("0" if tag[0] != "0" else "1") + tag[1:]
        with pytest.raises(DecryptionError):
            decrypt(f"{nonce}:{bad_tag}:{ciphertext}", HEX_KEY)

    @pytest.mark.parametrize(
        "blob",
        [
            "not-a-blob",
            "aa:bb",
            "aa:bb:cc:dd",
            "zz:" + "00" * 16 + ":00",
            "00" * 12 + ":" + "00" * 8 + ":00",
        ],
    )
    def test_malformed_blob_fails(self, blob):
        with pytest.raises(DecryptionError):
            decrypt(blob, HEX_KEY)


class TestKeyDerivation:
    """Test encryption key derivation."""

    def test_hex_key_used_raw(self):
        assert derive_key("ab" * 32) == bytes.fromhex("ab" * 32)

    def test_passphrase_derives_32_bytes(self):
        key = derive_key("a passphrase that is not hex")
        assert len(key) == 32
        assert key == derive_key("a passphrase that is not hex")

    def test_empty_passphrase_raises(self):
        with pytest.raises(InvalidKeyError):
            derive_key("")
