"""Cryptographic utilities: bearer-token hashing and secret encryption.

Two unrelated primitives live here:

- Recipient bearer tokens are hashed one-way with Argon2id and can only be
  verified, never recovered.
- The proxy's own service-account token must be recoverable, so it is
  encrypted with AES-256-GCM under a key derived from ENCRYPTION_KEY and
  stored as ``nonce:tag:ciphertext`` (hex).
"""

import logging
import re
import secrets
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from sharegate.core import settings

logger = logging.getLogger(__name__)

# Fixed application salt for passphrase stretching. Changing it makes every
# stored blob undecryptable.
KEY_DERIVATION_SALT = b"delta-salt"
KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class CryptoError(Exception):
    """Base exception for cryptographic operations."""


class InvalidKeyError(CryptoError):
    """Raised when the encryption passphrase is missing."""


class DecryptionError(CryptoError):
    """Raised when a blob is malformed or fails authentication.

    Covers tampered ciphertext, a wrong passphrase and a wrong AAD alike;
    decryption never returns unauthenticated plaintext.
    """


# ---------------------------------------------------------------------------
# One-way token hashing
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_token_hasher() -> PasswordHasher:
    """Argon2id hasher with the configured work factor."""
    return PasswordHasher(
        time_cost=settings.token_hash_time_cost,
        memory_cost=settings.token_hash_memory_cost,
        parallelism=settings.token_hash_parallelism,
        hash_len=32,
        salt_len=16,
    )


def hash_secret(plaintext: str) -> str:
    """Hash a bearer secret using Argon2id (random salt per call)."""
    return get_token_hasher().hash(plaintext)


def verify_secret(plaintext: str, secret_hash: str) -> bool:
    """Verify a bearer secret against its hash using constant-time comparison."""
    try:
        return get_token_hasher().verify(secret_hash, plaintext)
    except (VerificationError, InvalidHashError):
        return False


# ---------------------------------------------------------------------------
# Reversible secret encryption
# ---------------------------------------------------------------------------


@lru_cache(maxsize=8)
def derive_key(passphrase: str) -> bytes:
    """Derive a 256-bit AES key from a passphrase.

    A 64-character hex passphrase is taken as the raw key. Anything else is
    stretched with scrypt (N=2**14, r=8, p=1) and the fixed salt.
    """
    if not passphrase:
        raise InvalidKeyError("Encryption passphrase must not be empty")

    if _HEX_KEY_RE.match(passphrase):
        return bytes.fromhex(passphrase)

    kdf = Scrypt(salt=KEY_DERIVATION_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str, aad: str | None = None) -> str:
    """Encrypt a string with AES-256-GCM.

    Args:
        plaintext: The string to encrypt.
        passphrase: Secret the key is derived from.
        aad: Optional Associated Authenticated Data binding the blob to a
             context (e.g. "service_account:system"). The same value must be
             passed to decrypt().

    Returns: ``nonce_hex:tag_hex:ciphertext_hex``
    """
    key = derive_key(passphrase)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    aad_bytes = aad.encode("utf-8") if aad else None

    # AESGCM appends the 16-byte tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), aad_bytes)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(blob: str, passphrase: str, aad: str | None = None) -> str:
    """Decrypt a ``nonce:tag:ciphertext`` blob produced by encrypt().

    Raises:
        DecryptionError: If the blob is malformed or authentication fails.
        InvalidKeyError: If the passphrase is empty.
    """
    parts = blob.split(":")
    if len(parts) != 3:
        raise DecryptionError(
            f"Invalid encrypted format: expected 3 colon-delimited parts, got {len(parts)}"
        )

    try:
        nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except ValueError as e:
        raise DecryptionError(f"Invalid encrypted format: {e}") from e

    if len(tag) != TAG_LENGTH:
        raise DecryptionError(f"Invalid authentication tag length: {len(tag)} bytes")

    key = derive_key(passphrase)
    aad_bytes = aad.encode("utf-8") if aad else None

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, aad_bytes)
    except InvalidTag as e:
        raise DecryptionError("Decryption failed: authentication tag mismatch") from e
    except ValueError as e:
        # Nonce of unsupported length
        raise DecryptionError(f"Decryption failed: {e}") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted value is not valid UTF-8") from e
