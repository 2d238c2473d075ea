"""
Server-side credential encryption using PBKDF2 + AES-GCM.

Ciphertext layout is base64(iv || tag || ciphertext) with a fixed
associated-data label, so a blob produced for linked credentials does not
decrypt as anything else.
"""

import base64
import hashlib
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# PBKDF2 configuration
PBKDF2_ITERATIONS = 100000
PBKDF2_HASH = 'sha256'
KEY_LENGTH_BYTES = 32  # 256 bits

# AES-GCM configuration
IV_LENGTH_BYTES = 16   # 128 bits
TAG_LENGTH_BYTES = 16  # 128 bits
ASSOCIATED_DATA = b'campuslink_credentials'

FINGERPRINT_LENGTH = 16


def derive_key(secret: str, user_id: str) -> bytes:
    """
    Derive a 256-bit AES key from the server secret and a user id.

    The user id acts as the salt, so every user gets a distinct key.
    Keys are recomputed on every call and never stored.

    Args:
        secret: The server-held credential secret
        user_id: The user the credentials belong to

    Returns:
        32-byte key suitable for AES-256-GCM
    """
    return hashlib.pbkdf2_hmac(
        PBKDF2_HASH,
        secret.encode('utf-8'),
        user_id.encode('utf-8'),
        PBKDF2_ITERATIONS,
        dklen=KEY_LENGTH_BYTES
    )


def key_fingerprint(key: bytes) -> str:
    """Short, non-reversible identifier of a key (sha256 hex prefix)."""
    return hashlib.sha256(key).hexdigest()[:FINGERPRINT_LENGTH]


def encrypt(key: bytes, plaintext: str) -> str:
    """
    Encrypt plaintext using AES-256-GCM.

    Args:
        key: 32-byte encryption key
        plaintext: String to encrypt

    Returns:
        Base64 of iv || tag || ciphertext
    """
    iv = os.urandom(IV_LENGTH_BYTES)

    aesgcm = AESGCM(key)
    # cryptography returns ciphertext || tag
    sealed = aesgcm.encrypt(iv, plaintext.encode('utf-8'), ASSOCIATED_DATA)
    ciphertext, tag = sealed[:-TAG_LENGTH_BYTES], sealed[-TAG_LENGTH_BYTES:]

    return base64.b64encode(iv + tag + ciphertext).decode('ascii')


def decrypt(key: bytes, encrypted_base64: str) -> str:
    """
    Decrypt a blob produced by :func:`encrypt`.

    Args:
        key: 32-byte encryption key
        encrypted_base64: Base64 of iv || tag || ciphertext

    Returns:
        Decrypted plaintext string

    Raises:
        cryptography.exceptions.InvalidTag if the key is wrong or the
        data was tampered with; ValueError if the blob is truncated.
    """
    combined = base64.b64decode(encrypted_base64)
    if len(combined) < IV_LENGTH_BYTES + TAG_LENGTH_BYTES:
        raise ValueError("Encrypted blob is too short")

    iv = combined[:IV_LENGTH_BYTES]
    tag = combined[IV_LENGTH_BYTES:IV_LENGTH_BYTES + TAG_LENGTH_BYTES]
    ciphertext = combined[IV_LENGTH_BYTES + TAG_LENGTH_BYTES:]

    aesgcm = AESGCM(key)
    plaintext = aesgcm.decrypt(iv, ciphertext + tag, ASSOCIATED_DATA)

    return plaintext.decode('utf-8')
