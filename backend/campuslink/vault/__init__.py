"""Vault module for server-side credential encryption."""

from .crypto import derive_key, encrypt, decrypt, key_fingerprint
from .store import CredentialVault

__all__ = [
    'derive_key',
    'encrypt',
    'decrypt',
    'key_fingerprint',
    'CredentialVault',
]
