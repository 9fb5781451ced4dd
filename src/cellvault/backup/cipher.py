"""
Keystream cipher used for backup payloads.

The key is cycled over the data and combined with XOR, so encrypt and
decrypt are the same transform. The cipher is not authenticated: decrypting
with the wrong key yields garbage rather than an error. Callers must verify
integrity (current format) or validate the parsed result (legacy formats).
"""

from __future__ import annotations

from itertools import cycle

from cellvault.backup.errors import InvalidKeyError


def _xor_keystream(data: bytes, key: bytes) -> bytes:
    if not key:
        raise InvalidKeyError("Cipher key must not be empty")
    if not data:
        return b""
    return bytes(b ^ k for b, k in zip(data, cycle(key)))


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt plaintext with the cycled key."""
    return _xor_keystream(plaintext, key)


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt ciphertext produced by :func:`encrypt` with the same key."""
    return _xor_keystream(ciphertext, key)
