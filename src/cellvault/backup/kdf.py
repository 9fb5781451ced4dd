"""
Password-based key derivation for backup envelopes.

Current backups derive key material with PBKDF2-HMAC-SHA256. Backups written
by releases before format 1.5 used a plain iterated SHA-256 chain, which is
kept here only so those files can still be opened.

Security parameters:
    - DEFAULT_KDF_ROUNDS keeps derivation well under a second on a phone
    - Salt is random per backup and stored in the envelope
    - 64 bytes are derived for the current format and split into an
      encryption key and an independent MAC key
"""

from __future__ import annotations

import threading

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cellvault.backup.errors import (
    CryptoUnavailableError,
    OperationCancelledError,
    PasswordRequiredError,
)

DEFAULT_KDF_ROUNDS = 10_000
LEGACY_KDF_ROUNDS = 10_000
KEY_LENGTH = 32  # 256 bits
SALT_LENGTH = 16


def _check_inputs(password: str, rounds: int, cancel: threading.Event | None) -> None:
    if not password:
        raise PasswordRequiredError("Password must not be empty")
    if rounds < 1:
        raise ValueError(f"rounds must be at least 1, got {rounds}")
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Key derivation cancelled before start")


def derive_key(
    password: str,
    salt: bytes,
    rounds: int = DEFAULT_KDF_ROUNDS,
    length: int = KEY_LENGTH,
    cancel: threading.Event | None = None,
) -> bytes:
    """
    Derive key material from a password and salt using PBKDF2-HMAC-SHA256.

    The result is deterministic for the same (password, salt, rounds, length).
    Cancellation is only honoured before derivation starts.

    Args:
        password: User-provided backup password.
        salt: Random per-backup salt.
        rounds: PBKDF2 iteration count (at least 1).
        length: Number of key bytes to produce.
        cancel: Optional event; if already set, derivation is not started.

    Returns:
        Derived key bytes.

    Raises:
        PasswordRequiredError: If the password is empty.
        ValueError: If rounds is less than 1.
        OperationCancelledError: If cancel was set before starting.
        CryptoUnavailableError: If the hash backend cannot be used.
    """
    _check_inputs(password, rounds, cancel)

    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=rounds,
        )
        return kdf.derive(password.encode("utf-8"))
    except UnsupportedAlgorithm as e:
        raise CryptoUnavailableError(f"PBKDF2-HMAC-SHA256 unavailable: {e}") from e


def derive_legacy_key(
    password: str,
    salt: bytes,
    rounds: int = LEGACY_KDF_ROUNDS,
    cancel: threading.Event | None = None,
) -> bytes:
    """
    Derive a key with the iterated-hash scheme of pre-1.5 backups.

    seed = password || salt, then seed = SHA256(seed) repeated ``rounds``
    times. The final 32-byte digest is the key.
    """
    _check_inputs(password, rounds, cancel)

    seed = password.encode("utf-8") + salt
    try:
        for _ in range(rounds):
            digest = hashes.Hash(hashes.SHA256())
            digest.update(seed)
            seed = digest.finalize()
    except UnsupportedAlgorithm as e:
        raise CryptoUnavailableError(f"SHA-256 unavailable: {e}") from e
    return seed


def split_key(material: bytes) -> tuple[bytes, bytes]:
    """Split derived material into (encryption_key, mac_key) halves."""
    if len(material) != 2 * KEY_LENGTH:
        raise ValueError(
            f"Expected {2 * KEY_LENGTH} bytes of key material, got {len(material)}"
        )
    return material[:KEY_LENGTH], material[KEY_LENGTH:]
