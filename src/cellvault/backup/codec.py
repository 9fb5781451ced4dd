"""
Backup envelope encoding and decoding.

Wire format (ASCII text):

    CELLVAULT_BACKUP_V<major>.<minor>:<base64 of JSON document>

The JSON document holds the format version, the random salt, the creation
timestamp, the record count, the KDF round count, the ciphertext and, for
the current format, an HMAC-SHA256 integrity tag. Salt, ciphertext and tag
are base64 strings.

Decryption pipeline for the current format:
    derive 64 bytes (PBKDF2) -> verify tag with the MAC half -> decrypt with
    the encryption half -> parse JSON -> check record count -> migrate

Legacy formats (1.2-1.4) carry no tag. They are decrypted with the legacy
iterated-hash key and validated by parsing, so a wrong password and a
damaged file cannot be told apart.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, hmac

from cellvault.backup import cipher
from cellvault.backup.errors import (
    CorruptBackupError,
    CryptoUnavailableError,
    InvalidBackupOrPasswordError,
    PasswordRequiredError,
    WrongPasswordError,
)
from cellvault.backup.kdf import (
    DEFAULT_KDF_ROUNDS,
    KEY_LENGTH,
    LEGACY_KDF_ROUNDS,
    SALT_LENGTH,
    derive_key,
    derive_legacy_key,
    split_key,
)
from cellvault.backup.migrator import migrate, raw_record_count
from cellvault.backup.versions import HEADER_PREFIX, FormatVersion
from cellvault.storage.models import Record

logger = logging.getLogger(__name__)

MAX_BACKUP_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB


def _canonical_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise CorruptBackupError(f"Envelope field '{field_name}' must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CorruptBackupError(f"Envelope field '{field_name}' is not valid base64") from e


def _require_int(document: dict[str, Any], key: str, minimum: int) -> int:
    value = document.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise CorruptBackupError(f"Envelope field '{key}' must be an integer >= {minimum}")
    return value


@dataclass(frozen=True)
class BackupEnvelope:
    """
    The on-disk unit of a backup.

    Attributes:
        format_version: Backup format version (not the app version).
        salt: Random per-backup salt for key derivation.
        timestamp: Creation time, ISO-8601.
        record_count: Number of records in the payload, checked after decryption.
        ciphertext: Encrypted payload.
        kdf_rounds: Iteration count used to derive the key.
        mac: HMAC-SHA256 tag over header fields and ciphertext (current format).
    """

    format_version: FormatVersion
    salt: bytes
    timestamp: str
    record_count: int
    ciphertext: bytes
    kdf_rounds: int = DEFAULT_KDF_ROUNDS
    mac: bytes | None = field(default=None, repr=False)

    def metadata(self) -> dict[str, Any]:
        """Header fields covered by the integrity tag."""
        return {
            "formatVersion": self.format_version.value,
            "salt": _b64encode(self.salt),
            "timestamp": self.timestamp,
            "recordCount": self.record_count,
            "kdfRounds": self.kdf_rounds,
        }

    def to_bytes(self) -> bytes:
        """Serialize to the portable file representation."""
        document = self.metadata()
        document["ciphertext"] = _b64encode(self.ciphertext)
        if self.mac is not None:
            document["mac"] = _b64encode(self.mac)
        body = base64.b64encode(_canonical_json(document))
        return self.format_version.header.encode("ascii") + body

    @classmethod
    def from_bytes(cls, data: bytes | str) -> BackupEnvelope:
        """
        Parse the portable file representation.

        The header version is checked first, so an unknown or future version
        is reported as such without looking at the rest of the file.

        Raises:
            UnsupportedVersionError: If the header names an unknown version.
            CorruptBackupError: If the file is not a structurally valid envelope.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > MAX_BACKUP_FILE_SIZE:
            raise CorruptBackupError(
                f"Backup file is too large ({len(data):,} bytes, "
                f"limit {MAX_BACKUP_FILE_SIZE:,})"
            )

        try:
            text = data.decode("ascii").strip()
        except UnicodeDecodeError as e:
            raise CorruptBackupError("Backup file is not ASCII text") from e

        if not text.startswith(HEADER_PREFIX) or ":" not in text:
            raise CorruptBackupError("Not a CellVault backup file")

        version_text, _, body = text[len(HEADER_PREFIX):].partition(":")
        version = FormatVersion.parse(version_text)

        try:
            document = json.loads(base64.b64decode(body, validate=True))
        except (binascii.Error, ValueError) as e:
            raise CorruptBackupError("Backup body is not valid encoded JSON") from e
        if not isinstance(document, dict):
            raise CorruptBackupError("Backup body is not a JSON object")

        if document.get("formatVersion") != version.value:
            raise CorruptBackupError(
                f"Header version {version.value} does not match body version "
                f"{document.get('formatVersion')!r}"
            )

        salt = _b64decode(document.get("salt"), "salt")
        if not salt:
            raise CorruptBackupError("Envelope salt is empty")
        timestamp = document.get("timestamp")
        if not isinstance(timestamp, str):
            raise CorruptBackupError("Envelope field 'timestamp' must be a string")

        if "kdfRounds" in document:
            kdf_rounds = _require_int(document, "kdfRounds", 1)
        else:
            kdf_rounds = LEGACY_KDF_ROUNDS

        mac = None
        if version.has_integrity_tag:
            mac = _b64decode(document.get("mac"), "mac")

        return cls(
            format_version=version,
            salt=salt,
            timestamp=timestamp,
            record_count=_require_int(document, "recordCount", 0),
            ciphertext=_b64decode(document.get("ciphertext"), "ciphertext"),
            kdf_rounds=kdf_rounds,
            mac=mac,
        )


@dataclass
class BackupInfo:
    """Summary of a backup, with record names when the password was supplied."""

    format_version: str
    timestamp: str
    record_count: int
    record_names: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _mac_input(envelope: BackupEnvelope) -> bytes:
    return (
        envelope.format_version.header.encode("ascii")
        + _canonical_json(envelope.metadata())
        + b"\x00"
        + envelope.ciphertext
    )


def _compute_mac(envelope: BackupEnvelope, mac_key: bytes) -> bytes:
    try:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(_mac_input(envelope))
        return h.finalize()
    except UnsupportedAlgorithm as e:
        raise CryptoUnavailableError(f"HMAC-SHA256 unavailable: {e}") from e


def _verify_mac(envelope: BackupEnvelope, mac_key: bytes) -> None:
    try:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(_mac_input(envelope))
        h.verify(envelope.mac or b"")
    except InvalidSignature as e:
        raise WrongPasswordError(
            "Integrity check failed: wrong password or modified backup"
        ) from e
    except UnsupportedAlgorithm as e:
        raise CryptoUnavailableError(f"HMAC-SHA256 unavailable: {e}") from e


def _require_password(password: str | None) -> str:
    if password is None or not password.strip():
        raise PasswordRequiredError("A password is required")
    return password


def seal_payload(
    payload: dict[str, Any],
    password: str,
    version: FormatVersion,
    rounds: int | None = None,
    salt: bytes | None = None,
    timestamp: str | None = None,
    cancel: threading.Event | None = None,
) -> BackupEnvelope:
    """
    Encrypt an already-shaped payload into an envelope of the given version.

    The current format gets PBKDF2 keys and an integrity tag; older formats
    are sealed the way their releases wrote them.
    """
    password = _require_password(password)
    salt = salt if salt is not None else secrets.token_bytes(SALT_LENGTH)
    timestamp = timestamp or datetime.now(UTC).isoformat()
    record_count = raw_record_count(payload, version)
    plaintext = _canonical_json(payload)

    if version.has_integrity_tag:
        rounds = rounds or DEFAULT_KDF_ROUNDS
        enc_key, mac_key = split_key(
            derive_key(password, salt, rounds, length=2 * KEY_LENGTH, cancel=cancel)
        )
    else:
        rounds = rounds or LEGACY_KDF_ROUNDS
        enc_key = derive_legacy_key(password, salt, rounds, cancel=cancel)
        mac_key = None

    envelope = BackupEnvelope(
        format_version=version,
        salt=salt,
        timestamp=timestamp,
        record_count=record_count,
        ciphertext=cipher.encrypt(plaintext, enc_key),
        kdf_rounds=rounds,
    )
    if mac_key is not None:
        envelope = replace(envelope, mac=_compute_mac(envelope, mac_key))
    return envelope


def encode(
    records: list[Record],
    password: str,
    rounds: int = DEFAULT_KDF_ROUNDS,
    cancel: threading.Event | None = None,
) -> BackupEnvelope:
    """
    Encrypt records into a current-format envelope.

    Records are serialized as canonical JSON keyed by id. An empty record
    list is valid and produces an envelope with ``record_count == 0``.

    Raises:
        PasswordRequiredError: If the password is empty or blank.
        ValueError: If two records share an id.
        CryptoUnavailableError: If the crypto backend cannot be used.
    """
    _require_password(password)

    serialized: dict[str, Any] = {}
    for record in records:
        if record.id in serialized:
            raise ValueError(f"Duplicate record id in backup: {record.id}")
        serialized[record.id] = record.to_dict()

    version = FormatVersion.current()
    payload = {"formatVersion": version.value, "records": serialized}
    envelope = seal_payload(payload, password, version, rounds=rounds, cancel=cancel)
    logger.info(f"Encoded backup with {envelope.record_count} records (format {version.value})")
    return envelope


def _open_payload(
    envelope: BackupEnvelope,
    password: str,
    cancel: threading.Event | None,
) -> dict[str, Any]:
    version = envelope.format_version
    failure: type[InvalidBackupOrPasswordError]

    if version.has_integrity_tag:
        enc_key, mac_key = split_key(
            derive_key(
                password,
                envelope.salt,
                envelope.kdf_rounds,
                length=2 * KEY_LENGTH,
                cancel=cancel,
            )
        )
        _verify_mac(envelope, mac_key)
        failure = CorruptBackupError
    else:
        enc_key = derive_legacy_key(password, envelope.salt, envelope.kdf_rounds, cancel=cancel)
        failure = InvalidBackupOrPasswordError

    plaintext = cipher.decrypt(envelope.ciphertext, enc_key)
    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise failure("Backup payload could not be parsed") from e
    if not isinstance(payload, dict):
        raise failure("Backup payload is not an object")

    if version.is_current and payload.get("formatVersion") != version.value:
        raise failure("Backup payload version does not match its envelope")

    try:
        count = raw_record_count(payload, version)
    except InvalidBackupOrPasswordError as e:
        raise failure(str(e)) from e
    if count != envelope.record_count:
        raise failure(
            f"Backup holds {count} records but its header declares {envelope.record_count}"
        )
    return payload


def decode(
    envelope: BackupEnvelope,
    password: str,
    cancel: threading.Event | None = None,
) -> tuple[list[Record], list[str]]:
    """
    Decrypt an envelope and return current-schema records.

    Older payloads are migrated; migration warnings are returned alongside
    the records.

    Raises:
        PasswordRequiredError: If the password is empty or blank.
        WrongPasswordError: If the integrity tag does not verify (current format).
        CorruptBackupError: If a verified payload is malformed.
        InvalidBackupOrPasswordError: If a legacy payload cannot be parsed.
        UnsupportedVersionError: If the envelope version is unknown.
        NoRecoverableRecordsError: If no record survives migration.
    """
    password = _require_password(password)
    payload = _open_payload(envelope, password, cancel)
    records, warnings = migrate(
        payload, envelope.format_version, default_timestamp=envelope.timestamp
    )
    logger.info(
        f"Decoded backup with {len(records)} records "
        f"(format {envelope.format_version.value}, {len(warnings)} warnings)"
    )
    return records, warnings


def read_metadata(envelope: BackupEnvelope) -> BackupInfo:
    """Summarize an envelope without decrypting it."""
    return BackupInfo(
        format_version=envelope.format_version.value,
        timestamp=envelope.timestamp,
        record_count=envelope.record_count,
    )


def inspect(
    envelope: BackupEnvelope,
    password: str,
    cancel: threading.Event | None = None,
) -> BackupInfo:
    """Decrypt an envelope and summarize it, including record names."""
    records, warnings = decode(envelope, password, cancel=cancel)
    info = read_metadata(envelope)
    info.record_names = [record.name for record in records]
    info.warnings = warnings
    return info
