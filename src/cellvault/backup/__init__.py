"""
Encrypted, versioned backup and restore of vault records.

Backups are portable text files: a version-tagged header followed by an
encoded envelope holding the salt, timestamp, record count, ciphertext and
(for the current format) an HMAC integrity tag. Backups written by older
releases are migrated to the current record schema on restore.

Usage:
    from cellvault.backup import BackupService, LocalFileSink, RestorePolicy

    service = BackupService(store, gate=gate, sink=LocalFileSink(backup_dir))

    # Create a backup file
    result = service.export_backup(password)

    # Restore from it, overwriting records with the same id
    result = service.restore_from_file(
        password, RestorePolicy(overwrite_existing=True), path=result.path
    )
"""

from cellvault.backup.codec import (
    BackupEnvelope,
    BackupInfo,
    decode,
    encode,
    inspect,
    read_metadata,
)
from cellvault.backup.errors import (
    AuthorizationDeniedError,
    BackupError,
    CorruptBackupError,
    CryptoUnavailableError,
    ErrorCode,
    InvalidBackupOrPasswordError,
    InvalidKeyError,
    NoRecordsToBackupError,
    NoRecoverableRecordsError,
    OperationCancelledError,
    PasswordRequiredError,
    StorageFailureError,
    UnsupportedVersionError,
    WrongPasswordError,
)
from cellvault.backup.file_sink import LocalFileSink
from cellvault.backup.interfaces import (
    AllowAllGate,
    AuthorizationGate,
    FileSink,
    RecordStore,
)
from cellvault.backup.migrator import migrate
from cellvault.backup.service import (
    BackupInfoResult,
    BackupResult,
    BackupService,
    RecordFailure,
    RestorePolicy,
    RestoreResult,
)
from cellvault.backup.versions import FormatVersion

__all__ = [
    # Service
    "BackupService",
    "RestorePolicy",
    "BackupResult",
    "RestoreResult",
    "BackupInfoResult",
    "RecordFailure",
    # Codec
    "BackupEnvelope",
    "BackupInfo",
    "FormatVersion",
    "encode",
    "decode",
    "inspect",
    "read_metadata",
    "migrate",
    # Collaborators
    "RecordStore",
    "AuthorizationGate",
    "FileSink",
    "AllowAllGate",
    "LocalFileSink",
    # Errors
    "ErrorCode",
    "BackupError",
    "PasswordRequiredError",
    "NoRecordsToBackupError",
    "InvalidBackupOrPasswordError",
    "WrongPasswordError",
    "CorruptBackupError",
    "UnsupportedVersionError",
    "NoRecoverableRecordsError",
    "CryptoUnavailableError",
    "StorageFailureError",
    "OperationCancelledError",
    "AuthorizationDeniedError",
    "InvalidKeyError",
]
