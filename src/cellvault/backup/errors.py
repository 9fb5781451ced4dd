"""
Error taxonomy for the backup subsystem.

Every error carries a stable ``code`` that hosts can switch on, and a
``user_message`` suitable for showing in the UI. The technical detail lives
in the exception message itself.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Stable identifiers for backup failures."""

    PASSWORD_REQUIRED = "password_required"
    NO_RECORDS_TO_BACKUP = "no_records_to_backup"
    INVALID_BACKUP_OR_PASSWORD = "invalid_backup_or_password"
    WRONG_PASSWORD = "wrong_password"
    CORRUPT_BACKUP = "corrupt_backup"
    UNSUPPORTED_VERSION = "unsupported_version"
    NO_RECOVERABLE_RECORDS = "no_recoverable_records"
    CRYPTO_UNAVAILABLE = "crypto_unavailable"
    STORAGE_FAILURE = "storage_failure"
    CANCELLED = "cancelled"
    AUTHORIZATION_DENIED = "authorization_denied"
    INVALID_KEY = "invalid_key"


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    code = ErrorCode.STORAGE_FAILURE
    user_message = "The backup operation failed."


class PasswordRequiredError(BackupError):
    """Raised when no password (or a blank one) is supplied."""

    code = ErrorCode.PASSWORD_REQUIRED
    user_message = "Please enter a password for the backup."


class NoRecordsToBackupError(BackupError):
    """Raised when the record store is empty at backup time."""

    code = ErrorCode.NO_RECORDS_TO_BACKUP
    user_message = "There are no grids to back up."


class InvalidBackupOrPasswordError(BackupError):
    """
    Raised when a backup cannot be decrypted into a valid payload.

    For formats without an integrity tag a wrong password and a damaged file
    look identical, so the UI must ask for the password again rather than
    claim it is wrong.
    """

    code = ErrorCode.INVALID_BACKUP_OR_PASSWORD
    user_message = (
        "The backup could not be opened. Please re-enter the password and "
        "make sure the file is a complete backup."
    )


class WrongPasswordError(InvalidBackupOrPasswordError):
    """Raised when the integrity tag does not verify under the given password."""

    code = ErrorCode.WRONG_PASSWORD
    user_message = "The password does not match this backup. Please re-enter it."


class CorruptBackupError(InvalidBackupOrPasswordError):
    """Raised when the backup file is structurally damaged."""

    code = ErrorCode.CORRUPT_BACKUP
    user_message = "The backup file is damaged or is not a CellVault backup."


class UnsupportedVersionError(BackupError):
    """Raised for backup format versions this release does not know."""

    code = ErrorCode.UNSUPPORTED_VERSION
    user_message = (
        "This backup was created by an incompatible (probably newer) version "
        "of the app. Please update the app and try again."
    )

    def __init__(self, version: str, message: str | None = None) -> None:
        self.version = version
        super().__init__(message or f"Unsupported backup format version: {version}")


class NoRecoverableRecordsError(BackupError):
    """Raised when a backup held records but none survived migration."""

    code = ErrorCode.NO_RECOVERABLE_RECORDS
    user_message = "No grids in this backup could be recovered."

    def __init__(self, message: str, warnings: list[str] | None = None) -> None:
        self.warnings = list(warnings or [])
        super().__init__(message)


class CryptoUnavailableError(BackupError):
    """Raised when the platform hash primitives cannot be used."""

    code = ErrorCode.CRYPTO_UNAVAILABLE
    user_message = "Encryption is not available on this device."


class StorageFailureError(BackupError):
    """Raised for file I/O or persistence failures."""

    code = ErrorCode.STORAGE_FAILURE
    user_message = "The backup file could not be read or written."


class OperationCancelledError(BackupError):
    """Raised when the user cancels a file pick or a pending operation."""

    code = ErrorCode.CANCELLED
    user_message = "The operation was cancelled."


class AuthorizationDeniedError(BackupError):
    """Raised when the authorization gate refuses the operation."""

    code = ErrorCode.AUTHORIZATION_DENIED
    user_message = "Authentication is required to proceed."


class InvalidKeyError(BackupError):
    """Raised when the cipher is given an empty key."""

    code = ErrorCode.INVALID_KEY
    user_message = "The encryption key is invalid."
