"""
Backup and restore orchestration for CellVault.

The service ties the record store, the codec and the file sink together:

    backup:  authorize -> store.get_all -> encode -> (sink.write -> sink.share)
    restore: (sink.pick -> sink.read) -> parse envelope -> decode/migrate ->
             merge into store per RestorePolicy

Every public method returns a result object; errors are reported through
``error`` / ``error_code`` and never raised to the caller. Nothing is retried
automatically.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cellvault.backup import codec
from cellvault.backup.codec import BackupEnvelope, BackupInfo
from cellvault.backup.errors import (
    AuthorizationDeniedError,
    BackupError,
    ErrorCode,
    NoRecordsToBackupError,
    PasswordRequiredError,
    StorageFailureError,
)
from cellvault.backup.file_sink import LocalFileSink
from cellvault.backup.interfaces import AllowAllGate, AuthorizationGate, FileSink, RecordStore
from cellvault.backup.kdf import DEFAULT_KDF_ROUNDS
from cellvault.storage.models import Record

if TYPE_CHECKING:
    from cellvault.config.settings import Settings

logger = logging.getLogger(__name__)

BACKUP_AUTH_REASON = "Authenticate to create a backup"
RESTORE_AUTH_REASON = "Authenticate to restore a backup"
INFO_AUTH_REASON = "Authenticate to view backup contents"


@dataclass(frozen=True)
class RestorePolicy:
    """
    How restored records collide with existing ones (matched by id).

    ``replace_all`` always overwrites, whatever ``overwrite_existing`` says.
    """

    replace_all: bool = False
    overwrite_existing: bool = False

    @property
    def overwrites(self) -> bool:
        return self.replace_all or self.overwrite_existing


@dataclass
class RecordFailure:
    """A record that could not be written during restore."""

    record_id: str
    reason: str


@dataclass
class BackupResult:
    """Result of a backup operation."""

    success: bool
    envelope: BackupEnvelope | None = None
    record_count: int = 0
    path: Path | None = None
    size_bytes: int = 0
    shared: bool = False
    error: str | None = None
    error_code: ErrorCode | None = None


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    success: bool
    restored_count: int = 0
    skipped_count: int = 0
    total_in_backup: int = 0
    warnings: list[str] = field(default_factory=list)
    failures: list[RecordFailure] = field(default_factory=list)
    backup_version: str | None = None
    backup_timestamp: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    @property
    def partial(self) -> bool:
        """True if some records failed to persist."""
        return bool(self.failures)


@dataclass
class BackupInfoResult:
    """Result of inspecting a backup."""

    success: bool
    info: BackupInfo | None = None
    error: str | None = None
    error_code: ErrorCode | None = None


def _failure_fields(error: BackupError) -> dict[str, object]:
    return {"error": error.user_message, "error_code": error.code}


class BackupService:
    """
    Creates and restores encrypted backups of the record store.

    Usage:
        service = BackupService(store, gate=gate, sink=LocalFileSink(backup_dir))

        result = service.export_backup("correct horse battery")
        if result.success:
            print(result.path)

        restored = service.restore_from_file(
            "correct horse battery",
            RestorePolicy(overwrite_existing=True),
            path=result.path,
        )

    The host must serialize calls: at most one backup or restore runs at a
    time. Key derivation blocks for a noticeable moment, so UI hosts should
    call the service off their main thread.
    """

    def __init__(
        self,
        store: RecordStore,
        gate: AuthorizationGate | None = None,
        sink: FileSink | None = None,
        kdf_rounds: int = DEFAULT_KDF_ROUNDS,
    ) -> None:
        """
        Initialize the backup service.

        Args:
            store: Record store to back up from and restore into.
            gate: Authorization gate consulted before each operation.
            sink: File sink for exporting and importing backup files.
            kdf_rounds: PBKDF2 rounds for new backups.
        """
        if kdf_rounds < 1:
            raise ValueError("kdf_rounds must be at least 1")
        self.store = store
        self.gate: AuthorizationGate = gate or AllowAllGate()
        self.sink = sink
        self.kdf_rounds = kdf_rounds

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RecordStore,
        gate: AuthorizationGate | None = None,
        chooser: Callable[[], Path | str | None] | None = None,
    ) -> BackupService:
        """Build a service with a local file sink configured from settings."""
        sink = LocalFileSink(
            backup_dir=Path(settings.backup.backup_dir).expanduser(),
            share_dir=(
                Path(settings.backup.share_dir).expanduser()
                if settings.backup.share_dir
                else None
            ),
            chooser=chooser,
        )
        return cls(store, gate=gate, sink=sink, kdf_rounds=settings.backup.kdf_rounds)

    def _authorize(self, reason: str) -> None:
        if not self.gate.authorize(reason):
            raise AuthorizationDeniedError(f"Authorization refused: {reason}")

    def _require_sink(self) -> FileSink:
        if self.sink is None:
            raise StorageFailureError("No file sink configured")
        return self.sink

    def create_backup(
        self,
        password: str,
        cancel: threading.Event | None = None,
    ) -> BackupResult:
        """
        Encrypt every record in the store into a new envelope.

        Args:
            password: Backup password (must not be blank).
            cancel: Optional event checked before key derivation starts.

        Returns:
            BackupResult holding the envelope on success.
        """
        try:
            self._authorize(BACKUP_AUTH_REASON)

            if not password or not password.strip():
                raise PasswordRequiredError("A password is required to create a backup")

            records = self.store.get_all()
            if not records:
                raise NoRecordsToBackupError("No records found to back up")

            ordered = [records[record_id] for record_id in sorted(records)]
            envelope = codec.encode(ordered, password, rounds=self.kdf_rounds, cancel=cancel)

            return BackupResult(
                success=True,
                envelope=envelope,
                record_count=envelope.record_count,
            )

        except BackupError as e:
            logger.warning(f"Backup not created ({e.code.value}): {e}")
            return BackupResult(success=False, **_failure_fields(e))  # type: ignore[arg-type]
        except Exception as e:
            logger.exception("Backup failed")
            return BackupResult(
                success=False,
                error=f"{StorageFailureError.user_message} ({e})",
                error_code=ErrorCode.STORAGE_FAILURE,
            )

    def export_backup(
        self,
        password: str,
        share: bool = False,
        cancel: threading.Event | None = None,
    ) -> BackupResult:
        """
        Create a backup and write it through the file sink.

        Args:
            password: Backup password.
            share: Also hand the written file to the sink's share target.
            cancel: Optional event checked before key derivation starts.

        Returns:
            BackupResult with the written path.
        """
        result = self.create_backup(password, cancel=cancel)
        if not result.success or result.envelope is None:
            return result

        try:
            sink = self._require_sink()
            data = result.envelope.to_bytes()
            result.path = sink.write(data)
            result.size_bytes = len(data)
            if share:
                sink.share(result.path)
                result.shared = True
            logger.info(
                f"Backup exported: {result.path} ({result.record_count} records, "
                f"{result.size_bytes:,} bytes)"
            )
            return result

        except BackupError as e:
            logger.error(f"Backup export failed: {e}")
            return BackupResult(
                success=False,
                envelope=result.envelope,
                record_count=result.record_count,
                path=result.path,
                **_failure_fields(e),  # type: ignore[arg-type]
            )
        except OSError as e:
            logger.exception("Backup export failed")
            return BackupResult(
                success=False,
                envelope=result.envelope,
                record_count=result.record_count,
                error=f"{StorageFailureError.user_message} ({e})",
                error_code=ErrorCode.STORAGE_FAILURE,
            )

    def restore_backup(
        self,
        envelope: BackupEnvelope | bytes | str,
        password: str,
        policy: RestorePolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> RestoreResult:
        """
        Decrypt a backup and merge its records into the store.

        Records are written one by one; a record that fails to persist is
        reported in ``failures`` and the remaining records are still written.
        Nothing is rolled back.

        Args:
            envelope: Parsed envelope, or the raw backup file contents.
            password: Backup password.
            policy: Collision policy; defaults to keeping existing records.
            cancel: Optional event checked before key derivation starts.

        Returns:
            RestoreResult with counts, migration warnings and per-record failures.
        """
        policy = policy or RestorePolicy()
        try:
            self._authorize(RESTORE_AUTH_REASON)

            if not password or not password.strip():
                raise PasswordRequiredError("A password is required to restore a backup")

            if not isinstance(envelope, BackupEnvelope):
                envelope = BackupEnvelope.from_bytes(envelope)

            records, warnings = codec.decode(envelope, password, cancel=cancel)
            result = self._merge(records, policy)
            result.warnings = warnings
            result.backup_version = envelope.format_version.value
            result.backup_timestamp = envelope.timestamp

            logger.info(
                f"Restore completed: {result.restored_count} restored, "
                f"{result.skipped_count} skipped, {len(result.failures)} failed "
                f"of {result.total_in_backup}"
            )
            return result

        except BackupError as e:
            logger.warning(f"Restore failed ({e.code.value}): {e}")
            return RestoreResult(
                success=False,
                warnings=list(getattr(e, "warnings", [])),
                **_failure_fields(e),  # type: ignore[arg-type]
            )
        except Exception as e:
            logger.exception("Restore failed")
            return RestoreResult(
                success=False,
                error=f"{StorageFailureError.user_message} ({e})",
                error_code=ErrorCode.STORAGE_FAILURE,
            )

    def _merge(self, records: list[Record], policy: RestorePolicy) -> RestoreResult:
        """Write decoded records into the store according to the policy."""
        result = RestoreResult(success=True, total_in_backup=len(records))
        existing = set() if policy.overwrites else set(self.store.get_all())

        for record in records:
            if record.id in existing:
                result.skipped_count += 1
                continue
            try:
                written = self.store.put(record)
            except Exception as e:
                logger.error(f"Failed to restore record {record.id}: {e}")
                result.failures.append(RecordFailure(record.id, str(e)))
                continue
            if written:
                result.restored_count += 1
            else:
                logger.error(f"Store refused record {record.id}")
                result.failures.append(RecordFailure(record.id, "store rejected the record"))

        return result

    def restore_from_file(
        self,
        password: str,
        policy: RestorePolicy | None = None,
        path: Path | None = None,
        cancel: threading.Event | None = None,
    ) -> RestoreResult:
        """
        Read a backup file through the sink and restore it.

        When no path is given the sink's picker is used; a cancelled pick is
        reported with ``ErrorCode.CANCELLED``.
        """
        try:
            sink = self._require_sink()
            if path is None:
                path = sink.pick()
            data = sink.read(path)
        except BackupError as e:
            logger.info(f"Restore aborted before reading backup ({e.code.value}): {e}")
            return RestoreResult(success=False, **_failure_fields(e))  # type: ignore[arg-type]
        except Exception as e:
            logger.exception("Failed to pick or read backup file")
            return RestoreResult(
                success=False,
                error=f"{StorageFailureError.user_message} ({e})",
                error_code=ErrorCode.STORAGE_FAILURE,
            )

        return self.restore_backup(data, password, policy, cancel=cancel)

    def backup_info(
        self,
        envelope: BackupEnvelope | bytes | str,
        password: str,
        cancel: threading.Event | None = None,
    ) -> BackupInfoResult:
        """Decrypt a backup and describe its contents without restoring it."""
        try:
            self._authorize(INFO_AUTH_REASON)
            if not isinstance(envelope, BackupEnvelope):
                envelope = BackupEnvelope.from_bytes(envelope)
            return BackupInfoResult(success=True, info=codec.inspect(envelope, password, cancel))
        except BackupError as e:
            logger.warning(f"Backup info unavailable ({e.code.value}): {e}")
            return BackupInfoResult(success=False, **_failure_fields(e))  # type: ignore[arg-type]
        except Exception as e:
            logger.exception("Backup info failed")
            return BackupInfoResult(
                success=False,
                error=f"{StorageFailureError.user_message} ({e})",
                error_code=ErrorCode.STORAGE_FAILURE,
            )
