"""
Local directory implementation of the backup file sink.

Backups are written atomically (temp file + rename) with owner-only
permissions. Sharing copies the file into a hand-off directory that other
applications watch; picking delegates to a host-provided chooser.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from cellvault.backup.codec import MAX_BACKUP_FILE_SIZE
from cellvault.backup.errors import OperationCancelledError, StorageFailureError

logger = logging.getLogger(__name__)

BACKUP_FILE_PREFIX = "cellvault-backup"
BACKUP_FILE_EXTENSION = ".cvb"


def backup_filename(now: datetime | None = None) -> str:
    """File name for a new backup, e.g. cellvault-backup-20250101-120000-000000.cvb."""
    now = now or datetime.now(UTC)
    return f"{BACKUP_FILE_PREFIX}-{now.strftime('%Y%m%d-%H%M%S-%f')}{BACKUP_FILE_EXTENSION}"


def looks_like_backup(path: Path) -> bool:
    """True if the file name matches the backup naming convention."""
    return BACKUP_FILE_PREFIX in path.name or path.name.endswith(BACKUP_FILE_EXTENSION)


class LocalFileSink:
    """
    File sink backed by local directories.

    Attributes:
        backup_dir: Directory new backups are written to.
        share_dir: Directory shared backups are copied to (optional).
        chooser: Callable returning the path the user picked, or None on cancel.
    """

    def __init__(
        self,
        backup_dir: Path | str,
        share_dir: Path | str | None = None,
        chooser: Callable[[], Path | str | None] | None = None,
    ) -> None:
        self.backup_dir = Path(backup_dir)
        self.share_dir = Path(share_dir) if share_dir else None
        self.chooser = chooser

    def write(self, data: bytes) -> Path:
        """
        Write a backup file atomically.

        If the write fails the temporary file is removed, so no partial
        backup is ever left under a backup file name.

        Raises:
            StorageFailureError: If the file cannot be written.
        """
        path = self.backup_dir / backup_filename()
        temp_path = path.with_suffix(".tmp")

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(data)

            try:
                os.chmod(temp_path, 0o600)
            except OSError:
                # Windows or permission error - continue anyway
                pass

            temp_path.rename(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageFailureError(f"Failed to write backup file {path}: {e}") from e

        logger.info(f"Backup written: {path} ({len(data):,} bytes)")
        return path

    def read(self, path: Path) -> bytes:
        """
        Read a backup file.

        Raises:
            StorageFailureError: If the file is missing, too large or unreadable.
        """
        path = Path(path)
        try:
            size = path.stat().st_size
            if size > MAX_BACKUP_FILE_SIZE:
                raise StorageFailureError(
                    f"Backup file is too large: {path} ({size:,} bytes)"
                )
            return path.read_bytes()
        except OSError as e:
            raise StorageFailureError(f"Failed to read backup file {path}: {e}") from e

    def share(self, path: Path) -> None:
        """
        Hand a backup to other applications by copying it to the share directory.

        Raises:
            StorageFailureError: If sharing is not configured or the copy fails.
        """
        if self.share_dir is None:
            raise StorageFailureError("Sharing is not available: no share directory configured")
        try:
            self.share_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, self.share_dir / Path(path).name)
        except OSError as e:
            raise StorageFailureError(f"Failed to share backup {path}: {e}") from e
        logger.info(f"Backup shared to {self.share_dir}")

    def pick(self) -> Path:
        """
        Ask the host to pick a backup file.

        Raises:
            OperationCancelledError: If the user cancelled the pick.
            StorageFailureError: If no chooser is configured or the file does
                not look like a backup.
        """
        if self.chooser is None:
            raise StorageFailureError("No file chooser configured")
        chosen = self.chooser()
        if chosen is None:
            raise OperationCancelledError("File selection cancelled")
        path = Path(chosen)
        if not looks_like_backup(path):
            raise StorageFailureError(
                f"Selected file does not appear to be a CellVault backup: {path.name}"
            )
        return path

    def list_backups(self) -> list[Path]:
        """Backups in the backup directory, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            (p for p in self.backup_dir.glob(f"*{BACKUP_FILE_EXTENSION}") if p.is_file()),
            key=lambda p: p.name,
            reverse=True,
        )
