"""
Record storage for CellVault.

Two implementations of the record store interface used by the backup
service:

    - InMemoryRecordStore: a plain dict, used by tests and embedding hosts
      that persist records themselves
    - SqliteRecordStore: a single SQLite table keyed by record id

Storage Structure:
    data/
        cellvault.db            # SQLite database

Thread Safety:
    The SQLite store uses a connection-per-operation pattern. The host is
    expected to serialize writers (one backup or restore at a time).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from cellvault.storage.models import Record, RecordValidationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    data_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_updated_at ON records(updated_at);
"""


class StorageError(Exception):
    """Raised when the record store cannot be read or written."""

    pass


class InMemoryRecordStore:
    """Record store backed by a dictionary."""

    def __init__(self, records: list[Record] | None = None) -> None:
        self._records: dict[str, Record] = {}
        for record in records or []:
            self._records[record.id] = record

    def get_all(self) -> dict[str, Record]:
        return dict(self._records)

    def put(self, record: Record) -> bool:
        self._records[record.id] = record
        return True

    def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class SqliteRecordStore:
    """
    Persistent record store using SQLite.

    Example:
        store = SqliteRecordStore(data_dir=Path("./data"))
        store.put(Record.create("Chase credit card"))
        records = store.get_all()

    Attributes:
        data_dir: Base directory for data storage.
        db_path: Path to the SQLite database file.
    """

    DATABASE_FILE = "cellvault.db"

    def __init__(self, data_dir: Path | str | None = None) -> None:
        """
        Initialize the record store.

        Args:
            data_dir: Base directory for data storage. Defaults to ~/.cellvault/data
        """
        if data_dir is None:
            data_dir = Path.home() / ".cellvault" / "data"
        elif isinstance(data_dir, str):
            data_dir = Path(data_dir)

        self.data_dir = data_dir
        self.db_path = data_dir / self.DATABASE_FILE

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(CREATE_TABLES_SQL)

            cursor = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()

            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized record database schema version {SCHEMA_VERSION}")
            elif row[0] < SCHEMA_VERSION:
                logger.warning(
                    f"Record database schema version {row[0]} is older than "
                    f"expected version {SCHEMA_VERSION}"
                )

            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection with row factory set.
        """
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def get_all(self) -> dict[str, Record]:
        """
        Load every record, keyed by id.

        Rows that no longer deserialize are logged and left out.

        Raises:
            StorageError: If the database cannot be read.
        """
        records: dict[str, Record] = {}
        try:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT id, data_json FROM records").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load records: {e}") from e

        for row in rows:
            try:
                records[row["id"]] = Record.from_dict(json.loads(row["data_json"]))
            except (json.JSONDecodeError, RecordValidationError) as e:
                logger.warning(f"Skipping unreadable record {row['id']}: {e}")
        return records

    def get(self, record_id: str) -> Record | None:
        """Load a single record, or None if it does not exist."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT data_json FROM records WHERE id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load record {record_id}: {e}") from e
        if row is None:
            return None
        return Record.from_dict(json.loads(row["data_json"]))

    def put(self, record: Record) -> bool:
        """Insert or replace a record. Returns False if the write failed."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO records (
                        id, name, created_at, updated_at, data_json
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.name,
                        record.created_at.isoformat(),
                        record.updated_at.isoformat(),
                        json.dumps(record.to_dict()),
                    ),
                )
                conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to save record {record.id}: {e}")
            return False

    def delete(self, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist or the delete failed."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete record {record_id}: {e}")
            return False

    def clear(self) -> bool:
        """Delete every record."""
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM records")
                conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error(f"Failed to clear records: {e}")
            return False

    def count(self) -> int:
        try:
            with self._get_connection() as conn:
                (total,) = conn.execute("SELECT COUNT(*) FROM records").fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count records: {e}") from e
        return int(total)
