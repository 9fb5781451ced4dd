"""
Record storage.

This module defines the record data model (named 40-cell grids) and two
record store implementations: an in-memory dictionary and a SQLite table.

Usage:
    from cellvault.storage import Record, SqliteRecordStore

    store = SqliteRecordStore(data_dir)
    store.put(Record.create("Bank debit card"))
    records = store.get_all()
"""

from cellvault.storage.models import (
    TOTAL_CELLS,
    Cell,
    ColorTag,
    Record,
    RecordValidationError,
    fill_empty_cells,
    generate_grid,
)
from cellvault.storage.record_store import (
    InMemoryRecordStore,
    SqliteRecordStore,
    StorageError,
)

__all__ = [
    # Stores
    "InMemoryRecordStore",
    "SqliteRecordStore",
    # Data models
    "Record",
    "Cell",
    "ColorTag",
    "TOTAL_CELLS",
    "generate_grid",
    "fill_empty_cells",
    # Exceptions
    "StorageError",
    "RecordValidationError",
]
