"""
Migration of decoded backup payloads to the current record schema.

Each historical payload shape is one generation. A migration step upgrades
exactly one generation and the steps are chained in version order until the
current shape is reached:

    1.2  {"grids": [record, ...]}        numeric grid rows ("gridData"), optional pinSequence
    1.3  {"grids": [record, ...]}        cell objects (id/value/color/isPinDigit)
    1.4  {"grids": {id: record, ...}}    records keyed by id
    1.5  {"records": {id: record, ...}}  current names (index/colorTag/digit/isSecretDigit)

Legacy grids shorter than 40 cells are padded with empty cells, and legacy
records without timestamps get the backup's own timestamp.

Records that cannot be migrated are skipped with a warning; the migration as
a whole only fails when records were present and none survived.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from cellvault.backup.errors import (
    InvalidBackupOrPasswordError,
    NoRecoverableRecordsError,
)
from cellvault.backup.versions import FormatVersion
from cellvault.storage.models import (
    MAX_DIGIT,
    MIN_DIGIT,
    TOTAL_CELLS,
    Record,
    RecordValidationError,
)

logger = logging.getLogger(__name__)

# Colours assigned by position to grids that predate per-cell colours.
LEGACY_COLOR_CYCLE = ("blue", "red", "green", "yellow")

LEGACY_COLLECTION_KEY = "grids"
CURRENT_COLLECTION_KEY = "records"


def _label(entry: Any, position: int | str) -> str:
    if isinstance(entry, dict) and entry.get("id"):
        return str(entry["id"])
    return f"#{position}"


def _skip(warnings: list[str], label: str, reason: str) -> None:
    message = f"Skipped malformed record {label}: {reason}"
    logger.warning(message)
    warnings.append(message)


def _warn(warnings: list[str], message: str) -> None:
    logger.warning(message)
    warnings.append(message)


def _collection(payload: Any, version: FormatVersion) -> list[Any] | dict[str, Any]:
    """Return the record collection of a payload, checking its outer shape."""
    if not isinstance(payload, dict):
        raise InvalidBackupOrPasswordError("Backup payload is not an object")

    if version is FormatVersion.current():
        key, expected = CURRENT_COLLECTION_KEY, dict
    elif version in (FormatVersion.V1_2, FormatVersion.V1_3):
        key, expected = LEGACY_COLLECTION_KEY, list
    else:
        key, expected = LEGACY_COLLECTION_KEY, dict

    collection = payload.get(key)
    if not isinstance(collection, expected):
        raise InvalidBackupOrPasswordError(
            f"Backup payload for format {version.value} has no '{key}' "
            f"{'list' if expected is list else 'map'}"
        )
    return collection


def raw_record_count(payload: Any, version: FormatVersion) -> int:
    """Number of record entries in a payload before any migration."""
    return len(_collection(payload, version))


def _legacy_digit(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid grid value {value!r}")
    if isinstance(value, str) and value.isdigit() and len(value) == 1:
        return int(value)
    if isinstance(value, int) and MIN_DIGIT <= value <= MAX_DIGIT:
        return value
    raise ValueError(f"invalid grid value {value!r}")


def _legacy_timestamps(entry: dict[str, Any], fallback: str) -> tuple[Any, Any]:
    """createdAt/updatedAt of a legacy record, defaulting missing values."""
    created_at = entry.get("createdAt") or entry.get("dateCreated")
    updated_at = entry.get("updatedAt")
    if not created_at:
        created_at = updated_at or fallback
    return created_at, updated_at or created_at


def _pin_positions(digits: list[int | None], sequence: Any) -> list[int] | None:
    """
    Cell positions holding a 1.2 pinSequence, matched in grid order.

    Each sequence digit is matched to the next cell after the previous match
    that holds it. Returns None when the sequence cannot be placed.
    """
    if not isinstance(sequence, list):
        return None
    positions: list[int] = []
    start = 0
    for value in sequence:
        try:
            wanted = _legacy_digit(value)
        except ValueError:
            return None
        if wanted is None:
            return None
        for position in range(start, len(digits)):
            if digits[position] == wanted:
                positions.append(position)
                start = position + 1
                break
        else:
            return None
    return positions


def _upgrade_1_2(collection: list[Any], warnings: list[str], fallback: str) -> list[Any]:
    """Numeric grid rows become cell objects with positional colours."""
    upgraded: list[Any] = []
    for position, entry in enumerate(collection):
        label = _label(entry, position)
        if not isinstance(entry, dict):
            _skip(warnings, label, "not an object")
            continue

        rows = entry.get("gridData", entry.get("grid"))
        if not isinstance(rows, list):
            _skip(warnings, label, "missing grid data")
            continue

        values: list[Any] = []
        for row in rows:
            if isinstance(row, list):
                values.extend(row)
            else:
                values.append(row)

        if len(values) > TOTAL_CELLS:
            _skip(warnings, label, f"grid has {len(values)} cells")
            continue

        try:
            digits = [_legacy_digit(value) for value in values]
        except ValueError as e:
            _skip(warnings, label, str(e))
            continue
        digits.extend([None] * (TOTAL_CELLS - len(digits)))

        pins: list[int] = []
        if entry.get("pinSequence"):
            placed = _pin_positions(digits, entry["pinSequence"])
            if placed is None:
                _warn(warnings, f"Secret digit markers could not be recovered for record {label}")
            else:
                pins = placed

        created_at, updated_at = _legacy_timestamps(entry, fallback)
        record = {
            "name": entry.get("name"),
            "createdAt": created_at,
            "updatedAt": updated_at,
            "grid": [
                {
                    "id": index,
                    "value": digit,
                    "color": LEGACY_COLOR_CYCLE[index % len(LEGACY_COLOR_CYCLE)],
                    "isPinDigit": index in pins,
                }
                for index, digit in enumerate(digits)
            ],
        }
        if "id" in entry:
            record["id"] = entry["id"]
        upgraded.append(record)
    return upgraded


def _upgrade_1_3(collection: list[Any], warnings: list[str], fallback: str) -> dict[str, Any]:
    """The record array becomes a map keyed by record id."""
    upgraded: dict[str, Any] = {}
    for position, entry in enumerate(collection):
        label = _label(entry, position)
        if not isinstance(entry, dict):
            _skip(warnings, label, "not an object")
            continue
        record_id = entry.get("id")
        if record_id is None or record_id == "" or isinstance(record_id, (dict, list)):
            _skip(warnings, label, "missing id")
            continue
        record_id = str(record_id)
        if record_id in upgraded:
            _warn(warnings, f"Duplicate record id {record_id}; keeping the later entry")
        upgraded[record_id] = {**entry, "id": record_id}
    return upgraded


def _upgrade_1_4(collection: dict[str, Any], warnings: list[str], fallback: str) -> dict[str, Any]:
    """Legacy field names become the current record schema."""
    upgraded: dict[str, Any] = {}
    for key, entry in collection.items():
        label = str(key)
        if not isinstance(entry, dict):
            _skip(warnings, label, "not an object")
            continue
        grid = entry.get("grid")
        if not isinstance(grid, list):
            _skip(warnings, label, "missing grid")
            continue
        if len(grid) > TOTAL_CELLS:
            _skip(warnings, label, f"grid has {len(grid)} cells")
            continue

        cells = []
        malformed = None
        for position, cell in enumerate(grid):
            if not isinstance(cell, dict):
                malformed = f"cell {position} is not an object"
                break
            try:
                digit = _legacy_digit(cell.get("value"))
            except ValueError as e:
                malformed = f"cell {position}: {e}"
                break
            cells.append(
                {
                    "index": cell.get("id", position),
                    "colorTag": cell.get("color"),
                    "digit": digit,
                    "isSecretDigit": bool(cell.get("isPinDigit")) and digit is not None,
                }
            )
        if malformed:
            _skip(warnings, label, malformed)
            continue

        for position in range(len(cells), TOTAL_CELLS):
            cells.append(
                {
                    "index": position,
                    "colorTag": LEGACY_COLOR_CYCLE[position % len(LEGACY_COLOR_CYCLE)],
                    "digit": None,
                    "isSecretDigit": False,
                }
            )

        record_id = str(entry.get("id") or key)
        created_at, updated_at = _legacy_timestamps(entry, fallback)
        upgraded[record_id] = {
            "id": record_id,
            "name": entry.get("name"),
            "cells": cells,
            "createdAt": created_at,
            "updatedAt": updated_at,
        }
    return upgraded


_STEPS: dict[FormatVersion, Callable[[Any, list[str], str], Any]] = {
    FormatVersion.V1_2: _upgrade_1_2,
    FormatVersion.V1_3: _upgrade_1_3,
    FormatVersion.V1_4: _upgrade_1_4,
}


def pending_steps(version: FormatVersion) -> list[FormatVersion]:
    """Versions whose upgrade step must run to bring ``version`` to current."""
    steps = []
    current: FormatVersion | None = version
    while current is not None and not current.is_current:
        steps.append(current)
        current = current.next()
    return steps


def _fallback_timestamp(default_timestamp: str | None) -> str:
    if default_timestamp:
        try:
            datetime.fromisoformat(default_timestamp)
            return default_timestamp
        except ValueError:
            logger.debug(f"Ignoring unparseable backup timestamp {default_timestamp!r}")
    return datetime.now(UTC).isoformat()


def _build_records(collection: dict[str, Any], warnings: list[str]) -> list[Record]:
    records: list[Record] = []
    for key, entry in collection.items():
        label = str(key)
        try:
            record = Record.from_dict(entry)
        except (RecordValidationError, TypeError) as e:
            _skip(warnings, label, str(e))
            continue
        if record.id != key:
            _skip(warnings, label, f"id {record.id!r} does not match its key")
            continue
        records.append(record)
    return records


def migrate(
    raw_payload: Any,
    declared_version: FormatVersion | str,
    default_timestamp: str | None = None,
) -> tuple[list[Record], list[str]]:
    """
    Upgrade a decoded payload to current records.

    Args:
        raw_payload: Parsed JSON payload in the shape of ``declared_version``.
        declared_version: Format version the payload was written with.
        default_timestamp: ISO-8601 time given to legacy records that carry
            no timestamps, usually the backup's creation time. Defaults to now.

    Returns:
        Tuple of (records, warnings). Warnings name every skipped record and
        every record whose secret digit markers were lost.

    Raises:
        UnsupportedVersionError: If the version is not in the known chain.
        InvalidBackupOrPasswordError: If the payload's outer shape is wrong.
        NoRecoverableRecordsError: If records were present but none survived.
    """
    if not isinstance(declared_version, FormatVersion):
        declared_version = FormatVersion.parse(declared_version)

    collection: Any = _collection(raw_payload, declared_version)
    total = len(collection)
    warnings: list[str] = []
    fallback = _fallback_timestamp(default_timestamp)

    for version in pending_steps(declared_version):
        logger.debug(f"Migrating backup payload from format {version.value}")
        collection = _STEPS[version](collection, warnings, fallback)

    records = _build_records(collection, warnings)

    if total > 0 and not records:
        raise NoRecoverableRecordsError(
            f"None of the {total} records in the backup could be recovered",
            warnings,
        )

    if warnings:
        logger.info(
            f"Migrated {len(records)} of {total} records from format "
            f"{declared_version.value} with {len(warnings)} warnings"
        )
    return records, warnings
