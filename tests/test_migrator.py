"""Tests for migrating legacy backup payloads."""

from __future__ import annotations

import unittest
from datetime import UTC, datetime
from typing import Any

from cellvault.backup.errors import (
    InvalidBackupOrPasswordError,
    NoRecoverableRecordsError,
    UnsupportedVersionError,
)
from cellvault.backup.migrator import LEGACY_COLOR_CYCLE, migrate, pending_steps, raw_record_count
from cellvault.backup.versions import FormatVersion
from cellvault.storage.models import TOTAL_CELLS, ColorTag

CREATED = "2023-06-01T08:00:00+00:00"


def legacy_grid(pin_positions: tuple[int, ...] = (), value: Any = "5") -> list[dict[str, Any]]:
    """A 1.3/1.4 style grid: cell objects with id/value/color/isPinDigit."""
    return [
        {
            "id": i,
            "value": value,
            "color": LEGACY_COLOR_CYCLE[i % 4],
            "isPinDigit": i in pin_positions,
        }
        for i in range(TOTAL_CELLS)
    ]


def legacy_record(record_id: str, name: str = "Card", **extra: Any) -> dict[str, Any]:
    record = {"id": record_id, "name": name, "createdAt": CREATED, "grid": legacy_grid()}
    record.update(extra)
    return record


def current_record(record_id: str, name: str = "Card") -> dict[str, Any]:
    return {
        "id": record_id,
        "name": name,
        "createdAt": CREATED,
        "updatedAt": CREATED,
        "cells": [
            {"index": i, "colorTag": "red", "digit": None, "isSecretDigit": False}
            for i in range(TOTAL_CELLS)
        ],
    }


class TestPendingSteps(unittest.TestCase):
    """Tests for the migration chain."""

    def test_chain_from_oldest(self) -> None:
        """Test 1.2 runs every step in order."""
        self.assertEqual(
            pending_steps(FormatVersion.V1_2),
            [FormatVersion.V1_2, FormatVersion.V1_3, FormatVersion.V1_4],
        )

    def test_chain_from_1_4(self) -> None:
        """Test 1.4 only needs its own step."""
        self.assertEqual(pending_steps(FormatVersion.V1_4), [FormatVersion.V1_4])

    def test_current_needs_nothing(self) -> None:
        """Test the current format is not migrated."""
        self.assertEqual(pending_steps(FormatVersion.current()), [])


class TestMigrateV12(unittest.TestCase):
    """Tests for numeric-grid payloads."""

    def test_numeric_rows_flattened(self) -> None:
        """Test rows are flattened and colours assigned by position."""
        rows = [[1, 2, 3, 4, 5, 6, 7, 8] for _ in range(5)]
        payload = {"grids": [{"id": "old-1", "name": "Visa", "createdAt": CREATED, "gridData": rows}]}

        records, warnings = migrate(payload, "1.2")

        self.assertEqual(warnings, [])
        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.id, "old-1")
        self.assertEqual(record.name, "Visa")
        self.assertEqual(record.cells[0].digit, 1)
        self.assertEqual(record.cells[39].digit, 8)
        self.assertEqual(record.cells[0].color_tag, ColorTag.BLUE)
        self.assertEqual(record.cells[1].color_tag, ColorTag.RED)
        self.assertEqual(record.cells[2].color_tag, ColorTag.GREEN)
        self.assertEqual(record.cells[3].color_tag, ColorTag.YELLOW)
        self.assertFalse(any(cell.is_secret_digit for cell in record.cells))

    def test_short_grid_padded(self) -> None:
        """Test grids shorter than 40 cells are padded with empty cells."""
        payload = {"grids": [{"id": "old-1", "name": "Visa", "dateCreated": CREATED, "grid": [[3, "", None]]}]}

        records, _ = migrate(payload, FormatVersion.V1_2)

        cells = records[0].cells
        self.assertEqual(len(cells), TOTAL_CELLS)
        self.assertEqual(cells[0].digit, 3)
        self.assertIsNone(cells[1].digit)
        self.assertIsNone(cells[39].digit)

    def test_oversized_grid_skipped(self) -> None:
        """Test grids with more than 40 cells are skipped with a warning."""
        payload = {
            "grids": [
                {"id": "big", "name": "Big", "createdAt": CREATED, "gridData": [[1] * 41]},
                {"id": "ok", "name": "Ok", "createdAt": CREATED, "gridData": [[1] * 40]},
            ]
        }

        records, warnings = migrate(payload, "1.2")

        self.assertEqual([r.id for r in records], ["ok"])
        self.assertEqual(len(warnings), 1)
        self.assertIn("big", warnings[0])

    def test_invalid_digit_skipped(self) -> None:
        """Test non-digit grid values make the record unrecoverable."""
        payload = {
            "grids": [
                {"id": "bad", "name": "Bad", "createdAt": CREATED, "gridData": [["x"]]},
                {"id": "ok", "name": "Ok", "createdAt": CREATED, "gridData": [[1]]},
            ]
        }

        records, warnings = migrate(payload, "1.2")

        self.assertEqual([r.id for r in records], ["ok"])
        self.assertIn("Skipped malformed record bad", warnings[0])

    def test_partially_corrupted_without_timestamps(self) -> None:
        """Test an undated good grid survives next to a broken one."""
        payload = {
            "grids": [
                {"id": "good_grid", "name": "Good Grid", "grid": [[1, 2, 3]]},
                {"name": "Corrupted Grid"},
            ]
        }

        records, warnings = migrate(payload, "1.2", default_timestamp=CREATED)

        self.assertEqual([r.id for r in records], ["good_grid"])
        self.assertEqual(len(warnings), 1)
        self.assertIn("missing grid data", warnings[0])
        self.assertEqual(records[0].created_at, datetime.fromisoformat(CREATED))
        self.assertEqual(records[0].updated_at, records[0].created_at)

    def test_missing_timestamp_defaults_to_now(self) -> None:
        """Test undated records get the current time when no default is given."""
        before = datetime.now(UTC)
        payload = {"grids": [{"id": "g", "name": "Undated", "gridData": [[4]]}]}

        records, _ = migrate(payload, "1.2")

        self.assertGreaterEqual(records[0].created_at, before)

    def test_updated_at_used_when_created_missing(self) -> None:
        """Test a lone updatedAt also serves as the creation time."""
        payload = {"grids": [{"id": "g", "name": "G", "updatedAt": CREATED, "gridData": [[4]]}]}

        records, _ = migrate(payload, "1.2", default_timestamp="2030-01-01T00:00:00+00:00")

        self.assertEqual(records[0].created_at, datetime.fromisoformat(CREATED))

    def test_pin_sequence_marks_secret_digits(self) -> None:
        """Test pinSequence digits become secret cells in grid order."""
        rows = [[1, 2, 3, 4, 5], [6, 7, 8, 9, 0]] + [[""] * 5 for _ in range(6)]
        payload = {
            "grids": [
                {
                    "id": "chase_credit_2023",
                    "name": "Chase Credit Card",
                    "dateCreated": "2023-01-10T14:20:00.000Z",
                    "gridData": rows,
                    "pinSequence": [1, 2, 3, 4],
                }
            ]
        }

        records, warnings = migrate(payload, "1.2")

        self.assertEqual(warnings, [])
        self.assertEqual(records[0].secret_digits(), [1, 2, 3, 4])
        self.assertEqual(
            [cell.index for cell in records[0].cells if cell.is_secret_digit], [0, 1, 2, 3]
        )

    def test_pin_sequence_repeated_digits(self) -> None:
        """Test repeated digits are matched to successive cells."""
        payload = {
            "grids": [
                {"id": "g", "name": "G", "createdAt": CREATED, "gridData": [[5, 1, 5]], "pinSequence": [5, 5]}
            ]
        }

        records, _ = migrate(payload, "1.2")

        self.assertEqual(
            [cell.index for cell in records[0].cells if cell.is_secret_digit], [0, 2]
        )

    def test_unplaceable_pin_sequence_warns(self) -> None:
        """Test a pinSequence that does not fit the grid is reported."""
        payload = {
            "grids": [
                {"id": "g", "name": "G", "createdAt": CREATED, "gridData": [[7, 1]], "pinSequence": [7, 7]}
            ]
        }

        records, warnings = migrate(payload, "1.2")

        self.assertEqual(records[0].secret_digits(), [])
        self.assertEqual(warnings, ["Secret digit markers could not be recovered for record g"])


class TestMigrateV13(unittest.TestCase):
    """Tests for record-array payloads."""

    def test_one_good_one_malformed(self) -> None:
        """Test a malformed record is skipped and the good one survives."""
        payload = {"grids": [legacy_record("g1"), {"name": "No id", "grid": legacy_grid()}]}

        records, warnings = migrate(payload, "1.3")

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].id, "g1")
        self.assertEqual(len(warnings), 1)
        self.assertIn("missing id", warnings[0])

    def test_duplicate_ids_keep_later(self) -> None:
        """Test duplicate ids keep the later entry and warn."""
        payload = {"grids": [legacy_record("g1", "First"), legacy_record("g1", "Second")]}

        records, warnings = migrate(payload, "1.3")

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].name, "Second")
        self.assertEqual(len(warnings), 1)
        self.assertIn("Duplicate record id g1", warnings[0])

    def test_short_cell_grid_padded(self) -> None:
        """Test a grid with fewer than 40 cell objects is padded."""
        payload = {
            "grids": [
                {
                    "id": "test",
                    "name": "Test Grid",
                    "createdAt": CREATED,
                    "grid": [
                        {"id": 0, "value": 1, "color": "blue"},
                        {"id": 1, "value": 2, "color": "red", "isPinDigit": True},
                    ],
                }
            ]
        }

        records, warnings = migrate(payload, "1.3")

        self.assertEqual(warnings, [])
        cells = records[0].cells
        self.assertEqual(len(cells), TOTAL_CELLS)
        self.assertEqual(records[0].secret_digits(), [2])
        self.assertIsNone(cells[2].digit)
        self.assertEqual(cells[2].color_tag, ColorTag(LEGACY_COLOR_CYCLE[2]))
        self.assertEqual(cells[39].color_tag, ColorTag(LEGACY_COLOR_CYCLE[39 % 4]))

    def test_oversized_cell_grid_skipped(self) -> None:
        """Test a grid with more than 40 cell objects is skipped."""
        long_grid = legacy_grid() + [{"id": 40, "value": 1, "color": "red"}]
        payload = {"grids": [legacy_record("big", grid=long_grid), legacy_record("ok")]}

        records, warnings = migrate(payload, "1.3")

        self.assertEqual([r.id for r in records], ["ok"])
        self.assertIn("grid has 41 cells", warnings[0])

    def test_numeric_id_becomes_string(self) -> None:
        """Test numeric ids are converted to strings."""
        payload = {"grids": [legacy_record(7)]}  # type: ignore[arg-type]

        records, _ = migrate(payload, "1.3")

        self.assertEqual(records[0].id, "7")

    def test_all_malformed_raises(self) -> None:
        """Test a payload where nothing survives raises with the warnings."""
        payload = {"grids": [{"name": "No id"}, "not a record"]}

        with self.assertRaises(NoRecoverableRecordsError) as ctx:
            migrate(payload, "1.3")

        self.assertEqual(len(ctx.exception.warnings), 2)


class TestMigrateV14(unittest.TestCase):
    """Tests for id-keyed legacy payloads."""

    def test_field_renames(self) -> None:
        """Test legacy field names map to the current schema."""
        entry = legacy_record("g1", grid=legacy_grid(pin_positions=(0, 9)))
        payload = {"grids": {"g1": entry}}

        records, warnings = migrate(payload, "1.4")

        self.assertEqual(warnings, [])
        record = records[0]
        self.assertEqual(record.cells[0].digit, 5)
        self.assertTrue(record.cells[0].is_secret_digit)
        self.assertTrue(record.cells[9].is_secret_digit)
        self.assertFalse(record.cells[1].is_secret_digit)
        self.assertEqual(record.secret_digits(), [5, 5])

    def test_pin_flag_on_empty_cell_dropped(self) -> None:
        """Test a pin flag on an empty cell does not produce a secret."""
        entry = legacy_record("g1", grid=legacy_grid(pin_positions=(2,), value=""))
        payload = {"grids": {"g1": entry}}

        records, _ = migrate(payload, "1.4")

        self.assertFalse(records[0].cells[2].is_secret_digit)
        self.assertIsNone(records[0].cells[2].digit)

    def test_missing_id_uses_key(self) -> None:
        """Test the map key supplies a missing record id."""
        entry = legacy_record("g1")
        del entry["id"]

        records, _ = migrate({"grids": {"g1": entry}}, "1.4")

        self.assertEqual(records[0].id, "g1")

    def test_bad_cell_skips_record(self) -> None:
        """Test an invalid cell value skips only that record."""
        bad_grid = legacy_grid()
        bad_grid[4]["value"] = "12"
        payload = {"grids": {"bad": legacy_record("bad", grid=bad_grid), "ok": legacy_record("ok")}}

        records, warnings = migrate(payload, "1.4")

        self.assertEqual([r.id for r in records], ["ok"])
        self.assertIn("cell 4", warnings[0])

    def test_invalid_name_skipped(self) -> None:
        """Test records failing validation are skipped."""
        payload = {"grids": {"g1": legacy_record("g1", name=""), "g2": legacy_record("g2")}}

        records, warnings = migrate(payload, "1.4")

        self.assertEqual([r.id for r in records], ["g2"])
        self.assertEqual(len(warnings), 1)


class TestMigrateCurrent(unittest.TestCase):
    """Tests for current-format payloads."""

    def test_passthrough(self) -> None:
        """Test current payloads are validated without migration."""
        payload = {"formatVersion": "1.5", "records": {"a": current_record("a")}}

        records, warnings = migrate(payload, FormatVersion.current())

        self.assertEqual([r.id for r in records], ["a"])
        self.assertEqual(warnings, [])

    def test_key_mismatch_skipped(self) -> None:
        """Test a record stored under another record's key is skipped."""
        payload = {"records": {"a": current_record("b"), "c": current_record("c")}}

        records, warnings = migrate(payload, "1.5")

        self.assertEqual([r.id for r in records], ["c"])
        self.assertIn("does not match", warnings[0])

    def test_empty_payload(self) -> None:
        """Test an empty record map migrates to no records without error."""
        self.assertEqual(migrate({"records": {}}, "1.5"), ([], []))


class TestMigrateErrors(unittest.TestCase):
    """Tests for payload-level failures."""

    def test_unknown_version(self) -> None:
        """Test versions outside the chain are rejected."""
        with self.assertRaises(UnsupportedVersionError) as ctx:
            migrate({"records": {}}, "2.0")

        self.assertEqual(ctx.exception.version, "2.0")

    def test_wrong_collection_shape(self) -> None:
        """Test a payload with the wrong collection type is rejected."""
        with self.assertRaises(InvalidBackupOrPasswordError):
            migrate({"grids": {}}, "1.3")
        with self.assertRaises(InvalidBackupOrPasswordError):
            migrate({"grids": []}, "1.4")
        with self.assertRaises(InvalidBackupOrPasswordError):
            migrate({"grids": {}}, "1.5")

    def test_payload_not_object(self) -> None:
        """Test a non-object payload is rejected."""
        with self.assertRaises(InvalidBackupOrPasswordError):
            migrate(["a"], "1.4")

    def test_raw_record_count(self) -> None:
        """Test entries are counted before migration."""
        payload = {"grids": [legacy_record("a"), {"bad": True}]}

        self.assertEqual(raw_record_count(payload, FormatVersion.V1_3), 2)


if __name__ == "__main__":
    unittest.main()
