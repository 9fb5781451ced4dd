"""Tests for the record data model."""

from __future__ import annotations

import random
import unittest
from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from cellvault.storage.models import (
    CELLS_PER_COLOR,
    TOTAL_CELLS,
    Cell,
    ColorTag,
    Record,
    RecordValidationError,
    fill_empty_cells,
    generate_grid,
)

CREATED = datetime(2024, 1, 20, 11, 15, 30, tzinfo=UTC)


def make_record(record_id: str = "grid-1", name: str = "Chase Credit Card") -> Record:
    cells = list(generate_grid(random.Random(7)))
    cells[0] = replace(cells[0], digit=1, is_secret_digit=True)
    cells[5] = replace(cells[5], digit=2, is_secret_digit=True)
    cells[9] = replace(cells[9], digit=8)
    return Record(
        id=record_id,
        name=name,
        cells=tuple(cells),
        created_at=CREATED,
        updated_at=CREATED + timedelta(days=1),
    )


class TestGridGeneration(unittest.TestCase):
    """Tests for grid helpers."""

    def test_generate_grid_shape(self) -> None:
        """Test a new grid has 40 empty cells indexed by position."""
        grid = generate_grid()

        self.assertEqual(len(grid), TOTAL_CELLS)
        self.assertEqual([cell.index for cell in grid], list(range(TOTAL_CELLS)))
        self.assertTrue(all(cell.is_empty for cell in grid))

    def test_generate_grid_even_colors(self) -> None:
        """Test each colour appears exactly ten times."""
        counts = Counter(cell.color_tag for cell in generate_grid())

        self.assertEqual(set(counts), set(ColorTag))
        self.assertTrue(all(count == CELLS_PER_COLOR for count in counts.values()))

    def test_generate_grid_seeded(self) -> None:
        """Test the same RNG seed gives the same layout."""
        self.assertEqual(generate_grid(random.Random(3)), generate_grid(random.Random(3)))

    def test_fill_empty_cells(self) -> None:
        """Test decoys fill every empty cell and leave secrets alone."""
        record = make_record()

        filled = fill_empty_cells(record.cells, random.Random(1))

        self.assertTrue(all(cell.digit is not None for cell in filled))
        self.assertEqual(filled[0], record.cells[0])
        self.assertEqual(filled[9].digit, 8)
        self.assertEqual(sum(cell.is_secret_digit for cell in filled), 2)


class TestCell(unittest.TestCase):
    """Tests for Cell invariants."""

    def test_secret_requires_digit(self) -> None:
        """Test a secret cell must hold a digit."""
        with self.assertRaises(RecordValidationError):
            Cell(index=0, color_tag=ColorTag.RED, digit=None, is_secret_digit=True)

    def test_digit_range(self) -> None:
        """Test digits must be 0-9."""
        with self.assertRaises(RecordValidationError):
            Cell(index=0, color_tag=ColorTag.RED, digit=10)
        with self.assertRaises(RecordValidationError):
            Cell(index=0, color_tag=ColorTag.RED, digit=-1)

    def test_bool_digit_rejected(self) -> None:
        """Test booleans are not accepted as digits."""
        with self.assertRaises(RecordValidationError):
            Cell(index=0, color_tag=ColorTag.RED, digit=True)

    def test_index_range(self) -> None:
        """Test index must be within the grid."""
        with self.assertRaises(RecordValidationError):
            Cell(index=40, color_tag=ColorTag.BLUE)

    def test_from_dict_unknown_color(self) -> None:
        """Test unknown colours are rejected."""
        with self.assertRaises(RecordValidationError):
            Cell.from_dict({"index": 0, "colorTag": "purple"})

    def test_to_dict(self) -> None:
        """Test wire keys."""
        cell = Cell(index=3, color_tag=ColorTag.GREEN, digit=4, is_secret_digit=True)

        self.assertEqual(
            cell.to_dict(),
            {"index": 3, "colorTag": "green", "digit": 4, "isSecretDigit": True},
        )


class TestRecord(unittest.TestCase):
    """Tests for Record."""

    def test_create(self) -> None:
        """Test Record.create assigns id, timestamps and grid."""
        record = Record.create("Bank Debit Card")

        self.assertTrue(record.id)
        self.assertEqual(len(record.cells), TOTAL_CELLS)
        self.assertEqual(record.created_at, record.updated_at)
        self.assertIsNotNone(record.created_at.tzinfo)

    def test_create_unique_ids(self) -> None:
        """Test each created record gets its own id."""
        self.assertNotEqual(Record.create("a").id, Record.create("b").id)

    def test_name_length(self) -> None:
        """Test names must be 1-50 characters."""
        with self.assertRaises(RecordValidationError):
            Record.create("")
        with self.assertRaises(RecordValidationError):
            Record.create("   ")
        with self.assertRaises(RecordValidationError):
            Record.create("x" * 51)

        self.assertEqual(Record.create("x" * 50).name, "x" * 50)

    def test_cell_count(self) -> None:
        """Test records must have exactly 40 cells."""
        record = make_record()

        with self.assertRaises(RecordValidationError):
            replace(record, cells=record.cells[:39])

    def test_cell_positions(self) -> None:
        """Test cell indexes must match their positions."""
        record = make_record()
        cells = list(record.cells)
        cells[0], cells[1] = cells[1], cells[0]

        with self.assertRaises(RecordValidationError):
            replace(record, cells=tuple(cells))

    def test_updated_not_before_created(self) -> None:
        """Test updatedAt cannot precede createdAt."""
        with self.assertRaises(RecordValidationError):
            replace(make_record(), updated_at=CREATED - timedelta(seconds=1))

    def test_updated_defaults_to_created(self) -> None:
        """Test updated_at falls back to created_at."""
        record = Record(id="x", name="X", cells=generate_grid(), created_at=CREATED)

        self.assertEqual(record.updated_at, CREATED)

    def test_secret_digits(self) -> None:
        """Test secret digits come back in grid order."""
        self.assertEqual(make_record().secret_digits(), [1, 2])

    def test_renamed_touches(self) -> None:
        """Test renaming updates updated_at and keeps the id."""
        record = make_record()

        renamed = record.renamed("New Name")

        self.assertEqual(renamed.id, record.id)
        self.assertEqual(renamed.name, "New Name")
        self.assertGreaterEqual(renamed.updated_at, record.updated_at)

    def test_dict_round_trip(self) -> None:
        """Test to_dict/from_dict preserve the record."""
        record = make_record()

        self.assertEqual(Record.from_dict(record.to_dict()), record)

    def test_to_dict_keys(self) -> None:
        """Test wire keys are camelCase."""
        data = make_record().to_dict()

        self.assertEqual(set(data), {"id", "name", "cells", "createdAt", "updatedAt"})
        self.assertEqual(data["createdAt"], "2024-01-20T11:15:30+00:00")

    def test_from_dict_naive_timestamp_is_utc(self) -> None:
        """Test timestamps without offset are read as UTC."""
        data = make_record().to_dict()
        data["createdAt"] = "2024-01-20T11:15:30"
        data["updatedAt"] = "2024-01-20T11:15:30.000Z"

        record = Record.from_dict(data)

        self.assertEqual(record.created_at, CREATED)
        self.assertEqual(record.updated_at, CREATED)

    def test_from_dict_missing_created(self) -> None:
        """Test createdAt is required."""
        data = make_record().to_dict()
        del data["createdAt"]

        with self.assertRaises(RecordValidationError):
            Record.from_dict(data)

    def test_from_dict_not_a_mapping(self) -> None:
        """Test non-object input is rejected."""
        with self.assertRaises(RecordValidationError):
            Record.from_dict(["not", "a", "record"])  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
