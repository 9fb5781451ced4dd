"""
Data models for vault records.

A record is a user-named 8x5 grid of 40 coloured cells. Some cells hold the
secret digits the user wants to remember; the remaining cells may be filled
with decoy digits so the secret cannot be read off the grid at a glance.

Schema Design Decisions:
    - IDs are UUIDs stored as strings for portability
    - Timestamps are timezone-aware and serialized as ISO-8601 strings
    - Wire keys are camelCase to stay compatible with exported backups
    - Records and cells are immutable; edits produce new instances
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

GRID_COLUMNS = 8
GRID_ROWS = 5
TOTAL_CELLS = GRID_COLUMNS * GRID_ROWS
MIN_NAME_LENGTH = 1
MAX_NAME_LENGTH = 50
MIN_DIGIT = 0
MAX_DIGIT = 9


class RecordValidationError(ValueError):
    """Raised when a record or cell violates the data model invariants."""

    pass


class ColorTag(str, Enum):
    """Cell colours. Each colour covers a quarter of a freshly generated grid."""

    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"


CELLS_PER_COLOR = TOTAL_CELLS // len(ColorTag)


def _parse_timestamp(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise RecordValidationError(f"Invalid {field_name}: {value!r}") from e
    else:
        raise RecordValidationError(f"Missing {field_name}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class Cell:
    """
    One position in a grid.

    Attributes:
        index: Position in the grid (0..39), derived from placement.
        color_tag: Cell colour.
        digit: Digit 0-9, or None when the cell is empty.
        is_secret_digit: True when the digit belongs to the secret sequence.
    """

    index: int
    color_tag: ColorTag
    digit: int | None = None
    is_secret_digit: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.index, int) or isinstance(self.index, bool):
            raise RecordValidationError(f"Cell index must be an integer, got {self.index!r}")
        if not 0 <= self.index < TOTAL_CELLS:
            raise RecordValidationError(f"Cell index out of range: {self.index}")
        if not isinstance(self.color_tag, ColorTag):
            raise RecordValidationError(f"Invalid color tag: {self.color_tag!r}")
        if self.digit is not None:
            if not isinstance(self.digit, int) or isinstance(self.digit, bool):
                raise RecordValidationError(f"Cell digit must be an integer, got {self.digit!r}")
            if not MIN_DIGIT <= self.digit <= MAX_DIGIT:
                raise RecordValidationError(f"Cell digit out of range: {self.digit}")
        if not isinstance(self.is_secret_digit, bool):
            raise RecordValidationError("isSecretDigit must be a boolean")
        if self.is_secret_digit and self.digit is None:
            raise RecordValidationError(
                f"Cell {self.index} is marked secret but holds no digit"
            )

    @property
    def is_empty(self) -> bool:
        return self.digit is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "index": self.index,
            "colorTag": self.color_tag.value,
            "digit": self.digit,
            "isSecretDigit": self.is_secret_digit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cell:
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise RecordValidationError(f"Cell must be an object, got {type(data).__name__}")
        try:
            color_tag = ColorTag(data.get("colorTag"))
        except ValueError as e:
            raise RecordValidationError(f"Invalid color tag: {data.get('colorTag')!r}") from e
        return cls(
            index=data.get("index"),  # type: ignore[arg-type]
            color_tag=color_tag,
            digit=data.get("digit"),
            is_secret_digit=data.get("isSecretDigit", False),
        )


def generate_grid(rng: random.Random | None = None) -> tuple[Cell, ...]:
    """
    Generate an empty grid with evenly distributed, shuffled colours.

    Each colour appears exactly CELLS_PER_COLOR times.
    """
    rng = rng or random.Random()
    colors = [color for color in ColorTag for _ in range(CELLS_PER_COLOR)]
    rng.shuffle(colors)
    return tuple(Cell(index=i, color_tag=color) for i, color in enumerate(colors))


def fill_empty_cells(
    cells: tuple[Cell, ...] | list[Cell],
    rng: random.Random | None = None,
) -> tuple[Cell, ...]:
    """Return a copy of the cells with every empty cell given a decoy digit."""
    rng = rng or random.Random()
    return tuple(
        replace(cell, digit=rng.randint(MIN_DIGIT, MAX_DIGIT)) if cell.is_empty else cell
        for cell in cells
    )


@dataclass(frozen=True)
class Record:
    """
    A named grid owned by the record store.

    Attributes:
        id: Unique identifier assigned at creation.
        name: User-defined name, 1-50 characters.
        cells: Exactly 40 cells, cell i at position i.
        created_at: When the record was created.
        updated_at: When the record was last changed (never before created_at).
    """

    id: str
    name: str
    cells: tuple[Cell, ...]
    created_at: datetime
    updated_at: datetime = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)
        if isinstance(self.cells, list):
            object.__setattr__(self, "cells", tuple(self.cells))
        self.validate()

    @classmethod
    def create(cls, name: str, rng: random.Random | None = None) -> Record:
        """Create a new record with a fresh ID, timestamps and random grid."""
        now = datetime.now(UTC)
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            cells=generate_grid(rng),
            created_at=now,
            updated_at=now,
        )

    def validate(self) -> None:
        """
        Check the record invariants.

        Raises:
            RecordValidationError: If any invariant is violated.
        """
        if not isinstance(self.id, str) or not self.id:
            raise RecordValidationError("Record id must be a non-empty string")
        if not isinstance(self.name, str):
            raise RecordValidationError("Record name must be a string")
        if len(self.name.strip()) < MIN_NAME_LENGTH or len(self.name) > MAX_NAME_LENGTH:
            raise RecordValidationError(
                f"Record name must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters"
            )
        if len(self.cells) != TOTAL_CELLS:
            raise RecordValidationError(
                f"Record must have {TOTAL_CELLS} cells, got {len(self.cells)}"
            )
        for position, cell in enumerate(self.cells):
            if not isinstance(cell, Cell):
                raise RecordValidationError(f"Cell {position} is not a Cell")
            if cell.index != position:
                raise RecordValidationError(
                    f"Cell at position {position} has index {cell.index}"
                )
        if self.created_at.tzinfo is None or self.updated_at.tzinfo is None:
            raise RecordValidationError("Record timestamps must be timezone-aware")
        if self.updated_at < self.created_at:
            raise RecordValidationError("updatedAt must not be earlier than createdAt")

    def secret_digits(self) -> list[int]:
        """Secret digits in grid order."""
        return [cell.digit for cell in self.cells if cell.is_secret_digit]  # type: ignore[misc]

    def touch(self) -> Record:
        """Return a copy with updated_at set to now."""
        return replace(self, updated_at=max(datetime.now(UTC), self.created_at))

    def renamed(self, name: str) -> Record:
        """Return a renamed copy."""
        return replace(self, name=name).touch()

    def with_cells(self, cells: tuple[Cell, ...] | list[Cell]) -> Record:
        """Return a copy with a new grid."""
        return replace(self, cells=tuple(cells)).touch()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage and backups."""
        return {
            "id": self.id,
            "name": self.name,
            "cells": [cell.to_dict() for cell in self.cells],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        """
        Create from dictionary.

        Raises:
            RecordValidationError: If the data does not describe a valid record.
        """
        if not isinstance(data, dict):
            raise RecordValidationError(f"Record must be an object, got {type(data).__name__}")
        cells_data = data.get("cells")
        if not isinstance(cells_data, list):
            raise RecordValidationError("Record cells must be a list")
        created_at = _parse_timestamp(data.get("createdAt"), "createdAt")
        updated_raw = data.get("updatedAt")
        updated_at = (
            _parse_timestamp(updated_raw, "updatedAt") if updated_raw else created_at
        )
        return cls(
            id=data.get("id"),  # type: ignore[arg-type]
            name=data.get("name"),  # type: ignore[arg-type]
            cells=tuple(Cell.from_dict(cell) for cell in cells_data),
            created_at=created_at,
            updated_at=updated_at,
        )
