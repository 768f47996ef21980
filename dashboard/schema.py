"""Heuristic classification of table columns into semantic roles.

The external tables have no fixed layout, so the dashboard works out which
column holds the timestamp, the machine/station, the pass/fail result and a
generic identifier purely from the column names.  Each role is assigned to
the first column (in ordinal order) whose name matches the role's pattern.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from dashboard.errors import SchemaDetectionFailed

DATE_PATTERN = re.compile(r"date|time|timestamp|created", re.IGNORECASE)
MACHINE_PATTERN = re.compile(r"machine|equipment|device|station", re.IGNORECASE)
RESULT_PATTERN = re.compile(r"result|status|outcome|pass|fail", re.IGNORECASE)
# Columns that cannot serve as the generic identifier.
TEMPORAL_PATTERN = re.compile(r"date|time", re.IGNORECASE)


@dataclass(frozen=True)
class TableSchema:
    table_name: str
    date_column: str
    machine_column: str | None
    result_column: str | None
    all_columns: tuple[str, ...]

    @property
    def identifier_column(self) -> str:
        return identifier_column(self.all_columns)

    @property
    def order_column(self) -> str:
        return self.date_column or self.all_columns[0]

    def has_column(self, name: str | None) -> bool:
        return bool(name) and name in self.all_columns

    def to_dict(self) -> dict:
        return {
            "tableName": self.table_name,
            "dateColumn": self.date_column,
            "machineColumn": self.machine_column,
            "resultColumn": self.result_column,
            "identifierColumn": self.identifier_column,
            "allColumns": list(self.all_columns),
        }


def first_match(pattern: re.Pattern[str], columns: Iterable[str]) -> str | None:
    for column in columns:
        if pattern.search(column):
            return column
    return None


def identifier_column(columns: Sequence[str]) -> str:
    """Return the first non-temporal column, or the first column."""

    for column in columns:
        if not TEMPORAL_PATTERN.search(column):
            return column
    return columns[0]


def classify_columns(table_name: str, columns: Sequence[str]) -> TableSchema:
    """Build a :class:`TableSchema` from ``columns`` in ordinal order.

    The date column falls back to the first column when nothing looks
    temporal; machine and result columns stay ``None`` when unmatched.
    """

    ordered = tuple(str(column) for column in columns if column)
    if not ordered:
        raise SchemaDetectionFailed(f"Table '{table_name}' has no columns")

    return TableSchema(
        table_name=table_name,
        date_column=first_match(DATE_PATTERN, ordered) or ordered[0],
        machine_column=first_match(MACHINE_PATTERN, ordered),
        result_column=first_match(RESULT_PATTERN, ordered),
        all_columns=ordered,
    )


__all__ = [
    "DATE_PATTERN",
    "MACHINE_PATTERN",
    "RESULT_PATTERN",
    "TableSchema",
    "classify_columns",
    "first_match",
    "identifier_column",
]
