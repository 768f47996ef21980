"""Parameterised T-SQL statements built from an inferred :class:`TableSchema`.

User supplied values (dates, identifier values, paging numbers) are always
bound as ``?`` parameters.  Table and column names cannot be bound, so they
are interpolated, but only after being checked against the schema that was
read from the catalog and bracket-quoted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from dashboard.errors import ValidationFailed
from dashboard.schema import TableSchema

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 1000

RECORD_CAP = 1000
HISTORY_CAP = 500
IDENTIFIER_CAP = 1000
SAMPLE_CAP = 100

SHIFT_ALL = "all"

# Half-open [start, end) hour ranges on a 24-hour clock.
SHIFT_WINDOWS: dict[str, tuple[tuple[int, int], ...]] = {
    "morning": ((6, 14),),
    "afternoon": ((14, 22),),
    "night": ((22, 24), (0, 6)),
}


@dataclass(frozen=True)
class Statement:
    sql: str
    params: tuple[Any, ...] = field(default_factory=tuple)


def normalize_shift(value: str | None) -> str:
    if value is None:
        return SHIFT_ALL
    label = str(value).strip().lower()
    if not label or label == SHIFT_ALL:
        return SHIFT_ALL
    if label not in SHIFT_WINDOWS:
        raise ValidationFailed(
            f"Unknown shift '{value}'. Choose morning, afternoon, night or all."
        )
    return label


def hour_in_shift(shift: str | None, hour: int) -> bool:
    """Return ``True`` when ``hour`` falls inside ``shift``."""

    label = normalize_shift(shift)
    if label == SHIFT_ALL:
        return True
    return any(start <= hour < end for start, end in SHIFT_WINDOWS[label])


def shift_predicate(shift: str | None, date_column: str) -> str | None:
    """Return a SQL condition on the hour of ``date_column`` for ``shift``."""

    label = normalize_shift(shift)
    if label == SHIFT_ALL:
        return None

    hour = f"DATEPART(HOUR, {quote_identifier(date_column)})"
    clauses: list[str] = []
    for start, end in SHIFT_WINDOWS[label]:
        if end >= 24:
            clauses.append(f"{hour} >= {start}")
        elif start <= 0:
            clauses.append(f"{hour} < {end}")
        else:
            clauses.append(f"{hour} >= {start} AND {hour} < {end}")
    return "(" + " OR ".join(clauses) + ")"


def normalize_pagination(page: Any, limit: Any) -> tuple[int, int]:
    """Clamp ``page`` to >= 1 and ``limit`` to 1..MAX_PAGE_SIZE."""

    try:
        page_number = int(page) if page not in (None, "") else 1
        page_size = int(limit) if limit not in (None, "") else DEFAULT_PAGE_SIZE
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("page and limit must be whole numbers") from exc

    if page_number < 1:
        page_number = 1
    if page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    if page_size > MAX_PAGE_SIZE:
        page_size = MAX_PAGE_SIZE
    return page_number, page_size


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def _parse_filter_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValidationFailed(f"Invalid date '{value}'. Use YYYY-MM-DD.") from exc


@dataclass(frozen=True)
class FilterSet:
    table: str | None = None
    date: date | None = None
    shift: str = SHIFT_ALL
    identifier: str | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return page_offset(self.page, self.limit)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "FilterSet":
        """Build a filter set from query-string or JSON request values."""

        if not isinstance(payload, Mapping):
            payload = {}
        table = str(payload.get("table") or payload.get("tableName") or "").strip() or None
        identifier = payload.get("identifier")
        if identifier is not None:
            identifier = str(identifier).strip() or None
        page, limit = normalize_pagination(payload.get("page"), payload.get("limit"))
        return cls(
            table=table,
            date=_parse_filter_date(payload.get("date")),
            shift=normalize_shift(payload.get("shift")),
            identifier=identifier,
            page=page,
            limit=limit,
        )


def quote_identifier(name: str) -> str:
    if not name or "\x00" in name:
        raise ValidationFailed("Invalid identifier")
    return "[" + name.replace("]", "]]") + "]"


def _column(schema: TableSchema, name: str | None) -> str:
    if not schema.has_column(name):
        raise ValidationFailed(
            f"Column '{name}' does not exist in table '{schema.table_name}'"
        )
    return quote_identifier(name)


def _table(schema: TableSchema) -> str:
    return quote_identifier(schema.table_name)


def build_where(schema: TableSchema, filters: FilterSet) -> tuple[str, list[Any]]:
    """Return the ``WHERE`` clause (with leading space) and its parameters."""

    conditions: list[str] = []
    params: list[Any] = []

    date_column = _column(schema, schema.date_column)
    if filters.date is not None:
        conditions.append(f"CAST({date_column} AS DATE) = ?")
        params.append(filters.date)

    predicate = shift_predicate(filters.shift, schema.date_column)
    if predicate:
        conditions.append(predicate)

    if filters.identifier is not None:
        conditions.append(f"{_column(schema, schema.identifier_column)} = ?")
        params.append(filters.identifier)

    if not conditions:
        return "", params
    return " WHERE " + " AND ".join(conditions), params


# -- catalog -----------------------------------------------------------------


def catalog_tables_statement(database: str) -> Statement:
    return Statement(
        "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
        "WHERE TABLE_TYPE = 'BASE TABLE' AND TABLE_CATALOG = ? "
        "ORDER BY TABLE_NAME",
        (database.strip("[]"),),
    )


def catalog_columns_statement(database: str, table: str) -> Statement:
    """Columns of ``table`` in the one schema an unqualified name resolves to.

    The caller's default schema wins, then ``dbo``, then the first schema by
    name, so a table name present in several schemas is never merged.
    """

    catalog = database.strip("[]")
    return Statement(
        "SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE FROM INFORMATION_SCHEMA.COLUMNS "
        "WHERE TABLE_CATALOG = ? AND TABLE_NAME = ? AND TABLE_SCHEMA = ("
        "SELECT TOP (1) TABLE_SCHEMA FROM INFORMATION_SCHEMA.TABLES "
        "WHERE TABLE_CATALOG = ? AND TABLE_NAME = ? "
        "ORDER BY CASE TABLE_SCHEMA WHEN SCHEMA_NAME() THEN 0 WHEN 'dbo' THEN 1 ELSE 2 END, "
        "TABLE_SCHEMA) ORDER BY ORDINAL_POSITION",
        (catalog, table, catalog, table),
    )


PROBE_STATEMENT = Statement("SELECT 1 AS ok")


# -- row fetches -----------------------------------------------------------------


def records_statement(
    schema: TableSchema, filters: FilterSet, cap: int = RECORD_CAP
) -> Statement:
    where, params = build_where(schema, filters)
    order = _column(schema, schema.order_column)
    return Statement(
        f"SELECT TOP ({int(cap)}) * FROM {_table(schema)}{where} ORDER BY {order} DESC",
        tuple(params),
    )


def page_statement(schema: TableSchema, filters: FilterSet) -> Statement:
    where, params = build_where(schema, filters)
    order = _column(schema, schema.order_column)
    return Statement(
        f"SELECT * FROM {_table(schema)}{where} ORDER BY {order} DESC "
        "OFFSET ? ROWS FETCH NEXT ? ROWS ONLY",
        tuple(params) + (filters.offset, filters.limit),
    )


def count_statement(schema: TableSchema, filters: FilterSet) -> Statement:
    where, params = build_where(schema, filters)
    return Statement(f"SELECT COUNT(*) AS total FROM {_table(schema)}{where}", tuple(params))


def lookup_statement(
    schema: TableSchema, column: str, value: Any, cap: int = HISTORY_CAP
) -> Statement:
    """Rows whose ``column`` equals ``value``, most recent first."""

    order = _column(schema, schema.order_column)
    return Statement(
        f"SELECT TOP ({int(cap)}) * FROM {_table(schema)} "
        f"WHERE {_column(schema, column)} = ? ORDER BY {order} DESC",
        (value,),
    )


def recent_statement(schema: TableSchema, days: int, cap: int = RECORD_CAP) -> Statement:
    date_column = _column(schema, schema.date_column)
    return Statement(
        f"SELECT TOP ({int(cap)}) * FROM {_table(schema)} "
        f"WHERE {date_column} >= DATEADD(day, ?, GETDATE()) ORDER BY {date_column} DESC",
        (-int(days),),
    )


def sample_statement(schema: TableSchema, limit: int) -> Statement:
    size = max(1, min(int(limit), SAMPLE_CAP))
    return Statement(f"SELECT TOP ({size}) * FROM {_table(schema)}")


def distinct_identifiers_statement(
    schema: TableSchema, cap: int = IDENTIFIER_CAP
) -> Statement:
    column = _column(schema, schema.identifier_column)
    return Statement(
        f"SELECT DISTINCT TOP ({int(cap)}) {column} AS value FROM {_table(schema)} "
        f"WHERE {column} IS NOT NULL ORDER BY value"
    )


# -- aggregates -----------------------------------------------------------------


def result_breakdown_statement(schema: TableSchema, filters: FilterSet) -> Statement:
    """Row counts per distinct result value.

    Without a result column the whole filtered set is one bucket with a
    ``NULL`` result value.
    """

    where, params = build_where(schema, filters)
    if schema.result_column is None:
        return Statement(
            f"SELECT NULL AS result_value, COUNT(*) AS n FROM {_table(schema)}{where}",
            tuple(params),
        )
    result = _column(schema, schema.result_column)
    return Statement(
        f"SELECT {result} AS result_value, COUNT(*) AS n FROM {_table(schema)}{where} "
        f"GROUP BY {result}",
        tuple(params),
    )


def hourly_statement(schema: TableSchema, filters: FilterSet) -> Statement:
    where, params = build_where(schema, filters)
    hour = f"DATEPART(HOUR, {_column(schema, schema.date_column)})"
    return Statement(
        f"SELECT {hour} AS hour, COUNT(*) AS n FROM {_table(schema)}{where} GROUP BY {hour}",
        tuple(params),
    )


def machine_rollup_statement(schema: TableSchema, filters: FilterSet) -> Statement:
    if schema.machine_column is None:
        raise ValidationFailed(f"Table '{schema.table_name}' has no machine column")

    where, params = build_where(schema, filters)
    machine = _column(schema, schema.machine_column)
    latest = f"MAX({_column(schema, schema.date_column)})"
    if schema.result_column is None:
        return Statement(
            f"SELECT {machine} AS machine, NULL AS result_value, COUNT(*) AS n, "
            f"{latest} AS last_updated FROM {_table(schema)}{where} GROUP BY {machine}",
            tuple(params),
        )
    result = _column(schema, schema.result_column)
    return Statement(
        f"SELECT {machine} AS machine, {result} AS result_value, COUNT(*) AS n, "
        f"{latest} AS last_updated FROM {_table(schema)}{where} "
        f"GROUP BY {machine}, {result}",
        tuple(params),
    )


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "FilterSet",
    "HISTORY_CAP",
    "IDENTIFIER_CAP",
    "MAX_PAGE_SIZE",
    "PROBE_STATEMENT",
    "RECORD_CAP",
    "SHIFT_ALL",
    "SHIFT_WINDOWS",
    "Statement",
    "build_where",
    "catalog_columns_statement",
    "catalog_tables_statement",
    "count_statement",
    "distinct_identifiers_statement",
    "hour_in_shift",
    "hourly_statement",
    "lookup_statement",
    "machine_rollup_statement",
    "normalize_pagination",
    "normalize_shift",
    "page_offset",
    "page_statement",
    "quote_identifier",
    "recent_statement",
    "records_statement",
    "result_breakdown_statement",
    "sample_statement",
    "shift_predicate",
]
