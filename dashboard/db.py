from datetime import datetime
from math import ceil
from typing import Any, Mapping

from flask import current_app

from config.connection import ConnectionConfig
from dashboard.aggregate import (
    build_machine_rollups,
    build_production_summary,
    json_safe,
    shape_records,
    tally_results,
)
from dashboard.context import DashboardContext
from dashboard.errors import (
    CatalogFailed,
    ColumnIntrospectionFailed,
    DashboardError,
    QueryFailed,
    SchemaDetectionFailed,
    TableNotFound,
    ValidationFailed,
)
from dashboard.pipeline import MACHINE_STAGES, SUMMARY_STAGES, run_stages
from dashboard.queries import (
    PROBE_STATEMENT,
    FilterSet,
    catalog_columns_statement,
    catalog_tables_statement,
    count_statement,
    distinct_identifiers_statement,
    lookup_statement,
    page_statement,
    recent_statement,
    records_statement,
    result_breakdown_statement,
    sample_statement,
)
from dashboard.schema import TableSchema, classify_columns

MAX_RECENT_DAYS = 366


def _catalog_tables(ctx: DashboardContext) -> list[str]:
    config = ctx.require_configured()
    try:
        rows = ctx.execute(catalog_tables_statement(config.database))
    except QueryFailed as exc:
        raise CatalogFailed(f"Failed to list tables: {exc}") from exc
    return [row["TABLE_NAME"] for row in rows if row.get("TABLE_NAME")]


def _catalog_columns(ctx: DashboardContext, table: str) -> list[dict]:
    config = ctx.require_configured()
    try:
        rows = ctx.execute(catalog_columns_statement(config.database, table))
    except QueryFailed as exc:
        raise ColumnIntrospectionFailed(
            f"Failed to read columns of '{table}': {exc}"
        ) from exc
    return [
        {
            "columnName": row.get("COLUMN_NAME"),
            "dataType": row.get("DATA_TYPE"),
            "nullable": str(row.get("IS_NULLABLE") or "").upper() == "YES",
        }
        for row in rows
        if row.get("COLUMN_NAME")
    ]


def _require_table(table: str | None) -> str:
    name = str(table or "").strip()
    if not name:
        raise ValidationFailed("No table specified")
    return name


def list_tables(ctx: DashboardContext) -> list[str]:
    """Return the base tables of the configured database, or ``[]``."""

    try:
        tables = _catalog_tables(ctx)
    except DashboardError as exc:
        current_app.logger.warning("Unable to list tables: %s", exc)
        return []
    current_app.logger.info("Tables found: %s", tables)
    return tables


def get_table_structure(ctx: DashboardContext, table: str) -> list[dict]:
    try:
        ctx.require_configured()
        return _catalog_columns(ctx, _require_table(table))
    except DashboardError as exc:
        current_app.logger.warning("Unable to read structure of %s: %s", table, exc)
        return []


def resolve_schema(ctx: DashboardContext, table: str | None = None) -> TableSchema:
    """Return the schema for ``table`` or for the default table.

    Without a table the configured default is used, falling back to the first
    catalog table, which is then saved as the default.  Requested tables are
    checked against a fresh catalog listing before any column is read.
    """

    config = ctx.require_configured()
    requested = (table or "").strip() or config.default_table
    pin_default = not (table or "").strip() and not config.default_table

    if requested:
        cached = ctx.cached_schema(requested)
        if cached is not None:
            return cached

    tables = _catalog_tables(ctx)
    if not tables:
        raise SchemaDetectionFailed(f"No tables found in database '{config.database}'")
    if not requested:
        requested = tables[0]
    elif requested not in tables:
        raise TableNotFound(f"Table '{requested}' does not exist in '{config.database}'")

    columns = _catalog_columns(ctx, requested)
    schema = classify_columns(requested, [column["columnName"] for column in columns])
    ctx.store_schema(schema)
    if pin_default:
        ctx.pin_default_table(requested)

    current_app.logger.info(
        "Detected schema for %s: date=%s machine=%s result=%s",
        schema.table_name,
        schema.date_column,
        schema.machine_column,
        schema.result_column,
    )
    return schema


def infer_schema(ctx: DashboardContext, table: str | None = None) -> TableSchema | None:
    try:
        return resolve_schema(ctx, table)
    except DashboardError as exc:
        current_app.logger.warning("Schema detection failed: %s", exc)
        return None


def get_unique_identifiers(ctx: DashboardContext, table: str | None = None) -> dict:
    try:
        schema = resolve_schema(ctx, table)
        rows = ctx.execute(distinct_identifiers_statement(schema))
    except DashboardError as exc:
        current_app.logger.warning("Unable to fetch identifiers: %s", exc)
        return {"columnName": None, "values": []}
    return {
        "columnName": schema.identifier_column,
        "values": [json_safe(row.get("value")) for row in rows],
    }


def get_sample_data(ctx: DashboardContext, table: str | None, limit: int = 10) -> list[dict]:
    try:
        schema = resolve_schema(ctx, _require_table(table))
        rows = ctx.execute(sample_statement(schema, limit))
    except DashboardError as exc:
        current_app.logger.warning("Unable to fetch sample data: %s", exc)
        return []
    return shape_records(rows)


def get_all_records(ctx: DashboardContext, filters: FilterSet) -> dict:
    """Return capped records for the filters together with pass/fail stats."""

    schema = resolve_schema(ctx, _require_table(filters.table))
    rows = ctx.execute(records_statement(schema, filters))
    stats = tally_results(ctx.execute(result_breakdown_statement(schema, filters)))
    current_app.logger.info(
        "Table %s: fetched %s records (%s total)", schema.table_name, len(rows), stats["total"]
    )
    return {
        "records": shape_records(rows),
        "columns": list(schema.all_columns),
        "stats": stats,
        "schema": schema.to_dict(),
    }


def get_paginated_records(ctx: DashboardContext, filters: FilterSet) -> dict:
    schema = resolve_schema(ctx, _require_table(filters.table))
    count_rows = ctx.execute(count_statement(schema, filters))
    total = int(count_rows[0].get("total") or 0) if count_rows else 0
    rows = ctx.execute(page_statement(schema, filters)) if total else []
    current_app.logger.info(
        "Table %s, page %s fetched: %s records of %s total",
        schema.table_name,
        filters.page,
        len(rows),
        total,
    )
    return {
        "records": shape_records(rows),
        "columns": list(schema.all_columns),
        "total": total,
        "page": filters.page,
        "limit": filters.limit,
        "pages": ceil(total / filters.limit) if total else 0,
    }


def get_recent_records(
    ctx: DashboardContext, table: str | None = None, days: int = 30
) -> list[dict]:
    days = max(1, min(int(days), MAX_RECENT_DAYS))
    schema = resolve_schema(ctx, table)
    rows = ctx.execute(recent_statement(schema, days))
    current_app.logger.info(
        "Last %s days data from %s: %s records", days, schema.table_name, len(rows)
    )
    return shape_records(rows)


def get_record_history(
    ctx: DashboardContext, record: Mapping[str, Any] | None, table: str | None
) -> list[dict]:
    """Return the rows sharing ``record``'s identifier, most recent first."""

    schema = resolve_schema(ctx, _require_table(table))
    if not isinstance(record, Mapping):
        raise ValidationFailed("A record is required to look up its history")

    column = schema.identifier_column
    value = record.get(column)
    if value in (None, ""):
        raise ValidationFailed(f"Record has no value for identifier column '{column}'")
    return shape_records(ctx.execute(lookup_statement(schema, column, value)))


def get_production_summary(ctx: DashboardContext, filters: FilterSet) -> dict:
    schema = resolve_schema(ctx, filters.table)
    results = run_stages(ctx.execute, schema, filters, SUMMARY_STAGES)
    return build_production_summary(schema, results, datetime.now())


def get_machine_rollups(ctx: DashboardContext, filters: FilterSet) -> list[dict]:
    schema = resolve_schema(ctx, filters.table)
    results = run_stages(ctx.execute, schema, filters, MACHINE_STAGES)
    return build_machine_rollups(results["machines"], schema, datetime.now())


def get_connection_config(ctx: DashboardContext) -> ConnectionConfig:
    return ctx.connection_config


def save_connection_config(ctx: DashboardContext, payload: Mapping[str, Any]) -> ConnectionConfig:
    """Replace the saved settings; cached schemas are dropped and re-detected."""

    config = ConnectionConfig.from_dict(payload)
    ctx.save_config(config)
    current_app.logger.info(
        "Database settings saved for %s/%s", config.server, config.database
    )
    return config


def clear_connection_config(ctx: DashboardContext) -> None:
    ctx.clear_config()
    current_app.logger.info("Logged out: DB config cleared.")


def check_connection(ctx: DashboardContext, payload: Mapping[str, Any]) -> dict:
    """Probe the database described by ``payload`` without saving it."""

    config = ConnectionConfig.from_dict(payload)
    if not config.is_configured:
        return {"ok": False, "message": "Server and database are required"}
    try:
        ctx.execute(PROBE_STATEMENT, config=config)
    except DashboardError as exc:
        cause = exc.__cause__
        return {"ok": False, "message": str(cause) if cause else str(exc)}
    return {"ok": True}
