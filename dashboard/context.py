"""Process-wide dashboard state passed explicitly to every operation."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from config.connection import (
    DEFAULT_DRIVER,
    LOGGED_OUT_CONFIG,
    ConnectionConfig,
    build_connection_string,
    load_connection_config,
    save_connection_config,
)
from dashboard.errors import DashboardError, NotConfigured, QueryFailed
from dashboard.queries import Statement
from dashboard.schema import TableSchema

_DRIVER_MISSING_MESSAGE = (
    "Unable to reach the database because the pyodbc package or the ODBC "
    "driver manager is not installed. Install unixODBC (or the Windows ODBC "
    "driver) and the Microsoft ODBC Driver for SQL Server."
)


def pyodbc_connect(connection_string: str):
    """Open a pyodbc connection, importing the driver on first use."""

    try:
        import pyodbc
    except ImportError as exc:  # pragma: no cover - depends on host libraries
        raise NotConfigured(_DRIVER_MISSING_MESSAGE) from exc
    return pyodbc.connect(connection_string, autocommit=True)


class DashboardContext:
    """Connection settings plus a per-table schema cache.

    The schema cache maps table name to :class:`TableSchema`; entries are
    replaced whole and the cache is dropped whenever the connection settings
    change.
    """

    def __init__(
        self,
        config_path: str | Path,
        *,
        connect: Callable[[str], Any] = pyodbc_connect,
        driver: str = DEFAULT_DRIVER,
    ) -> None:
        self.config_path = Path(config_path)
        self.driver = driver
        self._connect = connect
        self._lock = threading.Lock()
        self.connection_config = load_connection_config(self.config_path)
        self.schema_cache: dict[str, TableSchema] = {}

    # -- configuration -----------------------------------------------------

    def require_configured(self) -> ConnectionConfig:
        config = self.connection_config
        if not config.is_configured:
            raise NotConfigured(
                "Database connection is not configured. Open the database "
                "settings and enter a server and database."
            )
        return config

    def save_config(self, config: ConnectionConfig) -> None:
        with self._lock:
            save_connection_config(self.config_path, config)
            self.connection_config = config
            self.schema_cache.clear()

    def clear_config(self) -> None:
        self.save_config(LOGGED_OUT_CONFIG)

    def pin_default_table(self, table: str) -> None:
        with self._lock:
            config = self.connection_config.with_default_table(table)
            save_connection_config(self.config_path, config)
            self.connection_config = config

    # -- schema cache ------------------------------------------------------

    def cached_schema(self, table: str) -> TableSchema | None:
        return self.schema_cache.get(table)

    def store_schema(self, schema: TableSchema) -> None:
        with self._lock:
            self.schema_cache[schema.table_name] = schema

    def invalidate_schemas(self) -> None:
        with self._lock:
            self.schema_cache.clear()

    # -- execution ---------------------------------------------------------

    def connection_string(self, config: ConnectionConfig | None = None) -> str:
        return build_connection_string(config or self.connection_config, self.driver)

    @contextmanager
    def connection(self, config: ConnectionConfig | None = None) -> Iterator[Any]:
        conn = self._connect(self.connection_string(config))
        try:
            yield conn
        finally:
            conn.close()

    def execute(
        self, statement: Statement, *, config: ConnectionConfig | None = None
    ) -> list[dict[str, Any]]:
        """Run ``statement`` and return its rows as dictionaries.

        Driver errors are wrapped in :class:`QueryFailed` carrying the SQL.
        """

        if config is None:
            self.require_configured()
        try:
            with self.connection(config) as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(statement.sql, *statement.params)
                    if cursor.description is None:
                        return []
                    columns = [column[0] for column in cursor.description]
                    return [dict(zip(columns, row)) for row in cursor.fetchall()]
                finally:
                    cursor.close()
        except DashboardError:
            raise
        except Exception as exc:
            raise QueryFailed(f"Database query failed: {exc}", statement.sql) from exc


__all__ = ["DashboardContext", "pyodbc_connect"]
