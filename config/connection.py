"""Persisted connection settings for the external SQL Server database.

The settings live in a single JSON document inside the installation's data
directory.  The document is replaced wholesale on every save; keys missing
from an older file simply fall back to empty strings so that hand-edited or
partially written files still load.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

DEFAULT_DRIVER = "ODBC Driver 17 for SQL Server"

WINDOWS_AUTH = "windows"
SQL_AUTH = "sql"

# JSON document key -> dataclass attribute
_DOCUMENT_KEYS: dict[str, str] = {
    "server": "server",
    "database": "database",
    "auth": "auth_mode",
    "user": "user",
    "password": "password",
    "defaultTable": "default_table",
}


@dataclass(frozen=True)
class ConnectionConfig:
    """Endpoint, credentials and default table for the external database."""

    server: str = ""
    database: str = ""
    auth_mode: str = ""
    user: str = ""
    password: str = ""
    default_table: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.server and self.database)

    @property
    def uses_windows_auth(self) -> bool:
        return (self.auth_mode or "").strip().lower() == WINDOWS_AUTH

    def with_default_table(self, table: str) -> "ConnectionConfig":
        return replace(self, default_table=table)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "ConnectionConfig":
        """Build a config from the persisted document or a request payload.

        Both the document keys (``auth``, ``defaultTable``) and the attribute
        names (``auth_mode``, ``default_table``) are accepted.
        """

        if not isinstance(payload, Mapping):
            payload = {}
        values: dict[str, str] = {}
        for key, attribute in _DOCUMENT_KEYS.items():
            raw = payload.get(key)
            if raw is None:
                raw = payload.get(attribute)
            values[attribute] = "" if raw is None else str(raw)
        return cls(**values)

    def to_dict(self) -> dict[str, str]:
        return {key: getattr(self, attribute) for key, attribute in _DOCUMENT_KEYS.items()}


EMPTY_CONFIG = ConnectionConfig()
LOGGED_OUT_CONFIG = ConnectionConfig(auth_mode=WINDOWS_AUTH)


def load_connection_config(path: str | Path) -> ConnectionConfig:
    """Return the persisted config, creating the default document if absent."""

    config_path = Path(path)
    if not config_path.exists():
        save_connection_config(config_path, EMPTY_CONFIG)
        return EMPTY_CONFIG

    with open(config_path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        payload = {}
    return ConnectionConfig.from_dict(payload)


def save_connection_config(path: str | Path, config: ConnectionConfig) -> None:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as fh:
        json.dump(config.to_dict(), fh, indent=2)


_ODBC_SPECIAL = (";", "{", "}")


def _odbc_value(value: str) -> str:
    """Brace-quote a connection string value that would otherwise end early."""

    if any(char in value for char in _ODBC_SPECIAL) or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def _escape_database(name: str) -> str:
    if " " in name and not (name.startswith("[") and name.endswith("]")):
        name = f"[{name}]"
    return _odbc_value(name)


def build_connection_string(
    config: ConnectionConfig, driver: str = DEFAULT_DRIVER
) -> str:
    """Return the ODBC connection string for ``config``.

    Windows (trusted) authentication ignores ``user`` and ``password``.
    Values containing ``;`` or braces are wrapped in ``{...}``.
    """

    base = (
        f"Driver={{{driver}}};"
        f"Server={_odbc_value(config.server)};"
        f"Database={_escape_database(config.database)};"
    )
    if config.uses_windows_auth:
        return base + "Trusted_Connection=Yes;"
    return base + f"UID={_odbc_value(config.user)};PWD={_odbc_value(config.password)};"


__all__ = [
    "ConnectionConfig",
    "DEFAULT_DRIVER",
    "EMPTY_CONFIG",
    "LOGGED_OUT_CONFIG",
    "SQL_AUTH",
    "WINDOWS_AUTH",
    "build_connection_string",
    "load_connection_config",
    "save_connection_config",
]
