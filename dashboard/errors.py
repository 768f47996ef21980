"""Error types raised by the dashboard core.

Every error carries a short machine-readable ``code`` and the HTTP status the
JSON boundary answers with.  Messages are meant to be shown to the operator
as-is, so they include the underlying driver text where there is one.
"""

from __future__ import annotations


class DashboardError(RuntimeError):
    """Base class for failures surfaced to the presentation layer."""

    code = "DashboardError"
    status = 500


class NotConfigured(DashboardError):
    """No usable connection descriptor has been saved."""

    code = "NotConfigured"
    status = 503


class CatalogFailed(DashboardError):
    """Listing tables or columns from the catalog failed."""

    code = "CatalogFailed"
    status = 502


class ColumnIntrospectionFailed(CatalogFailed):
    code = "ColumnIntrospectionFailed"


class SchemaDetectionFailed(DashboardError):
    """No usable table or column could be found."""

    code = "SchemaDetectionFailed"
    status = 502


class QueryFailed(DashboardError):
    """A statement against the external database raised a driver error."""

    code = "QueryFailed"
    status = 502

    def __init__(self, message: str, statement: str | None = None) -> None:
        self.statement = statement
        if statement:
            leading = " ".join(statement.split())[:120]
            message = f"{message} (while running: {leading})"
        super().__init__(message)


class ValidationFailed(DashboardError):
    """A request is missing a required field or names an unknown value."""

    code = "ValidationFailed"
    status = 400


class TableNotFound(ValidationFailed):
    code = "TableNotFound"
    status = 404


__all__ = [
    "CatalogFailed",
    "ColumnIntrospectionFailed",
    "DashboardError",
    "NotConfigured",
    "QueryFailed",
    "SchemaDetectionFailed",
    "TableNotFound",
    "ValidationFailed",
]
