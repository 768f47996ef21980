import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import dashboard as app_module
from config.connection import ConnectionConfig
from dashboard import create_app


class FakeCursor:
    def __init__(self, database):
        self._database = database
        self._rows = []
        self.description = None

    def execute(self, sql, *params):
        self._database.statements.append((sql, params))
        for needle, error in self._database.failures:
            if needle in sql:
                raise error
        for needle, expected, columns, rows in self._database.responses:
            if needle in sql and (expected is None or expected == params):
                self.description = [(column,) for column in columns]
                self._rows = list(rows)
                return self
        raise AssertionError(f"Unexpected query: {sql} {params}")

    def fetchall(self):
        return list(self._rows)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, database):
        self._database = database
        self.closed = False

    def cursor(self):
        return FakeCursor(self._database)

    def close(self):
        self.closed = True


class FakeDatabase:
    """Stand-in for pyodbc answering statements by SQL substring."""

    def __init__(self):
        self.responses = []
        self.failures = []
        self.statements = []
        self.connection_strings = []

    def respond(self, needle, columns, rows, params=None):
        entry = (needle, params, columns, rows)
        for index, existing in enumerate(self.responses):
            if existing[0] == needle and existing[1] == params:
                self.responses[index] = entry
                return
        if params is not None:
            self.responses.insert(0, entry)
        else:
            self.responses.append(entry)

    def fail(self, needle, error):
        self.failures.append((needle, error))

    def connect(self, connection_string):
        self.connection_strings.append(connection_string)
        return FakeConnection(self)

    def sql_matching(self, needle):
        return [(sql, params) for sql, params in self.statements if needle in sql]


BATH_COLUMNS = [
    ("ID", "int", "NO"),
    ("DateAndTime", "datetime", "YES"),
    ("Machine", "nvarchar", "YES"),
    ("Result", "nvarchar", "YES"),
]
BATH_ROW = (1, datetime(2024, 1, 1, 9, 0, 0), "M1", "PASS")


def install_bath_data(fake_db, tables=("BathData",)):
    fake_db.respond(
        "FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_TYPE",
        ["TABLE_NAME"],
        [(name,) for name in tables],
    )
    fake_db.respond(
        "INFORMATION_SCHEMA.COLUMNS",
        ["COLUMN_NAME", "DATA_TYPE", "IS_NULLABLE"],
        BATH_COLUMNS,
    )
    fake_db.respond(
        "AS machine,",
        ["machine", "result_value", "n", "last_updated"],
        [("M1", "PASS", 1, datetime(2024, 1, 1, 9, 0, 0))],
    )
    fake_db.respond("AS hour", ["hour", "n"], [(9, 1)])
    fake_db.respond("AS result_value", ["result_value", "n"], [("PASS", 1)])
    fake_db.respond("COUNT(*) AS total", ["total"], [(1,)])
    fake_db.respond("DISTINCT TOP", ["value"], [(1,)])
    fake_db.respond("SELECT TOP", [column for column, _, _ in BATH_COLUMNS], [BATH_ROW])
    fake_db.respond("OFFSET ? ROWS", [column for column, _, _ in BATH_COLUMNS], [BATH_ROW])
    fake_db.respond("SELECT 1 AS ok", ["ok"], [(1,)])


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def app_instance(monkeypatch, tmp_path, fake_db):
    monkeypatch.setattr(app_module, "pyodbc_connect", fake_db.connect)
    monkeypatch.setenv("SECRET_KEY", "test")
    monkeypatch.setenv("DASHBOARD_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("ODBC_DRIVER", raising=False)
    return create_app()


def configure(app, **overrides):
    values = {"server": "plant-sql", "database": "Production", "auth_mode": "windows"}
    values.update(overrides)
    config = ConnectionConfig(**values)
    app.config["DASHBOARD_CONTEXT"].save_config(config)
    return config


def login(client, email="tester@example.com", role="USER"):
    with client.session_transaction() as session:
        session["email"] = email
        session["role"] = role
