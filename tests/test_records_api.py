import io
from datetime import date

from docx import Document
from openpyxl import load_workbook

from conftest import BATH_ROW, configure, install_bath_data, login
from dashboard.main import routes
from dashboard.main.exports import PdfGenerationError


def _client(app_instance):
    client = app_instance.test_client()
    login(client)
    return client


def test_records_require_login(app_instance):
    response = app_instance.test_client().get("/api/records?table=BathData")

    assert response.status_code == 401


def test_bath_data_morning_scenario(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)
    client = _client(app_instance)

    response = client.get("/api/records?table=BathData&shift=morning")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["stats"] == {"total": 1, "pass": 1, "fail": 0}
    assert payload["columns"] == ["ID", "DateAndTime", "Machine", "Result"]
    assert payload["records"] == [
        {"ID": 1, "DateAndTime": "2024-01-01T09:00:00", "Machine": "M1", "Result": "PASS"}
    ]
    schema = payload["schema"]
    assert schema["dateColumn"] == "DateAndTime"
    assert schema["machineColumn"] == "Machine"
    assert schema["resultColumn"] == "Result"

    (sql, params), = fake_db.sql_matching("SELECT TOP (1000)")
    assert "DATEPART(HOUR, [DateAndTime]) >= 6 AND DATEPART(HOUR, [DateAndTime]) < 14" in sql
    assert params == ()
    assert fake_db.connection_strings[0].endswith("Trusted_Connection=Yes;")


def test_filters_are_sent_as_parameters(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)
    client = _client(app_instance)

    client.get("/api/records?table=BathData&date=2024-01-01&identifier=1")

    (sql, params), = fake_db.sql_matching("SELECT TOP (1000)")
    assert "CAST([DateAndTime] AS DATE) = ? AND [ID] = ?" in sql
    assert params == (date(2024, 1, 1), "1")


def test_records_without_configuration(app_instance):
    client = _client(app_instance)

    response = client.get("/api/records?table=BathData")

    assert response.status_code == 503
    assert response.get_json()["error"] == "NotConfigured"
    assert client.get("/api/tables").get_json() == []


def test_records_require_a_table(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/records")

    assert response.status_code == 400
    assert response.get_json() == {"message": "No table specified", "error": "ValidationFailed"}


def test_unknown_table_is_rejected_before_reading_columns(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get(
        "/api/records", query_string={"table": "Users];DROP TABLE x"}
    )

    assert response.status_code == 404
    assert response.get_json()["error"] == "TableNotFound"
    assert fake_db.sql_matching("INFORMATION_SCHEMA.COLUMNS") == []


def test_query_failure_includes_driver_text(app_instance, fake_db):
    install_bath_data(fake_db)
    fake_db.fail("SELECT TOP (1000)", RuntimeError("Invalid column name 'DateAndTime'"))
    configure(app_instance)

    response = _client(app_instance).get("/api/records?table=BathData")

    assert response.status_code == 502
    payload = response.get_json()
    assert payload["error"] == "QueryFailed"
    assert "Invalid column name 'DateAndTime'" in payload["message"]


def test_paginated_records(app_instance, fake_db):
    install_bath_data(fake_db)
    fake_db.respond("COUNT(*) AS total", ["total"], [(25,)])
    configure(app_instance)

    response = _client(app_instance).get("/api/records/page?table=BathData&page=3&limit=10")

    payload = response.get_json()
    assert payload["total"] == 25
    assert payload["page"] == 3
    assert payload["limit"] == 10
    assert payload["pages"] == 3
    (sql, params), = fake_db.sql_matching("OFFSET ? ROWS")
    assert params == (20, 10)


def test_non_positive_page_is_clamped(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/records/page?table=BathData&page=-2&limit=0")

    payload = response.get_json()
    assert payload["page"] == 1
    assert payload["limit"] == 20
    (sql, params), = fake_db.sql_matching("OFFSET ? ROWS")
    assert params == (0, 20)


def test_summary_pins_first_table_as_default(app_instance, fake_db):
    install_bath_data(fake_db, tables=("BathData", "ZincData"))
    configure(app_instance)

    response = _client(app_instance).get("/api/summary?shift=morning")

    payload = response.get_json()
    assert payload["table"] == "BathData"
    assert payload["totalProduction"] == 1
    assert payload["passCount"] == 1
    assert payload["efficiency"] == 100.0
    assert payload["downtimeHours"] == 0.0
    assert len(payload["hourly"]) == 12
    assert payload["machines"][0]["id"] == "M1"
    assert payload["machines"][0]["status"] == "offline"
    ctx = app_instance.config["DASHBOARD_CONTEXT"]
    assert ctx.connection_config.default_table == "BathData"


def test_summary_stages_run_in_order(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance, default_table="BathData")

    _client(app_instance).get("/api/summary")

    issued = [sql for sql, _ in fake_db.statements]
    stats_index = next(i for i, sql in enumerate(issued) if "AS result_value" in sql)
    hourly_index = next(i for i, sql in enumerate(issued) if "AS hour" in sql)
    machines_index = next(i for i, sql in enumerate(issued) if "AS machine," in sql)
    assert stats_index < hourly_index < machines_index


def test_empty_summary_skips_later_stages(app_instance, fake_db):
    install_bath_data(fake_db)
    fake_db.respond("AS result_value", ["result_value", "n"], [])
    configure(app_instance, default_table="BathData")

    payload = _client(app_instance).get("/api/summary").get_json()

    assert payload["totalProduction"] == 0
    assert payload["efficiency"] == 0.0
    assert payload["machines"] == []
    assert payload["hourly"] == []
    assert fake_db.sql_matching("AS hour") == []


def test_schema_cache_is_per_table(app_instance, fake_db):
    install_bath_data(fake_db, tables=("BathData", "Calibration"))
    fake_db.respond(
        "INFORMATION_SCHEMA.COLUMNS",
        ["COLUMN_NAME", "DATA_TYPE", "IS_NULLABLE"],
        [("Gauge", "nvarchar", "NO"), ("CheckTime", "datetime", "NO")],
        params=("Production", "Calibration", "Production", "Calibration"),
    )
    configure(app_instance)
    client = _client(app_instance)

    bath = client.get("/api/schema?table=BathData").get_json()
    calibration = client.get("/api/schema?table=Calibration").get_json()
    client.get("/api/schema?table=BathData")

    assert bath["machineColumn"] == "Machine"
    assert calibration["dateColumn"] == "CheckTime"
    assert calibration["machineColumn"] is None
    ctx = app_instance.config["DASHBOARD_CONTEXT"]
    assert set(ctx.schema_cache) == {"BathData", "Calibration"}
    assert len(fake_db.sql_matching("INFORMATION_SCHEMA.COLUMNS")) == 2


def test_schema_endpoint_returns_null_when_catalog_empty(app_instance, fake_db):
    install_bath_data(fake_db, tables=())
    configure(app_instance)

    response = _client(app_instance).get("/api/schema")

    assert response.status_code == 200
    assert response.get_json() is None


def test_table_structure_and_identifiers(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)
    client = _client(app_instance)

    structure = client.get("/api/tables/BathData/structure").get_json()
    identifiers = client.get("/api/identifiers?table=BathData").get_json()

    assert structure[0] == {"columnName": "ID", "dataType": "int", "nullable": False}
    assert identifiers == {"columnName": "ID", "values": [1]}


def test_listing_failures_degrade_to_empty(app_instance, fake_db):
    fake_db.fail("INFORMATION_SCHEMA", RuntimeError("network down"))
    configure(app_instance)
    client = _client(app_instance)

    assert client.get("/api/tables").get_json() == []
    assert client.get("/api/tables/BathData/structure").get_json() == []
    assert client.get("/api/identifiers?table=BathData").get_json() == {
        "columnName": None,
        "values": [],
    }
    assert client.get("/api/tables/BathData/sample").get_json() == []


def test_record_history_uses_identifier_value(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).post(
        "/api/records/history",
        json={"tableName": "BathData", "record": {"ID": 1, "Result": "PASS"}},
    )

    assert response.status_code == 200
    assert len(response.get_json()) == 1
    (sql, params), = fake_db.sql_matching("TOP (500)")
    assert "WHERE [ID] = ?" in sql
    assert params == (1,)


def test_record_history_requires_table(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).post("/api/records/history", json={"record": {"ID": 1}})

    assert response.status_code == 400


def test_machine_rollups(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    payload = _client(app_instance).get("/api/machines?table=BathData").get_json()

    assert payload == [
        {
            "id": "M1",
            "status": "offline",
            "production": 1,
            "efficiency": 100.0,
            "lastUpdated": payload[0]["lastUpdated"],
        }
    ]
    assert payload[0]["lastUpdated"].endswith("days ago")


def test_excel_export(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/records/export?table=BathData&format=xlsx")

    assert response.status_code == 200
    workbook = load_workbook(io.BytesIO(response.data))
    sheet = workbook.active
    rows = list(sheet.iter_rows(values_only=True))
    assert rows[0] == ("ID", "DateAndTime", "Machine", "Result")
    assert rows[1][0] == BATH_ROW[0]
    assert rows[1][3] == "PASS"


def test_pdf_export_reports_missing_dependencies(app_instance, fake_db, monkeypatch):
    install_bath_data(fake_db)
    configure(app_instance)

    def _raise_pdf_error(*args, **kwargs):
        raise PdfGenerationError("Install Pango, GObject, and Cairo")

    monkeypatch.setattr(routes, "render_html_to_pdf", _raise_pdf_error)

    response = _client(app_instance).get("/api/records/export?table=BathData&format=pdf")

    assert response.status_code == 503
    assert response.get_json() == {"message": "Install Pango, GObject, and Cairo"}


def test_export_rejects_unknown_format(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/records/export?table=BathData&format=csv")

    assert response.status_code == 400


def test_word_export_has_header_and_record_rows(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/records/export?table=BathData&format=docx")

    assert response.status_code == 200
    assert response.headers["Content-Disposition"].endswith("BathData_report.docx")
    table = Document(io.BytesIO(response.data)).tables[0]
    rows = [[cell.text for cell in row.cells] for row in table.rows]
    assert rows == [
        ["ID", "DateAndTime", "Machine", "Result"],
        ["1", "2024-01-01T09:00:00", "M1", "PASS"],
    ]


def test_sample_data_limit_is_capped(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).get("/api/tables/BathData/sample?limit=500")

    assert response.get_json() == [
        {"ID": 1, "DateAndTime": "2024-01-01T09:00:00", "Machine": "M1", "Result": "PASS"}
    ]
    (sql, params), = fake_db.sql_matching("SELECT TOP (100) * FROM [BathData]")
    assert params == ()


def test_non_object_json_body_falls_back_to_query_args(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)
    client = _client(app_instance)

    response = client.post("/api/records?table=BathData", json=["ZincData"])

    assert response.status_code == 200
    assert response.get_json()["schema"]["tableName"] == "BathData"


def test_numeric_table_name_is_looked_up_as_text(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).post("/api/records", json={"tableName": 42})

    assert response.status_code == 404
    assert response.get_json()["error"] == "TableNotFound"


def test_record_history_with_non_object_body(app_instance, fake_db):
    install_bath_data(fake_db)
    configure(app_instance)

    response = _client(app_instance).post("/api/records/history", json=[1, 2])

    assert response.status_code == 400
    assert response.get_json()["error"] == "ValidationFailed"
