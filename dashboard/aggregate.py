"""Shape raw result rows into dashboard statistics.

Everything here is pure: the functions take rows already fetched by
:mod:`dashboard.db` and return plain dictionaries ready for JSON.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping

from dashboard.schema import TableSchema

PASS_MARKERS = ("PASS", "OK", "SUCCESS")
FAIL_MARKERS = ("FAIL", "NG", "ERROR")

SHIFT_HOURS = 8
ACTIVE_WINDOW = timedelta(minutes=5)
IDLE_WINDOW = timedelta(hours=1)
DAYTIME_HOURS = range(8, 20)


def classify_result(value: Any) -> str | None:
    """Return ``"pass"``, ``"fail"`` or ``None`` for a result cell."""

    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    if any(marker in text for marker in PASS_MARKERS):
        return "pass"
    if any(marker in text for marker in FAIL_MARKERS):
        return "fail"
    return None


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def tally_results(rows: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    """Fold ``(result_value, n)`` rows into total/pass/fail counters."""

    stats = {"total": 0, "pass": 0, "fail": 0}
    for row in rows:
        count = _count(row.get("n"))
        stats["total"] += count
        outcome = classify_result(row.get("result_value"))
        if outcome is not None:
            stats[outcome] += count
    return stats


def efficiency(passed: int, total: int, has_result_column: bool) -> float:
    if total <= 0:
        return 0.0
    if not has_result_column:
        return 100.0
    return round(100.0 * passed / total, 1)


def downtime_hours(failures: int, total: int) -> float:
    """Estimate downtime as the failing share of an eight hour shift."""

    if total <= 0 or failures <= 0:
        return 0.0
    return round(failures / total * SHIFT_HOURS, 1)


def coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        cleaned = value.strip()
        if cleaned.endswith("Z"):
            cleaned = cleaned[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(cleaned)
        except ValueError:
            return None
    return None


def _age(last_updated: datetime, now: datetime) -> timedelta:
    if (last_updated.tzinfo is None) != (now.tzinfo is None):
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=now.tzinfo)
        else:
            now = now.replace(tzinfo=last_updated.tzinfo)
    age = now - last_updated
    return age if age > timedelta(0) else timedelta(0)


def machine_status(last_updated: Any, now: datetime) -> str:
    moment = coerce_datetime(last_updated)
    if moment is None:
        return "offline"
    age = _age(moment, now)
    if age < ACTIVE_WINDOW:
        return "active"
    if age < IDLE_WINDOW:
        return "idle"
    return "offline"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def relative_time(last_updated: Any, now: datetime) -> str:
    moment = coerce_datetime(last_updated)
    if moment is None:
        return "Never"
    minutes = int(_age(moment, now).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return _plural(minutes, "min")
    hours = minutes // 60
    if hours < 24:
        return _plural(hours, "hour")
    return _plural(hours // 24, "day")


def hourly_histogram(rows: Iterable[Mapping[str, Any]]) -> list[int]:
    buckets = [0] * 24
    for row in rows:
        hour = row.get("hour")
        if hour is None:
            continue
        try:
            index = int(hour)
        except (TypeError, ValueError):
            continue
        if 0 <= index < 24:
            buckets[index] += _count(row.get("n"))
    return buckets


def daytime_timeline(buckets: list[int]) -> list[dict[str, Any]]:
    return [
        {"hour": hour, "label": f"{hour:02d}:00", "count": buckets[hour]}
        for hour in DAYTIME_HOURS
    ]


def build_machine_rollups(
    rows: Iterable[Mapping[str, Any]], schema: TableSchema, now: datetime
) -> list[dict[str, Any]]:
    """Group ``(machine, result_value, n, last_updated)`` rows per machine."""

    totals: defaultdict[str, dict[str, Any]] = defaultdict(
        lambda: {"production": 0, "pass": 0, "last_updated": None}
    )
    for row in rows:
        machine = row.get("machine")
        if machine is None:
            continue
        entry = totals[str(machine)]
        count = _count(row.get("n"))
        entry["production"] += count
        if classify_result(row.get("result_value")) == "pass":
            entry["pass"] += count
        moment = coerce_datetime(row.get("last_updated"))
        if moment is not None and (
            entry["last_updated"] is None or moment > entry["last_updated"]
        ):
            entry["last_updated"] = moment

    rollups = []
    for machine_id in sorted(totals):
        entry = totals[machine_id]
        rollups.append(
            {
                "id": machine_id,
                "status": machine_status(entry["last_updated"], now),
                "production": entry["production"],
                "efficiency": efficiency(
                    entry["pass"], entry["production"], schema.result_column is not None
                ),
                "lastUpdated": relative_time(entry["last_updated"], now),
            }
        )
    return rollups


def empty_summary(schema: TableSchema | None) -> dict[str, Any]:
    return {
        "table": schema.table_name if schema else None,
        "totalProduction": 0,
        "passCount": 0,
        "failCount": 0,
        "efficiency": 0.0,
        "downtimeHours": 0.0,
        "hourly": [],
        "machines": [],
        "schema": schema.to_dict() if schema else None,
    }


def build_production_summary(
    schema: TableSchema, results: Mapping[str, list[dict]], now: datetime
) -> dict[str, Any]:
    """Combine the staged query results into the production summary."""

    stats = tally_results(results.get("stats") or [])
    if stats["total"] == 0:
        return empty_summary(schema)

    summary = empty_summary(schema)
    summary.update(
        {
            "totalProduction": stats["total"],
            "passCount": stats["pass"],
            "failCount": stats["fail"],
            "efficiency": efficiency(
                stats["pass"], stats["total"], schema.result_column is not None
            ),
            "downtimeHours": downtime_hours(stats["fail"], stats["total"]),
            "hourly": daytime_timeline(hourly_histogram(results.get("hourly") or [])),
            "machines": build_machine_rollups(results.get("machines") or [], schema, now),
        }
    )
    return summary


def json_safe(value: Any) -> Any:
    """Convert driver scalars into JSON friendly values."""

    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    return str(value)


def shape_records(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    return [{str(key): json_safe(value) for key, value in row.items()} for row in rows]


__all__ = [
    "FAIL_MARKERS",
    "PASS_MARKERS",
    "build_machine_rollups",
    "build_production_summary",
    "classify_result",
    "coerce_datetime",
    "daytime_timeline",
    "downtime_hours",
    "efficiency",
    "empty_summary",
    "hourly_histogram",
    "json_safe",
    "machine_status",
    "relative_time",
    "shape_records",
    "tally_results",
]
