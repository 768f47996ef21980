"""Sequential stages behind the production summary.

Each stage builds its statement from the resolved schema, the filters and the
rows gathered by earlier stages, or returns ``None`` to skip.  Stages run one
after another because later ones are only useful once earlier ones succeed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from dashboard.queries import (
    FilterSet,
    Statement,
    hourly_statement,
    machine_rollup_statement,
    result_breakdown_statement,
)
from dashboard.schema import TableSchema

StageResults = Mapping[str, list[dict[str, Any]]]
StageBuilder = Callable[[TableSchema, FilterSet, StageResults], "Statement | None"]


@dataclass(frozen=True)
class Stage:
    name: str
    build: StageBuilder


def _has_rows(results: StageResults) -> bool:
    return any(int(row.get("n") or 0) > 0 for row in results.get("stats") or [])


def _stats_stage(schema: TableSchema, filters: FilterSet, results: StageResults):
    return result_breakdown_statement(schema, filters)


def _hourly_stage(schema: TableSchema, filters: FilterSet, results: StageResults):
    if not _has_rows(results):
        return None
    return hourly_statement(schema, filters)


def _machines_stage(schema: TableSchema, filters: FilterSet, results: StageResults):
    if not _has_rows(results) or schema.machine_column is None:
        return None
    return machine_rollup_statement(schema, filters)


SUMMARY_STAGES: tuple[Stage, ...] = (
    Stage("stats", _stats_stage),
    Stage("hourly", _hourly_stage),
    Stage("machines", _machines_stage),
)

def _machines_only_stage(schema: TableSchema, filters: FilterSet, results: StageResults):
    if schema.machine_column is None:
        return None
    return machine_rollup_statement(schema, filters)


MACHINE_STAGES: tuple[Stage, ...] = (Stage("machines", _machines_only_stage),)


def run_stages(
    execute: Callable[[Statement], list[dict[str, Any]]],
    schema: TableSchema,
    filters: FilterSet,
    stages: Sequence[Stage] = SUMMARY_STAGES,
) -> dict[str, list[dict[str, Any]]]:
    """Run ``stages`` in order, feeding each the results gathered so far."""

    results: dict[str, list[dict[str, Any]]] = {}
    for stage in stages:
        statement = stage.build(schema, filters, results)
        results[stage.name] = execute(statement) if statement is not None else []
    return results


__all__ = ["MACHINE_STAGES", "SUMMARY_STAGES", "Stage", "run_stages"]
