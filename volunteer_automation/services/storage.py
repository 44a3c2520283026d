"""Table-name driven reads and writes.

Workflow definitions name their target tables as data, so condition triggers
and ``update_records`` actions resolve tables from the model metadata at run
time instead of importing model classes.
"""
from __future__ import annotations

import uuid
from typing import Any, Iterable

from sqlalchemy import Column, ColumnElement, Table, Uuid, func, select, update
from sqlalchemy.orm import Session

from volunteer_automation.core.exceptions import ValidationError
from volunteer_automation.models import Base

# Internal bookkeeping tables are never writable from workflow definitions.
PROTECTED_TABLES = frozenset({"ai_workflows", "workflow_executions"})


def resolve_table(name: str) -> Table:
    table = Base.metadata.tables.get(name)
    if table is None:
        raise ValidationError(f"Unknown table: {name}")
    return table


def coerce_value(column: Column, value: Any) -> Any:
    """Turn JSON-friendly strings into the column's Python type where needed."""
    if isinstance(column.type, Uuid) and isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid id {value!r} for column {column.name}") from exc
    return value


def equality_filters(table: Table, conditions: dict[str, Any]) -> list[ColumnElement[bool]]:
    filters = []
    for key, value in conditions.items():
        column = table.c.get(key)
        if column is None:
            raise ValidationError(f"Unknown column {key!r} on table {table.name}")
        filters.append(column == coerce_value(column, value))
    return filters


def count_rows(db: Session, table_name: str, conditions: dict[str, Any] | None = None) -> int:
    table = resolve_table(table_name)
    stmt = select(func.count()).select_from(table).where(*equality_filters(table, conditions or {}))
    return int(db.execute(stmt).scalar_one())


def update_rows(
    db: Session,
    table_name: str,
    updates: dict[str, Any],
    conditions: dict[str, Any] | None = None,
    extra_filters: Iterable[tuple[str, Any]] = (),
) -> int:
    """Apply ``updates`` to every row matching the equality conditions.

    Returns the number of rows updated. Commits on success.
    """
    if table_name in PROTECTED_TABLES:
        raise ValidationError(f"Table {table_name} cannot be updated by workflows")
    table = resolve_table(table_name)
    values = {}
    for key, value in updates.items():
        column = table.c.get(key)
        if column is None:
            raise ValidationError(f"Unknown column {key!r} on table {table.name}")
        values[key] = coerce_value(column, value)
    where = dict(conditions or {})
    where.update(dict(extra_filters))
    stmt = update(table).where(*equality_filters(table, where)).values(**values)
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return int(result.rowcount or 0)
