"""Row-level SQL shared by the entity store and the cascade engine."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, RowMapping

from projectit.errors import InvalidEntityType
from projectit.persistence.dialects import Dialect, Params
from projectit.persistence.relations import ENTITY_TYPES

META_FIELDS = ("created_date", "updated_date", "created_by")


def validate_entity(entity_type: str) -> str:
    if entity_type not in ENTITY_TYPES:
        raise InvalidEntityType(entity_type)
    return entity_type


def as_uuid(value: Any) -> str | None:
    """Canonical string form of a UUID, or None if ``value`` is not one."""
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        return None


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def format_row(row: RowMapping | dict[str, Any]) -> dict[str, Any]:
    """Flatten a stored row into the API shape ``{id, ...data, created_date, updated_date, created_by}``."""
    data = row["data"]
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    formatted: dict[str, Any] = {"id": str(row["id"])}
    formatted.update(data or {})
    for name in META_FIELDS:
        formatted[name] = _iso(row[name])
    return formatted


def raw_data(row: RowMapping | dict[str, Any]) -> dict[str, Any]:
    data = row["data"]
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    return dict(data or {})


def fetch_row(
    conn: Connection,
    dialect: Dialect,
    entity_type: str,
    entity_id: str,
    lock: bool = False,
) -> RowMapping | None:
    """Fetch one stored row by id, optionally locking it for the transaction."""
    canonical = as_uuid(entity_id)
    if canonical is None:
        return None
    params = Params()
    sql = (
        f'SELECT id, data, created_date, updated_date, created_by FROM "{entity_type}"'
        f" WHERE id = {dialect.id_value(params.bind(canonical))}"
    )
    if lock:
        sql += dialect.lock_clause
    return conn.execute(text(sql), params.values).mappings().first()


def insert_row(
    conn: Connection,
    dialect: Dialect,
    entity_type: str,
    data: dict[str, Any],
    created_by: str | None = None,
) -> dict[str, Any]:
    """Insert one row with a fresh id and database timestamps; return it formatted."""
    entity_id = str(uuid.uuid4())
    params = Params()
    id_ref = dialect.id_value(params.bind(entity_id))
    data_ref = dialect.json_value(params.bind(json.dumps(data)))
    by_ref = params.bind(created_by)
    conn.execute(
        text(
            f'INSERT INTO "{entity_type}" (id, data, created_date, updated_date, created_by)'
            f" VALUES ({id_ref}, {data_ref}, {dialect.now}, {dialect.now}, {by_ref})"
        ),
        params.values,
    )
    row = fetch_row(conn, dialect, entity_type, entity_id)
    return format_row(row)  # type: ignore[arg-type]
