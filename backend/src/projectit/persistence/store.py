"""EntityStore: generic CRUD over the whitelisted JSON entity tables.

Every table shares one row shape, ``{id, data, created_date, updated_date,
created_by}``, so a single store parameterized by table name serves every
entity type. Reads go through the filter translator; deletes go through the
cascade engine. Rows leave the store flattened (see ``format_row``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.engine import Engine

from projectit.errors import InvalidPayload, NotFound, TransactionFailure
from projectit.persistence.cascade import CascadeEngine, DeleteResult
from projectit.persistence.dialects import Dialect, Params, dialect_for
from projectit.persistence.filters import ScopeFilter, check_field_name, translate
from projectit.persistence.rows import (
    META_FIELDS,
    as_uuid,
    fetch_row,
    format_row,
    insert_row,
    validate_entity,
)

logger = logging.getLogger(__name__)

# Keys owned by the row itself; stripped from incoming payloads
RESERVED_FIELDS = frozenset({"id", *META_FIELDS})

_SELECT = "SELECT id, data, created_date, updated_date, created_by"


@dataclass
class ChangeEvent:
    """A committed write.

    Attributes:
        entity_type: Table that changed
        operation: "create", "update" or "delete"
        rows: Formatted rows as written (for delete, the row as it was)
        patch: The patch applied, for updates
    """

    entity_type: str
    operation: str
    rows: list[dict[str, Any]]
    patch: dict[str, Any] | None = None


ChangeListener = Callable[[ChangeEvent], None]


def _payload(entity_type: str, data: Any, what: str = "payload") -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidPayload(f"{entity_type} {what} must be a JSON object")
    return {key: value for key, value in data.items() if key not in RESERVED_FIELDS}


def _db_message(error: sa_exc.SQLAlchemyError) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


class EntityStore:
    """CRUD facade over the entity tables.

    Holds the pooled engine; every call checks a connection out for its own
    duration and returns it on every exit path.
    """

    def __init__(
        self,
        engine: Engine,
        dialect: Dialect | None = None,
        cascade: CascadeEngine | None = None,
    ):
        self.engine = engine
        self.dialect = dialect or dialect_for(engine)
        self.cascade = cascade or CascadeEngine(self.dialect)
        self._listeners: list[ChangeListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback run after every committed write."""
        self._listeners.append(listener)

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # The write is already committed
                logger.exception(
                    "Change listener %r failed for %s %s",
                    listener, event.operation, event.entity_type,
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(
        self,
        entity_type: str,
        sort: str | None = None,
        limit: Any = None,
        scope_filter: ScopeFilter | None = None,
    ) -> list[dict[str, Any]]:
        """All rows of a type, optionally restricted by a scope filter."""
        return self.filter(entity_type, None, sort, limit, scope_filter)

    def filter(
        self,
        entity_type: str,
        filter_obj: dict[str, Any] | None = None,
        sort: str | None = None,
        limit: Any = None,
        scope_filter: ScopeFilter | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching a filter object, ANDed with the scope filter if given.

        Args:
            entity_type: Whitelisted entity type
            filter_obj: ``{field: literal | {"$op": operand}}``
            sort: ``"field"`` or ``"-field"``
            limit: Maximum rows, ``None``/``0`` for all
            scope_filter: Project restriction from the access guard

        Returns:
            List of formatted rows

        Raises:
            InvalidEntityType: If the type is not whitelisted
            InvalidFilter: If the filter, sort or limit is malformed
        """
        validate_entity(entity_type)
        query = translate(
            filter_obj, sort, limit, dialect=self.dialect, scope_filter=scope_filter
        )
        sql = f'{_SELECT} FROM "{entity_type}"{query.where}{query.order_by}{query.limit}'
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), query.params.values).mappings().all()
        return [format_row(row) for row in rows]

    def get(self, entity_type: str, entity_id: str) -> dict[str, Any] | None:
        validate_entity(entity_type)
        with self.engine.connect() as conn:
            row = fetch_row(conn, self.dialect, entity_type, entity_id)
        return format_row(row) if row is not None else None

    def member_ids(self, entity_type: str, array_field: str, value: Any) -> list[str]:
        """Ids of rows whose ``data[array_field]`` array contains ``value``."""
        validate_entity(entity_type)
        check_field_name(array_field)
        params = Params()
        key = self.dialect.field_key(params, array_field)
        condition = self.dialect.array_contains(key, params, value)
        sql = f'SELECT {self.dialect.id_text} AS id FROM "{entity_type}" WHERE {condition}'
        with self.engine.connect() as conn:
            result = conn.execute(text(sql), params.values)
            return [str(row[0]) for row in result]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        entity_type: str,
        data: dict[str, Any],
        created_by: str | None = None,
    ) -> dict[str, Any]:
        """Insert one row and return it formatted."""
        validate_entity(entity_type)
        payload = _payload(entity_type, data)
        with self.engine.begin() as conn:
            row = insert_row(conn, self.dialect, entity_type, payload, created_by)
        self._notify(ChangeEvent(entity_type, "create", [row]))
        return row

    def bulk_create(
        self,
        entity_type: str,
        items: list[dict[str, Any]],
        created_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Insert every item in one transaction; all rows or none.

        Raises:
            InvalidPayload: If ``items`` is not a list of objects
            TransactionFailure: If any insert fails (nothing is kept)
        """
        validate_entity(entity_type)
        if not isinstance(items, list):
            raise InvalidPayload(f"{entity_type} bulk payload must be a JSON array")
        payloads = [_payload(entity_type, item) for item in items]

        try:
            with self.engine.begin() as conn:
                rows = [
                    insert_row(conn, self.dialect, entity_type, payload, created_by)
                    for payload in payloads
                ]
        except sa_exc.TimeoutError:
            raise
        except sa_exc.SQLAlchemyError as e:
            logger.error("Bulk create of %d %s rows rolled back: %s", len(payloads), entity_type, e)
            raise TransactionFailure(_db_message(e)) from e

        if rows:
            self._notify(ChangeEvent(entity_type, "create", rows))
        return rows

    def update(
        self,
        entity_type: str,
        entity_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """Shallow-merge ``patch`` into the row's data and refresh ``updated_date``.

        Raises:
            NotFound: If no row has that id
        """
        validate_entity(entity_type)
        changes = _payload(entity_type, patch, "patch")
        canonical = as_uuid(entity_id)
        if canonical is None:
            raise NotFound()

        params = Params()
        merged = self.dialect.merge_patch(params, changes)
        id_ref = self.dialect.id_value(params.bind(canonical))
        sql = (
            f'UPDATE "{entity_type}" SET data = {merged}, updated_date = {self.dialect.now}'
            f" WHERE id = {id_ref}"
        )
        with self.engine.begin() as conn:
            result = conn.execute(text(sql), params.values)
            if result.rowcount == 0:
                raise NotFound()
            row = format_row(fetch_row(conn, self.dialect, entity_type, canonical))

        self._notify(ChangeEvent(entity_type, "update", [row], patch=changes))
        return row

    def delete(
        self,
        entity_type: str,
        entity_id: str,
        deleted_by: str | None = None,
    ) -> DeleteResult:
        """Delete a row with its cascade and audit entry, in one transaction.

        Raises:
            NotFound: If no row has that id
            TransactionFailure: If any step fails (nothing is deleted)
        """
        validate_entity(entity_type)
        try:
            with self.engine.begin() as conn:
                result = self.cascade.delete(conn, entity_type, entity_id, deleted_by)
        except sa_exc.TimeoutError:
            raise
        except sa_exc.SQLAlchemyError as e:
            logger.error("Delete of %s %s rolled back: %s", entity_type, entity_id, e)
            raise TransactionFailure(_db_message(e)) from e

        self._notify(ChangeEvent(entity_type, "delete", [result.row]))
        return result
