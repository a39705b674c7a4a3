"""Transactional cascade delete over the relationship map."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from projectit.errors import NotFound
from projectit.persistence.dialects import Dialect, Params
from projectit.persistence.relations import (
    AUDIT_ENTITY,
    RELATIONS,
    ChildLink,
    OnDelete,
)
from projectit.persistence.rows import fetch_row, format_row, insert_row, raw_data

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class _Tally:
    """Per-entity-type counts in first-seen order."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def add(self, entity_type: str, count: int) -> None:
        if count > 0:
            self._counts[entity_type] = self._counts.get(entity_type, 0) + count

    def to_list(self) -> list[dict[str, Any]]:
        return [{"entityType": name, "count": count} for name, count in self._counts.items()]


@dataclass
class DeleteResult:
    """Outcome of one cascade delete.

    Attributes:
        row: The deleted row, formatted
        cascaded: ``[{"entityType", "count"}]`` for every descendant type removed
        detached: ``[{"entityType", "count"}]`` for rows whose link was blanked
    """

    row: dict[str, Any]
    cascaded: list[dict[str, Any]] = field(default_factory=list)
    detached: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "cascaded": self.cascaded, "detached": self.detached}


class CascadeEngine:
    """Deletes a row together with everything that hangs off it.

    Runs on a connection the caller has already opened a transaction on;
    any failure (including the audit insert) propagates so the caller's
    transaction rolls back as a whole.
    """

    def __init__(
        self,
        dialect: Dialect,
        relations: dict[str, list[ChildLink]] | None = None,
        audit_entity: str = AUDIT_ENTITY,
    ):
        self._dialect = dialect
        self._relations = RELATIONS if relations is None else relations
        self._audit_entity = audit_entity

    def delete(
        self,
        conn: Connection,
        entity_type: str,
        entity_id: str,
        deleted_by: str | None = None,
    ) -> DeleteResult:
        """Delete a row and its mapped descendants, then write the audit entry.

        Raises:
            NotFound: If the row does not exist.
        """
        record = fetch_row(conn, self._dialect, entity_type, entity_id, lock=True)
        if record is None:
            raise NotFound()

        row_id = str(record["id"])
        cascaded = _Tally()
        detached = _Tally()
        self._delete_descendants(conn, entity_type, row_id, cascaded, detached)

        params = Params()
        conn.execute(
            text(f'DELETE FROM "{entity_type}" WHERE id = {self._dialect.id_value(params.bind(row_id))}'),
            params.values,
        )

        result = DeleteResult(
            row=format_row(record),
            cascaded=cascaded.to_list(),
            detached=detached.to_list(),
        )

        snapshot = raw_data(record)
        snapshot["_cascaded"] = result.cascaded
        if result.detached:
            snapshot["_detached"] = result.detached
        self._write_audit(conn, entity_type, row_id, snapshot, deleted_by)

        if result.cascaded or result.detached:
            logger.info(
                "Deleted %s %s with cascade %s, detached %s",
                entity_type, row_id, result.cascaded, result.detached,
            )
        return result

    def _delete_descendants(
        self,
        conn: Connection,
        parent_type: str,
        parent_id: str,
        cascaded: _Tally,
        detached: _Tally,
    ) -> None:
        for link in self._relations.get(parent_type, []):
            if link.on_delete is OnDelete.DETACH:
                detached.add(link.entity_type, self._detach(conn, link, parent_id))
                continue

            if self._relations.get(link.entity_type):
                # Depth-first: grandchildren go before their parents
                for child_id in self._child_ids(conn, link, parent_id):
                    self._delete_descendants(conn, link.entity_type, child_id, cascaded, detached)

            cascaded.add(link.entity_type, self._delete_children(conn, link, parent_id))

    def _link_predicate(self, link: ChildLink, parent_id: str, params: Params) -> str:
        key = self._dialect.field_key(params, link.foreign_key)
        return f"{self._dialect.text_of(key)} = {params.bind(parent_id)}"

    def _child_ids(self, conn: Connection, link: ChildLink, parent_id: str) -> list[str]:
        params = Params()
        where = self._link_predicate(link, parent_id, params)
        result = conn.execute(
            text(f'SELECT {self._dialect.id_text} AS id FROM "{link.entity_type}" WHERE {where}'),
            params.values,
        )
        return [str(row[0]) for row in result]

    def _delete_children(self, conn: Connection, link: ChildLink, parent_id: str) -> int:
        params = Params()
        where = self._link_predicate(link, parent_id, params)
        result = conn.execute(text(f'DELETE FROM "{link.entity_type}" WHERE {where}'), params.values)
        return result.rowcount

    def _detach(self, conn: Connection, link: ChildLink, parent_id: str) -> int:
        params = Params()
        merge = self._dialect.merge_patch(params, {link.foreign_key: ""})
        where = self._link_predicate(link, parent_id, params)
        result = conn.execute(
            text(
                f'UPDATE "{link.entity_type}" SET data = {merge},'
                f" updated_date = {self._dialect.now} WHERE {where}"
            ),
            params.values,
        )
        return result.rowcount

    def _write_audit(
        self,
        conn: Connection,
        entity_type: str,
        entity_id: str,
        deleted_data: dict[str, Any],
        deleted_by: str | None,
    ) -> None:
        insert_row(
            conn,
            self._dialect,
            self._audit_entity,
            {
                "action": "delete",
                "entity_type": entity_type,
                "entity_id": entity_id,
                "deleted_data": deleted_data,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            deleted_by or SYSTEM_ACTOR,
        )
