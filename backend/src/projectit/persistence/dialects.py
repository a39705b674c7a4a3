"""SQL fragments for the JSON payload operations, per database backend.

PostgreSQL is the production backend (``jsonb`` payloads, ``uuid`` ids,
``timestamptz`` dates). SQLite backs local development and the test suite
(JSON text payloads, text ids, ISO-8601 text dates).

Every fragment takes already-bound parameter references (``:p3``) or a
``Params`` collector to bind its own values. Nothing user-supplied is ever
spliced into SQL text. JSON keys are bound as parameters too: the raw key
on PostgreSQL, a quoted JSON path on SQLite.

``text()`` treats ``:name::type`` as a bind parameter followed by garbage,
so casts are always spelled ``CAST(x AS type)``.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy.engine import Engine

from projectit.errors import InvalidPayload


class Params:
    """Collects bound parameter values under generated names."""

    def __init__(self, prefix: str = "p"):
        self._prefix = prefix
        self.values: dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"{self._prefix}{len(self.values)}"
        self.values[name] = value
        return f":{name}"


class Dialect:
    """Backend-specific SQL for the row shape ``{id, data, created_date, updated_date, created_by}``."""

    name: str = ""
    now: str = ""
    lock_clause: str = ""
    id_text: str = "id"

    def id_value(self, ref: str) -> str:
        return ref

    def timestamp_value(self, ref: str) -> str:
        return ref

    def json_value(self, ref: str) -> str:
        raise NotImplementedError

    def field_key(self, params: Params, field: str) -> str:
        raise NotImplementedError

    def text_of(self, key: str) -> str:
        raise NotImplementedError

    def number_of(self, key: str) -> str:
        raise NotImplementedError

    def has_key(self, key: str) -> str:
        raise NotImplementedError

    def bool_equals(self, key: str, params: Params, value: bool) -> str:
        raise NotImplementedError

    def regex_match(self, expr: str, ref: str) -> str:
        raise NotImplementedError

    def in_values(self, expr: str, params: Params, values: list[str]) -> str:
        raise NotImplementedError

    def id_in(self, params: Params, ids: list[str]) -> str:
        raise NotImplementedError

    def array_contains(self, key: str, params: Params, value: Any) -> str:
        raise NotImplementedError

    def merge_patch(self, params: Params, patch: dict[str, Any]) -> str:
        raise NotImplementedError


class PostgreSQLDialect(Dialect):
    name = "postgresql"
    now = "now()"
    lock_clause = " FOR UPDATE"
    id_text = "CAST(id AS text)"

    def id_value(self, ref: str) -> str:
        return f"CAST({ref} AS uuid)"

    def timestamp_value(self, ref: str) -> str:
        return f"CAST({ref} AS timestamptz)"

    def json_value(self, ref: str) -> str:
        return f"CAST({ref} AS jsonb)"

    def field_key(self, params: Params, field: str) -> str:
        return f"CAST({params.bind(field)} AS text)"

    def text_of(self, key: str) -> str:
        return f"(data ->> {key})"

    def number_of(self, key: str) -> str:
        return f"CAST(data ->> {key} AS numeric)"

    def has_key(self, key: str) -> str:
        return f"(data ? {key})"

    def bool_equals(self, key: str, params: Params, value: bool) -> str:
        ref = params.bind(json.dumps(value))
        return f"((data -> {key}) = CAST({ref} AS jsonb))"

    def regex_match(self, expr: str, ref: str) -> str:
        return f"({expr} ~* {ref})"

    def in_values(self, expr: str, params: Params, values: list[str]) -> str:
        return f"({expr} = ANY(CAST({params.bind(list(values))} AS text[])))"

    def id_in(self, params: Params, ids: list[str]) -> str:
        return f"(id = ANY(CAST({params.bind(list(ids))} AS uuid[])))"

    def array_contains(self, key: str, params: Params, value: Any) -> str:
        ref = params.bind(json.dumps([value]))
        return f"((data -> {key}) @> CAST({ref} AS jsonb))"

    def merge_patch(self, params: Params, patch: dict[str, Any]) -> str:
        return f"data || CAST({params.bind(json.dumps(patch))} AS jsonb)"


class SQLiteDialect(Dialect):
    name = "sqlite"
    now = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

    def json_value(self, ref: str) -> str:
        return f"json({ref})"

    def field_key(self, params: Params, field: str) -> str:
        return params.bind(f'$."{field}"')

    def text_of(self, key: str) -> str:
        # Match PostgreSQL's ->> rendering: booleans as 'true'/'false', JSON null as NULL
        return (
            f"(CASE json_type(data, {key})"
            f" WHEN 'true' THEN 'true' WHEN 'false' THEN 'false' WHEN 'null' THEN NULL"
            f" ELSE CAST(json_extract(data, {key}) AS TEXT) END)"
        )

    def number_of(self, key: str) -> str:
        return f"CAST(json_extract(data, {key}) AS REAL)"

    def has_key(self, key: str) -> str:
        return f"(json_type(data, {key}) IS NOT NULL)"

    def bool_equals(self, key: str, params: Params, value: bool) -> str:
        ref = params.bind("true" if value else "false")
        return f"(json_type(data, {key}) = {ref})"

    def regex_match(self, expr: str, ref: str) -> str:
        return f"({expr} REGEXP {ref})"

    def in_values(self, expr: str, params: Params, values: list[str]) -> str:
        ref = params.bind(json.dumps(list(values)))
        return f"({expr} IN (SELECT value FROM json_each({ref})))"

    def id_in(self, params: Params, ids: list[str]) -> str:
        ref = params.bind(json.dumps(list(ids)))
        return f"(id IN (SELECT value FROM json_each({ref})))"

    def array_contains(self, key: str, params: Params, value: Any) -> str:
        ref = params.bind(value)
        return (
            f"(json_type(data, {key}) = 'array' AND EXISTS (SELECT 1 FROM json_each(data, {key}) AS member"
            f" WHERE member.value = {ref}))"
        )

    def merge_patch(self, params: Params, patch: dict[str, Any]) -> str:
        if not patch:
            return "data"
        for key in patch:
            if '"' in key:
                raise InvalidPayload(f"Unsupported field name: {key!r}")
        pairs = [
            f"{self.field_key(params, key)}, json({params.bind(json.dumps(value))})"
            for key, value in patch.items()
        ]
        return f"json_set(data, {', '.join(pairs)})"


_DIALECTS: dict[str, type[Dialect]] = {
    "postgresql": PostgreSQLDialect,
    "sqlite": SQLiteDialect,
}


def dialect_for(engine: Engine) -> Dialect:
    """Pick the SQL dialect matching an engine's backend."""
    try:
        return _DIALECTS[engine.dialect.name]()
    except KeyError:
        raise ValueError(f"Unsupported database backend: {engine.dialect.name}") from None
