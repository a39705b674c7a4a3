"""MongoDB-style filter translation.

Turns a request such as::

    {"status": {"$ne": "archived"}, "priority": {"$gte": 2}, "id": {"$in": [...]}}

into parameterized SQL against the generic row shape
``{id, data, created_date, updated_date, created_by}``.

The filter object is first parsed into ``Condition`` values tagged with an
``Op``; only those variants ever produce SQL. Operators outside ``Op`` are
ignored (and logged), matching the long-standing API behavior. Malformed
operands for a known operator are rejected with ``InvalidFilter``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from projectit.errors import InvalidFilter
from projectit.persistence.dialects import Dialect, Params
from projectit.persistence.relations import PROJECT_KEY, Scope, parents_of
from projectit.persistence.rows import as_uuid

logger = logging.getLogger(__name__)

ID_FIELD = "id"
DATE_COLUMNS = frozenset({"created_date", "updated_date"})
SORT_COLUMNS = frozenset({"id", "created_date", "updated_date", "created_by"})
DEFAULT_SORT = "-created_date"

FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


class Op(str, Enum):
    EQ = "$eq"
    NE = "$ne"
    IN = "$in"
    NIN = "$nin"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    EXISTS = "$exists"
    REGEX = "$regex"


_COMPARISONS = {
    Op.EQ: "=",
    Op.NE: "<>",
    Op.GT: ">",
    Op.GTE: ">=",
    Op.LT: "<",
    Op.LTE: "<=",
}

_ID_OPS = frozenset({Op.EQ, Op.NE, Op.IN, Op.NIN})
_DATE_OPS = frozenset(_COMPARISONS)


@dataclass(frozen=True)
class Condition:
    field: str
    op: Op
    value: Any


@dataclass(frozen=True)
class ScopeFilter:
    """Restricts rows to the projects a caller may access."""

    project_ids: frozenset[str]
    scope: Scope
    entity_type: str


@dataclass
class TranslatedQuery:
    """SQL pieces for one read: predicates, ORDER BY, LIMIT and their parameters."""

    conditions: list[str] = field(default_factory=list)
    order_by: str = ""
    limit: str = ""
    params: Params = field(default_factory=Params)

    @property
    def where(self) -> str:
        if not self.conditions:
            return ""
        return " WHERE " + " AND ".join(self.conditions)


def check_field_name(name: Any) -> str:
    if not isinstance(name, str) or not FIELD_NAME_RE.match(name):
        raise InvalidFilter(f"Invalid field name: {name!r}")
    return name


def parse_filter(filter_obj: dict[str, Any] | None) -> list[Condition]:
    """Parse a filter object into tagged conditions (ANDed together)."""
    if filter_obj is None:
        return []
    if not isinstance(filter_obj, dict):
        raise InvalidFilter("Filter must be an object")

    conditions: list[Condition] = []
    for name, value in filter_obj.items():
        check_field_name(name)
        if isinstance(value, dict):
            for op_name, operand in value.items():
                try:
                    op = Op(op_name)
                except ValueError:
                    logger.warning("Ignoring unsupported filter operator %r on field %r", op_name, name)
                    continue
                conditions.append(Condition(name, op, operand))
        elif isinstance(value, list):
            raise InvalidFilter(f"Field {name!r}: use $in to match a list of values")
        else:
            conditions.append(Condition(name, Op.EQ, value))
    return conditions


# ----------------------------------------------------------------------
# Operand coercion
# ----------------------------------------------------------------------


def _text_form(cond: Condition, value: Any) -> str:
    """Textual representation of a JSON scalar, as PostgreSQL's ->> renders it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    raise InvalidFilter(f"Field {cond.field!r}: unsupported value for {cond.op.value}")


def _number(cond: Condition) -> int | float:
    value = cond.value
    if isinstance(value, bool) or value is None:
        raise InvalidFilter(f"Field {cond.field!r}: {cond.op.value} needs a number")
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidFilter(f"Field {cond.field!r}: {cond.op.value} needs a number") from None


def _list(cond: Condition) -> list[Any]:
    if not isinstance(cond.value, list):
        raise InvalidFilter(f"Field {cond.field!r}: {cond.op.value} needs a list")
    return cond.value


# ----------------------------------------------------------------------
# Condition builders
# ----------------------------------------------------------------------


def _id_condition(cond: Condition, dialect: Dialect, params: Params) -> str | None:
    if cond.op not in _ID_OPS:
        logger.warning("Ignoring operator %s on id", cond.op.value)
        return None

    if cond.op in (Op.IN, Op.NIN):
        ids = [i for i in (as_uuid(v) for v in _list(cond)) if i]
        expr = dialect.id_in(params, ids)
        return expr if cond.op is Op.IN else f"NOT {expr}"

    value = as_uuid(cond.value)
    if value is None:
        # A malformed id can never match a stored row
        return "1 = 0" if cond.op is Op.EQ else None
    return f"id {_COMPARISONS[cond.op]} {dialect.id_value(params.bind(value))}"


def _date_condition(cond: Condition, dialect: Dialect, params: Params) -> str | None:
    if cond.op not in _DATE_OPS:
        logger.warning("Ignoring operator %s on %s", cond.op.value, cond.field)
        return None
    if not isinstance(cond.value, str):
        raise InvalidFilter(f"Field {cond.field!r}: expected an ISO-8601 timestamp")
    try:
        datetime.fromisoformat(cond.value)
    except ValueError:
        raise InvalidFilter(f"Field {cond.field!r}: expected an ISO-8601 timestamp") from None
    ref = dialect.timestamp_value(params.bind(cond.value))
    return f'"{cond.field}" {_COMPARISONS[cond.op]} {ref}'


def _payload_condition(cond: Condition, dialect: Dialect, params: Params) -> str:
    key = dialect.field_key(params, cond.field)
    text = dialect.text_of(key)
    op, value = cond.op, cond.value

    if op is Op.EQ:
        if value is None:
            return f"{text} IS NULL"
        if isinstance(value, bool):
            return dialect.bool_equals(key, params, value)
        return f"{text} = {params.bind(_text_form(cond, value))}"

    if op is Op.NE:
        if value is None:
            return f"{text} IS NOT NULL"
        if isinstance(value, bool):
            return f"NOT COALESCE({dialect.bool_equals(key, params, value)}, FALSE)"
        return f"({text} IS NULL OR {text} <> {params.bind(_text_form(cond, value))})"

    if op in (Op.IN, Op.NIN):
        values = _list(cond)
        texts = [_text_form(cond, v) for v in values if v is not None]
        match = dialect.in_values(text, params, texts)
        if op is Op.IN:
            return f"({match} OR {text} IS NULL)" if None in values else match
        if None in values:
            return f"({text} IS NOT NULL AND NOT {match})"
        return f"({text} IS NULL OR NOT {match})"

    if op in (Op.GT, Op.GTE, Op.LT, Op.LTE):
        return f"{dialect.number_of(key)} {_COMPARISONS[op]} {params.bind(_number(cond))}"

    if op is Op.EXISTS:
        present = dialect.has_key(key)
        return present if value else f"NOT {present}"

    # Op.REGEX
    if not isinstance(value, str):
        raise InvalidFilter(f"Field {cond.field!r}: $regex needs a string pattern")
    try:
        re.compile(value)
    except re.error as e:
        raise InvalidFilter(f"Field {cond.field!r}: invalid $regex pattern: {e}") from None
    return dialect.regex_match(text, params.bind(value))


def build_condition(cond: Condition, dialect: Dialect, params: Params) -> str | None:
    """SQL predicate for one condition, or None when it does not restrict rows."""
    if cond.field == ID_FIELD:
        return _id_condition(cond, dialect, params)
    if cond.field in DATE_COLUMNS:
        return _date_condition(cond, dialect, params)
    return _payload_condition(cond, dialect, params)


def build_scope_condition(
    scope_filter: ScopeFilter | None,
    dialect: Dialect,
    params: Params,
) -> str | None:
    """SQL predicate limiting rows to ``scope_filter.project_ids``."""
    if scope_filter is None:
        return None

    project_ids = sorted(scope_filter.project_ids)

    if scope_filter.scope is Scope.PROJECT:
        return dialect.id_in(params, project_ids)

    if scope_filter.scope is Scope.CHILD:
        key = dialect.field_key(params, PROJECT_KEY)
        return dialect.in_values(dialect.text_of(key), params, project_ids)

    if scope_filter.scope is Scope.INDIRECT:
        branches = []
        for link in parents_of(scope_filter.entity_type):
            outer = dialect.text_of(dialect.field_key(params, link.foreign_key))
            inner_key = dialect.field_key(params, PROJECT_KEY)
            inner = dialect.in_values(dialect.text_of(inner_key), params, project_ids)
            branches.append(
                f'{outer} IN (SELECT {dialect.id_text} FROM "{link.parent_type}" WHERE {inner})'
            )
        if not branches:
            return "1 = 0"
        return "(" + " OR ".join(branches) + ")"

    return None


# ----------------------------------------------------------------------
# Sort / limit
# ----------------------------------------------------------------------


def parse_sort(sort: str | None) -> tuple[str, bool]:
    """Return ``(field, descending)`` for ``"field"`` / ``"-field"``."""
    sort = sort or DEFAULT_SORT
    descending = sort.startswith("-")
    name = sort[1:] if descending else sort
    return check_field_name(name), descending


def build_order_by(sort: str | None, dialect: Dialect, params: Params) -> str:
    name, descending = parse_sort(sort)
    direction = "DESC" if descending else "ASC"
    if name in SORT_COLUMNS:
        return f' ORDER BY "{name}" {direction}'
    # Payload fields sort on their text value, so "10" sorts before "2"
    key = dialect.field_key(params, name)
    return f" ORDER BY {dialect.text_of(key)} {direction}"


def parse_limit(limit: Any) -> int | None:
    if limit is None or limit == "":
        return None
    if isinstance(limit, bool):
        raise InvalidFilter("Limit must be a positive integer")
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise InvalidFilter("Limit must be a positive integer") from None
    if value < 0:
        raise InvalidFilter("Limit must be a positive integer")
    return value or None


def translate(
    filter_obj: dict[str, Any] | None,
    sort: str | None = None,
    limit: Any = None,
    *,
    dialect: Dialect,
    scope_filter: ScopeFilter | None = None,
) -> TranslatedQuery:
    """Translate filter, sort and limit into SQL fragments plus bound parameters.

    Args:
        filter_obj: Mapping of field name to literal or operator object.
        sort: ``"field"`` or ``"-field"``; defaults to newest first.
        limit: Optional positive row limit (``0``/``None`` = unlimited).
        dialect: Backend dialect producing the SQL fragments.
        scope_filter: Optional project scope, ANDed after the filter.

    Returns:
        TranslatedQuery with conditions, ORDER BY, LIMIT and params.

    Raises:
        InvalidFilter: For invalid field names or malformed operands.
    """
    query = TranslatedQuery()

    for cond in parse_filter(filter_obj):
        sql = build_condition(cond, dialect, query.params)
        if sql:
            query.conditions.append(sql)

    scope_sql = build_scope_condition(scope_filter, dialect, query.params)
    if scope_sql:
        query.conditions.append(scope_sql)

    query.order_by = build_order_by(sort, dialect, query.params)

    row_limit = parse_limit(limit)
    if row_limit is not None:
        query.limit = f" LIMIT {query.params.bind(row_limit)}"

    return query
