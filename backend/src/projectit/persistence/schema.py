"""Table definitions for the entity store.

Every whitelisted entity type gets the same table shape; the business
fields live in the ``data`` JSON object. PostgreSQL gets native ``uuid``,
``jsonb`` and ``timestamptz`` columns plus a GIN index on ``data``; SQLite
stores the same values as text.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Engine

from projectit.persistence.relations import ENTITY_TYPES

IdType = sa.Text().with_variant(postgresql.UUID(as_uuid=False), "postgresql")
DataType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
TimestampType = sa.Text().with_variant(sa.DateTime(timezone=True), "postgresql")

# Per-backend CHECK keeping `data` a JSON object
DATA_OBJECT_CHECKS = {
    "postgresql": "jsonb_typeof(data) = 'object'",
    "sqlite": "json_type(data) = 'object'",
}


def entity_columns() -> list[sa.Column]:
    """Fresh column objects for one entity table (columns can't be shared)."""
    return [
        sa.Column("id", IdType, primary_key=True),
        sa.Column("data", DataType, nullable=False),
        sa.Column("created_date", TimestampType, nullable=False),
        sa.Column("updated_date", TimestampType, nullable=False),
        sa.Column("created_by", sa.Text(), nullable=True),
    ]


def entity_table(name: str, metadata: sa.MetaData) -> sa.Table:
    checks = [
        sa.CheckConstraint(sql, name=f"ck_{name}_data_object").ddl_if(dialect=dialect)
        for dialect, sql in DATA_OBJECT_CHECKS.items()
    ]
    return sa.Table(
        name,
        metadata,
        *entity_columns(),
        *checks,
        sa.Index(f"ix_{name}_data", "data", postgresql_using="gin").ddl_if(dialect="postgresql"),
    )


def build_metadata() -> sa.MetaData:
    metadata = sa.MetaData()
    for name in sorted(ENTITY_TYPES):
        entity_table(name, metadata)
    return metadata


def create_all(engine: Engine) -> None:
    """Create every entity table that does not exist yet."""
    build_metadata().create_all(engine)
