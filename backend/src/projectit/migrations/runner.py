"""Alembic migration runner.

Wraps Alembic's programmatic API to apply, rollback, and inspect
migrations without requiring a static alembic.ini file. The migration
scripts ship inside this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

MIGRATIONS_DIR = Path(__file__).resolve().parent


@dataclass
class MigrationInfo:
    """Info about a single migration."""

    revision: str
    description: str
    is_applied: bool


def _make_alembic_config(database_url: str, migrations_dir: Path = MIGRATIONS_DIR) -> Config:
    """Create an Alembic Config object programmatically.

    This replaces the need for a static alembic.ini file.
    """
    cfg = Config()
    cfg.set_main_option("sqlalchemy.url", database_url)
    cfg.set_main_option("script_location", str(migrations_dir))
    return cfg


def apply_migrations(
    database_url: str,
    target: str | None = None,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> None:
    """Apply pending migrations.

    Args:
        database_url: SQLAlchemy database URL.
        target: Target revision (default: "head" = all pending).
        migrations_dir: Alembic script directory.
    """
    cfg = _make_alembic_config(database_url, migrations_dir)
    command.upgrade(cfg, target or "head")


def stamp_migration(
    database_url: str,
    revision: str = "head",
    migrations_dir: Path = MIGRATIONS_DIR,
) -> None:
    """Mark the database as being at ``revision`` without running anything.

    For databases whose tables were created by ``projectit db init``.
    """
    cfg = _make_alembic_config(database_url, migrations_dir)
    command.stamp(cfg, revision)


def rollback_migration(
    database_url: str,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> None:
    """Rollback the last applied migration."""
    cfg = _make_alembic_config(database_url, migrations_dir)
    command.downgrade(cfg, "-1")


def _current_heads(database_url: str) -> set[str]:
    engine = create_engine(database_url)
    try:
        with engine.connect() as conn:
            if not inspect(conn).has_table("alembic_version"):
                return set()
            result = conn.execute(text("SELECT version_num FROM alembic_version"))
            return {row[0] for row in result}
    finally:
        engine.dispose()


def get_migration_status(
    database_url: str,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> list[MigrationInfo]:
    """Get the status of all migrations.

    Returns:
        List of MigrationInfo in chronological order.
    """
    cfg = _make_alembic_config(database_url, migrations_dir)
    script = ScriptDirectory.from_config(cfg)

    # alembic_version holds only the current head; everything below it is applied
    applied: set[str] = set()
    for head_rev in _current_heads(database_url):
        rev_obj = script.get_revision(head_rev)
        while rev_obj is not None:
            applied.add(rev_obj.revision)
            if rev_obj.down_revision:
                rev_obj = script.get_revision(str(rev_obj.down_revision))
            else:
                break

    migrations = [
        MigrationInfo(
            revision=rev.revision,
            description=rev.doc or "",
            is_applied=rev.revision in applied,
        )
        for rev in script.walk_revisions()
    ]

    # walk_revisions goes newest-first
    migrations.reverse()
    return migrations
