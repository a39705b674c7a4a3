"""Database commands."""

from pathlib import Path

import click

from projectit.persistence.config import DatabaseConfig, create_db_engine
from projectit.persistence.relations import ENTITY_TYPES
from projectit.persistence.schema import create_all


def ensure_sqlite_dir(db_config: DatabaseConfig) -> None:
    """Create the parent directory of a SQLite database file."""
    if db_config.is_sqlite:
        sqlite_path = db_config.url.replace("sqlite:///", "")
        if sqlite_path and sqlite_path != ":memory:":
            Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)


@click.group()
def db():
    """Database commands."""
    pass


@db.command()
def init():
    """Create every entity table that does not exist yet.

    For development databases. Databases managed with migrations should
    use 'projectit migrate apply' instead.
    """
    db_config = DatabaseConfig.from_env()
    ensure_sqlite_dir(db_config)

    engine = create_db_engine(db_config)
    try:
        create_all(engine)
    except Exception as e:
        click.echo(f"Error creating tables: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()

    click.echo(f"Created {len(ENTITY_TYPES)} entity tables on: {db_config.url}")
