"""Migrate CLI commands: apply, rollback, stamp, status."""

import click

from projectit.cli.db_cmd import ensure_sqlite_dir
from projectit.migrations.runner import (
    apply_migrations,
    get_migration_status,
    rollback_migration,
    stamp_migration,
)
from projectit.persistence.config import DatabaseConfig


@click.group()
def migrate():
    """Migration commands."""
    pass


@migrate.command()
@click.option("--to", "target", default=None, help="Apply up to a specific revision.")
def apply(target: str | None):
    """Apply pending migrations."""
    db_config = DatabaseConfig.from_env()
    ensure_sqlite_dir(db_config)

    sa_url = db_config.sqlalchemy_url
    click.echo(f"Applying migrations to: {db_config.url}")

    try:
        apply_migrations(sa_url, target=target)
        click.echo("Migrations applied successfully.")
    except Exception as e:
        click.echo(f"Error applying migrations: {e}", err=True)
        raise SystemExit(1)

    _print_status(sa_url)


@migrate.command()
def rollback():
    """Rollback the last applied migration."""
    db_config = DatabaseConfig.from_env()
    sa_url = db_config.sqlalchemy_url

    click.echo(f"Rolling back last migration on: {db_config.url}")

    try:
        rollback_migration(sa_url)
        click.echo("Rollback successful.")
    except Exception as e:
        click.echo(f"Error rolling back: {e}", err=True)
        raise SystemExit(1)

    _print_status(sa_url)


@migrate.command()
@click.option("--revision", "-r", default="head", help="Revision to stamp (default: head).")
def stamp(revision: str):
    """Mark migrations as applied without running them.

    Use this once on a database whose tables were created by
    'projectit db init', so later migrations apply cleanly.
    """
    db_config = DatabaseConfig.from_env()
    ensure_sqlite_dir(db_config)
    sa_url = db_config.sqlalchemy_url

    click.echo(f"Stamping database as revision '{revision}' (no migrations executed).")

    try:
        stamp_migration(sa_url, revision=revision)
        click.echo("Stamp successful.")
    except Exception as e:
        click.echo(f"Error stamping: {e}", err=True)
        raise SystemExit(1)

    _print_status(sa_url)


@migrate.command()
def status():
    """Show migration status (applied and pending)."""
    db_config = DatabaseConfig.from_env()
    _print_status(db_config.sqlalchemy_url)


def _print_status(database_url: str) -> None:
    """Print migration status table."""
    try:
        infos = get_migration_status(database_url)
    except Exception as e:
        click.echo(f"Could not read migration status: {e}", err=True)
        return

    if not infos:
        click.echo("No migrations found.")
        return

    applied_count = sum(1 for i in infos if i.is_applied)
    pending_count = sum(1 for i in infos if not i.is_applied)

    click.echo(f"\nMigration status ({applied_count} applied, {pending_count} pending):")
    for info in infos:
        marker = "[x]" if info.is_applied else "[ ]"
        click.echo(f"  {marker} {info.revision}: {info.description}")
