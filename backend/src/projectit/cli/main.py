"""ProjectIT CLI entry point."""

import click


@click.group()
def cli():
    """ProjectIT entity backend CLI."""
    pass


# Register subcommand groups
from projectit.cli.auth_cmd import auth  # noqa: E402
from projectit.cli.db_cmd import db  # noqa: E402
from projectit.cli.migrate_cmd import migrate  # noqa: E402

cli.add_command(auth)
cli.add_command(db)
cli.add_command(migrate)


if __name__ == "__main__":
    cli()
