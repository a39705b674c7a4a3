"""Auth commands for local development."""

import os

import click

from projectit.access.scope import ADMIN_ROLE
from projectit.auth.jwt_service import JWTService
from projectit.config import DEV_SECRET_KEY


@click.group()
def auth():
    """Authentication helpers."""
    pass


@auth.command()
@click.option("--email", required=True, help="Email claim of the token.")
@click.option(
    "--role",
    type=click.Choice([ADMIN_ROLE, "member"]),
    default="member",
    show_default=True,
)
@click.option("--ttl", type=int, default=JWTService.ACCESS_TOKEN_TTL, show_default=True,
              help="Lifetime in seconds.")
def token(email: str, role: str, ttl: int):
    """Print a signed access token for local testing.

    Signed with PROJECTIT_SECRET_KEY; real tokens come from the
    identity provider.
    """
    secret_key = os.environ.get("PROJECTIT_SECRET_KEY", DEV_SECRET_KEY)
    service = JWTService(secret_key)
    click.echo(service.generate_access_token(email.lower(), email.lower(), role, ttl=ttl))
