"""Database configuration and the pooled engine factory."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


@dataclass
class DatabaseConfig:
    """Database connection and pool configuration.

    Supports sqlite:/// (development, tests) and postgresql:// URL schemes.

    Attributes:
        url: Database URL
        pool_size: Maximum number of simultaneously open connections
        pool_timeout: Seconds a request waits for a free connection before failing
        pool_recycle: Seconds after which an idle connection is replaced
        ssl: True/False to force SSL on or off, None to let the URL decide
    """

    url: str
    pool_size: int = 20
    pool_timeout: float = 2.0
    pool_recycle: int = 30
    ssl: bool | None = None

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Create config from environment variables.

        DATABASE_URL, DATABASE_POOL_SIZE, DATABASE_POOL_TIMEOUT,
        DATABASE_POOL_RECYCLE and DATABASE_SSL ("true"/"false").
        Hosted Supabase URLs default to SSL when DATABASE_SSL is unset.
        """
        url = os.environ.get("DATABASE_URL") or "sqlite:///projectit.db"

        flag = os.environ.get("DATABASE_SSL", "").lower()
        ssl: bool | None = None
        if flag == "true":
            ssl = True
        elif flag == "false":
            ssl = False
        elif "supabase" in url:
            ssl = True

        return cls(
            url=url,
            pool_size=int(os.environ.get("DATABASE_POOL_SIZE", "20")),
            pool_timeout=float(os.environ.get("DATABASE_POOL_TIMEOUT", "2")),
            pool_recycle=int(os.environ.get("DATABASE_POOL_RECYCLE", "30")),
            ssl=ssl,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgres")

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation.

        Ensures postgresql:// URLs use the psycopg (v3) driver since
        the project depends on psycopg[binary], not psycopg2.
        """
        return re.sub(r"^postgres(ql)?://", "postgresql+psycopg://", self.url, count=1)


def _regexp(pattern: str | None, value: str | None) -> bool:
    if pattern is None or value is None:
        return False
    return re.search(pattern, value, re.IGNORECASE) is not None


def _install_sqlite_hooks(engine: Engine) -> None:
    """Give SQLite the pieces the entity store relies on.

    pysqlite defers BEGIN until the first write, which would leave the
    reads of a cascade delete outside its transaction; the driver's own
    transaction handling is switched off and SQLAlchemy emits BEGIN.
    A case-insensitive REGEXP function backs the ``$regex`` operator.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.create_function("regexp", 2, _regexp, deterministic=True)

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Create the pooled engine every database call goes through.

    The pool never grows past ``pool_size``; callers beyond that wait up to
    ``pool_timeout`` seconds and then fail with ``sqlalchemy.exc.TimeoutError``.

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_sqlite:
        connect_args = {"check_same_thread": False, "timeout": 15}
        if config.url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, or every checkout would see an empty database
            engine = create_engine(
                config.sqlalchemy_url, poolclass=StaticPool, connect_args=connect_args
            )
        else:
            engine = create_engine(
                config.sqlalchemy_url,
                pool_size=config.pool_size,
                max_overflow=0,
                pool_timeout=config.pool_timeout,
                connect_args=connect_args,
            )
        _install_sqlite_hooks(engine)
        return engine

    if config.is_postgresql:
        pg_args: dict[str, object] = {
            # libpq accepts whole seconds, minimum 2
            "connect_timeout": max(2, int(config.pool_timeout)),
        }
        if config.ssl is True:
            pg_args["sslmode"] = "require"
        elif config.ssl is False:
            pg_args["sslmode"] = "disable"

        return create_engine(
            config.sqlalchemy_url,
            pool_size=config.pool_size,
            max_overflow=0,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            connect_args=pg_args,
        )

    raise ValueError(f"Unsupported database URL scheme: {config.url}")
