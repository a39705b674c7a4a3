"""Shared fixtures: a fresh SQLite entity database per test."""

from __future__ import annotations

import pytest

from projectit.persistence.config import DatabaseConfig, create_db_engine
from projectit.persistence.schema import create_all
from projectit.persistence.store import EntityStore


@pytest.fixture
def engine(tmp_path):
    """Pooled engine on a per-test SQLite file with every entity table created."""
    engine = create_db_engine(DatabaseConfig(url=f"sqlite:///{tmp_path / 'test.db'}"))
    create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def store(engine):
    return EntityStore(engine)
