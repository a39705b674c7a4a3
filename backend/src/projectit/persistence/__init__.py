"""Persistence layer - entity tables, filter translation, CRUD and cascades."""

from projectit.persistence.config import DatabaseConfig, create_db_engine
from projectit.persistence.store import ChangeEvent, EntityStore

__all__ = ["ChangeEvent", "DatabaseConfig", "EntityStore", "create_db_engine"]
