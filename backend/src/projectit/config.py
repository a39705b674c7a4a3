"""Application settings, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from projectit.persistence.config import DatabaseConfig

DEV_SECRET_KEY = "dev-secret-key-change-in-production"


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_public_entities(value: str) -> frozenset[tuple[str, str]]:
    """Parse ``"Feedback:create,QuoteRequest:create"`` into (type, operation) pairs.

    A bare entity type makes every operation on it public.

    Raises:
        ValueError: For an empty type or operation
    """
    pairs = set()
    for item in _split(value):
        entity_type, _, operation = item.partition(":")
        entity_type, operation = entity_type.strip(), operation.strip() or "*"
        if not entity_type:
            raise ValueError(f"Invalid public entity entry: {item!r}")
        pairs.add((entity_type, operation))
    return frozenset(pairs)


@dataclass
class Settings:
    """Runtime configuration for the API.

    Attributes:
        database: Connection and pool settings
        secret_key: HS256 secret shared with the identity provider
        cors_origins: Origins allowed by CORS
        access_cache_ttl: Seconds a user's accessible-project set stays cached
        environment: "development" or "production"; production hides stacks
        log_level: Root logging level
        public_entities: (entity type, operation) pairs callable without a token
    """

    database: DatabaseConfig
    secret_key: str = DEV_SECRET_KEY
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    access_cache_ttl: float = 30.0
    environment: str = "development"
    log_level: str = "INFO"
    public_entities: frozenset[tuple[str, str]] = frozenset()

    @classmethod
    def from_env(cls) -> Settings:
        """Create settings from environment variables.

        PROJECTIT_SECRET_KEY, PROJECTIT_CORS_ORIGINS (comma separated),
        PROJECTIT_ACCESS_CACHE_TTL, PROJECTIT_ENV, PROJECTIT_LOG_LEVEL,
        PROJECTIT_PUBLIC_ENTITIES, plus the DATABASE_* variables read by
        DatabaseConfig.
        """
        return cls(
            database=DatabaseConfig.from_env(),
            secret_key=os.environ.get("PROJECTIT_SECRET_KEY", DEV_SECRET_KEY),
            cors_origins=_split(
                os.environ.get("PROJECTIT_CORS_ORIGINS", "http://localhost:5173")
            ),
            access_cache_ttl=float(os.environ.get("PROJECTIT_ACCESS_CACHE_TTL", "30")),
            environment=os.environ.get("PROJECTIT_ENV", "development").lower(),
            log_level=os.environ.get("PROJECTIT_LOG_LEVEL", "INFO").upper(),
            public_entities=parse_public_entities(
                os.environ.get("PROJECTIT_PUBLIC_ENTITIES", "")
            ),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def is_public(self, entity_type: str, operation: str) -> bool:
        return (
            (entity_type, operation) in self.public_entities
            or (entity_type, "*") in self.public_entities
        )
