"""Resolve which projects a user may see.

Membership is data: a user belongs to a project when their email appears
in the project's ``team_members`` array. Admins see everything.
"""

from __future__ import annotations

import logging

from projectit.access.cache import AccessCache, TTLCache
from projectit.persistence.relations import (
    PROJECT_ROOT,
    TEAM_MEMBERS_KEY,
    Scope,
    parents_of,
    scope_of,
)
from projectit.persistence.store import ChangeEvent, EntityStore

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

__all__ = [
    "ADMIN_ROLE",
    "ProjectAccessResolver",
    "Scope",
    "normalize_email",
    "parents_of",
    "scope_of",
]


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class ProjectAccessResolver:
    """Computes and caches a user's accessible project ids.

    Register ``on_entity_change`` with the store so membership edits
    invalidate the cache::

        resolver = ProjectAccessResolver(store, TTLCache(30))
        store.add_listener(resolver.on_entity_change)
    """

    def __init__(self, store: EntityStore, cache: AccessCache | None = None):
        self._store = store
        self._cache = cache if cache is not None else TTLCache()

    @property
    def cache(self) -> AccessCache:
        return self._cache

    def accessible_projects(self, email: str | None, role: str | None) -> frozenset[str] | None:
        """Project ids the user may access.

        Args:
            email: Verified email of the caller
            role: Caller's role; ``"admin"`` is unrestricted

        Returns:
            None for admins (no restriction), otherwise the set of project
            ids whose ``team_members`` contains the email. Empty without an
            email.
        """
        if role == ADMIN_ROLE:
            return None

        key = normalize_email(email)
        if not key:
            return frozenset()

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        project_ids = frozenset(self._store.member_ids(PROJECT_ROOT, TEAM_MEMBERS_KEY, key))
        self._cache.set(key, project_ids)
        logger.debug("Resolved %d accessible projects for %s", len(project_ids), key)
        return project_ids

    def on_entity_change(self, event: ChangeEvent) -> None:
        """Store listener: drop cached memberships a project write may have changed."""
        if event.entity_type != PROJECT_ROOT:
            return

        if event.operation == "create":
            for row in event.rows:
                members = row.get(TEAM_MEMBERS_KEY)
                if isinstance(members, list):
                    for member in members:
                        if isinstance(member, str):
                            self._cache.invalidate(normalize_email(member))
            return

        if event.operation == "update" and TEAM_MEMBERS_KEY not in (event.patch or {}):
            return

        # Former members are unknown, so every cached set is suspect
        self._cache.clear()
