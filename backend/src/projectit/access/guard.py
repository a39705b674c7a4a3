"""Project access checks applied in front of the entity store.

The entity routes call the guard before touching the store:

- list/filter: ``scope_filter`` returns the restriction the store ANDs
  into its query
- get/update/delete by id: ``check_entity`` / ``check_patch`` compare the
  row's project with the caller's accessible set
- create/bulk-create: ``prepare_create`` / ``prepare_bulk_create`` keep
  the creator on new projects' ``team_members`` and reject children of
  projects the caller cannot see

Admins and entity types without a project affiliation pass straight
through.
"""

from __future__ import annotations

from typing import Any

from projectit.access.scope import ADMIN_ROLE, ProjectAccessResolver, normalize_email
from projectit.auth.types import AuthenticatedUser
from projectit.errors import AccessDenied, AuthRequired, InvalidPayload
from projectit.persistence.filters import ScopeFilter
from projectit.persistence.relations import (
    PROJECT_KEY,
    TEAM_MEMBERS_KEY,
    Scope,
    parents_of,
    scope_of,
)
from projectit.persistence.rows import as_uuid
from projectit.persistence.store import EntityStore


class ProjectAccessGuard:
    """Enforces project membership for project-scoped entity types."""

    def __init__(self, resolver: ProjectAccessResolver, store: EntityStore):
        self._resolver = resolver
        self._store = store

    def _accessible(
        self, entity_type: str, user: AuthenticatedUser | None
    ) -> tuple[Scope, frozenset[str] | None]:
        """Scope of the type and the caller's project ids (None = unrestricted).

        Raises:
            AuthRequired: If the type is project-scoped and there is no caller
        """
        scope = scope_of(entity_type)
        if scope is Scope.NONE:
            return scope, None
        if user is not None and user.role == ADMIN_ROLE:
            return scope, None
        if user is None or not user.email:
            raise AuthRequired()
        return scope, self._resolver.accessible_projects(user.email, user.role)

    @staticmethod
    def _require(project_id: Any, project_ids: frozenset[str]) -> None:
        if as_uuid(project_id) not in project_ids:
            raise AccessDenied()

    def _parent_of(self, entity_type: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """First existing parent row an indirect child points at."""
        for link in parents_of(entity_type):
            parent_id = data.get(link.foreign_key)
            if not parent_id or not isinstance(parent_id, str):
                continue
            parent = self._store.get(link.parent_type, parent_id)
            if parent is not None:
                return parent
        return None

    def scope_filter(
        self, entity_type: str, user: AuthenticatedUser | None
    ) -> ScopeFilter | None:
        """Restriction for list/filter reads, or None when unrestricted."""
        scope, project_ids = self._accessible(entity_type, user)
        if project_ids is None:
            return None
        return ScopeFilter(project_ids=project_ids, scope=scope, entity_type=entity_type)

    def check_entity(
        self, entity_type: str, entity_id: str, user: AuthenticatedUser | None
    ) -> None:
        """Point check for reads, updates and deletes by id.

        A row that does not exist passes, so the store raises its own
        ``NotFound``. For indirect types a row whose parent is gone passes too.

        Raises:
            AuthRequired: No caller on a project-scoped type
            AccessDenied: The row belongs to a project the caller is not on
        """
        scope, project_ids = self._accessible(entity_type, user)
        if project_ids is None:
            return

        row = self._store.get(entity_type, entity_id)
        if row is None:
            return

        if scope is Scope.PROJECT:
            self._require(row["id"], project_ids)
        elif scope is Scope.CHILD:
            self._require(row.get(PROJECT_KEY), project_ids)
        else:
            parent = self._parent_of(entity_type, row)
            if parent is not None:
                self._require(parent.get(PROJECT_KEY), project_ids)

    def check_patch(
        self,
        entity_type: str,
        entity_id: str,
        patch: Any,
        user: AuthenticatedUser | None,
    ) -> None:
        """Point check for an update, plus the destination of any re-parenting."""
        self.check_entity(entity_type, entity_id, user)
        scope, project_ids = self._accessible(entity_type, user)
        if project_ids is None or not isinstance(patch, dict):
            return

        if scope is Scope.CHILD and PROJECT_KEY in patch:
            # Clearing project_id would move the row out of every member scope
            self._require(patch[PROJECT_KEY], project_ids)
        elif scope is Scope.INDIRECT:
            parent = self._parent_of(entity_type, patch)
            if parent is not None:
                self._require(parent.get(PROJECT_KEY), project_ids)

    def prepare_create(
        self, entity_type: str, data: Any, user: AuthenticatedUser | None
    ) -> Any:
        """Apply creation rules and return the payload to store.

        Raises:
            AccessDenied: The new row would belong to an inaccessible project
        """
        scope, project_ids = self._accessible(entity_type, user)
        if project_ids is None or not isinstance(data, dict):
            return data
        return self._prepare(entity_type, scope, data, user, project_ids)

    def prepare_bulk_create(
        self, entity_type: str, items: Any, user: AuthenticatedUser | None
    ) -> Any:
        scope, project_ids = self._accessible(entity_type, user)
        if project_ids is None or not isinstance(items, list):
            return items
        return [
            self._prepare(entity_type, scope, item, user, project_ids)
            if isinstance(item, dict)
            else item
            for item in items
        ]

    def _prepare(
        self,
        entity_type: str,
        scope: Scope,
        data: dict[str, Any],
        user: AuthenticatedUser,
        project_ids: frozenset[str],
    ) -> dict[str, Any]:
        if scope is Scope.PROJECT:
            members = data.get(TEAM_MEMBERS_KEY)
            if members is None:
                members = []
            if not isinstance(members, list):
                raise InvalidPayload(f"{TEAM_MEMBERS_KEY} must be a list of emails")
            email = normalize_email(user.email)
            # Membership lookups match the stored string exactly
            if email not in members:
                members = [*members, email]
            return {**data, TEAM_MEMBERS_KEY: members}

        if scope is Scope.CHILD:
            # A child without a project_id is not restricted
            if data.get(PROJECT_KEY):
                self._require(data[PROJECT_KEY], project_ids)
            return data

        parent = self._parent_of(entity_type, data)
        if parent is not None:
            self._require(parent.get(PROJECT_KEY), project_ids)
        return data
