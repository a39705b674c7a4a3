"""Project-membership access control for the entity store."""

from projectit.access.cache import AccessCache, TTLCache
from projectit.access.guard import ProjectAccessGuard
from projectit.access.scope import ADMIN_ROLE, ProjectAccessResolver, Scope, scope_of

__all__ = [
    "ADMIN_ROLE",
    "AccessCache",
    "ProjectAccessGuard",
    "ProjectAccessResolver",
    "Scope",
    "TTLCache",
    "scope_of",
]
