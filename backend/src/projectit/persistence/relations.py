"""Entity whitelist and the static relationship map.

The relationship map is the single source of truth for ownership between
entity types. Relationships are not enforced by the database: a child row
points at its parent through a string field inside its JSON payload.

Both the cascade engine and the project access scoping read from here, so
adding a child type to ``RELATIONS`` makes it cascade on delete *and* scopes
it to project membership when it hangs off the project root.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ENTITY_TYPES: frozenset[str] = frozenset({
    "AppSettings", "AuditLog", "ChangeOrder", "CommunicationLog", "CustomRole",
    "Customer", "DashboardView", "EmailTemplate", "Feedback", "FileFolder",
    "IncomingQuote", "IntegrationSettings", "InventoryItem", "InventoryTransaction",
    "NotificationSettings", "Part", "Product", "ProgressUpdate", "Project",
    "ProjectActivity", "ProjectFile", "ProjectNote", "ProjectStack", "ProjectStatus",
    "ProjectTag", "ProjectTemplate", "Proposal", "ProposalSettings", "QuoteRequest",
    "SavedReport", "Service", "ServiceBundle", "Site", "Task", "TaskComment", "Ticket",
    "TaskGroup", "TeamMember", "TimeEntry", "UserGroup", "UserNotification",
    "UserSecuritySettings", "Workflow", "WorkflowLog",
})

PROJECT_ROOT = "Project"
PROJECT_KEY = "project_id"
TEAM_MEMBERS_KEY = "team_members"
AUDIT_ENTITY = "AuditLog"


class OnDelete(str, Enum):
    CASCADE = "cascade"
    DETACH = "detach"


@dataclass(frozen=True)
class ChildLink:
    """A child entity type pointing at its parent through ``foreign_key``."""

    entity_type: str
    foreign_key: str
    on_delete: OnDelete = OnDelete.CASCADE


def _children(foreign_key: str, *entity_types: str) -> list[ChildLink]:
    return [ChildLink(name, foreign_key) for name in entity_types]


RELATIONS: dict[str, list[ChildLink]] = {
    "Project": _children(
        "project_id",
        "Task", "Part", "ProjectNote", "ProjectFile", "FileFolder", "TaskGroup",
        "TimeEntry", "ProgressUpdate", "ProjectActivity", "Proposal", "ChangeOrder",
    ),
    "Task": _children("task_id", "TaskComment"),
    # Parts share the comment thread mechanism with tasks
    "Part": _children("task_id", "TaskComment"),
    "Customer": _children("customer_id", "Site", "CommunicationLog"),
    "Workflow": _children("workflow_id", "WorkflowLog"),
    # Deleting a group ungroups its tasks instead of deleting them
    "TaskGroup": [ChildLink("Task", "group_id", OnDelete.DETACH)],
}


def children_of(entity_type: str) -> list[ChildLink]:
    return RELATIONS.get(entity_type, [])


class Scope(str, Enum):
    """How an entity type relates to the project root."""

    PROJECT = "project"
    CHILD = "child"
    INDIRECT = "indirect"
    NONE = "none"


@dataclass(frozen=True)
class ParentLink:
    """Where an indirect child finds the project: ``parent.id == data[foreign_key]``."""

    parent_type: str
    foreign_key: str


def _project_children() -> frozenset[str]:
    return frozenset(
        link.entity_type
        for link in children_of(PROJECT_ROOT)
        if link.on_delete is OnDelete.CASCADE and link.foreign_key == PROJECT_KEY
    )


def _indirect_parents(direct: frozenset[str]) -> dict[str, tuple[ParentLink, ...]]:
    parents: dict[str, list[ParentLink]] = {}
    for parent_type in sorted(direct):
        for link in children_of(parent_type):
            if link.on_delete is not OnDelete.CASCADE:
                continue
            if link.entity_type in direct or link.entity_type == PROJECT_ROOT:
                continue
            parents.setdefault(link.entity_type, []).append(
                ParentLink(parent_type, link.foreign_key)
            )
    return {name: tuple(links) for name, links in parents.items()}


def _check_acyclic() -> None:
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(name: str, path: tuple[str, ...]) -> None:
        if name in done:
            return
        if name in visiting:
            raise ValueError(f"Relationship cycle: {' -> '.join(path + (name,))}")
        visiting.add(name)
        for link in children_of(name):
            if link.on_delete is OnDelete.CASCADE:
                visit(link.entity_type, path + (name,))
        visiting.discard(name)
        done.add(name)

    for name in RELATIONS:
        visit(name, ())


def _check_known_types() -> None:
    for parent, links in RELATIONS.items():
        for name in [parent] + [link.entity_type for link in links]:
            if name not in ENTITY_TYPES:
                raise ValueError(f"Relationship references unknown entity type: {name}")


_check_known_types()
_check_acyclic()

PROJECT_CHILDREN = _project_children()
INDIRECT_PARENTS = _indirect_parents(PROJECT_CHILDREN)


def scope_of(entity_type: str) -> Scope:
    """Classify an entity type relative to the project root."""
    if entity_type == PROJECT_ROOT:
        return Scope.PROJECT
    if entity_type in PROJECT_CHILDREN:
        return Scope.CHILD
    if entity_type in INDIRECT_PARENTS:
        return Scope.INDIRECT
    return Scope.NONE


def parents_of(entity_type: str) -> tuple[ParentLink, ...]:
    """Parent links an indirect child may be attached through."""
    return INDIRECT_PARENTS.get(entity_type, ())
