"""Tests for project membership resolution and the access guard."""

from __future__ import annotations

import uuid

import pytest

from projectit.access import ProjectAccessGuard, ProjectAccessResolver, TTLCache
from projectit.access.cache import AccessCache
from projectit.auth.types import AuthenticatedUser
from projectit.errors import AccessDenied, AuthRequired, InvalidPayload
from projectit.persistence import relations
from projectit.persistence.relations import (
    RELATIONS,
    ChildLink,
    ParentLink,
    Scope,
    parents_of,
    scope_of,
)

ALICE = AuthenticatedUser(user_id="u-alice", email="alice@x.com")
BOB = AuthenticatedUser(user_id="u-bob", email="bob@x.com")
ADMIN = AuthenticatedUser(user_id="u-root", email="root@x.com", role="admin")


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Relationship classification
# ---------------------------------------------------------------------------


class TestScopes:
    @pytest.mark.parametrize(
        "entity_type, scope",
        [
            ("Project", Scope.PROJECT),
            ("Task", Scope.CHILD),
            ("TaskGroup", Scope.CHILD),
            ("ChangeOrder", Scope.CHILD),
            ("TaskComment", Scope.INDIRECT),
            ("Customer", Scope.NONE),
            ("Site", Scope.NONE),
            ("WorkflowLog", Scope.NONE),
        ],
    )
    def test_scope_of(self, entity_type, scope):
        assert scope_of(entity_type) is scope

    def test_comment_parents(self):
        assert parents_of("TaskComment") == (
            ParentLink("Part", "task_id"),
            ParentLink("Task", "task_id"),
        )
        assert parents_of("Task") == ()

    def test_cycle_detected(self, monkeypatch):
        monkeypatch.setitem(RELATIONS, "TaskComment", [ChildLink("Task", "task_id")])
        with pytest.raises(ValueError, match="cycle"):
            relations._check_acyclic()

    def test_unknown_type_in_map_detected(self, monkeypatch):
        monkeypatch.setitem(RELATIONS, "Ticket", [ChildLink("Nope", "ticket_id")])
        with pytest.raises(ValueError, match="Nope"):
            relations._check_known_types()


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestTTLCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(ttl=30, clock=clock)
        cache.set("alice@x.com", frozenset({"p1"}))

        clock.now += 29
        assert cache.get("alice@x.com") == frozenset({"p1"})
        clock.now += 1
        assert cache.get("alice@x.com") is None
        assert len(cache) == 0

    def test_invalidate_and_clear(self):
        cache = TTLCache(ttl=30)
        cache.set("a", frozenset())
        cache.set("b", frozenset({"p"}))
        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert cache.get("b") == frozenset({"p"})
        cache.clear()
        assert len(cache) == 0

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(ttl=0)
        cache.set("a", frozenset({"p"}))
        assert cache.get("a") is None

    def test_satisfies_protocol(self):
        assert isinstance(TTLCache(), AccessCache)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


@pytest.fixture
def projects(store):
    p1 = store.create("Project", {"name": "P1", "team_members": ["alice@x.com"]})
    p2 = store.create("Project", {"name": "P2", "team_members": ["bob@x.com", "Alice@X.com "]})
    p3 = store.create("Project", {"name": "P3", "team_members": ["bob@x.com"]})
    return p1, p2, p3


@pytest.fixture
def resolver(store):
    resolver = ProjectAccessResolver(store, TTLCache(ttl=60))
    store.add_listener(resolver.on_entity_change)
    return resolver


@pytest.fixture
def guard(store, resolver):
    return ProjectAccessGuard(resolver, store)


def count_lookups(store, monkeypatch) -> list[str]:
    calls: list[str] = []
    real = store.member_ids

    def counting(entity_type, array_field, value):
        calls.append(value)
        return real(entity_type, array_field, value)

    monkeypatch.setattr(store, "member_ids", counting)
    return calls


class TestResolver:
    def test_admin_is_unrestricted(self, resolver, projects):
        assert resolver.accessible_projects("root@x.com", "admin") is None

    def test_member_projects(self, resolver, projects):
        p1, p2, p3 = projects
        assert resolver.accessible_projects("bob@x.com", "member") == {p2["id"], p3["id"]}
        assert resolver.accessible_projects("carol@x.com", "member") == frozenset()

    def test_email_match_is_exact_after_lowercasing(self, resolver, projects):
        p1, _, _ = projects
        # "Alice@X.com " in P2 is stored verbatim and does not match
        assert resolver.accessible_projects("ALICE@x.com", "member") == {p1["id"]}

    def test_missing_email_sees_nothing(self, resolver, projects):
        assert resolver.accessible_projects(None, "member") == frozenset()
        assert resolver.accessible_projects("", None) == frozenset()

    def test_results_are_cached(self, store, resolver, projects, monkeypatch):
        calls = count_lookups(store, monkeypatch)
        resolver.accessible_projects("alice@x.com", "member")
        resolver.accessible_projects("Alice@x.com", "member")
        assert calls == ["alice@x.com"]

    def test_new_project_invalidates_its_members(self, store, resolver, projects):
        before = resolver.accessible_projects("alice@x.com", "member")
        resolver.accessible_projects("bob@x.com", "member")

        p4 = store.create("Project", {"name": "P4", "team_members": ["alice@x.com"]})

        assert resolver.accessible_projects("alice@x.com", "member") == before | {p4["id"]}
        assert resolver.cache.get("bob@x.com") is not None

    def test_membership_update_clears_cache(self, store, resolver, projects):
        p1, _, _ = projects
        assert p1["id"] in resolver.accessible_projects("alice@x.com", "member")

        store.update("Project", p1["id"], {"team_members": ["bob@x.com"]})

        assert len(resolver.cache) == 0
        assert p1["id"] not in resolver.accessible_projects("alice@x.com", "member")
        assert p1["id"] in resolver.accessible_projects("bob@x.com", "member")

    def test_unrelated_update_keeps_cache(self, store, resolver, projects):
        p1, _, _ = projects
        resolver.accessible_projects("alice@x.com", "member")
        store.update("Project", p1["id"], {"status": "active"})
        store.create("Task", {"project_id": p1["id"]})
        assert len(resolver.cache) == 1

    def test_project_delete_clears_cache(self, store, resolver, projects):
        p1, _, _ = projects
        resolver.accessible_projects("alice@x.com", "member")
        store.delete("Project", p1["id"])
        assert len(resolver.cache) == 0
        assert resolver.accessible_projects("alice@x.com", "member") == frozenset()


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


@pytest.fixture
def world(store, projects):
    """Alice is on P1 only, Bob on P2 and P3."""
    p1, p2, _ = projects
    task1 = store.create("Task", {"title": "t1", "project_id": p1["id"]})
    task2 = store.create("Task", {"title": "t2", "project_id": p2["id"]})
    part2 = store.create("Part", {"name": "switch", "project_id": p2["id"]})
    comment1 = store.create("TaskComment", {"text": "c1", "task_id": task1["id"]})
    comment2 = store.create("TaskComment", {"text": "c2", "task_id": task2["id"]})
    comment3 = store.create("TaskComment", {"text": "c3", "task_id": part2["id"]})
    return {
        "p1": p1,
        "p2": p2,
        "task1": task1,
        "task2": task2,
        "part2": part2,
        "comments": [comment1, comment2, comment3],
    }


class TestScopeFilter:
    def test_admin_and_unscoped_types_unrestricted(self, guard):
        assert guard.scope_filter("Project", ADMIN) is None
        assert guard.scope_filter("Customer", ALICE) is None
        assert guard.scope_filter("Customer", None) is None

    def test_scoped_type_needs_caller(self, guard):
        with pytest.raises(AuthRequired):
            guard.scope_filter("Task", None)

    def test_project_list(self, store, guard, world):
        rows = store.list("Project", scope_filter=guard.scope_filter("Project", ALICE))
        assert [row["name"] for row in rows] == ["P1"]

    def test_child_list(self, store, guard, world):
        rows = store.list("Task", scope_filter=guard.scope_filter("Task", BOB))
        assert [row["title"] for row in rows] == ["t2"]

    def test_indirect_list_follows_every_parent(self, store, guard, world):
        alice_rows = store.list("TaskComment", scope_filter=guard.scope_filter("TaskComment", ALICE))
        bob_rows = store.list("TaskComment", scope_filter=guard.scope_filter("TaskComment", BOB))
        assert [row["text"] for row in alice_rows] == ["c1"]
        assert sorted(row["text"] for row in bob_rows) == ["c2", "c3"]

    def test_filter_and_scope_combine(self, store, guard, world):
        scope = guard.scope_filter("Task", BOB)
        assert store.filter("Task", {"title": "t1"}, scope_filter=scope) == []

    def test_no_memberships_sees_nothing(self, store, guard, world):
        carol = AuthenticatedUser(user_id="c", email="carol@x.com")
        assert store.list("Task", scope_filter=guard.scope_filter("Task", carol)) == []
        assert store.list("TaskComment", scope_filter=guard.scope_filter("TaskComment", carol)) == []


class TestPointChecks:
    def test_member_passes(self, guard, world):
        guard.check_entity("Project", world["p1"]["id"], ALICE)
        guard.check_entity("Task", world["task1"]["id"], ALICE)
        guard.check_entity("TaskComment", world["comments"][0]["id"], ALICE)

    def test_non_member_denied(self, guard, world):
        with pytest.raises(AccessDenied):
            guard.check_entity("Project", world["p2"]["id"], ALICE)
        with pytest.raises(AccessDenied):
            guard.check_entity("Task", world["task2"]["id"], ALICE)
        with pytest.raises(AccessDenied):
            guard.check_entity("TaskComment", world["comments"][2]["id"], ALICE)

    def test_admin_passes(self, guard, world):
        guard.check_entity("Task", world["task2"]["id"], ADMIN)

    def test_missing_row_passes_through(self, guard, world):
        guard.check_entity("Task", str(uuid.uuid4()), ALICE)
        guard.check_entity("Project", "not-a-uuid", ALICE)

    def test_anonymous_denied_on_scoped_type(self, guard, world):
        with pytest.raises(AuthRequired):
            guard.check_entity("Task", world["task1"]["id"], None)

    def test_child_without_project_denied(self, store, guard):
        orphan = store.create("Task", {"title": "loose"})
        with pytest.raises(AccessDenied):
            guard.check_entity("Task", orphan["id"], ALICE)

    def test_comment_with_deleted_parent_passes(self, store, guard):
        comment = store.create("TaskComment", {"text": "orphan", "task_id": str(uuid.uuid4())})
        guard.check_entity("TaskComment", comment["id"], ALICE)

    def test_patch_cannot_move_row_into_foreign_project(self, guard, world):
        with pytest.raises(AccessDenied):
            guard.check_patch("Task", world["task1"]["id"], {"project_id": world["p2"]["id"]}, ALICE)
        guard.check_patch("Task", world["task1"]["id"], {"title": "renamed"}, ALICE)

    @pytest.mark.parametrize("value", [None, ""])
    def test_patch_cannot_clear_project(self, guard, world, value):
        with pytest.raises(AccessDenied):
            guard.check_patch("Task", world["task1"]["id"], {"project_id": value}, ALICE)

    def test_admin_may_clear_project(self, guard, world):
        guard.check_patch("Task", world["task1"]["id"], {"project_id": None}, ADMIN)

    def test_patch_cannot_move_comment_under_foreign_parent(self, guard, world):
        comment1 = world["comments"][0]
        with pytest.raises(AccessDenied):
            guard.check_patch("TaskComment", comment1["id"], {"task_id": world["task2"]["id"]}, ALICE)


class TestCreateRules:
    def test_creator_added_to_new_project(self, guard):
        data = guard.prepare_create("Project", {"name": "New"}, ALICE)
        assert data["team_members"] == ["alice@x.com"]

    def test_creator_not_duplicated(self, guard):
        data = guard.prepare_create("Project", {"team_members": ["alice@x.com", "bob@x.com"]}, ALICE)
        assert data["team_members"] == ["alice@x.com", "bob@x.com"]

    def test_mixed_case_member_still_gets_creator_entry(self, store, guard, resolver):
        data = guard.prepare_create("Project", {"team_members": ["Alice@X.com"]}, ALICE)
        assert data["team_members"] == ["Alice@X.com", "alice@x.com"]

        row = store.create("Project", data, ALICE.email)
        assert row["id"] in resolver.accessible_projects(ALICE.email, ALICE.role)
        guard.check_entity("Project", row["id"], ALICE)
        rows = store.list("Project", scope_filter=guard.scope_filter("Project", ALICE))
        assert row["id"] in [r["id"] for r in rows]

    def test_creator_appended_to_existing_members(self, guard):
        data = guard.prepare_create("Project", {"team_members": ["bob@x.com"]}, ALICE)
        assert data["team_members"] == ["bob@x.com", "alice@x.com"]

    def test_team_members_must_be_list(self, guard):
        with pytest.raises(InvalidPayload):
            guard.prepare_create("Project", {"team_members": "bob@x.com"}, ALICE)

    def test_admin_payload_untouched(self, guard):
        data = {"name": "Admin project"}
        assert guard.prepare_create("Project", data, ADMIN) is data

    def test_creator_keeps_access_to_new_project(self, store, guard, resolver):
        data = guard.prepare_create("Project", {"name": "Mine"}, ALICE)
        row = store.create("Project", data, ALICE.email)
        assert row["id"] in resolver.accessible_projects(ALICE.email, ALICE.role)

    def test_child_in_foreign_project_denied(self, guard, world):
        with pytest.raises(AccessDenied):
            guard.prepare_create("Task", {"project_id": world["p2"]["id"]}, ALICE)
        guard.prepare_create("Task", {"project_id": world["p1"]["id"]}, ALICE)

    def test_child_without_project_allowed(self, guard):
        assert guard.prepare_create("Task", {"title": "inbox"}, ALICE) == {"title": "inbox"}

    def test_comment_under_foreign_task_denied(self, guard, world):
        with pytest.raises(AccessDenied):
            guard.prepare_create("TaskComment", {"task_id": world["task2"]["id"]}, ALICE)
        with pytest.raises(AccessDenied):
            guard.prepare_create("TaskComment", {"task_id": world["part2"]["id"]}, ALICE)
        guard.prepare_create("TaskComment", {"task_id": world["task1"]["id"]}, ALICE)

    def test_bulk_create_checks_every_item(self, guard, world):
        items = [{"project_id": world["p1"]["id"]}, {"project_id": world["p2"]["id"]}]
        with pytest.raises(AccessDenied):
            guard.prepare_bulk_create("Task", items, ALICE)

    def test_bulk_create_projects(self, guard):
        items = guard.prepare_bulk_create("Project", [{"name": "A"}, {"name": "B"}], BOB)
        assert all(item["team_members"] == ["bob@x.com"] for item in items)

    def test_unscoped_type_passes(self, guard):
        assert guard.prepare_create("Feedback", {"text": "hi"}, None) == {"text": "hi"}
