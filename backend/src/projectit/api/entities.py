"""Generic entity API endpoints.

Every whitelisted entity type is served by the same handful of routes. Each
handler resolves the caller, runs the project access guard, then calls the
store. Handlers are plain ``def`` so FastAPI runs them in its worker pool;
the engine's connection pool bounds how many hit the database at once.
"""

from typing import Any, Callable

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from projectit.access.guard import ProjectAccessGuard
from projectit.auth.middleware import get_request_user
from projectit.auth.types import AuthenticatedUser
from projectit.errors import AuthRequired
from projectit.persistence.store import EntityStore


class FilterRequest(BaseModel):
    """Request body for filter queries."""
    filter: dict[str, Any] | None = None
    sort: str | None = None
    limit: Any = None


def create_entities_router(
    get_store: Callable[[], EntityStore | None],
    get_guard: Callable[[], ProjectAccessGuard | None],
    is_public: Callable[[str, str], bool] = lambda entity_type, operation: False,
) -> APIRouter:
    """Create the entity CRUD router with injected dependencies.

    Args:
        get_store: Returns the entity store (None before startup)
        get_guard: Returns the access guard (None before startup)
        is_public: Whether ``(entity_type, operation)`` may be called without a token
    """
    router = APIRouter(prefix="/api/entities", tags=["entities"])

    def services() -> tuple[EntityStore, ProjectAccessGuard]:
        store, guard = get_store(), get_guard()
        if not store or not guard:
            raise HTTPException(500, "Service not initialized")
        return store, guard

    def caller(request: Request, entity_type: str, operation: str) -> AuthenticatedUser | None:
        user = get_request_user(request)
        if user is None and not is_public(entity_type, operation):
            raise AuthRequired()
        return user

    @router.get("/{entity_type}/list")
    def list_entities(
        entity_type: str,
        request: Request,
        sort: str | None = None,
        limit: str | None = None,
    ) -> list[dict[str, Any]]:
        """List rows, newest first unless ``sort`` says otherwise."""
        store, guard = services()
        user = caller(request, entity_type, "list")
        scope_filter = guard.scope_filter(entity_type, user)
        return store.list(entity_type, sort, limit, scope_filter)

    @router.post("/{entity_type}/filter")
    def filter_entities(
        entity_type: str,
        request: Request,
        body: FilterRequest | None = None,
    ) -> list[dict[str, Any]]:
        """Query rows with a filter object."""
        store, guard = services()
        user = caller(request, entity_type, "filter")
        body = body or FilterRequest()
        scope_filter = guard.scope_filter(entity_type, user)
        return store.filter(entity_type, body.filter, body.sort, body.limit, scope_filter)

    @router.post("/{entity_type}/create")
    def create_entity(entity_type: str, request: Request, payload: Any = Body(...)):
        """Create one row."""
        store, guard = services()
        user = caller(request, entity_type, "create")
        payload = guard.prepare_create(entity_type, payload, user)
        row = store.create(entity_type, payload, user.email if user else None)
        return JSONResponse(status_code=201, content=row)

    @router.post("/{entity_type}/bulk-create")
    def bulk_create_entities(entity_type: str, request: Request, payload: Any = Body(...)):
        """Create many rows in one transaction."""
        store, guard = services()
        user = caller(request, entity_type, "bulk-create")
        payload = guard.prepare_bulk_create(entity_type, payload, user)
        rows = store.bulk_create(entity_type, payload, user.email if user else None)
        return JSONResponse(status_code=201, content=rows)

    @router.get("/{entity_type}/{entity_id}")
    def get_entity(entity_type: str, entity_id: str, request: Request) -> dict[str, Any]:
        store, guard = services()
        user = caller(request, entity_type, "get")
        guard.check_entity(entity_type, entity_id, user)
        row = store.get(entity_type, entity_id)
        if row is None:
            raise HTTPException(404, "Record not found")
        return row

    @router.put("/{entity_type}/{entity_id}")
    def update_entity(
        entity_type: str,
        entity_id: str,
        request: Request,
        patch: Any = Body(...),
    ) -> dict[str, Any]:
        """Shallow-merge a patch into a row."""
        store, guard = services()
        user = caller(request, entity_type, "update")
        guard.check_patch(entity_type, entity_id, patch, user)
        return store.update(entity_type, entity_id, patch)

    @router.delete("/{entity_type}/{entity_id}")
    def delete_entity(entity_type: str, entity_id: str, request: Request) -> dict[str, Any]:
        """Delete a row and its dependents; returns the cascade manifest."""
        store, guard = services()
        user = caller(request, entity_type, "delete")
        guard.check_entity(entity_type, entity_id, user)
        result = store.delete(entity_type, entity_id, user.email if user else None)
        return result.to_dict()

    return router
