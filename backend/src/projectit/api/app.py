"""FastAPI application."""

import logging
import time
import traceback
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import exc as sa_exc

from projectit.access import ProjectAccessGuard, ProjectAccessResolver, TTLCache
from projectit.api.entities import create_entities_router
from projectit.auth import AuthMiddleware, JWTService
from projectit.config import DEV_SECRET_KEY, Settings
from projectit.errors import ProjectITError
from projectit.persistence import EntityStore, create_db_engine
from projectit.persistence.schema import create_all

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Every error leaves the API as ``{"error": message}``."""

    @app.exception_handler(ProjectITError)
    async def projectit_error_handler(request: Request, exc: ProjectITError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return _error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(400, f"Invalid request: {message}")

    @app.exception_handler(sa_exc.TimeoutError)
    async def pool_timeout_handler(request: Request, exc: sa_exc.TimeoutError):
        logger.warning("Connection pool exhausted on %s %s", request.method, request.url.path)
        return _error_response(503, "Database busy")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content: dict[str, Any] = {"error": str(exc) or exc.__class__.__name__}
        if not settings.is_production:
            content["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        return JSONResponse(status_code=500, content=content)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application.

    Args:
        settings: Runtime settings; read from the environment when omitted

    Returns:
        FastAPI app whose store, resolver and guard are created on startup
        and kept on ``app.state``
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if settings.is_production and settings.secret_key == DEV_SECRET_KEY:
            logger.warning("PROJECTIT_SECRET_KEY is not set; using the development key")

        engine = create_db_engine(settings.database)
        create_all(engine)

        store = EntityStore(engine)
        resolver = ProjectAccessResolver(store, TTLCache(settings.access_cache_ttl))
        store.add_listener(resolver.on_entity_change)

        app.state.engine = engine
        app.state.store = store
        app.state.resolver = resolver
        app.state.guard = ProjectAccessGuard(resolver, store)
        logger.info("Entity store ready on %s", engine.url.render_as_string(hide_password=True))

        yield

        # Cleanup
        app.state.store = None
        app.state.guard = None
        engine.dispose()

    app = FastAPI(title="ProjectIT API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = None
    app.state.guard = None

    # CORS for frontend dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuthMiddleware, jwt_service=JWTService(settings.secret_key))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """One line per request: method, path, status and duration."""
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %d %.1fms",
            request.method, request.url.path, response.status_code, elapsed_ms,
        )
        return response

    _install_error_handlers(app, settings)

    app.include_router(
        create_entities_router(
            get_store=lambda: app.state.store,
            get_guard=lambda: app.state.guard,
            is_public=settings.is_public,
        )
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness check."""
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}

    return app


app = create_app()
