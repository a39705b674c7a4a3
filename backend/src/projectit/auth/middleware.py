"""Authentication middleware for FastAPI."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from projectit.auth.jwt_service import JWTError, JWTService
from projectit.auth.types import AuthenticatedUser

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that extracts the JWT from the Authorization header.

    Sets ``request.state.user`` to an ``AuthenticatedUser``, or None when
    no valid token is present. The middleware does NOT reject
    unauthenticated requests; the entity routes decide whether the
    operation needs a caller.
    """

    def __init__(self, app, jwt_service: JWTService):
        """Initialize middleware with JWT service.

        Args:
            app: The ASGI application
            jwt_service: JWT service for token validation
        """
        super().__init__(app)
        self._jwt_service = jwt_service

    async def dispatch(self, request: Request, call_next) -> Response:
        """Process the request and extract authentication info."""
        request.state.user = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:]  # Remove "Bearer " prefix
            try:
                request.state.user = self._jwt_service.authenticate(token)
            except JWTError as e:
                logger.debug("Rejected bearer token on %s: %s", request.url.path, e)

        return await call_next(request)


def get_request_user(request: Request) -> AuthenticatedUser | None:
    """Get the authenticated caller from the request state.

    Args:
        request: The FastAPI/Starlette request

    Returns:
        AuthenticatedUser if authenticated, None otherwise
    """
    return getattr(request.state, "user", None)
