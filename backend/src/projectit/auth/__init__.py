"""Authentication: bearer-token identity for the entity API."""

from projectit.auth.types import AuthenticatedUser, TokenClaims
from projectit.auth.jwt_service import InvalidTokenError, JWTError, JWTService, TokenExpiredError
from projectit.auth.middleware import AuthMiddleware, get_request_user

__all__ = [
    "AuthenticatedUser",
    "TokenClaims",
    "JWTService",
    "JWTError",
    "InvalidTokenError",
    "TokenExpiredError",
    "AuthMiddleware",
    "get_request_user",
]
