"""Type definitions for authentication."""

from dataclasses import dataclass
from typing import Any


@dataclass
class TokenClaims:
    """Claims embedded in a JWT access token.

    Attributes:
        user_id: The identity provider's user ID (``sub``)
        email: The user's email address
        role: The user's role ("admin" or "member")
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
    """

    user_id: str
    email: str = ""
    role: str | None = None
    exp: int = 0
    iat: int = 0


@dataclass(frozen=True)
class AuthenticatedUser:
    """A verified caller.

    Attributes:
        user_id: The user's unique ID
        email: Lower-cased email address, the key for project membership
        role: "admin" or "member"
    """

    user_id: str
    email: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {"userId": self.user_id, "email": self.email, "role": self.role}
