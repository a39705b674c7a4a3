"""JWT token validation (and development token issuance)."""

import time

import jwt

from projectit.auth.types import AuthenticatedUser, TokenClaims


class JWTError(Exception):
    """Base exception for JWT-related errors."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid or malformed."""

    pass


class JWTService:
    """Service for validating JWT tokens issued by the identity provider.

    Uses HS256 algorithm with a shared secret key. ``generate_access_token``
    exists for local development and tests; production tokens come from
    the identity provider.
    """

    ACCESS_TOKEN_TTL = 60 * 60  # 1 hour

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """Initialize the JWT service.

        Args:
            secret_key: Secret key for signing tokens (should be at least 32 chars)
            algorithm: JWT algorithm (default HS256)
        """
        self._secret_key = secret_key
        self._algorithm = algorithm

    def generate_access_token(
        self,
        user_id: str,
        email: str,
        role: str = "member",
        ttl: int | None = None,
    ) -> str:
        """Sign an access token for the given identity.

        Args:
            user_id: Subject of the token
            email: User's email address
            role: "admin" or "member"
            ttl: Lifetime in seconds (defaults to ACCESS_TOKEN_TTL)

        Returns:
            Encoded JWT
        """
        now = int(time.time())
        claims = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iat": now,
            "exp": now + (self.ACCESS_TOKEN_TTL if ttl is None else ttl),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenClaims:
        """Decode and validate a JWT token.

        Args:
            token: The JWT token string

        Returns:
            TokenClaims with the decoded claims

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        return TokenClaims(
            user_id=str(payload.get("sub", "")),
            email=str(payload.get("email") or ""),
            role=payload.get("role"),
            exp=payload.get("exp", 0),
            iat=payload.get("iat", 0),
        )

    def authenticate(self, token: str) -> AuthenticatedUser:
        """Decode a token into the caller identity the entity routes consume.

        Raises:
            JWTError: If the token is invalid, expired or carries no email
        """
        claims = self.decode_token(token)
        email = claims.email.strip().lower()
        if not email:
            raise InvalidTokenError("Token has no email claim")
        return AuthenticatedUser(
            user_id=claims.user_id or email,
            email=email,
            role=claims.role or "member",
        )
