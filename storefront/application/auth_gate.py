"""Authentication gate.

Resolves the current actor from a bearer JWT issued by the auth service
and enforces sign-in and admin requirements.

Tokens are HS256 JWTs signed with the secret shared with the auth
service. The subject is read from ``sub`` or, for tokens minted by the
storefront's account service, ``_id``. Profile claims (``name``,
``email``, ``address``, ``role``) are optional.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import structlog

from storefront.domain.actors import Actor, Admin, Anonymous, AuthenticatedUser
from storefront.domain.exceptions import ForbiddenError, UnauthenticatedError
from storefront.infrastructure.config import settings

logger = structlog.get_logger()

ADMIN_ROLE = "admin"
TOKEN_ALGORITHM = "HS256"


class TokenVerifier:
    """Verifies HS256 JWTs issued by the auth service."""

    def __init__(self, secret: str | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: Shared signing secret.
        """
        self.secret = secret or settings.auth_token_secret

    def sign(self, claims: dict[str, Any], ttl_seconds: int = 3600) -> str:
        """Issue a token (development and tests only).

        Args:
            claims: Payload claims; ``exp`` is added when missing.
            ttl_seconds: Lifetime of the token.

        Returns:
            Encoded JWT.
        """
        payload = dict(claims)
        payload.setdefault("exp", datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds))
        return jwt.encode(payload, self.secret, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any] | None:
        """Verify a token and return its claims.

        Args:
            token: Encoded JWT.

        Returns:
            Claims with ``sub`` set if the token is correctly signed, not
            expired and names a subject, None otherwise.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Auth token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid auth token", error=str(e))
            return None

        subject = claims.get("sub") or claims.get("_id")
        if not subject:
            logger.warning("Auth token has no subject")
            return None
        claims["sub"] = str(subject)
        return claims


class AuthGate:
    """Resolves actors and gates checkout and admin operations."""

    def __init__(self, verifier: TokenVerifier | None = None) -> None:
        self.verifier = verifier or TokenVerifier()

    def current_actor(
        self,
        authorization: str | None,
        cart_session: str | None = None,
    ) -> Actor:
        """Resolve the actor for a request.

        Args:
            authorization: Authorization header value ("Bearer <token>").
            cart_session: Browser-context id from the X-Cart-Session header.

        Returns:
            Admin or AuthenticatedUser for a valid token, Anonymous otherwise.
        """
        if not authorization:
            return Anonymous(session_id=cart_session)

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return Anonymous(session_id=cart_session)

        claims = self.verifier.verify(token.strip())
        if claims is None:
            return Anonymous(session_id=cart_session)

        actor_cls = Admin if claims.get("role") == ADMIN_ROLE else AuthenticatedUser
        return actor_cls(
            user_id=str(claims["sub"]),
            name=claims.get("name") or "",
            email=claims.get("email"),
            address=claims.get("address"),
            session_id=cart_session,
        )

    def require_authenticated(self, actor: Actor) -> AuthenticatedUser:
        """Return the signed-in actor.

        Raises:
            UnauthenticatedError: If the actor is anonymous.
        """
        if not isinstance(actor, AuthenticatedUser):
            raise UnauthenticatedError()
        return actor

    def require_admin(self, actor: Actor) -> Admin:
        """Return the admin actor.

        Raises:
            UnauthenticatedError: If the actor is anonymous.
            ForbiddenError: If the actor is not an admin.
        """
        user = self.require_authenticated(actor)
        if not isinstance(user, Admin):
            raise ForbiddenError(user.user_id)
        return user


# Global gate instance
_auth_gate: AuthGate | None = None


def get_auth_gate() -> AuthGate:
    """Get auth gate singleton."""
    global _auth_gate
    if _auth_gate is None:
        _auth_gate = AuthGate()
    return _auth_gate


def reset_auth_gate(secret: str | None = None) -> AuthGate:
    """Reset auth gate (for testing)."""
    global _auth_gate
    _auth_gate = AuthGate(TokenVerifier(secret))
    return _auth_gate
