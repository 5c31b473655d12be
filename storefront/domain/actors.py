"""Actors that can interact with the storefront.

An actor is either an anonymous browser context, a signed-in user, or
an admin. Cart ownership is derived from the actor via ``cart_key``.
"""

from dataclasses import dataclass

GUEST_PREFIX = "guest:"
USER_PREFIX = "user:"


def guest_cart_key(session_id: str) -> str:
    """Cart key for an anonymous browser context."""
    return f"{GUEST_PREFIX}{session_id}"


def user_cart_key(user_id: str) -> str:
    """Cart key for a signed-in user."""
    return f"{USER_PREFIX}{user_id}"


@dataclass(frozen=True)
class Anonymous:
    """A visitor without a valid auth token.

    Attributes:
        session_id: Browser-context identifier from the X-Cart-Session header.
    """

    session_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return False

    @property
    def is_admin(self) -> bool:
        return False

    @property
    def cart_key(self) -> str | None:
        if not self.session_id:
            return None
        return guest_cart_key(self.session_id)


@dataclass(frozen=True)
class AuthenticatedUser:
    """A signed-in buyer.

    Attributes:
        user_id: Stable user identifier from the auth service.
        name: Display name.
        email: Login email.
        address: Shipping address; checkout requires one.
        session_id: Browser-context identifier, used to adopt a guest cart.
    """

    user_id: str
    name: str
    email: str | None = None
    address: str | None = None
    session_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_admin(self) -> bool:
        return False

    @property
    def cart_key(self) -> str:
        return user_cart_key(self.user_id)

    @property
    def guest_cart_key(self) -> str | None:
        """Key of the pre-login cart for the same browser context."""
        if not self.session_id:
            return None
        return guest_cart_key(self.session_id)

    @property
    def has_address(self) -> bool:
        return bool(self.address and self.address.strip())


@dataclass(frozen=True)
class Admin(AuthenticatedUser):
    """A signed-in user with back-office rights."""

    @property
    def is_admin(self) -> bool:
        return True


Actor = Anonymous | AuthenticatedUser | Admin
