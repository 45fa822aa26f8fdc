"""Propagate the verified session claims through the call stack using contextvars."""

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.types import SessionClaims

_current_claims: ContextVar["SessionClaims | None"] = ContextVar(
    "current_session_claims", default=None
)


def get_current_claims() -> "SessionClaims":
    """
    Get the claims of the authenticated request.

    Raises RuntimeError if no claims are set. Code that needs the caller's
    identity outside of an authenticated request is a bug.
    """
    claims = _current_claims.get()
    if claims is None:
        raise RuntimeError(
            "No session claims set. This usually means you're calling "
            "identity-scoped code outside of an authenticated request."
        )
    return claims


def set_current_claims(claims: "SessionClaims") -> None:
    """Set by the route access middleware after the session token verifies."""
    _current_claims.set(claims)


def clear_current_claims() -> None:
    """
    Clear claims context.

    Must be called in a finally block to prevent leakage between requests.
    """
    _current_claims.set(None)

