"""Route access policy.

Pure decision function used by RouteAccessMiddleware:

| Route class                 | Rule                                                   |
|-----------------------------|--------------------------------------------------------|
| Public                      | Allowed. Auth-only pages send signed-in members to the |
|                             | dashboard instead.                                     |
| Role-restricted prefix      | Session AND role in the allowed set, else dashboard.   |
| Anything else               | Session required, else login with redirectTo.          |

API paths (/api/...) get 401/403 instead of redirects.
"""

from dataclasses import dataclass
from typing import FrozenSet, Tuple
from urllib.parse import quote

from auth.types import SessionClaims, UserRole

PUBLIC_PATHS: Tuple[str, ...] = (
    "/",
    "/about",
    "/contact",
    "/resources",
    "/events",
    "/blog",
    "/join",
    "/auth/login",
    "/auth/register",
    "/auth/otp-login",
    "/auth/callback",
    "/auth/verify-email",
    "/auth/resend-verification",
    "/auth/reset-password",
    "/api/auth/send-otp",
    "/api/auth/verify-otp",
    "/api/auth/resend-verification",
    "/health",
    "/docs",
    "/openapi.json",
    "/static/",
)

# Public pages a signed-in member has no reason to see
AUTH_ONLY_PATHS: Tuple[str, ...] = (
    "/auth/login",
    "/auth/register",
    "/auth/reset-password",
)

ROLE_RESTRICTED_PREFIXES: Tuple[Tuple[str, FrozenSet[UserRole]], ...] = (
    ("/admin", frozenset({UserRole.ADMIN})),
    ("/core", frozenset({UserRole.ADMIN, UserRole.CORE_TEAM})),
)

ROLE_HOMEPAGES = {
    UserRole.ADMIN: "/admin",
    UserRole.CORE_TEAM: "/dashboard",
    UserRole.MEMBER: "/dashboard",
}

LOGIN_PATH = "/auth/login"
DASHBOARD_PATH = "/dashboard"


@dataclass(frozen=True)
class AccessDecision:
    """
    Outcome for one request.

    action is "allow", "redirect" (location set) or "deny" (status set,
    API paths only).
    """

    action: str
    location: str | None = None
    status: int | None = None
    reason: str = ""

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(action="allow")

    @classmethod
    def redirect(cls, location: str, reason: str) -> "AccessDecision":
        return cls(action="redirect", location=location, reason=reason)

    @classmethod
    def deny(cls, status: int, reason: str) -> "AccessDecision":
        return cls(action="deny", status=status, reason=reason)


def matches_prefix(path: str, prefix: str) -> bool:
    """Segment-aware prefix match. `/` only matches itself.

    A prefix ending in `/` matches anything below it; otherwise the path
    must equal the prefix or continue with `/`.
    """
    if prefix == "/":
        return path == "/"
    if prefix.endswith("/"):
        return path.startswith(prefix)
    return path == prefix or path.startswith(prefix + "/")


def is_public(path: str) -> bool:
    return any(matches_prefix(path, public) for public in PUBLIC_PATHS)


def is_auth_only(path: str) -> bool:
    return any(matches_prefix(path, page) for page in AUTH_ONLY_PATHS)


def is_api(path: str) -> bool:
    return matches_prefix(path, "/api")


def required_roles(path: str) -> FrozenSet[UserRole] | None:
    for prefix, roles in ROLE_RESTRICTED_PREFIXES:
        if matches_prefix(path, prefix):
            return roles
    return None


def login_redirect(path: str, login_path: str = LOGIN_PATH) -> str:
    """Login URL that returns the member to `path` afterwards."""
    return f"{login_path}?redirectTo={quote(path, safe='')}"


def role_homepage(role: UserRole | None) -> str:
    return ROLE_HOMEPAGES.get(role, DASHBOARD_PATH)


def decide(
    path: str,
    claims: SessionClaims | None,
    login_path: str = LOGIN_PATH,
    dashboard_path: str = DASHBOARD_PATH,
) -> AccessDecision:
    """Decide access to `path` for the given session claims (None = no session)."""
    if is_public(path):
        if claims is not None and is_auth_only(path):
            return AccessDecision.redirect(dashboard_path, "already signed in")
        return AccessDecision.allow()

    if claims is None:
        if is_api(path):
            return AccessDecision.deny(401, "Authentication required")
        return AccessDecision.redirect(login_redirect(path, login_path), "no session")

    roles = required_roles(path)
    if roles is not None and claims.role not in roles:
        if is_api(path):
            return AccessDecision.deny(403, "Insufficient role")
        return AccessDecision.redirect(dashboard_path, "role not allowed")

    return AccessDecision.allow()
