"""Email verification callback.

GET /auth/callback?token_hash=...&type=signup&next=... is where the
confirmation email lands. The provider's email template must link here
with `{{ .TokenHash }}`:

    {{ .SiteURL }}/auth/callback?token_hash={{ .TokenHash }}&type=signup

The token is redeemed once, server-side, for a session; there is no retry.
A failed redemption sends the member back to the login page, from where
they can ask for a new link.
"""

import logging
from typing import Callable
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from auth.api import get_client_ip, set_session_cookies
from auth.config import AuthConfig
from auth.route_policy import role_homepage
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.service import AuthService

logger = logging.getLogger(__name__)


def safe_next_path(next_path: str | None) -> str | None:
    """`next` if it is a local absolute path other than `/`, else None."""
    if not next_path or next_path == "/":
        return None
    if not next_path.startswith("/") or next_path.startswith("//") or "\\" in next_path:
        return None
    return next_path


def _with_query(path: str, **params: str) -> str:
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(params)}"


def create_callback_router(
    config: AuthConfig,
    auth_service_factory: Callable[[], AuthService],
    security_logger: SecurityLogger,
) -> APIRouter:
    """Create the verification callback router."""
    router = APIRouter(tags=["auth"])

    def verification_failed() -> RedirectResponse:
        return RedirectResponse(
            _with_query(config.login_path, error="verification_failed"),
            status_code=302,
        )

    @router.get(config.callback_path)
    def auth_callback(
        request: Request,
        token_hash: str | None = Query(None),
        type: str = Query("signup"),
        next: str | None = Query(None),
    ):
        """Redeem the link token, set session cookies, redirect by role or `next`."""
        ip_address = get_client_ip(request)

        if not token_hash:
            return verification_failed()

        try:
            result = auth_service_factory().verify_email_link(token_hash, type)
        except Exception:
            logger.exception("Error in auth callback")
            return verification_failed()

        if not result.ok or result.data.session is None or result.data.profile is None:
            reason = result.error.code if result.error else "no session"
            logger.info(f"Verification callback failed: {reason}")
            security_logger.log(
                SecurityEvent.EMAIL_VERIFICATION_FAILED,
                ip_address=ip_address,
                details={"reason": reason},
            )
            return verification_failed()

        profile = result.data.profile
        destination = safe_next_path(next) or role_homepage(profile.role)

        response = RedirectResponse(_with_query(destination, verified="true"), status_code=302)
        set_session_cookies(response, result.data.session, config)

        security_logger.log(
            SecurityEvent.EMAIL_VERIFIED,
            email=profile.email,
            user_id=profile.id,
            ip_address=ip_address,
        )
        return response

    return router
