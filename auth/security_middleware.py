"""Route access middleware for FastAPI - session verification and role gating."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse

from api.base import ErrorCodes, error_response
from auth.config import AuthConfig
from auth.route_policy import decide, is_api, is_public
from auth.session import SessionVerifier
from auth.types import SessionClaims
from utils.user_context import clear_current_claims, set_current_claims

logger = logging.getLogger(__name__)


class RouteAccessMiddleware(BaseHTTPMiddleware):
    """Middleware that verifies the session and applies the route policy.

    For every request:
    1. Reads the access token from the session cookie or a Bearer header
    2. Verifies it via SessionVerifier (no token or bad token = no session)
    3. Applies auth.route_policy.decide: allow, redirect, or 401/403 for API paths
    4. Sets claims in request.state and the claims context, cleared afterwards

    Any error while checking the session fails closed: protected paths go
    to the login page, public paths are served anonymously.
    """

    def __init__(self, app, verifier: SessionVerifier, config: AuthConfig | None = None):
        super().__init__(app)
        self._verifier = verifier
        self._config = config or AuthConfig()

    def _extract_token(self, request: Request) -> str | None:
        token = request.cookies.get(self._config.access_token_cookie)
        if token:
            return token
        header = request.headers.get("authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return None

    def _resolve_claims(self, request: Request) -> SessionClaims | None:
        token = self._extract_token(request)
        if not token:
            return None
        return self._verifier.verify(token)

    def _fail_closed(self, path: str):
        if is_api(path):
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )
        return RedirectResponse(self._config.login_path, status_code=302)

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        try:
            claims = self._resolve_claims(request)
            decision = decide(
                path,
                claims,
                login_path=self._config.login_path,
                dashboard_path=self._config.dashboard_path,
            )
        except Exception:
            logger.exception(f"Session check failed for {path}")
            if is_public(path):
                return await call_next(request)
            return self._fail_closed(path)

        if decision.action == "redirect":
            logger.debug(f"Redirecting {path} -> {decision.location} ({decision.reason})")
            return RedirectResponse(decision.location, status_code=302)

        if decision.action == "deny":
            code = ErrorCodes.NOT_AUTHENTICATED if decision.status == 401 else ErrorCodes.FORBIDDEN
            return JSONResponse(
                status_code=decision.status,
                content=error_response(code, decision.reason).model_dump(mode="json"),
            )

        if claims is None:
            return await call_next(request)

        set_current_claims(claims)
        request.state.claims = claims
        request.state.user_id = claims.user_id

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_claims()
