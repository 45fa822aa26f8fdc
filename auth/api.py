"""HTTP routes for authentication.

Mounted under /api/auth. send-otp, verify-otp and resend-verification are
public; /me sits behind RouteAccessMiddleware.
"""

import ipaddress
import logging
from typing import Callable

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.base import ErrorCodes, error_response, success_response
from auth.config import AuthConfig
from auth.errors import FailureCodes
from auth.exceptions import PersistenceError, RateLimitedError
from auth.otp import OTPService
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.service import AuthService
from auth.types import (
    AuthenticatedSession,
    OTPType,
    ProviderSession,
    ResendVerificationRequest,
    SendOTPRequest,
    VerifyOTPRequest,
)
from clients.email_client import BrevoEmailClient, EmailDeliveryError
from utils.timezone import now_utc
from utils.user_context import get_current_claims

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message).model_dump(mode="json"),
    )


def _rate_limited(e: RateLimitedError, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(e.retry_after_seconds)},
        content=error_response(ErrorCodes.RATE_LIMITED, message).model_dump(mode="json"),
    )


def set_session_cookies(response: Response, session: ProviderSession, config: AuthConfig) -> None:
    """Write the access/refresh token cookies read by RouteAccessMiddleware."""
    max_age = config.cookie_max_age_seconds
    if session.expires_at is not None:
        max_age = max(int((session.expires_at - now_utc()).total_seconds()), 0)

    response.set_cookie(
        key=config.access_token_cookie,
        value=session.access_token,
        httponly=True,
        secure=config.cookie_secure,
        samesite="lax",
        max_age=max_age,
        path="/",
    )
    if session.refresh_token:
        response.set_cookie(
            key=config.refresh_token_cookie,
            value=session.refresh_token,
            httponly=True,
            secure=config.cookie_secure,
            samesite="lax",
            max_age=config.refresh_cookie_max_age_seconds,
            path="/",
        )


def session_payload(result: AuthenticatedSession) -> dict:
    """Member-safe view of an authenticated session (no tokens)."""
    return {
        "user": {
            "id": str(result.identity.id),
            "email": result.identity.email,
            "role": result.identity.role.value if result.identity.role else None,
        },
        "profile": result.profile.model_dump(mode="json") if result.profile else None,
    }


def create_auth_router(
    config: AuthConfig,
    otp_service: OTPService,
    auth_service_factory: Callable[[], AuthService],
    email_client: BrevoEmailClient,
    rate_limiter: RateLimiter,
    security_logger: SecurityLogger,
) -> APIRouter:
    """Create auth router with injected services.

    `auth_service_factory` returns a service bound to a fresh provider
    client; provider clients hold session state and are not shared
    between requests.
    """
    router = APIRouter(tags=["auth"])

    @router.post("/send-otp")
    def send_otp(request: Request, body: SendOTPRequest):
        """Generate, store and email a one-time code."""
        email = body.email.lower().strip()
        ip_address = get_client_ip(request)
        user_agent = request.headers.get("User-Agent")

        try:
            rate_limiter.check_rate_limit(email)
        except RateLimitedError as e:
            security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return _rate_limited(e, f"Too many requests. Please wait {e.retry_after_seconds} seconds.")

        security_logger.log(
            SecurityEvent.OTP_REQUESTED,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"type": body.type.value},
        )

        code = otp_service.generate()
        try:
            otp_service.store(email, code, body.type)
            email_client.send_otp(email, code, config.otp_expiry_minutes)
        except (PersistenceError, EmailDeliveryError) as e:
            logger.error(f"Error sending OTP to {email}: {e}")
            security_logger.log(
                SecurityEvent.OTP_SEND_FAILED,
                email=email,
                ip_address=ip_address,
                details={"reason": type(e).__name__},
            )
            return _error(500, ErrorCodes.OTP_SEND_FAILED, "Failed to send OTP")

        security_logger.log(SecurityEvent.OTP_SENT, email=email, ip_address=ip_address)
        return success_response(message="OTP sent successfully")

    @router.post("/verify-otp")
    def verify_otp(request: Request, response: Response, body: VerifyOTPRequest):
        """Consume a one-time code. Login codes also start a session.

        Sets session cookies on a successful login.
        """
        email = body.email.lower().strip()
        ip_address = get_client_ip(request)
        user_agent = request.headers.get("User-Agent")

        try:
            rate_limiter.check_verify_allowed(email, body.type)
        except RateLimitedError as e:
            security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"type": body.type.value, "operation": "verify"},
            )
            return _rate_limited(e, "Too many incorrect codes. Please request a new code later.")

        try:
            valid = otp_service.verify(email, body.otp, body.type)
        except PersistenceError as e:
            logger.error(f"Error verifying OTP for {email}: {e}")
            return _error(500, ErrorCodes.INTERNAL_ERROR, "Failed to verify OTP")

        if not valid:
            failures = rate_limiter.record_verify_failure(email, body.type)
            security_logger.log(
                SecurityEvent.OTP_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"type": body.type.value, "failures": failures},
            )
            return _error(400, ErrorCodes.INVALID_OTP, "Invalid or expired OTP")

        rate_limiter.reset_verify_failures(email, body.type)

        security_logger.log(
            SecurityEvent.OTP_VERIFIED,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"type": body.type.value},
        )

        if body.type != OTPType.LOGIN:
            return success_response(message="OTP verified successfully")

        result = auth_service_factory().sign_in_with_verified_otp(email)
        if not result.ok:
            return _error(400, result.error.code, result.error.message)

        set_session_cookies(response, result.data.session, config)
        rate_limiter.reset_rate_limit(email)
        security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=email,
            user_id=result.data.identity.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return success_response(
            data=session_payload(result.data),
            message="OTP verified successfully",
        )

    @router.post("/resend-verification")
    def resend_verification(request: Request, body: ResendVerificationRequest):
        """Send the sign-up confirmation email again."""
        email = body.email.lower().strip()
        result = auth_service_factory().resend_verification(email)
        if not result.ok:
            return _error(400, result.error.code, result.error.message)

        security_logger.log(
            SecurityEvent.VERIFICATION_RESENT,
            email=email,
            ip_address=get_client_ip(request),
        )
        return success_response(message="Verification email sent")

    @router.get("/me")
    def get_current_user():
        """Current member's claims and profile.

        Requires authentication (middleware sets the request's claims).
        """
        try:
            claims = get_current_claims()
        except RuntimeError:
            return _error(401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        result = auth_service_factory().fetch_profile(claims.user_id)
        if not result.ok:
            status_code = 404 if result.error.code == FailureCodes.NO_USER_PROFILE else 503
            return _error(status_code, result.error.code, result.error.message)

        return success_response(data={
            "user": {
                "id": str(claims.user_id),
                "email": claims.email,
                "role": claims.role.value if claims.role else None,
            },
            "profile": result.data.model_dump(mode="json"),
        })

    return router
