"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Durations are in their natural units (minutes for codes and rate
    limit windows). Paths are application-relative.
    """

    # One-time codes
    otp_expiry_minutes: int = Field(
        default=10,
        description="How long an issued OTP remains valid",
        ge=1,
        le=60,
    )

    # Rate limiting of send-otp
    otp_rate_limit_attempts: int = Field(
        default=5,
        description="Max OTP sends per email per window",
        ge=1,
        le=20,
    )
    otp_rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=5,
        le=60,
    )

    # Brute-force guard on verify-otp
    otp_verify_max_failures: int = Field(
        default=5,
        description="Rejected codes per email and type before verification locks",
        ge=1,
        le=20,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Public origin, used for the email verification redirect",
    )
    app_name: str = Field(
        default="OCEM Techies",
        description="Club name for emails",
    )
    login_path: str = "/auth/login"
    dashboard_path: str = "/dashboard"
    admin_home_path: str = "/admin"
    callback_path: str = "/auth/callback"

    # Session cookies written after OTP login and the verification callback
    access_token_cookie: str = "sb-access-token"
    refresh_token_cookie: str = "sb-refresh-token"
    cookie_secure: bool = True
    cookie_max_age_seconds: int = Field(
        default=3600,
        description="Fallback cookie lifetime when the session carries no expiry",
        ge=60,
    )
    refresh_cookie_max_age_seconds: int = Field(
        default=60 * 60 * 24 * 30,
        description="Refresh token cookie lifetime",
        ge=60,
    )

    @property
    def email_redirect_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}{self.callback_path}"
