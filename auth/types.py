"""Pydantic models for the auth domain."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

T = TypeVar("T")


class UserRole(str, Enum):
    """Club roles. Governs route access."""

    ADMIN = "admin"
    CORE_TEAM = "core_team"
    MEMBER = "member"


class OTPType(str, Enum):
    """Purpose a one-time code was issued for."""

    LOGIN = "login"
    REGISTER = "register"
    RESET = "reset"


class NotificationPreferences(BaseModel):
    email: bool = True
    in_app: bool = True


class UserProfile(BaseModel):
    """Application-owned member record, keyed 1:1 by the identity id."""

    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    role: UserRole = UserRole.MEMBER
    student_id: str | None = None
    faculty: str | None = None
    year_of_study: int | None = None
    phone: str | None = None
    profile_image_url: str | None = None
    bio: str | None = None
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ProfileUpdate(BaseModel):
    """Fields a member may change on their own profile. All optional.

    Role is deliberately absent: it is only ever changed by administrators
    directly in the repository.
    """

    first_name: str | None = Field(None, min_length=1, max_length=255)
    last_name: str | None = Field(None, min_length=1, max_length=255)
    student_id: str | None = Field(None, max_length=50)
    faculty: str | None = Field(None, max_length=255)
    year_of_study: int | None = Field(None, ge=1, le=8)
    phone: str | None = Field(None, max_length=50)
    profile_image_url: str | None = Field(None, max_length=2048)
    bio: str | None = Field(None, max_length=5000)
    notification_preferences: NotificationPreferences | None = None


class SignInCredentials(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignUpData(BaseModel):
    """Registration payload. Unknown keys (including `role`) are dropped."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    student_id: str | None = Field(None, max_length=50)
    faculty: str | None = Field(None, max_length=255)
    year_of_study: int | None = Field(None, ge=1, le=8)
    phone: str | None = Field(None, max_length=50)

    model_config = {"extra": "ignore"}


class Identity(BaseModel):
    """Account record owned by the identity provider.

    `user_metadata` is writable by the member through their own session and
    is never trusted for authorization. Role claims live in `app_metadata`,
    which only the service role can write.
    """

    id: UUID
    email: str
    email_confirmed_at: datetime | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    app_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def role(self) -> UserRole | None:
        value = self.app_metadata.get("role")
        try:
            return UserRole(value) if value else None
        except ValueError:
            return None


class ProviderSession(BaseModel):
    """Short-lived credential issued by the identity provider."""

    access_token: str = Field(..., description="Signed JWT (opaque to callers)")
    refresh_token: str | None = None
    expires_at: datetime | None = None
    user: Identity


class AuthenticatedSession(BaseModel):
    """Identity, session and profile produced by a successful auth flow.

    `session` is None after a sign-up that still awaits email verification.
    """

    identity: Identity
    session: ProviderSession | None = None
    profile: UserProfile | None = None


class SessionClaims(BaseModel):
    """Claims read from a verified access token, used for route gating."""

    user_id: UUID
    email: str | None = None
    role: UserRole | None = None
    first_name: str | None = None
    last_name: str | None = None
    expires_at: datetime | None = None


class OTPCode(BaseModel):
    """A one-time passcode awaiting verification."""

    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$")
    type: OTPType
    expires_at: datetime
    used: bool  # Required - fail closed, no default


class SendOTPRequest(BaseModel):
    email: EmailStr
    type: OTPType = OTPType.LOGIN


class VerifyOTPRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1, max_length=16)
    type: OTPType = OTPType.LOGIN


class ResendVerificationRequest(BaseModel):
    email: EmailStr


@dataclass(frozen=True)
class AuthFailure:
    """User-displayable failure carried in an AuthResult."""

    code: str
    message: str


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """(data, error) pair returned across the auth service boundary."""

    data: T | None = None
    error: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T | None = None) -> "AuthResult[T]":
        return cls(data=data, error=None)

    @classmethod
    def failure(cls, code: str, message: str) -> "AuthResult[T]":
        return cls(data=None, error=AuthFailure(code=code, message=message))
