"""Authentication and session lifecycle modules."""

from auth.exceptions import (
    AuthError,
    InvalidTransitionError,
    PersistenceError,
    ProviderError,
    RateLimitedError,
)
from auth.types import (
    AuthenticatedSession,
    AuthFailure,
    AuthResult,
    Identity,
    OTPCode,
    OTPType,
    ProfileUpdate,
    ProviderSession,
    SessionClaims,
    SignInCredentials,
    SignUpData,
    UserProfile,
    UserRole,
)
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.otp import OTPService
from auth.provider import AuthStateEvent, IdentityProvider
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.service import AuthService
from auth.session import SessionVerifier
from auth.state import AuthState, AuthStore, SessionStatus, transition
from auth.context import AuthSessionContext, BrowserStorage
from auth.security_middleware import RouteAccessMiddleware
from auth.api import create_auth_router
from auth.callback import create_callback_router
