"""
Auth session context for one browser context.

Holds the current identity and profile (through AuthStore), keeps them in
line with the provider's auth-state-change events, and exposes the
member-facing operations.

Explicit operations (initialize, sign_in, sign_up, sign_out) hold an
in-flight guard. Provider events that arrive while the guard is held are
dropped, so an explicit call's result is never overwritten by a stale
event. Events resume as soon as the guard is released.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict

from auth.config import AuthConfig
from auth.errors import FailureCodes, translate_error_message
from auth.exceptions import InvalidTransitionError
from auth.provider import AuthStateEvent, IdentityProvider
from auth.service import AuthService
from auth.state import (
    AuthState,
    AuthStore,
    InitStarted,
    ProfileChanged,
    SessionCleared,
    SessionResolved,
    SessionStatus,
    SignedIn,
    can_apply,
)
from auth.types import (
    AuthenticatedSession,
    AuthResult,
    Identity,
    ProfileUpdate,
    ProviderSession,
    SignInCredentials,
    SignUpData,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Local storage keys the provider SDK and login form may leave behind
AUTH_STORAGE_KEYS = (
    "supabase.auth.token",
    "sb-refresh-token",
    "sb-access-token",
    "supabase.auth.expires_at",
)
REMEMBERED_EMAIL_KEY = "rememberedEmail"


@dataclass
class BrowserStorage:
    """Local storage, session storage and cookies of one browser context."""

    local: Dict[str, str] = field(default_factory=dict)
    session: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    def purge_auth_keys(self, include_remembered_email: bool = False) -> None:
        for key in AUTH_STORAGE_KEYS:
            self.local.pop(key, None)
        if include_remembered_email:
            self.local.pop(REMEMBERED_EMAIL_KEY, None)

    def clear_session(self) -> None:
        self.session.clear()

    def expire_cookies(self) -> None:
        self.cookies.clear()


class AuthSessionContext:
    """Reactive session state plus sign-in/sign-up/sign-out for the UI."""

    def __init__(
        self,
        auth_service: AuthService,
        provider: IdentityProvider,
        storage: BrowserStorage | None = None,
        navigate: Callable[[str], None] | None = None,
        config: AuthConfig | None = None,
    ):
        self._service = auth_service
        self._provider = provider
        self._storage = storage if storage is not None else BrowserStorage()
        self._navigate = navigate or (lambda path: None)
        self._config = config or AuthConfig()
        self._store = AuthStore()
        self._guard_lock = threading.Lock()
        self._in_flight = 0
        self._unsubscribe: Callable[[], None] | None = None

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._store.state

    @property
    def user(self) -> Identity | None:
        return self._store.state.user

    @property
    def user_profile(self) -> UserProfile | None:
        return self._store.state.profile

    @property
    def loading(self) -> bool:
        return self._store.state.loading

    @property
    def initialized(self) -> bool:
        return self._store.state.initialized

    @property
    def storage(self) -> BrowserStorage:
        return self._storage

    @property
    def operation_in_flight(self) -> bool:
        with self._guard_lock:
            return self._in_flight > 0

    def subscribe(self, callback: Callable[[AuthState], None]) -> Callable[[], None]:
        """Observe state changes. Returns an unsubscribe callable."""
        return self._store.subscribe(callback)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _operation(self):
        """Hold the in-flight guard. Nests (sign_out inside initialize)."""
        with self._guard_lock:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._guard_lock:
                self._in_flight -= 1

    def _apply(self, event) -> bool:
        """Dispatch if valid now. Returns False when the state moved on."""
        try:
            self._store.dispatch(event)
            return True
        except InvalidTransitionError as e:
            logger.warning(f"Dropped session event: {e}")
            return False

    def _ensure_initialized(self) -> None:
        if self.state.status == SessionStatus.UNINITIALIZED:
            self.initialize()

    def _apply_signed_in(self, result: AuthResult[AuthenticatedSession]) -> AuthResult[AuthenticatedSession]:
        """Record a fresh session, or revoke it if the context cannot take it now."""
        data = result.data
        if data.session is None or data.profile is None:
            return result
        if self._apply(SignedIn(user=data.identity, profile=data.profile)):
            return result

        signed_out = self._service.sign_out()
        if not signed_out.ok:
            logger.error(f"Could not revoke unrecorded session: {signed_out.error.message}")
        return AuthResult.failure(
            FailureCodes.UNEXPECTED,
            "Sign in could not be completed. Please try again",
        )

    def _handle_auth_state_change(self, event: str, session: ProviderSession | None) -> None:
        if self.operation_in_flight:
            logger.debug(f"Skipping {event} while an auth operation is in flight")
            return

        logger.info(f"Auth state changed: {event} {session.user.id if session else None}")

        if event == AuthStateEvent.SIGNED_OUT or session is None:
            cleared = SessionCleared()
            if can_apply(self.state, cleared):
                self._apply(cleared)
            self._storage.purge_auth_keys()
            return

        status = self.state.status
        if status != SessionStatus.AUTHENTICATED:
            # Anonymous contexts become authenticated through sign_in/sign_up only
            logger.info(f"Ignoring {event} while {status.value}")
            return

        try:
            result = self._service.fetch_profile(session.user.id)
        except Exception:
            logger.exception(f"Error handling {event}")
            self.sign_out()
            return

        if result.ok:
            self._apply(ProfileChanged(profile=result.data, user=session.user))
        else:
            logger.warning(f"Signing out after {event}: {result.error.message}")
            self.sign_out()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> AuthState:
        """
        Resolve the stored provider session and start listening for events.

        A session without a profile, or any error while resolving, ends in
        a full sign-out. Calling again after the first run is a no-op.
        """
        if self.state.status != SessionStatus.UNINITIALIZED:
            return self.state

        with self._operation():
            if not self._apply(InitStarted()):
                return self.state

            if self._unsubscribe is None:
                self._unsubscribe = self._provider.on_auth_state_change(
                    self._handle_auth_state_change
                )

            try:
                session = self._provider.get_session()
                if session is None:
                    self._apply(SessionCleared())
                    self._storage.purge_auth_keys()
                else:
                    result = self._service.fetch_profile(session.user.id)
                    if result.ok:
                        self._apply(SessionResolved(user=session.user, profile=result.data))
                    else:
                        logger.warning(f"No usable profile for {session.user.id}: {result.error.message}")
                        self.sign_out()
            except Exception:
                logger.exception("Error initializing auth")
                self.sign_out()

        return self.state

    def close(self) -> None:
        """Stop listening for provider events."""
        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception:
                logger.exception("Error unsubscribing from auth state changes")
            self._unsubscribe = None

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def sign_in(self, credentials: SignInCredentials) -> AuthResult[AuthenticatedSession]:
        """Password sign-in. Initializes the context first if needed."""
        with self._operation():
            self._ensure_initialized()
            try:
                result = self._service.sign_in(credentials.email, credentials.password)
            except Exception:
                logger.exception("Error in sign_in")
                return AuthResult.failure(
                    FailureCodes.UNEXPECTED,
                    "An unexpected error occurred during sign in",
                )
            if result.ok:
                return self._apply_signed_in(result)
            return result

    def sign_up(self, data: SignUpData) -> AuthResult[AuthenticatedSession]:
        """Register. State only changes when the provider issued a session."""
        with self._operation():
            self._ensure_initialized()
            try:
                result = self._service.sign_up(data)
            except Exception:
                logger.exception("Error in sign_up")
                return AuthResult.failure(
                    FailureCodes.UNEXPECTED,
                    "An unexpected error occurred during sign up",
                )
            if result.ok:
                return self._apply_signed_in(result)
            return result

    def sign_out(self) -> None:
        """
        Full sign-out. Always ends on the login page.

        Order: clear state, invalidate the provider session, purge auth
        storage keys, clear session storage, expire cookies.
        """
        with self._operation():
            try:
                cleared = SessionCleared()
                if can_apply(self.state, cleared):
                    self._apply(cleared)

                result = self._service.sign_out()
                if not result.ok:
                    logger.error(f"Provider sign-out failed: {result.error.message}")
            except Exception:
                logger.exception("Error signing out")
            finally:
                self._storage.purge_auth_keys(include_remembered_email=True)
                self._storage.clear_session()
                self._storage.expire_cookies()
                self._navigate(self._config.login_path)

    def update_profile(self, update: ProfileUpdate) -> AuthResult[UserProfile]:
        user = self.user
        if user is None:
            return AuthResult.failure(
                FailureCodes.NOT_AUTHENTICATED,
                translate_error_message(FailureCodes.NOT_AUTHENTICATED),
            )

        try:
            result = self._service.update_profile(user.id, update)
        except Exception:
            logger.exception("Error in update_profile")
            return AuthResult.failure(
                FailureCodes.UNEXPECTED,
                "An unexpected error occurred while updating your profile",
            )
        if result.ok:
            self._apply(ProfileChanged(profile=result.data))
        return result

    def refresh_profile(self) -> None:
        """Re-read the profile. A vanished profile forces sign-out."""
        user = self.user
        if user is None:
            return

        try:
            result = self._service.fetch_profile(user.id)
        except Exception:
            logger.exception(f"Error refreshing profile for {user.id}")
            return
        if result.ok:
            self._apply(ProfileChanged(profile=result.data))
        elif result.error.code == FailureCodes.NO_USER_PROFILE:
            self.sign_out()
        else:
            logger.warning(f"Profile refresh failed for {user.id}: {result.error.message}")
