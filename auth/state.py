"""
Session state machine for one browser context.

    UNINITIALIZED -> LOADING -> {AUTHENTICATED, ANONYMOUS}
    AUTHENTICATED -> ANONYMOUS      sign-out or forced logout
    ANONYMOUS -> AUTHENTICATED      explicit sign-in/sign-up only
    AUTHENTICATED -> AUTHENTICATED  profile or token refresh

`transition` is pure: (state, event) -> new state, raising
InvalidTransitionError for anything not in the table. AuthStore wraps it
with a lock and notifies observers after each change.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, List

from auth.exceptions import InvalidTransitionError
from auth.types import Identity, UserProfile
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the session. AUTHENTICATED always carries user and profile."""

    status: SessionStatus = SessionStatus.UNINITIALIZED
    user: Identity | None = None
    profile: UserProfile | None = None

    @property
    def loading(self) -> bool:
        return self.status in (SessionStatus.UNINITIALIZED, SessionStatus.LOADING)

    @property
    def initialized(self) -> bool:
        return not self.loading

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class SessionEvent:
    """Base class for session state events."""
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InitStarted(SessionEvent):
    """Context began resolving the stored provider session."""
    pass


@dataclass(frozen=True)
class SessionResolved(SessionEvent):
    """Initialization found a session and its profile."""
    user: Identity
    profile: UserProfile


@dataclass(frozen=True)
class SessionCleared(SessionEvent):
    """No session: none stored, signed out, or forced out."""
    pass


@dataclass(frozen=True)
class SignedIn(SessionEvent):
    """An explicit sign-in or sign-up produced a session and profile."""
    user: Identity
    profile: UserProfile


@dataclass(frozen=True)
class ProfileChanged(SessionEvent):
    """Profile (and possibly refreshed identity) for the current member."""
    profile: UserProfile
    user: Identity | None = None


_ALLOWED: Dict[type, FrozenSet[SessionStatus]] = {
    InitStarted: frozenset({SessionStatus.UNINITIALIZED}),
    SessionResolved: frozenset({SessionStatus.LOADING}),
    SessionCleared: frozenset({
        SessionStatus.LOADING,
        SessionStatus.AUTHENTICATED,
        SessionStatus.ANONYMOUS,
    }),
    SignedIn: frozenset({SessionStatus.ANONYMOUS, SessionStatus.AUTHENTICATED}),
    ProfileChanged: frozenset({SessionStatus.AUTHENTICATED}),
}


def can_apply(state: AuthState, event: SessionEvent) -> bool:
    return state.status in _ALLOWED.get(type(event), frozenset())


def transition(state: AuthState, event: SessionEvent) -> AuthState:
    """Next state for `event`.

    Raises:
        InvalidTransitionError: If `event` is not valid in `state.status`.
    """
    if not can_apply(state, event):
        raise InvalidTransitionError(state.status.value, type(event).__name__)

    if isinstance(event, InitStarted):
        return AuthState(status=SessionStatus.LOADING)

    if isinstance(event, (SessionResolved, SignedIn)):
        return AuthState(
            status=SessionStatus.AUTHENTICATED,
            user=event.user,
            profile=event.profile,
        )

    if isinstance(event, SessionCleared):
        return AuthState(status=SessionStatus.ANONYMOUS)

    if isinstance(event, ProfileChanged):
        return AuthState(
            status=SessionStatus.AUTHENTICATED,
            user=event.user or state.user,
            profile=event.profile,
        )

    raise InvalidTransitionError(state.status.value, type(event).__name__)


class AuthStore:
    """
    Thread-safe holder of the current AuthState.

    Observers are called synchronously after each applied event, in
    subscription order, outside the lock. Observer errors are logged and
    do not propagate.
    """

    def __init__(self, initial: AuthState | None = None):
        self._state = initial or AuthState()
        self._lock = threading.RLock()
        self._observers: List[Callable[[AuthState], None]] = []

    @property
    def state(self) -> AuthState:
        with self._lock:
            return self._state

    def subscribe(self, callback: Callable[[AuthState], None]) -> Callable[[], None]:
        """Register an observer. Returns a callable that removes it."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def dispatch(self, event: SessionEvent) -> AuthState:
        """Apply `event` and notify observers.

        Raises:
            InvalidTransitionError: If `event` is not valid now. State is unchanged.
        """
        with self._lock:
            new_state = transition(self._state, event)
            self._state = new_state
            observers = list(self._observers)

        logger.debug(f"Session state -> {new_state.status.value} on {type(event).__name__}")

        for callback in observers:
            try:
                callback(new_state)
            except Exception:
                logger.exception(
                    "Observer %s failed for %s",
                    getattr(callback, "__name__", repr(callback)),
                    type(event).__name__,
                )
        return new_state
