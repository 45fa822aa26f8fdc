"""Tests for AuthSessionContext - session lifecycle of one browser context."""

from unittest.mock import Mock

import pytest

from auth.context import AUTH_STORAGE_KEYS, REMEMBERED_EMAIL_KEY, AuthSessionContext, BrowserStorage
from auth.errors import FailureCodes
from auth.exceptions import ProviderError
from auth.provider import AuthStateEvent
from auth.service import AuthService
from auth.state import AuthState, AuthStore, SessionStatus
from auth.types import NotificationPreferences, ProfileUpdate, SignInCredentials, SignUpData

PASSWORD = "Correct-horse-9!"


@pytest.fixture
def storage():
    """Browser storage with leftovers from a previous session."""
    storage = BrowserStorage()
    for key in AUTH_STORAGE_KEYS:
        storage.local[key] = "stale"
    storage.local[REMEMBERED_EMAIL_KEY] = "member@ocemtechies.com"
    storage.local["theme"] = "dark"
    storage.session["draft"] = "x"
    storage.cookies["sb-access-token"] = "token"
    return storage


@pytest.fixture
def visited():
    return []


@pytest.fixture
def ctx(auth_service, provider, storage, visited, config):
    context = AuthSessionContext(auth_service, provider, storage, visited.append, config)
    yield context
    context.close()


def _credentials(identity) -> SignInCredentials:
    return SignInCredentials(email=identity.email, password=PASSWORD)


class TestInitialize:
    """Resolving the stored session."""

    def test_no_session_is_anonymous(self, ctx, storage):
        state = ctx.initialize()

        assert state.status == SessionStatus.ANONYMOUS
        assert ctx.initialized is True
        assert ctx.loading is False
        assert ctx.user is None
        assert "supabase.auth.token" not in storage.local

    def test_anonymous_init_keeps_remembered_email(self, ctx, storage):
        ctx.initialize()

        assert storage.local[REMEMBERED_EMAIL_KEY] == "member@ocemtechies.com"

    def test_stored_session_with_profile_authenticates(self, ctx, provider, member):
        identity, profile = member
        provider.sign_in_with_password(identity.email, PASSWORD)

        state = ctx.initialize()

        assert state.status == SessionStatus.AUTHENTICATED
        assert ctx.user.id == identity.id
        assert ctx.user_profile == profile

    def test_stored_session_without_profile_signs_out(self, ctx, provider, storage, visited):
        """A profileless identity ends fully signed out on the login page."""
        orphan = provider.add_account("orphan@ocemtechies.com")
        provider.sign_in_with_password(orphan.email, PASSWORD)

        state = ctx.initialize()

        assert state.status == SessionStatus.ANONYMOUS
        assert ctx.user is None
        assert ctx.user_profile is None
        assert provider.current_session is None
        assert REMEMBERED_EMAIL_KEY not in storage.local
        assert storage.session == {}
        assert storage.cookies == {}
        assert visited == ["/auth/login"]

    def test_provider_error_signs_out(self, ctx, provider, visited):
        provider.fail["get_session"] = ProviderError("network down")

        state = ctx.initialize()

        assert state.status == SessionStatus.ANONYMOUS
        assert visited == ["/auth/login"]

    def test_second_initialize_is_noop(self, ctx, provider):
        ctx.initialize()
        ctx.initialize()

        assert provider.calls.count("get_session") == 1
        assert len(provider.listeners) == 1

    def test_observers_see_loading_then_settled(self, ctx):
        seen = []
        ctx.subscribe(lambda state: seen.append(state.status))

        ctx.initialize()

        assert seen == [SessionStatus.LOADING, SessionStatus.ANONYMOUS]

    def test_close_stops_listening(self, ctx, provider):
        ctx.initialize()

        ctx.close()

        assert provider.listeners == []


class TestSignIn:
    """Explicit sign-in."""

    def test_success_authenticates(self, ctx, member):
        identity, profile = member
        ctx.initialize()

        result = ctx.sign_in(_credentials(identity))

        assert result.ok
        assert ctx.state.status == SessionStatus.AUTHENTICATED
        assert ctx.user_profile == profile
        assert ctx.user.app_metadata["role"] == "member"

    def test_bad_password_stays_anonymous(self, ctx, member):
        identity, _ = member
        ctx.initialize()

        result = ctx.sign_in(SignInCredentials(email=identity.email, password="nope"))

        assert result.error.message == "Invalid email or password"
        assert ctx.state.status == SessionStatus.ANONYMOUS

    def test_no_profile_stays_anonymous(self, ctx, provider):
        orphan = provider.add_account("orphan@ocemtechies.com")
        ctx.initialize()

        result = ctx.sign_in(_credentials(orphan))

        assert result.error.code == FailureCodes.NO_USER_PROFILE
        assert ctx.user is None

    def test_signed_out_event_mid_sign_in_is_ignored(self, ctx, provider, member):
        """An event delivered during the call cannot undo its result."""
        identity, _ = member
        ctx.initialize()
        provider.hooks["sign_in_with_password"] = lambda: provider.emit(AuthStateEvent.SIGNED_OUT, None)

        result = ctx.sign_in(_credentials(identity))

        assert result.ok
        assert ctx.state.status == SessionStatus.AUTHENTICATED

    def test_guard_held_during_call(self, ctx, provider, member):
        identity, _ = member
        ctx.initialize()
        observed = []
        provider.hooks["sign_in_with_password"] = lambda: observed.append(ctx.operation_in_flight)

        ctx.sign_in(_credentials(identity))

        assert observed == [True]
        assert ctx.operation_in_flight is False

    def test_sign_in_before_initialize_initializes(self, ctx, provider, member):
        """The session is recorded even when initialize was never called."""
        identity, profile = member

        result = ctx.sign_in(_credentials(identity))

        assert result.ok
        assert ctx.state.status == SessionStatus.AUTHENTICATED
        assert ctx.user_profile == profile
        assert "get_session" in provider.calls
        assert len(provider.listeners) == 1

    def test_unrecordable_session_is_revoked(self, ctx, provider, member):
        """A session the context cannot take is signed out and reported."""
        identity, _ = member
        ctx._store = AuthStore(AuthState(status=SessionStatus.LOADING))

        result = ctx.sign_in(_credentials(identity))

        assert result.error.code == FailureCodes.UNEXPECTED
        assert provider.current_session is None
        assert ctx.user is None

    def test_unexpected_error_returns_failure(self, provider, config):
        service = Mock(spec=AuthService)
        service.sign_in.side_effect = RuntimeError("boom")
        context = AuthSessionContext(service, provider, config=config)
        context.initialize()

        result = context.sign_in(SignInCredentials(email="member@ocemtechies.com", password="x"))

        assert result.error.code == FailureCodes.UNEXPECTED
        assert result.error.message == "An unexpected error occurred during sign in"
        assert context.operation_in_flight is False


class TestSignUp:

    def test_confirmed_sign_up_authenticates(self, ctx):
        ctx.initialize()

        result = ctx.sign_up(SignUpData(
            email="fresh@ocemtechies.com",
            password=PASSWORD,
            first_name="Sita",
            last_name="Karki",
        ))

        assert result.ok
        assert ctx.state.status == SessionStatus.AUTHENTICATED
        assert ctx.user_profile.role.value == "member"

    def test_pending_verification_stays_anonymous(self, ctx, provider):
        provider.auto_confirm = False
        ctx.initialize()

        result = ctx.sign_up(SignUpData(
            email="fresh@ocemtechies.com",
            password=PASSWORD,
            first_name="Sita",
            last_name="Karki",
        ))

        assert result.ok
        assert result.data.session is None
        assert ctx.state.status == SessionStatus.ANONYMOUS

    def test_sign_up_before_initialize_authenticates(self, ctx):
        result = ctx.sign_up(SignUpData(
            email="fresh@ocemtechies.com",
            password=PASSWORD,
            first_name="Sita",
            last_name="Karki",
        ))

        assert result.ok
        assert ctx.state.status == SessionStatus.AUTHENTICATED


class TestSignOut:
    """Full sign-out."""

    def test_clears_everything(self, ctx, member, storage, visited, provider):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))

        ctx.sign_out()

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert ctx.user is None
        assert provider.current_session is None
        for key in AUTH_STORAGE_KEYS:
            assert key not in storage.local
        assert REMEMBERED_EMAIL_KEY not in storage.local
        assert storage.local["theme"] == "dark"
        assert storage.session == {}
        assert storage.cookies == {}
        assert visited == ["/auth/login"]

    def test_provider_failure_still_clears(self, ctx, member, storage, visited, provider):
        """Local state is cleared and the member lands on login regardless."""
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        provider.fail["sign_out"] = ProviderError("network down")

        ctx.sign_out()

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert storage.cookies == {}
        assert visited == ["/auth/login"]

    def test_sign_out_when_anonymous(self, ctx, visited):
        ctx.initialize()

        ctx.sign_out()

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert visited == ["/auth/login"]


class TestAuthStateChanges:
    """Provider events arriving outside explicit operations."""

    def test_signed_out_event_clears_state(self, ctx, provider, member, storage):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))

        provider.emit(AuthStateEvent.SIGNED_OUT, None)

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert "sb-access-token" not in storage.local

    def test_token_refresh_updates_user(self, ctx, provider, member, auth_db):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        auth_db.profiles[identity.id] = auth_db.profiles[identity.id].model_copy(update={"bio": "new bio"})

        provider.emit(AuthStateEvent.TOKEN_REFRESHED, provider.current_session)

        assert ctx.state.status == SessionStatus.AUTHENTICATED
        assert ctx.user_profile.bio == "new bio"

    def test_event_for_vanished_profile_signs_out(self, ctx, provider, member, auth_db, visited):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        del auth_db.profiles[identity.id]

        provider.emit(AuthStateEvent.TOKEN_REFRESHED, provider.current_session)

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert visited == ["/auth/login"]

    def test_signed_in_elsewhere_does_not_authenticate(self, ctx, provider, member):
        """Anonymous contexts only authenticate through their own sign-in."""
        identity, _ = member
        ctx.initialize()
        session = provider.create_session_for_email(identity.email)

        provider.emit(AuthStateEvent.SIGNED_IN, session)

        assert ctx.state.status == SessionStatus.ANONYMOUS


class TestProfileOperations:

    def test_update_requires_user(self, ctx):
        ctx.initialize()

        result = ctx.update_profile(ProfileUpdate(bio="hi"))

        assert result.error.code == FailureCodes.NOT_AUTHENTICATED
        assert result.error.message == "No user logged in"

    def test_update_changes_state(self, ctx, member):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))

        result = ctx.update_profile(ProfileUpdate(phone="9800000000"))

        assert result.ok
        assert ctx.user_profile.phone == "9800000000"

    def test_refresh_picks_up_changes(self, ctx, member, auth_db):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        auth_db.profiles[identity.id] = auth_db.profiles[identity.id].model_copy(update={"faculty": "BIM"})

        ctx.refresh_profile()

        assert ctx.user_profile.faculty == "BIM"

    def test_refresh_without_profile_signs_out(self, ctx, member, auth_db, visited):
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        del auth_db.profiles[identity.id]

        ctx.refresh_profile()

        assert ctx.state.status == SessionStatus.ANONYMOUS
        assert visited == ["/auth/login"]

    def test_refresh_store_outage_keeps_state(self, ctx, member, auth_db, visited):
        identity, profile = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))
        auth_db.fail_reads = True

        ctx.refresh_profile()

        assert ctx.state.status == SessionStatus.AUTHENTICATED
        assert ctx.user_profile == profile
        assert visited == []

    def test_update_with_null_preferences_keeps_member_signed_in(self, ctx, member, auth_db):
        """Clearing preferences is ignored; later sessions still resolve."""
        identity, _ = member
        ctx.initialize()
        ctx.sign_in(_credentials(identity))

        result = ctx.update_profile(ProfileUpdate(notification_preferences=None))

        assert result.ok
        assert ctx.user_profile.notification_preferences == NotificationPreferences()
        ctx.refresh_profile()
        assert ctx.state.status == SessionStatus.AUTHENTICATED

    def test_update_unexpected_error_returns_failure(self, provider, config, member):
        identity, profile = member
        service = Mock(spec=AuthService)
        context = AuthSessionContext(service, provider, config=config)
        context._store = AuthStore(AuthState(
            status=SessionStatus.AUTHENTICATED, user=identity, profile=profile,
        ))
        service.update_profile.side_effect = RuntimeError("boom")

        result = context.update_profile(ProfileUpdate(bio="hi"))

        assert result.error.code == FailureCodes.UNEXPECTED
        assert context.user_profile == profile

    def test_refresh_unexpected_error_keeps_state(self, provider, config, member):
        identity, profile = member
        service = Mock(spec=AuthService)
        context = AuthSessionContext(service, provider, config=config)
        context._store = AuthStore(AuthState(
            status=SessionStatus.AUTHENTICATED, user=identity, profile=profile,
        ))
        service.fetch_profile.side_effect = RuntimeError("boom")

        context.refresh_profile()

        assert context.state.status == SessionStatus.AUTHENTICATED
        assert context.user_profile == profile
