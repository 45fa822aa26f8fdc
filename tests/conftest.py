"""Shared test fixtures: in-memory identity provider and auth database."""

import threading
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, List, Tuple
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv
from jose import jwt
from pydantic import ValidationError

# Load .env before anything reads env vars (Vault settings for manual runs)
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton so no test reuses cached secrets
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.exceptions import PersistenceError, ProviderError
from auth.provider import AuthStateEvent
from auth.service import AuthService
from auth.session import SessionVerifier
from auth.types import (
    Identity,
    OTPCode,
    OTPType,
    ProviderSession,
    UserProfile,
    UserRole,
)
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc
from utils.user_context import clear_current_claims


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

MEMBER_EMAIL = "member@ocemtechies.com"
ADMIN_EMAIL = "admin@ocemtechies.com"
PASSWORD = "Correct-horse-9!"
JWT_SECRET = "test-jwt-secret-with-enough-length-0123456789"


# =============================================================================
# FAKES
# =============================================================================


class FakeIdentityProvider:
    """
    In-memory identity provider.

    - `fail[operation] = ProviderError(...)` makes that call raise.
    - `hooks[operation] = callable` runs inside that call, before it returns,
      which is how tests deliver auth-state events mid-operation.
    - Emits SIGNED_IN / SIGNED_OUT to listeners like the real SDK does.
    """

    def __init__(self, auto_confirm: bool = True):
        self.auto_confirm = auto_confirm
        self.accounts: Dict[str, dict] = {}
        self.current_session: ProviderSession | None = None
        self.listeners: List[Callable] = []
        self.calls: List[str] = []
        self.fail: Dict[str, ProviderError] = {}
        self.hooks: Dict[str, Callable[[], None]] = {}
        self.link_tokens: Dict[str, Tuple[str, str]] = {}
        self.resent: List[Tuple[str, str]] = []
        self.last_redirect: str | None = None

    # -- test helpers ---------------------------------------------------------

    def add_account(self, email: str, password: str = PASSWORD, metadata: dict | None = None) -> Identity:
        identity = Identity(
            id=uuid4(),
            email=email,
            email_confirmed_at=now_utc(),
            user_metadata=dict(metadata or {}),
        )
        self.accounts[email] = {"identity": identity, "password": password}
        return identity

    def identity_for(self, email: str) -> Identity | None:
        account = self.accounts.get(email)
        return account["identity"] if account else None

    def issue_link_token(self, email: str, link_type: str = "signup") -> str:
        """Token hash as the confirmation email would carry it."""
        token_hash = f"pkce_{uuid4().hex}"
        self.link_tokens[token_hash] = (email, link_type)
        return token_hash

    def emit(self, event: str, session: ProviderSession | None) -> None:
        for listener in list(self.listeners):
            listener(event, session)

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        hook = self.hooks.get(operation)
        if hook is not None:
            hook()
        if operation in self.fail:
            raise self.fail[operation]

    def _issue_session(self, identity: Identity) -> ProviderSession:
        session = ProviderSession(
            access_token=f"access-{identity.id}",
            refresh_token=f"refresh-{identity.id}",
            expires_at=now_utc() + timedelta(hours=1),
            user=identity,
        )
        self.current_session = session
        return session

    # -- IdentityProvider -----------------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        self._enter("sign_in_with_password")
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise ProviderError("Invalid login credentials", status=400)
        session = self._issue_session(account["identity"])
        self.emit(AuthStateEvent.SIGNED_IN, session)
        return session

    def sign_up(self, email, password, metadata, email_redirect_to):
        self._enter("sign_up")
        if email in self.accounts:
            raise ProviderError("User already registered", status=422)
        identity = self.add_account(email, password, metadata)
        self.last_redirect = email_redirect_to
        if not self.auto_confirm:
            return identity, None
        return identity, self._issue_session(identity)

    def sign_out(self) -> None:
        self._enter("sign_out")
        self.current_session = None
        self.emit(AuthStateEvent.SIGNED_OUT, None)

    def get_session(self) -> ProviderSession | None:
        self._enter("get_session")
        return self.current_session

    def verify_email_link(self, token_hash: str, link_type: str) -> ProviderSession:
        self._enter("verify_email_link")
        issued = self.link_tokens.pop(token_hash, None)
        if issued is None or issued[1] != link_type or issued[0] not in self.accounts:
            raise ProviderError("Email link is invalid or has expired", status=403)
        return self._issue_session(self.accounts[issued[0]]["identity"])

    def on_auth_state_change(self, listener):
        self.listeners.append(listener)

        def unsubscribe():
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def update_app_metadata(self, user_id: UUID, claims: dict) -> Identity:
        self._enter("update_app_metadata")
        for account in self.accounts.values():
            identity = account["identity"]
            if identity.id == user_id:
                updated = identity.model_copy(
                    update={"app_metadata": {**identity.app_metadata, **claims}}
                )
                account["identity"] = updated
                return updated
        raise ProviderError("User not found", status=404)

    def resend(self, type: str, email: str) -> None:
        self._enter("resend")
        self.resent.append((type, email))

    def delete_user(self, user_id: UUID) -> None:
        self._enter("delete_user")
        for email, account in list(self.accounts.items()):
            if account["identity"].id == user_id:
                del self.accounts[email]
                return
        raise ProviderError("User not found", status=404)

    def create_session_for_email(self, email: str) -> ProviderSession:
        self._enter("create_session_for_email")
        account = self.accounts.get(email)
        if account is None:
            raise ProviderError("User not found", status=404)
        return self._issue_session(account["identity"])


class FakeAuthDatabase:
    """
    In-memory AuthDatabase.

    OTP consume is a compare-and-set under a lock, mirroring the
    conditional UPDATE the real store uses.
    """

    def __init__(self):
        self.profiles: Dict[UUID, UserProfile] = {}
        self.otp_codes: Dict[Tuple[str, OTPType], dict] = {}
        self.fail_reads = False
        self.fail_insert = False
        self.fail_update = False
        self._lock = threading.Lock()

    def add_profile(self, identity: Identity, role: UserRole = UserRole.MEMBER, **fields) -> UserProfile:
        now = now_utc()
        profile = UserProfile(
            id=identity.id,
            email=identity.email,
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "Member"),
            role=role,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.profiles[profile.id] = profile
        return profile

    def get_profile(self, user_id: UUID) -> UserProfile | None:
        if self.fail_reads:
            raise PersistenceError("connection refused")
        return self.profiles.get(user_id)

    def get_profile_by_email(self, email: str) -> UserProfile | None:
        if self.fail_reads:
            raise PersistenceError("connection refused")
        for profile in self.profiles.values():
            if profile.email == email.lower():
                return profile
        return None

    def insert_profile(self, profile: UserProfile) -> UserProfile:
        if self.fail_insert:
            raise PersistenceError("duplicate key value violates unique constraint")
        self.profiles[profile.id] = profile
        return profile

    def update_profile(self, user_id: UUID, fields: dict) -> UserProfile | None:
        if self.fail_update:
            raise PersistenceError("connection reset")
        profile = self.profiles.get(user_id)
        if profile is None:
            return None
        try:
            updated = UserProfile.model_validate({**profile.model_dump(), **fields})
        except ValidationError as e:
            raise PersistenceError(f"Malformed profile row: {e}") from e
        self.profiles[user_id] = updated
        return updated

    def upsert_otp_code(self, otp: OTPCode, issued_at) -> None:
        with self._lock:
            self.otp_codes[(otp.email.lower(), otp.type)] = {
                "code": otp.code,
                "expires_at": otp.expires_at,
                "used": False,
                "created_at": issued_at,
            }

    def consume_otp_code(self, email: str, code: str, otp_type: OTPType, now) -> bool:
        with self._lock:
            row = self.otp_codes.get((email.lower(), otp_type))
            if row is None or row["used"] or row["code"] != code or not now < row["expires_at"]:
                return False
            row["used"] = True
            return True

    def delete_expired_otp_codes(self, now) -> int:
        with self._lock:
            expired = [key for key, row in self.otp_codes.items() if row["expires_at"] < now]
            for key in expired:
                del self.otp_codes[key]
            return len(expired)


class CounterStore:
    """Dict-backed stand-in for the Valkey counters."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def ttl(self, key):
        return self.ttls.get(key, -2)

    def get(self, key):
        value = self.values.get(key)
        return None if value is None else str(value)

    def delete(self, key):
        self.ttls.pop(key, None)
        return self.values.pop(key, None) is not None


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_claims_context():
    """Ensure clean claims context before and after each test."""
    clear_current_claims()
    yield
    clear_current_claims()


@pytest.fixture
def config():
    """Test config with plain-HTTP cookies for TestClient."""
    return AuthConfig(
        app_base_url="https://club.example.com",
        cookie_secure=False,
        otp_rate_limit_attempts=3,
    )


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def auth_db():
    return FakeAuthDatabase()


@pytest.fixture
def auth_service(config, provider, auth_db):
    return AuthService(config, provider, auth_db)


@pytest.fixture
def member(provider, auth_db):
    """Identity + profile for a regular member."""
    identity = provider.add_account(MEMBER_EMAIL)
    profile = auth_db.add_profile(identity, first_name="Mina", last_name="Rai")
    return identity, profile


@pytest.fixture
def admin(provider, auth_db):
    """Identity + profile for an administrator."""
    identity = provider.add_account(ADMIN_EMAIL)
    profile = auth_db.add_profile(identity, role=UserRole.ADMIN, first_name="Ada", last_name="Lim")
    return identity, profile


@pytest.fixture
def counter_store():
    return CounterStore()


@pytest.fixture
def valkey(counter_store):
    """Mock ValkeyClient whose counters live in counter_store."""
    mock = Mock(spec=ValkeyClient)
    mock.incr.side_effect = counter_store.incr
    mock.expire.side_effect = counter_store.expire
    mock.ttl.side_effect = counter_store.ttl
    mock.get.side_effect = counter_store.get
    mock.delete.side_effect = counter_store.delete
    return mock


@pytest.fixture
def make_token():
    """Sign an access token the way the identity provider does."""

    def _make(user_id=None, role: str | None = "member", expires_in: int = 3600,
              secret: str = JWT_SECRET, user_metadata: dict | None = None, **claims) -> str:
        if role is not None:
            claims["role"] = role
        payload = {
            "sub": str(user_id or uuid4()),
            "email": "member@ocemtechies.com",
            "aud": "authenticated",
            "exp": int((now_utc() + timedelta(seconds=expires_in)).timestamp()),
            "app_metadata": {"provider": "email", **claims},
            "user_metadata": user_metadata or {},
        }
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make


@pytest.fixture
def verifier():
    return SessionVerifier(JWT_SECRET)
