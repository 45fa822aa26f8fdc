"""
Supabase Auth adapter implementing auth.provider.IdentityProvider.

Two clients are held:
  - public (anon key): password grant, sign-up, session, email link redemption.
    It keeps the current session in its own memory storage, so one adapter
    instance belongs to one browser context or one request.
  - admin (service role key): deleting identities, writing role claims
    into app metadata and minting sessions.
    Never expose the service role key to a browser.

supabase-py raises its own AuthError family; every call is translated to
ProviderError so callers depend on one exception type.
"""

import logging
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

import httpx
from supabase import Client, create_client
from supabase_auth.errors import AuthError as SupabaseAuthError

from auth.exceptions import ProviderError
from auth.provider import AuthStateListener
from auth.types import Identity, ProviderSession
from utils.timezone import from_timestamp, parse_iso

logger = logging.getLogger(__name__)


def create_supabase_clients(
    url: str,
    anon_key: str,
    service_role_key: str | None = None,
) -> tuple[Client, Client | None]:
    """Build (public, admin) clients. Admin is None without a service role key."""
    public = create_client(url, anon_key)
    admin = create_client(url, service_role_key) if service_role_key else None
    return public, admin


def _to_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_iso(str(value))


def _to_identity(user: Any) -> Identity:
    return Identity(
        id=UUID(str(user.id)),
        email=user.email or "",
        email_confirmed_at=_to_datetime(getattr(user, "email_confirmed_at", None)),
        user_metadata=dict(user.user_metadata or {}),
        app_metadata=dict(getattr(user, "app_metadata", None) or {}),
    )


def _to_session(session: Any) -> ProviderSession:
    expires_at = getattr(session, "expires_at", None)
    return ProviderSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=from_timestamp(expires_at) if expires_at else None,
        user=_to_identity(session.user),
    )


class SupabaseIdentityProvider:
    """Identity provider backed by Supabase Auth."""

    def __init__(self, public_client: Client, admin_client: Client | None = None):
        self._client = public_client
        self._admin = admin_client

    def _call(self, operation: str, fn: Callable[[], Any]) -> Any:
        """Run a supabase call, translating its failures to ProviderError."""
        try:
            return fn()
        except SupabaseAuthError as e:
            logger.info(f"Supabase {operation} rejected: {e.message}")
            raise ProviderError(
                e.message,
                code=getattr(e, "code", None),
                status=getattr(e, "status", None),
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase {operation} unreachable: {e}")
            raise ProviderError(f"Identity provider unreachable: {e}") from e

    def _require_admin(self) -> Client:
        if self._admin is None:
            raise ProviderError("Admin operations require the service role key")
        return self._admin

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        response = self._call(
            "sign_in_with_password",
            lambda: self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            ),
        )
        if response.session is None or response.user is None:
            raise ProviderError("Failed to sign in")
        return _to_session(response.session)

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict,
        email_redirect_to: str,
    ) -> tuple[Identity, ProviderSession | None]:
        response = self._call(
            "sign_up",
            lambda: self._client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {
                    "data": metadata,
                    "email_redirect_to": email_redirect_to,
                },
            }),
        )
        if response.user is None:
            raise ProviderError("Failed to create user")
        session = _to_session(response.session) if response.session else None
        return _to_identity(response.user), session

    def sign_out(self) -> None:
        self._call("sign_out", self._client.auth.sign_out)

    def get_session(self) -> ProviderSession | None:
        session = self._call("get_session", self._client.auth.get_session)
        return _to_session(session) if session else None

    def verify_email_link(self, token_hash: str, link_type: str) -> ProviderSession:
        """Redeem `token_hash` from the confirmation email template.

        Needs no PKCE verifier, so a fresh client per request can redeem it.
        """
        response = self._call(
            "verify_otp",
            lambda: self._client.auth.verify_otp(
                {"token_hash": token_hash, "type": link_type}
            ),
        )
        if response.session is None:
            raise ProviderError("Email link is invalid or has expired")
        return _to_session(response.session)

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]:
        def bridge(event: Any, session: Any) -> None:
            listener(str(event), _to_session(session) if session else None)

        subscription = self._client.auth.on_auth_state_change(bridge)
        return subscription.unsubscribe

    def update_app_metadata(self, user_id: UUID, claims: dict) -> Identity:
        admin = self._require_admin()
        response = self._call(
            "update_user_by_id",
            lambda: admin.auth.admin.update_user_by_id(str(user_id), {"app_metadata": claims}),
        )
        return _to_identity(response.user)

    def resend(self, type: str, email: str) -> None:
        self._call(
            "resend",
            lambda: self._client.auth.resend({"type": type, "email": email}),
        )

    def delete_user(self, user_id: UUID) -> None:
        admin = self._require_admin()
        self._call("delete_user", lambda: admin.auth.admin.delete_user(str(user_id)))

    def create_session_for_email(self, email: str) -> ProviderSession:
        """Generate a magic link server-side and redeem its token immediately."""
        admin = self._require_admin()
        link = self._call(
            "generate_link",
            lambda: admin.auth.admin.generate_link({"type": "magiclink", "email": email}),
        )
        token_hash = link.properties.hashed_token
        response = self._call(
            "verify_otp",
            lambda: self._client.auth.verify_otp(
                {"token_hash": token_hash, "type": "magiclink"}
            ),
        )
        if response.session is None:
            raise ProviderError("Failed to create session")
        return _to_session(response.session)
