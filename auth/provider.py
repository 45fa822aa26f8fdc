"""Identity provider contract.

The provider owns identities, credentials and sessions. Every method raises
ProviderError when the provider rejects the call or cannot be reached.
clients.supabase_client.SupabaseIdentityProvider is the production
implementation.
"""

from typing import Callable, Protocol
from uuid import UUID

from auth.types import Identity, ProviderSession


class AuthStateEvent:
    """Event names delivered to auth state listeners."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


# Email link types the callback can redeem
EMAIL_LINK_TYPES = frozenset({"signup", "email", "invite", "magiclink", "recovery", "email_change"})

AuthStateListener = Callable[[str, ProviderSession | None], None]


class IdentityProvider(Protocol):
    """Operations the auth service and session context need from the provider."""

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        ...

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict,
        email_redirect_to: str,
    ) -> tuple[Identity, ProviderSession | None]:
        """Create an identity. Session is None while email verification is pending."""
        ...

    def sign_out(self) -> None:
        ...

    def get_session(self) -> ProviderSession | None:
        ...

    def verify_email_link(self, token_hash: str, link_type: str) -> ProviderSession:
        """Redeem the hashed token carried by an emailed link."""
        ...

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        ...

    def update_app_metadata(self, user_id: UUID, claims: dict) -> Identity:
        """Administrative merge of `claims` into app metadata, which members cannot write."""
        ...

    def resend(self, type: str, email: str) -> None:
        ...

    def delete_user(self, user_id: UUID) -> None:
        """Administrative delete, used to roll back a failed sign-up."""
        ...

    def create_session_for_email(self, email: str) -> ProviderSession:
        """Mint a session for an existing identity after out-of-band verification."""
        ...
