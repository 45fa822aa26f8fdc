"""Authentication service - keeps provider identities and member profiles consistent.

Handles:
- Password sign-in (with forced sign-out of profileless identities)
- Sign-up with compensating identity deletion
- Email verification link redemption
- Session minting after OTP verification
- Profile reads and updates, mirrored into the session's claims

Nothing here raises across the public boundary: every method returns an
AuthResult whose error is safe to show to the member.
"""

import logging
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.errors import FailureCodes, translate_error_message
from auth.exceptions import PersistenceError, ProviderError
from auth.provider import EMAIL_LINK_TYPES, IdentityProvider
from auth.types import (
    AuthenticatedSession,
    AuthResult,
    Identity,
    ProfileUpdate,
    ProviderSession,
    SignUpData,
    UserProfile,
    UserRole,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_NOT_NULL_FIELDS = ("first_name", "last_name", "notification_preferences")


def _claims_for(profile: UserProfile) -> dict:
    """Profile fields mirrored into provider metadata for route gating."""
    return {
        "role": profile.role.value,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
    }


def _failure(code: str) -> AuthResult:
    return AuthResult.failure(code, translate_error_message(code))


def _provider_failure(error: ProviderError) -> AuthResult:
    return AuthResult.failure(FailureCodes.PROVIDER_ERROR, translate_error_message(error.message))


class AuthService:
    """Orchestrates identity provider calls with the profile repository."""

    def __init__(
        self,
        config: AuthConfig,
        provider: IdentityProvider,
        auth_db: AuthDatabase,
    ):
        self._config = config
        self._provider = provider
        self._auth_db = auth_db

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _force_sign_out(self, reason: str) -> None:
        """Invalidate the provider session. Never raises."""
        logger.warning(f"Forcing sign-out: {reason}")
        try:
            self._provider.sign_out()
        except ProviderError as e:
            logger.error(f"Provider sign-out failed during forced sign-out: {e.message}")

    def _mirror_claims(self, profile: UserProfile) -> None:
        """Write profile claims into the identity's app metadata (best-effort).

        App metadata is only writable with the service role, so members
        cannot grant themselves a role through their own session.
        """
        try:
            self._provider.update_app_metadata(profile.id, _claims_for(profile))
        except ProviderError as e:
            # Claims stay stale until the next sign-in or profile update
            logger.warning(f"Could not mirror claims for {profile.id}: {e.message}")

    def _with_claims(self, identity: Identity, profile: UserProfile) -> Identity:
        """Mirror claims and return the identity carrying them either way."""
        self._mirror_claims(profile)
        return identity.model_copy(
            update={"app_metadata": {**identity.app_metadata, **_claims_for(profile)}}
        )

    def _authenticated(self, session: ProviderSession, profile: UserProfile) -> AuthenticatedSession:
        identity = self._with_claims(session.user, profile)
        return AuthenticatedSession(
            identity=identity,
            session=session.model_copy(update={"user": identity}),
            profile=profile,
        )

    def _profile_for_session(self, session: ProviderSession) -> AuthResult[AuthenticatedSession]:
        """Resolve the profile for a fresh session or tear the session down."""
        try:
            profile = self._auth_db.get_profile(session.user.id)
        except PersistenceError:
            self._force_sign_out(f"profile lookup failed for {session.user.id}")
            return _failure(FailureCodes.PERSISTENCE_ERROR)

        if profile is None:
            self._force_sign_out(f"no profile for identity {session.user.id}")
            return _failure(FailureCodes.NO_USER_PROFILE)

        return AuthResult.success(self._authenticated(session, profile))

    def _rollback_identity(self, identity_id: UUID) -> None:
        try:
            self._provider.delete_user(identity_id)
            logger.info(f"Rolled back identity {identity_id} after profile failure")
        except ProviderError as e:
            # The member still sees PROFILE_CREATE_FAILED; the orphan needs manual cleanup
            logger.error(f"Rollback failed, identity {identity_id} is orphaned: {e.message}")

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def sign_in(self, email: str, password: str) -> AuthResult[AuthenticatedSession]:
        """Password sign-in.

        Flow:
        1. Password grant at the provider
        2. Look up profile for the identity
        3. No profile: sign out at the provider, report NO_USER_PROFILE
        4. Mirror role/name claims into the session
        """
        email = email.lower().strip()
        try:
            session = self._provider.sign_in_with_password(email, password)
        except ProviderError as e:
            logger.info(f"Sign-in rejected for {email}: {e.message}")
            return _provider_failure(e)

        try:
            return self._profile_for_session(session)
        except Exception:
            logger.exception(f"Unexpected error signing in {email}")
            self._force_sign_out("unexpected sign-in error")
            return _failure(FailureCodes.UNEXPECTED)

    def sign_up(self, data: SignUpData) -> AuthResult[AuthenticatedSession]:
        """Create identity and profile, all or nothing.

        The profile role is always member. If the profile insert fails the
        identity is deleted again.
        """
        email = data.email.lower().strip()
        metadata = {
            "first_name": data.first_name,
            "last_name": data.last_name,
            "student_id": data.student_id,
            "faculty": data.faculty,
            "year_of_study": data.year_of_study,
            "phone": data.phone,
        }

        try:
            identity, session = self._provider.sign_up(
                email,
                data.password,
                metadata,
                self._config.email_redirect_url,
            )
        except ProviderError as e:
            logger.info(f"Sign-up rejected for {email}: {e.message}")
            return _provider_failure(e)

        logger.info(f"Identity {identity.id} created for {email}")

        try:
            now = now_utc()
            profile = self._auth_db.insert_profile(UserProfile(
                id=identity.id,
                email=email,
                first_name=data.first_name,
                last_name=data.last_name,
                role=UserRole.MEMBER,
                student_id=data.student_id,
                faculty=data.faculty,
                year_of_study=data.year_of_study,
                phone=data.phone,
                created_at=now,
                updated_at=now,
            ))
        except Exception as e:
            logger.error(f"Profile creation failed for {identity.id}: {e}")
            self._rollback_identity(identity.id)
            return _failure(FailureCodes.PROFILE_CREATE_FAILED)

        if session is not None:
            return AuthResult.success(self._authenticated(session, profile))

        # Email verification pending: the verified session will carry the claims
        identity = self._with_claims(identity, profile)
        return AuthResult.success(AuthenticatedSession(identity=identity, session=None, profile=profile))

    def sign_out(self) -> AuthResult[None]:
        """Invalidate the provider session."""
        try:
            self._provider.sign_out()
        except ProviderError as e:
            logger.warning(f"Provider sign-out failed: {e.message}")
            return _provider_failure(e)
        return AuthResult.success()

    def fetch_profile(self, identity_id: UUID) -> AuthResult[UserProfile]:
        try:
            profile = self._auth_db.get_profile(identity_id)
        except PersistenceError:
            return _failure(FailureCodes.PERSISTENCE_ERROR)
        except Exception:
            logger.exception(f"Unexpected error fetching profile {identity_id}")
            return _failure(FailureCodes.UNEXPECTED)
        if profile is None:
            return _failure(FailureCodes.NO_USER_PROFILE)
        return AuthResult.success(profile)

    def update_profile(self, identity_id: UUID, update: ProfileUpdate) -> AuthResult[UserProfile]:
        """Apply a partial update, stamp updated_at, refresh session claims."""
        fields = update.model_dump(exclude_unset=True)
        # Columns that cannot hold NULL: an explicit None means "leave as is"
        for required in _NOT_NULL_FIELDS:
            if required in fields and fields[required] is None:
                del fields[required]
        fields["updated_at"] = now_utc()

        try:
            profile = self._auth_db.update_profile(identity_id, fields)
        except PersistenceError:
            return _failure(FailureCodes.PROFILE_UPDATE_FAILED)
        except Exception:
            logger.exception(f"Unexpected error updating profile {identity_id}")
            return _failure(FailureCodes.UNEXPECTED)

        if profile is None:
            return _failure(FailureCodes.NO_USER_PROFILE)

        self._mirror_claims(profile)
        return AuthResult.success(profile)

    def verify_email_link(self, token_hash: str, link_type: str = "signup") -> AuthResult[AuthenticatedSession]:
        """Redeem the one-time token of an emailed verification link for a session.

        The token is verified server-side, so the link works in any browser,
        not only the one that signed up.
        """
        if not token_hash or not token_hash.strip() or link_type not in EMAIL_LINK_TYPES:
            return AuthResult.failure(
                FailureCodes.PROVIDER_ERROR,
                translate_error_message("Email link is invalid or has expired"),
            )
        try:
            session = self._provider.verify_email_link(token_hash.strip(), link_type)
        except ProviderError as e:
            logger.info(f"Email link rejected: {e.message}")
            return _provider_failure(e)
        return self._profile_for_session(session)

    def sign_in_with_verified_otp(self, email: str) -> AuthResult[AuthenticatedSession]:
        """Create a session for a member whose login OTP has just verified.

        Never creates an identity: emails without a profile are refused
        before the provider is asked for a session.
        """
        email = email.lower().strip()
        try:
            profile = self._auth_db.get_profile_by_email(email)
        except PersistenceError:
            return _failure(FailureCodes.PERSISTENCE_ERROR)
        if profile is None:
            return _failure(FailureCodes.NO_USER_PROFILE)

        try:
            session = self._provider.create_session_for_email(email)
        except ProviderError as e:
            logger.error(f"Session mint failed for {email}: {e.message}")
            return _provider_failure(e)

        if session.user.id != profile.id:
            self._force_sign_out(f"session identity {session.user.id} does not own profile {profile.id}")
            return _failure(FailureCodes.NO_USER_PROFILE)

        return AuthResult.success(self._authenticated(session, profile))

    def resend_verification(self, email: str) -> AuthResult[None]:
        """Send the sign-up confirmation email again."""
        try:
            self._provider.resend("signup", email.lower().strip())
        except ProviderError as e:
            return _provider_failure(e)
        return AuthResult.success()
