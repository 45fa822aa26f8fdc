"""Database operations for authentication.

Covers the member profile table (users) and one-time codes (otp_codes).
Both are read before a member identity is established, so they are
accessed with the service role.

Every psycopg2 failure surfaces as PersistenceError.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json
from pydantic import ValidationError

from auth.exceptions import PersistenceError
from auth.types import OTPCode, OTPType, UserProfile
from clients.postgres_client import PostgresClient

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = """id, email, first_name, last_name, role, student_id, faculty,
               year_of_study, phone, profile_image_url, bio,
               notification_preferences, created_at, updated_at"""

# Columns update_profile may touch. Role is included for administrators;
# member-facing callers go through ProfileUpdate, which has no role field.
_UPDATABLE_COLUMNS = {
    "first_name", "last_name", "role", "student_id", "faculty",
    "year_of_study", "phone", "profile_image_url", "bio",
    "notification_preferences", "updated_at",
}


def _profile_from_row(row: dict) -> UserProfile:
    """Stored row as a UserProfile. A row that fails validation is a storage fault."""
    try:
        return UserProfile.model_validate(row)
    except ValidationError as e:
        logger.error(f"Stored profile {row.get('id')} is malformed: {e}")
        raise PersistenceError(f"Malformed profile row: {e}") from e


def _adapt(column: str, value: Any) -> Any:
    if column == "notification_preferences" and value is not None:
        return Json(value)
    if column == "role" and value is not None:
        return getattr(value, "value", value)
    return value


class AuthDatabase:
    """Profile repository and OTP code store."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    def get_profile(self, user_id: UUID) -> UserProfile | None:
        """Profile for an identity id, or None if the member has none."""
        try:
            row = self._db.execute_single(
                f"SELECT {_PROFILE_COLUMNS} FROM users WHERE id = %s",
                (user_id,),
            )
        except psycopg2.Error as e:
            logger.error(f"Profile lookup failed for {user_id}: {e}")
            raise PersistenceError(f"Profile lookup failed: {e}") from e
        if row is None:
            return None
        return _profile_from_row(row)

    def get_profile_by_email(self, email: str) -> UserProfile | None:
        """Find profile by email (case-insensitive)."""
        try:
            row = self._db.execute_single(
                f"SELECT {_PROFILE_COLUMNS} FROM users WHERE email = lower(%s)",
                (email,),
            )
        except psycopg2.Error as e:
            logger.error(f"Profile lookup failed for {email}: {e}")
            raise PersistenceError(f"Profile lookup failed: {e}") from e
        if row is None:
            return None
        return _profile_from_row(row)

    def insert_profile(self, profile: UserProfile) -> UserProfile:
        """Insert a new profile row and return it as stored."""
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (
                       id, email, first_name, last_name, role, student_id, faculty,
                       year_of_study, phone, profile_image_url, bio,
                       notification_preferences, created_at, updated_at
                   ) VALUES (
                       %s, lower(%s), %s, %s, %s, %s, %s,
                       %s, %s, %s, %s,
                       %s, %s, %s
                   )
                   RETURNING {_PROFILE_COLUMNS}""",
                (
                    profile.id, profile.email, profile.first_name, profile.last_name,
                    profile.role.value, profile.student_id, profile.faculty,
                    profile.year_of_study, profile.phone, profile.profile_image_url,
                    profile.bio, Json(profile.notification_preferences.model_dump()),
                    profile.created_at, profile.updated_at,
                ),
            )
        except psycopg2.Error as e:
            logger.error(f"Profile insert failed for {profile.id}: {e}")
            raise PersistenceError(f"Profile insert failed: {e}") from e
        return _profile_from_row(rows[0])

    def update_profile(self, user_id: UUID, fields: dict[str, Any]) -> UserProfile | None:
        """Apply a partial update. Returns None if no such profile.

        Raises:
            ValueError: If a field is not an updatable column.
            PersistenceError: If the write fails.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_profile(user_id)

        assignments = ", ".join(f"{column} = %s" for column in fields)
        params = tuple(_adapt(column, value) for column, value in fields.items())

        try:
            rows = self._db.execute_returning(
                f"""UPDATE users SET {assignments}
                   WHERE id = %s
                   RETURNING {_PROFILE_COLUMNS}""",
                params + (user_id,),
            )
        except psycopg2.Error as e:
            logger.error(f"Profile update failed for {user_id}: {e}")
            raise PersistenceError(f"Profile update failed: {e}") from e
        if not rows:
            return None
        return _profile_from_row(rows[0])

    # -------------------------------------------------------------------------
    # One-time codes
    # -------------------------------------------------------------------------

    def upsert_otp_code(self, otp: OTPCode, issued_at: datetime) -> None:
        """Store the code for (email, type), replacing any previous one."""
        try:
            self._db.execute_returning(
                """INSERT INTO otp_codes (email, code, type, expires_at, used, created_at)
                   VALUES (lower(%s), %s, %s, %s, false, %s)
                   ON CONFLICT (email, type) DO UPDATE
                   SET code = EXCLUDED.code,
                       expires_at = EXCLUDED.expires_at,
                       used = false,
                       used_at = NULL,
                       created_at = EXCLUDED.created_at
                   RETURNING email""",
                (otp.email, otp.code, otp.type.value, otp.expires_at, issued_at),
            )
        except psycopg2.Error as e:
            logger.error(f"OTP store failed for {otp.email}: {e}")
            raise PersistenceError(f"OTP store failed: {e}") from e

    def consume_otp_code(self, email: str, code: str, otp_type: OTPType, now: datetime) -> bool:
        """Mark a matching usable code as used.

        Single statement compare-and-set on `used`: of any number of
        concurrent callers, only one gets a row back.
        """
        try:
            rows = self._db.execute_returning(
                """UPDATE otp_codes
                   SET used = true, used_at = %s
                   WHERE email = lower(%s)
                     AND code = %s
                     AND type = %s
                     AND used = false
                     AND expires_at > %s
                   RETURNING email""",
                (now, email, code, otp_type.value, now),
            )
        except psycopg2.Error as e:
            logger.error(f"OTP consume failed for {email}: {e}")
            raise PersistenceError(f"OTP consume failed: {e}") from e
        return len(rows) > 0

    def delete_expired_otp_codes(self, now: datetime) -> int:
        """Delete codes that expired before `now`. Returns count deleted."""
        try:
            rows = self._db.execute_returning(
                """DELETE FROM otp_codes
                   WHERE expires_at < %s
                   RETURNING email""",
                (now,),
            )
        except psycopg2.Error as e:
            logger.error(f"OTP sweep failed: {e}")
            raise PersistenceError(f"OTP sweep failed: {e}") from e
        return len(rows)
