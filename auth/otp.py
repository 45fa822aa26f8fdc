"""One-time passcodes for passwordless login.

Codes are six digits, live for `otp_expiry_minutes`, and are single-use.
Issuing a new code for the same (email, type) replaces the old one, so
only the newest code is ever valid.
"""

import logging
import secrets
from datetime import timedelta

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.types import OTPCode, OTPType
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class OTPService:
    """Generate, store and verify one-time codes."""

    def __init__(self, auth_db: AuthDatabase, config: AuthConfig):
        self._auth_db = auth_db
        self._config = config

    @staticmethod
    def generate() -> str:
        """Six-digit code, uniform over 100000-999999."""
        return str(100000 + secrets.randbelow(900000))

    def store(self, email: str, code: str, otp_type: OTPType = OTPType.LOGIN) -> OTPCode:
        """Persist `code` as the only live code for (email, type).

        Raises:
            PersistenceError: If the write fails.
        """
        now = now_utc()
        otp = OTPCode(
            email=email.lower().strip(),
            code=code,
            type=otp_type,
            expires_at=now + timedelta(minutes=self._config.otp_expiry_minutes),
            used=False,
        )
        self._auth_db.upsert_otp_code(otp, issued_at=now)
        logger.info(f"Stored {otp_type.value} OTP for {otp.email}")
        return otp

    def verify(self, email: str, code: str, otp_type: OTPType = OTPType.LOGIN) -> bool:
        """Consume a matching, unused, unexpired code.

        Returns False for a wrong code, wrong type, reused or expired code
        without saying which.

        Raises:
            PersistenceError: If the store cannot be reached.
        """
        consumed = self._auth_db.consume_otp_code(
            email=email.lower().strip(),
            code=code.strip(),
            otp_type=otp_type,
            now=now_utc(),
        )
        if not consumed:
            logger.info(f"OTP verification failed for {email.lower().strip()}")
        return consumed

    def sweep_expired(self) -> int:
        """Delete expired codes. Safe to run on a schedule alongside verify."""
        deleted = self._auth_db.delete_expired_otp_codes(now_utc())
        if deleted:
            logger.info(f"Swept {deleted} expired OTP codes")
        return deleted
