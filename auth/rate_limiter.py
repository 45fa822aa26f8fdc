"""Rate limiting for OTP send and verify requests.

Counts sends per email in Valkey. The window TTL resets on every attempt,
so hammering the endpoint keeps extending the lockout.

Failed verifications are counted per (email, type) for as long as a code
stays valid; at the limit, verification is refused outright until the
counter expires.
"""

import logging

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError
from auth.types import OTPType

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-email OTP send and verify limits backed by Valkey."""

    KEY_PREFIX = "ratelimit:otp:"
    VERIFY_KEY_PREFIX = "ratelimit:otp-verify:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._window_seconds = config.otp_rate_limit_window_minutes * 60
        self._verify_window_seconds = config.otp_expiry_minutes * 60

    def _key(self, email: str) -> str:
        return f"{self.KEY_PREFIX}{email.lower().strip()}"

    def _verify_key(self, email: str, otp_type: OTPType) -> str:
        return f"{self.VERIFY_KEY_PREFIX}{otp_type.value}:{email.lower().strip()}"

    def _retry_after(self, key: str) -> int:
        return max(self._valkey.ttl(key), 1)

    def check_rate_limit(self, email: str) -> None:
        """Count this attempt and reject it when over the limit.

        Raises:
            RateLimitedError: If rate limit exceeded.
        """
        key = self._key(email)

        count = self._valkey.incr(key)
        self._valkey.expire(key, self._window_seconds)

        if count > self._config.otp_rate_limit_attempts:
            logger.warning(f"OTP send rate limit hit for {email.lower().strip()} ({count} attempts)")
            raise RateLimitedError(retry_after_seconds=self._retry_after(key))

    def reset_rate_limit(self, email: str) -> None:
        """Clear the counter after a successful OTP login."""
        self._valkey.delete(self._key(email))

    def check_verify_allowed(self, email: str, otp_type: OTPType) -> None:
        """Refuse verification once failures reached the limit.

        Raises:
            RateLimitedError: If too many codes were rejected for this email and type.
        """
        key = self._verify_key(email, otp_type)
        current = self._valkey.get(key)
        if current is not None and int(current) >= self._config.otp_verify_max_failures:
            logger.warning(f"OTP verify locked for {email.lower().strip()} ({otp_type.value})")
            raise RateLimitedError(retry_after_seconds=self._retry_after(key))

    def record_verify_failure(self, email: str, otp_type: OTPType) -> int:
        """Count a rejected code. Returns failures so far in the window."""
        key = self._verify_key(email, otp_type)
        count = self._valkey.incr(key)
        if count == 1:
            self._valkey.expire(key, self._verify_window_seconds)
        return count

    def reset_verify_failures(self, email: str, otp_type: OTPType) -> None:
        self._valkey.delete(self._verify_key(email, otp_type))
