"""Access token verification.

The identity provider signs access tokens (HS256 with the project JWT
secret). Role and name claims live under `app_metadata`, mirrored there
with the service role on sign-in and on every profile update. They are a
cache of the profile row and may lag it briefly. `user_metadata` is
member-writable and never read here.
"""

import logging
from typing import Any, Sequence
from uuid import UUID

from jose import JWTError, jwt

from auth.types import SessionClaims, UserRole
from utils.timezone import from_timestamp

logger = logging.getLogger(__name__)


class SessionVerifier:
    """Verify provider access tokens and extract route-gating claims."""

    def __init__(self, jwt_secret: str, algorithms: Sequence[str] = ("HS256",)):
        self._secret = jwt_secret
        self._algorithms = list(algorithms)

    def decode(self, token: str) -> dict[str, Any]:
        """Verify signature and expiry. Audience is not checked.

        Raises:
            JWTError: If the token is malformed, forged or expired.
        """
        return jwt.decode(
            token,
            self._secret,
            algorithms=self._algorithms,
            options={"verify_aud": False},
        )

    def verify(self, token: str) -> SessionClaims | None:
        """Claims for a valid token, None for anything else."""
        if not token:
            return None

        try:
            payload = self.decode(token)
        except JWTError as e:
            logger.debug(f"Rejected access token: {e}")
            return None

        try:
            user_id = UUID(str(payload.get("sub")))
        except ValueError:
            logger.warning("Access token has no usable sub claim")
            return None

        metadata = payload.get("app_metadata") or {}
        role_value = metadata.get("role")
        try:
            role = UserRole(role_value) if role_value else None
        except ValueError:
            logger.warning(f"Unknown role claim {role_value!r} for {user_id}")
            role = None

        exp = payload.get("exp")
        return SessionClaims(
            user_id=user_id,
            email=payload.get("email"),
            role=role,
            first_name=metadata.get("first_name"),
            last_name=metadata.get("last_name"),
            expires_at=from_timestamp(exp) if exp else None,
        )
