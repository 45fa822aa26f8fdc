"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class ProviderError(AuthError):
    """
    The identity provider rejected or failed a call.

    `message` is the provider's own text and is what the translation table
    in auth.errors is keyed on.
    """

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)


class PersistenceError(AuthError):
    """A read or write against the users/otp_codes tables failed."""


class InvalidTransitionError(AuthError):
    """An event is not valid for the current session state."""

    def __init__(self, status: str, event: str):
        self.status = status
        self.event = event
        super().__init__(f"Event {event} is not valid in state {status}")


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")
