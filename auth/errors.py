"""Provider error translation and stable failure codes.

Known provider messages map to member-facing text. Unknown messages pass
through verbatim so nothing useful is swallowed.
"""


class FailureCodes:
    """Codes carried by AuthFailure. Stable across message wording changes."""

    PROVIDER_ERROR = "PROVIDER_ERROR"
    NO_USER_PROFILE = "NO_USER_PROFILE"
    PROFILE_CREATE_FAILED = "PROFILE_CREATE_FAILED"
    PROFILE_UPDATE_FAILED = "PROFILE_UPDATE_FAILED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    UNEXPECTED = "UNEXPECTED"


AUTH_ERROR_MESSAGES: dict[str, str] = {
    # Provider messages
    "Invalid login credentials": "Invalid email or password",
    "Email not confirmed": "Please verify your email address before signing in",
    "User already registered": "An account with this email already exists",
    "Password is too weak": (
        "Password must be at least 8 characters long and contain at least "
        "one number and one special character"
    ),
    "Email link is invalid or has expired": "The email link has expired. Please request a new one",
    # Application codes
    FailureCodes.NO_USER_PROFILE: "User profile not found. Please contact support",
    FailureCodes.PROFILE_CREATE_FAILED: "Failed to create user profile. Please try again",
    FailureCodes.PROFILE_UPDATE_FAILED: "Failed to update profile",
    FailureCodes.PERSISTENCE_ERROR: "The member directory is unavailable. Please try again",
    FailureCodes.NOT_AUTHENTICATED: "No user logged in",
    FailureCodes.UNEXPECTED: "An unexpected error occurred",
}


def translate_error_message(message: str | None) -> str:
    """Friendly text for a provider message or failure code."""
    if not message:
        return "An unknown error occurred"
    return AUTH_ERROR_MESSAGES.get(message, message)
