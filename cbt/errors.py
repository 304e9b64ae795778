"""
Exception hierarchy shared by the CBT quiz server.

Every error carries a ``user_message``: the short, human-readable notice shown
to the user. ``str(error)`` keeps the detailed message for the logs.
"""
from typing import Optional


class CBTError(Exception):
    """Base exception for all CBT errors."""

    default_user_message = "Something went wrong"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class ValidationError(CBTError):
    """Raised when required fields are missing or invalid; nothing was attempted."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, user_message or message)


class AuthError(CBTError):
    """Raised when credentials or a session token are rejected."""

    default_user_message = "Invalid credentials"


class FetchError(CBTError):
    """Raised when reading from the store fails."""

    default_user_message = "Failed to load data"


class RecordNotFound(FetchError):
    """Raised when a record does not exist or is not visible to the caller."""

    default_user_message = "Not found"


class WriteError(CBTError):
    """Raised when inserting, updating or deleting fails."""

    default_user_message = "Failed to save changes"


class PolicyViolation(WriteError):
    """Raised when a row-level policy or role gate rejects an operation."""

    default_user_message = "You are not allowed to do that"


class QuizControllerError(CBTError):
    """Base exception for attempt session errors."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when operating on an attempt session that does not exist."""

    default_user_message = "No quiz in progress"


class InvalidSessionStateError(QuizControllerError):
    """Raised when a session is in the wrong state for the requested operation."""

    default_user_message = "This quiz can no longer be changed"
