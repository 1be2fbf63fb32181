"""
Error kinds raised by the API layers.

Every error carries the HTTP status it maps to and a human readable message.
The application's exception handlers render them as ``{"message": ...}``.
"""

from fastapi import status


class APIError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingFieldError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Required field not provided"


class InvalidEmailError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid email"


class DuplicateEmailError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Email already registered"


class InvalidIdentifierError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid identifier"

    @classmethod
    def for_id(cls, value: str) -> "InvalidIdentifierError":
        return cls(f"Request id: {value} is invalid")


class IncorrectPasswordError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Incorrect password"


class PasswordTooLongError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Password is too long"


class UnauthenticatedError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class AccessDeniedError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class UserNotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found"

    @classmethod
    def for_email(cls, email: str) -> "UserNotFoundError":
        return cls(f"User with email: {email} not found")


class BookNotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Book not found"


class PersistenceError(APIError):
    """Any failure reported by the datastore driver."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Database operation failed"


class InvalidTokenError(Exception):
    """Raised by the token manager; the auth gate turns it into a 401."""
