"""
Error taxonomy for the identity service.

Every user-facing failure has a fixed HTTP status, a machine-checkable
``error_code`` and a human-readable message. Expected outcomes (wrong
password, locked account, expired token) are returned by services inside an
``Outcome`` and only raised at the HTTP boundary via ``Outcome.unwrap()``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from fastapi import HTTPException, status

T = TypeVar("T")


class AuthError(HTTPException):
    """Base class for all identity errors rendered to clients"""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "AUTH_ERROR"
    default_message: str = "Request could not be completed"

    def __init__(
        self,
        message: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ):
        super().__init__(
            status_code=type(self).status_code,
            detail=message or self.default_message,
            headers=headers,
        )
        self.extra = extra

    @property
    def message(self) -> str:
        return str(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message, **self.extra}


class ValidationError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class DuplicateResourceError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "DUPLICATE_RESOURCE"
    default_message = "Resource already exists"


class InvalidCredentialsError(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid username or password"

    def __init__(self, attempts_remaining: Optional[int] = None, message: Optional[str] = None):
        if message is None and attempts_remaining is not None:
            message = (
                f"Invalid username or password. {attempts_remaining} attempt(s) "
                "remaining before account lockout."
            )
        extra = {} if attempts_remaining is None else {"attempts_remaining": attempts_remaining}
        super().__init__(message, **extra)
        self.attempts_remaining = attempts_remaining


class AccountLockedError(AuthError):
    status_code = status.HTTP_423_LOCKED
    error_code = "ACCOUNT_LOCKED"

    def __init__(self, remaining_minutes: int, retry_after: Optional[str] = None):
        super().__init__(
            "Account is locked due to too many failed login attempts. "
            f"Please try again in {remaining_minutes} minute(s).",
            remaining_minutes=remaining_minutes,
            retry_after=retry_after,
        )
        self.remaining_minutes = remaining_minutes


class NotAuthenticatedError(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "NOT_AUTHENTICATED"
    default_message = "Not authenticated"


class ForbiddenError(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"
    default_message = "Unauthorized: Admin access required"


class UnverifiedAccountError(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "ACCOUNT_NOT_VERIFIED"
    default_message = "Account is not verified"


class EmailNotVerifiedError(UnverifiedAccountError):
    error_code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email address before logging in"


class PhoneNotVerifiedError(UnverifiedAccountError):
    error_code = "PHONE_NOT_VERIFIED"
    default_message = "Please verify your phone number before logging in"


class NotFoundError(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    default_message = "Not found"


class RateLimitExceededError(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMITED"
    default_message = "Too many requests, please try again later"

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        super().__init__(
            message,
            headers={"Retry-After": str(retry_after_seconds)},
            retry_after_seconds=retry_after_seconds,
        )
        self.retry_after_seconds = retry_after_seconds


class CooldownError(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "COOLDOWN"
    default_message = "Verification recently sent; try again later"

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        super().__init__(
            message,
            headers={"Retry-After": str(retry_after_seconds)},
            retry_after_seconds=retry_after_seconds,
        )
        self.retry_after_seconds = retry_after_seconds


class InvalidOrExpiredTokenError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "Invalid or expired token"


class InvalidTokenError(InvalidOrExpiredTokenError):
    error_code = "INVALID_TOKEN"
    default_message = "Invalid token"


class ExpiredError(InvalidOrExpiredTokenError):
    error_code = "EXPIRED"
    default_message = "Code expired"


class InvalidCodeError(InvalidOrExpiredTokenError):
    error_code = "INVALID_CODE"
    default_message = "Invalid code"


class ConfigurationError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "CONFIGURATION_ERROR"
    default_message = "Server configuration error"


class PersistenceError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "PERSISTENCE_ERROR"
    default_message = "Could not save changes"


@dataclass
class Outcome(Generic[T]):
    """Result of an operation whose failures are expected outcomes"""

    value: Optional[T] = None
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthError) -> "Outcome[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.value
