from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class AuthError(str, Enum):
    """Failure kinds produced by the auth core.

    Services return these inside an Outcome; only the API layer turns
    them into HTTP responses.
    """
    INVALID_CREDENTIALS = "invalid_credentials"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    INVALID_TOKEN = "invalid_token"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    TOKEN_REUSED = "token_reused"
    INTERNAL_FAILURE = "internal_failure"


@dataclass(frozen=True)
class Outcome(Generic[T]):
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


# (status_code, client-safe message)
ERROR_RESPONSES = {
    AuthError.INVALID_CREDENTIALS: (401, "Invalid user credentials"),
    AuthError.NOT_FOUND: (404, "User does not exist"),
    AuthError.CONFLICT: (409, "User with email or username already registered"),
    AuthError.UNAUTHORIZED: (401, "Unauthorized request"),
    AuthError.INVALID_TOKEN: (401, "Invalid token"),
    AuthError.INVALID_SIGNATURE: (401, "Invalid token"),
    AuthError.MALFORMED: (401, "Invalid token"),
    AuthError.EXPIRED: (401, "Token has expired"),
    AuthError.TOKEN_REUSED: (401, "Refresh token is expired or used"),
    AuthError.INTERNAL_FAILURE: (500, "Internal server error"),
}
