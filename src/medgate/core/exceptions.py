"""Core Exceptions Module.

Closed set of error kinds used throughout MedGate. Every error carries an
``ErrorKind`` discriminant; the Responder matches on the kind, never on the
class hierarchy. New kinds are added here and nowhere else.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, Optional

GENERIC_SERVER_MESSAGE = "An unexpected error occurred"


class ErrorKind(Enum):
    """Canonical error kinds with their external code and status."""

    VALIDATION = ("VALIDATION_ERROR", 400)
    AUTHENTICATION = ("UNAUTHORIZED", 401)
    AUTHORIZATION = ("FORBIDDEN", 403)
    NOT_FOUND = ("NOT_FOUND", 404)
    CONFLICT = ("CONFLICT", 409)
    CRYPTO = ("CRYPTO_ERROR", 500)
    INTERNAL = ("INTERNAL_SERVER_ERROR", 500)

    def __init__(self, code: str, status_code: int) -> None:
        self.code = code
        self.status_code = status_code

    @property
    def is_security_event(self) -> bool:
        """Authentication and authorization failures are always audited."""
        return self in (ErrorKind.AUTHENTICATION, ErrorKind.AUTHORIZATION)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class MedGateError(Exception):
    """Base exception for all MedGate errors.

    ``message`` is internal and only ever logged server-side.
    ``public_message`` is what leaves the process.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL
    default_message: ClassVar[str] = GENERIC_SERVER_MESSAGE

    def __init__(
        self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.message = message or self.default_message
        self.details = details if self.kind is ErrorKind.VALIDATION else None
        super().__init__(self.message)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__module__ != __name__:
            raise TypeError(
                f"{cls.__name__}: the error taxonomy is closed, "
                f"use one of the kinds in {__name__}"
            )

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def public_message(self) -> str:
        """Message safe to return to the caller."""
        if self.kind.is_server_error:
            return GENERIC_SERVER_MESSAGE
        if self.kind.is_security_event:
            return self.default_message
        return self.message


class ValidationError(MedGateError):
    """Raised when request arguments fail validation."""

    kind = ErrorKind.VALIDATION
    default_message = "Validation failed"


class AuthenticationError(MedGateError):
    """Raised when a credential is absent, malformed, expired or incomplete."""

    kind = ErrorKind.AUTHENTICATION
    default_message = "Unauthorized"


class AuthorizationError(MedGateError):
    """Raised when an actor may not perform an action on a resource."""

    kind = ErrorKind.AUTHORIZATION
    default_message = "Access denied"


class NotFoundError(MedGateError):
    """Raised when a resource does not exist."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class ConflictError(MedGateError):
    """Raised when a resource already exists or conflicts with current state."""

    kind = ErrorKind.CONFLICT
    default_message = "Resource already exists"


class CryptoError(MedGateError):
    """Raised when encryption or decryption fails. Never swallowed."""

    kind = ErrorKind.CRYPTO
    default_message = "Cryptographic operation failed"


class InternalError(MedGateError):
    """Raised for any failure without a more specific kind."""

    kind = ErrorKind.INTERNAL


__all__ = [
    "ErrorKind",
    "MedGateError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "CryptoError",
    "InternalError",
    "GENERIC_SERVER_MESSAGE",
]
