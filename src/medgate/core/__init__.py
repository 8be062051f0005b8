"""Core Module.

Error taxonomy and persistence shared by every MedGate component.
"""

from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    CryptoError,
    ErrorKind,
    InternalError,
    MedGateError,
    NotFoundError,
    ValidationError,
)

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
]
