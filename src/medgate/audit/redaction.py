"""Snapshot redaction for audit entries and log events.

Values under denylisted keys are replaced by a fixed marker before anything
is persisted. Traversal never raises: cyclic references, over-deep nesting
and values that cannot be represented are skipped.
"""

import dataclasses
import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, Iterable, Optional, Set

REDACTED = "***REDACTED***"
MAX_DEPTH = 32

SENSITIVE_KEYS: FrozenSet[str] = frozenset(
    {
        "password",
        "token",
        "refreshtoken",
        "ssn",
        "secret",
        "apikey",
        "creditcard",
        "bankaccount",
        "authorization",
    }
)

_SKIP = object()
_SCALARS = (str, int, float, bool, type(None))


def normalize_key(key: Any) -> str:
    """Case-insensitive key form; ``refresh_token`` matches ``refreshToken``."""
    return str(key).lower().replace("_", "").replace("-", "")


def is_sensitive_key(key: Any) -> bool:
    return normalize_key(key) in SENSITIVE_KEYS


def denylist_with(keys: Iterable[str]) -> FrozenSet[str]:
    """The fixed denylist extended with ``keys``."""
    return SENSITIVE_KEYS | {normalize_key(key) for key in keys}


def redact(value: Any, denylist: Optional[FrozenSet[str]] = None) -> Any:
    """Return a redacted deep copy of ``value``."""
    keys = SENSITIVE_KEYS if denylist is None else denylist
    result = _redact(value, keys, set(), 0)
    return None if result is _SKIP else result


def _redact(value: Any, keys: FrozenSet[str], seen: Set[int], depth: int) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, Enum):
        return _redact(value.value, keys, seen, depth)
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if depth >= MAX_DEPTH:
        return _SKIP

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name, None) for f in dataclasses.fields(value)}
    elif hasattr(value, "model_dump") and callable(value.model_dump):
        try:
            value = value.model_dump()
        except (TypeError, ValueError):
            return _SKIP

    marker = id(value)
    if marker in seen:
        return _SKIP

    if isinstance(value, dict):
        seen.add(marker)
        try:
            out = {}
            for key, item in list(value.items()):
                if normalize_key(key) in keys:
                    out[str(key)] = REDACTED
                    continue
                redacted = _redact(item, keys, seen, depth + 1)
                if redacted is not _SKIP:
                    out[str(key)] = redacted
            return out
        finally:
            seen.discard(marker)

    if isinstance(value, (list, tuple, set, frozenset)):
        seen.add(marker)
        try:
            items = []
            for item in list(value):
                redacted = _redact(item, keys, seen, depth + 1)
                if redacted is not _SKIP:
                    items.append(redacted)
            return items
        finally:
            seen.discard(marker)

    # bytes, ciphers, handles and arbitrary objects never enter a snapshot
    return _SKIP


__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "denylist_with",
    "redact",
    "is_sensitive_key",
    "normalize_key",
]
