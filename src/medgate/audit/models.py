"""Audit trail data model.

``AuditEntry`` is the immutable domain record; ``AuditLog`` is its
append-only table. Entries are stamped with a retention expiry that an
external reaper enforces; nothing in MedGate updates or deletes a row.
"""

import base64
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from medgate.core.exceptions import ValidationError

Base: Any = declarative_base()


class AuditOutcome(str, Enum):
    """Outcome of an audited call."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AuditEntry:
    """A finalized, immutable audit record."""

    id: str
    timestamp: datetime
    actor_id: str
    action: str
    resource_type: str
    resource_id: Optional[str]
    phi_accessed: bool
    outcome: AuditOutcome
    duration_ms: int
    retention_expiry: datetime
    request_snapshot: Optional[Any] = None
    response_snapshot: Optional[Any] = None
    error_code: Optional[str] = None

    @property
    def checksum(self) -> str:
        """Tamper-evidence digest over the identifying fields."""
        data = (
            f"{self.id}{as_utc(self.timestamp).isoformat()}{self.actor_id}"
            f"{self.action}{self.resource_type}{self.resource_id}"
            f"{self.phi_accessed}{self.outcome.value}"
        )
        return hashlib.sha256(data.encode("utf-8")).hexdigest()


class AuditLog(Base):
    """SQLAlchemy model for audit entries."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    actor_id = Column(String(255), nullable=False)
    action = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(255))
    phi_accessed = Column(Boolean, nullable=False, default=False)
    outcome = Column(String(16), nullable=False)
    duration_ms = Column(Integer, nullable=False)
    request_snapshot = Column(Text)
    response_snapshot = Column(Text)
    error_code = Column(String(50))
    retention_expiry = Column(DateTime(timezone=True), nullable=False, index=True)
    checksum = Column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_actor_time", "actor_id", "timestamp"),
        Index("ix_audit_logs_resource_time", "resource_type", "timestamp"),
        Index("ix_audit_logs_phi_time", "phi_accessed", "timestamp"),
    )

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditLog":
        return cls(
            id=entry.id,
            timestamp=as_utc(entry.timestamp),
            actor_id=entry.actor_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            phi_accessed=entry.phi_accessed,
            outcome=entry.outcome.value,
            duration_ms=entry.duration_ms,
            request_snapshot=_dump(entry.request_snapshot),
            response_snapshot=_dump(entry.response_snapshot),
            error_code=entry.error_code,
            retention_expiry=as_utc(entry.retention_expiry),
            checksum=entry.checksum,
        )

    def to_entry(self) -> AuditEntry:
        return AuditEntry(
            id=self.id,
            timestamp=as_utc(self.timestamp),
            actor_id=self.actor_id,
            action=self.action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            phi_accessed=bool(self.phi_accessed),
            outcome=AuditOutcome(self.outcome),
            duration_ms=self.duration_ms,
            retention_expiry=as_utc(self.retention_expiry),
            request_snapshot=_load(self.request_snapshot),
            response_snapshot=_load(self.response_snapshot),
            error_code=self.error_code,
        )


@dataclass(frozen=True)
class AuditQuery:
    """Filters for a paged audit lookup."""

    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    phi_accessed: Optional[bool] = None
    limit: int = 50
    cursor: Optional[str] = None


@dataclass(frozen=True)
class AuditPage:
    """One reverse-chronological page of entries."""

    items: List[AuditEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None


def encode_cursor(entry: AuditEntry) -> str:
    payload = {"ts": as_utc(entry.timestamp).isoformat(), "id": entry.id}
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Dict[str, Any]:
    """Decode a continuation cursor; malformed input is a validation error."""
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return {"ts": as_utc(datetime.fromisoformat(payload["ts"])), "id": str(payload["id"])}
    except (ValueError, TypeError, KeyError, UnicodeError) as e:
        raise ValidationError(
            "Invalid pagination cursor", details={"cursor": "malformed"}
        ) from e


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dump(snapshot: Optional[Any]) -> Optional[str]:
    if snapshot is None:
        return None
    return json.dumps(snapshot, default=str, sort_keys=True)


def _load(raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    return json.loads(raw)
