"""Audit Recorder.

Creates an entry when a call starts and finalizes it exactly once when the
call ends, on every exit path. Writing is best effort: a failed write is
logged and never surfaces to, blocks, or rolls back the operation it
describes.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from medgate.audit.models import AuditEntry, AuditOutcome, AuditPage, AuditQuery
from medgate.audit.redaction import denylist_with, redact
from medgate.audit.store import AuditStore
from medgate.core.exceptions import MedGateError
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

CANCELLED_CODE = "CANCELLED"
UNHANDLED_CODE = "INTERNAL_SERVER_ERROR"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuditToken:
    """A begun, not yet written, audit entry."""

    id: str
    timestamp: datetime
    actor_id: str
    action: str
    resource_type: str
    resource_id: Optional[str]
    phi_accessed: bool
    request_snapshot: Optional[Any]
    capture_response: bool
    started_at: float = field(default_factory=time.monotonic)
    response: Optional[Any] = None
    completed: bool = False

    def set_response(self, response: Any) -> None:
        """Attach the call result; kept only if the call allows response capture."""
        self.response = response


def error_code_for(exc: BaseException) -> str:
    if isinstance(exc, MedGateError):
        return exc.code
    if isinstance(exc, asyncio.CancelledError):
        return CANCELLED_CODE
    return UNHANDLED_CODE


class AuditRecorder:
    """Records immutable access/outcome entries."""

    def __init__(
        self,
        store: AuditStore,
        retention_days: int = 7 * 365,
        timeout_seconds: float = 2.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.retention = timedelta(days=retention_days)
        self.timeout_seconds = timeout_seconds
        self.clock = clock or _utcnow

    def begin(
        self,
        *,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        phi_accessed: bool = False,
        request: Optional[Any] = None,
        capture_response: bool = False,
        protected_keys: Iterable[str] = (),
    ) -> AuditToken:
        """Start an entry. Pure: nothing is written until ``complete``.

        ``protected_keys`` are redacted from the request snapshot in addition
        to the fixed denylist.
        """
        return AuditToken(
            id=str(uuid.uuid4()),
            timestamp=self.clock(),
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            phi_accessed=phi_accessed,
            request_snapshot=(
                redact(request, denylist_with(protected_keys)) if request is not None else None
            ),
            capture_response=capture_response,
        )

    async def complete(
        self,
        token: AuditToken,
        outcome: AuditOutcome,
        duration_ms: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """Finalize and write the entry. Returns None if it was not written."""
        if token.completed:
            logger.warning("audit_entry_already_completed", audit_id=token.id)
            return None
        token.completed = True

        if duration_ms is None:
            duration_ms = int(round((time.monotonic() - token.started_at) * 1000))

        response_snapshot = None
        if token.capture_response and token.response is not None:
            response_snapshot = redact(token.response)

        entry = AuditEntry(
            id=token.id,
            timestamp=token.timestamp,
            actor_id=token.actor_id,
            action=token.action,
            resource_type=token.resource_type,
            resource_id=token.resource_id,
            phi_accessed=token.phi_accessed,
            outcome=outcome,
            duration_ms=max(duration_ms, 0),
            retention_expiry=token.timestamp + self.retention,
            request_snapshot=token.request_snapshot,
            response_snapshot=response_snapshot,
            error_code=error_code,
        )
        return await self._write(entry)

    @asynccontextmanager
    async def record(self, **kwargs: Any) -> AsyncIterator[AuditToken]:
        """Wrap a unit of work so its entry is completed on every exit path.

        Usage:
            async with recorder.record(actor_id=..., action=..., resource_type=...) as token:
                token.set_response(await do_work())
        """
        token = self.begin(**kwargs)
        try:
            yield token
        except BaseException as exc:
            await asyncio.shield(
                self.complete(token, AuditOutcome.FAILURE, error_code=error_code_for(exc))
            )
            raise
        else:
            await asyncio.shield(self.complete(token, AuditOutcome.SUCCESS))

    async def record_event(
        self,
        *,
        actor_id: str,
        action: str,
        resource_type: str,
        outcome: AuditOutcome,
        resource_id: Optional[str] = None,
        phi_accessed: bool = False,
        request: Optional[Any] = None,
        error_code: Optional[str] = None,
        protected_keys: Iterable[str] = (),
    ) -> Optional[AuditEntry]:
        """Begin and complete in one step, for events without a duration."""
        token = self.begin(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            phi_accessed=phi_accessed,
            request=request,
            protected_keys=protected_keys,
        )
        return await self.complete(token, outcome, duration_ms=0, error_code=error_code)

    async def query(self, query: AuditQuery) -> AuditPage:
        """Read a page of entries. Read failures propagate."""
        return await asyncio.wait_for(
            asyncio.to_thread(self.store.query, query), timeout=self.timeout_seconds
        )

    async def _write(self, entry: AuditEntry) -> Optional[AuditEntry]:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.store.append, entry),
                timeout=self.timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001 - audit durability is best effort
            logger.error(
                "audit_write_failed",
                audit_id=entry.id,
                action=entry.action,
                resource_type=entry.resource_type,
                error_type=type(e).__name__,
            )
            return None
        logger.debug("audit_entry_written", audit_id=entry.id, outcome=entry.outcome.value)
        return entry


__all__ = ["AuditRecorder", "AuditToken", "error_code_for"]
