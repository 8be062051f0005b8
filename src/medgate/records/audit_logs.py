"""Audit trail lookup for administrators."""

from typing import Any, Dict

from medgate.audit.models import AuditEntry, AuditQuery
from medgate.audit.recorder import AuditRecorder
from medgate.core.exceptions import ValidationError
from medgate.middleware.pipeline import CallContext
from medgate.records.arguments import QueryAuditLogsArguments


def serialize_entry(entry: AuditEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat(),
        "actorId": entry.actor_id,
        "action": entry.action,
        "resourceType": entry.resource_type,
        "resourceId": entry.resource_id,
        "phiAccessed": entry.phi_accessed,
        "outcome": entry.outcome.value,
        "durationMs": entry.duration_ms,
        "errorCode": entry.error_code,
        "retentionExpiry": entry.retention_expiry.isoformat(),
        "request": entry.request_snapshot,
        "response": entry.response_snapshot,
    }


class AuditLogService:
    def __init__(self, recorder: AuditRecorder, page_size: int = 50, max_page_size: int = 100):
        self.recorder = recorder
        self.page_size = page_size
        self.max_page_size = max_page_size

    async def query_audit_logs(self, ctx: CallContext) -> Dict[str, Any]:
        args: QueryAuditLogsArguments = ctx.params  # type: ignore[assignment]
        limit = args.limit or self.page_size
        if limit > self.max_page_size:
            raise ValidationError(
                "Page size too large",
                details={"limit": f"must be at most {self.max_page_size}"},
            )
        page = await self.recorder.query(
            AuditQuery(
                actor_id=args.actor_id,
                resource_type=args.resource_type.upper() if args.resource_type else None,
                start=args.start,
                end=args.end,
                phi_accessed=args.phi_accessed,
                limit=limit,
                cursor=args.cursor,
            )
        )
        return {
            "items": [serialize_entry(entry) for entry in page.items],
            "nextCursor": page.next_cursor,
        }
