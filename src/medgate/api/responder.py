"""Error Responder.

Every failure leaving MedGate passes through ``ErrorResponder.respond``:

- full internal detail is logged server-side;
- the caller receives only the sanitized form (code, public message, and
  field detail for validation errors);
- authentication and authorization failures are recorded in the audit
  trail unless the audit middleware already recorded the call.
"""

from typing import Dict, Optional

from medgate.audit.models import AuditOutcome
from medgate.audit.recorder import AuditRecorder
from medgate.core.exceptions import InternalError, MedGateError
from medgate.middleware.pipeline import CallContext, CallResponse
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

ANONYMOUS_ACTOR = "anonymous"

NO_STORE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


class ErrorResponder:
    """Translates any exception into the failure ``CallResponse``."""

    def __init__(self, recorder: AuditRecorder) -> None:
        self.recorder = recorder

    async def respond(
        self, exc: BaseException, ctx: Optional[CallContext] = None
    ) -> CallResponse:
        error = self.classify(exc)
        self._log(error, exc, ctx)

        if error.kind.is_security_event and ctx is not None and ctx.audit_entry_id is None:
            await self._audit_security_event(error, ctx)

        return CallResponse.failure(
            code=error.code,
            message=error.public_message,
            status_code=error.status_code,
            details=error.details,
            headers=NO_STORE_HEADERS,
        )

    @staticmethod
    def classify(exc: BaseException) -> MedGateError:
        """Map any exception onto the closed taxonomy."""
        if isinstance(exc, MedGateError):
            return exc
        return InternalError(f"Unhandled {type(exc).__name__}")

    def _log(self, error: MedGateError, exc: BaseException, ctx: Optional[CallContext]) -> None:
        log = logger.bind(
            code=error.code,
            status_code=error.status_code,
            error=error.message,
        )
        if ctx is not None:
            log = log.bind(
                request_id=ctx.request_id,
                operation=ctx.operation.name,
                actor_id=ctx.actor.id if ctx.actor else None,
            )

        if error.kind.is_server_error:
            log.error("request_failed", exc_info=exc)
        elif error.kind.is_security_event:
            log.warning("request_rejected")
        else:
            log.info("request_invalid", details=error.details)

    async def _audit_security_event(self, error: MedGateError, ctx: CallContext) -> None:
        entry = await self.recorder.record_event(
            actor_id=ctx.actor.id if ctx.actor else ANONYMOUS_ACTOR,
            action=ctx.operation.name,
            resource_type=ctx.operation.resource_type,
            resource_id=ctx.resource_id,
            outcome=AuditOutcome.FAILURE,
            request=dict(ctx.arguments),
            error_code=error.code,
            protected_keys=ctx.operation.protected_arguments,
        )
        if entry is not None:
            ctx.audit_entry_id = entry.id
            logger.info("security_event_audited", audit_id=entry.id, code=error.code)


__all__ = ["ErrorResponder", "NO_STORE_HEADERS", "ANONYMOUS_ACTOR"]
