"""Audit middleware.

Wraps everything inside authentication so each authenticated call leaves
exactly one entry, written on every exit path: success, failure response,
raised error or cancellation.
"""

import asyncio
from typing import Any, Optional

from medgate.audit.models import AuditOutcome
from medgate.audit.recorder import AuditRecorder, error_code_for
from medgate.core.exceptions import AuthenticationError
from medgate.middleware.pipeline import CallContext, CallResponse, Handler


def _created_id(data: Any) -> Optional[str]:
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


class AuditMiddleware:
    def __init__(self, recorder: AuditRecorder) -> None:
        self.recorder = recorder

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        if ctx.actor is None:
            raise AuthenticationError("Audit reached without a resolved actor")

        operation = ctx.operation
        token = self.recorder.begin(
            actor_id=ctx.actor.id,
            action=operation.name,
            resource_type=operation.resource_type,
            resource_id=ctx.resource_id,
            phi_accessed=operation.phi_accessed,
            request=dict(ctx.arguments),
            capture_response=operation.stores_response,
            protected_keys=operation.protected_arguments,
        )
        ctx.audit_entry_id = token.id

        try:
            response = await call_next(ctx)
        except BaseException as exc:
            await asyncio.shield(
                self.recorder.complete(
                    token, AuditOutcome.FAILURE, error_code=error_code_for(exc)
                )
            )
            raise

        if response.ok:
            if token.resource_id is None:
                token.resource_id = _created_id(response.data)
            token.set_response(response.data)
            await asyncio.shield(self.recorder.complete(token, AuditOutcome.SUCCESS))
        else:
            await asyncio.shield(
                self.recorder.complete(
                    token,
                    AuditOutcome.FAILURE,
                    error_code=response.error.code if response.error else None,
                )
            )
        return response
