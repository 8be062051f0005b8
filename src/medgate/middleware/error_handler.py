"""Outermost middleware: every failure becomes a failure response."""

from medgate.api.responder import ErrorResponder
from medgate.middleware.pipeline import CallContext, CallResponse, Handler


class ErrorHandlingMiddleware:
    """Catches anything raised by inner layers and hands it to the Responder.

    Cancellation is not a failure of the call and propagates untouched.
    """

    def __init__(self, responder: ErrorResponder) -> None:
        self.responder = responder

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        try:
            return await call_next(ctx)
        except Exception as exc:  # noqa: BLE001 - translated, never swallowed
            return await self.responder.respond(exc, ctx)
