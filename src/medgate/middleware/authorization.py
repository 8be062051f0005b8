"""Authorization middleware.

Runs after validation and before the business handler, so no data is read
or written for a call that is not allowed.
"""

from medgate.auth.authorization import AuthorizationEngine, ResourceRef
from medgate.core.exceptions import AuthenticationError
from medgate.middleware.pipeline import CallContext, CallResponse, Handler


class AuthorizationMiddleware:
    def __init__(self, engine: AuthorizationEngine) -> None:
        self.engine = engine

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        if ctx.actor is None:
            raise AuthenticationError("Authorization reached without a resolved actor")
        resource = ResourceRef(
            resource_type=ctx.operation.resource_type,
            resource_id=ctx.resource_id,
        )
        await self.engine.require(ctx.actor, resource, ctx.operation.action)
        return await call_next(ctx)
