"""Authentication middleware."""

from medgate.auth.identity import IdentityResolver
from medgate.middleware.pipeline import CallContext, CallResponse, Handler
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


class AuthenticationMiddleware:
    """Resolves the caller before anything authorization-dependent runs."""

    def __init__(self, identity: IdentityResolver) -> None:
        self.identity = identity

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        ctx.actor = await self.identity.resolve(ctx.request.actor_credential)
        logger.debug(
            "actor_resolved",
            request_id=ctx.request_id,
            actor_id=ctx.actor.id,
            role=ctx.actor.role.value,
        )
        return await call_next(ctx)
