"""Authorization Engine.

Decides allow/deny for (actor, resource, action):

1. a role listed on the rule is allowed;
2. a client may act on a resource it owns when the rule says so;
3. a guardian may act on a ward's resource when the rule says so;
4. destructive rules admit only the highest-privilege role, and ownership
   or delegation never satisfies them;
5. anything else, including a missing rule, is denied.

A denial always surfaces as the same generic ``AuthorizationError``; which
step failed, and whether the resource exists, is logged server-side only.
"""

from dataclasses import dataclass
from typing import Optional

from medgate.auth.ownership import OwnershipResolver
from medgate.auth.policy import AccessPolicy, Action
from medgate.auth.roles import Actor, ActorCategory
from medgate.core.exceptions import AuthorizationError
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResourceRef:
    """Identifies a resource for an access decision. Never carries content."""

    resource_type: str
    resource_id: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    @classmethod
    def allow(cls, reason: str) -> "Decision":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(False, reason)


class AuthorizationEngine:
    """Evaluates the access policy for a resolved actor."""

    def __init__(self, policy: AccessPolicy, ownership: OwnershipResolver) -> None:
        self.policy = policy
        self.ownership = ownership

    async def authorize(self, actor: Actor, resource: ResourceRef, action: Action) -> Decision:
        rule = self.policy.rule_for(resource.resource_type, action)
        if rule is None:
            return Decision.deny("no_rule")

        if actor.role in rule.allowed_roles:
            if rule.destructive and not actor.is_highest_privilege:
                return Decision.deny("destructive_requires_highest_privilege")
            return Decision.allow("role")

        if rule.destructive:
            return Decision.deny("destructive_requires_highest_privilege")

        if actor.category is ActorCategory.CLIENT and rule.owner_may_access:
            owner_id = await self._owner_of(resource)
            if owner_id is not None and owner_id == actor.id:
                return Decision.allow("owner")
            return Decision.deny("not_owner")

        if actor.category is ActorCategory.GUARDIAN and rule.guardian_may_access:
            owner_id = await self._owner_of(resource)
            if owner_id is not None and owner_id in await self.ownership.wards_of(actor.id):
                return Decision.allow("guardian")
            return Decision.deny("not_guardian")

        return Decision.deny("role_not_allowed")

    async def require(self, actor: Actor, resource: ResourceRef, action: Action) -> Decision:
        """Authorize or raise ``AuthorizationError``."""
        decision = await self.authorize(actor, resource, action)
        log = logger.bind(
            actor_id=actor.id,
            role=actor.role.value,
            resource_type=resource.resource_type,
            resource_id=resource.resource_id,
            action=action.value,
            reason=decision.reason,
        )
        if not decision.allowed:
            log.warning("access_denied")
            raise AuthorizationError(f"Access denied: {decision.reason}")
        log.debug("access_granted")
        return decision

    async def _owner_of(self, resource: ResourceRef) -> Optional[str]:
        if resource.owner_id is not None:
            return resource.owner_id
        if resource.resource_id is None:
            return None
        return await self.ownership.owner_of(resource.resource_type, resource.resource_id)


__all__ = ["ResourceRef", "Decision", "AuthorizationEngine"]
