"""
Authentication and authorization for MedGate.

Resolves bearer credentials into actors and decides access per
(actor, resource, action).
"""

from .authorization import AuthorizationEngine, Decision, ResourceRef
from .identity import IdentityResolver, JoseTokenVerifier, TokenVerifier
from .ownership import DatabaseOwnershipResolver, OwnershipResolver
from .policy import AccessPolicy, AccessRule, Action, ResourceType
from .roles import Actor, ActorCategory, Role

__all__ = [
    "AccessPolicy",
    "AccessRule",
    "Action",
    "Actor",
    "ActorCategory",
    "AuthorizationEngine",
    "DatabaseOwnershipResolver",
    "Decision",
    "IdentityResolver",
    "JoseTokenVerifier",
    "OwnershipResolver",
    "ResourceRef",
    "ResourceType",
    "Role",
    "TokenVerifier",
]
