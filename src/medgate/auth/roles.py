"""Roles, actor categories and the resolved actor."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class Role(str, Enum):
    """Roles carried in the identity provider's role claim."""

    ADMIN = "ADMIN"
    PROVIDER = "PROVIDER"
    NURSE = "NURSE"
    RECEPTIONIST = "RECEPTIONIST"
    STAFF = "STAFF"
    PATIENT = "PATIENT"
    GUARDIAN = "GUARDIAN"


class ActorCategory(str, Enum):
    """Structural category of the caller."""

    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    CLIENT = "CLIENT"
    GUARDIAN = "GUARDIAN"


HIGHEST_PRIVILEGE_ROLE = Role.ADMIN

STAFF_ROLES = frozenset(
    {Role.ADMIN, Role.PROVIDER, Role.NURSE, Role.RECEPTIONIST, Role.STAFF}
)

# The only category each non-staff role may appear with
_CLIENT_ROLE_CATEGORIES = {
    Role.PATIENT: ActorCategory.CLIENT,
    Role.GUARDIAN: ActorCategory.GUARDIAN,
}


def is_staff_role(role: Role) -> bool:
    return role in STAFF_ROLES


def parse_role(value: Any) -> Optional[Role]:
    """Parse a role claim case-insensitively; unknown values give None."""
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def parse_category(value: Any) -> Optional[ActorCategory]:
    if not isinstance(value, str):
        return None
    try:
        return ActorCategory(value.strip().upper())
    except ValueError:
        return None


def is_consistent(role: Role, category: ActorCategory) -> bool:
    """Staff roles belong to service providers; clients and guardians to their own category."""
    if is_staff_role(role):
        return category is ActorCategory.SERVICE_PROVIDER
    return _CLIENT_ROLE_CATEGORIES[role] is category


@dataclass(frozen=True)
class Actor:
    """The authenticated caller. Resolved per call and never persisted."""

    id: str
    role: Role
    category: ActorCategory
    email: str = ""
    claims: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Actor id is required")
        if not is_consistent(self.role, self.category):
            raise ValueError(
                f"Role {self.role.value} is not valid for category {self.category.value}"
            )
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))

    @property
    def is_staff(self) -> bool:
        return is_staff_role(self.role)

    @property
    def is_highest_privilege(self) -> bool:
        return self.role is HIGHEST_PRIVILEGE_ROLE
