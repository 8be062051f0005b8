"""Access policy.

Static (resource type, action) -> rule mapping. Loaded once at startup and
immutable afterwards.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from medgate.auth.roles import Role
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


class Action(str, Enum):
    """Actions an operation performs on a resource."""

    READ = "READ"
    LIST = "LIST"
    SEARCH = "SEARCH"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ResourceType(str, Enum):
    """Resource types with built-in rules."""

    PATIENT = "PATIENT"
    MEDICAL_RECORD = "MEDICAL_RECORD"
    AUDIT_LOG = "AUDIT_LOG"


@dataclass(frozen=True)
class AccessRule:
    """Who may perform ``action`` on ``resource_type``."""

    resource_type: str
    action: Action
    allowed_roles: FrozenSet[Role]
    owner_may_access: bool = False
    guardian_may_access: bool = False
    destructive: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccessRule":
        """Build a rule from its JSON form.

        Raises:
            ValueError: unknown action or role, or missing fields
        """
        try:
            return cls(
                resource_type=str(data["resourceType"]).upper(),
                action=Action(str(data["action"]).upper()),
                allowed_roles=frozenset(
                    Role(str(role).upper()) for role in data.get("allowedRoles", [])
                ),
                owner_may_access=bool(data.get("ownerMayAccess", False)),
                guardian_may_access=bool(data.get("guardianMayAccess", False)),
                destructive=bool(data.get("destructive", False)),
            )
        except KeyError as e:
            raise ValueError(f"Access rule is missing {e.args[0]!r}") from e


RuleKey = Tuple[str, Action]

_CLINICAL = (Role.ADMIN, Role.PROVIDER, Role.NURSE)
_FRONT_DESK = (Role.ADMIN, Role.PROVIDER, Role.NURSE, Role.RECEPTIONIST, Role.STAFF)


def _rule(
    resource_type: ResourceType,
    action: Action,
    roles: Iterable[Role],
    owner: bool = False,
    guardian: bool = False,
    destructive: bool = False,
) -> AccessRule:
    return AccessRule(
        resource_type=resource_type.value,
        action=action,
        allowed_roles=frozenset(roles),
        owner_may_access=owner,
        guardian_may_access=guardian,
        destructive=destructive,
    )


DEFAULT_RULES = (
    # Patients
    _rule(ResourceType.PATIENT, Action.READ, _FRONT_DESK, owner=True, guardian=True),
    _rule(ResourceType.PATIENT, Action.LIST, _FRONT_DESK),
    _rule(ResourceType.PATIENT, Action.SEARCH, _FRONT_DESK),
    _rule(ResourceType.PATIENT, Action.CREATE, (Role.ADMIN, Role.RECEPTIONIST)),
    _rule(ResourceType.PATIENT, Action.UPDATE, _CLINICAL, owner=True),
    _rule(ResourceType.PATIENT, Action.DELETE, (Role.ADMIN,), destructive=True),
    # Medical records
    _rule(ResourceType.MEDICAL_RECORD, Action.READ, _CLINICAL, owner=True, guardian=True),
    _rule(ResourceType.MEDICAL_RECORD, Action.LIST, _CLINICAL),
    _rule(ResourceType.MEDICAL_RECORD, Action.CREATE, (Role.ADMIN, Role.PROVIDER)),
    _rule(ResourceType.MEDICAL_RECORD, Action.UPDATE, (Role.ADMIN, Role.PROVIDER)),
    _rule(ResourceType.MEDICAL_RECORD, Action.DELETE, (Role.ADMIN,), destructive=True),
    # Audit trail
    _rule(ResourceType.AUDIT_LOG, Action.LIST, (Role.ADMIN,)),
)


class AccessPolicy:
    """Immutable set of access rules."""

    def __init__(self, rules: Iterable[AccessRule]) -> None:
        table: Dict[RuleKey, AccessRule] = {}
        for rule in rules:
            key = (rule.resource_type, rule.action)
            if key in table:
                raise ValueError(
                    f"Duplicate access rule for {rule.resource_type}/{rule.action.value}"
                )
            table[key] = rule
        self._rules: Mapping[RuleKey, AccessRule] = MappingProxyType(table)

    def __len__(self) -> int:
        return len(self._rules)

    def rule_for(
        self, resource_type: Union[str, ResourceType], action: Action
    ) -> Optional[AccessRule]:
        """Rule for the pair, or None when nothing is configured (deny)."""
        if isinstance(resource_type, ResourceType):
            resource_type = resource_type.value
        return self._rules.get((resource_type.upper(), action))

    @property
    def rules(self) -> Tuple[AccessRule, ...]:
        return tuple(self._rules.values())

    @classmethod
    def default(cls) -> "AccessPolicy":
        return cls(DEFAULT_RULES)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AccessPolicy":
        """Build from ``{"rules": [{resourceType, action, allowedRoles, ...}]}``."""
        rules = data.get("rules")
        if not isinstance(rules, list):
            raise ValueError("Access policy must contain a 'rules' list")
        return cls(AccessRule.from_dict(rule) for rule in rules)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AccessPolicy":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        policy = cls.from_mapping(data)
        logger.info("access_policy_loaded", path=str(path), rules=len(policy))
        return policy

    @classmethod
    def load(cls, path: Optional[str] = None) -> "AccessPolicy":
        """Load ``path`` when given, the built-in rules otherwise."""
        if path:
            return cls.from_file(path)
        return cls.default()


__all__ = ["Action", "ResourceType", "AccessRule", "AccessPolicy", "DEFAULT_RULES"]
