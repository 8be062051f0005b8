"""Ownership predicate.

One place that answers "which client does this resource belong to" and
"whose records may this guardian see". Lookups touch owner columns and
foreign keys only; protected content is never read here.
"""

from typing import Dict, FrozenSet, Optional, Protocol

from medgate.auth.policy import ResourceType
from medgate.core.database import Database
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


class OwnershipResolver(Protocol):
    """Resource-ownership lookup used by the Authorization Engine."""

    async def owner_of(self, resource_type: str, resource_id: str) -> Optional[str]:
        """Return the owning client's actor id, or None if unknown."""
        ...

    async def wards_of(self, guardian_id: str) -> FrozenSet[str]:
        """Return the actor ids of the clients delegated to ``guardian_id``."""
        ...


# Owner-column-only queries, resolving child records through their parent
OWNER_QUERIES: Dict[str, str] = {
    ResourceType.PATIENT.value: "SELECT user_id AS owner_id FROM patients WHERE id = :resource_id",
    ResourceType.MEDICAL_RECORD.value: (
        "SELECT p.user_id AS owner_id FROM medical_records mr "
        "JOIN patients p ON p.id = mr.patient_id WHERE mr.id = :resource_id"
    ),
}

WARDS_QUERY = (
    "SELECT p.user_id AS ward_id FROM patient_guardians pg "
    "JOIN patients p ON p.id = pg.patient_id "
    "WHERE pg.guardian_id = :guardian_id AND pg.active = :active "
    "AND p.user_id IS NOT NULL"
)


class DatabaseOwnershipResolver:
    """Ownership lookups against the records tables."""

    def __init__(self, database: Database, owner_queries: Optional[Dict[str, str]] = None):
        self.database = database
        self.owner_queries = owner_queries or OWNER_QUERIES

    async def owner_of(self, resource_type: str, resource_id: str) -> Optional[str]:
        sql = self.owner_queries.get(resource_type.upper())
        if sql is None:
            logger.debug("ownership_not_applicable", resource_type=resource_type)
            return None
        row = await self.database.fetch_one(sql, {"resource_id": resource_id})
        if not row or row["owner_id"] is None:
            return None
        return str(row["owner_id"])

    async def wards_of(self, guardian_id: str) -> FrozenSet[str]:
        rows = await self.database.fetch_all(
            WARDS_QUERY, {"guardian_id": guardian_id, "active": True}
        )
        return frozenset(str(row["ward_id"]) for row in rows)


__all__ = ["OwnershipResolver", "DatabaseOwnershipResolver", "OWNER_QUERIES"]
