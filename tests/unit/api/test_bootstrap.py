"""Tests for gateway wiring."""

import pytest

from medgate.audit.models import AuditQuery
from medgate.audit.store import SQLAlchemyAuditStore
from medgate.bootstrap import create_gateway
from medgate.core.database import create_database_engine


@pytest.mark.audit_required
class TestCreateGateway:
    @pytest.mark.asyncio
    async def test_separate_audit_database(self, settings, kms, engine, bearer, audit_entries, tmp_path):
        audit_url = f"sqlite:///{tmp_path / 'audit.db'}"
        gateway = create_gateway(
            settings.model_copy(update={"audit_database_url": audit_url}),
            kms_client=kms,
            engine=engine,
            create_schema=True,
            configure_logging=False,
        )

        await gateway.handle(
            {"operationName": "listPatients", "arguments": {}, "actorCredential": bearer("u1")}
        )

        audit_store = SQLAlchemyAuditStore(create_database_engine(audit_url))
        (entry,) = audit_store.query(AuditQuery(limit=10)).items
        assert entry.action == "listPatients"
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_audit_shares_records_database_by_default(self, gateway, bearer, audit_entries):
        await gateway.handle(
            {"operationName": "listPatients", "arguments": {}, "actorCredential": bearer("u1")}
        )
        assert len(audit_entries()) == 1
