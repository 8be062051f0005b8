"""Tests for the audit log query operation."""

import pytest

ADMIN = ("admin-1", "ADMIN", "SERVICE_PROVIDER")


def call(operation, credential, **arguments):
    return {"operationName": operation, "arguments": arguments, "actorCredential": credential}


@pytest.mark.audit_required
class TestQueryAuditLogs:
    @pytest.mark.asyncio
    async def test_admin_pages_through_trail(self, gateway, bearer, seed):
        patient_id = seed.patient(user_id="u1")
        for _ in range(3):
            await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))
        admin = bearer(*ADMIN)

        first = await gateway.handle(call("queryAuditLogs", admin, actorId="u1", limit=2))
        assert first.ok, first.to_dict()
        assert len(first.data["items"]) == 2
        assert first.data["nextCursor"]

        second = await gateway.handle(
            call("queryAuditLogs", admin, actorId="u1", limit=2, cursor=first.data["nextCursor"])
        )
        assert len(second.data["items"]) == 1
        assert second.data["nextCursor"] is None

        ids = {item["id"] for item in first.data["items"] + second.data["items"]}
        assert len(ids) == 3

    @pytest.mark.asyncio
    async def test_filters(self, gateway, bearer, seed):
        patient_id = seed.patient(user_id="u1")
        await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))
        await gateway.handle(call("deletePatient", bearer("u1"), id=patient_id))

        response = await gateway.handle(
            call("queryAuditLogs", bearer(*ADMIN), resourceType="patient", phiAccessed=True)
        )

        items = response.data["items"]
        assert [item["action"] for item in items] == ["getPatient"]
        assert items[0]["outcome"] == "SUCCESS"
        assert items[0]["response"] is None

    @pytest.mark.asyncio
    async def test_query_is_itself_audited(self, gateway, bearer, audit_entries):
        await gateway.handle(call("queryAuditLogs", bearer(*ADMIN)))
        (entry,) = audit_entries(actor_id="admin-1")
        assert entry.action == "queryAuditLogs"
        assert entry.response_snapshot is None

    @pytest.mark.asyncio
    async def test_page_size_capped(self, gateway, bearer):
        response = await gateway.handle(call("queryAuditLogs", bearer(*ADMIN), limit=5000))
        assert response.status_code == 400
        assert "limit" in response.error.details

    @pytest.mark.asyncio
    async def test_start_after_end_rejected(self, gateway, bearer):
        response = await gateway.handle(
            call(
                "queryAuditLogs",
                bearer(*ADMIN),
                start="2026-02-01T00:00:00Z",
                end="2026-01-01T00:00:00Z",
            )
        )
        assert response.error.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_malformed_cursor(self, gateway, bearer):
        response = await gateway.handle(call("queryAuditLogs", bearer(*ADMIN), cursor="%%%"))
        assert response.error.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_non_admin_denied(self, gateway, bearer):
        response = await gateway.handle(call("queryAuditLogs", bearer("dr-1", "PROVIDER", "SERVICE_PROVIDER")))
        assert response.error.code == "FORBIDDEN"
