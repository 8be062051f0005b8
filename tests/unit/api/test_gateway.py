"""End-to-end tests through the Gateway.

Every call goes through the full pipeline: error handling, security
headers, authentication, audit, validation, authorization, handler.
"""

import pytest

from medgate.audit.models import AuditOutcome
from medgate.middleware.pipeline import CallRequest


def call(operation, credential, **arguments):
    return {"operationName": operation, "arguments": arguments, "actorCredential": credential}


@pytest.mark.hipaa_required
@pytest.mark.audit_required
class TestScenarios:
    @pytest.mark.asyncio
    async def test_client_reads_own_record(self, gateway, bearer, seed, audit_entries):
        patient_id = seed.patient(user_id="u1")

        response = await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))

        assert response.ok, response.to_dict()
        assert response.data["id"] == patient_id
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.SUCCESS
        assert entry.phi_accessed is True
        assert entry.actor_id == "u1"
        assert entry.resource_id == patient_id

    @pytest.mark.asyncio
    async def test_client_reads_someone_elses_record(self, gateway, bearer, seed, audit_entries):
        patient_id = seed.patient(user_id="u2")

        response = await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))

        assert response.to_dict() == {
            "ok": False,
            "error": {"code": "FORBIDDEN", "message": "Access denied"},
        }
        assert response.status_code == 403
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE
        assert entry.error_code == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_denial_does_not_reveal_existence(self, gateway, bearer, seed):
        patient_id = seed.patient(user_id="u2")
        existing = await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))
        missing = await gateway.handle(call("getPatient", bearer("u1"), id="no-such-patient"))
        assert existing.to_dict() == missing.to_dict()

    @pytest.mark.asyncio
    async def test_client_cannot_delete_own_record(self, gateway, bearer, seed, audit_entries):
        patient_id = seed.patient(user_id="u1")

        response = await gateway.handle(call("deletePatient", bearer("u1"), id=patient_id))

        assert response.error.code == "FORBIDDEN"
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE

    @pytest.mark.asyncio
    async def test_admin_can_delete(self, gateway, bearer, seed):
        patient_id = seed.patient(user_id="u1")
        admin = bearer("admin-1", "ADMIN", "SERVICE_PROVIDER")

        response = await gateway.handle(call("deletePatient", admin, id=patient_id))
        assert response.data == {"id": patient_id, "deleted": True}

        again = await gateway.handle(call("getPatient", admin, id=patient_id))
        assert again.error.code == "NOT_FOUND"


@pytest.mark.audit_required
class TestSecurityEvents:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [None, "Bearer garbage", "Bearer a.b.c"])
    async def test_authentication_failure_audited_once(self, gateway, credential, audit_entries):
        response = await gateway.handle(call("getPatient", credential, id="p1"))

        assert response.status_code == 401
        assert response.to_dict()["error"] == {"code": "UNAUTHORIZED", "message": "Unauthorized"}
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE
        assert entry.actor_id == "anonymous"
        assert entry.error_code == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_expired_token(self, gateway, bearer, audit_entries):
        response = await gateway.handle(call("listPatients", bearer("u1", expires_in=-10)))
        assert response.error.code == "UNAUTHORIZED"
        assert response.error.message == "Unauthorized"
        assert len(audit_entries()) == 1

    @pytest.mark.asyncio
    async def test_role_denial_audited_once(self, gateway, bearer, audit_entries):
        response = await gateway.handle(call("queryAuditLogs", bearer("n1", "NURSE", "SERVICE_PROVIDER")))
        assert response.error.code == "FORBIDDEN"
        assert len(audit_entries()) == 1

    @pytest.mark.asyncio
    async def test_credentials_never_reach_audit(self, gateway, bearer, audit_entries):
        await gateway.handle(
            call("listPatients", bearer("u1"), password="hunter2", token="abc")
        )
        (entry,) = audit_entries()
        assert "hunter2" not in repr(entry)
        assert entry.request_snapshot["password"] == "***REDACTED***"

    @pytest.mark.asyncio
    @pytest.mark.phi_encryption
    async def test_record_content_never_reaches_audit(self, gateway, bearer, seed, audit_entries):
        patient_id = seed.patient(user_id="u1")
        provider = bearer("dr-1", "PROVIDER", "SERVICE_PROVIDER")

        response = await gateway.handle(
            call(
                "createMedicalRecord",
                provider,
                patientId=patient_id,
                recordType="consultation",
                title="Visit",
                content="HIV positive; confidential",
            )
        )

        assert response.ok, response.to_dict()
        (entry,) = audit_entries()
        assert entry.request_snapshot["content"] == "***REDACTED***"
        assert entry.request_snapshot["title"] == "Visit"
        assert "HIV positive" not in repr(entry)

    @pytest.mark.asyncio
    @pytest.mark.phi_encryption
    async def test_rejected_call_redacts_protected_arguments(self, gateway, audit_entries):
        await gateway.handle(
            call("createMedicalRecord", None, patientId="p1", content="HIV positive")
        )
        (entry,) = audit_entries()
        assert entry.error_code == "UNAUTHORIZED"
        assert entry.request_snapshot["content"] == "***REDACTED***"


class TestErrorResponses:
    @pytest.mark.asyncio
    async def test_unknown_operation(self, gateway, bearer, audit_entries):
        response = await gateway.handle(call("dropTables", bearer("u1")))
        assert response.status_code == 400
        assert response.error.details == {"operationName": "unknown operation"}
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_malformed_call(self, gateway):
        response = await gateway.handle({"arguments": {}})
        assert response.error.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_validation_details(self, gateway, bearer, audit_entries):
        admin = bearer("admin-1", "ADMIN", "SERVICE_PROVIDER")
        response = await gateway.handle(call("createPatient", admin, firstName="", ssn="12"))

        assert response.status_code == 400
        assert {"firstName", "lastName", "ssn"} <= set(response.error.details)
        (entry,) = audit_entries()
        assert entry.error_code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_error_responses_are_not_cacheable(self, gateway):
        response = await gateway.handle(call("getPatient", None, id="p1"))
        assert "no-store" in response.headers["Cache-Control"]

    @pytest.mark.asyncio
    async def test_success_responses_carry_security_headers(self, gateway, bearer):
        admin = bearer("admin-1", "ADMIN", "SERVICE_PROVIDER")
        response = await gateway.handle(CallRequest("listPatients", {}, admin))
        assert response.ok
        assert response.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_crypto_failure_is_generic(self, gateway, bearer, seed, audit_entries):
        patient_id = seed.patient(user_id="u1", ssn_encrypted="bm90LWEta21zLXRva2Vu")

        response = await gateway.handle(call("getPatient", bearer("u1"), id=patient_id))

        assert response.status_code == 500
        assert response.to_dict()["error"] == {
            "code": "CRYPTO_ERROR",
            "message": "An unexpected error occurred",
        }
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE
        assert entry.error_code == "CRYPTO_ERROR"

    @pytest.mark.asyncio
    async def test_handle_dict(self, gateway, bearer):
        admin = bearer("admin-1", "ADMIN", "SERVICE_PROVIDER")
        result = await gateway.handle_dict(call("listPatients", admin, limit=5))
        assert result == {"ok": True, "data": {"items": [], "limit": 5, "offset": 0}}

    def test_operation_names(self, gateway):
        assert set(gateway.operation_names) == {
            "getPatient",
            "listPatients",
            "searchPatientsBySsn",
            "createPatient",
            "updatePatient",
            "deletePatient",
            "getMedicalRecord",
            "createMedicalRecord",
            "listMedicalRecords",
            "updateMedicalRecord",
            "deleteMedicalRecord",
            "queryAuditLogs",
        }
