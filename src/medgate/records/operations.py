"""Operation registry: call names mapped to their static specs."""

from typing import Dict, List

from medgate.audit.recorder import AuditRecorder
from medgate.auth.policy import Action, ResourceType
from medgate.core.database import Database
from medgate.middleware.pipeline import OperationSpec
from medgate.records.arguments import (
    CreateMedicalRecordArguments,
    CreatePatientArguments,
    ListMedicalRecordsArguments,
    ListPatientsArguments,
    QueryAuditLogsArguments,
    ResourceIdArguments,
    SearchPatientsBySsnArguments,
    UpdateMedicalRecordArguments,
    UpdatePatientArguments,
)
from medgate.records.audit_logs import AuditLogService
from medgate.records.medical_records import MedicalRecordService
from medgate.records.patients import PatientService
from medgate.security.phi_cipher import PHICipher

PATIENT = ResourceType.PATIENT.value
MEDICAL_RECORD = ResourceType.MEDICAL_RECORD.value
AUDIT_LOG = ResourceType.AUDIT_LOG.value

# plaintext of encrypted columns
PATIENT_PROTECTED = ("ssn",)
RECORD_PROTECTED = ("content",)


def build_operations(
    database: Database,
    cipher: PHICipher,
    recorder: AuditRecorder,
    audit_page_size: int = 50,
    audit_max_page_size: int = 100,
) -> Dict[str, OperationSpec]:
    """Create every operation with its collaborators bound once."""
    patients = PatientService(database, cipher)
    records = MedicalRecordService(database, cipher)
    audit_logs = AuditLogService(recorder, audit_page_size, audit_max_page_size)

    operations: List[OperationSpec] = [
        OperationSpec(
            name="getPatient",
            resource_type=PATIENT,
            action=Action.READ,
            handler=patients.get_patient,
            phi_accessed=True,
            argument_model=ResourceIdArguments,
            resource_id_argument="id",
        ),
        OperationSpec(
            name="listPatients",
            resource_type=PATIENT,
            action=Action.LIST,
            handler=patients.list_patients,
            phi_accessed=True,
            argument_model=ListPatientsArguments,
        ),
        OperationSpec(
            name="searchPatientsBySsn",
            resource_type=PATIENT,
            action=Action.SEARCH,
            handler=patients.search_patients_by_ssn,
            phi_accessed=True,
            argument_model=SearchPatientsBySsnArguments,
            protected_arguments=PATIENT_PROTECTED,
        ),
        OperationSpec(
            name="createPatient",
            resource_type=PATIENT,
            action=Action.CREATE,
            handler=patients.create_patient,
            phi_accessed=True,
            argument_model=CreatePatientArguments,
            protected_arguments=PATIENT_PROTECTED,
        ),
        OperationSpec(
            name="updatePatient",
            resource_type=PATIENT,
            action=Action.UPDATE,
            handler=patients.update_patient,
            phi_accessed=True,
            argument_model=UpdatePatientArguments,
            resource_id_argument="id",
            protected_arguments=PATIENT_PROTECTED,
        ),
        OperationSpec(
            name="deletePatient",
            resource_type=PATIENT,
            action=Action.DELETE,
            handler=patients.delete_patient,
            argument_model=ResourceIdArguments,
            resource_id_argument="id",
        ),
        OperationSpec(
            name="getMedicalRecord",
            resource_type=MEDICAL_RECORD,
            action=Action.READ,
            handler=records.get_medical_record,
            phi_accessed=True,
            argument_model=ResourceIdArguments,
            resource_id_argument="id",
        ),
        OperationSpec(
            name="createMedicalRecord",
            resource_type=MEDICAL_RECORD,
            action=Action.CREATE,
            handler=records.create_medical_record,
            phi_accessed=True,
            argument_model=CreateMedicalRecordArguments,
            protected_arguments=RECORD_PROTECTED,
        ),
        OperationSpec(
            name="listMedicalRecords",
            resource_type=MEDICAL_RECORD,
            action=Action.LIST,
            handler=records.list_medical_records,
            phi_accessed=True,
            argument_model=ListMedicalRecordsArguments,
        ),
        OperationSpec(
            name="updateMedicalRecord",
            resource_type=MEDICAL_RECORD,
            action=Action.UPDATE,
            handler=records.update_medical_record,
            phi_accessed=True,
            argument_model=UpdateMedicalRecordArguments,
            resource_id_argument="id",
            protected_arguments=RECORD_PROTECTED,
        ),
        OperationSpec(
            name="deleteMedicalRecord",
            resource_type=MEDICAL_RECORD,
            action=Action.DELETE,
            handler=records.delete_medical_record,
            argument_model=ResourceIdArguments,
            resource_id_argument="id",
        ),
        OperationSpec(
            name="queryAuditLogs",
            resource_type=AUDIT_LOG,
            action=Action.LIST,
            handler=audit_logs.query_audit_logs,
            argument_model=QueryAuditLogsArguments,
            # the page is itself audit data
            capture_response=False,
        ),
    ]
    return {operation.name: operation for operation in operations}


__all__ = ["build_operations"]
