"""Medical record operations.

Record content is envelope-encrypted with the PHI Cipher and only
``getMedicalRecord`` decrypts it. A record and its diagnosis rows are
written and deleted in one transaction.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from medgate.audit.models import as_utc
from medgate.auth.roles import Role
from medgate.core.database import Database
from medgate.core.exceptions import NotFoundError
from medgate.middleware.pipeline import CallContext
from medgate.records.arguments import (
    CreateMedicalRecordArguments,
    DiagnosisArguments,
    ListMedicalRecordsArguments,
    ResourceIdArguments,
    UpdateMedicalRecordArguments,
)
from medgate.records.patients import utcnow_iso
from medgate.security.phi_cipher import PHICipher
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


def serialize_diagnosis(row: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": row["id"], "code": row["code"], "description": row["description"]}


def serialize_record(
    row: Dict[str, Any],
    diagnoses: Optional[List[Dict[str, Any]]] = None,
    content: Any = None,
) -> Dict[str, Any]:
    data = {
        "id": row["id"],
        "patientId": row["patient_id"],
        "recordType": row["record_type"],
        "title": row["title"],
        "providerId": row["provider_id"],
        "recordDate": row["record_date"],
        "createdAt": row["created_at"],
        "updatedAt": row.get("updated_at"),
    }
    if diagnoses is not None:
        data["diagnoses"] = [serialize_diagnosis(d) for d in diagnoses]
    if content is not None:
        data["content"] = content
    return data


def to_timestamp(value: datetime) -> str:
    """Stored form of record dates; UTC so text order is time order."""
    return as_utc(value).isoformat()


def _diagnosis_rows(
    record_id: str, diagnoses: Iterable[DiagnosisArguments], now: str
) -> List[Dict[str, Any]]:
    return [
        {
            "id": str(uuid.uuid4()),
            "medical_record_id": record_id,
            "code": diagnosis.code.upper(),
            "description": diagnosis.description,
            "created_at": now,
        }
        for diagnosis in diagnoses
    ]


class MedicalRecordService:
    def __init__(self, database: Database, cipher: PHICipher) -> None:
        self.database = database
        self.cipher = cipher

    async def get_medical_record(self, ctx: CallContext) -> Dict[str, Any]:
        args: ResourceIdArguments = ctx.params  # type: ignore[assignment]
        row = await self._fetch(args.id)
        diagnoses = await self.database.fetch_all(
            "SELECT * FROM diagnoses WHERE medical_record_id = :id ORDER BY code, id",
            {"id": args.id},
        )
        content = await self.cipher.decrypt(row["content_encrypted"])
        return serialize_record(row, diagnoses, content=content)

    async def list_medical_records(self, ctx: CallContext) -> Dict[str, Any]:
        """List record summaries. Content is never decrypted for lists.

        Providers listing without a patient filter see their own records.
        """
        args: ListMedicalRecordsArguments = ctx.params  # type: ignore[assignment]
        conditions: List[str] = []
        params: Dict[str, Any] = {"limit": args.limit, "offset": args.offset}

        provider_id = args.provider_id
        if ctx.actor and ctx.actor.role is Role.PROVIDER and not args.patient_id:
            provider_id = ctx.actor.id

        if args.patient_id:
            conditions.append("patient_id = :patient_id")
            params["patient_id"] = args.patient_id
        if provider_id:
            conditions.append("provider_id = :provider_id")
            params["provider_id"] = provider_id
        if args.record_type:
            conditions.append("record_type = :record_type")
            params["record_type"] = args.record_type
        if args.start:
            conditions.append("record_date >= :start")
            params["start"] = to_timestamp(args.start)
        if args.end:
            conditions.append("record_date <= :end")
            params["end"] = to_timestamp(args.end)

        where = f"WHERE {' AND '.join(conditions)} " if conditions else ""
        rows = await self.database.fetch_all(
            "SELECT id, patient_id, record_type, title, provider_id, record_date, "
            "created_at, updated_at FROM medical_records "
            f"{where}ORDER BY record_date DESC, id DESC LIMIT :limit OFFSET :offset",
            params,
        )
        return {
            "items": [serialize_record(row) for row in rows],
            "limit": args.limit,
            "offset": args.offset,
        }

    async def create_medical_record(self, ctx: CallContext) -> Dict[str, Any]:
        """Create a record with its diagnoses; nothing is written if any row fails."""
        args: CreateMedicalRecordArguments = ctx.params  # type: ignore[assignment]
        patient = await self.database.fetch_one(
            "SELECT id FROM patients WHERE id = :id", {"id": args.patient_id}
        )
        if patient is None:
            raise NotFoundError("Patient not found")

        # encrypt before the transaction opens; no KMS call holds a connection
        content_encrypted = await self.cipher.seal(args.content)

        now = utcnow_iso()
        record = {
            "id": str(uuid.uuid4()),
            "patient_id": args.patient_id,
            "record_type": args.record_type,
            "title": args.title,
            "content_encrypted": content_encrypted,
            "provider_id": ctx.actor.id if ctx.actor else "",
            "record_date": to_timestamp(args.record_date) if args.record_date else now,
            "created_at": now,
        }
        diagnoses = _diagnosis_rows(record["id"], args.diagnoses, now)

        async with self.database.transaction() as tx:
            await tx.insert("medical_records", record)
            for diagnosis in diagnoses:
                await tx.insert("diagnoses", diagnosis)

        logger.info(
            "medical_record_created",
            record_id=record["id"],
            patient_id=args.patient_id,
            diagnoses=len(diagnoses),
        )
        return serialize_record(record, diagnoses)

    async def update_medical_record(self, ctx: CallContext) -> Dict[str, Any]:
        """Update a record; a given diagnosis list replaces the stored one."""
        args: UpdateMedicalRecordArguments = ctx.params  # type: ignore[assignment]
        await self._fetch(args.id)

        now = utcnow_iso()
        changes: Dict[str, Any] = {
            "updated_at": now,
            "updated_by": ctx.actor.id if ctx.actor else "",
        }
        if args.record_type is not None:
            changes["record_type"] = args.record_type
        if args.title is not None:
            changes["title"] = args.title
        if args.record_date is not None:
            changes["record_date"] = to_timestamp(args.record_date)
        if args.content is not None:
            changes["content_encrypted"] = await self.cipher.seal(args.content)

        async with self.database.transaction() as tx:
            row = await tx.update("medical_records", args.id, changes)
            if row is None:
                raise NotFoundError("Medical record not found")
            if args.diagnoses is not None:
                await tx.execute(
                    "DELETE FROM diagnoses WHERE medical_record_id = :id", {"id": args.id}
                )
                for diagnosis in _diagnosis_rows(args.id, args.diagnoses, now):
                    await tx.insert("diagnoses", diagnosis)
            diagnoses = await tx.fetch_all(
                "SELECT * FROM diagnoses WHERE medical_record_id = :id ORDER BY code, id",
                {"id": args.id},
            )

        logger.info(
            "medical_record_updated",
            record_id=args.id,
            fields=sorted(name for name in changes if not name.startswith("updated_")),
        )
        return serialize_record(row, diagnoses)

    async def delete_medical_record(self, ctx: CallContext) -> Dict[str, Any]:
        args: ResourceIdArguments = ctx.params  # type: ignore[assignment]
        async with self.database.transaction() as tx:
            await tx.execute(
                "DELETE FROM diagnoses WHERE medical_record_id = :id", {"id": args.id}
            )
            if not await tx.delete("medical_records", args.id):
                raise NotFoundError("Medical record not found")
        logger.info("medical_record_deleted", record_id=args.id)
        return {"id": args.id, "deleted": True}

    async def _fetch(self, record_id: str) -> Dict[str, Any]:
        row = await self.database.fetch_one(
            "SELECT * FROM medical_records WHERE id = :id", {"id": record_id}
        )
        if row is None:
            raise NotFoundError("Medical record not found")
        return row
