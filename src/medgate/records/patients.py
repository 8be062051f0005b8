"""Patient operations.

The SSN is stored three ways: encrypted (``ssn_encrypted``), hashed for
equality search (``ssn_hash``) and masked for list views (``ssn_masked``).
Only ``getPatient`` decrypts it.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from medgate.core.database import Database
from medgate.core.exceptions import ConflictError, NotFoundError
from medgate.middleware.pipeline import CallContext
from medgate.records.arguments import (
    CreatePatientArguments,
    ListPatientsArguments,
    ResourceIdArguments,
    SearchPatientsBySsnArguments,
    UpdatePatientArguments,
)
from medgate.security.phi_cipher import PHICipher
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

SSN_VISIBLE_CHARS = 2


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_patient(row: Dict[str, Any], ssn: Optional[str] = None) -> Dict[str, Any]:
    """External form of a patient row. Protected columns never leave as stored."""
    data = {
        "id": row["id"],
        "userId": row["user_id"],
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "dateOfBirth": row["date_of_birth"],
        "email": row["email"],
        "phone": row["phone"],
        "ssnMasked": row["ssn_masked"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    if ssn is not None:
        data["ssn"] = ssn
    return data


class PatientService:
    """Patient handlers. Authorization has already passed when these run."""

    def __init__(self, database: Database, cipher: PHICipher) -> None:
        self.database = database
        self.cipher = cipher

    async def get_patient(self, ctx: CallContext) -> Dict[str, Any]:
        args: ResourceIdArguments = ctx.params  # type: ignore[assignment]
        row = await self._fetch(args.id)
        ssn = None
        if row["ssn_encrypted"]:
            ssn = await self.cipher.decrypt(row["ssn_encrypted"])
        return serialize_patient(row, ssn=ssn)

    async def list_patients(self, ctx: CallContext) -> Dict[str, Any]:
        args: ListPatientsArguments = ctx.params  # type: ignore[assignment]
        rows = await self.database.fetch_all(
            "SELECT * FROM patients ORDER BY last_name, first_name, id "
            "LIMIT :limit OFFSET :offset",
            {"limit": args.limit, "offset": args.offset},
        )
        return {
            "items": [serialize_patient(row) for row in rows],
            "limit": args.limit,
            "offset": args.offset,
        }

    async def search_patients_by_ssn(self, ctx: CallContext) -> Dict[str, Any]:
        args: SearchPatientsBySsnArguments = ctx.params  # type: ignore[assignment]
        rows = await self.database.fetch_all(
            "SELECT * FROM patients WHERE ssn_hash = :ssn_hash ORDER BY id",
            {"ssn_hash": self.cipher.hash(args.ssn)},
        )
        return {"items": [serialize_patient(row) for row in rows]}

    async def create_patient(self, ctx: CallContext) -> Dict[str, Any]:
        args: CreatePatientArguments = ctx.params  # type: ignore[assignment]
        now = utcnow_iso()
        values: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "user_id": args.user_id,
            "first_name": args.first_name,
            "last_name": args.last_name,
            "date_of_birth": args.date_of_birth.isoformat() if args.date_of_birth else None,
            "email": args.email,
            "phone": args.phone,
            "ssn_encrypted": None,
            "ssn_hash": None,
            "ssn_masked": None,
            "created_by": ctx.actor.id if ctx.actor else "",
            "created_at": now,
            "updated_at": now,
        }
        if args.ssn is not None:
            await self._ensure_unique_ssn(args.ssn)
            values.update(await self._protect_ssn(args.ssn))

        row = await self.database.insert("patients", values)
        logger.info("patient_created", patient_id=row["id"], actor_id=values["created_by"])
        return serialize_patient(row)

    async def update_patient(self, ctx: CallContext) -> Dict[str, Any]:
        args: UpdatePatientArguments = ctx.params  # type: ignore[assignment]
        changes = args.model_dump(exclude_unset=True, exclude={"id", "ssn"})
        if "date_of_birth" in changes and changes["date_of_birth"] is not None:
            changes["date_of_birth"] = changes["date_of_birth"].isoformat()
        if "ssn" in args.model_fields_set:
            if args.ssn is None:
                changes.update({"ssn_encrypted": None, "ssn_hash": None, "ssn_masked": None})
            else:
                await self._ensure_unique_ssn(args.ssn, exclude_id=args.id)
                changes.update(await self._protect_ssn(args.ssn))
        changes["updated_at"] = utcnow_iso()

        row = await self.database.update("patients", args.id, changes)
        if row is None:
            raise NotFoundError("Patient not found")
        logger.info("patient_updated", patient_id=args.id, fields=sorted(changes))
        return serialize_patient(row)

    async def delete_patient(self, ctx: CallContext) -> Dict[str, Any]:
        args: ResourceIdArguments = ctx.params  # type: ignore[assignment]
        params = {"patient_id": args.id}
        async with self.database.transaction() as tx:
            await tx.execute(
                "DELETE FROM diagnoses WHERE medical_record_id IN "
                "(SELECT id FROM medical_records WHERE patient_id = :patient_id)",
                params,
            )
            await tx.execute("DELETE FROM medical_records WHERE patient_id = :patient_id", params)
            await tx.execute(
                "DELETE FROM patient_guardians WHERE patient_id = :patient_id", params
            )
            if not await tx.delete("patients", args.id):
                raise NotFoundError("Patient not found")
        logger.info("patient_deleted", patient_id=args.id)
        return {"id": args.id, "deleted": True}

    async def _fetch(self, patient_id: str) -> Dict[str, Any]:
        row = await self.database.fetch_one(
            "SELECT * FROM patients WHERE id = :id", {"id": patient_id}
        )
        if row is None:
            raise NotFoundError("Patient not found")
        return row

    async def _protect_ssn(self, ssn: str) -> Dict[str, str]:
        return {
            "ssn_encrypted": await self.cipher.encrypt(ssn),
            "ssn_hash": self.cipher.hash(ssn),
            "ssn_masked": self.cipher.mask(ssn, SSN_VISIBLE_CHARS),
        }

    async def _ensure_unique_ssn(self, ssn: str, exclude_id: Optional[str] = None) -> None:
        rows: List[Dict[str, Any]] = await self.database.fetch_all(
            "SELECT id FROM patients WHERE ssn_hash = :ssn_hash",
            {"ssn_hash": self.cipher.hash(ssn)},
        )
        if any(row["id"] != exclude_id for row in rows):
            raise ConflictError("Patient with this SSN already exists")
