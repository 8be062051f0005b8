"""Tables behind the record operations.

Protected columns (``*_encrypted``) only ever hold EncryptedField values.
Ownership lookups read ``patients.user_id`` and the foreign keys that lead
to it, never protected content. Migrations are managed outside MedGate;
``metadata.create_all`` is for development and tests. Dates and
timestamps are stored as ISO-8601 text in UTC.
"""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

patients = Table(
    "patients",
    metadata,
    Column("id", String(36), primary_key=True),
    # identity-provider subject of the client this record belongs to
    Column("user_id", String(255), nullable=True, index=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("date_of_birth", String(10), nullable=True),
    Column("email", String(255), nullable=True),
    Column("phone", String(50), nullable=True),
    Column("ssn_encrypted", Text, nullable=True),
    Column("ssn_hash", String(64), nullable=True, index=True),
    Column("ssn_masked", String(32), nullable=True),
    Column("created_by", String(255), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

patient_guardians = Table(
    "patient_guardians",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("patients.id"), nullable=False),
    Column("guardian_id", String(255), nullable=False),
    Column("relationship", String(50), nullable=True),
    Column("active", Boolean, nullable=False, default=True),
    UniqueConstraint("patient_id", "guardian_id", name="uq_patient_guardian"),
    Index("ix_patient_guardians_guardian", "guardian_id"),
)

medical_records = Table(
    "medical_records",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("patients.id"), nullable=False, index=True),
    Column("record_type", String(50), nullable=False),
    Column("title", String(255), nullable=False),
    Column("content_encrypted", Text, nullable=False),
    Column("provider_id", String(255), nullable=False),
    Column("record_date", String(40), nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=True),
    Column("updated_by", String(255), nullable=True),
)

diagnoses = Table(
    "diagnoses",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "medical_record_id",
        String(36),
        ForeignKey("medical_records.id"),
        nullable=False,
        index=True,
    ),
    Column("code", String(20), nullable=False),
    Column("description", String(255), nullable=True),
    Column("created_at", String(40), nullable=False),
)
