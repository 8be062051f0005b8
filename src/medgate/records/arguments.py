"""Argument models for the record operations.

Arguments arrive camelCased (``dateOfBirth``); unknown arguments are
rejected.
"""

import re
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from medgate.audit.models import as_utc

SSN_PATTERN = re.compile(r"^(\d{3})-?(\d{2})-?(\d{4})$")


def normalize_ssn(value: str) -> str:
    """Canonical ``123-45-6789`` form, so hashing is stable across inputs."""
    match = SSN_PATTERN.match(value.strip())
    if not match:
        raise ValueError("SSN must be 9 digits, optionally formatted as 123-45-6789")
    return "-".join(match.groups())


class ArgumentsModel(BaseModel):
    """Base model for operation arguments."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class ResourceIdArguments(ArgumentsModel):
    id: str = Field(min_length=1, max_length=36)


class ListPatientsArguments(ArgumentsModel):
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class SearchPatientsBySsnArguments(ArgumentsModel):
    ssn: str

    @field_validator("ssn")
    @classmethod
    def validate_ssn(cls, v: str) -> str:
        return normalize_ssn(v)


class CreatePatientArguments(ArgumentsModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=50)
    ssn: Optional[str] = None
    # identity-provider subject of the client the record belongs to
    user_id: Optional[str] = Field(default=None, max_length=255)

    @field_validator("ssn")
    @classmethod
    def validate_ssn(cls, v: Optional[str]) -> Optional[str]:
        return normalize_ssn(v) if v is not None else None

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return v


class UpdatePatientArguments(ArgumentsModel):
    id: str = Field(min_length=1, max_length=36)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=50)
    ssn: Optional[str] = None

    @field_validator("ssn")
    @classmethod
    def validate_ssn(cls, v: Optional[str]) -> Optional[str]:
        return normalize_ssn(v) if v is not None else None

    @model_validator(mode="after")
    def validate_has_changes(self) -> "UpdatePatientArguments":
        if not self.model_fields_set - {"id"}:
            raise ValueError("At least one field must be updated")
        return self


class DiagnosisArguments(ArgumentsModel):
    code: str = Field(min_length=2, max_length=20, pattern=r"^[A-Za-z0-9][A-Za-z0-9.]+$")
    description: Optional[str] = Field(default=None, max_length=255)


class CreateMedicalRecordArguments(ArgumentsModel):
    patient_id: str = Field(min_length=1, max_length=36)
    record_type: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    record_date: Optional[datetime] = None
    diagnoses: List[DiagnosisArguments] = Field(default_factory=list, max_length=50)


class ListMedicalRecordsArguments(ArgumentsModel):
    patient_id: Optional[str] = Field(default=None, max_length=36)
    provider_id: Optional[str] = Field(default=None, max_length=255)
    record_type: Optional[str] = Field(default=None, max_length=50)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_range(self) -> "ListMedicalRecordsArguments":
        if self.start and self.end and as_utc(self.start) > as_utc(self.end):
            raise ValueError("start must not be after end")
        return self


class UpdateMedicalRecordArguments(ArgumentsModel):
    id: str = Field(min_length=1, max_length=36)
    record_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    record_date: Optional[datetime] = None
    # replaces the whole diagnosis set when given
    diagnoses: Optional[List[DiagnosisArguments]] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def validate_has_changes(self) -> "UpdateMedicalRecordArguments":
        changed = self.model_fields_set - {"id"}
        if not any(getattr(self, name) is not None for name in changed):
            raise ValueError("At least one field must be updated")
        return self


class QueryAuditLogsArguments(ArgumentsModel):
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    phi_accessed: Optional[bool] = None
    limit: Optional[int] = Field(default=None, ge=1)
    cursor: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self) -> "QueryAuditLogsArguments":
        if self.start and self.end and as_utc(self.start) > as_utc(self.end):
            raise ValueError("start must not be after end")
        return self
