"""Base configuration settings.

Note: secrets (verification keys, key identifiers) are read from the
environment and must never be logged.
"""

import warnings
from typing import List, Optional

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SECURE_ENVIRONMENTS = ("production", "staging")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "MedGate"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"

    # Key management
    aws_region: str = "us-east-1"
    kms_key_id: str = Field(default="", validate_default=True)
    kms_endpoint_url: Optional[str] = None
    kms_timeout_seconds: float = Field(default=5.0, gt=0)
    kms_max_attempts: int = Field(default=3, ge=1, le=5)

    # Identity provider
    jwt_verification_key: str = Field(default="", validate_default=True)
    jwt_algorithms: List[str] = ["RS256"]
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None
    role_claim: str = "custom:role"
    category_claim: str = "custom:userType"
    identity_timeout_seconds: float = Field(default=3.0, gt=0)

    # Persistence
    database_url: str = "sqlite:///./medgate.db"
    database_timeout_seconds: float = Field(default=10.0, gt=0)

    # Audit trail
    audit_database_url: Optional[str] = None
    audit_retention_days: int = Field(default=7 * 365, gt=0)
    audit_page_size: int = Field(default=50, ge=1)
    audit_max_page_size: int = Field(default=100, ge=1)
    audit_timeout_seconds: float = Field(default=2.0, gt=0)

    # Authorization
    access_policy_path: Optional[str] = None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only console and json renderers are supported."""
        if v not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {v!r}")
        return v

    @field_validator("kms_key_id", "jwt_verification_key")
    @classmethod
    def validate_security_material(cls, v: str, info: ValidationInfo) -> str:
        """Fail closed when security material is missing outside development."""
        if v:
            return v
        env = (info.data.get("environment") or "development").lower()
        if env in SECURE_ENVIRONMENTS:
            raise ValueError(
                f"{info.field_name} must be set in the {env} environment"
            )
        warnings.warn(
            f"SECURITY WARNING: {info.field_name} is not set. "
            f"PHI operations will fail until it is configured.",
            stacklevel=2,
        )
        return v

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "Settings":
        """Default page size must fit inside the maximum page size."""
        if self.audit_page_size > self.audit_max_page_size:
            raise ValueError("audit_page_size must not exceed audit_max_page_size")
        return self

    @property
    def effective_audit_database_url(self) -> str:
        """Audit store URL, falling back to the primary database."""
        return self.audit_database_url or self.database_url
