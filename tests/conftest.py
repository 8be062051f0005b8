"""Test configuration for MedGate.

External capabilities are replaced by in-process doubles: an AES-GCM
backed key-management service, HS256 tokens signed with python-jose and
in-memory SQLite engines.
"""

import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import jwt
from sqlalchemy import insert

from medgate.audit.models import AuditEntry, AuditQuery
from medgate.audit.recorder import AuditRecorder
from medgate.audit.store import SQLAlchemyAuditStore
from medgate.bootstrap import create_gateway
from medgate.config import Settings
from medgate.core.database import Database, create_database_engine
from medgate.core.exceptions import CryptoError
from medgate.records.schema import medical_records, metadata, patient_guardians, patients
from medgate.security.key_management import DataKey
from medgate.security.phi_cipher import PHICipher

TEST_KEY_ID = "alias/medgate-test"
TEST_JWT_SECRET = "medgate-test-signing-secret-not-for-production"


def pytest_configure(config):
    """Register custom markers for compliance-critical tests."""
    config.addinivalue_line(
        "markers", "hipaa_required: mark test as requiring HIPAA compliance"
    )
    config.addinivalue_line(
        "markers", "phi_encryption: mark test as requiring PHI encryption"
    )
    config.addinivalue_line(
        "markers", "audit_required: mark test as requiring audit logging"
    )


class InMemoryKms:
    """Key-management double with real AES-GCM under per-key master keys."""

    def __init__(self) -> None:
        self.master_keys: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self.failures: List[BaseException] = []

    def fail_next(self, *errors: BaseException) -> None:
        """Raise ``errors`` on the next calls, in order."""
        self.failures.extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if self.failures:
            raise self.failures.pop(0)

    def _key(self, key_id: str) -> bytes:
        return self.master_keys.setdefault(key_id, AESGCM.generate_key(bit_length=256))

    def _wrap(self, key_id: str, plaintext: bytes) -> bytes:
        nonce = os.urandom(12)
        sealed = AESGCM(self._key(key_id)).encrypt(nonce, plaintext, key_id.encode())
        return b"|".join([b"kms1", key_id.encode(), nonce + sealed])

    def encrypt(self, key_id: str, plaintext: bytes) -> bytes:
        self._maybe_fail("encrypt")
        return self._wrap(key_id, plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        self._maybe_fail("decrypt")
        parts = ciphertext.split(b"|", 2)
        if len(parts) != 3 or parts[0] != b"kms1":
            raise CryptoError("KMS decrypt failed")
        key_id = parts[1].decode()
        if key_id not in self.master_keys:
            raise CryptoError("KMS decrypt failed")
        nonce, sealed = parts[2][:12], parts[2][12:]
        try:
            return AESGCM(self.master_keys[key_id]).decrypt(nonce, sealed, parts[1])
        except InvalidTag as e:
            raise CryptoError("KMS decrypt failed") from e

    def generate_data_key(self, key_id: str) -> DataKey:
        self._maybe_fail("generate_data_key")
        plaintext = AESGCM.generate_key(bit_length=256)
        return DataKey(plaintext=plaintext, encrypted=self._wrap(key_id, plaintext))


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        environment="testing",
        kms_key_id=TEST_KEY_ID,
        jwt_verification_key=TEST_JWT_SECRET,
        jwt_algorithms=["HS256"],
        database_url="sqlite://",
        kms_timeout_seconds=2.0,
        kms_max_attempts=2,
    )


@pytest.fixture
def kms() -> InMemoryKms:
    return InMemoryKms()


@pytest.fixture
def cipher(kms) -> PHICipher:
    return PHICipher(kms, key_id=TEST_KEY_ID, timeout_seconds=2.0, max_attempts=2)


@pytest.fixture
def engine():
    """In-memory SQLite engine with every table created."""
    engine = create_database_engine("sqlite://")
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine) -> Database:
    return Database(engine, timeout_seconds=5.0)


@pytest.fixture
def audit_store(engine) -> SQLAlchemyAuditStore:
    return SQLAlchemyAuditStore(engine, create_schema=True)


@pytest.fixture
def recorder(audit_store) -> AuditRecorder:
    return AuditRecorder(audit_store, timeout_seconds=5.0)


@pytest.fixture
def audit_entries(audit_store) -> Callable[..., List[AuditEntry]]:
    """Read back the audit trail, newest first."""

    def read(**filters: Any) -> List[AuditEntry]:
        return audit_store.query(AuditQuery(limit=500, **filters)).items

    return read


@pytest.fixture
def token_factory() -> Callable[..., str]:
    """Sign identity tokens the way the identity provider would."""

    def make(
        sub: str,
        role: Optional[str] = "PATIENT",
        user_type: Optional[str] = "CLIENT",
        email: str = "user@example.org",
        expires_in: int = 3600,
        **extra: Any,
    ) -> str:
        now = int(time.time())
        claims: Dict[str, Any] = {
            "sub": sub,
            "email": email,
            "iat": now,
            "exp": now + expires_in,
        }
        if role is not None:
            claims["custom:role"] = role
        if user_type is not None:
            claims["custom:userType"] = user_type
        claims.update(extra)
        return jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")

    return make


@pytest.fixture
def bearer(token_factory) -> Callable[..., str]:
    def make(*args: Any, **kwargs: Any) -> str:
        return f"Bearer {token_factory(*args, **kwargs)}"

    return make


@pytest.fixture
def gateway(settings, kms, engine):
    return create_gateway(
        settings,
        kms_client=kms,
        engine=engine,
        create_schema=True,
        configure_logging=False,
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@pytest.fixture
def seed(engine) -> Any:
    """Insert rows directly, bypassing the pipeline."""

    class Seeder:
        def patient(self, user_id: Optional[str] = None, **values: Any) -> str:
            row = {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "first_name": "Jane",
                "last_name": "Doe",
                "created_by": "seed",
                "created_at": _now(),
                "updated_at": _now(),
            }
            row.update(values)
            with engine.begin() as conn:
                conn.execute(insert(patients).values(**row))
            return row["id"]

        def guardian(self, patient_id: str, guardian_id: str, active: bool = True) -> None:
            with engine.begin() as conn:
                conn.execute(
                    insert(patient_guardians).values(
                        id=str(uuid.uuid4()),
                        patient_id=patient_id,
                        guardian_id=guardian_id,
                        relationship="parent",
                        active=active,
                    )
                )

        def medical_record(self, patient_id: str, content_encrypted: str = "opaque") -> str:
            record_id = str(uuid.uuid4())
            with engine.begin() as conn:
                conn.execute(
                    insert(medical_records).values(
                        id=record_id,
                        patient_id=patient_id,
                        record_type="consultation",
                        title="Visit",
                        content_encrypted=content_encrypted,
                        provider_id="provider-1",
                        record_date=_now(),
                        created_at=_now(),
                    )
                )
            return record_id

    return Seeder()
