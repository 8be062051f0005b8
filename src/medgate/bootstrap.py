"""Wiring: builds the Gateway with every collaborator injected once."""

from typing import Optional

from sqlalchemy.engine import Engine

from medgate.api.gateway import Gateway
from medgate.api.responder import ErrorResponder
from medgate.audit.recorder import AuditRecorder
from medgate.audit.store import SQLAlchemyAuditStore
from medgate.auth.authorization import AuthorizationEngine
from medgate.auth.identity import IdentityResolver, JoseTokenVerifier, TokenVerifier
from medgate.auth.ownership import DatabaseOwnershipResolver, OwnershipResolver
from medgate.auth.policy import AccessPolicy
from medgate.config import Settings, get_settings
from medgate.core.database import Database, create_database_engine
from medgate.middleware.audit import AuditMiddleware
from medgate.middleware.authentication import AuthenticationMiddleware
from medgate.middleware.authorization import AuthorizationMiddleware
from medgate.middleware.error_handler import ErrorHandlingMiddleware
from medgate.middleware.pipeline import PipelineBuilder
from medgate.middleware.security_headers import SecurityHeadersMiddleware
from medgate.middleware.validation import ValidationMiddleware
from medgate.records.operations import build_operations
from medgate.records.schema import metadata as records_metadata
from medgate.security.key_management import AwsKmsClient, KeyManagementClient
from medgate.security.phi_cipher import PHICipher
from medgate.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_gateway(
    settings: Optional[Settings] = None,
    *,
    kms_client: Optional[KeyManagementClient] = None,
    token_verifier: Optional[TokenVerifier] = None,
    engine: Optional[Engine] = None,
    audit_engine: Optional[Engine] = None,
    ownership: Optional[OwnershipResolver] = None,
    create_schema: bool = False,
    configure_logging: bool = True,
) -> Gateway:
    """Create the Gateway.

    Args:
        settings: Application settings; the cached environment settings by default
        kms_client: Key-management capability; AWS KMS by default
        token_verifier: Identity-provider capability; python-jose JWT verification by default
        engine: Engine for the records database
        audit_engine: Engine for the audit store; the records engine unless
            ``audit_database_url`` is configured
        ownership: Ownership predicate; database lookups by default
        create_schema: Create tables on startup (development and tests only)
        configure_logging: Configure structlog from ``settings``

    Returns:
        A Gateway with one pipeline per operation
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    engine = engine or create_database_engine(settings.database_url)
    if audit_engine is None:
        audit_url = settings.effective_audit_database_url
        audit_engine = (
            engine if audit_url == settings.database_url else create_database_engine(audit_url)
        )

    database = Database(engine, timeout_seconds=settings.database_timeout_seconds)
    if create_schema:
        database.create_schema(records_metadata)

    cipher = PHICipher(
        kms_client
        or AwsKmsClient(
            region=settings.aws_region,
            endpoint_url=settings.kms_endpoint_url,
            timeout_seconds=settings.kms_timeout_seconds,
        ),
        key_id=settings.kms_key_id,
        timeout_seconds=settings.kms_timeout_seconds,
        max_attempts=settings.kms_max_attempts,
    )

    identity = IdentityResolver(
        token_verifier
        or JoseTokenVerifier(
            key=settings.jwt_verification_key,
            algorithms=settings.jwt_algorithms,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        ),
        role_claim=settings.role_claim,
        category_claim=settings.category_claim,
        timeout_seconds=settings.identity_timeout_seconds,
    )

    recorder = AuditRecorder(
        SQLAlchemyAuditStore(audit_engine, create_schema=create_schema),
        retention_days=settings.audit_retention_days,
        timeout_seconds=settings.audit_timeout_seconds,
    )

    authorization = AuthorizationEngine(
        AccessPolicy.load(settings.access_policy_path),
        ownership or DatabaseOwnershipResolver(database),
    )

    responder = ErrorResponder(recorder)
    builder = PipelineBuilder(
        [
            ErrorHandlingMiddleware(responder),
            SecurityHeadersMiddleware(settings.environment),
            AuthenticationMiddleware(identity),
            AuditMiddleware(recorder),
            ValidationMiddleware(),
            AuthorizationMiddleware(authorization),
        ]
    )

    operations = build_operations(
        database,
        cipher,
        recorder,
        audit_page_size=settings.audit_page_size,
        audit_max_page_size=settings.audit_max_page_size,
    )
    logger.info(
        "medgate_initialized",
        environment=settings.environment,
        operations=len(operations),
    )
    return Gateway(builder, operations, responder)


__all__ = ["create_gateway"]
