"""Tests for the individual middlewares."""

import pytest
from pydantic import BaseModel, Field

from medgate.auth.policy import Action
from medgate.auth.roles import Actor, ActorCategory, Role
from medgate.audit.models import AuditOutcome
from medgate.core.exceptions import AuthorizationError, ValidationError
from medgate.middleware.audit import AuditMiddleware
from medgate.middleware.pipeline import CallContext, CallRequest, CallResponse, OperationSpec
from medgate.middleware.security_headers import SecurityHeadersMiddleware
from medgate.middleware.validation import ValidationMiddleware


class Arguments(BaseModel):
    name: str = Field(min_length=1)
    age: int = Field(ge=0)


async def noop(ctx):
    return None


def make_ctx(arguments=None, **fields):
    values = dict(name="op", resource_type="DOC", action=Action.READ, handler=noop)
    values.update(fields)
    ctx = CallContext(request=CallRequest("op", arguments or {}), operation=OperationSpec(**values))
    ctx.actor = Actor(id="u1", role=Role.NURSE, category=ActorCategory.SERVICE_PROVIDER)
    return ctx


async def ok(ctx):
    return CallResponse.success({"id": "new-1", "password": "pw"})


class TestValidationMiddleware:
    @pytest.mark.asyncio
    async def test_parses_arguments(self):
        ctx = make_ctx({"name": "Jane", "age": 30}, argument_model=Arguments)
        await ValidationMiddleware()(ctx, ok)
        assert ctx.params == Arguments(name="Jane", age=30)

    @pytest.mark.asyncio
    async def test_errors_become_details(self):
        ctx = make_ctx({"name": "", "age": -1}, argument_model=Arguments)
        with pytest.raises(ValidationError) as exc_info:
            await ValidationMiddleware()(ctx, ok)
        assert set(exc_info.value.details) == {"name", "age"}

    @pytest.mark.asyncio
    async def test_input_values_not_echoed(self):
        ctx = make_ctx({"name": "123-45-6789", "age": "x"}, argument_model=Arguments)
        with pytest.raises(ValidationError) as exc_info:
            await ValidationMiddleware()(ctx, ok)
        assert "123-45-6789" not in repr(exc_info.value.details)

    @pytest.mark.asyncio
    async def test_without_model(self):
        ctx = make_ctx({"anything": 1})
        assert (await ValidationMiddleware()(ctx, ok)).ok
        assert ctx.params is None


class TestSecurityHeadersMiddleware:
    @pytest.mark.asyncio
    async def test_success_gets_headers(self):
        async def leaky(ctx):
            response = CallResponse.success("x")
            response.headers["Server"] = "nginx"
            return response

        response = await SecurityHeadersMiddleware("production")(make_ctx(), leaky)
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")
        assert "no-store" in response.headers["Cache-Control"]
        assert "Server" not in response.headers

    @pytest.mark.asyncio
    async def test_development_hsts(self):
        response = await SecurityHeadersMiddleware("development")(make_ctx(), ok)
        assert response.headers["Strict-Transport-Security"] == "max-age=3600"

    @pytest.mark.asyncio
    async def test_failure_untouched(self):
        async def failing(ctx):
            return CallResponse.failure("NOT_FOUND", "Resource not found", 404)

        response = await SecurityHeadersMiddleware()(make_ctx(), failing)
        assert "X-Frame-Options" not in response.headers


@pytest.mark.audit_required
class TestAuditMiddleware:
    @pytest.mark.asyncio
    async def test_success_entry(self, recorder, audit_entries):
        ctx = make_ctx({"name": "Jane"}, action=Action.CREATE)
        await AuditMiddleware(recorder)(ctx, ok)

        (entry,) = audit_entries()
        assert entry.id == ctx.audit_entry_id
        assert entry.outcome == AuditOutcome.SUCCESS
        assert entry.actor_id == "u1"
        # created id is attached once known
        assert entry.resource_id == "new-1"
        assert entry.response_snapshot == {"id": "new-1", "password": "***REDACTED***"}

    @pytest.mark.asyncio
    async def test_protected_arguments_redacted(self, recorder, audit_entries):
        ctx = make_ctx({"content": "diagnosis text", "title": "Visit"}, protected_arguments=("content",))
        await AuditMiddleware(recorder)(ctx, ok)
        (entry,) = audit_entries()
        assert entry.request_snapshot == {"content": "***REDACTED***", "title": "Visit"}

    @pytest.mark.asyncio
    async def test_phi_operation_keeps_no_response(self, recorder, audit_entries):
        ctx = make_ctx(phi_accessed=True)
        await AuditMiddleware(recorder)(ctx, ok)
        (entry,) = audit_entries()
        assert entry.phi_accessed is True
        assert entry.response_snapshot is None

    @pytest.mark.asyncio
    async def test_raised_error_is_failure(self, recorder, audit_entries):
        async def deny(ctx):
            raise AuthorizationError("Access denied: not_owner")

        with pytest.raises(AuthorizationError):
            await AuditMiddleware(recorder)(make_ctx(), deny)
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE
        assert entry.error_code == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_failure_response_is_failure(self, recorder, audit_entries):
        async def failing(ctx):
            return CallResponse.failure("NOT_FOUND", "Resource not found", 404)

        await AuditMiddleware(recorder)(make_ctx(), failing)
        (entry,) = audit_entries()
        assert entry.outcome == AuditOutcome.FAILURE
        assert entry.error_code == "NOT_FOUND"
