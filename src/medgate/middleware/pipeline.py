"""Middleware Composer.

A pipeline is an ordered list of middlewares wrapped around a business
handler, ``M1(M2(...Mn(H)))``. Pipelines are assembled once per operation
by ``PipelineBuilder``; per-call state lives only in ``CallContext``.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Type,
)

from pydantic import BaseModel

from medgate.auth.policy import Action
from medgate.auth.roles import Actor
from medgate.core.exceptions import InternalError, ValidationError

MUTATING_ACTIONS = frozenset({Action.CREATE, Action.UPDATE, Action.DELETE})


@dataclass(frozen=True)
class CallRequest:
    """Protocol-agnostic inbound call."""

    operation_name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    actor_credential: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CallRequest":
        """Parse ``{operationName, arguments, actorCredential}``."""
        if not isinstance(data, Mapping):
            raise ValidationError("Malformed call", details={"request": "must be an object"})
        name = data.get("operationName")
        if not isinstance(name, str) or not name:
            raise ValidationError(
                "Malformed call", details={"operationName": "field required"}
            )
        arguments = data.get("arguments") or {}
        if not isinstance(arguments, Mapping):
            raise ValidationError(
                "Malformed call", details={"arguments": "must be an object"}
            )
        credential = data.get("actorCredential")
        if credential is not None and not isinstance(credential, str):
            credential = None
        return cls(operation_name=name, arguments=dict(arguments), actor_credential=credential)


@dataclass(frozen=True)
class ErrorBody:
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


@dataclass
class CallResponse:
    """Outbound result: ``{ok: true, data}`` or ``{ok: false, error}``."""

    ok: bool
    data: Any = None
    error: Optional[ErrorBody] = None
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any = None, status_code: int = 200) -> "CallResponse":
        return cls(ok=True, data=data, status_code=status_code)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> "CallResponse":
        return cls(
            ok=False,
            error=ErrorBody(code=code, message=message, details=details),
            status_code=status_code,
            headers=dict(headers or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        if self.error is None:
            raise InternalError("Failure response without an error body")
        return {"ok": False, "error": self.error.to_dict()}


OperationHandler = Callable[["CallContext"], Awaitable[Any]]


@dataclass(frozen=True)
class OperationSpec:
    """Static description of one business operation."""

    name: str
    resource_type: str
    action: Action
    handler: OperationHandler
    phi_accessed: bool = False
    argument_model: Optional[Type[BaseModel]] = None
    # argument carrying the target resource id, if any
    resource_id_argument: Optional[str] = None
    capture_response: bool = True
    # arguments holding plaintext of encrypted fields; never audited
    protected_arguments: Tuple[str, ...] = ()

    @property
    def mutating(self) -> bool:
        return self.action in MUTATING_ACTIONS

    @property
    def stores_response(self) -> bool:
        """Response snapshots are never kept for PHI operations."""
        return self.capture_response and not self.phi_accessed


@dataclass
class CallContext:
    """Per-call state threaded through the pipeline. Never shared between calls."""

    request: CallRequest
    operation: OperationSpec
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=time.monotonic)
    actor: Optional[Actor] = None
    params: Optional[BaseModel] = None
    audit_entry_id: Optional[str] = None

    @property
    def arguments(self) -> Mapping[str, Any]:
        return self.request.arguments

    @property
    def resource_id(self) -> Optional[str]:
        name = self.operation.resource_id_argument
        if name is None:
            return None
        value = self.arguments.get(name)
        return None if value is None else str(value)


Handler = Callable[[CallContext], Awaitable[CallResponse]]


class Middleware(Protocol):
    """A cross-cutting step wrapped around the rest of the pipeline."""

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        ...


def _link(middleware: Middleware, call_next: Handler) -> Handler:
    async def step(ctx: CallContext) -> CallResponse:
        return await middleware(ctx, call_next)

    return step


def compose(middlewares: Sequence[Middleware], handler: Handler) -> Handler:
    """Wrap ``handler`` so that ``middlewares[0]`` runs outermost."""
    composed = handler
    for middleware in reversed(middlewares):
        composed = _link(middleware, composed)
    return composed


class Chain:
    """Several middlewares behaving as one.

    ``compose([Chain([a, b]), c], h)`` behaves exactly like
    ``compose([a, Chain([b, c])], h)`` and ``compose([a, b, c], h)``.
    """

    def __init__(self, middlewares: Iterable[Middleware]) -> None:
        self.middlewares: Tuple[Middleware, ...] = tuple(middlewares)

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        return await compose(self.middlewares, call_next)(ctx)


def operation_handler(operation: OperationSpec) -> Handler:
    """Innermost handler: run the business operation and wrap its result."""

    async def invoke(ctx: CallContext) -> CallResponse:
        data = await operation.handler(ctx)
        return CallResponse.success(data)

    return invoke


class PipelineBuilder:
    """Builds one pipeline per operation from a fixed middleware order."""

    def __init__(self, middlewares: Sequence[Middleware]) -> None:
        self.middlewares: Tuple[Middleware, ...] = tuple(middlewares)

    def build(self, operation: OperationSpec) -> Handler:
        return compose(self.middlewares, operation_handler(operation))


__all__ = [
    "CallRequest",
    "CallResponse",
    "CallContext",
    "ErrorBody",
    "OperationSpec",
    "Middleware",
    "Handler",
    "Chain",
    "compose",
    "operation_handler",
    "PipelineBuilder",
]
