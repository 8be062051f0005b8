"""Request validation middleware.

Operations declaring an argument model get their arguments parsed before
authorization and business logic run. Parse failures become a
``ValidationError`` whose details map dotted field paths to messages.
"""

from typing import Any, Dict, Iterable, Mapping

from pydantic import ValidationError as PydanticValidationError

from medgate.core.exceptions import ValidationError
from medgate.middleware.pipeline import CallContext, CallResponse, Handler

ARGUMENTS_FIELD = "arguments"


def format_errors(errors: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    """Flatten pydantic errors to ``{"field.path": "message"}``; first error per field wins."""
    details: Dict[str, str] = {}
    for error in errors:
        path = ".".join(str(part) for part in error.get("loc", ())) or ARGUMENTS_FIELD
        details.setdefault(path, str(error.get("msg", "Invalid value")))
    return details


class ValidationMiddleware:
    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        model = ctx.operation.argument_model
        if model is not None:
            try:
                ctx.params = model.model_validate(dict(ctx.arguments))
            except PydanticValidationError as e:
                # input values are not echoed back; they may hold PHI
                raise ValidationError(
                    "Invalid arguments",
                    details=format_errors(e.errors(include_input=False, include_url=False)),
                ) from e
        return await call_next(ctx)
