"""Gateway: dispatches calls to the pipeline prebuilt for each operation."""

from typing import Any, Dict, Mapping, Tuple, Union

from medgate.api.responder import ErrorResponder
from medgate.core.exceptions import ValidationError
from medgate.middleware.pipeline import (
    CallContext,
    CallRequest,
    CallResponse,
    Handler,
    OperationSpec,
    PipelineBuilder,
)
from medgate.utils.logging import get_logger

logger = get_logger(__name__)


class Gateway:
    """Entry point for ``{operationName, arguments, actorCredential}`` calls."""

    def __init__(
        self,
        builder: PipelineBuilder,
        operations: Mapping[str, OperationSpec],
        responder: ErrorResponder,
    ) -> None:
        self.responder = responder
        # built once; calls only look pipelines up
        self._pipelines: Dict[str, Tuple[OperationSpec, Handler]] = {
            name: (operation, builder.build(operation))
            for name, operation in operations.items()
        }
        logger.info("gateway_ready", operations=sorted(self._pipelines))

    @property
    def operation_names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._pipelines))

    async def handle(self, request: Union[CallRequest, Mapping[str, Any]]) -> CallResponse:
        try:
            call = request if isinstance(request, CallRequest) else CallRequest.from_dict(request)
            entry = self._pipelines.get(call.operation_name)
            if entry is None:
                raise ValidationError(
                    f"Unknown operation {call.operation_name!r}",
                    details={"operationName": "unknown operation"},
                )
        except ValidationError as exc:
            return await self.responder.respond(exc)

        operation, pipeline = entry
        return await pipeline(CallContext(request=call, operation=operation))

    async def handle_dict(self, request: Mapping[str, Any]) -> Dict[str, Any]:
        """Like ``handle`` but returns the plain ``{ok, data | error}`` shape."""
        response = await self.handle(request)
        return response.to_dict()


__all__ = ["Gateway"]
