"""
Action router.

Classifies a request by its `action` query parameter, enforces the
methods each action supports, runs the handler, and turns the outcome
into a status code and JSON envelope.

The route table is a closed mapping from Action to Route. Every Action
must have a route; this is checked when the module is imported, so a new
action cannot ship without a handler.
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from . import handlers
from .handlers import Handler, HandlerContext
from .models import (
    AVAILABLE_ACTIONS,
    Action,
    ActionRequest,
    Err,
    ErrorKind,
    RouterResponse,
    to_response,
)

logger = logging.getLogger(__name__)


PREFLIGHT_METHOD = "OPTIONS"
DEFAULT_MAX_DURATION_SECONDS = 60.0


@dataclass(frozen=True)
class Route:
    """
    One variant of the route table.

    `handlers` maps each allowed method to its handler. `any_method`,
    when set, runs for every method and disables method enforcement.
    """
    action: Action
    handlers: Mapping[str, Handler] = field(default_factory=dict)
    any_method: Optional[Handler] = None

    def __post_init__(self) -> None:
        if not self.handlers and self.any_method is None:
            raise ValueError(f"Route for {self.action.value} has no handler")

    @property
    def allowed_methods(self) -> frozenset[str]:
        return frozenset(self.handlers)

    def handler_for(self, method: str) -> Optional[Handler]:
        if self.any_method is not None:
            return self.any_method
        return self.handlers.get(method)


ROUTES: dict[Action, Route] = {
    Action.UPLOAD: Route(Action.UPLOAD, {"POST": handlers.upload}),
    Action.CC: Route(
        Action.CC,
        {
            "GET": handlers.list_cc_filters,
            "POST": handlers.create_cc_filter,
            "DELETE": handlers.delete_cc_filter,
        },
    ),
    Action.SAVE_ENHANCED: Route(Action.SAVE_ENHANCED, {"POST": handlers.save_enhanced}),
    Action.LIST_UPLOADS: Route(Action.LIST_UPLOADS, {"GET": handlers.list_uploads}),
    Action.DELETE_UPLOAD: Route(Action.DELETE_UPLOAD, {"DELETE": handlers.delete_upload}),
    Action.GET_METADATA: Route(Action.GET_METADATA, {"GET": handlers.get_metadata}),
    Action.HEALTH: Route(Action.HEALTH, any_method=handlers.health),
}

_missing_routes = set(Action) - set(ROUTES)
if _missing_routes:
    raise RuntimeError(
        f"No route for actions: {sorted(action.value for action in _missing_routes)}"
    )


def resolve_action(name: str) -> Optional[Action]:
    """Map an action name to its Action, or None if it is not one of ours."""
    try:
        return Action(name)
    except ValueError:
        return None


class ActionRouter:
    """
    Single entry point for every request.

    The router holds no per-request state; one instance can serve
    concurrent requests. Stack traces are only added to 500 responses
    when `include_stack_traces` is set, which should be limited to
    development environments.
    """

    def __init__(
        self,
        context: HandlerContext,
        include_stack_traces: bool = False,
        max_duration_seconds: Optional[float] = DEFAULT_MAX_DURATION_SECONDS,
    ) -> None:
        self._context = context
        self._include_stack_traces = include_stack_traces
        self._max_duration_seconds = max_duration_seconds

    async def dispatch(self, request: ActionRequest) -> RouterResponse:
        """Route a request and always return a response; never raises."""
        if request.method == PREFLIGHT_METHOD:
            return RouterResponse(status_code=200)

        action = resolve_action(request.action)
        if action is None:
            logger.info("Unknown action requested", extra={"action": request.action})
            return to_response(Err(
                ErrorKind.NOT_FOUND,
                "Invalid action",
                {"availableActions": list(AVAILABLE_ACTIONS)},
            ))

        handler = ROUTES[action].handler_for(request.method)
        if handler is None:
            return to_response(Err(ErrorKind.METHOD_NOT_ALLOWED, "Method not allowed"))

        try:
            result = await asyncio.wait_for(
                handler(request, self._context),
                timeout=self._max_duration_seconds,
            )
        except Exception as exc:
            return self._failure(request, exc)

        return to_response(result)

    def _failure(self, request: ActionRequest, exc: Exception) -> RouterResponse:
        logger.exception(
            "Unhandled error while handling action",
            extra={"action": request.action, "method": request.method},
        )

        body: dict[str, Any] = {
            "success": False,
            "error": str(exc) or "Internal server error",
        }
        if self._include_stack_traces:
            body["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )

        return RouterResponse(status_code=ErrorKind.INTERNAL.status_code, body=body)
