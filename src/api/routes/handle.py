"""
The single action-keyed endpoint.

All operations share one URL; the `action` query parameter selects
which one runs:

    POST   /api/handle?action=upload&filename=photo.jpg
    GET    /api/handle?action=cc
    POST   /api/handle?action=save-enhanced
    DELETE /api/handle?action=delete-upload&url=...
    GET    /api/handle?action=health

The route only translates between HTTP and ActionRequest/RouterResponse;
classification, validation, and status codes live in the action router.
"""

import logging

from fastapi import APIRouter, Request, Response, status

from ...core.actions import ActionRequest
from ..dependencies import ActionRouterDep
from ..responses import CORS_HEADERS, envelope_response

logger = logging.getLogger(__name__)

router = APIRouter()

# Every method except OPTIONS goes through the router: health answers any
# method, other actions return a 405 envelope. Anything Starlette still
# rejects is enveloped by the app-level HTTPException handler.
DISPATCHED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "TRACE"]


@router.options(
    "",
    status_code=status.HTTP_200_OK,
    summary="CORS preflight",
    description="Returns 200 with CORS headers and no body, whatever the action.",
)
async def preflight() -> Response:
    """
    Answer CORS preflight requests.

    Kept separate from the main route so preflight never depends on
    storage configuration being valid.
    """
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.api_route(
    "",
    methods=DISPATCHED_METHODS,
    summary="Run a blob action",
    description="Dispatches to the handler selected by the `action` query parameter.",
)
async def handle(request: Request, action_router: ActionRouterDep) -> Response:
    # First value wins when a parameter is repeated
    query = {
        key: request.query_params.getlist(key)[0]
        for key in request.query_params.keys()
    }

    action_request = ActionRequest(
        method=request.method,
        query=query,
        body=await request.body(),
    )

    logger.debug(
        "Dispatching action",
        extra={
            "action": action_request.action,
            "method": action_request.method,
            "body_bytes": len(action_request.body),
        }
    )

    result = await action_router.dispatch(action_request)

    return envelope_response(result)
