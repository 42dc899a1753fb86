"""
Response envelope helpers.

Every response leaving the service carries the same CORS and content
headers, including preflight replies and unhandled-error replies.
"""

from fastapi import Response
from fastapi.responses import JSONResponse

from ..core.actions import RouterResponse

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Content-Type": "application/json",
}


def envelope_response(result: RouterResponse) -> Response:
    """Render a router response with the CORS headers attached."""
    if result.body is None:
        return Response(status_code=result.status_code, headers=CORS_HEADERS)

    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers=CORS_HEADERS,
    )
