"""
Action routing for the blob endpoint.

Contains the request/result models, the seven action handlers, and the
router that ties them to HTTP methods and status codes.
"""

from .handlers import BlobStore, DocumentFetcher, HandlerContext
from .models import (
    AVAILABLE_ACTIONS,
    Action,
    ActionRequest,
    BlobInfo,
    Err,
    ErrorKind,
    Ok,
    PutResult,
    Result,
    RouterResponse,
    UpstreamError,
)
from .router import ROUTES, ActionRouter, Route

__all__ = [
    "AVAILABLE_ACTIONS",
    "Action",
    "ActionRequest",
    "ActionRouter",
    "BlobInfo",
    "BlobStore",
    "DocumentFetcher",
    "Err",
    "ErrorKind",
    "HandlerContext",
    "Ok",
    "PutResult",
    "Result",
    "ROUTES",
    "Route",
    "RouterResponse",
    "UpstreamError",
]
