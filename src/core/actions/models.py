"""
Domain models for the action router.

These models describe requests, stored objects, and handler outcomes.
They have no dependencies on FastAPI, boto3, or httpx; the router can be
exercised end to end with plain Python objects.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Mapping, Optional, TypeVar, Union


T = TypeVar("T")


class Action(str, Enum):
    """The closed set of operations the endpoint performs."""
    UPLOAD = "upload"
    CC = "cc"
    SAVE_ENHANCED = "save-enhanced"
    LIST_UPLOADS = "list-uploads"
    DELETE_UPLOAD = "delete-upload"
    GET_METADATA = "get-metadata"
    HEALTH = "health"


AVAILABLE_ACTIONS: tuple[str, ...] = tuple(action.value for action in Action)


class UpstreamError(Exception):
    """Raised when the blob store or a stored-document fetch fails."""
    pass


def to_iso(moment: datetime) -> str:
    """
    Format a datetime as ISO-8601 UTC with millisecond precision.

    Matches what browser clients produce with Date.toISOString(),
    e.g. 2026-10-19T12:00:00.000Z. Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch, used to build collision-resistant pathnames."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


# ---------------------------------------------------------------------------
# Stored objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PutResult:
    """What the store hands back after writing an object."""
    url: str
    download_url: str
    pathname: str
    size: int
    content_type: Optional[str] = None


@dataclass(frozen=True)
class BlobInfo:
    """
    A listing entry for an object in the store.

    Frozen because listings are snapshots; the store owns the object.
    """
    url: str
    download_url: str
    pathname: str
    size: int
    uploaded_at: datetime

    def __post_init__(self) -> None:
        if not self.pathname:
            raise ValueError("pathname cannot be empty")
        if self.size < 0:
            raise ValueError("size cannot be negative")

    @property
    def name(self) -> str:
        """Trailing pathname segment."""
        return self.pathname.rsplit("/", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "downloadUrl": self.download_url,
            "pathname": self.pathname,
            "size": self.size,
            "uploadedAt": to_iso(self.uploaded_at),
        }


# ---------------------------------------------------------------------------
# Requests and responses
# ---------------------------------------------------------------------------

@dataclass
class ActionRequest:
    """
    An inbound request as the router sees it.

    The API layer builds this from the HTTP request; tests build it directly.
    """
    method: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @property
    def action(self) -> str:
        return self.query.get("action") or "unknown"

    def param(self, name: str) -> Optional[str]:
        """Query parameter value, with empty strings treated as absent."""
        value = self.query.get(name)
        return value or None

    def json(self) -> Any:
        """Parse the body as JSON. Raises json.JSONDecodeError on malformed input."""
        return json.loads(self.body.decode("utf-8") if self.body else "")


@dataclass(frozen=True)
class RouterResponse:
    """Status code plus JSON body. A None body means an empty response."""
    status_code: int
    body: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Handler results
# ---------------------------------------------------------------------------

class ErrorKind(Enum):
    """Categories of handler failure, each mapped to one HTTP status."""
    VALIDATION = "validation"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM: 500,
    ErrorKind.INTERNAL: 500,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful handler outcome carrying the response payload."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """
    Failed handler outcome.

    `extra` is merged into the error envelope, e.g. the list of
    available actions on an unknown-action response.
    """
    kind: ErrorKind
    message: str
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.message:
            raise ValueError("Error message cannot be empty")

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def successes(results: list["Result[T]"]) -> list[T]:
    """Keep the values of successful results, dropping failures."""
    return [result.value for result in results if isinstance(result, Ok)]


def to_response(result: "Result[dict[str, Any]]") -> RouterResponse:
    """Translate a handler result into a status code and envelope."""
    if isinstance(result, Ok):
        return RouterResponse(status_code=200, body={"success": True, **result.value})

    return RouterResponse(
        status_code=result.kind.status_code,
        body={"success": False, "error": result.message, **result.extra},
    )
