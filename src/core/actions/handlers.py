"""
Action handlers.

Each handler is a leaf: it validates its own input, talks to the blob
store (and, for the two aggregation actions, fetches stored documents by
URL), and returns a Result. Handlers never build HTTP responses; the
router turns results into status codes and envelopes.

Upstream failures on the main path become UPSTREAM errors. Failures while
resolving individual items of a listing are collected as per-item
results and dropped, so one unreadable document does not fail the listing.
"""

import asyncio
import base64
import binascii
import functools
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from .models import (
    AVAILABLE_ACTIONS,
    ActionRequest,
    BlobInfo,
    Err,
    ErrorKind,
    Ok,
    PutResult,
    Result,
    UpstreamError,
    epoch_millis,
    successes,
    to_iso,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class BlobStore(Protocol):
    """
    Interface for the external object store.

    Objects are addressed by pathname on write and by the public URL
    returned from put() afterwards. Implementations raise UpstreamError
    subclasses when the store rejects a call.
    """

    async def put(
        self,
        pathname: str,
        content: bytes,
        *,
        access: str = "public",
        content_type: Optional[str] = None,
        add_random_suffix: bool = False,
    ) -> PutResult:
        """Store content and return its public location."""
        ...

    async def list_blobs(self, prefix: str, limit: int) -> list[BlobInfo]:
        """List up to `limit` objects whose pathname starts with `prefix`."""
        ...

    async def delete(self, url: str) -> None:
        """Delete the object served at `url`."""
        ...


class DocumentFetcher(Protocol):
    """Retrieves previously stored JSON documents by their public URL."""

    async def fetch_json(self, url: str) -> Any:
        """Fetch and parse a JSON document. Raises UpstreamError on failure."""
        ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HandlerContext:
    """Collaborators shared by every handler for a single request."""
    store: BlobStore
    fetcher: DocumentFetcher
    clock: Callable[[], datetime] = field(default=utc_now)


Handler = Callable[[ActionRequest, HandlerContext], Awaitable[Result[dict[str, Any]]]]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UPLOAD_PREFIX = "uploads/"
CC_FILTER_PREFIX = "cc-filters/"
ENHANCED_PREFIX = "enhanced/"
METADATA_PREFIX = "metadata/"

AGGREGATE_LIMIT = 100
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 1000

JSON_CONTENT_TYPE = "application/json"
JPEG_CONTENT_TYPE = "image/jpeg"

DATA_URL_PATTERN = re.compile(r"data:image/\w+;base64,(.+)", re.ASCII)
UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")
LEADING_INTEGER = re.compile(r"\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_blank(value: Any) -> bool:
    """
    True for values a client would consider "not provided".

    None, False, empty strings and numeric zero count as blank.
    Empty objects and lists do not.
    """
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return False


def sanitize_name(name: str) -> str:
    """Replace anything outside [a-zA-Z0-9-_] so the name is safe in a pathname."""
    return UNSAFE_NAME_CHARS.sub("_", name)


def decode_base64(payload: str) -> bytes:
    """
    Decode a base64 payload the way browsers' atob() does.

    Whitespace is ignored and missing padding is tolerated.
    Raises ValueError on anything else.
    """
    compact = "".join(payload.split())
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def parse_limit(raw: Optional[str]) -> int:
    """Parse a listing limit from its leading integer, clamped to the store's range."""
    if raw is None:
        return DEFAULT_LIST_LIMIT

    match = LEADING_INTEGER.match(raw)
    if not match:
        return DEFAULT_LIST_LIMIT

    return max(1, min(int(match.group(1)), MAX_LIST_LIMIT))


def encode_json(document: Any) -> bytes:
    """Compact JSON encoding used for every stored document."""
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def translate_upstream_errors(handler: Handler) -> Handler:
    """Turn UpstreamError raised on a handler's main path into an UPSTREAM result."""

    @functools.wraps(handler)
    async def wrapper(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
        try:
            return await handler(request, ctx)
        except UpstreamError as e:
            logger.error(
                "Blob store call failed",
                extra={"action": request.action, "method": request.method, "error": str(e)},
            )
            return Err(ErrorKind.UPSTREAM, str(e) or "Blob store request failed")

    return wrapper


async def resolve_each(
    blobs: list[BlobInfo],
    resolve: Callable[[BlobInfo], Awaitable[dict[str, Any]]],
) -> list[Result[dict[str, Any]]]:
    """
    Resolve every blob concurrently into its own Result.

    Nothing is retried. A failure is recorded for its blob only; the
    caller decides what to do with the failures.
    """

    async def attempt(blob: BlobInfo) -> Result[dict[str, Any]]:
        try:
            return Ok(await resolve(blob))
        except (UpstreamError, ValueError) as e:
            logger.warning(
                "Dropping unreadable document",
                extra={"blob_pathname": blob.pathname, "url": blob.url, "error": str(e)},
            )
            return Err(ErrorKind.UPSTREAM, str(e) or type(e).__name__)

    return list(await asyncio.gather(*(attempt(blob) for blob in blobs)))


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------

@translate_upstream_errors
async def upload(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """
    Store the raw request body under uploads/.

    Any byte stream is accepted. A random suffix keeps concurrent uploads
    with the same filename from overwriting each other.
    """
    filename = request.param("filename") or f"upload_{epoch_millis(ctx.clock())}.jpg"

    blob = await ctx.store.put(
        f"{UPLOAD_PREFIX}{filename}",
        request.body,
        access="public",
        add_random_suffix=True,
    )

    logger.info(
        "Stored upload",
        extra={"blob_pathname": blob.pathname, "size_bytes": blob.size},
    )

    return Ok({
        "url": blob.url,
        "downloadUrl": blob.download_url,
        "size": blob.size,
        "uploadedAt": to_iso(ctx.clock()),
    })


# ---------------------------------------------------------------------------
# cc
# ---------------------------------------------------------------------------

async def _resolve_cc_filter(blob: BlobInfo, fetcher: DocumentFetcher) -> dict[str, Any]:
    document = await fetcher.fetch_json(blob.url)

    if isinstance(document, dict):
        name = document.get("name")
        values = document.get("values")
    else:
        name = values = None

    return {
        "name": blob.name if is_blank(name) else name,
        "url": blob.url,
        "uploadedAt": to_iso(blob.uploaded_at),
        "size": blob.size,
        "values": document if is_blank(values) else values,
    }


@translate_upstream_errors
async def list_cc_filters(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """List CC filters, resolving each stored document's name and values."""
    blobs = await ctx.store.list_blobs(prefix=CC_FILTER_PREFIX, limit=AGGREGATE_LIMIT)

    results = await resolve_each(blobs, lambda blob: _resolve_cc_filter(blob, ctx.fetcher))
    filters = successes(results)

    return Ok({"filters": filters, "count": len(filters)})


@translate_upstream_errors
async def create_cc_filter(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """
    Store a CC filter document.

    The whole body is persisted as-is. Only the pathname uses the
    sanitized name; the response echoes the name the client sent.
    """
    data = request.json()

    if not isinstance(data, dict) or is_blank(data.get("name")) or is_blank(data.get("values")):
        return Err(ErrorKind.VALIDATION, "Missing name or values")

    name = data["name"]
    pathname = f"{CC_FILTER_PREFIX}{sanitize_name(str(name))}_{epoch_millis(ctx.clock())}.json"

    blob = await ctx.store.put(
        pathname,
        encode_json(data),
        access="public",
        content_type=JSON_CONTENT_TYPE,
    )

    logger.info("Stored CC filter", extra={"blob_pathname": blob.pathname})

    return Ok({
        "url": blob.url,
        "name": name,
        "uploadedAt": to_iso(ctx.clock()),
    })


async def _delete_by_url(
    request: ActionRequest,
    ctx: HandlerContext,
    message: str,
) -> Result[dict[str, Any]]:
    url = request.param("url")
    if not url:
        return Err(ErrorKind.VALIDATION, "URL parameter required")

    await ctx.store.delete(url)

    logger.info("Deleted blob", extra={"url": url})

    return Ok({"message": message})


@translate_upstream_errors
async def delete_cc_filter(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    return await _delete_by_url(request, ctx, "CC filter deleted successfully")


# ---------------------------------------------------------------------------
# save-enhanced
# ---------------------------------------------------------------------------

async def _save_metadata(
    ctx: HandlerContext,
    metadata: dict[str, Any],
    image: PutResult,
    stamp: int,
) -> dict[str, Any]:
    """
    Write the metadata side document for an enhanced image.

    The image is already stored at this point and is kept whatever
    happens here; a failed side write is reported in the payload.
    """
    document = {
        **metadata,
        "imageUrl": image.url,
        "timestamp": to_iso(ctx.clock()),
    }

    try:
        meta = await ctx.store.put(
            f"{METADATA_PREFIX}meta_{stamp}.json",
            encode_json(document),
            access="public",
            content_type=JSON_CONTENT_TYPE,
        )
    except UpstreamError as e:
        logger.warning(
            "Metadata write failed; keeping enhanced image",
            extra={"image_url": image.url, "error": str(e)},
        )
        return {"metadataError": str(e) or "Metadata write failed"}

    return {"metadataUrl": meta.url}


@translate_upstream_errors
async def save_enhanced(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """
    Persist a base64 data-URL image as JPEG, plus optional metadata.

    Input is validated completely before anything is written.
    """
    body = request.json()
    if not isinstance(body, dict):
        body = {}

    image = body.get("image")
    if is_blank(image):
        return Err(ErrorKind.VALIDATION, "No image provided")

    match = DATA_URL_PATTERN.fullmatch(image) if isinstance(image, str) else None
    if not match:
        return Err(ErrorKind.VALIDATION, "Invalid image format")

    try:
        content = decode_base64(match.group(1))
    except ValueError:
        return Err(ErrorKind.VALIDATION, "Invalid image format")

    metadata = body.get("metadata")
    if is_blank(metadata):
        metadata = None
    elif not isinstance(metadata, dict):
        return Err(ErrorKind.VALIDATION, "Invalid metadata format")

    stamp = epoch_millis(ctx.clock())

    blob = await ctx.store.put(
        f"{ENHANCED_PREFIX}enhanced_{stamp}.jpg",
        content,
        access="public",
        content_type=JPEG_CONTENT_TYPE,
    )

    logger.info(
        "Stored enhanced image",
        extra={"blob_pathname": blob.pathname, "size_bytes": blob.size, "has_metadata": metadata is not None},
    )

    payload: dict[str, Any] = {
        "url": blob.url,
        "downloadUrl": blob.download_url,
        "size": blob.size,
    }

    if metadata is not None:
        payload.update(await _save_metadata(ctx, metadata, blob, stamp))

    return Ok(payload)


# ---------------------------------------------------------------------------
# list-uploads / delete-upload
# ---------------------------------------------------------------------------

@translate_upstream_errors
async def list_uploads(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    prefix = request.param("prefix") or UPLOAD_PREFIX
    limit = parse_limit(request.param("limit"))

    blobs = await ctx.store.list_blobs(prefix=prefix, limit=limit)

    return Ok({
        "uploads": [blob.to_dict() for blob in blobs],
        "count": len(blobs),
    })


@translate_upstream_errors
async def delete_upload(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    return await _delete_by_url(request, ctx, "Upload deleted successfully")


# ---------------------------------------------------------------------------
# get-metadata
# ---------------------------------------------------------------------------

async def _resolve_metadata(blob: BlobInfo, fetcher: DocumentFetcher) -> dict[str, Any]:
    document = await fetcher.fetch_json(blob.url)

    if not isinstance(document, dict):
        raise ValueError("Metadata document is not a JSON object")

    return {
        **document,
        "metadataUrl": blob.url,
        "uploadedAt": to_iso(blob.uploaded_at),
    }


@translate_upstream_errors
async def get_metadata(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """List metadata documents, dropping any that cannot be read."""
    blobs = await ctx.store.list_blobs(prefix=METADATA_PREFIX, limit=AGGREGATE_LIMIT)

    results = await resolve_each(blobs, lambda blob: _resolve_metadata(blob, ctx.fetcher))
    metadata = successes(results)

    return Ok({"metadata": metadata, "count": len(metadata)})


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------

async def health(request: ActionRequest, ctx: HandlerContext) -> Result[dict[str, Any]]:
    """Static liveness and capability descriptor. Touches no collaborator."""
    return Ok({
        "status": "healthy",
        "timestamp": to_iso(ctx.clock()),
        "availableActions": list(AVAILABLE_ACTIONS),
    })
