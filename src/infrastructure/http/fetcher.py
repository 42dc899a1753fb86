"""
Fetching stored JSON documents by URL.

Objects written to the blob store are publicly readable, so CC filters
and metadata documents are read back with a plain GET against the URL
the store returned. httpx is used for its async client; one client is
shared across the concurrent fetches of a single request.
"""

import json
import logging
from typing import Any, Optional

import httpx

from src.core.actions.models import UpstreamError
from src.infrastructure.storage.client import MockBlobStore

logger = logging.getLogger(__name__)


class FetchError(UpstreamError):
    """Raised when a stored document cannot be fetched or parsed."""
    pass


class HttpDocumentFetcher:
    """
    DocumentFetcher backed by an httpx.AsyncClient.

    The client is owned by the caller, which controls its lifetime
    and timeout.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch_json(self, url: str) -> Any:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Fetch of {url} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Fetch of {url} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Document at {url} is not valid JSON: {e}") from e


class MockDocumentFetcher:
    """
    DocumentFetcher that reads straight from a MockBlobStore.

    Used in mock mode, where stored URLs do not resolve on the network.
    """

    def __init__(self, store: MockBlobStore) -> None:
        self._store = store

    async def fetch_json(self, url: str) -> Any:
        content = self._store.read(url)

        try:
            return json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise FetchError(f"Document at {url} is not valid JSON: {e}") from e


def create_http_client(timeout_seconds: Optional[float]) -> httpx.AsyncClient:
    """Async client for document fetches, bounded by the execution ceiling."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=True,
    )
