"""
Shared fixtures for unit tests.

Tests run against the in-memory blob store and a fixed clock, so every
pathname and timestamp in a response is predictable.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from src.core.actions import ActionRequest, ActionRouter, HandlerContext
from src.infrastructure.http.fetcher import MockDocumentFetcher
from src.infrastructure.storage.client import MockBlobStore, StorageError


FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, 123000, tzinfo=timezone.utc)


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


class FlakyBlobStore(MockBlobStore):
    """In-memory store whose writes fail for selected pathname prefixes."""

    def __init__(self, failing_prefixes: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.failing_prefixes = failing_prefixes
        self.fail_lists = False
        self.fail_deletes = False

    async def put(self, pathname, content, **kwargs):
        if pathname.startswith(self.failing_prefixes):
            raise StorageError("Upload failed: store unavailable")
        return await super().put(pathname, content, **kwargs)

    async def list_blobs(self, prefix, limit):
        if self.fail_lists:
            raise StorageError("List failed: store unavailable")
        return await super().list_blobs(prefix, limit)

    async def delete(self, url):
        if self.fail_deletes:
            raise StorageError("Delete failed: store unavailable")
        await super().delete(url)


@pytest.fixture
def store() -> FlakyBlobStore:
    return FlakyBlobStore()


@pytest.fixture
def context(store) -> HandlerContext:
    return HandlerContext(
        store=store,
        fetcher=MockDocumentFetcher(store),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def router(context) -> ActionRouter:
    return ActionRouter(context)


@pytest.fixture
def dispatch(router):
    """Call the router synchronously: dispatch("GET", action="health")."""

    def _dispatch(method: str, body: bytes = b"", **query: str):
        return run(router.dispatch(ActionRequest(method=method, query=query, body=body)))

    return _dispatch
