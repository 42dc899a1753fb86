"""
FastAPI dependency injection.

Dependencies provide the blob store, document fetcher, and action router
to the endpoint. Using dependency injection means:
- The route doesn't instantiate its own collaborators (easier to test)
- Collaborators can be swapped for in-memory ones in tests
- Configuration is centralized
- The HTTP client used for document fetches is closed after each request

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends

from ..config.settings import Settings, get_settings
from ..core.actions import ActionRouter, BlobStore, DocumentFetcher, HandlerContext
from ..infrastructure.http.fetcher import (
    HttpDocumentFetcher,
    MockDocumentFetcher,
    create_http_client,
)
from ..infrastructure.storage.client import (
    MockBlobStore,
    StorageConfig,
    create_blob_store,
)

logger = logging.getLogger(__name__)

SettingsDep = Annotated[Settings, Depends(get_settings)]

# Shared mock store so objects persist across requests in mock mode
_mock_blob_store: Optional[BlobStore] = None


def get_blob_store(settings: SettingsDep) -> BlobStore:
    """
    Provide the blob store.

    Returns either the R2 store or the in-memory store based on settings.
    In mock mode the same store is reused across requests so that
    uploaded objects can be listed and deleted afterwards.
    """
    global _mock_blob_store

    if settings.blob_mock_mode:
        if _mock_blob_store is None:
            _mock_blob_store = create_blob_store(mock_mode=True)
            logger.info("Created shared mock blob store for session")
        return _mock_blob_store

    config = StorageConfig(
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        bucket_name=settings.r2_bucket_name,
        endpoint_url=settings.r2_endpoint,
        public_base_url=settings.r2_public_base_url,
        public_acl=settings.r2_public_acl,
    )
    store = create_blob_store(config=config)
    logger.debug("Created R2 blob store")

    return store


BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]


async def get_document_fetcher(
    settings: SettingsDep,
    store: BlobStoreDep,
) -> AsyncGenerator[DocumentFetcher, None]:
    """
    Provide a fetcher for stored JSON documents.

    This is a generator so the HTTP client is closed once the request
    finishes. The in-memory store's URLs don't resolve on the network,
    so mock mode reads documents straight from the store.
    """
    if isinstance(store, MockBlobStore):
        yield MockDocumentFetcher(store)
        return

    async with create_http_client(settings.max_duration_seconds) as client:
        yield HttpDocumentFetcher(client)


def get_action_router(
    settings: SettingsDep,
    store: BlobStoreDep,
    fetcher: Annotated[DocumentFetcher, Depends(get_document_fetcher)],
) -> ActionRouter:
    """The router is stateless, so a new one is built per request."""
    return ActionRouter(
        HandlerContext(store=store, fetcher=fetcher),
        include_stack_traces=settings.include_stack_traces,
        max_duration_seconds=settings.max_duration_seconds,
    )


# Type alias used by the route signature
ActionRouterDep = Annotated[ActionRouter, Depends(get_action_router)]
