"""
Blob store implementations.

Supports Cloudflare R2 (S3-compatible) with a mock mode for local development.
Objects are served from a public base URL, so every stored object has a
stable URL that clients can fetch directly and later pass back for deletion.

Mock mode keeps objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, unquote

from src.core.actions.handlers import BlobStore
from src.core.actions.models import BlobInfo, PutResult, UpstreamError

logger = logging.getLogger(__name__)


class StorageError(UpstreamError):
    """Raised when storage operations fail."""
    pass


RANDOM_SUFFIX_LENGTH = 30
RANDOM_SUFFIX_ALPHABET = string.ascii_letters + string.digits

CONTENT_TYPES = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'mp4': 'video/mp4',
    'mov': 'video/quicktime',
    'avi': 'video/x-msvideo',
    'webm': 'video/webm',
    'json': 'application/json',
}
DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def guess_content_type(pathname: str) -> str:
    """Content type from the pathname's extension."""
    name = pathname.rsplit('/', 1)[-1]
    ext = name.rsplit('.', 1)[-1] if '.' in name else ''
    return CONTENT_TYPES.get(ext.lower(), DEFAULT_CONTENT_TYPE)


def with_random_suffix(pathname: str) -> str:
    """
    Insert a random suffix before the extension.

    uploads/photo.jpg -> uploads/photo-<suffix>.jpg
    """
    suffix = ''.join(
        secrets.choice(RANDOM_SUFFIX_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH)
    )
    directory, _, name = pathname.rpartition('/')
    stem, dot, ext = name.rpartition('.')
    if not dot or not stem:
        stem, ext = name, ''
    new_name = f"{stem}-{suffix}.{ext}" if ext else f"{stem}-{suffix}"
    return f"{directory}/{new_name}" if directory else new_name


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


def download_url_for(url: str) -> str:
    """URL that asks the CDN to serve the object as an attachment."""
    return f"{url}?download=1"


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    `public_base_url` is where the bucket is served from (an R2 custom
    domain or r2.dev URL). `public_acl` is only sent when set; R2 ignores
    ACLs, but plain S3 buckets usually need "public-read".
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    public_base_url: str
    region: str = "auto"  # R2 uses 'auto' for region
    public_acl: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValueError("bucket_name is required")
        if not self.public_base_url:
            raise ValueError("public_base_url is required")
        self.public_base_url = self.public_base_url.rstrip('/')


class R2BlobStore:
    """
    Cloudflare R2 blob store.

    Uses boto3 because R2 is S3-compatible. The same class works
    against S3 or MinIO by changing the endpoint and public URL.

    boto3 is synchronous, so each call runs in a worker thread. That keeps
    the event loop free and lets the router's execution ceiling cancel
    the wait on a slow request.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize R2 client with boto3.

        boto3 is imported here (not at module level) because mock mode
        doesn't need it.
        """
        import boto3
        from botocore.config import Config

        self._config = config

        # R2 requires v4 signatures and path-style addressing
        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized R2 blob store",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
                "public_base_url": config.public_base_url,
            }
        )

    def url_for(self, key: str) -> str:
        return f"{self._config.public_base_url}/{quote(key)}"

    def key_for(self, url: str) -> str:
        """
        Map a public URL back to its object key.

        Raises StorageError for URLs outside this store's public base URL.
        """
        base = self._config.public_base_url + '/'
        path = _strip_query(url)
        if not path.startswith(base) or len(path) == len(base):
            raise StorageError(f"URL does not belong to this store: {url}")
        return unquote(path[len(base):])

    async def put(
        self,
        pathname: str,
        content: bytes,
        *,
        access: str = "public",
        content_type: Optional[str] = None,
        add_random_suffix: bool = False,
    ) -> PutResult:
        """
        Upload an object and return its public location.

        The content type is inferred from the extension when not given.
        """
        key = with_random_suffix(pathname) if add_random_suffix else pathname
        content_type = content_type or guess_content_type(key)

        params = {
            'Bucket': self._config.bucket_name,
            'Key': key,
            'Body': content,
            'ContentType': content_type,
        }
        if access == "public" and self._config.public_acl:
            params['ACL'] = self._config.public_acl

        try:
            await asyncio.to_thread(self._s3_client.put_object, **params)
        except Exception as e:
            logger.error(
                "Failed to upload blob",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}")

        logger.debug(
            "Uploaded blob",
            extra={"key": key, "size_bytes": len(content), "content_type": content_type}
        )

        url = self.url_for(key)
        return PutResult(
            url=url,
            download_url=download_url_for(url),
            pathname=key,
            size=len(content),
            content_type=content_type,
        )

    async def list_blobs(self, prefix: str, limit: int) -> list[BlobInfo]:
        """List up to `limit` objects under `prefix`, in key order."""
        try:
            response = await asyncio.to_thread(
                self._s3_client.list_objects_v2,
                Bucket=self._config.bucket_name,
                Prefix=prefix,
                MaxKeys=limit,
            )
        except Exception as e:
            logger.error(
                "Failed to list blobs",
                extra={"prefix": prefix, "error": str(e)}
            )
            raise StorageError(f"List failed: {e}")

        blobs = []
        for obj in response.get('Contents', [])[:limit]:
            url = self.url_for(obj['Key'])
            blobs.append(BlobInfo(
                url=url,
                download_url=download_url_for(url),
                pathname=obj['Key'],
                size=obj.get('Size', 0),
                uploaded_at=obj['LastModified'],
            ))

        return blobs

    async def delete(self, url: str) -> None:
        """Delete the object served at `url`."""
        key = self.key_for(url)

        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            logger.error(
                "Failed to delete blob",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Delete failed: {e}")

        logger.info("Deleted blob", extra={"key": key})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockObject:
    content: bytes
    content_type: str
    uploaded_at: datetime


class MockBlobStore:
    """
    In-memory blob store for local development.

    Objects live in a dictionary keyed by pathname and get URLs under
    MOCK_BASE_URL. read() lets the mock document fetcher resolve those
    URLs without a network.

    Not suitable for production, but perfect for development and testing.
    """

    MOCK_BASE_URL = "https://mock.blob.local"

    def __init__(self) -> None:
        self._objects: dict[str, _MockObject] = {}
        logger.info("Initialized mock blob store (in-memory)")

    def url_for(self, pathname: str) -> str:
        return f"{self.MOCK_BASE_URL}/{quote(pathname)}"

    def _pathname_for(self, url: str) -> str:
        base = self.MOCK_BASE_URL + '/'
        path = _strip_query(url)
        if not path.startswith(base):
            raise StorageError(f"URL does not belong to this store: {url}")
        return unquote(path[len(base):])

    @property
    def pathnames(self) -> list[str]:
        return sorted(self._objects)

    async def put(
        self,
        pathname: str,
        content: bytes,
        *,
        access: str = "public",
        content_type: Optional[str] = None,
        add_random_suffix: bool = False,
    ) -> PutResult:
        """Store object in memory."""
        key = with_random_suffix(pathname) if add_random_suffix else pathname
        content_type = content_type or guess_content_type(key)

        self._objects[key] = _MockObject(
            content=bytes(content),
            content_type=content_type,
            uploaded_at=datetime.now(timezone.utc),
        )

        logger.debug(
            "Stored blob in mock storage",
            extra={"key": key, "size_bytes": len(content)}
        )

        url = self.url_for(key)
        return PutResult(
            url=url,
            download_url=download_url_for(url),
            pathname=key,
            size=len(content),
            content_type=content_type,
        )

    async def list_blobs(self, prefix: str, limit: int) -> list[BlobInfo]:
        """List objects from memory in key order."""
        keys = [key for key in sorted(self._objects) if key.startswith(prefix)][:limit]

        blobs = []
        for key in keys:
            url = self.url_for(key)
            blobs.append(BlobInfo(
                url=url,
                download_url=download_url_for(url),
                pathname=key,
                size=len(self._objects[key].content),
                uploaded_at=self._objects[key].uploaded_at,
            ))
        return blobs

    async def delete(self, url: str) -> None:
        """Delete object from memory. Deleting a missing object is a no-op."""
        key = self._pathname_for(url)
        self._objects.pop(key, None)

        logger.debug("Deleted blob from mock storage", extra={"key": key})

    def read(self, url: str) -> bytes:
        """Return the stored bytes for a URL issued by this store."""
        key = self._pathname_for(url)
        if key not in self._objects:
            raise StorageError(f"Blob not found: {key}")
        return self._objects[key].content


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_blob_store(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> BlobStore:
    """
    Create blob store based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return in-memory store for testing

    Returns:
        BlobStore implementation (R2 or Mock)
    """
    if mock_mode:
        return MockBlobStore()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2BlobStore(config)
