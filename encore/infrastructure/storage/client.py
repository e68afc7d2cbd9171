"""
Object storage client for uploaded media.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
The access-control layer needs only a handful of primitives from the store:
presigned upload URLs, object metadata reads and writes, and chunked reads.
Access policies live in each object's custom metadata, so the blob store is
the system of record and nothing here keeps state between requests.

Mock mode stores objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Optional, Protocol
from urllib.parse import quote, unquote, urlsplit

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

MOCK_ENDPOINT_URL = "https://mock-storage.local"

# S3 error codes that mean "no such object"
_MISSING_OBJECT_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class StorageObjectNotFound(StorageError):
    """Raised when the requested key does not exist in the bucket."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


@dataclass
class StorageConfig:
    """Configuration for R2/S3-compatible storage."""
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"  # R2 uses 'auto' for region


@dataclass
class BlobMetadata:
    """What the store knows about an object without reading its bytes."""
    content_type: str
    content_length: Optional[int]
    custom: dict[str, str] = field(default_factory=dict)


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
    """

    bucket_name: str
    endpoint_url: str

    async def generate_upload_url(
        self,
        key: str,
        expiry_seconds: int = 900,
    ) -> str:
        """Generate a temporary URL the client can PUT the object to."""
        ...

    async def object_exists(self, key: str) -> bool:
        """Check whether an object is stored under key."""
        ...

    async def get_metadata(self, key: str) -> BlobMetadata:
        """Read content type, length and custom metadata."""
        ...

    async def set_custom_metadata(
        self,
        key: str,
        custom: dict[str, str],
    ) -> None:
        """Merge custom metadata entries into the object's metadata."""
        ...

    def stream_object(
        self,
        key: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncGenerator[bytes, None]:
        """Read the object's bytes in chunks."""
        ...


def _error_code(error: Exception) -> str:
    """Extract the S3 error code from a botocore ClientError, if any."""
    response: Any = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. This abstraction means
    we could swap to actual S3, MinIO, or other S3-compatible storage
    with minimal changes.

    boto3 is synchronous, so every call runs in a worker thread. Object
    bodies are read chunk by chunk so a large download never blocks the
    event loop or sits in memory whole.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize R2 client with boto3.

        We import boto3 here (not at module level) because mock mode
        doesn't need it.
        """
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for R2 storage. Install with: pip install boto3"
            )

        self._config = config
        self.bucket_name = config.bucket_name
        self.endpoint_url = config.endpoint_url

        # R2 requires v4 signatures; path-style keeps the bucket in the URL
        # path, which is what upload URL normalization expects
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
            "Initialized R2 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    def _translate(self, error: Exception, key: str, action: str) -> StorageError:
        if _error_code(error) in _MISSING_OBJECT_CODES:
            return StorageObjectNotFound(key)

        logger.error(
            f"Failed to {action}",
            extra={"storage_path": key, "error": str(error)}
        )
        return StorageError(f"{action.capitalize()} failed: {error}")

    async def generate_upload_url(
        self,
        key: str,
        expiry_seconds: int = 900,
    ) -> str:
        """
        Generate a presigned PUT URL.

        The client uploads the bytes straight to R2; the API server
        never sees them.
        """
        try:
            return await asyncio.to_thread(
                self._s3_client.generate_presigned_url,
                'put_object',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': key,
                },
                ExpiresIn=expiry_seconds,
                HttpMethod='PUT',
            )
        except Exception as e:
            raise self._translate(e, key, "generate upload URL")

    async def object_exists(self, key: str) -> bool:
        try:
            await self.get_metadata(key)
        except StorageObjectNotFound:
            return False
        return True

    async def get_metadata(self, key: str) -> BlobMetadata:
        """Read object metadata with a HEAD request."""
        try:
            response = await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise self._translate(e, key, "read metadata")

        return BlobMetadata(
            content_type=response.get('ContentType') or 'application/octet-stream',
            content_length=response.get('ContentLength'),
            custom=dict(response.get('Metadata') or {}),
        )

    async def set_custom_metadata(
        self,
        key: str,
        custom: dict[str, str],
    ) -> None:
        """
        Merge entries into the object's custom metadata.

        S3 metadata is immutable, so the object is copied onto itself with
        MetadataDirective=REPLACE. Existing entries and the content type are
        carried over. Repeating the call with the same entries is harmless.
        """
        current = await self.get_metadata(key)
        merged = {**current.custom, **custom}

        try:
            await asyncio.to_thread(
                self._s3_client.copy_object,
                Bucket=self.bucket_name,
                Key=key,
                CopySource={'Bucket': self.bucket_name, 'Key': key},
                Metadata=merged,
                MetadataDirective='REPLACE',
                ContentType=current.content_type,
            )
        except Exception as e:
            raise self._translate(e, key, "write metadata")

        logger.debug(
            "Updated object metadata",
            extra={"storage_path": key, "keys": sorted(custom)}
        )

    async def stream_object(
        self,
        key: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncGenerator[bytes, None]:
        """
        Yield the object's bytes chunk by chunk.

        The response body is closed as soon as the consumer stops iterating,
        including when the generator is cancelled because the downstream
        client disconnected.
        """
        try:
            response = await asyncio.to_thread(
                self._s3_client.get_object,
                Bucket=self.bucket_name,
                Key=key,
            )
        except Exception as e:
            raise self._translate(e, key, "download object")

        body = response['Body']
        try:
            chunks = body.iter_chunks(chunk_size)
            while True:
                chunk = await asyncio.to_thread(next, chunks, None)
                if chunk is None:
                    break
                yield chunk
        finally:
            body.close()


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockObject:
    data: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)


class MockStorageClient:
    """
    In-memory storage for local development.

    Upload URLs look like real path-style presigned URLs so the
    normalization code paths are exercised. Use accept_upload() to play the
    part of a browser PUTting bytes to such a URL.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(
        self,
        bucket_name: str = "encore-media",
        endpoint_url: str = MOCK_ENDPOINT_URL,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url.rstrip("/")
        # {key: object}
        self._objects: dict[str, _MockObject] = {}
        logger.info("Initialized mock storage client (in-memory)")

    async def generate_upload_url(
        self,
        key: str,
        expiry_seconds: int = 900,
    ) -> str:
        return (
            f"{self.endpoint_url}/{self.bucket_name}/{quote(key)}"
            f"?X-Amz-Algorithm=AWS4-HMAC-SHA256"
            f"&X-Amz-Expires={expiry_seconds}"
            f"&X-Amz-Signature=mock"
        )

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        """Store an object directly."""
        self._objects[key] = _MockObject(
            data=data,
            content_type=content_type,
            metadata=dict(metadata or {}),
        )

    def accept_upload(
        self,
        upload_url: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Simulate a client PUT to a presigned upload URL.

        Returns the key the object was stored under.
        """
        path = urlsplit(upload_url).path
        prefix = f"/{self.bucket_name}/"
        if not path.startswith(prefix):
            raise StorageError(f"Upload URL is not for bucket {self.bucket_name}: {upload_url}")

        key = unquote(path[len(prefix):])
        self.put_object(key, data, content_type)

        logger.debug(
            "Accepted upload in mock storage",
            extra={"storage_path": key, "size_bytes": len(data)}
        )

        return key

    def _get(self, key: str) -> _MockObject:
        if key not in self._objects:
            raise StorageObjectNotFound(key)
        return self._objects[key]

    async def object_exists(self, key: str) -> bool:
        return key in self._objects

    async def get_metadata(self, key: str) -> BlobMetadata:
        obj = self._get(key)
        return BlobMetadata(
            content_type=obj.content_type,
            content_length=len(obj.data),
            custom=dict(obj.metadata),
        )

    async def set_custom_metadata(
        self,
        key: str,
        custom: dict[str, str],
    ) -> None:
        self._get(key).metadata.update(custom)

    async def stream_object(
        self,
        key: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncGenerator[bytes, None]:
        data = self._get(key).data
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (R2 or Mock)
    """
    if mock_mode:
        if config is not None:
            return MockStorageClient(
                bucket_name=config.bucket_name,
                endpoint_url=config.endpoint_url,
            )
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
