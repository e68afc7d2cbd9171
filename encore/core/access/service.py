"""
Object access service: the upload -> policy -> access-checked read lifecycle.

Per object the lifecycle is:

    Nonexistent --issue_upload_slot--> Reserved (signed URL handed out)
    Reserved --client PUTs bytes--> PolicyPending (bytes, no policy)
    PolicyPending --finalize_with_policy--> Accessible (bytes + policy)

The service is the only component that talks to the blob store. It owns the
mapping between canonical paths (`/objects/<entity-id>`) and storage keys,
and it translates storage errors into the access-layer taxonomy so no
backend exception type reaches callers.

Nothing is cached between calls: every read re-fetches the policy from the
object's metadata, so a visibility change applies to the very next request.
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union
from urllib.parse import unquote, urlsplit
from uuid import uuid4

from ...infrastructure.storage.client import (
    BlobMetadata,
    StorageClient,
    StorageError,
    StorageObjectNotFound,
)
from .codec import decode_policy, encode_policy
from .errors import (
    AccessDeniedError,
    BackendUnavailableError,
    MalformedPolicyError,
    ObjectNotFoundError,
)
from .evaluator import can_access
from .models import (
    AccessPolicy,
    Identity,
    MembershipDirectory,
    ObjectStream,
    Permission,
    SignedUploadHandle,
    StoredObjectRef,
)

logger = logging.getLogger(__name__)

# Custom metadata attribute holding the encoded policy
ACL_POLICY_METADATA_KEY = "acl-policy"

# Prefix of every canonical path in the managed private namespace
OBJECTS_PATH_PREFIX = "/objects/"


@dataclass(frozen=True)
class ObjectStorageConfig:
    """
    Where managed objects live and how long signed URLs last.

    Injected at construction so several configurations can coexist in one
    process (e.g. in tests).
    """
    bucket_name: str = ""
    private_object_dir: str = ""
    public_object_search_paths: tuple[str, ...] = ()
    upload_url_ttl_seconds: int = 900
    download_cache_ttl_seconds: int = 3600
    stream_chunk_size: int = 64 * 1024

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket_name and self.private_object_dir.strip("/"))

    @property
    def private_prefix(self) -> str:
        """Key prefix of the private namespace, always ending in '/'."""
        return self.private_object_dir.strip("/") + "/"


class ObjectAccessService:
    """
    Upload-slot issuance, policy attachment and access-checked reads.

    Stateless between requests; safe to share across concurrent requests.
    """

    def __init__(
        self,
        storage: StorageClient,
        config: ObjectStorageConfig,
        directory: Optional[MembershipDirectory] = None,
    ) -> None:
        self._storage = storage
        self._config = config
        self._directory = directory

    @property
    def config(self) -> ObjectStorageConfig:
        return self._config

    @property
    def directory(self) -> Optional[MembershipDirectory]:
        return self._directory

    # ---------------------------------------------------------------------
    # Upload
    # ---------------------------------------------------------------------

    async def issue_upload_slot(self) -> SignedUploadHandle:
        """
        Reserve a fresh object path and return a signed upload URL for it.

        Raises BackendUnavailableError if storage is not configured or cannot
        sign URLs. Not retried.
        """
        if not self._config.is_configured:
            logger.error(
                "Upload slot requested but object storage is not configured",
                extra={
                    "bucket": self._config.bucket_name,
                    "private_object_dir": self._config.private_object_dir,
                }
            )
            raise BackendUnavailableError("Object storage is not configured")

        entity_id = f"uploads/{uuid4()}"
        key = self._config.private_prefix + entity_id

        try:
            upload_url = await self._storage.generate_upload_url(
                key,
                expiry_seconds=self._config.upload_url_ttl_seconds,
            )
        except StorageError as e:
            raise BackendUnavailableError(f"Could not issue upload URL: {e}") from e

        logger.info("Issued upload slot", extra={"storage_path": key})

        return SignedUploadHandle(
            upload_url=upload_url,
            object_path=OBJECTS_PATH_PREFIX + entity_id,
            expires_in=self._config.upload_url_ttl_seconds,
        )

    def normalize_object_path(self, raw: str) -> str:
        """
        Turn an upload URL into its canonical `/objects/...` path.

        The URL is parsed structurally: host, query and signing parameters
        are dropped and the path is percent-decoded once. Only URLs on the
        configured storage endpoint are rewritten, and only keys inside the
        private directory become canonical paths. Anything else, including
        an already canonical path, is returned unchanged.
        """
        if raw.startswith(OBJECTS_PATH_PREFIX):
            return raw

        parts = urlsplit(raw)
        endpoint = urlsplit(self._storage.endpoint_url)
        if not parts.scheme or parts.netloc.lower() != endpoint.netloc.lower():
            return raw

        # Path-style addressing: /<endpoint path>/<bucket>/<key>
        bucket_prefix = endpoint.path.rstrip("/") + f"/{self._config.bucket_name}/"
        if not parts.path.startswith(bucket_prefix):
            return parts.path

        key = unquote(parts.path[len(bucket_prefix):])
        private_prefix = self._config.private_prefix
        if not key.startswith(private_prefix):
            return parts.path

        return OBJECTS_PATH_PREFIX + key[len(private_prefix):]

    async def finalize_with_policy(
        self,
        handle_or_path: Union[SignedUploadHandle, str],
        policy: AccessPolicy,
    ) -> str:
        """
        Attach `policy` to an uploaded object and return its canonical path.

        Accepts the handle from issue_upload_slot, its upload URL, or the
        canonical path. Idempotent: repeating the call with an equal policy
        returns the same path. Values that do not refer to a managed object
        are returned unchanged and no policy is written.

        Raises ObjectNotFoundError if the bytes have not been uploaded yet.
        """
        if isinstance(handle_or_path, SignedUploadHandle):
            raw = handle_or_path.object_path
        else:
            raw = handle_or_path

        object_path = self.normalize_object_path(raw)
        if not object_path.startswith(OBJECTS_PATH_PREFIX):
            logger.warning(
                "Not a managed object, policy not attached",
                extra={"object_path": object_path, "owner": policy.owner}
            )
            return object_path

        ref = await self.resolve(object_path)
        encoded = encode_policy(policy)

        try:
            await self._storage.set_custom_metadata(
                ref.key,
                {ACL_POLICY_METADATA_KEY: encoded},
            )
        except StorageObjectNotFound as e:
            raise ObjectNotFoundError(object_path) from e
        except StorageError as e:
            raise BackendUnavailableError(f"Could not write policy: {e}") from e

        logger.info(
            "Attached access policy",
            extra={
                "object_path": object_path,
                "owner": policy.owner,
                "visibility": policy.visibility.value,
                "acl_rules": len(policy.acl_rules),
            }
        )

        return object_path

    # ---------------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------------

    def _key_for(self, request_path: str) -> Optional[str]:
        if not request_path.startswith(OBJECTS_PATH_PREFIX):
            return None
        entity_id = request_path[len(OBJECTS_PATH_PREFIX):].strip("/")
        if not entity_id:
            return None
        return self._config.private_prefix + entity_id

    async def _exists(self, key: str) -> bool:
        try:
            return await self._storage.object_exists(key)
        except StorageError as e:
            raise BackendUnavailableError(f"Could not look up object: {e}") from e

    def _managed_ref(self, request_path: str) -> StoredObjectRef:
        key = self._key_for(request_path)
        if key is None or not self._config.is_configured:
            raise ObjectNotFoundError(request_path)
        return StoredObjectRef(bucket=self._config.bucket_name, key=key)

    async def resolve(self, request_path: str) -> StoredObjectRef:
        """
        Map a canonical path to its storage reference.

        Raises ObjectNotFoundError if the path is outside the managed
        namespace or no object is stored under it.
        """
        ref = self._managed_ref(request_path)
        if not await self._exists(ref.key):
            raise ObjectNotFoundError(request_path)
        return ref

    async def _read_policy(
        self,
        request_path: str,
        ref: StoredObjectRef,
    ) -> tuple[Optional[AccessPolicy], BlobMetadata]:
        try:
            metadata = await self._storage.get_metadata(ref.key)
        except StorageObjectNotFound as e:
            raise ObjectNotFoundError(request_path) from e
        except StorageError as e:
            raise BackendUnavailableError(f"Could not read metadata: {e}") from e

        raw = metadata.custom.get(ACL_POLICY_METADATA_KEY)
        if raw is None:
            return None, metadata

        try:
            return decode_policy(raw), metadata
        except MalformedPolicyError as e:
            logger.warning(
                "Ignoring malformed access policy",
                extra={"object_path": request_path, "error": str(e)}
            )
            return None, metadata

    async def get_object_policy(self, request_path: str) -> Optional[AccessPolicy]:
        """
        Return the object's policy, or None if absent or undecodable.

        Raises ObjectNotFoundError if no object is stored under the path.
        """
        ref = self._managed_ref(request_path)
        policy, _ = await self._read_policy(request_path, ref)
        return policy

    async def authorize_and_stream(
        self,
        request_path: str,
        requester: Identity,
        requested: Permission = Permission.READ,
    ) -> ObjectStream:
        """
        Check access and return a lazily streamed object.

        Raises ObjectNotFoundError if there is no such object and
        AccessDeniedError if the policy (or its absence) denies the
        requester. Both are logged with the requester for operators.
        """
        # One metadata read both proves existence and yields the policy
        ref = self._managed_ref(request_path)
        policy, metadata = await self._read_policy(request_path, ref)

        allowed = await can_access(policy, requester, requested, self._directory)
        if not allowed:
            logger.info(
                "Object access denied",
                extra={
                    "object_path": request_path,
                    "requester": requester,
                    "requested": requested.value,
                    "has_policy": policy is not None,
                }
            )
            raise AccessDeniedError(request_path)

        visibility = "public" if policy is not None and policy.is_public else "private"

        return ObjectStream(
            ref=ref,
            content_type=metadata.content_type,
            content_length=metadata.content_length,
            cache_control=f"{visibility}, max-age={self._config.download_cache_ttl_seconds}",
            chunks=self._chunks(request_path, ref.key),
        )

    async def _chunks(self, request_path: str, key: str) -> AsyncIterator[bytes]:
        try:
            async with aclosing(self._storage.stream_object(
                key,
                chunk_size=self._config.stream_chunk_size,
            )) as chunks:
                async for chunk in chunks:
                    yield chunk
        except StorageObjectNotFound as e:
            raise ObjectNotFoundError(request_path) from e
        except StorageError as e:
            raise BackendUnavailableError(f"Could not stream object: {e}") from e

    # ---------------------------------------------------------------------
    # Public assets
    # ---------------------------------------------------------------------

    async def search_public_object(self, file_path: str) -> Optional[StoredObjectRef]:
        """
        Find an unmanaged public asset under the configured search paths.

        These objects sit outside the private namespace and carry no
        policy; they are readable by anyone. Search paths are tried in
        order and the first hit wins.
        """
        file_path = file_path.lstrip("/")
        if not file_path:
            return None

        for search_path in self._config.public_object_search_paths:
            key = f"{search_path.strip('/')}/{file_path}"
            if await self._exists(key):
                return StoredObjectRef(bucket=self._config.bucket_name, key=key)

        return None

    async def stream_public_object(self, file_path: str) -> ObjectStream:
        """Stream a public asset. Raises ObjectNotFoundError if absent."""
        ref = await self.search_public_object(file_path)
        if ref is None:
            raise ObjectNotFoundError(file_path)

        try:
            metadata = await self._storage.get_metadata(ref.key)
        except StorageObjectNotFound as e:
            raise ObjectNotFoundError(file_path) from e
        except StorageError as e:
            raise BackendUnavailableError(f"Could not read metadata: {e}") from e

        return ObjectStream(
            ref=ref,
            content_type=metadata.content_type,
            content_length=metadata.content_length,
            cache_control=f"public, max-age={self._config.download_cache_ttl_seconds}",
            chunks=self._chunks(file_path, ref.key),
        )
