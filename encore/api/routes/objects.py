"""
Object upload and retrieval endpoints.

Upload flow:
1. Client asks for an upload slot -> gets a short-lived signed URL
2. Client PUTs the file straight to object storage
3. Client hands the URL back to a media endpoint, which attaches an
   access policy and stores the canonical /objects/... path
4. Anyone the policy allows fetches the object via GET /objects/...

Denied and missing objects both answer 404 with the same body, so the
response never reveals whether a private object exists. Logs keep the
distinction.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ...core.access.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    ObjectNotFoundError,
)
from ...core.access.evaluator import can_access
from ...core.access.models import (
    AccessPolicy,
    AclRule,
    ObjectStream,
    Permission,
    UserListGroup,
    Visibility,
)
from ...core.access.service import OBJECTS_PATH_PREFIX, ObjectAccessService
from ..dependencies import AuthenticatedUser, CurrentUser, ObjectAccessServiceDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadSlotResponse(BaseModel):
    """Signed URL for a direct upload to object storage."""
    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadURL", description="PUT the file to this URL")
    object_path: str = Field(alias="objectPath", description="Canonical path once finalized")
    expires_in: int = Field(alias="expiresIn", description="Seconds until the URL expires")


class ObjectAclRequest(BaseModel):
    """Attach or replace the access policy of an uploaded object."""
    model_config = ConfigDict(populate_by_name=True)

    object_url: str = Field(alias="objectURL", min_length=1, description="Upload URL or /objects/... path")
    visibility: Visibility = Field(default=Visibility.PRIVATE)
    readers: list[str] = Field(default_factory=list, description="User ids granted read access")
    writers: list[str] = Field(default_factory=list, description="User ids granted write access")


class ObjectAclResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_path: str = Field(alias="objectPath")


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

NOT_FOUND_DETAIL = "Object not found"


def stream_response(stream: ObjectStream) -> StreamingResponse:
    """Stream an authorized object with passthrough headers."""
    return StreamingResponse(
        stream.chunks,
        media_type=stream.content_type,
        headers=stream.headers,
    )


def storage_unavailable(e: BackendUnavailableError) -> HTTPException:
    logger.error("Object storage unavailable", extra={"error": str(e)})
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Object storage is not available",
    )


def build_policy(
    owner: str,
    visibility: Visibility,
    readers: Optional[list[str]] = None,
    writers: Optional[list[str]] = None,
) -> AccessPolicy:
    """Build a policy with one user-list rule per non-empty permission list."""
    rules = []
    if writers:
        rules.append(AclRule(group=UserListGroup(tuple(writers)), permission=Permission.WRITE))
    if readers:
        rules.append(AclRule(group=UserListGroup(tuple(readers)), permission=Permission.READ))
    return AccessPolicy(owner=owner, visibility=visibility, acl_rules=tuple(rules))


async def attach_policy(
    service: ObjectAccessService,
    object_url: str,
    user_id: str,
    visibility: Visibility,
    readers: Optional[list[str]] = None,
    writers: Optional[list[str]] = None,
) -> str:
    """
    Attach a policy to an uploaded object on behalf of `user_id`.

    The first policy makes `user_id` the owner. Replacing an existing policy
    requires write access under it, and the existing owner is kept.

    Raises AccessDeniedError if the caller may not replace the policy.
    """
    object_path = service.normalize_object_path(object_url)

    owner = user_id
    if object_path.startswith(OBJECTS_PATH_PREFIX):
        existing = await service.get_object_policy(object_path)
        if existing is not None:
            if not await can_access(existing, user_id, Permission.WRITE, service.directory):
                raise AccessDeniedError(object_path)
            owner = existing.owner

    policy = build_policy(owner=owner, visibility=visibility, readers=readers, writers=writers)
    return await service.finalize_with_policy(object_path, policy)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/api/objects/upload",
    response_model=UploadSlotResponse,
    summary="Get a signed upload URL",
    responses={503: {"description": "Object storage is not configured"}},
)
async def request_upload_slot(
    user_id: AuthenticatedUser,
    service: ObjectAccessServiceDep,
) -> UploadSlotResponse:
    """Reserve an object path and return a signed URL to upload to."""
    try:
        handle = await service.issue_upload_slot()
    except BackendUnavailableError as e:
        raise storage_unavailable(e)

    logger.info(
        "Upload slot issued",
        extra={"user_id": user_id, "object_path": handle.object_path}
    )

    return UploadSlotResponse(
        upload_url=handle.upload_url,
        object_path=handle.object_path,
        expires_in=handle.expires_in,
    )


@router.put(
    "/api/objects/acl",
    response_model=ObjectAclResponse,
    summary="Set an object's access policy",
)
async def set_object_acl(
    request: ObjectAclRequest,
    user_id: AuthenticatedUser,
    service: ObjectAccessServiceDep,
) -> ObjectAclResponse:
    """
    Attach a policy to an uploaded object.

    The first caller to attach a policy becomes the owner. Afterwards only
    principals with write access may replace it, and the owner is kept.
    """
    object_path = service.normalize_object_path(request.object_url)
    if not object_path.startswith(OBJECTS_PATH_PREFIX):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="objectURL does not refer to an uploaded object",
        )

    try:
        object_path = await attach_policy(
            service,
            object_path,
            user_id,
            visibility=request.visibility,
            readers=request.readers,
            writers=request.writers,
        )
    except (AccessDeniedError, ObjectNotFoundError) as e:
        logger.info(
            "Policy update rejected",
            extra={"user_id": user_id, "object_path": object_path, "reason": type(e).__name__}
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    except BackendUnavailableError as e:
        raise storage_unavailable(e)

    return ObjectAclResponse(object_path=object_path)


@router.get(
    "/objects/{object_path:path}",
    summary="Download an uploaded object",
    responses={404: {"description": "Object not found or not accessible"}},
)
async def get_object(
    object_path: str,
    user_id: CurrentUser,
    service: ObjectAccessServiceDep,
) -> StreamingResponse:
    """Stream an object if its policy lets the requester read it."""
    request_path = OBJECTS_PATH_PREFIX + object_path

    try:
        stream = await service.authorize_and_stream(request_path, user_id, Permission.READ)
    except (AccessDeniedError, ObjectNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    except BackendUnavailableError as e:
        raise storage_unavailable(e)

    return stream_response(stream)


@router.get(
    "/public-objects/{file_path:path}",
    summary="Download a public asset",
    responses={404: {"description": "Asset not found"}},
)
async def get_public_object(
    file_path: str,
    service: ObjectAccessServiceDep,
) -> StreamingResponse:
    """Stream a static asset from the public search paths. No policy check."""
    try:
        stream = await service.stream_public_object(file_path)
    except ObjectNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    except BackendUnavailableError as e:
        raise storage_unavailable(e)

    return stream_response(stream)
