"""
Profile image and project media endpoints.

Both take the upload URL the client just PUT a file to, make the caller
its owner with public visibility, and return the canonical path to store
on the profile or project record. Objects that already carry a policy
follow the same replacement rule as PUT /api/objects/acl.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ...core.access.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    ObjectNotFoundError,
)
from ...core.access.models import Visibility
from ...core.access.service import ObjectAccessService
from ..dependencies import AuthenticatedUser, ObjectAccessServiceDep
from .objects import NOT_FOUND_DETAIL, attach_policy, storage_unavailable

logger = logging.getLogger(__name__)

router = APIRouter()


class ProfileImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(default="", alias="imageURL")


class ProfileImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_path: str = Field(alias="imagePath")


class ProjectMediaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    media_url: str = Field(default="", alias="mediaURL")


class ProjectMediaResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    media_path: str = Field(alias="mediaPath")


async def attach_public_policy(
    service: ObjectAccessService,
    upload_url: str,
    owner: str,
) -> str:
    """
    Finalize an upload as a public object.

    A fresh upload becomes owned by `owner`. An object that already has a
    policy is only made public if `owner` holds write access to it, and it
    keeps its original owner.
    """
    try:
        return await attach_policy(service, upload_url, owner, visibility=Visibility.PUBLIC)
    except (AccessDeniedError, ObjectNotFoundError) as e:
        logger.info(
            "Finalize rejected",
            extra={"user_id": owner, "upload_url": upload_url, "reason": type(e).__name__}
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL)
    except BackendUnavailableError as e:
        raise storage_unavailable(e)


@router.put(
    "/profile/image",
    response_model=ProfileImageResponse,
    summary="Set profile image from an uploaded file",
)
async def set_profile_image(
    request: ProfileImageRequest,
    user_id: AuthenticatedUser,
    service: ObjectAccessServiceDep,
) -> ProfileImageResponse:
    if not request.image_url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="imageURL is required",
        )

    image_path = await attach_public_policy(service, request.image_url, user_id)

    logger.info(
        "Profile image set",
        extra={"user_id": user_id, "image_path": image_path}
    )

    return ProfileImageResponse(image_path=image_path)


@router.put(
    "/projects/media",
    response_model=ProjectMediaResponse,
    summary="Attach an uploaded file to a project",
)
async def set_project_media(
    request: ProjectMediaRequest,
    user_id: AuthenticatedUser,
    service: ObjectAccessServiceDep,
) -> ProjectMediaResponse:
    if not request.media_url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="mediaURL is required",
        )

    media_path = await attach_public_policy(service, request.media_url, user_id)

    logger.info(
        "Project media set",
        extra={"user_id": user_id, "media_path": media_path}
    )

    return ProjectMediaResponse(media_path=media_path)
