"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests via app.dependency_overrides
- Configuration is centralized

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.access.service import ObjectAccessService
from ..infrastructure.storage.client import StorageClient, create_storage_client

logger = logging.getLogger(__name__)

# The session middleware in front of this service authenticates the user
# and forwards their id in this header. Absent header = anonymous.
user_id_header = APIKeyHeader(name="X-User-Id", auto_error=False)

# Global mock instance (shared across requests for testing)
_mock_storage_client = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def get_current_user(
    user_id: Optional[str] = Security(user_id_header),
) -> Optional[str]:
    """Return the authenticated user id, or None for anonymous requests."""
    if user_id is None or not user_id.strip():
        return None
    return user_id.strip()


async def require_user(
    user_id: Annotated[Optional[str], Depends(get_current_user)],
) -> str:
    """
    Require an authenticated user.

    Raises 401 if the request carries no user identity.
    """
    if user_id is None:
        logger.warning("Request missing user identity")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_id


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClient:
    """
    Provide storage client for media uploads/downloads.

    Returns either R2 client or mock client based on settings.

    In mock mode, we reuse the same client across requests
    so that uploaded objects persist during the testing session.
    The mock uses the configured bucket and endpoint, and is replaced
    if either changes.
    """
    global _mock_storage_client

    if settings.r2_mock_mode:
        config = settings.storage_config()
        if (
            _mock_storage_client is None
            or _mock_storage_client.bucket_name != config.bucket_name
            or _mock_storage_client.endpoint_url != config.endpoint_url.rstrip("/")
        ):
            _mock_storage_client = create_storage_client(config=config, mock_mode=True)
            logger.info(
                "Created shared mock storage client for session",
                extra={"bucket": config.bucket_name, "endpoint": config.endpoint_url}
            )
        logger.debug("Using shared mock storage client")
        return _mock_storage_client

    client = create_storage_client(config=settings.storage_config())
    logger.debug("Created R2 storage client")
    return client


def get_object_access_service(
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[StorageClient, Depends(get_storage_client)],
) -> ObjectAccessService:
    """
    Provide the object access service.

    The service is stateless, so a new instance per request is fine.
    """
    return ObjectAccessService(
        storage=storage,
        config=settings.object_storage_config(),
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
CurrentUser = Annotated[Optional[str], Depends(get_current_user)]
AuthenticatedUser = Annotated[str, Depends(require_user)]
StorageClientDep = Annotated[StorageClient, Depends(get_storage_client)]
ObjectAccessServiceDep = Annotated[ObjectAccessService, Depends(get_object_access_service)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
