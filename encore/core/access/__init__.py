"""
Access control for uploaded media.

Contains the policy model, its string codec, the permission evaluator,
and the service that ties them to object storage.
"""

from .codec import decode_policy, encode_policy
from .errors import (
    AccessDeniedError,
    BackendUnavailableError,
    MalformedPolicyError,
    ObjectAccessError,
    ObjectNotFoundError,
)
from .evaluator import can_access
from .models import (
    AccessPolicy,
    AclRule,
    GroupDefinition,
    Identity,
    MembershipDirectory,
    ObjectStream,
    Permission,
    SignedUploadHandle,
    StoredObjectRef,
    SubscriptionTierGroup,
    UserListGroup,
    Visibility,
)
from .service import (
    ACL_POLICY_METADATA_KEY,
    ObjectAccessService,
    ObjectStorageConfig,
)

__all__ = [
    "decode_policy",
    "encode_policy",
    "AccessDeniedError",
    "BackendUnavailableError",
    "MalformedPolicyError",
    "ObjectAccessError",
    "ObjectNotFoundError",
    "can_access",
    "AccessPolicy",
    "AclRule",
    "GroupDefinition",
    "Identity",
    "MembershipDirectory",
    "ObjectStream",
    "Permission",
    "SignedUploadHandle",
    "StoredObjectRef",
    "SubscriptionTierGroup",
    "UserListGroup",
    "Visibility",
    "ACL_POLICY_METADATA_KEY",
    "ObjectAccessService",
    "ObjectStorageConfig",
]
