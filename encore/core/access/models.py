"""
Domain models for object access control.

An AccessPolicy is attached to exactly one stored object and decides who
may read or write it. These models have no dependency on the blob store,
the web framework, or the wire format; the codec and the storage client
translate to and from them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, ClassVar, Optional, Protocol, Union

# Authenticated user id, or None for an anonymous requester.
Identity = Optional[str]


class Permission(Enum):
    """What a requester wants to do with an object."""
    READ = "read"
    WRITE = "write"

    def satisfies(self, requested: "Permission") -> bool:
        """
        Does a grant of this permission cover the requested one?

        Write implies read: a principal allowed to write can also read.
        """
        if requested is Permission.READ:
            return self in (Permission.READ, Permission.WRITE)
        return self is Permission.WRITE


class Visibility(Enum):
    """Coarse public/private flag on a policy."""
    PUBLIC = "public"
    PRIVATE = "private"


class MembershipDirectory(Protocol):
    """
    External lookup for group memberships that are not stored in the policy.

    Implementations typically call a billing or profile service, so every
    call is a suspension point and may fail.
    """

    async def has_subscription_tier(self, user_id: str, tier: str) -> bool:
        """Return True if the user currently holds the given subscription tier."""
        ...


@dataclass(frozen=True)
class UserListGroup:
    """An explicit set of user ids. Order is kept so encoding is stable."""
    user_ids: tuple[str, ...] = ()

    type_tag: ClassVar[str] = "userList"

    async def is_member(
        self,
        identity: str,
        directory: Optional[MembershipDirectory] = None,
    ) -> bool:
        return identity in self.user_ids


@dataclass(frozen=True)
class SubscriptionTierGroup:
    """
    Everyone holding a given subscription tier (e.g. "label-pro").

    Membership lives outside the policy, so it is resolved through the
    MembershipDirectory. Without a directory nobody is a member.
    """
    tier: str

    type_tag: ClassVar[str] = "subscriptionTier"

    def __post_init__(self) -> None:
        if not self.tier.strip():
            raise ValueError("Subscription tier cannot be empty")

    async def is_member(
        self,
        identity: str,
        directory: Optional[MembershipDirectory] = None,
    ) -> bool:
        if directory is None:
            return False
        return await directory.has_subscription_tier(identity, self.tier)


# Closed set of group variants. Adding a variant means adding it here and
# teaching the codec its tag.
GroupDefinition = Union[UserListGroup, SubscriptionTierGroup]


@dataclass(frozen=True)
class AclRule:
    """Grants `permission` to every member of `group`."""
    group: GroupDefinition
    permission: Permission


@dataclass(frozen=True)
class AccessPolicy:
    """
    Ownership and visibility of one stored object.

    The owner always has read and write access. Public visibility opens
    reads to everyone, anonymous requesters included. ACL rules extend
    access to groups beyond the owner and are checked in order.
    """
    owner: str
    visibility: Visibility = Visibility.PRIVATE
    acl_rules: tuple[AclRule, ...] = ()

    def __post_init__(self) -> None:
        if not self.owner or not self.owner.strip():
            raise ValueError("Policy owner cannot be empty")

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC


@dataclass(frozen=True)
class StoredObjectRef:
    """Handle to one blob in the backing store."""
    bucket: str
    key: str


@dataclass(frozen=True)
class SignedUploadHandle:
    """
    A time-limited URL the client uploads to directly.

    `object_path` is the canonical path the object will have once the
    upload is finalized; callers may pass either field back to
    finalize_with_policy.
    """
    upload_url: str
    object_path: str
    expires_in: int


@dataclass
class ObjectStream:
    """
    An authorized read, ready to be sent to the client.

    `chunks` is consumed lazily from the backend; nothing is buffered
    beyond one chunk.
    """
    ref: StoredObjectRef
    content_type: str
    content_length: Optional[int]
    cache_control: str
    chunks: AsyncIterator[bytes]

    @property
    def headers(self) -> dict[str, str]:
        """Response headers passed through from the backend metadata."""
        headers = {
            "Content-Type": self.content_type,
            "Cache-Control": self.cache_control,
        }
        if self.content_length is not None:
            headers["Content-Length"] = str(self.content_length)
        return headers
