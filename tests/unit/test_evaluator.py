"""
Unit tests for permission evaluation.

Evaluation is pure apart from group-membership lookups, so these tests
use a fake membership directory and no storage at all.
"""

import pytest

from encore.core.access.evaluator import can_access
from encore.core.access.models import (
    AccessPolicy,
    AclRule,
    Permission,
    SubscriptionTierGroup,
    UserListGroup,
    Visibility,
)


class FakeDirectory:
    """Membership directory backed by a dict, recording every lookup."""

    def __init__(self, tiers: dict[str, set[str]] | None = None) -> None:
        self._tiers = tiers or {}
        self.lookups: list[tuple[str, str]] = []

    async def has_subscription_tier(self, user_id: str, tier: str) -> bool:
        self.lookups.append((user_id, tier))
        return tier in self._tiers.get(user_id, set())


class UnreachableDirectory:
    """Membership directory whose backing service is down."""

    async def has_subscription_tier(self, user_id: str, tier: str) -> bool:
        raise ConnectionError("billing service unreachable")


def private_policy(*rules: AclRule) -> AccessPolicy:
    return AccessPolicy(owner="u1", visibility=Visibility.PRIVATE, acl_rules=tuple(rules))


def public_policy(*rules: AclRule) -> AccessPolicy:
    return AccessPolicy(owner="u1", visibility=Visibility.PUBLIC, acl_rules=tuple(rules))


# ---------------------------------------------------------------------------
# Permission Tests
# ---------------------------------------------------------------------------

class TestPermission:
    """Write implies read."""

    def test_write_satisfies_read_and_write(self):
        assert Permission.WRITE.satisfies(Permission.READ)
        assert Permission.WRITE.satisfies(Permission.WRITE)

    def test_read_satisfies_only_read(self):
        assert Permission.READ.satisfies(Permission.READ)
        assert not Permission.READ.satisfies(Permission.WRITE)


# ---------------------------------------------------------------------------
# Evaluation Order Tests
# ---------------------------------------------------------------------------

class TestCanAccess:
    """Tests for the first-match-wins evaluation order."""

    @pytest.mark.asyncio
    async def test_missing_policy_denies_everyone(self):
        """No policy means fail closed, owner-to-be included."""
        assert not await can_access(None, "u1", Permission.READ)
        assert not await can_access(None, None, Permission.READ)
        assert not await can_access(None, "u1", Permission.WRITE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requester", [None, "u1", "stranger"])
    async def test_public_read_allows_anyone(self, requester):
        assert await can_access(public_policy(), requester, Permission.READ)

    @pytest.mark.asyncio
    async def test_public_does_not_open_writes(self):
        assert not await can_access(public_policy(), None, Permission.WRITE)
        assert not await can_access(public_policy(), "stranger", Permission.WRITE)

    @pytest.mark.asyncio
    async def test_anonymous_denied_on_private(self):
        policy = private_policy(
            AclRule(group=UserListGroup(("u3",)), permission=Permission.READ),
        )

        assert not await can_access(policy, None, Permission.READ)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("visibility", [Visibility.PUBLIC, Visibility.PRIVATE])
    @pytest.mark.parametrize("requested", [Permission.READ, Permission.WRITE])
    async def test_owner_has_full_access(self, visibility, requested):
        policy = AccessPolicy(owner="u1", visibility=visibility)

        assert await can_access(policy, "u1", requested)

    @pytest.mark.asyncio
    async def test_private_without_rules_denies_others(self):
        assert not await can_access(private_policy(), "u2", Permission.READ)
        assert not await can_access(private_policy(), "u2", Permission.WRITE)

    @pytest.mark.asyncio
    async def test_user_list_read_rule(self):
        """A read rule grants reads to listed users only, and never writes."""
        policy = private_policy(
            AclRule(group=UserListGroup(("u3",)), permission=Permission.READ),
        )

        assert await can_access(policy, "u3", Permission.READ)
        assert not await can_access(policy, "u3", Permission.WRITE)
        assert not await can_access(policy, "u4", Permission.READ)

    @pytest.mark.asyncio
    async def test_user_list_write_rule_also_grants_read(self):
        policy = private_policy(
            AclRule(group=UserListGroup(("u3",)), permission=Permission.WRITE),
        )

        assert await can_access(policy, "u3", Permission.READ)
        assert await can_access(policy, "u3", Permission.WRITE)

    @pytest.mark.asyncio
    async def test_later_rule_can_grant(self):
        """Rules are scanned in order until one matches."""
        policy = private_policy(
            AclRule(group=UserListGroup(("u3",)), permission=Permission.READ),
            AclRule(group=UserListGroup(("u5",)), permission=Permission.READ),
        )

        assert await can_access(policy, "u5", Permission.READ)

    @pytest.mark.asyncio
    async def test_rejects_unknown_permission(self):
        """Passing something other than a Permission is a caller bug."""
        with pytest.raises(TypeError):
            await can_access(private_policy(), "u1", "read")


# ---------------------------------------------------------------------------
# Membership Lookup Tests
# ---------------------------------------------------------------------------

class TestSubscriptionTierGroups:
    """Tests for groups resolved through the membership directory."""

    @pytest.mark.asyncio
    async def test_directory_member_is_granted(self):
        directory = FakeDirectory({"label-7": {"label-pro"}})
        policy = private_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.READ),
        )

        assert await can_access(policy, "label-7", Permission.READ, directory)
        assert not await can_access(policy, "label-8", Permission.READ, directory)

    @pytest.mark.asyncio
    async def test_no_directory_means_no_members(self):
        policy = private_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.READ),
        )

        assert not await can_access(policy, "label-7", Permission.READ)

    @pytest.mark.asyncio
    async def test_public_read_skips_lookups(self):
        """Visibility is decided before any membership lookup."""
        directory = FakeDirectory()
        policy = public_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.READ),
        )

        assert await can_access(policy, "label-7", Permission.READ, directory)
        assert directory.lookups == []

    @pytest.mark.asyncio
    async def test_owner_skips_lookups(self):
        directory = FakeDirectory()
        policy = private_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.WRITE),
        )

        assert await can_access(policy, "u1", Permission.WRITE, directory)
        assert directory.lookups == []

    @pytest.mark.asyncio
    async def test_non_matching_permission_skips_lookup(self):
        """A read rule cannot satisfy a write, so it isn't worth a lookup."""
        directory = FakeDirectory({"label-7": {"label-pro"}})
        policy = private_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.READ),
        )

        assert not await can_access(policy, "label-7", Permission.WRITE, directory)
        assert directory.lookups == []

    @pytest.mark.asyncio
    async def test_failed_lookup_denies_that_rule_and_continues(self):
        """An unreachable directory degrades access instead of raising."""
        policy = private_policy(
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.READ),
            AclRule(group=UserListGroup(("label-7",)), permission=Permission.READ),
        )

        assert await can_access(policy, "label-7", Permission.READ, UnreachableDirectory())
        assert not await can_access(policy, "label-8", Permission.READ, UnreachableDirectory())
