"""
Unit tests for the access policy codec.

The codec is the boundary between untrusted object metadata and the
domain model, so most of these tests are about what it refuses to decode.
"""

import json

import pytest

from encore.core.access.codec import POLICY_SCHEMA_VERSION, decode_policy, encode_policy
from encore.core.access.errors import MalformedPolicyError
from encore.core.access.models import (
    AccessPolicy,
    AclRule,
    Permission,
    SubscriptionTierGroup,
    UserListGroup,
    Visibility,
)


@pytest.fixture
def shared_policy() -> AccessPolicy:
    """A private portfolio sample shared with a label and its subscribers."""
    return AccessPolicy(
        owner="artist-1",
        visibility=Visibility.PRIVATE,
        acl_rules=(
            AclRule(group=UserListGroup(("label-7", "label-9")), permission=Permission.READ),
            AclRule(group=SubscriptionTierGroup("label-pro"), permission=Permission.WRITE),
        ),
    )


class TestEncode:
    """Tests for policy encoding."""

    def test_encodes_versioned_json(self, shared_policy):
        """Encoded policies carry the schema version and camelCase rule list."""
        data = json.loads(encode_policy(shared_policy))

        assert data["version"] == POLICY_SCHEMA_VERSION
        assert data["owner"] == "artist-1"
        assert data["visibility"] == "private"
        assert data["aclRules"][0] == {
            "group": {"type": "userList", "ids": ["label-7", "label-9"]},
            "permission": "read",
        }
        assert data["aclRules"][1] == {
            "group": {"type": "subscriptionTier", "tier": "label-pro"},
            "permission": "write",
        }

    def test_equal_policies_encode_identically(self):
        """Encoding is deterministic so repeated finalization writes the same bytes."""
        first = AccessPolicy(owner="u1", visibility=Visibility.PUBLIC)
        second = AccessPolicy(owner="u1", visibility=Visibility.PUBLIC)

        assert encode_policy(first) == encode_policy(second)

    def test_encoding_is_compact(self):
        """Metadata slots are small; no whitespace padding."""
        encoded = encode_policy(AccessPolicy(owner="u1"))

        assert " " not in encoded
        assert "\n" not in encoded


class TestRoundTrip:
    """decode(encode(p)) == p."""

    def test_round_trips_policy_with_rules(self, shared_policy):
        assert decode_policy(encode_policy(shared_policy)) == shared_policy

    def test_round_trips_minimal_public_policy(self):
        policy = AccessPolicy(owner="u1", visibility=Visibility.PUBLIC)

        assert decode_policy(encode_policy(policy)) == policy

    def test_non_ascii_ids_encode_as_ascii(self):
        """Object metadata only accepts ASCII, so ids are escaped, not dropped."""
        policy = AccessPolicy(
            owner="zoë",
            acl_rules=(AclRule(group=UserListGroup(("renée", "u2")), permission=Permission.READ),),
        )

        encoded = encode_policy(policy)

        assert encoded.isascii()
        assert decode_policy(encoded) == policy

    def test_preserves_rule_and_member_order(self):
        """Rules are evaluated in order, so order must survive storage."""
        policy = AccessPolicy(
            owner="u1",
            acl_rules=(
                AclRule(group=UserListGroup(("c", "a", "b")), permission=Permission.WRITE),
                AclRule(group=UserListGroup(("z",)), permission=Permission.READ),
            ),
        )

        decoded = decode_policy(encode_policy(policy))

        assert decoded.acl_rules[0].group.user_ids == ("c", "a", "b")
        assert decoded.acl_rules[1].permission is Permission.READ


class TestDecodeRejects:
    """Anything that isn't a valid version-1 policy is malformed."""

    def _raw(self, **overrides) -> str:
        data = {"version": 1, "owner": "u1", "visibility": "private", "aclRules": []}
        data.update(overrides)
        return json.dumps(data)

    def test_rejects_non_json(self):
        with pytest.raises(MalformedPolicyError):
            decode_policy("owner=u1;visibility=public")

    def test_rejects_empty_string(self):
        with pytest.raises(MalformedPolicyError):
            decode_policy("")

    def test_rejects_non_string(self):
        with pytest.raises(MalformedPolicyError):
            decode_policy(None)

    def test_rejects_missing_owner(self):
        data = {"version": 1, "visibility": "public"}
        with pytest.raises(MalformedPolicyError):
            decode_policy(json.dumps(data))

    def test_rejects_blank_owner(self):
        with pytest.raises(MalformedPolicyError):
            decode_policy(self._raw(owner="   "))

    def test_rejects_invalid_visibility(self):
        with pytest.raises(MalformedPolicyError):
            decode_policy(self._raw(visibility="friends-only"))

    def test_rejects_unknown_group_type(self):
        rules = [{"group": {"type": "role", "name": "admin"}, "permission": "read"}]
        with pytest.raises(MalformedPolicyError):
            decode_policy(self._raw(aclRules=rules))

    def test_rejects_invalid_permission(self):
        rules = [{"group": {"type": "userList", "ids": ["u2"]}, "permission": "delete"}]
        with pytest.raises(MalformedPolicyError):
            decode_policy(self._raw(aclRules=rules))

    def test_rejects_unknown_version(self):
        """Newer schemas are rejected rather than guessed at."""
        with pytest.raises(MalformedPolicyError):
            decode_policy(self._raw(version=2))

    def test_rejects_missing_version(self):
        data = {"owner": "u1", "visibility": "public"}
        with pytest.raises(MalformedPolicyError):
            decode_policy(json.dumps(data))

    def test_accepts_missing_rule_list(self):
        """aclRules is optional."""
        data = {"version": 1, "owner": "u1", "visibility": "public"}

        policy = decode_policy(json.dumps(data))

        assert policy == AccessPolicy(owner="u1", visibility=Visibility.PUBLIC)
