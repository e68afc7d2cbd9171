"""
Policy codec: AccessPolicy <-> string.

The blob store only offers a flat string metadata slot per object, so the
policy is stored as compact JSON. The encoded form carries a schema version;
objects written by a newer schema are rejected rather than half-understood.

Encoded shape (version 1):

    {"version": 1, "owner": "u1", "visibility": "private",
     "aclRules": [{"group": {"type": "userList", "ids": ["u3"]},
                   "permission": "read"}]}

Pydantic validates the wire shape; the domain dataclasses stay free of it.
"""

import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedPolicyError
from .models import (
    AccessPolicy,
    AclRule,
    GroupDefinition,
    Permission,
    SubscriptionTierGroup,
    UserListGroup,
    Visibility,
)

POLICY_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Wire Schema
# ---------------------------------------------------------------------------

class _UserListGroupSchema(BaseModel):
    type: Literal["userList"]
    ids: list[str] = Field(default_factory=list)


class _SubscriptionTierGroupSchema(BaseModel):
    type: Literal["subscriptionTier"]
    tier: str = Field(min_length=1)


_GroupSchema = Annotated[
    Union[_UserListGroupSchema, _SubscriptionTierGroupSchema],
    Field(discriminator="type"),
]


class _AclRuleSchema(BaseModel):
    group: _GroupSchema
    permission: Literal["read", "write"]


class _PolicySchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: Literal[1]
    owner: str = Field(min_length=1)
    visibility: Literal["public", "private"]
    acl_rules: list[_AclRuleSchema] = Field(default_factory=list, alias="aclRules")


# ---------------------------------------------------------------------------
# Group Mapping
# ---------------------------------------------------------------------------

def _group_to_schema(group: GroupDefinition) -> Union[_UserListGroupSchema, _SubscriptionTierGroupSchema]:
    if isinstance(group, UserListGroup):
        return _UserListGroupSchema(type=UserListGroup.type_tag, ids=list(group.user_ids))
    if isinstance(group, SubscriptionTierGroup):
        return _SubscriptionTierGroupSchema(type=SubscriptionTierGroup.type_tag, tier=group.tier)
    raise TypeError(f"Unknown access group type: {type(group).__name__}")


def _group_from_schema(schema: Union[_UserListGroupSchema, _SubscriptionTierGroupSchema]) -> GroupDefinition:
    if isinstance(schema, _UserListGroupSchema):
        return UserListGroup(user_ids=tuple(schema.ids))
    return SubscriptionTierGroup(tier=schema.tier)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def encode_policy(policy: AccessPolicy) -> str:
    """
    Encode a policy as canonical compact JSON.

    Key order is fixed by the schema, so equal policies always encode to
    the same string. The output is pure ASCII.
    """
    schema = _PolicySchema(
        version=POLICY_SCHEMA_VERSION,
        owner=policy.owner,
        visibility=policy.visibility.value,
        acl_rules=[
            _AclRuleSchema(
                group=_group_to_schema(rule.group),
                permission=rule.permission.value,
            )
            for rule in policy.acl_rules
        ],
    )
    # Object metadata values must be ASCII, so non-ASCII ids are escaped
    return json.dumps(
        schema.model_dump(mode="json", by_alias=True),
        separators=(",", ":"),
        ensure_ascii=True,
    )


def decode_policy(raw: str) -> AccessPolicy:
    """
    Decode a stored policy string.

    Raises MalformedPolicyError if the string is not valid JSON, carries an
    unknown schema version, lacks an owner, or contains an invalid
    visibility, group type or permission. Callers reading untrusted
    metadata must treat this as "no usable policy".
    """
    if not isinstance(raw, (str, bytes)):
        raise MalformedPolicyError(f"Policy must be a string, got {type(raw).__name__}")

    try:
        schema = _PolicySchema.model_validate_json(raw)
        return AccessPolicy(
            owner=schema.owner,
            visibility=Visibility(schema.visibility),
            acl_rules=tuple(
                AclRule(
                    group=_group_from_schema(rule.group),
                    permission=Permission(rule.permission),
                )
                for rule in schema.acl_rules
            ),
        )
    except ValidationError as e:
        raise MalformedPolicyError(
            f"Invalid policy data ({e.error_count()} errors)"
        ) from e
    except ValueError as e:
        # Domain-level checks, e.g. a whitespace-only owner
        raise MalformedPolicyError(f"Invalid policy data: {e}") from e
