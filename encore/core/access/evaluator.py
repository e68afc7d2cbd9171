"""
Permission evaluation for stored objects.

A pure decision function: given a policy, a requester and a requested
permission, allow or deny. The only I/O is delegated group-membership
lookups, which may hit an external service.

Checks run cheapest-first so that the common cases (public media, owners
managing their own uploads) never pay for membership lookups.
"""

import logging
from typing import Optional

from .models import AccessPolicy, Identity, MembershipDirectory, Permission

logger = logging.getLogger(__name__)


async def can_access(
    policy: Optional[AccessPolicy],
    requester: Identity,
    requested: Permission,
    directory: Optional[MembershipDirectory] = None,
) -> bool:
    """
    Decide whether `requester` may exercise `requested` on an object.

    First match wins:
    1. No policy -> deny (fail closed).
    2. Read of a public object -> allow, even anonymously.
    3. Anonymous requester -> deny.
    4. Owner -> allow.
    5. First ACL rule whose permission covers the request and whose
       group contains the requester -> allow.
    6. Otherwise deny.

    A membership lookup that raises counts as "not a member" for that rule
    and scanning continues, so an unreachable directory degrades access
    instead of failing the request.

    Raises TypeError if `requested` is not a Permission.
    """
    if not isinstance(requested, Permission):
        raise TypeError(f"Unrecognized permission: {requested!r}")

    if policy is None:
        return False

    if requested is Permission.READ and policy.is_public:
        return True

    if requester is None:
        return False

    if requester == policy.owner:
        return True

    for index, rule in enumerate(policy.acl_rules):
        if not rule.permission.satisfies(requested):
            continue

        try:
            if await rule.group.is_member(requester, directory):
                return True
        except Exception as e:
            logger.warning(
                "Group membership lookup failed, treating as non-member",
                extra={
                    "rule_index": index,
                    "group_type": rule.group.type_tag,
                    "requester": requester,
                    "error": str(e),
                }
            )

    return False
