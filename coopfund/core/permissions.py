"""
Capability checks for cooperative members.

Members carry a role and, optionally, an explicit JSON list of capability
strings. ``has_permission`` is the single place those are interpreted.
"""
from typing import Dict, FrozenSet, Iterable, List, Optional
import enum
import json
import logging

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    """Granular capabilities the loan engine checks"""
    LOANS_VIEW = "loans:view"
    LOANS_APPROVE = "loans:approve"
    LOANS_REJECT = "loans:reject"
    LOANS_CONFIGURE = "loans:configure"
    LEDGER_VIEW = "ledger:view"


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


SUPERUSER_ROLES = frozenset({MemberRole.OWNER.value, MemberRole.ADMIN.value})

DEFAULT_ROLE_CAPABILITIES: Dict[str, FrozenSet[Capability]] = {
    MemberRole.MODERATOR.value: frozenset({Capability.LOANS_VIEW, Capability.LEDGER_VIEW}),
    MemberRole.MEMBER.value: frozenset(),
}


def parse_permissions(permissions_json: Optional[str]) -> List[str]:
    """Parse the stored permission list, tolerating empty or broken JSON"""
    if not permissions_json:
        return []
    try:
        parsed = json.loads(permissions_json)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed permission list: %r", permissions_json)
        return []
    return parsed if isinstance(parsed, list) else []


def has_permission(role: str, permissions: Optional[Iterable[str]], required: Capability) -> bool:
    """Check whether a role / explicit permission set grants a capability"""
    role_value = role.value if isinstance(role, MemberRole) else role
    if role_value in SUPERUSER_ROLES:
        return True

    if permissions:
        return required.value in set(permissions)

    return required in DEFAULT_ROLE_CAPABILITIES.get(role_value, frozenset())
