"""
Role capability table.

Every authorization decision goes through `require_capability`; call sites
never compare role strings themselves.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet

from contractflow.errors import ForbiddenError
from contractflow.models.enums import ApprovalStatus, MembershipRole


class Capability(str, Enum):
    READ_DOCUMENT = "read_document"
    CREATE_DOCUMENT = "create_document"
    UPDATE_DOCUMENT = "update_document"
    GENERATE_DRAFT = "generate_draft"
    REQUEST_REVIEW = "request_review"
    APPROVE = "approve"
    SEND_BACK = "send_back"
    MANAGE_DRAFT_JOBS = "manage_draft_jobs"
    READ_AUDIT = "read_audit"


_EVERYONE = frozenset(MembershipRole)
_EDITORS = frozenset({MembershipRole.OWNER, MembershipRole.ADMIN, MembershipRole.MEMBER})
_MANAGERS = frozenset({MembershipRole.OWNER, MembershipRole.ADMIN})

CAPABILITY_ROLES: Dict[Capability, FrozenSet[MembershipRole]] = {
    Capability.READ_DOCUMENT: _EVERYONE,
    Capability.CREATE_DOCUMENT: _EDITORS,
    Capability.UPDATE_DOCUMENT: _EDITORS,
    Capability.GENERATE_DRAFT: _EDITORS,
    Capability.REQUEST_REVIEW: _EDITORS,
    Capability.APPROVE: _MANAGERS,
    Capability.SEND_BACK: _MANAGERS,
    Capability.MANAGE_DRAFT_JOBS: _MANAGERS,
    Capability.READ_AUDIT: _EVERYONE,
}

# Which capability a caller needs to move a document *into* each approval status
APPROVAL_CAPABILITY: Dict[ApprovalStatus, Capability] = {
    ApprovalStatus.REVIEW: Capability.REQUEST_REVIEW,
    ApprovalStatus.APPROVED: Capability.APPROVE,
    ApprovalStatus.DRAFT: Capability.SEND_BACK,
}


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the authentication layer. Trusted as-is."""
    user_id: str
    organization_id: str
    role: MembershipRole


def has_capability(role: MembershipRole, capability: Capability) -> bool:
    return role in CAPABILITY_ROLES[capability]


def require_capability(actor: Actor, capability: Capability) -> None:
    if not has_capability(actor.role, capability):
        raise ForbiddenError(
            f"Role {actor.role.value} may not perform {capability.value}.",
            details={"capability": capability.value},
        )
