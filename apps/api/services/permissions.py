"""Identity context and the per-operation capability table."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from apps.api.core.errors import ForbiddenError, UnauthorizedError


class Role(str, Enum):
    """Supported roles, lowest privilege first."""

    GUEST = "GUEST"
    SELLER = "SELLER"
    APPROVER = "APPROVER"
    ADMIN = "ADMIN"


@dataclass(frozen=True, slots=True)
class Provenance:
    """Where a request came from; copied into audit events."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class Identity:
    """Resolved caller handed to every operation. The core never authenticates."""

    user_id: str | None
    role: Role = Role.GUEST
    provenance: Provenance = field(default_factory=Provenance)

    @classmethod
    def anonymous(cls, provenance: Provenance | None = None) -> "Identity":
        return cls(user_id=None, role=Role.GUEST, provenance=provenance or Provenance())

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == Role.ADMIN


class Capability(str, Enum):
    """Named permissions checked by the services."""

    SUBMIT_APPLICATION = "submit_application"
    REVIEW_APPLICATIONS = "review_applications"
    DECIDE_APPLICATION = "decide_application"
    CREATE_LISTING = "create_listing"
    MANAGE_ANY_LISTING = "manage_any_listing"
    MODERATE_LISTING = "moderate_listing"
    SEND_MESSAGE = "send_message"
    READ_MESSAGES = "read_messages"
    AUTHOR_DISCUSSION = "author_discussion"
    MODERATE_DISCUSSION = "moderate_discussion"
    MANAGE_OWN_ACCOUNT = "manage_own_account"
    LOCK_USER = "lock_user"
    VIEW_AUDIT_LOG = "view_audit_log"


_ALL_ROLES = frozenset(Role)
_OWNERS = frozenset({Role.SELLER, Role.APPROVER, Role.ADMIN})
_REVIEWERS = frozenset({Role.APPROVER, Role.ADMIN})
_ADMINS = frozenset({Role.ADMIN})

CAPABILITIES: Mapping[Capability, frozenset[Role]] = {
    Capability.SUBMIT_APPLICATION: frozenset({Role.GUEST, Role.SELLER}),
    Capability.REVIEW_APPLICATIONS: _REVIEWERS,
    Capability.DECIDE_APPLICATION: _REVIEWERS,
    Capability.CREATE_LISTING: _OWNERS,
    Capability.MANAGE_ANY_LISTING: _ADMINS,
    Capability.MODERATE_LISTING: _ADMINS,
    Capability.SEND_MESSAGE: _ALL_ROLES,
    Capability.READ_MESSAGES: _ALL_ROLES,
    Capability.AUTHOR_DISCUSSION: _OWNERS,
    Capability.MODERATE_DISCUSSION: _ADMINS,
    Capability.MANAGE_OWN_ACCOUNT: _ALL_ROLES,
    Capability.LOCK_USER: _ADMINS,
    Capability.VIEW_AUDIT_LOG: _ADMINS,
}

_DENIAL_MESSAGES: Mapping[Capability, str] = {
    Capability.SUBMIT_APPLICATION: "Only guests and sellers can apply for suite verification",
    Capability.REVIEW_APPLICATIONS: "Admin or Approver access required",
    Capability.DECIDE_APPLICATION: "Admin or Approver access required",
    Capability.CREATE_LISTING: "You must be an approved seller to create listings",
    Capability.AUTHOR_DISCUSSION: "You must be a verified suite owner to post in discussions",
}


def can(identity: Identity, capability: Capability) -> bool:
    """Pure predicate; anonymous callers hold no capabilities."""

    if not identity.is_authenticated:
        return False
    return identity.role in CAPABILITIES[capability]


def authorize(identity: Identity, capability: Capability) -> str:
    """Ensure the identity may use ``capability`` and return its user id."""

    if identity.user_id is None:
        raise UnauthorizedError("Authentication required")
    if identity.role not in CAPABILITIES[capability]:
        raise ForbiddenError(_DENIAL_MESSAGES.get(capability, "Insufficient permissions"))
    return identity.user_id


def is_owner_or_admin(identity: Identity, owner_id: str) -> bool:
    return identity.is_authenticated and (identity.user_id == owner_id or identity.role == Role.ADMIN)


def require_user(identity: Identity) -> str:
    """Return the caller's user id or raise ``UnauthorizedError``."""

    if identity.user_id is None:
        raise UnauthorizedError("Authentication required")
    return identity.user_id
