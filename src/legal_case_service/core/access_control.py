"""Access control for cases, documents and notes.

Decisions are a pure lookup over (relationship, confidentiality level, action).
Overlay rules for internal notes and infected documents are applied after the
table and can only narrow a grant.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from legal_case_service.models.case import (
    AccessLevel,
    Actor,
    Case,
    CaseDocument,
    CaseNote,
    NoteType,
    ScanStatus,
    UserRole,
)

logger = logging.getLogger(__name__)


class AccessAction(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    SHARE = "share"


class ResourceKind(str, Enum):
    CASE = "case"
    DOCUMENT = "document"
    NOTE = "note"


class Relationship(str, Enum):
    """How an actor relates to the case that owns a resource."""

    OWNING_CLIENT = "owning_client"
    ASSIGNED_ADVOCATE = "assigned_advocate"
    SECONDARY_ADVOCATE = "secondary_advocate"
    OTHER_ADVOCATE = "other_advocate"
    ADMIN = "admin"
    OTHER = "other"


class DenialReason(str, Enum):
    ALLOWED = "allowed"
    SHARED_WITH_ACTOR = "shared_with_actor"
    ROLE_NOT_PERMITTED = "role_not_permitted"
    ACTOR_UNVERIFIED = "actor_unverified"
    INTERNAL_NOTE = "internal_note"
    DOCUMENT_INFECTED = "document_infected"
    NOT_CASE_PARTICIPANT = "not_case_participant"
    INVALID_REQUEST = "invalid_request"


_READ: FrozenSet[AccessAction] = frozenset({AccessAction.READ})
# write-class actions travel together
_READ_WRITE: FrozenSet[AccessAction] = frozenset(AccessAction)
_NONE: FrozenSet[AccessAction] = frozenset()


ACCESS_MATRIX: Dict[Tuple[AccessLevel, Relationship], FrozenSet[AccessAction]] = {
    (AccessLevel.PUBLIC, Relationship.OWNING_CLIENT): _READ,
    (AccessLevel.PUBLIC, Relationship.ASSIGNED_ADVOCATE): _READ_WRITE,
    (AccessLevel.PUBLIC, Relationship.SECONDARY_ADVOCATE): _READ_WRITE,
    (AccessLevel.PUBLIC, Relationship.OTHER_ADVOCATE): _READ,
    (AccessLevel.PUBLIC, Relationship.ADMIN): _READ_WRITE,
    (AccessLevel.RESTRICTED, Relationship.OWNING_CLIENT): _NONE,
    (AccessLevel.RESTRICTED, Relationship.ASSIGNED_ADVOCATE): _READ_WRITE,
    (AccessLevel.RESTRICTED, Relationship.SECONDARY_ADVOCATE): _READ_WRITE,
    (AccessLevel.RESTRICTED, Relationship.OTHER_ADVOCATE): _NONE,
    (AccessLevel.RESTRICTED, Relationship.ADMIN): _READ_WRITE,
    (AccessLevel.CONFIDENTIAL, Relationship.OWNING_CLIENT): _NONE,
    (AccessLevel.CONFIDENTIAL, Relationship.ASSIGNED_ADVOCATE): _READ_WRITE,
    (AccessLevel.CONFIDENTIAL, Relationship.SECONDARY_ADVOCATE): _READ,
    (AccessLevel.CONFIDENTIAL, Relationship.OTHER_ADVOCATE): _NONE,
    (AccessLevel.CONFIDENTIAL, Relationship.ADMIN): _READ,
}

# The case record itself: participants see it, the client cannot edit it.
CASE_RECORD_MATRIX: Dict[Relationship, FrozenSet[AccessAction]] = {
    Relationship.OWNING_CLIENT: _READ,
    Relationship.ASSIGNED_ADVOCATE: _READ_WRITE,
    Relationship.SECONDARY_ADVOCATE: _READ,
    Relationship.OTHER_ADVOCATE: _NONE,
    Relationship.ADMIN: _READ_WRITE,
}


@dataclass(frozen=True)
class ResourceRef:
    """Caller-facing pointer to a case, or a document/note within it."""

    kind: ResourceKind
    case_id: str
    resource_id: Optional[str] = None


@dataclass(frozen=True)
class ProtectedResource:
    """Everything the evaluator needs to know about a resource."""

    kind: ResourceKind
    case_id: str
    client_id: str
    advocate_id: Optional[str]
    access_level: AccessLevel = AccessLevel.RESTRICTED
    resource_id: Optional[str] = None
    note_type: Optional[NoteType] = None
    scan_status: Optional[ScanStatus] = None
    shared_with: FrozenSet[str] = field(default_factory=frozenset)
    secondary_advocate_ids: FrozenSet[str] = field(default_factory=frozenset)
    additional_client_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def for_case(cls, case: Case) -> "ProtectedResource":
        return cls(
            kind=ResourceKind.CASE,
            case_id=case.case_id,
            client_id=case.client_id,
            advocate_id=case.advocate_id,
            secondary_advocate_ids=frozenset(case.secondary_advocate_ids),
            additional_client_ids=frozenset(case.additional_client_ids),
            resource_id=case.case_id,
        )

    @classmethod
    def for_history(cls, case: Case) -> "ProtectedResource":
        """The audit trail is guarded like a confidential document."""
        return cls(
            kind=ResourceKind.CASE,
            case_id=case.case_id,
            client_id=case.client_id,
            advocate_id=case.advocate_id,
            secondary_advocate_ids=frozenset(case.secondary_advocate_ids),
            additional_client_ids=frozenset(case.additional_client_ids),
            access_level=AccessLevel.CONFIDENTIAL,
            resource_id=case.case_id,
        )

    @classmethod
    def for_document(cls, case: Case, document: CaseDocument) -> "ProtectedResource":
        return cls(
            kind=ResourceKind.DOCUMENT,
            case_id=case.case_id,
            client_id=case.client_id,
            advocate_id=case.advocate_id,
            secondary_advocate_ids=frozenset(case.secondary_advocate_ids),
            additional_client_ids=frozenset(case.additional_client_ids),
            access_level=document.access_level,
            resource_id=document.document_id,
            scan_status=document.scan_status,
        )

    @classmethod
    def for_note(cls, case: Case, note: CaseNote) -> "ProtectedResource":
        return cls(
            kind=ResourceKind.NOTE,
            case_id=case.case_id,
            client_id=case.client_id,
            advocate_id=case.advocate_id,
            secondary_advocate_ids=frozenset(case.secondary_advocate_ids),
            additional_client_ids=frozenset(case.additional_client_ids),
            access_level=note.access_level,
            resource_id=note.note_id,
            note_type=note.note_type,
            shared_with=frozenset(note.shared_with),
        )


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DenialReason

    def __bool__(self) -> bool:
        return self.allowed


def relationship_of(actor: Actor, resource: ProtectedResource) -> Relationship:
    """Classify the actor's relationship to the resource's case."""
    if actor.role == UserRole.ADMIN:
        return Relationship.ADMIN
    if actor.role == UserRole.ADVOCATE:
        if resource.advocate_id is not None and resource.advocate_id == actor.user_id:
            return Relationship.ASSIGNED_ADVOCATE
        if actor.user_id in resource.secondary_advocate_ids:
            return Relationship.SECONDARY_ADVOCATE
        return Relationship.OTHER_ADVOCATE
    if actor.role == UserRole.CLIENT and (
        resource.client_id == actor.user_id or actor.user_id in resource.additional_client_ids
    ):
        return Relationship.OWNING_CLIENT
    return Relationship.OTHER


def _granted_actions(
    resource: ProtectedResource, relationship: Relationship
) -> FrozenSet[AccessAction]:
    if resource.kind == ResourceKind.CASE and resource.access_level != AccessLevel.CONFIDENTIAL:
        return CASE_RECORD_MATRIX.get(relationship, _NONE)
    return ACCESS_MATRIX.get((resource.access_level, relationship), _NONE)


def can_access(actor: Actor, resource: ProtectedResource, action: AccessAction) -> AccessDecision:
    """Decide whether ``actor`` may perform ``action`` on ``resource``.

    Never mutates anything and never raises; malformed input is a denial.
    """
    try:
        action = AccessAction(action)
        if actor.is_unverified_staff:
            return AccessDecision(False, DenialReason.ACTOR_UNVERIFIED)

        relationship = relationship_of(actor, resource)

        if relationship == Relationship.OTHER:
            return AccessDecision(False, DenialReason.NOT_CASE_PARTICIPANT)

        if (
            resource.kind == ResourceKind.NOTE
            and resource.note_type == NoteType.INTERNAL
            and actor.role == UserRole.CLIENT
        ):
            return AccessDecision(False, DenialReason.INTERNAL_NOTE)

        if (
            resource.kind == ResourceKind.DOCUMENT
            and resource.scan_status == ScanStatus.INFECTED
            and action == AccessAction.READ
        ):
            return AccessDecision(False, DenialReason.DOCUMENT_INFECTED)

        if action in _granted_actions(resource, relationship):
            return AccessDecision(True, DenialReason.ALLOWED)

        if (
            resource.kind == ResourceKind.NOTE
            and action == AccessAction.READ
            and actor.user_id in resource.shared_with
        ):
            return AccessDecision(True, DenialReason.SHARED_WITH_ACTOR)

        return AccessDecision(False, DenialReason.ROLE_NOT_PERMITTED)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Rejecting malformed access check: {e}")
        return AccessDecision(False, DenialReason.INVALID_REQUEST)
