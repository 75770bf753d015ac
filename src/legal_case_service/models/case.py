"""Case data models for legal-case-service.

Domain objects for the case aggregate and the records it owns by reference:
documents, notes, advocate assignments and the append-only activity ledger.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize naive datetimes (e.g. read back from SQLite) to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CaseStatus(str, Enum):
    """Case lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[CaseStatus] = frozenset(
    {CaseStatus.ARCHIVED, CaseStatus.CANCELLED}
)


class CasePriority(str, Enum):
    """Case priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class UserRole(str, Enum):
    """Roles an actor can hold.

    SYSTEM is reserved for internal services such as the document scanner.
    """

    CLIENT = "client"
    ADVOCATE = "advocate"
    ADMIN = "admin"
    SYSTEM = "system"


class AccessLevel(str, Enum):
    """Confidentiality level of a document or note."""

    PUBLIC = "public"
    RESTRICTED = "restricted"
    CONFIDENTIAL = "confidential"


class ScanStatus(str, Enum):
    PENDING = "pending"
    CLEAN = "clean"
    INFECTED = "infected"


class NoteType(str, Enum):
    GENERAL = "general"
    FOLLOW_UP = "follow_up"
    INTERNAL = "internal"


class AssignmentReason(str, Enum):
    INITIAL = "initial"
    REASSIGNMENT = "reassignment"
    ESCALATION = "escalation"


class ActivityKind(str, Enum):
    """Kinds of audited actions."""

    CASE_CREATED = "case_created"
    ADVOCATE_ASSIGNED = "advocate_assigned"
    ADVOCATE_REASSIGNED = "advocate_reassigned"
    SECONDARY_ADVOCATE_ADDED = "secondary_advocate_added"
    SECONDARY_ADVOCATE_REMOVED = "secondary_advocate_removed"
    CLIENT_ADDED = "client_added"
    CLIENT_REMOVED = "client_removed"
    STATUS_CHANGED = "status_changed"
    COURT_DATE_UPDATED = "court_date_updated"
    ESCALATION_FLAGGED = "escalation_flagged"
    DOCUMENT_ADDED = "document_added"
    DOCUMENT_SCANNED = "document_scanned"
    NOTE_ADDED = "note_added"
    FOLLOW_UP_COMPLETED = "follow_up_completed"
    NOTE_SHARED = "note_shared"
    ACCESS_DENIED = "access_denied"


class Actor(BaseModel):
    """The user initiating an operation.

    Always passed explicitly; the core keeps no ambient session state.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    role: UserRole
    verified: bool = True
    origin: Optional[str] = Field(default=None, description="Originating network address")

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADVOCATE, UserRole.ADMIN)

    @property
    def is_unverified_staff(self) -> bool:
        return self.is_staff and not self.verified


class AdvocateProfile(BaseModel):
    """Advocate as known to the identity provider."""

    model_config = ConfigDict(frozen=True)

    advocate_id: str
    verified: bool = False
    active: bool = True
    specializations: FrozenSet[str] = Field(default_factory=frozenset)
    max_active_cases: Optional[int] = Field(default=None, ge=0)


class Case(BaseModel):
    """Case aggregate: owns status and assignment."""

    model_config = ConfigDict(from_attributes=True)

    case_id: str = Field(default_factory=lambda: f"case_{uuid4().hex[:12]}")
    client_id: str = Field(description="Owning client user ID")
    advocate_id: Optional[str] = Field(default=None, description="Assigned (primary) advocate")
    secondary_advocate_ids: List[str] = Field(default_factory=list, description="Supporting advocates")
    additional_client_ids: List[str] = Field(default_factory=list, description="Co-clients on the case")

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="")

    status: CaseStatus = Field(default=CaseStatus.DRAFT)
    priority: CasePriority = Field(default=CasePriority.MEDIUM)
    court_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)

    hold_reason: Optional[str] = None
    outcome: Optional[str] = None
    escalation_flagged: bool = False

    version: int = Field(default=0, description="Optimistic concurrency counter")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view used for audit before/after images."""
        return self.model_dump(mode="json", exclude={"version"})


class CaseDocument(BaseModel):
    """File metadata record; the file itself lives with the storage provider."""

    model_config = ConfigDict(from_attributes=True)

    document_id: str = Field(default_factory=lambda: f"doc_{uuid4().hex[:12]}")
    case_id: str
    file_name: str = Field(min_length=1, max_length=255)
    file_type: str = Field(default="application/octet-stream")
    file_size: int = Field(default=0, ge=0)
    access_level: AccessLevel = AccessLevel.RESTRICTED
    scan_status: ScanStatus = ScanStatus.PENDING
    uploaded_by: str
    uploaded_at: datetime = Field(default_factory=utc_now)


class CaseNote(BaseModel):
    """A note attached to a case."""

    model_config = ConfigDict(from_attributes=True)

    note_id: str = Field(default_factory=lambda: f"note_{uuid4().hex[:12]}")
    case_id: str
    author_id: str
    note_type: NoteType = NoteType.GENERAL
    access_level: AccessLevel = AccessLevel.RESTRICTED
    content: str = Field(default="", max_length=5000)
    shared_with: List[str] = Field(default_factory=list)
    follow_up_due: Optional[datetime] = None
    follow_up_completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def has_open_follow_up(self) -> bool:
        return self.follow_up_due is not None and self.follow_up_completed_at is None


class Assignment(BaseModel):
    """Binding of a case to its responsible advocate.

    Superseded by the next assignment, never deleted.
    """

    model_config = ConfigDict(from_attributes=True)

    assignment_id: str = Field(default_factory=lambda: f"asg_{uuid4().hex[:12]}")
    case_id: str
    advocate_id: str
    reason: AssignmentReason = AssignmentReason.INITIAL
    assigned_by: str
    assigned_at: datetime = Field(default_factory=utc_now)
    superseded_at: Optional[datetime] = None

    @property
    def is_current(self) -> bool:
        return self.superseded_at is None


class AuditEntry(BaseModel):
    """Immutable, attributed record of one state-changing action.

    ``sequence`` is assigned by the repository when the entry is committed;
    pending entries carry 0.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    entry_id: str = Field(default_factory=lambda: f"act_{uuid4().hex[:12]}")
    case_id: str
    sequence: int = 0
    actor_id: str
    actor_role: UserRole
    action: ActivityKind
    before: Dict[str, Any] = Field(default_factory=dict)
    after: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    origin: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)


class HistoryFilter(BaseModel):
    """Narrows a history read by activity kind, actor and recording time."""

    model_config = ConfigDict(frozen=True)

    actions: FrozenSet[ActivityKind] = Field(default_factory=frozenset)
    actor_id: Optional[str] = None
    recorded_from: Optional[datetime] = None
    recorded_to: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.actions
            and self.actor_id is None
            and self.recorded_from is None
            and self.recorded_to is None
        )

    def matches(self, entry: AuditEntry) -> bool:
        if self.actions and entry.action not in self.actions:
            return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        recorded_at = as_utc(entry.recorded_at)
        if self.recorded_from is not None and recorded_at < as_utc(self.recorded_from):
            return False
        if self.recorded_to is not None and recorded_at > as_utc(self.recorded_to):
            return False
        return True
