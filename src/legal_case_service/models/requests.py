"""API request and response models."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from legal_case_service.core.access_control import AccessAction, AccessDecision, ResourceKind
from legal_case_service.core.assignment import AdvocateWorkload, AssignmentStrategy
from legal_case_service.models.case import (
    AccessLevel,
    ActivityKind,
    AdvocateProfile,
    Assignment,
    AssignmentReason,
    AuditEntry,
    Case,
    CasePriority,
    CaseStatus,
    NoteType,
    ScanStatus,
)


class CaseCreateRequest(BaseModel):
    """Request to create a new case."""

    client_id: Optional[str] = Field(
        None, description="Owning client; defaults to the caller when the caller is a client"
    )
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(default="", max_length=2000)
    priority: CasePriority = Field(default=CasePriority.MEDIUM)
    court_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    auto_assign: bool = Field(default=False, description="Pick an advocate in the same commit")


class TransitionRequest(BaseModel):
    """Request to move a case to a new status."""

    target_status: CaseStatus
    reason: Optional[str] = Field(default=None, max_length=1000)
    outcome: Optional[str] = Field(default=None, max_length=1000)
    approved: bool = False
    expected_version: Optional[int] = Field(default=None, ge=1)


class AssignRequest(BaseModel):
    strategy: Optional[AssignmentStrategy] = None


class ReassignRequest(BaseModel):
    advocate_id: str = Field(min_length=1)
    reason: AssignmentReason = AssignmentReason.REASSIGNMENT
    note: Optional[str] = Field(default=None, max_length=1000)


class AddAdvocateRequest(BaseModel):
    advocate_id: str = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=1000)


class AddClientRequest(BaseModel):
    client_id: str = Field(min_length=1)


class AdvocateRegistrationRequest(BaseModel):
    """Directory profile for an advocate."""

    verified: bool = False
    active: bool = True
    specializations: List[str] = Field(default_factory=list)
    max_active_cases: Optional[int] = Field(default=None, ge=0)


class CourtDateUpdateRequest(BaseModel):
    court_date: datetime
    expected_version: Optional[int] = Field(default=None, ge=1)


class DocumentCreateRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_type: str = Field(default="application/octet-stream", max_length=100)
    file_size: int = Field(default=0, ge=0)
    access_level: AccessLevel = AccessLevel.RESTRICTED


class ScanStatusUpdateRequest(BaseModel):
    scan_status: ScanStatus


class NoteCreateRequest(BaseModel):
    note_type: NoteType = NoteType.GENERAL
    access_level: AccessLevel = AccessLevel.RESTRICTED
    content: str = Field(min_length=1, max_length=5000)
    shared_with: List[str] = Field(default_factory=list)
    follow_up_due: Optional[datetime] = None


class NoteShareRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)


class AccessCheckRequest(BaseModel):
    resource_kind: ResourceKind
    resource_id: Optional[str] = Field(
        None, description="Document or note ID; omitted for the case record itself"
    )
    action: AccessAction


class AccessDecisionResponse(BaseModel):
    allowed: bool
    reason_code: str

    @classmethod
    def from_decision(cls, decision: AccessDecision) -> "AccessDecisionResponse":
        return cls(allowed=decision.allowed, reason_code=decision.reason.value)


class CaseResponse(BaseModel):
    """Response containing a single case."""

    case_id: str
    client_id: str
    advocate_id: Optional[str]
    secondary_advocate_ids: List[str] = Field(default_factory=list)
    additional_client_ids: List[str] = Field(default_factory=list)
    title: str
    description: str
    status: str
    priority: str
    court_date: Optional[datetime]
    tags: List[str]
    hold_reason: Optional[str]
    outcome: Optional[str]
    escalation_flagged: bool
    version: int
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]

    @classmethod
    def from_case(cls, case: Case) -> "CaseResponse":
        """Convert Case model to response."""
        return cls(
            case_id=case.case_id,
            client_id=case.client_id,
            advocate_id=case.advocate_id,
            secondary_advocate_ids=list(case.secondary_advocate_ids),
            additional_client_ids=list(case.additional_client_ids),
            title=case.title,
            description=case.description,
            status=case.status.value,
            priority=case.priority.value,
            court_date=case.court_date,
            tags=list(case.tags),
            hold_reason=case.hold_reason,
            outcome=case.outcome,
            escalation_flagged=case.escalation_flagged,
            version=case.version,
            created_at=case.created_at,
            updated_at=case.updated_at,
            resolved_at=case.resolved_at,
            closed_at=case.closed_at,
        )


class AvailableTransitionsResponse(BaseModel):
    case_id: str
    current_status: CaseStatus
    available_transitions: List[CaseStatus]


class AssignmentResponse(BaseModel):
    case_id: str
    advocate_id: str


class AuditEntryResponse(BaseModel):
    entry_id: str
    sequence: int
    actor_id: str
    actor_role: str
    action: ActivityKind
    before: Dict[str, Any]
    after: Dict[str, Any]
    reason: Optional[str]
    origin: Optional[str]
    recorded_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            entry_id=entry.entry_id,
            sequence=entry.sequence,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role.value,
            action=entry.action,
            before=entry.before,
            after=entry.after,
            reason=entry.reason,
            origin=entry.origin,
            recorded_at=entry.recorded_at,
        )


class HistoryResponse(BaseModel):
    """One page of a case's audit trail."""

    case_id: str
    entries: List[AuditEntryResponse]
    next_cursor: Optional[int] = Field(
        None, description="Pass as ?cursor= to continue; null when the trail is exhausted"
    )


class WorkloadResponse(BaseModel):
    advocate_id: str
    active_cases: int
    total_cases: int
    urgent_cases: int
    workload_level: str
    last_assigned_at: Optional[datetime]

    @classmethod
    def from_workload(cls, workload: AdvocateWorkload) -> "WorkloadResponse":
        return cls(
            advocate_id=workload.advocate_id,
            active_cases=workload.stats.active_cases,
            total_cases=workload.stats.total_cases,
            urgent_cases=workload.stats.urgent_cases,
            workload_level=workload.level.value,
            last_assigned_at=workload.stats.last_assigned_at,
        )


class AvailableAdvocatesResponse(BaseModel):
    advocates: List[WorkloadResponse]


class AdvocateProfileResponse(BaseModel):
    advocate_id: str
    verified: bool
    active: bool
    specializations: List[str]
    max_active_cases: Optional[int]

    @classmethod
    def from_profile(cls, profile: AdvocateProfile) -> "AdvocateProfileResponse":
        return cls(
            advocate_id=profile.advocate_id,
            verified=profile.verified,
            active=profile.active,
            specializations=sorted(profile.specializations),
            max_active_cases=profile.max_active_cases,
        )


class AssignmentHistoryResponse(BaseModel):
    case_id: str
    assignments: List[Assignment]


class EscalationSweepResponse(BaseModel):
    flagged_case_ids: List[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    database: str
