"""Models package."""

from .case import (
    AccessLevel,
    ActivityKind,
    Actor,
    AdvocateProfile,
    Assignment,
    AssignmentReason,
    AuditEntry,
    Case,
    CaseDocument,
    CaseNote,
    CasePriority,
    CaseStatus,
    HistoryFilter,
    NoteType,
    ScanStatus,
    UserRole,
)

__all__ = [
    "AccessLevel",
    "ActivityKind",
    "Actor",
    "AdvocateProfile",
    "Assignment",
    "AssignmentReason",
    "AuditEntry",
    "Case",
    "CaseDocument",
    "CaseNote",
    "CasePriority",
    "CaseStatus",
    "HistoryFilter",
    "NoteType",
    "ScanStatus",
    "UserRole",
]
