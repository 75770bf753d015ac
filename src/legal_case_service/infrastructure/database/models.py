"""SQLAlchemy database models."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from legal_case_service.models.case import (
    AccessLevel,
    ActivityKind,
    AssignmentReason,
    CasePriority,
    CaseStatus,
    NoteType,
    ScanStatus,
    UserRole,
)

Base = declarative_base()


def _enum(enum_cls, name):
    # Store enum values ("on_hold"), not member names ("ON_HOLD")
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
    )


class CaseDB(Base):
    """SQLAlchemy model for cases table."""

    __tablename__ = "cases"

    case_id = Column(String(50), primary_key=True)
    client_id = Column(String(100), nullable=False, index=True)
    advocate_id = Column(String(100), nullable=True, index=True)
    secondary_advocate_ids = Column(JSON, nullable=False, default=list)
    additional_client_ids = Column(JSON, nullable=False, default=list)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")

    status = Column(_enum(CaseStatus, "case_status"), nullable=False, default=CaseStatus.DRAFT, index=True)
    priority = Column(_enum(CasePriority, "case_priority"), nullable=False, default=CasePriority.MEDIUM)
    court_date = Column(DateTime(timezone=True), nullable=True, index=True)
    tags = Column(JSON, nullable=False, default=list)

    hold_reason = Column(Text, nullable=True)
    outcome = Column(Text, nullable=True)
    escalation_flagged = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False, default=1)
    # Highest audit sequence handed out; every unit of work bumps it
    last_sequence = Column(Integer, nullable=False, default=0)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    updated_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)


class CaseDocumentDB(Base):
    """File metadata for documents attached to a case."""

    __tablename__ = "case_documents"

    document_id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.case_id"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(100), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    access_level = Column(_enum(AccessLevel, "access_level"), nullable=False)
    scan_status = Column(_enum(ScanStatus, "scan_status"), nullable=False)
    uploaded_by = Column(String(100), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)


class CaseNoteDB(Base):
    __tablename__ = "case_notes"

    note_id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.case_id"), nullable=False, index=True)
    author_id = Column(String(100), nullable=False)
    note_type = Column(_enum(NoteType, "note_type"), nullable=False)
    access_level = Column(_enum(AccessLevel, "note_access_level"), nullable=False)
    content = Column(Text, nullable=False, default="")
    shared_with = Column(JSON, nullable=False, default=list)
    follow_up_due = Column(DateTime(timezone=True), nullable=True)
    follow_up_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class CaseAssignmentDB(Base):
    """Assignment history; superseded rows are kept."""

    __tablename__ = "case_assignments"

    assignment_id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.case_id"), nullable=False, index=True)
    advocate_id = Column(String(100), nullable=False, index=True)
    reason = Column(_enum(AssignmentReason, "assignment_reason"), nullable=False)
    assigned_by = Column(String(100), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    superseded_at = Column(DateTime(timezone=True), nullable=True)


class CaseActivityDB(Base):
    """Append-only audit ledger keyed by (case_id, sequence)."""

    __tablename__ = "case_activities"
    __table_args__ = (
        UniqueConstraint("case_id", "sequence", name="uq_case_activities_case_sequence"),
    )

    entry_id = Column(String(50), primary_key=True)
    case_id = Column(String(50), ForeignKey("cases.case_id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    actor_id = Column(String(100), nullable=False)
    actor_role = Column(_enum(UserRole, "actor_role"), nullable=False)
    action = Column(_enum(ActivityKind, "activity_kind"), nullable=False, index=True)
    before = Column(JSON, nullable=False, default=dict)
    after = Column(JSON, nullable=False, default=dict)
    reason = Column(Text, nullable=True)
    origin = Column(String(100), nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
