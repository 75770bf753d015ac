"""Case business logic manager - Repository Pattern."""

import logging
from contextlib import aclosing
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, List, Optional, Tuple

from legal_case_service.config import settings
from legal_case_service.core.access_control import (
    AccessAction,
    AccessDecision,
    DenialReason,
    ProtectedResource,
    ResourceKind,
    ResourceRef,
    can_access,
)
from legal_case_service.core.assignment import (
    AdvocateWorkload,
    AssignmentEngine,
    AssignmentStrategy,
    WorkloadLevel,
    normalize_tags,
    workload_level,
)
from legal_case_service.core.audit import AuditTrailRecorder, diff_snapshots
from legal_case_service.core.exceptions import (
    ConcurrentModification,
    Forbidden,
    InvalidTransition,
    NoEligibleAdvocate,
    PreconditionFailed,
    ResourceNotFound,
    ValidationError,
)
from legal_case_service.core.state_machine import (
    ESCALATION_STATUSES,
    CaseStateMachine,
    TransitionParams,
)
from legal_case_service.infrastructure.identity import IdentityProvider
from legal_case_service.infrastructure.notifications import (
    NotificationDispatcher,
    NotificationIntent,
    NotificationKind,
)
from legal_case_service.infrastructure.persistence import CaseRepository, UnitOfWork
from legal_case_service.models.case import (
    ActivityKind,
    Actor,
    AdvocateProfile,
    Assignment,
    AssignmentReason,
    AuditEntry,
    Case,
    CaseDocument,
    CaseNote,
    CaseStatus,
    HistoryFilter,
    ScanStatus,
    UserRole,
    as_utc,
    utc_now,
)
from legal_case_service.models.requests import (
    CaseCreateRequest,
    DocumentCreateRequest,
    NoteCreateRequest,
)

logger = logging.getLogger(__name__)


class CaseManager:
    """Business logic for the case lifecycle.

    Every operation takes the acting user explicitly, loads the case, gates
    the action, computes the new state and commits it together with its audit
    entry through a single ``UnitOfWork``. Notification intents go out only
    after the commit succeeded.
    """

    def __init__(
        self,
        repository: CaseRepository,
        identity: IdentityProvider,
        notifier: Optional[NotificationDispatcher] = None,
        state_machine: Optional[CaseStateMachine] = None,
        assignment_engine: Optional[AssignmentEngine] = None,
        default_strategy: Optional[AssignmentStrategy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize case manager with its collaborators.

        Args:
            repository: CaseRepository implementation (InMemory or SQLAlchemy)
            identity: Identity provider for actors and the advocate directory
            notifier: Fire-and-forget notification dispatcher (optional)
            state_machine: Override the configured state machine
            assignment_engine: Override the configured assignment engine
            default_strategy: Strategy used when a caller does not pick one
            clock: Source of "now", injectable for tests
        """
        self.repository = repository
        self.identity = identity
        self.notifier = notifier
        self.state_machine = state_machine or CaseStateMachine(
            escalation_threshold_days=settings.escalation_threshold_days
        )
        self.assignment_engine = assignment_engine or AssignmentEngine(
            reassignment_cooldown_seconds=settings.reassignment_cooldown_seconds
        )
        self.default_strategy = default_strategy or AssignmentStrategy(
            settings.default_assignment_strategy
        )
        self.clock = clock
        self.audit = AuditTrailRecorder(
            repository, page_size=settings.history_page_size, clock=clock
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _record_denial(
        self,
        case_id: str,
        actor: Actor,
        attempted: str,
        reason_code: str,
        resource_id: Optional[str] = None,
    ) -> None:
        """Append an access_denied entry; the denial itself changes nothing."""
        uow = UnitOfWork(case_id=case_id)
        after = {"attempted": attempted, "reason_code": reason_code}
        if resource_id:
            after["resource_id"] = resource_id
        self.audit.record(uow, actor, ActivityKind.ACCESS_DENIED, after=after, reason=reason_code)
        await self.repository.commit(uow)
        logger.warning(
            f"Denied {attempted} on case {case_id} for {actor.role.value} {actor.user_id}: {reason_code}"
        )

    async def _forbid(self, case_id: str, actor: Actor, attempted: str, error: Forbidden):
        await self._record_denial(
            case_id, actor, attempted, error.details.get("reason", Forbidden.code)
        )
        raise error

    @staticmethod
    def _unverified(actor: Actor, attempted: str) -> Forbidden:
        return Forbidden(
            f"Unverified {actor.role.value} {actor.user_id} may not {attempted}",
            details={"reason": DenialReason.ACTOR_UNVERIFIED.value},
        )

    async def _gate(
        self,
        actor: Actor,
        resource: ProtectedResource,
        action: AccessAction,
        attempted: str,
    ) -> None:
        decision = can_access(actor, resource, action)
        if decision.allowed:
            return
        await self._record_denial(
            resource.case_id, actor, attempted, decision.reason.value, resource.resource_id
        )
        raise Forbidden(
            f"{actor.role.value} {actor.user_id} may not {action.value} this {resource.kind.value}",
            details={"reason_code": decision.reason.value},
        )

    def _notify(self, kind: NotificationKind, case: Case, recipients: Iterable[Optional[str]], **payload):
        if self.notifier is None:
            return
        unique = []
        for recipient in recipients:
            if recipient and recipient not in unique:
                unique.append(recipient)
        self.notifier.dispatch(
            NotificationIntent(kind=kind, case_id=case.case_id, recipients=unique, payload=payload)
        )

    @staticmethod
    def _check_version(case: Case, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != case.version:
            raise ConcurrentModification(
                f"Case {case.case_id} is at version {case.version}, not {expected_version}",
                details={"expected_version": expected_version, "actual_version": case.version},
            )

    def _apply_assignment(
        self,
        uow: UnitOfWork,
        case: Case,
        advocate_id: str,
        reason: AssignmentReason,
        actor: Actor,
        current: Optional[Assignment],
        now: datetime,
        note: Optional[str] = None,
    ) -> Case:
        if current is not None:
            uow.save_assignment(current.model_copy(update={"superseded_at": now}))
        uow.save_assignment(
            Assignment(
                case_id=case.case_id,
                advocate_id=advocate_id,
                reason=reason,
                assigned_by=actor.user_id,
                assigned_at=now,
            )
        )
        updated = case.model_copy(
            update={
                "advocate_id": advocate_id,
                "secondary_advocate_ids": [a for a in case.secondary_advocate_ids if a != advocate_id],
                "updated_at": now,
            }
        )
        action = (
            ActivityKind.ADVOCATE_ASSIGNED
            if reason == AssignmentReason.INITIAL
            else ActivityKind.ADVOCATE_REASSIGNED
        )
        self.audit.record(
            uow,
            actor,
            action,
            before={"advocate_id": case.advocate_id},
            after={"advocate_id": advocate_id, "reason_code": reason.value},
            reason=note or reason.value,
        )
        return updated

    def _maybe_escalate(self, uow: UnitOfWork, case: Case, actor: Actor, now: datetime) -> Case:
        if not self.state_machine.needs_escalation(case, now):
            return case
        escalated = self.state_machine.escalate(case, now)
        images = diff_snapshots(case.snapshot(), escalated.snapshot())
        self.audit.record(
            uow,
            actor,
            ActivityKind.ESCALATION_FLAGGED,
            before=images["before"],
            after=images["after"],
            reason=f"court date within {self.state_machine.escalation_threshold.days} days",
        )
        return escalated

    # =========================================================================
    # Case lifecycle
    # =========================================================================

    async def create_case(self, request: CaseCreateRequest, actor: Actor) -> Case:
        """Create a new case in draft status.

        Args:
            request: Case creation request
            actor: Acting user

        Returns:
            Created case

        Raises:
            ValidationError: Malformed input
            Forbidden: Actor may not open a case for this client
        """
        if actor.role == UserRole.CLIENT:
            if request.client_id not in (None, actor.user_id):
                raise Forbidden("Clients may only open cases for themselves")
            client_id = actor.user_id
        elif actor.is_staff:
            if not actor.verified:
                raise self._unverified(actor, "open cases")
            if not request.client_id:
                raise ValidationError("client_id is required when staff open a case")
            client_id = request.client_id
        else:
            raise Forbidden(f"Role {actor.role.value} may not open cases")

        now = self.clock()

        # Auto-generate title if not provided
        title = (request.title or "").strip()
        if not title:
            title = f"Case-{now.strftime('%Y%m%d')}-{now.strftime('%H%M%S')}"

        tags = normalize_tags(request.tags)
        court_date = as_utc(request.court_date)
        if court_date is not None and court_date <= now:
            raise ValidationError(
                "Court date must be in the future",
                details={"court_date": court_date.isoformat()},
            )

        case = Case(
            client_id=client_id,
            title=title,
            description=(request.description or "").strip(),
            status=CaseStatus.DRAFT,
            priority=request.priority,
            court_date=court_date,
            tags=tags,
            created_at=now,
            updated_at=now,
        )

        uow = UnitOfWork.for_new_case(case)
        self.audit.record_case_change(uow, actor, ActivityKind.CASE_CREATED, None, case)
        case = self._maybe_escalate(uow, case, actor, now)

        if request.auto_assign:
            try:
                advocate = await self._select_advocate(case, self.default_strategy)
            except NoEligibleAdvocate as e:
                logger.warning(f"Case {case.case_id} created unassigned: {e.message}")
            else:
                case = self._apply_assignment(
                    uow, case, advocate.advocate_id, AssignmentReason.INITIAL, actor, None, now
                )

        uow.save_case(case)
        result = await self.repository.commit(uow)
        saved = result.case

        logger.info(f"Created case {saved.case_id} for client {client_id}")
        self._notify(NotificationKind.CASE_CREATED, saved, [saved.client_id, saved.advocate_id])
        if saved.escalation_flagged:
            self._notify(NotificationKind.ESCALATION_FLAGGED, saved, [saved.advocate_id])
        return saved

    async def get_case(self, case_id: str, actor: Actor) -> Case:
        case = await self.repository.require(case_id)
        await self._gate(actor, ProtectedResource.for_case(case), AccessAction.READ, "read case")
        return case

    async def transition_case(
        self,
        case_id: str,
        target_status: CaseStatus,
        actor: Actor,
        params: Optional[TransitionParams] = None,
    ) -> Case:
        """Move a case to a new status.

        Args:
            case_id: Case identifier
            target_status: Requested status
            actor: Acting user
            params: Reason/outcome/approval and optional expected version

        Returns:
            The case as committed

        Raises:
            InvalidTransition: Edge not in the transition table
            PreconditionFailed: Transition guard unmet
            Forbidden: Actor may not initiate this edge
            ConcurrentModification: Case changed since the caller read it
        """
        params = params or TransitionParams()
        case = await self.repository.require(case_id)
        self._check_version(case, params.expected_version)

        notes: List[CaseNote] = []
        if case.status == CaseStatus.RESOLVED and target_status == CaseStatus.CLOSED:
            notes = await self.repository.list_notes(case_id)

        now = self.clock()
        try:
            updated = self.state_machine.transition(case, target_status, actor, params, notes, now)
        except Forbidden as e:
            await self._forbid(case_id, actor, f"transition to {target_status.value}", e)

        uow = UnitOfWork.for_case(case)
        self.audit.record_case_change(
            uow, actor, ActivityKind.STATUS_CHANGED, case, updated, reason=params.reason
        )
        updated = self._maybe_escalate(uow, updated, actor, now)
        uow.save_case(updated)

        result = await self.repository.commit(uow)
        saved = result.case

        logger.info(
            f"Case {case_id} moved {case.status.value} -> {saved.status.value} by {actor.user_id}"
        )
        self._notify(
            NotificationKind.STATUS_CHANGED,
            saved,
            [saved.client_id, saved.advocate_id],
            previous_status=case.status.value,
            new_status=saved.status.value,
        )
        return saved

    async def available_transitions(self, case_id: str, actor: Actor) -> Tuple[Case, List[CaseStatus]]:
        case = await self.get_case(case_id, actor)
        return case, self.state_machine.available_transitions(case, actor)

    async def update_court_date(
        self,
        case_id: str,
        court_date: datetime,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Case:
        """Set a new court date and re-evaluate escalation."""
        case = await self.repository.require(case_id)
        self._check_version(case, expected_version)
        await self._gate(
            actor, ProtectedResource.for_case(case), AccessAction.WRITE, "update court date"
        )

        now = self.clock()
        new_date = self.state_machine.validate_court_date(case, court_date, now)
        updated = case.model_copy(update={"court_date": new_date, "updated_at": now})

        uow = UnitOfWork.for_case(case)
        self.audit.record_case_change(uow, actor, ActivityKind.COURT_DATE_UPDATED, case, updated)
        updated = self._maybe_escalate(uow, updated, actor, now)
        uow.save_case(updated)

        saved = (await self.repository.commit(uow)).case
        if saved.escalation_flagged and not case.escalation_flagged:
            self._notify(NotificationKind.ESCALATION_FLAGGED, saved, [saved.advocate_id])
        return saved

    # =========================================================================
    # Assignment
    # =========================================================================

    async def _select_advocate(self, case: Case, strategy: AssignmentStrategy):
        pool = await self.identity.list_advocates()
        stats = await self.repository.advocate_stats(a.advocate_id for a in pool)
        return self.assignment_engine.assign(case, pool, stats, strategy)

    async def assign_case(
        self,
        case_id: str,
        actor: Actor,
        strategy: Optional[AssignmentStrategy] = None,
    ) -> str:
        """Pick and bind the first advocate for a case.

        Returns:
            The assigned advocate's ID

        Raises:
            NoEligibleAdvocate: Nobody in the pool passes the filter
        """
        case = await self.repository.require(case_id)
        if actor.role != UserRole.ADMIN:
            await self._forbid(
                case_id, actor, "assign case", Forbidden("Only admins may run case assignment")
            )
        if not actor.verified:
            await self._forbid(case_id, actor, "assign case", self._unverified(actor, "assign cases"))
        if case.is_terminal:
            raise InvalidTransition(f"Cannot assign a {case.status.value} case")
        if case.advocate_id:
            raise PreconditionFailed(
                f"Case {case_id} is already assigned to {case.advocate_id}; reassign instead",
                details={"guard": "already_assigned"},
            )

        advocate = await self._select_advocate(case, strategy or self.default_strategy)
        now = self.clock()

        uow = UnitOfWork.for_case(case)
        updated = self._apply_assignment(
            uow, case, advocate.advocate_id, AssignmentReason.INITIAL, actor, None, now
        )
        uow.save_case(updated)
        saved = (await self.repository.commit(uow)).case

        logger.info(f"Assigned case {case_id} to advocate {advocate.advocate_id}")
        self._notify(NotificationKind.CASE_ASSIGNED, saved, [saved.advocate_id, saved.client_id])
        return advocate.advocate_id

    async def reassign_case(
        self,
        case_id: str,
        new_advocate_id: str,
        reason: AssignmentReason,
        actor: Actor,
        note: Optional[str] = None,
    ) -> str:
        """Hand a case to a different advocate.

        The prior assignment is superseded, not deleted.

        Raises:
            Forbidden: Actor is neither admin nor the assigned advocate
            InvalidTransition: Case is in a terminal state
        """
        if reason == AssignmentReason.INITIAL:
            raise ValidationError("Reassignment reason must be reassignment or escalation")

        case = await self.repository.require(case_id)
        new_advocate = await self.identity.get_advocate(new_advocate_id)
        stats = await self.repository.advocate_stats([new_advocate_id])
        current = await self.repository.current_assignment(case_id)
        now = self.clock()

        try:
            self.assignment_engine.check_reassignment(case, new_advocate, actor, stats, current, now)
        except Forbidden as e:
            await self._forbid(case_id, actor, "reassign case", e)

        uow = UnitOfWork.for_case(case)
        updated = self._apply_assignment(
            uow, case, new_advocate_id, reason, actor, current, now, note=note
        )
        uow.save_case(updated)
        saved = (await self.repository.commit(uow)).case

        logger.info(
            f"Reassigned case {case_id} from {case.advocate_id} to {new_advocate_id} ({reason.value})"
        )
        self._notify(
            NotificationKind.CASE_REASSIGNED,
            saved,
            [case.advocate_id, new_advocate_id, saved.client_id],
            previous_advocate_id=case.advocate_id,
            reason=reason.value,
        )
        return new_advocate_id

    async def advocate_workload(self, advocate_id: str, actor: Actor) -> AdvocateWorkload:
        if actor.role != UserRole.ADMIN and actor.user_id != advocate_id:
            raise Forbidden("Workload is visible to admins and the advocate only")
        if not actor.verified:
            raise self._unverified(actor, "view workload")
        if await self.identity.get_advocate(advocate_id) is None:
            raise ResourceNotFound(f"Advocate {advocate_id} not found")
        stats = (await self.repository.advocate_stats([advocate_id]))[advocate_id]
        return AdvocateWorkload(
            advocate_id=advocate_id,
            stats=stats,
            level=workload_level(stats.active_cases, stats.urgent_cases),
        )

    # =========================================================================
    # Documents and notes
    # =========================================================================

    def _ensure_open(self, case: Case) -> None:
        if case.is_terminal:
            raise PreconditionFailed(
                f"Case {case.case_id} is {case.status.value}",
                details={"guard": "case_terminal"},
            )

    async def add_document(self, case_id: str, request: DocumentCreateRequest, actor: Actor) -> CaseDocument:
        case = await self.repository.require(case_id)
        self._ensure_open(case)
        now = self.clock()
        document = CaseDocument(
            case_id=case_id,
            file_name=request.file_name,
            file_type=request.file_type,
            file_size=request.file_size,
            access_level=request.access_level,
            uploaded_by=actor.user_id,
            uploaded_at=now,
        )
        await self._gate(
            actor, ProtectedResource.for_document(case, document), AccessAction.WRITE, "add document"
        )

        uow = UnitOfWork.for_case(case)
        uow.save_case(case.model_copy(update={"updated_at": now}))
        uow.save_document(document)
        self.audit.record(
            uow,
            actor,
            ActivityKind.DOCUMENT_ADDED,
            after={
                "document_id": document.document_id,
                "file_name": document.file_name,
                "access_level": document.access_level.value,
                "scan_status": document.scan_status.value,
            },
        )
        await self.repository.commit(uow)
        return document

    async def _require_document(self, case_id: str, document_id: str) -> CaseDocument:
        document = await self.repository.get_document(case_id, document_id)
        if document is None:
            raise ResourceNotFound(f"Document {document_id} not found in case {case_id}")
        return document

    async def _require_note(self, case_id: str, note_id: str) -> CaseNote:
        note = await self.repository.get_note(case_id, note_id)
        if note is None:
            raise ResourceNotFound(f"Note {note_id} not found in case {case_id}")
        return note

    async def update_scan_status(
        self, case_id: str, document_id: str, scan_status: ScanStatus, actor: Actor
    ) -> CaseDocument:
        """Record the storage provider's virus scan verdict."""
        case = await self.repository.require(case_id)
        document = await self._require_document(case_id, document_id)
        if actor.role not in (UserRole.ADMIN, UserRole.SYSTEM):
            await self._forbid(
                case_id, actor, "update scan status", Forbidden("Only scanners and admins set scan status")
            )
        if not actor.verified:
            await self._forbid(
                case_id, actor, "update scan status", self._unverified(actor, "set scan status")
            )
        if document.scan_status == scan_status:
            return document

        now = self.clock()
        updated = document.model_copy(update={"scan_status": scan_status})
        uow = UnitOfWork.for_case(case)
        uow.save_case(case.model_copy(update={"updated_at": now}))
        uow.save_document(updated)
        self.audit.record(
            uow,
            actor,
            ActivityKind.DOCUMENT_SCANNED,
            before={"document_id": document_id, "scan_status": document.scan_status.value},
            after={"document_id": document_id, "scan_status": scan_status.value},
        )
        await self.repository.commit(uow)
        if scan_status == ScanStatus.INFECTED:
            logger.warning(f"Document {document_id} on case {case_id} flagged infected")
        return updated

    async def add_note(self, case_id: str, request: NoteCreateRequest, actor: Actor) -> CaseNote:
        case = await self.repository.require(case_id)
        self._ensure_open(case)
        now = self.clock()
        note = CaseNote(
            case_id=case_id,
            author_id=actor.user_id,
            note_type=request.note_type,
            access_level=request.access_level,
            content=request.content,
            shared_with=list(dict.fromkeys(request.shared_with)),
            follow_up_due=as_utc(request.follow_up_due),
            created_at=now,
        )
        await self._gate(actor, ProtectedResource.for_note(case, note), AccessAction.WRITE, "add note")

        uow = UnitOfWork.for_case(case)
        uow.save_case(case.model_copy(update={"updated_at": now}))
        uow.save_note(note)
        self.audit.record(
            uow,
            actor,
            ActivityKind.NOTE_ADDED,
            after={
                "note_id": note.note_id,
                "note_type": note.note_type.value,
                "access_level": note.access_level.value,
                "follow_up_due": note.follow_up_due.isoformat() if note.follow_up_due else None,
            },
        )
        await self.repository.commit(uow)
        return note

    async def complete_follow_up(self, case_id: str, note_id: str, actor: Actor) -> CaseNote:
        case = await self.repository.require(case_id)
        self._ensure_open(case)
        note = await self._require_note(case_id, note_id)
        await self._gate(
            actor, ProtectedResource.for_note(case, note), AccessAction.WRITE, "complete follow-up"
        )
        if not note.has_open_follow_up:
            raise PreconditionFailed(
                f"Note {note_id} has no open follow-up", details={"guard": "no_open_follow_up"}
            )

        now = self.clock()
        updated = note.model_copy(update={"follow_up_completed_at": now})
        uow = UnitOfWork.for_case(case)
        uow.save_case(case.model_copy(update={"updated_at": now}))
        uow.save_note(updated)
        self.audit.record(
            uow,
            actor,
            ActivityKind.FOLLOW_UP_COMPLETED,
            before={"note_id": note_id, "follow_up_completed_at": None},
            after={"note_id": note_id, "follow_up_completed_at": now.isoformat()},
        )
        await self.repository.commit(uow)
        return updated

    async def share_note(self, case_id: str, note_id: str, user_ids: Iterable[str], actor: Actor) -> CaseNote:
        """Grant read access on a note to additional users."""
        case = await self.repository.require(case_id)
        self._ensure_open(case)
        note = await self._require_note(case_id, note_id)
        await self._gate(actor, ProtectedResource.for_note(case, note), AccessAction.SHARE, "share note")

        added = [u for u in dict.fromkeys(user_ids) if u and u not in note.shared_with]
        if not added:
            return note

        now = self.clock()
        updated = note.model_copy(update={"shared_with": note.shared_with + added})
        uow = UnitOfWork.for_case(case)
        uow.save_case(case.model_copy(update={"updated_at": now}))
        uow.save_note(updated)
        self.audit.record(
            uow,
            actor,
            ActivityKind.NOTE_SHARED,
            before={"note_id": note_id, "shared_with": list(note.shared_with)},
            after={"note_id": note_id, "shared_with": list(updated.shared_with)},
        )
        await self.repository.commit(uow)
        self._notify(NotificationKind.NOTE_SHARED, case, added, note_id=note_id)
        return updated

    # =========================================================================
    # Access checks and history
    # =========================================================================

    async def check_access(self, actor: Actor, ref: ResourceRef, action: AccessAction) -> AccessDecision:
        """Evaluate access to a case, document or note.

        Denials are recorded in the audit trail before being returned.
        """
        case = await self.repository.require(ref.case_id)
        if ref.kind == ResourceKind.CASE:
            resource = ProtectedResource.for_case(case)
        elif not ref.resource_id:
            raise ValidationError(f"resource_id is required for {ref.kind.value} checks")
        elif ref.kind == ResourceKind.DOCUMENT:
            resource = ProtectedResource.for_document(
                case, await self._require_document(ref.case_id, ref.resource_id)
            )
        else:
            resource = ProtectedResource.for_note(
                case, await self._require_note(ref.case_id, ref.resource_id)
            )

        decision = can_access(actor, resource, action)
        if not decision.allowed:
            await self._record_denial(
                ref.case_id,
                actor,
                f"{action.value} {ref.kind.value}",
                decision.reason.value,
                resource.resource_id,
            )
        return decision

    async def get_history(
        self,
        case_id: str,
        actor: Actor,
        cursor: Optional[int] = None,
        until: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> AsyncIterator[AuditEntry]:
        """Open a forward iterator over the case's audit trail.

        Restart from any point by passing the last seen sequence as ``cursor``.
        ``history_filter`` narrows the trail by activity kind, actor or date
        range without changing the sequence numbers of what is returned.
        """
        if cursor is not None and cursor < 0:
            raise ValidationError("History cursor must not be negative")
        if (
            history_filter is not None
            and history_filter.recorded_from is not None
            and history_filter.recorded_to is not None
            and as_utc(history_filter.recorded_from) > as_utc(history_filter.recorded_to)
        ):
            raise ValidationError("History date range starts after it ends")
        case = await self.repository.require(case_id)
        await self._gate(
            actor, ProtectedResource.for_history(case), AccessAction.READ, "read history"
        )
        return self.audit.history(
            case_id,
            cursor=cursor,
            until=until,
            history_filter=None if history_filter is None or history_filter.is_empty else history_filter,
        )

    async def history_page(
        self,
        case_id: str,
        actor: Actor,
        cursor: Optional[int] = None,
        limit: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> Tuple[List[AuditEntry], Optional[int]]:
        """One bounded page of history plus the cursor for the next page."""
        limit = limit or settings.history_page_size
        if limit < 1 or limit > settings.max_history_page_size:
            raise ValidationError(
                f"limit must be between 1 and {settings.max_history_page_size}"
            )
        entries: List[AuditEntry] = []
        history = await self.get_history(
            case_id, actor, cursor=cursor, history_filter=history_filter
        )
        async with aclosing(history) as pages:
            async for entry in pages:
                entries.append(entry)
                if len(entries) > limit:
                    break
        if len(entries) > limit:
            entries = entries[:limit]
            return entries, entries[-1].sequence
        return entries, None

    async def assignment_history(self, case_id: str, actor: Actor) -> List[Assignment]:
        """Every advocate binding of a case, oldest first, superseded ones included."""
        case = await self.repository.require(case_id)
        await self._gate(
            actor, ProtectedResource.for_case(case), AccessAction.READ, "read assignments"
        )
        return await self.repository.list_assignments(case_id)

    # =========================================================================
    # Case participants
    # =========================================================================

    def _ensure_changeable(self, case: Case, attempted: str) -> None:
        if case.is_terminal:
            raise InvalidTransition(
                f"Cannot {attempted} on a {case.status.value} case",
                details={"status": case.status.value},
            )

    async def _commit_participants(
        self,
        case: Case,
        actor: Actor,
        action: ActivityKind,
        field_name: str,
        members: List[str],
        user_id: str,
        note: Optional[str] = None,
    ) -> Case:
        now = self.clock()
        updated = case.model_copy(update={field_name: members, "updated_at": now})
        uow = UnitOfWork.for_case(case)
        self.audit.record(
            uow,
            actor,
            action,
            before={field_name: list(getattr(case, field_name))},
            after={field_name: list(members), "user_id": user_id},
            reason=note,
        )
        uow.save_case(updated)
        return (await self.repository.commit(uow)).case

    async def add_secondary_advocate(
        self,
        case_id: str,
        advocate_id: str,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Case:
        """Add a supporting advocate alongside the primary one.

        Raises:
            Forbidden: Actor is neither admin nor the primary advocate
            InvalidTransition: Case is in a terminal state
            ValidationError: Advocate is already on the case
            NoEligibleAdvocate: Advocate unknown, unverified or inactive
        """
        case = await self.repository.require(case_id)
        await self._gate(actor, ProtectedResource.for_case(case), AccessAction.WRITE, "add advocate")
        self._ensure_changeable(case, "add an advocate")
        if advocate_id == case.advocate_id or advocate_id in case.secondary_advocate_ids:
            raise ValidationError(f"Advocate {advocate_id} is already on case {case_id}")

        advocate = await self.identity.get_advocate(advocate_id)
        if advocate is None or not (advocate.verified and advocate.active):
            raise NoEligibleAdvocate(
                f"Advocate {advocate_id} cannot join case {case_id}",
                details={"advocate_id": advocate_id},
            )

        saved = await self._commit_participants(
            case,
            actor,
            ActivityKind.SECONDARY_ADVOCATE_ADDED,
            "secondary_advocate_ids",
            case.secondary_advocate_ids + [advocate_id],
            advocate_id,
            note,
        )
        logger.info(f"Added advocate {advocate_id} to case {case_id}")
        self._notify(
            NotificationKind.PARTICIPANT_ADDED,
            saved,
            [advocate_id, saved.advocate_id],
            user_id=advocate_id,
            participant_role=UserRole.ADVOCATE.value,
        )
        return saved

    async def remove_advocate(
        self,
        case_id: str,
        advocate_id: str,
        actor: Actor,
        replacement_advocate_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Case:
        """Take an advocate off a case.

        Removing the primary advocate is a reassignment and needs a
        replacement; a secondary advocate is simply dropped.

        Raises:
            ResourceNotFound: Advocate is not on the case
            PreconditionFailed: Primary advocate removed without a replacement
        """
        case = await self.repository.require(case_id)
        if advocate_id == case.advocate_id:
            if not replacement_advocate_id:
                raise PreconditionFailed(
                    f"Advocate {advocate_id} is primary on case {case_id}; name a replacement",
                    details={"guard": "replacement_required"},
                )
            await self.reassign_case(
                case_id, replacement_advocate_id, AssignmentReason.REASSIGNMENT, actor, note=note
            )
            return await self.repository.require(case_id)

        if advocate_id not in case.secondary_advocate_ids:
            raise ResourceNotFound(f"Advocate {advocate_id} is not on case {case_id}")

        await self._gate(
            actor, ProtectedResource.for_case(case), AccessAction.WRITE, "remove advocate"
        )
        self._ensure_changeable(case, "remove an advocate")
        saved = await self._commit_participants(
            case,
            actor,
            ActivityKind.SECONDARY_ADVOCATE_REMOVED,
            "secondary_advocate_ids",
            [a for a in case.secondary_advocate_ids if a != advocate_id],
            advocate_id,
            note,
        )
        logger.info(f"Removed advocate {advocate_id} from case {case_id}")
        self._notify(
            NotificationKind.PARTICIPANT_REMOVED,
            saved,
            [advocate_id, saved.advocate_id],
            user_id=advocate_id,
            participant_role=UserRole.ADVOCATE.value,
        )
        return saved

    async def add_client(self, case_id: str, client_id: str, actor: Actor) -> Case:
        """Add a co-client, who then sees the case as its owner does."""
        case = await self.repository.require(case_id)
        await self._gate(actor, ProtectedResource.for_case(case), AccessAction.WRITE, "add client")
        self._ensure_changeable(case, "add a client")
        if client_id == case.client_id or client_id in case.additional_client_ids:
            raise ValidationError(f"Client {client_id} is already on case {case_id}")
        known = await self.identity.resolve_actor(client_id)
        if known is not None and known.role != UserRole.CLIENT:
            raise ValidationError(f"User {client_id} is a {known.role.value}, not a client")

        saved = await self._commit_participants(
            case,
            actor,
            ActivityKind.CLIENT_ADDED,
            "additional_client_ids",
            case.additional_client_ids + [client_id],
            client_id,
        )
        logger.info(f"Added client {client_id} to case {case_id}")
        self._notify(
            NotificationKind.PARTICIPANT_ADDED,
            saved,
            [client_id, saved.client_id],
            user_id=client_id,
            participant_role=UserRole.CLIENT.value,
        )
        return saved

    async def remove_client(self, case_id: str, client_id: str, actor: Actor) -> Case:
        case = await self.repository.require(case_id)
        if client_id == case.client_id:
            raise PreconditionFailed(
                f"Client {client_id} owns case {case_id} and cannot be removed",
                details={"guard": "owning_client"},
            )
        if client_id not in case.additional_client_ids:
            raise ResourceNotFound(f"Client {client_id} is not on case {case_id}")
        await self._gate(
            actor, ProtectedResource.for_case(case), AccessAction.WRITE, "remove client"
        )
        self._ensure_changeable(case, "remove a client")

        saved = await self._commit_participants(
            case,
            actor,
            ActivityKind.CLIENT_REMOVED,
            "additional_client_ids",
            [c for c in case.additional_client_ids if c != client_id],
            client_id,
        )
        logger.info(f"Removed client {client_id} from case {case_id}")
        self._notify(
            NotificationKind.PARTICIPANT_REMOVED,
            saved,
            [client_id],
            user_id=client_id,
            participant_role=UserRole.CLIENT.value,
        )
        return saved

    # =========================================================================
    # Advocate directory
    # =========================================================================

    @staticmethod
    def _require_admin(actor: Actor, attempted: str) -> None:
        if actor.role != UserRole.ADMIN:
            raise Forbidden(f"Only admins may {attempted}")
        if not actor.verified:
            raise CaseManager._unverified(actor, attempted)

    async def register_advocate(self, profile: AdvocateProfile, actor: Actor) -> AdvocateProfile:
        """Add or update an advocate's directory profile."""
        self._require_admin(actor, "register advocates")
        saved = await self.identity.register_advocate(profile)
        logger.info(
            f"Advocate {saved.advocate_id} registered by {actor.user_id} "
            f"(verified={saved.verified}, active={saved.active})"
        )
        return saved

    async def available_advocates(
        self,
        actor: Actor,
        specialization: Optional[str] = None,
        max_workload: WorkloadLevel = WorkloadLevel.HEAVY,
        exclude: Iterable[str] = (),
    ) -> List[AdvocateWorkload]:
        """Advocates who could take another case, lightest load first."""
        self._require_admin(actor, "list available advocates")
        pool = await self.identity.list_advocates()
        stats = await self.repository.advocate_stats(a.advocate_id for a in pool)
        return self.assignment_engine.available(
            pool, stats, specialization=specialization, max_level=max_workload, exclude=exclude
        )

    # =========================================================================
    # Escalation sweep
    # =========================================================================

    async def flag_due_escalations(self, actor: Actor) -> List[Case]:
        """Flag every case whose court date has come within the threshold.

        Escalation is otherwise evaluated only when a case changes, so a case
        left untouched while its court date approaches is caught here. A case
        modified concurrently is skipped and picked up by the next sweep.

        Returns:
            The cases flagged by this sweep
        """
        if actor.role not in (UserRole.SYSTEM, UserRole.ADMIN):
            raise Forbidden("Only the scheduler and admins run the escalation sweep")
        if not actor.verified:
            raise self._unverified(actor, "run the escalation sweep")

        now = self.clock()
        due = await self.repository.list_escalation_candidates(
            ESCALATION_STATUSES, now + self.state_machine.escalation_threshold
        )
        flagged: List[Case] = []
        for case in due:
            uow = UnitOfWork.for_case(case)
            escalated = self._maybe_escalate(uow, case, actor, now)
            if escalated is case:
                continue
            uow.save_case(escalated)
            try:
                saved = (await self.repository.commit(uow)).case
            except ConcurrentModification:
                logger.warning(f"Case {case.case_id} changed during escalation sweep; retrying next run")
                continue
            flagged.append(saved)
            self._notify(NotificationKind.ESCALATION_FLAGGED, saved, [saved.advocate_id])

        if flagged:
            logger.info(f"Escalation sweep flagged {len(flagged)} of {len(due)} due cases")
        return flagged

    # =========================================================================
    # Listings
    # =========================================================================

    async def list_documents(self, case_id: str, actor: Actor) -> List[CaseDocument]:
        """Documents on the case the actor may read; others are left out silently."""
        case = await self.repository.require(case_id)
        await self._gate(actor, ProtectedResource.for_case(case), AccessAction.READ, "list documents")
        return [
            document
            for document in await self.repository.list_documents(case_id)
            if can_access(actor, ProtectedResource.for_document(case, document), AccessAction.READ)
        ]

    async def list_notes(self, case_id: str, actor: Actor) -> List[CaseNote]:
        """Notes on the case the actor may read, shared ones included."""
        case = await self.repository.require(case_id)
        await self._gate(actor, ProtectedResource.for_case(case), AccessAction.READ, "list notes")
        return [
            note
            for note in await self.repository.list_notes(case_id)
            if can_access(actor, ProtectedResource.for_note(case, note), AccessAction.READ)
        ]
