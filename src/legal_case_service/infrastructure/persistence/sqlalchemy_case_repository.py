"""SQLAlchemy Case Repository - Production Implementation.

Implements the CaseRepository interface on the normalized schema:

    cases (main table, carries the optimistic ``version`` counter)
    ├── case_documents   (1:N)
    ├── case_notes       (1:N)
    ├── case_assignments (1:N, superseded rows kept)
    └── case_activities  (1:N append-only, unique (case_id, sequence))

A unit of work runs in one database transaction. It opens with a conditional
``UPDATE cases SET last_sequence = last_sequence + :n ... WHERE version = :base``
that row-locks the case and reserves the audit sequence numbers; the audit
INSERTs that follow either commit with it or roll back with it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from legal_case_service.core.assignment import AdvocateStats
from legal_case_service.core.exceptions import (
    CaseNotFound,
    ConcurrentModification,
    Unavailable,
)
from legal_case_service.infrastructure.database.models import (
    CaseActivityDB,
    CaseAssignmentDB,
    CaseDB,
    CaseDocumentDB,
    CaseNoteDB,
)
from legal_case_service.infrastructure.persistence.case_repository import (
    CaseRepository,
    CommitResult,
    UnitOfWork,
)
from legal_case_service.models.case import (
    Assignment,
    AuditEntry,
    Case,
    CaseDocument,
    CaseNote,
    CasePriority,
    CaseStatus,
    HistoryFilter,
    as_utc,
)

logger = logging.getLogger(__name__)


class SQLAlchemyCaseRepository(CaseRepository):
    """
    Case repository backed by SQLite (aiosqlite) or PostgreSQL (asyncpg).

    Each call opens its own session from the factory so concurrent requests
    never share a transaction.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize repository with a session factory.

        Args:
            session_maker: SQLAlchemy async_sessionmaker bound to the engine
            timeout_seconds: Upper bound for a single commit
        """
        super().__init__(timeout_seconds)
        self._session_maker = session_maker

    # ========================================================================
    # Unit of Work
    # ========================================================================

    async def _commit(self, uow: UnitOfWork) -> CommitResult:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    saved_case = await self._write_case(session, uow)

                    for document in uow.documents:
                        await session.merge(self._document_to_row(document))
                    for note in uow.notes:
                        await session.merge(self._note_to_row(note))
                    for assignment in uow.assignments:
                        await session.merge(self._assignment_to_row(assignment))

                    entries = await self._append_activities(session, uow)

            return CommitResult(case=saved_case, entries=entries)

        except IntegrityError as e:
            logger.warning(f"Integrity conflict committing case {uow.case_id}: {e}")
            raise ConcurrentModification(
                f"Case {uow.case_id} was modified concurrently"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to commit changes to case {uow.case_id}: {e}")
            raise Unavailable(f"Failed to commit changes to case {uow.case_id}") from e
        except OSError as e:
            raise Unavailable(f"Case store unreachable: {e}") from e

    async def _write_case(self, session: AsyncSession, uow: UnitOfWork) -> Optional[Case]:
        """Lock the case row and reserve sequence numbers for the unit's entries.

        The guarded UPDATE is always the first statement of the transaction,
        so every writer on a case (audit-only units included) queues on the
        same row before it reads anything.
        """
        if uow.is_new:
            case = uow.case.model_copy(update={"version": 1})
            session.add(CaseDB(**self._case_values(case), last_sequence=len(uow.entries)))
            await session.flush()
            return case

        statement = update(CaseDB).where(CaseDB.case_id == uow.case_id)
        if uow.base_version is not None:
            statement = statement.where(CaseDB.version == uow.base_version)
        values: Dict[str, Any] = {"last_sequence": CaseDB.last_sequence + len(uow.entries)}

        case = None
        if uow.writes_case:
            case = uow.case.model_copy(update={"version": uow.base_version + 1})
            values.update(self._case_values(case))
            values.pop("case_id")
            values.pop("created_at")

        result = await session.execute(
            statement.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = await session.scalar(
                select(CaseDB.version).where(CaseDB.case_id == uow.case_id)
            )
            if actual is None:
                raise CaseNotFound(f"Case {uow.case_id} not found")
            logger.warning(
                f"Version conflict on case {uow.case_id}: "
                f"expected {uow.base_version}, found {actual}"
            )
            raise ConcurrentModification(
                f"Case {uow.case_id} was modified concurrently",
                details={"expected_version": uow.base_version, "actual_version": actual},
            )
        return case

    async def _append_activities(self, session: AsyncSession, uow: UnitOfWork) -> List[AuditEntry]:
        if not uow.entries:
            return []
        # _write_case already advanced the counter past this unit's entries
        reserved = await session.scalar(
            select(CaseDB.last_sequence).where(CaseDB.case_id == uow.case_id)
        )
        next_sequence = reserved - len(uow.entries) + 1
        entries = []
        for offset, entry in enumerate(uow.entries):
            committed = entry.model_copy(update={"sequence": next_sequence + offset})
            session.add(
                CaseActivityDB(
                    entry_id=committed.entry_id,
                    case_id=committed.case_id,
                    sequence=committed.sequence,
                    actor_id=committed.actor_id,
                    actor_role=committed.actor_role,
                    action=committed.action,
                    before=committed.before,
                    after=committed.after,
                    reason=committed.reason,
                    origin=committed.origin,
                    recorded_at=committed.recorded_at,
                )
            )
            entries.append(committed)
        await session.flush()
        return entries
    # ========================================================================
    # Reads
    # ========================================================================

    async def _scalars(self, statement) -> list:
        try:
            async with self._session_maker() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Case store read failed: {e}")
            raise Unavailable("Case store read failed") from e

    async def get(self, case_id: str) -> Optional[Case]:
        rows = await self._scalars(select(CaseDB).where(CaseDB.case_id == case_id))
        return self._row_to_case(rows[0]) if rows else None

    async def get_document(self, case_id: str, document_id: str) -> Optional[CaseDocument]:
        rows = await self._scalars(
            select(CaseDocumentDB).where(
                CaseDocumentDB.case_id == case_id,
                CaseDocumentDB.document_id == document_id,
            )
        )
        return self._row_to_document(rows[0]) if rows else None

    async def list_documents(self, case_id: str) -> List[CaseDocument]:
        rows = await self._scalars(
            select(CaseDocumentDB)
            .where(CaseDocumentDB.case_id == case_id)
            .order_by(CaseDocumentDB.uploaded_at)
        )
        return [self._row_to_document(row) for row in rows]

    async def get_note(self, case_id: str, note_id: str) -> Optional[CaseNote]:
        rows = await self._scalars(
            select(CaseNoteDB).where(CaseNoteDB.case_id == case_id, CaseNoteDB.note_id == note_id)
        )
        return self._row_to_note(rows[0]) if rows else None

    async def list_notes(self, case_id: str) -> List[CaseNote]:
        rows = await self._scalars(
            select(CaseNoteDB).where(CaseNoteDB.case_id == case_id).order_by(CaseNoteDB.created_at)
        )
        return [self._row_to_note(row) for row in rows]

    async def list_assignments(self, case_id: str) -> List[Assignment]:
        rows = await self._scalars(
            select(CaseAssignmentDB)
            .where(CaseAssignmentDB.case_id == case_id)
            .order_by(CaseAssignmentDB.assigned_at)
        )
        return [self._row_to_assignment(row) for row in rows]

    async def advocate_stats(self, advocate_ids: Iterable[str]) -> Dict[str, AdvocateStats]:
        ids = list(set(advocate_ids))
        if not ids:
            return {}
        try:
            async with self._session_maker() as session:
                case_rows = (
                    await session.execute(
                        select(CaseDB.advocate_id, CaseDB.status, CaseDB.priority).where(
                            CaseDB.advocate_id.in_(ids)
                        )
                    )
                ).all()
                last_rows = (
                    await session.execute(
                        select(CaseAssignmentDB.advocate_id, func.max(CaseAssignmentDB.assigned_at))
                        .where(CaseAssignmentDB.advocate_id.in_(ids))
                        .group_by(CaseAssignmentDB.advocate_id)
                    )
                ).all()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Workload query failed: {e}")
            raise Unavailable("Case store read failed") from e

        counts = {advocate_id: [0, 0, 0] for advocate_id in ids}
        for advocate_id, status, priority in case_rows:
            bucket = counts[advocate_id]
            bucket[1] += 1
            if CaseStatus(status) == CaseStatus.ACTIVE:
                bucket[0] += 1
                if CasePriority(priority) == CasePriority.URGENT:
                    bucket[2] += 1
        last_assigned = {advocate_id: as_utc(at) for advocate_id, at in last_rows}

        return {
            advocate_id: AdvocateStats(
                active_cases=active,
                total_cases=total,
                urgent_cases=urgent,
                last_assigned_at=last_assigned.get(advocate_id),
            )
            for advocate_id, (active, total, urgent) in counts.items()
        }

    async def list_activities(
        self,
        case_id: str,
        after_sequence: int = 0,
        limit: int = 50,
        until_sequence: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> List[AuditEntry]:
        statement = select(CaseActivityDB).where(
            CaseActivityDB.case_id == case_id,
            CaseActivityDB.sequence > after_sequence,
        )
        if until_sequence is not None:
            statement = statement.where(CaseActivityDB.sequence <= until_sequence)
        if history_filter is not None:
            if history_filter.actions:
                statement = statement.where(CaseActivityDB.action.in_(list(history_filter.actions)))
            if history_filter.actor_id is not None:
                statement = statement.where(CaseActivityDB.actor_id == history_filter.actor_id)
            if history_filter.recorded_from is not None:
                statement = statement.where(CaseActivityDB.recorded_at >= history_filter.recorded_from)
            if history_filter.recorded_to is not None:
                statement = statement.where(CaseActivityDB.recorded_at <= history_filter.recorded_to)
        rows = await self._scalars(statement.order_by(CaseActivityDB.sequence).limit(limit))
        return [self._row_to_entry(row) for row in rows]

    async def last_sequence(self, case_id: str) -> int:
        rows = await self._scalars(select(CaseDB.last_sequence).where(CaseDB.case_id == case_id))
        return (rows[0] if rows else None) or 0

    async def list_escalation_candidates(
        self, statuses: Iterable[CaseStatus], due_before: datetime
    ) -> List[Case]:
        rows = await self._scalars(
            select(CaseDB)
            .where(
                CaseDB.status.in_(list(statuses)),
                CaseDB.escalation_flagged.is_(False),
                CaseDB.court_date.is_not(None),
                CaseDB.court_date <= due_before,
            )
            .order_by(CaseDB.court_date)
        )
        return [self._row_to_case(row) for row in rows]

    # ========================================================================
    # Row mapping
    # ========================================================================

    @staticmethod
    def _case_values(case: Case) -> Dict[str, Any]:
        return {
            "case_id": case.case_id,
            "client_id": case.client_id,
            "advocate_id": case.advocate_id,
            "secondary_advocate_ids": list(case.secondary_advocate_ids),
            "additional_client_ids": list(case.additional_client_ids),
            "title": case.title,
            "description": case.description,
            "status": case.status,
            "priority": case.priority,
            "court_date": case.court_date,
            "tags": list(case.tags),
            "hold_reason": case.hold_reason,
            "outcome": case.outcome,
            "escalation_flagged": case.escalation_flagged,
            "version": case.version,
            "created_at": case.created_at,
            "updated_at": case.updated_at,
            "resolved_at": case.resolved_at,
            "closed_at": case.closed_at,
        }

    @staticmethod
    def _row_to_case(row: CaseDB) -> Case:
        return Case(
            case_id=row.case_id,
            client_id=row.client_id,
            advocate_id=row.advocate_id,
            secondary_advocate_ids=list(row.secondary_advocate_ids or []),
            additional_client_ids=list(row.additional_client_ids or []),
            title=row.title,
            description=row.description or "",
            status=row.status,
            priority=row.priority,
            court_date=as_utc(row.court_date),
            tags=list(row.tags or []),
            hold_reason=row.hold_reason,
            outcome=row.outcome,
            escalation_flagged=bool(row.escalation_flagged),
            version=row.version,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            resolved_at=as_utc(row.resolved_at),
            closed_at=as_utc(row.closed_at),
        )

    @staticmethod
    def _document_to_row(document: CaseDocument) -> CaseDocumentDB:
        return CaseDocumentDB(**document.model_dump())

    @staticmethod
    def _row_to_document(row: CaseDocumentDB) -> CaseDocument:
        document = CaseDocument.model_validate(row)
        return document.model_copy(update={"uploaded_at": as_utc(row.uploaded_at)})

    @staticmethod
    def _note_to_row(note: CaseNote) -> CaseNoteDB:
        values = note.model_dump()
        values["shared_with"] = list(note.shared_with)
        return CaseNoteDB(**values)

    @staticmethod
    def _row_to_note(row: CaseNoteDB) -> CaseNote:
        return CaseNote(
            note_id=row.note_id,
            case_id=row.case_id,
            author_id=row.author_id,
            note_type=row.note_type,
            access_level=row.access_level,
            content=row.content or "",
            shared_with=list(row.shared_with or []),
            follow_up_due=as_utc(row.follow_up_due),
            follow_up_completed_at=as_utc(row.follow_up_completed_at),
            created_at=as_utc(row.created_at),
        )

    @staticmethod
    def _assignment_to_row(assignment: Assignment) -> CaseAssignmentDB:
        return CaseAssignmentDB(**assignment.model_dump())

    @staticmethod
    def _row_to_assignment(row: CaseAssignmentDB) -> Assignment:
        return Assignment(
            assignment_id=row.assignment_id,
            case_id=row.case_id,
            advocate_id=row.advocate_id,
            reason=row.reason,
            assigned_by=row.assigned_by,
            assigned_at=as_utc(row.assigned_at),
            superseded_at=as_utc(row.superseded_at),
        )

    @staticmethod
    def _row_to_entry(row: CaseActivityDB) -> AuditEntry:
        return AuditEntry(
            entry_id=row.entry_id,
            case_id=row.case_id,
            sequence=row.sequence,
            actor_id=row.actor_id,
            actor_role=row.actor_role,
            action=row.action,
            before=row.before or {},
            after=row.after or {},
            reason=row.reason,
            origin=row.origin,
            recorded_at=as_utc(row.recorded_at),
        )
