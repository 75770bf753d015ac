"""Case Repository for case lifecycle persistence.

This module provides the repository pattern for the Case aggregate and the
records it owns by reference. State changes are handed to the repository as a
``UnitOfWork``: the case update, its documents/notes/assignments and the audit
entries describing them are committed together or not at all.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from legal_case_service.core.assignment import AdvocateStats
from legal_case_service.core.exceptions import (
    CaseNotFound,
    ConcurrentModification,
    Unavailable,
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


# ============================================================
# Unit of Work
# ============================================================

@dataclass
class UnitOfWork:
    """One atomic change to a single case.

    ``base_version`` is the case version the change was computed against;
    ``None`` means the unit only appends audit entries (no case write) or,
    with ``is_new``, creates the case.
    """

    case_id: str
    base_version: Optional[int] = None
    is_new: bool = False
    case: Optional[Case] = None
    documents: List[CaseDocument] = field(default_factory=list)
    notes: List[CaseNote] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)
    entries: List[AuditEntry] = field(default_factory=list)

    @classmethod
    def for_new_case(cls, case: Case) -> "UnitOfWork":
        return cls(case_id=case.case_id, is_new=True, case=case)

    @classmethod
    def for_case(cls, case: Case) -> "UnitOfWork":
        return cls(case_id=case.case_id, base_version=case.version)

    def save_case(self, case: Case) -> None:
        self.case = case

    def save_document(self, document: CaseDocument) -> None:
        self.documents.append(document)

    def save_note(self, note: CaseNote) -> None:
        self.notes.append(note)

    def save_assignment(self, assignment: Assignment) -> None:
        self.assignments.append(assignment)

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    @property
    def writes_case(self) -> bool:
        return self.case is not None


@dataclass
class CommitResult:
    case: Optional[Case]
    entries: List[AuditEntry]


# ============================================================
# Repository Interface
# ============================================================

class CaseRepository(ABC):
    """
    Abstract repository interface for the case aggregate.

    Implementations:
    - SQLAlchemyCaseRepository: SQLite/PostgreSQL through SQLAlchemy async
    - InMemoryCaseRepository: Testing and development
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    async def commit(self, uow: UnitOfWork) -> CommitResult:
        """
        Atomically apply a unit of work.

        Args:
            uow: Case change plus the audit entries describing it

        Returns:
            The stored case (version bumped) and the entries with their
            assigned sequence numbers

        Raises:
            ConcurrentModification: Stored version differs from base_version
            Unavailable: Store unreachable or the commit timed out
        """
        if uow.writes_case and not uow.is_new and uow.base_version is None:
            raise ValueError("Case writes need a base version")
        try:
            return await asyncio.wait_for(self._commit(uow), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"Commit for case {uow.case_id} timed out")
            raise Unavailable(
                f"Timed out committing changes to case {uow.case_id}",
                details={"timeout_seconds": self.timeout_seconds},
            ) from e

    @abstractmethod
    async def _commit(self, uow: UnitOfWork) -> CommitResult:
        pass

    @abstractmethod
    async def get(self, case_id: str) -> Optional[Case]:
        """
        Retrieve case by ID.

        Returns:
            Case if found, None otherwise

        Raises:
            Unavailable: If retrieval fails
        """
        pass

    async def require(self, case_id: str) -> Case:
        case = await self.get(case_id)
        if case is None:
            raise CaseNotFound(f"Case {case_id} not found", details={"case_id": case_id})
        return case

    @abstractmethod
    async def get_document(self, case_id: str, document_id: str) -> Optional[CaseDocument]:
        pass

    @abstractmethod
    async def list_documents(self, case_id: str) -> List[CaseDocument]:
        pass

    @abstractmethod
    async def get_note(self, case_id: str, note_id: str) -> Optional[CaseNote]:
        pass

    @abstractmethod
    async def list_notes(self, case_id: str) -> List[CaseNote]:
        pass

    @abstractmethod
    async def list_assignments(self, case_id: str) -> List[Assignment]:
        """All assignments for a case, oldest first, superseded ones included."""
        pass

    async def current_assignment(self, case_id: str) -> Optional[Assignment]:
        current = [a for a in await self.list_assignments(case_id) if a.is_current]
        return current[-1] if current else None

    @abstractmethod
    async def advocate_stats(self, advocate_ids: Iterable[str]) -> Dict[str, AdvocateStats]:
        """
        Workload figures per advocate.

        Active cases are those in ``active`` status; urgent cases are active
        cases with urgent priority.
        """
        pass

    @abstractmethod
    async def list_activities(
        self,
        case_id: str,
        after_sequence: int = 0,
        limit: int = 50,
        until_sequence: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> List[AuditEntry]:
        """
        One page of a case's audit entries in ascending sequence order.

        Args:
            case_id: Case identifier
            after_sequence: Exclusive lower bound (the cursor)
            limit: Maximum entries to return
            until_sequence: Optional inclusive upper bound
            history_filter: Only entries matching it count towards the page
        """
        pass

    @abstractmethod
    async def last_sequence(self, case_id: str) -> int:
        """Highest committed audit sequence for a case (0 when empty)."""
        pass

    @abstractmethod
    async def list_escalation_candidates(
        self, statuses: Iterable[CaseStatus], due_before: datetime
    ) -> List[Case]:
        """Unflagged cases in one of ``statuses`` whose court date is on or before ``due_before``."""
        pass


def _compute_stats(
    cases: Iterable[Case],
    assignments: Iterable[Assignment],
    advocate_ids: Iterable[str],
) -> Dict[str, AdvocateStats]:
    ids = set(advocate_ids)
    counts = {advocate_id: [0, 0, 0] for advocate_id in ids}
    for case in cases:
        if case.advocate_id not in ids:
            continue
        bucket = counts[case.advocate_id]
        bucket[1] += 1
        if case.status == CaseStatus.ACTIVE:
            bucket[0] += 1
            if case.priority == CasePriority.URGENT:
                bucket[2] += 1

    last_assigned: Dict[str, datetime] = {}
    for assignment in assignments:
        if assignment.advocate_id not in ids:
            continue
        assigned_at = as_utc(assignment.assigned_at)
        previous = last_assigned.get(assignment.advocate_id)
        if previous is None or assigned_at > previous:
            last_assigned[assignment.advocate_id] = assigned_at

    return {
        advocate_id: AdvocateStats(
            active_cases=active,
            total_cases=total,
            urgent_cases=urgent,
            last_assigned_at=last_assigned.get(advocate_id),
        )
        for advocate_id, (active, total, urgent) in counts.items()
    }


# ============================================================
# In-Memory Implementation (for Testing)
# ============================================================

class InMemoryCaseRepository(CaseRepository):
    """
    In-memory case repository for testing and development.

    Data stored in dictionaries, not persistent across restarts. Objects are
    copied in and out to simulate persistence. Commits for one case are
    serialized by a per-case lock and applied without yielding, so a unit of
    work is either fully visible or not at all.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        super().__init__(timeout_seconds)
        self._cases: Dict[str, Case] = {}
        self._documents: Dict[str, Dict[str, CaseDocument]] = defaultdict(dict)
        self._notes: Dict[str, Dict[str, CaseNote]] = defaultdict(dict)
        self._assignments: Dict[str, Dict[str, Assignment]] = defaultdict(dict)
        self._activities: Dict[str, List[AuditEntry]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Toggle to simulate an unreachable store
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise Unavailable("In-memory case store is unavailable")

    async def _commit(self, uow: UnitOfWork) -> CommitResult:
        async with self._locks[uow.case_id]:
            self._check_available()

            stored = self._cases.get(uow.case_id)
            saved_case = None
            if uow.is_new:
                if stored is not None:
                    raise ConcurrentModification(f"Case {uow.case_id} already exists")
                saved_case = uow.case.model_copy(update={"version": 1}, deep=True)
            elif uow.writes_case or uow.base_version is not None:
                if stored is None:
                    raise CaseNotFound(f"Case {uow.case_id} not found")
                if stored.version != uow.base_version:
                    logger.warning(
                        f"Version conflict on case {uow.case_id}: "
                        f"expected {uow.base_version}, found {stored.version}"
                    )
                    raise ConcurrentModification(
                        f"Case {uow.case_id} was modified concurrently",
                        details={"expected_version": uow.base_version, "actual_version": stored.version},
                    )
                if uow.writes_case:
                    saved_case = uow.case.model_copy(
                        update={"version": stored.version + 1}, deep=True
                    )
            elif stored is None:
                raise CaseNotFound(f"Case {uow.case_id} not found")

            ledger = self._activities[uow.case_id]
            next_sequence = ledger[-1].sequence + 1 if ledger else 1
            entries = [
                entry.model_copy(update={"sequence": next_sequence + offset})
                for offset, entry in enumerate(uow.entries)
            ]

            # Everything validated; apply without awaiting.
            if saved_case is not None:
                self._cases[uow.case_id] = saved_case
            for document in uow.documents:
                self._documents[uow.case_id][document.document_id] = document.model_copy(deep=True)
            for note in uow.notes:
                self._notes[uow.case_id][note.note_id] = note.model_copy(deep=True)
            for assignment in uow.assignments:
                self._assignments[uow.case_id][assignment.assignment_id] = assignment.model_copy()
            ledger.extend(entries)

            return CommitResult(
                case=saved_case.model_copy(deep=True) if saved_case else None,
                entries=entries,
            )

    async def get(self, case_id: str) -> Optional[Case]:
        """Get case from memory."""
        self._check_available()
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def get_document(self, case_id: str, document_id: str) -> Optional[CaseDocument]:
        self._check_available()
        document = self._documents[case_id].get(document_id)
        return document.model_copy(deep=True) if document else None

    async def list_documents(self, case_id: str) -> List[CaseDocument]:
        self._check_available()
        return [d.model_copy(deep=True) for d in self._documents[case_id].values()]

    async def get_note(self, case_id: str, note_id: str) -> Optional[CaseNote]:
        self._check_available()
        note = self._notes[case_id].get(note_id)
        return note.model_copy(deep=True) if note else None

    async def list_notes(self, case_id: str) -> List[CaseNote]:
        self._check_available()
        return [n.model_copy(deep=True) for n in self._notes[case_id].values()]

    async def list_assignments(self, case_id: str) -> List[Assignment]:
        self._check_available()
        return sorted(
            (a.model_copy() for a in self._assignments[case_id].values()),
            key=lambda a: as_utc(a.assigned_at),
        )

    async def advocate_stats(self, advocate_ids: Iterable[str]) -> Dict[str, AdvocateStats]:
        self._check_available()
        assignments = [a for by_case in self._assignments.values() for a in by_case.values()]
        return _compute_stats(self._cases.values(), assignments, advocate_ids)

    async def list_activities(
        self,
        case_id: str,
        after_sequence: int = 0,
        limit: int = 50,
        until_sequence: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> List[AuditEntry]:
        self._check_available()
        page = []
        for entry in self._activities.get(case_id, []):
            if entry.sequence <= after_sequence:
                continue
            if until_sequence is not None and entry.sequence > until_sequence:
                break
            if history_filter is not None and not history_filter.matches(entry):
                continue
            page.append(entry)
            if len(page) >= limit:
                break
        return page

    async def last_sequence(self, case_id: str) -> int:
        self._check_available()
        ledger = self._activities.get(case_id)
        return ledger[-1].sequence if ledger else 0

    async def list_escalation_candidates(
        self, statuses: Iterable[CaseStatus], due_before: datetime
    ) -> List[Case]:
        self._check_available()
        wanted = set(statuses)
        due = [
            case
            for case in self._cases.values()
            if case.status in wanted
            and not case.escalation_flagged
            and case.court_date is not None
            and as_utc(case.court_date) <= as_utc(due_before)
        ]
        return [c.model_copy(deep=True) for c in sorted(due, key=lambda c: as_utc(c.court_date))]
