"""Unit tests for the SQLAlchemy case repository on a temporary SQLite file."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from legal_case_service.core.access_control import AccessAction, ResourceKind, ResourceRef
from legal_case_service.core.case_manager import CaseManager
from legal_case_service.core.exceptions import CaseNotFound, ConcurrentModification, PreconditionFailed
from legal_case_service.core.state_machine import TransitionParams
from legal_case_service.infrastructure.database import DatabaseClient
from legal_case_service.infrastructure.persistence import SQLAlchemyCaseRepository, UnitOfWork
from legal_case_service.models.case import (
    ActivityKind,
    AssignmentReason,
    AuditEntry,
    Case,
    CasePriority,
    CaseStatus,
    HistoryFilter,
    NoteType,
    UserRole,
)
from legal_case_service.models.requests import CaseCreateRequest, NoteCreateRequest


@pytest_asyncio.fixture
async def database(tmp_path):
    client = DatabaseClient(f"sqlite+aiosqlite:///{tmp_path / 'cases.db'}")
    await client.create_tables()
    yield client
    await client.close()


@pytest.fixture
def sql_repository(database) -> SQLAlchemyCaseRepository:
    return SQLAlchemyCaseRepository(database.async_session_maker, timeout_seconds=5)


@pytest.fixture
def sql_manager(sql_repository, identity, clock) -> CaseManager:
    return CaseManager(sql_repository, identity, clock=clock)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSQLAlchemyRepository:
    async def test_round_trip_case(self, sql_repository, clock):
        case = Case(
            client_id="client_1",
            title="Title deed",
            tags=["property"],
            court_date=clock.now + timedelta(days=20),
            created_at=clock.now,
            updated_at=clock.now,
        )
        result = await sql_repository.commit(UnitOfWork.for_new_case(case))
        assert result.case.version == 1

        stored = await sql_repository.get(case.case_id)
        assert stored.version == 1
        assert stored.tags == ["property"]
        assert stored.status == CaseStatus.DRAFT
        assert stored.court_date == case.court_date
        assert stored.created_at.tzinfo is not None

    async def test_missing_case(self, sql_repository):
        assert await sql_repository.get("case_missing") is None
        with pytest.raises(CaseNotFound):
            await sql_repository.require("case_missing")

    async def test_stale_version_rejected(self, sql_repository):
        case = Case(client_id="client_1", title="A")
        await sql_repository.commit(UnitOfWork.for_new_case(case))
        stored = await sql_repository.require(case.case_id)

        uow = UnitOfWork.for_case(stored)
        uow.save_case(stored.model_copy(update={"title": "B"}))
        await sql_repository.commit(uow)

        stale = UnitOfWork.for_case(stored)
        stale.save_case(stored.model_copy(update={"title": "C"}))
        with pytest.raises(ConcurrentModification):
            await sql_repository.commit(stale)
        assert (await sql_repository.require(case.case_id)).title == "B"

    async def test_audit_only_unit_needs_existing_case(self, sql_repository):
        with pytest.raises(CaseNotFound):
            await sql_repository.commit(UnitOfWork(case_id="case_missing"))


@pytest.mark.unit
@pytest.mark.asyncio
class TestSQLAlchemyLifecycle:
    async def test_lifecycle_history_and_assignments(self, sql_manager, client_actor, admin, advocate):
        case = await sql_manager.create_case(
            CaseCreateRequest(title="Custody", tags=["family-law"]), client_actor
        )
        assert await sql_manager.assign_case(case.case_id, admin) == "adv_family"
        await sql_manager.transition_case(case.case_id, CaseStatus.ACTIVE, advocate)
        await sql_manager.reassign_case(
            case.case_id, "adv_generalist", AssignmentReason.ESCALATION, admin, note="Senior counsel"
        )

        history = [e async for e in await sql_manager.get_history(case.case_id, admin)]
        assert [e.sequence for e in history] == [1, 2, 3, 4]
        assert history[-1].action == ActivityKind.ADVOCATE_REASSIGNED
        assert history[-1].actor_role == UserRole.ADMIN
        assert history[-1].after == {"advocate_id": "adv_generalist", "reason_code": "escalation"}

        assignments = await sql_manager.repository.list_assignments(case.case_id)
        current = await sql_manager.repository.current_assignment(case.case_id)
        assert len(assignments) == 2
        assert current.advocate_id == "adv_generalist"

        stats = await sql_manager.repository.advocate_stats(["adv_family", "adv_generalist"])
        assert stats["adv_generalist"].active_cases == 1
        assert stats["adv_family"].active_cases == 0
        assert stats["adv_family"].last_assigned_at is not None

    async def test_follow_up_guard_reads_notes(self, sql_manager, active_case_sql, advocate, clock):
        note = await sql_manager.add_note(
            active_case_sql.case_id,
            NoteCreateRequest(
                content="File affidavit",
                note_type=NoteType.FOLLOW_UP,
                follow_up_due=clock.now + timedelta(days=1),
            ),
            advocate,
        )
        await sql_manager.transition_case(
            active_case_sql.case_id, CaseStatus.RESOLVED, advocate, TransitionParams(outcome="Consent order")
        )
        with pytest.raises(PreconditionFailed):
            await sql_manager.transition_case(active_case_sql.case_id, CaseStatus.CLOSED, advocate)

        await sql_manager.complete_follow_up(active_case_sql.case_id, note.note_id, advocate)
        closed = await sql_manager.transition_case(active_case_sql.case_id, CaseStatus.CLOSED, advocate)
        assert closed.outcome == "Consent order"
        assert (await sql_manager.repository.last_sequence(active_case_sql.case_id)) == 7


@pytest_asyncio.fixture
async def active_case_sql(sql_manager, client_actor, admin, advocate):
    case = await sql_manager.create_case(CaseCreateRequest(title="Probate", tags=["family-law"]), client_actor)
    await sql_manager.assign_case(case.case_id, admin)
    return await sql_manager.transition_case(case.case_id, CaseStatus.ACTIVE, advocate)


def _status_change(case: Case, title: str) -> UnitOfWork:
    uow = UnitOfWork.for_case(case)
    uow.save_case(case.model_copy(update={"title": title}))
    uow.record(
        AuditEntry(
            case_id=case.case_id,
            actor_id="admin_1",
            actor_role=UserRole.ADMIN,
            action=ActivityKind.STATUS_CHANGED,
            after={"title": title},
        )
    )
    return uow


@pytest.mark.unit
@pytest.mark.asyncio
class TestSQLAlchemyConcurrency:
    async def test_concurrent_denials_get_distinct_sequences(
        self, sql_manager, active_case_sql, other_client, admin
    ):
        case_id = active_case_sql.case_id
        before = await sql_manager.repository.last_sequence(case_id)
        ref = ResourceRef(kind=ResourceKind.CASE, case_id=case_id)

        decisions = await asyncio.gather(
            *(sql_manager.check_access(other_client, ref, AccessAction.READ) for _ in range(8))
        )

        assert all(not decision.allowed for decision in decisions)
        history = [e async for e in await sql_manager.get_history(case_id, admin)]
        assert [e.sequence for e in history] == list(range(1, before + 9))
        assert sum(e.action == ActivityKind.ACCESS_DENIED for e in history) == 8
        # denials never bump the case version
        assert (await sql_manager.repository.require(case_id)).version == active_case_sql.version

    async def test_concurrent_writes_from_same_version(self, sql_repository):
        case = Case(client_id="client_1", title="Original")
        await sql_repository.commit(UnitOfWork.for_new_case(case))
        stored = await sql_repository.require(case.case_id)

        results = await asyncio.gather(
            sql_repository.commit(_status_change(stored, "First")),
            sql_repository.commit(_status_change(stored, "Second")),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConcurrentModification)]
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(winners) == 1
        final = await sql_repository.require(case.case_id)
        assert final.version == 2
        assert final.title == winners[0].case.title
        assert await sql_repository.last_sequence(case.case_id) == 1

    async def test_transition_racing_denials_still_commits(
        self, sql_manager, active_case_sql, advocate, other_client
    ):
        case_id = active_case_sql.case_id
        ref = ResourceRef(kind=ResourceKind.CASE, case_id=case_id)
        before = await sql_manager.repository.last_sequence(case_id)

        results = await asyncio.gather(
            sql_manager.transition_case(
                case_id, CaseStatus.ON_HOLD, advocate, TransitionParams(reason="Awaiting records")
            ),
            *(sql_manager.check_access(other_client, ref, AccessAction.WRITE) for _ in range(4)),
        )

        assert results[0].status == CaseStatus.ON_HOLD
        entries = await sql_manager.repository.list_activities(case_id, after_sequence=before)
        assert [e.sequence for e in entries] == list(range(before + 1, before + 6))


@pytest.mark.unit
@pytest.mark.asyncio
class TestSQLAlchemyQueries:
    async def test_history_filter_applied_in_query(self, sql_manager, active_case_sql, admin, other_client):
        case_id = active_case_sql.case_id
        await sql_manager.check_access(
            other_client, ResourceRef(kind=ResourceKind.CASE, case_id=case_id), AccessAction.READ
        )

        denials = await sql_manager.repository.list_activities(
            case_id, history_filter=HistoryFilter(actions=frozenset({ActivityKind.ACCESS_DENIED}))
        )
        by_admin = await sql_manager.repository.list_activities(
            case_id, history_filter=HistoryFilter(actor_id="admin_1")
        )

        assert [e.actor_id for e in denials] == ["client_2"]
        assert [e.action for e in by_admin] == [ActivityKind.ADVOCATE_ASSIGNED]

    async def test_escalation_candidates(self, sql_repository, clock):
        near = Case(client_id="client_1", title="Near", court_date=clock.now + timedelta(days=5))
        far = Case(client_id="client_1", title="Far", court_date=clock.now + timedelta(days=30))
        flagged = Case(
            client_id="client_1",
            title="Flagged",
            court_date=clock.now + timedelta(days=2),
            escalation_flagged=True,
            priority=CasePriority.URGENT,
        )
        closed = Case(
            client_id="client_1",
            title="Closed",
            status=CaseStatus.CLOSED,
            court_date=clock.now + timedelta(days=1),
        )
        for case in (near, far, flagged, closed):
            await sql_repository.commit(UnitOfWork.for_new_case(case))

        due = await sql_repository.list_escalation_candidates(
            [CaseStatus.DRAFT, CaseStatus.ACTIVE], clock.now + timedelta(days=7)
        )

        assert [c.case_id for c in due] == [near.case_id]

    async def test_participants_round_trip(self, sql_manager, active_case_sql, advocate):
        await sql_manager.add_secondary_advocate(active_case_sql.case_id, "adv_generalist", advocate)
        await sql_manager.add_client(active_case_sql.case_id, "client_2", advocate)

        stored = await sql_manager.repository.require(active_case_sql.case_id)
        assert stored.secondary_advocate_ids == ["adv_generalist"]
        assert stored.additional_client_ids == ["client_2"]
