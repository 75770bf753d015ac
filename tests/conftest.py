"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
import pytest_asyncio

from legal_case_service.core.case_manager import CaseManager
from legal_case_service.infrastructure.identity import InMemoryIdentityProvider
from legal_case_service.infrastructure.notifications import (
    NotificationDispatcher,
    NotificationIntent,
)
from legal_case_service.infrastructure.persistence import InMemoryCaseRepository
from legal_case_service.models.case import Actor, AdvocateProfile, CaseStatus, UserRole
from legal_case_service.models.requests import CaseCreateRequest


class FrozenClock:
    """Deterministic clock; call it for "now", advance it between steps."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        super().__init__()
        self.delivered: List[NotificationIntent] = []

    async def deliver(self, intent: NotificationIntent) -> None:
        self.delivered.append(intent)


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

ADVOCATES = [
    AdvocateProfile(advocate_id="adv_family", verified=True, specializations=frozenset({"family-law"})),
    AdvocateProfile(advocate_id="adv_criminal", verified=True, specializations=frozenset({"criminal"})),
    AdvocateProfile(
        advocate_id="adv_generalist",
        verified=True,
        specializations=frozenset({"family-law", "property"}),
    ),
    AdvocateProfile(advocate_id="adv_unverified", verified=False, specializations=frozenset({"family-law"})),
]


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def repository() -> InMemoryCaseRepository:
    return InMemoryCaseRepository()


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider(
        advocates=ADVOCATES,
        users={
            "client_1": UserRole.CLIENT,
            "client_2": UserRole.CLIENT,
            "admin_1": UserRole.ADMIN,
            "svc_scanner": UserRole.SYSTEM,
        },
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def manager(repository, identity, notifier, clock) -> CaseManager:
    return CaseManager(repository, identity, notifier=notifier, clock=clock)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(user_id="client_1", role=UserRole.CLIENT, origin="10.0.0.5")


@pytest.fixture
def other_client() -> Actor:
    return Actor(user_id="client_2", role=UserRole.CLIENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="admin_1", role=UserRole.ADMIN)


@pytest.fixture
def advocate() -> Actor:
    return Actor(user_id="adv_family", role=UserRole.ADVOCATE)


@pytest.fixture
def other_advocate() -> Actor:
    return Actor(user_id="adv_criminal", role=UserRole.ADVOCATE)


@pytest.fixture
def scanner() -> Actor:
    return Actor(user_id="svc_scanner", role=UserRole.SYSTEM)


@pytest_asyncio.fixture
async def assigned_case(manager, client_actor, admin):
    """A draft family-law case assigned to adv_family."""
    case = await manager.create_case(
        CaseCreateRequest(title="Custody arrangement", tags=["family-law"]), client_actor
    )
    await manager.assign_case(case.case_id, admin)
    return await manager.repository.require(case.case_id)


@pytest_asyncio.fixture
async def active_case(manager, assigned_case, advocate):
    return await manager.transition_case(assigned_case.case_id, CaseStatus.ACTIVE, advocate)
