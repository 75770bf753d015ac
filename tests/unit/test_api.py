"""Tests for the case HTTP endpoints."""

import asyncio
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from legal_case_service.api.routes.cases import get_case_repository, get_identity_provider
from legal_case_service.infrastructure.persistence import InMemoryCaseRepository
from legal_case_service import main
from legal_case_service.main import app
from legal_case_service.models.requests import CaseCreateRequest

CLIENT = {"X-User-ID": "client_1", "X-User-Role": "client"}
ADMIN = {"X-User-ID": "admin_1", "X-User-Role": "admin"}
ADVOCATE = {"X-User-ID": "adv_family", "X-User-Role": "advocate"}
SCANNER = {"X-User-ID": "svc_scanner", "X-User-Role": "system"}


@pytest_asyncio.fixture
async def http(identity) -> AsyncGenerator[AsyncClient, None]:
    repository = InMemoryCaseRepository()
    app.dependency_overrides[get_case_repository] = lambda: repository
    app.dependency_overrides[get_identity_provider] = lambda: identity
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def _open_active_case(http: AsyncClient) -> str:
    resp = await http.post(
        "/api/v1/cases", json={"title": "Custody", "tags": ["family-law"]}, headers=CLIENT
    )
    case_id = resp.json()["case_id"]
    await http.post(f"/api/v1/cases/{case_id}/assignment", json={}, headers=ADMIN)
    await http.post(
        f"/api/v1/cases/{case_id}/transitions", json={"target_status": "active"}, headers=ADVOCATE
    )
    return case_id


@pytest.mark.unit
@pytest.mark.asyncio
class TestHealth:
    async def test_health_returns_ok(self, http):
        resp = await http.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert resp.json()["service"] == "legal-case-service"


@pytest.mark.unit
@pytest.mark.asyncio
class TestCaseEndpoints:
    async def test_create_and_get(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Lease"}, headers=CLIENT)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "draft"
        assert body["client_id"] == "client_1"
        assert body["version"] == 1

        resp = await http.get(f"/api/v1/cases/{body['case_id']}", headers=CLIENT)
        assert resp.status_code == 200
        assert resp.json()["title"] == "Lease"

    async def test_missing_user_header(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Lease"})
        assert resp.status_code == 401

    async def test_unknown_role(self, http):
        resp = await http.post(
            "/api/v1/cases", json={"title": "Lease"}, headers={"X-User-ID": "u1", "X-User-Role": "judge"}
        )
        assert resp.status_code == 400

    async def test_unknown_case(self, http):
        resp = await http.get("/api/v1/cases/case_missing", headers=ADMIN)
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "case_not_found"

    async def test_validation_error_maps_to_422(self, http):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        resp = await http.post("/api/v1/cases", json={"title": "Late", "court_date": past}, headers=CLIENT)
        assert resp.status_code == 422

    async def test_transition_status_codes(self, http):
        case_id = await _open_active_case(http)
        url = f"/api/v1/cases/{case_id}/transitions"

        resp = await http.post(url, json={"target_status": "closed"}, headers=ADVOCATE)
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "invalid_transition"

        resp = await http.post(url, json={"target_status": "on_hold"}, headers=ADVOCATE)
        assert resp.status_code == 412

        resp = await http.post(url, json={"target_status": "resolved"}, headers=CLIENT)
        assert resp.status_code == 403

        resp = await http.post(url, json={"target_status": "resolved", "expected_version": 1}, headers=ADVOCATE)
        assert resp.status_code == 409
        assert resp.json()["detail"]["retryable"] is True
        assert resp.headers["retry-after"] == "1"

        resp = await http.post(url, json={"target_status": "resolved", "outcome": "Settled"}, headers=ADVOCATE)
        assert resp.status_code == 200
        assert resp.json()["status"] == "resolved"

    async def test_available_transitions(self, http):
        case_id = await _open_active_case(http)
        resp = await http.get(f"/api/v1/cases/{case_id}/transitions", headers=ADVOCATE)
        assert resp.status_code == 200
        assert resp.json()["current_status"] == "active"
        assert resp.json()["available_transitions"] == ["cancelled", "on_hold", "resolved"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestAssignmentEndpoints:
    async def test_assign_and_reassign(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Will", "tags": ["family-law"]}, headers=CLIENT)
        case_id = resp.json()["case_id"]

        resp = await http.post(f"/api/v1/cases/{case_id}/assignment", json={"strategy": "round_robin"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json() == {"case_id": case_id, "advocate_id": "adv_family"}

        resp = await http.put(
            f"/api/v1/cases/{case_id}/assignment",
            json={"advocate_id": "adv_generalist", "note": "Capacity"},
            headers=ADVOCATE,
        )
        assert resp.status_code == 200
        assert resp.json()["advocate_id"] == "adv_generalist"

    async def test_no_eligible_advocate(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Ship", "tags": ["maritime"]}, headers=CLIENT)
        resp = await http.post(f"/api/v1/cases/{resp.json()['case_id']}/assignment", headers=ADMIN)
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "no_eligible_advocate"

    async def test_workload(self, http):
        await _open_active_case(http)
        resp = await http.get("/api/v1/advocates/adv_family/workload", headers=ADVOCATE)
        assert resp.status_code == 200
        assert resp.json()["active_cases"] == 1
        assert resp.json()["workload_level"] == "light"


@pytest.mark.unit
@pytest.mark.asyncio
class TestAccessAndHistoryEndpoints:
    async def test_infected_document_denied(self, http):
        case_id = await _open_active_case(http)
        resp = await http.post(
            f"/api/v1/cases/{case_id}/documents",
            json={"file_name": "evidence.pdf", "access_level": "public"},
            headers=ADVOCATE,
        )
        assert resp.status_code == 201
        document_id = resp.json()["document_id"]

        resp = await http.put(
            f"/api/v1/cases/{case_id}/documents/{document_id}/scan-status",
            json={"scan_status": "infected"},
            headers=SCANNER,
        )
        assert resp.status_code == 200

        resp = await http.post(
            f"/api/v1/cases/{case_id}/access-checks",
            json={"resource_kind": "document", "resource_id": document_id, "action": "read"},
            headers=CLIENT,
        )
        assert resp.status_code == 200
        assert resp.json() == {"allowed": False, "reason_code": "document_infected"}

    async def test_history_paging(self, http):
        case_id = await _open_active_case(http)
        resp = await http.get(f"/api/v1/cases/{case_id}/history", params={"limit": 2}, headers=ADVOCATE)
        assert resp.status_code == 200
        page = resp.json()
        assert [e["sequence"] for e in page["entries"]] == [1, 2]
        assert page["next_cursor"] == 2

        resp = await http.get(
            f"/api/v1/cases/{case_id}/history", params={"cursor": page["next_cursor"]}, headers=ADVOCATE
        )
        entries = resp.json()["entries"]
        assert [e["action"] for e in entries] == ["status_changed"]
        assert resp.json()["next_cursor"] is None

    async def test_client_history_forbidden_and_recorded(self, http):
        case_id = await _open_active_case(http)
        resp = await http.get(f"/api/v1/cases/{case_id}/history", headers=CLIENT)
        assert resp.status_code == 403
        resp = await http.get(f"/api/v1/cases/{case_id}/history", headers=ADMIN)
        last = resp.json()["entries"][-1]
        assert last["action"] == "access_denied"
        assert last["actor_id"] == "client_1"

    async def test_notes_follow_up_and_share(self, http):
        case_id = await _open_active_case(http)
        due = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        resp = await http.post(
            f"/api/v1/cases/{case_id}/notes",
            json={"content": "Chase expert report", "note_type": "follow_up", "follow_up_due": due},
            headers=ADVOCATE,
        )
        assert resp.status_code == 201
        note_id = resp.json()["note_id"]

        resp = await http.post(
            f"/api/v1/cases/{case_id}/notes/{note_id}/share", json={"user_ids": ["client_1"]}, headers=ADVOCATE
        )
        assert resp.json()["shared_with"] == ["client_1"]

        resp = await http.post(f"/api/v1/cases/{case_id}/notes/{note_id}/follow-up/complete", headers=ADVOCATE)
        assert resp.status_code == 200
        assert resp.json()["follow_up_completed_at"] is not None

    async def test_court_date_update(self, http):
        case_id = await _open_active_case(http)
        soon = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        resp = await http.put(f"/api/v1/cases/{case_id}/court-date", json={"court_date": soon}, headers=ADVOCATE)
        assert resp.status_code == 200
        assert resp.json()["escalation_flagged"] is True
        assert resp.json()["priority"] == "urgent"


@pytest.mark.unit
@pytest.mark.asyncio
class TestActorResolution:
    async def test_directory_role_must_match_header(self, http):
        resp = await http.post(
            "/api/v1/cases",
            json={"title": "Lease", "client_id": "client_2"},
            headers={"X-User-ID": "client_1", "X-User-Role": "admin"},
        )
        assert resp.status_code == 403

    async def test_directory_user_needs_no_role_header(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Lease"}, headers={"X-User-ID": "client_1"})
        assert resp.status_code == 201
        assert resp.json()["client_id"] == "client_1"

    async def test_unknown_user_without_role(self, http):
        resp = await http.post("/api/v1/cases", json={"title": "Lease"}, headers={"X-User-ID": "stranger"})
        assert resp.status_code == 400

    async def test_unverified_advocate_from_directory(self, http):
        case_id = await _open_active_case(http)
        resp = await http.get(
            f"/api/v1/cases/{case_id}", headers={"X-User-ID": "adv_unverified", "X-User-Role": "advocate"}
        )
        assert resp.status_code == 403

    async def test_staff_outside_directory_act_unverified(self, http):
        resp = await http.post(
            "/api/v1/cases",
            json={"title": "Lease", "client_id": "client_1"},
            headers={"X-User-ID": "admin_9", "X-User-Role": "admin"},
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["details"]["reason"] == "actor_unverified"


@pytest.mark.unit
@pytest.mark.asyncio
class TestParticipantEndpoints:
    async def test_secondary_advocate_and_co_client(self, http):
        case_id = await _open_active_case(http)
        resp = await http.post(
            f"/api/v1/cases/{case_id}/advocates", json={"advocate_id": "adv_generalist"}, headers=ADVOCATE
        )
        assert resp.status_code == 200
        assert resp.json()["secondary_advocate_ids"] == ["adv_generalist"]

        resp = await http.delete(f"/api/v1/cases/{case_id}/advocates/adv_family", headers=ADMIN)
        assert resp.status_code == 412

        resp = await http.delete(
            f"/api/v1/cases/{case_id}/advocates/adv_family",
            params={"replacement_advocate_id": "adv_generalist"},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert resp.json()["advocate_id"] == "adv_generalist"
        assert resp.json()["secondary_advocate_ids"] == []

        resp = await http.post(f"/api/v1/cases/{case_id}/clients", json={"client_id": "client_2"}, headers=ADMIN)
        assert resp.json()["additional_client_ids"] == ["client_2"]
        resp = await http.get(f"/api/v1/cases/{case_id}", headers={"X-User-ID": "client_2"})
        assert resp.status_code == 200

        resp = await http.delete(f"/api/v1/cases/{case_id}/clients/client_1", headers=ADMIN)
        assert resp.status_code == 412

    async def test_assignment_history(self, http):
        case_id = await _open_active_case(http)
        await http.put(
            f"/api/v1/cases/{case_id}/assignment", json={"advocate_id": "adv_generalist"}, headers=ADMIN
        )
        resp = await http.get(f"/api/v1/cases/{case_id}/assignments", headers=CLIENT)
        assert resp.status_code == 200
        assignments = resp.json()["assignments"]
        assert [a["advocate_id"] for a in assignments] == ["adv_family", "adv_generalist"]
        assert assignments[0]["superseded_at"] is not None
        assert assignments[1]["superseded_at"] is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestListingAndFilterEndpoints:
    async def test_documents_listed_by_visibility(self, http):
        case_id = await _open_active_case(http)
        for name, level in (("order.pdf", "public"), ("memo.docx", "confidential")):
            await http.post(
                f"/api/v1/cases/{case_id}/documents",
                json={"file_name": name, "access_level": level},
                headers=ADVOCATE,
            )
        resp = await http.get(f"/api/v1/cases/{case_id}/documents", headers=CLIENT)
        assert resp.status_code == 200
        assert [d["file_name"] for d in resp.json()] == ["order.pdf"]

        resp = await http.get(f"/api/v1/cases/{case_id}/documents", headers=ADVOCATE)
        assert len(resp.json()) == 2

    async def test_notes_listed_by_visibility(self, http):
        case_id = await _open_active_case(http)
        await http.post(
            f"/api/v1/cases/{case_id}/notes", json={"content": "Strategy"}, headers=ADVOCATE
        )
        resp = await http.get(f"/api/v1/cases/{case_id}/notes", headers=CLIENT)
        assert resp.json() == []
        resp = await http.get(f"/api/v1/cases/{case_id}/notes", headers=ADVOCATE)
        assert [n["content"] for n in resp.json()] == ["Strategy"]

    async def test_history_filtered_by_action(self, http):
        case_id = await _open_active_case(http)
        resp = await http.get(
            f"/api/v1/cases/{case_id}/history",
            params=[("action", "case_created"), ("action", "status_changed")],
            headers=ADVOCATE,
        )
        assert resp.status_code == 200
        assert [e["sequence"] for e in resp.json()["entries"]] == [1, 3]

        resp = await http.get(
            f"/api/v1/cases/{case_id}/history", params={"actor_id": "admin_1"}, headers=ADVOCATE
        )
        assert [e["action"] for e in resp.json()["entries"]] == ["advocate_assigned"]

    async def test_history_inverted_range(self, http):
        case_id = await _open_active_case(http)
        now = datetime.now(timezone.utc)
        resp = await http.get(
            f"/api/v1/cases/{case_id}/history",
            params={"from": now.isoformat(), "to": (now - timedelta(days=1)).isoformat()},
            headers=ADVOCATE,
        )
        assert resp.status_code == 422


@pytest.mark.unit
@pytest.mark.asyncio
class TestAdvocateDirectoryEndpoints:
    async def test_register_then_list_available(self, http):
        resp = await http.put(
            "/api/v1/advocates/adv_tax",
            json={"verified": True, "specializations": ["Tax"], "max_active_cases": 5},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert resp.json()["specializations"] == ["Tax"]

        resp = await http.get("/api/v1/advocates", params={"specialization": "tax"}, headers=ADMIN)
        assert resp.status_code == 200
        assert [a["advocate_id"] for a in resp.json()["advocates"]] == ["adv_tax"]

    async def test_directory_admin_only(self, http):
        resp = await http.get("/api/v1/advocates", headers=ADVOCATE)
        assert resp.status_code == 403
        resp = await http.put("/api/v1/advocates/adv_x", json={"verified": True}, headers=ADVOCATE)
        assert resp.status_code == 403

    async def test_escalation_sweep(self, http):
        resp = await http.post("/api/v1/cases/escalations/sweep", headers=SCANNER)
        assert resp.status_code == 200
        assert resp.json() == {"flagged_case_ids": []}

        resp = await http.post("/api/v1/cases/escalations/sweep", headers=ADVOCATE)
        assert resp.status_code == 403


@pytest.mark.unit
@pytest.mark.asyncio
class TestScheduledSweep:
    async def test_periodic_sweep_flags_untouched_case(self, monkeypatch, manager, client_actor, clock):
        case = await manager.create_case(
            CaseCreateRequest(title="Eviction", court_date=clock.now + timedelta(days=10)), client_actor
        )
        clock.advance(days=5)
        monkeypatch.setattr(main, "get_case_manager", lambda *deps: manager)

        task = asyncio.create_task(main.run_escalation_sweeps(0.01))
        try:
            for _ in range(200):
                stored = await manager.repository.require(case.case_id)
                if stored.escalation_flagged:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        assert stored.escalation_flagged
        assert stored.priority == "urgent"
