"""Unit tests for the access control evaluator."""

import pytest

from legal_case_service.core.access_control import (
    AccessAction,
    DenialReason,
    ProtectedResource,
    can_access,
)
from legal_case_service.models.case import (
    AccessLevel,
    Actor,
    Case,
    CaseDocument,
    CaseNote,
    NoteType,
    ScanStatus,
    UserRole,
)

CLIENT = Actor(user_id="client_1", role=UserRole.CLIENT)
STRANGER_CLIENT = Actor(user_id="client_9", role=UserRole.CLIENT)
ASSIGNED = Actor(user_id="adv_1", role=UserRole.ADVOCATE)
OTHER_ADVOCATE = Actor(user_id="adv_2", role=UserRole.ADVOCATE)
ADMIN = Actor(user_id="admin_1", role=UserRole.ADMIN)
SCANNER = Actor(user_id="svc_scanner", role=UserRole.SYSTEM)


def _case() -> Case:
    return Case(case_id="case_1", client_id="client_1", advocate_id="adv_1", title="Lease dispute")


def _document(level: AccessLevel, scan: ScanStatus = ScanStatus.CLEAN) -> ProtectedResource:
    document = CaseDocument(
        case_id="case_1", file_name="lease.pdf", access_level=level, scan_status=scan, uploaded_by="adv_1"
    )
    return ProtectedResource.for_document(_case(), document)


def _note(note_type: NoteType = NoteType.GENERAL, level: AccessLevel = AccessLevel.PUBLIC, shared_with=()):
    note = CaseNote(
        case_id="case_1",
        author_id="adv_1",
        note_type=note_type,
        access_level=level,
        shared_with=list(shared_with),
    )
    return ProtectedResource.for_note(_case(), note)


READ, WRITE = AccessAction.READ, AccessAction.WRITE


@pytest.mark.unit
class TestAccessMatrix:
    """Each cell of the document confidentiality table."""

    @pytest.mark.parametrize(
        "actor, level, action, allowed",
        [
            (CLIENT, AccessLevel.PUBLIC, READ, True),
            (CLIENT, AccessLevel.PUBLIC, WRITE, False),
            (CLIENT, AccessLevel.RESTRICTED, READ, False),
            (CLIENT, AccessLevel.CONFIDENTIAL, READ, False),
            (ASSIGNED, AccessLevel.PUBLIC, WRITE, True),
            (ASSIGNED, AccessLevel.RESTRICTED, WRITE, True),
            (ASSIGNED, AccessLevel.CONFIDENTIAL, READ, True),
            (ASSIGNED, AccessLevel.CONFIDENTIAL, WRITE, True),
            (OTHER_ADVOCATE, AccessLevel.PUBLIC, READ, True),
            (OTHER_ADVOCATE, AccessLevel.PUBLIC, WRITE, False),
            (OTHER_ADVOCATE, AccessLevel.RESTRICTED, READ, False),
            (OTHER_ADVOCATE, AccessLevel.CONFIDENTIAL, READ, False),
            (ADMIN, AccessLevel.PUBLIC, WRITE, True),
            (ADMIN, AccessLevel.RESTRICTED, WRITE, True),
            (ADMIN, AccessLevel.CONFIDENTIAL, READ, True),
            (ADMIN, AccessLevel.CONFIDENTIAL, WRITE, False),
        ],
    )
    def test_document_matrix(self, actor, level, action, allowed):
        decision = can_access(actor, _document(level), action)
        assert decision.allowed is allowed
        expected = DenialReason.ALLOWED if allowed else DenialReason.ROLE_NOT_PERMITTED
        assert decision.reason == expected

    def test_write_class_actions_follow_write(self):
        resource = _document(AccessLevel.CONFIDENTIAL)
        assert can_access(ASSIGNED, resource, AccessAction.DELETE).allowed
        assert can_access(ASSIGNED, resource, AccessAction.SHARE).allowed
        assert not can_access(ADMIN, resource, AccessAction.DELETE).allowed
        assert not can_access(OTHER_ADVOCATE, _document(AccessLevel.PUBLIC), AccessAction.SHARE).allowed

    def test_client_never_reads_confidential_even_on_own_case(self):
        for scan in ScanStatus:
            decision = can_access(CLIENT, _document(AccessLevel.CONFIDENTIAL, scan), READ)
            assert not decision.allowed


@pytest.mark.unit
class TestAccessOverlays:
    def test_infected_document_denied_to_everyone(self):
        resource = _document(AccessLevel.PUBLIC, ScanStatus.INFECTED)
        for actor in (CLIENT, ASSIGNED, OTHER_ADVOCATE, ADMIN):
            decision = can_access(actor, resource, READ)
            assert not decision.allowed
            assert decision.reason == DenialReason.DOCUMENT_INFECTED

    def test_infected_document_can_still_be_deleted_by_assignee(self):
        resource = _document(AccessLevel.RESTRICTED, ScanStatus.INFECTED)
        assert can_access(ASSIGNED, resource, AccessAction.DELETE).allowed

    def test_pending_scan_is_readable(self):
        assert can_access(CLIENT, _document(AccessLevel.PUBLIC, ScanStatus.PENDING), READ).allowed

    def test_internal_note_hidden_from_client_at_any_level(self):
        resource = _note(NoteType.INTERNAL, AccessLevel.PUBLIC, shared_with=["client_1"])
        decision = can_access(CLIENT, resource, READ)
        assert not decision.allowed
        assert decision.reason == DenialReason.INTERNAL_NOTE

    def test_internal_note_visible_to_assignee(self):
        assert can_access(ASSIGNED, _note(NoteType.INTERNAL, AccessLevel.RESTRICTED), READ).allowed

    def test_shared_note_grants_read_only(self):
        resource = _note(level=AccessLevel.RESTRICTED, shared_with=["client_1"])
        decision = can_access(CLIENT, resource, READ)
        assert decision.allowed
        assert decision.reason == DenialReason.SHARED_WITH_ACTOR
        assert not can_access(CLIENT, resource, WRITE).allowed

    def test_non_participant_denied(self):
        decision = can_access(STRANGER_CLIENT, _document(AccessLevel.PUBLIC), READ)
        assert not decision.allowed
        assert decision.reason == DenialReason.NOT_CASE_PARTICIPANT
        assert can_access(SCANNER, _document(AccessLevel.PUBLIC), READ).reason == (
            DenialReason.NOT_CASE_PARTICIPANT
        )


@pytest.mark.unit
class TestCaseRecordAccess:
    def test_client_reads_but_cannot_edit_case(self):
        resource = ProtectedResource.for_case(_case())
        assert can_access(CLIENT, resource, READ).allowed
        assert not can_access(CLIENT, resource, WRITE).allowed

    def test_other_advocate_cannot_read_case(self):
        assert not can_access(OTHER_ADVOCATE, ProtectedResource.for_case(_case()), READ).allowed

    def test_history_guarded_as_confidential(self):
        resource = ProtectedResource.for_history(_case())
        assert can_access(ASSIGNED, resource, READ).allowed
        assert can_access(ADMIN, resource, READ).allowed
        assert not can_access(CLIENT, resource, READ).allowed


@pytest.mark.unit
class TestCaseParticipants:
    SECONDARY = Actor(user_id="adv_3", role=UserRole.ADVOCATE)
    CO_CLIENT = Actor(user_id="client_2", role=UserRole.CLIENT)

    @staticmethod
    def _shared_case() -> Case:
        return _case().model_copy(
            update={"secondary_advocate_ids": ["adv_3"], "additional_client_ids": ["client_2"]}
        )

    def _document(self, level: AccessLevel) -> ProtectedResource:
        document = CaseDocument(case_id="case_1", file_name="brief.pdf", access_level=level, uploaded_by="adv_1")
        return ProtectedResource.for_document(self._shared_case(), document)

    def test_secondary_advocate_cannot_write_confidential(self):
        assert can_access(self.SECONDARY, self._document(AccessLevel.RESTRICTED), WRITE).allowed
        assert can_access(self.SECONDARY, self._document(AccessLevel.CONFIDENTIAL), READ).allowed
        assert not can_access(self.SECONDARY, self._document(AccessLevel.CONFIDENTIAL), WRITE).allowed

    def test_secondary_advocate_reads_but_cannot_edit_case(self):
        resource = ProtectedResource.for_case(self._shared_case())
        assert can_access(self.SECONDARY, resource, READ).allowed
        assert not can_access(self.SECONDARY, resource, WRITE).allowed

    def test_co_client_treated_as_owner(self):
        assert can_access(self.CO_CLIENT, ProtectedResource.for_case(self._shared_case()), READ).allowed
        assert can_access(self.CO_CLIENT, self._document(AccessLevel.PUBLIC), READ).allowed
        assert not can_access(self.CO_CLIENT, self._document(AccessLevel.CONFIDENTIAL), READ).allowed
        assert not can_access(STRANGER_CLIENT, self._document(AccessLevel.PUBLIC), READ).allowed


@pytest.mark.unit
class TestUnverifiedActors:
    def test_unverified_assignee_denied_everything(self):
        unverified = Actor(user_id="adv_1", role=UserRole.ADVOCATE, verified=False)
        decision = can_access(unverified, ProtectedResource.for_case(_case()), READ)
        assert decision.reason == DenialReason.ACTOR_UNVERIFIED
        assert not can_access(unverified, _document(AccessLevel.PUBLIC), READ)

    def test_unverified_admin_denied(self):
        unverified = Actor(user_id="admin_2", role=UserRole.ADMIN, verified=False)
        assert can_access(unverified, _document(AccessLevel.PUBLIC), READ).reason == DenialReason.ACTOR_UNVERIFIED

    def test_client_verification_not_required(self):
        client = Actor(user_id="client_1", role=UserRole.CLIENT, verified=False)
        assert can_access(client, ProtectedResource.for_case(_case()), READ).allowed


@pytest.mark.unit
class TestMalformedRequests:
    def test_unknown_action_is_a_denial_not_an_error(self):
        decision = can_access(ADMIN, _document(AccessLevel.PUBLIC), "teleport")
        assert not decision.allowed
        assert decision.reason == DenialReason.INVALID_REQUEST

    def test_missing_resource_is_a_denial(self):
        decision = can_access(ADMIN, None, READ)
        assert decision.reason == DenialReason.INVALID_REQUEST

    def test_decision_is_falsy_when_denied(self):
        assert not can_access(CLIENT, _document(AccessLevel.RESTRICTED), READ)
