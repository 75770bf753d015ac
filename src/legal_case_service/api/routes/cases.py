"""Case API routes."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from legal_case_service.config import settings
from legal_case_service.core.access_control import ResourceRef
from legal_case_service.core.assignment import WorkloadLevel
from legal_case_service.core.case_manager import CaseManager
from legal_case_service.core.exceptions import (
    CaseServiceError,
    ConcurrentModification,
    Forbidden,
    InvalidTransition,
    NoEligibleAdvocate,
    PreconditionFailed,
    ResourceNotFound,
    Unavailable,
    ValidationError,
)
from legal_case_service.core.state_machine import TransitionParams
from legal_case_service.infrastructure.database import db_client
from legal_case_service.infrastructure.identity import IdentityProvider, InMemoryIdentityProvider
from legal_case_service.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from legal_case_service.infrastructure.persistence import (
    CaseRepository,
    InMemoryCaseRepository,
    SQLAlchemyCaseRepository,
)
from legal_case_service.models.case import (
    ActivityKind,
    Actor,
    AdvocateProfile,
    CaseDocument,
    CaseNote,
    HistoryFilter,
    UserRole,
)
from legal_case_service.models.requests import (
    AccessCheckRequest,
    AccessDecisionResponse,
    AddAdvocateRequest,
    AddClientRequest,
    AdvocateProfileResponse,
    AdvocateRegistrationRequest,
    AssignmentHistoryResponse,
    AssignmentResponse,
    AssignRequest,
    AuditEntryResponse,
    AvailableAdvocatesResponse,
    AvailableTransitionsResponse,
    CaseCreateRequest,
    CaseResponse,
    CourtDateUpdateRequest,
    DocumentCreateRequest,
    EscalationSweepResponse,
    HistoryResponse,
    NoteCreateRequest,
    NoteShareRequest,
    ReassignRequest,
    ScanStatusUpdateRequest,
    TransitionRequest,
    WorkloadResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cases", tags=["cases"])
advocates_router = APIRouter(prefix="/api/v1/advocates", tags=["advocates"])


# Global singletons (persist across requests)
_inmemory_repository: Optional[InMemoryCaseRepository] = None
_identity_provider: Optional[InMemoryIdentityProvider] = None
_notifier: Optional[NotificationDispatcher] = None


def get_case_repository() -> CaseRepository:
    """Dependency to get case repository.

    Returns the implementation selected by CASE_STORAGE_TYPE:
    - inmemory (default): InMemoryCaseRepository singleton for dev/testing
    - sql: SQLAlchemyCaseRepository on the configured DATABASE_URL
    """
    if settings.case_storage_type.lower() == "sql":
        return SQLAlchemyCaseRepository(
            db_client.async_session_maker,
            timeout_seconds=settings.persistence_timeout_seconds,
        )

    global _inmemory_repository
    if _inmemory_repository is None:
        _inmemory_repository = InMemoryCaseRepository(
            timeout_seconds=settings.persistence_timeout_seconds
        )
    return _inmemory_repository


def get_identity_provider() -> IdentityProvider:
    """Dependency to get the user and advocate directory.

    Loaded once from IDENTITY_DIRECTORY_PATH when set; otherwise the directory
    starts empty and advocates are added through PUT /api/v1/advocates/{id}.
    """
    global _identity_provider
    if _identity_provider is None:
        if settings.identity_directory_path:
            _identity_provider = InMemoryIdentityProvider.from_file(settings.identity_directory_path)
        else:
            logger.warning("IDENTITY_DIRECTORY_PATH not set; starting with an empty directory")
            _identity_provider = InMemoryIdentityProvider()
    return _identity_provider


def get_notifier() -> NotificationDispatcher:
    global _notifier
    if _notifier is None:
        _notifier = LoggingNotificationDispatcher()
    return _notifier


def get_case_manager(
    repository: CaseRepository = Depends(get_case_repository),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> CaseManager:
    """Dependency to get case manager with its collaborators."""
    return CaseManager(repository, identity, notifier=notifier)


async def get_actor(
    request: Request,
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Actor:
    """Resolve the acting user from X-User-* headers (set by API Gateway).

    The API Gateway validates JWT tokens and adds X-User-* headers after
    stripping any client-provided ones. The user is then looked up in the
    identity directory, whose role and verification status win over the
    header. Users outside the directory are accepted as clients only; staff
    claiming a role without a directory entry act unverified.

    Raises:
        HTTPException: 401 without X-User-ID, 400 for an unknown or missing
            role, 403 when the header role contradicts the directory
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required (should be added by API Gateway)",
        )
    claimed = None
    if x_user_role:
        try:
            claimed = UserRole(x_user_role.lower())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"X-User-Role must be one of {', '.join(r.value for r in UserRole)}",
            )
    origin = request.client.host if request.client else None

    actor = await identity.resolve_actor(x_user_id, origin=origin)
    if actor is not None:
        if claimed is not None and claimed != actor.role:
            logger.warning(
                f"User {x_user_id} claimed role {claimed.value} but is {actor.role.value}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"X-User-Role does not match the role on record for {x_user_id}",
            )
        return actor

    if claimed is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Role header required for users outside the directory",
        )
    return Actor(
        user_id=x_user_id, role=claimed, verified=claimed == UserRole.CLIENT, origin=origin
    )


_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ResourceNotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (NoEligibleAdvocate, status.HTTP_409_CONFLICT),
    (PreconditionFailed, status.HTTP_412_PRECONDITION_FAILED),
    (Unavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_error(error: CaseServiceError) -> HTTPException:
    """Translate a core error into the HTTP status callers expect."""
    for kind, status_code in _STATUS_BY_ERROR:
        if isinstance(error, kind):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        logger.error(f"Case store unavailable: {error.message}")
    headers = {"Retry-After": "1"} if error.retryable else None
    return HTTPException(status_code=status_code, detail=error.to_dict(), headers=headers)


_ERROR_RESPONSES = {
    401: {"description": "Unauthorized - missing X-User-ID header"},
    403: {"description": "Actor lacks the role or relationship (recorded as access_denied)"},
    404: {"description": "Case, document or note not found"},
    409: {"description": "Invalid transition or concurrent modification"},
    503: {"description": "Case store unavailable - retry"},
}


# =============================================================================
# Case lifecycle
# =============================================================================

@router.post(
    "",
    response_model=CaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new legal case",
    description="""
Opens a case in `draft` status.

**Workflow**:
1. Case created with auto-generated ID (case_XXXX format)
2. Title auto-generated if not provided (Case-YYYYMMDD-HHMMSS format)
3. A court date within the escalation window flags the case and sets priority to `urgent`
4. With `auto_assign`, an advocate is picked in the same commit; if nobody is eligible the case stays unassigned

**Request Body Example**:
```json
{
  "client_id": "client_42",
  "title": "Tenancy deposit dispute",
  "priority": "medium",
  "court_date": "2026-11-20T09:00:00Z",
  "tags": ["property"],
  "auto_assign": true
}
```

**Authorization**: Clients open cases for themselves; advocates and admins must name the client
    """,
    responses={422: {"description": "Invalid request data"}, **_ERROR_RESPONSES},
)
async def create_case(
    request: CaseCreateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    """Create a new case."""
    try:
        case = await case_manager.create_case(request, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.get(
    "/{case_id}",
    response_model=CaseResponse,
    summary="Get case by ID",
    responses=_ERROR_RESPONSES,
)
async def get_case(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.get_case(case_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.post(
    "/{case_id}/transitions",
    response_model=CaseResponse,
    summary="Change case status",
    description="""
Moves the case along one edge of the lifecycle.

**Edges**:
- `draft` → `active` (needs an assigned advocate), `cancelled` (needs a reason)
- `active` → `on_hold` (needs a reason), `resolved`, `cancelled` (needs a reason)
- `on_hold` → `active`, `resolved`
- `resolved` → `closed` (no open follow-ups), `active` (reopen)
- `closed` → `archived` (admin only, needs `approved: true`)

**Request Body Example**:
```json
{
  "target_status": "on_hold",
  "reason": "Awaiting medical records",
  "expected_version": 3
}
```

**Errors**: 409 for an edge outside the table or a stale `expected_version`,
412 when a guard is unmet, 403 when the actor may not initiate the edge.
    """,
    responses={412: {"description": "Transition guard not satisfied"}, **_ERROR_RESPONSES},
)
async def transition_case(
    case_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    params = TransitionParams(
        reason=request.reason,
        outcome=request.outcome,
        approved=request.approved,
        expected_version=request.expected_version,
    )
    try:
        case = await case_manager.transition_case(case_id, request.target_status, actor, params)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.get(
    "/{case_id}/transitions",
    response_model=AvailableTransitionsResponse,
    summary="List statuses the caller may move the case to",
    responses=_ERROR_RESPONSES,
)
async def get_available_transitions(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case, targets = await case_manager.available_transitions(case_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AvailableTransitionsResponse(
        case_id=case.case_id,
        current_status=case.status,
        available_transitions=targets,
    )


@router.put(
    "/{case_id}/court-date",
    response_model=CaseResponse,
    summary="Set the court date",
    description="""
Sets a future court date. A date inside the escalation window flags the case
and raises its priority to `urgent` in the same commit.

**Authorization**: Assigned advocate or admin
    """,
    responses=_ERROR_RESPONSES,
)
async def update_court_date(
    case_id: str,
    request: CourtDateUpdateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.update_court_date(
            case_id, request.court_date, actor, expected_version=request.expected_version
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.post(
    "/escalations/sweep",
    response_model=EscalationSweepResponse,
    summary="Flag cases whose court date has come close",
    description="""
Runs the escalation check over every open case, the same check a status or
court-date change runs. The service also runs it periodically when
`ESCALATION_SWEEP_INTERVAL_SECONDS` is positive.

**Authorization**: `system` or `admin` role
    """,
    responses=_ERROR_RESPONSES,
)
async def sweep_escalations(
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        flagged = await case_manager.flag_due_escalations(actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return EscalationSweepResponse(flagged_case_ids=[case.case_id for case in flagged])


# =============================================================================
# Assignment
# =============================================================================

@router.post(
    "/{case_id}/assignment",
    response_model=AssignmentResponse,
    summary="Assign an advocate",
    description="""
Picks the first advocate for an unassigned case.

**Eligibility**: verified, active, under capacity and sharing at least one
specialization tag with the case (any advocate when the case has no tags).

**Strategies**:
- `least_loaded` (default): fewest active cases, then least recently assigned
- `round_robin`: least recently assigned

**Authorization**: Admin only
    """,
    responses=_ERROR_RESPONSES,
)
async def assign_case(
    case_id: str,
    request: Optional[AssignRequest] = None,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    strategy = request.strategy if request else None
    try:
        advocate_id = await case_manager.assign_case(case_id, actor, strategy)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AssignmentResponse(case_id=case_id, advocate_id=advocate_id)


@router.put(
    "/{case_id}/assignment",
    response_model=AssignmentResponse,
    summary="Reassign to a different advocate",
    description="""
Hands the case to another advocate. The previous assignment is kept in the
assignment history, marked superseded.

**Request Body Example**:
```json
{
  "advocate_id": "adv_17",
  "reason": "reassignment",
  "note": "Conflict of interest"
}
```

**Authorization**: Admin or the currently assigned advocate
    """,
    responses=_ERROR_RESPONSES,
)
async def reassign_case(
    case_id: str,
    request: ReassignRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        advocate_id = await case_manager.reassign_case(
            case_id, request.advocate_id, request.reason, actor, note=request.note
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AssignmentResponse(case_id=case_id, advocate_id=advocate_id)


@router.get(
    "/{case_id}/assignments",
    response_model=AssignmentHistoryResponse,
    summary="List the case's assignment history",
    description="""
Every advocate the case has been bound to, oldest first. Superseded
assignments carry `superseded_at`.

**Authorization**: Case participants and admins
    """,
    responses=_ERROR_RESPONSES,
)
async def get_assignment_history(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        assignments = await case_manager.assignment_history(case_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AssignmentHistoryResponse(case_id=case_id, assignments=assignments)


# =============================================================================
# Participants
# =============================================================================

@router.post(
    "/{case_id}/advocates",
    response_model=CaseResponse,
    summary="Add a secondary advocate",
    description="""
Adds a supporting advocate. Secondary advocates read the case and write
non-confidential documents and notes; status and assignment stay with the
primary advocate.

**Authorization**: Admin or the primary advocate
    """,
    responses=_ERROR_RESPONSES,
)
async def add_secondary_advocate(
    case_id: str,
    request: AddAdvocateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.add_secondary_advocate(
            case_id, request.advocate_id, actor, note=request.note
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.delete(
    "/{case_id}/advocates/{advocate_id}",
    response_model=CaseResponse,
    summary="Remove an advocate from the case",
    description="""
Drops a secondary advocate. Removing the primary advocate reassigns the case
and requires `?replacement_advocate_id=`.
    """,
    responses={412: {"description": "Primary advocate removed without a replacement"}, **_ERROR_RESPONSES},
)
async def remove_advocate(
    case_id: str,
    advocate_id: str,
    replacement_advocate_id: Optional[str] = Query(None, description="New primary advocate"),
    note: Optional[str] = Query(None, max_length=1000),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.remove_advocate(
            case_id,
            advocate_id,
            actor,
            replacement_advocate_id=replacement_advocate_id,
            note=note,
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.post(
    "/{case_id}/clients",
    response_model=CaseResponse,
    summary="Add a co-client",
    responses=_ERROR_RESPONSES,
)
async def add_client(
    case_id: str,
    request: AddClientRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.add_client(case_id, request.client_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


@router.delete(
    "/{case_id}/clients/{client_id}",
    response_model=CaseResponse,
    summary="Remove a co-client",
    responses=_ERROR_RESPONSES,
)
async def remove_client(
    case_id: str,
    client_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        case = await case_manager.remove_client(case_id, client_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return CaseResponse.from_case(case)


# =============================================================================
# Documents and notes
# =============================================================================

@router.get(
    "/{case_id}/documents",
    response_model=List[CaseDocument],
    summary="List documents the caller may read",
    responses=_ERROR_RESPONSES,
)
async def list_documents(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.list_documents(case_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.get(
    "/{case_id}/notes",
    response_model=List[CaseNote],
    summary="List notes the caller may read",
    responses=_ERROR_RESPONSES,
)
async def list_notes(
    case_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.list_notes(case_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.post(
    "/{case_id}/documents",
    response_model=CaseDocument,
    status_code=status.HTTP_201_CREATED,
    summary="Register a document on the case",
    responses=_ERROR_RESPONSES,
)
async def add_document(
    case_id: str,
    request: DocumentCreateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.add_document(case_id, request, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.put(
    "/{case_id}/documents/{document_id}/scan-status",
    response_model=CaseDocument,
    summary="Record a virus scan verdict",
    description="""
Called by the storage scanner. Documents flagged `infected` can no longer be
read by anyone.

**Authorization**: `system` or `admin` role
    """,
    responses=_ERROR_RESPONSES,
)
async def update_scan_status(
    case_id: str,
    document_id: str,
    request: ScanStatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.update_scan_status(case_id, document_id, request.scan_status, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.post(
    "/{case_id}/notes",
    response_model=CaseNote,
    status_code=status.HTTP_201_CREATED,
    summary="Add a note",
    responses=_ERROR_RESPONSES,
)
async def add_note(
    case_id: str,
    request: NoteCreateRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.add_note(case_id, request, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.post(
    "/{case_id}/notes/{note_id}/follow-up/complete",
    response_model=CaseNote,
    summary="Complete a note's follow-up",
    responses=_ERROR_RESPONSES,
)
async def complete_follow_up(
    case_id: str,
    note_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.complete_follow_up(case_id, note_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


@router.post(
    "/{case_id}/notes/{note_id}/share",
    response_model=CaseNote,
    summary="Share a note with additional users",
    responses=_ERROR_RESPONSES,
)
async def share_note(
    case_id: str,
    note_id: str,
    request: NoteShareRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        return await case_manager.share_note(case_id, note_id, request.user_ids, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e


# =============================================================================
# Access checks and history
# =============================================================================

@router.post(
    "/{case_id}/access-checks",
    response_model=AccessDecisionResponse,
    summary="Check whether the caller may act on a resource",
    description="""
Evaluates access without performing the action. Denials are recorded in the
case's audit trail.

**Response Example**:
```json
{
  "allowed": false,
  "reason_code": "document_infected"
}
```
    """,
    responses=_ERROR_RESPONSES,
)
async def check_access(
    case_id: str,
    request: AccessCheckRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    ref = ResourceRef(kind=request.resource_kind, case_id=case_id, resource_id=request.resource_id)
    try:
        decision = await case_manager.check_access(actor, ref, request.action)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AccessDecisionResponse.from_decision(decision)


@router.get(
    "/{case_id}/history",
    response_model=HistoryResponse,
    summary="Read the case audit trail",
    description="""
Returns audit entries in commit order, one page at a time.

**Paging**: pass the returned `next_cursor` as `?cursor=` to continue. Any
earlier `sequence` works as a cursor, so a reader can resume where it left off.

**Filters**: `?action=` (repeatable), `?actor_id=`, `?from=` and `?to=` (ISO 8601)
narrow the trail; sequences stay those of the full trail.

**Authorization**: Assigned advocate or admin
    """,
    responses=_ERROR_RESPONSES,
)
async def get_history(
    case_id: str,
    cursor: Optional[int] = Query(None, ge=0, description="Last sequence already seen"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum entries per page"),
    action: Optional[List[ActivityKind]] = Query(None, description="Only these activity kinds"),
    actor_id: Optional[str] = Query(None, description="Only entries by this user"),
    recorded_from: Optional[datetime] = Query(None, alias="from", description="Earliest recording time"),
    recorded_to: Optional[datetime] = Query(None, alias="to", description="Latest recording time"),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    history_filter = HistoryFilter(
        actions=frozenset(action or ()),
        actor_id=actor_id,
        recorded_from=recorded_from,
        recorded_to=recorded_to,
    )
    try:
        entries, next_cursor = await case_manager.history_page(
            case_id, actor, cursor=cursor, limit=limit, history_filter=history_filter
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return HistoryResponse(
        case_id=case_id,
        entries=[AuditEntryResponse.from_entry(entry) for entry in entries],
        next_cursor=next_cursor,
    )


# =============================================================================
# Advocates
# =============================================================================

@advocates_router.get(
    "/{advocate_id}/workload",
    response_model=WorkloadResponse,
    summary="Get an advocate's workload",
    responses=_ERROR_RESPONSES,
)
async def get_advocate_workload(
    advocate_id: str,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        workload = await case_manager.advocate_workload(advocate_id, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return WorkloadResponse.from_workload(workload)


@advocates_router.get(
    "",
    response_model=AvailableAdvocatesResponse,
    summary="List advocates able to take another case",
    description="""
Verified, active advocates below their case cap, lightest workload first.

**Query**: `specialization`, `max_workload` (default `heavy`) and repeatable
`exclude`.

**Authorization**: Admin only
    """,
    responses=_ERROR_RESPONSES,
)
async def list_available_advocates(
    specialization: Optional[str] = Query(None),
    max_workload: WorkloadLevel = Query(WorkloadLevel.HEAVY),
    exclude: Optional[List[str]] = Query(None),
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    try:
        available = await case_manager.available_advocates(
            actor, specialization=specialization, max_workload=max_workload, exclude=exclude or ()
        )
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AvailableAdvocatesResponse(
        advocates=[WorkloadResponse.from_workload(workload) for workload in available]
    )


@advocates_router.put(
    "/{advocate_id}",
    response_model=AdvocateProfileResponse,
    summary="Register or update an advocate",
    description="""
Adds the advocate to the directory, or replaces their profile. Only verified
advocates are picked for assignment.

**Authorization**: Admin only
    """,
    responses=_ERROR_RESPONSES,
)
async def register_advocate(
    advocate_id: str,
    request: AdvocateRegistrationRequest,
    actor: Actor = Depends(get_actor),
    case_manager: CaseManager = Depends(get_case_manager),
):
    profile = AdvocateProfile(
        advocate_id=advocate_id,
        verified=request.verified,
        active=request.active,
        specializations=frozenset(request.specializations),
        max_active_cases=request.max_active_cases,
    )
    try:
        saved = await case_manager.register_advocate(profile, actor)
    except CaseServiceError as e:
        raise to_http_error(e) from e
    return AdvocateProfileResponse.from_profile(saved)
