"""Case status state machine.

Owns the transition table, who may initiate each edge, the guards each edge
requires and the field updates that accompany it. Everything here is
synchronous and side-effect free: callers get back a new ``Case`` and decide
how to persist it.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from legal_case_service.core.access_control import DenialReason
from legal_case_service.core.exceptions import (
    Forbidden,
    InvalidTransition,
    PreconditionFailed,
    ValidationError,
)
from legal_case_service.models.case import (
    TERMINAL_STATUSES,
    Actor,
    Case,
    CaseNote,
    CasePriority,
    CaseStatus,
    UserRole,
    as_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.DRAFT: frozenset({CaseStatus.ACTIVE, CaseStatus.CANCELLED}),
    CaseStatus.ACTIVE: frozenset({CaseStatus.ON_HOLD, CaseStatus.RESOLVED, CaseStatus.CANCELLED}),
    CaseStatus.ON_HOLD: frozenset({CaseStatus.ACTIVE, CaseStatus.RESOLVED}),
    CaseStatus.RESOLVED: frozenset({CaseStatus.CLOSED, CaseStatus.ACTIVE}),
    CaseStatus.CLOSED: frozenset({CaseStatus.ARCHIVED}),
    CaseStatus.ARCHIVED: frozenset(),
    CaseStatus.CANCELLED: frozenset(),
}

_STAFF: FrozenSet[UserRole] = frozenset({UserRole.ADVOCATE, UserRole.ADMIN})
_ADMIN_ONLY: FrozenSet[UserRole] = frozenset({UserRole.ADMIN})

# Edges not listed here default to advocate-or-admin.
EDGE_ROLES: Dict[Tuple[CaseStatus, CaseStatus], FrozenSet[UserRole]] = {
    (CaseStatus.CLOSED, CaseStatus.ARCHIVED): _ADMIN_ONLY,
}

REASON_REQUIRED: FrozenSet[CaseStatus] = frozenset({CaseStatus.ON_HOLD, CaseStatus.CANCELLED})

ESCALATION_STATUSES: FrozenSet[CaseStatus] = frozenset({CaseStatus.DRAFT, CaseStatus.ACTIVE})


class TransitionParams(BaseModel):
    """Caller-supplied inputs for a transition."""

    reason: Optional[str] = Field(default=None, max_length=1000)
    outcome: Optional[str] = Field(default=None, max_length=1000)
    approved: bool = False
    expected_version: Optional[int] = None


def allowed_edges() -> Set[Tuple[CaseStatus, CaseStatus]]:
    return {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}


class CaseStateMachine:
    """Validates and applies case status transitions."""

    def __init__(self, escalation_threshold_days: int = 7):
        self.escalation_threshold = timedelta(days=escalation_threshold_days)

    @staticmethod
    def is_valid_edge(current: CaseStatus, target: CaseStatus) -> bool:
        return target in TRANSITIONS.get(current, frozenset())

    @staticmethod
    def can_initiate(case: Case, target: CaseStatus, actor: Actor) -> bool:
        """Whether the actor's role and relationship permit requesting the edge."""
        roles = EDGE_ROLES.get((case.status, target), _STAFF)
        if actor.role not in roles or not actor.verified:
            return False
        if actor.role == UserRole.ADVOCATE:
            return case.advocate_id == actor.user_id
        return True

    def available_transitions(self, case: Case, actor: Actor) -> List[CaseStatus]:
        """Targets the actor could request from the case's current status."""
        return sorted(
            (
                target
                for target in TRANSITIONS.get(case.status, frozenset())
                if self.can_initiate(case, target, actor)
            ),
            key=lambda status: status.value,
        )

    def transition(
        self,
        case: Case,
        target: CaseStatus,
        actor: Actor,
        params: Optional[TransitionParams] = None,
        notes: Iterable[CaseNote] = (),
        now: Optional[datetime] = None,
    ) -> Case:
        """Validate the transition and return the updated case.

        Args:
            case: Current case state (not modified)
            target: Requested status
            actor: Who is requesting the change
            params: Reason, outcome and approval flags
            notes: The case's notes, for the open follow-up guard
            now: Clock override

        Returns:
            A copy of the case in the target status

        Raises:
            InvalidTransition: Edge not in the transition table
            Forbidden: Actor may not initiate this edge
            PreconditionFailed: Edge guard not satisfied
        """
        params = params or TransitionParams()
        now = now or utc_now()

        if not self.is_valid_edge(case.status, target):
            raise InvalidTransition(
                f"Invalid status transition from {case.status.value} to {target.value}",
                details={"from": case.status.value, "to": target.value},
            )

        if actor.is_unverified_staff:
            raise Forbidden(
                f"Unverified {actor.role.value} {actor.user_id} may not change case status",
                details={"reason": DenialReason.ACTOR_UNVERIFIED.value},
            )

        if not self.can_initiate(case, target, actor):
            raise Forbidden(
                f"Role {actor.role.value} may not move case {case.case_id} "
                f"from {case.status.value} to {target.value}",
                details={"from": case.status.value, "to": target.value},
            )

        self._check_preconditions(case, target, params, notes)

        updates = {"status": target, "updated_at": now}
        if target == CaseStatus.ON_HOLD:
            updates["hold_reason"] = params.reason.strip()
        elif case.status == CaseStatus.ON_HOLD:
            updates["hold_reason"] = None
        if target == CaseStatus.RESOLVED:
            updates["resolved_at"] = now
        if target == CaseStatus.CLOSED:
            updates["closed_at"] = now
        if target == CaseStatus.ACTIVE and case.status == CaseStatus.RESOLVED:
            updates["resolved_at"] = None
        if params.outcome:
            updates["outcome"] = params.outcome.strip()

        return case.model_copy(update=updates)

    def _check_preconditions(
        self,
        case: Case,
        target: CaseStatus,
        params: TransitionParams,
        notes: Iterable[CaseNote],
    ) -> None:
        if target in REASON_REQUIRED and not (params.reason and params.reason.strip()):
            raise PreconditionFailed(
                f"A reason is required to move a case to {target.value}",
                details={"guard": "reason_required"},
            )

        if case.status == CaseStatus.DRAFT and target == CaseStatus.ACTIVE and not case.advocate_id:
            raise PreconditionFailed(
                "Case must have an assigned advocate before it becomes active",
                details={"guard": "advocate_required"},
            )

        if case.status == CaseStatus.RESOLVED and target == CaseStatus.CLOSED:
            open_ids = [n.note_id for n in notes if n.has_open_follow_up]
            if open_ids:
                raise PreconditionFailed(
                    f"Case has {len(open_ids)} open follow-up note(s)",
                    details={"guard": "open_follow_ups", "note_ids": open_ids},
                )

        if target == CaseStatus.ARCHIVED and not params.approved:
            raise PreconditionFailed(
                "Archiving requires approval",
                details={"guard": "approval_required"},
            )

    def validate_court_date(self, case: Case, court_date: datetime, now: Optional[datetime] = None) -> datetime:
        """Check a new court date against the case's state.

        Returns:
            The court date normalized to UTC
        """
        now = now or utc_now()
        court_date = as_utc(court_date)
        if case.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Cannot change court date of a {case.status.value} case",
                details={"status": case.status.value},
            )
        if court_date <= now:
            raise ValidationError(
                "Court date must be in the future",
                details={"court_date": court_date.isoformat(), "status": case.status.value},
            )
        return court_date

    def needs_escalation(self, case: Case, now: Optional[datetime] = None) -> bool:
        """True when the court date is near and the case is still early in its life."""
        if case.escalation_flagged or case.court_date is None:
            return False
        if case.status not in ESCALATION_STATUSES:
            return False
        now = now or utc_now()
        return as_utc(case.court_date) - now <= self.escalation_threshold

    @staticmethod
    def escalate(case: Case, now: Optional[datetime] = None) -> Case:
        logger.info(f"Flagging case {case.case_id} for priority escalation")
        return case.model_copy(
            update={
                "escalation_flagged": True,
                "priority": CasePriority.URGENT,
                "updated_at": now or utc_now(),
            }
        )
