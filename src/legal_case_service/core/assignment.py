"""Advocate assignment: eligibility, load balancing and reassignment policy."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence

from legal_case_service.core.access_control import DenialReason
from legal_case_service.core.exceptions import (
    Forbidden,
    InvalidTransition,
    NoEligibleAdvocate,
    PreconditionFailed,
    ValidationError,
)
from legal_case_service.models.case import (
    Actor,
    AdvocateProfile,
    Assignment,
    AssignmentReason,
    Case,
    UserRole,
    as_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class AssignmentStrategy(str, Enum):
    LEAST_LOADED = "least_loaded"
    ROUND_ROBIN = "round_robin"


class WorkloadLevel(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    OVERLOADED = "overloaded"

    @property
    def rank(self) -> int:
        return _WORKLOAD_ORDER.index(self)


_WORKLOAD_ORDER = list(WorkloadLevel)


@dataclass(frozen=True)
class AdvocateStats:
    """Workload figures for one advocate, as counted by the repository."""

    active_cases: int = 0
    total_cases: int = 0
    urgent_cases: int = 0
    last_assigned_at: Optional[datetime] = None


@dataclass(frozen=True)
class AdvocateWorkload:
    advocate_id: str
    stats: AdvocateStats
    level: WorkloadLevel


def workload_level(active_cases: int, urgent_cases: int) -> WorkloadLevel:
    if active_cases == 0:
        return WorkloadLevel.NONE
    if active_cases <= 10 and urgent_cases <= 2:
        return WorkloadLevel.LIGHT
    if active_cases <= 25 and urgent_cases <= 5:
        return WorkloadLevel.MODERATE
    if active_cases <= 40 and urgent_cases <= 10:
        return WorkloadLevel.HEAVY
    return WorkloadLevel.OVERLOADED


def normalize_tags(tags) -> List[str]:
    """Lower-case, strip and de-duplicate tags, keeping first-seen order."""
    seen = []
    for tag in tags or []:
        value = str(tag).strip().lower()
        if value and value not in seen:
            seen.append(value)
    return seen


class AssignmentEngine:
    """Selects and reassigns the responsible advocate for a case."""

    def __init__(self, reassignment_cooldown_seconds: int = 0):
        self.reassignment_cooldown = timedelta(seconds=reassignment_cooldown_seconds)

    def is_eligible(
        self,
        case: Case,
        advocate: AdvocateProfile,
        stats: Optional[AdvocateStats] = None,
    ) -> bool:
        if not (advocate.verified and advocate.active):
            return False
        if advocate.max_active_cases is not None:
            active = stats.active_cases if stats else 0
            if active >= advocate.max_active_cases:
                return False
        case_tags = set(normalize_tags(case.tags))
        if not case_tags:
            return True
        return bool(case_tags & set(normalize_tags(advocate.specializations)))

    def eligible(
        self,
        case: Case,
        pool: Sequence[AdvocateProfile],
        stats: Mapping[str, AdvocateStats],
    ) -> List[AdvocateProfile]:
        return [a for a in pool if self.is_eligible(case, a, stats.get(a.advocate_id))]

    def available(
        self,
        pool: Sequence[AdvocateProfile],
        stats: Mapping[str, AdvocateStats],
        specialization: Optional[str] = None,
        max_level: WorkloadLevel = WorkloadLevel.HEAVY,
        exclude: Iterable[str] = (),
    ) -> List[AdvocateWorkload]:
        """Verified, active advocates with spare capacity, lightest load first.

        ``specialization`` matches case-insensitively; advocates at their
        ``max_active_cases`` cap or above ``max_level`` are left out.
        """
        wanted = normalize_tags([specialization]) if specialization else []
        skipped = set(exclude)
        result = []
        for advocate in pool:
            if advocate.advocate_id in skipped or not (advocate.verified and advocate.active):
                continue
            if wanted and wanted[0] not in normalize_tags(advocate.specializations):
                continue
            figures = stats.get(advocate.advocate_id) or AdvocateStats()
            if (
                advocate.max_active_cases is not None
                and figures.active_cases >= advocate.max_active_cases
            ):
                continue
            level = workload_level(figures.active_cases, figures.urgent_cases)
            if level.rank > max_level.rank:
                continue
            result.append(AdvocateWorkload(advocate.advocate_id, figures, level))
        return sorted(result, key=lambda w: (w.stats.active_cases, w.advocate_id))

    def assign(
        self,
        case: Case,
        pool: Sequence[AdvocateProfile],
        stats: Mapping[str, AdvocateStats],
        strategy: AssignmentStrategy = AssignmentStrategy.LEAST_LOADED,
    ) -> AdvocateProfile:
        """Pick the advocate for a case.

        Least-loaded picks the fewest active cases first; both strategies then
        prefer whoever was assigned least recently (never-assigned first) and
        finally the advocate id, so equal candidates take turns.

        Raises:
            NoEligibleAdvocate: Nobody in the pool passes the eligibility filter
        """
        candidates = self.eligible(case, pool, stats)
        if not candidates:
            raise NoEligibleAdvocate(
                f"No eligible advocate for case {case.case_id}",
                details={"tags": normalize_tags(case.tags), "pool_size": len(pool)},
            )

        def sort_key(advocate: AdvocateProfile):
            entry = stats.get(advocate.advocate_id) or AdvocateStats()
            last = as_utc(entry.last_assigned_at)
            recency = (0, 0.0) if last is None else (1, last.timestamp())
            if strategy == AssignmentStrategy.ROUND_ROBIN:
                return (recency, advocate.advocate_id)
            return (entry.active_cases, recency, advocate.advocate_id)

        chosen = min(candidates, key=sort_key)
        logger.info(
            f"Selected advocate {chosen.advocate_id} for case {case.case_id} "
            f"({strategy.value}, {len(candidates)} eligible)"
        )
        return chosen

    def check_reassignment(
        self,
        case: Case,
        new_advocate: Optional[AdvocateProfile],
        actor: Actor,
        stats: Mapping[str, AdvocateStats],
        current: Optional[Assignment] = None,
        now: Optional[datetime] = None,
    ) -> AdvocateProfile:
        """Validate a reassignment request.

        Raises:
            Forbidden: Actor is neither admin nor the assigned advocate
            InvalidTransition: Case is in a terminal state
            ValidationError: Target advocate is already assigned
            NoEligibleAdvocate: Target advocate is unknown or ineligible
            PreconditionFailed: Cool-down since the last reassignment not over
        """
        is_admin = actor.role == UserRole.ADMIN
        is_assignee = actor.role == UserRole.ADVOCATE and case.advocate_id == actor.user_id
        if actor.is_unverified_staff:
            raise Forbidden(
                f"Unverified {actor.role.value} {actor.user_id} may not reassign cases",
                details={"reason": DenialReason.ACTOR_UNVERIFIED.value},
            )
        if not (is_admin or is_assignee):
            raise Forbidden(
                f"Only an admin or the assigned advocate may reassign case {case.case_id}"
            )

        if case.is_terminal:
            raise InvalidTransition(
                f"Cannot reassign a {case.status.value} case",
                details={"status": case.status.value},
            )

        if new_advocate is None:
            raise NoEligibleAdvocate("Target advocate is not known to the identity provider")

        if new_advocate.advocate_id == case.advocate_id:
            raise ValidationError(
                f"Advocate {new_advocate.advocate_id} is already assigned to case {case.case_id}"
            )

        if not self.is_eligible(case, new_advocate, stats.get(new_advocate.advocate_id)):
            raise NoEligibleAdvocate(
                f"Advocate {new_advocate.advocate_id} is not eligible for case {case.case_id}",
                details={"advocate_id": new_advocate.advocate_id},
            )

        if (
            not is_admin
            and current is not None
            and current.reason != AssignmentReason.INITIAL
            and self.reassignment_cooldown
        ):
            elapsed = (now or utc_now()) - as_utc(current.assigned_at)
            if elapsed < self.reassignment_cooldown:
                raise PreconditionFailed(
                    f"Case {case.case_id} was reassigned {int(elapsed.total_seconds())}s ago",
                    details={
                        "guard": "reassignment_cooldown",
                        "cooldown_seconds": int(self.reassignment_cooldown.total_seconds()),
                    },
                )

        return new_advocate
