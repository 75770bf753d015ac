"""Audit trail recorder.

Entries are built here and handed to a ``UnitOfWork``; the repository assigns
the per-case sequence number when the unit commits, so an entry exists only
if the change it describes exists.
"""

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional

from legal_case_service.core.exceptions import ValidationError
from legal_case_service.infrastructure.persistence import CaseRepository, UnitOfWork
from legal_case_service.models.case import (
    ActivityKind,
    Actor,
    AuditEntry,
    Case,
    HistoryFilter,
    utc_now,
)

logger = logging.getLogger(__name__)


def diff_snapshots(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Reduce two snapshots to the fields that changed."""
    keys = sorted(set(before) | set(after))
    changed = [k for k in keys if before.get(k) != after.get(k) and k != "updated_at"]
    return {
        "before": {k: before.get(k) for k in changed},
        "after": {k: after.get(k) for k in changed},
    }


class AuditTrailRecorder:
    """Builds audit entries and serves case history."""

    def __init__(
        self,
        repository: CaseRepository,
        page_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.page_size = page_size
        self.clock = clock

    def entry(
        self,
        case_id: str,
        actor: Actor,
        action: ActivityKind,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            case_id=case_id,
            actor_id=actor.user_id,
            actor_role=actor.role,
            action=action,
            before=before or {},
            after=after or {},
            reason=reason,
            origin=origin if origin is not None else actor.origin,
            recorded_at=self.clock(),
        )

    def record(
        self,
        uow: UnitOfWork,
        actor: Actor,
        action: ActivityKind,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> AuditEntry:
        """Append a pending entry to the unit of work."""
        entry = self.entry(uow.case_id, actor, action, before, after, reason)
        uow.record(entry)
        return entry

    def record_case_change(
        self,
        uow: UnitOfWork,
        actor: Actor,
        action: ActivityKind,
        before: Optional[Case],
        after: Case,
        reason: Optional[str] = None,
    ) -> AuditEntry:
        """Record the changed fields between two versions of a case."""
        if before is None:
            images = {"before": {}, "after": after.snapshot()}
        else:
            images = diff_snapshots(before.snapshot(), after.snapshot())
        return self.record(uow, actor, action, images["before"], images["after"], reason)

    async def history(
        self,
        case_id: str,
        cursor: Optional[int] = None,
        until: Optional[int] = None,
        page_size: Optional[int] = None,
        history_filter: Optional[HistoryFilter] = None,
    ) -> AsyncIterator[AuditEntry]:
        """Yield a case's entries in commit order.

        Pages are fetched lazily, so memory stays bounded regardless of how
        long the trail is. Resume from any point by passing the last seen
        ``sequence`` as ``cursor``.

        Args:
            case_id: Case identifier
            cursor: Exclusive lower bound on sequence (None = from the start)
            until: Inclusive upper bound on sequence (None = up to the end)
            page_size: Entries per repository round trip
            history_filter: Skip entries that do not match (by kind, actor, time)
        """
        if cursor is not None and cursor < 0:
            raise ValidationError("History cursor must not be negative")
        size = page_size or self.page_size
        if size < 1:
            raise ValidationError("History page size must be positive")

        # Bound the iteration to what was committed when it started.
        if until is None:
            until = await self.repository.last_sequence(case_id)

        position = cursor or 0
        while position < until:
            page = await self.repository.list_activities(
                case_id,
                after_sequence=position,
                limit=size,
                until_sequence=until,
                history_filter=history_filter,
            )
            if not page:
                return
            for entry in page:
                yield entry
            position = page[-1].sequence
