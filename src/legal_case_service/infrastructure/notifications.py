"""Notification intents.

The core emits intents such as "case reassigned" and never waits on delivery.
Email/SMS transport lives elsewhere.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CASE_CREATED = "case_created"
    CASE_ASSIGNED = "case_assigned"
    CASE_REASSIGNED = "case_reassigned"
    STATUS_CHANGED = "status_changed"
    ESCALATION_FLAGGED = "escalation_flagged"
    NOTE_SHARED = "note_shared"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"


class NotificationIntent(BaseModel):
    kind: NotificationKind
    case_id: str
    recipients: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)


class NotificationDispatcher(ABC):
    """Fire-and-forget dispatcher.

    ``dispatch`` returns immediately; delivery runs as a background task and
    delivery failures are logged, never raised into the calling operation.
    """

    def __init__(self):
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, intent: NotificationIntent) -> None:
        task = asyncio.get_running_loop().create_task(self.deliver(intent))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification delivery failed: {error!r}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @abstractmethod
    async def deliver(self, intent: NotificationIntent) -> None:
        pass


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs intents; stands in until a delivery transport is wired."""

    async def deliver(self, intent: NotificationIntent) -> None:
        logger.info(
            f"Notification {intent.kind.value} for case {intent.case_id} "
            f"-> {', '.join(intent.recipients) or 'no recipients'}"
        )
