"""Error kinds raised by the case lifecycle core.

Every error is local to the operation that raised it and is reported to the
caller. ``retryable`` marks the kinds a caller may retry after refetching.
"""

from typing import Any, Dict, Optional


class CaseServiceError(Exception):
    """Base exception for case lifecycle errors."""

    code = "case_service_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(CaseServiceError):
    """Malformed input; the caller can correct and resubmit."""

    code = "validation_error"


class ResourceNotFound(CaseServiceError):
    """A case, document or note does not exist."""

    code = "not_found"


class CaseNotFound(ResourceNotFound):
    code = "case_not_found"


class InvalidTransition(CaseServiceError):
    """Status edge not permitted from the current state."""

    code = "invalid_transition"


class PreconditionFailed(CaseServiceError):
    """A transition-specific guard is not met."""

    code = "precondition_failed"


class Forbidden(CaseServiceError):
    """Actor lacks the role or relationship for the action."""

    code = "forbidden"


class NoEligibleAdvocate(CaseServiceError):
    code = "no_eligible_advocate"


class ConcurrentModification(CaseServiceError):
    """Version conflict; refetch the case and retry."""

    code = "concurrent_modification"
    retryable = True


class Unavailable(CaseServiceError):
    """Persistence or audit store unreachable or timed out."""

    code = "unavailable"
    retryable = True
