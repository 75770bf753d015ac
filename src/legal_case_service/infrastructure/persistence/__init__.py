"""Case persistence layer - Repository Pattern implementation."""

from legal_case_service.infrastructure.persistence.case_repository import (
    CaseRepository,
    CommitResult,
    InMemoryCaseRepository,
    UnitOfWork,
)
from legal_case_service.infrastructure.persistence.sqlalchemy_case_repository import (
    SQLAlchemyCaseRepository,
)

__all__ = [
    "CaseRepository",
    "CommitResult",
    "InMemoryCaseRepository",
    "SQLAlchemyCaseRepository",
    "UnitOfWork",
]
