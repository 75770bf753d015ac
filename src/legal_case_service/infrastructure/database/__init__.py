"""Database infrastructure package."""

from .client import db_client, DatabaseClient
from .models import (
    Base,
    CaseActivityDB,
    CaseAssignmentDB,
    CaseDB,
    CaseDocumentDB,
    CaseNoteDB,
)

__all__ = [
    "db_client",
    "DatabaseClient",
    "Base",
    "CaseDB",
    "CaseDocumentDB",
    "CaseNoteDB",
    "CaseAssignmentDB",
    "CaseActivityDB",
]
