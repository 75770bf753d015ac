"""Identity provider interface.

Users, roles and verification are owned by the auth subsystem; the case core
only reads them through this interface. The in-memory provider can be seeded
from a JSON directory file::

    {
      "users": {"admin_1": "admin", "svc_scanner": "system"},
      "advocates": [
        {"advocate_id": "adv_1", "verified": true, "specializations": ["family-law"]}
      ]
    }
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from legal_case_service.core.exceptions import ValidationError
from legal_case_service.models.case import Actor, AdvocateProfile, UserRole

logger = logging.getLogger(__name__)


class IdentityDirectory(BaseModel):
    """On-disk shape of the user and advocate directory."""

    users: Dict[str, UserRole] = Field(default_factory=dict)
    advocates: List[AdvocateProfile] = Field(default_factory=list)


class IdentityProvider(ABC):
    """Resolves users to roles and exposes the advocate directory."""

    @abstractmethod
    async def resolve_actor(self, user_id: str, origin: Optional[str] = None) -> Optional[Actor]:
        """Actor for a known user, or None when the directory has no such user."""
        pass

    @abstractmethod
    async def get_advocate(self, advocate_id: str) -> Optional[AdvocateProfile]:
        pass

    @abstractmethod
    async def list_advocates(self) -> List[AdvocateProfile]:
        pass

    @abstractmethod
    async def register_advocate(self, advocate: AdvocateProfile) -> AdvocateProfile:
        """Add or replace an advocate's directory profile."""
        pass


class InMemoryIdentityProvider(IdentityProvider):
    """Dictionary-backed directory for development and tests."""

    def __init__(
        self,
        advocates: Iterable[AdvocateProfile] = (),
        users: Optional[Dict[str, UserRole]] = None,
    ):
        self._advocates: Dict[str, AdvocateProfile] = {}
        self._users: Dict[str, UserRole] = dict(users or {})
        for advocate in advocates:
            self._store_advocate(advocate)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryIdentityProvider":
        """Load the directory from a JSON file.

        Raises:
            ValidationError: File missing or not a valid directory document
        """
        path = Path(path)
        try:
            directory = IdentityDirectory.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ValidationError(f"Cannot read identity directory {path}: {e}") from e
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid identity directory {path}", details={"errors": e.errors()}
            ) from e

        logger.info(
            f"Loaded identity directory {path}: "
            f"{len(directory.users)} users, {len(directory.advocates)} advocates"
        )
        return cls(advocates=directory.advocates, users=directory.users)

    def _store_advocate(self, advocate: AdvocateProfile) -> None:
        self._advocates[advocate.advocate_id] = advocate
        self._users[advocate.advocate_id] = UserRole.ADVOCATE

    async def register_advocate(self, advocate: AdvocateProfile) -> AdvocateProfile:
        role = self._users.get(advocate.advocate_id)
        if role is not None and role != UserRole.ADVOCATE:
            raise ValidationError(
                f"User {advocate.advocate_id} is registered as {role.value}, not advocate"
            )
        self._store_advocate(advocate)
        return advocate

    async def resolve_actor(self, user_id: str, origin: Optional[str] = None) -> Optional[Actor]:
        role = self._users.get(user_id)
        if role is None:
            return None
        verified = True
        if role == UserRole.ADVOCATE:
            verified = self._advocates[user_id].verified
        return Actor(user_id=user_id, role=role, verified=verified, origin=origin)

    async def get_advocate(self, advocate_id: str) -> Optional[AdvocateProfile]:
        return self._advocates.get(advocate_id)

    async def list_advocates(self) -> List[AdvocateProfile]:
        return list(self._advocates.values())
