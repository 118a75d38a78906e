"""
Remote Entity Gateway Interface

DESIGN DECISION: The backend is treated as a plain CRUD service per
entity table. Gateways translate between domain models and the backend's
row representation and surface a small error taxonomy:

- DuplicateKeyError: unique-constraint violation (a retried create already landed)
- RemoteNotFoundError: the backend does not know the id
- AuthRequiredError: no valid session
- UnreachableError: network or backend failure, worth retrying later
- RemoteError: anything else

Callers treat DuplicateKeyError on create and RemoteNotFoundError on
update/delete as success: the desired end state already holds.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

from buzo_sync.models.entities import Entity, EntityKind


E = TypeVar("E", bound=Entity)


class RemoteEntityGateway(ABC, Generic[E]):
    """
    Abstract CRUD adapter for one remote entity table.

    Any backend implementation must implement these methods.
    """

    @property
    @abstractmethod
    def kind(self) -> EntityKind:
        """The entity kind this gateway serves."""
        pass

    @property
    @abstractmethod
    def table(self) -> str:
        """Remote collection name."""
        pass

    @abstractmethod
    async def create(self, entity: E) -> E:
        """
        Create the entity remotely, keeping its id.

        Returns:
            The entity as stored by the backend

        Raises:
            DuplicateKeyError: If a row with this id already exists
            AuthRequiredError, UnreachableError, RemoteError
        """
        pass

    @abstractmethod
    async def update(self, entity_id: str, changes: dict[str, Any]) -> E:
        """
        Apply a partial update.

        Args:
            entity_id: Target id
            changes: Changed domain fields (JSON-compatible values)

        Returns:
            The updated entity

        Raises:
            RemoteNotFoundError: If the id is unknown to the backend
        """
        pass

    @abstractmethod
    async def delete(self, entity_id: str) -> bool:
        """
        Delete by id.

        Raises:
            RemoteNotFoundError: If the id is unknown to the backend
        """
        pass

    @abstractmethod
    async def get_by_id(self, entity_id: str) -> Optional[E]:
        """Fetch one entity, or None if it does not exist."""
        pass

    @abstractmethod
    async def list(self, filters: Optional[dict[str, Any]] = None) -> list[E]:
        """
        List entities of the current user.

        Args:
            filters: Optional equality filters on domain field names

        Returns:
            Matching entities, newest first
        """
        pass


class RemoteError(Exception):
    """Base exception for remote backend operations."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class DuplicateKeyError(RemoteError):
    """A row with the same key already exists."""
    pass


class RemoteNotFoundError(RemoteError):
    """The backend has no row with the requested id."""
    pass


class AuthRequiredError(RemoteError):
    """No valid session for the request."""
    pass


class UnreachableError(RemoteError):
    """Network failure, timeout, or the backend is down."""
    pass


DUPLICATE_KEY_CODE = "23505"
NOT_FOUND_CODES = {"PGRST116", "404"}
AUTH_CODES = {"401", "403", "42501", "PGRST301", "PGRST302"}


def classify_remote_error(
    message: str,
    code: Optional[str] = None,
    status: Optional[int] = None,
) -> RemoteError:
    """
    Map a backend error signature to the gateway taxonomy.

    Postgres SQL-state codes in class 42 (undefined table or column) are
    never read as "not found", even if the message says "does not exist".
    """
    code = str(code) if code is not None else None
    lowered = (message or "").lower()

    if code == DUPLICATE_KEY_CODE or "duplicate key" in lowered:
        return DuplicateKeyError(message, code)

    if code in AUTH_CODES or status in (401, 403) or "jwt" in lowered:
        return AuthRequiredError(message, code)

    schema_error = code is not None and code.startswith("42")
    if code in NOT_FOUND_CODES or status == 404:
        return RemoteNotFoundError(message, code)
    if not schema_error and any(
        phrase in lowered for phrase in ("not found", "does not exist", "no rows")
    ):
        return RemoteNotFoundError(message, code)

    if status is not None and status >= 500:
        return UnreachableError(message, code)

    return RemoteError(message, code)
