"""Exception hierarchy shared by the data-access layer and the console."""

from __future__ import annotations


class UserDBError(Exception):
    """Base class for every error raised by the user database tooling."""


class ValidationError(UserDBError, ValueError):
    """Operator input or a user field failed validation."""


class NotFoundError(UserDBError):
    """The requested user does not exist in the store."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User with ID {user_id} was not found")
        self.user_id = user_id


class ConflictError(UserDBError):
    """Another user already owns the requested email address."""

    def __init__(self, email: str) -> None:
        super().__init__(f"A user with email '{email}' already exists")
        self.email = email


class PersistenceError(UserDBError):
    """Talking to the relational store failed."""


class StartupError(PersistenceError):
    """The database handle could not be constructed."""


__all__ = [
    "ConflictError",
    "NotFoundError",
    "PersistenceError",
    "StartupError",
    "UserDBError",
    "ValidationError",
]
