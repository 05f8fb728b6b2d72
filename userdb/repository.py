"""Transactional data access for user records."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import SessionProvider
from .errors import ConflictError, NotFoundError, PersistenceError, UserDBError
from .models import User
from .schema import EMAIL_MAX_LENGTH, NAME_MAX_LENGTH, UserRecord
from .validation import normalize_age, normalize_email, require_age_in_range, require_text

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_domain(record: UserRecord) -> User:
    return User(
        id=int(record.id),
        name=record.name,
        email=record.email,
        age=record.age,
        created_at=_as_utc(record.created_at),
    )


class UserRepository:
    """Create, query, update and delete users.

    Every call opens one session from the :class:`SessionProvider`.  Mutating
    calls run inside a single transaction that is committed on success and
    rolled back on any error; store failures surface as
    :class:`PersistenceError` with the driver error chained as the cause.
    Email uniqueness is expected to be checked by the caller through
    :meth:`exists_by_email` before :meth:`create` or :meth:`update`.
    """

    def __init__(self, provider: SessionProvider, *, clock: Clock = _current_timestamp) -> None:
        self._provider = provider
        self._clock = clock

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, name: str, email: str, age: Optional[int] = None) -> User:
        """Persist a new user and return it with its generated id."""

        name = require_text(name, "Name", max_length=NAME_MAX_LENGTH)
        email = require_text(email, "Email", max_length=EMAIL_MAX_LENGTH)
        age = normalize_age(age)

        logger.info("Creating user %s", email)
        with self._transaction("create user") as session:
            record = UserRecord(name=name, email=email, age=age, created_at=self._clock())
            session.add(record)
            session.flush()

        user = _to_domain(record)
        logger.info("Created user #%s", user.id)
        return user

    def update(self, user: User) -> User:
        """Persist the name, email and age of an existing user.

        Raises :class:`NotFoundError` when no user has ``user.id``.  The
        identifier and creation timestamp are never modified.
        """

        name = require_text(user.name, "Name", max_length=NAME_MAX_LENGTH)
        email = require_text(user.email, "Email", max_length=EMAIL_MAX_LENGTH)
        age = require_age_in_range(user.age)

        logger.info("Updating user #%s", user.id)
        with self._transaction("update user") as session:
            record = session.get(UserRecord, user.id)
            if record is None:
                raise NotFoundError(user.id)
            record.name = name
            record.email = email
            record.age = age
            session.flush()

        updated = _to_domain(record)
        logger.info("Updated user #%s", updated.id)
        return updated

    def delete(self, user_id: int) -> bool:
        """Remove a user; return ``False`` when there was nothing to remove."""

        logger.info("Deleting user #%s", user_id)
        with self._transaction("delete user") as session:
            record = session.get(UserRecord, user_id)
            if record is None:
                logger.info("User #%s does not exist; nothing deleted", user_id)
                return False
            session.delete(record)

        logger.info("Deleted user #%s", user_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def find_by_id(self, user_id: int) -> Optional[User]:
        with self._reading("find user by id") as session:
            record = session.get(UserRecord, user_id)
            user = _to_domain(record) if record is not None else None
        logger.info("User #%s %s", user_id, "found" if user is not None else "not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        email = normalize_email(email)
        with self._reading("find user by email") as session:
            record = session.scalars(select(UserRecord).where(UserRecord.email == email)).first()
            user = _to_domain(record) if record is not None else None
        logger.info("User with email %s %s", email, "found" if user is not None else "not found")
        return user

    def find_all(self) -> List[User]:
        """Return every user, newest first."""

        with self._reading("list users") as session:
            records = session.scalars(
                select(UserRecord).order_by(UserRecord.created_at.desc(), UserRecord.id.desc())
            ).all()
            users = [_to_domain(record) for record in records]
        logger.info("Listed %d user(s)", len(users))
        return users

    def exists_by_email(self, email: str) -> bool:
        email = normalize_email(email)
        with self._reading("check email") as session:
            count = session.scalar(
                select(func.count()).select_from(UserRecord).where(UserRecord.email == email)
            )
        logger.info("Email %s is %s", email, "taken" if count else "free")
        return bool(count)

    def count(self) -> int:
        with self._reading("count users") as session:
            total = int(session.scalar(select(func.count()).select_from(UserRecord)) or 0)
        logger.info("Counted %d user(s)", total)
        return total

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        with self._provider.scoped_session() as session:
            session.begin()
            try:
                yield session
                session.commit()
            except Exception as exc:
                try:
                    session.rollback()
                    logger.warning("Rolled back transaction after failing to %s", action)
                except SQLAlchemyError as rollback_exc:
                    logger.error("Failed to roll back transaction: %s", rollback_exc)

                if isinstance(exc, UserDBError):
                    raise
                logger.error("Failed to %s: %s", action, exc, exc_info=True)
                raise PersistenceError(f"Failed to {action}: {exc}") from exc

    @contextmanager
    def _reading(self, action: str) -> Iterator[Session]:
        try:
            with self._provider.scoped_session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Failed to %s: %s", action, exc, exc_info=True)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc


def ensure_email_available(
    repository: UserRepository,
    email: str,
    *,
    current_email: Optional[str] = None,
) -> None:
    """Raise :class:`ConflictError` when another user already owns ``email``.

    Keeping the address the edited user already holds (``current_email``) is
    never a conflict.
    """

    email = normalize_email(email)
    if current_email is not None and email == normalize_email(current_email):
        return
    if repository.exists_by_email(email):
        raise ConflictError(email)


__all__ = ["UserRepository", "ensure_email_available"]
