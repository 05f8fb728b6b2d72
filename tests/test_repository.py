"""Behavioural tests for the transactional user repository."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from userdb.config import ConnectionSettings
from userdb.database import SessionProvider
from userdb.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from userdb.repository import UserRepository, ensure_email_available
from userdb.schema import UserRecord


@pytest.fixture()
def provider(tmp_path: Path):
    db_path = tmp_path / "users.sqlite3"
    provider = SessionProvider(ConnectionSettings(driver_url=f"sqlite+pysqlite:///{db_path}"))
    provider.initialize()
    yield provider
    provider.shutdown()


@pytest.fixture()
def repository(provider: SessionProvider) -> UserRepository:
    return UserRepository(provider)


class _SteppingClock:
    def __init__(self) -> None:
        self._current = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._current += timedelta(seconds=1)
        return self._current


def test_create_then_find_by_id_returns_equal_record(repository: UserRepository) -> None:
    created = repository.create("Alice", "a@x.com", 30)

    assert created.id is not None
    assert created.created_at is not None
    assert created.created_at.tzinfo is not None

    found = repository.find_by_id(created.id)
    assert found == created


def test_operator_scenario_with_duplicate_email(repository: UserRepository) -> None:
    repository.create("Alice", "a@x.com", 30)
    assert repository.count() == 1

    repository.create("Bob", "b@x.com", None)
    assert repository.count() == 2
    bob = repository.find_by_email("b@x.com")
    assert bob is not None
    assert bob.age is None

    assert repository.exists_by_email("a@x.com") is True
    with pytest.raises(ConflictError):
        ensure_email_available(repository, "a@x.com")
    assert repository.count() == 2


def test_out_of_range_age_is_stored_as_unspecified(repository: UserRepository) -> None:
    user = repository.create("Carol", "c@x.com", 200)

    assert user.age is None
    assert repository.find_by_id(user.id).age is None


def test_blank_name_is_rejected(repository: UserRepository) -> None:
    with pytest.raises(ValidationError):
        repository.create("   ", "d@x.com", 40)
    assert repository.count() == 0


def test_exists_by_email_tracks_lifecycle(repository: UserRepository) -> None:
    assert repository.exists_by_email("e@x.com") is False

    user = repository.create("Eve", "e@x.com", 25)
    assert repository.exists_by_email("e@x.com") is True

    assert repository.delete(user.id) is True
    assert repository.exists_by_email("e@x.com") is False


def test_delete_is_true_exactly_once(repository: UserRepository) -> None:
    user = repository.create("Frank", "f@x.com", None)

    assert repository.delete(user.id) is True
    assert repository.delete(user.id) is False
    assert repository.delete(9999) is False
    assert repository.find_by_id(user.id) is None


def test_update_changes_only_supplied_fields(repository: UserRepository) -> None:
    original = repository.create("Grace", "g@x.com", 41)

    updated = repository.update(replace(original, name="Grace Hopper"))

    assert updated.name == "Grace Hopper"
    assert updated.email == original.email
    assert updated.age == original.age
    assert updated.id == original.id
    assert updated.created_at == original.created_at
    assert repository.find_by_id(original.id) == updated


def test_update_can_clear_age_and_change_email(repository: UserRepository) -> None:
    original = repository.create("Heidi", "h@x.com", 33)

    updated = repository.update(replace(original, email="heidi@x.com", age=None))

    assert updated.email == "heidi@x.com"
    assert updated.age is None
    assert repository.exists_by_email("h@x.com") is False


def test_update_of_missing_user_raises_not_found(repository: UserRepository) -> None:
    ghost = repository.create("Ivan", "i@x.com", 50)
    repository.delete(ghost.id)

    with pytest.raises(NotFoundError):
        repository.update(replace(ghost, name="Ivan II"))
    assert repository.count() == 0


def test_update_rejects_invalid_values(repository: UserRepository) -> None:
    user = repository.create("Judy", "j@x.com", 29)

    with pytest.raises(ValidationError):
        repository.update(replace(user, age=151))
    with pytest.raises(ValidationError):
        repository.update(replace(user, email=""))

    assert repository.find_by_id(user.id) == user


def test_find_all_is_newest_first(provider: SessionProvider) -> None:
    repository = UserRepository(provider, clock=_SteppingClock())
    for index in range(4):
        repository.create(f"User {index}", f"user{index}@x.com", index)

    names = [user.name for user in repository.find_all()]

    assert names == ["User 3", "User 2", "User 1", "User 0"]


def test_find_by_email_is_exact_match(repository: UserRepository) -> None:
    repository.create("Mallory", "mallory@x.com", None)

    assert repository.find_by_email("Mallory@x.com") is None
    assert repository.find_by_email("missing@x.com") is None
    assert repository.find_by_email("mallory@x.com").name == "Mallory"


def test_keeping_own_email_is_not_a_conflict(repository: UserRepository) -> None:
    user = repository.create("Niaj", "n@x.com", None)

    ensure_email_available(repository, "n@x.com", current_email=user.email)


def test_padded_duplicate_email_is_a_conflict(repository: UserRepository) -> None:
    repository.create("Alice", "a@x.com", 30)

    assert repository.exists_by_email(" a@x.com ") is True
    assert repository.find_by_email("a@x.com\t").name == "Alice"
    with pytest.raises(ConflictError):
        ensure_email_available(repository, " a@x.com")
    assert repository.count() == 1


def test_padded_own_email_is_not_a_conflict(repository: UserRepository) -> None:
    user = repository.create("Alice", " a@x.com ", None)

    assert user.email == "a@x.com"
    ensure_email_available(repository, "a@x.com ", current_email=user.email)


def test_non_numeric_age_is_stored_as_unspecified(repository: UserRepository) -> None:
    user = repository.create("Zed", "z@x.com", 30.5)

    assert user.age is None


def test_reads_are_logged(repository: UserRepository, caplog: pytest.LogCaptureFixture) -> None:
    user = repository.create("Quinn", "q@x.com", None)
    caplog.set_level(logging.INFO, logger="userdb.repository")

    repository.find_by_id(user.id)
    repository.find_by_id(9999)
    repository.find_by_email("q@x.com")
    repository.find_all()
    repository.count()

    assert f"User #{user.id} found" in caplog.text
    assert "User #9999 not found" in caplog.text
    assert "User with email q@x.com found" in caplog.text
    assert "Listed 1 user(s)" in caplog.text
    assert "Counted 1 user(s)" in caplog.text


def test_created_at_of_stored_record_cannot_be_changed(
    repository: UserRepository, provider: SessionProvider
) -> None:
    user = repository.create("Rupert", "r@x.com", None)

    with provider.scoped_session() as session:
        record = session.get(UserRecord, user.id)
        with pytest.raises(ValidationError):
            record.created_at = datetime(2000, 1, 1, tzinfo=timezone.utc)

    assert repository.find_by_id(user.id).created_at == user.created_at


def test_storage_constraint_violation_is_wrapped_and_rolled_back(repository: UserRepository) -> None:
    repository.create("Olivia", "o@x.com", None)

    with pytest.raises(PersistenceError) as excinfo:
        repository.create("Oscar", "o@x.com", None)

    assert isinstance(excinfo.value.__cause__, IntegrityError)
    assert repository.count() == 1


class _BrokenSession:
    def __init__(self) -> None:
        self.closed = False

    def begin(self) -> None:
        pass

    def add(self, record: object) -> None:
        pass

    def flush(self) -> None:
        raise SQLAlchemyError("flush failed")

    def commit(self) -> None:
        raise AssertionError("commit must not be reached")

    def rollback(self) -> None:
        raise SQLAlchemyError("rollback failed")

    def get(self, *args: object) -> None:
        raise SQLAlchemyError("read failed")


class _StubProvider:
    def __init__(self, session: _BrokenSession) -> None:
        self.session = session

    @contextmanager
    def scoped_session(self) -> Iterator[_BrokenSession]:
        try:
            yield self.session
        finally:
            self.session.closed = True


def test_rollback_failure_does_not_mask_flush_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="userdb.repository")
    session = _BrokenSession()
    repository = UserRepository(_StubProvider(session))

    with pytest.raises(PersistenceError) as excinfo:
        repository.create("Peggy", "p@x.com", None)

    assert "flush failed" in str(excinfo.value)
    assert "flush failed" in str(excinfo.value.__cause__)
    assert "Failed to roll back transaction" in caplog.text
    assert session.closed is True


def test_read_failures_surface_as_persistence_errors() -> None:
    session = _BrokenSession()
    repository = UserRepository(_StubProvider(session))

    with pytest.raises(PersistenceError):
        repository.find_by_id(1)
    assert session.closed is True
