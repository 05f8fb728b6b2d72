"""Plain data values exchanged with callers of the repository."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the database."""

    id: int
    name: str
    email: str
    age: Optional[int]
    created_at: datetime


@dataclass(frozen=True)
class UserSummary:
    """Aggregate figures shown by the statistics screen."""

    total: int
    with_age: int
    without_age: int
    average_age: Optional[float]


def summarize_users(users: Iterable[User]) -> UserSummary:
    ages = []
    total = 0
    for user in users:
        total += 1
        if user.age is not None:
            ages.append(user.age)

    average = sum(ages) / len(ages) if ages else None
    return UserSummary(
        total=total,
        with_age=len(ages),
        without_age=total - len(ages),
        average_age=average,
    )


__all__ = ["User", "UserSummary", "summarize_users"]
