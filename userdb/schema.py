"""SQLAlchemy table mapping for the ``users`` relation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from .errors import ValidationError

NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 150


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    email: Mapped[str] = mapped_column(String(EMAIL_MAX_LENGTH), nullable=False, unique=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @validates("created_at")
    def _freeze_created_at(self, key: str, value: datetime) -> datetime:
        # Only transient or pending rows may receive a creation timestamp.
        state = inspect(self)
        if state.persistent or state.detached:
            raise ValidationError("The creation timestamp of a stored user cannot be changed")
        return value

    def __repr__(self) -> str:
        return f"<UserRecord(id={self.id}, email={self.email})>"


__all__ = ["Base", "EMAIL_MAX_LENGTH", "NAME_MAX_LENGTH", "UserRecord"]
