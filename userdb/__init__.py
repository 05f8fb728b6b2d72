"""Data-access layer for the console user manager."""

from __future__ import annotations

from .config import ConnectionSettings, load_connection_options, resolve_connection_settings
from .database import SessionProvider
from .errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StartupError,
    UserDBError,
    ValidationError,
)
from .models import User, UserSummary, summarize_users
from .repository import UserRepository, ensure_email_available

__all__ = [
    "ConflictError",
    "ConnectionSettings",
    "NotFoundError",
    "PersistenceError",
    "SessionProvider",
    "StartupError",
    "User",
    "UserDBError",
    "UserRepository",
    "UserSummary",
    "ValidationError",
    "ensure_email_available",
    "load_connection_options",
    "resolve_connection_settings",
    "summarize_users",
]
