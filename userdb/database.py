"""Engine and session lifecycle for the user database."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import ConnectionSettings, load_connection_options, resolve_connection_settings
from .errors import StartupError
from .schema import Base

logger = logging.getLogger(__name__)

SettingsLoader = Callable[[], ConnectionSettings]
EngineFactory = Callable[..., Engine]


def _load_default_settings() -> ConnectionSettings:
    return resolve_connection_settings(load_connection_options())


def _connect_args(settings: ConnectionSettings) -> Dict[str, Any]:
    backend = settings.to_url().get_backend_name()
    args: Dict[str, Any] = {}
    if backend == "postgresql":
        if settings.connect_timeout is not None:
            args["connect_timeout"] = max(1, int(settings.connect_timeout))
        if settings.statement_timeout is not None:
            args["options"] = f"-c statement_timeout={settings.statement_timeout}"
    elif backend == "sqlite":
        if settings.connect_timeout is not None:
            args["timeout"] = float(settings.connect_timeout)
    return args


class SessionProvider:
    """Own the cached engine and hand out sessions scoped to one operation.

    The engine is built lazily on first use and cached until :meth:`shutdown`
    or :meth:`reset`; the next call to :meth:`get_handle` then rebuilds it.
    Construction is serialised by a lock so concurrent callers never build
    two engines.
    """

    def __init__(
        self,
        settings: Optional[ConnectionSettings] = None,
        *,
        loader: Optional[SettingsLoader] = None,
        engine_factory: EngineFactory = create_engine,
    ) -> None:
        if settings is None and loader is None:
            loader = _load_default_settings
        self._settings = settings
        self._loader = loader
        self._engine_factory = engine_factory
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None
        self._lock = threading.Lock()

    @classmethod
    def from_environment(
        cls,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SessionProvider":
        """Create a provider that resolves its settings from config and environment."""

        return cls(loader=lambda: resolve_connection_settings(load_connection_options(config_path, environ)))

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    @property
    def settings(self) -> ConnectionSettings:
        with self._lock:
            return self._resolve_settings()

    @property
    def engine(self) -> Engine:
        with self._lock:
            self._ensure_open()
            assert self._engine is not None
            return self._engine

    def get_handle(self) -> sessionmaker[Session]:
        """Return the cached session factory, building it when required."""

        with self._lock:
            return self._ensure_open()

    @contextmanager
    def scoped_session(self) -> Iterator[Session]:
        """Yield a session that is closed however the block exits."""

        session = self.get_handle()()
        try:
            yield session
        finally:
            session.close()

    def initialize(self) -> None:
        """Build the engine and create the ``users`` table if it is missing."""

        engine = self.engine
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            logger.error("Failed to initialise the database schema: %s", exc, exc_info=True)
            raise StartupError(f"Unable to initialise the database: {exc}") from exc
        logger.info("Database schema is ready")

    def is_connection_available(self) -> bool:
        try:
            with self.scoped_session() as session:
                session.execute(text("SELECT 1"))
        except (SQLAlchemyError, StartupError) as exc:
            logger.error("Database connection is unavailable: %s", exc)
            return False
        return True

    def shutdown(self) -> None:
        """Dispose of the cached engine; calling this repeatedly is harmless."""

        with self._lock:
            engine = self._engine
            self._engine = None
            self._session_factory = None

        if engine is None:
            return

        logger.info("Closing database engine")
        try:
            engine.dispose()
        except SQLAlchemyError as exc:
            logger.error("Failed to close database engine: %s", exc, exc_info=True)

    def reset(self) -> None:
        """Drop the cached engine and, when a loader is set, the cached settings."""

        self.shutdown()
        if self._loader is not None:
            with self._lock:
                self._settings = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _resolve_settings(self) -> ConnectionSettings:
        if self._settings is None:
            assert self._loader is not None
            try:
                self._settings = self._loader()
            except (OSError, ValueError) as exc:
                logger.error("Failed to load database configuration: %s", exc)
                raise StartupError(f"Unable to load database configuration: {exc}") from exc
        return self._settings

    def _ensure_open(self) -> sessionmaker[Session]:
        if self._session_factory is not None:
            return self._session_factory

        settings = self._resolve_settings()
        try:
            url = settings.to_url()
            logger.info("Creating database engine for %s", url.render_as_string(hide_password=True))
            engine = self._engine_factory(
                url,
                echo=settings.echo,
                pool_pre_ping=True,
                connect_args=_connect_args(settings),
            )
        except (SQLAlchemyError, ImportError, ValueError) as exc:
            logger.error("Failed to create database engine: %s", exc, exc_info=True)
            raise StartupError(f"Unable to create database engine: {exc}") from exc

        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("Database engine created")
        return self._session_factory


__all__ = ["SessionProvider"]
