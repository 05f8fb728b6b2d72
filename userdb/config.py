"""Connection settings for the user database.

Settings are layered: an optional YAML file is read first and environment
variables are applied on top of it.  The merged options are then normalised
into a single SQLAlchemy driver URL plus the credentials that should be
applied to it.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import unquote

import yaml
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

DEFAULT_DRIVER_SCHEME = "postgresql+psycopg2"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432
DEFAULT_DATABASE = "postgres"
DEFAULT_CONNECT_TIMEOUT = 10.0

_SCHEME_ALIASES = {
    "postgres": DEFAULT_DRIVER_SCHEME,
    "postgresql": DEFAULT_DRIVER_SCHEME,
}

_AUTHORITY_PATTERN = re.compile(r"([^/?#]*)(.*)", re.DOTALL)

ENVIRONMENT_KEYS: Dict[str, str] = {
    "DATABASE_URL": "url",
    "PGUSER": "user",
    "PGPASSWORD": "password",
    "PGHOST": "host",
    "PGPORT": "port",
    "PGDATABASE": "database",
    "USERDB_CONNECT_TIMEOUT": "connect_timeout",
    "USERDB_STATEMENT_TIMEOUT": "statement_timeout",
    "USERDB_ECHO_SQL": "echo",
}

OPTION_KEYS = frozenset(ENVIRONMENT_KEYS.values())


@dataclass(frozen=True)
class ConnectionSettings:
    """Normalised connection descriptor consumed by the session provider."""

    driver_url: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT
    statement_timeout: Optional[int] = None
    echo: bool = False

    def to_url(self) -> URL:
        """Return the driver URL with the resolved credentials applied."""

        url = make_url(self.driver_url)
        if self.username:
            url = url.set(username=self.username)
        if self.password:
            url = url.set(password=self.password)
        return url


def _option(options: Mapping[str, object], key: str, *, strip: bool = True) -> Optional[str]:
    value = options.get(key)
    if value is None:
        return None
    text = str(value)
    if strip:
        text = text.strip()
    return text or None


def _flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _split_credentials(url: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Remove a ``user:password@`` segment from the URL authority.

    Returns the stripped URL along with the extracted (percent-decoded)
    username and password.
    """

    scheme, separator, remainder = url.partition("://")
    if not separator:
        return url, None, None

    match = _AUTHORITY_PATTERN.match(remainder)
    authority, rest = match.group(1), match.group(2)
    credentials, at, host = authority.rpartition("@")
    if not at:
        return url, None, None

    user, colon, password = credentials.partition(":")
    extracted_user = unquote(user) or None
    extracted_password = (unquote(password) or None) if colon else None
    return f"{scheme}://{host}{rest}", extracted_user, extracted_password


def _normalize_scheme(url: str) -> Optional[str]:
    scheme, separator, remainder = url.partition("://")
    if not separator or not scheme:
        return None

    alias = _SCHEME_ALIASES.get(scheme.lower())
    if alias is not None:
        return f"{alias}://{remainder}"
    if "+" in scheme:
        # Already names a dialect and a driver.
        return url
    return None


def _resolve_port(options: Mapping[str, object]) -> int:
    raw = _option(options, "port")
    if raw is None:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric database port %r; using %s", raw, DEFAULT_PORT)
        return DEFAULT_PORT


def _synthesize_url(options: Mapping[str, object]) -> str:
    host = _option(options, "host") or DEFAULT_HOST
    port = _resolve_port(options)
    database = _option(options, "database") or DEFAULT_DATABASE
    return f"{DEFAULT_DRIVER_SCHEME}://{host}:{port}/{database}?sslmode=require"


def _resolve_connect_timeout(options: Mapping[str, object]) -> Optional[float]:
    raw = _option(options, "connect_timeout")
    if raw is None:
        return DEFAULT_CONNECT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid connect timeout %r", raw)
        return DEFAULT_CONNECT_TIMEOUT
    return value if value > 0 else None


def _resolve_statement_timeout(options: Mapping[str, object]) -> Optional[int]:
    raw = _option(options, "statement_timeout")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid statement timeout %r", raw)
        return None
    return value if value > 0 else None


def resolve_connection_settings(options: Mapping[str, object]) -> ConnectionSettings:
    """Derive the connection descriptor from raw configuration options.

    Resolution never fails: a missing, unrecognised or malformed ``url``
    degrades to a URL synthesised from ``host``, ``port`` and ``database``.
    Discrete ``user``/``password`` values win over credentials embedded in
    the URL.
    """

    driver_url: Optional[str] = None
    extracted_user: Optional[str] = None
    extracted_password: Optional[str] = None

    raw_url = _option(options, "url")
    if raw_url:
        stripped, extracted_user, extracted_password = _split_credentials(raw_url)
        candidate = _normalize_scheme(stripped)
        if candidate is None:
            logger.warning("Unrecognised database URL scheme; building the URL from components")
        else:
            try:
                make_url(candidate)
            except (ArgumentError, ValueError) as exc:
                logger.warning("Ignoring malformed database URL: %s", exc)
            else:
                driver_url = candidate

    if driver_url is None:
        driver_url = _synthesize_url(options)
        logger.info("Built connection URL from components: %s", driver_url)
    else:
        logger.info("Using connection URL: %s", driver_url)

    username = _option(options, "user")
    if username:
        logger.info("Using database user from discrete settings: %s", username)
    elif extracted_user:
        username = extracted_user
        logger.info("Using database user extracted from the URL: %s", username)

    password = _option(options, "password", strip=False)
    if password:
        logger.info("Using database password from discrete settings")
    elif extracted_password:
        password = extracted_password
        logger.info("Using database password extracted from the URL")

    return ConnectionSettings(
        driver_url=driver_url,
        username=username,
        password=password,
        connect_timeout=_resolve_connect_timeout(options),
        statement_timeout=_resolve_statement_timeout(options),
        echo=_flag(options.get("echo")),
    )


def options_from_environment(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Map recognised environment variables onto option keys."""

    if environ is None:
        environ = os.environ
    options: Dict[str, str] = {}
    for variable, key in ENVIRONMENT_KEYS.items():
        value = environ.get(variable)
        if value:
            options[key] = value
    return options


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load connection options from a YAML file."""

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping of options")

    unknown = set(raw) - OPTION_KEYS
    if unknown:
        logger.warning("Ignoring unknown configuration keys: %s", ", ".join(sorted(map(str, unknown))))
    return {key: value for key, value in raw.items() if key in OPTION_KEYS}


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "database.yaml").resolve(strict=False)


def load_connection_options(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, object]:
    """Merge the optional YAML file with environment overrides.

    A missing default file is ignored; a file named explicitly through the
    argument or ``USERDB_CONFIG`` must exist.
    """

    if environ is None:
        environ = os.environ
    explicit = config_path or environ.get("USERDB_CONFIG")
    path = resolve_config_path(explicit)

    options: Dict[str, object] = {}
    if path.is_file():
        options.update(load_config_file(path))
        logger.info("Loaded database configuration from %s", path)
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {path}")

    options.update(options_from_environment(environ))
    return options


__all__ = [
    "ConnectionSettings",
    "DEFAULT_DRIVER_SCHEME",
    "load_config_file",
    "load_connection_options",
    "options_from_environment",
    "resolve_config_path",
    "resolve_connection_settings",
]
