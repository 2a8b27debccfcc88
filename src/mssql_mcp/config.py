"""Database configuration resolved from environment variables.

Two layouts are supported:

- single database: MSSQL_SERVER, MSSQL_PORT, MSSQL_USER, MSSQL_PASSWORD,
  MSSQL_DATABASE, MSSQL_ENCRYPT, MSSQL_TRUST_SERVER_CERTIFICATE
- multiple databases: MSSQL_<NAME>_DATABASE plus optional MSSQL_<NAME>_* overrides,
  each falling back to the single-database variable of the same name
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    CONNECTION_TIMEOUT_MS,
    DEFAULT_DB_KEY,
    DEFAULT_HTTP_PORT,
    DEFAULT_PORT,
    DEFAULT_SERVER,
    MAX_DB_KEY_LENGTH,
    POOL_IDLE_TIMEOUT_MS,
    POOL_MAX,
    POOL_MIN,
    REQUEST_TIMEOUT_MS,
)
from .errors import ConfigError

logger = logging.getLogger("mssql_mcp.config")

MULTI_DB_PATTERN = re.compile(r"^MSSQL_(.+)_DATABASE$")
DB_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")


class TlsOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    encrypt: bool = False
    trust_server_certificate: bool = True


class PoolLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max: int = Field(POOL_MAX, ge=1)
    min: int = Field(POOL_MIN, ge=0)
    idle_timeout_ms: int = Field(POOL_IDLE_TIMEOUT_MS, ge=0)


class DatabaseConfig(BaseModel):
    """Connection settings for one database key. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, max_length=MAX_DB_KEY_LENGTH, pattern=r"^[a-z0-9_]+$")
    server: str = Field(..., min_length=1)
    port: int = Field(DEFAULT_PORT, ge=1, le=65535)
    user: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    database: str = Field(..., min_length=1)
    options: TlsOptions = TlsOptions()
    connection_timeout_ms: int = Field(CONNECTION_TIMEOUT_MS, gt=0)
    request_timeout_ms: int = Field(REQUEST_TIMEOUT_MS, gt=0)
    pool: PoolLimits = PoolLimits()


@dataclass(frozen=True)
class Settings:
    """Everything the entry points need, resolved once at startup."""

    databases: dict[str, DatabaseConfig]
    readonly: bool = False
    http_port: int = DEFAULT_HTTP_PORT
    log_level: str = "INFO"


def validate_config(data: dict) -> DatabaseConfig:
    """Build a DatabaseConfig, turning pydantic errors into one ConfigError.

    Raises:
        ConfigError: Listing every failing field as ``path: message``
    """
    try:
        return DatabaseConfig(**data)
    except pydantic.ValidationError as e:
        messages = ", ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"[config] Validation failed: {messages}") from e


def _parse_port(value: Optional[str], name: str) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"[config] {name} must be an integer, got '{value}'") from e


def detect_config_mode(environ: Mapping[str, str]) -> str:
    """Return "multi" or "single" depending on which variables are set.

    Raises:
        ConfigError: If neither layout is present
    """
    if any(MULTI_DB_PATTERN.match(name) for name in environ):
        return "multi"
    if environ.get("MSSQL_SERVER") or environ.get("MSSQL_DATABASE"):
        return "single"
    raise ConfigError(
        "[config] No valid database configuration found. Please set either MSSQL_* variables "
        "for single-database mode or MSSQL_<DBNAME>_* variables for multi-database mode."
    )


def load_single_database_config(environ: Mapping[str, str]) -> dict[str, DatabaseConfig]:
    """Load the single-database layout under the ``maindb`` key."""
    user = environ.get("MSSQL_USER")
    password = environ.get("MSSQL_PASSWORD")
    database = environ.get("MSSQL_DATABASE")

    if not user or not password or not database:
        raise ConfigError(
            "[config] Missing required database credentials. "
            "Please set MSSQL_USER, MSSQL_PASSWORD, and MSSQL_DATABASE."
        )

    data = {
        "key": DEFAULT_DB_KEY,
        "server": environ.get("MSSQL_SERVER") or DEFAULT_SERVER,
        "user": user,
        "password": password,
        "database": database,
        "options": {
            "encrypt": environ.get("MSSQL_ENCRYPT") == "true",
            "trust_server_certificate": environ.get("MSSQL_TRUST_SERVER_CERTIFICATE") != "false",
        },
    }
    port = _parse_port(environ.get("MSSQL_PORT"), "MSSQL_PORT")
    if port is not None:
        data["port"] = port

    return {DEFAULT_DB_KEY: validate_config(data)}


def load_multi_database_configs(environ: Mapping[str, str]) -> dict[str, DatabaseConfig]:
    """Load every MSSQL_<NAME>_DATABASE entry.

    Incomplete entries are skipped with a warning; at least one must survive.
    """
    configs: dict[str, DatabaseConfig] = {}
    errors: list[str] = []

    for name, value in environ.items():
        match = MULTI_DB_PATTERN.match(name)
        if not match:
            continue

        db_key = match.group(1).lower()
        prefix = f"MSSQL_{match.group(1)}_"

        def setting(suffix: str) -> Optional[str]:
            return environ.get(f"{prefix}{suffix}") or environ.get(f"MSSQL_{suffix}")

        if not DB_KEY_PATTERN.fullmatch(db_key):
            errors.append(
                f"[config] Invalid database key '{db_key}'. "
                "Keys can only contain alphanumeric characters and underscores."
            )
            continue

        user = setting("USER")
        password = setting("PASSWORD")
        if not user or not password or not value:
            errors.append(
                f"[config] Incomplete configuration for database {db_key}. "
                "Missing user, password, or database name."
            )
            continue

        data = {
            "key": db_key,
            "server": setting("SERVER") or DEFAULT_SERVER,
            "user": user,
            "password": password,
            "database": value,
            "options": {
                "encrypt": setting("ENCRYPT") == "true",
                "trust_server_certificate": setting("TRUST_SERVER_CERTIFICATE") != "false",
            },
        }
        try:
            port = _parse_port(environ.get(f"{prefix}PORT"), f"{prefix}PORT")
            if port is not None:
                data["port"] = port
            configs[db_key] = validate_config(data)
        except ConfigError as e:
            errors.append(e.message)

    if not configs:
        raise ConfigError(f"[config] No valid database configurations found. {' '.join(errors)}")

    if errors:
        logger.warning(f"Configuration warnings: {'; '.join(errors)}")

    return configs


def load_database_configs(environ: Optional[Mapping[str, str]] = None) -> dict[str, DatabaseConfig]:
    """Auto-detect the layout and load every database configuration."""
    environ = os.environ if environ is None else environ

    if detect_config_mode(environ) == "multi":
        return load_multi_database_configs(environ)
    return load_single_database_config(environ)


def is_readonly(environ: Optional[Mapping[str, str]] = None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get("IS_READONLY") == "true"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Resolve the full process settings.

    Raises:
        ConfigError: If no usable database configuration exists
    """
    environ = os.environ if environ is None else environ
    return Settings(
        databases=load_database_configs(environ),
        readonly=is_readonly(environ),
        http_port=_parse_port(environ.get("PORT"), "PORT") or DEFAULT_HTTP_PORT,
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )
