"""Structured logging for database operations.

Every event is one JSON object per log line. Passwords never appear: targets
are rendered by describe_target() and statements by query preview plus hash.
"""

import hashlib
import json
import logging
import time
from typing import Any, Optional

db_logger = logging.getLogger("mssql_mcp.database")

QUERY_PREVIEW_LENGTH = 100


def describe_target(server: str, port: int, database: str, user: Optional[str] = None) -> str:
    """Connection target for log lines, e.g. ``mssql://app@db1:1433/main``."""
    user_part = f"{user}@" if user else ""
    return f"mssql://{user_part}{server}:{port}/{database}"


def hash_query(query: str) -> str:
    """Short SHA256 fingerprint used to correlate repeated statements."""
    return hashlib.sha256(query.encode()).hexdigest()[:16]


def _emit(level: int, event: str, **fields: Any) -> None:
    if not db_logger.isEnabledFor(level):
        return
    payload = {"event": event}
    payload.update({name: value for name, value in fields.items() if value is not None})
    db_logger.log(level, json.dumps(payload, default=str))


def log_connection(
    db_key: str,
    target: str,
    success: bool,
    error: Optional[str] = None,
    duration: float = 0.0,
) -> None:
    """Log a pool's attempt to open its initial connections.

    Args:
        db_key: Configured database key
        target: Connection target from describe_target()
        success: Whether the connections opened
        error: Driver message if they did not
        duration: Elapsed time in seconds
    """
    _emit(
        logging.INFO if success else logging.ERROR,
        "database_connection",
        db_key=db_key,
        target=target,
        success=success,
        duration_seconds=round(duration, 3),
        error=error,
    )


def log_query_execution(
    query: str,
    db_key: Optional[str],
    success: bool,
    row_count: int = 0,
    duration: float = 0.0,
    error: Optional[str] = None,
    blocked: bool = False,
) -> None:
    """Log one statement. Statements rejected by the classifier go out at WARNING."""
    if blocked:
        level = logging.WARNING
    else:
        level = logging.INFO if success else logging.ERROR

    preview = query[:QUERY_PREVIEW_LENGTH]
    if len(query) > QUERY_PREVIEW_LENGTH:
        preview += "..."

    _emit(
        level,
        "query_execution",
        db_key=db_key,
        query_hash=hash_query(query),
        query_preview=preview,
        success=success,
        blocked=blocked,
        row_count=row_count,
        duration_seconds=round(duration, 3),
        error=error,
    )


def log_pool_operation(db_key: str, operation: str, pool_size: int, active_connections: int) -> None:
    _emit(
        logging.DEBUG,
        "connection_pool",
        db_key=db_key,
        operation=operation,
        pool_size=pool_size,
        active_connections=active_connections,
    )


class QueryTimer:
    """Context manager measuring elapsed wall time in seconds."""

    def __init__(self):
        self._started = 0.0
        self.duration = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._started
        return False
