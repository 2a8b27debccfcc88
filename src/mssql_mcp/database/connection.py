"""Connection pooling for SQL Server databases.

One ConnectionPool exists per configured database key. PoolCache creates
pools lazily and forgets them again when they are closed.
"""

import asyncio
import enum
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import pymssql

from ..config import DatabaseConfig
from ..constants import SERVER_NAME
from ..errors import ConfigError, DatabaseError
from .logging import QueryTimer, db_logger, describe_target, log_connection, log_pool_operation


class ConnectionState(str, enum.Enum):
    INITIALIZED = "initialized"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class ConnectionStatus:
    """Outcome of the most recent connect attempt for one database key."""

    database_key: str
    last_connected_at: Optional[datetime] = None
    last_error: Optional[str] = None
    state: ConnectionState = ConnectionState.INITIALIZED

    def mark_connected(self) -> None:
        self.last_connected_at = datetime.now(timezone.utc)
        self.state = ConnectionState.CONNECTED

    def mark_error(self, message: str) -> None:
        self.last_error = message
        self.state = ConnectionState.ERROR

    def as_dict(self) -> dict[str, Any]:
        return {
            "lastConnected": self.last_connected_at.isoformat() if self.last_connected_at else None,
            "lastError": self.last_error,
            "status": self.state.value,
        }


@dataclass
class QueryResult:
    """Rows of the first result set plus the first affected-row count reported."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    rows_affected: int = 0


def open_connection(config: DatabaseConfig) -> Any:
    """Open one driver connection for the given configuration."""
    return pymssql.connect(
        server=config.server,
        port=str(config.port),
        user=config.user,
        password=config.password,
        database=config.database,
        login_timeout=max(1, config.connection_timeout_ms // 1000),
        timeout=max(1, config.request_timeout_ms // 1000),
        encryption="require" if config.options.encrypt else None,
        appname=SERVER_NAME,
        autocommit=True,
    )


def unique_column_names(names: Iterable[Optional[str]]) -> list[str]:
    """Rename repeated column names so every value keeps its own key.

    The driver reports unnamed expressions such as ``COUNT(*)`` as ``""``;
    later repeats become ``_1``, ``_2``, or ``name_1`` for a named column.
    """
    columns: list[str] = []
    seen: set[str] = set()
    for name in names:
        base = name or ""
        candidate = base
        suffix = 0
        while candidate in seen:
            suffix += 1
            candidate = f"{base}_{suffix}"
        seen.add(candidate)
        columns.append(candidate)
    return columns


def collect_results(cursor: Any) -> QueryResult:
    """Drain every result set of an executed cursor.

    Only the first result set that has columns is kept, and only the first
    non-negative row count is reported.
    """
    result = QueryResult()
    have_rows = False
    have_count = False

    while True:
        if cursor.description is not None and not have_rows:
            result.columns = unique_column_names(column[0] for column in cursor.description)
            result.rows = [dict(zip(result.columns, row)) for row in cursor.fetchall()]
            have_rows = True
        if not have_count and cursor.rowcount is not None and cursor.rowcount >= 0:
            result.rows_affected = cursor.rowcount
            have_count = True
        if not cursor.nextset():
            break

    return result


class ConnectionPool:
    """Bounded pool of driver connections for one database.

    Thread-safe: the blocking driver calls run in worker threads while the
    event loop keeps serving other requests. Connections idle for longer
    than the configured idle timeout are closed instead of being reused.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        connect: Callable[[DatabaseConfig], Any] = open_connection,
        on_close: Optional[Callable[["ConnectionPool"], None]] = None,
    ):
        self.config = config
        self.db_key = config.key
        self.max_size = config.pool.max
        self.min_size = config.pool.min
        self.idle_timeout = config.pool.idle_timeout_ms / 1000
        self.acquire_timeout = config.request_timeout_ms / 1000
        self.target = describe_target(config.server, config.port, config.database, config.user)
        self._connect = connect
        self._on_close = on_close
        self._idle: queue.LifoQueue[tuple[Any, float]] = queue.LifoQueue()
        self._connection_count = 0
        self._count_lock = threading.Lock()
        # Notified whenever the idle queue or the connection count changes
        self._available = threading.Condition(self._count_lock)
        self.closed = False

    @property
    def active_connections(self) -> int:
        return self._connection_count

    def connect(self) -> None:
        """Open the minimum number of connections (at least one).

        Raises:
            DatabaseError: If the database cannot be reached
        """
        timer = QueryTimer()
        try:
            with timer:
                for _ in range(min(max(self.min_size, 1), self.max_size)):
                    self._reserve()
                    self._idle.put((self._create(), time.monotonic()))
        except DatabaseError as e:
            log_connection(self.db_key, self.target, success=False, error=e.message, duration=timer.duration)
            self._drain()
            raise

        log_connection(self.db_key, self.target, success=True, duration=timer.duration)

    def _reserve(self) -> bool:
        with self._count_lock:
            if self._connection_count >= self.max_size:
                return False
            self._connection_count += 1
            return True

    def _create(self) -> Any:
        try:
            return self._connect(self.config)
        except Exception as e:
            with self._available:
                self._connection_count -= 1
                self._available.notify()
            raise DatabaseError(str(e)) from e

    def _discard(self, connection: Any) -> None:
        with self._available:
            self._connection_count -= 1
            self._available.notify()
        try:
            connection.close()
        except Exception as e:
            db_logger.debug(f"Ignoring error while closing connection for {self.db_key}: {e}")

    def acquire(self) -> Any:
        """Take an idle connection, open a new one under the limit, or wait.

        Raises:
            DatabaseError: If the pool is closed or stays exhausted for the request timeout
        """
        deadline = time.monotonic() + self.acquire_timeout

        while True:
            if self.closed:
                raise DatabaseError(f"Connection pool for '{self.db_key}' is closed")

            try:
                connection, released_at = self._idle.get_nowait()
            except queue.Empty:
                if self._reserve():
                    return self._create()
                self._wait_for_slot(deadline)
                continue

            if self.idle_timeout and time.monotonic() - released_at > self.idle_timeout:
                self._discard(connection)
                continue
            return connection

    def _wait_for_slot(self, deadline: float) -> None:
        """Block until the pool can hand out a connection or has been closed."""
        with self._available:
            while not self.closed and self._idle.empty() and self._connection_count >= self.max_size:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise DatabaseError(
                        f"Connection pool exhausted for '{self.db_key}'. "
                        f"Maximum pool size: {self.max_size}"
                    )
                self._available.wait(remaining)

    def release(self, connection: Any, broken: bool = False) -> None:
        """Return a connection; broken ones and late returns after close are dropped."""
        if broken or self.closed:
            self._discard(connection)
            return
        self._idle.put((connection, time.monotonic()))
        with self._available:
            self._available.notify()

    def execute(self, sql: str, params: Optional[tuple] = None) -> QueryResult:
        """Run one statement on a pooled connection (blocking).

        Raises:
            DatabaseError: Wrapping any driver failure, message preserved
        """
        connection = self.acquire()
        broken = False
        try:
            cursor = connection.cursor()
            try:
                if params:
                    cursor.execute(sql, params)
                else:
                    cursor.execute(sql)
                return collect_results(cursor)
            finally:
                cursor.close()
        except (pymssql.OperationalError, pymssql.InterfaceError) as e:
            broken = True
            raise DatabaseError(str(e)) from e
        except pymssql.Error as e:
            raise DatabaseError(str(e)) from e
        finally:
            self.release(connection, broken=broken)

    async def query(self, sql: str, params: Optional[tuple] = None) -> QueryResult:
        """Run one statement without blocking the event loop."""
        return await asyncio.to_thread(self.execute, sql, params)

    def _drain(self) -> None:
        while True:
            try:
                connection, _ = self._idle.get_nowait()
            except queue.Empty:
                break
            self._discard(connection)

    def close(self) -> None:
        """Evict this pool from its cache, then close every idle connection.

        Connections still checked out are closed when they are released.
        """
        if self.closed:
            return
        self.closed = True
        with self._available:
            self._available.notify_all()
        if self._on_close is not None:
            self._on_close(self)
        self._drain()
        log_pool_operation(self.db_key, "close", self.max_size, self._connection_count)


PoolFactory = Callable[..., ConnectionPool]


class PoolCache:
    """Lazily creates and memoizes one ConnectionPool per database key.

    Pool creation is serialized per key, so concurrent first requests for the
    same key share one pool. A pool that is closed removes itself from the
    cache and the next acquire() builds a fresh one.
    """

    def __init__(
        self,
        configs: Mapping[str, DatabaseConfig],
        statuses: Mapping[str, ConnectionStatus],
        pool_factory: PoolFactory = ConnectionPool,
    ):
        self._configs = configs
        self._statuses = statuses
        self._pool_factory = pool_factory
        self._pools: dict[str, ConnectionPool] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def pools(self) -> dict[str, ConnectionPool]:
        return dict(self._pools)

    def resolve_key(self, db_key: Optional[str] = None) -> str:
        """Map an optional, case-insensitive key to a configured key.

        Raises:
            ConfigError: If nothing is configured or the key is unknown
        """
        if not self._configs:
            raise ConfigError("No database configuration found.")
        if db_key is None:
            return next(iter(self._configs))

        key = db_key.lower()
        if key not in self._configs:
            raise ConfigError(
                f"[config] Invalid dbKey '{db_key}'. Available: {', '.join(self._configs)}"
            )
        return key

    async def acquire(self, db_key: Optional[str] = None) -> ConnectionPool:
        """Return the live pool for a key, creating and connecting it on first use.

        Raises:
            ConfigError: If the key is unknown
            DatabaseError: If the pool cannot connect (nothing is cached)
        """
        key = self.resolve_key(db_key)
        if (pool := self._pools.get(key)) is not None:
            return pool

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if (pool := self._pools.get(key)) is not None:
                return pool

            pool = self._pool_factory(self._configs[key], on_close=self._evict)
            try:
                await asyncio.to_thread(pool.connect)
            except DatabaseError as e:
                self._statuses[key].mark_error(e.message)
                raise

            self._pools[key] = pool
            self._statuses[key].mark_connected()
            log_pool_operation(key, "create", pool.max_size, pool.active_connections)
            return pool

    def _evict(self, pool: ConnectionPool) -> None:
        if self._pools.get(pool.db_key) is pool:
            del self._pools[pool.db_key]
            log_pool_operation(pool.db_key, "evict", pool.max_size, pool.active_connections)

    def close_all(self) -> None:
        for pool in list(self._pools.values()):
            pool.close()
