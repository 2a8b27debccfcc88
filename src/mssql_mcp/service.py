"""Data access operations shared by the MCP and HTTP front-ends."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

from .cache import ResourceCache
from .config import DatabaseConfig
from .constants import (
    BLOCKED_QUERY_MESSAGE,
    DEFAULT_PORT,
    QUERY_SUCCESS_MESSAGE,
    RESOURCE_MIME_TYPE,
    TABLE_SAMPLE_ROWS,
)
from .database.connection import ConnectionPool, ConnectionStatus, PoolCache, PoolFactory, QueryResult
from .database.formatting import format_csv, to_json
from .database.logging import QueryTimer, log_query_execution
from .database.validation import (
    QueryClassifier,
    RegexQueryClassifier,
    Verdict,
    parse_resource_uri,
    validate_db_key,
    validate_query_text,
    validate_table_name,
)
from .errors import DatabaseError, GatewayError, NotFoundError

logger = logging.getLogger("mssql_mcp.service")

TABLES_QUERY = """
SELECT TABLE_NAME
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_TYPE = 'BASE TABLE'
"""

SCHEMA_QUERY = """
SELECT COLUMN_NAME, DATA_TYPE, CHARACTER_MAXIMUM_LENGTH
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_NAME = %s
ORDER BY ORDINAL_POSITION
"""


@dataclass(frozen=True)
class ResourceListing:
    """A table exposed as a readable resource."""

    uri: str
    name: str
    description: str
    mime_type: str = RESOURCE_MIME_TYPE

    @classmethod
    def for_table(cls, table: str) -> "ResourceListing":
        return cls(
            uri=f"mssql://{table}/data",
            name=f"Table: {table}",
            description=f"Data in table: {table}",
        )

    def as_dict(self) -> dict[str, str]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass
class ToolResult:
    """Uniform envelope for tool operations. Failures carry ``{"error": message}``."""

    payload: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
    status_code: int = 200

    @classmethod
    def failure(cls, message: str, status_code: int = 500) -> "ToolResult":
        return cls({"error": message}, is_error=True, status_code=status_code)

    @property
    def text(self) -> str:
        return to_json(self.payload)


class DatabaseService:
    """Owns the pool cache, connection statuses, resource cache and classifier.

    Build one per process; tests build a fresh one per case.
    """

    def __init__(
        self,
        configs: Mapping[str, DatabaseConfig],
        readonly: bool = False,
        classifier: Optional[QueryClassifier] = None,
        pool_factory: PoolFactory = ConnectionPool,
        resource_cache: Optional[ResourceCache] = None,
    ):
        self.configs = dict(configs)
        self.readonly = readonly
        self.classifier = classifier or RegexQueryClassifier()
        self.statuses = {key: ConnectionStatus(key) for key in self.configs}
        self.pools = PoolCache(self.configs, self.statuses, pool_factory)
        self.resource_cache = resource_cache or ResourceCache()

    @property
    def default_key(self) -> Optional[str]:
        return next(iter(self.configs), None)

    def _resolve(self, db_key: Optional[str]) -> str:
        # An empty key means "not given", same as omitting it
        if db_key:
            validate_db_key(db_key)
        return self.pools.resolve_key(db_key or None)

    async def _query(
        self, pool: ConnectionPool, sql: str, params: Optional[tuple] = None
    ) -> QueryResult:
        timer = QueryTimer()
        try:
            with timer:
                result = await pool.query(sql, params)
        except DatabaseError as e:
            log_query_execution(sql, pool.db_key, success=False, duration=timer.duration, error=e.message)
            raise

        log_query_execution(
            sql, pool.db_key, success=True, row_count=len(result.rows), duration=timer.duration
        )
        return result

    async def _guard(self, label: str, operation: Callable[[], Awaitable[ToolResult]]) -> ToolResult:
        try:
            return await operation()
        except GatewayError as e:
            logger.error(f"Error {label}: {e.message}")
            return ToolResult.failure(e.message, e.status_code)
        except Exception as e:
            logger.exception(f"Unexpected error {label}")
            return ToolResult.failure(str(e))

    async def list_tables(self, db_key: Optional[str] = None) -> list[ResourceListing]:
        """List base tables as resources, cached per database for five minutes.

        Raises:
            ValidationError: If the key is malformed
            ConfigError: If the key is unknown
            DatabaseError: If the catalog query fails
        """
        key = self._resolve(db_key)
        if (cached := self.resource_cache.get(key)) is not None:
            return cached

        pool = await self.pools.acquire(key)
        result = await self._query(pool, TABLES_QUERY)
        listings = [ResourceListing.for_table(row["TABLE_NAME"]) for row in result.rows]

        self.resource_cache.set(key, listings)
        return listings

    async def read_table_rows(self, uri: str, db_key: Optional[str] = None) -> str:
        """Return the first rows of a table as CSV.

        Raises:
            ValidationError: If the URI or key is malformed
            ConfigError: If the key is unknown
            DatabaseError: If the table is missing or the query fails
        """
        table = parse_resource_uri(uri)
        key = self._resolve(db_key)

        try:
            pool = await self.pools.acquire(key)
            result = await self._query(pool, f"SELECT TOP {TABLE_SAMPLE_ROWS} * FROM [{table}]")
        except DatabaseError as e:
            logger.error(f"Database error reading resource {uri}: {e.message}")
            raise DatabaseError(f"Database error: {e.message}") from e

        return format_csv(result.columns, result.rows)

    async def run_query(self, query: str, db_key: Optional[str] = None) -> ToolResult:
        """Execute an ad-hoc statement unless the classifier blocks it."""

        async def operation() -> ToolResult:
            valid_query = validate_query_text(query)
            key = self._resolve(db_key)

            if self.classifier.classify(valid_query, self.readonly) is Verdict.DENY:
                log_query_execution(valid_query, key, success=False, error=BLOCKED_QUERY_MESSAGE, blocked=True)
                return ToolResult.failure(BLOCKED_QUERY_MESSAGE)

            pool = await self.pools.acquire(key)
            result = await self._query(pool, valid_query)
            return ToolResult(
                {
                    "message": QUERY_SUCCESS_MESSAGE,
                    "rowsAffected": result.rows_affected,
                    "recordset": result.rows,
                }
            )

        return await self._guard("executing SQL query", operation)

    async def get_table_schema(self, table: str, db_key: Optional[str] = None) -> ToolResult:
        """Describe a table's columns in ordinal order."""

        async def operation() -> ToolResult:
            valid_table = validate_table_name(table)
            key = self._resolve(db_key)

            pool = await self.pools.acquire(key)
            result = await self._query(pool, SCHEMA_QUERY, (valid_table,))
            # An absent table and a table without columns look the same here
            if not result.rows:
                raise NotFoundError(f"Table '{valid_table}' not found or has no columns")

            return ToolResult({"table": valid_table, "columns": result.rows})

        return await self._guard(f"retrieving schema for table '{table}'", operation)

    async def list_databases(self) -> ToolResult:
        """Summarize every configured database. Passwords are never included."""

        async def operation() -> ToolResult:
            configurations = {
                key: {
                    "server": config.server,
                    "port": config.port or DEFAULT_PORT,
                    "database": config.database,
                    "user": config.user,
                    "options": {
                        "encrypt": config.options.encrypt,
                        "trustServerCertificate": config.options.trust_server_certificate,
                    },
                }
                for key, config in self.configs.items()
            }
            return ToolResult(
                {
                    "availableDatabases": list(self.configs),
                    "configurations": configurations,
                    "connectionStatus": {key: status.as_dict() for key, status in self.statuses.items()},
                    "count": len(self.configs),
                    "defaultDatabase": self.default_key,
                }
            )

        return await self._guard("listing databases", operation)

    async def check_health(self) -> tuple[bool, dict[str, str]]:
        """Try every configured database concurrently and report each outcome."""
        keys = list(self.configs)
        outcomes = await asyncio.gather(
            *(self.pools.acquire(key) for key in keys), return_exceptions=True
        )

        databases = {}
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Health check failed for {key}: {outcome}")
                databases[key] = "error"
            else:
                databases[key] = "connected"

        healthy = bool(keys) and all(state == "connected" for state in databases.values())
        return healthy, databases

    async def close(self) -> None:
        self.pools.close_all()
