"""Pytest configuration and fixtures."""

import functools
import time
from typing import Any, Optional

import pytest

from mssql_mcp.config import DatabaseConfig
from mssql_mcp.database.connection import ConnectionPool
from mssql_mcp.service import DatabaseService


def make_config(key: str = "maindb", **overrides) -> DatabaseConfig:
    data = {
        "key": key,
        "server": "db.example.local",
        "user": "app_user",
        "password": f"{key}-secret-pw",
        "database": f"{key}_database",
    }
    data.update(overrides)
    return DatabaseConfig(**data)


class FakeCursor:
    """Cursor replaying canned result sets: (columns or None, rows, rowcount)."""

    def __init__(self, connection: "FakeConnection"):
        self.connection = connection
        self._sets: list[tuple[Optional[list[str]], list[tuple], int]] = []
        self.description = None
        self.rowcount = -1
        self.closed = False

    def execute(self, sql: str, params: Optional[tuple] = None) -> None:
        driver = self.connection.driver
        driver.executed.append((sql, params))
        self._sets = list(driver.lookup(sql))
        self._load()

    def _load(self) -> None:
        columns, _, rowcount = self._sets[0]
        self.description = [(name, 1, None, None, None, None, None) for name in columns] if columns else None
        self.rowcount = rowcount

    def fetchall(self) -> list[tuple]:
        return list(self._sets[0][1])

    def nextset(self) -> Optional[bool]:
        self._sets.pop(0)
        if not self._sets:
            return None
        self._load()
        return True

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, driver: "FakeDriver", config: DatabaseConfig):
        self.driver = driver
        self.config = config
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Stands in for pymssql.connect and the server behind it."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.executed: list[tuple[str, Any]] = []
        self.failing: dict[str, Exception] = {}
        self.connect_delay = 0.0
        self._responses: list[tuple[str, Any]] = []

    def __call__(self, config: DatabaseConfig) -> FakeConnection:
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if config.key in self.failing:
            raise self.failing[config.key]
        connection = FakeConnection(self, config)
        self.connections.append(connection)
        return connection

    def respond(self, fragment: str, columns=None, rows=(), rowcount=None, sets=None, error=None) -> None:
        """Register the result for statements containing ``fragment``."""
        if error is not None:
            self._responses.append((fragment, error))
            return
        if sets is None:
            rows = [tuple(row) for row in rows]
            sets = [(columns, rows, len(rows) if rowcount is None else rowcount)]
        self._responses.append((fragment, sets))

    def lookup(self, sql: str):
        for fragment, response in self._responses:
            if fragment in sql:
                if isinstance(response, Exception):
                    raise response
                return response
        return [(None, [], 0)]


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def configs():
    return {"maindb": make_config("maindb"), "reportingdb": make_config("reportingdb")}


@pytest.fixture
def pool_factory(driver):
    return functools.partial(ConnectionPool, connect=driver)


@pytest.fixture
def service(configs, pool_factory):
    return DatabaseService(configs, pool_factory=pool_factory)
