"""Tests for connection pools and the pool cache."""

import asyncio
import threading
import time

import pymssql
import pytest

from mssql_mcp.database.connection import (
    ConnectionPool,
    ConnectionState,
    ConnectionStatus,
    PoolCache,
    collect_results,
    unique_column_names,
)
from mssql_mcp.errors import ConfigError, DatabaseError

from .conftest import FakeConnection, make_config


@pytest.fixture
def statuses(configs):
    return {key: ConnectionStatus(key) for key in configs}


@pytest.fixture
def cache(configs, statuses, pool_factory):
    return PoolCache(configs, statuses, pool_factory)


class TestConnectionPool:
    """Tests for a single database pool."""

    def test_connect_opens_one_connection_by_default(self, driver):
        pool = ConnectionPool(make_config(), connect=driver)
        pool.connect()

        assert len(driver.connections) == 1
        assert pool.active_connections == 1

    def test_connect_opens_minimum(self, driver):
        pool = ConnectionPool(make_config(pool={"min": 3, "max": 5}), connect=driver)
        pool.connect()

        assert len(driver.connections) == 3

    def test_connect_failure_wraps_driver_error(self, driver):
        driver.failing["maindb"] = pymssql.OperationalError("Login failed for user 'app_user'")
        pool = ConnectionPool(make_config(), connect=driver)

        with pytest.raises(DatabaseError) as exc_info:
            pool.connect()
        assert "Login failed" in exc_info.value.message
        assert pool.active_connections == 0

    def test_connections_are_reused(self, driver):
        pool = ConnectionPool(make_config(), connect=driver)
        pool.connect()

        first = pool.acquire()
        pool.release(first)
        assert pool.acquire() is first
        assert len(driver.connections) == 1

    def test_grows_up_to_max_then_times_out(self, driver):
        pool = ConnectionPool(make_config(pool={"max": 2}, request_timeout_ms=50), connect=driver)

        a = pool.acquire()
        b = pool.acquire()
        assert a is not b

        with pytest.raises(DatabaseError) as exc_info:
            pool.acquire()
        assert "exhausted" in exc_info.value.message

    def test_idle_connections_expire(self, driver):
        pool = ConnectionPool(make_config(pool={"idle_timeout_ms": 10}), connect=driver)
        stale = pool.acquire()
        pool.release(stale)

        time.sleep(0.05)
        fresh = pool.acquire()

        assert fresh is not stale
        assert stale.closed is True
        assert pool.active_connections == 1

    def test_broken_connections_are_dropped(self, driver):
        pool = ConnectionPool(make_config(), connect=driver)
        connection = pool.acquire()
        pool.release(connection, broken=True)

        assert connection.closed is True
        assert pool.active_connections == 0

    def test_close_runs_callback_first_and_is_idempotent(self, driver):
        calls = []

        def on_close(pool):
            calls.append((pool.closed, any(conn.closed for conn in driver.connections)))

        pool = ConnectionPool(make_config(), connect=driver, on_close=on_close)
        pool.connect()
        pool.close()
        pool.close()

        assert calls == [(True, False)]
        assert all(conn.closed for conn in driver.connections)
        with pytest.raises(DatabaseError):
            pool.acquire()

    def test_release_after_close_closes_connection(self, driver):
        pool = ConnectionPool(make_config(), connect=driver)
        connection = pool.acquire()
        pool.close()
        pool.release(connection)

        assert connection.closed is True

    def _acquire_in_thread(self, pool):
        outcome = {}

        def wait():
            try:
                outcome["connection"] = pool.acquire()
            except DatabaseError as e:
                outcome["error"] = e.message

        waiter = threading.Thread(target=wait)
        waiter.start()
        time.sleep(0.1)
        return waiter, outcome

    def test_waiter_takes_slot_freed_by_broken_connection(self, driver):
        pool = ConnectionPool(make_config(pool={"max": 1}, request_timeout_ms=5000), connect=driver)
        held = pool.acquire()
        waiter, outcome = self._acquire_in_thread(pool)

        started = time.monotonic()
        pool.release(held, broken=True)
        waiter.join(timeout=2)

        assert not waiter.is_alive()
        assert time.monotonic() - started < 2
        assert "error" not in outcome
        assert outcome["connection"] is driver.connections[1]
        assert pool.active_connections == 1

    def test_waiter_takes_returned_connection(self, driver):
        pool = ConnectionPool(make_config(pool={"max": 1}, request_timeout_ms=5000), connect=driver)
        held = pool.acquire()
        waiter, outcome = self._acquire_in_thread(pool)

        pool.release(held)
        waiter.join(timeout=2)

        assert not waiter.is_alive()
        assert outcome["connection"] is held

    def test_close_wakes_waiter(self, driver):
        pool = ConnectionPool(make_config(pool={"max": 1}, request_timeout_ms=5000), connect=driver)
        pool.acquire()
        waiter, outcome = self._acquire_in_thread(pool)

        started = time.monotonic()
        pool.close()
        waiter.join(timeout=2)

        assert not waiter.is_alive()
        assert time.monotonic() - started < 2
        assert "closed" in outcome["error"]

    @pytest.mark.asyncio
    async def test_query_returns_rows(self, driver):
        driver.respond("FROM Orders", columns=["id", "total"], rows=[(1, 10), (2, 20)])
        pool = ConnectionPool(make_config(), connect=driver)

        result = await pool.query("SELECT id, total FROM Orders")

        assert result.columns == ["id", "total"]
        assert result.rows == [{"id": 1, "total": 10}, {"id": 2, "total": 20}]
        assert result.rows_affected == 2
        assert pool.active_connections == 1

    @pytest.mark.asyncio
    async def test_query_passes_parameters(self, driver):
        pool = ConnectionPool(make_config(), connect=driver)
        await pool.query("SELECT * FROM t WHERE name = %s", ("Orders",))

        assert driver.executed[-1] == ("SELECT * FROM t WHERE name = %s", ("Orders",))

    @pytest.mark.asyncio
    async def test_query_error_is_wrapped_and_connection_returned(self, driver):
        driver.respond("Missing", error=pymssql.ProgrammingError("Invalid object name 'Missing'."))
        pool = ConnectionPool(make_config(), connect=driver)

        with pytest.raises(DatabaseError) as exc_info:
            await pool.query("SELECT * FROM Missing")

        assert "Invalid object name 'Missing'." in exc_info.value.message
        assert pool.active_connections == 1
        assert pool.acquire() is driver.connections[0]


class TestCollectResults:
    def test_first_result_set_and_first_count(self, driver):
        driver.respond(
            "batch",
            sets=[
                (None, [], 3),
                (["id"], [(1,), (2,)], 2),
                (["name"], [("x",)], 1),
            ],
        )
        cursor = FakeConnection(driver, make_config()).cursor()
        cursor.execute("batch")

        result = collect_results(cursor)

        assert result.columns == ["id"]
        assert result.rows == [{"id": 1}, {"id": 2}]
        assert result.rows_affected == 3

    def test_statement_without_rows(self, driver):
        driver.respond("UPDATE", rowcount=5)
        cursor = FakeConnection(driver, make_config()).cursor()
        cursor.execute("UPDATE Orders SET total = 0")

        result = collect_results(cursor)

        assert result.columns == []
        assert result.rows == []
        assert result.rows_affected == 5

    def test_unnamed_columns_keep_every_value(self, driver):
        driver.respond("COUNT(*)", columns=["", ""], rows=[(3, 42)])
        cursor = FakeConnection(driver, make_config()).cursor()
        cursor.execute("SELECT COUNT(*), MAX(id) FROM Orders")

        result = collect_results(cursor)

        assert result.columns == ["", "_1"]
        assert result.rows == [{"": 3, "_1": 42}]

    def test_unique_column_names(self):
        assert unique_column_names(["id", "id", "name", "id"]) == ["id", "id_1", "name", "id_2"]
        assert unique_column_names(["x_1", "x", "x"]) == ["x_1", "x", "x_2"]
        assert unique_column_names([None, ""]) == ["", "_1"]


class TestPoolCache:
    """Tests for lazy pool creation and self-eviction."""

    @pytest.mark.asyncio
    async def test_same_pool_until_closed(self, cache):
        first = await cache.acquire("maindb")
        assert await cache.acquire("maindb") is first

        first.close()
        second = await cache.acquire("maindb")

        assert second is not first
        assert second.closed is False

    @pytest.mark.asyncio
    async def test_default_key_is_first_configured(self, cache):
        default = await cache.acquire()
        assert default.db_key == "maindb"
        assert await cache.acquire("maindb") is default

    @pytest.mark.asyncio
    async def test_keys_are_case_insensitive(self, cache):
        assert await cache.acquire("ReportingDB") is await cache.acquire("reportingdb")

    @pytest.mark.asyncio
    async def test_unknown_key(self, cache, statuses, driver):
        await cache.acquire("maindb")
        before = {key: status.as_dict() for key, status in statuses.items()}

        with pytest.raises(ConfigError) as exc_info:
            await cache.acquire("nope")

        assert "Invalid dbKey 'nope'" in exc_info.value.message
        assert {key: status.as_dict() for key, status in statuses.items()} == before
        assert len(driver.connections) == 1

    @pytest.mark.asyncio
    async def test_no_configuration(self, statuses, pool_factory):
        with pytest.raises(ConfigError):
            await PoolCache({}, statuses, pool_factory).acquire()

    @pytest.mark.asyncio
    async def test_status_tracks_outcome(self, cache, statuses, driver):
        driver.failing["reportingdb"] = pymssql.OperationalError("Server not found")

        await cache.acquire("maindb")
        with pytest.raises(DatabaseError):
            await cache.acquire("reportingdb")

        assert statuses["maindb"].state is ConnectionState.CONNECTED
        assert statuses["maindb"].last_connected_at is not None
        assert statuses["reportingdb"].state is ConnectionState.ERROR
        assert statuses["reportingdb"].last_error == "Server not found"
        assert "reportingdb" not in cache.pools

    @pytest.mark.asyncio
    async def test_failed_pool_is_not_cached(self, cache, driver):
        driver.failing["maindb"] = pymssql.OperationalError("timeout")
        with pytest.raises(DatabaseError):
            await cache.acquire("maindb")

        del driver.failing["maindb"]
        pool = await cache.acquire("maindb")
        assert pool.closed is False
        assert cache.pools == {"maindb": pool}

    @pytest.mark.asyncio
    async def test_concurrent_first_acquire_creates_one_pool(self, cache, driver):
        driver.connect_delay = 0.05

        pools = await asyncio.gather(*(cache.acquire("maindb") for _ in range(5)))

        assert all(pool is pools[0] for pool in pools)
        assert len(driver.connections) == 1

    @pytest.mark.asyncio
    async def test_close_all(self, cache):
        main = await cache.acquire("maindb")
        reporting = await cache.acquire("reportingdb")

        cache.close_all()

        assert main.closed and reporting.closed
        assert cache.pools == {}

    def test_status_as_dict(self):
        status = ConnectionStatus("maindb")
        assert status.as_dict() == {"lastConnected": None, "lastError": None, "status": "initialized"}

        status.mark_error("boom")
        status.mark_connected()
        rendered = status.as_dict()
        assert rendered["status"] == "connected"
        assert rendered["lastError"] == "boom"
        assert rendered["lastConnected"].endswith("+00:00")
