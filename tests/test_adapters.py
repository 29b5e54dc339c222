"""Tests for the async PostgreSQL adapter and the DatabaseClient protocol."""

import asyncio
import inspect
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from db_integrity.adapters.base import DatabaseClient
from db_integrity.adapters.postgres import (
    AsyncPostgresAdapter,
    create_async_engine_pooled,
    normalize_async_url,
)
from db_integrity.errors import DatabaseConnectionError, TransactionError


def _adapter(**kwargs) -> AsyncPostgresAdapter:
    with patch("db_integrity.adapters.postgres.create_async_engine_pooled") as mock_create:
        mock_create.return_value = MagicMock()
        return AsyncPostgresAdapter("postgresql://localhost/test", **kwargs)


def _connection(exec_side_effect=None) -> tuple[MagicMock, AsyncMock]:
    trans = AsyncMock()
    conn = MagicMock()
    conn.begin = AsyncMock(return_value=trans)
    conn.exec_driver_sql = AsyncMock(side_effect=exec_side_effect)
    conn.close = AsyncMock()
    return conn, trans


class TestProtocol:
    def test_adapter_satisfies_protocol(self) -> None:
        """Every protocol method exists on the adapter as a coroutine."""
        names = ("select", "insert", "update", "execute", "execute_in_transaction", "table_exists")
        for name in names + ("close",):
            assert hasattr(DatabaseClient, name)
            assert inspect.iscoroutinefunction(getattr(AsyncPostgresAdapter, name))


class TestUrls:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ],
    )
    def test_normalize(self, url: str, expected: str) -> None:
        assert normalize_async_url(url) == expected

    def test_constructor_normalizes_and_passes_timeout(self) -> None:
        with patch("db_integrity.adapters.postgres.create_async_engine_pooled") as mock_create:
            mock_create.return_value = MagicMock()
            AsyncPostgresAdapter("postgres://localhost/test", connect_timeout=3)
            mock_create.assert_called_once_with(
                "postgresql+asyncpg://localhost/test", connect_timeout=3
            )


class TestEngineDefaults:
    def test_pool_settings(self) -> None:
        with patch("db_integrity.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://localhost/test", connect_timeout=7)
            kwargs = mock_create.call_args.kwargs
            assert kwargs["pool_size"] == 5
            assert kwargs["max_overflow"] == 10
            assert kwargs["pool_pre_ping"] is True
            assert kwargs["pool_recycle"] == 300
            assert kwargs["connect_args"] == {"timeout": 7}

    def test_overrides(self) -> None:
        with patch("db_integrity.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://localhost/test", pool_size=1)
            assert mock_create.call_args.kwargs["pool_size"] == 1


class TestExecuteInTransaction:
    """execute_in_transaction() is all-or-nothing on one connection."""

    def test_commits_all_statements(self) -> None:
        adapter = _adapter()
        conn, trans = _connection()
        adapter._engine.connect = AsyncMock(return_value=conn)

        asyncio.run(adapter.execute_in_transaction(["SELECT 1", "SELECT 2"]))

        assert conn.exec_driver_sql.await_count == 2
        trans.commit.assert_awaited_once()
        trans.rollback.assert_not_awaited()
        conn.close.assert_awaited_once()

    def test_failure_rolls_back_with_original_message(self) -> None:
        driver_error = Exception('relation "missing" does not exist')
        adapter = _adapter()
        conn, trans = _connection(
            exec_side_effect=[None, DBAPIError("SELECT * FROM missing", {}, driver_error), None]
        )
        adapter._engine.connect = AsyncMock(return_value=conn)

        with pytest.raises(TransactionError) as exc_info:
            asyncio.run(
                adapter.execute_in_transaction(["SELECT 1", "SELECT * FROM missing", "SELECT 3"])
            )

        error = exc_info.value
        assert error.statement_index == 1
        assert error.statement == "SELECT * FROM missing"
        assert error.original == 'relation "missing" does not exist'
        assert "Statement 2 of 3 failed" in str(error)
        assert conn.exec_driver_sql.await_count == 2
        trans.rollback.assert_awaited_once()
        trans.commit.assert_not_awaited()
        conn.close.assert_awaited_once()

    def test_commit_failure_is_transaction_error(self) -> None:
        driver_error = Exception("could not serialize access due to concurrent update")
        adapter = _adapter()
        conn, trans = _connection()
        trans.commit.side_effect = DBAPIError("COMMIT", {}, driver_error)
        adapter._engine.connect = AsyncMock(return_value=conn)

        with pytest.raises(TransactionError) as exc_info:
            asyncio.run(adapter.execute_in_transaction(["SELECT 1", "SELECT 2"]))

        error = exc_info.value
        assert error.statement == "COMMIT"
        assert error.statement_index == 2
        assert error.original == "could not serialize access due to concurrent update"
        conn.close.assert_awaited_once()

    def test_begin_failure_is_transaction_error(self) -> None:
        adapter = _adapter()
        conn, _ = _connection()
        conn.begin = AsyncMock(side_effect=DBAPIError("BEGIN", {}, Exception("connection reset")))
        adapter._engine.connect = AsyncMock(return_value=conn)

        with pytest.raises(TransactionError, match="connection reset") as exc_info:
            asyncio.run(adapter.execute_in_transaction(["SELECT 1"]))

        assert exc_info.value.statement == "BEGIN"
        conn.exec_driver_sql.assert_not_awaited()
        conn.close.assert_awaited_once()

    def test_connection_checkout_retried(self) -> None:
        adapter = _adapter(retry_attempts=2, retry_delay=0)
        adapter._engine.connect = AsyncMock(
            side_effect=OperationalError("connect", {}, Exception("refused"))
        )
        with pytest.raises(DatabaseConnectionError):
            asyncio.run(adapter.execute_in_transaction(["SELECT 1"]))
        assert adapter._engine.connect.await_count == 2


class TestSerialization:
    def test_jsonb_values_prepared(self) -> None:
        adapter = _adapter(jsonb_columns=["metadata"])
        assert adapter._prepare_value("metadata", {"a": 1}) == '{"a": 1}'
        assert adapter._prepare_value("metadata", [1, 2]) == "[1, 2]"
        assert adapter._prepare_value("tags", [1, 2]) == [1, 2]

    def test_row_serialization(self) -> None:
        adapter = _adapter()
        row = adapter._serialize_row(
            {
                "id": UUID("12345678-1234-5678-1234-567812345678"),
                "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
                "n": 1,
            }
        )
        assert row == {
            "id": "12345678-1234-5678-1234-567812345678",
            "at": "2024-01-01T00:00:00+00:00",
            "n": 1,
        }

    def test_bind_and_where(self) -> None:
        """JSONB columns get a CAST placeholder and JSON-encoded value."""
        adapter = _adapter(jsonb_columns=["metadata"])
        params: dict = {}
        pairs = adapter._bind({"status": "pending", "metadata": {"a": 1}}, "s", params)
        assert pairs == [("status", ":s_0"), ("metadata", "CAST(:s_1 AS jsonb)")]
        assert params == {"s_0": "pending", "s_1": '{"a": 1}'}

        where = adapter._where({"id": "20240101000000_init"}, params)
        assert where == " WHERE id = :w_0"
        assert params["w_0"] == "20240101000000_init"
        assert adapter._where(None, params) == ""
