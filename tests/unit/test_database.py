from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from core.database import Database


@pytest.fixture
def pooled():
    """Database whose pool hands out a mocked connection"""
    with patch("core.database.pool.ThreadedConnectionPool") as pool_cls:
        conn = MagicMock()
        cursor = conn.cursor.return_value.__enter__.return_value
        pool_cls.return_value.getconn.return_value = conn
        yield Database(), pool_cls.return_value, conn, cursor


class TestDatabase:
    def test_query_returns_rows_and_commits(self, pooled):
        db, pool, conn, cursor = pooled
        cursor.fetchall.return_value = [{"session_key": "a"}]

        assert db.execute_query("SELECT session_key FROM conversation_sessions") == [{"session_key": "a"}]
        conn.commit.assert_called_once()
        pool.putconn.assert_called_with(conn, close=False)

    def test_update_returns_rowcount(self, pooled):
        db, _, _, cursor = pooled
        cursor.rowcount = 1

        assert db.execute_update("DELETE FROM conversation_sessions WHERE session_key = %s", ("a",)) == 1

    def test_connection_errors_are_retried_then_raised(self, pooled):
        db, pool, _, cursor = pooled
        cursor.execute.side_effect = [None] + [psycopg2.OperationalError("server closed")] * 3

        with pytest.raises(psycopg2.OperationalError):
            db.execute_query("SELECT 1 FROM conversation_sessions", max_retries=1)

    def test_close_all_connections(self, pooled):
        db, pool, _, _ = pooled

        db.close_all_connections()

        pool.closeall.assert_called_once()
