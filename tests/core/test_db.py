"""Tests for fpcal.core.db - pool management, cursors and schema setup.

Tests cover:
- Lazy pool creation from settings
- Commit on success, rollback on error
- Connection failure mapped to DatabaseException
- init_schema with the bundled and a custom schema file
- check_connection
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from fpcal.core import db
from fpcal.core.exceptions import DatabaseException


@pytest.fixture(autouse=True)
def reset_pool():
    db._pool = None
    yield
    db._pool = None


@pytest.fixture
def mock_pool():
    """Mock the psycopg2 ThreadedConnectionPool."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()
    pool.getconn.return_value = conn

    with patch("fpcal.core.db.psycopg2_pool.ThreadedConnectionPool", return_value=pool) as pool_class:
        yield {"pool_class": pool_class, "pool": pool, "connection": conn, "cursor": cursor}


# ============================================================================
# Pool
# ============================================================================


class TestPool:
    def test_pool_created_from_settings(self, clean_env, mock_pool):
        with db.get_cursor():
            pass

        kwargs = mock_pool["pool_class"].call_args.kwargs
        assert kwargs["minconn"] == 1
        assert kwargs["maxconn"] == 10
        assert kwargs["dbname"] == "fpcal"

    def test_pool_created_once(self, clean_env, mock_pool):
        with db.get_cursor():
            pass
        with db.get_cursor():
            pass
        assert mock_pool["pool_class"].call_count == 1

    def test_connection_failure(self, clean_env):
        with patch(
            "fpcal.core.db.psycopg2_pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ):
            with pytest.raises(DatabaseException, match="Failed to connect"):
                with db.get_cursor():
                    pass

    def test_close_pool(self, clean_env, mock_pool):
        with db.get_cursor():
            pass
        db.close_pool()

        mock_pool["pool"].closeall.assert_called_once()
        assert db._pool is None


# ============================================================================
# Cursor
# ============================================================================


class TestGetCursor:
    def test_commit_on_success(self, clean_env, mock_pool):
        with db.get_cursor() as cur:
            cur.execute("SELECT 1")

        mock_pool["connection"].commit.assert_called_once()
        mock_pool["pool"].putconn.assert_called_once_with(mock_pool["connection"])

    def test_rollback_on_error(self, clean_env, mock_pool):
        with pytest.raises(RuntimeError):
            with db.get_cursor():
                raise RuntimeError("boom")

        mock_pool["connection"].rollback.assert_called_once()
        mock_pool["connection"].commit.assert_not_called()
        mock_pool["pool"].putconn.assert_called_once()


# ============================================================================
# Schema
# ============================================================================


class TestInitSchema:
    def test_bundled_schema_exists(self):
        assert db.SCHEMA_PATH.exists()
        assert "nonce_bindings" in db.SCHEMA_PATH.read_text()

    def test_executes_schema(self, clean_env, mock_pool):
        db.init_schema()
        sql = mock_pool["cursor"].execute.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS org_identities" in sql

    def test_custom_schema(self, clean_env, mock_pool, tmp_path):
        path = tmp_path / "schema.sql"
        path.write_text("SELECT 42;")

        db.init_schema(path)

        mock_pool["cursor"].execute.assert_called_once_with("SELECT 42;")

    def test_missing_schema(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            db.init_schema(tmp_path / "missing.sql")


class TestCheckConnection:
    def test_ok(self, clean_env, mock_pool):
        assert db.check_connection() is True

    def test_failure(self, clean_env):
        with patch(
            "fpcal.core.db.psycopg2_pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ):
            assert db.check_connection() is False
