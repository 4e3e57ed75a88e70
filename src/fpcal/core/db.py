# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Database connection management for fpcal.

Config via FPCAL_DB_* environment variables (see ``fpcal.core.config``).
All functions here are blocking; async callers go through
``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor

from .exceptions import DatabaseException

logger = logging.getLogger(__name__)

# Connection pool (lazy init, thread-safe)
_pool: psycopg2_pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()

SCHEMA_PATH = Path(__file__).parent.parent / "storage" / "schema.sql"


def _get_pool() -> psycopg2_pool.ThreadedConnectionPool:
    """Get or create the connection pool."""
    from .config import get_settings

    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                settings = get_settings()
                try:
                    _pool = psycopg2_pool.ThreadedConnectionPool(
                        **settings.pool_config,
                        **settings.connection_params,
                    )
                except psycopg2.OperationalError as e:
                    raise DatabaseException(f"Failed to connect to database: {e}") from e
    return _pool


@contextmanager
def get_cursor() -> Generator[Any, None, None]:
    """Get a database cursor with auto-commit on success, rollback on error.

    Usage:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM org_reputations WHERE org_id = %s", (org_id,))
            row = cur.fetchone()
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


def init_schema(schema_path: str | Path | None = None) -> None:
    """Create the fpcal tables if they do not exist.

    Args:
        schema_path: Path to a schema file (defaults to the bundled schema.sql)
    """
    path = Path(schema_path) if schema_path else SCHEMA_PATH
    if not path.exists():
        raise FileNotFoundError(f"schema.sql not found: {path}")

    schema_sql = path.read_text()
    with get_cursor() as cur:
        cur.execute(schema_sql)
    logger.info(f"Initialized schema from {path}")


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT 1")
        return True
    except (psycopg2.Error, DatabaseException):
        return False
