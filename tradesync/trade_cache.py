"""
DuckDB persistence layer for cached trade history.

This module provides a TradeCacheStore class holding, per user, the full list
of known executions plus the watermark up to which history has been fetched.
"""

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict
from typing import List, Dict, Any, Tuple

import duckdb
from dacite import from_dict
from dacite.exceptions import DaciteError

from .errors import CacheReadError, CacheWriteError
from .models import Execution

logger = logging.getLogger(__name__)


class TradeCacheStore:
    """
    DuckDB-backed cache of executed trades, one row per user.

    write() replaces the whole row: the caller supplies the merged list. A
    single lock serializes access to the connection so the store can be
    shared by threads syncing different users.
    """

    def __init__(self, db_path: str = "trade_history.duckdb"):
        """
        Initialize DuckDB connection.

        :param db_path: Path to DuckDB database file. Use ':memory:' for in-memory DB.
        """
        self.db_path = db_path
        self.conn = duckdb.connect(db_path)
        self._lock = threading.RLock()
        self._initialize_schema()

    def _initialize_schema(self):
        """Create the trade history table if it doesn't exist."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS trade_history (
                user_id BIGINT PRIMARY KEY,
                trades VARCHAR,
                last_update BIGINT
            )
        """)

        logger.info("Trade cache schema initialized successfully")

    def close(self):
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise duckdb.ConnectionException("Trade cache connection is closed")
        return self.conn

    @contextmanager
    def transaction(self):
        """
        Context manager for transactional operations.

        Usage:
            with store.transaction():
                store.conn.execute(...)
        """
        with self._lock:
            conn = self._connection()
            conn.execute("BEGIN TRANSACTION")
            try:
                yield
                conn.execute("COMMIT")
            except Exception as e:
                logger.error(f"Transaction rolled back due to error: {e}")
                try:
                    conn.execute("ROLLBACK")
                except duckdb.Error as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}")
                raise

    # ==================== Cache Operations ====================

    def read(self, user_id: int) -> Tuple[List[Execution], int]:
        """
        Get cached executions and watermark for a user.

        :param user_id: User identifier
        :return: (executions, last_update_ms); ([], 0) when nothing is cached
        :raises CacheReadError: If the row cannot be read or decoded
        """
        try:
            with self._lock:
                result = self._connection().execute("""
                    SELECT trades, last_update FROM trade_history
                    WHERE user_id = ?
                """, [user_id]).fetchone()
        except duckdb.Error as e:
            raise CacheReadError(f"Failed to read cache for user {user_id}: {e}") from e

        if not result:
            return [], 0

        trades_json, last_update = result
        try:
            executions = [
                from_dict(data_class=Execution, data=item)
                for item in json.loads(trades_json or "[]")
            ]
        except (ValueError, TypeError, DaciteError) as e:
            raise CacheReadError(f"Corrupt cache entry for user {user_id}: {e}") from e

        return executions, last_update or 0

    def write(self, user_id: int, executions: List[Execution], last_update_ms: int):
        """
        Replace cached executions and watermark for a user.

        :param user_id: User identifier
        :param executions: Full, already merged execution list
        :param last_update_ms: Time up to which all executions have been fetched
        :raises CacheWriteError: If the row cannot be written
        """
        trades_json = json.dumps([asdict(execution) for execution in executions])

        try:
            with self.transaction():
                self.conn.execute("""
                    INSERT INTO trade_history (user_id, trades, last_update)
                    VALUES (?, ?, ?)
                    ON CONFLICT (user_id) DO UPDATE SET
                        trades = EXCLUDED.trades,
                        last_update = EXCLUDED.last_update
                """, [user_id, trades_json, last_update_ms])
        except duckdb.Error as e:
            raise CacheWriteError(f"Failed to save cache for user {user_id}: {e}") from e

        logger.info(f"Cached {len(executions)} executions for user {user_id}")

    # ==================== Utility Methods ====================

    def get_cached_user_ids(self) -> List[int]:
        """Get IDs of all users with a cache entry."""
        with self._lock:
            result = self._connection().execute("""
                SELECT user_id FROM trade_history ORDER BY user_id
            """).fetchall()
        return [row[0] for row in result]

    def get_cache_summary(self) -> Dict[str, Any]:
        """
        Get summary statistics about the cache.

        :return: Dictionary with cached_users and total_executions
        """
        with self._lock:
            rows = self._connection().execute("""
                SELECT trades FROM trade_history
            """).fetchall()

        return {
            "cached_users": len(rows),
            "total_executions": sum(len(json.loads(row[0] or "[]")) for row in rows)
        }
