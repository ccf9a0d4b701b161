"""
Incremental sync orchestration for cached trade history.

This module implements the control flow for:
- First runs (backfill the exchange's full retention window)
- Incremental runs (fetch only the gap since the last watermark)
- Graceful degradation to stale cached data when a refresh fails
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable, Iterator

from .bybit_api import BybitAPI
from .config import default_secrets, get_db_path, load_secrets_from_env
from .errors import CacheReadError, CacheWriteError, TradeSyncError, describe_error
from .history_fetcher import DAY_MS, HistoryFetcher
from .models import Execution
from .trade_cache import TradeCacheStore

logger = logging.getLogger(__name__)


def current_time_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SyncResult:
    """
    Outcome of a sync.

    Attributes:
        executions: Trade history to analyze (possibly stale)
        last_update_ms: Watermark persisted (or still cached) for the user
        stale: True when the incremental refresh failed and cached data is served
        error: Terminal failure; executions is empty when set
        refresh_error: Failure of the incremental refresh that was degraded to stale data
    """
    executions: List[Execution] = field(default_factory=list)
    last_update_ms: int = 0
    stale: bool = False
    error: Optional[TradeSyncError] = None
    refresh_error: Optional[TradeSyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> Optional[str]:
        """User-facing description of the terminal error, if any."""
        return describe_error(self.error) if self.error else None

    def raise_for_error(self):
        if self.error is not None:
            raise self.error


class KeyedLocks:
    """Lock per key, dropped once no thread holds or waits for it."""

    def __init__(self):
        # key -> [lock, number of threads holding or waiting]
        self._locks: Dict[Any, List] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class SyncOrchestrator:
    """
    Keeps each user's cached trade history up to date.

    The cached watermark only moves forward after a fetch covering the gap up
    to the new watermark completed without error, so the cache never has holes.
    """

    def __init__(
        self,
        store: TradeCacheStore,
        fetcher_factory: Callable[[Any], HistoryFetcher] = HistoryFetcher,
        now_ms: Callable[[], int] = current_time_ms
    ):
        """
        :param store: Cache store shared by all users
        :param fetcher_factory: Builds a HistoryFetcher for a request client
        :param now_ms: Clock returning Unix milliseconds
        """
        self.store = store
        self.fetcher_factory = fetcher_factory
        self.now_ms = now_ms
        self.locks = KeyedLocks()

    def get_trades_with_cache(self, client, user_id: int) -> SyncResult:
        """
        Return the user's full trade history, fetching only what is missing.

        :param client: Request client holding the user's credentials
        :param user_id: User identifier
        :return: SyncResult; result.error is set only when a first sync failed
        """
        with self.locks.hold(user_id):
            return self._sync(client, user_id)

    def _sync(self, client, user_id: int) -> SyncResult:
        fetcher = self.fetcher_factory(client)

        try:
            cached, last_update = self.store.read(user_id)
        except CacheReadError as e:
            logger.error(f"Cache read failed for user {user_id}: {e}")
            cached, last_update = [], 0

        # The watermark never moves backward, even when the wall clock does
        now = max(self.now_ms(), last_update)

        if last_update == 0:
            start = now - fetcher.parameters.lookback_days * DAY_MS
            logger.info(f"First sync for user {user_id}: loading {fetcher.parameters.lookback_days} days")
            try:
                executions = fetcher.fetch_range(start, now, backward=True)
            except TradeSyncError as e:
                logger.error(f"First sync failed for user {user_id}: {e}")
                return SyncResult(error=e)
        else:
            try:
                new_executions = fetcher.fetch_range(last_update, now, backward=False)
            except TradeSyncError as e:
                logger.warning(f"Refresh failed for user {user_id}, serving cached history: {e}")
                return SyncResult(
                    executions=cached,
                    last_update_ms=last_update,
                    stale=True,
                    refresh_error=e
                )
            executions = cached + new_executions

        try:
            self.store.write(user_id, executions, now)
        except CacheWriteError as e:
            logger.error(f"Cache write failed for user {user_id}: {e}")
            return SyncResult(executions=executions, last_update_ms=last_update)

        return SyncResult(executions=executions, last_update_ms=now)


def run_sync(
    api_key: str,
    api_secret: str,
    user_id: int,
    db_path: str = "trade_history.duckdb",
    secrets: Optional[Dict] = None
) -> SyncResult:
    """
    Convenience function to sync one user's history.

    :param api_key: Bybit API key
    :param api_secret: Bybit API secret
    :param user_id: User identifier the cache row is keyed by
    :param db_path: Path to DuckDB database
    :param secrets: Optional full API configuration overriding the defaults
    :return: SyncResult
    """
    client = BybitAPI(secrets or default_secrets(api_key, api_secret))
    store = TradeCacheStore(db_path)
    try:
        return SyncOrchestrator(store).get_trades_with_cache(client, user_id)
    finally:
        store.close()


if __name__ == "__main__":
    import sys

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    env_secrets = load_secrets_from_env()
    user = int(sys.argv[1]) if len(sys.argv) > 1 else 0

    print(f"Syncing trade history for user {user}...")
    store = TradeCacheStore(get_db_path())
    try:
        result = SyncOrchestrator(store).get_trades_with_cache(BybitAPI(env_secrets), user)
    finally:
        store.close()

    if not result.ok:
        print(f"\nSync failed: {result.message}")
        sys.exit(1)

    print(f"\nSync complete!")
    print(f"  Executions: {len(result.executions)}")
    print(f"  Watermark: {result.last_update_ms}")
    print(f"  Stale: {result.stale}")
