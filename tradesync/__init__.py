"""
Bybit spot trade history sync and cost-basis analytics package.

This package keeps a local cache of a user's executed spot trades and
derives weighted-average cost PNL figures from it.

Modules:
    bybit_api: Signed request client for the Bybit v5 API
    history_fetcher: Windowed, cursor-paginated history fetching
    trade_cache: DuckDB persistence layer
    sync: Incremental sync orchestration
    cost_basis: Weighted-average cost analytics
    reports: DataFrame, CSV and balance view helpers
"""

from .bybit_api import BybitAPI
from .cost_basis import analyze, group_by_symbol, to_display_assets
from .history_fetcher import HistoryFetcher
from .models import DisplayAsset, Execution, SymbolAnalysis
from .sync import SyncOrchestrator, SyncResult, run_sync
from .trade_cache import TradeCacheStore

__all__ = [
    "BybitAPI",
    "DisplayAsset",
    "Execution",
    "HistoryFetcher",
    "SymbolAnalysis",
    "SyncOrchestrator",
    "SyncResult",
    "TradeCacheStore",
    "analyze",
    "group_by_symbol",
    "run_sync",
    "to_display_assets"
]
