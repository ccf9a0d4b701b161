"""
Report helpers built on top of the sync engine and the analyzer.

Turns SymbolAnalysis and DisplayAsset collections into pandas DataFrames,
CSV bytes and portfolio totals, and assembles the balance view that joins
cached trade history with live balances and prices.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Iterable

import pandas as pd

from .cost_basis import QUOTE_COIN, STABLE_COINS, analyze, group_by_symbol, to_display_assets
from .errors import TradeSyncError
from .models import DisplayAsset, SymbolAnalysis

logger = logging.getLogger(__name__)

ANALYSIS_COLUMNS = [
    "symbol",
    "realized_pnl",
    "realized_roi",
    "total_cost",
    "total_revenue",
    "avg_buy_price",
    "total_quantity_bought",
    "total_quantity_sold"
]

CSV_HEADERS = {
    "symbol": "Symbol",
    "realized_pnl": "Realized PNL",
    "total_cost": "Total Spent",
    "total_revenue": "Total Received",
    "avg_buy_price": "Avg Buy Price",
    "total_quantity_bought": "Bought",
    "total_quantity_sold": "Sold"
}


@dataclass
class BalanceView:
    """Display assets for a user plus the coins no price could be found for."""
    assets: List[DisplayAsset] = field(default_factory=list)
    missing_prices: List[str] = field(default_factory=list)
    stale: bool = False


def analysis_to_frame(analysis: Mapping[str, SymbolAnalysis]) -> pd.DataFrame:
    """
    One row per symbol, largest absolute realized PNL first.

    :param analysis: Output of analyze()
    :return: DataFrame with ANALYSIS_COLUMNS
    """
    rows = [{**asdict(item), "realized_roi": item.realized_roi} for item in analysis.values()]
    df = pd.DataFrame(rows, columns=ANALYSIS_COLUMNS)

    if df.empty:
        return df

    order = df["realized_pnl"].abs().sort_values(ascending=False, kind="stable").index
    return df.loc[order].reset_index(drop=True)


def export_csv(analysis: Mapping[str, SymbolAnalysis]) -> bytes:
    """
    Export per-symbol figures as CSV.

    Money columns are rounded to 2 decimals and quantities to 4.
    """
    df = analysis_to_frame(analysis)[list(CSV_HEADERS)]
    df = df.round({
        "realized_pnl": 2,
        "total_cost": 2,
        "total_revenue": 2,
        "avg_buy_price": 2,
        "total_quantity_bought": 4,
        "total_quantity_sold": 4
    })
    return df.rename(columns=CSV_HEADERS).to_csv(index=False).encode("utf-8")


def total_realized_pnl(analysis: Mapping[str, SymbolAnalysis]) -> float:
    return sum(item.realized_pnl for item in analysis.values())


def display_assets_to_frame(assets: Iterable[DisplayAsset]) -> pd.DataFrame:
    columns = list(DisplayAsset.__dataclass_fields__)
    return pd.DataFrame([asdict(asset) for asset in assets], columns=columns)


def portfolio_totals(assets: Iterable[DisplayAsset]) -> Dict[str, float]:
    """
    Sum current value and unrealized PNL over held assets.

    :return: {"total_value": ..., "total_unrealized_pnl": ...}
    """
    df = display_assets_to_frame(assets)
    df = df[df["quantity"] != 0]
    return {
        "total_value": float(df["current_value"].sum()),
        "total_unrealized_pnl": float(df["unrealized_pnl"].sum())
    }


def build_balance_view(orchestrator, client, user_id: int) -> BalanceView:
    """
    Join the user's cached trade history with live balances and prices.

    Symbols missing from the bulk ticker list are looked up one by one; coins
    still without a price are listed in missing_prices.

    :raises TradeSyncError: If the first sync, the balance or the ticker request fails
    """
    result = orchestrator.get_trades_with_cache(client, user_id)
    result.raise_for_error()

    balances = client.get_spot_balance()
    prices = dict(client.get_market_prices())

    for coin in balances:
        symbol = coin + QUOTE_COIN
        if coin in STABLE_COINS or prices.get(symbol, 0) > 0:
            continue
        try:
            prices[symbol] = client.get_current_price(symbol)
        except TradeSyncError as e:
            logger.warning(f"No price for {symbol}: {e}")

    analysis = analyze(group_by_symbol(result.executions))
    assets = to_display_assets(analysis, balances, prices)
    missing = [asset.name for asset in assets if asset.current_price == 0]

    logger.info(f"User {user_id}: {len(assets)} assets processed")
    return BalanceView(assets=assets, missing_prices=missing, stale=result.stale)
