"""
Weighted-average cost analytics over a cached execution list.

Every figure is recomputed from the full list on each call:
    avg_buy_price = total_cost / total_quantity_bought
    realized_pnl  = total_revenue - total_quantity_sold * avg_buy_price
    unrealized    = (current_price - avg_buy_price) * held_quantity
"""

from typing import Dict, List, Iterable, Mapping, Optional

from .models import DisplayAsset, Execution, SymbolAnalysis, SIDE_BUY, SIDE_SELL


QUOTE_COIN = "USDT"

# Pegged assets and the synthetic wallet total carry no cost basis
STABLE_COINS = frozenset({"USDT", "USDC", "DAI", "TOTAL"})


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def group_by_symbol(executions: Iterable[Execution]) -> Dict[str, List[Execution]]:
    """Group executions by symbol, keeping their original order within each group."""
    grouped: Dict[str, List[Execution]] = {}
    for execution in executions:
        grouped.setdefault(execution.symbol, []).append(execution)
    return grouped


def analyze_symbol(symbol: str, executions: Iterable[Execution]) -> SymbolAnalysis:
    analysis = SymbolAnalysis(symbol=symbol)

    for execution in executions:
        price = _to_float(execution.price)
        quantity = _to_float(execution.quantity)

        if execution.side == SIDE_BUY:
            analysis.total_cost += price * quantity
            analysis.total_quantity_bought += quantity
        elif execution.side == SIDE_SELL:
            analysis.total_revenue += price * quantity
            analysis.total_quantity_sold += quantity

    if analysis.total_quantity_bought > 0:
        analysis.avg_buy_price = analysis.total_cost / analysis.total_quantity_bought

    # Without buys the cost of goods sold is unknown; realized PNL stays 0
    if analysis.total_quantity_sold > 0 and analysis.total_quantity_bought > 0:
        analysis.realized_pnl = (
            analysis.total_revenue - analysis.total_quantity_sold * analysis.avg_buy_price
        )

    return analysis


def analyze(grouped: Mapping[str, Iterable[Execution]]) -> Dict[str, SymbolAnalysis]:
    """
    Compute weighted-average cost figures for every symbol.

    :param grouped: Output of group_by_symbol()
    :return: symbol -> SymbolAnalysis
    """
    return {symbol: analyze_symbol(symbol, executions) for symbol, executions in grouped.items()}


def build_display_asset(
    coin: str,
    quantity: float,
    analysis: Optional[SymbolAnalysis],
    current_price: float
) -> DisplayAsset:
    asset = DisplayAsset(name=coin, symbol=coin + QUOTE_COIN, quantity=quantity)

    if analysis is not None:
        asset.avg_buy_price = analysis.avg_buy_price

    if current_price > 0:
        asset.current_price = current_price
        asset.current_value = quantity * current_price

    if asset.avg_buy_price > 0 and asset.current_price > 0:
        asset.unrealized_pnl = (asset.current_price - asset.avg_buy_price) * quantity
        cost = asset.avg_buy_price * quantity
        asset.pnl_percentage = asset.unrealized_pnl / cost * 100 if cost else 0.0

    return asset


def to_display_assets(
    analysis: Mapping[str, SymbolAnalysis],
    balances: Mapping[str, str],
    prices: Mapping[str, float],
    stable_coins: Iterable[str] = STABLE_COINS
) -> List[DisplayAsset]:
    """
    Join held balances with cost basis and live prices.

    :param analysis: Output of analyze()
    :param balances: coin -> held quantity (decimal string or number)
    :param prices: symbol -> last price
    :param stable_coins: Coins left out of the result
    :return: One DisplayAsset per held, non-stable coin, ordered by coin name
    """
    skipped = set(stable_coins)
    assets = []

    for coin in sorted(balances):
        if coin in skipped:
            continue

        quantity = _to_float(balances[coin])
        if quantity == 0:
            continue

        symbol = coin + QUOTE_COIN
        assets.append(build_display_asset(
            coin,
            quantity,
            analysis.get(symbol),
            _to_float(prices.get(symbol, 0.0))
        ))

    return assets
