"""
Typed records shared by the fetcher, the cache and the analyzer.
"""

from dataclasses import dataclass
from typing import Dict, Any


# =============================================================================
# Constants
# =============================================================================

SIDE_BUY = "Buy"
SIDE_SELL = "Sell"


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class Execution:
    """
    One fill reported by the exchange.

    Attributes:
        symbol: Trading pair (e.g., "BTCUSDT")
        price: Execution price as the decimal string sent by the API
        quantity: Executed quantity as a decimal string
        side: "Buy" or "Sell"
    """
    symbol: str
    price: str
    quantity: str
    side: str

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "Execution":
        """Build from an item of the execution list (execPrice/execQty keys)."""
        return cls(
            symbol=str(item.get("symbol", "")),
            price=str(item.get("execPrice", "0")),
            quantity=str(item.get("execQty", "0")),
            side=str(item.get("side", ""))
        )


@dataclass
class SymbolAnalysis:
    """
    Weighted-average cost figures for one symbol.

    Attributes:
        symbol: Trading pair
        total_cost: Sum of price * qty over buys
        total_revenue: Sum of price * qty over sells
        total_quantity_bought: Sum of bought quantity
        total_quantity_sold: Sum of sold quantity
        avg_buy_price: total_cost / total_quantity_bought, 0 without buys
        realized_pnl: total_revenue - total_quantity_sold * avg_buy_price, 0 without sells
    """
    symbol: str
    total_cost: float = 0.0
    total_revenue: float = 0.0
    total_quantity_bought: float = 0.0
    total_quantity_sold: float = 0.0
    avg_buy_price: float = 0.0
    realized_pnl: float = 0.0

    @property
    def realized_roi(self) -> float:
        """Realized PNL as a percentage of the cost of the sold quantity."""
        cost_of_sold = self.total_quantity_sold * self.avg_buy_price
        if cost_of_sold > 0:
            return self.realized_pnl / cost_of_sold * 100
        return 0.0


@dataclass
class DisplayAsset:
    """A held coin joined with its cost basis and a live price."""
    name: str
    symbol: str
    quantity: float
    current_price: float = 0.0
    current_value: float = 0.0
    avg_buy_price: float = 0.0
    unrealized_pnl: float = 0.0
    pnl_percentage: float = 0.0
