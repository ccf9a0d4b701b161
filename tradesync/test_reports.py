import csv
import io
from unittest.mock import Mock

import pytest

from tradesync.errors import AuthError, RemoteAPIError, TransportError
from tradesync.models import DisplayAsset, Execution, SymbolAnalysis
from tradesync.reports import (
    analysis_to_frame,
    build_balance_view,
    export_csv,
    portfolio_totals,
    total_realized_pnl,
)
from tradesync.sync import SyncResult


@pytest.fixture
def analysis():
    return {
        "AUSDT": SymbolAnalysis("AUSDT", 100.0, 90.0, 10.0, 10.0, 10.0, -10.0),
        "BUSDT": SymbolAnalysis("BUSDT", 80.0, 50.0, 5.0, 2.0, 16.0, 18.0),
        "CUSDT": SymbolAnalysis("CUSDT", 20.0, 0.0, 2.0, 0.0, 10.0, 0.0),
    }


class TestAnalysisReports:
    """Tests for frames and CSV export."""

    def test_frame_sorted_by_absolute_pnl(self, analysis):
        df = analysis_to_frame(analysis)

        assert list(df["symbol"]) == ["BUSDT", "AUSDT", "CUSDT"]
        assert df.loc[0, "realized_roi"] == pytest.approx(18.0 / 32.0 * 100)

    def test_empty_frame(self):
        df = analysis_to_frame({})

        assert df.empty
        assert "realized_pnl" in df.columns

    def test_export_csv(self, analysis):
        rows = list(csv.reader(io.StringIO(export_csv(analysis).decode("utf-8"))))

        assert rows[0] == [
            "Symbol", "Realized PNL", "Total Spent", "Total Received",
            "Avg Buy Price", "Bought", "Sold"
        ]
        assert len(rows) == 4
        assert rows[1][0] == "BUSDT"
        assert float(rows[1][1]) == pytest.approx(18.0)

    def test_total_realized_pnl(self, analysis):
        assert total_realized_pnl(analysis) == pytest.approx(8.0)

    def test_portfolio_totals(self):
        assets = [
            DisplayAsset("BTC", "BTCUSDT", 0.5, 60000.0, 30000.0, 50000.0, 5000.0, 20.0),
            DisplayAsset("ETH", "ETHUSDT", 2.0, 1500.0, 3000.0, 2000.0, -1000.0, -25.0),
        ]

        totals = portfolio_totals(assets)

        assert totals["total_value"] == pytest.approx(33000.0)
        assert totals["total_unrealized_pnl"] == pytest.approx(4000.0)

    def test_portfolio_totals_empty(self):
        assert portfolio_totals([]) == {"total_value": 0.0, "total_unrealized_pnl": 0.0}


class TestBalanceView:
    """Tests for joining synced history with live balances."""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.get_spot_balance.return_value = {"TOTAL": "1000", "USDT": "200", "BTC": "0.5", "FOO": "3"}
        client.get_market_prices.return_value = {"BTCUSDT": 60000.0}
        client.get_current_price.side_effect = RemoteAPIError(-1, "price for FOOUSDT not found")
        return client

    def test_builds_assets_and_missing_prices(self, client):
        orchestrator = Mock()
        orchestrator.get_trades_with_cache.return_value = SyncResult(
            executions=[Execution("BTCUSDT", "50000", "0.5", "Buy")],
            last_update_ms=1
        )

        view = build_balance_view(orchestrator, client, 1)

        assert [a.name for a in view.assets] == ["BTC", "FOO"]
        assert view.assets[0].unrealized_pnl == pytest.approx(5000.0)
        assert view.missing_prices == ["FOO"]
        assert not view.stale
        client.get_current_price.assert_called_once_with("FOOUSDT")

    def test_fallback_price_used(self, client):
        client.get_current_price.side_effect = None
        client.get_current_price.return_value = 2.5
        orchestrator = Mock()
        orchestrator.get_trades_with_cache.return_value = SyncResult()

        view = build_balance_view(orchestrator, client, 1)

        foo = [a for a in view.assets if a.name == "FOO"][0]
        assert foo.current_value == pytest.approx(7.5)
        assert view.missing_prices == []

    def test_stale_flag_passed_through(self, client):
        orchestrator = Mock()
        orchestrator.get_trades_with_cache.return_value = SyncResult(
            stale=True, refresh_error=TransportError("down")
        )

        assert build_balance_view(orchestrator, client, 1).stale

    def test_first_sync_error_raised(self, client):
        orchestrator = Mock()
        orchestrator.get_trades_with_cache.return_value = SyncResult(error=AuthError("401"))

        with pytest.raises(AuthError):
            build_balance_view(orchestrator, client, 1)

        client.get_spot_balance.assert_not_called()
