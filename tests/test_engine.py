"""
Tests for the ExecutionEngine entry points.
"""

import asyncio
from decimal import Decimal

import pytest

from spotarb.engine.execution_engine import ExecutionEngine
from spotarb.models import PriceFeed, TradeStatus, Venue


@pytest.fixture
def engine(config, okx_stub, kucoin_stub, store, notifier):
    okx_stub.feed = PriceFeed.from_prices(Venue.OKX, {"X": "1.000", "Y": "2.000"})
    kucoin_stub.feed = PriceFeed.from_prices(Venue.KUCOIN, {"X": "1.010", "Y": "2.015"})
    return ExecutionEngine(
        config=config,
        clients={Venue.OKX: okx_stub, Venue.KUCOIN: kucoin_stub},
        store=store,
        notifier=notifier,
    )


class TestScanning:
    """Tests for scan entry points."""

    @pytest.mark.asyncio
    async def test_scan_payload(self, engine):
        payload = await engine.scan_payload()

        assert [o["symbol"] for o in payload["opportunities"]] == ["X", "Y"]
        assert payload["venueAvailability"] == {"OKX": True, "KuCoin": True}
        assert payload["venueSymbolCounts"] == {"OKX": 2, "KuCoin": 2}
        assert "timestamp" in payload
        assert engine.last_scan is not None

    @pytest.mark.asyncio
    async def test_empty_feeds(self, engine, okx_stub, kucoin_stub):
        okx_stub.feed = PriceFeed(venue=Venue.OKX)
        kucoin_stub.feed = PriceFeed(venue=Venue.KUCOIN)

        result = await engine.scan()

        assert result.opportunities == ()
        assert result.venue_availability == {Venue.OKX: False, Venue.KUCOIN: False}


class TestExecuteTrade:
    """Tests for execute_trade."""

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {"amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"},
        {"symbol": "X", "buyVenue": "OKX", "sellVenue": "KuCoin"},
        {"symbol": "X", "amount": -1, "buyVenue": "OKX", "sellVenue": "KuCoin"},
        {"symbol": "X", "amount": 0, "buyVenue": "OKX", "sellVenue": "KuCoin"},
        {"symbol": "X", "amount": "lots", "buyVenue": "OKX", "sellVenue": "KuCoin"},
        {"symbol": "X", "amount": 4, "buyVenue": "Binance", "sellVenue": "KuCoin"},
        {"symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "okx"},
    ])
    @pytest.mark.asyncio
    async def test_invalid_request(self, engine, okx_stub, kucoin_stub, payload):
        response = await engine.execute_trade(payload)

        assert response["success"] is False
        assert response["errorType"] == "invalid_request"
        assert response["statusCode"] == 400
        assert okx_stub.order_calls == []
        assert kucoin_stub.order_calls == []

    @pytest.mark.asyncio
    async def test_trade_with_explicit_prices(self, engine, store):
        response = await engine.execute_trade({
            "symbol": "x",
            "amount": "4",
            "buyVenue": "okx",
            "sellVenue": "kucoin",
            "tradeId": "1700000000000",
            "buyPrice": "1.000",
            "sellPrice": "1.010",
        })

        assert response["success"] is True
        assert response["tradeId"] == "1700000000000"
        assert response["status"] == "completed"
        assert response["buyExecuted"] and response["sellExecuted"]
        assert response["errors"] == {}
        assert response["details"]["symbol"] == "X"
        assert response["details"]["buy"]["venue"] == "OKX"
        assert response["details"]["sell"]["side"] == "sell"
        assert store.get("1700000000000").status == TradeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_older_exchange_keys_accepted(self, engine):
        response = await engine.execute_trade({
            "symbol": "X", "amount": 4, "buyExchange": "OKX", "sellExchange": "KuCoin",
        })
        assert response["success"] is True

    @pytest.mark.asyncio
    async def test_missing_prices_filled_from_fresh_feeds(self, engine, okx_stub, kucoin_stub):
        response = await engine.execute_trade(
            {"symbol": "Y", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"}
        )

        assert ("prices",) in okx_stub.calls
        assert Decimal(response["details"]["buyPrice"]) == Decimal("2.000")
        assert Decimal(response["details"]["sellPrice"]) == Decimal("2.015")

    @pytest.mark.asyncio
    async def test_missing_prices_filled_from_last_scan(self, engine, okx_stub):
        await engine.scan()
        fetches = okx_stub.calls.count(("prices",))

        await engine.execute_trade({"symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"})

        assert okx_stub.calls.count(("prices",)) == fetches

    @pytest.mark.asyncio
    async def test_unpriced_symbol_rejected(self, engine, okx_stub):
        response = await engine.execute_trade(
            {"symbol": "NOPE", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"}
        )
        assert response["errorType"] == "invalid_request"
        assert okx_stub.order_calls == []

    @pytest.mark.asyncio
    async def test_duplicate_trade_id_rejected(self, engine):
        payload = {
            "symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin", "tradeId": "dup",
        }
        await engine.execute_trade(payload)
        response = await engine.execute_trade(payload)
        assert response["errorType"] == "invalid_request"
        assert response["statusCode"] == 400

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_trade_id_rejected(self, engine, kucoin_stub):
        payload = {
            "symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin", "tradeId": "twin",
        }

        responses = await asyncio.gather(
            engine.execute_trade(payload), engine.execute_trade(payload)
        )

        accepted = [r for r in responses if r["success"]]
        rejected = [r for r in responses if not r["success"]]
        assert len(accepted) == 1
        assert rejected[0]["errorType"] == "invalid_request"
        assert rejected[0]["statusCode"] == 400
        assert len(kucoin_stub.order_calls) == 1
        assert engine.in_flight == set()

    @pytest.mark.asyncio
    async def test_duplicate_caught_at_append(self, engine, store, monkeypatch):
        await engine.execute_trade({
            "symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin", "tradeId": "dup",
        })
        monkeypatch.setattr(store, "get", lambda trade_id: None)

        response = await engine.execute_trade({
            "symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin", "tradeId": "dup",
        })
        assert response["errorType"] == "invalid_request"
        assert response["statusCode"] == 400

    @pytest.mark.asyncio
    async def test_unexpected_fault_is_500(self, engine, store, monkeypatch):
        def broken_append(trade):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "append", broken_append)

        response = await engine.execute_trade(
            {"symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"}
        )
        assert response["success"] is False
        assert response["errorType"] == "unexpected_error"
        assert response["statusCode"] == 500

    @pytest.mark.asyncio
    async def test_failed_buy_response(self, engine, okx_stub):
        okx_stub.balance = Decimal("0")

        response = await engine.execute_trade(
            {"symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"}
        )

        assert response["success"] is False
        assert response["status"] == "failed"
        assert response["errors"]["buy"]["kind"] == "insufficient_balance"
        assert response["errors"]["sell"]["stage"] == "skipped"
        assert response["atRisk"] is False


class TestBalancesAndCycles:
    """Tests for balances, cycles and history."""

    @pytest.mark.asyncio
    async def test_get_balances(self, engine, kucoin_stub):
        kucoin_stub.balance = Decimal("12.5")

        balances = await engine.get_balances()

        assert balances["OKX"] == {"success": True, "balances": {"USDT": "1000"}}
        assert balances["KuCoin"]["balances"]["USDT"] == "12.5"
        assert balances["timestamp"] is not None

    @pytest.mark.asyncio
    async def test_balances_refreshed_after_trade(self, engine):
        assert engine.balances.updated_at is None
        await engine.execute_trade({"symbol": "X", "amount": 4, "buyVenue": "OKX", "sellVenue": "KuCoin"})
        assert engine.balances.updated_at is not None

    @pytest.mark.asyncio
    async def test_cycle_without_auto_trade(self, engine, okx_stub):
        report = await engine.run_cycle(auto_trade=False)
        assert len(report.scan.opportunities) == 2
        assert report.trade is None
        assert okx_stub.order_calls == []

    @pytest.mark.asyncio
    async def test_cycle_trades_best_opportunity(self, engine):
        report = await engine.run_cycle(auto_trade=True)
        assert report.trade is not None
        assert report.trade.symbol == "X"
        assert report.trade.status == TradeStatus.COMPLETED
        assert engine.in_flight == set()

    @pytest.mark.asyncio
    async def test_cycle_skips_symbol_in_flight(self, engine):
        engine._in_flight["X"] += 1
        report = await engine.run_cycle(auto_trade=True)
        assert report.skipped_in_flight == ["X"]
        assert report.trade.symbol == "Y"

    @pytest.mark.asyncio
    async def test_history_and_status(self, engine):
        await engine.run_cycle(auto_trade=True)

        history = engine.trade_history()
        assert len(history) == 1
        status = engine.status()
        assert status["trades"]["completed"] == 1
        assert status["credentials"] == {"OKX": [], "KuCoin": []}
