"""
Tests for the trade stores.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from spotarb.database import DuplicateTradeError, InMemoryTradeStore, SqliteTradeStore
from spotarb.models import ErrorDescriptor, ErrorKind, ErrorStage, Trade, TradeStatus, Venue


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_trade(trade_id, minutes=0, **overrides):
    values = dict(
        id=trade_id,
        symbol="X",
        buy_venue=Venue.OKX,
        sell_venue=Venue.KUCOIN,
        buy_price=Decimal("1.000"),
        sell_price=Decimal("1.010"),
        amount=Decimal("4"),
        requested_amount=Decimal("4"),
        net_profit=Decimal("0.03196"),
        created_at=T0 + timedelta(minutes=minutes),
    )
    values.update(overrides)
    return Trade(**values)


@pytest.fixture(params=["memory", "sqlite"])
def trade_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryTradeStore()
    return SqliteTradeStore(tmp_path / "trades.db")


class TestTradeStore:
    """Behaviour shared by both backends."""

    def test_append_and_get(self, trade_store):
        trade_store.append(make_trade("a"))

        stored = trade_store.get("a")
        assert stored.symbol == "X"
        assert stored.status == TradeStatus.PENDING
        assert stored.buy_price == Decimal("1.000")
        assert trade_store.get("missing") is None

    def test_duplicate_id_rejected(self, trade_store):
        trade_store.append(make_trade("a"))
        with pytest.raises(DuplicateTradeError):
            trade_store.append(make_trade("a"))

    def test_update_unknown_trade(self, trade_store):
        with pytest.raises(KeyError):
            trade_store.update(make_trade("ghost"))

    def test_update_to_terminal_state(self, trade_store):
        trade = make_trade("a")
        trade_store.append(trade)

        sell_error = ErrorDescriptor(
            kind=ErrorKind.TIMEOUT, venue=Venue.KUCOIN, message="timed out", stage=ErrorStage.TRANSPORT,
        )
        trade.buy_executed = True
        trade.buy_order_id = "okx-1"
        trade.errors["sell"] = sell_error
        trade.details["buy"] = {"orderId": "okx-1", "amount": "4"}
        trade.finish(TradeStatus.FAILED)
        trade_store.update(trade)

        stored = trade_store.get("a")
        assert stored.status == TradeStatus.FAILED
        assert stored.at_risk
        assert stored.buy_order_id == "okx-1"
        assert stored.errors["sell"] == sell_error
        assert stored.details["buy"]["orderId"] == "okx-1"
        assert stored.completed_at is not None
        assert stored.completed_at.tzinfo is not None

    def test_list_newest_first_with_limit(self, trade_store):
        for i in range(5):
            trade_store.append(make_trade(f"t{i}", minutes=i))

        assert [t.id for t in trade_store.list(limit=3)] == ["t4", "t3", "t2"]
        assert len(trade_store.list(limit=0)) == 5

    def test_summary(self, trade_store):
        done = make_trade("done", minutes=1)
        done.buy_executed = True
        done.sell_executed = True
        done.finish(TradeStatus.COMPLETED)

        stuck = make_trade("stuck", minutes=2, net_profit=Decimal("5"))
        stuck.buy_executed = True
        stuck.finish(TradeStatus.FAILED)

        for trade in (done, stuck, make_trade("open", minutes=3)):
            trade_store.append(trade)

        summary = trade_store.summary()
        assert summary["total_trades"] == 3
        assert summary["completed"] == 1
        assert summary["failed"] == 1
        assert summary["pending"] == 1
        assert summary["at_risk"] == 1
        assert summary["expected_net_profit"] == Decimal("0.03196")


class TestSqliteTradeStore:
    """SQLite specifics."""

    def test_in_memory_database(self):
        store = SqliteTradeStore(":memory:")
        store.append(make_trade("a"))
        assert store.get("a").amount == Decimal("4")

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "trades.db"
        SqliteTradeStore(path).append(make_trade("a"))

        reopened = SqliteTradeStore(path)
        trade = reopened.get("a")
        assert trade.net_profit == Decimal("0.03196")
        assert trade.created_at == T0
