"""
Tests for data models and configuration.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from spotarb.config import ExecutionConfig, KuCoinConfig, OKXConfig
from spotarb.models import (
    Balance, BalanceResult, ErrorDescriptor, ErrorKind, ErrorStage, InvalidTradeRequest,
    Opportunity, PriceFeed, Trade, TradeRequest, TradeStateError, TradeStatus, Venue,
)


def pending_trade():
    return Trade(
        id="t-1",
        symbol="X",
        buy_venue=Venue.OKX,
        sell_venue=Venue.KUCOIN,
        buy_price=Decimal("1.000"),
        sell_price=Decimal("1.010"),
        amount=Decimal("4"),
        requested_amount=Decimal("4"),
    )


class TestVenue:
    """Tests for Venue parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ("OKX", Venue.OKX),
        ("okx", Venue.OKX),
        (" KuCoin ", Venue.KUCOIN),
        ("KUCOIN", Venue.KUCOIN),
    ])
    def test_parse(self, raw, expected):
        assert Venue.parse(raw) is expected

    def test_unknown(self):
        with pytest.raises(ValueError):
            Venue.parse("binance")


class TestTradeRequest:
    """Tests for TradeRequest.from_payload."""

    def test_valid_payload(self):
        request = TradeRequest.from_payload({
            "symbol": " doge ",
            "amount": "12.5",
            "buyVenue": "kucoin",
            "sellVenue": "OKX",
            "tradeId": 42,
            "buyPrice": 0.1,
        })
        assert request.symbol == "DOGE"
        assert request.amount == Decimal("12.5")
        assert request.buy_venue is Venue.KUCOIN
        assert request.sell_venue is Venue.OKX
        assert request.trade_id == "42"
        assert request.buy_price == Decimal("0.1")
        assert request.sell_price is None

    def test_missing_fields_reported(self):
        with pytest.raises(InvalidTradeRequest) as exc:
            TradeRequest.from_payload({"symbol": "X"})
        assert exc.value.fields == {
            "symbol": False, "amount": True, "buyVenue": True, "sellVenue": True,
        }

    @pytest.mark.parametrize("amount", [True, "NaN", "Infinity", "1e"])
    def test_non_numeric_amount(self, amount):
        with pytest.raises(InvalidTradeRequest):
            TradeRequest.from_payload(
                {"symbol": "X", "amount": amount, "buyVenue": "OKX", "sellVenue": "KuCoin"}
            )

    def test_non_positive_price(self):
        with pytest.raises(InvalidTradeRequest):
            TradeRequest.from_payload({
                "symbol": "X", "amount": 1, "buyVenue": "OKX", "sellVenue": "KuCoin", "sellPrice": "0",
            })


class TestOpportunity:
    """Tests for Opportunity construction."""

    def kwargs(self, **overrides):
        values = dict(
            symbol="X", buy_venue=Venue.OKX, sell_venue=Venue.KUCOIN,
            buy_price=Decimal("1"), sell_price=Decimal("1.01"), price_diff=Decimal("0.01"),
            profit_percent=Decimal("1"), trade_amount=Decimal("4"), buy_fee=Decimal("0"),
            sell_fee=Decimal("0"), net_profit=Decimal("0.04"),
        )
        values.update(overrides)
        return values

    def test_buy_above_sell_rejected(self):
        with pytest.raises(ValueError):
            Opportunity(**self.kwargs(buy_price=Decimal("2")))

    def test_same_venue_rejected(self):
        with pytest.raises(ValueError):
            Opportunity(**self.kwargs(sell_venue=Venue.OKX))


class TestTrade:
    """Tests for the Trade state machine."""

    def test_pending_trade_is_mutable(self):
        trade = pending_trade()
        trade.amount = Decimal("3")
        trade.buy_executed = True
        assert trade.at_risk
        assert not trade.is_terminal

    def test_finish_once(self):
        trade = pending_trade()
        trade.finish(TradeStatus.COMPLETED)

        assert trade.completed_at is not None
        with pytest.raises(TradeStateError):
            trade.finish(TradeStatus.FAILED)
        with pytest.raises(TradeStateError):
            trade.status = TradeStatus.PENDING

    def test_finish_requires_terminal_status(self):
        with pytest.raises(TradeStateError):
            pending_trade().finish(TradeStatus.PENDING)

    def test_response_shape(self):
        trade = pending_trade()
        trade.buy_executed = True
        trade.buy_order_id = "okx-1"
        trade.errors["sell"] = ErrorDescriptor(
            kind=ErrorKind.RATE_LIMITED, venue=Venue.KUCOIN, message="Too many requests",
            stage=ErrorStage.API, venue_code="429000",
        )
        trade.finish(TradeStatus.FAILED)

        response = trade.to_response()
        assert response["success"] is False
        assert response["atRisk"] is True
        assert response["errors"]["sell"] == {
            "kind": "rate_limited",
            "venue": "KuCoin",
            "message": "Too many requests",
            "stage": "api",
            "venueCode": "429000",
        }
        assert response["details"]["amount"] == "4"
        assert response["details"]["buyVenue"] == "OKX"


class TestConfig:
    """Tests for configuration validation."""

    def test_missing_credentials_listed_by_name(self):
        okx = OKXConfig(OKX_API_KEY="k", OKX_SECRET_KEY="", OKX_PASSPHRASE="")
        assert okx.missing_credentials() == ["secret_key", "passphrase"]
        assert not okx.is_configured()

    def test_secrets_hidden_in_repr(self):
        kucoin = KuCoinConfig(KUCOIN_API_KEY="k", KUCOIN_SECRET_KEY="hunter2", KUCOIN_PASSPHRASE="p")
        assert "hunter2" not in repr(kucoin)
        assert kucoin.is_configured()

    def test_fee_rate_bounds(self):
        with pytest.raises(ValidationError):
            OKXConfig(OKX_TAKER_FEE_RATE="1.5")

    @pytest.mark.parametrize("overrides", [
        {"REQUEST_TIMEOUT_SECONDS": 30},
        {"PRICE_REQUEST_TIMEOUT_SECONDS": 5},
        {"MAX_BALANCE_FRACTION": 0},
        {"SETTLEMENT_DELAY_SECONDS": -1},
    ])
    def test_execution_bounds(self, overrides):
        with pytest.raises(ValidationError):
            ExecutionConfig(**overrides)

    def test_credential_report(self, config):
        assert config.credential_report() == {"OKX": [], "KuCoin": []}
        assert config.is_debug


class TestResults:
    """Tests for result value objects."""

    def test_balance_only_on_success(self):
        ok = BalanceResult(success=True, venue=Venue.OKX, asset="USDT", available=Decimal("7.5"))
        assert ok.balance == Balance(venue=Venue.OKX, available=Decimal("7.5"), asset="USDT")

        error = ErrorDescriptor(
            kind=ErrorKind.TIMEOUT, venue=Venue.OKX, message="timed out", stage=ErrorStage.TRANSPORT,
        )
        failed = BalanceResult(success=False, venue=Venue.OKX, asset="USDT", error=error)
        assert failed.balance is None
        assert failed.to_dict() == {
            "success": False,
            "balances": {"USDT": None},
            "error": error.to_dict(),
        }

    def test_feed_quote(self):
        feed = PriceFeed.from_prices(Venue.KUCOIN, {"X": "0.25"})
        quote = feed.quote("X")
        assert quote.price == Decimal("0.25")
        assert quote.venue is Venue.KUCOIN
        assert quote.observed_at == feed.observed_at
        assert feed.quote("Y") is None

    def test_error_descriptor_round_trip_keeps_cause(self):
        buy = ErrorDescriptor(
            kind=ErrorKind.INSUFFICIENT_BALANCE, venue=Venue.OKX, message="low",
            stage=ErrorStage.API, http_status=200, venue_code="51008",
        )
        sell = ErrorDescriptor(
            kind=buy.kind, venue=Venue.KUCOIN, message="skipped", stage=ErrorStage.SKIPPED, cause=buy,
        )
        assert ErrorDescriptor.from_dict(sell.to_dict()) == sell
