"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from decimal import Decimal
from typing import List, Optional

import pytest

# Set test environment before anything reads the config
os.environ["DEBUG_MODE"] = "true"
os.environ["TRADE_STORE"] = "memory"
os.environ["SETTLEMENT_DELAY_SECONDS"] = "0"
os.environ["ENABLE_NOTIFICATIONS"] = "false"
os.environ["OKX_API_KEY"] = "okx-key"
os.environ["OKX_SECRET_KEY"] = "okx-secret"
os.environ["OKX_PASSPHRASE"] = "okx-pass"
os.environ["KUCOIN_API_KEY"] = "kc-key"
os.environ["KUCOIN_SECRET_KEY"] = "kc-secret"
os.environ["KUCOIN_PASSPHRASE"] = "kc-pass"

from spotarb.config import KuCoinConfig, OKXConfig, reload_config  # noqa: E402
from spotarb.database import InMemoryTradeStore  # noqa: E402
from spotarb.models import (  # noqa: E402
    BalanceResult, ErrorDescriptor, OrderResult, PriceFeed, Side, Venue,
)


@pytest.fixture
def config():
    """Fresh configuration built from the test environment."""
    return reload_config()


@pytest.fixture
def store():
    return InMemoryTradeStore()


class StubVenueClient:
    """
    In-process stand-in for a venue client.

    Results are queued per operation; every call is recorded so tests can
    assert what was (or was not) sent.
    """

    def __init__(
        self,
        venue: Venue,
        balance: Decimal = Decimal("1000"),
        fee_rate: Decimal = Decimal("0.001"),
        missing: Optional[List[str]] = None,
    ):
        self.venue = venue
        self.taker_fee_rate = fee_rate
        self._missing = missing or []
        self.balance = balance
        self.balance_error: Optional[ErrorDescriptor] = None
        self.order_results: List[OrderResult] = []
        self.order_errors: List[ErrorDescriptor] = []
        self.raise_on_order: Optional[Exception] = None
        self.feed: Optional[PriceFeed] = None
        self.calls: List[tuple] = []

    @property
    def has_credentials(self) -> bool:
        return not self._missing

    def missing_credentials(self) -> List[str]:
        return list(self._missing)

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get_available_balance(self, asset: str = "USDT") -> BalanceResult:
        self.calls.append(("balance", asset))
        # Yield like a real network call would
        await asyncio.sleep(0)
        if self.balance_error is not None:
            return BalanceResult(success=False, venue=self.venue, asset=asset, error=self.balance_error)
        return BalanceResult(success=True, venue=self.venue, asset=asset, available=self.balance)

    async def place_market_order(self, symbol, side: Side, amount: Decimal, client_order_id=None) -> OrderResult:
        self.calls.append(("order", side, symbol, amount))
        if self.raise_on_order is not None:
            raise self.raise_on_order
        if self.order_errors:
            error = self.order_errors.pop(0)
            return OrderResult(
                success=False, venue=self.venue, side=side, symbol=symbol,
                amount=amount, client_order_id="cid", error=error,
            )
        return OrderResult(
            success=True, venue=self.venue, side=side, symbol=symbol, amount=amount,
            client_order_id="cid", order_id=f"{self.venue.value}-{side.value}-{len(self.calls)}",
        )

    async def fetch_prices(self) -> PriceFeed:
        self.calls.append(("prices",))
        return self.feed or PriceFeed(venue=self.venue)

    @property
    def order_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "order"]


class RecordingNotifier:
    """Captures alerts instead of posting them."""

    def __init__(self):
        self.unhedged = []
        self.results = []

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def notify_unhedged_inventory(self, trade) -> None:
        self.unhedged.append(trade.id)

    async def notify_trade_result(self, trade) -> None:
        self.results.append((trade.id, trade.status))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_stub():
    return StubVenueClient


@pytest.fixture
def okx_stub():
    return StubVenueClient(Venue.OKX)


@pytest.fixture
def kucoin_stub():
    return StubVenueClient(Venue.KUCOIN)


@pytest.fixture
def okx_settings():
    return OKXConfig(OKX_API_KEY="okx-key", OKX_SECRET_KEY="okx-secret", OKX_PASSPHRASE="okx-pass")


@pytest.fixture
def kucoin_settings():
    return KuCoinConfig(KUCOIN_API_KEY="kc-key", KUCOIN_SECRET_KEY="kc-secret", KUCOIN_PASSPHRASE="kc-pass")
