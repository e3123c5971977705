"""
Main execution engine that wires venues, scanner, executor and store together.

The engine holds no timer. Callers (the CLI ``watch`` command, a web handler,
a cron job) decide when to scan and when to trade.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Set

from spotarb.config import BotConfig, get_config
from spotarb.database import DuplicateTradeError, TradeStore, get_trade_store
from spotarb.engine.executor import TradeExecutor
from spotarb.engine.scanner import OpportunityScanner
from spotarb.logger import get_logger, trade_logger
from spotarb.models import (
    BalanceResult, InvalidTradeRequest, Opportunity, PriceFeed, ScanResult, Trade,
    TradeRequest, Venue, utcnow,
)
from spotarb.notifications import NotificationService
from spotarb.venues.base import BaseVenueClient
from spotarb.venues.kucoin import KuCoinClient
from spotarb.venues.okx import OKXClient


logger = get_logger("engine")


class BalanceTracker:
    """
    Last known balances per venue, for display only.

    Trading decisions always query the venue fresh; nothing here is read by
    the executor.
    """

    def __init__(self):
        self._balances: Dict[Venue, BalanceResult] = {}
        self.updated_at: Optional[datetime] = None

    def update(self, results: List[BalanceResult]) -> None:
        for result in results:
            self._balances[result.venue] = result
        self.updated_at = utcnow()

    def get(self, venue: Venue) -> Optional[BalanceResult]:
        return self._balances.get(venue)

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {v.value: r.to_dict() for v, r in self._balances.items()}
        data["timestamp"] = self.updated_at.isoformat() if self.updated_at else None
        return data


@dataclass
class CycleReport:
    """Outcome of one scan (and maybe one trade)."""
    scan: ScanResult
    trade: Optional[Trade] = None
    skipped_in_flight: List[str] = field(default_factory=list)


class ExecutionEngine:
    """
    The main orchestrator for the spot arbitrage bot.

    Flow:
    1. Fetch both venues' tickers concurrently
    2. Rank opportunities with the OpportunityScanner
    3. Execute a chosen opportunity (or an external request) with the TradeExecutor
    4. Record every trade in the TradeStore and refresh balances afterwards
    """

    def __init__(
        self,
        config: Optional[BotConfig] = None,
        clients: Optional[Mapping[Venue, BaseVenueClient]] = None,
        store: Optional[TradeStore] = None,
        notifier: Optional[NotificationService] = None,
        scanner: Optional[OpportunityScanner] = None,
    ):
        self.config = config or get_config()
        self.clients: Dict[Venue, BaseVenueClient] = dict(clients) if clients else {
            Venue.OKX: OKXClient(config=self.config),
            Venue.KUCOIN: KuCoinClient(config=self.config),
        }
        self.store = store or get_trade_store()
        self.notifier = notifier or NotificationService(self.config.monitoring)
        self.scanner = scanner or OpportunityScanner(
            self.config.scanner,
            fee_rates={venue: c.taker_fee_rate for venue, c in self.clients.items()},
        )
        self.executor = TradeExecutor(
            self.clients,
            self.store,
            execution=self.config.execution,
            notifier=self.notifier,
            on_balance_refresh=self.get_balances,
            quote_asset=self.config.scanner.quote_asset,
        )
        self.balances = BalanceTracker()

        self._last_scan: Optional[ScanResult] = None
        self._last_feeds: Dict[Venue, PriceFeed] = {}
        # Symbol -> number of trades running on it
        self._in_flight: Counter = Counter()
        self._start_time: Optional[datetime] = None

    @property
    def last_scan(self) -> Optional[ScanResult]:
        return self._last_scan

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    async def start(self) -> None:
        """Open venue and notification HTTP clients."""
        await asyncio.gather(
            *(client.connect() for client in self.clients.values()),
            self.notifier.connect(),
        )
        self._start_time = utcnow()

        for venue, missing in self.config.credential_report().items():
            if missing:
                logger.warning(f"{venue} credentials incomplete, trading disabled", missing=missing)
        logger.info(
            "🚀 Spot arbitrage engine started",
            min_profit=f"{self.config.scanner.min_profit_percent}%",
            max_price=self.config.scanner.max_price,
        )

    async def stop(self) -> None:
        """Close all HTTP clients."""
        await asyncio.gather(
            *(client.disconnect() for client in self.clients.values()),
            self.notifier.disconnect(),
        )
        logger.info("Engine stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # -- scanning ----------------------------------------------------------

    async def fetch_feeds(self) -> List[PriceFeed]:
        feeds = await asyncio.gather(*(c.fetch_prices() for c in self.clients.values()))
        self._last_feeds = {feed.venue: feed for feed in feeds}
        return list(feeds)

    async def scan(self) -> ScanResult:
        """Fetch both feeds and rank opportunities."""
        left, right = await self.fetch_feeds()
        result = self.scanner.scan(left, right)
        self._last_scan = result

        best = result.best
        trade_logger.log_opportunities_scanned(
            count=len(result.opportunities),
            okx_available=result.venue_availability.get(Venue.OKX, False),
            kucoin_available=result.venue_availability.get(Venue.KUCOIN, False),
            best_symbol=best.symbol if best else None,
            best_profit_percent=best.profit_percent if best else None,
        )
        return result

    async def scan_payload(self) -> Dict[str, Any]:
        """Scan and render the external opportunity feed."""
        return (await self.scan()).to_dict()

    # -- trading -----------------------------------------------------------

    def _last_price(self, venue: Venue, symbol: str) -> Optional[Decimal]:
        feed = self._last_feeds.get(venue)
        quote = feed.quote(symbol) if feed else None
        return quote.price if quote else None

    async def _with_prices(self, request: TradeRequest) -> Optional[TradeRequest]:
        """Fill missing leg prices from the last feeds, fetching fresh ones if needed."""
        if request.buy_price is not None and request.sell_price is not None:
            return request

        for attempt in range(2):
            buy_price = request.buy_price or self._last_price(request.buy_venue, request.symbol)
            sell_price = request.sell_price or self._last_price(request.sell_venue, request.symbol)
            if buy_price is not None and sell_price is not None:
                return replace(request, buy_price=buy_price, sell_price=sell_price)
            if attempt == 0:
                await self.fetch_feeds()
        return None

    async def _execute(self, request: TradeRequest) -> Trade:
        self._in_flight[request.symbol] += 1
        try:
            return await self.executor.execute(request)
        finally:
            self._in_flight[request.symbol] -= 1
            if not self._in_flight[request.symbol]:
                del self._in_flight[request.symbol]

    @staticmethod
    def _error_response(error_type: str, message: str, status_code: int, details=None) -> Dict[str, Any]:
        return {
            "success": False,
            "errorType": error_type,
            "error": message,
            "statusCode": status_code,
            "details": details or {},
            "timestamp": utcnow().isoformat(),
        }

    async def execute_trade(self, payload: Any) -> Dict[str, Any]:
        """
        Execute an external trade request.

        Returns the trade result, or an ``invalid_request`` (400) /
        ``unexpected_error`` (500) envelope. Never raises.
        """
        try:
            request = TradeRequest.from_payload(payload)
        except InvalidTradeRequest as e:
            logger.warning("Rejected trade request", reason=str(e))
            return self._error_response("invalid_request", str(e), 400, e.fields)

        try:
            if request.trade_id and self.store.get(request.trade_id) is not None:
                return self._error_response(
                    "invalid_request", "Trade id already used", 400, {"tradeId": request.trade_id}
                )

            priced = await self._with_prices(request)
            if priced is None:
                return self._error_response(
                    "invalid_request",
                    f"No price for {request.symbol} on both venues",
                    400,
                    {"symbol": request.symbol},
                )

            trade = await self._execute(priced)
            return trade.to_response()
        except DuplicateTradeError:
            # Same id raced past the check above
            return self._error_response(
                "invalid_request", "Trade id already used", 400, {"tradeId": request.trade_id}
            )
        except Exception as e:
            logger.exception("Trade request failed unexpectedly")
            return self._error_response("unexpected_error", f"{type(e).__name__}: {e}", 500)

    async def execute_opportunity(self, opportunity: Opportunity) -> Trade:
        """Execute a scanned opportunity at its scanned prices and amount."""
        request = TradeRequest(
            symbol=opportunity.symbol,
            amount=opportunity.trade_amount,
            buy_venue=opportunity.buy_venue,
            sell_venue=opportunity.sell_venue,
            buy_price=opportunity.buy_price,
            sell_price=opportunity.sell_price,
        )
        return await self._execute(request)

    async def get_balances(self) -> Dict[str, Any]:
        """Fetch quote balances on all venues concurrently."""
        quote = self.config.scanner.quote_asset
        results = await asyncio.gather(
            *(c.get_available_balance(quote) for c in self.clients.values())
        )
        self.balances.update(list(results))
        return self.balances.snapshot()

    async def run_cycle(self, auto_trade: Optional[bool] = None) -> CycleReport:
        """
        One scan, and with auto-trade the best opportunity whose symbol has
        no trade in flight.
        """
        if auto_trade is None:
            auto_trade = self.config.execution.auto_trade

        result = await self.scan()
        report = CycleReport(scan=result)
        if not auto_trade:
            return report

        for opportunity in result.opportunities:
            if opportunity.symbol in self._in_flight:
                report.skipped_in_flight.append(opportunity.symbol)
                continue
            logger.info(
                "🎯 Auto-trading opportunity",
                symbol=opportunity.symbol,
                profit_percent=f"{opportunity.profit_percent:.3f}%",
            )
            report.trade = await self.execute_opportunity(opportunity)
            break
        return report

    def trade_history(self, limit: int = 20) -> List[Trade]:
        return self.store.list(limit=limit)

    def status(self) -> Dict[str, Any]:
        """Engine state for the CLI status view."""
        return {
            "started_at": self._start_time.isoformat() if self._start_time else None,
            "credentials": self.config.credential_report(),
            "last_scan": self._last_scan.scanned_at.isoformat() if self._last_scan else None,
            "opportunities": len(self._last_scan.opportunities) if self._last_scan else 0,
            "in_flight": sorted(self._in_flight),
            "trades": self.store.summary(),
        }
