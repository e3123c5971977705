"""
Two-leg trade execution.
Buys on the cheaper venue, then sells the same amount on the dearer one.
"""

import asyncio
import uuid
from decimal import ROUND_DOWN, Decimal
from typing import Awaitable, Callable, Dict, Mapping, Optional

from spotarb.config import ExecutionConfig, get_config
from spotarb.database import TradeStore
from spotarb.logger import get_logger, trade_logger
from spotarb.models import (
    ErrorDescriptor, ErrorKind, ErrorStage, OrderResult, Side, Trade, TradeRequest,
    TradeStatus, Venue,
)
from spotarb.notifications import NotificationService
from spotarb.venues.base import BaseVenueClient
from spotarb.venues.errors import classifier


logger = get_logger("executor")

BalanceRefreshHook = Callable[[], Awaitable[object]]


class TradeExecutor:
    """
    Runs one arbitrage trade through ``pending -> completed | failed``.

    Order of operations for each trade:
    1. Record a pending Trade before any venue call
    2. Check both venues have credentials
    3. Read the buy venue's free quote balance and size the buy to fit it
    4. Buy (steps 3-4 hold the buy venue's lock)
    5. Sell the same amount, only if the buy returned a confirmed order id
    6. Refresh balances, whatever happened

    Failed legs are never retried and a filled buy is never reversed. A buy
    without a matching sell leaves inventory on the buy venue; that is
    reported as ``atRisk`` and alerted on.
    """

    def __init__(
        self,
        clients: Mapping[Venue, BaseVenueClient],
        store: TradeStore,
        execution: Optional[ExecutionConfig] = None,
        notifier: Optional[NotificationService] = None,
        on_balance_refresh: Optional[BalanceRefreshHook] = None,
        quote_asset: Optional[str] = None,
    ):
        self.clients: Dict[Venue, BaseVenueClient] = dict(clients)
        self.store = store
        if execution is None or quote_asset is None:
            config = get_config()
            execution = execution or config.execution
            quote_asset = quote_asset or config.scanner.quote_asset
        self.config = execution
        self.quote_asset = quote_asset
        self.notifier = notifier
        self.on_balance_refresh = on_balance_refresh

        # Serializes balance check -> buy per venue
        self._locks: Dict[Venue, asyncio.Lock] = {venue: asyncio.Lock() for venue in self.clients}

    def _fee_rate(self, venue: Venue) -> Decimal:
        return self.clients[venue].taker_fee_rate

    def _reprice(self, trade: Trade) -> None:
        """Recompute fees and expected net profit for the trade's amount."""
        trade.buy_fee = trade.buy_price * trade.amount * self._fee_rate(trade.buy_venue)
        trade.sell_fee = trade.sell_price * trade.amount * self._fee_rate(trade.sell_venue)
        trade.net_profit = (
            (trade.sell_price - trade.buy_price) * trade.amount - trade.buy_fee - trade.sell_fee
        )

    def fit_amount(self, amount: Decimal, price: Decimal, fee_rate: Decimal, available: Decimal) -> Decimal:
        """
        Largest amount (<= ``amount``) whose cost including fees stays within
        MAX_BALANCE_FRACTION of the available balance, rounded down to
        AMOUNT_DECIMALS.
        """
        unit_cost = price * (Decimal("1") + fee_rate)
        budget = available * self.config.max_balance_fraction
        if amount * unit_cost <= budget:
            return amount
        step = Decimal(1).scaleb(-self.config.amount_decimals)
        return (budget / unit_cost).quantize(step, rounding=ROUND_DOWN)

    def new_trade(self, request: TradeRequest) -> Trade:
        if request.buy_price is None or request.sell_price is None:
            raise ValueError("Trade request needs buy and sell prices")
        trade = Trade(
            id=request.trade_id or uuid.uuid4().hex,
            symbol=request.symbol,
            buy_venue=request.buy_venue,
            sell_venue=request.sell_venue,
            buy_price=request.buy_price,
            sell_price=request.sell_price,
            amount=request.amount,
            requested_amount=request.amount,
        )
        self._reprice(trade)
        return trade

    async def execute(self, request: TradeRequest) -> Trade:
        """
        Execute one trade. Venue failures end up in ``trade.errors``; this
        only raises if the trade cannot even be recorded.
        """
        trade = self.new_trade(request)
        self.store.append(trade)
        trade_logger.log_trade_started(
            trade.id, trade.symbol, trade.buy_venue.value, trade.sell_venue.value, trade.amount
        )

        try:
            await self._run(trade)
        except Exception as e:
            logger.exception("Unexpected error during trade", trade_id=trade.id)
            if not trade.is_terminal:
                message = f"{type(e).__name__}: {e}"
                if trade.buy_executed:
                    trade.errors["sell"] = classifier.unexpected(message, trade.sell_venue)
                    trade.finish(TradeStatus.FAILED)
                else:
                    self._fail_buy(trade, classifier.unexpected(message, trade.buy_venue))
        finally:
            await self._refresh_balances()

        self.store.update(trade)
        trade_logger.log_trade_finished(
            trade.id, trade.status.value, trade.buy_executed, trade.sell_executed, trade.net_profit
        )
        await self._alert(trade)
        return trade

    async def _run(self, trade: Trade) -> None:
        buy_client = self.clients[trade.buy_venue]
        sell_client = self.clients[trade.sell_venue]

        # Pre-flight: nothing is sent unless both legs can be signed
        if not buy_client.has_credentials or not sell_client.has_credentials:
            if not buy_client.has_credentials:
                trade.errors["buy"] = classifier.missing_credentials(
                    trade.buy_venue, buy_client.missing_credentials()
                )
            if not sell_client.has_credentials:
                trade.errors["sell"] = classifier.missing_credentials(
                    trade.sell_venue, sell_client.missing_credentials()
                )
            else:
                trade.errors["sell"] = classifier.sell_skipped(trade.sell_venue, trade.errors["buy"])
            logger.warning("Trade aborted, credentials missing", trade_id=trade.id)
            trade.finish(TradeStatus.FAILED)
            return

        async with self._locks[trade.buy_venue]:
            error = await self._prepare_buy(trade, buy_client)
            if error is not None:
                self._fail_buy(trade, error)
                return
            buy = await buy_client.place_market_order(trade.symbol, Side.BUY, trade.amount)

        self._record_leg(trade, "buy", buy)
        if not buy.confirmed:
            self._fail_buy(trade, buy.error or classifier.malformed(
                trade.buy_venue, "Buy reported without an order id", ErrorStage.MALFORMED_SUCCESS,
            ))
            return

        if self.config.settlement_delay_seconds > 0:
            await asyncio.sleep(self.config.settlement_delay_seconds)

        sell = await sell_client.place_market_order(trade.symbol, Side.SELL, trade.amount)
        self._record_leg(trade, "sell", sell)
        if not sell.confirmed:
            trade.errors["sell"] = sell.error or classifier.malformed(
                trade.sell_venue, "Sell reported without an order id", ErrorStage.MALFORMED_SUCCESS,
            )

        trade.finish(TradeStatus.COMPLETED if sell.confirmed else TradeStatus.FAILED)

    async def _prepare_buy(self, trade: Trade, client: BaseVenueClient) -> Optional[ErrorDescriptor]:
        """Check the buy venue balance and shrink the amount to fit it."""
        balance = await client.get_available_balance(self.quote_asset)
        if not balance.success:
            return balance.error

        floor = self.config.min_trade_balance
        if balance.available < floor:
            return self._insufficient(
                trade.buy_venue,
                f"Insufficient {self.quote_asset} balance on {trade.buy_venue.value}: "
                f"{balance.available} available, at least {floor} required",
            )

        amount = self.fit_amount(
            trade.amount, trade.buy_price, self._fee_rate(trade.buy_venue), balance.available
        )
        if amount <= 0:
            return self._insufficient(
                trade.buy_venue,
                f"{balance.available} {self.quote_asset} on {trade.buy_venue.value} "
                f"is too little to buy any {trade.symbol}",
            )
        if amount != trade.amount:
            logger.info(
                "Trade amount reduced to fit balance",
                trade_id=trade.id,
                requested=trade.amount,
                amount=amount,
                available=balance.available,
            )
            trade.amount = amount
            self._reprice(trade)
        return None

    @staticmethod
    def _insufficient(venue: Venue, message: str) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=ErrorKind.INSUFFICIENT_BALANCE,
            venue=venue,
            message=message,
            stage=ErrorStage.PRECONDITION,
        )

    @staticmethod
    def _fail_buy(trade: Trade, error: ErrorDescriptor) -> None:
        trade.errors["buy"] = error
        trade.errors["sell"] = classifier.sell_skipped(trade.sell_venue, error)
        trade.finish(TradeStatus.FAILED)

    @staticmethod
    def _record_leg(trade: Trade, leg: str, result: OrderResult) -> None:
        trade.details[leg] = result.to_dict()
        if leg == "buy":
            trade.buy_executed = result.confirmed
            trade.buy_order_id = result.order_id
        else:
            trade.sell_executed = result.confirmed
            trade.sell_order_id = result.order_id
        trade_logger.log_leg_result(
            trade.id,
            leg,
            result.venue.value,
            result.confirmed,
            order_id=result.order_id,
            error_kind=result.error.kind.value if result.error else None,
            error_message=result.error.message if result.error else None,
            latency_ms=result.latency_ms,
        )

    async def _refresh_balances(self) -> None:
        if self.on_balance_refresh is None:
            return
        try:
            await self.on_balance_refresh()
        except Exception:
            # Display-only snapshot; the trade outcome stands
            logger.exception("Balance refresh failed")

    async def _alert(self, trade: Trade) -> None:
        if trade.at_risk:
            sell_error = trade.errors.get("sell")
            trade_logger.log_unhedged_inventory(
                trade.id,
                trade.symbol,
                trade.buy_venue.value,
                trade.amount,
                sell_error.message if sell_error else "unknown",
            )
        if self.notifier is None:
            return
        if trade.at_risk:
            await self.notifier.notify_unhedged_inventory(trade)
        await self.notifier.notify_trade_result(trade)
