"""
Cross-venue opportunity scanning.
Compares two price feeds and ranks profitable buy-low / sell-high pairs.
"""

from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from spotarb.config import ScannerConfig, get_config
from spotarb.engine.sizing import TradeAmountPolicy
from spotarb.logger import get_logger
from spotarb.models import Opportunity, PriceFeed, ScanResult, Venue


logger = get_logger("scanner")

HUNDRED = Decimal("100")
TWO = Decimal("2")


class OpportunityScanner:
    """
    Finds arbitrage opportunities between two venues.

    For every symbol priced on both venues the cheaper venue is the buy side
    and the dearer one the sell side. An opportunity is kept when

    - MIN_PROFIT_PERCENT <= profit % <= MAX_PROFIT_PERCENT
    - price difference >= MIN_PRICE_DIFF
    - net profit after both taker fees > MIN_NET_PROFIT

    Spreads above MAX_PROFIT_PERCENT are almost always stale or mismatched
    tickers (same symbol, different asset) and are dropped as suspicious.

    Scanning does no I/O and holds no state, so the same feeds always give
    the same result.
    """

    def __init__(
        self,
        scanner_config: Optional[ScannerConfig] = None,
        fee_rates: Optional[Mapping[Venue, Decimal]] = None,
        amount_policy: Optional[TradeAmountPolicy] = None,
    ):
        config = get_config()
        self.config = scanner_config or config.scanner
        self.fee_rates: Dict[Venue, Decimal] = dict(fee_rates) if fee_rates else {
            Venue.OKX: config.okx.taker_fee_rate,
            Venue.KUCOIN: config.kucoin.taker_fee_rate,
        }
        self.amount_policy = amount_policy or TradeAmountPolicy.from_config(self.config)

    def scan(self, left: PriceFeed, right: PriceFeed) -> ScanResult:
        """
        Rank opportunities between two feeds.

        Returns an empty list (never raises) when either feed is unavailable;
        availability and symbol counts are reported either way.
        """
        availability = {left.venue: left.available, right.venue: right.available}
        symbol_counts = {left.venue: left.symbol_count, right.venue: right.symbol_count}
        scanned_at = max(left.observed_at, right.observed_at)

        opportunities: List[Opportunity] = []
        if left.available and right.available:
            for symbol in sorted(set(left.prices) & set(right.prices)):
                opportunity = self.evaluate(
                    symbol,
                    left.venue, left.prices[symbol],
                    right.venue, right.prices[symbol],
                    detected_at=scanned_at,
                )
                if opportunity is not None:
                    opportunities.append(opportunity)
        else:
            down = [v.value for v, ok in availability.items() if not ok]
            logger.warning("Skipping scan, venue feed unavailable", venues=down)

        opportunities.sort(key=lambda o: (-o.profit_percent, o.symbol))
        opportunities = opportunities[: self.config.max_opportunities]

        return ScanResult(
            opportunities=tuple(opportunities),
            venue_availability=availability,
            venue_symbol_counts=symbol_counts,
            scanned_at=scanned_at,
        )

    def scan_prices(
        self,
        okx_prices: Mapping[str, Decimal],
        kucoin_prices: Mapping[str, Decimal],
    ) -> ScanResult:
        """Scan plain symbol -> price maps."""
        return self.scan(
            PriceFeed.from_prices(Venue.OKX, dict(okx_prices)),
            PriceFeed.from_prices(Venue.KUCOIN, dict(kucoin_prices)),
        )

    def evaluate(
        self,
        symbol: str,
        venue_a: Venue,
        price_a: Decimal,
        venue_b: Venue,
        price_b: Decimal,
        detected_at=None,
    ) -> Optional[Opportunity]:
        """Build an Opportunity for one symbol, or None if it is not eligible."""
        if price_a <= 0 or price_b <= 0 or venue_a is venue_b:
            return None

        if price_a <= price_b:
            buy_venue, buy_price, sell_venue, sell_price = venue_a, price_a, venue_b, price_b
        else:
            buy_venue, buy_price, sell_venue, sell_price = venue_b, price_b, venue_a, price_a

        price_diff = sell_price - buy_price
        if price_diff < self.config.min_price_diff:
            return None

        average = (buy_price + sell_price) / TWO
        profit_percent = price_diff / average * HUNDRED

        if profit_percent > self.config.max_profit_percent:
            logger.debug(
                "Suspicious spread dropped",
                symbol=symbol,
                profit_percent=f"{profit_percent:.2f}%",
            )
            return None
        if profit_percent < self.config.min_profit_percent:
            return None

        amount = self.amount_policy.amount_for(buy_price)
        buy_fee = buy_price * amount * self.fee_rates[buy_venue]
        sell_fee = sell_price * amount * self.fee_rates[sell_venue]
        net_profit = price_diff * amount - buy_fee - sell_fee
        if net_profit <= self.config.min_net_profit:
            return None

        kwargs = {"detected_at": detected_at} if detected_at is not None else {}
        return Opportunity(
            symbol=symbol,
            buy_venue=buy_venue,
            sell_venue=sell_venue,
            buy_price=buy_price,
            sell_price=sell_price,
            price_diff=price_diff,
            profit_percent=profit_percent,
            trade_amount=amount,
            buy_fee=buy_fee,
            sell_fee=sell_fee,
            net_profit=net_profit,
            **kwargs,
        )
