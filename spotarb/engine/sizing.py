"""
Trade amount policy: how many base units to trade at a given price.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from spotarb.config import ScannerConfig, get_config, validate_amount_tiers


class TradeAmountPolicy:
    """
    Step table of (exclusive upper price bound, units) plus a fallback for
    prices at or above the last bound.

    Cheaper assets get more units so every trade has a comparable notional.
    The table must be monotonic: a higher price never yields more units.
    """

    def __init__(self, tiers: Sequence[Tuple[Decimal, Decimal]], fallback: Decimal):
        tiers = [(Decimal(bound), Decimal(units)) for bound, units in tiers]
        validate_amount_tiers(tiers)
        fallback = Decimal(fallback)
        if fallback <= 0:
            raise ValueError("Fallback trade amount must be positive")
        if fallback > tiers[-1][1]:
            raise ValueError("Fallback trade amount must not exceed the last tier")
        self._tiers: List[Tuple[Decimal, Decimal]] = tiers
        self._fallback = fallback

    @classmethod
    def from_config(cls, scanner: Optional[ScannerConfig] = None) -> "TradeAmountPolicy":
        scanner = scanner or get_config().scanner
        return cls(scanner.amount_tiers, scanner.trade_amount_fallback)

    @property
    def tiers(self) -> List[Tuple[Decimal, Decimal]]:
        return list(self._tiers)

    @property
    def fallback(self) -> Decimal:
        return self._fallback

    def amount_for(self, price: Decimal) -> Decimal:
        """Units to trade when buying at ``price``."""
        for bound, units in self._tiers:
            if price < bound:
                return units
        return self._fallback
