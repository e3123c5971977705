"""
Data models for the Spot Arbitrage Bot.
Defines all core data structures used throughout the system.

All monetary values are Decimal. Result types (OrderResult, BalanceResult,
PriceFeed) carry failures as ErrorDescriptor values instead of raising, so
callers can always tell which venue and which step failed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Render a Decimal as a plain (non-scientific) string."""
    if value is None:
        return None
    return format(value, "f")


class InvalidTradeRequest(ValueError):
    """Raised when an external trade request payload is malformed."""

    def __init__(self, message: str, fields: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.fields = fields or {}


class TradeStateError(RuntimeError):
    """Raised on an illegal Trade state transition or mutation."""


class Venue(Enum):
    """Supported spot venues."""
    OKX = "OKX"
    KUCOIN = "KuCoin"

    @classmethod
    def parse(cls, value: Any) -> "Venue":
        """Parse a venue name in any casing."""
        if isinstance(value, Venue):
            return value
        if isinstance(value, str):
            for venue in cls:
                if venue.value.lower() == value.strip().lower():
                    return venue
        raise ValueError(f"Unknown venue: {value!r}")


class Side(Enum):
    """Trading side."""
    BUY = "buy"
    SELL = "sell"


class TradeStatus(Enum):
    """Lifecycle state of an arbitrage trade."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TradeStatus.PENDING


class ErrorKind(Enum):
    """Closed set of failure categories."""
    MISSING_CREDENTIALS = "missing_credentials"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INVALID_PARAMETERS = "invalid_parameters"
    RATE_LIMITED = "rate_limited"
    TRADING_SUSPENDED = "trading_suspended"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


class ErrorStage(Enum):
    """Where a failure was detected."""
    PRECONDITION = "precondition"
    TRANSPORT = "transport"
    HTTP = "http"
    PARSE = "parse"
    API = "api"
    MALFORMED_SUCCESS = "malformed_success"
    SKIPPED = "skipped"
    EXECUTOR = "executor"


@dataclass(frozen=True)
class ErrorDescriptor:
    """A classified failure of one venue call or trade step."""
    kind: ErrorKind
    venue: Optional[Venue]
    message: str
    stage: ErrorStage
    http_status: Optional[int] = None
    venue_code: Optional[str] = None
    raw_body: Optional[str] = None  # redacted
    cause: Optional["ErrorDescriptor"] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "venue": self.venue.value if self.venue else None,
            "message": self.message,
            "stage": self.stage.value,
        }
        if self.http_status is not None:
            data["httpStatus"] = self.http_status
        if self.venue_code is not None:
            data["venueCode"] = self.venue_code
        if self.raw_body is not None:
            data["rawBody"] = self.raw_body
        if self.cause is not None:
            data["cause"] = self.cause.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDescriptor":
        return cls(
            kind=ErrorKind(data["kind"]),
            venue=Venue.parse(data["venue"]) if data.get("venue") else None,
            message=data.get("message", ""),
            stage=ErrorStage(data["stage"]),
            http_status=data.get("httpStatus"),
            venue_code=data.get("venueCode"),
            raw_body=data.get("rawBody"),
            cause=cls.from_dict(data["cause"]) if data.get("cause") else None,
        )


@dataclass(frozen=True)
class PriceQuote:
    """A single observed last price."""
    symbol: str
    venue: Venue
    price: Decimal
    observed_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PriceFeed:
    """Snapshot of one venue's filtered spot prices."""
    venue: Venue
    prices: Dict[str, Decimal] = field(default_factory=dict)
    ticker_count: int = 0  # raw tickers returned before filtering
    error: Optional[ErrorDescriptor] = None
    observed_at: datetime = field(default_factory=utcnow)

    @property
    def available(self) -> bool:
        return self.error is None and self.ticker_count > 0

    @property
    def symbol_count(self) -> int:
        return len(self.prices)

    def quote(self, symbol: str) -> Optional[PriceQuote]:
        price = self.prices.get(symbol)
        if price is None:
            return None
        return PriceQuote(symbol=symbol, venue=self.venue, price=price, observed_at=self.observed_at)

    @classmethod
    def from_prices(cls, venue: Venue, prices: Dict[str, Any]) -> "PriceFeed":
        """Build a feed from a plain symbol -> price map."""
        converted = {symbol: Decimal(str(price)) for symbol, price in prices.items()}
        return cls(venue=venue, prices=converted, ticker_count=len(converted))

    @classmethod
    def unavailable(cls, venue: Venue, error: ErrorDescriptor) -> "PriceFeed":
        return cls(venue=venue, error=error)


@dataclass(frozen=True)
class Opportunity:
    """A profitable cross-venue price discrepancy. Never mutated."""
    symbol: str
    buy_venue: Venue
    sell_venue: Venue
    buy_price: Decimal
    sell_price: Decimal
    price_diff: Decimal
    profit_percent: Decimal
    trade_amount: Decimal
    buy_fee: Decimal
    sell_fee: Decimal
    net_profit: Decimal
    detected_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.buy_price > self.sell_price:
            raise ValueError("Opportunity buy price must not exceed sell price")
        if self.buy_venue is self.sell_venue:
            raise ValueError("Opportunity venues must differ")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "buyVenue": self.buy_venue.value,
            "sellVenue": self.sell_venue.value,
            "buyPrice": decimal_str(self.buy_price),
            "sellPrice": decimal_str(self.sell_price),
            "priceDiff": decimal_str(self.price_diff),
            "profitPercent": decimal_str(self.profit_percent),
            "tradeAmount": decimal_str(self.trade_amount),
            "buyFee": decimal_str(self.buy_fee),
            "sellFee": decimal_str(self.sell_fee),
            "netProfit": decimal_str(self.net_profit),
            "detectedAt": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class ScanResult:
    """Ranked opportunities plus per-venue feed health."""
    opportunities: Tuple[Opportunity, ...]
    venue_availability: Dict[Venue, bool]
    venue_symbol_counts: Dict[Venue, int]
    scanned_at: datetime = field(default_factory=utcnow)

    @property
    def best(self) -> Optional[Opportunity]:
        return self.opportunities[0] if self.opportunities else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunities": [o.to_dict() for o in self.opportunities],
            "venueAvailability": {v.value: ok for v, ok in self.venue_availability.items()},
            "venueSymbolCounts": {v.value: n for v, n in self.venue_symbol_counts.items()},
            "timestamp": self.scanned_at.isoformat(),
        }


@dataclass
class Balance:
    """Available balance of one asset on one venue."""
    venue: Venue
    available: Decimal
    asset: str = "USDT"


@dataclass(frozen=True)
class OrderResult:
    """Outcome of a single market order request."""
    success: bool
    venue: Venue
    side: Side
    symbol: str
    amount: Decimal
    client_order_id: str
    order_id: Optional[str] = None
    error: Optional[ErrorDescriptor] = None
    raw_response: Optional[Any] = None  # redacted
    latency_ms: float = 0.0

    @property
    def confirmed(self) -> bool:
        """True only when the venue accepted the order and returned its id."""
        return self.success and bool(self.order_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "venue": self.venue.value,
            "side": self.side.value,
            "symbol": self.symbol,
            "amount": decimal_str(self.amount),
            "orderId": self.order_id,
            "clientOrderId": self.client_order_id,
            "latencyMs": round(self.latency_ms, 1),
            "error": self.error.to_dict() if self.error else None,
            "response": self.raw_response,
        }


@dataclass(frozen=True)
class BalanceResult:
    """Outcome of a balance query."""
    success: bool
    venue: Venue
    asset: str
    available: Decimal = Decimal("0")
    error: Optional[ErrorDescriptor] = None
    raw_response: Optional[Any] = None

    @property
    def balance(self) -> Optional[Balance]:
        if not self.success:
            return None
        return Balance(venue=self.venue, available=self.available, asset=self.asset)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "balances": {self.asset: decimal_str(self.available) if self.success else None},
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


def _parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidTradeRequest(f"Invalid {name}: must be a number", {name: value})
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidTradeRequest(f"Invalid {name}: must be a number", {name: value})
    if not result.is_finite():
        raise InvalidTradeRequest(f"Invalid {name}: must be finite", {name: value})
    return result


@dataclass(frozen=True)
class TradeRequest:
    """A validated request to run one buy/sell pair."""
    symbol: str
    amount: Decimal
    buy_venue: Venue
    sell_venue: Venue
    trade_id: Optional[str] = None
    buy_price: Optional[Decimal] = None
    sell_price: Optional[Decimal] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TradeRequest":
        """
        Parse the external camelCase payload.

        Accepts ``buyVenue``/``sellVenue`` and the older
        ``buyExchange``/``sellExchange`` keys.
        """
        if not isinstance(payload, dict):
            raise InvalidTradeRequest("Request body must be a JSON object")

        symbol = payload.get("symbol")
        amount = payload.get("amount")
        buy = payload.get("buyVenue", payload.get("buyExchange"))
        sell = payload.get("sellVenue", payload.get("sellExchange"))

        missing = {
            "symbol": not symbol,
            "amount": amount is None or amount == "",
            "buyVenue": not buy,
            "sellVenue": not sell,
        }
        if any(missing.values()):
            raise InvalidTradeRequest("Missing required parameters", missing)

        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidTradeRequest("Invalid symbol", {"symbol": symbol})
        symbol = symbol.strip().upper()

        amount = _parse_decimal(amount, "amount")
        if amount <= 0:
            raise InvalidTradeRequest(
                "Invalid amount: must be greater than zero", {"providedAmount": str(amount)}
            )

        try:
            buy_venue = Venue.parse(buy)
        except ValueError:
            raise InvalidTradeRequest("Invalid buy venue", {"providedVenue": buy})
        try:
            sell_venue = Venue.parse(sell)
        except ValueError:
            raise InvalidTradeRequest("Invalid sell venue", {"providedVenue": sell})
        if buy_venue is sell_venue:
            raise InvalidTradeRequest("Buy and sell venue must differ", {"venue": buy_venue.value})

        prices = {}
        for key in ("buyPrice", "sellPrice"):
            raw = payload.get(key)
            if raw is None or raw == "":
                prices[key] = None
                continue
            price = _parse_decimal(raw, key)
            if price <= 0:
                raise InvalidTradeRequest(f"Invalid {key}: must be greater than zero", {key: raw})
            prices[key] = price

        trade_id = payload.get("tradeId")
        return cls(
            symbol=symbol,
            amount=amount,
            buy_venue=buy_venue,
            sell_venue=sell_venue,
            trade_id=str(trade_id) if trade_id not in (None, "") else None,
            buy_price=prices["buyPrice"],
            sell_price=prices["sellPrice"],
        )


@dataclass
class Trade:
    """
    One arbitrage attempt: a buy leg followed (maybe) by a sell leg.

    Created ``pending`` before any I/O. ``finish()`` moves it to exactly one
    terminal state, after which the record is read-only.
    """
    id: str
    symbol: str
    buy_venue: Venue
    sell_venue: Venue
    buy_price: Decimal
    sell_price: Decimal
    amount: Decimal
    requested_amount: Decimal

    buy_fee: Decimal = Decimal("0")
    sell_fee: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")

    buy_executed: bool = False
    sell_executed: bool = False
    buy_order_id: Optional[str] = None
    sell_order_id: Optional[str] = None

    errors: Dict[str, ErrorDescriptor] = field(default_factory=dict)
    details: Dict[str, Optional[Dict[str, Any]]] = field(
        default_factory=lambda: {"buy": None, "sell": None}
    )

    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    # Declared last so every other field is set before the terminal guard applies
    status: TradeStatus = TradeStatus.PENDING

    def __setattr__(self, name: str, value: Any) -> None:
        current = self.__dict__.get("status")
        if current is not None and current.is_terminal:
            raise TradeStateError(f"Trade {self.__dict__.get('id')} is {current.value}; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def at_risk(self) -> bool:
        """Bought but not sold: unhedged inventory on the buy venue."""
        return self.buy_executed and not self.sell_executed

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def finish(self, status: TradeStatus) -> None:
        """Move a pending trade to its terminal state."""
        if not status.is_terminal:
            raise TradeStateError("finish() requires a terminal status")
        if self.status.is_terminal:
            raise TradeStateError(f"Trade {self.id} already {self.status.value}")
        self.completed_at = utcnow()
        self.status = status

    def to_response(self) -> Dict[str, Any]:
        """Render the external trade execution result."""
        errors = {leg: error.to_dict() for leg, error in self.errors.items()}
        return {
            "success": self.status is TradeStatus.COMPLETED,
            "tradeId": self.id,
            "status": self.status.value,
            "buyExecuted": self.buy_executed,
            "sellExecuted": self.sell_executed,
            "atRisk": self.at_risk,
            "buyOrderId": self.buy_order_id,
            "sellOrderId": self.sell_order_id,
            "errors": errors,
            "details": {
                "buy": self.details.get("buy"),
                "sell": self.details.get("sell"),
                "symbol": self.symbol,
                "amount": decimal_str(self.amount),
                "requestedAmount": decimal_str(self.requested_amount),
                "buyVenue": self.buy_venue.value,
                "sellVenue": self.sell_venue.value,
                "buyPrice": decimal_str(self.buy_price),
                "sellPrice": decimal_str(self.sell_price),
                "buyFee": decimal_str(self.buy_fee),
                "sellFee": decimal_str(self.sell_fee),
                "netProfit": decimal_str(self.net_profit),
            },
            "timestamp": (self.completed_at or self.created_at).isoformat(),
        }
