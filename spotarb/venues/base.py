"""
Base class for spot venue API clients.
"""

import json
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from aiolimiter import AsyncLimiter

from spotarb.config import BotConfig, VenueSettings, get_config
from spotarb.logger import get_logger
from spotarb.models import (
    BalanceResult, ErrorDescriptor, ErrorStage, OrderResult, PriceFeed, Side, Venue
)
from spotarb.venues.errors import classifier
from spotarb.venues.signing import SignatureProvider


SENSITIVE_KEYS = ("sign", "secret", "passphrase", "apikey", "api_key", "access-key")
MAX_RAW_LENGTH = 2000
MASK = "***"


def format_amount(amount: Decimal) -> str:
    """Render an order size without exponent or trailing zeros."""
    return format(amount.normalize(), "f")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


@dataclass
class VenueResponse:
    """Outcome of one request after the transport/http/parse/api layers."""
    data: Optional[Dict[str, Any]]
    error: Optional[ErrorDescriptor]
    status_code: Optional[int] = None
    raw: Optional[Any] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class BaseVenueClient(ABC):
    """
    Abstract async client for one spot venue.

    Each request goes through the same layers and the first layer that fails
    decides the ErrorDescriptor:

    0. credentials absent (signed calls only, nothing is sent or signed)
    1. transport: timeout / connection failure
    2. HTTP status other than 2xx
    3. body is not a JSON object
    4. venue failure code
    5. success code without the expected payload (checked by the caller)

    Venue failures are returned as values, never raised. There are no
    retries: every call sends at most one request.
    """

    VENUE: Venue
    ORDER_PATH: str
    BALANCE_PATH: str
    TICKERS_PATH: str
    TICKERS_PARAMS: Dict[str, str] = {}

    def __init__(
        self,
        settings: Optional[VenueSettings] = None,
        config: Optional[BotConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or get_config()
        self.settings = settings or self._settings_from(config)
        self.quote_asset = config.scanner.quote_asset
        self.max_price = config.scanner.max_price
        self.request_timeout = config.execution.request_timeout_seconds
        self.price_timeout = config.execution.price_request_timeout_seconds

        self._api_key = self.settings.api_key
        self._passphrase = self.settings.passphrase.get_secret_value()
        secret = self.settings.secret_key.get_secret_value()
        self._signer: Optional[SignatureProvider] = (
            SignatureProvider(secret) if self.has_credentials else None
        )
        self._secrets = [s for s in (secret, self._passphrase, self._api_key) if s]

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._limiter = AsyncLimiter(self.settings.requests_per_second, 1)
        self.logger = get_logger(self.VENUE.value.lower())

    @staticmethod
    @abstractmethod
    def _settings_from(config: BotConfig) -> VenueSettings:
        """Pick this venue's section out of the bot config."""
        pass

    @property
    def venue(self) -> Venue:
        return self.VENUE

    @property
    def taker_fee_rate(self) -> Decimal:
        return self.settings.taker_fee_rate

    @property
    def has_credentials(self) -> bool:
        return self.settings.is_configured()

    def missing_credentials(self) -> List[str]:
        return self.settings.missing_credentials()

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=self.request_timeout,
                transport=self._transport,
            )
            self.logger.debug(f"Connected to {self.VENUE.value}", base_url=self.settings.base_url)

    async def disconnect(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    # -- venue specifics -------------------------------------------------

    @abstractmethod
    def _timestamp(self) -> str:
        """Timestamp in the venue's signing format."""
        pass

    @abstractmethod
    def _auth_headers(self, timestamp: str, signature: str) -> Dict[str, str]:
        """Authentication headers for a signed request."""
        pass

    @abstractmethod
    def _api_failure(self, payload: Dict[str, Any]) -> Optional[Tuple[Optional[str], Optional[str]]]:
        """Return (code, message) when the payload reports a failure, else None."""
        pass

    @abstractmethod
    def _order_body(self, symbol: str, side: Side, size: str, client_order_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def _extract_order_id(self, payload: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    def _balance_params(self, asset: str) -> Dict[str, str]:
        pass

    @abstractmethod
    def _extract_balance(self, payload: Dict[str, Any], asset: str) -> Optional[Decimal]:
        """
        Available balance of ``asset``.

        Returns Decimal("0") when the account simply holds none of the asset
        and None when the expected structure is missing.
        """
        pass

    @abstractmethod
    def _extract_tickers(self, payload: Dict[str, Any]) -> Optional[List[Tuple[str, Any]]]:
        """(pair, last price) for every ticker, or None when malformed."""
        pass

    def instrument(self, symbol: str) -> str:
        return f"{symbol.upper()}-{self.quote_asset}"

    # -- redaction ---------------------------------------------------------

    def _scrub(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, MASK)
        if len(text) > MAX_RAW_LENGTH:
            text = text[:MAX_RAW_LENGTH] + "...(truncated)"
        return text

    def redact(self, value: Any) -> Any:
        """Mask sensitive keys and scrub secret material from a response."""
        if isinstance(value, dict):
            return {
                k: (MASK if _is_sensitive(str(k)) else self.redact(v))
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [self.redact(v) for v in value[:100]]
        if isinstance(value, str):
            return self._scrub(value)
        return value

    # -- request pipeline --------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        signed: bool = False,
        timeout: Optional[float] = None,
    ) -> VenueResponse:
        if signed and not self.has_credentials:
            return VenueResponse(
                data=None,
                error=classifier.missing_credentials(self.VENUE, self.missing_credentials()),
            )

        await self.connect()

        request_path = path
        if params:
            request_path = f"{path}?{urlencode(params)}"
        content = json.dumps(body, separators=(",", ":")) if body is not None else ""

        headers = {"Content-Type": "application/json"}
        if signed:
            timestamp = self._timestamp()
            signature = self._signer.sign(timestamp, method, request_path, content)
            headers.update(self._auth_headers(timestamp, signature))

        started = time.perf_counter()
        try:
            async with self._limiter:
                response = await self._client.request(
                    method,
                    request_path,
                    content=content or None,
                    headers=headers,
                    timeout=timeout or self.request_timeout,
                )
        except httpx.RequestError as e:
            latency = (time.perf_counter() - started) * 1000
            self.logger.warning(f"{self.VENUE.value} {method} {path} failed", error=type(e).__name__)
            return VenueResponse(
                data=None, error=classifier.transport_error(self.VENUE, e), latency_ms=latency
            )
        latency = (time.perf_counter() - started) * 1000

        raw_text = self._scrub(response.text)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        raw = self.redact(payload) if payload is not None else raw_text

        if not response.is_success:
            code, message = None, None
            if isinstance(payload, dict):
                code, message = self._code_and_message(payload)
            self.logger.warning(
                f"{self.VENUE.value} {method} {path} returned HTTP {response.status_code}",
                venue_code=code,
            )
            return VenueResponse(
                data=None,
                error=classifier.http_error(
                    self.VENUE, response.status_code, code, message, raw_body=raw_text
                ),
                status_code=response.status_code,
                raw=raw,
                latency_ms=latency,
            )

        if not isinstance(payload, dict):
            return VenueResponse(
                data=None,
                error=classifier.malformed(
                    self.VENUE,
                    f"{self.VENUE.value} returned a non-JSON-object body",
                    http_status=response.status_code,
                    raw_body=raw_text,
                ),
                status_code=response.status_code,
                raw=raw,
                latency_ms=latency,
            )

        failure = self._api_failure(payload)
        if failure is not None:
            code, message = failure
            return VenueResponse(
                data=payload,
                error=classifier.api_error(
                    self.VENUE, code, message, raw_body=raw_text, http_status=response.status_code
                ),
                status_code=response.status_code,
                raw=raw,
                latency_ms=latency,
            )

        return VenueResponse(
            data=payload, error=None, status_code=response.status_code, raw=raw, latency_ms=latency
        )

    def _code_and_message(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        code = payload.get("code")
        message = payload.get("msg")
        return (str(code) if code is not None else None), message

    # -- operations --------------------------------------------------------

    async def place_market_order(
        self,
        symbol: str,
        side: Side,
        amount: Decimal,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        """
        Place a market order for ``amount`` base units of ``symbol``.

        Args:
            symbol: Base asset, e.g. "DOGE" (quoted in USDT)
            side: Buy or sell
            amount: Size in base units
            client_order_id: Idempotency key sent to the venue (generated if omitted)
        """
        client_order_id = client_order_id or uuid.uuid4().hex
        body = self._order_body(symbol, side, format_amount(amount), client_order_id)

        response = await self._send("POST", self.ORDER_PATH, body=body, signed=True)

        def result(success: bool, error=None, order_id=None) -> OrderResult:
            return OrderResult(
                success=success,
                venue=self.VENUE,
                side=side,
                symbol=symbol,
                amount=amount,
                client_order_id=client_order_id,
                order_id=order_id,
                error=error,
                raw_response=response.raw,
                latency_ms=response.latency_ms,
            )

        if not response.ok:
            self.logger.warning(
                f"{side.value.upper()} {symbol} on {self.VENUE.value} failed",
                kind=response.error.kind.value,
                reason=response.error.message,
            )
            return result(False, error=response.error)

        order_id = self._extract_order_id(response.data)
        if not order_id:
            error = classifier.malformed(
                self.VENUE,
                f"{self.VENUE.value} reported success without an order id",
                stage=ErrorStage.MALFORMED_SUCCESS,
                http_status=response.status_code,
                raw_body=self._scrub(json.dumps(response.raw, default=str)),
            )
            return result(False, error=error)

        self.logger.info(
            f"{side.value.upper()} {format_amount(amount)} {symbol} on {self.VENUE.value}",
            order_id=order_id,
            latency_ms=round(response.latency_ms, 1),
        )
        return result(True, order_id=str(order_id))

    async def get_available_balance(self, asset: Optional[str] = None) -> BalanceResult:
        """Fetch the available (tradeable) balance of one asset."""
        asset = (asset or self.quote_asset).upper()
        response = await self._send(
            "GET", self.BALANCE_PATH, params=self._balance_params(asset), signed=True
        )
        if not response.ok:
            return BalanceResult(
                success=False, venue=self.VENUE, asset=asset,
                error=response.error, raw_response=response.raw,
            )

        available = self._extract_balance(response.data, asset)
        if available is None:
            return BalanceResult(
                success=False,
                venue=self.VENUE,
                asset=asset,
                error=classifier.malformed(
                    self.VENUE,
                    f"{self.VENUE.value} balance response is missing account data",
                    stage=ErrorStage.MALFORMED_SUCCESS,
                    http_status=response.status_code,
                ),
                raw_response=response.raw,
            )
        return BalanceResult(
            success=True, venue=self.VENUE, asset=asset,
            available=available, raw_response=response.raw,
        )

    async def fetch_prices(self) -> PriceFeed:
        """Fetch public spot tickers and keep cheap pairs quoted in the quote asset."""
        response = await self._send(
            "GET", self.TICKERS_PATH, params=self.TICKERS_PARAMS or None,
            timeout=self.price_timeout,
        )
        if not response.ok:
            self.logger.warning(
                f"{self.VENUE.value} tickers unavailable", reason=response.error.message
            )
            return PriceFeed.unavailable(self.VENUE, response.error)

        tickers = self._extract_tickers(response.data)
        if tickers is None:
            return PriceFeed.unavailable(
                self.VENUE,
                classifier.malformed(
                    self.VENUE,
                    f"{self.VENUE.value} ticker response is missing ticker data",
                    stage=ErrorStage.MALFORMED_SUCCESS,
                ),
            )

        suffix = f"-{self.quote_asset}"
        prices: Dict[str, Decimal] = {}
        for pair, last in tickers:
            if not isinstance(pair, str) or not pair.endswith(suffix):
                continue
            try:
                price = Decimal(str(last))
            except (InvalidOperation, ValueError):
                continue
            if not price.is_finite() or not Decimal("0") < price < self.max_price:
                continue
            prices[pair[: -len(suffix)]] = price

        self.logger.debug(
            f"{self.VENUE.value} tickers fetched", tickers=len(tickers), priced=len(prices)
        )
        return PriceFeed(venue=self.VENUE, prices=prices, ticker_count=len(tickers))
