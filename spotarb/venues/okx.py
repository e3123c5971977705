"""
OKX v5 REST API client.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from spotarb.config import BotConfig, VenueSettings
from spotarb.models import Side, Venue
from spotarb.venues.base import BaseVenueClient


class OKXClient(BaseVenueClient):
    """
    Async client for OKX spot trading.

    Signed headers: OK-ACCESS-KEY, OK-ACCESS-SIGN, OK-ACCESS-TIMESTAMP and
    OK-ACCESS-PASSPHRASE (sent as configured, not signed).
    """

    VENUE = Venue.OKX
    ORDER_PATH = "/api/v5/trade/order"
    BALANCE_PATH = "/api/v5/account/balance"
    TICKERS_PATH = "/api/v5/market/tickers"
    TICKERS_PARAMS = {"instType": "SPOT"}

    SUCCESS_CODE = "0"

    @staticmethod
    def _settings_from(config: BotConfig) -> VenueSettings:
        return config.okx

    def _timestamp(self) -> str:
        # e.g. 2024-05-01T12:00:00.123Z
        now = datetime.now(timezone.utc)
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _auth_headers(self, timestamp: str, signature: str) -> Dict[str, str]:
        return {
            "OK-ACCESS-KEY": self._api_key,
            "OK-ACCESS-SIGN": signature,
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self._passphrase,
        }

    def _api_failure(self, payload: Dict[str, Any]) -> Optional[Tuple[Optional[str], Optional[str]]]:
        code = str(payload.get("code", ""))
        if code == self.SUCCESS_CODE:
            return None

        # Order rejections come back as code "1" with the reason per order
        data = payload.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            s_code = data[0].get("sCode")
            if s_code not in (None, "", self.SUCCESS_CODE):
                return str(s_code), data[0].get("sMsg") or payload.get("msg")
        return code or None, payload.get("msg")

    def _order_body(self, symbol: str, side: Side, size: str, client_order_id: str) -> Dict[str, Any]:
        return {
            "instId": self.instrument(symbol),
            "tdMode": "cash",
            "side": side.value,
            "ordType": "market",
            "sz": size,
            # Market buys default to quote-currency size; pin both sides to base units
            "tgtCcy": "base_ccy",
            "clOrdId": client_order_id,
        }

    def _extract_order_id(self, payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            return None
        return data[0].get("ordId") or None

    def _balance_params(self, asset: str) -> Dict[str, str]:
        return {"ccy": asset}

    def _extract_balance(self, payload: Dict[str, Any], asset: str) -> Optional[Decimal]:
        data = payload.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            return None
        details = data[0].get("details")
        if not isinstance(details, list):
            return None
        for entry in details:
            if isinstance(entry, dict) and entry.get("ccy") == asset:
                try:
                    return Decimal(str(entry.get("availBal") or "0"))
                except (InvalidOperation, ValueError):
                    return None
        return Decimal("0")

    def _extract_tickers(self, payload: Dict[str, Any]) -> Optional[List[Tuple[str, Any]]]:
        data = payload.get("data")
        if not isinstance(data, list):
            return None
        return [
            (ticker.get("instId"), ticker.get("last"))
            for ticker in data
            if isinstance(ticker, dict)
        ]
