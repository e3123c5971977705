"""
KuCoin v1 REST API client.
"""

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from spotarb.config import BotConfig, VenueSettings
from spotarb.models import Side, Venue
from spotarb.venues.base import BaseVenueClient


class KuCoinClient(BaseVenueClient):
    """
    Async client for KuCoin spot trading (API key version 2).

    The passphrase header carries the passphrase HMAC-signed with the
    secret, not the passphrase itself.
    """

    VENUE = Venue.KUCOIN
    ORDER_PATH = "/api/v1/orders"
    BALANCE_PATH = "/api/v1/accounts"
    TICKERS_PATH = "/api/v1/market/allTickers"

    SUCCESS_CODE = "200000"
    KEY_VERSION = "2"

    @staticmethod
    def _settings_from(config: BotConfig) -> VenueSettings:
        return config.kucoin

    def _timestamp(self) -> str:
        return str(int(time.time() * 1000))

    def _auth_headers(self, timestamp: str, signature: str) -> Dict[str, str]:
        return {
            "KC-API-KEY": self._api_key,
            "KC-API-SIGN": signature,
            "KC-API-TIMESTAMP": timestamp,
            "KC-API-PASSPHRASE": self._signer.sign_passphrase(self._passphrase),
            "KC-API-KEY-VERSION": self.KEY_VERSION,
        }

    def _api_failure(self, payload: Dict[str, Any]) -> Optional[Tuple[Optional[str], Optional[str]]]:
        code = str(payload.get("code", ""))
        if code == self.SUCCESS_CODE:
            return None
        return code or None, payload.get("msg")

    def _order_body(self, symbol: str, side: Side, size: str, client_order_id: str) -> Dict[str, Any]:
        return {
            "clientOid": client_order_id,
            "symbol": self.instrument(symbol),
            "side": side.value,
            "type": "market",
            "size": size,
        }

    def _extract_order_id(self, payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        return data.get("orderId") or None

    def _balance_params(self, asset: str) -> Dict[str, str]:
        return {"currency": asset, "type": "trade"}

    def _extract_balance(self, payload: Dict[str, Any], asset: str) -> Optional[Decimal]:
        data = payload.get("data")
        if not isinstance(data, list):
            return None
        for account in data:
            if (
                isinstance(account, dict)
                and account.get("currency") == asset
                and account.get("type") == "trade"
            ):
                try:
                    return Decimal(str(account.get("available") or "0"))
                except (InvalidOperation, ValueError):
                    return None
        return Decimal("0")

    def _extract_tickers(self, payload: Dict[str, Any]) -> Optional[List[Tuple[str, Any]]]:
        data = payload.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("ticker"), list):
            return None
        return [
            (ticker.get("symbol"), ticker.get("last") or ticker.get("price") or ticker.get("close"))
            for ticker in data["ticker"]
            if isinstance(ticker, dict)
        ]
