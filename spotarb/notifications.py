"""
Notification system for trade alerts.
Supports Discord webhooks and Telegram bots.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx

from spotarb.config import MonitoringConfig, get_config
from spotarb.logger import get_logger
from spotarb.models import Trade, TradeStatus, decimal_str


logger = get_logger("notifications")


class NotificationService:
    """
    Send notifications about trading activity.

    Supports:
    - Discord webhooks
    - Telegram bots

    Delivery failures are logged and reported as False, never raised.
    """

    def __init__(
        self,
        monitoring: Optional[MonitoringConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = monitoring or get_config().monitoring
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0, transport=self._transport)

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_enabled(self) -> bool:
        return self.config.enable_notifications

    async def send_discord(self, message: str, embed: Optional[dict] = None) -> bool:
        """Send message to Discord webhook."""
        webhook_url = self.config.discord_webhook_url
        if not webhook_url:
            return False
        await self.connect()

        payload = {"content": message}
        if embed:
            payload["embeds"] = [embed]
        try:
            response = await self._client.post(webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Discord notification failed: {type(e).__name__}")
            return False
        return response.status_code in (200, 204)

    async def send_telegram(self, message: str) -> bool:
        """Send message to Telegram."""
        bot_token = self.config.telegram_bot_token
        chat_id = self.config.telegram_chat_id
        if not bot_token or not chat_id:
            return False
        await self.connect()

        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": "HTML",
        }
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            # The URL embeds the bot token; log only the exception type
            logger.error(f"Telegram notification failed: {type(e).__name__}")
            return False
        return response.status_code == 200

    async def _broadcast(self, title: str, lines: list, color: int, fields: list) -> None:
        embed = {
            "title": title,
            "color": color,
            "fields": fields,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        text = f"<b>{title}</b>\n" + "\n".join(lines)
        await asyncio.gather(
            self.send_discord("", embed=embed),
            self.send_telegram(text),
        )

    async def notify_unhedged_inventory(self, trade: Trade) -> None:
        """Alert that a buy filled but the matching sell did not."""
        if not self.is_enabled:
            return

        sell_error = trade.errors.get("sell")
        reason = sell_error.message if sell_error else "unknown"
        await self._broadcast(
            title="🚨 Unhedged inventory",
            lines=[
                f"Trade: {trade.id}",
                f"Holding {decimal_str(trade.amount)} {trade.symbol} on {trade.buy_venue.value}",
                f"Sell on {trade.sell_venue.value} failed: {reason}",
            ],
            color=0xFF0000,
            fields=[
                {"name": "Trade", "value": trade.id, "inline": False},
                {"name": "Symbol", "value": trade.symbol, "inline": True},
                {"name": "Amount", "value": decimal_str(trade.amount), "inline": True},
                {"name": "Held on", "value": trade.buy_venue.value, "inline": True},
                {"name": "Sell error", "value": reason[:200], "inline": False},
            ],
        )

    async def notify_trade_result(self, trade: Trade) -> None:
        """Notify about a finished trade."""
        if not self.is_enabled:
            return

        completed = trade.status is TradeStatus.COMPLETED
        emoji = "🟢" if completed else "🔴"
        await self._broadcast(
            title=f"{emoji} Trade {trade.status.value}",
            lines=[
                f"{trade.symbol}: buy {trade.buy_venue.value} @ {decimal_str(trade.buy_price)}"
                f" → sell {trade.sell_venue.value} @ {decimal_str(trade.sell_price)}",
                f"Amount: {decimal_str(trade.amount)}",
                f"Expected net: ${trade.net_profit:.4f}",
            ],
            color=0x00FF00 if completed else 0xFF9900,
            fields=[
                {"name": "Symbol", "value": trade.symbol, "inline": True},
                {"name": "Amount", "value": decimal_str(trade.amount), "inline": True},
                {"name": "Expected net", "value": f"${trade.net_profit:.4f}", "inline": True},
            ],
        )

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
