"""
Structured logging configuration for the Spot Arbitrage Bot.
Uses structlog for rich, structured logging output.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from spotarb.config import get_config


# Rich console for pretty output
console = Console()


def add_timestamp(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_component(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Ensure component is present in log events."""
    if "component" not in event_dict:
        event_dict["component"] = "main"
    return event_dict


def stringify_decimals(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Render Decimal values as plain strings so JSON output keeps precision."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = format(value, "f")
    return event_dict


def setup_logging() -> None:
    """Configure structured logging for the application."""
    config = get_config()
    log_level = getattr(logging, config.monitoring.log_level.upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_time=True,
                show_path=False,
            )
        ],
    )

    # Reduce noise from third-party libraries. httpx logs full request URLs
    # at INFO, keep it quiet.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        add_timestamp,
        add_component,
        stringify_decimals,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.development.debug_mode:
        # Pretty console output for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        # JSON output for production
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to a specific component."""
    return structlog.get_logger().bind(component=component)


class TradeLogger:
    """Specialized logger for scan and trade activity."""

    def __init__(self):
        self.logger = get_logger("trades")

    def log_opportunities_scanned(
        self,
        count: int,
        okx_available: bool,
        kucoin_available: bool,
        best_symbol: Optional[str] = None,
        best_profit_percent: Optional[Decimal] = None,
    ) -> None:
        """Log the outcome of one scan."""
        self.logger.info(
            "opportunities_scanned",
            count=count,
            okx_available=okx_available,
            kucoin_available=kucoin_available,
            best_symbol=best_symbol,
            best_profit_percent=(
                f"{best_profit_percent:.3f}%" if best_profit_percent is not None else None
            ),
        )

    def log_trade_started(
        self,
        trade_id: str,
        symbol: str,
        buy_venue: str,
        sell_venue: str,
        amount: Decimal,
    ) -> None:
        """Log that a trade was recorded as pending."""
        self.logger.info(
            "🚀 trade_started",
            trade_id=trade_id,
            symbol=symbol,
            buy_venue=buy_venue,
            sell_venue=sell_venue,
            amount=amount,
        )

    def log_leg_result(
        self,
        trade_id: str,
        side: str,
        venue: str,
        success: bool,
        order_id: Optional[str] = None,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
        latency_ms: Optional[float] = None,
    ) -> None:
        """Log the outcome of one order leg."""
        log = self.logger.info if success else self.logger.warning
        log(
            "leg_result",
            trade_id=trade_id,
            side=side,
            venue=venue,
            success=success,
            order_id=order_id,
            error_kind=error_kind,
            error_message=error_message,
            latency_ms=round(latency_ms, 1) if latency_ms is not None else None,
        )

    def log_trade_finished(
        self,
        trade_id: str,
        status: str,
        buy_executed: bool,
        sell_executed: bool,
        net_profit: Decimal,
    ) -> None:
        """Log the terminal state of a trade."""
        emoji = "✅" if status == "completed" else "❌"
        self.logger.info(
            f"{emoji} trade_finished",
            trade_id=trade_id,
            status=status,
            buy_executed=buy_executed,
            sell_executed=sell_executed,
            net_profit=net_profit,
        )

    def log_unhedged_inventory(
        self,
        trade_id: str,
        symbol: str,
        venue: str,
        amount: Decimal,
        reason: str,
    ) -> None:
        """Log a bought-but-not-sold position that needs manual attention."""
        self.logger.error(
            "🚨 unhedged_inventory",
            trade_id=trade_id,
            symbol=symbol,
            venue=venue,
            amount=amount,
            reason=reason,
        )


# Global logger instance
trade_logger = TradeLogger()
