"""
Trade history storage.

The executor writes a pending record before any venue call and updates it
once the trade reaches its terminal state. Two backends: an in-memory store
(default, lost on exit) and SQLite via SQLAlchemy.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import Boolean, Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from spotarb.config import get_config
from spotarb.logger import get_logger
from spotarb.models import ErrorDescriptor, Trade, TradeStatus, Venue, decimal_str


logger = get_logger("database")

Base = declarative_base()


class DuplicateTradeError(ValueError):
    """Raised when a trade id is recorded twice."""


class TradeStore(ABC):
    """Persistence interface for Trade records."""

    @abstractmethod
    def append(self, trade: Trade) -> None:
        """Record a new trade. Ids must be unique."""
        pass

    @abstractmethod
    def update(self, trade: Trade) -> None:
        """Overwrite the stored state of an existing trade."""
        pass

    @abstractmethod
    def get(self, trade_id: str) -> Optional[Trade]:
        pass

    @abstractmethod
    def list(self, limit: int = 100) -> List[Trade]:
        """Most recent trades first."""
        pass

    def summary(self) -> dict:
        """Counts by outcome plus the expected profit of completed trades."""
        trades = self.list(limit=0)
        completed = [t for t in trades if t.status is TradeStatus.COMPLETED]
        return {
            "total_trades": len(trades),
            "completed": len(completed),
            "failed": len([t for t in trades if t.status is TradeStatus.FAILED]),
            "pending": len([t for t in trades if t.status is TradeStatus.PENDING]),
            "at_risk": len([t for t in trades if t.at_risk]),
            "expected_net_profit": sum((t.net_profit for t in completed), Decimal("0")),
        }


class InMemoryTradeStore(TradeStore):
    """Process-local trade store."""

    def __init__(self):
        self._trades: Dict[str, Trade] = {}
        self._lock = threading.Lock()

    def append(self, trade: Trade) -> None:
        with self._lock:
            if trade.id in self._trades:
                raise DuplicateTradeError(f"Trade {trade.id} already recorded")
            self._trades[trade.id] = trade

    def update(self, trade: Trade) -> None:
        with self._lock:
            if trade.id not in self._trades:
                raise KeyError(trade.id)
            self._trades[trade.id] = trade

    def get(self, trade_id: str) -> Optional[Trade]:
        return self._trades.get(trade_id)

    def list(self, limit: int = 100) -> List[Trade]:
        trades = sorted(self._trades.values(), key=lambda t: t.created_at, reverse=True)
        return trades[:limit] if limit else trades

    def __len__(self) -> int:
        return len(self._trades)


class TradeTable(Base):
    """SQLAlchemy model for arbitrage trades."""

    __tablename__ = "trades"

    id = Column(String, primary_key=True)
    symbol = Column(String, index=True)
    buy_venue = Column(String)
    sell_venue = Column(String)

    # Decimals stored as text to keep exact precision
    buy_price = Column(String)
    sell_price = Column(String)
    amount = Column(String)
    requested_amount = Column(String)
    buy_fee = Column(String)
    sell_fee = Column(String)
    net_profit = Column(String)

    status = Column(String, index=True)
    buy_executed = Column(Boolean, default=False)
    sell_executed = Column(Boolean, default=False)
    buy_order_id = Column(String, nullable=True)
    sell_order_id = Column(String, nullable=True)

    errors_json = Column(Text, nullable=True)
    details_json = Column(Text, nullable=True)

    created_at = Column(DateTime, index=True)
    completed_at = Column(DateTime, nullable=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqliteTradeStore(TradeStore):
    """SQLite-backed trade store."""

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = get_config().database.database_path
        self.db_path = Path(db_path)

        if str(self.db_path) == ":memory:":
            db_url = "sqlite://"
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{self.db_path}"

        self.engine = create_engine(db_url, echo=False)
        self.Session = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)

        logger.info(f"Trade store initialized at {self.db_path}")

    @staticmethod
    def _fill(row: TradeTable, trade: Trade) -> None:
        row.symbol = trade.symbol
        row.buy_venue = trade.buy_venue.value
        row.sell_venue = trade.sell_venue.value
        row.buy_price = decimal_str(trade.buy_price)
        row.sell_price = decimal_str(trade.sell_price)
        row.amount = decimal_str(trade.amount)
        row.requested_amount = decimal_str(trade.requested_amount)
        row.buy_fee = decimal_str(trade.buy_fee)
        row.sell_fee = decimal_str(trade.sell_fee)
        row.net_profit = decimal_str(trade.net_profit)
        row.status = trade.status.value
        row.buy_executed = trade.buy_executed
        row.sell_executed = trade.sell_executed
        row.buy_order_id = trade.buy_order_id
        row.sell_order_id = trade.sell_order_id
        row.errors_json = json.dumps({leg: e.to_dict() for leg, e in trade.errors.items()})
        row.details_json = json.dumps(trade.details, default=str)
        row.created_at = trade.created_at
        row.completed_at = trade.completed_at

    @staticmethod
    def _to_trade(row: TradeTable) -> Trade:
        errors = json.loads(row.errors_json) if row.errors_json else {}
        details = json.loads(row.details_json) if row.details_json else {"buy": None, "sell": None}
        return Trade(
            id=row.id,
            symbol=row.symbol,
            buy_venue=Venue.parse(row.buy_venue),
            sell_venue=Venue.parse(row.sell_venue),
            buy_price=Decimal(row.buy_price),
            sell_price=Decimal(row.sell_price),
            amount=Decimal(row.amount),
            requested_amount=Decimal(row.requested_amount),
            buy_fee=Decimal(row.buy_fee),
            sell_fee=Decimal(row.sell_fee),
            net_profit=Decimal(row.net_profit),
            buy_executed=bool(row.buy_executed),
            sell_executed=bool(row.sell_executed),
            buy_order_id=row.buy_order_id,
            sell_order_id=row.sell_order_id,
            errors={leg: ErrorDescriptor.from_dict(e) for leg, e in errors.items()},
            details=details,
            created_at=_as_utc(row.created_at),
            completed_at=_as_utc(row.completed_at),
            status=TradeStatus(row.status),
        )

    def append(self, trade: Trade) -> None:
        with self.Session() as session:
            if session.get(TradeTable, trade.id) is not None:
                raise DuplicateTradeError(f"Trade {trade.id} already recorded")
            row = TradeTable(id=trade.id)
            self._fill(row, trade)
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise DuplicateTradeError(f"Trade {trade.id} already recorded")
        logger.debug(f"Trade recorded: {trade.id}")

    def update(self, trade: Trade) -> None:
        with self.Session() as session:
            row = session.get(TradeTable, trade.id)
            if row is None:
                raise KeyError(trade.id)
            self._fill(row, trade)
            session.commit()

    def get(self, trade_id: str) -> Optional[Trade]:
        with self.Session() as session:
            row = session.get(TradeTable, trade_id)
            return self._to_trade(row) if row else None

    def list(self, limit: int = 100) -> List[Trade]:
        with self.Session() as session:
            query = session.query(TradeTable).order_by(TradeTable.created_at.desc())
            if limit:
                query = query.limit(limit)
            return [self._to_trade(row) for row in query.all()]


# Global store instance
_store: Optional[TradeStore] = None


def get_trade_store() -> TradeStore:
    """Get or create the global trade store configured by TRADE_STORE."""
    global _store
    if _store is None:
        config = get_config()
        if config.database.trade_store == "sqlite":
            _store = SqliteTradeStore(config.database.database_path)
        else:
            _store = InMemoryTradeStore()
    return _store
