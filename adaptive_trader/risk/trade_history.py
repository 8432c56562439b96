"""
Trade History
=============
Thread-safe journal of executed trades with realized P&L.
"""

from dataclasses import dataclass, field
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional
import logging
import threading
import uuid

logger = logging.getLogger(__name__)


@dataclass
class TradeRecord:
    """An executed trade."""
    instrument: str
    action: str  # 'BUY' or 'SELL'
    amount: float
    price: float
    timestamp: datetime
    mode: str
    order_id: str = ""
    confidence: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    realized_pnl: float = 0.0
    trade_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    @property
    def value(self) -> float:
        return self.amount * self.price

    def to_dict(self) -> dict:
        return {
            'trade_id': self.trade_id,
            'instrument': self.instrument,
            'action': self.action,
            'amount': self.amount,
            'price': self.price,
            'value': self.value,
            'timestamp': self.timestamp.isoformat(),
            'mode': self.mode,
            'order_id': self.order_id,
            'confidence': self.confidence,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'realized_pnl': self.realized_pnl
        }


@dataclass
class _CostBasis:
    quantity: float = 0.0
    avg_cost: float = 0.0


class TradeHistory:
    """
    Executed trades plus a per-instrument average-cost position.

    Buys raise the average cost; sells realize (price - avg_cost) * quantity
    on the held amount. Only trades the risk checks can still see (since
    midnight or within the last hour) are kept for scanning; the most
    recent `max_recent` stay available for display.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now, max_recent: int = 500):
        self.clock = clock
        self._trades: List[TradeRecord] = []
        self._recent: Deque[TradeRecord] = deque(maxlen=max_recent)
        self._total = 0
        self._basis: Dict[str, _CostBasis] = {}
        self._lock = threading.Lock()

    def record(self, trade: TradeRecord) -> TradeRecord:
        """Append a trade, filling in its realized P&L."""
        with self._lock:
            basis = self._basis.setdefault(trade.instrument, _CostBasis())

            if trade.action == 'BUY':
                new_qty = basis.quantity + trade.amount
                if new_qty > 0:
                    basis.avg_cost = (basis.avg_cost * basis.quantity + trade.price * trade.amount) / new_qty
                basis.quantity = new_qty
                trade.realized_pnl = 0.0
            else:
                closed = min(trade.amount, basis.quantity)
                trade.realized_pnl = (trade.price - basis.avg_cost) * closed if closed > 0 else 0.0
                basis.quantity -= closed
                if basis.quantity <= 0:
                    basis.quantity = 0.0
                    basis.avg_cost = 0.0

            self._trades.append(trade)
            self._recent.append(trade)
            self._total += 1
            self._prune(self.clock())

        if trade.realized_pnl:
            logger.info(f"Closed {trade.amount} {trade.instrument}. Realized P&L: {trade.realized_pnl:,.4f}")
        return trade

    def _prune(self, now: datetime):
        """Drop trades older than both local midnight and one hour back; caller holds the lock."""
        cutoff = min(_midnight(now), now - timedelta(hours=1))
        if self._trades and min(t.timestamp for t in self._trades) < cutoff:
            self._trades = [t for t in self._trades if t.timestamp >= cutoff]

    def daily_profit_loss(self, now: datetime = None) -> Optional[float]:
        """Realized P&L since local midnight, or None when nothing traded today."""
        now = now or self.clock()
        midnight = _midnight(now)
        with self._lock:
            today = [t for t in self._trades if t.timestamp >= midnight]
        if not today:
            return None
        return sum(t.realized_pnl for t in today)

    def count_since(self, cutoff: datetime) -> int:
        with self._lock:
            return sum(1 for t in self._trades if t.timestamp >= cutoff)

    def position(self, instrument: str) -> float:
        with self._lock:
            basis = self._basis.get(instrument)
            return basis.quantity if basis else 0.0

    def recent(self, limit: int = 50) -> List[TradeRecord]:
        with self._lock:
            return list(self._recent)[-limit:]

    def __len__(self) -> int:
        """Total trades recorded, including pruned ones."""
        with self._lock:
            return self._total


def _midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
