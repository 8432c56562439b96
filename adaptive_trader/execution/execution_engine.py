"""
Execution Module
================
Exchange client integration and trade execution in both modes.

Production orders go through an ExchangeClient; shadow orders are filled
against the VirtualLedger at the snapshot price.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple
import logging
import threading
import uuid

from ..concurrency import CollaboratorPool
from ..config import TradingMode
from ..ledger.virtual_ledger import VirtualLedger, split_pair
from ..signals.signal_scorer import Action

logger = logging.getLogger(__name__)

VIRTUAL_CONFIDENCE = 0.9
REAL_CONFIDENCE = 0.8


@dataclass
class OrderResult:
    """Outcome of an execution attempt."""
    success: bool
    order_id: Optional[str]
    message: str
    confidence: float = 0.0
    instrument: str = ""
    action: str = ""
    amount: float = 0.0
    price: float = 0.0
    mode: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def failure(cls, message: str, **kwargs) -> 'OrderResult':
        return cls(False, None, message, 0.0, **kwargs)

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'order_id': self.order_id,
            'message': self.message,
            'confidence': self.confidence,
            'instrument': self.instrument,
            'action': self.action,
            'amount': self.amount,
            'price': self.price,
            'mode': self.mode,
            'timestamp': self.timestamp.isoformat()
        }


class ExchangeClient(ABC):
    """Abstract base class for exchange integration."""

    @abstractmethod
    def connect(self) -> bool:
        """Establish connection to the exchange."""
        pass

    @abstractmethod
    def disconnect(self):
        """Disconnect from the exchange."""
        pass

    @abstractmethod
    def place_order(self, instrument: str, side: str, amount: float) -> Tuple[bool, str]:
        """Submit a market order. Returns (success, order id or error message)."""
        pass

    @abstractmethod
    def get_balance(self, currency: str) -> float:
        """Available balance of a currency."""
        pass


class MockExchange(ExchangeClient):
    """
    Paper exchange for testing production mode.

    Fills market orders immediately at the last set price plus slippage.
    """

    def __init__(self, balances: Dict[str, float] = None, slippage: float = 0.001):
        self.balances: Dict[str, float] = dict(balances or {'USDT': 1000.0})
        self.slippage = slippage
        self.connected = False
        self.market_prices: Dict[str, float] = {}
        self.orders: List[dict] = []
        self._lock = threading.Lock()

    def connect(self) -> bool:
        self.connected = True
        logger.info("MockExchange connected")
        return True

    def disconnect(self):
        self.connected = False
        logger.info("MockExchange disconnected")

    def set_market_prices(self, prices: Dict[str, float]):
        """Update simulated market prices."""
        with self._lock:
            self.market_prices.update(prices)

    def place_order(self, instrument: str, side: str, amount: float) -> Tuple[bool, str]:
        if not self.connected:
            return False, "Not connected to exchange"
        if amount <= 0:
            return False, "Invalid amount"

        base, quote = split_pair(instrument)

        with self._lock:
            if instrument not in self.market_prices:
                return False, f"No market price for {instrument}"

            market_price = self.market_prices[instrument]
            is_buy = side.upper() == 'BUY'
            fill_price = market_price * (1 + self.slippage) if is_buy else market_price * (1 - self.slippage)
            total = amount * fill_price

            if is_buy:
                cash = self.balances.get(quote, 0.0)
                if total > cash:
                    return False, f"Insufficient {quote}: {cash:,.2f} < {total:,.2f}"
                self.balances[quote] = cash - total
                self.balances[base] = self.balances.get(base, 0.0) + amount
            else:
                held = self.balances.get(base, 0.0)
                if amount > held:
                    return False, f"Insufficient {base}: {held} < {amount}"
                self.balances[base] = held - amount
                self.balances[quote] = self.balances.get(quote, 0.0) + total

            order_id = str(uuid.uuid4())
            self.orders.append({
                'order_id': order_id,
                'instrument': instrument,
                'side': side.upper(),
                'amount': amount,
                'price': fill_price
            })

        logger.info(f"Order filled: {instrument} {side.upper()} {amount} @ {fill_price:.2f}")
        return True, order_id

    def get_balance(self, currency: str) -> float:
        with self._lock:
            return self.balances.get(currency, 0.0)


class ExecutionEngine:
    """
    Routes approved trades to the exchange or the virtual ledger.

    Exchange calls go through the collaborator pool, so a hung exchange
    surfaces as ExternalExecutionError instead of stalling the cycle.
    """

    def __init__(self, exchange: ExchangeClient = None, pool: CollaboratorPool = None,
                 history_size: int = 200):
        self.exchange = exchange or MockExchange()
        self.pool = pool or CollaboratorPool()
        self._orders: Deque[OrderResult] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def initialize(self) -> bool:
        success = self.exchange.connect()
        if success:
            logger.info("ExecutionEngine initialized")
        else:
            logger.warning("ExecutionEngine started in limited mode (exchange connection failed)")
        return success

    def shutdown(self):
        self.exchange.disconnect()
        logger.info("ExecutionEngine shutdown")

    def execute(self, instrument: str, action: Action, amount: float, price: float,
                mode: TradingMode, ledger: Optional[VirtualLedger] = None) -> OrderResult:
        """
        Execute one trade.

        Raises:
            ExternalExecutionError: the exchange call failed or timed out
            InternalInvariantViolation: the virtual ledger detected corruption
        """
        details = dict(instrument=instrument, action=action.value, amount=amount,
                       price=price, mode=mode.value)

        if mode == TradingMode.SHADOW:
            result = self._execute_virtual(ledger, details)
        else:
            result = self._execute_real(details)

        with self._lock:
            self._orders.append(result)
        return result

    def _execute_virtual(self, ledger: Optional[VirtualLedger], details: dict) -> OrderResult:
        if ledger is None:
            return OrderResult.failure("Virtual ledger not initialised", **details)

        if not ledger.apply_trade(details['instrument'], details['action'],
                                  details['amount'], details['price']):
            return OrderResult.failure("Insufficient virtual balance", **details)

        order_id = f"VIRTUAL_{str(uuid.uuid4())[:8]}"
        return OrderResult(True, order_id, "Virtual order executed", VIRTUAL_CONFIDENCE, **details)

    def _execute_real(self, details: dict) -> OrderResult:
        success, message = self.pool.call(
            f"place_order {details['instrument']}",
            self.exchange.place_order,
            details['instrument'], details['action'], details['amount']
        )
        if not success:
            logger.warning(f"Order rejected by exchange for {details['instrument']}: {message}")
            return OrderResult.failure(message, **details)
        return OrderResult(True, message, "Order placed", REAL_CONFIDENCE, **details)

    def update_market_prices(self, prices: Dict[str, float]):
        """Update market prices (for mock exchange)."""
        if isinstance(self.exchange, MockExchange):
            self.exchange.set_market_prices(prices)

    def get_balance(self, currency: str) -> float:
        """Exchange balance, fetched through the collaborator pool."""
        return self.pool.call(f"get_balance {currency}", self.exchange.get_balance, currency)

    def recent_orders(self, limit: int = 50) -> List[OrderResult]:
        with self._lock:
            return list(self._orders)[-limit:]
