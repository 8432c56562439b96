"""
Risk Gate Module
================
Pre-trade risk checks, position sizing and protective price levels.

Risk rules are enforced algorithmically. Every check fails closed: bad
input or a failing history query is an explicit rejection, never an
implicit approval.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
import logging
import math

from ..config import RiskConfig
from ..exceptions import GateRejected
from ..signals.signal_scorer import Action, TradingDecision
from .trade_history import TradeHistory

logger = logging.getLogger(__name__)

# Size-tiered confidence minimums: (amount above, minimum confidence)
CONFIDENCE_TIERS = [(0.5, 0.8), (0.1, 0.7)]
BASE_MIN_CONFIDENCE = 0.6


class RiskCheck(Enum):
    """Individual gate checks, in evaluation order."""
    DAILY_LOSS = "daily_loss"
    POSITION_SIZE = "position_size"
    CONFIDENCE = "confidence"
    FREQUENCY = "frequency"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class GateResult:
    """Verdict of the risk gate."""
    approved: bool
    failed_check: Optional[RiskCheck] = None
    message: str = ""
    amount: float = 0.0  # Sized amount on approval

    @classmethod
    def approve(cls, amount: float) -> 'GateResult':
        return cls(True, None, "approved", amount)

    @classmethod
    def reject(cls, check: RiskCheck, message: str) -> 'GateResult':
        return cls(False, check, message, 0.0)

    def to_dict(self) -> dict:
        return {
            'approved': self.approved,
            'failed_check': self.failed_check.value if self.failed_check else None,
            'message': self.message,
            'amount': self.amount
        }


@dataclass(frozen=True)
class RiskStatus:
    """Snapshot of the gate's account-level checks."""
    daily_loss_within_limit: bool
    daily_profit_loss: float
    daily_profit_loss_pct: float
    trading_frequency_ok: bool

    @property
    def overall_acceptable(self) -> bool:
        return self.daily_loss_within_limit and self.trading_frequency_ok

    def to_dict(self) -> dict:
        return {
            'daily_loss_within_limit': self.daily_loss_within_limit,
            'daily_profit_loss': self.daily_profit_loss,
            'daily_profit_loss_pct': self.daily_profit_loss_pct,
            'trading_frequency_ok': self.trading_frequency_ok,
            'overall_acceptable': self.overall_acceptable
        }


def _valid_number(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


class RiskGate:
    """
    Approves or rejects trading decisions.

    Checks, in order: daily realized loss, position size, size-tiered
    confidence, trailing-hour trade frequency.
    """

    def __init__(self, config: RiskConfig = None, history: TradeHistory = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or RiskConfig()
        self.history = history if history is not None else TradeHistory(clock)
        self.clock = clock

    def check_trade(self, decision: TradingDecision, balance: float) -> GateResult:
        """Run every check and report the first one that fails."""
        if decision is None or not _valid_number(balance) or balance < 0:
            logger.error(f"Risk gate received invalid input: decision={decision}, balance={balance}")
            return GateResult.reject(RiskCheck.INTERNAL_ERROR, "invalid decision or balance")
        if not _valid_number(decision.amount) or not _valid_number(decision.confidence):
            logger.error(f"Risk gate received non-numeric decision: {decision}")
            return GateResult.reject(RiskCheck.INTERNAL_ERROR, "invalid decision amount or confidence")

        try:
            if not self._daily_loss_ok(balance):
                limit = -balance * self.config.max_daily_loss_pct / 100
                return GateResult.reject(RiskCheck.DAILY_LOSS, f"daily loss limit {limit:.2f} reached")

            if not self._position_size_ok(decision.amount, balance):
                cap = balance * self.config.max_position_size_pct / 100
                return GateResult.reject(
                    RiskCheck.POSITION_SIZE, f"amount {decision.amount} exceeds cap {cap:.8f}"
                )

            minimum = self.min_confidence_for(decision.amount)
            if decision.confidence < minimum:
                return GateResult.reject(
                    RiskCheck.CONFIDENCE,
                    f"confidence {decision.confidence:.2f} below {minimum:.2f} for amount {decision.amount}"
                )

            if not self._frequency_ok():
                return GateResult.reject(
                    RiskCheck.FREQUENCY,
                    f"{self.config.max_trades_per_hour} trades already executed in the last hour"
                )
        except Exception as e:
            logger.exception(f"Error in risk gate check: {e}")
            return GateResult.reject(RiskCheck.INTERNAL_ERROR, str(e))

        return GateResult.approve(self.calculate_position_size(decision.amount, balance))

    def is_trade_allowed(self, decision: TradingDecision, balance: float) -> bool:
        return self.check_trade(decision, balance).approved

    def enforce(self, decision: TradingDecision, balance: float) -> float:
        """Return the approved amount or raise GateRejected."""
        result = self.check_trade(decision, balance)
        if not result.approved:
            raise GateRejected(result.failed_check, result.message)
        return result.amount

    @staticmethod
    def min_confidence_for(amount: float) -> float:
        for threshold, minimum in CONFIDENCE_TIERS:
            if amount > threshold:
                return minimum
        return BASE_MIN_CONFIDENCE

    def calculate_position_size(self, requested: float, balance: float) -> float:
        """
        Clamp a requested amount to the position cap.

        Returns exactly 0.0 when the result is below the minimum trade size
        or the inputs are invalid.
        """
        if not _valid_number(requested) or not _valid_number(balance) or requested < 0 or balance < 0:
            logger.error(f"Invalid sizing input: requested={requested}, balance={balance}")
            return 0.0

        cap = balance * self.config.max_position_size_pct / 100
        amount = min(requested, cap)

        if amount < self.config.min_trade_size:
            return 0.0

        logger.debug(f"Position size: requested={requested}, max={cap}, final={amount}")
        return round(amount, 8)

    def calculate_stop_loss(self, entry_price: float, action: Action) -> float:
        pct = self.config.stop_loss_pct / 100
        if action == Action.BUY:
            return entry_price * (1 - pct)
        return entry_price * (1 + pct)

    def calculate_take_profit(self, entry_price: float, action: Action) -> float:
        pct = self.config.take_profit_pct / 100
        if action == Action.BUY:
            return entry_price * (1 + pct)
        return entry_price * (1 - pct)

    def calculate_risk_score(self, decision: TradingDecision, balance: float) -> float:
        """
        Heuristic trade risk in [0, 100].

        Position share of balance contributes up to 40 points, missing
        confidence up to 30, market volatility a fixed 15. Invalid input
        scores 100.
        """
        if decision is None or not _valid_number(balance) or balance <= 0:
            return 100.0

        position_risk = min(40.0, decision.amount / balance * 40)
        confidence_risk = (1 - decision.confidence) * 30
        volatility_risk = 15.0
        return round(position_risk + confidence_risk + volatility_risk, 2)

    def get_risk_status(self, balance: float) -> RiskStatus:
        try:
            if not _valid_number(balance) or balance <= 0:
                raise ValueError(f"invalid balance {balance}")

            daily_pnl = self.history.daily_profit_loss(self.clock()) or 0.0
            return RiskStatus(
                daily_loss_within_limit=self._daily_loss_ok(balance),
                daily_profit_loss=daily_pnl,
                daily_profit_loss_pct=round(daily_pnl / balance * 100, 4),
                trading_frequency_ok=self._frequency_ok()
            )
        except Exception as e:
            logger.error(f"Error getting risk status: {e}")
            return RiskStatus(False, 0.0, 0.0, False)

    def _daily_loss_ok(self, balance: float) -> bool:
        daily_pnl = self.history.daily_profit_loss(self.clock())
        if daily_pnl is None:
            return True  # No trades today
        limit = -balance * self.config.max_daily_loss_pct / 100
        within = daily_pnl >= limit
        if not within:
            logger.warning(f"Daily loss limit exceeded: {daily_pnl:.2f} < {limit:.2f}")
        return within

    def _position_size_ok(self, amount: float, balance: float) -> bool:
        return amount <= balance * self.config.max_position_size_pct / 100

    def _frequency_ok(self) -> bool:
        cutoff = self.clock() - timedelta(hours=1)
        recent = self.history.count_since(cutoff)
        if recent >= self.config.max_trades_per_hour:
            logger.warning(f"Trading frequency limit reached: {recent} trades in the last hour")
            return False
        return True
