"""
Signal Scorer Module
====================
Turns an indicator snapshot into a directional prediction and a decision.

Adaptive path: each fired sub-signal contributes its learned weight to an
uptrend or downtrend score; the larger score wins and a tie falls back to
the price's position relative to the middle Bollinger band.

Cold-start path (no learned parameters): fixed 30/70 RSI thresholds and a
priority ladder of strong/moderate buy/sell rules.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
import logging

from ..config import ScoringConfig
from ..data.market_data import IndicatorSnapshot
from ..learning.parameters import LearningParameters
from ..learning.prediction_ledger import PredictionRecord

logger = logging.getLogger(__name__)

DEFAULT_OVERSOLD = 30.0
DEFAULT_OVERBOUGHT = 70.0


class Action(Enum):
    """Trade actions."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class TradingDecision:
    """Immutable result of scoring one snapshot."""
    action: Action
    amount: float
    confidence: float  # 0 to 1
    reason: str
    should_trade: bool

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"amount must be non-negative, got {self.amount}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @classmethod
    def no_trade(cls, reason: str, confidence: float = 0.0) -> 'TradingDecision':
        return cls(Action.HOLD, 0.0, confidence, reason, False)

    @classmethod
    def buy(cls, amount: float, confidence: float, reason: str) -> 'TradingDecision':
        return cls(Action.BUY, amount, confidence, reason, True)

    @classmethod
    def sell(cls, amount: float, confidence: float, reason: str) -> 'TradingDecision':
        return cls(Action.SELL, amount, confidence, reason, True)

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'amount': self.amount,
            'confidence': self.confidence,
            'reason': self.reason,
            'should_trade': self.should_trade
        }


@dataclass(frozen=True)
class SubSignals:
    """Boolean sub-signals derived from a snapshot."""
    rsi_oversold: bool
    rsi_overbought: bool
    macd_positive: bool
    price_below_lower: bool
    price_above_upper: bool
    price_above_middle: bool

    @classmethod
    def from_snapshot(cls, snapshot: IndicatorSnapshot, oversold: float,
                      overbought: float) -> 'SubSignals':
        return cls(
            rsi_oversold=snapshot.rsi < oversold,
            rsi_overbought=snapshot.rsi > overbought,
            macd_positive=snapshot.macd > 0,
            price_below_lower=snapshot.price_below_lower,
            price_above_upper=snapshot.price_above_upper,
            price_above_middle=snapshot.price_above_middle
        )

    def describe(self) -> str:
        fired = [name for name, value in vars(self).items() if value]
        return ', '.join(fired) if fired else 'no signals'


def weighted_scores(signals: SubSignals, params: LearningParameters) -> Tuple[float, float]:
    """Uptrend and downtrend scores for a set of sub-signals."""
    up = (signals.rsi_oversold * params.rsi_up_weight
          + signals.macd_positive * params.macd_up_weight
          + signals.price_below_lower * params.bb_up_weight)
    down = (signals.rsi_overbought * params.rsi_down_weight
            + (not signals.macd_positive) * params.macd_down_weight
            + signals.price_above_upper * params.bb_down_weight)
    return float(up), float(down)


def default_predict(snapshot: IndicatorSnapshot) -> bool:
    """
    Cold-start priority ladder. Returns True for an upward prediction.

    Only reached through ``SignalScorer.score(snapshot, None)``. The engine
    always passes registry parameters, so live cycles take the weighted path.
    """
    rsi = snapshot.rsi
    macd = snapshot.macd
    macd_positive = macd > 0

    # Strong buy
    if (rsi < DEFAULT_OVERSOLD and macd_positive) or (snapshot.price_below_lower and macd_positive):
        return True
    # Strong sell
    if (rsi > DEFAULT_OVERBOUGHT and not macd_positive) or (snapshot.price_above_upper and not macd_positive):
        return False
    # Moderate buy
    if (rsi < 40 and macd_positive) or (snapshot.price < snapshot.bb_middle and macd > -0.5):
        return True
    # Moderate sell
    if (rsi > 60 and not macd_positive) or (snapshot.price_above_middle and macd < 0.5):
        return False
    # Trend follow
    return snapshot.price_above_middle


def confidence_from_scores(predicted_up: bool, up_score: float, down_score: float,
                           up_total: float, down_total: float) -> float:
    """
    0.5 plus half the margin between the winner's and the loser's normalized
    scores, clamped to [0, 1]. Equal raw scores give exactly 0.5.
    """
    if up_score == down_score:
        return 0.5

    up_ratio = up_score / up_total if up_total > 0 else 0.0
    down_ratio = down_score / down_total if down_total > 0 else 0.0
    margin = up_ratio - down_ratio if predicted_up else down_ratio - up_ratio
    return min(1.0, max(0.0, 0.5 + 0.5 * margin))


class SignalScorer:
    """Scores snapshots against per-instrument learning parameters."""

    def __init__(self, config: ScoringConfig = None):
        self.config = config or ScoringConfig()

    def score(self, snapshot: IndicatorSnapshot,
              params: Optional[LearningParameters] = None,
              now: datetime = None) -> Tuple[TradingDecision, PredictionRecord]:
        """
        Predict direction and derive a decision. Pure: no state is modified.

        Args:
            snapshot: Latest indicator values
            params: Learned parameters, or None for the cold-start ladder
            now: Prediction time (defaults to the snapshot timestamp)

        Returns:
            (decision, unevaluated prediction record)
        """
        if params is None:
            signals = SubSignals.from_snapshot(snapshot, DEFAULT_OVERSOLD, DEFAULT_OVERBOUGHT)
            predicted_up = default_predict(snapshot)
            up_score, down_score = weighted_scores(signals, LearningParameters())
            up_total = down_total = 3.0
            path = 'default'
        else:
            signals = SubSignals.from_snapshot(snapshot, params.rsi_oversold, params.rsi_overbought)
            up_score, down_score = weighted_scores(signals, params)
            if up_score > down_score:
                predicted_up = True
            elif down_score > up_score:
                predicted_up = False
            else:
                predicted_up = signals.price_above_middle
            up_total, down_total = params.up_weight_total, params.down_weight_total
            path = 'adaptive'

        confidence = confidence_from_scores(predicted_up, up_score, down_score, up_total, down_total)

        prediction = PredictionRecord(
            instrument=snapshot.instrument,
            created_at=now or snapshot.timestamp,
            price=snapshot.price,
            predicted_up=predicted_up
        )

        direction = 'UP' if predicted_up else 'DOWN'
        reason = (
            f"{path} prediction {direction} (up={up_score:.2f}, down={down_score:.2f}; "
            f"{signals.describe()})"
        )

        if confidence < self.config.min_confidence:
            decision = TradingDecision.no_trade(
                f"{reason}; confidence {confidence:.2f} below {self.config.min_confidence:.2f}",
                confidence
            )
        elif predicted_up:
            decision = TradingDecision.buy(self.config.base_trade_amount, confidence, reason)
        else:
            decision = TradingDecision.sell(self.config.base_trade_amount, confidence, reason)

        logger.debug(f"{snapshot.instrument}: {decision.action.value} ({reason})")
        return decision, prediction
