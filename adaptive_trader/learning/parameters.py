"""
Learning Parameters
===================
Per-instrument adaptive weights and RSI thresholds.
"""

from dataclasses import dataclass, asdict, fields, replace
import logging

logger = logging.getLogger(__name__)

WEIGHT_STEP = 0.05
WEIGHT_FLOOR = 0.1

# Threshold bounds
OVERSOLD_MIN, OVERSOLD_MAX = 20.0, 35.0
OVERBOUGHT_MIN, OVERBOUGHT_MAX = 65.0, 80.0

# Outcomes needed before thresholds start to adapt
MIN_OUTCOMES = 10
LOW_SUCCESS_RATE = 0.4
HIGH_SUCCESS_RATE = 0.7


@dataclass
class LearningParameters:
    """
    Decision weights for one instrument.

    Weights start at 1.0 and never drop below 0.1. The oversold threshold
    stays within [20, 35] and the overbought threshold within [65, 80].
    """
    rsi_up_weight: float = 1.0
    macd_up_weight: float = 1.0
    bb_up_weight: float = 1.0
    rsi_down_weight: float = 1.0
    macd_down_weight: float = 1.0
    bb_down_weight: float = 1.0

    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0

    up_success_count: int = 0
    up_failure_count: int = 0
    down_success_count: int = 0
    down_failure_count: int = 0

    def adjust_weights(self, predicted_up: bool, was_correct: bool, step: float = WEIGHT_STEP):
        """Reinforce or penalise the weight triple behind a prediction."""
        delta = step if was_correct else -step

        if predicted_up:
            if was_correct:
                self.up_success_count += 1
            else:
                self.up_failure_count += 1
            self.rsi_up_weight = max(WEIGHT_FLOOR, self.rsi_up_weight + delta)
            self.macd_up_weight = max(WEIGHT_FLOOR, self.macd_up_weight + delta)
            self.bb_up_weight = max(WEIGHT_FLOOR, self.bb_up_weight + delta)
        else:
            if was_correct:
                self.down_success_count += 1
            else:
                self.down_failure_count += 1
            self.rsi_down_weight = max(WEIGHT_FLOOR, self.rsi_down_weight + delta)
            self.macd_down_weight = max(WEIGHT_FLOOR, self.macd_down_weight + delta)
            self.bb_down_weight = max(WEIGHT_FLOOR, self.bb_down_weight + delta)

        self._adapt_thresholds()

    def _adapt_thresholds(self):
        up_total = self.up_success_count + self.up_failure_count
        if up_total > MIN_OUTCOMES:
            rate = self.up_success_count / up_total
            if rate < LOW_SUCCESS_RATE:
                # Relax: fire oversold more often
                self.rsi_oversold = max(OVERSOLD_MIN, self.rsi_oversold - 1.0)
            elif rate > HIGH_SUCCESS_RATE:
                self.rsi_oversold = min(OVERSOLD_MAX, self.rsi_oversold + 0.5)

        down_total = self.down_success_count + self.down_failure_count
        if down_total > MIN_OUTCOMES:
            rate = self.down_success_count / down_total
            if rate < LOW_SUCCESS_RATE:
                self.rsi_overbought = min(OVERBOUGHT_MAX, self.rsi_overbought + 1.0)
            elif rate > HIGH_SUCCESS_RATE:
                self.rsi_overbought = max(OVERBOUGHT_MIN, self.rsi_overbought - 0.5)

    @property
    def up_weight_total(self) -> float:
        return self.rsi_up_weight + self.macd_up_weight + self.bb_up_weight

    @property
    def down_weight_total(self) -> float:
        return self.rsi_down_weight + self.macd_down_weight + self.bb_down_weight

    def snapshot(self) -> 'LearningParameters':
        """Detached copy for read-only consumers."""
        return replace(self)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'LearningParameters':
        """Restore persisted parameters, re-applying floors and bounds."""
        known = {f.name for f in fields(cls)}
        params = cls(**{k: v for k, v in data.items() if k in known})

        for name in ('rsi_up_weight', 'macd_up_weight', 'bb_up_weight',
                     'rsi_down_weight', 'macd_down_weight', 'bb_down_weight'):
            setattr(params, name, max(WEIGHT_FLOOR, float(getattr(params, name))))
        params.rsi_oversold = min(OVERSOLD_MAX, max(OVERSOLD_MIN, float(params.rsi_oversold)))
        params.rsi_overbought = min(OVERBOUGHT_MAX, max(OVERBOUGHT_MIN, float(params.rsi_overbought)))
        return params

    def __str__(self) -> str:
        return (
            f"thresholds [oversold={self.rsi_oversold:.1f}, overbought={self.rsi_overbought:.1f}], "
            f"up weights [rsi={self.rsi_up_weight:.2f}, macd={self.macd_up_weight:.2f}, bb={self.bb_up_weight:.2f}], "
            f"down weights [rsi={self.rsi_down_weight:.2f}, macd={self.macd_down_weight:.2f}, bb={self.bb_down_weight:.2f}]"
        )
