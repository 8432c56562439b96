"""
Prediction Ledger
=================
Records directional predictions and scores them once their horizon elapses.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List
import logging

from .parameters import LearningParameters, WEIGHT_STEP

logger = logging.getLogger(__name__)


@dataclass
class PredictionRecord:
    """A single directional prediction awaiting evaluation."""
    instrument: str
    created_at: datetime
    price: float
    predicted_up: bool
    evaluated: bool = False

    def is_expired(self, now: datetime, retention: timedelta) -> bool:
        return now - self.created_at > retention

    def to_dict(self) -> dict:
        return {
            'instrument': self.instrument,
            'created_at': self.created_at.isoformat(),
            'price': self.price,
            'predicted_up': self.predicted_up,
            'evaluated': self.evaluated
        }


@dataclass(frozen=True)
class Evaluation:
    """Outcome of scoring one prediction."""
    record: PredictionRecord
    actual_up: bool
    correct: bool


class PredictionLedger:
    """
    Creation-ordered prediction history for one instrument.

    Not thread-safe on its own: callers hold the instrument's registry lock
    around record() and evaluate().
    """

    def __init__(self, instrument: str,
                 horizon: timedelta = timedelta(hours=24),
                 retention: timedelta = timedelta(days=7),
                 weight_step: float = WEIGHT_STEP):
        self.instrument = instrument
        self.horizon = horizon
        self.retention = retention
        self.weight_step = weight_step
        self._records: List[PredictionRecord] = []

    def record(self, prediction: PredictionRecord):
        self._records.append(prediction)

    def evaluate(self, now: datetime, current_price: float,
                 params: LearningParameters) -> List[Evaluation]:
        """
        Score every unevaluated record older than the horizon, oldest first,
        feeding each outcome into params. Records past retention are purged.
        """
        evaluations = []

        for record in self._records:
            if record.evaluated or now - record.created_at <= self.horizon:
                continue

            actual_up = current_price > record.price
            correct = record.predicted_up == actual_up
            record.evaluated = True
            params.adjust_weights(record.predicted_up, correct, self.weight_step)
            evaluations.append(Evaluation(record, actual_up, correct))

            if not correct:
                logger.info(
                    f"Incorrect prediction for {self.instrument}: predicted "
                    f"{'UP' if record.predicted_up else 'DOWN'}, actual "
                    f"{'UP' if actual_up else 'DOWN'}. Adjusted {params}"
                )

        before = len(self._records)
        self._records = [r for r in self._records if not r.is_expired(now, self.retention)]
        purged = before - len(self._records)
        if purged:
            logger.debug(f"Purged {purged} expired predictions for {self.instrument}")

        return evaluations

    @property
    def records(self) -> List[PredictionRecord]:
        return list(self._records)

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self._records if not r.evaluated)

    def __len__(self) -> int:
        return len(self._records)
