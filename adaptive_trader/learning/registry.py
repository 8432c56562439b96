"""
Instrument Registry
===================
Per-instrument learning state with per-entry locks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging
import threading

from ..config import LearningConfig
from .parameters import LearningParameters
from .prediction_ledger import PredictionLedger

logger = logging.getLogger(__name__)


@dataclass
class InstrumentState:
    """Mutable state owned by one instrument. Guard every access with `lock`."""
    instrument: str
    params: LearningParameters
    ledger: PredictionLedger
    last_trade_time: Optional[datetime] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class InstrumentRegistry:
    """
    Stable instrument id -> InstrumentState map.

    The registry lock only guards entry creation; updates to an entry are
    serialized by that entry's own lock, so different instruments proceed
    in parallel.
    """

    def __init__(self, config: LearningConfig = None):
        self.config = config or LearningConfig()
        self._entries: Dict[str, InstrumentState] = {}
        self._lock = threading.Lock()

    def get(self, instrument: str) -> InstrumentState:
        """Return the entry for an instrument, creating defaults on first reference."""
        with self._lock:
            entry = self._entries.get(instrument)
            if entry is None:
                entry = InstrumentState(
                    instrument=instrument,
                    params=LearningParameters(),
                    ledger=self._new_ledger(instrument)
                )
                self._entries[instrument] = entry
                logger.info(f"Initialised learning parameters for {instrument}")
            return entry

    def instruments(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def params_snapshot(self, instrument: str) -> Optional[LearningParameters]:
        """Copy of an instrument's parameters, or None if never referenced."""
        with self._lock:
            entry = self._entries.get(instrument)
        if entry is None:
            return None
        with entry.lock:
            return entry.params.snapshot()

    def export_state(self) -> Dict[str, dict]:
        """Serializable learning state for every instrument."""
        state = {}
        for instrument in self.instruments():
            entry = self.get(instrument)
            with entry.lock:
                state[instrument] = entry.params.to_dict()
        return state

    def restore(self, state: Dict[str, dict]):
        """Load persisted parameters, replacing any current values."""
        for instrument, data in state.items():
            entry = self.get(instrument)
            with entry.lock:
                entry.params = LearningParameters.from_dict(data)
        if state:
            logger.info(f"Restored learning state for {len(state)} instruments")

    def _new_ledger(self, instrument: str) -> PredictionLedger:
        return PredictionLedger(
            instrument,
            horizon=timedelta(hours=self.config.evaluation_horizon_hours),
            retention=timedelta(days=self.config.retention_days),
            weight_step=self.config.weight_step
        )
