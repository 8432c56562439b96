"""
Trade Storage
=============
Durable storage for executed trades and learning state.
"""

from abc import ABC, abstractmethod
from typing import Dict, List
import json
import logging
import os
import threading

logger = logging.getLogger(__name__)


class TradeStore(ABC):
    """Abstract base class for trade and learning-state persistence."""

    @abstractmethod
    def persist_trade(self, record: dict):
        """Store one executed trade."""
        pass

    @abstractmethod
    def persist_learning_state(self, state: Dict[str, dict]):
        """Store learning parameters keyed by instrument."""
        pass

    @abstractmethod
    def load_learning_state(self) -> Dict[str, dict]:
        """Return previously stored learning parameters (empty if none)."""
        pass


class NullStore(TradeStore):
    """Discards everything. Used when persistence is disabled."""

    def persist_trade(self, record: dict):
        pass

    def persist_learning_state(self, state: Dict[str, dict]):
        pass

    def load_learning_state(self) -> Dict[str, dict]:
        return {}


class JsonFileStore(TradeStore):
    """JSON files on local disk."""

    def __init__(self, trades_file: str = "./data/trades.json",
                 state_file: str = "./data/learning_state.json",
                 max_trades: int = 500):
        self.trades_file = trades_file
        self.state_file = state_file
        self.max_trades = max_trades
        self._lock = threading.Lock()
        self._trades: List[dict] = self._read(trades_file, default=[])

    def persist_trade(self, record: dict):
        with self._lock:
            self._trades.append(record)
            self._trades = self._trades[-self.max_trades:]
            self._write(self.trades_file, self._trades)

    def persist_learning_state(self, state: Dict[str, dict]):
        with self._lock:
            self._write(self.state_file, state)

    def load_learning_state(self) -> Dict[str, dict]:
        with self._lock:
            return self._read(self.state_file, default={})

    def get_trades(self, limit: int = 50) -> List[dict]:
        with self._lock:
            return list(self._trades[-limit:])

    def _read(self, path: str, default):
        try:
            if os.path.exists(path):
                with open(path, 'r') as f:
                    return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading {path}: {e}")
        return default

    def _write(self, path: str, data):
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(path, 'w') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(f"Error saving {path}: {e}")
