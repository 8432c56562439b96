import threading
from datetime import datetime, timedelta

import pytest

from adaptive_trader.config import SystemConfig, TradingMode
from adaptive_trader.data.market_data import IndicatorSnapshot, SnapshotProvider
from adaptive_trader.engine import TradingEngine
from adaptive_trader.monitoring.events import UpdatePublisher
from adaptive_trader.storage import TradeStore

T0 = datetime(2024, 3, 1, 12, 0, 0)


def make_snapshot(instrument="BTC-USDT", price=100.0, rsi=50.0, macd=0.0,
                  upper=110.0, middle=100.0, lower=90.0, timestamp=T0):
    return IndicatorSnapshot(
        instrument=instrument,
        timestamp=timestamp,
        price=price,
        rsi=rsi,
        macd=macd,
        bb_upper=upper,
        bb_middle=middle,
        bb_lower=lower
    )


def strong_buy(instrument="BTC-USDT"):
    # All three uptrend signals fire, no downtrend signal
    return make_snapshot(instrument, price=85.0, rsi=25.0, macd=1.0)


def neutral(instrument="BTC-USDT", price=115.0):
    # MACD up vs price above upper band: tie resolved by middle band
    return make_snapshot(instrument, price=price, rsi=50.0, macd=1.0, upper=110.0)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubProvider(SnapshotProvider):
    """Serves canned snapshots; values may be exceptions or callables."""

    def __init__(self, snapshots=None):
        super().__init__()
        self.snapshots = dict(snapshots or {})
        self.calls = []
        self._lock = threading.Lock()

    def get_indicator_snapshot(self, instrument):
        with self._lock:
            self.calls.append(instrument)
        value = self.snapshots.get(instrument)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value()
        return value


class BlockingSnapshot:
    """Callable snapshot that blocks until released."""

    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self):
        self.entered.set()
        self.release.wait(5)
        return self.snapshot


class RecordingPublisher(UpdatePublisher):
    def __init__(self):
        self.updates = []

    def publish_update(self, update):
        self.updates.append(update)

    def of_type(self, update_type):
        return [u for u in self.updates if u.update_type == update_type]


class MemoryStore(TradeStore):
    def __init__(self, learning_state=None):
        self.trades = []
        self.learning_states = []
        self.initial_state = learning_state or {}

    def persist_trade(self, record):
        self.trades.append(record)

    def persist_learning_state(self, state):
        self.learning_states.append(state)

    def load_learning_state(self):
        return self.initial_state


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    cfg = SystemConfig()
    cfg.mode = TradingMode.SHADOW
    cfg.data.trading_pairs = ["BTC-USDT", "ETH-USDT"]
    cfg.engine.collaborator_timeout_seconds = 2.0
    return cfg


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_engine(config, clock, publisher, store):
    engines = []

    def _make(provider, cfg=None, **kwargs):
        kwargs.setdefault('store', store)
        kwargs.setdefault('publisher', publisher)
        kwargs.setdefault('clock', clock)
        engine = TradingEngine(cfg or config, provider=provider, **kwargs)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.shutdown()
