"""
Market Data Module
==================
Indicator snapshots and the providers that build them.

A provider turns a window of closing prices into an immutable
IndicatorSnapshot (price, RSI, MACD, Bollinger Bands) for one instrument.
"""

import pandas as pd
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
import logging
import math
import threading

from ..config import DataConfig
from ..exceptions import DataUnavailable
from .indicators import TechnicalIndicators

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Point-in-time indicator values for one instrument."""
    instrument: str
    timestamp: datetime
    price: float
    rsi: float
    macd: float
    bb_upper: float
    bb_middle: float
    bb_lower: float

    def __post_init__(self):
        for name in ('price', 'rsi', 'macd', 'bb_upper', 'bb_middle', 'bb_lower'):
            value = getattr(self, name)
            if value is None or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
        if not 0 <= self.rsi <= 100:
            raise ValueError(f"rsi must be within [0, 100], got {self.rsi}")
        if not self.bb_upper >= self.bb_middle >= self.bb_lower:
            raise ValueError(
                f"Bollinger bands out of order: upper={self.bb_upper}, "
                f"middle={self.bb_middle}, lower={self.bb_lower}"
            )

    @property
    def price_below_lower(self) -> bool:
        return self.price < self.bb_lower

    @property
    def price_above_upper(self) -> bool:
        return self.price > self.bb_upper

    @property
    def price_above_middle(self) -> bool:
        return self.price > self.bb_middle

    def to_dict(self) -> dict:
        return {
            'instrument': self.instrument,
            'timestamp': self.timestamp.isoformat(),
            'price': self.price,
            'rsi': self.rsi,
            'macd': self.macd,
            'bb_upper': self.bb_upper,
            'bb_middle': self.bb_middle,
            'bb_lower': self.bb_lower
        }


class SnapshotProvider(ABC):
    """Abstract base class for indicator snapshot sources."""

    def __init__(self, config: DataConfig = None):
        self.config = config or DataConfig()

    @abstractmethod
    def get_indicator_snapshot(self, instrument: str) -> Optional[IndicatorSnapshot]:
        """Return the latest snapshot, or None when no data is available."""
        pass

    def _build_snapshot(self, instrument: str, closes: pd.Series,
                        timestamp: datetime = None) -> IndicatorSnapshot:
        """Compute indicators over a close series and wrap the latest values."""
        closes = closes.dropna()
        required = max(self.config.bollinger_period, self.config.rsi_period + 1)
        if len(closes) < required:
            raise DataUnavailable(instrument, f"need {required} bars, got {len(closes)}")

        values = TechnicalIndicators.compute_latest(
            closes,
            rsi_period=self.config.rsi_period,
            macd_fast=self.config.macd_fast,
            macd_slow=self.config.macd_slow,
            macd_signal=self.config.macd_signal,
            bb_period=self.config.bollinger_period,
            bb_std=self.config.bollinger_std
        )

        try:
            return IndicatorSnapshot(
                instrument=instrument,
                timestamp=timestamp or datetime.now(),
                **values
            )
        except ValueError as e:
            raise DataUnavailable(instrument, str(e)) from e


class MockSnapshotProvider(SnapshotProvider):
    """Synthetic random-walk prices for testing and shadow trading."""

    def __init__(self, config: DataConfig = None, volatility: float = 0.01,
                 seed: Optional[int] = None):
        super().__init__(config)
        self.volatility = volatility
        self.base_prices = {
            'BTC': 60000.0,
            'ETH': 3000.0,
            'SOL': 150.0,
            'BNB': 550.0,
            'XRP': 0.5
        }
        self._rng = np.random.default_rng(seed)
        self._series: Dict[str, pd.Series] = {}
        self._lock = threading.Lock()

    def get_indicator_snapshot(self, instrument: str) -> Optional[IndicatorSnapshot]:
        with self._lock:
            closes = self._series.get(instrument)
            if closes is None:
                closes = self._generate_history(instrument)
            else:
                closes = self._advance(closes)
            self._series[instrument] = closes

        return self._build_snapshot(instrument, closes)

    def _generate_history(self, instrument: str) -> pd.Series:
        """Generate an initial window of random-walk closes."""
        base = instrument.split('-')[0]
        base_price = self.base_prices.get(base, 100.0)

        n = self.config.lookback_bars
        returns = self._rng.normal(0.0, self.volatility, n)
        prices = base_price * np.cumprod(1 + returns)
        return pd.Series(prices)

    def _advance(self, closes: pd.Series) -> pd.Series:
        """Append one bar and drop the oldest so the window keeps its length."""
        step = self._rng.normal(0.0, self.volatility)
        next_price = max(closes.iloc[-1] * (1 + step), 1e-8)
        closes = pd.concat([closes, pd.Series([next_price])], ignore_index=True)
        return closes.iloc[-self.config.lookback_bars:].reset_index(drop=True)


class YFinanceSnapshotProvider(SnapshotProvider):
    """Yahoo Finance snapshot source."""

    # History period requested for each bar interval
    PERIODS = {
        '1m': '1d',
        '5m': '5d',
        '15m': '5d',
        '30m': '1mo',
        '1h': '1mo',
        '1d': '6mo'
    }

    def __init__(self, config: DataConfig = None):
        super().__init__(config)
        import yfinance as yf
        self.yf = yf

    def get_indicator_snapshot(self, instrument: str) -> Optional[IndicatorSnapshot]:
        yahoo_symbol = self._convert_symbol(instrument)
        period = self.PERIODS.get(self.config.interval, '1mo')

        ticker = self.yf.Ticker(yahoo_symbol)
        df = ticker.history(period=period, interval=self.config.interval)

        if df is None or df.empty or 'Close' not in df.columns:
            logger.info(f"No Yahoo data for {instrument} ({yahoo_symbol})")
            return None

        closes = df['Close'].tail(self.config.lookback_bars)
        last_index = closes.index[-1]
        timestamp = last_index.to_pydatetime() if hasattr(last_index, 'to_pydatetime') else None
        if timestamp is not None and timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)

        return self._build_snapshot(instrument, closes.reset_index(drop=True), timestamp)

    def _convert_symbol(self, instrument: str) -> str:
        """Convert BASE-QUOTE to Yahoo Finance format (stablecoin quotes map to USD)."""
        base, _, quote = instrument.partition('-')
        if quote in ('USDT', 'USDC', 'BUSD', 'USD'):
            quote = 'USD'
        return f"{base}-{quote}" if quote else base


def create_provider(config: DataConfig) -> SnapshotProvider:
    """Build the snapshot provider named by the data config."""
    if config.source == 'yfinance':
        return YFinanceSnapshotProvider(config)
    if config.source == 'mock':
        return MockSnapshotProvider(config)
    raise ValueError(f"Unknown data source: {config.source}")
