"""
Technical Indicators
====================
RSI, MACD and Bollinger Bands over a closing-price series.
"""

import pandas as pd
import numpy as np
from typing import Dict


class TechnicalIndicators:
    """Technical analysis indicators used by the signal scorer."""

    @staticmethod
    def sma(prices: pd.Series, period: int) -> pd.Series:
        """Simple Moving Average."""
        return prices.rolling(window=period).mean()

    @staticmethod
    def rsi(prices: pd.Series, period: int = 14) -> pd.Series:
        """Relative Strength Index (simple-average variant), bounded to [0, 100]."""
        delta = prices.diff()
        gain = (delta.where(delta > 0, 0)).rolling(window=period).mean()
        loss = (-delta.where(delta < 0, 0)).rolling(window=period).mean()

        rs = gain / loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))

        # No losses in the window: saturate, unless the series was flat
        rsi = rsi.where(~((loss == 0) & (gain > 0)), 100.0)
        return rsi.fillna(50).clip(0, 100)

    @staticmethod
    def macd(prices: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> Dict[str, pd.Series]:
        """Moving Average Convergence Divergence."""
        ema_fast = prices.ewm(span=fast, adjust=False).mean()
        ema_slow = prices.ewm(span=slow, adjust=False).mean()
        macd_line = ema_fast - ema_slow
        signal_line = macd_line.ewm(span=signal, adjust=False).mean()

        return {
            'macd': macd_line,
            'macd_signal': signal_line,
            'macd_hist': macd_line - signal_line
        }

    @classmethod
    def bollinger_bands(cls, prices: pd.Series, period: int = 20, std_dev: float = 2.0) -> Dict[str, pd.Series]:
        """Bollinger Bands."""
        sma = cls.sma(prices, period)
        std = prices.rolling(window=period).std(ddof=0)

        return {
            'bb_upper': sma + (std * std_dev),
            'bb_middle': sma,
            'bb_lower': sma - (std * std_dev)
        }

    @classmethod
    def compute_latest(cls, closes: pd.Series, rsi_period: int = 14,
                       macd_fast: int = 12, macd_slow: int = 26, macd_signal: int = 9,
                       bb_period: int = 20, bb_std: float = 2.0) -> Dict[str, float]:
        """Compute the most recent value of every indicator the scorer reads."""
        rsi = cls.rsi(closes, rsi_period)
        macd = cls.macd(closes, macd_fast, macd_slow, macd_signal)
        bands = cls.bollinger_bands(closes, bb_period, bb_std)

        return {
            'price': float(closes.iloc[-1]),
            'rsi': float(rsi.iloc[-1]),
            'macd': float(macd['macd'].iloc[-1]),
            'bb_upper': float(bands['bb_upper'].iloc[-1]),
            'bb_middle': float(bands['bb_middle'].iloc[-1]),
            'bb_lower': float(bands['bb_lower'].iloc[-1]),
        }
