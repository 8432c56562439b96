"""
Data Module
===========
Indicator snapshots, providers and technical indicators.
"""

from .indicators import TechnicalIndicators
from .market_data import (
    IndicatorSnapshot,
    SnapshotProvider,
    MockSnapshotProvider,
    YFinanceSnapshotProvider,
    create_provider
)

__all__ = [
    'TechnicalIndicators',
    'IndicatorSnapshot',
    'SnapshotProvider',
    'MockSnapshotProvider',
    'YFinanceSnapshotProvider',
    'create_provider'
]
