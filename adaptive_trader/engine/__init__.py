"""
Engine Module
=============
Trading state machine, decision cycle and cycle driver.
"""

from .trading_engine import (
    TradingEngine,
    EngineState,
    OutcomeStatus,
    InstrumentOutcome,
    CycleReport
)
from .scheduler import CycleDriver

__all__ = [
    'TradingEngine',
    'EngineState',
    'OutcomeStatus',
    'InstrumentOutcome',
    'CycleReport',
    'CycleDriver'
]
