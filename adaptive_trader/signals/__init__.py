"""
Signals Module
==============
Directional prediction and trading decisions.
"""

from .signal_scorer import (
    Action,
    TradingDecision,
    SubSignals,
    SignalScorer,
    default_predict,
    weighted_scores,
    confidence_from_scores
)

__all__ = [
    'Action',
    'TradingDecision',
    'SubSignals',
    'SignalScorer',
    'default_predict',
    'weighted_scores',
    'confidence_from_scores'
]
