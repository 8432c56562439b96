"""
Learning Module
===============
Online feedback loop: prediction ledger, adaptive parameters, registry.
"""

from .parameters import LearningParameters
from .prediction_ledger import PredictionLedger, PredictionRecord, Evaluation
from .registry import InstrumentRegistry, InstrumentState

__all__ = [
    'LearningParameters',
    'PredictionLedger',
    'PredictionRecord',
    'Evaluation',
    'InstrumentRegistry',
    'InstrumentState'
]
