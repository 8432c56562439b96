"""
Risk Module
===========
Risk gate, position sizing and trade history.
"""

from .risk_engine import RiskGate, GateResult, RiskCheck, RiskStatus
from .trade_history import TradeHistory, TradeRecord

__all__ = [
    'RiskGate',
    'GateResult',
    'RiskCheck',
    'RiskStatus',
    'TradeHistory',
    'TradeRecord'
]
