"""
Adaptive Trading Engine
=======================

Per-instrument decision and risk engine that learns from its own
predictions:

- Weighted RSI / MACD / Bollinger sub-signals with per-instrument weights
- Online feedback: predictions scored after 24h adjust the weights
- Risk gate: daily loss, position size, size-tiered confidence, frequency
- Production orders through an exchange client, or shadow fills against
  a virtual ledger

PIPELINE (per instrument, every cycle):
    ┌───────────────┐
    │   SNAPSHOT    │  ← price, RSI, MACD, Bollinger Bands
    └───────┬───────┘
            ↓
    ┌───────────────┐
    │ SIGNAL SCORER │  ← learned weights, cold-start ladder
    └───────┬───────┘
            ↓
    ┌───────────────┐
    │   FEEDBACK    │  ← prediction ledger, weight adjustment
    └───────┬───────┘
            ↓
    ┌───────────────┐
    │   RISK GATE   │  ← limits, position sizing, SL/TP
    └───────┬───────┘
            ↓
    ┌───────────────┐
    │   EXECUTION   │  ← exchange client or virtual ledger
    └───────────────┘

USAGE:
    # Shadow trading with synthetic prices
    python -m adaptive_trader.orchestrator --mode shadow --balance 100

    # Control API
    python -m adaptive_trader.orchestrator --serve --port 5000

    # Programmatic usage
    from adaptive_trader import TradingEngine, SystemConfig

    engine = TradingEngine(SystemConfig())
    engine.start()
    report = engine.run_cycle()

MODULES:
    - data: Indicator snapshots and providers
    - signals: Signal scorer and trading decisions
    - learning: Adaptive parameters, prediction ledger, registry
    - risk: Risk gate and trade history
    - ledger: Virtual balances for shadow mode
    - execution: Exchange clients and order execution
    - monitoring: Update events and publishers
    - engine: State machine, decision cycle, cycle driver
"""

from .config import SystemConfig, TradingMode
from .exceptions import (
    TradingEngineError,
    DataUnavailable,
    GateRejected,
    LedgerInsufficientFunds,
    ExternalExecutionError,
    InternalInvariantViolation
)
from .data import IndicatorSnapshot, SnapshotProvider, MockSnapshotProvider, YFinanceSnapshotProvider
from .signals import Action, TradingDecision, SignalScorer
from .learning import LearningParameters, PredictionLedger, PredictionRecord, InstrumentRegistry
from .risk import RiskGate, GateResult, RiskCheck, RiskStatus, TradeHistory
from .ledger import VirtualLedger, VirtualBalance
from .execution import ExchangeClient, MockExchange, ExecutionEngine, OrderResult
from .monitoring import UpdateType, TradingUpdate, UpdatePublisher, LogPublisher, SocketIOPublisher
from .storage import TradeStore, NullStore, JsonFileStore
from .engine import TradingEngine, EngineState, CycleReport, InstrumentOutcome, OutcomeStatus, CycleDriver
from .orchestrator import TradingSystem, configure_logging, main

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingSystem',
    'TradingEngine',
    'SystemConfig',
    'TradingMode',
    'configure_logging',
    'main',

    # Errors
    'TradingEngineError',
    'DataUnavailable',
    'GateRejected',
    'LedgerInsufficientFunds',
    'ExternalExecutionError',
    'InternalInvariantViolation',

    # Data
    'IndicatorSnapshot',
    'SnapshotProvider',
    'MockSnapshotProvider',
    'YFinanceSnapshotProvider',

    # Signals
    'Action',
    'TradingDecision',
    'SignalScorer',

    # Learning
    'LearningParameters',
    'PredictionLedger',
    'PredictionRecord',
    'InstrumentRegistry',

    # Risk
    'RiskGate',
    'GateResult',
    'RiskCheck',
    'RiskStatus',
    'TradeHistory',

    # Ledger
    'VirtualLedger',
    'VirtualBalance',

    # Execution
    'ExchangeClient',
    'MockExchange',
    'ExecutionEngine',
    'OrderResult',

    # Monitoring
    'UpdateType',
    'TradingUpdate',
    'UpdatePublisher',
    'LogPublisher',
    'SocketIOPublisher',

    # Storage
    'TradeStore',
    'NullStore',
    'JsonFileStore',

    # Engine
    'EngineState',
    'CycleReport',
    'InstrumentOutcome',
    'OutcomeStatus',
    'CycleDriver'
]
