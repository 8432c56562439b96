"""
Trading Engine
==============
State machine and decision cycle:
    SNAPSHOT → SCORE → FEEDBACK → RISK GATE → SIZE → EXECUTE → RECORD

States: STOPPED → RUNNING → {PAUSED ⇄ RUNNING} → STOPPED. Mode (production
or shadow) is orthogonal. A cycle reads state and mode once when it starts,
so transitions requested mid-cycle apply from the next cycle. Instruments
are processed concurrently and independently: one instrument's failure
never aborts the others.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import threading

from ..concurrency import CollaboratorPool
from ..config import SystemConfig, TradingMode
from ..data.market_data import SnapshotProvider, create_provider
from ..exceptions import (
    DataUnavailable,
    ExternalExecutionError,
    GateRejected,
    InternalInvariantViolation
)
from ..execution.execution_engine import ExecutionEngine, MockExchange, OrderResult
from ..learning.parameters import LearningParameters
from ..learning.registry import InstrumentRegistry
from ..ledger.virtual_ledger import VirtualLedger, split_pair
from ..monitoring.events import LogPublisher, TradingUpdate, UpdatePublisher, UpdateType
from ..risk.risk_engine import RiskCheck, RiskGate, RiskStatus
from ..risk.trade_history import TradeHistory, TradeRecord
from ..signals.signal_scorer import Action, SignalScorer, TradingDecision
from ..storage import NullStore, TradeStore

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Engine lifecycle states."""
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class OutcomeStatus(Enum):
    """Result of one instrument's iteration."""
    SKIPPED = "skipped"        # No market data
    HOLD = "hold"              # Decision was not to trade
    REJECTED = "rejected"      # Risk gate refused
    TOO_SMALL = "too_small"    # Sized below the minimum trade size
    FAILED = "failed"          # Execution refused (funds, exchange rejection)
    EXECUTED = "executed"
    ERROR = "error"            # Iteration aborted by an exception


@dataclass
class InstrumentOutcome:
    """What happened to one instrument during a cycle."""
    instrument: str
    status: OutcomeStatus
    decision: Optional[TradingDecision] = None
    failed_check: Optional[RiskCheck] = None
    order: Optional[OrderResult] = None
    evaluations: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return {
            'instrument': self.instrument,
            'status': self.status.value,
            'decision': self.decision.to_dict() if self.decision else None,
            'failed_check': self.failed_check.value if self.failed_check else None,
            'order': self.order.to_dict() if self.order else None,
            'evaluations': self.evaluations,
            'message': self.message
        }


@dataclass
class CycleReport:
    """Summary of one engine cycle."""
    cycle_id: int
    started_at: datetime
    state: EngineState
    mode: TradingMode
    outcomes: Dict[str, InstrumentOutcome] = field(default_factory=dict)
    finished_at: Optional[datetime] = None
    skipped_reason: str = ""

    @property
    def ran(self) -> bool:
        return not self.skipped_reason

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == status)

    def to_dict(self) -> dict:
        return {
            'cycle_id': self.cycle_id,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'state': self.state.value,
            'mode': self.mode.value,
            'skipped_reason': self.skipped_reason,
            'outcomes': {k: v.to_dict() for k, v in self.outcomes.items()}
        }


class TradingEngine:
    """
    Adaptive decision engine.

    Collaborators are passed in explicitly: a snapshot provider, an
    execution engine (exchange client), a trade store and an update
    publisher. `clock` is injectable for tests.
    """

    def __init__(self, config: SystemConfig = None,
                 provider: SnapshotProvider = None,
                 execution: ExecutionEngine = None,
                 store: TradeStore = None,
                 publisher: UpdatePublisher = None,
                 clock: Callable[[], datetime] = datetime.now,
                 pool: CollaboratorPool = None):
        self.config = config or SystemConfig()
        self.clock = clock

        self.pool = pool or CollaboratorPool(
            timeout=self.config.engine.collaborator_timeout_seconds,
            max_workers=self.config.engine.max_workers
        )
        self.provider = provider or create_provider(self.config.data)
        if execution is None:
            execution = ExecutionEngine(MockExchange(), self.pool)
            execution.initialize()
        self.execution = execution
        self.store = store or NullStore()
        self.publisher = publisher or LogPublisher()

        self.scorer = SignalScorer(self.config.scoring)
        self.registry = InstrumentRegistry(self.config.learning)
        self.history = TradeHistory(clock)
        self.gate = RiskGate(self.config.risk, self.history, clock)

        # State
        self._state = EngineState.STOPPED
        self._mode = self.config.mode
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._trade_lock = threading.Lock()
        self._cycle_count = 0
        self.last_trade_time: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None

        self.ledger: Optional[VirtualLedger] = None
        if self._mode == TradingMode.SHADOW:
            self._init_ledger()

        self._workers = ThreadPoolExecutor(
            max_workers=self.config.engine.max_workers,
            thread_name_prefix="instrument"
        )

        self._restore_learning_state()
        logger.info(f"TradingEngine initialized in {self._mode.value} mode "
                    f"for {', '.join(self.config.data.trading_pairs)}")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def start(self) -> bool:
        with self._state_lock:
            if self._state != EngineState.STOPPED:
                logger.warning(f"Cannot start: engine is {self._state.value}")
                return False
            if self._mode == TradingMode.SHADOW and self.ledger is None:
                self._init_ledger()
            self._state = EngineState.RUNNING
        logger.info(f"Trading engine started in {self._mode.value} mode")
        self._publish_status("Trading bot started")
        return True

    def stop(self) -> bool:
        with self._state_lock:
            if self._state == EngineState.STOPPED:
                logger.warning("Cannot stop: engine is already stopped")
                return False
            self._state = EngineState.STOPPED
        logger.info("Trading engine stopped")
        self._publish_status("Trading bot stopped")
        return True

    def pause(self) -> bool:
        with self._state_lock:
            if self._state != EngineState.RUNNING:
                logger.warning(f"Cannot pause: engine is {self._state.value}")
                return False
            self._state = EngineState.PAUSED
        logger.info("Trading engine paused")
        self._publish_status("Trading bot paused")
        return True

    def resume(self) -> bool:
        with self._state_lock:
            if self._state != EngineState.PAUSED:
                logger.warning(f"Cannot resume: engine is {self._state.value}")
                return False
            self._state = EngineState.RUNNING
        logger.info("Trading engine resumed")
        self._publish_status("Trading bot resumed")
        return True

    def switch_mode(self, mode: TradingMode) -> bool:
        """Change mode once any in-flight cycle has finished."""
        with self._cycle_lock:
            with self._state_lock:
                previous = self._mode
                self._mode = mode
                if mode == TradingMode.SHADOW and self.ledger is None:
                    self._init_ledger()
        if previous != mode:
            logger.info(f"Trading mode switched from {previous.value} to {mode.value}")
            self._publish_status(f"Switched to {mode.value} mode")
        return True

    def is_running(self) -> bool:
        with self._state_lock:
            return self._state != EngineState.STOPPED

    def is_paused(self) -> bool:
        with self._state_lock:
            return self._state == EngineState.PAUSED

    def get_state(self) -> EngineState:
        with self._state_lock:
            return self._state

    def get_current_mode(self) -> TradingMode:
        with self._state_lock:
            return self._mode

    def _init_ledger(self):
        self.ledger = VirtualLedger(self.config.quote_currency, self.config.virtual_balance)

    # ------------------------------------------------------------------
    # Decision cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """Run one decision cycle over every configured instrument."""
        with self._cycle_lock:
            with self._state_lock:
                state, mode, ledger = self._state, self._mode, self.ledger
            self._cycle_count += 1

            report = CycleReport(self._cycle_count, self.clock(), state, mode)
            if state != EngineState.RUNNING:
                report.skipped_reason = f"engine {state.value}"
                report.finished_at = self.clock()
                logger.debug(f"Cycle {report.cycle_id} skipped: {report.skipped_reason}")
                return report

            logger.debug(f"=== Cycle {report.cycle_id} ({mode.value}) ===")

            pairs = list(self.config.data.trading_pairs)
            futures = [
                (instrument, self._workers.submit(self._process_instrument, instrument, mode, ledger))
                for instrument in pairs
            ]
            for instrument, future in futures:
                report.outcomes[instrument] = future.result()

            report.finished_at = self.clock()
            self.last_report = report

        logger.info(
            f"Cycle {report.cycle_id} complete: "
            + ', '.join(f"{k}={v.status.value}" for k, v in report.outcomes.items())
        )
        self._publish(UpdateType.PORTFOLIO, self.get_portfolio())
        return report

    def _process_instrument(self, instrument: str, mode: TradingMode,
                            ledger: Optional[VirtualLedger]) -> InstrumentOutcome:
        """Run one instrument's iteration, converting failures into outcomes."""
        try:
            return self._run_instrument(instrument, mode, ledger)
        except ExternalExecutionError as e:
            logger.warning(f"{instrument}: external call failed, will retry next cycle: {e}")
            return InstrumentOutcome(instrument, OutcomeStatus.ERROR, message=str(e))
        except InternalInvariantViolation as e:
            logger.critical(f"{instrument}: invariant violated: {e}")
            return InstrumentOutcome(instrument, OutcomeStatus.ERROR, message=str(e))
        except Exception as e:
            logger.exception(f"{instrument}: iteration failed: {e}")
            return InstrumentOutcome(instrument, OutcomeStatus.ERROR, message=str(e))

    def _run_instrument(self, instrument: str, mode: TradingMode,
                        ledger: Optional[VirtualLedger]) -> InstrumentOutcome:
        # 1. SNAPSHOT
        try:
            snapshot = self.pool.call(
                f"get_indicator_snapshot {instrument}",
                self.provider.get_indicator_snapshot, instrument
            )
        except DataUnavailable as e:
            logger.info(f"Skipping {instrument}: {e.reason}")
            return InstrumentOutcome(instrument, OutcomeStatus.SKIPPED, message=e.reason)
        if snapshot is None:
            logger.info(f"Skipping {instrument}: no market data")
            return InstrumentOutcome(instrument, OutcomeStatus.SKIPPED, message="no market data")
        self.execution.update_market_prices({instrument: snapshot.price})

        # 2. SCORE + FEEDBACK, serialized per instrument
        entry = self.registry.get(instrument)
        now = self.clock()
        with entry.lock:
            decision, prediction = self.scorer.score(snapshot, entry.params, now)
            entry.ledger.record(prediction)
            evaluations = entry.ledger.evaluate(now, snapshot.price, entry.params)

        if evaluations:
            self._persist_learning_state()

        if self.config.monitoring.publish_predictions:
            self._publish(UpdateType.PREDICTION, {
                'snapshot': snapshot.to_dict(),
                'predicted_up': prediction.predicted_up,
                'decision': decision.to_dict()
            }, instrument)

        if decision.action == Action.HOLD or not decision.should_trade:
            return InstrumentOutcome(instrument, OutcomeStatus.HOLD, decision,
                                     evaluations=len(evaluations), message=decision.reason)

        # Gate, execute and record are serialized across instruments
        with self._trade_lock:
            # 3. RISK GATE + SIZE
            balance = self._quote_balance(instrument, mode, ledger)
            try:
                amount = self.gate.enforce(decision, balance)
            except GateRejected as e:
                logger.info(f"{instrument}: trade rejected by {e.check.value} check: {e}")
                return InstrumentOutcome(instrument, OutcomeStatus.REJECTED, decision,
                                         failed_check=e.check, evaluations=len(evaluations),
                                         message=str(e))
            if amount <= 0:
                logger.info(f"{instrument}: position too small to trade")
                return InstrumentOutcome(instrument, OutcomeStatus.TOO_SMALL, decision,
                                         evaluations=len(evaluations), message="position too small")

            # 4. EXECUTE
            order = self.execution.execute(instrument, decision.action, amount, snapshot.price, mode, ledger)

            # 5. RECORD
            trade = None
            if order.success:
                trade = self.history.record(TradeRecord(
                    instrument=instrument,
                    action=decision.action.value,
                    amount=amount,
                    price=snapshot.price,
                    timestamp=now,
                    mode=mode.value,
                    order_id=order.order_id,
                    confidence=decision.confidence,
                    stop_loss=self.gate.calculate_stop_loss(snapshot.price, decision.action),
                    take_profit=self.gate.calculate_take_profit(snapshot.price, decision.action)
                ))

        self._publish(UpdateType.ORDER, order.to_dict(), instrument)
        if trade is None:
            logger.info(f"{instrument}: {decision.action.value} not executed: {order.message}")
            return InstrumentOutcome(instrument, OutcomeStatus.FAILED, decision, order=order,
                                     evaluations=len(evaluations), message=order.message)

        with entry.lock:
            entry.last_trade_time = now
        with self._state_lock:
            self.last_trade_time = now

        self._persist_trade(trade)
        self._publish(UpdateType.TRADE_EXECUTED, trade.to_dict(), instrument)
        logger.info(
            f"{instrument}: executed {decision.action.value} {amount} @ {snapshot.price:.8f} "
            f"(confidence {decision.confidence:.2f}, order {order.order_id})"
        )
        return InstrumentOutcome(instrument, OutcomeStatus.EXECUTED, decision, order=order,
                                 evaluations=len(evaluations), message=order.message)

    def _quote_balance(self, instrument: str, mode: TradingMode,
                       ledger: Optional[VirtualLedger]) -> float:
        """Available quote-currency balance that backs a trade on `instrument`."""
        _, quote = split_pair(instrument)
        if mode == TradingMode.SHADOW:
            if ledger is None:
                raise InternalInvariantViolation("shadow mode without a virtual ledger")
            return ledger.available(quote)
        return self.execution.get_balance(quote)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_risk_status(self, balance: float = None) -> RiskStatus:
        """Risk status against `balance` (defaults to the quote-currency balance)."""
        if balance is None:
            try:
                balance = self._account_balance()
            except ExternalExecutionError as e:
                logger.warning(f"Balance unavailable for risk status: {e}")
                balance = 0.0
        return self.gate.get_risk_status(balance)

    def get_learning_parameters(self, instrument: str) -> Optional[LearningParameters]:
        return self.registry.params_snapshot(instrument)

    def get_portfolio(self) -> dict:
        mode = self.get_current_mode()
        if mode == TradingMode.SHADOW and self.ledger is not None:
            balances = [b.to_dict() for b in self.ledger.balances()]
        else:
            try:
                quote = self.config.quote_currency
                balances = [{'currency': quote, 'available': self.execution.get_balance(quote)}]
            except ExternalExecutionError as e:
                logger.warning(f"Exchange balance unavailable: {e}")
                balances = []
        return {'mode': mode.value, 'balances': balances}

    def get_status(self) -> Dict:
        with self._state_lock:
            state, mode = self._state, self._mode
            last_trade = self.last_trade_time
        return {
            'state': state.value,
            'running': state != EngineState.STOPPED,
            'paused': state == EngineState.PAUSED,
            'mode': mode.value,
            'trading_pairs': list(self.config.data.trading_pairs),
            'cycles': self._cycle_count,
            'trades': len(self.history),
            'last_trade_time': last_trade.isoformat() if last_trade else None,
            'timestamp': self.clock().isoformat()
        }

    def recent_trades(self, limit: int = 50) -> List[dict]:
        return [t.to_dict() for t in self.history.recent(limit)]

    def shutdown(self):
        """Stop trading and release worker threads."""
        if self.is_running():
            self.stop()
        self._workers.shutdown(wait=True)
        self.pool.shutdown(wait=False)
        logger.info("Trading engine shutdown complete")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _account_balance(self) -> float:
        quote = self.config.quote_currency
        if self.get_current_mode() == TradingMode.SHADOW and self.ledger is not None:
            return self.ledger.get_balance(quote).balance
        return self.execution.get_balance(quote)

    def _restore_learning_state(self):
        try:
            self.registry.restore(self.store.load_learning_state())
        except Exception as e:
            logger.error(f"Failed to restore learning state: {e}")

    def _persist_learning_state(self):
        try:
            self.store.persist_learning_state(self.registry.export_state())
        except Exception as e:
            logger.error(f"Failed to persist learning state: {e}")

    def _persist_trade(self, trade: TradeRecord):
        try:
            self.store.persist_trade(trade.to_dict())
        except Exception as e:
            logger.error(f"Failed to persist trade {trade.trade_id}: {e}")

    def _publish(self, update_type: UpdateType, payload: dict, instrument: str = None):
        try:
            self.publisher.publish_update(TradingUpdate(update_type, payload, instrument, self.clock()))
        except Exception as e:
            logger.error(f"Failed to publish {update_type.value} update: {e}")

    def _publish_status(self, message: str):
        self._publish(UpdateType.BOT_STATUS, {**self.get_status(), 'message': message})
