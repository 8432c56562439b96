import threading
import time
from datetime import timedelta

import pytest

from adaptive_trader.concurrency import CollaboratorPool
from adaptive_trader.config import TradingMode
from adaptive_trader.engine import CycleDriver, EngineState, OutcomeStatus
from adaptive_trader.exceptions import DataUnavailable
from adaptive_trader.execution import ExecutionEngine, MockExchange
from adaptive_trader.learning import LearningParameters
from adaptive_trader.monitoring import UpdatePublisher, UpdateType
from adaptive_trader.risk import RiskCheck, TradeRecord

from .conftest import (
    T0,
    BlockingSnapshot,
    MemoryStore,
    StubProvider,
    make_snapshot,
    neutral,
    strong_buy
)


def strong_sell(instrument="BTC-USDT"):
    return make_snapshot(instrument, price=115.0, rsi=80.0, macd=-1.0)


@pytest.fixture
def single_pair(config):
    config.data.trading_pairs = ["BTC-USDT"]
    return config


class BrokenExchange(MockExchange):
    def place_order(self, instrument, side, amount):
        raise ConnectionError("exchange unreachable")


class SlowExchange(MockExchange):
    def place_order(self, instrument, side, amount):
        time.sleep(0.2)
        return super().place_order(instrument, side, amount)


class HangingExchange(MockExchange):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def get_balance(self, currency):
        self.release.wait(5)
        return super().get_balance(currency)


class ExplodingPublisher(UpdatePublisher):
    def publish_update(self, update):
        raise RuntimeError("socket closed")


class TestStateMachine:
    def test_transitions(self, make_engine):
        engine = make_engine(StubProvider())
        assert engine.get_state() == EngineState.STOPPED
        assert not engine.is_running()

        assert not engine.pause()
        assert not engine.resume()
        assert not engine.stop()

        assert engine.start()
        assert not engine.start()
        assert engine.is_running()

        assert engine.pause()
        assert engine.is_paused()
        assert engine.is_running()
        assert not engine.pause()

        assert engine.resume()
        assert not engine.resume()
        assert engine.get_state() == EngineState.RUNNING

        assert engine.pause()
        assert engine.stop()
        assert engine.get_state() == EngineState.STOPPED

    def test_transitions_publish_status(self, make_engine, publisher):
        engine = make_engine(StubProvider())
        engine.start()
        engine.stop()

        messages = [u.payload['message'] for u in publisher.of_type(UpdateType.BOT_STATUS)]
        assert messages == ["Trading bot started", "Trading bot stopped"]

    def test_mode_is_orthogonal_to_state(self, make_engine):
        engine = make_engine(StubProvider())
        engine.start()
        engine.pause()

        assert engine.switch_mode(TradingMode.PRODUCTION)

        assert engine.get_current_mode() == TradingMode.PRODUCTION
        assert engine.get_state() == EngineState.PAUSED

    def test_switch_to_shadow_creates_ledger(self, make_engine, config):
        config.mode = TradingMode.PRODUCTION
        engine = make_engine(StubProvider())
        assert engine.ledger is None

        engine.switch_mode(TradingMode.SHADOW)

        assert engine.ledger is not None
        assert engine.ledger.available("USDT") == 100.0


class TestCycle:
    def test_stopped_engine_skips_cycle(self, make_engine):
        provider = StubProvider({"BTC-USDT": strong_buy()})
        engine = make_engine(provider)

        report = engine.run_cycle()

        assert not report.ran
        assert report.skipped_reason == "engine stopped"
        assert provider.calls == []

    def test_shadow_buy_on_every_pair(self, make_engine, publisher, store):
        provider = StubProvider({
            "BTC-USDT": strong_buy("BTC-USDT"),
            "ETH-USDT": strong_buy("ETH-USDT")
        })
        engine = make_engine(provider)
        engine.start()

        report = engine.run_cycle()

        assert report.count(OutcomeStatus.EXECUTED) == 2
        outcome = report.outcomes["BTC-USDT"]
        assert outcome.order.order_id.startswith("VIRTUAL_")
        assert outcome.order.confidence == 0.9

        assert engine.ledger.available("USDT") == pytest.approx(100 - 2 * 0.085)
        assert engine.ledger.available("BTC") == pytest.approx(0.001)

        assert len(store.trades) == 2
        btc = next(t for t in store.trades if t['instrument'] == "BTC-USDT")
        assert btc['stop_loss'] == pytest.approx(85 * 0.95)
        assert btc['take_profit'] == pytest.approx(85 * 1.15)
        assert btc['mode'] == "shadow"

        assert len(publisher.of_type(UpdateType.TRADE_EXECUTED)) == 2
        assert len(publisher.of_type(UpdateType.PREDICTION)) == 2
        assert len(publisher.of_type(UpdateType.PORTFOLIO)) == 1

        status = engine.get_status()
        assert status['trades'] == 2
        assert status['last_trade_time'] == T0.isoformat()

    def test_low_confidence_holds(self, make_engine, single_pair, store):
        engine = make_engine(StubProvider({"BTC-USDT": neutral()}))
        engine.start()

        outcome = engine.run_cycle().outcomes["BTC-USDT"]

        assert outcome.status == OutcomeStatus.HOLD
        assert outcome.decision.confidence == pytest.approx(0.5)
        assert store.trades == []

    def test_sell_without_holdings_fails(self, make_engine, single_pair):
        engine = make_engine(StubProvider({"BTC-USDT": strong_sell()}))
        engine.start()

        outcome = engine.run_cycle().outcomes["BTC-USDT"]

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.order.success is False
        assert engine.ledger.available("USDT") == 100.0

    def test_one_instrument_failure_does_not_stop_others(self, make_engine):
        provider = StubProvider({
            "BTC-USDT": RuntimeError("feed crashed"),
            "ETH-USDT": strong_buy("ETH-USDT")
        })
        engine = make_engine(provider)
        engine.start()

        report = engine.run_cycle()

        assert report.outcomes["BTC-USDT"].status == OutcomeStatus.ERROR
        assert "feed crashed" in report.outcomes["BTC-USDT"].message
        assert report.outcomes["ETH-USDT"].status == OutcomeStatus.EXECUTED

    def test_missing_data_is_skipped(self, make_engine):
        provider = StubProvider({
            "BTC-USDT": None,
            "ETH-USDT": DataUnavailable("ETH-USDT", "not enough bars")
        })
        engine = make_engine(provider)
        engine.start()

        report = engine.run_cycle()

        assert report.outcomes["BTC-USDT"].status == OutcomeStatus.SKIPPED
        assert report.outcomes["ETH-USDT"].status == OutcomeStatus.SKIPPED
        assert report.outcomes["ETH-USDT"].message == "not enough bars"

    def test_slow_provider_times_out(self, make_engine, single_pair):
        single_pair.engine.collaborator_timeout_seconds = 0.2
        blocking = BlockingSnapshot(strong_buy())
        engine = make_engine(StubProvider({"BTC-USDT": blocking}))
        engine.start()

        try:
            outcome = engine.run_cycle().outcomes["BTC-USDT"]
        finally:
            blocking.release.set()

        assert outcome.status == OutcomeStatus.ERROR
        assert "timed out" in outcome.message

    def test_hung_instrument_does_not_starve_others(self, make_engine, config):
        config.engine.max_workers = 2
        config.engine.collaborator_timeout_seconds = 0.2
        blocking = BlockingSnapshot(strong_buy())
        provider = StubProvider({"BTC-USDT": blocking, "ETH-USDT": strong_buy("ETH-USDT")})
        engine = make_engine(provider)
        engine.start()

        try:
            reports = [engine.run_cycle() for _ in range(3)]
        finally:
            blocking.release.set()

        assert [r.outcomes["ETH-USDT"].status for r in reports] == [OutcomeStatus.EXECUTED] * 3
        assert all(r.outcomes["BTC-USDT"].status == OutcomeStatus.ERROR for r in reports)
        assert "timed out" in reports[0].outcomes["BTC-USDT"].message
        assert "still running" in reports[2].outcomes["BTC-USDT"].message
        assert provider.calls.count("BTC-USDT") == 1

    def test_frequency_limit_rejects_second_trade(self, make_engine, single_pair):
        single_pair.risk.max_trades_per_hour = 1
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}))
        engine.start()

        assert engine.run_cycle().outcomes["BTC-USDT"].status == OutcomeStatus.EXECUTED
        second = engine.run_cycle().outcomes["BTC-USDT"]

        assert second.status == OutcomeStatus.REJECTED
        assert second.failed_check == RiskCheck.FREQUENCY

    def test_position_below_minimum_is_too_small(self, make_engine, single_pair):
        single_pair.risk.min_trade_size = 0.01
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}))
        engine.start()

        outcome = engine.run_cycle().outcomes["BTC-USDT"]

        assert outcome.status == OutcomeStatus.TOO_SMALL
        assert engine.ledger.available("USDT") == 100.0

    def test_failing_publisher_does_not_break_cycle(self, make_engine, single_pair):
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}), publisher=ExplodingPublisher())
        engine.start()

        assert engine.run_cycle().outcomes["BTC-USDT"].status == OutcomeStatus.EXECUTED


class TestProductionMode:
    def test_orders_go_to_exchange(self, make_engine, single_pair):
        single_pair.mode = TradingMode.PRODUCTION
        exchange = MockExchange()
        execution = ExecutionEngine(exchange)
        execution.initialize()
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}), execution=execution)
        engine.start()

        outcome = engine.run_cycle().outcomes["BTC-USDT"]

        assert outcome.status == OutcomeStatus.EXECUTED
        assert outcome.order.confidence == 0.8
        assert engine.ledger is None
        assert exchange.get_balance("BTC") == pytest.approx(0.001)
        assert exchange.orders[0]['price'] == pytest.approx(85 * 1.001)

    def test_exchange_error_aborts_only_that_iteration(self, make_engine, single_pair):
        single_pair.mode = TradingMode.PRODUCTION
        execution = ExecutionEngine(BrokenExchange())
        execution.initialize()
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}), execution=execution)
        engine.start()

        outcome = engine.run_cycle().outcomes["BTC-USDT"]

        assert outcome.status == OutcomeStatus.ERROR
        assert "exchange unreachable" in outcome.message
        assert engine.get_state() == EngineState.RUNNING

    def test_parallel_instruments_respect_hourly_limit(self, make_engine, config, clock):
        config.mode = TradingMode.PRODUCTION
        config.data.trading_pairs = ["BTC-USDT", "ETH-USDT", "SOL-USDT", "XRP-USDT"]
        execution = ExecutionEngine(SlowExchange())
        execution.initialize()
        provider = StubProvider({pair: strong_buy(pair) for pair in config.data.trading_pairs})
        engine = make_engine(provider, execution=execution)
        for minutes in range(1, 10):
            engine.history.record(TradeRecord(
                instrument="BTC-USDT", action="BUY", amount=0.001, price=85.0,
                timestamp=clock() - timedelta(minutes=minutes), mode="production"
            ))
        engine.start()

        report = engine.run_cycle()

        assert engine.history.count_since(clock() - timedelta(hours=1)) == 10
        assert report.count(OutcomeStatus.EXECUTED) == 1
        assert report.count(OutcomeStatus.REJECTED) == 3
        assert all(o.failed_check == RiskCheck.FREQUENCY
                   for o in report.outcomes.values() if o.status == OutcomeStatus.REJECTED)
        assert len(execution.exchange.orders) == 1

    def test_hung_exchange_times_out(self, make_engine, single_pair):
        single_pair.mode = TradingMode.PRODUCTION
        pool = CollaboratorPool(timeout=0.2)
        exchange = HangingExchange()
        execution = ExecutionEngine(exchange, pool)
        execution.initialize()
        engine = make_engine(StubProvider({"BTC-USDT": strong_buy()}), execution=execution, pool=pool)
        engine.start()

        try:
            outcome = engine.run_cycle().outcomes["BTC-USDT"]
        finally:
            exchange.release.set()

        assert outcome.status == OutcomeStatus.ERROR
        assert "timed out" in outcome.message


class TestConcurrentTransitions:
    def _run_in_background(self, engine):
        reports = []
        thread = threading.Thread(target=lambda: reports.append(engine.run_cycle()))
        thread.start()
        return thread, reports

    def test_pause_mid_cycle_lets_dispatched_work_finish(self, make_engine, single_pair):
        blocking = BlockingSnapshot(strong_buy())
        provider = StubProvider({"BTC-USDT": blocking})
        engine = make_engine(provider)
        engine.start()

        thread, reports = self._run_in_background(engine)
        assert blocking.entered.wait(2)
        assert engine.pause()
        blocking.release.set()
        thread.join(5)

        assert reports[0].outcomes["BTC-USDT"].status == OutcomeStatus.EXECUTED

        skipped = engine.run_cycle()
        assert skipped.skipped_reason == "engine paused"
        assert len(provider.calls) == 1

        engine.resume()
        assert engine.run_cycle().ran

    def test_stop_mid_cycle_takes_effect_next_cycle(self, make_engine, single_pair):
        blocking = BlockingSnapshot(strong_buy())
        engine = make_engine(StubProvider({"BTC-USDT": blocking}))
        engine.start()

        thread, reports = self._run_in_background(engine)
        assert blocking.entered.wait(2)
        assert engine.stop()
        blocking.release.set()
        thread.join(5)

        assert reports[0].outcomes["BTC-USDT"].status == OutcomeStatus.EXECUTED
        assert engine.run_cycle().skipped_reason == "engine stopped"

    def test_mode_switch_waits_for_in_flight_cycle(self, make_engine, single_pair):
        blocking = BlockingSnapshot(strong_buy())
        engine = make_engine(StubProvider({"BTC-USDT": blocking}))
        engine.start()

        thread, reports = self._run_in_background(engine)
        assert blocking.entered.wait(2)

        switcher = threading.Thread(target=engine.switch_mode, args=(TradingMode.PRODUCTION,))
        switcher.start()
        time.sleep(0.2)
        assert switcher.is_alive()
        assert engine.get_current_mode() == TradingMode.SHADOW

        blocking.release.set()
        thread.join(5)
        switcher.join(5)

        report = reports[0]
        assert report.mode == TradingMode.SHADOW
        assert report.outcomes["BTC-USDT"].order.order_id.startswith("VIRTUAL_")
        assert engine.get_current_mode() == TradingMode.PRODUCTION


class TestLearningFeedback:
    def test_wrong_prediction_is_penalized_after_horizon(self, make_engine, single_pair, clock, store):
        provider = StubProvider({"BTC-USDT": neutral(price=115.0)})
        engine = make_engine(provider)
        engine.start()

        first = engine.run_cycle().outcomes["BTC-USDT"]
        assert first.evaluations == 0
        assert store.learning_states == []

        clock.advance(hours=25)
        provider.snapshots["BTC-USDT"] = neutral(price=112.0)
        second = engine.run_cycle().outcomes["BTC-USDT"]

        assert second.evaluations == 1
        params = engine.get_learning_parameters("BTC-USDT")
        assert params.rsi_up_weight == pytest.approx(0.95)
        assert params.macd_up_weight == pytest.approx(0.95)
        assert params.bb_up_weight == pytest.approx(0.95)
        assert params.rsi_down_weight == 1.0
        assert params.up_failure_count == 1

        assert store.learning_states[-1]["BTC-USDT"]["rsi_up_weight"] == pytest.approx(0.95)

    def test_learning_state_restored_from_store(self, make_engine):
        saved = LearningParameters(rsi_up_weight=1.5, rsi_oversold=25.0).to_dict()
        engine = make_engine(StubProvider(), store=MemoryStore({"BTC-USDT": saved}))

        params = engine.get_learning_parameters("BTC-USDT")

        assert params.rsi_up_weight == 1.5
        assert params.rsi_oversold == 25.0
        assert engine.get_learning_parameters("ETH-USDT") is None


class TestQueries:
    def test_risk_status_uses_ledger_balance(self, make_engine):
        engine = make_engine(StubProvider())
        status = engine.get_risk_status()

        assert status.overall_acceptable
        assert status.daily_profit_loss == 0.0

    def test_portfolio(self, make_engine):
        portfolio = make_engine(StubProvider()).get_portfolio()

        assert portfolio['mode'] == "shadow"
        assert portfolio['balances'][0]['currency'] == "USDT"
        assert portfolio['balances'][0]['balance'] == 100.0


class FlakyEngine:
    def __init__(self):
        self.calls = 0
        self.done = threading.Event()

    def run_cycle(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("transient")
        if self.calls >= 3:
            self.done.set()


class TestCycleDriver:
    def test_ticks_and_survives_errors(self):
        engine = FlakyEngine()
        driver = CycleDriver(engine, interval=0.01)

        driver.start()
        assert engine.done.wait(2)
        driver.shutdown(timeout=2)

        assert not driver.is_alive
        assert engine.calls >= 3
        assert driver.cycles_run >= 2

    def test_wait_returns_after_shutdown(self):
        driver = CycleDriver(FlakyEngine(), interval=10)
        assert driver.wait(0.01) is False
        driver.shutdown()
        assert driver.wait(0.01) is True
