"""
Trading System Orchestrator
===========================
Wires the engine to its collaborators and runs it:
    SNAPSHOT PROVIDER → TRADING ENGINE → EXECUTION / VIRTUAL LEDGER
                              ↓
                 TRADE STORE, UPDATE PUBLISHERS, CONTROL API
"""

from typing import Dict, Optional
import logging

from .concurrency import CollaboratorPool
from .config import SystemConfig, TradingMode
from .data.market_data import SnapshotProvider, create_provider
from .engine import CycleDriver, TradingEngine
from .execution import ExecutionEngine, ExchangeClient, MockExchange
from .monitoring import LogPublisher, PublisherGroup
from .storage import JsonFileStore, TradeStore

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(config: SystemConfig):
    """Apply the monitoring config's level and optional log file."""
    handlers = [logging.StreamHandler()]
    if config.monitoring.log_file:
        handlers.append(logging.FileHandler(config.monitoring.log_file))

    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


class TradingSystem:
    """
    Main trading system orchestrator.

    Owns the engine, the cycle driver and the publisher group that the
    control API attaches its Socket.IO channel to.
    """

    def __init__(self, config: SystemConfig = None,
                 provider: SnapshotProvider = None,
                 exchange: ExchangeClient = None,
                 store: TradeStore = None):
        self.config = config or SystemConfig()

        self.publishers = PublisherGroup([LogPublisher()])
        self.store = store or JsonFileStore(
            trades_file=self.config.monitoring.trades_file,
            state_file=self.config.learning.state_file
        )

        # Market data and exchange calls share one timeout pool
        self.pool = CollaboratorPool(
            timeout=self.config.engine.collaborator_timeout_seconds,
            max_workers=self.config.engine.max_workers
        )
        self.execution = ExecutionEngine(exchange or MockExchange(), self.pool)

        self.engine = TradingEngine(
            config=self.config,
            provider=provider or create_provider(self.config.data),
            execution=self.execution,
            store=self.store,
            publisher=self.publishers,
            pool=self.pool
        )

        self.driver = CycleDriver(self.engine, self.config.engine.cycle_interval_seconds)

        logger.info(f"TradingSystem initialized in {self.config.mode.value} mode")

    def initialize(self):
        """Connect to the exchange."""
        logger.info("Initializing trading system...")
        self.execution.initialize()
        logger.info("Trading system initialized successfully")

    def run(self, autostart: bool = True):
        """Start the cycle driver and block until shutdown."""
        if autostart:
            self.engine.start()
        self.driver.start()
        logger.info("Starting main trading loop...")
        self.driver.wait()

    def start_background(self, autostart: bool = False):
        """Start the cycle driver without blocking (used with the control API)."""
        if autostart:
            self.engine.start()
        self.driver.start()

    def shutdown(self):
        """Gracefully shutdown the system."""
        logger.info("Shutting down trading system...")
        self.driver.shutdown()
        self.engine.shutdown()
        self.execution.shutdown()
        logger.info("Trading system shutdown complete")

    def get_status(self) -> Dict:
        return {
            **self.engine.get_status(),
            'driver_alive': self.driver.is_alive,
            'cycles_run': self.driver.cycles_run
        }


def build_config(args) -> SystemConfig:
    """Config from file (if given), then environment, then CLI flags."""
    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    config = SystemConfig.from_env(config)

    if args.mode:
        config.mode = TradingMode(args.mode)
    if args.balance is not None:
        config.virtual_balance = args.balance
    if args.pairs:
        config.data.trading_pairs = [p.strip() for p in args.pairs.split(',') if p.strip()]
    if args.interval is not None:
        config.engine.cycle_interval_seconds = args.interval
    if args.source:
        config.data.source = args.source
    return config


def main(argv: Optional[list] = None):
    """Main entry point for the trading system."""
    import argparse

    parser = argparse.ArgumentParser(description='Adaptive Trading Engine')
    parser.add_argument('--mode', choices=['production', 'shadow'],
                        help='Trading mode')
    parser.add_argument('--balance', type=float,
                        help='Virtual starting balance (shadow mode)')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--pairs', type=str, help='Comma-separated trading pairs')
    parser.add_argument('--interval', type=float, help='Seconds between cycles')
    parser.add_argument('--source', choices=['mock', 'yfinance'], help='Market data source')
    parser.add_argument('--serve', action='store_true', help='Run the control API')
    parser.add_argument('--port', type=int, default=5000, help='Control API port')

    args = parser.parse_args(argv)

    config = build_config(args)
    configure_logging(config)

    system = TradingSystem(config)

    try:
        system.initialize()
        if args.serve:
            from .api import create_app

            app, socketio = create_app(system.engine, system.publishers)
            system.start_background()
            logger.info(f"Control API listening on port {args.port}")
            socketio.run(app, host='0.0.0.0', port=args.port, debug=False,
                         allow_unsafe_werkzeug=True)
        else:
            system.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        system.shutdown()


if __name__ == "__main__":
    main()
