"""
Configuration Management
========================
Central configuration for the adaptive trading engine.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional
from enum import Enum
import json
import os


class TradingMode(Enum):
    """Execution modes."""
    PRODUCTION = "production"  # Real orders through the exchange client
    SHADOW = "shadow"          # Simulated fills against the virtual ledger


@dataclass
class DataConfig:
    """Market data configuration."""
    # Instruments to trade (BASE-QUOTE)
    trading_pairs: List[str] = field(default_factory=lambda: ["BTC-USDT", "ETH-USDT"])

    # Data source: 'mock' or 'yfinance'
    source: str = "mock"
    interval: str = "1m"
    lookback_bars: int = 100

    # Indicator parameters
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std: float = 2.0


@dataclass
class ScoringConfig:
    """Signal scorer configuration."""
    base_trade_amount: float = 0.001  # Instrument units per trade
    min_confidence: float = 0.6       # Below this a decision is HOLD


@dataclass
class LearningConfig:
    """Online feedback loop configuration."""
    evaluation_horizon_hours: float = 24.0
    retention_days: float = 7.0
    weight_step: float = 0.05
    state_file: str = "./data/learning_state.json"


@dataclass
class RiskConfig:
    """Risk gate configuration (all percentages are 0-100)."""
    max_position_size_pct: float = 10.0
    stop_loss_pct: float = 5.0
    take_profit_pct: float = 15.0
    max_daily_loss_pct: float = 20.0

    # Trade limits
    min_trade_size: float = 0.001
    max_trades_per_hour: int = 10


@dataclass
class EngineConfig:
    """Cycle driver and worker pool configuration."""
    cycle_interval_seconds: float = 30.0
    max_workers: int = 4
    collaborator_timeout_seconds: float = 10.0


@dataclass
class MonitoringConfig:
    """Logging and persistence configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    trades_file: str = "./data/trades.json"
    publish_predictions: bool = True


@dataclass
class SystemConfig:
    """Master system configuration."""
    mode: TradingMode = TradingMode.SHADOW

    # Virtual ledger
    virtual_balance: float = 100.0
    quote_currency: str = "USDT"

    # Component configs
    data: DataConfig = field(default_factory=DataConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    @classmethod
    def from_env(cls, base: 'SystemConfig' = None) -> 'SystemConfig':
        """Apply TRADER_* environment overrides on top of a config."""
        config = base or cls()

        mode = os.getenv('TRADER_MODE')
        if mode:
            config.mode = TradingMode(mode.lower())

        pairs = os.getenv('TRADER_PAIRS')
        if pairs:
            config.data.trading_pairs = [p.strip() for p in pairs.split(',') if p.strip()]

        balance = os.getenv('TRADER_VIRTUAL_BALANCE')
        if balance:
            config.virtual_balance = float(balance)

        log_level = os.getenv('TRADER_LOG_LEVEL')
        if log_level:
            config.monitoring.log_level = log_level.upper()

        return config

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['mode'] = self.mode.value
        return data

    @classmethod
    def _from_dict(cls, data: dict) -> 'SystemConfig':
        """Create from dictionary."""
        config = cls()
        config.mode = TradingMode(data.get('mode', 'shadow'))
        config.virtual_balance = data.get('virtual_balance', config.virtual_balance)
        config.quote_currency = data.get('quote_currency', config.quote_currency)

        config.data = DataConfig(**data.get('data', {}))
        config.scoring = ScoringConfig(**data.get('scoring', {}))
        config.learning = LearningConfig(**data.get('learning', {}))
        config.risk = RiskConfig(**data.get('risk', {}))
        config.engine = EngineConfig(**data.get('engine', {}))
        config.monitoring = MonitoringConfig(**data.get('monitoring', {}))
        return config
