"""
Monitoring Module
=================
Trading update events and the channels that publish them.

Publisher failures are logged and never propagate into the trading cycle.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class UpdateType(Enum):
    """Event types pushed to dashboards and telemetry."""
    BOT_STATUS = "bot_status"
    PREDICTION = "ml_prediction"
    TRADE_EXECUTED = "trade_executed"
    ORDER = "order_update"
    PORTFOLIO = "portfolio_update"


@dataclass
class TradingUpdate:
    """A single update event."""
    update_type: UpdateType
    payload: Dict[str, Any]
    instrument: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'type': self.update_type.value,
            'instrument': self.instrument,
            'timestamp': self.timestamp.isoformat(),
            'data': self.payload
        }


class UpdatePublisher(ABC):
    """Abstract base class for update channels."""

    @abstractmethod
    def publish_update(self, update: TradingUpdate):
        """Deliver one update."""
        pass


class LogPublisher(UpdatePublisher):
    """Writes updates to the application log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish_update(self, update: TradingUpdate):
        subject = f" {update.instrument}" if update.instrument else ""
        logger.log(self.level, f"[{update.update_type.value}]{subject}: {update.payload}")


class SocketIOPublisher(UpdatePublisher):
    """Emits updates to connected dashboard clients over Socket.IO."""

    def __init__(self, socketio):
        self.socketio = socketio

    def publish_update(self, update: TradingUpdate):
        self.socketio.emit(update.update_type.value, update.to_dict())


class PublisherGroup(UpdatePublisher):
    """Fans an update out to several channels, isolating their failures."""

    def __init__(self, publishers: List[UpdatePublisher] = None):
        self.publishers: List[UpdatePublisher] = list(publishers or [])

    def add(self, publisher: UpdatePublisher):
        self.publishers.append(publisher)

    def publish_update(self, update: TradingUpdate):
        for publisher in self.publishers:
            try:
                publisher.publish_update(update)
            except Exception as e:
                logger.error(f"Update dispatch to {type(publisher).__name__} failed: {e}")
