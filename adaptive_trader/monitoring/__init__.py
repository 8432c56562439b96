"""
Monitoring Module
=================
Update events and publishers.
"""

from .events import (
    UpdateType,
    TradingUpdate,
    UpdatePublisher,
    LogPublisher,
    SocketIOPublisher,
    PublisherGroup
)

__all__ = [
    'UpdateType',
    'TradingUpdate',
    'UpdatePublisher',
    'LogPublisher',
    'SocketIOPublisher',
    'PublisherGroup'
]
