"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer, FeedConsumer
from .driver_consumer import DriverFeedConsumer
from .passenger_consumer import PassengerFeedConsumer

__all__ = [
    "BaseConsumer",
    "FeedConsumer",
    "DriverFeedConsumer",
    "PassengerFeedConsumer",
]
