"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.driver_consumer import DriverFeedConsumer
from .consumers.passenger_consumer import PassengerFeedConsumer
from .registry import SubscriptionRegistry
from .transport import ChannelLayerTransport

# One registry per process, shared by every feed connection
subscription_registry = SubscriptionRegistry(ChannelLayerTransport())

websocket_urlpatterns = [
    # Driver feed WebSocket endpoint
    # URL: ws://localhost:8000/ws/feed/driver/?token=<jwt>
    re_path(
        r"ws/feed/driver/$",
        DriverFeedConsumer.as_asgi(registry=subscription_registry),
        name="driver-feed-ws"
    ),

    # Passenger feed WebSocket endpoint
    # URL: ws://localhost:8000/ws/feed/passenger/?token=<jwt>
    re_path(
        r"ws/feed/passenger/$",
        PassengerFeedConsumer.as_asgi(registry=subscription_registry),
        name="passenger-feed-ws"
    ),
]
