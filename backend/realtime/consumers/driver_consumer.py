"""Driver WebSocket consumer for ride feeds and trip progress."""

from feeds.constants import UserType

from .base import FeedConsumer


class DriverFeedConsumer(FeedConsumer):
    """
    WebSocket consumer for drivers.

    Tabs: available, my_bids, in_progress, completed, cancelled.
    Actions: advance a trip (on_the_way, arrived, start, complete), cancel a ride.
    Accepted bids switch the driver to in_progress automatically.
    """

    user_type = UserType.DRIVER
    actions = {
        "advance_trip": ("advance_trip", ("ride_id", "step")),
        "cancel_ride": ("cancel_ride", ("ride_id",)),
    }
