"""Passenger WebSocket consumer for ride feeds and bid acceptance."""

from feeds.constants import UserType

from .base import FeedConsumer


class PassengerFeedConsumer(FeedConsumer):
    """
    WebSocket consumer for passengers.

    Tabs: pending, active, completed, cancelled.
    Actions: accept a driver's bid, cancel a ride, confirm payment.
    """

    user_type = UserType.PASSENGER
    actions = {
        "accept_bid": ("accept_bid", ("ride_id", "offer_id", "driver_id")),
        "cancel_ride": ("cancel_ride", ("ride_id",)),
        "confirm_payment": ("confirm_payment", ("ride_id",)),
    }
