"""
Ride management service - Feed reads and ride lifecycle actions.

This module handles:
    - Fetching passenger/driver feeds and driver offers
    - Transitioning rides through their lifecycle
    - Accepting driver bids
    - Mapping action failures to user-facing messages
"""

from .ride_feeds import (
    FeedPage,
    fetch_passenger_feed,
    fetch_driver_feed,
    fetch_driver_offers,
    fetch_feed,
    fetch_ride_counts,
    map_service_type,
    map_ride_timing,
)

from .ride_lifecycle import (
    RideResult,
    transition_ride_status,
    driver_on_the_way,
    driver_arrived,
    start_trip,
    complete_trip,
    confirm_payment,
    cancel_ride,
    accept_driver_bid,
    TRIP_STEPS,
    TRIP_STEP_SUB_STATES,
)

from .outcomes import ACTION_ERROR_MESSAGES, get_action_error_message

from .exceptions import (
    FeedFilterError,
    InvalidFeedCategoryError,
    InvalidRideStateError,
    InvalidActorError,
)

__all__ = [
    # Feeds
    "FeedPage",
    "fetch_passenger_feed",
    "fetch_driver_feed",
    "fetch_driver_offers",
    "fetch_feed",
    "fetch_ride_counts",
    "map_service_type",
    "map_ride_timing",
    # Lifecycle operations
    "RideResult",
    "transition_ride_status",
    "driver_on_the_way",
    "driver_arrived",
    "start_trip",
    "complete_trip",
    "confirm_payment",
    "cancel_ride",
    "accept_driver_bid",
    "TRIP_STEPS",
    "TRIP_STEP_SUB_STATES",
    # Outcomes
    "ACTION_ERROR_MESSAGES",
    "get_action_error_message",
    # Exceptions
    "FeedFilterError",
    "InvalidFeedCategoryError",
    "InvalidRideStateError",
    "InvalidActorError",
]
