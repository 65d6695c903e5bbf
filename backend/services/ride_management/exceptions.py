"""Custom exceptions for ride management."""

from feeds.exceptions import FeedFilterError, InvalidFeedCategoryError


class InvalidRideStateError(ValueError):
    """Raised when a state or sub-state is not part of the ride lifecycle."""
    pass


class InvalidActorError(ValueError):
    """Raised when an actor type is not passenger, driver or system."""
    pass


__all__ = [
    "FeedFilterError",
    "InvalidFeedCategoryError",
    "InvalidRideStateError",
    "InvalidActorError",
]
