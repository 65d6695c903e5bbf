"""Custom exceptions for feed filtering and classification."""


class FeedFilterError(Exception):
    """Raised when a feed filter value cannot be mapped to a backend value."""

    def __init__(self, message, context=None):
        super().__init__(message)
        self.context = context or {}


class InvalidFeedCategoryError(FeedFilterError):
    """Raised when a feed category or tab name is not valid for the actor."""
    pass
