"""User-facing messages for failed ride actions, keyed by error code."""

from typing import Dict

ACTION_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "driver_unavailable": {
        "title": "Driver Unavailable",
        "message": "This driver is currently engaged in another trip. Please try another driver or wait a few moments.",
        "action": "refresh_offers",
    },
    "ride_not_available": {
        "title": "Ride Not Available",
        "message": "This ride is no longer available. It may have been cancelled or accepted by another driver.",
        "action": "refresh_page",
    },
    "transaction_failed": {
        "title": "Transaction Failed",
        "message": "Failed to accept bid due to a database error. Please try again.",
        "action": "retry",
    },
    "network_error": {
        "title": "Network Error",
        "message": "Unable to connect to the server. Please check your connection and try again.",
        "action": "retry",
    },
    "function_not_found": {
        "title": "Service Unavailable",
        "message": "This service is temporarily unavailable. Please contact support.",
        "action": "contact_support",
    },
    "invalid_transition": {
        "title": "Action Not Allowed",
        "message": "This ride can no longer be updated this way.",
        "action": "refresh_page",
    },
    "unknown_error": {
        "title": "Action Failed",
        "message": "We couldn't complete this action. Please try again.",
        "action": "retry",
    },
    "unexpected_error": {
        "title": "Unexpected Error",
        "message": "An unexpected error occurred. Please try again.",
        "action": "retry",
    },
}


def get_action_error_message(error_code: str) -> Dict[str, str]:
    """Look up title/message/action for an error code; unknown codes get the generic entry."""
    return ACTION_ERROR_MESSAGES.get(error_code) or ACTION_ERROR_MESSAGES["unexpected_error"]
