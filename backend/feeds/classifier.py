"""
Feed classification.

Maps a ride snapshot and an actor (plus the driver's own offers) to the one
feed the ride belongs to for that actor, or None when it is irrelevant or in
a transitional state. Classification only looks at the canonical `state`;
terminal legacy statuses are already folded into it by normalize_ride().
"""

from typing import Any, Dict, Iterable, Optional

from .constants import (
    ACTIVE_STATES,
    DriverFeed,
    FEED_CATEGORIES,
    LEGACY_TAB_ALIASES,
    OfferStatus,
    PassengerFeed,
    RideState,
    UserType,
)
from .exceptions import InvalidFeedCategoryError
from .rides import Offer, Ride, as_id, normalize_ride


def classify_for_passenger(ride: Any, passenger_id: Any) -> Optional[str]:
    ride = normalize_ride(ride)
    passenger_id = as_id(passenger_id)
    if ride is None or passenger_id is None:
        return None
    if passenger_id not in (ride.passenger_id, ride.user_id):
        return None

    if ride.state == RideState.PENDING:
        return PassengerFeed.PENDING
    if ride.state in ACTIVE_STATES:
        return PassengerFeed.ACTIVE
    if ride.state == RideState.COMPLETED_FINAL:
        return PassengerFeed.COMPLETED
    if ride.state == RideState.CANCELLED:
        return PassengerFeed.CANCELLED
    return None


def _offer_priority(offer: Offer):
    rank = {OfferStatus.ACCEPTED: 2, OfferStatus.PENDING: 1}.get(offer.offer_status, 0)
    return (rank, str(offer.created_at or ""))


def driver_offers_for_ride(ride: Ride, driver_id: str, driver_offers: Iterable[Any]):
    return [
        offer for offer in (Offer.from_payload(o) for o in driver_offers or ())
        if offer.ride_id == ride.id and offer.driver_id == driver_id
    ]


def select_driver_offer(ride: Ride, driver_id: str, driver_offers: Iterable[Any]) -> Optional[Offer]:
    """Pick the driver's offer that decides classification: accepted, then pending, then latest."""
    offers = driver_offers_for_ride(ride, driver_id, driver_offers)
    if not offers:
        return None
    return max(offers, key=_offer_priority)


def classify_for_driver(ride: Any, driver_id: Any, driver_offers: Iterable[Any] = ()) -> Optional[str]:
    ride = normalize_ride(ride)
    driver_id = as_id(driver_id)
    if ride is None or driver_id is None:
        return None

    if ride.state == RideState.PENDING:
        offer = select_driver_offer(ride, driver_id, driver_offers)
        if offer is None or not offer.is_active:
            return DriverFeed.AVAILABLE
        if offer.offer_status == OfferStatus.PENDING and ride.driver_id is None:
            return DriverFeed.MY_BIDS
        # Accepted bid on a ride that is not assigned yet
        return None

    if ride.state in ACTIVE_STATES:
        return DriverFeed.IN_PROGRESS if ride.driver_id == driver_id else None

    if ride.state == RideState.COMPLETED_FINAL:
        return DriverFeed.COMPLETED if ride.driver_id == driver_id else None

    if ride.state == RideState.CANCELLED:
        if ride.driver_id == driver_id:
            return DriverFeed.CANCELLED
        if driver_offers_for_ride(ride, driver_id, driver_offers):
            return DriverFeed.CANCELLED
        return None

    return None


def classify(ride: Any, user_type: str, user_id: Any, driver_offers: Iterable[Any] = ()) -> Optional[str]:
    """Classify for either actor type."""
    if user_type == UserType.PASSENGER:
        return classify_for_passenger(ride, user_id)
    if user_type == UserType.DRIVER:
        return classify_for_driver(ride, user_id, driver_offers)
    raise ValueError(f"Unknown user type: {user_type}")


def category_flags(ride: Any, user_type: str, user_id: Any, driver_offers: Iterable[Any] = ()) -> Dict[str, bool]:
    """Membership of the ride in every feed of the actor; at most one is True."""
    category = classify(ride, user_type, user_id, driver_offers)
    return {name: name == category for name in FEED_CATEGORIES[user_type]}


# ---------------------- Feed helpers ----------------------

def resolve_tab(user_type: str, tab: Any) -> str:
    """Accept a feed category or one of its legacy tab names."""
    if user_type not in FEED_CATEGORIES:
        raise ValueError(f"Unknown user type: {user_type}")
    if tab in FEED_CATEGORIES[user_type]:
        return str(tab)
    alias = LEGACY_TAB_ALIASES[user_type].get(str(tab).upper()) if tab else None
    if alias is None:
        raise InvalidFeedCategoryError(
            f"Invalid feed category '{tab}' for {user_type}",
            context={"user_type": user_type, "category": tab},
        )
    return str(alias)


def validate_feed_category(user_type: str, category: Any) -> str:
    return resolve_tab(user_type, category)


def is_recurring_ride(ride: Any) -> bool:
    ride = normalize_ride(ride)
    if ride is None:
        return False
    return bool(ride.series_id) or ride.ride_timing == "scheduled_recurring"


_DISPLAY_NAMES = {
    PassengerFeed.PENDING: "Pending",
    PassengerFeed.ACTIVE: "Active",
    DriverFeed.AVAILABLE: "Available",
    DriverFeed.MY_BIDS: "My Bids",
    DriverFeed.IN_PROGRESS: "In Progress",
    DriverFeed.COMPLETED: "Completed",
    DriverFeed.CANCELLED: "Cancelled",
}


def feed_display_name(category: Optional[str]) -> str:
    if not category:
        return ""
    return _DISPLAY_NAMES.get(category, str(category).replace("_", " ").title())
