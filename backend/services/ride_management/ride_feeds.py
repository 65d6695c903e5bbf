"""
Feed reads through the backend's feed RPCs.

Rows come back in the backend's shape (legacy status vocabulary included);
they are normalized, checked against the classifier and sorted here so that
the WebSocket layer only ever handles canonical rides.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from feeds.classifier import classify_for_driver, classify_for_passenger, resolve_tab
from feeds.constants import (
    FEED_CATEGORIES,
    RIDE_TIMING_ALIASES,
    RideTiming,
    SERVICE_TYPE_ALIASES,
    ServiceType,
    UserType,
)
from feeds.ordering import feed_name, sort_descending
from feeds.rides import as_id, normalize_ride
from services.backend_rpc import get_backend_client

from .exceptions import FeedFilterError

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 0.5
COUNT_LIMIT = 100


class FeedPage(list):
    """
    Rides kept from one backend page.

    `row_count` is how many rows the backend returned before rows owned by
    another tab were dropped; paging decisions use it, not len().
    """

    def __init__(self, rides: Iterable[Any] = (), row_count: Optional[int] = None):
        super().__init__(rides)
        self.row_count = len(self) if row_count is None else row_count

    def has_more(self, page_size: int) -> bool:
        return self.row_count >= page_size


# ---------------------- Filter mapping ----------------------

def map_service_type(value: Optional[str]) -> Optional[str]:
    """UI ride type filter (TAXI, COURIER, ... or ALL) to backend service_type."""
    if value in (None, "", "ALL", "all"):
        return None
    if value in ServiceType.values:
        return value
    mapped = SERVICE_TYPE_ALIASES.get(str(value).upper())
    if mapped is None:
        raise FeedFilterError(f"Unknown ride type filter: {value}", context={"service_type": value})
    return str(mapped)


def map_ride_timing(value: Optional[str]) -> Optional[str]:
    """UI schedule filter (INSTANT, SCHEDULED, RECURRING or ALL) to backend ride_timing."""
    if value in (None, "", "ALL", "all"):
        return None
    if value in RideTiming.values:
        return value
    mapped = RIDE_TIMING_ALIASES.get(str(value).upper())
    if mapped is None:
        raise FeedFilterError(f"Unknown schedule filter: {value}", context={"ride_timing": value})
    return str(mapped)


def is_series_entry(row: Mapping[str, Any]) -> bool:
    """Recurring series header rows are not rides of their own."""
    return row.get("is_series") is True


def _offset(page: int, page_size: int) -> int:
    return max(page - 1, 0) * page_size


def _call_feed(client, function: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    started = time.monotonic()
    rows = client.rpc(function, params) or []
    duration = time.monotonic() - started
    if duration > SLOW_QUERY_SECONDS:
        logger.warning(
            "Slow feed query %s(%s): %.2fs for %d rows",
            function, params.get("p_feed_category"), duration, len(rows),
        )
    return rows


# ---------------------- Passenger ----------------------

def fetch_passenger_feed(
    user_id: Any,
    category: str,
    service_type: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
    client=None,
) -> FeedPage:
    category = resolve_tab(UserType.PASSENGER, category)
    client = client or get_backend_client()
    rows = _call_feed(client, "get_passenger_feed", {
        "p_user_id": user_id,
        "p_feed_category": category,
        "p_service_type": map_service_type(service_type),
        "p_limit": page_size,
        "p_offset": _offset(page, page_size),
    })

    rides = []
    for row in rows:
        ride = normalize_ride(row)
        if is_series_entry(row) or classify_for_passenger(ride, user_id) == category:
            rides.append(ride)
        else:
            logger.debug("Dropping ride %s from passenger feed %s", ride.id, category)
    return FeedPage(sort_descending(rides, feed_name(UserType.PASSENGER, category)), row_count=len(rows))


# ---------------------- Driver ----------------------

def fetch_driver_offers(driver_id: Any, ride_ids: Optional[Iterable[Any]] = None, client=None) -> List[Dict[str, Any]]:
    """The driver's own offers, optionally limited to some rides."""
    client = client or get_backend_client()
    filters: Dict[str, Any] = {"driver_id": driver_id}
    if ride_ids is not None:
        ride_ids = [as_id(ride_id) for ride_id in ride_ids if as_id(ride_id)]
        if not ride_ids:
            return []
        filters["ride_id"] = ride_ids
    return client.select(
        "ride_offers",
        filters,
        columns="id,ride_id,driver_id,offer_status,created_at",
        order="created_at.desc",
    )


def fetch_driver_feed(
    driver_id: Any,
    category: str,
    service_type: Optional[str] = None,
    ride_timing: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
    offers: Optional[Iterable[Any]] = None,
    client=None,
) -> FeedPage:
    """
    Fetch one driver feed page.

    Rows are re-classified against the driver's offers and anything that
    belongs to another feed is dropped, so a ride never shows in two tabs.
    """
    category = resolve_tab(UserType.DRIVER, category)
    client = client or get_backend_client()
    rows = _call_feed(client, "get_driver_feed", {
        "p_driver_id": driver_id,
        "p_feed_category": category,
        "p_service_type": map_service_type(service_type),
        "p_ride_timing": map_ride_timing(ride_timing),
        "p_limit": page_size,
        "p_offset": _offset(page, page_size),
    })
    if not rows:
        return FeedPage()

    if offers is None:
        offers = fetch_driver_offers(driver_id, [row.get("id") for row in rows], client=client)
    offers = list(offers)

    rides = []
    for row in rows:
        ride = normalize_ride(row)
        if is_series_entry(row) or classify_for_driver(ride, driver_id, offers) == category:
            rides.append(ride)
        else:
            logger.debug("Dropping ride %s from driver feed %s", ride.id, category)
    return FeedPage(sort_descending(rides, feed_name(UserType.DRIVER, category)), row_count=len(rows))


# ---------------------- Shared ----------------------

def fetch_feed(
    user_type: str,
    user_id: Any,
    category: str,
    service_type: Optional[str] = None,
    ride_timing: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
    offers: Optional[Iterable[Any]] = None,
    client=None,
) -> FeedPage:
    if user_type == UserType.PASSENGER:
        return fetch_passenger_feed(user_id, category, service_type, page, page_size, client=client)
    if user_type == UserType.DRIVER:
        return fetch_driver_feed(
            user_id, category, service_type, ride_timing, page, page_size, offers=offers, client=client
        )
    raise ValueError(f"Unknown user type: {user_type}")


def fetch_ride_counts(user_type: str, user_id: Any, client=None) -> Dict[str, int]:
    """Number of rides per feed, capped at COUNT_LIMIT each."""
    client = client or get_backend_client()
    offers = fetch_driver_offers(user_id, client=client) if user_type == UserType.DRIVER else None
    counts = {}
    for category in FEED_CATEGORIES[user_type]:
        rides = fetch_feed(user_type, user_id, category, page_size=COUNT_LIMIT, offers=offers, client=client)
        counts[category] = len(rides)
    return counts
