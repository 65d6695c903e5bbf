"""
Per-feed ordering policy.

Each feed resolves a ride's sort timestamp through its own fallback chain of
fields; rides are shown newest first with ties broken by descending id.
"""

from datetime import datetime, timezone as dt_timezone
from typing import Any, Iterable, List, Optional

from django.utils.dateparse import parse_datetime

from common.utils import Coordinates, distance_km, parse_coordinates

from .rides import normalize_ride

_ACTIVE_CHAIN = (
    "scheduled_start_time",
    "scheduled_datetime",
    "started_at",
    "requested_at",
    "created_at",
)
_COMPLETED_CHAIN = ("completed_at", "requested_at", "created_at")
_CANCELLED_CHAIN = ("cancelled_at", "requested_at", "created_at")

FEED_TIMESTAMP_FIELDS = {
    "passenger_pending": (
        "scheduled_start_time",
        "scheduled_datetime",
        "requested_at",
        "created_at",
    ),
    "passenger_active": _ACTIVE_CHAIN,
    "passenger_completed": _COMPLETED_CHAIN,
    "passenger_cancelled": _CANCELLED_CHAIN,
    "driver_available": ("requested_at", "created_at"),
    "driver_my_bids": ("offer_created_at", "requested_at", "created_at"),
    "driver_in_progress": _ACTIVE_CHAIN,
    "driver_completed": _COMPLETED_CHAIN,
    "driver_cancelled": _CANCELLED_CHAIN,
}

DEFAULT_TIMESTAMP_FIELDS = ("requested_at", "created_at")

# Rides without any usable timestamp sort after everything else
MISSING_TIMESTAMP = datetime.min.replace(tzinfo=dt_timezone.utc)


def feed_name(user_type: str, category: str) -> str:
    return f"{user_type}_{category}"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parse_datetime(str(value))
        except ValueError:
            return None
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def timestamp_for(ride: Any, feed: str) -> datetime:
    """Resolve the sort timestamp of a ride within the named feed."""
    ride = normalize_ride(ride)
    for field_name in FEED_TIMESTAMP_FIELDS.get(feed, DEFAULT_TIMESTAMP_FIELDS):
        parsed = _parse_timestamp(ride.get(field_name))
        if parsed is not None:
            return parsed
    return MISSING_TIMESTAMP


def sort_descending(rides: Iterable[Any], feed: str) -> List[Any]:
    """Return a new list sorted newest first, then by descending id."""
    return sorted(
        rides,
        key=lambda ride: (timestamp_for(ride, feed), str(normalize_ride(ride).id or "")),
        reverse=True,
    )


# ---------------------- Distance filtering ----------------------

def pickup_coordinates(ride) -> Optional[Coordinates]:
    return parse_coordinates(
        ride.get("pickup_latitude", ride.get("pickup_lat")),
        ride.get("pickup_longitude", ride.get("pickup_lng")),
    )


def within_radius(ride: Any, origin: Coordinates, radius_km: float) -> bool:
    coordinates = pickup_coordinates(normalize_ride(ride))
    return coordinates is not None and distance_km(origin, coordinates) <= radius_km


def filter_rides_by_distance(rides: Iterable[Any], latitude: float, longitude: float, radius_km: float = 5.0) -> List[Any]:
    """
    Keep rides whose pickup point lies within radius_km of the given point.

    Rides without pickup coordinates are dropped. Each kept ride is annotated
    with `distance_km` in its payload.
    """
    nearby = []
    for item in rides:
        ride = normalize_ride(item)
        coordinates = pickup_coordinates(ride)
        if coordinates is None:
            continue
        distance = distance_km((latitude, longitude), coordinates)
        if distance <= radius_km:
            nearby.append(ride.merged({"distance_km": round(distance, 2)}))
    return nearby
