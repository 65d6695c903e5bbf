"""
Canonical ride and offer shapes.

Every payload that enters the feeds core (RPC rows, realtime change records,
optimistic patches) goes through normalize_ride()/Offer.from_payload() first.
The classifier and the reconciler only ever see these shapes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .constants import (
    LEGACY_ACTIVE_STATUSES,
    RideState,
    TERMINAL_RIDE_STATUSES,
)


def as_id(value: Any) -> Optional[str]:
    """Ids are opaque; compare them as strings."""
    if value is None or value == "":
        return None
    return str(value)


def _lower(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value).strip().lower()


def derive_state(raw: Mapping[str, Any]) -> Optional[str]:
    """
    Map any legacy field combination to a canonical RideState value.

    A terminal ride_status always wins over `state`, since `state` can lag the
    textual status while a transition is being written.
    """
    status = _lower(raw.get("ride_status")) or _lower(raw.get("status"))
    if status in TERMINAL_RIDE_STATUSES:
        return TERMINAL_RIDE_STATUSES[status]

    state = raw.get("state")
    if state:
        upper = str(state).strip().upper()
        if upper in RideState.values:
            return upper
        # Feed RPCs return COALESCE(state, ride_status) as state
        legacy = str(state).strip().lower()
        if legacy in TERMINAL_RIDE_STATUSES:
            return TERMINAL_RIDE_STATUSES[legacy]
        status = status or legacy

    if status == "pending":
        if as_id(raw.get("driver_id")):
            return RideState.ACTIVE_EXECUTION
        return RideState.PENDING
    if status in LEGACY_ACTIVE_STATUSES:
        return RideState.ACTIVE_EXECUTION
    return None


@dataclass(frozen=True)
class Ride:
    """Normalized ride snapshot. `data` keeps the full payload for display."""
    id: Optional[str]
    state: Optional[str]
    ride_status: Optional[str] = None
    execution_sub_state: Optional[str] = None
    passenger_id: Optional[str] = None
    user_id: Optional[str] = None
    driver_id: Optional[str] = None
    service_type: Optional[str] = None
    ride_timing: Optional[str] = None
    series_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.ride_status in TERMINAL_RIDE_STATUSES

    @property
    def status_key(self) -> Optional[str]:
        """Status value used to recognise repeated deliveries of one update."""
        return self.ride_status or self.state

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def merged(self, changes: Mapping[str, Any]) -> "Ride":
        """Return a new Ride with `changes` applied over this one's payload."""
        return normalize_ride({**self.data, **changes})

    def as_dict(self) -> Dict[str, Any]:
        return {**self.data, "id": self.id, "state": self.state}


def normalize_ride(raw: Any) -> Optional[Ride]:
    """Build a canonical Ride from a payload, or return it unchanged if already one."""
    if raw is None:
        return None
    if isinstance(raw, Ride):
        return raw
    if not isinstance(raw, Mapping):
        raise TypeError(f"Cannot normalize ride payload of type {type(raw).__name__}")

    return Ride(
        id=as_id(raw.get("id")),
        state=derive_state(raw),
        ride_status=_lower(raw.get("ride_status")) or _lower(raw.get("status")),
        execution_sub_state=raw.get("execution_sub_state") or None,
        passenger_id=as_id(raw.get("passenger_id")),
        user_id=as_id(raw.get("user_id")),
        driver_id=as_id(raw.get("driver_id")),
        service_type=_lower(raw.get("service_type")),
        ride_timing=_lower(raw.get("ride_timing")),
        series_id=as_id(raw.get("series_id")),
        data=dict(raw),
    )


def has_ride_state(raw: Optional[Mapping[str, Any]]) -> bool:
    """
    True when a change payload's `old` record carries enough to classify.

    Realtime `old` records only hold the primary key unless the table uses
    REPLICA IDENTITY FULL.
    """
    if not raw:
        return False
    return any(raw.get(key) for key in ("state", "ride_status", "status"))


@dataclass(frozen=True)
class Offer:
    """A driver's bid on a pending ride."""
    id: Optional[str]
    ride_id: Optional[str]
    driver_id: Optional[str]
    offer_status: Optional[str]
    created_at: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "Offer":
        if isinstance(raw, Offer):
            return raw
        return cls(
            id=as_id(raw.get("id")),
            ride_id=as_id(raw.get("ride_id")),
            driver_id=as_id(raw.get("driver_id")),
            offer_status=_lower(raw.get("offer_status")) or _lower(raw.get("status")),
            created_at=raw.get("created_at"),
        )

    @property
    def is_active(self) -> bool:
        return self.offer_status in ("pending", "accepted")
