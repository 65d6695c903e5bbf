"""
Local feed list with per-ride tagging of confirmed vs optimistic state.

Each entry keeps the last confirmed snapshot from the backend and, on top of
it, whatever optimistic change the session applied locally. A confirmed write
always replaces the entry's optimistic state; rollback() drops it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .ordering import sort_descending
from .rides import Ride, as_id, normalize_ride

CONFIRMED = "confirmed"
OPTIMISTIC = "optimistic"


@dataclass
class FeedEntry:
    confirmed: Optional[Ride] = None
    overlay: Dict[str, Any] = field(default_factory=dict)
    hidden: bool = False

    @property
    def origin(self) -> str:
        if self.confirmed is None or self.overlay or self.hidden:
            return OPTIMISTIC
        return CONFIRMED

    @property
    def ride(self) -> Ride:
        if self.confirmed is None:
            return normalize_ride(self.overlay)
        if self.overlay:
            return self.confirmed.merged(self.overlay)
        return self.confirmed


class FeedList:
    """Rides currently shown in one tab."""

    def __init__(self, feed: str, rides: Iterable[Any] = ()):
        self.feed = feed
        self.version = 0
        self._entries: Dict[str, FeedEntry] = {}
        if rides:
            self.replace(rides)

    def _changed(self) -> bool:
        self.version += 1
        return True

    # ---------------------- Confirmed loads ----------------------

    def replace(self, rides: Iterable[Any]) -> None:
        """Replace the whole list with a confirmed fetch result."""
        self._entries = {}
        for item in rides:
            ride = normalize_ride(item)
            if ride is not None and ride.id is not None:
                self._entries[ride.id] = FeedEntry(confirmed=ride)
        self._changed()

    def extend(self, rides: Iterable[Any]) -> int:
        """Append a further confirmed page; returns how many rides were new."""
        added = 0
        for item in rides:
            ride = normalize_ride(item)
            if ride is None or ride.id is None or ride.id in self._entries:
                continue
            self._entries[ride.id] = FeedEntry(confirmed=ride)
            added += 1
        if added:
            self._changed()
        return added

    # ---------------------- Mutations ----------------------

    def insert(self, ride: Any, origin: str = CONFIRMED) -> bool:
        ride = normalize_ride(ride)
        if ride is None or ride.id is None:
            return False
        entry = self._entries.get(ride.id)

        if origin == CONFIRMED:
            self._entries[ride.id] = FeedEntry(confirmed=ride)
            return self._changed()

        if entry is None:
            self._entries[ride.id] = FeedEntry(overlay=dict(ride.data))
            return self._changed()
        if entry.hidden:
            entry.hidden = False
            return self._changed()
        return False

    def remove(self, ride_id: Any, origin: str = CONFIRMED) -> bool:
        ride_id = as_id(ride_id)
        entry = self._entries.get(ride_id)
        if entry is None:
            return False
        if origin == CONFIRMED:
            del self._entries[ride_id]
            return self._changed()
        if entry.hidden:
            return False
        entry.hidden = True
        return self._changed()

    def patch(self, ride_id: Any, changes: Any, origin: str = CONFIRMED) -> bool:
        """Apply changes to a listed ride. `changes` may be a full Ride snapshot."""
        ride_id = as_id(ride_id)
        entry = self._entries.get(ride_id)
        if entry is None:
            return False
        if isinstance(changes, Ride):
            changes = changes.data

        if origin == CONFIRMED:
            base = entry.confirmed or entry.ride
            self._entries[ride_id] = FeedEntry(confirmed=base.merged(changes))
            return self._changed()

        entry.overlay.update(changes)
        return self._changed()

    def rollback(self, ride_id: Any) -> bool:
        """Discard optimistic state of a ride, restoring its confirmed snapshot."""
        ride_id = as_id(ride_id)
        entry = self._entries.get(ride_id)
        if entry is None or entry.origin == CONFIRMED:
            return False
        if entry.confirmed is None:
            del self._entries[ride_id]
        else:
            entry.overlay = {}
            entry.hidden = False
        return self._changed()

    # ---------------------- Reads ----------------------

    def get(self, ride_id: Any) -> Optional[Ride]:
        entry = self._entries.get(as_id(ride_id))
        if entry is None or entry.hidden:
            return None
        return entry.ride

    def origin_of(self, ride_id: Any) -> Optional[str]:
        entry = self._entries.get(as_id(ride_id))
        return entry.origin if entry else None

    def __contains__(self, ride_id: Any) -> bool:
        return self.get(ride_id) is not None

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if not entry.hidden)

    @property
    def rides(self) -> List[Ride]:
        visible = [entry.ride for entry in self._entries.values() if not entry.hidden]
        return sort_descending(visible, self.feed)

    def as_payload(self) -> List[Mapping[str, Any]]:
        return [ride.as_dict() for ride in self.rides]
