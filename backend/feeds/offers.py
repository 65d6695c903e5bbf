"""Local mirror of one driver's offers, fed by fetches and realtime events."""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from .rides import Offer, as_id

logger = logging.getLogger(__name__)


class DriverOfferMirror:
    """
    Offers keyed by id. Realtime payloads are merged over the stored record so
    partial updates (e.g. only offer_status) keep the ride/driver linkage.
    """

    def __init__(self, driver_id: Any, offers: Iterable[Mapping[str, Any]] = ()):
        self.driver_id = as_id(driver_id)
        self._records: Dict[str, Dict[str, Any]] = {}
        self.replace(offers)

    def replace(self, offers: Iterable[Mapping[str, Any]]) -> None:
        """Load a confirmed fetch of the driver's offers."""
        self._records = {}
        for record in offers or ():
            self.apply(record)

    def apply(self, payload: Optional[Mapping[str, Any]]) -> Optional[Offer]:
        """Upsert one offer record; returns the merged offer or None if ignored."""
        if not payload:
            return None
        offer_id = as_id(payload.get("id"))
        if offer_id is None:
            logger.debug("Ignoring offer payload without id: %s", payload)
            return None

        record = {**self._records.get(offer_id, {}), **payload}
        offer = Offer.from_payload(record)
        if offer.driver_id != self.driver_id:
            logger.debug("Ignoring offer %s of driver %s", offer_id, offer.driver_id)
            return None

        self._records[offer_id] = record
        return offer

    def get(self, offer_id: Any) -> Optional[Offer]:
        record = self._records.get(as_id(offer_id))
        return Offer.from_payload(record) if record else None

    def for_ride(self, ride_id: Any) -> List[Offer]:
        ride_id = as_id(ride_id)
        return [offer for offer in self if offer.ride_id == ride_id]

    def __iter__(self) -> Iterator[Offer]:
        return (Offer.from_payload(record) for record in list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)
