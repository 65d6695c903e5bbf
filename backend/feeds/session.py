"""
Per-connection feed session.

FeedSession owns everything one connected actor needs: the list of the active
tab, the driver's offer mirror, the reconciler feeding that list from realtime
changes and the transition controller turning category changes into toasts.
Backend reads and actions run in a worker thread through sync_to_async.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from asgiref.sync import sync_to_async

from services import ride_management
from services.backend_rpc import get_backend_client
from common.utils import parse_coordinates
from services.ride_management import RideResult

from .conf import feed_setting
from .constants import DEFAULT_TAB, DriverFeed, UserType
from .exceptions import FeedFilterError
from .feed_list import OPTIMISTIC, FeedList
from .offers import DriverOfferMirror
from .ordering import feed_name, filter_rides_by_distance, within_radius
from .reconciler import FeedHandlers, FeedReconciler, loop_call_later
from .rides import as_id
from .transitions import FeedTransitionController

logger = logging.getLogger(__name__)


class FeedSession:

    def __init__(
        self,
        user_id: Any,
        user_type: str,
        notifier,
        *,
        registry=None,
        client=None,
        access_token: Optional[str] = None,
        scheduler=loop_call_later,
    ):
        self.user_id = as_id(user_id)
        self.user_type = str(user_type)
        self.notifier = notifier
        self.registry = registry
        self.access_token = access_token
        self._client = client

        self.page_size = feed_setting("PAGE_SIZE")
        self.page = 1
        self.has_more = False
        self.service_type: Optional[str] = None
        self.ride_timing: Optional[str] = None
        self.location = None
        self.radius_km = feed_setting("NEARBY_RADIUS_KM")
        self._generation = 0
        self._fetch_task: Optional[asyncio.Future] = None

        self.offers = DriverOfferMirror(self.user_id) if self.user_type == UserType.DRIVER else None
        tab = DEFAULT_TAB[self.user_type]
        self.feed = FeedList(feed_name(self.user_type, tab))

        self.transitions = FeedTransitionController(
            self.user_id,
            self.user_type,
            notifier,
            scheduler=scheduler,
            navigation_delay=feed_setting("CANCEL_NAVIGATION_DELAY_SECONDS"),
        )
        self.reconciler = FeedReconciler(
            self.user_id,
            self.user_type,
            tab,
            handlers=FeedHandlers(
                change_tab=self.change_tab,
                refresh_current_tab=self.refresh_current_tab,
                add_ride=self._add_ride,
                remove_ride=self._remove_ride,
                update_ride=self._update_ride,
                get_ride=self.feed_ride,
                on_new_data_available=self._on_new_data,
                on_transition=self.transitions.handle_category_change,
                on_channel_status=notifier.channel_status,
            ),
            offers=self.offers,
            scheduler=scheduler,
            dedup_window=feed_setting("DEDUP_WINDOW_SECONDS"),
            refresh_delay=feed_setting("REFRESH_DEBOUNCE_SECONDS"),
            offer_refresh_delay=feed_setting("OFFER_REFRESH_DEBOUNCE_SECONDS"),
        )

    @property
    def client(self):
        if self._client is None:
            self._client = get_backend_client(self.access_token)
        return self._client

    @property
    def active_tab(self) -> str:
        return self.reconciler.active_tab

    def feed_ride(self, ride_id):
        return self.feed.get(ride_id)

    # ---------------------- Lifecycle ----------------------

    async def start(self) -> None:
        """Subscribe to realtime changes, then load the default tab."""
        if self.registry is not None:
            self.reconciler.attach(self.registry)
        await self.fetch()

    def close(self) -> None:
        self.reconciler.dispose()
        self.transitions.cancel_pending()
        if self._fetch_task is not None:
            self._fetch_task.cancel()
            self._fetch_task = None

    # ---------------------- Fetching ----------------------

    async def fetch(self, append: bool = False) -> bool:
        """Load the current page of the active tab; returns False if the result was discarded."""
        generation = self._generation
        tab = self.active_tab
        try:
            if self.offers is not None and not append:
                records = await sync_to_async(ride_management.fetch_driver_offers)(self.user_id, client=self.client)
                self.offers.replace(records)
            rides = await sync_to_async(ride_management.fetch_feed)(
                self.user_type,
                self.user_id,
                tab,
                service_type=self.service_type,
                ride_timing=self.ride_timing,
                page=self.page,
                page_size=self.page_size,
                offers=list(self.offers) if self.offers is not None else None,
                client=self.client,
            )
        except Exception:
            logger.exception("Failed to fetch %s feed %s for user %s", self.user_type, tab, self.user_id)
            self.notifier.send({"type": "error", "message": "Could not load rides. Pull to refresh."})
            return False

        if generation != self._generation or tab != self.active_tab:
            logger.debug("Discarding stale %s feed result for user %s", tab, self.user_id)
            return False

        self.has_more = rides.has_more(self.page_size)
        if self._filters_by_distance(tab):
            rides = filter_rides_by_distance(rides, *self.location, radius_km=self.radius_km)
        if append:
            self.feed.extend(rides)
        else:
            self.feed.replace(rides)
        self.notifier.send(self.state_message())
        return True

    def _schedule_fetch(self) -> None:
        self._generation += 1
        self.page = 1
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = asyncio.ensure_future(self.fetch())

    async def load_more(self) -> bool:
        if not self.has_more:
            return False
        self.page += 1
        return await self.fetch(append=True)

    def state_message(self) -> Dict[str, Any]:
        return {
            "type": "feed_state",
            "tab": self.active_tab,
            "rides": self.feed.as_payload(),
            "page": self.page,
            "has_more": self.has_more,
            "filters": {"service_type": self.service_type, "ride_timing": self.ride_timing},
            **self.reconciler.indicator(),
        }

    # ---------------------- View actions ----------------------

    def change_tab(self, tab: str, cause: Optional[Dict[str, Any]] = None) -> str:
        """Switch the active tab; the new tab is fetched right away."""
        tab = self.reconciler.set_active_tab(tab)
        self.feed = FeedList(feed_name(self.user_type, tab))
        self.notifier.send({"type": "tab_changed", "tab": tab, "cause": cause or {"source": "user"}})
        self._schedule_fetch()
        return tab

    def refresh_current_tab(self, cause: Optional[Dict[str, Any]] = None) -> None:
        logger.debug("Refreshing %s for user %s: %s", self.active_tab, self.user_id, cause)
        self._schedule_fetch()

    def manual_refresh(self) -> None:
        self.reconciler.manual_refresh()

    def set_filters(self, service_type: Optional[str] = None, ride_timing: Optional[str] = None) -> None:
        """Validate and apply UI filters; raises FeedFilterError for unknown values."""
        ride_management.map_service_type(service_type)
        if self.user_type == UserType.DRIVER:
            ride_management.map_ride_timing(ride_timing)
        else:
            ride_timing = None
        self.service_type = service_type
        self.ride_timing = ride_timing
        self._schedule_fetch()

    def set_location(self, latitude, longitude) -> None:
        """Limit the available feed to rides picked up within NEARBY_RADIUS_KM of the driver."""
        if self.user_type != UserType.DRIVER:
            raise FeedFilterError("Location filtering is only available to drivers")
        location = parse_coordinates(latitude, longitude)
        if location is None:
            raise FeedFilterError(
                f"Invalid location: {latitude}, {longitude}",
                context={"latitude": latitude, "longitude": longitude},
            )
        self.location = location
        if self.active_tab == DriverFeed.AVAILABLE:
            self._schedule_fetch()

    def _filters_by_distance(self, tab: str) -> bool:
        return self.location is not None and tab == DriverFeed.AVAILABLE

    async def send_counts(self) -> None:
        try:
            counts = await sync_to_async(ride_management.fetch_ride_counts)(
                self.user_type, self.user_id, client=self.client
            )
        except Exception:
            logger.exception("Failed to count %s feeds for user %s", self.user_type, self.user_id)
            self.notifier.send({"type": "error", "message": "Could not load ride counts."})
            return
        self.notifier.send({"type": "feed_counts", "counts": counts})

    # ---------------------- Reconciler effects ----------------------

    def _send_ride(self, message_type: str, ride_id) -> None:
        ride = self.feed.get(ride_id)
        if ride is not None:
            self.notifier.send({"type": message_type, "tab": self.active_tab, "ride": ride.as_dict()})

    def _add_ride(self, ride) -> None:
        if self._filters_by_distance(self.active_tab) and not within_radius(ride, self.location, self.radius_km):
            logger.debug("Ride %s is outside %s km of driver %s", ride.id, self.radius_km, self.user_id)
            return
        if self.feed.insert(ride):
            self._send_ride("ride_added", ride.id)

    def _remove_ride(self, ride_id) -> None:
        if self.feed.remove(ride_id):
            self.notifier.send({"type": "ride_removed", "tab": self.active_tab, "ride_id": as_id(ride_id)})

    def _update_ride(self, ride_id, ride) -> None:
        if self.feed.patch(ride_id, ride):
            self._send_ride("ride_updated", ride_id)

    def _on_new_data(self, tab, ride=None) -> None:
        self.notifier.send({
            "type": "new_data",
            "tab": tab,
            "ride_id": ride.id if ride is not None else None,
            **self.reconciler.indicator(),
        })

    # ---------------------- Ride actions ----------------------

    def _optimistic_remove(self, ride_id) -> None:
        if self.feed.remove(ride_id, origin=OPTIMISTIC):
            self.notifier.send({"type": "ride_removed", "tab": self.active_tab, "ride_id": as_id(ride_id)})

    def _optimistic_patch(self, ride_id, changes) -> None:
        if self.feed.patch(ride_id, changes, origin=OPTIMISTIC):
            self._send_ride("ride_updated", ride_id)

    def _settle(self, ride_id, result: RideResult) -> RideResult:
        if not result.success and self.feed.rollback(ride_id):
            self.notifier.send(self.state_message())
        return result

    async def accept_bid(self, ride_id, offer_id, driver_id) -> RideResult:
        self._optimistic_remove(ride_id)
        result = await sync_to_async(ride_management.accept_driver_bid)(
            ride_id, offer_id, driver_id, self.user_id, client=self.client
        )
        return self._settle(ride_id, result)

    async def cancel_ride(self, ride_id) -> RideResult:
        self._optimistic_remove(ride_id)
        result = await sync_to_async(ride_management.cancel_ride)(
            ride_id, self.user_type, self.user_id, client=self.client
        )
        return self._settle(ride_id, result)

    async def confirm_payment(self, ride_id) -> RideResult:
        self._optimistic_remove(ride_id)
        result = await sync_to_async(ride_management.confirm_payment)(ride_id, self.user_id, client=self.client)
        return self._settle(ride_id, result)

    async def advance_trip(self, ride_id, step: str) -> RideResult:
        if step not in ride_management.TRIP_STEPS:
            raise ValueError(f"Unknown trip step: {step}")
        state, sub_state = ride_management.TRIP_STEP_SUB_STATES[step]
        self._optimistic_patch(ride_id, {"state": state, "execution_sub_state": sub_state})
        result = await sync_to_async(ride_management.TRIP_STEPS[step])(ride_id, self.user_id, client=self.client)
        return self._settle(ride_id, result)
