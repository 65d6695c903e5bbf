"""
Realtime reconciliation of one actor's feed view.

FeedReconciler consumes ride and offer change events for one
(user, user type, active tab) session and applies exactly one mutation
strategy per event:

    1. patch in place      ride stays in the tab being viewed
    2. remove + flag       ride left the tab, destination tab gets flagged
    3. insert              ride entered the tab from elsewhere
    4. forced tab switch   policy transitions such as my_bids -> in_progress
    5. flag only           ride moved between tabs not being viewed

Anything it cannot place confidently falls back to a debounced refresh of the
active tab. The engine never touches the feed list itself; all effects go
through the injected FeedHandlers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Mapping, Optional

from .classifier import classify, resolve_tab
from .constants import (
    ACTIVE_TABS,
    DEFAULT_TAB,
    DriverFeed,
    FORCED_TAB_SWITCHES,
    OfferStatus,
    UserType,
)
from .offers import DriverOfferMirror
from .rides import Ride, as_id, has_ride_state, normalize_ride

logger = logging.getLogger(__name__)

# Old category could not be derived from the event or the local list
UNKNOWN = object()


def loop_call_later(delay: float, callback: Callable[[], None]):
    """Default scheduler: run callback on the running event loop after delay seconds."""
    return asyncio.get_running_loop().call_later(delay, callback)


def _noop(*args, **kwargs):
    return None


@dataclass
class FeedHandlers:
    """
    Effects the engine is allowed to perform.

    change_tab(tab, cause)               switch the view; the switch itself fetches
    refresh_current_tab(cause)           refetch the active tab
    add_ride(ride)                       insert into the local list
    remove_ride(ride_id)                 remove from the local list
    update_ride(ride_id, ride)           patch a listed ride
    get_ride(ride_id) -> Ride | None     read the local list
    on_new_data_available(tab, ride)     a tab other than the active one has news
    on_transition(ride, old, new)        confirmed category transition
    on_channel_status(status)            transport status of the feed channel
    """
    change_tab: Callable[[str, Dict[str, Any]], Any] = _noop
    refresh_current_tab: Callable[[Dict[str, Any]], Any] = _noop
    add_ride: Callable[[Ride], Any] = _noop
    remove_ride: Callable[[str], Any] = _noop
    update_ride: Callable[[str, Ride], Any] = _noop
    get_ride: Callable[[str], Optional[Ride]] = _noop
    on_new_data_available: Callable[[str, Optional[Ride]], Any] = _noop
    on_transition: Callable[[Ride, Any, Optional[str]], Any] = _noop
    on_channel_status: Callable[[str], Any] = _noop


class FeedReconciler:

    def __init__(
        self,
        user_id: Any,
        user_type: str,
        active_tab: Optional[str] = None,
        handlers: Optional[FeedHandlers] = None,
        offers: Optional[DriverOfferMirror] = None,
        *,
        scheduler: Callable = loop_call_later,
        clock: Callable[[], float] = time.monotonic,
        dedup_window: float = 0.5,
        refresh_delay: float = 0.5,
        offer_refresh_delay: float = 0.3,
    ):
        if user_type not in (UserType.PASSENGER, UserType.DRIVER):
            raise ValueError(f"Unknown user type: {user_type}")
        self.user_id = as_id(user_id)
        self.user_type = str(user_type)
        self.handlers = handlers or FeedHandlers()
        self.offers = offers
        if self.offers is None and self.user_type == UserType.DRIVER:
            self.offers = DriverOfferMirror(self.user_id)

        self._active_tab = resolve_tab(self.user_type, active_tab or DEFAULT_TAB[self.user_type])
        self._scheduler = scheduler
        self._clock = clock
        self.dedup_window = dedup_window
        self.refresh_delay = refresh_delay
        self.offer_refresh_delay = offer_refresh_delay

        self._processing = False
        self._recent_events: Dict[tuple, float] = {}
        self._new_data_tabs: Dict[str, None] = {}
        self._pending_refresh = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._channel_errored = False

    # ---------------------- View state ----------------------

    @property
    def active_tab(self) -> str:
        return self._active_tab

    def set_active_tab(self, tab: str) -> str:
        """Follow the view to another tab; the tab's pending flag is consumed."""
        self._active_tab = resolve_tab(self.user_type, tab)
        self._new_data_tabs.pop(self._active_tab, None)
        return self._active_tab

    @property
    def has_new_data_available(self) -> bool:
        return bool(self._new_data_tabs)

    @property
    def new_data_tabs(self) -> List[str]:
        return list(self._new_data_tabs)

    def indicator(self) -> Dict[str, Any]:
        return {
            "has_new_data_available": self.has_new_data_available,
            "new_data_tabs": self.new_data_tabs,
        }

    def update_handlers(self, **handlers) -> None:
        """Swap individual effect callbacks, e.g. after the view re-binds them."""
        known = {f.name for f in fields(FeedHandlers)}
        for name, handler in handlers.items():
            if name not in known:
                raise TypeError(f"Unknown feed handler: {name}")
            if not callable(handler):
                raise TypeError(f"Feed handler {name} must be callable")
            setattr(self.handlers, name, handler)

    def category_for(self, ride: Optional[Ride]) -> Optional[str]:
        if ride is None:
            return None
        offers = list(self.offers) if self.offers is not None else ()
        return classify(ride, self.user_type, self.user_id, offers)

    # ---------------------- Refresh ----------------------

    def manual_refresh(self) -> None:
        """Clear every new-data flag and refetch the active tab unconditionally."""
        self._cancel_pending_refresh()
        self._new_data_tabs.clear()
        self.handlers.refresh_current_tab({"source": "manual_refresh", "tab": self._active_tab})

    def debounced_refresh(self, tab: Optional[str] = None, delay: Optional[float] = None) -> None:
        """Schedule a refetch of `tab`; it only runs if that tab is still active."""
        tab = tab or self._active_tab
        delay = self.refresh_delay if delay is None else delay
        self._cancel_pending_refresh()

        def fire():
            self._pending_refresh = None
            if tab != self._active_tab:
                logger.debug("Skipping debounced refresh of inactive tab %s", tab)
                return
            self.handlers.refresh_current_tab({"source": "realtime_debounced", "tab": tab})

        self._pending_refresh = self._scheduler(delay, fire)

    def _cancel_pending_refresh(self) -> None:
        if self._pending_refresh is not None:
            self._pending_refresh.cancel()
            self._pending_refresh = None

    def _flag(self, tab: Optional[str], ride: Optional[Ride] = None) -> None:
        if not tab or tab == self._active_tab:
            return
        self._new_data_tabs[tab] = None
        self.handlers.on_new_data_available(tab, ride)

    # ---------------------- Deduplication ----------------------

    def _is_duplicate(self, ride: Ride) -> bool:
        now = self._clock()
        for key, seen_at in list(self._recent_events.items()):
            if now - seen_at >= self.dedup_window:
                del self._recent_events[key]

        key = (ride.id, ride.status_key)
        if key in self._recent_events:
            return True
        self._recent_events[key] = now
        return False

    # ---------------------- Ride events ----------------------

    def handle_ride_update(self, payload: Mapping[str, Any]) -> None:
        if self._processing:
            logger.debug("Dropping ride update received while processing another event")
            return
        self._processing = True
        try:
            ride = normalize_ride(payload.get("new") or {})
            if ride is None or ride.id is None:
                return
            if self._is_duplicate(ride):
                logger.debug("Duplicate update for ride %s (%s)", ride.id, ride.status_key)
                return
            old_raw = payload.get("old") or {}
            old_ride = normalize_ride(old_raw) if has_ride_state(old_raw) else None
            self._apply_ride_change(ride, old_ride)
        except Exception:
            logger.exception("Failed to reconcile ride update for %s user %s", self.user_type, self.user_id)
            self.debounced_refresh()
        finally:
            self._processing = False

    def _apply_ride_change(self, ride: Ride, old_ride: Optional[Ride]) -> None:
        current = self._active_tab
        listed = self.handlers.get_ride(ride.id)

        if listed is not None:
            old_category = current
        elif old_ride is not None:
            old_category = self.category_for(old_ride)
        else:
            old_category = UNKNOWN
        new_category = self.category_for(ride)

        if old_category is not UNKNOWN and old_category != new_category:
            self.handlers.on_transition(ride, old_category, new_category)

        if ride.is_terminal:
            self._apply_terminal(ride, new_category, listed is not None)
            return

        # 1. same feed, same tab
        if new_category == current and old_category == current:
            self.handlers.update_ride(ride.id, ride)
            return

        # 4. forced tab switch
        if (old_category, new_category) in FORCED_TAB_SWITCHES[self.user_type] and new_category != current:
            self.handlers.change_tab(new_category, {
                "source": "realtime_tab_switch",
                "ride_id": ride.id,
                "from": old_category,
            })
            return

        # 2. left the current tab
        if old_category == current:
            self.handlers.remove_ride(ride.id)
            self._flag(new_category, ride)
            return

        # 3. entered the current tab
        if new_category == current:
            self.handlers.add_ride(ride)
            return

        # 5. moved somewhere else
        if new_category is not None:
            self._flag(new_category, ride)
            return

        self.debounced_refresh()

    def _apply_terminal(self, ride: Ride, category: Optional[str], listed: bool) -> None:
        current = self._active_tab
        if category == current:
            if listed:
                self.handlers.update_ride(ride.id, ride)
            else:
                self.handlers.add_ride(ride)
            return
        if listed or current in ACTIVE_TABS:
            self.handlers.remove_ride(ride.id)
        self._flag(category, ride)

    def handle_ride_insert(self, payload: Mapping[str, Any]) -> None:
        if self._processing:
            logger.debug("Dropping ride insert received while processing another event")
            return
        self._processing = True
        try:
            ride = normalize_ride(payload.get("new") or {})
            if ride is None or ride.id is None or self._is_duplicate(ride):
                return
            category = self.category_for(ride)
            if category is None:
                logger.debug("Inserted ride %s is not relevant to %s %s", ride.id, self.user_type, self.user_id)
                return
            if category == self._active_tab:
                self.handlers.add_ride(ride)
            else:
                self._flag(category, ride)
        except Exception:
            logger.exception("Failed to reconcile ride insert for %s user %s", self.user_type, self.user_id)
            self.debounced_refresh()
        finally:
            self._processing = False

    # ---------------------- Offer events ----------------------

    def handle_offer_event(self, payload: Mapping[str, Any]) -> None:
        if self.user_type != UserType.DRIVER:
            return
        if self._processing:
            logger.debug("Dropping offer event received while processing another event")
            return
        self._processing = True
        try:
            record = payload.get("new") or {}
            previous = self.offers.get(record.get("id"))
            offer = self.offers.apply(record)
            if offer is None:
                return
            current = self._active_tab

            if offer.offer_status == OfferStatus.ACCEPTED and (previous is None or previous.offer_status != OfferStatus.ACCEPTED):
                # Later ride updates classify against the accepted offer, never from my_bids
                ride = self.handlers.get_ride(offer.ride_id) or normalize_ride({"id": offer.ride_id})
                self.handlers.on_transition(ride, DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS)

            if offer.offer_status == OfferStatus.ACCEPTED and current == DriverFeed.MY_BIDS:
                self.handlers.change_tab(DriverFeed.IN_PROGRESS, {
                    "source": "offer_accepted",
                    "offer_id": offer.id,
                    "ride_id": offer.ride_id,
                })
                return

            if offer.offer_status == OfferStatus.REJECTED and current == DriverFeed.MY_BIDS:
                self.debounced_refresh(DriverFeed.MY_BIDS, self.offer_refresh_delay)
                return

            listed = self.handlers.get_ride(offer.ride_id)
            if listed is not None:
                category = self.category_for(listed)
                if category != current:
                    self.handlers.remove_ride(listed.id)
                    self._flag(category, listed)
                return

            if offer.offer_status == OfferStatus.PENDING:
                self._flag(DriverFeed.MY_BIDS)
                return

            self.debounced_refresh()
        except Exception:
            logger.exception("Failed to reconcile offer event for driver %s", self.user_id)
            self.debounced_refresh()
        finally:
            self._processing = False

    # ---------------------- Channel status ----------------------

    def handle_channel_status(self, status: str) -> None:
        self.handlers.on_channel_status(status)
        if status == "SUBSCRIBED":
            if self._channel_errored:
                # Changes may have been missed while the channel was down
                self._channel_errored = False
                self.debounced_refresh()
        else:
            self._channel_errored = True

    # ---------------------- Subscriptions ----------------------

    @property
    def channel_name(self) -> str:
        return f"feed-{self.user_type}-{self.user_id}"

    def attach(self, registry) -> None:
        """Subscribe every topic this actor's feeds depend on."""
        if self._unsubscribers:
            return
        channel = self.channel_name
        owner_column = "driver_id" if self.user_type == UserType.DRIVER else "user_id"
        owner_filter = f"{owner_column}=eq.{self.user_id}"

        subscribe = registry.subscribe_postgres_changes
        self._unsubscribers = [
            subscribe(channel, "rides", self.handle_ride_update, event="UPDATE", filter=owner_filter),
            subscribe(channel, "rides", self.handle_ride_insert, event="INSERT", filter=owner_filter),
        ]
        if self.user_type == UserType.DRIVER:
            offer_filter = f"driver_id=eq.{self.user_id}"
            self._unsubscribers += [
                subscribe(channel, "ride_offers", self.handle_offer_event, event="UPDATE", filter=offer_filter),
                subscribe(channel, "ride_offers", self.handle_offer_event, event="INSERT", filter=offer_filter),
                # Open rides, and rides taken by other drivers
                subscribe(channel, "rides", self.handle_ride_update, event="UPDATE", filter="ride_status=eq.pending"),
                subscribe(channel, "rides", self.handle_ride_insert, event="INSERT", filter="ride_status=eq.pending"),
            ]
        self._unsubscribers.append(registry.subscribe_channel_status(channel, self.handle_channel_status))
        logger.info("Feed reconciler attached to %s", channel)

    def dispose(self) -> None:
        """Release every subscription and cancel pending work."""
        self._cancel_pending_refresh()
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
