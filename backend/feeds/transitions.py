"""
User-facing side effects of feed category transitions.

The controller turns a confirmed category change of a ride (e.g. a passenger's
ride moving from pending to active) into a toast and, for some transitions, a
navigation. Each logical transition fires at most once per ride.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .classifier import classify
from .constants import DriverFeed, PassengerFeed, UserType
from .rides import as_id, normalize_ride
from .reconciler import loop_call_later

logger = logging.getLogger(__name__)

# Rides whose last fired transition is remembered
MAX_TRACKED_RIDES = 200


@dataclass(frozen=True)
class Toast:
    level: str
    title: str
    message: str
    duration_ms: int = 4000

    def as_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "title": self.title,
            "message": self.message,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class TransitionEffect:
    toast: Toast
    navigate_to: Optional[str] = None
    delayed: bool = False


_PASSENGER_CANCELLED = TransitionEffect(
    toast=Toast("warning", "❌ Ride Cancelled", "This ride has been cancelled.", 5000),
    navigate_to="/rides",
    delayed=True,
)

_DRIVER_CANCELLED = TransitionEffect(
    toast=Toast("warning", "❌ Ride Cancelled", "The passenger cancelled this ride.", 5000),
    navigate_to="/driver/rides",
    delayed=True,
)

TRANSITION_EFFECTS: Dict[Tuple[str, Optional[str], Optional[str]], TransitionEffect] = {
    (UserType.PASSENGER, PassengerFeed.PENDING, PassengerFeed.ACTIVE): TransitionEffect(
        toast=Toast("success", "🎉 Offer Accepted!", "Your ride is now active. Driver is on the way!", 5000),
        navigate_to="/rides/{ride_id}/active",
    ),
    (UserType.PASSENGER, PassengerFeed.ACTIVE, PassengerFeed.COMPLETED): TransitionEffect(
        toast=Toast("success", "✅ Ride Completed", "Thank you for riding with us!", 4000),
        navigate_to="/rides/{ride_id}/completed",
    ),
    (UserType.DRIVER, DriverFeed.MY_BIDS, DriverFeed.IN_PROGRESS): TransitionEffect(
        toast=Toast("success", "🎉 Your Offer Was Accepted!", "Head to the pickup location.", 5000),
        navigate_to="/driver/rides/{ride_id}/active",
    ),
    (UserType.DRIVER, DriverFeed.MY_BIDS, None): TransitionEffect(
        toast=Toast("info", "Offer Not Accepted", "The passenger chose another driver for this ride.", 4000),
    ),
}


def effect_for(user_type: str, old_category: Optional[str], new_category: Optional[str]) -> Optional[TransitionEffect]:
    if old_category == new_category:
        return None
    if new_category == PassengerFeed.CANCELLED:
        return _DRIVER_CANCELLED if user_type == UserType.DRIVER else _PASSENGER_CANCELLED
    return TRANSITION_EFFECTS.get((user_type, old_category, new_category))


def ride_detail_path(user_type: str, ride_id: Any, category: Optional[str]) -> str:
    """Route of the screen that shows a ride in the given category."""
    prefix = "/driver/rides" if user_type == UserType.DRIVER else "/rides"
    if category in (PassengerFeed.ACTIVE, DriverFeed.IN_PROGRESS):
        return f"{prefix}/{ride_id}/active"
    if category == PassengerFeed.COMPLETED:
        return f"{prefix}/{ride_id}/completed"
    return prefix


class FeedTransitionController:
    """
    `notifier` needs toast(level, title, message, duration_ms) and navigate(path).
    Delayed navigations go through `scheduler(delay, callback)`.
    """

    def __init__(
        self,
        user_id: Any,
        user_type: str,
        notifier,
        *,
        scheduler: Callable = loop_call_later,
        navigation_delay: float = 2.0,
    ):
        self.user_id = as_id(user_id)
        self.user_type = str(user_type)
        self.notifier = notifier
        self._scheduler = scheduler
        self.navigation_delay = navigation_delay
        self._last_fired: "OrderedDict[str, Tuple[Optional[str], Optional[str]]]" = OrderedDict()
        self._pending_navigation: Dict[str, Any] = {}

    def handle_state_change(self, ride_before: Any, ride_after: Any, driver_offers: Iterable[Any] = ()) -> bool:
        """Classify both snapshots and fire the effect of their transition, if any."""
        before = normalize_ride(ride_before)
        after = normalize_ride(ride_after)
        if before is None or after is None:
            return False
        offers = list(driver_offers)
        old_category = classify(before, self.user_type, self.user_id, offers)
        new_category = classify(after, self.user_type, self.user_id, offers)
        return self.handle_category_change(after, old_category, new_category)

    def handle_category_change(self, ride: Any, old_category: Optional[str], new_category: Optional[str]) -> bool:
        ride = normalize_ride(ride)
        effect = effect_for(self.user_type, old_category, new_category)
        if effect is None or ride is None or ride.id is None:
            return False

        transition = (old_category, new_category)
        if self._last_fired.get(ride.id) == transition:
            logger.debug("Transition %s already handled for ride %s", transition, ride.id)
            return False
        self._remember(ride.id, transition)

        toast = effect.toast
        self.notifier.toast(toast.level, toast.title, toast.message, toast.duration_ms)

        if effect.navigate_to:
            path = effect.navigate_to.format(ride_id=ride.id)
            if effect.delayed:
                self._navigate_later(ride.id, path)
            else:
                self.notifier.navigate(path)

        logger.info(
            "Ride %s moved %s -> %s for %s %s",
            ride.id, old_category, new_category, self.user_type, self.user_id,
        )
        return True

    def _remember(self, ride_id: str, transition) -> None:
        self._last_fired[ride_id] = transition
        self._last_fired.move_to_end(ride_id)
        while len(self._last_fired) > MAX_TRACKED_RIDES:
            self._last_fired.popitem(last=False)

    def _navigate_later(self, ride_id: str, path: str) -> None:
        def navigate():
            self._pending_navigation.pop(ride_id, None)
            self.notifier.navigate(path)

        previous = self._pending_navigation.pop(ride_id, None)
        if previous is not None:
            previous.cancel()
        self._pending_navigation[ride_id] = self._scheduler(self.navigation_delay, navigate)

    @property
    def pending_navigations(self) -> int:
        return len(self._pending_navigation)

    def cancel_pending(self) -> None:
        for handle in self._pending_navigation.values():
            handle.cancel()
        self._pending_navigation.clear()
