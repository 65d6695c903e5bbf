"""
Ride lifecycle actions.

Every action goes through a backend RPC and comes back as a RideResult:
backend and network failures are mapped to error codes with user-facing
messages instead of being raised to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from feeds.constants import ExecutionSubState, RideState, UserType
from services.backend_rpc import (
    BackendRPCError,
    BackendUnavailableError,
    RPCFunctionNotFoundError,
    get_backend_client,
)

from .exceptions import InvalidActorError, InvalidRideStateError
from .outcomes import get_action_error_message

logger = logging.getLogger(__name__)

ACTOR_TYPES = (UserType.PASSENGER, UserType.DRIVER, "system")

# Error codes the bid acceptance RPC reports in its payload
BID_ACCEPTANCE_ERRORS = ("driver_unavailable", "ride_not_available", "transaction_failed")


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    message: str = ""
    error: Optional[str] = None
    ride_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, ride_id=None, **extra) -> "RideResult":
        """Failed result; the message always comes from ACTION_ERROR_MESSAGES."""
        return cls(
            success=False,
            error=error,
            message=get_action_error_message(error)["message"],
            ride_id=None if ride_id is None else str(ride_id),
            extra=extra,
        )

    def as_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "message": self.message}
        if self.error:
            data["error"] = self.error
            data["title"] = get_action_error_message(self.error)["title"]
            data["action"] = get_action_error_message(self.error)["action"]
        if self.ride_id is not None:
            data["ride_id"] = self.ride_id
        if self.extra:
            data.update(self.extra)
        return data


def _failure_from_exception(exc: Exception, ride_id) -> RideResult:
    if isinstance(exc, RPCFunctionNotFoundError):
        return RideResult.failure("function_not_found", ride_id=ride_id)
    if isinstance(exc, BackendUnavailableError):
        return RideResult.failure("network_error", ride_id=ride_id)
    if isinstance(exc, BackendRPCError):
        return RideResult.failure("unknown_error", ride_id=ride_id)
    return RideResult.failure("unexpected_error", ride_id=ride_id)


# ===================== State transitions =====================

def transition_ride_status(
    ride_id: Any,
    new_state: str,
    new_sub_state: Optional[str] = None,
    actor_type: str = UserType.DRIVER,
    actor_id: Any = None,
    client=None,
) -> RideResult:
    """
    Move a ride through its lifecycle via the transition_ride_status RPC.

    Raises:
        InvalidRideStateError: if new_state/new_sub_state are not lifecycle values
        InvalidActorError: if actor_type is unknown
    """
    if new_state not in RideState.values:
        raise InvalidRideStateError(f"Invalid ride state: {new_state}")
    if new_sub_state is not None and new_sub_state not in ExecutionSubState.values:
        raise InvalidRideStateError(f"Invalid execution sub-state: {new_sub_state}")
    if actor_type not in ACTOR_TYPES:
        raise InvalidActorError(f"Invalid actor type: {actor_type}")

    try:
        client = client or get_backend_client()
        data = client.rpc("transition_ride_status", {
            "p_ride_id": ride_id,
            "p_new_state": new_state,
            "p_new_sub_state": new_sub_state,
            "p_actor_type": actor_type,
            "p_actor_id": actor_id,
        })
    except Exception as e:
        logger.warning("transition_ride_status failed for ride %s: %s", ride_id, e)
        return _failure_from_exception(e, ride_id)

    data = data if isinstance(data, dict) else {}
    if not data.get("success"):
        error = data.get("error") or "invalid_transition"
        logger.info("Ride %s transition to %s rejected: %s %s", ride_id, new_state, error, data.get("message") or "")
        return RideResult.failure(error, ride_id=ride_id)

    return RideResult(
        success=True,
        message=data.get("message") or "Ride updated",
        ride_id=str(ride_id),
        extra={"state": new_state, "execution_sub_state": new_sub_state},
    )


def driver_on_the_way(ride_id, driver_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.ACTIVE_EXECUTION, ExecutionSubState.DRIVER_ON_THE_WAY,
        UserType.DRIVER, driver_id, client=client,
    )


def driver_arrived(ride_id, driver_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.ACTIVE_EXECUTION, ExecutionSubState.DRIVER_ARRIVED,
        UserType.DRIVER, driver_id, client=client,
    )


def start_trip(ride_id, driver_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.ACTIVE_EXECUTION, ExecutionSubState.TRIP_STARTED,
        UserType.DRIVER, driver_id, client=client,
    )


def complete_trip(ride_id, driver_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.COMPLETED_INSTANCE, ExecutionSubState.TRIP_COMPLETED,
        UserType.DRIVER, driver_id, client=client,
    )


def confirm_payment(ride_id, passenger_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.COMPLETED_FINAL, None,
        UserType.PASSENGER, passenger_id, client=client,
    )


def cancel_ride(ride_id, actor_type, actor_id, client=None) -> RideResult:
    return transition_ride_status(
        ride_id, RideState.CANCELLED, None, actor_type, actor_id, client=client,
    )


# Driver trip steps by name, as sent by clients
TRIP_STEPS = {
    "on_the_way": driver_on_the_way,
    "arrived": driver_arrived,
    "start": start_trip,
    "complete": complete_trip,
}

TRIP_STEP_SUB_STATES = {
    "on_the_way": (RideState.ACTIVE_EXECUTION, ExecutionSubState.DRIVER_ON_THE_WAY),
    "arrived": (RideState.ACTIVE_EXECUTION, ExecutionSubState.DRIVER_ARRIVED),
    "start": (RideState.ACTIVE_EXECUTION, ExecutionSubState.TRIP_STARTED),
    "complete": (RideState.COMPLETED_INSTANCE, ExecutionSubState.TRIP_COMPLETED),
}


# ===================== Bid acceptance =====================

def accept_driver_bid(ride_id, offer_id, driver_id, passenger_id, client=None) -> RideResult:
    """
    Accept a driver's bid atomically through the accept_driver_bid RPC.

    The RPC checks that the driver is not engaged in another trip and that
    the ride is still open. Never raises; every failure is a RideResult with
    one of: driver_unavailable, ride_not_available, transaction_failed,
    function_not_found, network_error, unknown_error, unexpected_error.
    """
    logger.info("Accepting bid %s on ride %s for passenger %s", offer_id, ride_id, passenger_id)
    try:
        client = client or get_backend_client()
        data = client.rpc("accept_driver_bid", {
            "p_ride_id": ride_id,
            "p_offer_id": offer_id,
            "p_driver_id": driver_id,
            "p_passenger_id": passenger_id,
        })
    except Exception as e:
        logger.warning("accept_driver_bid failed for ride %s: %s", ride_id, e)
        return _failure_from_exception(e, ride_id)

    if not isinstance(data, dict) or not data.get("success"):
        data = data if isinstance(data, dict) else {}
        error = data.get("error")
        if error == "transaction_failed":
            logger.error("Bid acceptance transaction failed for ride %s: %s", ride_id, data.get("message"))
            return RideResult.failure(error, ride_id=ride_id)
        if error in BID_ACCEPTANCE_ERRORS:
            logger.info("Bid %s on ride %s refused: %s %s", offer_id, ride_id, error, data.get("message") or "")
            return RideResult.failure(error, ride_id=ride_id)
        logger.warning("Bid %s on ride %s failed with %r: %s", offer_id, ride_id, error, data.get("message"))
        return RideResult.failure("unknown_error", ride_id=ride_id)

    return RideResult(
        success=True,
        message=data.get("message") or "Bid accepted successfully",
        ride_id=str(ride_id),
        extra={"offer_id": str(offer_id), "driver_id": str(driver_id)},
    )
