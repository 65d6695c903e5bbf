"""
Services package - Business logic layer.

This package wraps the hosted backend behind plain functions, decoupled from
the HTTP/WebSocket layer.

Modules:
    - backend_rpc: PostgREST client for RPC calls and table reads
    - ride_management: Feed reads and ride lifecycle actions
"""

from .backend_rpc import (
    BackendRPCClient,
    get_backend_client,
    BackendRPCError,
    BackendUnavailableError,
    RPCFunctionNotFoundError,
)
from .ride_management import (
    fetch_feed,
    fetch_driver_offers,
    accept_driver_bid,
    transition_ride_status,
    cancel_ride,
    RideResult,
)

__all__ = [
    # Backend
    "BackendRPCClient",
    "get_backend_client",
    "BackendRPCError",
    "BackendUnavailableError",
    "RPCFunctionNotFoundError",
    # Ride management
    "fetch_feed",
    "fetch_driver_offers",
    "accept_driver_bid",
    "transition_ride_status",
    "cancel_ride",
    "RideResult",
]
