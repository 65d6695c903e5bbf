"""
Backend RPC client - access to the hosted relational backend.

The backend exposes PostgREST: stored procedures under /rest/v1/rpc/<name>
and table reads under /rest/v1/<table>.
"""

from .client import BackendRPCClient, get_backend_client
from .exceptions import (
    BackendRPCError,
    BackendUnavailableError,
    BackendNotConfiguredError,
    RPCFunctionNotFoundError,
)

__all__ = [
    "BackendRPCClient",
    "get_backend_client",
    "BackendRPCError",
    "BackendUnavailableError",
    "BackendNotConfiguredError",
    "RPCFunctionNotFoundError",
]
