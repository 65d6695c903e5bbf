"""Custom exceptions for calls to the hosted backend."""


class BackendRPCError(Exception):
    """Raised when the backend answers a call with an error payload."""

    def __init__(self, message, code=None, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details


class BackendUnavailableError(BackendRPCError):
    """Raised when the backend cannot be reached at all."""
    pass


class RPCFunctionNotFoundError(BackendRPCError):
    """Raised when the requested RPC function does not exist on the backend."""
    pass


class BackendNotConfiguredError(Exception):
    """Raised when BACKEND_RPC settings are missing."""
    pass
