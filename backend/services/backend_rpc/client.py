"""PostgREST client for the hosted backend."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests
from django.conf import settings

from .exceptions import (
    BackendNotConfiguredError,
    BackendRPCError,
    BackendUnavailableError,
    RPCFunctionNotFoundError,
)

logger = logging.getLogger(__name__)

# PostgREST codes for a missing function / empty single-row result
FUNCTION_NOT_FOUND_CODES = {"PGRST202", "PGRST116"}


class BackendRPCClient:
    """
    Thin wrapper around requests for RPC calls and filtered table reads.

    Args:
        base_url: Backend URL, e.g. https://project.example.co
        api_key: Public API key sent as `apikey`
        access_token: Optional end-user JWT; defaults to the API key
        timeout: Request timeout in seconds
        session: Optional requests.Session (tests inject a mock)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        if not base_url or not api_key:
            raise BackendNotConfiguredError("Backend URL and API key are required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def with_token(self, access_token: Optional[str]) -> "BackendRPCClient":
        """Return a client acting on behalf of the given user token."""
        return BackendRPCClient(
            self.base_url, self.api_key, access_token, self.timeout, self.session
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning("Backend request %s %s failed: %s", method, path, e)
            raise BackendUnavailableError(str(e), code="network_error") from e

        if response.status_code >= 400:
            raise self._error_from(response)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendRPCError("Backend returned invalid JSON", status_code=response.status_code) from e

    @staticmethod
    def _error_from(response) -> BackendRPCError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("code")
        message = body.get("message") or response.text or f"HTTP {response.status_code}"
        error_cls = RPCFunctionNotFoundError if code in FUNCTION_NOT_FOUND_CODES else BackendRPCError
        return error_cls(message, code=code, status_code=response.status_code, details=body.get("details"))

    # ---------------------- Public API ----------------------

    def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Call a stored procedure and return its decoded result."""
        logger.debug("RPC %s(%s)", function, ", ".join(sorted(params or {})))
        return self._request("POST", f"/rest/v1/rpc/{function}", json=dict(params or {}))

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Read rows with PostgREST filters. Plain values mean equality; lists
        become `in.(...)`; strings already containing an operator are sent as is.
        """
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = _filter_expression(value)
        if order:
            params["order"] = order
        return self._request("GET", f"/rest/v1/{table}", params=params) or []


_FILTER_OPERATORS = ("eq.", "neq.", "lt.", "lte.", "gt.", "gte.", "in.", "is.", "not.")


def _filter_expression(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return "in.({})".format(",".join(str(v) for v in value))
    if isinstance(value, str) and value.startswith(_FILTER_OPERATORS):
        return value
    return f"eq.{value}"


def get_backend_client(access_token: Optional[str] = None) -> BackendRPCClient:
    """Build a client from the BACKEND_RPC settings block."""
    config = getattr(settings, "BACKEND_RPC", None) or {}
    return BackendRPCClient(
        base_url=config.get("BASE_URL"),
        api_key=config.get("API_KEY"),
        access_token=access_token,
        timeout=config.get("TIMEOUT_SECONDS", 10),
    )
