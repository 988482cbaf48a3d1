# =============================================================================
# fin_core/data_layer/api_client.py
# HTTP client for the finance backend
# =============================================================================
"""
APIClient - thin requests wrapper for one base URL.

Features:
- Bearer token injection
- Unified error shape (APIError with code/retryable)
- Exponential-backoff retry helper
- Health probe
- Error handler callbacks
"""

from __future__ import annotations
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging

import requests

from fin_core.errors import APIError, error_boundary, notify_callbacks
from fin_core.errors.exceptions import UNKNOWN_ERROR
from fin_core.data_layer.types import APIResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorHandler = Callable[[APIError], None]


class APIClient:
    """
    HTTP client bound to a single base URL.

    Usage:
        client = APIClient("http://localhost:3001/api")
        client.set_auth_token(token)
        response = client.get("/accounts", params={"page": 1})
        accounts = response.data
    """

    DEFAULT_TIMEOUT = 10.0          # Seconds per request
    HEALTH_TIMEOUT = 5.0            # Seconds for the health probe
    HEALTH_ENDPOINT = "/health"

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            base_url: Root URL every endpoint is appended to
            timeout: Request timeout in seconds
            session: Optional pre-built session (tests inject a mock)
            sleep: Function used to wait between retry attempts
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._auth_token: Optional[str] = None
        self._error_handlers: List[ErrorHandler] = []
        self._sleep = sleep

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def set_base_url(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def set_auth_token(self, token: str) -> None:
        self._auth_token = token

    def clear_auth_token(self) -> None:
        self._auth_token = None

    @property
    def has_auth_token(self) -> bool:
        return self._auth_token is not None

    def on_error(self, handler: ErrorHandler) -> None:
        """Register a callback invoked with every APIError."""
        if handler not in self._error_handlers:
            self._error_handlers.append(handler)

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> APIResponse:
        """
        Perform a request and decode the response.

        Raises:
            APIError: normalized failure; error handlers have been notified
        """
        try:
            response = self.session.request(
                method=method,
                url=self._url(endpoint),
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return self._decode(response)
        except Exception as e:
            error = self._normalize_error(e, method, endpoint)
            logger.debug(f"{method} {endpoint} failed: {error}")
            notify_callbacks(self._error_handlers, error, label="API error handler")
            if error is e:
                raise
            raise error from e

    @staticmethod
    def _decode(response: requests.Response) -> APIResponse:
        if response.status_code == 204 or not response.content:
            return APIResponse(data=None, success=True)
        return APIResponse.from_body(response.json())

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
                if message:
                    return str(message)
        except ValueError:
            pass
        return f"HTTP {response.status_code}: {response.reason or 'request failed'}"

    def _normalize_error(self, error: Exception, method: str, endpoint: str) -> APIError:
        """Map any request failure onto the APIError taxonomy."""
        if isinstance(error, APIError):
            return error

        details = {"method": method, "endpoint": endpoint}

        if isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
            response = error.response
            return APIError.from_status(
                response.status_code,
                self._error_message(response),
                **details,
            )

        if isinstance(error, ValueError):
            # Undecodable body; requests' JSONDecodeError is also a RequestException
            return APIError(
                f"Invalid response body: {error}",
                code=UNKNOWN_ERROR,
                details=details,
                retryable=False,
            )

        if isinstance(error, requests.exceptions.RequestException):
            # No response was received: connection refused, DNS, timeout...
            return APIError.network(
                f"Network connection failed: {error}",
                **details,
            )

        return APIError(
            str(error) or "Unknown error",
            code=UNKNOWN_ERROR,
            details=details,
            retryable=False,
        )

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        return self._request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: Any = None) -> APIResponse:
        return self._request("POST", endpoint, body=body)

    def put(self, endpoint: str, body: Any = None) -> APIResponse:
        return self._request("PUT", endpoint, body=body)

    def patch(self, endpoint: str, body: Any = None) -> APIResponse:
        return self._request("PATCH", endpoint, body=body)

    def delete(self, endpoint: str) -> APIResponse:
        return self._request("DELETE", endpoint)

    # =========================================================================
    # RETRY / HEALTH
    # =========================================================================

    def retry(
        self,
        operation: Callable[[], T],
        max_retries: int = 3,
        delay: float = 1.0,
        should_retry: Optional[Callable[[Exception], bool]] = None,
    ) -> T:
        """
        Run operation, retrying with exponential backoff.

        Makes at most ``max_retries + 1`` attempts, waiting
        ``delay * 2**attempt`` seconds after each failed attempt. An error
        whose ``retryable`` attribute is False is raised immediately, as is
        any error the optional ``should_retry`` predicate rejects.
        """
        last_error: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                return operation()
            except Exception as e:
                last_error = e
                if getattr(e, "retryable", True) is False:
                    raise
                if should_retry is not None and not should_retry(e):
                    raise
                if attempt < max_retries:
                    wait = delay * (2 ** attempt)
                    logger.debug(f"Attempt {attempt + 1} failed, retrying in {wait:.2f}s: {e}")
                    self._sleep(wait)

        raise last_error

    @error_boundary(default_return=False)
    def health_check(self) -> bool:
        """Probe the health endpoint. Never raises."""
        response = self.session.get(
            self._url(self.HEALTH_ENDPOINT),
            headers=self._headers(),
            timeout=self.HEALTH_TIMEOUT,
        )
        return response.status_code == 200
