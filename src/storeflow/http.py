"""
HTTP Client - Timeout-bounded outbound requests for primitives and output handlers.

Every call carries an explicit timeout (STOREFLOW_HTTP_TIMEOUT_S unless the
caller passes one).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

import requests
from requests.exceptions import RequestException, Timeout

logger = logging.getLogger(__name__)


class HttpTimeoutError(Exception):
    """Raised when an outbound request times out."""

    def __init__(self, message: str, timeout: float, url: str):
        self.timeout = timeout
        self.url = url
        super().__init__(message)


class HttpApiError(Exception):
    """Raised for transport failures and non-2xx responses."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.url = url
        self.method = method
        super().__init__(message)


class HttpResponse:
    """Thin accessor wrapper around ``requests.Response``."""

    def __init__(self, response: requests.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._response.headers)

    @property
    def text(self) -> str:
        return self._response.text

    @property
    def ok(self) -> bool:
        return self._response.ok

    def json(self) -> Any:
        return self._response.json()

    def body(self) -> Any:
        """Parsed JSON when the response is JSON, text otherwise."""
        content_type = self._response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                return self._response.json()
            except ValueError:
                return self._response.text
        return self._response.text

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status_code, "headers": self.headers, "body": self.body()}

    def raise_for_status(self) -> None:
        """Raise HttpApiError for non-2xx responses."""
        if not self.ok:
            raise HttpApiError(
                message=f"HTTP {self.status_code}: {self._response.reason}",
                status_code=self.status_code,
                response_body=self.text[:1000] if self.text else None,
                url=str(self._response.url),
                method=self._response.request.method if self._response.request else None,
            )


class HttpClient:
    """
    HTTP client with timeout enforcement and credential injection.

    Usage:
        client = HttpClient(base_url="https://api.goshippo.com", auth_header="ShippoToken abc")
        rates = client.post("/shipments", json={...}).json()
    """

    def __init__(
        self,
        base_url: str = "",
        default_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        auth_header: Optional[str] = None,
    ):
        """
        Args:
            base_url: Prefix for relative endpoints
            default_headers: Headers sent with every request
            timeout: Seconds; defaults to STOREFLOW_HTTP_TIMEOUT_S
            auth_header: Raw ``Authorization`` value (e.g. ``ShippoToken ...``)
        """
        if timeout is None:
            from storeflow.config import get_settings

            timeout = get_settings().http_timeout_s

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers: Dict[str, str] = dict(default_headers or {})

        if auth_header:
            self.headers["Authorization"] = auth_header

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Union[Dict[str, Any], str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """
        Make a request with the timeout enforced.

        Raises:
            HttpTimeoutError: The request timed out
            HttpApiError: The request could not be sent
        """
        url = f"{self.base_url}{endpoint}" if self.base_url else endpoint
        request_headers = {**self.headers, **(headers or {})}
        request_timeout = timeout or self.timeout

        logger.debug(f"{method.upper()} {url}")
        try:
            response = requests.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json,
                data=data,
                headers=request_headers,
                timeout=request_timeout,
            )
            return HttpResponse(response)

        except Timeout as e:
            raise HttpTimeoutError(
                message=f"Request timed out after {request_timeout}s",
                timeout=request_timeout,
                url=url,
            ) from e

        except RequestException as e:
            raise HttpApiError(
                message=f"Request failed: {e}",
                url=url,
                method=method.upper(),
            ) from e

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> HttpResponse:
        return self.request("GET", endpoint, params=params, **kwargs)

    def post(self, endpoint: str, json: Any = None, **kwargs: Any) -> HttpResponse:
        return self.request("POST", endpoint, json=json, **kwargs)


__all__ = [
    "HttpApiError",
    "HttpClient",
    "HttpResponse",
    "HttpTimeoutError",
]
