"""Bearer-authenticated HTTP client for the protected API.

:class:`ApiClient` wraps :class:`httpx.Client` and layers on:

- **Token injection** -- on entering the context the client asks its token
  provider (normally
  :meth:`~devicetoken.auth.acquirer.TokenAcquirer.acquire_access_token`) for
  an access token and sends it as ``Authorization: Bearer <token>`` on every
  request.
- **Error mapping** -- 401/403, 404, 5xx, and transport errors become typed
  :class:`~devicetoken.exceptions.DeviceTokenError` subclasses.

Requests are not retried: a failed call is reported and the user re-runs it.

Example::

    acquirer = TokenAcquirer(session)
    with ApiClient(settings.api, acquirer.acquire_access_token) as client:
        response = client.get("/WeatherForecast")
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx

from devicetoken.exceptions import ApiAuthError, ConnectionError_, NotFoundError, ServerError
from devicetoken.models import ApiConfig
from devicetoken.output import get_output


class ApiClient:
    """Synchronous client for the protected API.

    Must be used as a context manager so that the token is acquired once
    and the underlying transport is properly opened and closed.

    Args:
        api: Base address, timeout, and TLS settings.
        token_provider: Zero-argument callable returning a bearer token.
            Any :class:`~devicetoken.exceptions.AuthError` it raises
            propagates out of ``__enter__``.
        transport: Optional :class:`httpx.BaseTransport`, for tests.
    """

    def __init__(
        self,
        api: ApiConfig,
        token_provider: Callable[[], str],
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api = api
        self._token_provider = token_provider
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ApiClient:
        token = self._token_provider()
        self._client = httpx.Client(
            base_url=self._api.base_url,
            timeout=self._api.timeout,
            verify=self._api.verify_ssl,
            follow_redirects=True,
            headers={"Authorization": f"Bearer {token}"},
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request and map error statuses to exceptions.

        Args:
            method: HTTP method.
            path: URL path appended to the API base address.
            params: Query parameters.
            headers: Extra request headers.

        Returns:
            The :class:`httpx.Response` from the server.

        Raises:
            ApiAuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On 5xx and other 4xx statuses.
            ConnectionError_: On network / timeout errors.
        """
        assert self._client is not None, "Client not initialised -- use as context manager"

        merged_headers: dict[str, str] = {"Accept": "application/json"}
        merged_headers.update(headers or {})

        get_output().debug(f"{method.upper()} {self._api.base_url}{path}")
        try:
            response = self._client.request(
                method, path, params=params, headers=merged_headers
            )
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise ConnectionError_(f"Could not reach {self._api.base_url}: {exc}") from exc

        self._map_response_error(response)
        return response

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        """Send a GET request. ``kwargs`` are forwarded to :meth:`request`."""
        return self.request("GET", path, **kwargs)

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        # Try to extract an error message from the response body.
        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("message") or detail.get("error") or detail.get("title") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        prefix = f"HTTP {status}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise ApiAuthError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)
