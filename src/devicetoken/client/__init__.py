"""HTTP client for the protected API.

:class:`ApiClient` wraps :mod:`httpx` with bearer-token injection and typed
error mapping; :func:`format_api_response` renders a response through the
output system.

Example::

    from devicetoken.client import ApiClient

    with ApiClient(settings.api, acquirer.acquire_access_token) as client:
        resp = client.get("/WeatherForecast")
"""

from devicetoken.client.api_client import ApiClient
from devicetoken.client.response import extract_response_data, format_api_response

__all__ = ["ApiClient", "extract_response_data", "format_api_response"]
