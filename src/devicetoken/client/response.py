"""Response formatting bridge -- maps :class:`httpx.Response` to the output system.

After the API call completes, :func:`format_api_response` writes the status
line to stderr and routes the body through
:meth:`~devicetoken.output.OutputManager.format_response`.
"""

from __future__ import annotations

from typing import Any

import httpx

from devicetoken.output import get_output


def format_api_response(response: httpx.Response) -> None:
    """Print the status line to stderr and the body to stdout."""
    output = get_output()
    output.info(f"HTTP {response.status_code} {response.reason_phrase or ''}".rstrip())

    content_type = response.headers.get("content-type", "application/json")
    data = extract_response_data(response)
    if data is not None:
        output.format_response(data, content_type)


def extract_response_data(response: httpx.Response) -> Any:
    """Return the decoded JSON body, the raw text, or ``None`` for an empty body."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
