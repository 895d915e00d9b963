"""Protected-API commands -- ``call`` and ``menu``.

``call`` acquires a token (silently when possible) and sends one GET
request to the protected API, printing the response body to stdout.

``menu`` is the interactive loop: it keeps one acquirer for the whole
session, so only the first call can prompt for a device code.
"""

from __future__ import annotations

from typing import Optional

import typer

from devicetoken.auth import TokenAcquirer
from devicetoken.client import ApiClient, format_api_response
from devicetoken.commands import build_acquirer, exit_with, report_error
from devicetoken.exceptions import DeviceTokenError
from devicetoken.models import ApiConfig
from devicetoken.output import info

MENU_PROMPT = "\nPress 1 to invoke api endpoint or 2 to quit"


def _api_config(base_url: Optional[str]) -> ApiConfig:
    from devicetoken.config import resolve_settings

    api = resolve_settings().api
    if base_url:
        api = api.model_copy(update={"base_url": base_url})
    return api


def invoke_endpoint(acquirer: TokenAcquirer, api: ApiConfig, path: str) -> None:
    """Call *path* with a bearer token from *acquirer* and print the response.

    Raises:
        AuthError: No token could be acquired.
        DeviceTokenError: The API call failed (see :class:`ApiClient`).
    """
    with ApiClient(api, acquirer.acquire_access_token) as client:
        info(f"\nCalling {path}....")
        response = client.get(path)
    info("Response:")
    format_api_response(response)


def call_command(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(
        None, help="API path to GET. Defaults to the api.path setting."
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Override the api.base_url setting."
    ),
) -> None:
    """Call the protected API once.

    Example::

        devicetoken call
        devicetoken --json call /WeatherForecast
    """
    try:
        api = _api_config(base_url)
        invoke_endpoint(build_acquirer(ctx), api, path or api.path)
    except DeviceTokenError as exc:
        exit_with(exc)


def menu_command(
    ctx: typer.Context,
    path: Optional[str] = typer.Option(
        None, "--path", help="API path to GET. Defaults to the api.path setting."
    ),
) -> None:
    """Interactive loop: 1 calls the API, 2 quits.

    A failed call is reported and the loop continues; end of input quits.
    """
    try:
        api = _api_config(None)
        acquirer = build_acquirer(ctx)
    except DeviceTokenError as exc:
        exit_with(exc)

    while True:
        try:
            choice = typer.prompt(MENU_PROMPT, default="", show_default=False, err=True)
        except typer.Abort:
            break
        try:
            option = int(choice)
        except ValueError:
            info("Invalid input!")
            continue
        if option == 2:
            break
        if option == 1:
            try:
                invoke_endpoint(acquirer, api, path or api.path)
            except DeviceTokenError as exc:
                report_error(exc)
