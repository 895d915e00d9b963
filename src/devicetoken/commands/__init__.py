"""Built-in CLI commands for devicetoken.

* :mod:`~devicetoken.commands.auth` -- ``login``, ``logout``, ``status``.
* :mod:`~devicetoken.commands.api` -- ``call`` and the interactive ``menu``.
* :mod:`~devicetoken.commands.config` -- the ``config`` sub-command group.

Single commands are plain callbacks registered on the root app; the
``config`` group is its own :class:`typer.Typer`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn, Optional

import typer

from devicetoken.exceptions import (
    ApiAuthError,
    AuthError,
    ConfigInvalid,
    ConnectionError_,
    DeviceTokenError,
)
from devicetoken.output import error, suggest

if TYPE_CHECKING:
    from devicetoken.auth import TokenAcquirer


def build_acquirer(ctx: Optional[typer.Context] = None) -> TokenAcquirer:
    """Create a :class:`~devicetoken.auth.TokenAcquirer` over the process session.

    The device-code instructions go through the output system, and the
    ``--timeout`` root option bounds the device-code wait.

    Raises:
        ConfigInvalid: If no session exists yet and the settings are
            incomplete or malformed.
    """
    from devicetoken.auth import TokenAcquirer, get_session
    from devicetoken.output import show_challenge

    timeout = ctx.obj.get("timeout") if ctx is not None and ctx.obj else None
    return TokenAcquirer(get_session(), on_challenge=show_challenge, timeout=timeout)


def report_error(exc: DeviceTokenError) -> None:
    """Print *exc* to stderr with a next-step hint for its category."""
    error(str(exc))
    if isinstance(exc, ConfigInvalid):
        suggest("Check your settings: devicetoken config show")
    elif isinstance(exc, AuthError):
        suggest("Check the client id, tenant id, and scopes, then run: devicetoken login")
    elif isinstance(exc, ApiAuthError):
        suggest("The API rejected the token; sign in again: devicetoken logout && devicetoken login")
    elif isinstance(exc, ConnectionError_):
        suggest("Check api.base_url: devicetoken config show")


def exit_with(exc: DeviceTokenError) -> NoReturn:
    """Report *exc* and leave with its exit code."""
    report_error(exc)
    raise typer.Exit(code=exc.exit_code)
