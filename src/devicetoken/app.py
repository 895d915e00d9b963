"""Typer application and CLI entry point for devicetoken.

Registers the built-in commands (``login``, ``logout``, ``status``,
``call``, ``menu``, and the ``config`` group) on the root app.

:func:`main` is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler, invokes the Typer app, and
turns any escaped :class:`~devicetoken.exceptions.DeviceTokenError` into its
exit code. Other exceptions are written to a crash log under the data
directory.

See Also:
    :mod:`devicetoken.config`: Settings resolution.
    :mod:`devicetoken.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.logging import RichHandler

from devicetoken import __version__
from devicetoken.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="devicetoken",
    help="Acquire OAuth2 tokens with the device-code flow and call a protected API.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

_LOGGERS = ("devicetoken", "msal")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"devicetoken {__version__}")
        raise typer.Exit()


def configure_logging(console: Any, verbose: bool = False, quiet: bool = False) -> None:
    """Send library log records to the diagnostics console.

    Warnings (degraded token cache, several cached accounts) are always
    shown; ``--verbose`` adds the acquisition state transitions and MSAL's
    own debug output, ``--quiet`` keeps only errors.

    Args:
        console: The Rich console writing to stderr.
        verbose: Log at ``DEBUG``.
        quiet: Log at ``ERROR``.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=console,
        level=level,
        show_time=verbose,
        show_path=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    for name in _LOGGERS:
        log = logging.getLogger(name)
        for old in [h for h in log.handlers if isinstance(h, RichHandler)]:
            log.removeHandler(old)
        log.addHandler(handler)
        log.setLevel(level if name == "devicetoken" or verbose else logging.ERROR)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        min=1,
        help="Give up on a device-code sign-in after this many seconds.",
    ),
) -> None:
    """Root callback executed before every command.

    Installs the global :class:`~devicetoken.output.OutputManager`,
    configures logging, and stores shared options in ``ctx.obj``.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output and logging.
        timeout: Upper bound for the device-code wait; overrides the
            ``device_code_timeout`` setting.
    """
    from devicetoken.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(output.stderr_console, verbose=verbose, quiet=quiet)

    ctx.ensure_object(dict)
    ctx.obj["timeout"] = timeout
    ctx.obj["verbose"] = verbose


# ------------------------------------------------------------------ #
# Built-in commands
# ------------------------------------------------------------------ #

from devicetoken.commands.api import call_command, menu_command  # noqa: E402
from devicetoken.commands.auth import login_command, logout_command, status_command  # noqa: E402
from devicetoken.commands.config import config_app  # noqa: E402

app.command("login")(login_command)
app.command("logout")(logout_command)
app.command("status")(status_command)
app.command("call")(call_command)
app.command("menu")(menu_command)
app.add_typer(config_app, name="config", help="Settings management.")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under ``<data_dir>/logs`` and return its path."""
    from devicetoken.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``devicetoken`` console script.

    :class:`~devicetoken.exceptions.DeviceTokenError` instances that escape
    a command cause a clean exit with the error's ``exit_code``. All other
    exceptions produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from devicetoken.exceptions import DeviceTokenError
        from devicetoken.output import error

        if isinstance(exc, DeviceTokenError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
