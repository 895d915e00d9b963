"""Console output for the devicetoken CLI.

Data and diagnostics never share a stream:

* **stdout** carries only results (API response bodies, account tables,
  settings dumps) so they can be piped into ``jq`` or a file.
* **stderr** carries everything meant for the person at the keyboard:
  status lines, warnings, errors, the device-code instructions.

Rendering adapts to where stdout goes. An interactive terminal gets Rich
syntax highlighting and tables; a pipe gets plain text. ``--json`` forces
machine-readable output. Colour is disabled by ``--no-color``, ``NO_COLOR``,
or ``TERM=dumb``.

Commands reach the active :class:`OutputManager` through :func:`get_output`
or the module-level shortcuts (:func:`info`, :func:`error`, ...). The root
Typer callback installs a configured instance with :func:`set_output`.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from devicetoken.models import DeviceCodeChallenge


class OutputFormat(str, Enum):
    """How stdout data is rendered. ``AUTO`` picks ``RICH`` on a colour TTY."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Routes CLI output to stdout or stderr in the selected format.

    Args:
        format: Requested format; ``AUTO`` is resolved on construction.
        no_color: Strip colour and Rich markup.
        quiet: Hide informational and success messages. Warnings, errors,
            and device-code instructions are always shown.
        verbose: Show ``debug`` messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            self._format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        else:
            self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        """The diagnostics console; shared with the logging handler."""
        return self._stderr

    # ------------------------------------------------------------------ #
    # stdout
    # ------------------------------------------------------------------ #

    def format_response(self, data: Any, content_type: str = "application/json") -> None:
        """Write a response body or other structured result to stdout.

        Args:
            data: A dict, list, or string. Strings holding JSON are
                re-indented; anything else is printed as-is.
            content_type: Response media type. Only JSON bodies are
                syntax-highlighted in Rich mode.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(_to_json_text(data))
        elif self._format == OutputFormat.PLAIN:
            self._print_plain(data)
        else:
            self._print_rich(data, content_type)

    def print_data(self, text: str) -> None:
        """Write *text* to stdout followed by a newline."""
        print(text, file=sys.stdout, flush=True)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Write rows to stdout as a Rich table, JSON records, or TSV.

        Args:
            headers: Column names; also the JSON record keys.
            rows: Cell strings, one list per row.
            title: Table caption, Rich mode only.
        """
        if self._format == OutputFormat.JSON:
            records = [dict(zip(headers, row)) for row in rows]
            self.print_data(json.dumps(records, indent=2, ensure_ascii=False))
            return
        if self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self.print_data("\t".join(line))
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # stderr
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        if not self._quiet:
            self._diag(message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._diag(message, style="green")

    def warning(self, message: str) -> None:
        self._diag(message, prefix="Warning:", prefix_style="yellow")

    def error(self, message: str) -> None:
        self._diag(message, prefix="Error:", prefix_style="bold red")

    def suggest(self, message: str) -> None:
        """Print a next step, e.g. the command that fixes the error just shown."""
        if not self._quiet:
            self._diag(f"→ {message}", style="dim")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._diag(f"[debug] {message}", style="dim")

    def challenge(self, challenge: DeviceCodeChallenge) -> None:
        """Show device-code sign-in instructions on stderr.

        Never suppressed by ``--quiet``: without them the user cannot
        finish signing in.
        """
        lines = [challenge.message]
        if challenge.expires_at is not None:
            lines.append(f"Code expires at {challenge.expires_at.astimezone():%H:%M:%S}.")
        if self._no_color:
            text = "\n".join(["", "Requesting token...", *lines, "", "Waiting for authorization..."])
            print(text, file=sys.stderr, flush=True)
            return
        self._stderr.print("[dim]Requesting token...[/dim]")
        self._stderr.print(
            Panel(
                "\n".join(lines),
                title=f"Sign in with code [bold]{challenge.user_code}[/bold]",
                border_style="cyan",
                expand=False,
            )
        )
        self._stderr.print("[dim]Waiting for authorization...[/dim]")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _diag(
        self,
        message: str,
        style: Optional[str] = None,
        prefix: Optional[str] = None,
        prefix_style: Optional[str] = None,
    ) -> None:
        if self._no_color:
            text = f"{prefix} {message}" if prefix else message
            print(text, file=sys.stderr, flush=True)
            return
        text = message
        if style:
            text = f"[{style}]{text}[/{style}]"
        if prefix:
            text = f"[{prefix_style}]{prefix}[/{prefix_style}] {text}"
        self._stderr.print(text)

    def _print_plain(self, data: Any) -> None:
        if isinstance(data, dict):
            for key, value in data.items():
                self.print_data(f"{key}\t{value}")
        elif isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    self.print_data("\t".join(str(v) for v in item.values()))
                else:
                    self.print_data(str(item))
        else:
            self.print_data(str(data))

    def _print_rich(self, data: Any, content_type: str) -> None:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except (json.JSONDecodeError, TypeError):
                self._stdout.print(data, markup=False)
                return
        if isinstance(data, (dict, list)) and "json" in content_type:
            text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))
        else:
            self._stdout.print(_to_json_text(data), markup=False)


def _to_json_text(data: Any) -> str:
    """Indent JSON-like *data*; non-JSON strings pass through unchanged."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return data
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager. Used by the test suite."""
    global _output
    _output = None


# ------------------------------------------------------------------ #
# Shortcuts
# ------------------------------------------------------------------ #


def format_response(data: Any, content_type: str = "application/json") -> None:
    get_output().format_response(data, content_type)


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def debug(message: str) -> None:
    get_output().debug(message)


def show_challenge(challenge: DeviceCodeChallenge) -> None:
    """Challenge callback for :class:`~devicetoken.auth.acquirer.TokenAcquirer`."""
    get_output().challenge(challenge)
