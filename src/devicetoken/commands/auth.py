"""Sign-in commands -- ``login``, ``logout``, and ``status``.

``login`` runs the same silent-first acquisition that ``call`` uses, so a
valid cached token never triggers a device-code prompt. ``logout`` removes
accounts from the token cache. ``status`` reports what is cached without
contacting the identity provider for a token.

Typical workflow::

    devicetoken login            # prompts for a device code on first run
    devicetoken status           # cached accounts and cache location
    devicetoken logout
"""

from __future__ import annotations

from typing import Optional

import typer

from devicetoken.commands import build_acquirer, exit_with
from devicetoken.exceptions import DeviceTokenError
from devicetoken.output import format_response, get_output, info, print_table, success, suggest, warning


def login_command(
    ctx: typer.Context,
    print_token: bool = typer.Option(
        False, "--print-token", help="Write the raw access token to stdout."
    ),
) -> None:
    """Sign in, reusing a cached token when one is still valid.

    Prints a summary of the signed-in account (or, with ``--print-token``,
    the bare token for use in scripts).

    Example::

        devicetoken login
        curl -H "Authorization: Bearer $(devicetoken -q login --print-token)" ...
    """
    try:
        acquirer = build_acquirer(ctx)
        result = acquirer.acquire()
    except DeviceTokenError as exc:
        exit_with(exc)

    account = result.account
    username = account.username if account and account.username else "unknown account"
    success(f"Successfully authenticated as {username}.")

    if print_token:
        get_output().print_data(result.access_token)
        return
    format_response(
        {
            "username": account.username if account else None,
            "home_account_id": account.home_account_id if account else None,
            "source": result.source.value,
            "expires_at": result.expires_at.isoformat() if result.expires_at else None,
        }
    )


def logout_command(
    username: Optional[str] = typer.Option(
        None, "--username", "-u", help="Only sign out this account."
    ),
) -> None:
    """Remove cached accounts and their tokens.

    Without ``--username`` every cached account is removed.

    Example::

        devicetoken logout
        devicetoken logout --username alice@contoso.com
    """
    from devicetoken.auth import get_session

    try:
        session = get_session()
        if username is None:
            removed = session.sign_out()
        else:
            wanted = username.casefold()
            matches = [
                acct
                for acct in session.list_accounts()
                if acct.username and acct.username.casefold() == wanted
            ]
            if not matches:
                warning(f"No cached account for '{username}'.")
                raise typer.Exit(code=1)
            removed = sum(session.sign_out(acct) for acct in matches)
    except DeviceTokenError as exc:
        exit_with(exc)

    if removed:
        success(f"Signed out {removed} account(s).")
    else:
        info("No cached accounts.")
    if session.degraded:
        warning("Token cache is not persisted; the change only lasts for this process.")


def status_command() -> None:
    """Show the session configuration, cache health, and cached accounts.

    Diagnostics go to stderr; the account table goes to stdout so it can be
    piped (``devicetoken --json status``).
    """
    from devicetoken.auth import get_session

    try:
        session = get_session()
        session.initialize()
        accounts = session.list_accounts()
    except DeviceTokenError as exc:
        exit_with(exc)

    config = session.config
    info(f"Authority: {config.authority}")
    info(f"Client id: {config.client_id}")
    info(f"Scopes:    {' '.join(config.scopes)}")
    info(f"Cache:     {session.cache_path}")
    if session.degraded:
        warning(f"Token cache is in-memory only: {session.degraded_reason}")

    if not accounts:
        info("No cached accounts.")
        suggest("Sign in: devicetoken login")
        return

    print_table(
        ["Username", "Home account id", "Environment"],
        [
            [acct.username or "", acct.home_account_id or "", acct.environment or ""]
            for acct in accounts
        ],
        title="Cached accounts",
    )
