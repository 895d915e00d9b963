"""Config commands -- view and modify the settings file.

Provides the ``devicetoken config`` sub-command group. Settings live in
``<config_dir>/config.json`` (:class:`~devicetoken.models.Settings`);
``DEVICETOKEN_*`` environment variables override them at run time.
"""

from __future__ import annotations

from typing import Any

import typer

from devicetoken.output import error, format_response, info, success

config_app = typer.Typer(no_args_is_help=True)

_NULL_VALUES = ("", "none", "null")


@config_app.command("show")
def config_show(
    resolved: bool = typer.Option(
        False, "--resolved", help="Include DEVICETOKEN_* environment overrides."
    ),
) -> None:
    """Show the current settings.

    Example::

        devicetoken config show
        devicetoken --json config show --resolved
    """
    from devicetoken.commands import exit_with
    from devicetoken.config import load_settings, resolve_settings, settings_path
    from devicetoken.exceptions import DeviceTokenError

    try:
        settings = resolve_settings() if resolved else load_settings()
    except DeviceTokenError as exc:
        exit_with(exc)
    info(f"Settings file: {settings_path()}")
    format_response(settings.model_dump(mode="json"))


def _coerce(current: Any, value: str) -> Any:
    """Convert *value* to the type of the field it replaces.

    ``none``/``null``/empty clear the field; required fields then fail
    validation.
    """
    if isinstance(current, list):
        return value.replace(",", " ").split()
    if value.lower() in _NULL_VALUES:
        return None
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting key (dot notation, e.g. 'api.base_url')."),
    value: str = typer.Argument(help="Value to set. Use 'none' to clear an optional setting."),
) -> None:
    """Set a configuration value.

    The value is coerced to the existing field's type: booleans accept
    ``true``/``1``/``yes``, ``scopes`` accepts a space- or comma-separated
    list. The result is validated before it is saved.

    Raises:
        typer.Exit: With code 2 if the key is unknown or the value invalid.

    Example::

        devicetoken config set client_id 11111111-2222-3333-4444-555555555555
        devicetoken config set scopes "api://my-api/Access.Read openid"
        devicetoken config set api.base_url https://localhost:8181
    """
    from pydantic import ValidationError

    from devicetoken.config import load_settings, save_settings
    from devicetoken.exceptions import ConfigInvalid
    from devicetoken.models import Settings

    try:
        settings = load_settings()
    except ConfigInvalid as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None
    data = settings.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if not isinstance(target.get(k), dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    try:
        coerced = _coerce(target[final_key], value)
    except ValueError:
        error(f"Expected integer for {key}, got: {value}")
        raise typer.Exit(code=2) from None
    target[final_key] = coerced

    try:
        new_settings = Settings.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_settings(new_settings)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Reset every setting to its default.

    The token cache is left alone; use ``devicetoken logout`` to clear it.

    Example::

        devicetoken config reset --yes
    """
    from devicetoken.config import save_settings
    from devicetoken.models import Settings

    if not yes and not typer.confirm("Reset all settings to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_settings(Settings())
    success("Settings reset to defaults.")
