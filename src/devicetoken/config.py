"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for devicetoken:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.devicetoken/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`. The token cache lives in the data directory.
* **Settings** -- A single :class:`~devicetoken.models.Settings` JSON file
  storing the client id, tenant id, scopes, and API address.
* **Precedence resolution** -- :func:`resolve_settings` layers environment
  variables over the settings file over defaults; CLI flags are applied on
  top by the commands.
* **Session configuration** -- :func:`load_session_config` turns the
  resolved settings into the immutable
  :class:`~devicetoken.models.SessionConfig`, raising
  :class:`~devicetoken.exceptions.ConfigInvalid` when it is malformed.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from devicetoken.exceptions import ConfigInvalid
from devicetoken.models import SessionConfig, Settings

_APP_NAME = "devicetoken"
_CONFIG_FILENAME = "config.json"

ENV_PREFIX = "DEVICETOKEN_"

# Environment variable -> dotted settings key.
_ENV_OVERRIDES: dict[str, str] = {
    "CLIENT_ID": "client_id",
    "TENANT_ID": "tenant_id",
    "SCOPES": "scopes",
    "REDIRECT_URI": "redirect_uri",
    "CACHE_FILE": "cache_file_name",
    "AUTHORITY_HOST": "authority_host",
    "ACCOUNT_SELECTION": "account_selection",
    "PREFERRED_USERNAME": "preferred_username",
    "DEVICE_CODE_TIMEOUT": "device_code_timeout",
    "API_BASE_URL": "api.base_url",
    "API_PATH": "api.path",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/devicetoken/`` (default ``~/.config/devicetoken/``).
    On macOS/Windows: ``~/.devicetoken/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (token cache, crash logs).

    On Linux/BSD: ``$XDG_DATA_HOME/devicetoken/`` (default ``~/.local/share/devicetoken/``).
    On macOS/Windows: ``~/.devicetoken/data/``.

    Unlike :func:`get_config_dir` this does not create the directory: the
    token cache store creates it on first write so that an unwritable home
    directory shows up as a degraded cache rather than a crash.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        return base / _APP_NAME
    return _fallback_base_dir() / "data"


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written. On any failure the temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings file ---


def settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load the settings file from the config directory.

    Returns:
        The deserialised :class:`~devicetoken.models.Settings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigInvalid: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = settings_path()
    if not path.is_file():
        return Settings()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigInvalid(f"Invalid settings file at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist the settings atomically to disk."""
    data = settings.model_dump(mode="json")
    atomic_write(settings_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _set_dotted(data: dict[str, Any], key: str, value: Any) -> None:
    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        target = target.setdefault(k, {})
    target[keys[-1]] = value


def resolve_settings(base: Optional[Settings] = None) -> Settings:
    """Resolve settings with the environment layered over the settings file.

    Precedence (high to low):
        1. Environment variables (``DEVICETOKEN_CLIENT_ID``, ``DEVICETOKEN_SCOPES``, ...)
        2. Settings file (``~/.config/devicetoken/config.json``)
        3. Defaults

    Args:
        base: Settings to layer over. Defaults to :func:`load_settings`.

    Raises:
        ConfigInvalid: If the file is invalid or an environment value
            cannot be coerced to its field type.
    """
    settings = base if base is not None else load_settings()
    data = settings.model_dump(mode="json")
    for suffix, key in _ENV_OVERRIDES.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value:
            _set_dotted(data, key, value)
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigInvalid(f"Invalid {ENV_PREFIX}* environment value: {exc}") from exc


def load_session_config(settings: Optional[Settings] = None) -> SessionConfig:
    """Build the immutable session configuration.

    Args:
        settings: Already-resolved settings. Defaults to :func:`resolve_settings`.

    Returns:
        A validated :class:`~devicetoken.models.SessionConfig`.

    Raises:
        ConfigInvalid: If the client id, tenant id, or scopes are missing or
            malformed.
    """
    if settings is None:
        settings = resolve_settings()
    missing = [
        name
        for name, value in (
            ("client_id", settings.client_id),
            ("tenant_id", settings.tenant_id),
            ("scopes", settings.scopes),
        )
        if not value
    ]
    if missing:
        raise ConfigInvalid(
            f"Missing required setting(s): {', '.join(missing)}. "
            f"Set them with 'devicetoken config set' or {ENV_PREFIX}* variables."
        )
    try:
        return SessionConfig(
            client_id=settings.client_id,
            tenant_id=settings.tenant_id,
            scopes=settings.scopes,
            redirect_uri=settings.redirect_uri,
            cache_file_name=settings.cache_file_name,
            authority_host=settings.authority_host,
            account_selection=settings.account_selection,
            preferred_username=settings.preferred_username,
            device_code_timeout=settings.device_code_timeout,
        )
    except ValidationError as exc:
        raise ConfigInvalid(f"Invalid session configuration: {exc}") from exc
