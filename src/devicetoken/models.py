"""Canonical models shared across all devicetoken modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory
or built from environment variables:
    :class:`Settings`, :class:`ApiConfig`, and the immutable
    :class:`SessionConfig` handed to the identity session.

**Identity models** -- produced by the identity-provider adapter:
    :class:`CachedAccount`, :class:`TokenResult`, and
    :class:`DeviceCodeChallenge`.

**Outcome variants** -- the tagged result returned between acquisition
attempts and the state machine: :class:`Success`,
:class:`InteractionRequired`, and :class:`Failure`. Outcomes are values, not
exceptions; :class:`~devicetoken.auth.acquirer.TokenAcquirer` converts a
terminal :class:`Failure` into an :class:`~devicetoken.exceptions.AuthError`
only at the caller-facing boundary.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_CACHE_FILE_NAME = "token.cache"
DEFAULT_API_BASE_URL = "https://localhost:8181"
DEFAULT_API_PATH = "/WeatherForecast"


class AccountSelection(str, enum.Enum):
    """Policy for picking one account when the cache holds several.

    ``FIRST`` takes the first account in provider order. ``USERNAME`` takes
    the account whose username matches ``preferred_username``
    (case-insensitive) and falls back to ``FIRST`` when none matches.
    """

    FIRST = "first"
    USERNAME = "username"


class FailureCause(str, enum.Enum):
    """Why an acquisition ended in the ``FAILED`` state."""

    UNKNOWN = "unknown_auth_error"
    DEVICE_FLOW = "device_flow_failed"
    CANCELLED = "cancelled"


class TokenSource(str, enum.Enum):
    """Where a :class:`TokenResult` came from. Used for logging only."""

    CACHE = "cache"
    IDENTITY_PROVIDER = "identity_provider"
    DEVICE_CODE = "device_code"


def _split_scopes(value: Any) -> Any:
    """Accept ``"a b"`` or ``"a,b"`` strings as well as sequences."""
    if isinstance(value, str):
        return value.replace(",", " ").split()
    return value


# --- Session configuration ---


class SessionConfig(BaseModel):
    """Immutable identity-session configuration.

    Created once at process start by :func:`devicetoken.config.load_session_config`
    and never mutated afterwards. Validation failures surface as
    :class:`pydantic.ValidationError`, which the config layer converts into
    :class:`~devicetoken.exceptions.ConfigInvalid`.

    Example::

        SessionConfig(
            client_id="11111111-2222-3333-4444-555555555555",
            tenant_id="contoso.onmicrosoft.com",
            scopes=["api://my-api/Access.Read"],
        )
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(description="Application (client) id registered with the provider")
    tenant_id: str = Field(description="Directory (tenant) id or domain")
    scopes: tuple[str, ...] = Field(description="Requested scopes, ordered and de-duplicated")
    redirect_uri: Optional[str] = None
    cache_file_name: str = DEFAULT_CACHE_FILE_NAME
    authority_host: str = DEFAULT_AUTHORITY_HOST
    account_selection: AccountSelection = AccountSelection.FIRST
    preferred_username: Optional[str] = None
    device_code_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Upper bound in seconds for the device-code wait",
    )

    @field_validator("client_id", "tenant_id")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        if any(ch.isspace() for ch in value) or "/" in value:
            raise ValueError(f"malformed identifier {value!r}")
        return value

    @field_validator("scopes", mode="before")
    @classmethod
    def _coerce_scopes(cls, value: Any) -> Any:
        return _split_scopes(value)

    @field_validator("scopes")
    @classmethod
    def _check_scopes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for scope in value:
            scope = scope.strip()
            if not scope:
                raise ValueError("scopes must not contain blank entries")
            if any(ch.isspace() for ch in scope):
                raise ValueError(f"malformed scope {scope!r}")
            seen.setdefault(scope, None)
        if not seen:
            raise ValueError("at least one scope is required")
        return tuple(seen)

    @field_validator("cache_file_name")
    @classmethod
    def _check_cache_file_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError(f"invalid cache file name {value!r}")
        return value

    @property
    def authority(self) -> str:
        """Authority URL (``<authority_host>/<tenant_id>``) passed to the SDK."""
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"


# --- Persisted settings ---


class ApiConfig(BaseModel):
    """Where the protected API lives and how to call it."""

    base_url: str = Field(default=DEFAULT_API_BASE_URL, description="API base address")
    path: str = Field(default=DEFAULT_API_PATH, description="Default path for 'call'")
    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")


class Settings(BaseModel):
    """User settings stored in ``<config_dir>/config.json``.

    Unlike :class:`SessionConfig` every identity field is optional here, so
    that a partially configured file can be loaded, shown, and completed
    with ``devicetoken config set``.
    """

    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: Optional[str] = None
    cache_file_name: str = DEFAULT_CACHE_FILE_NAME
    authority_host: str = DEFAULT_AUTHORITY_HOST
    account_selection: AccountSelection = AccountSelection.FIRST
    preferred_username: Optional[str] = None
    device_code_timeout: Optional[int] = None
    api: ApiConfig = Field(default_factory=ApiConfig)

    @field_validator("scopes", mode="before")
    @classmethod
    def _coerce_scopes(cls, value: Any) -> Any:
        return _split_scopes(value)


# --- Identity models ---


class CachedAccount(BaseModel):
    """Opaque handle for a previously authenticated principal.

    ``raw`` is the provider's own account mapping and is handed back to the
    SDK untouched on silent acquisition.
    """

    model_config = ConfigDict(frozen=True)

    home_account_id: Optional[str] = None
    username: Optional[str] = None
    environment: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class TokenResult(BaseModel):
    """An access token plus what is known about it.

    Never mutated: a refresh produces a new instance.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: Optional[datetime] = None
    account: Optional[CachedAccount] = None
    source: TokenSource = TokenSource.IDENTITY_PROVIDER


@dataclass(frozen=True)
class DeviceCodeChallenge:
    """What the user needs to finish a device-code sign-in on another device."""

    user_code: str
    verification_uri: str
    message: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class GuardStatus:
    """Result of :meth:`~devicetoken.auth.guard.CacheGuard.verify`."""

    ok: bool
    reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return not self.ok


# --- Outcome variants ---


@dataclass(frozen=True)
class Success:
    """A token was obtained."""

    result: TokenResult


@dataclass(frozen=True)
class InteractionRequired:
    """The provider needs the user: silent refresh is structurally impossible."""

    reason: str = ""


@dataclass(frozen=True)
class Failure:
    """Anything else went wrong. ``details`` keeps the provider's raw error fields."""

    cause: FailureCause
    message: str
    details: dict[str, Any] = field(default_factory=dict)


Outcome = Union[Success, InteractionRequired, Failure]
