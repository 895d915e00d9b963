"""Shared test fixtures for devicetoken.

Provides isolated XDG directories, output-state resets, a scriptable
in-memory identity provider, and session factories. Every fixture here is
discovered by pytest automatically.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from rich.logging import RichHandler

from devicetoken.auth import IdentityProvider, IdentitySession, TokenCacheStore, reset_session
from devicetoken.models import (
    CachedAccount,
    DeviceCodeChallenge,
    Failure,
    FailureCause,
    InteractionRequired,
    SessionConfig,
    Success,
    TokenResult,
    TokenSource,
)
from devicetoken.output import OutputFormat, OutputManager, reset_output, set_output

CLIENT_ID = "11111111-2222-3333-4444-555555555555"
TENANT_ID = "contoso.onmicrosoft.com"
SCOPE = "api://3a9b9211-6791-4992-b779-bb05935f708b/Access.Read"


# ---------------------------------------------------------------------------
# Global state resets
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_globals() -> None:
    """Drop the global OutputManager, identity session, and CLI log handlers after every test.

    The OutputManager holds on to the sys.stdout/sys.stderr objects that
    were current when it was built; CliRunner swaps those out, so a stale
    manager would write to closed files.
    """
    yield
    reset_output()
    reset_session()
    for name in ("devicetoken", "msal"):
        log = logging.getLogger(name)
        for handler in [h for h in log.handlers if isinstance(h, RichHandler)]:
            log.removeHandler(handler)
        log.setLevel(logging.NOTSET)


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG config/data directories at tmp_path and clear DEVICETOKEN_* vars.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("devicetoken.config._is_xdg_platform", lambda: True)
    for suffix in (
        "CLIENT_ID",
        "TENANT_ID",
        "SCOPES",
        "REDIRECT_URI",
        "CACHE_FILE",
        "AUTHORITY_HOST",
        "ACCOUNT_SELECTION",
        "PREFERRED_USERNAME",
        "DEVICE_CODE_TIMEOUT",
        "API_BASE_URL",
        "API_PATH",
    ):
        monkeypatch.delenv(f"DEVICETOKEN_{suffix}", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a plain, quiet OutputManager."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
    set_output(output)
    return output


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# In-memory identity provider
# ---------------------------------------------------------------------------


class FakeTokenCache:
    """Stands in for ``msal.SerializableTokenCache``.

    ``state`` mirrors the SDK's cache document: ``Account`` entries keyed by
    home account id and ``AccessToken`` entries keyed by
    ``<home_account_id>|<sorted scopes>``.
    """

    def __init__(self) -> None:
        self.state: dict[str, dict[str, Any]] = {"Account": {}, "AccessToken": {}}
        self.has_state_changed = False

    def serialize(self) -> str:
        self.has_state_changed = False
        return json.dumps(self.state)

    def deserialize(self, text: str) -> None:
        self.state = json.loads(text)
        self.state.setdefault("Account", {})
        self.state.setdefault("AccessToken", {})
        self.has_state_changed = False


def token_key(home_account_id: str, scopes: Any) -> str:
    return f"{home_account_id}|{' '.join(sorted(scopes))}"


@dataclass
class ProviderScript:
    """Behaviour and call log shared by every FakeIdentityProvider built from it.

    Attributes:
        username: Account issued by a successful device-code sign-in.
        silent_outcome: If set, returned by every silent attempt.
        device_outcome: If set, returned by every device-code attempt
            (after the challenge was shown).
        wait_for_cancel: Make the device-code attempt block until its
            cancel event is set, then fail as cancelled.
        device_delay: Seconds the device-code attempt sleeps before
            succeeding, to widen race windows.
        list_error: Raised by ``list_cached_accounts``.
        refreshed_token: If set, a silent attempt for a known account
            replaces its cached access token with this value, as a refresh
            with a refresh token would.
    """

    username: str = "alice@contoso.com"
    silent_outcome: Optional[Any] = None
    device_outcome: Optional[Any] = None
    wait_for_cancel: bool = False
    device_delay: float = 0.0
    list_error: Optional[Exception] = None
    refreshed_token: Optional[str] = None
    silent_calls: list[Optional[str]] = field(default_factory=list)
    challenges: list[DeviceCodeChallenge] = field(default_factory=list)
    issued: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class FakeIdentityProvider(IdentityProvider):
    """IdentityProvider that keeps its tokens in a :class:`FakeTokenCache`."""

    def __init__(self, config: SessionConfig, token_cache: FakeTokenCache, script: ProviderScript) -> None:
        self.config = config
        self.cache = token_cache
        self.script = script

    def list_cached_accounts(self) -> list[CachedAccount]:
        if self.script.list_error is not None:
            raise self.script.list_error
        return [
            CachedAccount(
                home_account_id=raw["home_account_id"],
                username=raw["username"],
                environment="login.microsoftonline.com",
                raw=dict(raw),
            )
            for raw in self.cache.state["Account"].values()
        ]

    def acquire_token_silent(self, account, scopes):
        with self.script.lock:
            self.script.silent_calls.append(account.username if account else None)
        if self.script.silent_outcome is not None:
            return self.script.silent_outcome
        if account is None:
            return InteractionRequired("no account")
        key = token_key(account.home_account_id, scopes)
        if self.script.refreshed_token is not None:
            self.cache.state["AccessToken"][key] = self.script.refreshed_token
            self.cache.has_state_changed = True
            return Success(
                TokenResult(
                    access_token=self.script.refreshed_token,
                    account=account,
                    source=TokenSource.IDENTITY_PROVIDER,
                )
            )
        token = self.cache.state["AccessToken"].get(key)
        if token is None:
            return InteractionRequired("no token for scopes")
        return Success(TokenResult(access_token=token, account=account, source=TokenSource.CACHE))

    def acquire_token_by_device_code(self, scopes, on_challenge, timeout=None, cancel_event=None):
        challenge = DeviceCodeChallenge(
            user_code="ABCD-EFGH",
            verification_uri="https://microsoft.com/devicelogin",
            message="To sign in, use a web browser to open the page "
            "https://microsoft.com/devicelogin and enter the code ABCD-EFGH to authenticate.",
        )
        with self.script.lock:
            self.script.challenges.append(challenge)
        on_challenge(challenge)

        if self.script.wait_for_cancel:
            cancel_event.wait(5)
            return Failure(FailureCause.CANCELLED, "Device-code sign-in was cancelled")
        if self.script.device_outcome is not None:
            return self.script.device_outcome
        if self.script.device_delay:
            threading.Event().wait(self.script.device_delay)

        with self.script.lock:
            self.script.issued += 1
            token = f"token-{self.script.issued}"
        home_account_id = f"oid-{self.script.username}.tid"
        raw = {"home_account_id": home_account_id, "username": self.script.username}
        self.cache.state["Account"][home_account_id] = raw
        self.cache.state["AccessToken"][token_key(home_account_id, scopes)] = token
        self.cache.has_state_changed = True
        account = CachedAccount(home_account_id=home_account_id, username=self.script.username, raw=raw)
        return Success(TokenResult(access_token=token, account=account, source=TokenSource.DEVICE_CODE))

    def remove_account(self, account: CachedAccount) -> None:
        self.cache.state["Account"].pop(account.home_account_id, None)
        prefix = f"{account.home_account_id}|"
        for key in [k for k in self.cache.state["AccessToken"] if k.startswith(prefix)]:
            del self.cache.state["AccessToken"][key]
        self.cache.has_state_changed = True


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(client_id=CLIENT_ID, tenant_id=TENANT_ID, scopes=[SCOPE])


@pytest.fixture
def script() -> ProviderScript:
    return ProviderScript()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def make_session(
    session_config: SessionConfig, script: ProviderScript, cache_dir: Path
) -> Callable[..., IdentitySession]:
    """Factory for sessions backed by the fake provider and a real file store.

    Sessions built by one test share the cache file and the provider
    script, so a second session behaves like a later run of the program.
    """

    def _make(
        config: Optional[SessionConfig] = None,
        store: Optional[TokenCacheStore] = None,
    ) -> IdentitySession:
        return IdentitySession.create(
            config or session_config,
            store=store or TokenCacheStore(directory=cache_dir),
            provider_factory=lambda cfg, cache: FakeIdentityProvider(cfg, cache, script),
            token_cache_factory=FakeTokenCache,
        )

    return _make


@pytest.fixture
def challenges() -> list[DeviceCodeChallenge]:
    """Collects the challenges passed to ``on_challenge``."""
    return []


@pytest.fixture
def record_challenge(challenges: list[DeviceCodeChallenge]) -> Callable[[DeviceCodeChallenge], None]:
    return challenges.append
