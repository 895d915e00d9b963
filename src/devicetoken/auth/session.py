"""Identity client session.

An :class:`IdentitySession` is the long-lived handle used to request tokens:
it owns the immutable :class:`~devicetoken.models.SessionConfig`, the SDK's
serializable token cache, the :class:`~devicetoken.auth.token_cache.TokenCacheStore`
that persists it, and the :class:`~devicetoken.auth.provider.IdentityProvider`.

Initialization is lazy and happens exactly once, before the first account
listing or token request, behind a lock (:meth:`IdentitySession.initialize`):

1. :class:`~devicetoken.auth.guard.CacheGuard` probes the store.
2. When the store is usable, its entries are loaded into the SDK cache.
3. The provider is built around that cache.

Afterwards every successful acquisition persists the cache if the SDK
changed it, so refreshed and newly issued tokens survive the process. A
storage failure at any point switches the session to *degraded* mode: tokens
keep working for the life of the process but are no longer written to disk.

The CLI shares one session per process through :func:`get_session`; library
callers can construct and inject their own.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import msal
from pydantic import ValidationError

from devicetoken.auth.guard import CacheGuard
from devicetoken.auth.provider import ChallengeCallback, IdentityProvider, MsalIdentityProvider
from devicetoken.auth.token_cache import TokenCacheStore
from devicetoken.exceptions import ConfigInvalid, StorageUnavailable
from devicetoken.models import CachedAccount, GuardStatus, Outcome, SessionConfig, Success

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[SessionConfig, Any], IdentityProvider]


class IdentitySession:
    """Process-wide identity client bound to a persistent token cache.

    Prefer :meth:`create` over calling the constructor directly.

    Args:
        config: Validated session configuration.
        store: Durable storage for the token cache.
        provider_factory: Builds the provider from ``(config, token_cache)``.
        token_cache_factory: Builds the SDK's in-memory cache. Must return an
            object with ``serialize()``, ``deserialize(text)``, and a
            ``has_state_changed`` flag.
    """

    def __init__(
        self,
        config: SessionConfig,
        store: TokenCacheStore,
        provider_factory: ProviderFactory = MsalIdentityProvider,
        token_cache_factory: Callable[[], Any] = msal.SerializableTokenCache,
    ) -> None:
        self._config = config
        self._store = store
        self._provider_factory = provider_factory
        self._token_cache_factory = token_cache_factory

        self._init_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._acquisition_locks: dict[frozenset[str], threading.Lock] = {}
        self._acquisition_locks_guard = threading.Lock()
        self._initialized = False
        self._guard_status: Optional[GuardStatus] = None
        self._degraded_reason: Optional[str] = None
        self._token_cache: Any = None
        self._provider: Optional[IdentityProvider] = None

    @classmethod
    def create(
        cls,
        config: Union[SessionConfig, Mapping[str, Any]],
        store: Optional[TokenCacheStore] = None,
        provider_factory: ProviderFactory = MsalIdentityProvider,
        token_cache_factory: Callable[[], Any] = msal.SerializableTokenCache,
    ) -> IdentitySession:
        """Validate *config* and return an uninitialized session.

        Args:
            config: A :class:`SessionConfig` or a mapping of its fields.
            store: Token cache store. Defaults to the data-directory file
                named by ``config.cache_file_name``.
            provider_factory: See the class docstring.
            token_cache_factory: See the class docstring.

        Raises:
            ConfigInvalid: If the client id, tenant id, or scopes are
                missing or malformed.
        """
        if not isinstance(config, SessionConfig):
            try:
                config = SessionConfig.model_validate(dict(config))
            except ValidationError as exc:
                raise ConfigInvalid(f"Invalid session configuration: {exc}") from exc
        if store is None:
            store = TokenCacheStore(config.cache_file_name)
        return cls(config, store, provider_factory, token_cache_factory)

    # ------------------------------------------------------------------ #
    # Initialization barrier
    # ------------------------------------------------------------------ #

    def initialize(self) -> None:
        """Run the one-time setup. Safe to call repeatedly and from many threads."""
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            self._guard_status = CacheGuard(self._store).verify()
            if self._guard_status.degraded:
                self._degraded_reason = self._guard_status.reason

            self._token_cache = self._token_cache_factory()
            if not self.degraded:
                self._load_persisted_cache()

            self._provider = self._provider_factory(self._config, self._token_cache)
            self._initialized = True
            logger.debug(
                "Identity session ready for client %s (persistent cache: %s)",
                self._config.client_id,
                "off" if self.degraded else self._store.path,
            )

    def _load_persisted_cache(self) -> None:
        try:
            entries = self._store.load()
        except StorageUnavailable as exc:
            self._degrade(str(exc))
            return
        if entries:
            self._token_cache.deserialize(json.dumps(entries))

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def cache_path(self) -> Path:
        return self._store.path

    @property
    def degraded(self) -> bool:
        """Whether tokens are kept in memory only."""
        return self._degraded_reason is not None

    @property
    def degraded_reason(self) -> Optional[str]:
        return self._degraded_reason

    @property
    def guard_status(self) -> Optional[GuardStatus]:
        """Result of the startup probe, or ``None`` before initialization."""
        return self._guard_status

    @property
    def provider(self) -> IdentityProvider:
        self.initialize()
        assert self._provider is not None
        return self._provider

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def acquisition_lock(self, scopes: Sequence[str]) -> threading.Lock:
        """Return the lock serializing acquisitions for one scope set.

        Account selection is deterministic for a session, so every caller
        asking for the same scopes resolves to the same account; holding this
        lock across the silent and interactive attempts keeps at most one
        device-code challenge in flight per (account, scope-set).
        """
        key = frozenset(scopes)
        with self._acquisition_locks_guard:
            lock = self._acquisition_locks.get(key)
            if lock is None:
                lock = self._acquisition_locks[key] = threading.Lock()
            return lock

    def list_accounts(self) -> list[CachedAccount]:
        """Return a snapshot of the cached accounts, in provider order."""
        return self.provider.list_cached_accounts()

    def acquire_token_silent(
        self,
        account: Optional[CachedAccount],
        scopes: Optional[Sequence[str]] = None,
    ) -> Outcome:
        """Silent acquisition; persists the cache when a refresh changed it."""
        outcome = self.provider.acquire_token_silent(account, scopes or self._config.scopes)
        if isinstance(outcome, Success):
            self._persist()
        return outcome

    def acquire_token_by_device_code(
        self,
        on_challenge: ChallengeCallback,
        scopes: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Outcome:
        """Device-code acquisition; persists the new token before returning.

        Failed or cancelled challenges leave the persisted cache untouched.
        """
        if timeout is None:
            timeout = self._config.device_code_timeout
        outcome = self.provider.acquire_token_by_device_code(
            scopes or self._config.scopes,
            on_challenge,
            timeout=timeout,
            cancel_event=cancel_event,
        )
        if isinstance(outcome, Success):
            self._persist()
        return outcome

    def sign_out(self, account: Optional[CachedAccount] = None) -> int:
        """Remove *account* (or every account) from the cache.

        Returns:
            The number of accounts removed.
        """
        accounts = [account] if account is not None else self.list_accounts()
        for acct in accounts:
            self.provider.remove_account(acct)
        if accounts:
            self._persist()
        return len(accounts)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def _persist(self) -> None:
        if self.degraded or not getattr(self._token_cache, "has_state_changed", False):
            return
        with self._persist_lock:
            try:
                self._store.save(json.loads(self._token_cache.serialize()))
            except StorageUnavailable as exc:
                self._degrade(str(exc))

    def _degrade(self, reason: str) -> None:
        logger.warning("Token cache will not be persisted: %s", reason)
        self._degraded_reason = reason


# ------------------------------------------------------------------ #
# Process-wide session (used by the CLI)
# ------------------------------------------------------------------ #

_session: Optional[IdentitySession] = None
_session_lock = threading.Lock()


def get_session(config: Optional[SessionConfig] = None) -> IdentitySession:
    """Return the process-wide :class:`IdentitySession`, creating it on first use.

    Args:
        config: Configuration for the first call. Defaults to
            :func:`devicetoken.config.load_session_config`. Ignored once the
            session exists.

    Raises:
        ConfigInvalid: If no session exists yet and the configuration is
            missing or malformed.
    """
    global _session
    with _session_lock:
        if _session is None:
            if config is None:
                from devicetoken.config import load_session_config

                config = load_session_config()
            _session = IdentitySession.create(config)
        return _session


def set_session(session: IdentitySession) -> None:
    """Install *session* as the process-wide instance."""
    global _session
    with _session_lock:
        _session = session


def reset_session() -> None:
    """Drop the process-wide session. Primarily useful in test suites."""
    global _session
    with _session_lock:
        _session = None
