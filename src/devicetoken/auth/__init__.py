"""Token acquisition for devicetoken.

The main entry points are:

- :class:`IdentitySession` -- the identity client bound to the persistent
  token cache, created once per process.
- :class:`TokenAcquirer` -- the silent-first, device-code-fallback state
  machine exposing :meth:`~TokenAcquirer.acquire_access_token`.
- :class:`TokenCacheStore` and :class:`CacheGuard` -- durable cache storage
  and its startup probe.
- :class:`IdentityProvider` / :class:`MsalIdentityProvider` -- the provider
  operations the state machine depends on.

Typical usage::

    from devicetoken.auth import IdentitySession, TokenAcquirer
    from devicetoken.config import load_session_config

    session = IdentitySession.create(load_session_config())
    token = TokenAcquirer(session).acquire_access_token()
"""

from devicetoken.auth.acquirer import AccountSelector, AcquisitionState, TokenAcquirer
from devicetoken.auth.guard import CacheGuard
from devicetoken.auth.provider import IdentityProvider, MsalIdentityProvider
from devicetoken.auth.session import IdentitySession, get_session, reset_session, set_session
from devicetoken.auth.token_cache import TokenCacheStore

__all__ = [
    "AccountSelector",
    "AcquisitionState",
    "CacheGuard",
    "IdentityProvider",
    "IdentitySession",
    "MsalIdentityProvider",
    "TokenAcquirer",
    "TokenCacheStore",
    "get_session",
    "reset_session",
    "set_session",
]
