"""Startup check for the persistent token cache.

:class:`CacheGuard` probes the cache directory once when the identity
session initializes. A broken medium (read-only home directory, wrong
permissions, stale lock) degrades the session to an in-memory cache; it never
stops a token from being acquired.
"""

from __future__ import annotations

import logging

from devicetoken.auth.token_cache import TokenCacheStore
from devicetoken.exceptions import StorageUnavailable
from devicetoken.models import GuardStatus

logger = logging.getLogger(__name__)


class CacheGuard:
    """Verify that a :class:`TokenCacheStore` can be read and written.

    Args:
        store: The store to probe.
    """

    def __init__(self, store: TokenCacheStore) -> None:
        self._store = store

    def verify(self) -> GuardStatus:
        """Run a write/read/delete probe against the store.

        Returns:
            ``GuardStatus(ok=True)`` when the probe succeeds, otherwise a
            degraded status carrying the reason. Never raises.
        """
        try:
            self._store.probe()
        except (StorageUnavailable, OSError) as exc:
            logger.warning(
                "Token cache persistence unavailable, continuing with an in-memory cache: %s",
                exc,
            )
            return GuardStatus(ok=False, reason=str(exc))
        logger.debug("Token cache persistence verified at %s", self._store.path)
        return GuardStatus(ok=True)
