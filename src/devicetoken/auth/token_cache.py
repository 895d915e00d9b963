"""Persistent token cache store.

Stores the identity provider's serialised token cache in
``~/.local/share/devicetoken/token.cache`` (XDG) or the platform-equivalent
directory.  The payload is the SDK's own cache document: a mapping of
sections (``AccessToken``, ``RefreshToken``, ``Account``, ...) whose entries
are keyed by account and scope target, so one file holds every
(account, scope-set) pair.

Files are written atomically via :func:`~devicetoken.config.atomic_write`
with ``0o600`` permissions so that refresh tokens are never world-readable,
even momentarily.  Reads and writes both hold a cross-process file lock
(:class:`msal_extensions.CrossPlatLock`) so two processes never interleave a
read-modify-write of the same cache.

See Also:
    :class:`~devicetoken.auth.guard.CacheGuard` -- startup probe.
    :class:`~devicetoken.auth.session.IdentitySession` -- binds this store to
    the SDK cache.
"""

from __future__ import annotations

import json
import logging
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from msal_extensions import CrossPlatLock

from devicetoken.config import atomic_write, get_data_dir
from devicetoken.exceptions import StorageUnavailable
from devicetoken.models import DEFAULT_CACHE_FILE_NAME

logger = logging.getLogger(__name__)

_PROBE_PAYLOAD = '{"probe": "devicetoken"}'


class TokenCacheStore:
    """Read/write the serialised token cache for one cache file.

    Args:
        file_name: Cache file name inside the data directory.
        directory: Override for the containing directory (tests, custom
            locations). Defaults to :func:`~devicetoken.config.get_data_dir`.

    Example::

        store = TokenCacheStore("token.cache")
        entries = store.load()          # {} on first run
        store.save({"AccessToken": {}})
    """

    def __init__(
        self,
        file_name: str = DEFAULT_CACHE_FILE_NAME,
        directory: Optional[Path] = None,
    ) -> None:
        self._path = (directory or get_data_dir()) / file_name
        self._lock_path = self._path.with_name(self._path.name + ".lockfile")

    @property
    def path(self) -> Path:
        """The filesystem path to the cache file."""
        return self._path

    def load(self) -> dict[str, Any]:
        """Load the cached entries from disk.

        Returns:
            The parsed mapping, or an empty dict if the file does not exist,
            is empty, or cannot be parsed.

        Raises:
            StorageUnavailable: If the file or its lock cannot be accessed.
        """
        try:
            with self._locked():
                if not self._path.is_file():
                    return {}
                text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read token cache {self._path}: {exc}") from exc

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable token cache at %s", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring token cache at %s: not a JSON object", self._path)
            return {}
        return data

    def save(self, entries: dict[str, Any]) -> None:
        """Overwrite the cache file atomically with ``0o600`` permissions.

        Raises:
            StorageUnavailable: If the file cannot be written (permissions,
                disk full, lock held by a crashed process, etc.).
        """
        text = json.dumps(entries, indent=2) + "\n"
        try:
            with self._locked():
                atomic_write(self._path, text, mode=0o600)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write token cache {self._path}: {exc}") from exc
        logger.debug("Token cache saved to %s", self._path)

    def clear(self) -> None:
        """Delete the cache file. No-op when it has already been removed."""
        try:
            with self._locked():
                if self._path.is_file():
                    self._path.unlink()
        except OSError as exc:
            raise StorageUnavailable(f"Cannot remove token cache {self._path}: {exc}") from exc

    def probe(self) -> None:
        """Write, read back, and delete a dummy payload next to the cache file.

        Exercises directory creation, locking, atomic writes, and
        permissions without touching real cache content.

        Raises:
            StorageUnavailable: If any step fails or the payload does not
                round-trip.
        """
        probe_path = self._path.with_name(self._path.name + ".probe")
        try:
            with self._locked():
                atomic_write(probe_path, _PROBE_PAYLOAD, mode=0o600)
                read_back = probe_path.read_text(encoding="utf-8")
                probe_path.unlink()
        except OSError as exc:
            raise StorageUnavailable(f"Token cache directory is not usable: {exc}") from exc
        if read_back != _PROBE_PAYLOAD:
            raise StorageUnavailable(f"Token cache probe at {probe_path} read back different content")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with ExitStack() as stack:
            try:
                stack.enter_context(CrossPlatLock(str(self._lock_path)))
            except Exception as exc:
                # Lock backends raise their own exception types.
                raise OSError(f"Cannot lock {self._lock_path}: {exc}") from exc
            yield
