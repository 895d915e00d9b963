"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~devicetoken.exceptions.DeviceTokenError` subclass.
Shell wrappers can inspect the exit code to tell a rejected sign-in apart
from a misconfigured client without parsing stderr.

Example::

    $ devicetoken call
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the device code expired or was declined
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_CONFIG_INVALID = 2
"""Client id, tenant id, or scopes are missing or malformed."""

EXIT_AUTH_FAILURE = 3
"""A token could not be acquired, or the API rejected it."""

EXIT_NOT_FOUND = 4
"""The protected API returned HTTP 404."""

EXIT_SERVER_ERROR = 5
"""The protected API returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The user interrupted the command (Ctrl-C) or the device-code wait was cancelled."""
