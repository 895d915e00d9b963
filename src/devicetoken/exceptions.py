"""Exception hierarchy for devicetoken.

All exceptions inherit from :class:`DeviceTokenError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`devicetoken.exit_codes`.
The top-level error handler in :func:`devicetoken.app.main` catches
``DeviceTokenError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    DeviceTokenError (exit 1)
    +-- ConfigInvalid          (exit 2)
    +-- StorageUnavailable     (exit 1, recovered locally, never surfaced)
    +-- AuthError              (exit 3)
    |   +-- DeviceFlowFailed
    |   |   +-- AcquisitionCancelled (exit 130)
    |   +-- UnknownAuthError
    +-- ApiAuthError           (exit 3)
    +-- NotFoundError          (exit 4)
    +-- ServerError            (exit 5)
    +-- ConnectionError_       (exit 6)

"Interaction required" is deliberately absent: it is an internal
:class:`~devicetoken.models.InteractionRequired` outcome that triggers the
device-code fallback and never reaches a caller.
"""

from __future__ import annotations

from devicetoken.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONFIG_INVALID,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)
from devicetoken.models import FailureCause


class DeviceTokenError(Exception):
    """Base exception for all devicetoken errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`devicetoken.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigInvalid(DeviceTokenError):
    """Raised when client id, tenant id, or scopes are missing or malformed.

    Fatal: without a valid session configuration no further operation is
    meaningful, so startup aborts.
    """

    exit_code = EXIT_CONFIG_INVALID


class StorageUnavailable(DeviceTokenError):
    """Raised by the token cache store when its file cannot be read or written.

    The session recovers from this locally by falling back to an in-memory
    cache; it is logged but never surfaced to the caller of an acquisition.
    """

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(DeviceTokenError):
    """Raised when an access token could not be acquired.

    Terminal for the current acquisition. The flow is never retried
    automatically; the user re-invokes the command.

    Args:
        message: Human-readable error description.
        cause: Classification of the failure.
    """

    exit_code = EXIT_AUTH_FAILURE
    default_cause: FailureCause = FailureCause.UNKNOWN

    def __init__(self, message: str, cause: FailureCause | None = None):
        super().__init__(message)
        self.cause = cause or self.default_cause


class DeviceFlowFailed(AuthError):
    """Raised when the device-code challenge expired, was declined, or errored."""

    default_cause = FailureCause.DEVICE_FLOW


class AcquisitionCancelled(DeviceFlowFailed):
    """Raised when the device-code wait was cancelled before the user finished."""

    exit_code = EXIT_CANCELLED
    default_cause = FailureCause.CANCELLED


class UnknownAuthError(AuthError):
    """Raised for any provider, network, or configuration fault during silent acquisition."""

    default_cause = FailureCause.UNKNOWN


class ApiAuthError(DeviceTokenError):
    """Raised when the protected API answers 401 or 403 to a bearer token."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(DeviceTokenError):
    """Raised when the protected API returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(DeviceTokenError):
    """Raised when the protected API returns an HTTP 5xx server error."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(DeviceTokenError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR
