"""Token acquisition state machine.

:class:`TokenAcquirer` turns an :class:`~devicetoken.auth.session.IdentitySession`
into one caller-facing operation, :meth:`TokenAcquirer.acquire_access_token`,
which returns a non-empty bearer token or raises an
:class:`~devicetoken.exceptions.AuthError`.

States::

    IDLE -> SILENT_ATTEMPT -> DONE
                           -> INTERACTIVE_PENDING -> INTERACTIVE_ATTEMPT -> DONE
                                                                         -> FAILED
                           -> FAILED

The silent attempt always comes first. Only an
:class:`~devicetoken.models.InteractionRequired` outcome escalates to the
device-code challenge, because that challenge needs a human; any other
silent failure (network, bad authority, unexpected provider error) ends in
``FAILED`` with :class:`~devicetoken.exceptions.UnknownAuthError`. Nothing is
retried automatically.

Example::

    session = IdentitySession.create(load_session_config())
    acquirer = TokenAcquirer(session)
    token = acquirer.acquire_access_token()
"""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
import threading
from typing import Optional, Sequence

from devicetoken.auth.provider import ChallengeCallback
from devicetoken.auth.session import IdentitySession
from devicetoken.exceptions import (
    AcquisitionCancelled,
    AuthError,
    DeviceFlowFailed,
    UnknownAuthError,
)
from devicetoken.models import (
    AccountSelection,
    CachedAccount,
    DeviceCodeChallenge,
    Failure,
    FailureCause,
    SessionConfig,
    Success,
    TokenResult,
    TokenSource,
)

logger = logging.getLogger(__name__)


class AcquisitionState(str, enum.Enum):
    """States of one token acquisition."""

    IDLE = "idle"
    SILENT_ATTEMPT = "silent_attempt"
    INTERACTIVE_PENDING = "interactive_pending"
    INTERACTIVE_ATTEMPT = "interactive_attempt"
    DONE = "done"
    FAILED = "failed"


def display_challenge(challenge: DeviceCodeChallenge) -> None:
    """Default challenge callback: print the provider's instructions to stderr."""
    sys.stderr.write("\nRequesting token...\n")
    sys.stderr.write(f"{challenge.message}\n")
    sys.stderr.write("\nWaiting for authorization...\n")
    sys.stderr.flush()


class AccountSelector:
    """Pick the account to use for silent acquisition.

    Args:
        policy: :attr:`AccountSelection.FIRST` or :attr:`AccountSelection.USERNAME`.
        preferred_username: Username to match under the ``USERNAME`` policy.
    """

    def __init__(
        self,
        policy: AccountSelection = AccountSelection.FIRST,
        preferred_username: Optional[str] = None,
    ) -> None:
        self._policy = policy
        self._preferred_username = preferred_username

    @classmethod
    def from_config(cls, config: SessionConfig) -> AccountSelector:
        return cls(config.account_selection, config.preferred_username)

    def select(self, accounts: Sequence[CachedAccount]) -> Optional[CachedAccount]:
        """Return the chosen account, or ``None`` when the cache has none."""
        if not accounts:
            return None
        if len(accounts) > 1:
            logger.warning(
                "%d accounts in the token cache; selecting by policy '%s'",
                len(accounts),
                self._policy.value,
            )
        if self._policy == AccountSelection.USERNAME and self._preferred_username:
            wanted = self._preferred_username.casefold()
            for account in accounts:
                if account.username and account.username.casefold() == wanted:
                    return account
            logger.warning(
                "No cached account for '%s'; using the first cached account",
                self._preferred_username,
            )
        return accounts[0]


class TokenAcquirer:
    """Silent-first, device-code-fallback token acquisition.

    Acquisitions for the same scope set are serialized on a lock owned by
    the session, so concurrent callers never start two device-code
    challenges for the same account: a caller that waited re-runs the
    silent attempt and picks up the token the first caller obtained.

    Args:
        session: The identity session to acquire through.
        on_challenge: Called once per device-code challenge with the code
            and instructions. Defaults to :func:`display_challenge`.
        selector: Account selection policy. Defaults to the session config.
        timeout: Upper bound in seconds for the device-code wait. Defaults
            to ``session.config.device_code_timeout`` (or the provider's
            own expiry when that is unset).
    """

    def __init__(
        self,
        session: IdentitySession,
        on_challenge: Optional[ChallengeCallback] = None,
        selector: Optional[AccountSelector] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._session = session
        self._on_challenge = on_challenge or display_challenge
        self._selector = selector or AccountSelector.from_config(session.config)
        self._timeout = timeout
        self._state = AcquisitionState.IDLE
        self._last_source: Optional[TokenSource] = None
        self._in_flight: set[threading.Event] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def state(self) -> AcquisitionState:
        """State reached by the most recent acquisition."""
        return self._state

    @property
    def last_source(self) -> Optional[TokenSource]:
        """Where the most recent successful token came from."""
        return self._last_source

    def cancel(self) -> None:
        """Stop the in-flight device-code wait; that acquisition fails as cancelled.

        Callers still queued on the session lock are not affected.
        """
        with self._in_flight_lock:
            for event in self._in_flight:
                event.set()

    def acquire_access_token(self) -> str:
        """Return a non-empty bearer token.

        Raises:
            UnknownAuthError: The silent attempt failed for a reason other
                than needing the user.
            DeviceFlowFailed: The device code expired, was declined, or the
                provider rejected the flow.
            AcquisitionCancelled: :meth:`cancel` was called during the wait.
        """
        return self.acquire().access_token

    async def acquire_access_token_async(self) -> str:
        """Run :meth:`acquire_access_token` in a worker thread.

        Cancelling the awaiting task cancels this call's device-code wait
        only.
        """
        cancel_event = threading.Event()
        try:
            result = await asyncio.to_thread(self.acquire, cancel_event)
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        return result.access_token

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> TokenResult:
        """Run the state machine and return the full :class:`TokenResult`.

        Calls for the same scopes run one at a time, so :attr:`state` and
        :attr:`last_source` always describe the latest finished or running
        call.

        Args:
            cancel_event: Cancels this call alone when set. :meth:`cancel`
                sets it too while the call holds the session lock.

        Raises:
            AuthError: See :meth:`acquire_access_token`.
        """
        scopes = self._session.config.scopes
        with self._session.acquisition_lock(scopes):
            event = cancel_event or threading.Event()
            with self._in_flight_lock:
                self._in_flight.add(event)
            try:
                return self._run(scopes, event)
            finally:
                with self._in_flight_lock:
                    self._in_flight.discard(event)

    def _run(self, scopes: Sequence[str], cancel_event: threading.Event) -> TokenResult:
        self._transition(AcquisitionState.IDLE)
        try:
            accounts = self._session.list_accounts()
        except Exception as exc:  # provider-side fault before any attempt
            raise self._fail(
                UnknownAuthError(f"Could not read cached accounts: {exc}")
            ) from exc
        account = self._selector.select(accounts)

        self._transition(AcquisitionState.SILENT_ATTEMPT)
        outcome = self._session.acquire_token_silent(account, scopes)
        if isinstance(outcome, Success):
            return self._done(outcome.result)
        if isinstance(outcome, Failure):
            raise self._fail(UnknownAuthError(outcome.message, outcome.cause))

        logger.info("Interactive sign-in required: %s", outcome.reason or "no cached token")
        self._transition(AcquisitionState.INTERACTIVE_PENDING)
        if cancel_event.is_set():
            raise self._fail(AcquisitionCancelled("Device-code sign-in was cancelled"))
        self._transition(AcquisitionState.INTERACTIVE_ATTEMPT)
        outcome = self._session.acquire_token_by_device_code(
            self._on_challenge,
            scopes,
            timeout=self._timeout,
            cancel_event=cancel_event,
        )
        if isinstance(outcome, Success):
            return self._done(outcome.result)
        if isinstance(outcome, Failure):
            if outcome.cause == FailureCause.CANCELLED:
                raise self._fail(AcquisitionCancelled(outcome.message))
            raise self._fail(DeviceFlowFailed(outcome.message))
        raise self._fail(
            DeviceFlowFailed(f"Device-code sign-in did not complete: {outcome.reason}")
        )

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def _transition(self, state: AcquisitionState) -> None:
        logger.debug("Token acquisition: %s -> %s", self._state.value, state.value)
        self._state = state

    def _done(self, result: TokenResult) -> TokenResult:
        if not result.access_token:
            raise self._fail(UnknownAuthError("Identity provider returned an empty access token"))
        self._transition(AcquisitionState.DONE)
        self._last_source = result.source
        if result.source == TokenSource.DEVICE_CODE:
            logger.info("Successfully authenticated with a device code")
        else:
            logger.info("Successfully authenticated (token from %s)", result.source.value)
        return result

    def _fail(self, exc: AuthError) -> AuthError:
        self._transition(AcquisitionState.FAILED)
        logger.debug("Token acquisition failed (%s): %s", exc.cause.value, exc)
        return exc
