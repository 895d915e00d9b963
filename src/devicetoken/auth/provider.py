"""Identity-provider adapter.

The token state machine depends on exactly three provider operations --
list cached accounts, acquire silently, acquire by device code -- plus the
provider's classification of a failure as "interaction required" or not.
:class:`IdentityProvider` states that contract and :class:`MsalIdentityProvider`
fulfils it with MSAL for Python.

Every acquisition returns an :data:`~devicetoken.models.Outcome` value
(:class:`~devicetoken.models.Success`,
:class:`~devicetoken.models.InteractionRequired`, or
:class:`~devicetoken.models.Failure`) instead of raising, so that the state
machine branches on explicit tags rather than exception types.

Silent classification:

- ``None`` from the SDK (nothing usable in the cache, or no account) and the
  OAuth2 errors ``interaction_required``, ``login_required``,
  ``consent_required``, ``invalid_grant`` (or an Entra ``suberror`` asking
  the user to act) are *interaction required*.
- Every other error, and any exception raised by the SDK (network
  failures, bad authority), is a :attr:`FailureCause.UNKNOWN` failure.

See Also:
    :class:`~devicetoken.auth.acquirer.TokenAcquirer` -- the consumer.
    :rfc:`8628` -- device authorization grant polling errors.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

import msal

from devicetoken.models import (
    CachedAccount,
    DeviceCodeChallenge,
    Failure,
    FailureCause,
    InteractionRequired,
    Outcome,
    SessionConfig,
    Success,
    TokenResult,
    TokenSource,
)

ChallengeCallback = Callable[[DeviceCodeChallenge], None]

INTERACTION_REQUIRED_ERRORS = frozenset(
    {"interaction_required", "login_required", "consent_required", "invalid_grant"}
)
INTERACTION_REQUIRED_SUBERRORS = frozenset(
    {
        "basic_action",
        "additional_action",
        "message_only",
        "consent_required",
        "user_password_expired",
        "bad_token",
    }
)
DEVICE_CODE_EXPIRED_ERRORS = frozenset(
    {"expired_token", "code_expired", "authorization_pending", "slow_down"}
)
DEVICE_CODE_DENIED_ERRORS = frozenset({"access_denied", "authorization_declined"})


class IdentityProvider(ABC):
    """The identity-provider operations the token state machine relies on."""

    @abstractmethod
    def list_cached_accounts(self) -> list[CachedAccount]:
        """Return a snapshot of the accounts present in the token cache."""

    @abstractmethod
    def acquire_token_silent(
        self, account: Optional[CachedAccount], scopes: Sequence[str]
    ) -> Outcome:
        """Return a cached token, refreshing it silently if needed."""

    @abstractmethod
    def acquire_token_by_device_code(
        self,
        scopes: Sequence[str],
        on_challenge: ChallengeCallback,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Outcome:
        """Run one device-code challenge and wait for the user to finish it."""

    @abstractmethod
    def remove_account(self, account: CachedAccount) -> None:
        """Forget every token held for *account*."""


def _error_text(response: dict[str, Any]) -> str:
    return str(response.get("error_description") or response.get("error") or "unknown error")


def _account_from_claims(claims: dict[str, Any]) -> Optional[CachedAccount]:
    """Build an account handle from ID-token claims (device-code results)."""
    if not claims:
        return None
    oid, tid = claims.get("oid"), claims.get("tid")
    return CachedAccount(
        home_account_id=f"{oid}.{tid}" if oid and tid else None,
        username=claims.get("preferred_username") or claims.get("upn"),
        raw={},
    )


def token_result_from_response(
    response: dict[str, Any],
    account: Optional[CachedAccount] = None,
    source: Optional[TokenSource] = None,
) -> TokenResult:
    """Convert an SDK token response into a :class:`TokenResult`.

    Args:
        response: Mapping with ``access_token`` and optionally
            ``expires_in``, ``token_source``, and ``id_token_claims``.
        account: The account the token was requested for, if known.
        source: Force a source. Defaults to the SDK's ``token_source``.
    """
    expires_at = None
    expires_in = response.get("expires_in")
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
    if source is None:
        source = (
            TokenSource.CACHE
            if response.get("token_source") == "cache"
            else TokenSource.IDENTITY_PROVIDER
        )
    if account is None:
        account = _account_from_claims(response.get("id_token_claims") or {})
    return TokenResult(
        access_token=response.get("access_token") or "",
        expires_at=expires_at,
        account=account,
        source=source,
    )


def classify_silent_response(
    response: Optional[dict[str, Any]], account: Optional[CachedAccount] = None
) -> Outcome:
    """Map an ``acquire_token_silent_with_error`` return value to an outcome."""
    if response is None:
        return InteractionRequired("no usable token in the cache")
    if "access_token" in response:
        return Success(token_result_from_response(response, account))
    error = response.get("error")
    if error in INTERACTION_REQUIRED_ERRORS or response.get("suberror") in INTERACTION_REQUIRED_SUBERRORS:
        return InteractionRequired(_error_text(response))
    return Failure(FailureCause.UNKNOWN, _error_text(response), details=dict(response))


def classify_device_flow_response(
    response: dict[str, Any], cancelled: bool = False
) -> Outcome:
    """Map an ``acquire_token_by_device_flow`` return value to an outcome."""
    if "access_token" in response:
        return Success(token_result_from_response(response, source=TokenSource.DEVICE_CODE))
    if cancelled:
        return Failure(FailureCause.CANCELLED, "Device-code sign-in was cancelled")
    error = response.get("error")
    if error in DEVICE_CODE_EXPIRED_ERRORS:
        return Failure(
            FailureCause.DEVICE_FLOW,
            "Device code expired before sign-in completed -- please try again",
            details=dict(response),
        )
    if error in DEVICE_CODE_DENIED_ERRORS:
        return Failure(FailureCause.DEVICE_FLOW, "Sign-in was declined", details=dict(response))
    return Failure(
        FailureCause.DEVICE_FLOW,
        f"Device-code sign-in failed: {_error_text(response)}",
        details=dict(response),
    )


class MsalIdentityProvider(IdentityProvider):
    """:class:`IdentityProvider` backed by :class:`msal.PublicClientApplication`.

    Args:
        config: The session configuration (client id, authority).
        token_cache: The SDK cache the application reads and writes. The
            session owns persisting it.
        app: Pre-built application, for tests.
    """

    def __init__(
        self,
        config: SessionConfig,
        token_cache: Optional[msal.SerializableTokenCache] = None,
        app: Optional[msal.PublicClientApplication] = None,
    ) -> None:
        self._config = config
        self._app = app or msal.PublicClientApplication(
            client_id=config.client_id,
            authority=config.authority,
            token_cache=token_cache,
        )

    def list_cached_accounts(self) -> list[CachedAccount]:
        return [
            CachedAccount(
                home_account_id=raw.get("home_account_id"),
                username=raw.get("username"),
                environment=raw.get("environment"),
                raw=dict(raw),
            )
            for raw in self._app.get_accounts()
        ]

    def acquire_token_silent(
        self, account: Optional[CachedAccount], scopes: Sequence[str]
    ) -> Outcome:
        """Look up, or silently refresh, a token for *account*.

        With no account the SDK has nothing to look up and returns
        ``None``, which classifies as interaction required.
        """
        try:
            response = self._app.acquire_token_silent_with_error(
                list(scopes), account=account.raw if account else None
            )
        except Exception as exc:  # transport and SDK faults are all "unknown"
            return Failure(FailureCause.UNKNOWN, f"Silent token acquisition failed: {exc}")
        return classify_silent_response(response, account)

    def acquire_token_by_device_code(
        self,
        scopes: Sequence[str],
        on_challenge: ChallengeCallback,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Outcome:
        """Start a device-code flow, show the challenge, and poll until it settles.

        The SDK polls the token endpoint at the interval the provider asks
        for and stops at the flow's ``expires_at``. A *timeout* shortens
        that deadline; setting *cancel_event* stops polling within about a
        second.
        """
        try:
            flow = self._app.initiate_device_flow(scopes=list(scopes))
        except Exception as exc:
            return Failure(FailureCause.DEVICE_FLOW, f"Could not start device-code sign-in: {exc}")
        if "user_code" not in flow:
            return Failure(
                FailureCause.DEVICE_FLOW,
                f"Could not start device-code sign-in: {_error_text(flow)}",
                details=dict(flow),
            )

        if timeout is not None:
            flow["expires_at"] = min(flow.get("expires_at", float("inf")), time.time() + timeout)

        expires_at = flow.get("expires_at")
        verification_uri = flow.get("verification_uri", flow.get("verification_url", ""))
        on_challenge(
            DeviceCodeChallenge(
                user_code=flow["user_code"],
                verification_uri=verification_uri,
                message=flow.get("message")
                or f"To sign in, open {verification_uri} and enter the code {flow['user_code']}.",
                expires_at=(
                    datetime.fromtimestamp(expires_at, tz=timezone.utc)
                    if expires_at is not None
                    else None
                ),
            )
        )

        cancel = cancel_event or threading.Event()

        def _should_stop(polled_flow: dict[str, Any]) -> bool:
            return cancel.is_set() or polled_flow.get("expires_at", 0) < time.time()

        try:
            response = self._app.acquire_token_by_device_flow(flow, exit_condition=_should_stop)
        except Exception as exc:
            return Failure(FailureCause.DEVICE_FLOW, f"Device-code sign-in failed: {exc}")
        return classify_device_flow_response(response, cancelled=cancel.is_set())

    def remove_account(self, account: CachedAccount) -> None:
        self._app.remove_account(account.raw)
