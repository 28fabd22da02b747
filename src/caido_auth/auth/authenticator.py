"""Authenticator -- the policy that turns stored state into a usable token.

:meth:`Authenticator.ensure_authenticated` is the interactive entry point:

1. Load the stored credential; return it while it is fresh.
2. If it has expired but carries a refresh token, renew it. A failed
   renewal is logged and the flow falls through to a new login.
3. Otherwise start the device flow, show the verification URL and user
   code, best-effort open a browser, and wait on the
   :class:`~caido_auth.auth.token_wait.TokenWaitChannel` for the token.

Every credential obtained in steps 2 and 3 is persisted before it is
returned.

:meth:`Authenticator.get_stored_token` is the non-interactive variant for
long-running processes: it stops after step 2 and tells the operator to run
``caido-auth login`` instead of starting a device flow.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from datetime import timezone
from typing import Awaitable, Callable, Optional, TypeVar

from caido_auth.auth.credential_store import CredentialStore
from caido_auth.auth.gateway import AuthGateway
from caido_auth.auth.token_wait import TokenWaitChannel
from caido_auth.exceptions import (
    LOGIN_HINT,
    AuthCancelledError,
    AuthenticationError,
    CaidoAuthError,
    FlowStartError,
    GatewayError,
    NotAuthenticatedError,
    StorageWriteError,
)
from caido_auth.models import AuthorizationRequest

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Notifier = Callable[[str], None]
BrowserOpener = Callable[[str], bool]


def _log_notifier(message: str) -> None:
    logger.info(message)


class Authenticator:
    """Obtain, persist and renew the access token for one Caido instance.

    At most one authentication attempt runs at a time per instance;
    concurrent callers wait on an internal lock and then see the
    credential the first caller stored.

    Args:
        gateway: Remote calls for starting and refreshing a login.
        store: Where the credential is persisted.
        channel: Subscription used to wait for the issued token. Defaults
            to a :class:`TokenWaitChannel` on ``gateway.websocket_endpoint``.
        notify: Side channel for human-facing instructions (the CLI passes
            a stderr writer). Defaults to the module logger.
        open_browser: Callable that opens a URL and returns ``False`` on
            failure. ``None`` disables opening a browser.
    """

    def __init__(
        self,
        gateway: AuthGateway,
        store: CredentialStore,
        channel: Optional[TokenWaitChannel] = None,
        notify: Optional[Notifier] = None,
        open_browser: Optional[BrowserOpener] = webbrowser.open,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._channel = channel or TokenWaitChannel(gateway.websocket_endpoint)
        self._notify = notify or _log_notifier
        self._open_browser = open_browser
        self._lock = asyncio.Lock()

    @property
    def store(self) -> CredentialStore:
        return self._store

    async def __aenter__(self) -> Authenticator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the gateway's network resources, if it holds any."""
        close = getattr(self._gateway, "aclose", None)
        if close is not None:
            await close()

    async def ensure_authenticated(self, timeout: Optional[float] = None) -> str:
        """Return a valid access token, logging in interactively if needed.

        Cheap when a fresh token is already stored (a single file read).

        Args:
            timeout: Overall deadline in seconds, covering any wait for a
                concurrent caller as well as refresh, flow start and the
                wait for the token. ``None`` waits forever.

        Returns:
            The access token.

        Raises:
            StorageReadError: If the stored token cannot be read.
            StorageWriteError: If a new token cannot be persisted.
            FlowStartError: If the device flow cannot be started.
            AuthenticationError: If no token is issued.
            AuthCancelledError: If *timeout* expires first.
        """
        return await _with_deadline(self._locked(self._ensure_authenticated), timeout)

    async def get_stored_token(self, timeout: Optional[float] = None) -> str:
        """Return a valid access token without starting a device flow.

        Renews an expired token when a refresh token is available. A
        failure to persist the renewed token is only a warning here.

        Args:
            timeout: Deadline in seconds for the lock wait and the refresh call.

        Raises:
            StorageReadError: If the stored token cannot be read.
            NotAuthenticatedError: If there is no token, it expired without
                a refresh token, or the refresh failed.
            AuthCancelledError: If *timeout* expires first.
        """
        return await _with_deadline(self._locked(self._get_stored_token), timeout)

    # ------------------------------------------------------------------ #
    # Policy
    # ------------------------------------------------------------------ #

    async def _locked(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        async with self._lock:
            return await operation()

    async def _ensure_authenticated(self) -> str:
        credential = self._store.load()

        if credential is not None and not self._store.is_expired(credential):
            return credential.access_token

        if credential is not None and credential.has_refresh_token:
            try:
                refreshed = await self._gateway.refresh(credential.refresh_token)
            except GatewayError as exc:
                logger.warning("Token refresh failed (%s): %s", exc.kind, exc)
                self._notify("Starting new authentication flow...")
            else:
                self._store.save(refreshed)
                logger.debug("Refreshed token, valid until %s", refreshed.expires_at)
                return refreshed.access_token

        return await self._device_flow()

    async def _device_flow(self) -> str:
        try:
            request = await self._gateway.start_device_flow()
        except GatewayError as exc:
            raise FlowStartError(
                f"Failed to start authentication flow: {exc}"
            ) from exc

        self._show_instructions(request)
        self._try_open_browser(request.verification_url)

        try:
            credential = await self._channel.wait_for_token(request.id)
        except CaidoAuthError as exc:
            raise AuthenticationError(
                f"Failed to get authentication token: {exc}. {LOGIN_HINT}"
            ) from exc

        self._store.save(credential)
        self._notify("Authentication successful!")
        return credential.access_token

    async def _get_stored_token(self) -> str:
        credential = self._store.load()
        if credential is None:
            raise NotAuthenticatedError(
                "No authentication token found. Please run 'caido-auth login' first."
            )
        if not self._store.is_expired(credential):
            return credential.access_token

        if not credential.has_refresh_token:
            raise NotAuthenticatedError(
                "Token expired and no refresh token available. "
                "Please run 'caido-auth login' again."
            )

        try:
            refreshed = await self._gateway.refresh(credential.refresh_token)
        except GatewayError as exc:
            raise NotAuthenticatedError(
                f"Token expired and refresh failed: {exc}. "
                "Please run 'caido-auth login' again.",
            ) from exc

        try:
            self._store.save(refreshed)
        except StorageWriteError as exc:
            logger.warning("Failed to save refreshed token: %s", exc)
        return refreshed.access_token

    # ------------------------------------------------------------------ #
    # Presentation
    # ------------------------------------------------------------------ #

    def _show_instructions(self, request: AuthorizationRequest) -> None:
        expires = request.expires_at.astimezone(timezone.utc).isoformat()
        self._notify("\n=== Caido Authentication Required ===")
        self._notify("Please open the following URL in your browser:")
        self._notify(f"  {request.verification_url}\n")
        self._notify(f"And enter this code: {request.user_code}\n")
        self._notify(f"Waiting for authentication (expires at {expires})...\n")

    def _try_open_browser(self, url: str) -> None:
        if self._open_browser is None:
            return
        try:
            opened = self._open_browser(url)
        except Exception as exc:  # any opener failure is non-fatal
            logger.debug("Browser opener raised: %s", exc)
            opened = False
        if not opened:
            self._notify("(Could not open browser automatically)")


async def _with_deadline(coro: Awaitable[_T], timeout: Optional[float]) -> _T:
    if timeout is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError as exc:
        raise AuthCancelledError(
            f"Authentication timed out after {timeout:g} seconds. {LOGIN_HINT}"
        ) from exc
