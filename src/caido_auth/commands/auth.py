"""Auth commands -- log in, print the token, inspect and clear stored state.

Typical workflow::

    caido-auth --url http://127.0.0.1:8080 login   # device flow in the browser
    caido-auth token                                # bearer value on stdout
    caido-auth status                               # stored token details
    caido-auth logout                               # remove the stored token

Only ``token`` and ``status`` write to stdout; everything else, including
the login instructions, goes to stderr.
"""

from __future__ import annotations

import asyncio
import webbrowser
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import typer

from caido_auth.exceptions import CaidoAuthError
from caido_auth.models import Settings
from caido_auth.output import (
    error,
    info,
    notice,
    print_data,
    print_table,
    success,
    suggest,
)

if TYPE_CHECKING:
    from caido_auth.auth import Authenticator


def _resolve(ctx: typer.Context, cli_timeout: Optional[float] = None) -> Settings:
    from caido_auth.config import resolve_settings

    url = ctx.obj.get("url") if ctx.obj else None
    return resolve_settings(cli_url=url, cli_timeout=cli_timeout)


def _fail(exc: CaidoAuthError) -> typer.Exit:
    error(str(exc))
    return typer.Exit(code=exc.exit_code)


def login_command(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds to wait for authorization (default 300)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Do not try to open the verification URL."
    ),
) -> None:
    """Authenticate with Caido using the OAuth device flow.

    Reuses a stored token while it is valid and silently refreshes an
    expired one. Otherwise prints a verification URL and code, opens the
    browser, and waits for the authorization to complete.

    Example::

        caido-auth --url http://127.0.0.1:8080 login --no-browser
    """
    from caido_auth.auth import create_authenticator

    try:
        settings = _resolve(ctx, cli_timeout=timeout)
        if no_browser:
            settings.open_browser = False
        authenticator = create_authenticator(
            settings, notify=notice, open_browser=webbrowser.open
        )
        asyncio.run(_ensure(authenticator, settings.login_timeout))
        credential = authenticator.store.load()
    except CaidoAuthError as exc:
        raise _fail(exc) from None

    if credential is not None:
        info(f"Token valid until {_format_time(credential.expires_at)}.")
    success("You are logged in to Caido.")
    suggest("Print the token with: caido-auth token")


def token_command(
    ctx: typer.Context,
    header: bool = typer.Option(
        False, "--header", help="Print a full 'Authorization: Bearer ...' header."
    ),
) -> None:
    """Print a valid access token without starting a login.

    Refreshes an expired token when possible. Fails with exit code 3 when
    no usable token exists, so long-running services can tell the operator
    to run ``caido-auth login``.

    Example::

        curl -H "$(caido-auth token --header)" http://127.0.0.1:8080/graphql
    """
    from caido_auth.auth import create_authenticator

    try:
        settings = _resolve(ctx)
        authenticator = create_authenticator(settings)
        token = asyncio.run(_stored(authenticator, settings.login_timeout))
    except CaidoAuthError as exc:
        raise _fail(exc) from None

    print_data(f"Authorization: Bearer {token}" if header else token)


def status_command(ctx: typer.Context) -> None:
    """Show the stored token: expiry, validity and refresh availability.

    Tokens are truncated; use ``caido-auth token`` to print the full value.
    """
    from caido_auth.auth import CredentialStore

    try:
        settings = _resolve(ctx)
        store = CredentialStore(margin=timedelta(minutes=settings.expiry_margin_minutes))
        credential = store.load()
    except CaidoAuthError as exc:
        raise _fail(exc) from None

    if credential is None:
        info("No stored token.")
        suggest("Log in: caido-auth login")
        return

    now = datetime.now(timezone.utc)
    rows = [
        ["Token File", str(store.path)],
        ["Access Token", _truncate(credential.access_token)],
        ["Refresh Token", "yes" if credential.has_refresh_token else "no"],
        ["Expires At", _format_time(credential.expires_at)],
        ["Valid", str(not store.is_expired(credential, now=now))],
    ]
    print_table(["Field", "Value"], rows, title="Stored Token")


def logout_command(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Remove the stored token.

    Example::

        caido-auth logout --force
    """
    from caido_auth.auth import CredentialStore

    store = CredentialStore()
    try:
        if not store.path.exists():
            info("No stored token.")
            return
        if not force and not typer.confirm("Remove the stored Caido token?"):
            info("Cancelled.")
            raise typer.Exit()
        store.delete()
    except CaidoAuthError as exc:
        raise _fail(exc) from None

    success("Stored token removed.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _ensure(authenticator: Authenticator, timeout: float) -> str:
    async with authenticator:
        return await authenticator.ensure_authenticated(timeout=timeout)


async def _stored(authenticator: Authenticator, timeout: float) -> str:
    async with authenticator:
        return await authenticator.get_stored_token(timeout=timeout)


def _truncate(value: str) -> str:
    return value[:8] + "..." if len(value) > 8 else value


def _format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")
