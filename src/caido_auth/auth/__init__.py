"""Device-flow authentication and token lifecycle.

The main entry points are:

- :class:`Authenticator` -- reuse, refresh or (interactively) obtain the
  access token; :meth:`~Authenticator.ensure_authenticated` and the
  non-interactive :meth:`~Authenticator.get_stored_token`.
- :class:`CredentialStore` -- the persisted token record.
- :class:`GraphQLAuthGateway` -- start-flow and refresh GraphQL calls.
- :class:`TokenWaitChannel` -- waits for the issued token over a
  ``graphql-transport-ws`` subscription.
- :func:`create_authenticator` -- wires all of the above from
  :class:`~caido_auth.models.Settings`.

Typical usage::

    from caido_auth.auth import create_authenticator

    authenticator = create_authenticator(settings)
    token = await authenticator.ensure_authenticated(timeout=300)
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from caido_auth.auth.authenticator import Authenticator, BrowserOpener, Notifier
from caido_auth.auth.credential_store import CredentialStore
from caido_auth.auth.gateway import AuthGateway, GraphQLAuthGateway
from caido_auth.auth.token_wait import TokenWaitChannel
from caido_auth.config import require_url
from caido_auth.models import Settings

__all__ = [
    "AuthGateway",
    "Authenticator",
    "CredentialStore",
    "GraphQLAuthGateway",
    "TokenWaitChannel",
    "create_authenticator",
]


def create_authenticator(
    settings: Settings,
    notify: Optional[Notifier] = None,
    open_browser: Optional[BrowserOpener] = None,
) -> Authenticator:
    """Build an :class:`Authenticator` for the configured Caido instance.

    The browser is only opened when ``settings.open_browser`` is set and an
    *open_browser* callable is supplied.

    Raises:
        ConfigError: If no instance URL is configured.
    """
    gateway = GraphQLAuthGateway(require_url(settings), timeout=settings.request_timeout)
    store = CredentialStore(margin=timedelta(minutes=settings.expiry_margin_minutes))
    channel = TokenWaitChannel(gateway.websocket_endpoint, open_timeout=settings.request_timeout)
    return Authenticator(
        gateway,
        store,
        channel=channel,
        notify=notify,
        open_browser=open_browser if settings.open_browser else None,
    )
