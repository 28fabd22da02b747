"""Token-wait channel -- receive the issued token over a GraphQL subscription.

After the user approves a device authorization request in the browser,
Caido pushes the new token on the ``createdAuthenticationToken``
subscription. :class:`TokenWaitChannel` speaks the ``graphql-transport-ws``
sub-protocol over a WebSocket:

1. Connect and send ``connection_init``.
2. Require ``connection_ack`` as the first message.
3. Send ``subscribe`` (id ``"1"``) with the request id as variable.
4. Read messages until a terminal one arrives:

   * ``next`` carrying a token -> return the :class:`~caido_auth.models.Credential`;
   * ``next`` carrying an error -> :class:`~caido_auth.exceptions.IssuanceFailedError`;
   * ``error`` -> :class:`~caido_auth.exceptions.ProtocolError`;
   * ``complete`` before a token -> :class:`~caido_auth.exceptions.ProtocolError`;
   * ``ping`` is answered with ``pong``; anything else is skipped.

The connection is opened with ``async with`` and therefore closed exactly
once on every exit path, including task cancellation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncContextManager, Callable, Optional

from pydantic import ValidationError
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException
from websockets.typing import Origin, Subprotocol

from caido_auth.config import origin_for
from caido_auth.exceptions import GatewayError, IssuanceFailedError, ProtocolError
from caido_auth.models import (
    CompleteMessage,
    ConnectionAckMessage,
    Credential,
    ErrorMessage,
    IssuanceResult,
    NextMessage,
    PingMessage,
    parse_message,
)

logger = logging.getLogger(__name__)

SUBPROTOCOL = "graphql-transport-ws"
SUBSCRIPTION_ID = "1"

CREATED_AUTHENTICATION_TOKEN = """
subscription CreatedAuthenticationToken($requestId: ID!) {
  createdAuthenticationToken(requestId: $requestId) {
    token {
      accessToken
      refreshToken
      expiresAt
    }
    error {
      __typename
    }
  }
}
"""

Connector = Callable[..., AsyncContextManager[Any]]


class TokenWaitChannel:
    """Wait for the token issued for one authorization request.

    Args:
        endpoint: ``ws://`` or ``wss://`` URL of the subscription endpoint.
        open_timeout: Seconds allowed for the WebSocket handshake.
        connect: Factory returning an async context manager that yields a
            connected socket with ``send``/``recv``. Defaults to
            :func:`websockets.asyncio.client.connect`.
    """

    def __init__(
        self,
        endpoint: str,
        open_timeout: float = 30.0,
        connect: Optional[Connector] = None,
    ) -> None:
        self._endpoint = endpoint
        self._open_timeout = open_timeout
        self._connect = connect or websocket_connect

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def wait_for_token(self, request_id: str) -> Credential:
        """Block until the token for *request_id* is issued.

        Cancel the calling task (or wrap the call in
        :func:`asyncio.wait_for`) to stop waiting; the connection is closed
        before the cancellation propagates.

        Returns:
            The issued credential.

        Raises:
            GatewayError: If the WebSocket connection cannot be opened.
            ProtocolError: On unexpected or malformed subscription traffic,
                or if the connection drops before a token arrives.
            IssuanceFailedError: If Caido reports that no token was issued.
        """
        connected = False
        try:
            async with self._connect(
                self._endpoint,
                origin=Origin(origin_for(self._endpoint)),
                subprotocols=[Subprotocol(SUBPROTOCOL)],
                open_timeout=self._open_timeout,
            ) as websocket:
                connected = True
                return await self._subscribe(websocket, request_id)
        except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
            if not connected:
                raise GatewayError(
                    f"Failed to connect to {self._endpoint}: {exc}", kind="network"
                ) from exc
            raise ProtocolError(f"Subscription connection lost: {exc}") from exc

    async def _subscribe(self, websocket: Any, request_id: str) -> Credential:
        await _send(websocket, {"type": "connection_init"})

        first = parse_message(await websocket.recv())
        if not isinstance(first, ConnectionAckMessage):
            raise ProtocolError(f"Expected connection_ack, got {_describe(first)}")

        await _send(
            websocket,
            {
                "id": SUBSCRIPTION_ID,
                "type": "subscribe",
                "payload": {
                    "query": CREATED_AUTHENTICATION_TOKEN,
                    "variables": {"requestId": request_id},
                },
            },
        )
        logger.debug("Subscribed to token issuance for request %s", request_id)

        while True:
            # Yield once per message so a pending cancellation is seen even
            # when frames are already buffered.
            await asyncio.sleep(0)
            message = parse_message(await websocket.recv())

            if isinstance(message, PingMessage):
                await _send(websocket, {"type": "pong"})
                continue
            if getattr(message, "id", SUBSCRIPTION_ID) != SUBSCRIPTION_ID:
                logger.debug("Ignoring message for subscription %s", message.id)  # type: ignore[union-attr]
                continue

            if isinstance(message, NextMessage):
                credential = _credential_from_next(message)
                if credential is not None:
                    return credential
            elif isinstance(message, ErrorMessage):
                raise ProtocolError(f"Subscription error: {message.payload}")
            elif isinstance(message, CompleteMessage):
                raise ProtocolError("Subscription completed without token")
            else:
                logger.debug("Ignoring %s", _describe(message))


async def _send(websocket: Any, message: dict[str, Any]) -> None:
    await websocket.send(json.dumps(message))


def _describe(message: Any) -> str:
    msg_type = getattr(message, "type", None)
    if msg_type is not None:
        return f"'{msg_type}'"
    return f"unrecognized message {getattr(message, 'raw', message)!r}"


def _credential_from_next(message: NextMessage) -> Optional[Credential]:
    """Resolve a ``next`` payload into a credential.

    Returns ``None`` for payloads that carry no issuance result.
    """
    payload = message.payload
    if payload.get("errors"):
        raise ProtocolError(f"Subscription returned errors: {payload['errors']}")

    data = payload.get("data")
    created = data.get("createdAuthenticationToken") if isinstance(data, dict) else None
    if created is None:
        logger.debug("Ignoring 'next' payload without an issuance result")
        return None

    try:
        result = IssuanceResult.model_validate(created)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed issuance result: {exc}") from exc

    if result.error is not None:
        raise IssuanceFailedError(result.error.typename)
    if result.token is None:
        raise ProtocolError("Issuance result carried neither a token nor an error")
    return result.token.to_credential()
