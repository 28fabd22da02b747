"""Test doubles for the auth subsystem.

The WebSocket is replaced by a scripted :class:`FakeWebSocket` handed out
by a :class:`FakeConnector`, which stands in for
``websockets.asyncio.client.connect``. The gateway and channel fakes record
every call so tests can assert on the authenticator's decisions.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from caido_auth.models import AuthorizationRequest, Credential

WS_ENDPOINT = "ws://caido.test/ws/graphql"


def ack() -> dict[str, Any]:
    return {"type": "connection_ack"}


def token_next(
    access_token: str = "issued-access",
    refresh_token: Optional[str] = "issued-refresh",
    expires_at: Any = "2030-01-01T00:00:00Z",
    sub_id: str = "1",
) -> dict[str, Any]:
    return {
        "id": sub_id,
        "type": "next",
        "payload": {
            "data": {
                "createdAuthenticationToken": {
                    "token": {
                        "accessToken": access_token,
                        "refreshToken": refresh_token,
                        "expiresAt": expires_at,
                    },
                    "error": None,
                }
            }
        },
    }


def error_next(typename: str = "AuthenticationUserError") -> dict[str, Any]:
    return {
        "id": "1",
        "type": "next",
        "payload": {
            "data": {
                "createdAuthenticationToken": {
                    "token": None,
                    "error": {"__typename": typename},
                }
            }
        },
    }


class FakeWebSocket:
    """Scripted socket: ``recv`` replays *frames*, then blocks forever.

    Frames may be dicts (sent as JSON), raw strings, or exceptions to raise.
    With *endless* set, ``recv`` returns that frame forever once the script
    is exhausted, without ever suspending.
    """

    def __init__(self, frames: list[Any], endless: Optional[dict[str, Any]] = None) -> None:
        self._frames = list(frames)
        self._endless = endless
        self.sent: list[dict[str, Any]] = []
        self.close_count = 0

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def recv(self) -> str:
        if not self._frames:
            if self._endless is not None:
                return json.dumps(self._endless)
            await asyncio.Event().wait()
        frame = self._frames.pop(0)
        if isinstance(frame, BaseException):
            raise frame
        if isinstance(frame, (str, bytes)):
            return frame  # type: ignore[return-value]
        return json.dumps(frame)


class FakeConnector:
    """Callable standing in for ``websockets.asyncio.client.connect``."""

    def __init__(self, websocket: FakeWebSocket, error: Optional[BaseException] = None) -> None:
        self.websocket = websocket
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, uri: str, **kwargs: Any) -> FakeConnector:
        self.calls.append((uri, kwargs))
        return self

    async def __aenter__(self) -> FakeWebSocket:
        if self.error is not None:
            raise self.error
        return self.websocket

    async def __aexit__(self, *exc_info: object) -> None:
        self.websocket.close_count += 1


class FakeGateway:
    """Records calls to the two gateway operations."""

    websocket_endpoint = WS_ENDPOINT

    def __init__(
        self,
        request: Optional[AuthorizationRequest] = None,
        refreshed: Optional[Credential] = None,
        refresh_error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
    ) -> None:
        self.request = request
        self.refreshed = refreshed
        self.refresh_error = refresh_error
        self.start_error = start_error
        self.start_calls = 0
        self.refresh_calls: list[str] = []
        self.closed = False

    async def start_device_flow(self) -> AuthorizationRequest:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        assert self.request is not None
        return self.request

    async def refresh(self, refresh_token: str) -> Credential:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        assert self.refreshed is not None
        return self.refreshed

    async def aclose(self) -> None:
        self.closed = True


class FakeChannel:
    """Token-wait channel returning a fixed credential or raising."""

    def __init__(
        self,
        credential: Optional[Credential] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.credential = credential
        self.error = error
        self.delay = delay
        self.request_ids: list[str] = []

    async def wait_for_token(self, request_id: str) -> Credential:
        self.request_ids.append(request_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        assert self.credential is not None
        return self.credential
