"""Fixtures for the auth subsystem tests.

The test doubles themselves live in :mod:`fakes` so that test modules can
import the frame builders directly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from caido_auth.auth.credential_store import CredentialStore
from caido_auth.auth.token_wait import TokenWaitChannel
from caido_auth.models import AuthorizationRequest
from fakes import WS_ENDPOINT, FakeConnector, FakeWebSocket


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    """A CredentialStore writing into a disposable directory."""
    return CredentialStore(path=tmp_path / "caido-auth" / "token.json")


@pytest.fixture
def auth_request() -> AuthorizationRequest:
    return AuthorizationRequest(
        id="req-42",
        user_code="ABCD-1234",
        verification_url="https://auth.caido.io/device",
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
    )


@pytest.fixture
def make_channel() -> Callable[..., tuple[TokenWaitChannel, FakeConnector]]:
    """Build a real TokenWaitChannel over a scripted socket."""

    def _make(
        frames: list[Any],
        endless: Optional[dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> tuple[TokenWaitChannel, FakeConnector]:
        connector = FakeConnector(FakeWebSocket(frames, endless=endless), error=error)
        return TokenWaitChannel(WS_ENDPOINT, connect=connector), connector

    return _make
