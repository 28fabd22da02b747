"""Shared test fixtures for caido-auth.

Provides isolated config environments, credential builders and output
state management. These fixtures are automatically discovered by pytest
and available to all test modules without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator

import pytest

from caido_auth.models import Credential
from caido_auth.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Forces XDG layout with ``XDG_CONFIG_HOME`` under *tmp_path*, clears the
    ``CAIDO_*`` environment variables and changes the working directory.

    Returns:
        The config directory used by caido-auth (``<tmp>/config/caido-auth``).
    """
    monkeypatch.setattr("caido_auth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    for var in ["CAIDO_URL", "CAIDO_AUTH_TIMEOUT"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path / "config" / "caido-auth"


# ---------------------------------------------------------------------------
# Credential builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_credential() -> Callable[..., Credential]:
    """Factory for credentials expiring relative to now."""

    def _make(
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        expires_in: timedelta = timedelta(hours=1),
    ) -> Credential:
        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(timezone.utc) + expires_in,
        )

    return _make
