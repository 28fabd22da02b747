"""End-to-end tests for the caido-auth command line.

Commands run through the real Typer app with an isolated config directory.
Remote calls are replaced at the gateway and channel boundary so that the
authenticator, credential store and output layer run unmodified.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from typer.testing import CliRunner

from caido_auth import __version__
from caido_auth.app import app, main
from caido_auth.auth.credential_store import CredentialStore
from caido_auth.auth.gateway import GraphQLAuthGateway
from caido_auth.auth.token_wait import TokenWaitChannel
from caido_auth.exceptions import ConfigError, GatewayError
from caido_auth.models import AuthorizationRequest, Credential

URL = "http://127.0.0.1:8080"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def token_store(isolated_config: Path) -> CredentialStore:
    return CredentialStore(path=isolated_config / "token.json")


@pytest.fixture
def fake_device_flow(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Replace the remote half of the device flow; returns awaited request ids."""
    waited: list[str] = []

    async def start_device_flow(self: GraphQLAuthGateway) -> AuthorizationRequest:
        return AuthorizationRequest(
            id="req-cli",
            user_code="CLI-CODE",
            verification_url="https://auth.caido.io/device",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
        )

    async def wait_for_token(self: TokenWaitChannel, request_id: str) -> Credential:
        waited.append(request_id)
        return Credential(
            access_token="cli-access-token",
            refresh_token="cli-refresh-token",
            expires_at=datetime.now(timezone.utc) + timedelta(days=7),
        )

    monkeypatch.setattr(GraphQLAuthGateway, "start_device_flow", start_device_flow)
    monkeypatch.setattr(TokenWaitChannel, "wait_for_token", wait_for_token)
    return waited


class TestGlobalOptions:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"caido-auth {__version__}" in result.output

    def test_no_args_shows_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, [])
        assert "login" in result.output
        assert "token" in result.output


class TestLogin:
    def test_requires_url(self, runner: CliRunner, isolated_config: Path) -> None:
        result = runner.invoke(app, ["login"])
        assert result.exit_code == 1
        assert "Caido URL is required" in result.output

    def test_device_flow(
        self,
        runner: CliRunner,
        isolated_config: Path,
        token_store: CredentialStore,
        fake_device_flow: list[str],
    ) -> None:
        result = runner.invoke(app, ["--no-color", "--url", URL, "login", "--no-browser"])

        assert result.exit_code == 0, result.output
        assert "=== Caido Authentication Required ===" in result.output
        assert "https://auth.caido.io/device" in result.output
        assert "And enter this code: CLI-CODE" in result.output
        assert "You are logged in to Caido." in result.output
        assert fake_device_flow == ["req-cli"]

        stored = token_store.load()
        assert stored is not None
        assert stored.access_token == "cli-access-token"

    def test_quiet_still_shows_code(
        self, runner: CliRunner, isolated_config: Path, fake_device_flow: list[str]
    ) -> None:
        result = runner.invoke(app, ["--no-color", "-q", "--url", URL, "login", "--no-browser"])

        assert result.exit_code == 0, result.output
        assert "CLI-CODE" in result.output
        assert "You are logged in to Caido." not in result.output

    def test_url_from_environment(
        self,
        runner: CliRunner,
        isolated_config: Path,
        monkeypatch: pytest.MonkeyPatch,
        fake_device_flow: list[str],
    ) -> None:
        monkeypatch.setenv("CAIDO_URL", URL)
        result = runner.invoke(app, ["--no-color", "login", "--no-browser"])
        assert result.exit_code == 0, result.output

    def test_reuses_fresh_token(
        self,
        runner: CliRunner,
        token_store: CredentialStore,
        make_credential: Callable[..., Credential],
        fake_device_flow: list[str],
    ) -> None:
        token_store.save(make_credential(access_token="already-here"))

        result = runner.invoke(app, ["--no-color", "--url", URL, "login"])

        assert result.exit_code == 0, result.output
        assert "Authentication Required" not in result.output
        assert fake_device_flow == []

    def test_timeout_exits_130(
        self, runner: CliRunner, isolated_config: Path, fake_device_flow: list[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def never(self: TokenWaitChannel, request_id: str) -> Credential:
            await asyncio.Event().wait()
            raise AssertionError("unreachable")

        monkeypatch.setattr(TokenWaitChannel, "wait_for_token", never)

        result = runner.invoke(
            app, ["--no-color", "--url", URL, "login", "--no-browser", "--timeout", "0.05"]
        )

        assert result.exit_code == 130
        assert "timed out" in result.output

    def test_flow_start_failure_exits_3(
        self, runner: CliRunner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def refuse(self: GraphQLAuthGateway) -> AuthorizationRequest:
            raise GatewayError("startAuthenticationFlow failed with status 403", kind="rejected")

        monkeypatch.setattr(GraphQLAuthGateway, "start_device_flow", refuse)

        result = runner.invoke(app, ["--no-color", "--url", URL, "login", "--no-browser"])

        assert result.exit_code == 3
        assert "Failed to start authentication flow" in result.output


class TestToken:
    def test_prints_stored_token(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential(access_token="abc123"))

        result = runner.invoke(app, ["--url", URL, "token"])

        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "abc123"

    def test_header(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential(access_token="abc123"))

        result = runner.invoke(app, ["--url", URL, "token", "--header"])

        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "Authorization: Bearer abc123"

    def test_not_logged_in(self, runner: CliRunner, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--no-color", "--url", URL, "token"])

        assert result.exit_code == 3
        assert "No authentication token found" in result.output

    def test_refreshes_expired_token(
        self,
        runner: CliRunner,
        token_store: CredentialStore,
        make_credential: Callable[..., Credential],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        token_store.save(make_credential(access_token="stale", expires_in=timedelta(minutes=-5)))

        async def refresh(self: GraphQLAuthGateway, refresh_token: str) -> Credential:
            assert refresh_token == "refresh-1"
            return Credential(
                access_token="renewed",
                refresh_token="refresh-2",
                expires_at=datetime.now(timezone.utc) + timedelta(days=7),
            )

        monkeypatch.setattr(GraphQLAuthGateway, "refresh", refresh)

        result = runner.invoke(app, ["--url", URL, "token"])

        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "renewed"
        stored = token_store.load()
        assert stored is not None
        assert stored.refresh_token == "refresh-2"

    def test_refresh_failure_never_starts_login(
        self,
        runner: CliRunner,
        token_store: CredentialStore,
        make_credential: Callable[..., Credential],
        monkeypatch: pytest.MonkeyPatch,
        fake_device_flow: list[str],
    ) -> None:
        token_store.save(make_credential(expires_in=timedelta(minutes=-5)))

        async def refresh(self: GraphQLAuthGateway, refresh_token: str) -> Credential:
            raise GatewayError("Refresh error: InvalidTokenUserError", kind="rejected")

        monkeypatch.setattr(GraphQLAuthGateway, "refresh", refresh)

        result = runner.invoke(app, ["--no-color", "--url", URL, "token"])

        assert result.exit_code == 3
        assert "refresh failed" in result.output
        assert fake_device_flow == []


class TestStatus:
    def test_no_token(self, runner: CliRunner, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--no-color", "status"])
        assert result.exit_code == 0
        assert "No stored token." in result.output

    def test_json(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential(access_token="abcdefghijklmnop", refresh_token=""))

        result = runner.invoke(app, ["--json", "status"])

        assert result.exit_code == 0, result.output
        rows = {row["Field"]: row["Value"] for row in json.loads(result.stdout)}
        assert rows["Access Token"] == "abcdefgh..."
        assert rows["Refresh Token"] == "no"
        assert rows["Valid"] == "True"
        assert rows["Token File"] == str(token_store.path)

    def test_expired_token_is_not_valid(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential(expires_in=timedelta(minutes=1)))

        result = runner.invoke(app, ["--json", "status"])

        rows = {row["Field"]: row["Value"] for row in json.loads(result.stdout)}
        assert rows["Valid"] == "False"


class TestLogout:
    def test_force(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential())

        result = runner.invoke(app, ["--no-color", "logout", "--force"])

        assert result.exit_code == 0, result.output
        assert "Stored token removed." in result.output
        assert token_store.load() is None

    def test_confirmation_declined(
        self, runner: CliRunner, token_store: CredentialStore, make_credential: Callable[..., Credential]
    ) -> None:
        token_store.save(make_credential())

        result = runner.invoke(app, ["--no-color", "logout"], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled." in result.output
        assert token_store.load() is not None

    def test_nothing_stored(self, runner: CliRunner, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--no-color", "logout", "--force"])
        assert result.exit_code == 0
        assert "No stored token." in result.output

    def test_corrupt_record_is_removed(self, runner: CliRunner, token_store: CredentialStore) -> None:
        token_store.path.parent.mkdir(parents=True, exist_ok=True)
        token_store.path.write_text("not valid json {{{", encoding="utf-8")

        result = runner.invoke(app, ["--no-color", "logout", "--force"])

        assert result.exit_code == 0, result.output
        assert "Stored token removed." in result.output
        assert not token_store.path.exists()


class TestMain:
    def test_caido_auth_error_maps_to_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        def broken() -> None:
            raise ConfigError("bad config")

        monkeypatch.setattr("caido_auth.app.app", broken)

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "bad config" in capsys.readouterr().err

    def test_keyboard_interrupt_exits_130(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def interrupted() -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr("caido_auth.app.app", interrupted)

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 130

    def test_unexpected_error_writes_crash_log(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        def crash() -> None:
            raise RuntimeError("kaboom")

        monkeypatch.setattr("caido_auth.app.app", crash)

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "Unexpected error" in capsys.readouterr().err
        logs = list((isolated_config / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "kaboom" in logs[0].read_text()
