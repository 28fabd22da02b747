"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for caido-auth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.caido-auth/`` on macOS and Windows. See :func:`get_config_dir`.
  The token record lives at :func:`get_token_path`.
* **Settings** -- a single :class:`~caido_auth.models.Settings` JSON file
  (``config.json``) with the instance URL and timeouts.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables and the settings file into the effective settings.
* **Endpoint derivation** -- :func:`graphql_endpoint`,
  :func:`websocket_endpoint` and :func:`origin_for` turn the instance base
  URL into the GraphQL and subscription endpoints.

Nothing here creates directories on read; they are created (owner-only)
when something is written.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import ValidationError

from caido_auth.exceptions import ConfigError
from caido_auth.models import Settings

_APP_NAME = "caido-auth"
_CONFIG_FILENAME = "config.json"
_TOKEN_FILENAME = "token.json"

ENV_URL = "CAIDO_URL"
ENV_TIMEOUT = "CAIDO_AUTH_TIMEOUT"

DIR_MODE = 0o700
FILE_MODE = 0o600


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the per-user configuration directory.

    On Linux/BSD: ``$XDG_CONFIG_HOME/caido-auth/`` (default ``~/.config/caido-auth/``).
    On macOS/Windows: ``~/.caido-auth/``.

    The directory is not created here.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    return Path.home() / f".{_APP_NAME}"


def get_token_path() -> Path:
    """Return the path of the persisted token record."""
    return get_config_dir() / _TOKEN_FILENAME


def ensure_private_dir(path: Path) -> None:
    """Create *path* (and parents) and restrict it to the owner.

    ``mkdir``'s mode is filtered by the umask and ignored for existing
    directories, so the mode is applied explicitly afterwards.
    """
    path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    os.chmod(path, DIR_MODE)


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = FILE_MODE) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. Its permissions are
    set to *mode* before any content is written. On any failure the temp
    file is removed and the original exception re-raised.
    """
    ensure_private_dir(path.parent)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings file ---


def _settings_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load settings from the config directory.

    Returns:
        The deserialised :class:`~caido_auth.models.Settings`, or the
        defaults when the file does not exist.

    Raises:
        ConfigError: If the file exists but is not valid JSON or fails
            validation.
    """
    path = _settings_path()
    if not path.is_file():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read config at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist settings atomically to the config directory."""
    data = settings.model_dump(mode="json", exclude_defaults=True)
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_settings(
    cli_url: Optional[str] = None,
    cli_timeout: Optional[float] = None,
) -> Settings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_url``, ``cli_timeout``)
        2. Environment variables (``CAIDO_URL``, ``CAIDO_AUTH_TIMEOUT``)
        3. Settings file (``<config_dir>/config.json``)
        4. Defaults

    Raises:
        ConfigError: If the settings file or an environment override is
            invalid.
    """
    settings = load_settings()
    overrides: dict[str, Any] = {}

    env_url = os.environ.get(ENV_URL)
    if env_url:
        overrides["url"] = env_url
    env_timeout = os.environ.get(ENV_TIMEOUT)
    if env_timeout:
        overrides["login_timeout"] = env_timeout

    if cli_url is not None:
        overrides["url"] = cli_url
    if cli_timeout is not None:
        overrides["login_timeout"] = cli_timeout

    if not overrides:
        return settings
    try:
        return Settings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigError(f"Invalid setting override: {exc}") from exc


def require_url(settings: Settings) -> str:
    """Return the configured instance URL without a trailing slash.

    Raises:
        ConfigError: If no URL is configured or it is not an http(s) URL.
    """
    if not settings.url:
        raise ConfigError(
            f"Caido URL is required. Set --url flag or {ENV_URL} environment variable."
        )
    url = settings.url.rstrip("/")
    if urlsplit(url).scheme not in ("http", "https"):
        raise ConfigError(f"Caido URL must start with http:// or https://, got '{settings.url}'")
    return url


# --- Endpoint derivation ---


def graphql_endpoint(base_url: str) -> str:
    """Return the GraphQL HTTP endpoint for an instance base URL."""
    return base_url.rstrip("/") + "/graphql"


def websocket_endpoint(base_url: str) -> str:
    """Return the GraphQL subscription endpoint for an instance base URL.

    ``http`` maps to ``ws`` and ``https`` to ``wss``; the path is
    ``/ws/graphql`` below the base path.
    """
    parts = urlsplit(base_url.rstrip("/"))
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, parts.path + "/ws/graphql", "", ""))


def origin_for(ws_url: str) -> str:
    """Return the ``Origin`` header value matching a WebSocket URL."""
    parts = urlsplit(ws_url)
    scheme = "https" if parts.scheme == "wss" else "http"
    return f"{scheme}://{parts.netloc}"
