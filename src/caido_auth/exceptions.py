"""Exception hierarchy for caido-auth.

All exceptions inherit from :class:`CaidoAuthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`caido_auth.exit_codes`.
The top-level error handler in :func:`caido_auth.app.main` catches
``CaidoAuthError`` and exits with the appropriate code.

Subclass hierarchy::

    CaidoAuthError (exit 1)
    +-- ConfigError            (exit 1)
    +-- StorageError           (exit 1)
    |   +-- StorageReadError
    |   +-- StorageWriteError
    +-- GatewayError           (exit 6, kind = network | rejected)
    +-- ProtocolError          (exit 3)
    +-- IssuanceFailedError    (exit 3)
    +-- FlowStartError         (exit 3)
    +-- AuthenticationError    (exit 3)
    |   +-- AuthCancelledError (exit 130)
    +-- NotAuthenticatedError  (exit 3)
"""

from __future__ import annotations

from typing import Literal

from caido_auth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
)

LOGIN_HINT = "Run 'caido-auth login' to authenticate again."

GatewayErrorKind = Literal["network", "rejected"]


class CaidoAuthError(Exception):
    """Base exception for all caido-auth errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CaidoAuthError):
    """Raised for configuration problems (missing URL, invalid config file)."""

    exit_code = EXIT_GENERIC_FAILURE


class StorageError(CaidoAuthError):
    """Base class for credential store I/O failures."""

    exit_code = EXIT_GENERIC_FAILURE


class StorageReadError(StorageError):
    """Raised when the token file exists but cannot be read."""


class StorageWriteError(StorageError):
    """Raised when the token file or its directory cannot be written."""


class GatewayError(CaidoAuthError):
    """Raised when a call to the Caido GraphQL API fails.

    The :attr:`kind` tells callers how to react: ``"network"`` failures
    are worth retrying, ``"rejected"`` means the instance refused the
    request (for example an invalid refresh token) and only a new login
    helps.

    Args:
        message: Human-readable error description.
        kind: Failure classification.
    """

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(self, message: str, kind: GatewayErrorKind = "network"):
        super().__init__(message)
        self.kind: GatewayErrorKind = kind
        if kind == "rejected":
            self.exit_code = EXIT_AUTH_FAILURE

    @property
    def retriable(self) -> bool:
        """Whether repeating the same call may succeed."""
        return self.kind == "network"


class ProtocolError(CaidoAuthError):
    """Raised on malformed or unexpected subscription traffic."""

    exit_code = EXIT_AUTH_FAILURE


class IssuanceFailedError(CaidoAuthError):
    """Raised when Caido reports that the token could not be issued.

    Typically the user denied the request in the browser or the
    authorization request expired before it was approved.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, reason: str):
        super().__init__(f"Authentication failed: {reason}")
        self.reason = reason


class FlowStartError(CaidoAuthError):
    """Raised when the device authorization flow cannot be started."""

    exit_code = EXIT_AUTH_FAILURE


class AuthenticationError(CaidoAuthError):
    """Raised when waiting for, or persisting, the issued token fails."""

    exit_code = EXIT_AUTH_FAILURE


class AuthCancelledError(AuthenticationError):
    """Raised when authentication runs past the caller's deadline."""

    exit_code = EXIT_CANCELLED


class NotAuthenticatedError(CaidoAuthError):
    """Raised by the non-interactive accessor when no usable token exists."""

    exit_code = EXIT_AUTH_FAILURE
