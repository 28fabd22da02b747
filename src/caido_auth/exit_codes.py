"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~caido_auth.exceptions.CaidoAuthError` subclass.
Wrapper scripts can inspect the exit code to tell an expired login apart
from an unreachable instance without parsing stderr.

Example::

    $ caido-auth token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no usable token, run ``caido-auth login``
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (configuration, local storage)."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no usable token is available."""

EXIT_CONNECTION_ERROR = 6
"""The Caido instance could not be reached (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The operation was cancelled by the user or ran past its deadline."""
