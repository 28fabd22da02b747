"""Typer application and CLI entry point for caido-auth.

This module wires together the top-level Typer application and registers
the built-in commands (``login``, ``token``, ``status``, ``logout``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. :class:`~caido_auth.exceptions.CaidoAuthError` is
reported on stderr and mapped to its exit code; any other exception is
written to a crash log under the config directory.

See Also:
    :mod:`caido_auth.config`: Settings resolution.
    :mod:`caido_auth.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from caido_auth import __version__
from caido_auth.commands.auth import (
    login_command,
    logout_command,
    status_command,
    token_command,
)
from caido_auth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="caido-auth",
    help="Authenticate with a Caido instance using the OAuth device flow.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login_command)
app.command("token")(token_command)
app.command("status")(status_command)
app.command("logout")(logout_command)

_log_handler: Optional[logging.Handler] = None


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"caido-auth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    url: Optional[str] = typer.Option(
        None, "--url", "-u", help="Caido instance URL (or set CAIDO_URL env var)."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every command.

    Initialises the global :class:`~caido_auth.output.OutputManager` and
    the package logger from CLI flags, and stores the ``--url`` override in
    ``ctx.obj`` for the commands.
    """
    from caido_auth.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.JSON if json_output else OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))
    _configure_logging(verbose, no_color)

    ctx.ensure_object(dict)
    ctx.obj["url"] = url


def _configure_logging(verbose: bool, no_color: bool) -> None:
    """Route ``caido_auth`` log records to stderr.

    The console is resolved against ``sys.stderr`` at write time, so the
    handler follows stream redirection. Re-running the callback replaces
    the handler instead of stacking another.
    """
    global _log_handler
    package_logger = logging.getLogger("caido_auth")
    if _log_handler is not None:
        package_logger.removeHandler(_log_handler)
    _log_handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_time=False,
        show_path=False,
    )
    package_logger.addHandler(_log_handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from caido_auth.config import ensure_private_dir, get_config_dir

    logs_dir = get_config_dir() / "logs"
    ensure_private_dir(logs_dir)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``caido-auth`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from caido_auth.exceptions import CaidoAuthError
        from caido_auth.output import error

        if isinstance(exc, CaidoAuthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)


if __name__ == "__main__":
    main()
