"""Built-in CLI sub-commands for caido-auth.

:mod:`~caido_auth.commands.auth` provides plain callback functions that
are registered directly on the root app in :mod:`caido_auth.app`:

* ``login`` -- interactive device-flow authentication.
* ``token`` -- print a valid bearer token (non-interactive).
* ``status`` -- inspect the stored token.
* ``logout`` -- remove the stored token.
"""
