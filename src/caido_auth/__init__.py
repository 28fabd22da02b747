"""caido-auth -- OAuth device-flow login and token lifecycle for Caido.

Obtains an access token for a Caido instance without a local redirect
listener: the user approves a short code in a browser while the CLI waits
on a GraphQL subscription for the issued token. Tokens are persisted with
owner-only permissions and renewed transparently via the refresh token.

Typical workflow::

    caido-auth --url http://127.0.0.1:8080 login   # interactive device flow
    caido-auth token                                # print a valid bearer token

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for credentials and subscription messages.
    config: XDG-aware settings resolution and endpoint derivation.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    auth: Credential store, gateway, token-wait channel, authenticator.
"""

__version__ = "1.0.0"
