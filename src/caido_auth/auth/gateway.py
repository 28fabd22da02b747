"""Remote auth gateway -- the GraphQL calls that start and renew a login.

:class:`AuthGateway` is the narrow interface the
:class:`~caido_auth.auth.authenticator.Authenticator` depends on;
:class:`GraphQLAuthGateway` implements it over :class:`httpx.AsyncClient`
against the instance's ``/graphql`` endpoint.

Failures are raised as :class:`~caido_auth.exceptions.GatewayError` with a
``kind``:

* ``"network"`` -- transport errors, timeouts and HTTP 5xx. These are
  retried with exponential backoff before being raised.
* ``"rejected"`` -- HTTP 4xx, GraphQL ``errors``, a typed ``error`` member
  in the result, or a response that does not match the schema. Never
  retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from caido_auth.config import graphql_endpoint, websocket_endpoint
from caido_auth.exceptions import GatewayError
from caido_auth.models import (
    AuthorizationRequest,
    Credential,
    IssuanceResult,
    TypedError,
)

logger = logging.getLogger(__name__)

START_AUTHENTICATION_FLOW = """
mutation StartAuthenticationFlow {
  startAuthenticationFlow {
    request {
      id
      userCode
      verificationUrl
      expiresAt
    }
    error {
      __typename
    }
  }
}
"""

REFRESH_AUTHENTICATION_TOKEN = """
mutation RefreshAuthenticationToken($refreshToken: Token!) {
  refreshAuthenticationToken(refreshToken: $refreshToken) {
    token {
      accessToken
      refreshToken
      expiresAt
    }
    error {
      __typename
    }
  }
}
"""


class AuthGateway(Protocol):
    """Interface of the remote calls needed by the authenticator."""

    @property
    def websocket_endpoint(self) -> str:
        """URL of the GraphQL subscription endpoint."""
        ...

    async def start_device_flow(self) -> AuthorizationRequest:
        """Begin a device authorization request."""
        ...

    async def refresh(self, refresh_token: str) -> Credential:
        """Exchange *refresh_token* for a new credential."""
        ...


class GraphQLAuthGateway:
    """GraphQL implementation of :class:`AuthGateway`.

    Can be used as an async context manager; a client passed in via
    *client* is never closed by the gateway.

    Args:
        base_url: Base URL of the Caido instance (``http://host:port``).
        timeout: Per-request timeout in seconds.
        max_retries: Extra attempts for ``network`` failures.
        backoff: Delay before the first retry; doubles on each attempt.
        client: Optional pre-configured :class:`httpx.AsyncClient`.

    Example::

        async with GraphQLAuthGateway("http://127.0.0.1:8080") as gateway:
            request = await gateway.start_device_flow()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        backoff: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._endpoint = graphql_endpoint(self._base_url)
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff = backoff
        self._client = client
        self._owns_client = client is None

    @property
    def websocket_endpoint(self) -> str:
        return websocket_endpoint(self._base_url)

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> GraphQLAuthGateway:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if the gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def start_device_flow(self) -> AuthorizationRequest:
        """Start the device authorization flow.

        Returns:
            The pending :class:`~caido_auth.models.AuthorizationRequest`.

        Raises:
            GatewayError: If the request fails or the instance refuses it.
        """
        result = await self._execute(
            START_AUTHENTICATION_FLOW, {}, "startAuthenticationFlow"
        )
        _raise_for_typed_error(result, "Authentication error")

        request = result.get("request")
        if not isinstance(request, dict):
            raise GatewayError(
                "startAuthenticationFlow returned no request", kind="rejected"
            )
        try:
            return AuthorizationRequest.model_validate(request)
        except ValidationError as exc:
            raise GatewayError(
                f"Malformed authentication request: {exc}", kind="rejected"
            ) from exc

    async def refresh(self, refresh_token: str) -> Credential:
        """Exchange a refresh token for a new credential.

        Args:
            refresh_token: The refresh token from the stored credential.

        Returns:
            The renewed :class:`~caido_auth.models.Credential`.

        Raises:
            GatewayError: ``network`` if Caido could not be reached,
                ``rejected`` if the refresh token was refused.
        """
        result = await self._execute(
            REFRESH_AUTHENTICATION_TOKEN,
            {"refreshToken": refresh_token},
            "refreshAuthenticationToken",
        )
        try:
            issuance = IssuanceResult.model_validate(result)
        except ValidationError as exc:
            raise GatewayError(f"Malformed refresh response: {exc}", kind="rejected") from exc

        if issuance.error is not None:
            raise GatewayError(f"Refresh error: {issuance.error.typename}", kind="rejected")
        if issuance.token is None:
            raise GatewayError("Refresh response contained no token", kind="rejected")
        return issuance.token.to_credential()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _execute(
        self, query: str, variables: dict[str, Any], field: str
    ) -> dict[str, Any]:
        """POST a GraphQL operation and return ``data[field]``.

        Retries ``network`` failures up to ``max_retries`` times. The delay
        doubles each attempt: 1 s, 2 s, 4 s, ...
        """
        client = self._get_client()
        last_error: Optional[GatewayError] = None

        for attempt in range(self._max_retries + 1):
            if attempt:
                delay = self._backoff * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying %s in %.1fs (attempt %d/%d): %s",
                    field, delay, attempt + 1, self._max_retries + 1, last_error,
                )
                await asyncio.sleep(delay)

            try:
                response = await client.post(
                    self._endpoint,
                    json={"query": query, "variables": variables},
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                last_error = GatewayError(f"{field} request failed: {exc}", kind="network")
                continue

            if response.status_code >= 500:
                last_error = GatewayError(
                    f"{field} failed with status {response.status_code}", kind="network"
                )
                continue
            if response.status_code >= 400:
                raise GatewayError(
                    f"{field} failed with status {response.status_code}: {response.text}",
                    kind="rejected",
                )
            return _extract_field(response, field)

        assert last_error is not None
        raise last_error


def _extract_field(response: httpx.Response, field: str) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise GatewayError(f"{field} returned a non-JSON response", kind="rejected") from exc

    errors = body.get("errors") if isinstance(body, dict) else None
    if errors:
        messages = "; ".join(
            str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
        )
        raise GatewayError(f"{field} failed: {messages}", kind="rejected")

    data = body.get("data") if isinstance(body, dict) else None
    result = data.get(field) if isinstance(data, dict) else None
    if not isinstance(result, dict):
        raise GatewayError(f"Response is missing '{field}'", kind="rejected")
    return result


def _raise_for_typed_error(result: dict[str, Any], prefix: str) -> None:
    error = result.get("error")
    if not error:
        return
    try:
        typename = TypedError.model_validate(error).typename
    except ValidationError:
        typename = str(error)
    raise GatewayError(f"{prefix}: {typename}", kind="rejected")
