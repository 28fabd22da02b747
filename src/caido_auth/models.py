"""Canonical Pydantic models shared across all caido-auth modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Persisted state** -- :class:`Credential` is the only record written to
disk (``token.json``); :class:`Settings` is the optional user config.

**Gateway results** -- :class:`AuthorizationRequest`, :class:`IssuedToken`
and :class:`IssuanceResult` mirror the GraphQL payloads returned by the
Caido instance.

**Subscription wire messages** -- the ``graphql-transport-ws`` envelope is
modelled as a closed set of message classes (:class:`ConnectionAckMessage`,
:class:`NextMessage`, :class:`ErrorMessage`, :class:`CompleteMessage`,
:class:`PingMessage`) plus :class:`UnrecognizedMessage` for anything else.
:func:`parse_message` turns a raw frame into one of them.

Field names are snake_case in Python and camelCase on the wire; every model
that crosses the wire declares aliases and accepts both spellings.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from caido_auth.exceptions import ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(days=7)
"""Expiry assumed for an issued token whose ``expiresAt`` cannot be parsed."""

_DATETIME_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 date-time string into an aware :class:`datetime`.

    Naive values are interpreted as UTC.

    Returns:
        The parsed timestamp, or ``None`` if *value* is not a string or is
        not a valid date-time.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        return _ensure_utc(_DATETIME_ADAPTER.validate_python(value))
    except ValidationError:
        return None


# --- Persisted state ---


class Credential(BaseModel):
    """The persisted credential set for the Caido instance.

    Serialised to JSON by :class:`~caido_auth.auth.credential_store.CredentialStore`
    with the wire names ``accessToken``, ``refreshToken`` and ``expiresAt``.

    Attributes:
        access_token: Opaque bearer value sent as ``Authorization: Bearer``.
            Never empty.
        refresh_token: Opaque value exchanged for a new credential. An empty
            string means the credential cannot be renewed.
        expires_at: Absolute, timezone-aware expiry of ``access_token``.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(default="", alias="refreshToken")
    expires_at: datetime = Field(alias="expiresAt")

    @field_validator("refresh_token", mode="before")
    @classmethod
    def _none_means_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @property
    def has_refresh_token(self) -> bool:
        """Whether this credential can be renewed without a new login."""
        return bool(self.refresh_token)

    def bearer_header(self) -> dict[str, str]:
        """Return the ``Authorization`` header carrying the access token."""
        return {"Authorization": f"Bearer {self.access_token}"}

    def to_json(self) -> str:
        """Serialise to the on-disk JSON representation."""
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(data, indent=2) + "\n"


class Settings(BaseModel):
    """User configuration persisted at ``<config_dir>/config.json``.

    Every field can be overridden by environment variables or CLI flags;
    see :func:`~caido_auth.config.resolve_settings`.
    """

    url: Optional[str] = Field(default=None, description="Base URL of the Caido instance")
    login_timeout: float = Field(
        default=300.0, gt=0, description="Deadline for the interactive login, in seconds"
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for a single GraphQL request, in seconds"
    )
    expiry_margin_minutes: int = Field(
        default=5, ge=0, description="Renew tokens this many minutes before they expire"
    )
    open_browser: bool = Field(
        default=True, description="Open the verification URL in a browser during login"
    )


# --- Gateway results ---


class AuthorizationRequest(BaseModel):
    """A pending device authorization request. Never persisted.

    Attributes:
        id: Correlation key for the token-issuance subscription.
        user_code: Short code the user enters in the browser.
        verification_url: Page where the user approves the request.
        expires_at: When the authorization request itself lapses.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    user_code: str = Field(alias="userCode")
    verification_url: str = Field(alias="verificationUrl")
    expires_at: datetime = Field(alias="expiresAt")

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class TypedError(BaseModel):
    """A GraphQL union error member, identified only by its ``__typename``."""

    model_config = ConfigDict(populate_by_name=True)

    typename: str = Field(alias="__typename")


class IssuedToken(BaseModel):
    """Token payload as returned by the subscription and the refresh mutation.

    ``expiresAt`` is kept raw so that an unparsable timestamp does not
    discard an otherwise valid token; see :meth:`to_credential`.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: Any = Field(default=None, alias="expiresAt")

    def to_credential(self, now: Optional[datetime] = None) -> Credential:
        """Build a :class:`Credential`, defaulting the expiry when unparsable.

        Args:
            now: Reference time for the fallback expiry. Defaults to the
                current UTC time.
        """
        expires_at = parse_timestamp(self.expires_at)
        if expires_at is None:
            now = now or datetime.now(timezone.utc)
            expires_at = now + DEFAULT_TOKEN_LIFETIME
            logger.warning(
                "Could not parse token expiry %r; assuming %s",
                self.expires_at,
                expires_at.isoformat(),
            )
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token or "",
            expires_at=expires_at,
        )


class IssuanceResult(BaseModel):
    """Result union of ``createdAuthenticationToken`` / ``refreshAuthenticationToken``."""

    token: Optional[IssuedToken] = None
    error: Optional[TypedError] = None


# --- Subscription wire messages (graphql-transport-ws) ---


class ConnectionAckMessage(BaseModel):
    type: Literal["connection_ack"]
    payload: Optional[dict[str, Any]] = None


class PingMessage(BaseModel):
    type: Literal["ping"]
    payload: Optional[dict[str, Any]] = None


class NextMessage(BaseModel):
    type: Literal["next"]
    id: str
    payload: dict[str, Any]


class ErrorMessage(BaseModel):
    type: Literal["error"]
    id: str
    payload: Any = None


class CompleteMessage(BaseModel):
    type: Literal["complete"]
    id: str


class UnrecognizedMessage(BaseModel):
    """Any frame whose ``type`` is not one the client acts on."""

    raw: Any = None


SubscriptionMessage = Union[
    ConnectionAckMessage,
    PingMessage,
    NextMessage,
    ErrorMessage,
    CompleteMessage,
    UnrecognizedMessage,
]

_MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    "connection_ack": ConnectionAckMessage,
    "ping": PingMessage,
    "next": NextMessage,
    "error": ErrorMessage,
    "complete": CompleteMessage,
}


def parse_message(raw: Union[str, bytes]) -> SubscriptionMessage:
    """Decode one ``graphql-transport-ws`` frame.

    Frames with an unknown or missing ``type`` become
    :class:`UnrecognizedMessage` so that the caller can skip them.

    Args:
        raw: The text (or binary) frame received from the socket.

    Returns:
        The typed message.

    Raises:
        ProtocolError: If the frame is not JSON, or has a known ``type``
            but is missing required fields.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Received a non-JSON subscription frame: {exc}") from exc

    if not isinstance(data, dict):
        return UnrecognizedMessage(raw=data)
    model = _MESSAGE_TYPES.get(data.get("type")) if isinstance(data.get("type"), str) else None
    if model is None:
        return UnrecognizedMessage(raw=data)

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise ProtocolError(f"Malformed '{data['type']}' message: {exc}") from exc
