"""Persistent, single-record credential store.

Stores the current :class:`~caido_auth.models.Credential` in
``~/.config/caido-auth/token.json`` (XDG) or the platform-equivalent
directory. Files are written atomically via
:func:`~caido_auth.config.atomic_write` with ``0o600`` permissions inside a
``0o700`` directory, so bearer values are never readable by other local
users, even momentarily.

The record is overwritten on every save; it is never merged with what was
there before.

See Also:
    :class:`~caido_auth.auth.authenticator.Authenticator` -- the only writer
    during normal operation.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from caido_auth.config import atomic_write, get_token_path
from caido_auth.exceptions import StorageReadError, StorageWriteError
from caido_auth.models import Credential

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MARGIN = timedelta(minutes=5)


class CredentialStore:
    """Read/write the persisted credential.

    Args:
        path: Location of the token file. Defaults to
            :func:`~caido_auth.config.get_token_path`.
        margin: How long before the literal expiry a credential is already
            treated as expired.

    Example::

        store = CredentialStore()
        store.save(Credential(access_token="tok", expires_at=later))
        assert store.load().access_token == "tok"
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        margin: timedelta = DEFAULT_EXPIRY_MARGIN,
    ) -> None:
        self._path = path if path is not None else get_token_path()
        self._margin = margin

    @property
    def path(self) -> Path:
        """The filesystem path of the token file."""
        return self._path

    @property
    def margin(self) -> timedelta:
        """The renewal margin applied by :meth:`is_expired`."""
        return self._margin

    def load(self) -> Optional[Credential]:
        """Load the stored credential.

        A record that is not UTF-8 JSON, or lacks an access token, is
        logged and treated as absent so that the next login replaces it.

        Returns:
            The stored :class:`Credential`, or ``None`` if there is none.

        Raises:
            StorageReadError: If the file exists but cannot be read.
        """
        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageReadError(
                f"Failed to read token file {self._path}: {exc}"
            ) from exc

        try:
            return Credential.model_validate(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return None

    def save(self, credential: Credential) -> None:
        """Persist *credential* atomically, replacing any previous record.

        Raises:
            StorageWriteError: If the directory or file cannot be written.
        """
        try:
            atomic_write(self._path, credential.to_json())
        except OSError as exc:
            raise StorageWriteError(
                f"Failed to write token file {self._path}: {exc}"
            ) from exc
        logger.debug("Saved token expiring at %s to %s", credential.expires_at, self._path)

    def delete(self) -> None:
        """Remove the stored record. A missing file is not an error.

        Raises:
            StorageWriteError: If the file exists but cannot be removed.
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageWriteError(
                f"Failed to delete token file {self._path}: {exc}"
            ) from exc

    def is_expired(self, credential: Credential, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if *credential* expires within the margin.

        Exactly at the margin counts as expired.
        """
        now = now or datetime.now(timezone.utc)
        return now + self._margin >= credential.expires_at
