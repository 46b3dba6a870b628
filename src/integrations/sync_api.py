"""Remote user API — uploads locally registered users to the sync server.

Posts a multipart form to `POST /api/users`: the profile text fields plus
an optional `photo` file part read from local storage. The server answers
with JSON carrying the id it assigned (`_id`, or `id` on newer servers).

Failures raise SyncError and are retried on the next pass. Only when the
client is built with `terminal_on_reject` do client errors (4xx other than
408/429) become permanent rejections that are never uploaded again.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from src.data.models import User
from src.ports.sync_port import SyncError

logger = logging.getLogger(__name__)

_USERS_ENDPOINT = "/api/users"
_TIMEOUT_SECONDS = 15
_RETRYABLE_CLIENT_STATUSES = (408, 429)

# (form field, User attribute)
_TEXT_FIELDS = (
    ("firstName", "first_name"),
    ("lastName", "last_name"),
    ("email", "email"),
    ("mobileNumber", "mobile_number"),
    ("birthDay", "birth_day"),
    ("gender", "gender"),
    ("userName", "user_name"),
)

_PHOTO_NAME = "profile.jpg"
_PHOTO_TYPE = "image/jpeg"


def _photo_path(photo_uri: str) -> Path:
    """Accept plain paths as well as file:// URIs."""
    if photo_uri.startswith("file://"):
        return Path(unquote(urlparse(photo_uri).path))
    return Path(photo_uri)


def _read_photo(photo_uri: str) -> bytes | None:
    path = _photo_path(photo_uri)
    if not path.is_file():
        logger.warning("Photo %s not found, uploading without it", path)
        return None
    return path.read_bytes()


def build_form(user: User, photo: bytes | None = None) -> list[tuple]:
    """Build the multipart parts of a user upload."""
    parts: list[tuple] = [
        (field, (None, str(getattr(user, attr) or "")))
        for field, attr in _TEXT_FIELDS
    ]
    # The stored password may be a local hash; the server needs what was typed
    parts.append(("password", (None, user.pending_password or user.password or "")))
    if photo is not None:
        parts.append(("photo", (_PHOTO_NAME, photo, _PHOTO_TYPE)))
    return parts


class SyncApiClient:
    """HTTP implementation of UserUploader."""

    def __init__(
        self,
        base_url: str,
        timeout: float = _TIMEOUT_SECONDS,
        terminal_on_reject: bool = False,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._terminal_on_reject = terminal_on_reject

    async def upload_user(self, user: User) -> str:
        """Create `user` on the server and return the remote id."""
        photo = None
        if user.photo_uri:
            try:
                photo = await asyncio.to_thread(_read_photo, user.photo_uri)
            except OSError as exc:
                logger.warning("Could not read photo of user #%s: %s", user.id, exc)

        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
                resp = await client.post(_USERS_ENDPOINT, files=build_form(user, photo))
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            rejected = 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUSES
            permanent = rejected and self._terminal_on_reject
            raise SyncError(
                f"Server rejected user '{user.user_name}' with HTTP {status}",
                permanent=permanent,
            ) from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"Upload of user '{user.user_name}' failed: {exc}") from exc
        except ValueError as exc:
            raise SyncError(f"Malformed response for user '{user.user_name}': {exc}") from exc

        remote_id = (data.get("_id") or data.get("id")) if isinstance(data, dict) else None
        if not remote_id:
            raise SyncError(f"Response for user '{user.user_name}' carries no remote id")

        logger.info("User '%s' uploaded, remote id %s", user.user_name, remote_id)
        return str(remote_id)
