"""Supabase client for the remote analysis table, image bucket and auth.

Wraps the supabase-py async client. Every data call resolves the signed-in
user from the session; a caller-supplied ``user_id`` is only ever checked
against it, never used as the ownership key.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

import httpx
from supabase import acreate_client

from cassava.core.errors import (
    AuthError,
    CassavaError,
    ConnectivityError,
    RemoteBackendError,
    RemoteWriteError,
)
from cassava.core.inference.provider import BackendHealth
from cassava.core.storage.models import AnalysisRecord

if TYPE_CHECKING:
    from cassava.core.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email}


class RemoteBackendClient(Protocol):
    """What the orchestrator needs from the remote backend."""

    async def get_current_user(self) -> AuthUser | None: ...

    async def upload_image(self, image_ref: str, user_id: str) -> str: ...

    async def remove_image(self, url: str) -> None: ...

    async def save_analysis(self, record: AnalysisRecord) -> AnalysisRecord: ...

    async def get_analyses(self, user_id: str) -> list[AnalysisRecord]: ...

    async def delete_analysis(self, record_id: str) -> None: ...

    async def health_check(self) -> BackendHealth: ...


async def _maybe_await(value: Any) -> Any:
    # storage3 exposes get_public_url as sync or async depending on version
    if inspect.isawaitable(value):
        return await value
    return value


async def _public_url(bucket: Any, path: str) -> Any:
    return await _maybe_await(bucket.get_public_url(path))


def _user_from(obj: Any) -> AuthUser | None:
    user = getattr(obj, "user", None)
    if user is None:
        return None
    return AuthUser(id=str(user.id), email=getattr(user, "email", None))


class SupabaseBackendClient:
    """Remote store for synced analyses.

    Usage::

        backend = SupabaseBackendClient(url=url, key=anon_key)
        await backend.sign_in("farmer@example.org", "secret")
        url = await backend.upload_image("/tmp/leaf.jpg", user.id)
        saved = await backend.save_analysis(record)
    """

    def __init__(
        self,
        client: Any = None,
        *,
        url: str = "",
        key: str = "",
        bucket: str = "cassava-images",
        table: str = "cassava_analyses",
    ) -> None:
        self._client = client
        self._url = url
        self._key = key
        self.bucket = bucket
        self.table = table

    async def _get_client(self) -> Any:
        if self._client is None:
            if not self._url or not self._key:
                raise RemoteBackendError("Supabase URL and anon key are not configured")
            try:
                self._client = await acreate_client(self._url, self._key)
            except Exception as exc:
                raise RemoteBackendError(f"Cannot create Supabase client: {exc}") from exc
            logger.info("Connected Supabase client to %s", self._url)
        return self._client

    async def _call(
        self,
        awaitable: Awaitable[Any],
        action: str,
        error_cls: type[RemoteBackendError] = RemoteBackendError,
    ) -> Any:
        try:
            return await awaitable
        except httpx.TransportError as exc:
            raise ConnectivityError(f"{action} failed: backend unreachable ({exc})") from exc
        except Exception as exc:
            logger.warning("Supabase %s failed: %s", action, exc)
            raise error_cls(f"{action} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str) -> AuthUser:
        client = await self._get_client()
        response = await self._auth_call(
            client.auth.sign_up({"email": email, "password": password}), "sign up"
        )
        user = _user_from(response)
        if user is None:
            raise AuthError("Sign up returned no user")
        logger.info("Signed up user %s", user.id)
        return user

    async def sign_in(self, email: str, password: str) -> AuthUser:
        client = await self._get_client()
        response = await self._auth_call(
            client.auth.sign_in_with_password({"email": email, "password": password}),
            "sign in",
        )
        user = _user_from(response)
        if user is None:
            raise AuthError("Sign in returned no user")
        logger.info("Signed in user %s", user.id)
        return user

    async def sign_out(self) -> None:
        client = await self._get_client()
        await self._auth_call(client.auth.sign_out(), "sign out")

    async def get_current_user(self) -> AuthUser | None:
        """The signed-in user, or None without a session."""
        client = await self._get_client()
        session = await self._auth_call(client.auth.get_session(), "session lookup")
        if session is None:
            return None
        return _user_from(session)

    async def on_auth_state_change(
        self, callback: Callable[[AuthUser | None], None]
    ) -> Any:
        """Subscribe to sign-in/sign-out; returns the backend subscription."""
        client = await self._get_client()

        def _listener(event: str, session: Any) -> None:
            callback(_user_from(session) if session is not None else None)

        return client.auth.on_auth_state_change(_listener)

    async def _auth_call(self, awaitable: Awaitable[Any], action: str) -> Any:
        try:
            return await awaitable
        except httpx.TransportError as exc:
            raise ConnectivityError(f"{action} failed: backend unreachable ({exc})") from exc
        except Exception as exc:
            raise AuthError(str(exc) or f"{action} failed") from exc

    async def _owner(self, user_id: str | None = None) -> str:
        user = await self.get_current_user()
        if user is None:
            raise AuthError("No authenticated session")
        if user_id and user_id != user.id:
            raise AuthError(f"User {user_id} does not match the signed-in user")
        return user.id

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def upload_image(self, image_ref: str, user_id: str) -> str:
        """Upload a local image and return its public URL."""
        owner = await self._owner(user_id)
        try:
            data = await asyncio.to_thread(Path(image_ref).expanduser().read_bytes)
        except OSError as exc:
            raise RemoteWriteError(f"Cannot read image {image_ref}: {exc}") from exc

        client = await self._get_client()
        bucket = client.storage.from_(self.bucket)
        path = f"{owner}/{int(time.time() * 1000)}-{uuid.uuid4().hex}.jpg"
        await self._call(
            bucket.upload(path, data, {"content-type": "image/jpeg", "upsert": "false"}),
            "image upload",
            RemoteWriteError,
        )
        try:
            url = await self._call(_public_url(bucket, path), "public URL lookup", RemoteWriteError)
        except CassavaError:
            await self.remove_image(f"/{self.bucket}/{path}")
            raise
        logger.debug("Uploaded %s to %s/%s", image_ref, self.bucket, path)
        return str(url).rstrip("?")

    def object_path(self, url: str) -> str | None:
        """Bucket-relative object path for a public URL, if it is one of ours."""
        marker = f"/{self.bucket}/"
        if marker not in url:
            return None
        return url.split(marker, 1)[1].split("?", 1)[0] or None

    async def remove_image(self, url: str) -> None:
        """Best-effort blob removal; failures are logged, never raised."""
        path = self.object_path(url)
        if path is None:
            logger.debug("Not a %s URL, nothing to remove: %s", self.bucket, url)
            return
        try:
            client = await self._get_client()
            await client.storage.from_(self.bucket).remove([path])
        except Exception:
            logger.warning("Could not remove image %s", path, exc_info=True)

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def save_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        """Insert a record for the session user and return the stored row."""
        owner = await self._owner(record.user_id)
        payload = record.to_remote_payload()
        payload["user_id"] = owner

        client = await self._get_client()
        response = await self._call(
            client.table(self.table).insert(payload).execute(),
            "analysis insert",
            RemoteWriteError,
        )
        rows = response.data or []
        if not rows:
            raise RemoteWriteError("Analysis insert returned no row")
        return AnalysisRecord.from_remote(rows[0])

    async def get_analyses(self, user_id: str) -> list[AnalysisRecord]:
        owner = await self._owner(user_id)
        client = await self._get_client()
        response = await self._call(
            client.table(self.table)
            .select("*")
            .eq("user_id", owner)
            .order("created_at", desc=True)
            .execute(),
            "analysis listing",
        )
        return [AnalysisRecord.from_remote(row) for row in response.data or []]

    async def delete_analysis(self, record_id: str) -> None:
        """Delete a row owned by the session user, then its image.

        Deleting a row that no longer exists is not an error.
        """
        owner = await self._owner()
        client = await self._get_client()
        response = await self._call(
            client.table(self.table)
            .select("image_url")
            .eq("id", record_id)
            .eq("user_id", owner)
            .execute(),
            "analysis lookup",
        )
        rows = response.data or []
        await self._call(
            client.table(self.table).delete().eq("id", record_id).eq("user_id", owner).execute(),
            "analysis delete",
        )
        if rows and rows[0].get("image_url"):
            await self.remove_image(rows[0]["image_url"])
        logger.info("Deleted remote analysis %s", record_id)

    async def health_check(self) -> BackendHealth:
        start = time.monotonic()
        try:
            client = await self._get_client()
            await client.table(self.table).select("id").limit(1).execute()
        except Exception as exc:
            return BackendHealth(status="offline", detail=str(exc))
        return BackendHealth(
            status="online", latency_ms=round((time.monotonic() - start) * 1000, 1)
        )


def create_backend_client(settings: Settings) -> SupabaseBackendClient:
    """Build the backend client for the configured (cloud or self-hosted) project.

    The underlying supabase client is created on first use.
    """
    url, key, mode = settings.active_supabase()
    logger.info("Remote backend mode: %s", mode)
    return SupabaseBackendClient(
        url=url,
        key=key,
        bucket=settings.supabase_bucket,
        table=settings.supabase_table,
    )
