"""
Reference Resolver
Turns stored-image ids and external URLs into provider file handles.

Stored images are uploaded at most once per TTL window: handles are cached
by image id and shared across jobs. URLs are fetched and uploaded every time.
"""

import asyncio
import json
import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx
from redis import Redis

from app.core.clock import Clock, SystemClock
from app.core.config import settings
from app.core.errors import NotFoundError, ResourceFetchFailure
from app.services.gemini_image import FileHandle

logger = logging.getLogger(__name__)


@dataclass
class CachedHandle:
    """Cache entry: uploaded handle plus its expiry instant."""
    uri: str
    mime_type: str
    expires_at: datetime

    def to_json(self) -> str:
        return json.dumps({
            "uri": self.uri,
            "mime_type": self.mime_type,
            "expires_at": self.expires_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "CachedHandle":
        data = json.loads(raw)
        return cls(
            uri=data["uri"],
            mime_type=data.get("mime_type") or "image/png",
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    def is_fresh(self, now: datetime, safety_margin: timedelta) -> bool:
        return now < self.expires_at - safety_margin


class MemoryHandleCache:
    """In-process handle cache."""

    def __init__(self):
        self._entries: Dict[str, CachedHandle] = {}

    def get(self, image_id: str) -> Optional[CachedHandle]:
        return self._entries.get(image_id)

    def set(self, image_id: str, entry: CachedHandle, ttl_seconds: int) -> None:
        self._entries[image_id] = entry

    def delete(self, image_id: str) -> None:
        self._entries.pop(image_id, None)


class RedisHandleCache:
    """Handle cache in Redis; keys expire with the handle TTL."""

    KEY_PREFIX = "filecache:"

    def __init__(self, client: Redis):
        self.client = client

    def _key(self, image_id: str) -> str:
        return f"{self.KEY_PREFIX}{image_id}"

    def get(self, image_id: str) -> Optional[CachedHandle]:
        raw = self.client.get(self._key(image_id))
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return CachedHandle.from_json(raw)
        except (ValueError, KeyError) as e:
            logger.warning(f"[References] Dropping unreadable cache entry for {image_id}: {e}")
            return None

    def set(self, image_id: str, entry: CachedHandle, ttl_seconds: int) -> None:
        self.client.set(self._key(image_id), entry.to_json(), ex=max(int(ttl_seconds), 1))

    def delete(self, image_id: str) -> None:
        self.client.delete(self._key(image_id))


def _display_name_for_url(url: str) -> str:
    name = posixpath.basename(urlparse(url).path)
    return name or "reference.png"


class ReferenceResolver:
    """Resolve references into provider file handles."""

    def __init__(
        self,
        provider,
        storage,
        library,
        cache=None,
        clock: Optional[Clock] = None,
        ttl_seconds: Optional[int] = None,
        safety_margin_seconds: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.storage = storage
        self.library = library
        self.cache = cache if cache is not None else MemoryHandleCache()
        self.clock = clock or SystemClock()
        self.ttl_seconds = settings.FILE_URI_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.safety_margin = timedelta(
            seconds=settings.FILE_URI_SAFETY_MARGIN_SECONDS if safety_margin_seconds is None else safety_margin_seconds
        )
        self.http_client = http_client
        self.fetch_timeout = settings.URL_FETCH_TIMEOUT_SECONDS if fetch_timeout is None else fetch_timeout

    async def resolve_stored_image(self, image_id: str) -> FileHandle:
        """
        Handle for a stored library image, uploading only on cache miss/expiry.

        Raises:
            NotFoundError: no library record for ``image_id``
            UpstreamFailure: upload to the provider failed
        """
        now = self.clock.now()
        cached = await asyncio.to_thread(self.cache.get, image_id)
        if cached is not None and cached.is_fresh(now, self.safety_margin):
            logger.debug(f"[References] Cache hit for {image_id}")
            return FileHandle(uri=cached.uri, mime_type=cached.mime_type)

        image = await asyncio.to_thread(self.library.get, image_id)
        if image is None:
            raise NotFoundError(f"Library image not found: {image_id}")

        data = await self.storage.read(image.storage_path)
        handle = await self.provider.upload_file(
            data,
            image.mime_type or "image/png",
            image.filename or f"{image_id}.png",
        )

        await asyncio.to_thread(
            self.cache.set,
            image_id,
            CachedHandle(
                uri=handle.uri,
                mime_type=handle.mime_type,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            ),
            self.ttl_seconds,
        )
        logger.info(f"[References] Uploaded {image_id} ({len(data)} bytes)")
        return handle

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        try:
            response = await client.get(url, timeout=self.fetch_timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            raise ResourceFetchFailure(f"Failed to fetch {url}: {e}") from e
        if not response.is_success:
            raise ResourceFetchFailure(f"Failed to fetch {url}: {response.status_code}")
        return response

    async def resolve_url(self, url: str, mime_type: Optional[str] = None) -> FileHandle:
        """
        Fetch ``url`` and upload its bytes. Never cached.

        Raises:
            ResourceFetchFailure: fetch error or non-2xx status
            UpstreamFailure: upload to the provider failed
        """
        if self.http_client is not None:
            response = await self._fetch(self.http_client, url)
        else:
            async with httpx.AsyncClient() as client:
                response = await self._fetch(client, url)

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        resolved_type = mime_type or (content_type if content_type.startswith("image/") else "image/png")

        return await self.provider.upload_file(
            response.content,
            resolved_type,
            _display_name_for_url(url),
        )


def build_handle_cache(redis_client: Optional[Redis] = None, backend: Optional[str] = None):
    """Pick the handle cache backend from settings."""
    backend = (backend or settings.HANDLE_CACHE_BACKEND or "memory").lower()
    if backend == "redis" and redis_client is not None:
        return RedisHandleCache(redis_client)
    if backend == "redis":
        logger.warning("[References] Redis cache requested without a client; using in-process cache")
    return MemoryHandleCache()
