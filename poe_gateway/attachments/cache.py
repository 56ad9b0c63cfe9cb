"""Content-addressed cache of uploaded attachments.

Maps a stable key (hash of inline bytes, or the URL string) to the upstream
file reference returned by the upload endpoint, so identical images and
files are uploaded once. Entries expire once idle for a full TTL
and are evicted least-recently-used first when the byte capacity is
exceeded.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from ..concurrency.singleflight import singleflight_cached
from ..core.exceptions import AttachmentResolutionError
from ..types.request import InlineData, UpstreamReference

logger = logging.getLogger("poe-gateway")

AttachmentSource = Union[str, InlineData]
Uploader = Callable[[], Awaitable[UpstreamReference]]


@dataclass
class CacheEntry:
    key: str
    reference: UpstreamReference
    size_bytes: int
    created_at: float
    last_access: float


def cache_key(source: AttachmentSource) -> str:
    """Stable key for an attachment source."""
    if isinstance(source, InlineData):
        return "sha256:" + hashlib.sha256(source.data).hexdigest()
    return f"url:{source}"


class AttachmentCache:
    """TTL + byte-capacity LRU cache with single-flight uploads.

    The entry map is kept in access order (oldest first), so eviction pops
    from the front. All mutation happens under one asyncio lock; the upload
    itself runs outside it.
    """

    def __init__(
        self,
        ttl_seconds: float,
        capacity_bytes: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.capacity_bytes = int(capacity_bytes)
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_bytes = 0
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Future[UpstreamReference]] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key) if isinstance(key, str) else None
        return entry is not None and not self._is_expired(entry, self._clock())

    async def resolve(self, source: AttachmentSource, upload: Uploader) -> UpstreamReference:
        """Return the upstream reference for source, uploading at most once.

        Args:
            source: Remote URL or inline bytes.
            upload: Performs the upload when the key is not cached. Concurrent
                callers for the same key share a single call.

        Raises:
            AttachmentResolutionError: The upload failed. Nothing is cached.
        """
        key = cache_key(source)

        async def work() -> UpstreamReference:
            self.misses += 1
            logger.info("Attachment cache miss for %s; uploading", _short(key))
            try:
                return await upload()
            except AttachmentResolutionError:
                raise
            except Exception as exc:
                raise AttachmentResolutionError(f"Attachment upload failed: {exc}") from exc

        return await singleflight_cached(
            key,
            lock=self._lock,
            inflight=self._inflight,
            cache_get=self._get,
            cache_set=self._insert,
            work=work,
        )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.last_access >= self.ttl_seconds

    def _get(self, key: str) -> Optional[UpstreamReference]:
        now = self._clock()
        self._purge_expired(now)
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.last_access = now
        self._entries.move_to_end(key)
        self.hits += 1
        logger.debug("Attachment cache hit for %s", _short(key))
        return entry.reference

    def _insert(self, key: str, reference: UpstreamReference) -> None:
        now = self._clock()
        size = max(int(reference.size_bytes), 0)
        previous = self._entries.pop(key, None)
        if previous is not None:
            self._total_bytes -= previous.size_bytes
        self._entries[key] = CacheEntry(
            key=key,
            reference=reference,
            size_bytes=size,
            created_at=now,
            last_access=now,
        )
        self._total_bytes += size
        self._evict_to_capacity(keep=key)

    def _evict_to_capacity(self, keep: str) -> None:
        # The newest entry sits at the end, so the front is never `keep`
        # while more than one entry remains.
        while self._total_bytes > self.capacity_bytes and len(self._entries) > 1:
            oldest_key = next(iter(self._entries))
            if oldest_key == keep:
                break
            entry = self._entries.pop(oldest_key)
            self._total_bytes -= entry.size_bytes
            self.evictions += 1
            logger.info(
                "Evicted attachment %s (%d bytes) to stay under %d bytes",
                _short(oldest_key),
                entry.size_bytes,
                self.capacity_bytes,
            )

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            entry = self._entries.pop(key)
            self._total_bytes -= entry.size_bytes
            logger.debug("Attachment %s expired", _short(key))

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "bytes": self._total_bytes,
            "capacity_bytes": self.capacity_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


def _short(key: str) -> str:
    if len(key) > 48:
        return key[:45] + "..."
    return key
