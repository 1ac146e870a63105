"""In-process caches shared by concurrent turns and crawls."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class ProcessCache(Generic[K, V]):
    """Get-or-populate mapping that never expires.

    Concurrent misses for the same key share a single load. A failed load is
    not cached, so the next caller retries it.
    """

    def __init__(self) -> None:
        self._values: dict[K, V] = {}
        self._locks: dict[K, asyncio.Lock] = {}

    def __contains__(self, key: K) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: K) -> V | None:
        return self._values.get(key)

    async def get_or_populate(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        if key in self._values:
            return self._values[key]

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                if key in self._values:
                    return self._values[key]
                value = await loader()
                self._values[key] = value
        finally:
            # A newer lock may already sit under this key after an earlier pop
            if self._locks.get(key) is lock:
                del self._locks[key]
        return value


@dataclass
class CrawlStatus:
    is_crawling: bool
    started_at: datetime


class CrawlStatusRegistry:
    """Tracks which crawl targets are mid-crawl, keyed by ``{assistant}-{url}``."""

    def __init__(self) -> None:
        self._status: dict[str, CrawlStatus] = {}

    @staticmethod
    def key_for(assistant_name: str, url: str) -> str:
        return f"{assistant_name}-{url}"

    def is_crawling(self, key: str) -> bool:
        status = self._status.get(key)
        return bool(status and status.is_crawling)

    def try_begin(self, key: str) -> bool:
        # No await between the check and the write, so this is atomic on the event loop
        if self.is_crawling(key):
            return False
        self._status[key] = CrawlStatus(is_crawling=True, started_at=datetime.now(timezone.utc))
        return True

    def finish(self, key: str) -> None:
        status = self._status.get(key)
        if status:
            status.is_crawling = False

    def snapshot(self) -> dict[str, dict]:
        return {
            key: {"is_crawling": s.is_crawling, "started_at": s.started_at.isoformat()}
            for key, s in self._status.items()
        }
