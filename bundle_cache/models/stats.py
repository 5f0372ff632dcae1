"""
Dataclass for tracking fetcher statistics.
"""

import asyncio
from dataclasses import dataclass, field


@dataclass
class FetchStats:
    """Counts cache hits, self-healing refetches and downloaded files."""

    cache_hits: int = 0
    refetches: int = 0
    downloads: int = 0
    bytes_downloaded: int = 0
    integrity_failures: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def record_hit(self) -> None:
        async with self._lock:
            self.cache_hits += 1

    async def record_refetch(self) -> None:
        async with self._lock:
            self.refetches += 1

    async def record_download(self, size_bytes: int) -> None:
        """Records one completed file transfer of ``size_bytes`` bytes."""
        async with self._lock:
            self.downloads += 1
            self.bytes_downloaded += size_bytes

    async def record_integrity_failure(self) -> None:
        async with self._lock:
            self.integrity_failures += 1
