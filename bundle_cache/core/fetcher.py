"""
The bundle fetcher: returns a verified local path for a bundle identity,
downloading it from the origin only when the cached copy cannot be trusted.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from bundle_cache.exceptions import BundleCacheError, FilesystemError, RetrievalError
from bundle_cache.models.config import FetcherConfig
from bundle_cache.models.identity import BundleIdentity
from bundle_cache.models.stats import FetchStats
from bundle_cache.storage.layout import BundleLayout, BundlePaths
from bundle_cache.transfer.downloader import BundleDownloader
from bundle_cache.transfer.integrity import VerificationResult, verify_bundle

log = logging.getLogger(__name__)


class BundleSource(Protocol):
    """Anything that can retrieve a digest and bundle pair into a cache entry."""

    async def fetch_pair(self, release: str, paths: BundlePaths) -> list[int]: ...

    async def close(self) -> None: ...


@dataclass
class _IdentityLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class BundleFetcher:
    """
    Owns a cache directory and hands out verified bundle paths.

    Calls for the same identity are serialized by a per-identity lock, so
    overlapping callers never download the same bundle twice or read a file
    another caller is still writing. Calls for different identities run
    concurrently. There is no locking across processes.
    """

    def __init__(
        self,
        base_dir: Path,
        config: FetcherConfig | None = None,
        downloader: BundleSource | None = None,
        stats: FetchStats | None = None,
    ):
        """
        Initializes the fetcher and creates the family directory.

        Args:
            base_dir: The directory under which the family directory is created.
            config: Transfer and origin settings. Defaults are used if omitted.
            downloader: The BundleSource used for retrieval. A BundleDownloader
                is built from the config if omitted.
            stats: Optional statistics collector.

        Raises:
            FilesystemError: If the family directory cannot be created.
        """
        self.config = config or FetcherConfig(cache_dir=Path(base_dir))
        self.layout = BundleLayout(Path(base_dir), self.config.family)
        self.layout.ensure_root()
        self.downloader = downloader or BundleDownloader.from_config(self.config)
        self.stats = stats or FetchStats()
        self._locks: dict[BundleIdentity, _IdentityLock] = {}

    async def __aenter__(self) -> "BundleFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.downloader.close()

    def bundle_path(self, version: int, release: str, network: str) -> Path:
        """Returns where the bundle for an identity lives, whether or not it exists."""
        identity = BundleIdentity(version, release, network)
        return self.layout.resolve(identity).bundle_path

    @asynccontextmanager
    async def _identity_lock(self, identity: BundleIdentity) -> AsyncIterator[None]:
        """Holds the lock for one identity; the entry is dropped when unused."""
        entry = self._locks.get(identity)
        if entry is None:
            entry = self._locks[identity] = _IdentityLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[identity]

    async def fetch(self, version: int, release: str, network: str) -> Path:
        """
        Returns the path of a verified bundle, fetching it if necessary.

        An existing bundle that fails verification is refetched silently. A
        freshly downloaded bundle that fails verification is an error.

        Raises:
            FilesystemError: If the cache directory cannot be created or the
                downloaded bundle cannot be read.
            RetrievalError: If the digest or bundle cannot be downloaded.
            IntegrityError: If the downloaded bundle does not match its digest.
        """
        identity = BundleIdentity(version, release, network)
        async with self._identity_lock(identity):
            return await self._fetch_locked(identity)

    async def _fetch_locked(self, identity: BundleIdentity) -> Path:
        paths = self.layout.prepare(identity)

        if paths.bundle_path.exists():
            result = await verify_bundle(paths.digest_path, paths.bundle_path)
            if result.is_valid:
                log.debug(f"Using cached bundle {paths.bundle_path}")
                await self.stats.record_hit()
                return paths.bundle_path

            log.warning(
                f"invalid bundle {paths.bundle_name}: {result.reason}; refetching"
            )
            await self.stats.record_integrity_failure()
            await self.stats.record_refetch()

        log.info(f"fetching bundle {paths.bundle_file}")
        await self._retrieve(identity, paths)

        result = await verify_bundle(paths.digest_path, paths.bundle_path)
        if not result.is_valid:
            log.error(f"error checking bundle {paths.bundle_name}: {result.reason}")
            await self.stats.record_integrity_failure()
            result.raise_for_status()

        return paths.bundle_path

    async def _retrieve(self, identity: BundleIdentity, paths: BundlePaths) -> None:
        try:
            sizes = await self.downloader.fetch_pair(identity.release, paths)
        except (BundleCacheError, OSError) as e:
            log.error(f"error fetching bundle {paths.bundle_name}: {e}")
            raise RetrievalError(
                f"error fetching bundle {paths.bundle_name}: {e}"
            ) from e

        for size in sizes:
            await self.stats.record_download(size)

    async def verify(
        self, version: int, release: str, network: str
    ) -> VerificationResult:
        """
        Checks a cached bundle against its digest without touching the network.
        """
        identity = BundleIdentity(version, release, network)
        paths = self.layout.resolve(identity)
        async with self._identity_lock(identity):
            if not paths.bundle_path.is_file():
                return VerificationResult.invalid(
                    FilesystemError(f"bundle not found at {paths.bundle_path}")
                )
            return await verify_bundle(paths.digest_path, paths.bundle_path)


async def _fetch_once(
    base_dir: Path,
    version: int,
    release: str,
    network: str,
    config: FetcherConfig | None,
) -> Path:
    async with BundleFetcher(base_dir, config) as fetcher:
        return await fetcher.fetch(version, release, network)


def fetch_bundle(
    base_dir: Path,
    version: int,
    release: str,
    network: str,
    config: FetcherConfig | None = None,
) -> Path:
    """
    Blocking convenience wrapper: fetches one bundle on a fresh event loop.

    Must not be called from inside a running event loop; await
    ``BundleFetcher.fetch`` there instead.
    """
    return asyncio.run(_fetch_once(Path(base_dir), version, release, network, config))
