"""
Handles the low-level downloading of bundles and their digest files over HTTP.
"""

import asyncio
import logging
from contextlib import suppress
from pathlib import Path

import aiofiles
import aiohttp

from bundle_cache.exceptions import FilesystemError, RetrievalError
from bundle_cache.models.config import FetcherConfig
from bundle_cache.storage.layout import BundlePaths

log = logging.getLogger(__name__)


class BundleDownloader:
    """
    Streams whole files from the bundle origin to disk.

    No retries are attempted; a failed transfer is reported immediately so the
    caller can decide whether to try again.
    """

    def __init__(
        self,
        origin_url: str,
        chunk_size: int = 262144,
        connect_timeout: float = 15.0,
        read_timeout: float = 90.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.origin_url = origin_url.rstrip("/")
        self.chunk_size = chunk_size
        self._timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=connect_timeout, sock_read=read_timeout
        )
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: FetcherConfig) -> "BundleDownloader":
        return cls(
            config.origin_url,
            chunk_size=config.chunk_size,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gets or lazily creates the HTTP session used for all transfers."""
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=self._timeout)
                self._owns_session = True
                log.debug("Created bundle downloader session.")
            return self._session

    async def close(self) -> None:
        """Closes the HTTP session if this downloader created it."""
        async with self._session_lock:
            if self._owns_session and self._session and not self._session.closed:
                await self._session.close()
                log.debug("Bundle downloader session closed.")
            self._session = None

    def build_url(self, release: str, filename: str) -> str:
        return f"{self.origin_url}/{release}/{filename}"

    async def download_file(self, url: str, destination_path: Path) -> int:
        """
        Downloads ``url`` into ``destination_path``, truncating any existing file.

        Returns:
            The number of bytes written.

        Raises:
            RetrievalError: On transport failure or any status other than 200.
            FilesystemError: If the destination cannot be opened or written.
        """
        log.info(f"fetching URL: {url}")
        session = await self._get_session()
        try:
            async with session.get(url, allow_redirects=True) as response:
                if response.status != 200:
                    raise RetrievalError(
                        f"error fetching {url}: http response status is "
                        f"{response.status}"
                    )
                return await self._stream_to_file(response, destination_path)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RetrievalError(f"error fetching {url}: {e}") from e

    async def _stream_to_file(
        self, response: aiohttp.ClientResponse, destination_path: Path
    ) -> int:
        try:
            f = await aiofiles.open(destination_path, "wb")
        except OSError as e:
            raise FilesystemError(
                f"error opening {destination_path} for writing: {e}"
            ) from e

        bytes_written = 0
        try:
            async for chunk in response.content.iter_chunked(self.chunk_size):
                try:
                    await f.write(chunk)
                except OSError as e:
                    raise FilesystemError(
                        f"error writing {destination_path}: {e}"
                    ) from e
                bytes_written += len(chunk)
        except BaseException:
            # The original error wins over a failed flush.
            with suppress(OSError):
                await f.close()
            raise

        # Buffered data is flushed here, so a full disk often surfaces on close.
        try:
            await f.close()
        except OSError as e:
            raise FilesystemError(f"error writing {destination_path}: {e}") from e

        log.debug(f"Wrote {bytes_written} bytes to {destination_path.name}")
        return bytes_written

    async def fetch_pair(self, release: str, paths: BundlePaths) -> list[int]:
        """
        Downloads the digest file and then the bundle for one release.

        A failure on the digest aborts before the bundle is requested.

        Returns:
            The sizes of the digest and bundle files, in that order.
        """
        sizes = []
        for filename, destination in (
            (paths.digest_file, paths.digest_path),
            (paths.bundle_file, paths.bundle_path),
        ):
            url = self.build_url(release, filename)
            sizes.append(await self.download_file(url, destination))
        return sizes
