from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from aiohttp import web

from bundle_cache.storage.layout import BundlePaths

RELEASE = "v8.0.0"
BUNDLE_BYTES = b"\x0a\xa1car-bundle-content" * 512


def digest_line(content: bytes, filename: str = "bundle.car") -> bytes:
    return f"{hashlib.sha256(content).hexdigest()}  {filename}\n".encode()


@dataclass
class FakeOrigin:
    """Serves release files from memory and records every request path."""

    base_url: str
    files: dict[tuple[str, str], Any] = field(default_factory=dict)
    requests: list[str] = field(default_factory=list)

    def publish(self, release: str, network: str, content: bytes) -> None:
        name = f"builtin-actors-{network}"
        self.files[(release, f"{name}.car")] = content
        self.files[(release, f"{name}.sha256")] = digest_line(content, f"{name}.car")


@pytest.fixture
async def origin(aiohttp_server) -> FakeOrigin:
    fake = FakeOrigin(base_url="")

    async def handle(request: web.Request) -> web.StreamResponse:
        release = request.match_info["release"]
        filename = request.match_info["filename"]
        fake.requests.append(f"{release}/{filename}")
        entry = fake.files.get((release, filename))
        if entry is None:
            return web.Response(status=404, text="not found")
        if callable(entry):
            return await entry(request)
        if isinstance(entry, int):
            return web.Response(status=entry)
        return web.Response(body=entry)

    app = web.Application()
    app.router.add_get("/releases/{release}/{filename}", handle)
    server = await aiohttp_server(app)
    fake.base_url = f"http://{server.host}:{server.port}/releases"
    return fake


class FakeDownloader:
    """In-memory stand-in for BundleDownloader."""

    def __init__(self, files: dict[str, bytes] | None = None, fail_with=None):
        self.files = files or {}
        self.fail_with = fail_with
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def fetch_pair(self, release: str, paths: BundlePaths) -> list[int]:
        sizes = []
        for filename, destination in (
            (paths.digest_file, paths.digest_path),
            (paths.bundle_file, paths.bundle_path),
        ):
            self.calls.append((release, filename))
            if self.fail_with is not None:
                raise self.fail_with
            content = self.files[filename]
            Path(destination).write_bytes(content)
            sizes.append(len(content))
        return sizes

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_downloader() -> FakeDownloader:
    return FakeDownloader(
        {
            "builtin-actors-mainnet.car": BUNDLE_BYTES,
            "builtin-actors-mainnet.sha256": digest_line(BUNDLE_BYTES),
        }
    )


async def truncated_body(request: web.Request) -> web.StreamResponse:
    """Declares a longer body than it sends, then drops the connection."""
    response = web.StreamResponse()
    response.content_length = 4096
    response.force_close()
    await response.prepare(request)
    await response.write(b"partial")
    return response
