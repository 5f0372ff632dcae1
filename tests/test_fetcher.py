from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from bundle_cache.core.fetcher import BundleFetcher, fetch_bundle
from bundle_cache.exceptions import FilesystemError, IntegrityError, RetrievalError
from bundle_cache.models.config import FetcherConfig
from bundle_cache.transfer.integrity import VerificationStatus
from conftest import (
    BUNDLE_BYTES,
    RELEASE,
    FakeDownloader,
    digest_line,
    truncated_body,
)


def _fetcher(tmp_path: Path, origin_url: str) -> BundleFetcher:
    config = FetcherConfig(cache_dir=tmp_path, origin_url=origin_url)
    return BundleFetcher(tmp_path, config)


async def test_first_fetch_downloads_second_is_cache_hit(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        first = await fetcher.fetch(8, RELEASE, "mainnet")
        assert len(origin.requests) == 2
        second = await fetcher.fetch(8, RELEASE, "mainnet")

    expected = tmp_path / "builtin-actors" / "v8" / RELEASE / "builtin-actors-mainnet.car"
    assert first == second == expected
    assert len(origin.requests) == 2
    assert expected.read_bytes() == BUNDLE_BYTES
    assert fetcher.stats.downloads == 2
    assert fetcher.stats.cache_hits == 1
    assert fetcher.stats.bytes_downloaded > len(BUNDLE_BYTES)


async def test_cache_hit_survives_new_fetcher_instance(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        await fetcher.fetch(8, RELEASE, "mainnet")

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        await fetcher.fetch(8, RELEASE, "mainnet")

    assert len(origin.requests) == 2


async def test_corrupted_bundle_is_refetched(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    directory = tmp_path / "builtin-actors" / "v8" / RELEASE
    directory.mkdir(parents=True)
    (directory / "builtin-actors-mainnet.car").write_bytes(os.urandom(2048))
    (directory / "builtin-actors-mainnet.sha256").write_bytes(
        digest_line(BUNDLE_BYTES)
    )

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        path = await fetcher.fetch(8, RELEASE, "mainnet")

    assert path.read_bytes() == BUNDLE_BYTES
    assert len(origin.requests) == 2
    assert fetcher.stats.refetches == 1
    assert fetcher.stats.cache_hits == 0


async def test_bundle_without_digest_is_refetched(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    directory = tmp_path / "builtin-actors" / "v8" / RELEASE
    directory.mkdir(parents=True)
    (directory / "builtin-actors-mainnet.car").write_bytes(BUNDLE_BYTES)

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        path = await fetcher.fetch(8, RELEASE, "mainnet")

    assert path.read_bytes() == BUNDLE_BYTES
    assert (directory / "builtin-actors-mainnet.sha256").is_file()
    assert len(origin.requests) == 2


async def test_corrupt_origin_content_raises_integrity_error(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    origin.files[(RELEASE, "builtin-actors-mainnet.car")] = b"tampered"

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        with pytest.raises(IntegrityError, match="hash mismatch"):
            await fetcher.fetch(8, RELEASE, "mainnet")

    assert fetcher.stats.integrity_failures == 1


async def test_digest_not_found_raises_retrieval_error(origin, tmp_path):
    origin.files[(RELEASE, "builtin-actors-mainnet.car")] = BUNDLE_BYTES

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        with pytest.raises(RetrievalError, match="404") as exc:
            await fetcher.fetch(8, RELEASE, "mainnet")

    assert isinstance(exc.value.__cause__, RetrievalError)
    bundle = tmp_path / "builtin-actors" / "v8" / RELEASE / "builtin-actors-mainnet.car"
    assert not bundle.exists()
    assert origin.requests == [f"{RELEASE}/builtin-actors-mainnet.sha256"]


async def test_networks_are_isolated(origin, tmp_path):
    calib = b"calibration bundle" * 100
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    origin.publish(RELEASE, "calibrationnet", calib)

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        mainnet, calibnet = await asyncio.gather(
            fetcher.fetch(8, RELEASE, "mainnet"),
            fetcher.fetch(8, RELEASE, "calibrationnet"),
        )

    assert mainnet != calibnet
    assert mainnet.parent == calibnet.parent
    assert mainnet.read_bytes() == BUNDLE_BYTES
    assert calibnet.read_bytes() == calib


async def test_concurrent_fetches_of_one_identity_download_once(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        paths = await asyncio.gather(
            *(fetcher.fetch(8, RELEASE, "mainnet") for _ in range(5))
        )

    assert len(set(paths)) == 1
    assert len(origin.requests) == 2
    assert fetcher.stats.cache_hits == 4


async def test_injected_downloader_receives_release_and_names(tmp_path, fake_downloader):
    fetcher = BundleFetcher(tmp_path, downloader=fake_downloader)

    path = await fetcher.fetch(8, RELEASE, "mainnet")
    await fetcher.fetch(8, RELEASE, "mainnet")
    await fetcher.close()

    assert path.read_bytes() == BUNDLE_BYTES
    assert fake_downloader.calls == [
        (RELEASE, "builtin-actors-mainnet.sha256"),
        (RELEASE, "builtin-actors-mainnet.car"),
    ]
    assert fake_downloader.closed


async def test_local_write_failure_is_wrapped_as_retrieval_error(tmp_path):
    downloader = FakeDownloader(fail_with=FilesystemError("error writing bundle"))
    fetcher = BundleFetcher(tmp_path, downloader=downloader)

    with pytest.raises(RetrievalError, match="error writing bundle") as exc:
        await fetcher.fetch(8, RELEASE, "mainnet")

    assert isinstance(exc.value.__cause__, FilesystemError)


def test_construction_fails_when_family_path_is_a_file(tmp_path):
    (tmp_path / "builtin-actors").write_bytes(b"")

    with pytest.raises(FilesystemError):
        BundleFetcher(tmp_path, downloader=FakeDownloader())


async def test_invalid_identity_is_rejected_before_any_io(tmp_path, fake_downloader):
    fetcher = BundleFetcher(tmp_path, downloader=fake_downloader)

    with pytest.raises(ValueError):
        await fetcher.fetch(8, "../escape", "mainnet")

    assert fake_downloader.calls == []


async def test_verify_reports_state_without_network(tmp_path, fake_downloader):
    fetcher = BundleFetcher(tmp_path, downloader=fake_downloader)

    missing = await fetcher.verify(8, RELEASE, "mainnet")
    assert missing.status is VerificationStatus.INVALID
    assert isinstance(missing.error, FilesystemError)

    path = await fetcher.fetch(8, RELEASE, "mainnet")
    assert (await fetcher.verify(8, RELEASE, "mainnet")).is_valid

    path.write_bytes(b"corrupted")
    corrupted = await fetcher.verify(8, RELEASE, "mainnet")
    assert isinstance(corrupted.error, IntegrityError)
    assert len(fake_downloader.calls) == 2


def test_fetch_bundle_returns_cached_path_without_network(tmp_path):
    directory = tmp_path / "builtin-actors" / "v8" / RELEASE
    directory.mkdir(parents=True)
    (directory / "builtin-actors-mainnet.car").write_bytes(BUNDLE_BYTES)
    (directory / "builtin-actors-mainnet.sha256").write_bytes(
        digest_line(BUNDLE_BYTES)
    )
    config = FetcherConfig(cache_dir=tmp_path, origin_url="http://127.0.0.1:1")

    path = fetch_bundle(tmp_path, 8, RELEASE, "mainnet", config)

    assert path == directory / "builtin-actors-mainnet.car"


def test_fetch_bundle_surfaces_unreachable_origin(tmp_path):
    config = FetcherConfig(
        cache_dir=tmp_path, origin_url="http://127.0.0.1:1", connect_timeout=2
    )

    with pytest.raises(RetrievalError):
        fetch_bundle(tmp_path, 8, RELEASE, "mainnet", config)


def _populate_corrupt(tmp_path: Path) -> Path:
    directory = tmp_path / "builtin-actors" / "v8" / RELEASE
    directory.mkdir(parents=True)
    (directory / "builtin-actors-mainnet.car").write_bytes(b"corrupted bundle")
    (directory / "builtin-actors-mainnet.sha256").write_bytes(
        digest_line(BUNDLE_BYTES)
    )
    return directory / "builtin-actors-mainnet.car"


@pytest.mark.parametrize("status", [404, 503])
async def test_failed_refetch_never_returns_corrupt_bundle(origin, tmp_path, status):
    bundle = _populate_corrupt(tmp_path)
    origin.files[(RELEASE, "builtin-actors-mainnet.sha256")] = status

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        with pytest.raises(RetrievalError, match=str(status)):
            await fetcher.fetch(8, RELEASE, "mainnet")
        result = await fetcher.verify(8, RELEASE, "mainnet")

    assert bundle.read_bytes() == b"corrupted bundle"
    assert not result.is_valid
    assert fetcher.stats.cache_hits == 0
    assert fetcher.stats.downloads == 0


async def test_truncated_bundle_download_raises_retrieval_error(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    origin.files[(RELEASE, "builtin-actors-mainnet.car")] = truncated_body
    config = FetcherConfig(
        cache_dir=tmp_path, origin_url=origin.base_url, read_timeout=5
    )

    async with BundleFetcher(tmp_path, config) as fetcher:
        with pytest.raises(RetrievalError) as exc:
            await fetcher.fetch(8, RELEASE, "mainnet")
        result = await fetcher.verify(8, RELEASE, "mainnet")

    assert isinstance(exc.value.__cause__, RetrievalError)
    assert not result.is_valid


@pytest.mark.skipif(not Path("/dev/full").exists(), reason="needs /dev/full")
async def test_full_disk_during_retrieve_is_retrieval_error(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    directory = tmp_path / "builtin-actors" / "v8" / RELEASE
    directory.mkdir(parents=True)
    (directory / "builtin-actors-mainnet.sha256").symlink_to("/dev/full")

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        with pytest.raises(RetrievalError, match="No space left") as exc:
            await fetcher.fetch(8, RELEASE, "mainnet")

    assert isinstance(exc.value.__cause__, FilesystemError)
    assert not (directory / "builtin-actors-mainnet.car").exists()


async def test_raw_os_error_from_source_is_retrieval_error(tmp_path):
    downloader = FakeDownloader(fail_with=OSError(5, "Input/output error"))
    fetcher = BundleFetcher(tmp_path, downloader=downloader)

    with pytest.raises(RetrievalError, match="Input/output error") as exc:
        await fetcher.fetch(8, RELEASE, "mainnet")

    assert isinstance(exc.value.__cause__, OSError)


async def test_identity_locks_are_released_after_use(origin, tmp_path):
    origin.publish(RELEASE, "mainnet", BUNDLE_BYTES)
    origin.publish(RELEASE, "calibrationnet", BUNDLE_BYTES)

    async with _fetcher(tmp_path, origin.base_url) as fetcher:
        await asyncio.gather(
            *(fetcher.fetch(8, RELEASE, "mainnet") for _ in range(3)),
            fetcher.fetch(8, RELEASE, "calibrationnet"),
        )
        await fetcher.verify(8, RELEASE, "mainnet")
        with pytest.raises(RetrievalError):
            await fetcher.fetch(8, "v9.9.9", "mainnet")

        assert fetcher._locks == {}
    assert len(origin.requests) == 5
