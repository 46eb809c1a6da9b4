"""Tests for release retrieval: eligibility gating, idempotence and failure isolation."""

import asyncio
import json
import tarfile
from unittest.mock import MagicMock

import pytest

pytest.importorskip("aiohttp")

from conftest import RecordingFetcher, build_archive, registry_payload
from fingerprint.cache import FingerprintCache
from fingerprint.models import Fingerprint
from registry.client import RegistryFetchError, parse_release_list
from registry.retrieval import AiohttpArchiveFetcher, RetrievalPipeline, unpack_archive
from versioning.parser import parse_host_version, parse_package_version

URL_1 = "https://download.example/com.unity.sample-1.0.0.tgz"
URL_2 = "https://download.example/com.unity.sample-2.0.0.tgz"
URL_3 = "https://download.example/com.unity.sample-1.1.0.tgz"


def _registry(releases):
    registry = MagicMock()
    registry.fetch_release_list.return_value = parse_release_list(
        "com.unity.sample", json.dumps(registry_payload(releases))
    )
    return registry


def _archives(tmp_path, *urls):
    archives = {}
    for index, url in enumerate(urls):
        archives[url] = build_archive(
            tmp_path / f"archive{index}.tgz",
            {"package/Runtime/Widget.cs": "Widget", "package/package.json": "{}"},
        )
    return archives


def _pipeline(tmp_path, registry, fetcher, **kwargs):
    cache = FingerprintCache(str(tmp_path / "fingerprints"), debug_dump=False)
    return RetrievalPipeline(registry, cache, str(tmp_path / "extracted"), fetcher=fetcher, **kwargs), cache


class TestRetrievalPipeline:
    """Tests for RetrievalPipeline.ensure_releases_available."""

    def test_only_eligible_releases_downloaded(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1), "2.0.0": ("2021.1", URL_2)})
        fetcher = RecordingFetcher(_archives(tmp_path, URL_1, URL_2))
        pipeline, _ = _pipeline(tmp_path, registry, fetcher)

        available = asyncio.run(pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3")))

        assert list(available) == [parse_package_version("1.0.0")]
        assert available[parse_package_version("1.0.0")] == parse_host_version("2020.1")
        assert fetcher.requested == [URL_1]
        extracted = tmp_path / "extracted" / "com.unity.sample" / "1.0.0"
        assert (extracted / "package" / "Runtime" / "Widget.cs").read_text(encoding="utf-8") == "Widget"
        assert not (tmp_path / "extracted" / "com.unity.sample" / "2.0.0").exists()

    def test_second_run_downloads_nothing(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1)})
        fetcher = RecordingFetcher(_archives(tmp_path, URL_1))
        pipeline, _ = _pipeline(tmp_path, registry, fetcher)
        host = parse_host_version("2020.3")

        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", host))
        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", host))

        assert fetcher.requested == [URL_1]

    def test_analyzed_release_not_downloaded(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1)})
        fetcher = RecordingFetcher(_archives(tmp_path, URL_1))
        pipeline, cache = _pipeline(tmp_path, registry, fetcher)
        cache.store(Fingerprint("com.unity.sample", parse_package_version("1.0.0")))

        available = asyncio.run(pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3")))

        assert fetcher.requested == []
        assert parse_package_version("1.0.0") in available

    def test_failed_download_is_skipped_and_cleaned_up(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1), "1.1.0": ("2020.1", URL_3)})
        fetcher = RecordingFetcher(_archives(tmp_path, URL_1, URL_3), failing={URL_3})
        pipeline, _ = _pipeline(tmp_path, registry, fetcher)

        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3")))

        package_dir = tmp_path / "extracted" / "com.unity.sample"
        assert sorted(p.name for p in package_dir.iterdir()) == ["1.0.0"]

    def test_corrupt_archive_is_skipped(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1)})
        broken = tmp_path / "broken.tgz"
        broken.write_bytes(b"not a gzip stream")
        pipeline, _ = _pipeline(tmp_path, registry, RecordingFetcher({URL_1: broken}))

        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3")))

        package_dir = tmp_path / "extracted" / "com.unity.sample"
        assert list(package_dir.iterdir()) == []

    def test_registry_failure_propagates(self, tmp_path):
        registry = MagicMock()
        registry.fetch_release_list.side_effect = RegistryFetchError("status 503")
        pipeline, _ = _pipeline(tmp_path, registry, RecordingFetcher({}))

        with pytest.raises(RegistryFetchError):
            asyncio.run(pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3")))

    def test_download_width(self, tmp_path):
        releases = {f"1.{i}.0": ("2020.1", f"https://download.example/{i}.tgz") for i in range(4)}
        archives = _archives(tmp_path, *(url for _, url in releases.values()))
        host = parse_host_version("2020.3")

        parallel = RecordingFetcher(archives, delay=0.05)
        pipeline, _ = _pipeline(tmp_path / "a", _registry(releases), parallel, max_concurrency=2)
        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", host))
        assert parallel.max_active == 2

        serial = RecordingFetcher(archives, delay=0.01)
        pipeline, _ = _pipeline(
            tmp_path / "b", _registry(releases), serial, max_concurrency=4, serial_packages=["com.unity.sample"]
        )
        asyncio.run(pipeline.ensure_releases_available("com.unity.sample", host))
        assert serial.max_active == 1
        assert len(serial.requested) == 4

    def test_concurrency_defaults(self, tmp_path):
        pipeline, _ = _pipeline(tmp_path, MagicMock(), RecordingFetcher({}))
        assert pipeline.concurrency_for("com.unity.burst") == 1
        assert pipeline.concurrency_for("com.unity.sample") == 5

    def test_cancelled_download_commits_nothing(self, tmp_path):
        registry = _registry({"1.0.0": ("2020.1", URL_1)})

        async def scenario():
            started = asyncio.Event()

            class StallingFetcher:
                async def fetch(self, url, destination):
                    destination.write_bytes(b"partial")
                    started.set()
                    await asyncio.sleep(3600)

            pipeline, _ = _pipeline(tmp_path, registry, StallingFetcher())
            task = asyncio.create_task(
                pipeline.ensure_releases_available("com.unity.sample", parse_host_version("2020.3"))
            )
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        package_dir = tmp_path / "extracted" / "com.unity.sample"
        assert list(package_dir.iterdir()) == []


def test_unpack_rejects_escaping_members(tmp_path):
    archive = build_archive(tmp_path / "evil.tgz", {"../escape.txt": "x"})
    with pytest.raises(tarfile.TarError):
        unpack_archive(archive, tmp_path / "out")
    assert not (tmp_path / "escape.txt").exists()


def test_fetcher_reuses_one_session():
    async def scenario():
        fetcher = AiohttpArchiveFetcher(timeout=5)
        session = await fetcher.start()
        try:
            assert await fetcher.start() is session
        finally:
            await fetcher.stop()
        assert session.closed

    asyncio.run(scenario())
