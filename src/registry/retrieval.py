"""Bounded-concurrency download and extraction of release archives."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tarfile
import uuid
import zlib
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

import aiohttp

from constants import Constants
from common.fileio import is_non_empty_dir
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from fingerprint.cache import FingerprintCache
from versioning.models import HostVersion, PackageVersion

from .client import RegistryClient, ReleaseInfo

logger = logging.getLogger(__name__)

# Failures that abandon a single release; it is retried on a later run.
_RELEASE_FAILURES = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    tarfile.TarError,
    EOFError,
    zlib.error,
)


class ArchiveFetcher(Protocol):
    """Streams a remote archive into a local file."""

    async def fetch(self, url: str, destination: Path) -> None:
        ...


class AiohttpArchiveFetcher:
    """``ArchiveFetcher`` backed by a shared ``aiohttp.ClientSession``."""

    def __init__(self, timeout: Optional[int] = None, chunk_size: Optional[int] = None):
        """Initialize the fetcher.

        Args:
            timeout: Total per-request timeout in seconds.
            chunk_size: Bytes read from the response per iteration.
        """
        self._timeout = aiohttp.ClientTimeout(total=None, sock_read=timeout or Constants.REQUEST_TIMEOUT)
        self._chunk_size = chunk_size or Constants.DOWNLOAD_CHUNK_BYTES
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> aiohttp.ClientSession:
        """Start the HTTP session if needed and return it."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AiohttpArchiveFetcher":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def fetch(self, url: str, destination: Path) -> None:
        session = await self.start()
        async with session.get(url) as response:
            response.raise_for_status()
            with open(destination, "wb") as handle:
                async for chunk in response.content.iter_chunked(self._chunk_size):
                    handle.write(chunk)


def unpack_archive(archive: Path, destination: Path) -> None:
    """Decompress and unpack a gzip tar archive into ``destination``."""
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(destination, filter="data")


def _remove(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
    elif path.exists():
        path.unlink()


class RetrievalPipeline:
    """Makes every host-eligible release of a package available on disk.

    A release directory is committed by renaming a fully unpacked staging
    directory, so an existing non-empty directory is always complete.
    """

    def __init__(
        self,
        registry: RegistryClient,
        cache: FingerprintCache,
        extract_root: Optional[str] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        max_concurrency: Optional[int] = None,
        serial_packages: Optional[Iterable[str]] = None,
    ):
        """Initialize the pipeline.

        Args:
            registry: Release-list source.
            cache: Fingerprint cache consulted to skip analyzed releases.
            extract_root: Root of ``<package_id>/<version>/`` extraction dirs.
            fetcher: Archive fetcher; an aiohttp-backed one is created per run if omitted.
            max_concurrency: Parallel downloads per package.
            serial_packages: Package ids always downloaded one at a time.
        """
        self._registry = registry
        self._cache = cache
        self._extract_root = Path(extract_root or os.path.join(Constants.CACHE_ROOT, Constants.EXTRACTED_DIR))
        self._fetcher = fetcher
        self._max_concurrency = max_concurrency or Constants.DOWNLOAD_MAX_CONCURRENCY
        self._serial_packages = set(
            Constants.SERIAL_DOWNLOAD_PACKAGES if serial_packages is None else serial_packages
        )

    def extraction_dir(self, package_id: str, version: PackageVersion) -> Path:
        return self._extract_root / package_id / str(version)

    def concurrency_for(self, package_id: str) -> int:
        return 1 if package_id in self._serial_packages else self._max_concurrency

    async def ensure_releases_available(
        self, package_id: str, host_version: HostVersion
    ) -> Dict[PackageVersion, HostVersion]:
        """Download and extract every eligible release that is neither analyzed nor extracted.

        Returns:
            Every eligible version mapped to its minimum host version.

        Raises:
            RegistryFetchError: If the release list cannot be fetched.
            RegistryPayloadError: If the release list cannot be parsed.
        """
        descriptor = await asyncio.to_thread(self._registry.fetch_release_list, package_id)
        eligible = descriptor.eligible(host_version)

        pending = []
        for version, info in sorted(eligible.items()):
            if self._cache.has(package_id, version):
                continue
            if is_non_empty_dir(self.extraction_dir(package_id, version)):
                continue
            pending.append(info)

        logger.info(
            "%s: %d of %d releases eligible for host %s, %d to download",
            package_id,
            len(eligible),
            len(descriptor.releases),
            host_version,
            len(pending),
            extra=extra_context(
                event="decision",
                component="retrieval",
                action="ensure_releases_available",
                package_id=package_id,
                count=len(pending),
            ),
        )

        if pending:
            semaphore = asyncio.Semaphore(self.concurrency_for(package_id))
            if self._fetcher is not None:
                await self._download_all(package_id, pending, semaphore, self._fetcher)
            else:
                async with AiohttpArchiveFetcher() as fetcher:
                    await self._download_all(package_id, pending, semaphore, fetcher)

        return {version: info.min_host_version for version, info in eligible.items()}

    async def _download_all(self, package_id, pending, semaphore, fetcher: ArchiveFetcher) -> None:
        await asyncio.gather(
            *(self._retrieve(package_id, info, semaphore, fetcher) for info in pending)
        )

    async def _retrieve(
        self,
        package_id: str,
        info: ReleaseInfo,
        semaphore: asyncio.Semaphore,
        fetcher: ArchiveFetcher,
    ) -> bool:
        """Fetch and unpack one release; failures are logged and reported as False."""
        async with semaphore:
            target = self.extraction_dir(package_id, info.version)
            token = uuid.uuid4().hex
            archive = target.parent / f".{target.name}.{token}.tgz"
            staging = target.parent / f".{target.name}.{token}.staging"
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with Timer() as timer:
                    await fetcher.fetch(info.tarball, archive)
                    await asyncio.to_thread(unpack_archive, archive, staging)
                    if target.exists():
                        _remove(target)
                    os.replace(staging, target)
            except _RELEASE_FAILURES as exc:
                logger.error(
                    "Failed to retrieve %s %s from %s: %s",
                    package_id,
                    info.version,
                    safe_url(info.tarball),
                    exc,
                    extra=extra_context(
                        event="download",
                        component="retrieval",
                        action="retrieve",
                        outcome="failed",
                        package_id=package_id,
                        version=str(info.version),
                    ),
                )
                return False
            finally:
                _remove(archive)
                _remove(staging)

            if is_debug_enabled(logger):
                logger.debug(
                    "Release extracted",
                    extra=extra_context(
                        event="download",
                        component="retrieval",
                        action="retrieve",
                        outcome="success",
                        package_id=package_id,
                        version=str(info.version),
                        duration_ms=timer.duration_ms(),
                    ),
                )
            return True
