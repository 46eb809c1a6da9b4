"""Per-release analysis: extracted sources in, cached fingerprint out.

Each release runs one producer task that reads and parses files off the event
loop and one consumer task that owns the release's ``SourceExtractor``; they
hand off through a bounded ``asyncio.Queue``, so the model is only ever
mutated from a single task.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer
from extract.declarations import ParsedSourceFile, SourceParseError, SourceParser
from extract.source import SourceExtractor
from fingerprint.cache import FingerprintCache
from fingerprint.models import Fingerprint
from versioning.models import HostVersion, PackageVersion

from .discovery import discover_source_files, read_sidecar_guid

logger = logging.getLogger(__name__)

_END_OF_FILES = object()


@dataclass
class AnalysisReport:
    """Outcome of analyzing a batch of releases of one package."""
    package_id: str
    analyzed: List[PackageVersion] = field(default_factory=list)
    skipped: List[PackageVersion] = field(default_factory=list)
    failed: Dict[PackageVersion, str] = field(default_factory=dict)


def load_source_file(path: Path, root: Path, parser: SourceParser) -> ParsedSourceFile:
    """Read and parse one file; runs in a worker thread.

    Raises:
        SourceParseError: If the file cannot be read or parsed.
    """
    relative = str(path.relative_to(root))
    try:
        text = path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as exc:
        raise SourceParseError(f"Cannot read {relative}: {exc}") from exc
    unit = parser.parse(text, relative)
    return ParsedSourceFile(path=relative, unit=unit, guid=read_sidecar_guid(path))


class AnalysisPipeline:
    """Turns extracted release sources into cached fingerprints."""

    def __init__(
        self,
        cache: FingerprintCache,
        extract_root: Optional[str] = None,
        parser: Optional[SourceParser] = None,
        queue_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        type_aliases: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the pipeline.

        Args:
            cache: Destination (and skip check) for fingerprints.
            extract_root: Root of ``<package_id>/<version>/`` source trees.
            parser: Source parser; the tree-sitter C# parser if omitted.
            queue_size: Bound of the producer/consumer queue.
            max_concurrency: Releases analyzed at once; unbounded if None.
            type_aliases: Global type alias table for extraction.
        """
        self._cache = cache
        self._extract_root = Path(extract_root or os.path.join(Constants.CACHE_ROOT, Constants.EXTRACTED_DIR))
        self._parser = parser
        self._queue_size = queue_size or Constants.ANALYSIS_QUEUE_SIZE
        self._max_concurrency = max_concurrency if max_concurrency is not None else Constants.ANALYSIS_MAX_CONCURRENCY
        self._type_aliases = type_aliases

    def _get_parser(self) -> SourceParser:
        if self._parser is None:
            from extract.csharp_parser import TreeSitterSourceParser  # pylint: disable=import-outside-toplevel
            self._parser = TreeSitterSourceParser()
        return self._parser

    def extraction_dir(self, package_id: str, version: PackageVersion) -> Path:
        return self._extract_root / package_id / str(version)

    async def analyze_releases(
        self, package_id: str, releases: Mapping[PackageVersion, HostVersion]
    ) -> AnalysisReport:
        """Analyze releases concurrently; one failing release does not stop the others."""
        report = AnalysisReport(package_id=package_id)
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None

        async def guarded(version: PackageVersion, min_host: HostVersion) -> Optional[Fingerprint]:
            if semaphore is None:
                return await self.analyze_release(package_id, version, min_host)
            async with semaphore:
                return await self.analyze_release(package_id, version, min_host)

        items = sorted(releases.items())
        results = await asyncio.gather(
            *(guarded(version, min_host) for version, min_host in items),
            return_exceptions=True,
        )
        for (version, _), result in zip(items, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.error(
                    "%s Analysis of %s %s failed: %s",
                    Constants.ANALYSIS,
                    package_id,
                    version,
                    result,
                    extra=extra_context(
                        event="analysis",
                        component="analysis_pipeline",
                        action="analyze_release",
                        outcome="failed",
                        package_id=package_id,
                        version=str(version),
                    ),
                )
                report.failed[version] = str(result)
            elif result is None:
                report.skipped.append(version)
            else:
                report.analyzed.append(version)
        return report

    async def analyze_release(
        self, package_id: str, version: PackageVersion, min_host_version: HostVersion
    ) -> Optional[Fingerprint]:
        """Build and cache the fingerprint of one extracted release.

        Returns:
            The new fingerprint, or None if it was already cached or the
            release has not been extracted.

        Raises:
            SourceParseError: If any file cannot be read or parsed; nothing is cached.
        """
        if self._cache.has(package_id, version):
            if is_debug_enabled(logger):
                logger.debug(
                    "Release already analyzed",
                    extra=extra_context(
                        event="cache_hit",
                        component="analysis_pipeline",
                        action="analyze_release",
                        package_id=package_id,
                        version=str(version),
                    ),
                )
            return None

        root = self.extraction_dir(package_id, version)
        if not root.is_dir():
            logger.error(
                "%s %s %s has not been extracted (%s); skipping",
                Constants.ANALYSIS,
                package_id,
                version,
                root,
            )
            return None

        parser = self._get_parser()
        files = await asyncio.to_thread(discover_source_files, root)
        extractor = SourceExtractor(package_id, version, min_host_version, self._type_aliases)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        with Timer() as timer:
            producer = asyncio.create_task(self._produce(files, root, parser, queue))
            consumer = asyncio.create_task(self._consume(extractor, queue))
            try:
                await asyncio.gather(producer, consumer)
            except BaseException:
                producer.cancel()
                consumer.cancel()
                await asyncio.gather(producer, consumer, return_exceptions=True)
                raise

        fingerprint = extractor.finalize()
        await asyncio.to_thread(self._cache.store, fingerprint)
        logger.info(
            "%s Analyzed %s %s (%d files)",
            Constants.ANALYSIS,
            package_id,
            version,
            len(files),
            extra=extra_context(
                event="analysis",
                component="analysis_pipeline",
                action="analyze_release",
                outcome="success",
                package_id=package_id,
                version=str(version),
                duration_ms=timer.duration_ms(),
            ),
        )
        return fingerprint

    @staticmethod
    async def _produce(files: List[Path], root: Path, parser: SourceParser, queue: asyncio.Queue) -> None:
        for path in files:
            parsed = await asyncio.to_thread(load_source_file, path, root, parser)
            await queue.put(parsed)
        await queue.put(_END_OF_FILES)

    @staticmethod
    async def _consume(extractor: SourceExtractor, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            if item is _END_OF_FILES:
                return
            extractor.add_file(item)
