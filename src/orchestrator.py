"""Top-level driver: identify shipped binaries, prepare their packages, score them."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from constants import Constants
from common.errors import PkgMatchError
from common.logging_utils import extra_context, is_debug_enabled, log_discovered_files, Timer
from analysis.pipeline import AnalysisPipeline, AnalysisReport
from compare.base import CompareStrategy
from compare.overrides import addressables_result, burst_scores
from compare.results import CompareResults, PackageCompareResult
from extract.assembly import MetadataExtractor
from extract.metadata import ModuleDefinition, read_metadata_dump
from fingerprint.cache import FingerprintCache
from registry.client import RegistryClient
from registry.retrieval import ArchiveFetcher, RetrievalPipeline
from versioning.models import HostVersion

logger = logging.getLogger(__name__)

MetadataReader = Callable[[str], ModuleDefinition]


class NoAnalyzedDataError(PkgMatchError):
    """Nothing has been analyzed for a package yet."""


def package_id_for_binary(path) -> Optional[str]:
    """Map ``Unity.Foo.Bar.dll`` style names to a package id, or None if unidentifiable."""
    name = os.path.basename(str(path))
    if not (name.startswith(Constants.BINARY_PREFIX) and name.endswith(Constants.BINARY_SUFFIX)):
        return None
    stem = name[: -len(Constants.BINARY_SUFFIX)]
    if stem in Constants.PACKAGE_ID_OVERRIDES:
        return Constants.PACKAGE_ID_OVERRIDES[stem]
    # Unity.Foo.Bar is a sub-assembly of some package, not a package of its own
    if stem.count(".") > 1:
        return None
    return Constants.PACKAGE_ID_PREFIX + stem.lower()


class MatchOrchestrator:
    """Wires registry, retrieval, analysis and comparison together."""

    def __init__(
        self,
        cache_root: Optional[str] = None,
        registry: Optional[RegistryClient] = None,
        fetcher: Optional[ArchiveFetcher] = None,
        parser=None,
        metadata_reader: Optional[MetadataReader] = None,
    ):
        """Initialize the orchestrator.

        Args:
            cache_root: Root of the registry, extraction and fingerprint caches.
            registry: Release-list client; one rooted under ``cache_root`` if omitted.
            fetcher: Archive fetcher handed to the retrieval pipeline.
            parser: Source parser handed to the analysis pipeline.
            metadata_reader: Turns a binary path into its type definitions.
        """
        root = cache_root or Constants.CACHE_ROOT
        extract_root = os.path.join(root, Constants.EXTRACTED_DIR)
        self.cache = FingerprintCache(os.path.join(root, Constants.FINGERPRINT_DIR))
        self.registry = registry or RegistryClient(os.path.join(root, Constants.REGISTRY_CACHE_DIR))
        self.retrieval = RetrievalPipeline(self.registry, self.cache, extract_root, fetcher=fetcher)
        self.analysis = AnalysisPipeline(self.cache, extract_root, parser=parser)
        self._read_metadata = metadata_reader or read_metadata_dump
        self._extractor = MetadataExtractor()

    async def prepare_package(self, binary_path: str, host_version: HostVersion) -> Optional[AnalysisReport]:
        """Retrieve and analyze every release of the binary's package eligible for ``host_version``.

        Returns:
            The analysis report, or None when the binary needs no sources.
        """
        package_id = package_id_for_binary(binary_path)
        if package_id is None or os.path.basename(binary_path) == Constants.ADDRESSABLES_BINARY:
            return None
        releases = await self.retrieval.ensure_releases_available(package_id, host_version)
        return await self.analysis.analyze_releases(package_id, releases)

    def compare_binary(
        self, binary_path: str, strategy: CompareStrategy, host_version: HostVersion
    ) -> Optional[PackageCompareResult]:
        """Score ``binary_path`` against every analyzed release eligible for ``host_version``.

        Raises:
            NoAnalyzedDataError: If no release of the package has been analyzed.
            MetadataNotFoundError: If the binary's metadata cannot be found.
            MetadataFormatError: If the binary's metadata cannot be parsed.
        """
        name = os.path.basename(binary_path)
        if name == Constants.ADDRESSABLES_BINARY:
            return addressables_result(binary_path)

        package_id = package_id_for_binary(binary_path)
        if package_id is None:
            return None
        targets = self.cache.load_eligible(package_id, host_version)
        if not targets:
            raise NoAnalyzedDataError(f"No analyzed data available for {package_id}; analyze first")

        with Timer() as timer:
            source = self._extractor.extract(package_id, self._read_metadata(binary_path))
            if name == Constants.BURST_BINARY:
                scores = burst_scores(
                    binary_path,
                    source,
                    targets,
                    strategy,
                    lambda version: self.retrieval.extraction_dir(package_id, version),
                )
            else:
                scores = {version: strategy.compare(source, target) for version, target in targets.items()}

        result = PackageCompareResult(package_id, scores, binary=binary_path)
        logger.info(
            "Compared %s against %d releases of %s",
            name,
            len(scores),
            package_id,
            extra=extra_context(
                event="compare",
                component="orchestrator",
                action="compare_binary",
                outcome="success",
                package_id=package_id,
                strategy=strategy.name,
                duration_ms=timer.duration_ms(),
            ),
        )
        if is_debug_enabled(logger):
            best = result.best()
            logger.debug(
                "Best match",
                extra=extra_context(
                    event="compare",
                    component="orchestrator",
                    action="compare_binary",
                    package_id=package_id,
                    version=str(best[0]) if best else None,
                    score=best[1] if best else None,
                ),
            )
        return result

    @staticmethod
    def discover_binaries(managed_dir: str) -> List[str]:
        """Every ``.dll`` directly inside ``managed_dir``, sorted by name."""
        root = Path(managed_dir)
        return sorted(str(p) for p in root.iterdir() if p.is_file() and p.name.endswith(Constants.BINARY_SUFFIX))

    async def run(self, managed_dir: str, strategy: CompareStrategy, host_version: HostVersion) -> CompareResults:
        """Prepare and compare every identifiable binary; per-package failures are recorded and skipped.

        Raises:
            ScoreInvariantError: If a similarity exceeds its bound.
            ZeroByteSumError: If an auxiliary binary sums to zero bytes.
        """
        results = CompareResults()
        binaries = self.discover_binaries(managed_dir)
        log_discovered_files(logger, "orchestrator", [os.path.basename(b) for b in binaries])

        for binary in binaries:
            name = os.path.basename(binary)
            package_id = package_id_for_binary(binary)
            if package_id is None:
                results.skipped.append(name)
                if is_debug_enabled(logger):
                    logger.debug(
                        "Binary does not map to a package",
                        extra=extra_context(event="decision", component="orchestrator", action="identify", target=name),
                    )
                continue
            try:
                await self.prepare_package(binary, host_version)
                result = self.compare_binary(binary, strategy, host_version)
            except PkgMatchError as exc:
                logger.error(
                    "Skipping %s (%s): %s",
                    name,
                    package_id,
                    exc,
                    extra=extra_context(
                        event="compare",
                        component="orchestrator",
                        action="run",
                        outcome="failed",
                        package_id=package_id,
                    ),
                )
                results.failures[name] = exc
                continue
            if result is not None:
                results.results[name] = result
        return results
