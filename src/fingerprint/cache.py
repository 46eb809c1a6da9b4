"""On-disk store of release fingerprints keyed by package id and version."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from constants import Constants
from common.fileio import atomic_write_text
from common.logging_utils import extra_context, is_debug_enabled
from versioning.models import HostVersion, PackageVersion
from versioning.parser import parse_package_version

from . import serialization
from .models import Fingerprint

logger = logging.getLogger(__name__)

_SUFFIX = ".json"
_DEBUG_SUFFIX = ".debug.json"


class FingerprintCache:
    """Fingerprints stored as ``<root>/<package_id>/<version>.json``.

    Entries are written atomically and never modified afterwards, so a
    present file is always a complete fingerprint.
    """

    def __init__(self, root: Optional[str] = None, debug_dump: Optional[bool] = None):
        """Initialize the cache.

        Args:
            root: Directory holding one subdirectory per package id.
            debug_dump: Also write an indented, enum-named ``.debug.json``.
        """
        self._root = Path(root or os.path.join(Constants.CACHE_ROOT, Constants.FINGERPRINT_DIR))
        self._debug_dump = Constants.FINGERPRINT_DEBUG_DUMP if debug_dump is None else debug_dump

    def path_for(self, package_id: str, version: PackageVersion) -> Path:
        return self._root / package_id / f"{version}{_SUFFIX}"

    def has(self, package_id: str, version: PackageVersion) -> bool:
        return self.path_for(package_id, version).is_file()

    def store(self, fingerprint: Fingerprint) -> Path:
        """Persist ``fingerprint`` and return its path."""
        path = self.path_for(fingerprint.package_id, fingerprint.version)
        atomic_write_text(path, serialization.dumps(fingerprint))
        if self._debug_dump:
            debug_path = path.with_name(f"{fingerprint.version}{_DEBUG_SUFFIX}")
            atomic_write_text(debug_path, serialization.dumps(fingerprint, readable=True))
        logger.info(
            "%s Stored fingerprint for %s %s",
            Constants.ANALYSIS,
            fingerprint.package_id,
            fingerprint.version,
            extra=extra_context(
                event="cache_write",
                component="fingerprint_cache",
                action="store",
                package_id=fingerprint.package_id,
                version=str(fingerprint.version),
            ),
        )
        return path

    def load(self, package_id: str, version: PackageVersion) -> Fingerprint:
        """Read one fingerprint.

        Raises:
            FileNotFoundError: If no fingerprint is stored for that version.
            FingerprintFormatError: If the stored document is corrupt.
        """
        path = self.path_for(package_id, version)
        return serialization.loads(path.read_text(encoding="utf-8"))

    def versions(self, package_id: str) -> List[PackageVersion]:
        """Versions with a stored fingerprint, ascending."""
        directory = self._root / package_id
        if not directory.is_dir():
            return []
        found = []
        for entry in directory.iterdir():
            name = entry.name
            if not name.endswith(_SUFFIX) or name.endswith(_DEBUG_SUFFIX) or name.startswith("."):
                continue
            try:
                found.append(parse_package_version(name[: -len(_SUFFIX)]))
            except ValueError:
                logger.warning("Ignoring unexpected file in fingerprint cache: %s", entry)
        return sorted(found)

    def load_eligible(self, package_id: str, host_version: HostVersion) -> Dict[PackageVersion, Fingerprint]:
        """Every stored fingerprint whose minimum host version admits ``host_version``."""
        results: Dict[PackageVersion, Fingerprint] = {}
        for version in self.versions(package_id):
            fingerprint = self.load(package_id, version)
            if host_version.admits(fingerprint.min_host_version):
                results[version] = fingerprint
        if is_debug_enabled(logger):
            logger.debug(
                "Loaded eligible fingerprints",
                extra=extra_context(
                    event="cache_read",
                    component="fingerprint_cache",
                    action="load_eligible",
                    package_id=package_id,
                    count=len(results),
                ),
            )
        return results
