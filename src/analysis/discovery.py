"""Source file discovery inside an extracted release."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from constants import Constants
from common.logging_utils import is_debug_enabled, log_discovered_files

logger = logging.getLogger(__name__)

_VCS_DIRECTORIES = {"cvs"}
_GUID_PREFIX = "guid: "


def _excluded_directory(name: str, markers: Iterable[str]) -> bool:
    if name.startswith(".") or name.endswith("~") or name.lower() in _VCS_DIRECTORIES:
        return True
    return any(marker in name for marker in markers)


def is_excluded(relative: Path, markers: Optional[Sequence[str]] = None) -> bool:
    """True if a release-relative path must not contribute to the fingerprint.

    Editor-only and test directories, hidden or ``~``-suffixed directories,
    VCS directories and ``.tmp`` files are excluded.
    """
    markers = Constants.EXCLUDED_DIR_MARKERS if markers is None else markers
    *directories, filename = relative.parts
    if filename.startswith(".") or filename.endswith(".tmp"):
        return True
    return any(_excluded_directory(directory, markers) for directory in directories)


def discover_source_files(
    root: Path,
    suffix: Optional[str] = None,
    markers: Optional[Sequence[str]] = None,
) -> List[Path]:
    """Every non-excluded source file below ``root``, in a stable order."""
    suffix = suffix or Constants.SOURCE_FILE_SUFFIX
    markers = Constants.EXCLUDED_DIR_MARKERS if markers is None else markers
    found: List[Path] = []
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not _excluded_directory(d, markers))
        for filename in sorted(filenames):
            if not filename.endswith(suffix):
                continue
            path = Path(current) / filename
            if not is_excluded(path.relative_to(root), markers):
                found.append(path)
    if is_debug_enabled(logger):
        log_discovered_files(logger, "analysis", (str(p) for p in found))
    return found


def read_sidecar_guid(source: Path) -> Optional[str]:
    """Provenance token from ``<source>.meta``: its first ``guid: `` line."""
    meta = source.with_name(source.name + ".meta")
    if not meta.is_file():
        return None
    with open(meta, encoding="utf-8", errors="replace") as handle:
        for line in handle:
            if line.startswith(_GUID_PREFIX):
                return line[len(_GUID_PREFIX):].strip()
    return None
