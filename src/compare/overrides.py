"""Package-specific scoring for binaries the structural strategies handle poorly.

Addressables records its package version in the player build's settings, so
no comparison is needed. Burst ships helper assemblies that are byte-compared
against the copies inside each release archive.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from constants import Constants
from common.errors import MalformedInputError
from common.fileio import byte_sum
from common.logging_utils import extra_context, is_debug_enabled
from fingerprint.models import Fingerprint
from versioning.models import PackageVersion
from versioning.parser import parse_package_version

from .base import CompareStrategy, check_bound
from .results import PackageCompareResult

logger = logging.getLogger(__name__)

ADDRESSABLES_PACKAGE_ID = "com.unity.addressables"
BURST_PACKAGE_ID = "com.unity.burst"
ADDRESSABLES_VERSION_KEY = "m_AddressablesVersion"


class SettingsFormatError(MalformedInputError):
    """Addressables settings exist but carry no usable version."""


class ZeroByteSumError(ArithmeticError):
    """A source binary sums to zero bytes, so it cannot be a divisor."""


def addressables_settings_path(binary_path) -> Path:
    """``<Game>_Data/StreamingAssets/aa/settings.json`` for ``<Game>_Data/Managed/<binary>``."""
    return Path(binary_path).parent.parent / "StreamingAssets" / "aa" / "settings.json"


def addressables_result(binary_path) -> Optional[PackageCompareResult]:
    """Read the Addressables version straight from the build's settings.

    Returns:
        {version: 1.0}, or None when the settings file is missing.

    Raises:
        SettingsFormatError: If the file is not JSON or lacks a parsable version.
    """
    settings = addressables_settings_path(binary_path)
    if not settings.is_file():
        logger.error(
            "Addressables settings not found at %s",
            settings,
            extra=extra_context(
                event="not_found",
                component="overrides",
                action="addressables",
                package_id=ADDRESSABLES_PACKAGE_ID,
            ),
        )
        return None
    try:
        data = json.loads(settings.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        raise SettingsFormatError(f"Cannot read {settings}: {exc}") from exc
    text = data.get(ADDRESSABLES_VERSION_KEY) if isinstance(data, dict) else None
    if not isinstance(text, str):
        raise SettingsFormatError(f"{settings} has no {ADDRESSABLES_VERSION_KEY}")
    try:
        version = parse_package_version(text)
    except ValueError as exc:
        raise SettingsFormatError(f"{settings}: {exc}") from exc
    return PackageCompareResult(ADDRESSABLES_PACKAGE_ID, {version: 1.0}, binary=str(binary_path))


def byte_similarity(source: Path, target: Path) -> float:
    """``1 - |sum(source) - sum(target)| / sum(source)`` over raw byte values.

    Raises:
        ZeroByteSumError: If the source sums to zero.
    """
    source_sum = byte_sum(source)
    if source_sum == 0:
        raise ZeroByteSumError(f"{source} has a byte sum of zero")
    return 1 - abs(source_sum - byte_sum(target)) / source_sum


def _find_in_release(release_dir: Path, name: str) -> Optional[Path]:
    if not release_dir.is_dir():
        return None
    return next((p for p in sorted(release_dir.rglob(name)) if p.is_file()), None)


def burst_scores(
    binary_path,
    source: Fingerprint,
    targets: Mapping[PackageVersion, Fingerprint],
    strategy: CompareStrategy,
    release_dir: Callable[[PackageVersion], Path],
) -> Dict[PackageVersion, float]:
    """Structural score of the primary binary averaged with auxiliary byte similarities.

    Only auxiliary binaries present beside ``binary_path`` contribute; one
    absent from a release contributes 0.

    Raises:
        ZeroByteSumError: If a present auxiliary binary sums to zero.
        ScoreInvariantError: If an average exceeds 1.
    """
    managed = Path(binary_path).parent
    auxiliaries = [managed / name for name in Constants.BURST_AUXILIARY_BINARIES if (managed / name).is_file()]
    scores: Dict[PackageVersion, float] = {}
    for version, target in targets.items():
        total = strategy.compare(source, target)
        root = release_dir(version)
        for auxiliary in auxiliaries:
            match = _find_in_release(root, auxiliary.name)
            similarity = byte_similarity(auxiliary, match) if match is not None else 0.0
            if is_debug_enabled(logger):
                logger.debug(
                    "Byte similarity of %s against %s: %s",
                    auxiliary.name,
                    version,
                    similarity,
                    extra=extra_context(
                        event="compare",
                        component="overrides",
                        action="burst",
                        package_id=BURST_PACKAGE_ID,
                        version=str(version),
                    ),
                )
            total += similarity
        scores[version] = check_bound(total / (1 + len(auxiliaries)), 1.0, f"burst {version}")
    return scores
