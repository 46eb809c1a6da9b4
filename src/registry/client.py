"""Package registry client: release lists with on-disk caching."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import semantic_version

from constants import Constants
from common.errors import MalformedInputError, PkgMatchError
from common.fileio import atomic_write_text
from common.http_client import robust_get
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from versioning.models import HostVersion, PackageVersion
from versioning.parser import parse_minimum_host, parse_package_version

logger = logging.getLogger(__name__)

_PACKAGE_HEADERS = {
    "Accept": "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8, */*"
}


class RegistryFetchError(PkgMatchError):
    """The registry did not return a release list."""


class RegistryPayloadError(MalformedInputError):
    """A fetched or cached release list could not be parsed."""


@dataclass(frozen=True)
class ReleaseInfo:
    """One published release of a package."""
    version: PackageVersion
    min_host_version: HostVersion
    tarball: str


@dataclass
class RegistryDescriptor:
    """Every parsable release of a package, keyed by version text."""
    package_id: str
    releases: Dict[str, ReleaseInfo] = field(default_factory=dict)

    def eligible(self, host_version: HostVersion) -> Dict[PackageVersion, ReleaseInfo]:
        """Releases whose declared minimum host version admits ``host_version``."""
        return {
            info.version: info
            for info in self.releases.values()
            if host_version.admits(info.min_host_version)
        }


def _release_from_entry(package_id: str, key: str, entry: Any) -> Optional[ReleaseInfo]:
    if not semantic_version.validate(key):
        logger.warning("Skipping non-semver release %s of %s", key, package_id)
        return None
    try:
        version = parse_package_version(key)
    except ValueError:
        logger.warning("Skipping unparsable release %s of %s", key, package_id)
        return None
    try:
        tarball = entry["dist"]["tarball"]
        min_host = parse_minimum_host(entry.get("unity"), entry.get("unityRelease"))
    except (KeyError, TypeError, AttributeError) as exc:
        raise RegistryPayloadError(f"Release {key} of {package_id} lacks a distribution archive") from exc
    except ValueError as exc:
        raise RegistryPayloadError(f"Release {key} of {package_id} has an invalid host version: {exc}") from exc
    return ReleaseInfo(version=version, min_host_version=min_host, tarball=tarball)


def parse_release_list(package_id: str, text: str) -> RegistryDescriptor:
    """Parse a registry document into a descriptor.

    Raises:
        RegistryPayloadError: If ``text`` is not JSON or lacks a ``versions`` map.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RegistryPayloadError(f"Release list for {package_id} is not valid JSON: {exc}") from exc
    versions = data.get("versions") if isinstance(data, dict) else None
    if not isinstance(versions, dict):
        raise RegistryPayloadError(f"Release list for {package_id} has no 'versions' map")

    descriptor = RegistryDescriptor(package_id=package_id)
    for key, entry in versions.items():
        info = _release_from_entry(package_id, key, entry)
        if info is not None:
            descriptor.releases[key] = info
    return descriptor


class RegistryClient:
    """Fetches release lists, caching each raw payload verbatim by package id."""

    def __init__(self, cache_dir: Optional[str] = None, registry_url: Optional[str] = None):
        """Initialize the client.

        Args:
            cache_dir: Directory for ``<package_id>.json`` payloads.
            registry_url: Registry base URL.
        """
        self._cache_dir = Path(cache_dir or os.path.join(Constants.CACHE_ROOT, Constants.REGISTRY_CACHE_DIR))
        self._registry_url = (registry_url or Constants.REGISTRY_URL).rstrip("/") + "/"

    def cache_path(self, package_id: str) -> Path:
        return self._cache_dir / f"{package_id}.json"

    def fetch_release_list(self, package_id: str) -> RegistryDescriptor:
        """Return the package's release list, hitting the network only on a cache miss.

        Raises:
            RegistryFetchError: If the registry answers with a non-success status.
            RegistryPayloadError: If the payload (fresh or cached) cannot be parsed.
        """
        path = self.cache_path(package_id)
        if path.is_file():
            if is_debug_enabled(logger):
                logger.debug(
                    "Registry cache hit",
                    extra=extra_context(
                        event="cache_hit",
                        component="registry_client",
                        action="fetch_release_list",
                        package_id=package_id,
                    ),
                )
            return parse_release_list(package_id, path.read_text(encoding="utf-8"))

        url = self._registry_url + package_id
        with Timer() as timer:
            status, _, text = robust_get(url, headers=_PACKAGE_HEADERS)
        if status != 200:
            logger.error(
                "Registry request for %s failed with status %s",
                package_id,
                status,
                extra=extra_context(
                    event="http_error",
                    component="registry_client",
                    action="fetch_release_list",
                    outcome="error_status",
                    status_code=status,
                    target=safe_url(url),
                    duration_ms=timer.duration_ms(),
                ),
            )
            raise RegistryFetchError(f"Registry returned status {status} for {package_id}")

        descriptor = parse_release_list(package_id, text)
        atomic_write_text(path, text)
        logger.info("Fetched %d releases for %s", len(descriptor.releases), package_id)
        return descriptor
