"""Constants used in the project."""

import logging
import os
import tempfile
from enum import Enum
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONNECTION_ERROR = 2
    FILE_ERROR = 1
    NO_RESULTS = 3


class Strategies(Enum):
    """Comparison strategies supported by the program.

    Args:
        Enum (string): Strategy names accepted on the command line.
    """

    BALANCED = "balanced"
    EQUAL = "equal"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL = "https://download.packages.unity.com/"
    SUPPORTED_STRATEGIES = [
        Strategies.BALANCED.value,
        Strategies.EQUAL.value,
    ]
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ANALYSIS = "[ANALYSIS]"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3

    # On-disk layout
    CACHE_ROOT = os.path.join(tempfile.gettempdir(), "pkgmatch")
    REGISTRY_CACHE_DIR = "registry"
    EXTRACTED_DIR = "extracted"
    FINGERPRINT_DIR = "fingerprints"
    FINGERPRINT_DEBUG_DUMP = False

    # Retrieval
    DOWNLOAD_MAX_CONCURRENCY = 5
    DOWNLOAD_CHUNK_BYTES = 64 * 1024
    SERIAL_DOWNLOAD_PACKAGES = ["com.unity.burst"]

    # Analysis
    ANALYSIS_QUEUE_SIZE = 64
    ANALYSIS_MAX_CONCURRENCY: Optional[int] = None
    SOURCE_FILE_SUFFIX = ".cs"
    EXCLUDED_DIR_MARKERS = ["Editor", "Test"]

    # Comparison
    TOP_RESULTS = 5
    TYPE_ALIASES: Dict[str, str] = {}

    # Binary naming
    BINARY_PREFIX = "Unity."
    BINARY_SUFFIX = ".dll"
    PACKAGE_ID_PREFIX = "com."
    PACKAGE_ID_OVERRIDES: Dict[str, Optional[str]] = {
        "Unity.Formats.Fbx.Runtime": "com.unity.formats.fbx",
        "Unity.InternalAPIEngineBridge.001": None,
        "Unity.ResourceManager": None,
    }
    ADDRESSABLES_BINARY = "Unity.Addressables.dll"
    BURST_BINARY = "Unity.Burst.dll"
    BURST_AUXILIARY_BINARIES = [
        "Unity.Burst.Cecil.dll",
        "Unity.Burst.Cecil.Mdb.dll",
        "Unity.Burst.Cecil.Pdb.dll",
        "Unity.Burst.Cecil.Rocks.dll",
        "Unity.Burst.Unsafe.dll",
    ]

    ENV_CONFIG = "PKGMATCH_CONFIG"
    ENV_LOG_LEVEL = "PKGMATCH_LOG_LEVEL"


# YAML keys mapped onto Constants attributes
_CONFIG_KEYS = {
    "registry_url": ("REGISTRY_URL", str),
    "cache_root": ("CACHE_ROOT", str),
    "request_timeout": ("REQUEST_TIMEOUT", int),
    "http_retry_max": ("HTTP_RETRY_MAX", int),
    "download_max_concurrency": ("DOWNLOAD_MAX_CONCURRENCY", int),
    "serial_download_packages": ("SERIAL_DOWNLOAD_PACKAGES", list),
    "analysis_queue_size": ("ANALYSIS_QUEUE_SIZE", int),
    "analysis_max_concurrency": ("ANALYSIS_MAX_CONCURRENCY", int),
    "top_results": ("TOP_RESULTS", int),
    "fingerprint_debug_dump": ("FINGERPRINT_DEBUG_DUMP", bool),
    "type_aliases": ("TYPE_ALIASES", dict),
}


def _default_config_path() -> str:
    return os.path.join(os.path.expanduser("~"), ".config", "pkgmatch", "pkgmatch.yml")


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the user configuration file, if one exists.

    Resolution order is the explicit ``path``, then ``PKGMATCH_CONFIG``, then
    ``~/.config/pkgmatch/pkgmatch.yml``. A missing file yields an empty dict.

    Raises:
        yaml.YAMLError: If the file exists but is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    candidate = path or os.environ.get(Constants.ENV_CONFIG) or _default_config_path()
    if not os.path.isfile(candidate):
        return {}
    with open(candidate, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {candidate} must contain a mapping")
    return data


def apply_config(data: Dict[str, Any]) -> None:
    """Apply known configuration keys onto ``Constants``; unknown keys are logged."""
    for key, value in data.items():
        target = _CONFIG_KEYS.get(key)
        if target is None:
            logger.warning("Ignoring unknown configuration key: %s", key)
            continue
        attr, kind = target
        if value is not None and not isinstance(value, kind):
            value = kind(value)
        setattr(Constants, attr, value)
