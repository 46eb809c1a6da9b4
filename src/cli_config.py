"""CLI configuration: the YAML file first, then command-line overrides.

Kept out of pkgmatch.py to keep the entrypoint slim. Command-line values have
the highest precedence.
"""

from __future__ import annotations

import logging

from constants import Constants, _load_yaml_config, apply_config

logger = logging.getLogger(__name__)


def load_config_file(args) -> None:
    """Apply the configuration file named by ``--config`` (or the default locations).

    Raises:
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the file does not contain a mapping.
    """
    data = _load_yaml_config(getattr(args, "CONFIG", None))
    if data:
        logger.debug("Loaded %d configuration keys", len(data))
    apply_config(data)


def apply_cli_overrides(args) -> None:
    """Apply command-line tunables onto ``Constants``."""
    if getattr(args, "CACHE_DIR", None):
        Constants.CACHE_ROOT = args.CACHE_DIR
    if getattr(args, "MAX_DOWNLOADS", None) is not None:
        if args.MAX_DOWNLOADS < 1:
            raise ValueError("--max-downloads must be at least 1")
        Constants.DOWNLOAD_MAX_CONCURRENCY = int(args.MAX_DOWNLOADS)
    if getattr(args, "TOP", None) is not None:
        if args.TOP < 1:
            raise ValueError("--top must be at least 1")
        Constants.TOP_RESULTS = int(args.TOP)
    if getattr(args, "DEBUG_DUMP", False):
        Constants.FINGERPRINT_DEBUG_DUMP = True
