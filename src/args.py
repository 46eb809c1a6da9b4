"""Argument parsing functionality for pkgmatch."""

import argparse
from constants import Constants

def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="pkgmatch",
        description=(
            "pkgmatch - Identify which package releases a game build ships"
        ),
        add_help=True,
    )

    parser.add_argument("-m", "--managed",
                        dest="MANAGED_DIR",
                        help="Managed assembly directory of the build (<Game>_Data/Managed)",
                        action="store", type=str,
                        required=True)
    parser.add_argument("-u", "--host-version",
                        dest="HOST_VERSION",
                        help="Engine version the build was made with, i.e: 2020.3.15f1",
                        action="store", type=str,
                        required=True)
    parser.add_argument("-s", "--strategy",
                        dest="STRATEGY",
                        help="Comparison strategy (default: balanced)",
                        action="store", type=str.lower,
                        default="balanced",
                        choices=Constants.SUPPORTED_STRATEGIES)
    parser.add_argument("-n", "--top",
                        dest="TOP",
                        help="Number of candidate versions reported per binary",
                        action="store", type=int)

    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML)",
                        action="store",
                        type=str)
    parser.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Root directory for registry, extraction and fingerprint caches",
                        action="store",
                        type=str)
    parser.add_argument("--max-downloads",
                        dest="MAX_DOWNLOADS",
                        help="Parallel archive downloads per package",
                        action="store",
                        type=int)
    parser.add_argument("--debug-dump",
                        dest="DEBUG_DUMP",
                        help="Also write human-readable fingerprints beside the cached ones",
                        action="store_true")

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    return parser.parse_args(argv)
