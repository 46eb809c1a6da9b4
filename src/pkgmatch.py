"""pkgmatch - identify the package releases shipped inside a game build

    Returns:
        int: Exit code
"""
import asyncio
import logging
import os
import sys

import yaml

from constants import ExitCodes, Constants
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from args import parse_args
from cli_config import apply_cli_overrides, load_config_file
from compare.results import CompareResults
from compare.selection import get_strategy
from orchestrator import MatchOrchestrator
from registry.client import RegistryFetchError
from versioning.parser import parse_host_version

logger = logging.getLogger(__name__)


def render_results(results: CompareResults, top_n: int) -> str:
    """Plain-text report: one block per binary with its best candidate versions."""
    lines = []
    for name in sorted(results.results):
        result = results.results[name]
        lines.append(f"{name} ({result.package_id})")
        ranked = result.ranked(top_n)
        if not ranked:
            lines.append("    no eligible releases")
        for version, score in ranked:
            lines.append(f"    {str(version):<24} {score:.4f}")
    for name in sorted(results.failures):
        lines.append(f"{name}: failed ({results.failures[name]})")
    return "\n".join(lines)


def exit_code_for(results: CompareResults) -> ExitCodes:
    if results.has_scores():
        return ExitCodes.SUCCESS
    if any(isinstance(exc, RegistryFetchError) for exc in results.failures.values()):
        return ExitCodes.CONNECTION_ERROR
    return ExitCodes.NO_RESULTS


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    # Honor CLI --loglevel by passing it to centralized logger via env
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging(getattr(args, "LOG_FILE", None))

    try:
        load_config_file(args)
        apply_cli_overrides(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    try:
        host_version = parse_host_version(args.HOST_VERSION)
    except ValueError as exc:
        logger.error("%s", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)
    if not os.path.isdir(args.MANAGED_DIR):
        logger.error("Managed directory not found: %s, aborting", args.MANAGED_DIR)
        sys.exit(ExitCodes.FILE_ERROR.value)

    strategy = get_strategy(args.STRATEGY)
    logger.info("Matching %s for host %s using the %s strategy", args.MANAGED_DIR, host_version, strategy.name)

    orchestrator = MatchOrchestrator()
    results = asyncio.run(orchestrator.run(args.MANAGED_DIR, strategy, host_version))

    report = render_results(results, Constants.TOP_RESULTS)
    if report:
        print(report)

    code = exit_code_for(results)
    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(
                event="function_exit",
                component="cli",
                action="main",
                outcome=code.name.lower(),
                count=len(results.results),
            )
        )
    sys.exit(code.value)


if __name__ == "__main__":
    main()
