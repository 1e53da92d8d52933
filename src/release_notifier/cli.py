"""Command line entry point.

Usage:
    release-notifier notify            # comment on PRs/issues for $VERSION
    release-notifier notify --dry-run
    release-notifier prune-nightlies   # delete nightly releases except $VERSION

Configuration comes from the environment (see ``release_notifier.config``)
and an optional ``--config`` YAML file.

Exit codes: 0 on success, 1 when the run failed, 2 for bad configuration.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from release_notifier.config import NotifierConfig, load_config
from release_notifier.errors import ConfigurationError, DispatchError, ReleaseNotifierError
from release_notifier.logging_config import LOG_LEVELS, get_logger, setup_logging
from release_notifier.runner import build_client, prune, run

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-notifier",
        description="Comment on the pull requests and issues shipped in a release",
    )
    parser.add_argument("--config", "-c", help="YAML file with settings (env vars take precedence)")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="DEBUG, INFO, WARNING or ERROR (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would be done without writing to the forge",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("notify", help="Comment on PRs and issues included in the release (default)")
    sub.add_parser("prune-nightlies", help="Delete nightly releases other than the current one")
    return parser


async def _dispatch(command: str, config: NotifierConfig) -> None:
    async with build_client(config) as client:
        if command == "prune-nightlies":
            deleted = await prune(config, client)
            logger.info("prune_complete", deleted=deleted)
        else:
            await run(config, client)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load configuration and run the requested command."""
    args = build_parser().parse_args(argv)

    try:
        setup_logging(log_level=args.log_level)
        config = load_config(config_path=args.config)
    except ConfigurationError as exc:
        logger.error("configuration_error", error=str(exc))
        return EXIT_CONFIG

    if args.dry_run:
        config = config.model_copy(update={"dry_run": True})

    try:
        asyncio.run(_dispatch(args.command or "notify", config))
    except DispatchError as exc:
        for failure in exc.failures:
            logger.error("operation_failed", failure=failure.describe())
        logger.error("run_failed", failures=len(exc.failures))
        return EXIT_FAILURE
    except ReleaseNotifierError as exc:
        logger.error("run_failed", error=str(exc), error_type=type(exc).__name__)
        return EXIT_FAILURE

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
