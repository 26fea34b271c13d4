"""CLI command for running the AI job reconciler (cron entry point).

Usage:
    python -m facet.cli [OPTIONS]
    facet-reconcile [OPTIONS]

Examples:
    # One reconcile invocation (schedule every minute from cron)
    facet-reconcile

    # Keep running on RECONCILE_INTERVAL_SECONDS
    facet-reconcile --loop

    # Verbose logging
    facet-reconcile -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from facet.core import timezone  # noqa: F401
from facet.core.config import Settings, configure_logging
from facet.core.database import setup_db_session
from facet.services.factory import build_reconciler
from facet.services.reconciler import ReconcileSummary
from facet.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile in-flight AI jobs with the provider",
        epilog="Polls submitted jobs, enforces timeouts and resubmits due retries",
    )

    parser.add_argument(
        "--loop",
        action="store_true",
        help="Run continuously every RECONCILE_INTERVAL_SECONDS instead of once",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def print_summary(summary: ReconcileSummary) -> None:
    print("\n" + "=" * 60)
    print("Reconcile Summary")
    print("=" * 60)
    print(f"Jobs checked: {summary.checked}")
    print(f"Succeeded: {summary.success}")
    print(f"Failed: {summary.failed}")
    print(f"Timed out: {summary.timeout}")
    print(f"Still processing: {summary.still_processing}")
    print(f"Poll failures: {summary.poll_failed}")
    print(f"Unknown model: {summary.unknown_model}")
    print(f"Deferred: {summary.deferred}")
    print(f"Retries submitted: {summary.retries_processed}")
    print(f"Retries failed: {summary.retries_failed}")
    if summary.error:
        print(f"\nErrors encountered: {summary.error}")
    print("=" * 60 + "\n")


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (completed with per-job errors)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    reconciler = build_reconciler(settings, uow_factory)
    if reconciler is None:
        logger.error("cli.not_configured", missing="KIE_AI_API_KEY")
        print("Error: KIE_AI_API_KEY not configured", file=sys.stderr)
        return 1

    logger.info("cli.started", loop=args.loop)

    try:
        while True:
            summary = await reconciler.run()
            print_summary(summary)
            if not args.loop:
                break
            await asyncio.sleep(settings.reconcile_interval_seconds)

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconcile interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    return 2 if summary.error else 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
