"""
Command-line entry point for the facility scrapers.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import Settings
from .crawl_controller import CrawlController
from .errors import ScraperError
from .jurisdictions import JURISDICTIONS, get_jurisdiction
from .logging_setup import setup_logging
from .models import CrawlSummary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='facility-scraper',
        description='Resumable healthcare facility scraper',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resume (or start) the Maryland crawl
  facility-scraper md

  # Retry previously failed facilities
  facility-scraper md --mode retry-failed

  # Start over, ignoring the progress ledger
  facility-scraper ma --mode fresh --concurrency 4

  # Reuse the saved facility list and download inspection reports
  facility-scraper md --reuse-discovery --download-reports
"""
    )

    parser.add_argument(
        'jurisdiction',
        choices=sorted(JURISDICTIONS),
        help='Jurisdiction to crawl'
    )
    parser.add_argument(
        '--mode',
        type=str,
        default='resume',
        choices=CrawlController.VALID_MODES,
        help='Crawl mode (default: resume)'
    )

    # Concurrency and retries
    parser.add_argument('--concurrency', type=int, help='Concurrent fetches (default: 5)')
    parser.add_argument('--retries', type=int, help='Max retry attempts per facility (default: 3)')
    parser.add_argument('--timeout', type=float, help='Per-attempt timeout in seconds (default: 30)')
    parser.add_argument('--delay', type=float, help='Initial delay between requests in seconds (default: 0.5)')
    parser.add_argument('--flush-every', type=int, help='Rewrite the CSV after this many results (default: 1)')
    parser.add_argument('--max-pages', type=int, help='Listing page limit for paginated sites')

    # Discovery and reports
    parser.add_argument(
        '--reuse-discovery',
        action='store_true',
        default=None,
        help='Use the saved facility list instead of discovering again'
    )
    parser.add_argument(
        '--download-reports',
        action='store_true',
        default=None,
        help='Download inspection report documents where available'
    )

    # Paths and logging
    parser.add_argument('--data-dir', type=str, help='Directory for ledgers and snapshots (default: data)')
    parser.add_argument('--output-dir', type=str, help='Directory for CSV output (default: output)')
    parser.add_argument('--log-level', type=str, help='Log level (default: INFO)')

    return parser


def print_summary(result: CrawlSummary):
    print("\n" + "=" * 60)
    print("CRAWL STOPPED" if result.stopped else "CRAWL COMPLETE")
    print("=" * 60)
    print(f"Jurisdiction: {result.jurisdiction}")
    print(f"Mode:         {result.mode}")
    print(f"Success:      {result.success}")
    print(f"Duration:     {result.duration_seconds / 60:.1f} minutes")
    print(f"Discovered:   {result.total_discovered}")
    print(f"Completed:    {result.total_completed}")
    print(f"Skipped:      {result.total_skipped}")
    print(f"Failed:       {result.total_failed}")
    if result.stopped:
        print(f"Not started:  {result.total_not_started}")
    print(f"Speed:        {result.items_per_hour:.1f} facilities/hour")

    if result.error:
        print(f"\nError: {result.error}")

    if result.failures:
        print(f"\nFailed facilities ({len(result.failures)}):")
        for f in result.failures[:10]:
            print(f"  - {f['id']}: {f['reason'][:60]}")
        if len(result.failures) > 10:
            print(f"  ... and {len(result.failures) - 10} more")

    if result.stopped:
        print("\nStopped. Run again to resume.")


def exit_code_for(result: CrawlSummary) -> int:
    if not result.success:
        return EXIT_FAILED
    if result.stopped:
        return EXIT_INTERRUPTED
    return EXIT_OK


def _install_signal_handlers(controller: CrawlController):
    """Route SIGINT/SIGTERM to a graceful stop."""
    loop = asyncio.get_running_loop()
    signals = [signal.SIGINT]
    # SIGTERM is not reliably available on Windows
    if hasattr(signal, 'SIGTERM') and sys.platform != 'win32':
        signals.append(signal.SIGTERM)

    for sig in signals:
        try:
            loop.add_signal_handler(sig, controller.stop)
        except (NotImplementedError, RuntimeError):
            # Proactor loops: Ctrl+C arrives as KeyboardInterrupt instead
            logger.debug("Signal handlers unsupported on this event loop")
            return


async def run_crawl(args: argparse.Namespace, settings: Settings) -> CrawlSummary:
    """Build the controller from settings plus CLI overrides and run it."""
    config = settings.to_config(
        concurrency=args.concurrency,
        max_retries=args.retries,
        attempt_timeout=args.timeout,
        request_delay=args.delay,
        flush_every=args.flush_every,
        max_pages=args.max_pages,
        reuse_discovery=args.reuse_discovery,
        download_reports=args.download_reports,
        data_dir=args.data_dir,
        output_dir=args.output_dir,
    )

    jurisdiction_cls = get_jurisdiction(args.jurisdiction)
    jurisdiction = jurisdiction_cls(max_pages=config.max_pages)
    controller = CrawlController(jurisdiction, config)

    _install_signal_handlers(controller)
    print("Press Ctrl+C to stop (progress is saved automatically)\n")
    return await controller.run(mode=args.mode)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValueError as e:
        # pydantic ValidationError subclasses ValueError
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_FAILED

    setup_logging(args.log_level or settings.log_level)

    try:
        result = asyncio.run(run_crawl(args, settings))
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_FAILED
    except ScraperError as e:
        logger.error("Crawl failed: %s", e)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\nStopped. Run again to resume.")
        return EXIT_INTERRUPTED

    print_summary(result)
    return exit_code_for(result)


if __name__ == '__main__':
    sys.exit(main())
