"""Command-line interface for the site crawler."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from sitecrawler.config import CrawlerConfig, settings
from sitecrawler.constants import PROGRESS_SAVE_INTERVAL
from sitecrawler.exceptions import CrawlerError, ServerOverloadedError
from sitecrawler.logging_config import get_logger, setup_logging
from sitecrawler.orchestrator import CrawlOrchestrator, CrawlStatus
from sitecrawler.output_manager import OutputManager
from sitecrawler.page_store import get_page_store

logger = get_logger(__name__)


def build_config(args) -> CrawlerConfig:
    """Merge config file, environment and command-line flags."""
    if args.config:
        config = CrawlerConfig.from_file(args.config)
    else:
        config = CrawlerConfig.from_env()

    if args.max_concurrent is not None:
        config.max_concurrent = args.max_concurrent
    if args.delay is not None:
        config.request_delay = args.delay
    if args.timeout is not None:
        config.request_timeout = args.timeout
    if args.retries is not None:
        config.retries = args.retries
    if args.crawl_resources:
        config.crawl_resources = True
    if args.no_backoff:
        config.enable_backoff = False

    config.__post_init__()
    return config


def _install_signal_handlers(orchestrator: CrawlOrchestrator) -> None:
    """Stop the crawl on Ctrl+C / SIGTERM so state can be saved."""
    def handle_interrupt():
        print("\n\n⚠️  Crawl interrupted, finishing requests in flight...")
        orchestrator.stop()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_interrupt)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(signum, lambda s, f: handle_interrupt())


async def run_crawl(args) -> int:
    """Run one crawl as described by the parsed arguments.

    Returns:
        Process exit code
    """
    config = build_config(args)
    output_manager = OutputManager(args.output_dir or settings.OUTPUT_DIR)

    store_kwargs = {"db_url": args.db} if args.store == "sqlite" and args.db else {}
    store = get_page_store(args.store, **store_kwargs)

    overloaded = False
    continue_tasks = set()

    def on_error(error: Exception, url: Optional[str]) -> None:
        nonlocal overloaded
        if isinstance(error, ServerOverloadedError):
            overloaded = True
            if args.auto_continue:
                logger.warning("Server overloaded, continuing automatically")
                task = asyncio.get_running_loop().create_task(orchestrator.continue_anyway())
                continue_tasks.add(task)
            else:
                print(f"\n🛑 {error.message}. Re-run with --resume to continue later.")
                orchestrator.stop()

    try:
        orchestrator = CrawlOrchestrator(
            args.url,
            config,
            store=store,
            on_error=on_error,
        )
    except CrawlerError as e:
        print(f"Error: {e.message}")
        store.close()
        return 1

    crawl_dir = output_manager.find_resumable_crawl(orchestrator.root_url) if args.resume else None
    saved_state = output_manager.load_crawl_state(crawl_dir) if crawl_dir else None
    if args.resume and saved_state is None:
        saved_state = store.load_crawl_state(orchestrator.root_url)
    if crawl_dir is None:
        crawl_dir = output_manager.create_crawl_directory(orchestrator.root_url)

    last_saved = 0

    def on_progress(snapshot: dict) -> None:
        nonlocal last_saved
        crawled = snapshot["stats"]["pages_crawled"]
        if crawled - last_saved >= PROGRESS_SAVE_INTERVAL:
            last_saved = crawled
            save_state("running")
            logger.info(
                f"Progress: {crawled} crawled, {snapshot['queue_size']} queued, "
                f"{snapshot['stats']['errors']} errors"
            )

    def save_state(status: str) -> None:
        state = orchestrator.get_saveable_state()
        output_manager.save_crawl_state(crawl_dir, state, status=status)
        store.save_crawl_state(orchestrator.root_url, state)

    orchestrator.on_progress = on_progress

    print(f"Crawling {orchestrator.root_url} (max_concurrent={config.max_concurrent})...")
    _install_signal_handlers(orchestrator)

    try:
        if saved_state:
            orchestrator.load_state(saved_state)
            print(f"Resuming: {len(orchestrator.state.visited)} URLs already visited")
            await orchestrator.continue_anyway()
        else:
            await orchestrator.start()
    finally:
        continued = await asyncio.gather(*continue_tasks, return_exceptions=True)
        await orchestrator.fetch_client.aclose()

    for outcome in continued:
        if isinstance(outcome, Exception):
            raise outcome

    completed = orchestrator.status == CrawlStatus.COMPLETED
    save_state("completed" if completed else "paused")

    pages = store.all_pages()
    final_state = orchestrator.get_state()
    written = output_manager.save_crawl_results(
        crawl_dir,
        orchestrator.root_url,
        pages,
        crawl_stats={
            "status": final_state["status"],
            "pages_found": final_state["stats"]["pages_found"],
            "pages_crawled": final_state["stats"]["pages_crawled"],
            "errors": final_state["stats"]["errors"],
            "total_time_seconds": round(final_state["total_time"], 1),
            "backoff_level": final_state["backoff"]["current_level"],
        },
        output_format=args.format,
    )
    store.close()

    print_summary(final_state, written)

    if overloaded and not completed:
        return 3
    return 0 if completed else 2


def print_summary(state: dict, written: dict) -> None:
    stats = state["stats"]
    print(f"\n{'=' * 60}")
    print(f"Crawl of {state['root_url']}: {state['status']}")
    print(f"{'=' * 60}")
    print(f"  • Pages found: {stats['pages_found']}")
    print(f"  • Pages crawled: {stats['pages_crawled']}")
    print(f"  • Errors: {stats['errors']}")
    print(f"  • Time: {state['total_time']:.1f}s")
    for kind, path in written.items():
        print(f"  • {kind}: {path}")
    print(f"{'=' * 60}\n")


def crawl_command(args) -> int:
    """Crawl a site starting from a root URL."""
    return asyncio.run(run_crawl(args))


def export_command(args) -> int:
    """Export page records from a SQLite store."""
    store = get_page_store("sqlite", db_url=args.db) if args.db else get_page_store("sqlite")
    pages = store.all_pages()
    store.close()

    if not pages:
        print("No page records found")
        return 0

    output_file = Path(args.output_file)
    output_manager = OutputManager(str(output_file.parent))
    if args.format == "csv":
        output_manager.save_pages_csv(output_file, pages)
    else:
        output_manager.save_pages_json(output_file, pages)
    print(f"Exported {len(pages)} records to {output_file}")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Site Crawler - Crawl every page of a website and record links and status codes"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper() if settings.LOG_LEVEL.upper() in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO",
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    crawl_parser = subparsers.add_parser("crawl", help="Crawl a website.")
    crawl_parser.add_argument("url", help="Root URL to start crawling from")
    crawl_parser.add_argument("--max-concurrent", type=int, help="Parallel requests (default: 5)")
    crawl_parser.add_argument("--delay", type=float, help="Seconds to wait before each request (default: 0.1)")
    crawl_parser.add_argument("--timeout", type=float, help="Request timeout in seconds (default: 30)")
    crawl_parser.add_argument("--retries", type=int, help="Retries after network errors (default: 1)")
    crawl_parser.add_argument(
        "--crawl-resources",
        action="store_true",
        help="Also fetch images, scripts and stylesheets",
    )
    crawl_parser.add_argument(
        "--no-backoff",
        action="store_true",
        help="Do not pause when the server starts timing out",
    )
    crawl_parser.add_argument("--config", help="JSON config file")
    crawl_parser.add_argument(
        "--store",
        choices=["memory", "sqlite"],
        default=settings.STORE_BACKEND,
        help="Where page records are kept (default: %(default)s)",
    )
    crawl_parser.add_argument("--db", help="SQLite database path for --store sqlite")
    crawl_parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume the latest unfinished crawl of this site",
    )
    crawl_parser.add_argument(
        "--auto-continue",
        action="store_true",
        help="Keep going when the backoff limit is reached instead of stopping",
    )
    crawl_parser.add_argument("--output-dir", help="Directory for crawl results (default: crawls)")
    crawl_parser.add_argument(
        "--format",
        choices=["json", "csv", "both"],
        default="both",
        help="Page export format (default: both)",
    )
    crawl_parser.set_defaults(func=crawl_command)

    export_parser = subparsers.add_parser("export", help="Export page records from a SQLite store.")
    export_parser.add_argument("output_file", help="File to write")
    export_parser.add_argument("--db", help="SQLite database path")
    export_parser.add_argument("--format", choices=["json", "csv"], default="json")
    export_parser.set_defaults(func=export_command)

    args = parser.parse_args(argv)

    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
