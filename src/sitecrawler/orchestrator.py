"""Breadth-first crawl driver with bounded concurrency and overload backoff."""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from sitecrawler.config import CrawlerConfig
from sitecrawler.constants import LATE_DISCOVERY_WAIT_SECONDS
from sitecrawler.crawl_state import CrawlState
from sitecrawler.events import (
    CrawlEvent,
    InLinksBatch,
    OrphanQuery,
    PageProcessed,
    PendingQuery,
    UrlDiscovered,
)
from sitecrawler.exceptions import CrawlerError, RootUrlError, ServerOverloadedError
from sitecrawler.fetcher import FetchClient
from sitecrawler.infrastructure.backoff_governor import BackoffGovernor, BackoffInfo
from sitecrawler.logging_config import get_logger
from sitecrawler.models import FetchOutcome, PageRecord, QueueEntry
from sitecrawler.page_store import AbstractPageStore, MemoryPageStore
from sitecrawler.parser import ContentLinkExtractor
from sitecrawler.url_utils import extract_domain, is_internal_url, normalize_url

module_logger = get_logger(__name__)


class CrawlStatus(Enum):
    """Externally visible crawl status."""
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    MAX_BACKOFF_REACHED = "max_backoff_reached"
    COMPLETED = "completed"


class CrawlOrchestrator:
    """Crawls every page reachable from a root URL on the same domain.

    Internal pages are fetched, parsed and followed. External links are
    fetched once for their status and never followed. Every discovery and
    every processed page is sent to the page store, and each send is
    awaited before the crawl moves on.
    """

    def __init__(
        self,
        root_url: str,
        config: Optional[CrawlerConfig] = None,
        *,
        store: Optional[AbstractPageStore] = None,
        fetch_client: Optional[FetchClient] = None,
        extractor: Optional[ContentLinkExtractor] = None,
        governor: Optional[BackoffGovernor] = None,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[Exception, Optional[str]], None]] = None,
        on_complete: Optional[Callable[[Dict[str, Any]], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the orchestrator.

        Args:
            root_url: Page the crawl starts from
            config: Crawler configuration
            store: Persistence collaborator receiving crawl events
            fetch_client: Client used for all requests
            extractor: Builds page records from fetch outcomes
            governor: Backoff governor; its callbacks are taken over
            on_progress: Called with a state snapshot after each change
            on_error: Called with (error, url) for per-URL and crawl errors
            on_complete: Called with the final state snapshot
            logger: Logger to use instead of the module logger

        Raises:
            RootUrlError: If the root URL cannot be normalized
        """
        self.logger = logger or module_logger
        self.config = config or CrawlerConfig()

        normalized_root = normalize_url(root_url)
        if not normalized_root:
            raise RootUrlError(f"Invalid root URL: {root_url!r}", url=root_url)
        base_domain = extract_domain(normalized_root)
        if not base_domain:
            raise RootUrlError(f"Root URL has no domain: {root_url!r}", url=root_url)

        self.root_url = normalized_root
        self.base_domain = base_domain

        self.store = store or MemoryPageStore()
        self.fetch_client = fetch_client or FetchClient(
            user_agent=self.config.user_agent,
            timeout=self.config.request_timeout,
        )
        self.extractor = extractor or ContentLinkExtractor()

        self.governor = governor or BackoffGovernor(self.config.backoff_config())
        self.governor.on_backoff_start = self._on_backoff_start
        self.governor.on_backoff_end = self._on_backoff_end
        self.governor.on_max_backoff = self._on_max_backoff

        self.on_progress = on_progress
        self.on_error = on_error
        self.on_complete = on_complete

        self.state = CrawlState(self.root_url, self.base_domain)
        self._tasks: Set[asyncio.Task] = set()
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._orphan_sweeps = 0
        self._completed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> CrawlStatus:
        if not self.state.is_active:
            return CrawlStatus.COMPLETED if self._completed else CrawlStatus.IDLE
        if self.state.backoff_state.max_backoff_reached:
            return CrawlStatus.MAX_BACKOFF_REACHED
        if self.state.is_paused:
            return CrawlStatus.PAUSED
        return CrawlStatus.ACTIVE

    async def start(self) -> None:
        """Run the crawl until it completes or is stopped.

        Raises:
            Exception: Anything unexpected outside per-URL processing,
                after it has been logged and reported
        """
        if self.state.is_active:
            self.logger.warning("Crawl already active, ignoring start()")
            return

        self._orphan_sweeps = 0
        self._completed = False
        self.state.backoff_state.max_backoff_reached = False
        self.state.is_active = True
        self.state.start_time = time.time()
        if not self.state.is_paused:
            self._resume_event.set()

        self.logger.info(f"Starting crawl of {self.root_url} (domain: {self.base_domain})")
        self._notify_progress()

        try:
            if self.state.is_queued(self.root_url):
                await self._emit(UrlDiscovered(url=self.root_url, depth=0, is_external=False))
            await self._run_loop()
        except Exception as e:
            self.state.is_active = False
            self.logger.error(f"Crawl of {self.root_url} failed: {e}")
            self._report_error(e, None)
            raise
        finally:
            await self._drain_tasks()
            if self.governor.is_in_backoff:
                self.governor.cancel_backoff()
                self.state.backoff_state.is_in_backoff = False
            self.state.is_active = False
            self.state.is_paused = False
            self.state.total_time += time.time() - self.state.start_time

        self.logger.info(
            f"Crawl finished: {self.state.stats.pages_crawled} pages crawled, "
            f"{self.state.stats.errors} errors in {self.state.total_time:.1f}s"
        )
        self._notify_progress()
        if self.on_complete:
            try:
                self.on_complete(self.get_state())
            except Exception as e:
                self.logger.error(f"Completion callback failed: {e}")

    async def _run_loop(self) -> None:
        while self.state.is_active:
            if self.state.is_paused:
                await self._resume_event.wait()
                continue

            self._dispatch()

            if self._tasks:
                await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
                continue

            if await self._check_completion():
                self._completed = True
                break

    def _dispatch(self) -> None:
        """Start tasks for queued URLs until all slots are taken."""
        slots = self.config.max_concurrent - self.state.in_progress_count

        while slots > 0 and self.state.is_active and not self.state.is_paused:
            entry = self.state.next_from_queue()
            if entry is None:
                break
            if self.state.is_visited(entry.url):
                continue

            self.state.mark_visited(entry.url)
            self.state.mark_in_progress(entry.url)

            task = asyncio.create_task(self._process_url(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            slots -= 1

    async def _drain_tasks(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _check_completion(self) -> bool:
        """Decide whether an idle crawl is finished.

        Returns:
            True to complete, False when new work was queued
        """
        self._orphan_sweeps += 1
        if self._orphan_sweeps > self.config.max_orphan_sweeps:
            self.logger.warning(
                f"Orphan check ran {self.config.max_orphan_sweeps} times, completing crawl"
            )
            return True

        orphans = await self._emit(OrphanQuery()) or []
        if orphans:
            requeued = 0
            for url in orphans:
                if not self.state.is_visited(url) and not self.state.is_queued(url):
                    self.state.add_to_queue(url, 0)
                    requeued += 1
            if requeued:
                self.logger.info(f"Re-queued {requeued} orphaned URLs")
                return False
            return True

        if self.state.stats.pages_found - len(self.state.visited) <= 0:
            return True

        # Give late discoveries a moment before declaring completion
        await asyncio.sleep(LATE_DISCOVERY_WAIT_SECONDS)
        return self.state.is_idle()

    # ------------------------------------------------------------------
    # Per-URL processing
    # ------------------------------------------------------------------

    async def _process_url(self, entry: QueueEntry) -> None:
        url, depth = entry.url, entry.depth
        is_internal = is_internal_url(url, self.base_domain)

        try:
            outcome = await self.fetch_client.fetch_with_retry(
                url,
                timeout=self.config.request_timeout,
                retries=self.config.retries,
                retry_delay=self.config.retry_delay,
                delay=self.config.request_delay,
                cookies=self.config.cookies,
            )

            if not self.state.is_active:
                self.logger.debug(f"Crawl stopped, discarding result for {url}")
                return

            if outcome.is_timeout:
                self.governor.record_timeout(url, is_internal)
            elif outcome.ok:
                self.governor.record_success(url, is_internal)

            page = self.extractor.parse_page(url, outcome, self.base_domain, depth)
            if outcome.is_redirect and not page.is_external:
                self._add_redirect_target(page, outcome)

            await self._emit(PageProcessed(page=page))

            self.state.stats.pages_crawled += 1
            if outcome.error:
                self.state.stats.errors += 1
            self.logger.debug(f"[{outcome.status}] {url} (depth {depth})")

            if not page.is_external:
                await self._queue_links(page, depth)

            self._notify_progress()

        except Exception as e:
            self.state.stats.errors += 1
            self.logger.error(f"Error processing {url}: {e}")
            self._report_error(e, url)
            failed = self.extractor.failed_page(url, str(e), self.base_domain, depth)
            try:
                await self._emit(PageProcessed(page=failed))
            except Exception as emit_error:
                self.logger.error(f"Could not record failure for {url}: {emit_error}")
        finally:
            self.state.remove_in_progress(url)

    def _add_redirect_target(self, page: PageRecord, outcome: FetchOutcome) -> None:
        location = outcome.headers.get("location")
        target = normalize_url(location, page.url) if location else None
        if not target or target == page.url:
            return
        if is_internal_url(target, self.base_domain):
            if target not in page.out_links:
                page.out_links.append(target)
        elif target not in page.external_links:
            page.external_links.append(target)

    async def _queue_links(self, page: PageRecord, depth: int) -> None:
        """Queue the links of an internal page and record the in-link graph."""
        next_depth = depth + 1

        for link in page.out_links:
            if self.state.add_to_queue(link, next_depth):
                self.state.stats.pages_found += 1
                await self._emit(UrlDiscovered(url=link, depth=next_depth, is_external=False))

        all_links = [*page.out_links, *page.external_links]
        if all_links:
            await self._emit(InLinksBatch(from_url=page.url, to_urls=tuple(all_links)))

        for link in page.external_links:
            if self.state.add_to_queue(link, next_depth):
                self.state.stats.pages_found += 1
                await self._emit(UrlDiscovered(url=link, depth=next_depth, is_external=True))

        if self.config.crawl_resources:
            for asset in page.assets:
                if self.state.add_to_queue(asset, next_depth):
                    self.state.stats.pages_found += 1
                    await self._emit(UrlDiscovered(
                        url=asset,
                        depth=next_depth,
                        is_external=not is_internal_url(asset, self.base_domain),
                        is_resource=True,
                    ))

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def pause(self) -> None:
        if not self.state.is_active or self.state.is_paused:
            return
        self.state.is_paused = True
        self.state.pause_time = time.time()
        self._resume_event.clear()
        self.logger.info("Crawl paused")
        self._notify_progress()

    def resume(self) -> None:
        if not self.state.is_paused:
            return
        self.state.is_paused = False
        self.state.pause_time = None
        self._resume_event.set()
        self.logger.info("Crawl resumed")
        self._notify_progress()

    def stop(self) -> None:
        """Stop dispatching. Requests already in flight finish but are not recorded."""
        self.logger.info("Stopping crawl")
        self.state.is_active = False
        self.state.is_paused = False
        self._resume_event.set()

    async def continue_anyway(self) -> None:
        """Continue after the backoff ladder was exhausted, or restart an idle crawl.

        An idle crawl re-queues every internal URL the store still reports
        as not crawled and starts again.
        """
        if self.state.is_active and self.state.backoff_state.max_backoff_reached:
            self.logger.info("Continuing despite server overload")
            self.governor.cancel_backoff()
            self._sync_backoff_state()
            self.state.backoff_state.max_backoff_reached = False
            self.resume()
            return

        if self.state.is_active:
            self.logger.info("Crawl already running")
            return

        if self.governor.is_in_backoff:
            self.governor.cancel_backoff()
        self._sync_backoff_state()
        self.state.backoff_state.max_backoff_reached = False

        pending = await self._emit(PendingQuery()) or []
        for entry in pending:
            self.state.unmark_visited(entry.url)
            self.state.add_to_queue(entry.url, entry.depth)
        self.logger.info(f"Continuing crawl with {len(pending)} pending URLs")

        await self.start()

    def reset(self) -> None:
        """Discard all progress and start over from the root URL."""
        if self.state.is_active:
            self.stop()
        self.governor.reset()
        self.state = CrawlState(self.root_url, self.base_domain)
        self._resume_event.set()
        self._orphan_sweeps = 0
        self._completed = False

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_state(self) -> Dict[str, Any]:
        """Get a progress snapshot."""
        return {
            "status": self.status.value,
            "root_url": self.root_url,
            "base_domain": self.base_domain,
            "stats": self.state.stats.to_dict(),
            "queue_size": self.state.queue_size,
            "visited_count": len(self.state.visited),
            "in_progress_count": self.state.in_progress_count,
            "is_active": self.state.is_active,
            "is_paused": self.state.is_paused,
            "start_time": self.state.start_time,
            "total_time": self.state.total_time,
            "backoff": self.state.backoff_state.to_dict(),
            "governor": self.governor.get_state().to_dict(),
        }

    def get_queue_urls(self) -> List[str]:
        return [entry.url for entry in self.state.queue]

    def get_saveable_state(self) -> Dict[str, Any]:
        """Get a JSON-safe snapshot for resuming later."""
        return self.state.to_dict()

    def load_state(self, data: Dict[str, Any]) -> None:
        """Restore a snapshot written by get_saveable_state().

        Raises:
            CrawlerError: If the crawl is running or the snapshot belongs
                to another root URL
        """
        if self.state.is_active:
            raise CrawlerError("Cannot load state while the crawl is active")
        if data.get("root_url") != self.root_url:
            raise CrawlerError(
                f"Saved state is for {data.get('root_url')}, not {self.root_url}"
            )
        self.state = CrawlState.from_dict(data)
        self.state.backoff_state.is_in_backoff = False
        self.state.backoff_state.max_backoff_reached = False
        self._completed = False
        self.logger.info(
            f"Loaded crawl state: {len(self.state.visited)} visited, "
            f"{self.state.queue_size} queued"
        )

    # ------------------------------------------------------------------
    # Governor callbacks
    # ------------------------------------------------------------------

    def _sync_backoff_state(self) -> None:
        governor_state = self.governor.get_state()
        mirror = self.state.backoff_state
        mirror.enabled = governor_state.enabled
        mirror.current_level = governor_state.current_level
        mirror.attempt_count = governor_state.attempt_count
        mirror.is_in_backoff = governor_state.is_in_backoff
        mirror.backoff_end_time = governor_state.backoff_end_time
        mirror.timeout_count = governor_state.timeout_count

    def _on_backoff_start(self, info: BackoffInfo) -> None:
        self._sync_backoff_state()
        self.state.backoff_state.reason = "timeout-overload"
        self.logger.warning(
            f"Too many timeouts from {self.base_domain}, pausing for {info.duration}s "
            f"(level {info.level})"
        )
        self.pause()

    def _on_backoff_end(self) -> None:
        self._sync_backoff_state()
        self.state.backoff_state.reason = None
        self.state.backoff_state.max_backoff_reached = False
        self.resume()

    def _on_max_backoff(self, info: BackoffInfo) -> None:
        self._sync_backoff_state()
        self.state.backoff_state.max_backoff_reached = True
        self.logger.warning(
            f"{self.base_domain} still overloaded after {info.attempt_count} backoffs; "
            f"crawl stays paused until continued"
        )
        self._report_error(
            ServerOverloadedError(
                f"Server {self.base_domain} appears overloaded",
                attempt_count=info.attempt_count,
            ),
            None,
        )
        self._notify_progress()

    # ------------------------------------------------------------------
    # Sinks
    # ------------------------------------------------------------------

    async def _emit(self, event: CrawlEvent) -> Any:
        return await self.store.handle(event)

    def _notify_progress(self) -> None:
        if not self.on_progress:
            return
        try:
            self.on_progress(self.get_state())
        except Exception as e:
            self.logger.error(f"Progress callback failed: {e}")

    def _report_error(self, error: Exception, url: Optional[str]) -> None:
        if not self.on_error:
            return
        try:
            self.on_error(error, url)
        except Exception as e:
            self.logger.error(f"Error callback failed: {e}")
