"""BFS traversal state: queue, visited set, in-flight set and counters."""

import logging
from collections import deque
from typing import Deque, Optional, Set

from sitecrawler.constants import CRAWL_STATE_VERSION
from sitecrawler.models import BackoffState, CrawlStats, QueueEntry

logger = logging.getLogger(__name__)


class CrawlState:
    """Mutable state of one crawl.

    All mutation happens on the event loop thread, so no locking is needed.
    A URL enters the queue at most once while it is waiting and never after
    it has been visited.
    """

    def __init__(self, root_url: str, base_domain: str):
        self.root_url = root_url
        self.base_domain = base_domain

        self.queue: Deque[QueueEntry] = deque()
        self._queued: Set[str] = set()
        self.visited: Set[str] = set()
        self.in_progress: Set[str] = set()
        self.stats = CrawlStats()

        self.is_active = False
        self.is_paused = False
        self.start_time: Optional[float] = None
        self.pause_time: Optional[float] = None
        self.total_time: float = 0.0

        # Mirror of the governor, updated through its callbacks
        self.backoff_state = BackoffState()

        self.add_to_queue(root_url, 0)
        self.stats.pages_found = 1

    def add_to_queue(self, url: str, depth: int) -> bool:
        """Queue a URL unless it was visited or is already waiting.

        Returns:
            True if the URL was added
        """
        if url in self.visited or url in self._queued:
            return False
        self.queue.append(QueueEntry(url=url, depth=depth))
        self._queued.add(url)
        return True

    def next_from_queue(self) -> Optional[QueueEntry]:
        """Pop the oldest queued entry, or None when the queue is empty."""
        if not self.queue:
            return None
        entry = self.queue.popleft()
        self._queued.discard(entry.url)
        return entry

    def mark_visited(self, url: str) -> None:
        self.visited.add(url)

    def unmark_visited(self, url: str) -> None:
        self.visited.discard(url)

    def is_visited(self, url: str) -> bool:
        return url in self.visited

    def is_queued(self, url: str) -> bool:
        return url in self._queued

    def mark_in_progress(self, url: str) -> None:
        self.in_progress.add(url)

    def remove_in_progress(self, url: str) -> None:
        self.in_progress.discard(url)

    @property
    def queue_size(self) -> int:
        return len(self.queue)

    @property
    def in_progress_count(self) -> int:
        return len(self.in_progress)

    def is_idle(self) -> bool:
        """True when nothing is queued and nothing is being fetched."""
        return not self.queue and not self.in_progress

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe snapshot for persistence.

        URLs that were in flight are written back as queued so a resumed
        crawl fetches them again.
        """
        queue = [{"url": entry.url, "depth": entry.depth} for entry in self.queue]
        return {
            "version": CRAWL_STATE_VERSION,
            "root_url": self.root_url,
            "base_domain": self.base_domain,
            "queue": queue,
            "visited": sorted(self.visited - self.in_progress),
            "in_progress": sorted(self.in_progress),
            "stats": self.stats.to_dict(),
            "is_paused": self.is_paused,
            "total_time": self.total_time,
            "backoff_state": self.backoff_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CrawlState":
        """Rebuild state from a snapshot written by to_dict()."""
        state = cls.__new__(cls)
        state.root_url = data["root_url"]
        state.base_domain = data["base_domain"]
        state.queue = deque()
        state._queued = set()
        state.visited = set(data.get("visited", []))
        state.in_progress = set()
        state.stats = CrawlStats(**data.get("stats", {}))
        state.is_active = False
        state.is_paused = False
        state.start_time = None
        state.pause_time = None
        state.total_time = data.get("total_time", 0.0)
        state.backoff_state = BackoffState(**data.get("backoff_state", {}))

        for url in data.get("in_progress", []):
            state.visited.discard(url)
            state.add_to_queue(url, 0)
        for item in data.get("queue", []):
            state.add_to_queue(item["url"], item.get("depth", 0))

        if data.get("version") != CRAWL_STATE_VERSION:
            logger.warning(f"Loading crawl state with version {data.get('version')}")

        return state
