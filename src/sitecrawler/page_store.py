# src/sitecrawler/page_store.py
"""Page record persistence supporting in-memory and local SQLite backends.

A page store is the crawler's persistence collaborator: the orchestrator
awaits store.handle(event) for every event it emits, and the store answers
the orphan and pending queries from what it has recorded.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
import logging

from sitecrawler.config import settings
from sitecrawler.constants import PENDING_TITLE
from sitecrawler.events import (
    CrawlEvent,
    InLinksBatch,
    OrphanQuery,
    PageProcessed,
    PendingQuery,
    UrlDiscovered,
)
from sitecrawler.models import PageRecord, QueueEntry
from sitecrawler.url_utils import extract_domain, is_same_domain

logger = logging.getLogger(__name__)

# Columns stored as JSON text
LIST_COLUMNS = ("out_links", "in_links", "external_links", "assets")

CREATE_PAGES_SQL = """
CREATE TABLE IF NOT EXISTS pages (
    url TEXT PRIMARY KEY,
    normalized_url TEXT NOT NULL,
    domain TEXT,
    status_code INTEGER,
    error_message TEXT,
    title TEXT,
    meta_description TEXT,
    h1 TEXT,
    file_type TEXT,
    content_type TEXT,
    response_time REAL,
    size INTEGER,

    -- JSON arrays
    out_links TEXT NOT NULL DEFAULT '[]',
    in_links TEXT NOT NULL DEFAULT '[]',
    external_links TEXT NOT NULL DEFAULT '[]',
    assets TEXT NOT NULL DEFAULT '[]',

    is_crawled INTEGER NOT NULL DEFAULT 0,
    is_external INTEGER NOT NULL DEFAULT 0,
    depth INTEGER NOT NULL DEFAULT 0,
    crawled_at TEXT,
    process_order INTEGER
);
"""

CREATE_STATE_SQL = """
CREATE TABLE IF NOT EXISTS crawl_state (
    root_url TEXT PRIMARY KEY,
    state TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class AbstractPageStore(ABC):
    """Abstract base class defining the page store interface.

    Subclasses provide the storage primitives; event handling is shared.
    """

    def __init__(self):
        self._next_order: Optional[int] = None

    async def handle(self, event: CrawlEvent) -> Any:
        """Apply a crawl event.

        Returns:
            A list of URLs for OrphanQuery, a list of QueueEntry for
            PendingQuery, otherwise None
        """
        if isinstance(event, UrlDiscovered):
            self._on_url_discovered(event)
        elif isinstance(event, InLinksBatch):
            self._on_in_links(event)
        elif isinstance(event, PageProcessed):
            self._on_page_processed(event.page)
        elif isinstance(event, OrphanQuery):
            return self.get_orphaned_urls()
        elif isinstance(event, PendingQuery):
            return self.get_pending_entries()
        else:
            raise TypeError(f"Unknown crawl event: {type(event).__name__}")
        return None

    def _assign_order(self) -> int:
        if self._next_order is None:
            orders = [p.process_order for p in self.all_pages() if p.process_order is not None]
            self._next_order = max(orders) + 1 if orders else 0
        order = self._next_order
        self._next_order += 1
        return order

    def _pending_record(self, url: str, depth: int, is_external: bool) -> PageRecord:
        return PageRecord(
            url=url,
            normalized_url=url,
            domain=extract_domain(url),
            title=PENDING_TITLE,
            is_external=is_external,
            depth=depth,
            process_order=self._assign_order(),
        )

    def _on_url_discovered(self, event: UrlDiscovered) -> None:
        if self.get_page(event.url) is not None:
            return
        page = self._pending_record(event.url, event.depth, event.is_external)
        if event.is_resource:
            page.file_type = "other"
        self.save_page(page)

    def _on_in_links(self, event: InLinksBatch) -> None:
        source = self.get_page(event.from_url)
        depth = source.depth + 1 if source else 0

        for to_url in event.to_urls:
            page = self.get_page(to_url)
            if page is None:
                is_external = not is_same_domain(to_url, event.from_url)
                page = self._pending_record(to_url, depth, is_external)
            if event.from_url not in page.in_links:
                page.in_links.append(event.from_url)
            self.save_page(page)

    def _on_page_processed(self, page: PageRecord) -> None:
        existing = self.get_page(page.url)
        if existing is not None:
            for source in existing.in_links:
                if source not in page.in_links:
                    page.in_links.append(source)
            if existing.process_order is not None:
                page.process_order = existing.process_order
        if page.process_order is None:
            page.process_order = self._assign_order()
        self.save_page(page)

    def get_orphaned_urls(self) -> List[str]:
        """Internal URLs that are known but have no status yet."""
        return [
            page.url for page in self.all_pages()
            if not page.is_external and page.status_code is None
        ]

    def get_pending_entries(self) -> List[QueueEntry]:
        """Internal URLs not crawled yet, with their depth."""
        return [
            QueueEntry(url=page.url, depth=page.depth)
            for page in self.all_pages()
            if not page.is_external and not page.is_crawled
        ]

    @abstractmethod
    def get_page(self, url: str) -> Optional[PageRecord]:
        """Fetch one record by canonical URL."""
        pass

    @abstractmethod
    def save_page(self, page: PageRecord) -> None:
        """Insert or replace a record."""
        pass

    @abstractmethod
    def all_pages(self) -> List[PageRecord]:
        """All records ordered by process_order."""
        pass

    @abstractmethod
    def save_crawl_state(self, root_url: str, state: Dict[str, Any]) -> None:
        """Persist a crawl state snapshot."""
        pass

    @abstractmethod
    def load_crawl_state(self, root_url: str) -> Optional[Dict[str, Any]]:
        """Load the snapshot saved for root_url, if any."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Delete all records and snapshots."""
        pass

    def close(self) -> None:
        """Release resources."""
        pass


class MemoryPageStore(AbstractPageStore):
    """Dictionary-backed store for tests and one-off crawls."""

    def __init__(self):
        super().__init__()
        self.pages: Dict[str, PageRecord] = {}
        self.states: Dict[str, Dict[str, Any]] = {}

    def get_page(self, url: str) -> Optional[PageRecord]:
        return self.pages.get(url)

    def save_page(self, page: PageRecord) -> None:
        self.pages[page.url] = page

    def all_pages(self) -> List[PageRecord]:
        return sorted(
            self.pages.values(),
            key=lambda p: (p.process_order is None, p.process_order or 0),
        )

    def save_crawl_state(self, root_url: str, state: Dict[str, Any]) -> None:
        self.states[root_url] = json.loads(json.dumps(state))

    def load_crawl_state(self, root_url: str) -> Optional[Dict[str, Any]]:
        return self.states.get(root_url)

    def clear(self) -> None:
        self.pages.clear()
        self.states.clear()
        self._next_order = None


class SqlitePageStore(AbstractPageStore):
    """SQLite page store for local, resumable crawls."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize local SQLite store.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db) or plain path.
                Defaults to settings.DATABASE_URL.
        """
        super().__init__()
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to local SQLite database: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed local SQLite connection")

    def create_schema(self) -> None:
        """Create the pages and crawl_state tables if they don't exist."""
        with self.conn:
            self.conn.execute(CREATE_PAGES_SQL)
            self.conn.execute(CREATE_STATE_SQL)
        logger.debug("Schema verified/created for local SQLite")

    def get_page(self, url: str) -> Optional[PageRecord]:
        cursor = self.conn.execute("SELECT * FROM pages WHERE url = ?", (url,))
        row = cursor.fetchone()
        return self._row_to_page(row) if row else None

    def save_page(self, page: PageRecord) -> None:
        data = page.to_dict()
        for column in LIST_COLUMNS:
            data[column] = json.dumps(data[column])
        data["is_crawled"] = int(page.is_crawled)
        data["is_external"] = int(page.is_external)

        columns = ', '.join(data.keys())
        placeholders = ', '.join('?' for _ in data)
        insert_sql = f"INSERT OR REPLACE INTO pages ({columns}) VALUES ({placeholders})"

        with self.conn:
            self.conn.execute(insert_sql, tuple(data.values()))

    def all_pages(self) -> List[PageRecord]:
        cursor = self.conn.execute(
            "SELECT * FROM pages ORDER BY process_order IS NULL, process_order ASC"
        )
        return [self._row_to_page(row) for row in cursor.fetchall()]

    def get_orphaned_urls(self) -> List[str]:
        cursor = self.conn.execute(
            "SELECT url FROM pages WHERE is_external = 0 AND status_code IS NULL "
            "ORDER BY process_order ASC"
        )
        return [row['url'] for row in cursor.fetchall()]

    def save_crawl_state(self, root_url: str, state: Dict[str, Any]) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO crawl_state (root_url, state, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                (root_url, json.dumps(state)),
            )
        logger.debug(f"Saved crawl state for {root_url}")

    def load_crawl_state(self, root_url: str) -> Optional[Dict[str, Any]]:
        cursor = self.conn.execute(
            "SELECT state FROM crawl_state WHERE root_url = ?", (root_url,)
        )
        row = cursor.fetchone()
        return json.loads(row['state']) if row else None

    def clear(self) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM pages")
            self.conn.execute("DELETE FROM crawl_state")
        self._next_order = None

    @staticmethod
    def _row_to_page(row: sqlite3.Row) -> PageRecord:
        data = dict(row)
        for column in LIST_COLUMNS:
            data[column] = json.loads(data[column] or "[]")
        data["is_crawled"] = bool(data["is_crawled"])
        data["is_external"] = bool(data["is_external"])
        return PageRecord.from_dict(data)


def get_page_store(backend: Optional[str] = None, **kwargs) -> AbstractPageStore:
    """Factory function to get the appropriate page store.

    Args:
        backend: Store backend ('memory' or 'sqlite'). Defaults to settings.STORE_BACKEND.
        **kwargs: Additional arguments passed to the store constructor.

    Returns:
        AbstractPageStore instance.

    Raises:
        ValueError: If backend is not recognized.
    """
    backend = backend or settings.STORE_BACKEND

    if backend == "memory":
        return MemoryPageStore()
    elif backend == "sqlite":
        return SqlitePageStore(**kwargs)
    else:
        raise ValueError(f"Unknown store backend: {backend}. Use 'memory' or 'sqlite'.")
