"""Breadth-first website crawler with retry, overload backoff and resumable state."""

__version__ = "0.1.0"

from sitecrawler.config import settings, CrawlerConfig
from sitecrawler.crawl_state import CrawlState
from sitecrawler.events import (
    CrawlEvent,
    UrlDiscovered,
    InLinksBatch,
    PageProcessed,
    OrphanQuery,
    PendingQuery,
)
from sitecrawler.exceptions import (
    CrawlerError,
    RootUrlError,
    ExtractionError,
    ServerOverloadedError,
)
from sitecrawler.fetcher import FetchClient, HttpxFetcher, is_retryable_error
from sitecrawler.models import (
    QueueEntry,
    FetchOutcome,
    BackoffState,
    CrawlStats,
    PageRecord,
)
from sitecrawler.orchestrator import CrawlOrchestrator, CrawlStatus
from sitecrawler.output_manager import OutputManager
from sitecrawler.page_store import (
    AbstractPageStore,
    MemoryPageStore,
    SqlitePageStore,
    get_page_store,
)
from sitecrawler.parser import ContentLinkExtractor
from sitecrawler.url_utils import normalize_url, extract_domain, is_same_domain, get_file_type

# Infrastructure
from sitecrawler.infrastructure import (
    BackoffGovernor,
    BackoffConfig,
    BackoffInfo,
)

__all__ = [
    "settings",
    "CrawlerConfig",
    "CrawlState",
    "CrawlEvent",
    "UrlDiscovered",
    "InLinksBatch",
    "PageProcessed",
    "OrphanQuery",
    "PendingQuery",
    "CrawlerError",
    "RootUrlError",
    "ExtractionError",
    "ServerOverloadedError",
    "FetchClient",
    "HttpxFetcher",
    "is_retryable_error",
    "QueueEntry",
    "FetchOutcome",
    "BackoffState",
    "CrawlStats",
    "PageRecord",
    "CrawlOrchestrator",
    "CrawlStatus",
    "OutputManager",
    "AbstractPageStore",
    "MemoryPageStore",
    "SqlitePageStore",
    "get_page_store",
    "ContentLinkExtractor",
    "normalize_url",
    "extract_domain",
    "is_same_domain",
    "get_file_type",
    "BackoffGovernor",
    "BackoffConfig",
    "BackoffInfo",
]
