"""Data models for crawl state, fetch results and page records."""

from dataclasses import dataclass, field, asdict, fields
from typing import Optional
from datetime import datetime

from sitecrawler.constants import SYSTEM_ERROR_STATUS


@dataclass
class QueueEntry:
    """A URL waiting to be fetched, with its BFS depth."""

    url: str
    depth: int = 0


@dataclass
class FetchOutcome:
    """Result of one fetch attempt.

    status is the HTTP status code, or -1 when no response was received
    (network error, timeout, TLS failure).
    """

    url: str
    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    error: Optional[str] = None
    response_time: float = 0.0  # seconds
    size: int = 0  # bytes
    final_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status < 400

    @property
    def is_network_error(self) -> bool:
        return self.status == SYSTEM_ERROR_STATUS

    @property
    def is_timeout(self) -> bool:
        return self.is_network_error and "timeout" in (self.error or "").lower()

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @classmethod
    def failure(cls, url: str, error: str, response_time: float = 0.0) -> "FetchOutcome":
        """Build an outcome for a request that never produced a response."""
        return cls(
            url=url,
            status=SYSTEM_ERROR_STATUS,
            status_text="Error",
            error=error,
            response_time=response_time,
        )


@dataclass
class BackoffState:
    """Snapshot of the backoff governor."""

    enabled: bool = True
    current_level: int = 0
    attempt_count: int = 0
    is_in_backoff: bool = False
    backoff_end_time: Optional[float] = None
    timeout_count: int = 0
    max_backoff_reached: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CrawlStats:
    """Counters reported with every progress snapshot."""

    pages_found: int = 0
    pages_crawled: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PageRecord:
    """Everything recorded about one URL.

    status_code is None while the URL is only known (pending) and -1 when
    the fetch failed without an HTTP response.
    """

    url: str
    normalized_url: str
    domain: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    title: Optional[str] = None
    meta_description: Optional[str] = None
    h1: Optional[str] = None
    file_type: str = "other"  # html/pdf/image/css/js/other/error
    content_type: Optional[str] = None
    response_time: Optional[float] = None  # seconds
    size: Optional[int] = None  # bytes
    out_links: list[str] = field(default_factory=list)  # internal
    in_links: list[str] = field(default_factory=list)
    external_links: list[str] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    is_crawled: bool = False
    is_external: bool = False
    depth: int = 0
    crawled_at: Optional[datetime] = None
    process_order: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status_code is None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["crawled_at"] = self.crawled_at.isoformat() if self.crawled_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PageRecord":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        crawled_at = values.get("crawled_at")
        if isinstance(crawled_at, str):
            values["crawled_at"] = datetime.fromisoformat(crawled_at)
        return cls(**values)
