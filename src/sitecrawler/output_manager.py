"""Output manager for organizing crawl results with timestamps."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sitecrawler.models import PageRecord

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    ("URL", "url"),
    ("Status", "status_code"),
    ("Title", "title"),
    ("Meta Description", "meta_description"),
    ("H1", "h1"),
    ("File Type", "file_type"),
    ("Content Type", "content_type"),
    ("Response Time (ms)", "response_time"),
    ("Size", "size"),
    ("Depth", "depth"),
    ("External", "is_external"),
    ("In Links", "in_links"),
    ("Out Links", "out_links"),
    ("External Links", "external_links"),
    ("Error", "error_message"),
    ("Crawled At", "crawled_at"),
]

STATE_FILENAME = "crawl_state.json"


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class OutputManager:
    """Manages organized output of crawl results with timestamps and directories."""

    def __init__(self, base_output_dir: str = "crawls"):
        """Initialize output manager.

        Args:
            base_output_dir: Base directory for all crawl outputs
        """
        self.base_output_dir = Path(base_output_dir)
        self.base_output_dir.mkdir(parents=True, exist_ok=True)

    def create_crawl_directory(self, start_url: str, timestamp: Optional[datetime] = None) -> Path:
        """Create a timestamped directory for this crawl.

        Args:
            start_url: The starting URL that was crawled
            timestamp: Optional timestamp (defaults to now)

        Returns:
            Path to the created directory

        Example structure:
            crawls/
            └── example.com/
                ├── 2025-11-23_143022/
                │   ├── pages.json
                │   ├── pages.csv
                │   ├── crawl_state.json
                │   └── summary.txt
                └── latest -> 2025-11-23_143022
        """
        if timestamp is None:
            timestamp = datetime.now()

        crawl_dir = self.base_output_dir / self._domain_dirname(start_url) / timestamp.strftime("%Y-%m-%d_%H%M%S")
        crawl_dir.mkdir(parents=True, exist_ok=True)

        return crawl_dir

    @staticmethod
    def _domain_dirname(url: str) -> str:
        return urlparse(url).netloc.replace(":", "_").replace("/", "_")

    def save_crawl_results(
        self,
        crawl_dir: Path,
        start_url: str,
        pages: List[PageRecord],
        crawl_stats: Optional[Dict[str, Any]] = None,
        output_format: str = "both",
    ) -> Dict[str, Path]:
        """Write page records and a summary into the crawl directory.

        Args:
            crawl_dir: Directory created by create_crawl_directory()
            start_url: Root URL of the crawl
            pages: Page records in process order
            crawl_stats: Final orchestrator state snapshot
            output_format: 'json', 'csv' or 'both'

        Returns:
            Mapping of output kind to written file
        """
        written: Dict[str, Path] = {}

        if output_format in ("json", "both"):
            written["json"] = crawl_dir / "pages.json"
            self.save_pages_json(written["json"], pages)

        if output_format in ("csv", "both"):
            written["csv"] = crawl_dir / "pages.csv"
            self.save_pages_csv(written["csv"], pages)

        written["summary"] = crawl_dir / "summary.txt"
        self._save_summary(written["summary"], start_url, pages, crawl_stats)

        self._create_latest_link(crawl_dir)

        logger.info(f"Saved {len(pages)} page records to {crawl_dir}")
        return written

    def save_pages_json(self, filepath: Path, pages: List[PageRecord]) -> None:
        self._save_json(filepath, {"pages": [page.to_dict() for page in pages]})

    def save_pages_csv(self, filepath: Path, pages: List[PageRecord]) -> None:
        """Save one CSV row per page. Link lists are written as counts."""
        with open(filepath, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([header for header, _ in CSV_COLUMNS])
            for page in pages:
                writer.writerow([self._csv_value(page, attr) for _, attr in CSV_COLUMNS])

    @staticmethod
    def _csv_value(page: PageRecord, attr: str) -> Any:
        value = getattr(page, attr)
        if isinstance(value, list):
            return len(value)
        if attr == "response_time" and value is not None:
            return round(value * 1000)
        if isinstance(value, datetime):
            return value.isoformat()
        if value is None:
            return ""
        return value

    def _save_json(self, filepath: Path, data: dict) -> None:
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, cls=DateTimeEncoder)

    def _load_json(self, filepath: Path) -> dict:
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save_summary(
        self,
        filepath: Path,
        start_url: str,
        pages: List[PageRecord],
        crawl_stats: Optional[Dict[str, Any]],
    ) -> None:
        """Save human-readable summary."""
        internal = [p for p in pages if not p.is_external]
        external = [p for p in pages if p.is_external]
        errors = [p for p in pages if p.status_code is not None and (p.status_code >= 400 or p.status_code < 0)]
        pending = [p for p in pages if p.status_code is None]

        with open(filepath, "w", encoding="utf-8") as f:
            f.write("=" * 60 + "\n")
            f.write("SITE CRAWL SUMMARY\n")
            f.write("=" * 60 + "\n\n")

            f.write(f"Start URL: {start_url}\n")
            f.write(f"Written at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Internal URLs: {len(internal)}\n")
            f.write(f"External URLs: {len(external)}\n")
            f.write(f"Errors: {len(errors)}\n")
            f.write(f"Not crawled: {len(pending)}\n\n")

            if crawl_stats:
                f.write("CRAWL STATISTICS\n")
                f.write("-" * 60 + "\n")
                for key, value in crawl_stats.items():
                    f.write(f"{key}: {value}\n")
                f.write("\n")

            if errors:
                f.write("ERRORS\n")
                f.write("-" * 60 + "\n")
                for page in errors:
                    f.write(f"[{page.status_code}] {page.url} {page.error_message or ''}\n")

    def _create_latest_link(self, crawl_dir: Path) -> None:
        """Create/update 'latest' symlink to this crawl."""
        latest_link = crawl_dir.parent / "latest"

        if latest_link.exists() or latest_link.is_symlink():
            latest_link.unlink()

        try:
            latest_link.symlink_to(crawl_dir.name)
        except (OSError, NotImplementedError):
            # Symlinks are not available everywhere (Windows)
            with open(crawl_dir.parent / "latest.txt", "w") as f:
                f.write(str(crawl_dir.name))

    def save_crawl_state(self, crawl_dir: Path, state: dict, status: str = "running") -> None:
        """Save crawl state for resume capability.

        Args:
            crawl_dir: Directory to save state to
            state: Snapshot from CrawlOrchestrator.get_saveable_state()
            status: "running", "paused" or "completed"
        """
        data = dict(state)
        data["status"] = status
        data["last_updated"] = datetime.now().isoformat()
        self._save_json(crawl_dir / STATE_FILENAME, data)

    def load_crawl_state(self, crawl_dir: Path) -> Optional[dict]:
        """Load existing crawl state if available.

        Returns:
            State dictionary if found and valid, None otherwise
        """
        state_file = crawl_dir / STATE_FILENAME
        if not state_file.exists():
            return None

        try:
            state = self._load_json(state_file)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable crawl state: {state_file}")
            return None

        required_fields = ["version", "root_url", "base_domain", "visited", "queue"]
        if all(field in state for field in required_fields):
            return state
        return None

    def find_latest_crawl(self, start_url: str) -> Optional[Path]:
        """Find most recent crawl directory for the domain of start_url."""
        domain_dir = self.base_output_dir / self._domain_dirname(start_url)
        if not domain_dir.exists():
            return None

        crawl_dirs = [
            d for d in domain_dir.iterdir()
            if d.is_dir() and not d.is_symlink() and d.name != "latest"
        ]

        if not crawl_dirs:
            return None

        return sorted(crawl_dirs, reverse=True)[0]

    def find_resumable_crawl(self, start_url: str) -> Optional[Path]:
        """Find the newest crawl directory whose state was not completed."""
        domain_dir = self.base_output_dir / self._domain_dirname(start_url)
        if not domain_dir.exists():
            return None

        for d in sorted(domain_dir.iterdir(), reverse=True):
            if d.is_dir() and not d.is_symlink() and d.name != "latest":
                state = self.load_crawl_state(d)
                if state and state.get("status") != "completed":
                    return d

        return None
