# src/sitecrawler/constants.py
"""Centralized constants for the site crawler.

This module contains magic numbers and default values that are used
across multiple modules. For user-configurable settings, see config.py
and CrawlerConfig. All durations are in seconds.
"""

# =============================================================================
# Crawl Scheduling Constants
# =============================================================================

# Maximum number of URLs fetched at the same time
DEFAULT_MAX_CONCURRENT = 5

# Fixed delay before each request (seconds)
DEFAULT_REQUEST_DELAY_SECONDS = 0.1

# Hard timeout for a single fetch attempt (seconds)
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Extra attempts after a retryable network failure
DEFAULT_RETRIES = 1

# Delay before each retry attempt (seconds)
DEFAULT_RETRY_DELAY_SECONDS = 0.5

# Completion checks allowed per start() before the crawl is force-completed
DEFAULT_MAX_ORPHAN_SWEEPS = 3

# Grace period for late discoveries before declaring completion (seconds)
LATE_DISCOVERY_WAIT_SECONDS = 0.5

# Emit a progress snapshot every N processed pages
PROGRESS_SAVE_INTERVAL = 50


# =============================================================================
# Backoff Constants
# =============================================================================

# Internal timeouts inside the window that trigger a backoff
DEFAULT_BACKOFF_TIMEOUT_THRESHOLD = 5

# Sliding window for counting timeouts (seconds)
DEFAULT_BACKOFF_WINDOW_SECONDS = 30.0

# Backoff ladder (seconds); the last entry is the top level
DEFAULT_BACKOFF_LEVELS = (30.0, 60.0, 120.0)


# =============================================================================
# HTTP Constants
# =============================================================================

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Response headers that are never passed through to page records
EXCLUDED_RESPONSE_HEADERS = frozenset({
    "content-encoding",
    "transfer-encoding",
    "connection",
    "keep-alive",
})

# Status code used for failures that never produced an HTTP response
SYSTEM_ERROR_STATUS = -1


# =============================================================================
# Persistence Constants
# =============================================================================

CRAWL_STATE_VERSION = 1

PENDING_TITLE = "(pending)"
