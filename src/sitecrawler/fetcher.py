"""HTTP fetching with hard timeouts and selective retry.

FetchClient never raises: every failure comes back as a FetchOutcome with
status -1 and an error message. HTTP responses of any status are final
and are never retried.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from sitecrawler.constants import (
    DEFAULT_ACCEPT,
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_USER_AGENT,
    EXCLUDED_RESPONSE_HEADERS,
)
from sitecrawler.models import FetchOutcome

logger = logging.getLogger(__name__)

# (url, *, cookies, headers) -> FetchOutcome
RawFetch = Callable[..., Awaitable[FetchOutcome]]

# Errors that will not go away by asking again
NON_RETRYABLE_PATTERNS = [
    # DNS
    "enotfound",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "name resolution",
    # Timeouts are handled by the backoff governor instead
    "etimedout",
    "err_http_request_timeout",
    "timeout",
    "timed out",
    # TLS
    "err_tls",
    "certificate",
    "self signed",
    "self-signed",
    "ssl:",
    "sslerror",
]

TEXT_CONTENT_MARKERS = ("text/", "html", "xml", "json", "javascript")


def is_retryable_error(error: Optional[str]) -> bool:
    """Decide whether a network failure is worth another attempt.

    Args:
        error: Error text from a failed FetchOutcome

    Returns:
        True for transient failures such as connection resets
    """
    error_str = (error or "").lower()

    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in error_str:
            return False

    return True


def match_cookie(cookie: Dict[str, str], url: str) -> bool:
    """Check whether a cookie should be sent with a request to url.

    The host must equal the cookie domain (leading dot ignored) or be one
    of its subdomains, and the path must start with the cookie path.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    host = (parts.hostname or "").lower()
    domain = (cookie.get("domain") or "").lower().lstrip(".")
    if not host or not domain:
        return False
    if host != domain and not host.endswith(f".{domain}"):
        return False

    cookie_path = cookie.get("path") or "/"
    return (parts.path or "/").startswith(cookie_path)


def build_cookie_header(cookies: Optional[List[Dict[str, str]]], url: str) -> Optional[str]:
    """Join the cookies matching url into a Cookie header value."""
    if not cookies:
        return None
    pairs = [
        f"{cookie['name']}={cookie.get('value', '')}"
        for cookie in cookies
        if cookie.get("name") and match_cookie(cookie, url)
    ]
    return "; ".join(pairs) if pairs else None


class HttpxFetcher:
    """Default fetch primitive built on a shared httpx.AsyncClient.

    Redirects are not followed; the crawler reads the Location header and
    queues the target itself.
    """

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the fetcher.

        Args:
            user_agent: User-Agent header sent with every request
            timeout: httpx-level timeout in seconds
            client: Existing client to use instead of creating one
        """
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=False,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": DEFAULT_ACCEPT,
                    "Accept-Language": DEFAULT_ACCEPT_LANGUAGE,
                },
            )
        return self._client

    async def __call__(
        self,
        url: str,
        *,
        cookies: Optional[List[Dict[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> FetchOutcome:
        request_headers = dict(headers or {})
        cookie_header = build_cookie_header(cookies, url)
        if cookie_header:
            request_headers["Cookie"] = cookie_header

        start_time = time.monotonic()
        try:
            response = await self._get_client().get(url, headers=request_headers)
        except httpx.TimeoutException as e:
            return FetchOutcome.failure(
                url, f"Request timeout: {str(e) or type(e).__name__}", time.monotonic() - start_time
            )
        except httpx.HTTPError as e:
            return FetchOutcome.failure(
                url, str(e) or type(e).__name__, time.monotonic() - start_time
            )

        response_time = time.monotonic() - start_time
        response_headers = {
            key.lower(): value
            for key, value in response.headers.items()
            if key.lower() not in EXCLUDED_RESPONSE_HEADERS
        }
        content_type = response_headers.get("content-type", "").lower()
        body = response.text if _is_text(content_type) else ""

        return FetchOutcome(
            url=url,
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=response_headers,
            body=body,
            response_time=response_time,
            size=len(response.content),
            final_url=str(response.url),
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _is_text(content_type: str) -> bool:
    if not content_type:
        return True
    return any(marker in content_type for marker in TEXT_CONTENT_MARKERS)


class FetchClient:
    """Wraps a fetch primitive with a hard timeout and retry policy."""

    def __init__(
        self,
        raw_fetch: Optional[RawFetch] = None,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize the client.

        Args:
            raw_fetch: Awaitable primitive (url, *, cookies, headers) -> FetchOutcome.
                Defaults to an HttpxFetcher owned by this client.
            user_agent: User agent for the default primitive
            timeout: httpx-level timeout for the default primitive
        """
        self._owned_fetcher: Optional[HttpxFetcher] = None
        if raw_fetch is None:
            self._owned_fetcher = HttpxFetcher(user_agent=user_agent, timeout=timeout)
            raw_fetch = self._owned_fetcher
        self.raw_fetch = raw_fetch

    async def fetch_url(
        self,
        url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        delay: float = 0.0,
        cookies: Optional[List[Dict[str, str]]] = None,
    ) -> FetchOutcome:
        """Fetch a URL once.

        Args:
            url: URL to fetch
            timeout: Hard timeout in seconds for the whole request
            delay: Seconds to wait before sending the request
            cookies: Cookies to forward when they match the URL

        Returns:
            FetchOutcome; status -1 on any failure
        """
        if delay > 0:
            await asyncio.sleep(delay)

        start_time = time.monotonic()
        try:
            return await asyncio.wait_for(
                self.raw_fetch(url, cookies=cookies, headers=None),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.debug(f"Timeout after {timeout}s: {url}")
            return FetchOutcome.failure(
                url, f"Request timeout after {timeout}s", time.monotonic() - start_time
            )
        except Exception as e:
            logger.debug(f"Fetch failed for {url}: {e}")
            return FetchOutcome.failure(
                url, str(e) or type(e).__name__, time.monotonic() - start_time
            )

    async def fetch_with_retry(
        self,
        url: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        delay: float = 0.0,
        cookies: Optional[List[Dict[str, str]]] = None,
    ) -> FetchOutcome:
        """Fetch a URL, retrying transient network failures.

        Args:
            url: URL to fetch
            timeout: Hard timeout per attempt in seconds
            retries: Additional attempts after the first (0 means one attempt)
            retry_delay: Seconds to wait before each retry
            delay: Seconds to wait before the first attempt
            cookies: Cookies to forward when they match the URL

        Returns:
            The last FetchOutcome
        """
        outcome = await self.fetch_url(url, timeout, delay=delay, cookies=cookies)

        for attempt in range(1, retries + 1):
            if not outcome.is_network_error or not is_retryable_error(outcome.error):
                break
            logger.debug(f"Retrying {url} (attempt {attempt}/{retries}): {outcome.error}")
            outcome = await self.fetch_url(url, timeout, delay=retry_delay, cookies=cookies)

        return outcome

    async def aclose(self) -> None:
        if self._owned_fetcher is not None:
            await self._owned_fetcher.aclose()

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
