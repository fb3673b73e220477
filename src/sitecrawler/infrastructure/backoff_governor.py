"""
Backoff Governor.

Watches internal request timeouts in a sliding window and, when the server
looks overloaded, asks the crawler to pause for an escalating period:

    Normal --threshold timeouts in window--> Backoff(level)
    Backoff(level) --timer, level below top--> Normal, level + 1
    Backoff(top) --timer--> MaxBackoffReached (stays paused)
    any --success while escalated--> Normal, level 0

External URLs never count: a slow third-party site says nothing about the
crawled server.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Tuple

from sitecrawler.constants import (
    DEFAULT_BACKOFF_LEVELS,
    DEFAULT_BACKOFF_TIMEOUT_THRESHOLD,
    DEFAULT_BACKOFF_WINDOW_SECONDS,
)
from sitecrawler.models import BackoffState

logger = logging.getLogger(__name__)


@dataclass
class BackoffConfig:
    """Configuration for the backoff governor."""
    enabled: bool = True

    # Internal timeouts inside the window that trigger a backoff
    timeout_threshold: int = DEFAULT_BACKOFF_TIMEOUT_THRESHOLD

    # Sliding window length (seconds)
    window_duration: float = DEFAULT_BACKOFF_WINDOW_SECONDS

    # Pause length per level (seconds); the last entry is the top level
    backoff_levels: Tuple[float, ...] = DEFAULT_BACKOFF_LEVELS


@dataclass
class BackoffInfo:
    """Details passed to the backoff callbacks."""
    level: int
    duration: float
    end_time: Optional[float]
    attempt_count: int
    timeout_count: int


@dataclass
class TimeoutRecord:
    """A single internal timeout inside the window."""
    url: str
    timestamp: float


class BackoffGovernor:
    """
    Overload detector with an escalating pause ladder.

    Callbacks are plain callables invoked synchronously:
    - on_backoff_start(info): a backoff began; the crawl should pause
    - on_backoff_end(): the pause elapsed below the top level, or a success
      arrived while paused; resume
    - on_max_backoff(info): the top level elapsed; wait for the operator
    """

    def __init__(
        self,
        config: BackoffConfig | None = None,
        on_backoff_start: Optional[Callable[[BackoffInfo], None]] = None,
        on_backoff_end: Optional[Callable[[], None]] = None,
        on_max_backoff: Optional[Callable[[BackoffInfo], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the governor.

        Args:
            config: Backoff configuration
            on_backoff_start: Called when a backoff begins
            on_backoff_end: Called when a backoff below the top level ends
            on_max_backoff: Called when the top-level backoff ends
            clock: Time source in seconds, replaceable in tests
        """
        self.config = config or BackoffConfig()
        self.on_backoff_start = on_backoff_start
        self.on_backoff_end = on_backoff_end
        self.on_max_backoff = on_max_backoff
        self._clock = clock

        self._current_level = 0
        self._attempt_count = 0
        self._is_in_backoff = False
        self._backoff_end_time: Optional[float] = None
        self._timeouts: Deque[TimeoutRecord] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None

    def record_timeout(self, url: str, is_internal: bool) -> None:
        """
        Record a request timeout.

        Args:
            url: URL that timed out
            is_internal: Whether the URL belongs to the crawled site
        """
        if not self.config.enabled or not is_internal:
            return

        now = self._clock()
        self._timeouts.append(TimeoutRecord(url=url, timestamp=now))
        self._prune_window(now)

        logger.debug(
            f"Timeout recorded for {url} "
            f"({len(self._timeouts)}/{self.config.timeout_threshold} in window)"
        )

        if len(self._timeouts) >= self.config.timeout_threshold:
            self.trigger_backoff()

    def record_success(self, url: str, is_internal: bool) -> None:
        """
        Record a successful response. Clears any escalation.

        Args:
            url: URL that succeeded
            is_internal: Whether the URL belongs to the crawled site
        """
        if not self.config.enabled or not is_internal:
            return

        if self._is_in_backoff or self._current_level > 0:
            was_holding = self._is_in_backoff or self.max_level_reached
            logger.info(f"Server responding again ({url}), resetting backoff")
            self.reset()
            # A paused crawl has no timer left to wake it
            if was_holding and self.on_backoff_end:
                self.on_backoff_end()

    def _prune_window(self, now: float) -> None:
        cutoff = now - self.config.window_duration
        while self._timeouts and self._timeouts[0].timestamp <= cutoff:
            self._timeouts.popleft()

    def trigger_backoff(self) -> None:
        """Enter backoff at the current level. No-op while already in backoff."""
        if self._is_in_backoff:
            return

        levels = self.config.backoff_levels
        duration = levels[min(self._current_level, len(levels) - 1)]

        self._is_in_backoff = True
        self._attempt_count += 1
        self._backoff_end_time = self._clock() + duration

        try:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(duration, self.end_backoff)
        except RuntimeError:
            self._timer = None
            logger.warning("No running event loop; backoff must be ended manually")

        logger.info(
            f"Server overload detected: backing off for {duration}s "
            f"(level {self._current_level}, attempt {self._attempt_count})"
        )

        if self.on_backoff_start:
            self.on_backoff_start(self._build_info(duration))

    def end_backoff(self) -> None:
        """Leave backoff. Escalates below the top level, notifies at the top."""
        if not self._is_in_backoff:
            return

        self._timer = None
        self._is_in_backoff = False
        self._backoff_end_time = None
        self._timeouts.clear()

        top_level = len(self.config.backoff_levels) - 1

        if self._current_level < top_level:
            self._current_level += 1
            logger.info(f"Backoff ended, resuming (next level {self._current_level})")
            if self.on_backoff_end:
                self.on_backoff_end()
        else:
            logger.warning(
                f"Maximum backoff reached after {self._attempt_count} attempts; "
                f"waiting for manual continuation"
            )
            if self.on_max_backoff:
                duration = self.config.backoff_levels[top_level]
                self.on_max_backoff(self._build_info(duration))

    def cancel_backoff(self) -> None:
        """Abort the current backoff, keeping the level."""
        self._cancel_timer()
        self._is_in_backoff = False
        self._backoff_end_time = None
        self._timeouts.clear()

    def reset(self) -> None:
        """Return to the normal state."""
        self._cancel_timer()
        self._current_level = 0
        self._attempt_count = 0
        self._is_in_backoff = False
        self._backoff_end_time = None
        self._timeouts.clear()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _build_info(self, duration: float) -> BackoffInfo:
        return BackoffInfo(
            level=self._current_level,
            duration=duration,
            end_time=self._backoff_end_time,
            attempt_count=self._attempt_count,
            timeout_count=len(self._timeouts),
        )

    def get_state(self) -> BackoffState:
        """
        Get a snapshot of the governor.

        Returns:
            BackoffState snapshot
        """
        return BackoffState(
            enabled=self.config.enabled,
            current_level=self._current_level,
            attempt_count=self._attempt_count,
            is_in_backoff=self._is_in_backoff,
            backoff_end_time=self._backoff_end_time,
            timeout_count=len(self._timeouts),
            max_backoff_reached=self.max_level_reached,
        )

    @property
    def is_in_backoff(self) -> bool:
        """Whether a backoff timer is running."""
        return self._is_in_backoff

    @property
    def current_level(self) -> int:
        """Index into the backoff ladder."""
        return self._current_level

    @property
    def max_level_reached(self) -> bool:
        """Whether the top level elapsed without recovery."""
        top_level = len(self.config.backoff_levels) - 1
        return (
            not self._is_in_backoff
            and self._attempt_count > 0
            and self._current_level >= top_level
        )
