"""Unit tests for BackoffGovernor.

Tests the overload detection and escalating pause ladder.
"""

import pytest
import asyncio
from unittest.mock import Mock

pytest_plugins = ('pytest_asyncio',)

from sitecrawler.infrastructure.backoff_governor import (
    BackoffGovernor,
    BackoffConfig,
    BackoffInfo,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestBackoffConfig:
    """Tests for BackoffConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = BackoffConfig()

        assert config.enabled is True
        assert config.timeout_threshold == 5
        assert config.window_duration == 30.0
        assert config.backoff_levels == (30.0, 60.0, 120.0)


class TestBackoffGovernor:
    """Tests for BackoffGovernor."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def callbacks(self):
        return {
            "on_backoff_start": Mock(),
            "on_backoff_end": Mock(),
            "on_max_backoff": Mock(),
        }

    @pytest.fixture
    def governor(self, clock, callbacks):
        """Create a governor with a fake clock and mock callbacks."""
        return BackoffGovernor(BackoffConfig(), clock=clock, **callbacks)

    def record(self, governor, clock, count, spacing=1.0, url="https://example.com/"):
        for i in range(count):
            governor.record_timeout(f"{url}{i}", is_internal=True)
            clock.advance(spacing)

    def test_below_threshold_no_backoff(self, governor, clock, callbacks):
        """Four internal timeouts in the window do nothing."""
        self.record(governor, clock, 4)

        assert not governor.is_in_backoff
        callbacks["on_backoff_start"].assert_not_called()
        assert governor.get_state().timeout_count == 4

    def test_threshold_triggers_once(self, governor, clock, callbacks):
        """The fifth timeout triggers exactly one backoff."""
        self.record(governor, clock, 5)

        assert governor.is_in_backoff
        callbacks["on_backoff_start"].assert_called_once()
        info = callbacks["on_backoff_start"].call_args.args[0]
        assert isinstance(info, BackoffInfo)
        assert info.level == 0
        assert info.duration == 30.0

        # More timeouts during the backoff do not trigger again
        self.record(governor, clock, 3)
        callbacks["on_backoff_start"].assert_called_once()

    def test_old_timeouts_expire(self, governor, clock, callbacks):
        """Timeouts older than the window do not count."""
        self.record(governor, clock, 4, spacing=0)
        clock.advance(31)
        self.record(governor, clock, 1)

        assert not governor.is_in_backoff
        assert governor.get_state().timeout_count == 1

    def test_external_timeouts_ignored(self, governor, clock, callbacks):
        """External URLs never count."""
        for i in range(10):
            governor.record_timeout(f"https://other.org/{i}", is_internal=False)

        assert governor.get_state().timeout_count == 0
        callbacks["on_backoff_start"].assert_not_called()

    def test_disabled(self, clock, callbacks):
        """A disabled governor records nothing."""
        governor = BackoffGovernor(BackoffConfig(enabled=False), clock=clock, **callbacks)
        self.record(governor, clock, 10)

        assert not governor.is_in_backoff
        assert governor.get_state().enabled is False

    def test_end_backoff_escalates_and_resumes(self, governor, clock, callbacks):
        """Ending a lower-level backoff raises the level and resumes."""
        self.record(governor, clock, 5)
        governor.end_backoff()

        assert not governor.is_in_backoff
        assert governor.current_level == 1
        assert governor.get_state().timeout_count == 0
        callbacks["on_backoff_end"].assert_called_once()

        self.record(governor, clock, 5)
        info = callbacks["on_backoff_start"].call_args.args[0]
        assert info.level == 1
        assert info.duration == 60.0

    def test_top_level_does_not_resume(self, governor, clock, callbacks):
        """After the top level, only the max-backoff callback fires."""
        for _ in range(3):
            self.record(governor, clock, 5)
            governor.end_backoff()

        assert governor.current_level == 2
        assert callbacks["on_backoff_end"].call_count == 2
        callbacks["on_max_backoff"].assert_called_once()
        assert governor.max_level_reached
        assert governor.get_state().attempt_count == 3

    def test_top_level_repeats_longest_duration(self, governor, clock, callbacks):
        """Triggering at the top level reuses the last duration."""
        for _ in range(3):
            self.record(governor, clock, 5)
            governor.end_backoff()
        governor.cancel_backoff()
        self.record(governor, clock, 5)

        info = callbacks["on_backoff_start"].call_args.args[0]
        assert info.duration == 120.0

    def test_success_resets_escalation(self, governor, clock, callbacks):
        """A success with level > 0 resets level and window."""
        self.record(governor, clock, 5)
        governor.end_backoff()
        self.record(governor, clock, 2)

        governor.record_success("https://example.com/ok", is_internal=True)

        state = governor.get_state()
        assert state.current_level == 0
        assert state.attempt_count == 0
        assert state.timeout_count == 0

    def test_success_during_backoff_resumes(self, governor, clock, callbacks):
        """A success while backing off ends the backoff through on_backoff_end."""
        self.record(governor, clock, 5)

        governor.record_success("https://example.com/ok", is_internal=True)

        assert not governor.is_in_backoff
        assert governor.current_level == 0
        callbacks["on_backoff_end"].assert_called_once()

    def test_success_after_max_backoff_resumes(self, governor, clock, callbacks):
        """A success after the ladder is exhausted also resumes."""
        for _ in range(3):
            self.record(governor, clock, 5)
            governor.end_backoff()
        callbacks["on_backoff_end"].reset_mock()

        governor.record_success("https://example.com/ok", is_internal=True)

        callbacks["on_backoff_end"].assert_called_once()
        assert not governor.max_level_reached

    def test_success_between_backoffs_is_silent(self, governor, clock, callbacks):
        """Without a running backoff the reset calls nothing."""
        self.record(governor, clock, 5)
        governor.end_backoff()
        callbacks["on_backoff_end"].reset_mock()

        governor.record_success("https://example.com/ok", is_internal=True)

        assert governor.current_level == 0
        callbacks["on_backoff_end"].assert_not_called()

    def test_success_at_level_zero_keeps_window(self, governor, clock):
        """Without escalation a success changes nothing."""
        self.record(governor, clock, 3)
        governor.record_success("https://example.com/ok", is_internal=True)

        assert governor.get_state().timeout_count == 3

    def test_external_success_ignored(self, governor, clock):
        """External successes do not reset."""
        self.record(governor, clock, 5)
        governor.end_backoff()
        governor.record_success("https://other.org/", is_internal=False)

        assert governor.current_level == 1

    def test_cancel_keeps_level(self, governor, clock, callbacks):
        """cancel_backoff clears the backoff but not the level."""
        self.record(governor, clock, 5)
        governor.end_backoff()
        self.record(governor, clock, 5)
        governor.cancel_backoff()

        state = governor.get_state()
        assert state.is_in_backoff is False
        assert state.current_level == 1
        assert state.timeout_count == 0
        assert state.backoff_end_time is None

    def test_reset(self, governor, clock):
        """reset returns to the normal state."""
        self.record(governor, clock, 5)
        governor.reset()

        state = governor.get_state()
        assert state.current_level == 0
        assert state.attempt_count == 0
        assert state.is_in_backoff is False

    def test_end_time(self, governor, clock):
        """The end time is trigger time plus the level duration."""
        self.record(governor, clock, 5, spacing=0)

        assert governor.get_state().backoff_end_time == pytest.approx(clock.now + 30.0)

    def test_end_backoff_when_idle_is_noop(self, governor, callbacks):
        """Ending without a backoff does nothing."""
        governor.end_backoff()

        callbacks["on_backoff_end"].assert_not_called()
        callbacks["on_max_backoff"].assert_not_called()
        assert governor.current_level == 0

    @pytest.mark.asyncio
    async def test_timer_ends_backoff(self, callbacks):
        """With a running loop the backoff ends by itself."""
        config = BackoffConfig(timeout_threshold=2, backoff_levels=(0.05, 0.1))
        governor = BackoffGovernor(config, **callbacks)

        governor.record_timeout("https://example.com/a", is_internal=True)
        governor.record_timeout("https://example.com/b", is_internal=True)
        assert governor.is_in_backoff

        await asyncio.sleep(0.15)

        assert not governor.is_in_backoff
        assert governor.current_level == 1
        callbacks["on_backoff_end"].assert_called_once()

    @pytest.mark.asyncio
    async def test_cancel_stops_timer(self, callbacks):
        """A cancelled backoff never fires its timer."""
        config = BackoffConfig(timeout_threshold=1, backoff_levels=(0.05,))
        governor = BackoffGovernor(config, **callbacks)

        governor.record_timeout("https://example.com/a", is_internal=True)
        governor.cancel_backoff()
        await asyncio.sleep(0.1)

        callbacks["on_backoff_end"].assert_not_called()
        callbacks["on_max_backoff"].assert_not_called()
