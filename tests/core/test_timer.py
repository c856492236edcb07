"""
Tests for the session countdown timer and checkpoint reconciliation.
"""
import logging
from datetime import datetime, timedelta, timezone

import pytest

from tryout.core.engine.timer import (
    SessionTimer,
    TimerCheckpointState,
    TimerUrgency,
    reconcile,
    timer_urgency,
)

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestReconcile:
    """Tests for reconcile()."""

    def test_subtracts_elapsed_time(self):
        """Remaining time is the stored value minus the time since the checkpoint."""
        stored = TimerCheckpointState(remaining_seconds=1200.0, checkpoint_at=T0)
        assert reconcile(stored, at(900), 1800) == pytest.approx(300.0)

    def test_never_negative(self):
        """A checkpoint older than its remaining time reconciles to zero."""
        stored = TimerCheckpointState(remaining_seconds=600.0, checkpoint_at=T0)
        assert reconcile(stored, at(700), 600) == 0.0

    def test_expiry_fired_is_always_zero(self):
        """Once expiry fired the timer stays at zero regardless of the stored value."""
        stored = TimerCheckpointState(
            remaining_seconds=500.0, checkpoint_at=T0, expiry_fired=True
        )
        assert reconcile(stored, at(1), 600) == 0.0

    def test_future_checkpoint_treated_as_no_elapsed_time(self, caplog):
        """A checkpoint stamped after now is clamped and logged as clock skew."""
        stored = TimerCheckpointState(remaining_seconds=300.0, checkpoint_at=at(30))
        with caplog.at_level(logging.WARNING, logger="tryout.core.engine.timer"):
            remaining = reconcile(stored, T0, 600, session_id=7)

        assert remaining == pytest.approx(300.0)
        assert "Clock skew" in caplog.text

    def test_stored_remaining_above_duration_is_clamped(self, caplog):
        """A stored value larger than the duration is clamped to the duration."""
        stored = TimerCheckpointState(remaining_seconds=9999.0, checkpoint_at=T0)
        with caplog.at_level(logging.WARNING, logger="tryout.core.engine.timer"):
            remaining = reconcile(stored, at(100), 600)

        assert remaining == pytest.approx(500.0)
        assert "clamping" in caplog.text

    def test_naive_checkpoint_is_treated_as_utc(self):
        """Naive datetimes from SQLite are interpreted as UTC."""
        stored = TimerCheckpointState(
            remaining_seconds=100.0, checkpoint_at=T0.replace(tzinfo=None)
        )
        assert reconcile(stored, at(40), 600) == pytest.approx(60.0)


class TestSessionTimer:
    """Tests for SessionTimer."""

    def test_start_has_full_duration(self):
        """A new timer starts with the whole duration remaining."""
        timer = SessionTimer.start(1, 1800, T0)
        assert timer.remaining_at(T0) == pytest.approx(1800.0)

    def test_tick_recomputes_from_anchor(self):
        """Ticks use the wall-clock delta, so late ticks do not drift."""
        timer = SessionTimer.start(1, 60, T0)
        timer.tick(at(1))
        result = timer.tick(at(10.5))

        assert result.remaining_seconds == pytest.approx(49.5)
        assert result.expired is False
        assert result.just_expired is False

    def test_expiry_callback_fires_exactly_once(self):
        """Repeated ticks after expiry never fire the callback again."""
        fired = []
        timer = SessionTimer.start(1, 10, T0)
        timer.on_expire(lambda: fired.append(True))

        first = timer.tick(at(10))
        second = timer.tick(at(11))
        third = timer.tick(at(500))

        assert fired == [True]
        assert first.just_expired is True
        assert second.just_expired is False
        assert third.expired is True
        assert timer.expiry_fired is True

    def test_resume_from_expired_checkpoint_does_not_fire_again(self):
        """A checkpoint recording expiry re-confirms zero without callbacks."""
        fired = []
        stored = TimerCheckpointState(0.0, T0, expiry_fired=True)
        timer = SessionTimer.resume(1, stored, 600, at(5))
        timer.on_expire(lambda: fired.append(True))

        result = timer.tick(at(6))

        assert result.expired is True
        assert result.just_expired is False
        assert fired == []

    def test_resume_with_elapsed_time_fires_on_first_tick(self):
        """A session that ran out while closed expires on the first tick after reopening."""
        fired = []
        stored = TimerCheckpointState(remaining_seconds=600.0, checkpoint_at=T0)
        timer = SessionTimer.resume(1, stored, 600, at(700))
        timer.on_expire(lambda: fired.append(True))

        result = timer.tick(at(700))

        assert result.just_expired is True
        assert fired == [True]

    def test_remaining_never_increases(self):
        """A clock stepping backwards cannot give time back."""
        timer = SessionTimer.start(1, 100, T0)
        timer.tick(at(40))
        result = timer.tick(at(10))

        assert result.remaining_seconds == pytest.approx(60.0)

    def test_checkpoints_are_monotonic(self):
        """Successive checkpoints never report more remaining time."""
        timer = SessionTimer.start(1, 100, T0)
        values = [timer.checkpoint(at(s)).remaining_seconds for s in (5, 20, 15, 60, 200)]

        assert values == sorted(values, reverse=True)
        assert values[-1] == 0.0

    def test_checkpoint_records_expiry(self):
        """The checkpoint taken after expiry carries the expiry flag."""
        timer = SessionTimer.start(1, 10, T0)
        timer.tick(at(10))
        state = timer.checkpoint(at(11))

        assert state.expiry_fired is True
        assert state.remaining_seconds == 0.0


class TestTimerUrgency:
    """Tests for timer_urgency()."""

    @pytest.mark.parametrize(
        "remaining,expected",
        [
            (1800, TimerUrgency.NORMAL),
            (361, TimerUrgency.NORMAL),
            (360, TimerUrgency.WARNING),
            (181, TimerUrgency.WARNING),
            (180, TimerUrgency.CRITICAL),
            (0, TimerUrgency.CRITICAL),
        ],
    )
    def test_default_thresholds(self, remaining, expected):
        """Warning at 20% remaining, critical at 10%."""
        assert timer_urgency(remaining, 1800) == expected

    def test_custom_thresholds(self):
        assert timer_urgency(50, 100, warning_ratio=0.5, critical_ratio=0.25) == (
            TimerUrgency.WARNING
        )

    def test_zero_duration_is_critical(self):
        assert timer_urgency(0, 0) == TimerUrgency.CRITICAL
