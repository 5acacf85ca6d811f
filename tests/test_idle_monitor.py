import threading
import time
from unittest.mock import Mock

import pytest

from idle_monitor import IdleMonitor, IdleState, format_countdown


def _monitor(clock, on_idle=None, idle_time=300000, warning_time=60000):
    monitor = IdleMonitor(on_idle=on_idle, idle_time=idle_time, warning_time=warning_time, clock=clock)
    monitor.start(background=False)
    return monitor


def test_countdown_moves_through_warning_to_expiry(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)

    assert monitor.state is IdleState.ACTIVE
    assert monitor.remaining_millis == 300000

    clock.advance_ms(239000)
    assert monitor.tick() is IdleState.ACTIVE
    assert not monitor.is_warning

    clock.advance_ms(1000)
    assert monitor.tick() is IdleState.WARNING
    assert monitor.remaining_millis == 60000

    clock.advance_ms(30000)
    assert monitor.tick() is IdleState.WARNING
    on_idle.assert_not_called()

    clock.advance_ms(30000)
    assert monitor.tick() is IdleState.EXPIRED
    assert monitor.remaining_millis == 0
    on_idle.assert_called_once_with()

    clock.advance_ms(5000)
    assert monitor.tick() is IdleState.EXPIRED
    on_idle.assert_called_once_with()


def test_late_tick_still_expires_once(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)
    clock.advance_ms(900000)
    assert monitor.tick() is IdleState.EXPIRED
    assert monitor.is_warning
    on_idle.assert_called_once_with()


def test_activity_resets_and_cancels_previous_countdown(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)

    clock.advance_ms(250000)
    monitor.tick()
    assert monitor.is_warning

    assert monitor.record_activity("mousemove")
    assert monitor.state is IdleState.ACTIVE
    assert monitor.remaining_millis == 300000
    assert not monitor.is_warning

    # The first deadline passes without firing
    clock.advance_ms(60000)
    assert monitor.tick() is IdleState.ACTIVE
    on_idle.assert_not_called()

    clock.advance_ms(240000)
    assert monitor.tick() is IdleState.EXPIRED
    on_idle.assert_called_once_with()


def test_stay_signed_in_during_warning_restarts_full_window(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)

    clock.advance_ms(270000)
    assert monitor.tick() is IdleState.WARNING
    assert monitor.remaining_seconds == 30

    # Button callbacks invoke it with no event
    assert monitor.record_activity()
    assert monitor.remaining_millis == monitor.idle_time
    assert not monitor.is_warning
    assert monitor.state is IdleState.ACTIVE

    clock.advance_ms(30000)
    assert monitor.tick() is IdleState.ACTIVE
    on_idle.assert_not_called()


def test_activity_after_expiry_is_ignored(clock):
    monitor = _monitor(clock)
    clock.advance_ms(300000)
    monitor.tick()

    assert not monitor.record_activity("keypress")
    assert monitor.state is IdleState.EXPIRED


def test_explicit_reset_revives_expired_monitor(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)
    clock.advance_ms(300000)
    monitor.tick()

    monitor.reset()
    assert monitor.state is IdleState.ACTIVE
    clock.advance_ms(300000)
    monitor.tick()
    assert on_idle.call_count == 2


def test_unknown_events_do_not_reset(clock):
    monitor = _monitor(clock)
    clock.advance_ms(1000)
    monitor.tick()
    assert not monitor.record_activity("focus")
    assert monitor.remaining_millis == 299000
    assert monitor.record_activity()
    assert monitor.remaining_millis == 300000


def test_activity_before_start_is_ignored(clock):
    monitor = IdleMonitor(clock=clock)
    assert not monitor.record_activity("scroll")
    assert not monitor.running


def test_remaining_seconds_rounds_up(clock):
    monitor = _monitor(clock)
    clock.advance_ms(1500)
    monitor.tick()
    assert monitor.remaining_millis == 298500
    assert monitor.remaining_seconds == 299
    assert monitor.countdown() == "04:59"


def test_stop_halts_countdown(clock):
    on_idle = Mock()
    monitor = _monitor(clock, on_idle)
    monitor.stop()
    clock.advance_ms(400000)
    assert monitor.tick() is IdleState.ACTIVE
    on_idle.assert_not_called()


@pytest.mark.parametrize("seconds,expected", [(0, "00:00"), (59, "00:59"), (300, "05:00"), (-3, "00:00")])
def test_format_countdown(seconds, expected):
    assert format_countdown(seconds) == expected


@pytest.mark.parametrize("idle_time,warning_time", [(0, 0), (1000, 2000), (1000, -1)])
def test_rejects_bad_windows(idle_time, warning_time):
    with pytest.raises(ValueError):
        IdleMonitor(idle_time=idle_time, warning_time=warning_time)


def test_reset_replaces_background_ticker():
    monitor = IdleMonitor(idle_time=60000, warning_time=1000, tick_interval=30)
    monitor.start()
    try:
        first = monitor._timer
        monitor.reset()
        second = monitor._timer
        assert first is not second
        assert first.finished.is_set()
        assert second.is_alive()
    finally:
        monitor.stop()
    assert monitor._timer is None


def test_background_ticker_fires_idle_callback_once():
    fired = threading.Event()
    calls = []

    def on_idle():
        calls.append(1)
        fired.set()

    monitor = IdleMonitor(on_idle=on_idle, idle_time=50, warning_time=20, tick_interval=0.01)
    monitor.start()
    try:
        assert fired.wait(2)
        time.sleep(0.05)
        assert calls == [1]
        assert monitor.state is IdleState.EXPIRED
    finally:
        monitor.stop()
