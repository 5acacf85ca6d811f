# idle_monitor.py
"""Inactivity countdown for a logged-in session.

The monitor keeps a single deadline. Every tick recomputes the time left
from the clock, so a late or skipped tick never makes the countdown drift.
Inside the trailing warning window ``is_warning`` latches on; at zero the
idle callback runs once and the monitor stays expired until ``reset``.
"""
import math
import time
import logging
import threading
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIME = 5 * 60 * 1000
DEFAULT_WARNING_TIME = 60 * 1000

ACTIVITY_EVENTS = frozenset({"mousemove", "mousedown", "keypress", "scroll", "touchstart"})


class IdleState(Enum):
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


def format_countdown(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class IdleMonitor:

    def __init__(
        self,
        on_idle: Optional[Callable[[], None]] = None,
        idle_time: int = DEFAULT_IDLE_TIME,
        warning_time: int = DEFAULT_WARNING_TIME,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: float = 1.0,
    ):
        if idle_time <= 0:
            raise ValueError("idle_time must be positive")
        if not 0 <= warning_time <= idle_time:
            raise ValueError("warning_time must be between 0 and idle_time")

        self.on_idle = on_idle
        self.idle_time = idle_time
        self.warning_time = warning_time
        self.clock = clock
        self.tick_interval = tick_interval

        self._lock = threading.RLock()
        self._deadline = None
        self._remaining = idle_time
        self._warning = False
        self._expired = False
        self._background = False
        self._timer = None
        self._generation = 0

    # -- reads ---------------------------------------------------------------

    @property
    def remaining_millis(self) -> int:
        return self._remaining

    @property
    def remaining_seconds(self) -> int:
        return math.ceil(self._remaining / 1000)

    @property
    def is_warning(self) -> bool:
        return self._warning

    @property
    def state(self) -> IdleState:
        if self._expired:
            return IdleState.EXPIRED
        if self._warning:
            return IdleState.WARNING
        return IdleState.ACTIVE

    @property
    def running(self) -> bool:
        return self._deadline is not None

    def countdown(self) -> str:
        return format_countdown(self.remaining_seconds)

    # -- transitions ---------------------------------------------------------

    def start(self, background: bool = True):
        """Start counting down. With ``background`` a timer thread ticks every
        ``tick_interval`` seconds; otherwise the host must call ``tick()``."""
        with self._lock:
            self._background = background
            self.reset()

    def reset(self):
        with self._lock:
            self._cancel_timer()
            self._deadline = self.clock() * 1000 + self.idle_time
            self._remaining = self.idle_time
            self._warning = False
            self._expired = False
            if self._background:
                self._schedule()

    def record_activity(self, event: Optional[str] = None) -> bool:
        """Reset on a recognised activity signal. Returns True if it reset."""
        if event is not None and event not in ACTIVITY_EVENTS:
            return False
        with self._lock:
            if self._expired or self._deadline is None:
                return False
            self.reset()
            return True

    def tick(self) -> IdleState:
        fire = False
        with self._lock:
            if self._deadline is None or self._expired:
                return self.state

            self._remaining = max(0, int(self._deadline - self.clock() * 1000))
            if self._remaining <= self.warning_time:
                self._warning = True
            if self._remaining == 0:
                self._expired = True
                self._deadline = None
                self._cancel_timer()
                fire = True

        if fire:
            logger.info("Session idle for %d ms, expiring", self.idle_time)
            if self.on_idle is not None:
                self.on_idle()
        return self.state

    def stop(self):
        with self._lock:
            self._background = False
            self._deadline = None
            self._cancel_timer()

    # -- background ticker ---------------------------------------------------

    def _cancel_timer(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self):
        self._cancel_timer()
        generation = self._generation
        timer = threading.Timer(self.tick_interval, self._on_timer, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _on_timer(self, generation):
        with self._lock:
            if generation != self._generation:
                return
        if self.tick() is IdleState.EXPIRED:
            return
        with self._lock:
            if generation == self._generation and self._background:
                self._schedule()
