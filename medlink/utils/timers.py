"""Cancellable timer scheduling.

Health probing and duplex reconnects run on timers. Components take a
``Scheduler`` so tests can drive time by hand instead of sleeping.

Example:
    scheduler = ThreadingScheduler()
    handle = scheduler.call_later(5.0, probe)
    handle.cancel()  # probe never runs
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """A pending callback that can be cancelled."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Schedules a callback to run once after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` threads.

    ``cancel()`` only prevents callbacks that have not started yet, so owners
    must re-check their own state inside the callback.
    """

    def __init__(self, name: str = "medlink-timer") -> None:
        self._name = name

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(delay, 0.0), self._run, args=(callback,))
        timer.daemon = True
        timer.name = self._name
        timer.start()
        return timer

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback %r failed", callback)


def run_in_thread(func: Callable[[], None], name: str = "medlink-worker") -> None:
    """Run ``func`` on a daemon thread without waiting for it."""
    thread = threading.Thread(target=func, name=name, daemon=True)
    thread.start()


__all__ = ["TimerHandle", "Scheduler", "ThreadingScheduler", "run_in_thread"]
