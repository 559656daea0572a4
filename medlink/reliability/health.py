"""Background backend liveness probing.

Probes a fixed health path on a timer, independent of user traffic. A single
failed probe (timeout, network error, non-2xx) marks the backend unhealthy;
there is no retry. Subscribers are only told when the healthy/unhealthy value
actually changes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests

from medlink.utils.timers import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Periodic liveness probe with an edge-triggered health signal.

    Example:
        >>> monitor = HealthMonitor(
        ...     "http://localhost:3001/api/health",
        ...     on_change=lambda healthy: print("healthy" if healthy else "down"),
        ... )
        >>> monitor.start()
        >>> # Later...
        >>> monitor.stop()
    """

    DEFAULT_CHECK_INTERVAL = 30.0  # seconds
    DEFAULT_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        health_url: str,
        session: requests.Session | None = None,
        interval: float = DEFAULT_CHECK_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        scheduler: Scheduler | None = None,
        on_change: Callable[[bool], None] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            health_url: Absolute URL of the health endpoint.
            session: requests session for probes.
            interval: Seconds between probes.
            timeout: Timeout of a single probe.
            scheduler: Timer source (injectable for tests).
            on_change: Called with the new value on each healthy/unhealthy edge.
        """
        self._health_url = health_url
        self._session = session or requests.Session()
        self._interval = interval
        self._timeout = timeout
        self._scheduler = scheduler or ThreadingScheduler("medlink-health")
        self.on_change = on_change

        self._lock = threading.Lock()
        self._healthy = True
        self._running = False
        self._generation = 0
        self._timer: TimerHandle | None = None
        self._last_check: float | None = None
        self._last_latency_ms: float | None = None

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def last_check(self) -> float | None:
        """Unix time of the last completed probe."""
        with self._lock:
            return self._last_check

    @property
    def last_latency_ms(self) -> float | None:
        with self._lock:
            return self._last_latency_ms

    def start(self) -> None:
        """Start probing: one immediate probe, then one per interval.

        A second call while running is a no-op.
        """
        with self._lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
            generation = self._generation
            self._timer = self._scheduler.call_later(0, lambda: self._tick(generation))
        logger.info("Health monitor started (%s every %.0fs)", self._health_url, self._interval)

    def stop(self) -> None:
        """Stop probing and cancel the pending timer."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._generation += 1
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        logger.info("Health monitor stopped")

    def check_now(self) -> bool:
        """Probe immediately and apply the result.

        Returns:
            True if the backend answered with a 2xx status.
        """
        healthy = self.probe()
        self._apply(healthy)
        return healthy

    def probe(self) -> bool:
        """Issue one health request without touching monitor state."""
        start = time.perf_counter()
        try:
            response = self._session.get(self._health_url, timeout=self._timeout)
            healthy = 200 <= response.status_code < 300
            if not healthy:
                logger.debug("Health probe returned HTTP %d", response.status_code)
        except requests.RequestException as e:
            logger.debug("Health probe failed: %s", e)
            healthy = False
        latency_ms = (time.perf_counter() - start) * 1000

        with self._lock:
            self._last_check = time.time()
            self._last_latency_ms = latency_ms
        return healthy

    def _tick(self, generation: int) -> None:
        with self._lock:
            if not self._running or generation != self._generation:
                return

        healthy = self.probe()

        with self._lock:
            if not self._running or generation != self._generation:
                return
            self._timer = self._scheduler.call_later(
                self._interval, lambda: self._tick(generation)
            )

        self._apply(healthy)

    def _apply(self, healthy: bool) -> None:
        with self._lock:
            if self._healthy == healthy:
                return
            self._healthy = healthy

        if healthy:
            logger.info("Backend healthy again")
        else:
            logger.warning("Backend unhealthy: %s", self._health_url)

        if self.on_change:
            try:
                self.on_change(healthy)
            except Exception:
                logger.exception("Health change callback failed")


__all__ = ["HealthMonitor"]
