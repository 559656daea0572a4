"""Connection status publishing.

Merges the host's online/offline connectivity events and the health
monitor's output into one observable status. Going online also replays the
offline queue.

Hosts without connectivity events (headless/server use) never call
``set_online``; the online flag then stays True.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from medlink.reliability.offline import OfflineQueue
from medlink.utils.logging import log_event
from medlink.utils.timers import run_in_thread

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of connectivity as seen by this process."""

    is_online: bool
    is_backend_healthy: bool
    queued_request_count: int

    def to_dict(self) -> dict[str, bool | int]:
        return {
            "is_online": self.is_online,
            "is_backend_healthy": self.is_backend_healthy,
            "queued_request_count": self.queued_request_count,
        }


StatusCallback = Callable[[ConnectionStatus], None]


class ConnectionStatusPublisher:
    """Observable connection status with edge-triggered notifications.

    Example:
        >>> publisher = ConnectionStatusPublisher(queue)
        >>> unsubscribe = publisher.subscribe(lambda s: print(s.is_online))
        >>> publisher.set_online(False)   # host reported "offline"
        >>> publisher.set_online(True)    # host reported "online"; queue drains
        >>> unsubscribe()
    """

    def __init__(
        self,
        queue: OfflineQueue,
        initial_online: bool | None = None,
        dispatcher: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            queue: Offline queue drained on each transition to online.
            initial_online: Connectivity snapshot at startup; None means the
                host has no connectivity signal and the flag starts True.
            dispatcher: Runs the drain off the notifying thread. Defaults to a
                daemon thread per drain.
        """
        self._queue = queue
        self._dispatch = dispatcher or (lambda fn: run_in_thread(fn, "medlink-drain"))
        self._lock = threading.Lock()
        # Serializes transitions so subscribers see them in detection order
        self._transition_lock = threading.RLock()
        self._online = True if initial_online is None else initial_online
        self._backend_healthy = True
        self._subscribers: list[StatusCallback] = []

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._online

    @property
    def is_backend_healthy(self) -> bool:
        with self._lock:
            return self._backend_healthy

    def get_status(self) -> ConnectionStatus:
        """Non-blocking snapshot; the queue count is read live."""
        with self._lock:
            online, healthy = self._online, self._backend_healthy
        return ConnectionStatus(
            is_online=online,
            is_backend_healthy=healthy,
            queued_request_count=len(self._queue),
        )

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register for every status change.

        Returns:
            Function that removes the subscription; safe to call twice.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record a host connectivity event."""
        with self._transition_lock:
            with self._lock:
                if self._online == online:
                    return
                self._online = online

            log_event(
                logger,
                "status.online_changed",
                level=logging.INFO if online else logging.WARNING,
                message="Connectivity restored" if online else "Connectivity lost",
                is_online=online,
                queued=len(self._queue),
            )
            self._notify()
        if online:
            self.request_drain()

    def set_backend_healthy(self, healthy: bool) -> None:
        """Record a health monitor transition."""
        with self._transition_lock:
            with self._lock:
                if self._backend_healthy == healthy:
                    return
                self._backend_healthy = healthy

            log_event(
                logger,
                "status.backend_health_changed",
                level=logging.INFO if healthy else logging.WARNING,
                is_backend_healthy=healthy,
            )
            self._notify()

    def request_drain(self) -> None:
        """Replay the offline queue while the online flag stays True."""
        if len(self._queue) == 0:
            return
        self._dispatch(lambda: self._queue.drain(should_continue=lambda: self.is_online))

    def _notify(self) -> None:
        status = self.get_status()
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(status)
            except Exception:
                logger.exception("Connection status subscriber failed")


__all__ = ["ConnectionStatus", "ConnectionStatusPublisher", "StatusCallback"]
