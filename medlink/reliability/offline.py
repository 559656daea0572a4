"""Offline request queue.

Requests issued while disconnected are buffered in memory and replayed in
FIFO order once connectivity returns. Each entry carries a Future that is
settled with the replayed response or the terminal error.

The queue is memory-resident only: queued requests do not survive a process
restart.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field

import requests

from medlink.errors import RequestAbandonedError
from medlink.reliability.transport import RequestDescriptor
from medlink.retry import BackoffExecutor

logger = logging.getLogger(__name__)


@dataclass
class QueuedRequest:
    """A request waiting for connectivity, with its pending result."""

    descriptor: RequestDescriptor
    future: Future[requests.Response] = field(default_factory=Future)
    enqueued_at: float = field(default_factory=time.time)

    def resolve(self, response: requests.Response) -> None:
        self.future.set_result(response)

    def reject(self, error: BaseException) -> None:
        self.future.set_exception(error)

    @property
    def waited(self) -> float:
        """Seconds since the request was queued."""
        return time.time() - self.enqueued_at


class OfflineQueue:
    """Thread-safe FIFO of requests issued while offline.

    Example:
        >>> queue = OfflineQueue(executor)
        >>> future = queue.enqueue(RequestDescriptor("POST", "/reports", json=report))
        >>> # When back online:
        >>> queue.drain(should_continue=lambda: status.is_online)
        >>> future.result()
    """

    def __init__(self, executor: BackoffExecutor) -> None:
        """Initialize the queue.

        Args:
            executor: Runs each replayed request with retries.
        """
        self._executor = executor
        self._entries: deque[QueuedRequest] = deque()
        self._lock = threading.Lock()
        self._drain_lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def enqueue(self, descriptor: RequestDescriptor) -> Future[requests.Response]:
        """Buffer a request until the next drain.

        Returns:
            Future settled when the request is replayed.
        """
        entry = QueuedRequest(descriptor)
        with self._lock:
            self._entries.append(entry)
            depth = len(self._entries)
        logger.info("Queued %s while offline (%d pending)", descriptor.describe(), depth)
        return entry.future

    def _pop(self) -> QueuedRequest | None:
        with self._lock:
            return self._entries.popleft() if self._entries else None

    def drain(self, should_continue: Callable[[], bool] | None = None) -> int:
        """Replay queued requests in FIFO order.

        ``should_continue`` is checked before each entry is taken; when it
        returns False the remaining entries stay queued. Only one drain runs at
        a time; a concurrent call returns immediately. After releasing the drain
        lock the queue is checked once more, so an entry enqueued while a
        concurrent call was being turned away is not left behind.

        Args:
            should_continue: Connectivity check; defaults to always True.

        Returns:
            Number of entries processed by this call.
        """
        processed = 0
        while self._drain_lock.acquire(blocking=False):
            try:
                while should_continue is None or should_continue():
                    entry = self._pop()
                    if entry is None:
                        break
                    self._replay(entry)
                    processed += 1
            finally:
                self._drain_lock.release()
            # An entry enqueued after the last pop may have seen the lock still held
            if not len(self) or (should_continue is not None and not should_continue()):
                break
        else:
            logger.debug("Drain already in progress")

        if processed:
            logger.info("Drained %d queued requests (%d remaining)", processed, len(self))
        return processed

    def _replay(self, entry: QueuedRequest) -> None:
        if not entry.future.set_running_or_notify_cancel():
            logger.debug("Skipping cancelled queued request %s", entry.descriptor.describe())
            return
        logger.debug("Replaying %s after %.1fs offline", entry.descriptor.describe(), entry.waited)
        try:
            response = self._executor.execute_with_retry(entry.descriptor)
        except Exception as e:
            logger.warning("Queued request %s failed: %s", entry.descriptor.describe(), e)
            entry.reject(e)
        else:
            entry.resolve(response)

    def clear(self, reason: str = "offline queue cleared") -> int:
        """Reject and drop every pending entry.

        Returns:
            Number of entries rejected.
        """
        with self._lock:
            entries = list(self._entries)
            self._entries.clear()

        for entry in entries:
            if entry.future.set_running_or_notify_cancel():
                entry.reject(
                    RequestAbandonedError(
                        reason,
                        details={
                            "request": entry.descriptor.describe(),
                            "queued_for_s": round(entry.waited, 3),
                        },
                    )
                )

        if entries:
            logger.warning("Abandoned %d queued requests: %s", len(entries), reason)
        return len(entries)


__all__ = ["OfflineQueue", "QueuedRequest"]
