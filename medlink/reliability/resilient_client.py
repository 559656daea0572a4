"""Resilient request facade.

Single entry point for callers. Online requests go straight through the
backoff executor; requests made while offline are parked in the offline queue
and settle when connectivity returns.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any

import requests

from medlink.reliability.offline import OfflineQueue
from medlink.reliability.status import ConnectionStatusPublisher
from medlink.reliability.transport import RequestDescriptor
from medlink.retry import BackoffExecutor

logger = logging.getLogger(__name__)


class ResilientClient:
    """Routes requests through the offline queue or the retry executor.

    Features:
    - Automatic retry with exponential backoff for 5xx/408/429 and network errors
    - Offline queuing with FIFO replay on reconnect
    - Verb helpers building immutable request descriptors

    Example:
        >>> client = ResilientClient(executor, queue, publisher)
        >>>
        >>> # Blocks until settled, even across an offline period
        >>> response = client.get("/patients", params={"unit": "3rd-med"})
        >>>
        >>> # Non-blocking while offline
        >>> future = client.submit(RequestDescriptor("POST", "/reports", json=report))
    """

    def __init__(
        self,
        executor: BackoffExecutor,
        queue: OfflineQueue,
        status: ConnectionStatusPublisher,
    ) -> None:
        self._executor = executor
        self._queue = queue
        self._status = status

    def submit(self, descriptor: RequestDescriptor) -> Future[requests.Response]:
        """Route a request and return its pending result.

        Offline: the request is queued and the returned future settles when the
        queue replays it; there is no timeout on that wait. Online: the request
        runs on the calling thread and the returned future is already settled.
        """
        if not self._status.is_online:
            queued = self._queue.enqueue(descriptor)
            # Connectivity may have returned between the check and the enqueue
            if self._status.is_online:
                self._status.request_drain()
            return queued

        future: Future[requests.Response] = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(self._executor.execute_with_retry(descriptor))
        except Exception as e:
            future.set_exception(e)
        return future

    def request(self, descriptor: RequestDescriptor) -> requests.Response:
        """Send a request, waiting through any offline period.

        Raises:
            requests.RequestException: Terminal client error or exhausted retries.
            RequestAbandonedError: The queue was cleared before replay.
        """
        if self._status.is_online:
            return self._executor.execute_with_retry(descriptor)
        return self.submit(descriptor).result()

    # Convenience methods

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Execute GET request."""
        return self.request(
            RequestDescriptor("GET", path, headers=headers or {}, params=params or {}, timeout=timeout)
        )

    def post(
        self,
        path: str,
        json: Any = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Execute POST request."""
        return self.request(
            RequestDescriptor("POST", path, headers=headers or {}, json=json, data=data, timeout=timeout)
        )

    def put(
        self,
        path: str,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Execute PUT request."""
        return self.request(
            RequestDescriptor("PUT", path, headers=headers or {}, json=json, timeout=timeout)
        )

    def patch(
        self,
        path: str,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Execute PATCH request."""
        return self.request(
            RequestDescriptor("PATCH", path, headers=headers or {}, json=json, timeout=timeout)
        )

    def delete(
        self,
        path: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Execute DELETE request."""
        return self.request(
            RequestDescriptor("DELETE", path, headers=headers or {}, timeout=timeout)
        )


__all__ = ["ResilientClient"]
