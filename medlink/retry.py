"""Bounded exponential-backoff retries for single requests.

Retry eligibility follows the response status of the failed attempt:

- no response at all (network failure, timeout) -> retry
- 5xx, 408 Request Timeout, 429 Too Many Requests -> retry
- any other status -> fail immediately with the original error

Attempt ``n`` (zero-based) that fails retryably waits
``base_delay * 2**n + uniform(0, jitter)`` before the next attempt. After the
last attempt the last transport error is raised unchanged.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable

import requests

from medlink.errors import RetryExhaustedError
from medlink.reliability.transport import RequestDescriptor

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429})

Send = Callable[[RequestDescriptor], requests.Response]


def status_of(error: BaseException) -> int | None:
    """HTTP status carried by a transport error, or None if there was no response."""
    response = getattr(error, "response", None)
    if response is None:
        return None
    return getattr(response, "status_code", None)


def is_retryable(status: int | None) -> bool:
    """Classify a failed attempt by its response status."""
    if status is None:
        return True
    return status >= 500 or status in RETRYABLE_STATUS_CODES


def backoff_delay(
    attempt: int,
    base_delay: float,
    jitter: float,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before the attempt following zero-based ``attempt``."""
    delay = base_delay * (2**attempt)
    if jitter > 0:
        delay += rng(0.0, jitter)
    return delay


class BackoffExecutor:
    """Runs one request with bounded exponential-backoff retries.

    Stateless across calls; safe to share between threads.

    Example:
        >>> executor = BackoffExecutor(transport.send)
        >>> response = executor.execute_with_retry(RequestDescriptor("GET", "/cases"))
    """

    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 1.0
    DEFAULT_JITTER = 0.5

    def __init__(
        self,
        send: Send,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        jitter: float = DEFAULT_JITTER,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """Initialize the executor.

        Args:
            send: Performs one attempt; raises a requests exception on failure.
            max_retries: Default number of retries after the first attempt.
            base_delay: Backoff base in seconds.
            jitter: Upper bound of the uniform random delay added per retry.
            sleep: Sleep function (injectable for tests).
            rng: Uniform random source (injectable for tests).
        """
        self._send = send
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng

    def execute_with_retry(
        self,
        descriptor: RequestDescriptor,
        max_retries: int | None = None,
    ) -> requests.Response:
        """Send ``descriptor``, retrying transient failures.

        Args:
            descriptor: The request to send.
            max_retries: Override of the default retry ceiling.

        Returns:
            The successful response.

        Raises:
            requests.RequestException: The last transport error, or the first
                non-retryable one.
        """
        retries = self.max_retries if max_retries is None else max_retries
        last_error: requests.RequestException | None = None

        for attempt in range(retries + 1):
            try:
                return self._send(descriptor)
            except requests.RequestException as e:
                last_error = e
                status = status_of(e)

                if not is_retryable(status):
                    logger.info(
                        "%s failed with HTTP %s, not retrying", descriptor.describe(), status
                    )
                    raise

                if attempt >= retries:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        descriptor.describe(),
                        attempt + 1,
                        e,
                    )
                    raise

                delay = backoff_delay(attempt, self.base_delay, self.jitter, self._rng)
                logger.warning(
                    "Retry %d/%d for %s after %.2fs (%s)",
                    attempt + 1,
                    retries,
                    descriptor.describe(),
                    delay,
                    status if status is not None else "network error",
                )
                self._sleep(delay)

        # Unreachable when retries >= 0
        if last_error is not None:
            raise last_error
        raise RetryExhaustedError(details={"request": descriptor.describe()})


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "BackoffExecutor",
    "backoff_delay",
    "is_retryable",
    "status_of",
]
