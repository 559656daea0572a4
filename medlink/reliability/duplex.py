"""Auto-reconnecting duplex (WebSocket) channel.

One persistent bidirectional connection with its own exponential-backoff
reconnection, independent of the request facade. Outbound messages are not
buffered: ``send`` while the channel is not open drops the message.

State machine::

    IDLE --connect()--> CONNECTING --open--> OPEN
    CONNECTING/OPEN --close/error--> CLOSED_RETRYING --timer--> CONNECTING
    any --disconnect()--> CLOSED_INTENTIONAL

CLOSED_RETRYING is terminal once ``max_retries`` reconnects have been spent.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import websocket

from medlink.utils.logging import log_event
from medlink.utils.timers import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)

Message = str | bytes


class DuplexState(Enum):
    """Lifecycle of a duplex channel."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED_INTENTIONAL = "closed_intentional"
    CLOSED_RETRYING = "closed_retrying"


class DuplexConnection(Protocol):
    """The underlying connection handle owned by the manager."""

    def start(self) -> None: ...

    def send(self, data: Message) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class DuplexHandlers:
    """Events a connection reports back to its manager."""

    on_open: Callable[[], None]
    on_message: Callable[[Message], None]
    on_error: Callable[[Exception], None]
    on_close: Callable[[], None]


ConnectionFactory = Callable[
    [str, Sequence[str] | None, dict[str, str], DuplexHandlers], DuplexConnection
]


class WebSocketConnection:
    """websocket-client ``WebSocketApp`` whose read loop runs on a daemon thread.

    Nothing is sent or received until ``start()``.
    """

    def __init__(
        self,
        url: str,
        protocols: Sequence[str] | None,
        headers: dict[str, str],
        handlers: DuplexHandlers,
        ping_interval: float = 20.0,
        ping_timeout: float = 10.0,
    ) -> None:
        self._app = websocket.WebSocketApp(
            url,
            header=headers,
            subprotocols=list(protocols) if protocols else None,
            on_open=lambda _ws: handlers.on_open(),
            on_message=lambda _ws, message: handlers.on_message(message),
            on_error=lambda _ws, error: handlers.on_error(error),
            on_close=lambda _ws, _code, _reason: handlers.on_close(),
        )
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._thread = threading.Thread(target=self._run, name="medlink-duplex", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        self._app.run_forever(ping_interval=self._ping_interval, ping_timeout=self._ping_timeout)

    def send(self, data: Message) -> None:
        opcode = websocket.ABNF.OPCODE_BINARY if isinstance(data, bytes) else websocket.ABNF.OPCODE_TEXT
        self._app.send(data, opcode=opcode)

    def close(self) -> None:
        self._app.close()


class DuplexReconnectManager:
    """Manages one duplex connection with bounded automatic reconnection.

    Example:
        >>> manager = DuplexReconnectManager(
        ...     "wss://field.example/chat",
        ...     on_message=lambda msg: print(msg),
        ...     header_provider=lambda: {"Authorization": f"Bearer {token()}"},
        ... )
        >>> manager.connect()
        >>> manager.send('{"type": "ping"}')
        >>> manager.disconnect()
    """

    DEFAULT_BASE_DELAY = 1.0
    DEFAULT_MAX_DELAY = 30.0
    DEFAULT_MAX_RETRIES = 10
    DEFAULT_JITTER = 1.0

    def __init__(
        self,
        url: str,
        protocols: Sequence[str] | None = None,
        on_message: Callable[[Message], None] | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        jitter: float = DEFAULT_JITTER,
        scheduler: Scheduler | None = None,
        connection_factory: ConnectionFactory | None = None,
        header_provider: Callable[[], dict[str, str]] | None = None,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """Initialize the manager. Nothing connects until ``connect()``.

        Args:
            url: Duplex endpoint URL.
            protocols: Optional subprotocol list.
            on_message: Called with each inbound message.
            on_open: Called after every successful open.
            on_close: Called after every close, intentional or not.
            on_error: Called with connection errors.
            base_delay: Reconnect backoff base in seconds.
            max_delay: Cap on the backoff before jitter.
            max_retries: Reconnect attempts before giving up.
            jitter: Upper bound of the uniform random delay per reconnect.
            scheduler: Timer source (injectable for tests).
            connection_factory: Opens the underlying connection.
            header_provider: Builds handshake headers on every attempt.
            rng: Uniform random source (injectable for tests).
        """
        self._url = url
        self._protocols = protocols
        self.on_message = on_message
        self.on_open = on_open
        self.on_close = on_close
        self.on_error = on_error
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_retries = max_retries
        self._jitter = jitter
        self._scheduler = scheduler or ThreadingScheduler("medlink-reconnect")
        self._factory: ConnectionFactory = connection_factory or WebSocketConnection
        self._header_provider = header_provider
        self._rng = rng

        self._lock = threading.RLock()
        self._conn: DuplexConnection | None = None
        self._state = DuplexState.IDLE
        self._retry_count = 0
        self._timer: TimerHandle | None = None
        self._intentional_close = False
        # Identifies the current connection attempt; events from older ones are ignored
        self._attempt_id = 0
        self._early_open: int | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> DuplexState:
        with self._lock:
            return self._state

    @property
    def retry_count(self) -> int:
        with self._lock:
            return self._retry_count

    @property
    def is_connected(self) -> bool:
        return self.state is DuplexState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def connect(self) -> None:
        """Open the channel, resetting the retry budget."""
        with self._lock:
            self._intentional_close = False
            self._retry_count = 0
            timer, self._timer = self._timer, None
            previous, self._conn = self._conn, None
            # Detach events of the previous connection before closing it
            self._attempt_id += 1
        if timer is not None:
            timer.cancel()
        if previous is not None:
            self._close_quietly(previous)
        self._open_connection()

    def disconnect(self) -> None:
        """Close the channel and suppress reconnects until the next ``connect()``."""
        with self._lock:
            self._intentional_close = True
            timer, self._timer = self._timer, None
            conn, self._conn = self._conn, None
            self._state = DuplexState.CLOSED_INTENTIONAL
        if timer is not None:
            timer.cancel()
        if conn is not None:
            self._close_quietly(conn)
        logger.info("Duplex channel %s disconnected", self._url)

    def send(self, data: Message) -> bool:
        """Send a message if the channel is open; otherwise drop it.

        Returns:
            True if the message was handed to the connection.
        """
        with self._lock:
            conn = self._conn if self._state is DuplexState.OPEN else None
        if conn is None:
            logger.debug("Dropping outbound message, duplex channel not open")
            return False
        try:
            conn.send(data)
        except (websocket.WebSocketException, OSError) as e:
            logger.warning("Duplex send failed: %s", e)
            return False
        return True

    def _open_connection(self) -> None:
        with self._lock:
            if self._intentional_close:
                return
            self._attempt_id += 1
            attempt = self._attempt_id
            self._state = DuplexState.CONNECTING

        handlers = DuplexHandlers(
            on_open=lambda: self._handle_open(attempt),
            on_message=lambda data: self._handle_message(attempt, data),
            on_error=lambda error: self._handle_error(attempt, error),
            on_close=lambda: self._handle_close(attempt),
        )

        try:
            headers = self._header_provider() if self._header_provider else {}
            conn = self._factory(self._url, self._protocols, headers, handlers)
        except Exception as e:
            logger.warning("Could not create duplex connection to %s: %s", self._url, e)
            self._handle_close(attempt)
            return

        with self._lock:
            stale = attempt != self._attempt_id or self._intentional_close
            usable = not stale and self._state is not DuplexState.CLOSED_RETRYING
            if usable:
                self._conn = conn
            opened_early = usable and self._early_open == attempt
            self._early_open = None
        if not usable:
            if stale:
                self._close_quietly(conn)
            return

        if opened_early:
            self._handle_open(attempt)
        try:
            conn.start()
        except (RuntimeError, OSError) as e:
            logger.warning("Could not start duplex connection to %s: %s", self._url, e)
            self._handle_close(attempt)

    def _handle_open(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt_id or self._intentional_close:
                return
            if self._conn is None:
                # Opened before the handle was stored; finished by _open_connection
                self._early_open = attempt
                return
            self._state = DuplexState.OPEN
            self._retry_count = 0
        log_event(logger, "duplex.open", message=f"Duplex channel open: {self._url}")
        self._fire(self.on_open)

    def _handle_message(self, attempt: int, data: Message) -> None:
        with self._lock:
            if attempt != self._attempt_id:
                return
        self._fire(self.on_message, data)

    def _handle_error(self, attempt: int, error: Exception) -> None:
        with self._lock:
            if attempt != self._attempt_id:
                return
        logger.debug("Duplex channel error: %s", error)
        self._fire(self.on_error, error)

    def _handle_close(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt_id:
                return
            self._conn = None
            self._early_open = None
            retry = not self._intentional_close
            if retry:
                self._state = DuplexState.CLOSED_RETRYING
        self._fire(self.on_close)
        if retry:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._intentional_close or self._timer is not None:
                return
            if self._retry_count >= self._max_retries:
                log_event(
                    logger,
                    "duplex.gave_up",
                    level=logging.WARNING,
                    message=f"Duplex channel {self._url} gave up after {self._retry_count} reconnects",
                    retries=self._retry_count,
                )
                return

            delay = min(self._base_delay * (2**self._retry_count), self._max_delay)
            if self._jitter > 0:
                delay += self._rng(0.0, self._jitter)
            self._retry_count += 1
            attempt = self._attempt_id
            retry_number = self._retry_count
            self._timer = self._scheduler.call_later(delay, lambda: self._reconnect_due(attempt))

        log_event(
            logger,
            "duplex.reconnect_scheduled",
            message=f"Reconnecting {self._url} in {delay:.1f}s (attempt {retry_number}/{self._max_retries})",
            delay_s=round(delay, 3),
            attempt=retry_number,
        )

    def _reconnect_due(self, attempt: int) -> None:
        with self._lock:
            if attempt != self._attempt_id or self._intentional_close:
                return
            self._timer = None
        self._open_connection()

    def _fire(self, callback: Callable[..., None] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Duplex callback %r failed", callback)

    @staticmethod
    def _close_quietly(conn: DuplexConnection) -> None:
        try:
            conn.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.debug("Error closing duplex connection: %s", e)


__all__ = [
    "ConnectionFactory",
    "DuplexConnection",
    "DuplexHandlers",
    "DuplexReconnectManager",
    "DuplexState",
    "WebSocketConnection",
]
