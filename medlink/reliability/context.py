"""Explicitly constructed resilience context.

Owns the process-wide shared state (token pair, connection status, offline
queue) and wires every component to it. Build one per process and pass it
around, or use ``get_resilience_context()``.

Usage:
    from medlink.reliability.context import ResilienceContext

    ctx = ResilienceContext(config)
    ctx.set_tokens(access_token, refresh_token)
    ctx.start()

    ctx.status.set_online(False)   # host connectivity event
    future = ctx.client.submit(RequestDescriptor("POST", "/reports", json=report))
    ctx.status.set_online(True)    # queue replays, future settles

    channel = ctx.create_duplex("wss://field.example/chat", on_message=handle)
    channel.connect()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any

import requests

from medlink.auth.refresh import TokenRefreshCoordinator
from medlink.auth.tokens import TokenPair, TokenStore
from medlink.config import ResilienceConfig, get_config
from medlink.reliability.duplex import ConnectionFactory, DuplexReconnectManager, Message
from medlink.reliability.health import HealthMonitor
from medlink.reliability.offline import OfflineQueue
from medlink.reliability.resilient_client import ResilientClient
from medlink.reliability.status import ConnectionStatus, ConnectionStatusPublisher
from medlink.reliability.transport import HttpTransport, create_session
from medlink.retry import BackoffExecutor
from medlink.utils.timers import Scheduler

logger = logging.getLogger(__name__)


class ResilienceContext:
    """Single-instance wiring of the resilient API access layer.

    Attributes:
        config: Settings every component was built from.
        tokens: Shared token pair.
        token_coordinator: Refreshes ``tokens`` before expiry.
        transport: HTTP boundary stamping auth headers.
        executor: Retry-with-backoff runner.
        queue: Offline request buffer.
        status: Connection status publisher.
        health_monitor: Background liveness probe feeding ``status``.
        client: Request facade for callers.
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        session: requests.Session | None = None,
        scheduler: Scheduler | None = None,
        initial_online: bool | None = None,
        drain_dispatcher: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        """Build and wire all components. Nothing runs until ``start()``.

        Args:
            config: Settings; defaults to ``get_config()``.
            session: requests session shared by transport, probes and refresh.
            scheduler: Timer source for health probes and duplex reconnects.
            initial_online: Host connectivity at startup; None if the host
                has no connectivity events.
            drain_dispatcher: Runs offline-queue drains off the event thread.
        """
        self.config = config or get_config()
        self._scheduler = scheduler

        http = session or create_session(self.config)

        self.tokens = TokenStore()
        self.token_coordinator = TokenRefreshCoordinator(
            self.tokens,
            session=http,
            refresh_url=self.config.url_for(self.config.refresh_path),
            skew_seconds=self.config.token_refresh_skew_seconds,
            timeout=self.config.refresh_timeout,
        )
        self.transport = HttpTransport(self.config, http, self.token_coordinator)
        self.executor = BackoffExecutor(
            self.transport.send,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            jitter=self.config.retry_jitter,
        )
        self.queue = OfflineQueue(self.executor)
        self.status = ConnectionStatusPublisher(
            self.queue,
            initial_online=initial_online,
            dispatcher=drain_dispatcher,
        )
        self.health_monitor = HealthMonitor(
            self.config.url_for(self.config.health_check_path),
            session=http,
            interval=self.config.health_check_interval,
            timeout=self.config.health_check_timeout,
            scheduler=scheduler,
            on_change=self.status.set_backend_healthy,
        )
        self.client = ResilientClient(self.executor, self.queue, self.status)
        self._channels: list[DuplexReconnectManager] = []
        self._channels_lock = threading.Lock()

    def start(self) -> None:
        """Start background health monitoring."""
        self.health_monitor.start()

    def stop(self, abandon_queued: bool = True) -> None:
        """Stop monitoring, close duplex channels and optionally reject queued requests."""
        self.health_monitor.stop()
        with self._channels_lock:
            channels = list(self._channels)
            self._channels.clear()
        for channel in channels:
            channel.disconnect()
        if abandon_queued:
            self.queue.clear("resilience context stopped")

    def close(self) -> None:
        """Stop everything and release HTTP connections."""
        self.stop()
        self.transport.close()

    def __enter__(self) -> ResilienceContext:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def get_status(self) -> ConnectionStatus:
        return self.status.get_status()

    def set_tokens(self, access_token: str, refresh_token: str | None = None) -> None:
        """Install credentials after login."""
        self.tokens.set(TokenPair(access_token, refresh_token))

    def clear_tokens(self) -> None:
        """Forget credentials (logout)."""
        self.tokens.clear()

    def bearer_headers(self) -> dict[str, str]:
        """Authorization header with a freshly checked access token."""
        token = self.token_coordinator.ensure_fresh()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def create_duplex(
        self,
        url: str,
        protocols: Sequence[str] | None = None,
        on_message: Callable[[Message], None] | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        connection_factory: ConnectionFactory | None = None,
        authenticated: bool = True,
    ) -> DuplexReconnectManager:
        """Create a duplex channel using the configured reconnect policy.

        When ``authenticated`` the handshake carries a bearer token that is
        re-read (and refreshed if needed) on every reconnect attempt.
        """
        channel = DuplexReconnectManager(
            url,
            protocols=protocols,
            on_message=on_message,
            on_open=on_open,
            on_close=on_close,
            on_error=on_error,
            base_delay=self.config.ws_reconnect_base,
            max_delay=self.config.ws_reconnect_max,
            max_retries=self.config.ws_max_retries,
            jitter=self.config.ws_reconnect_jitter,
            scheduler=self._scheduler,
            connection_factory=connection_factory,
            header_provider=self.bearer_headers if authenticated else None,
        )
        with self._channels_lock:
            self._channels.append(channel)
        return channel


_context: ResilienceContext | None = None
_context_lock = threading.Lock()


def get_resilience_context() -> ResilienceContext:
    """Get the shared context, creating it from ``get_config()`` on first use."""
    global _context
    if _context is None:
        with _context_lock:
            if _context is None:
                _context = ResilienceContext()
    return _context


def reset_resilience_context() -> None:
    """Close and drop the shared context (for tests and re-login flows)."""
    global _context
    with _context_lock:
        context, _context = _context, None
    if context is not None:
        context.close()


__all__ = ["ResilienceContext", "get_resilience_context", "reset_resilience_context"]
