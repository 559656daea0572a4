"""medlink reliability layer - retry, offline queue, health and duplex channels.

Components:

- BackoffExecutor: bounded exponential-backoff retries for one request
- OfflineQueue: FIFO buffer of requests made while disconnected
- HealthMonitor: periodic backend liveness probe
- ConnectionStatusPublisher: observable online/healthy status
- ResilientClient: request facade routing through queue or executor
- DuplexReconnectManager: auto-reconnecting WebSocket channel
- ResilienceContext: wires all of the above around shared state

Example:
    >>> from medlink.reliability import ResilienceContext
    >>> ctx = ResilienceContext()
    >>> ctx.start()
    >>> ctx.client.get("/patients")
"""

from __future__ import annotations

from medlink.reliability.context import (
    ResilienceContext,
    get_resilience_context,
    reset_resilience_context,
)
from medlink.reliability.duplex import (
    DuplexHandlers,
    DuplexReconnectManager,
    DuplexState,
    WebSocketConnection,
)
from medlink.reliability.health import HealthMonitor
from medlink.reliability.offline import OfflineQueue, QueuedRequest
from medlink.reliability.resilient_client import ResilientClient
from medlink.reliability.status import ConnectionStatus, ConnectionStatusPublisher
from medlink.reliability.transport import HttpTransport, RequestDescriptor, create_session
from medlink.retry import BackoffExecutor

__all__ = [
    # Request pipeline
    "BackoffExecutor",
    "HttpTransport",
    "RequestDescriptor",
    "ResilientClient",
    "create_session",
    # Offline queue and status
    "OfflineQueue",
    "QueuedRequest",
    "ConnectionStatus",
    "ConnectionStatusPublisher",
    "HealthMonitor",
    # Duplex channels
    "DuplexHandlers",
    "DuplexReconnectManager",
    "DuplexState",
    "WebSocketConnection",
    # Wiring
    "ResilienceContext",
    "get_resilience_context",
    "reset_resilience_context",
]
