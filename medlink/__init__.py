"""medlink - resilient API access layer for field medical clients.

Keeps request intent intact across an unreliable radio/satellite link:
bounded retry with backoff, an offline request queue replayed on reconnect,
background backend health probing, an auto-reconnecting duplex channel and
coordinated access-token refresh.

Example:
    >>> from medlink import ResilienceContext, RequestDescriptor
    >>> ctx = ResilienceContext()
    >>> ctx.start()
    >>> response = ctx.client.get("/patients")
"""

from __future__ import annotations

from medlink.config import ResilienceConfig, get_config, load_config
from medlink.reliability.context import (
    ResilienceContext,
    get_resilience_context,
    reset_resilience_context,
)
from medlink.reliability.transport import RequestDescriptor

__version__ = "0.1.0"

__all__ = [
    "ResilienceConfig",
    "ResilienceContext",
    "RequestDescriptor",
    "get_config",
    "load_config",
    "get_resilience_context",
    "reset_resilience_context",
    "__version__",
]
