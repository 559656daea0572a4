"""Access token state and refresh coordination."""

from __future__ import annotations

from medlink.auth.refresh import TokenRefreshCoordinator
from medlink.auth.tokens import TokenPair, TokenStore, decode_expiry

__all__ = ["TokenPair", "TokenStore", "TokenRefreshCoordinator", "decode_expiry"]
