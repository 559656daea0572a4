"""Shared access/refresh token state.

The token pair is process-wide and replaced atomically on refresh. Requests
read the current pair at send time, never a copy captured earlier.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

import jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    """Bearer credentials issued by the auth backend."""

    access_token: str
    refresh_token: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any], previous: TokenPair | None = None) -> TokenPair:
        """Build a pair from a ``{accessToken, refreshToken}`` payload.

        A missing refreshToken keeps the previous one.

        Raises:
            KeyError: If the payload has no accessToken.
        """
        access = data["accessToken"]
        refresh = data.get("refreshToken") or (previous.refresh_token if previous else None)
        return cls(access_token=access, refresh_token=refresh)

    def __repr__(self) -> str:
        return f"TokenPair(access_token='***', refresh_token={'***' if self.refresh_token else None})"


def decode_expiry(token: str) -> float | None:
    """Read the ``exp`` claim of a JWT without verifying its signature.

    Returns:
        Expiry as a Unix timestamp, or None if the token or claim is unreadable.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError as e:
        logger.debug("Cannot decode access token: %s", e)
        return None

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class TokenStore:
    """Thread-safe holder of the current token pair."""

    def __init__(self, pair: TokenPair | None = None) -> None:
        self._pair = pair
        self._lock = threading.Lock()

    def get(self) -> TokenPair | None:
        with self._lock:
            return self._pair

    def set(self, pair: TokenPair | None) -> None:
        with self._lock:
            self._pair = pair

    def replace_if_current(self, expected: TokenPair | None, pair: TokenPair) -> bool:
        """Swap in ``pair`` only if ``expected`` is still the stored pair.

        Keeps a refresh from overwriting credentials set by a login that
        happened while the refresh call was in flight.
        """
        with self._lock:
            if self._pair is not expected:
                return False
            self._pair = pair
            return True

    def clear(self) -> None:
        self.set(None)

    @property
    def access_token(self) -> str | None:
        pair = self.get()
        return pair.access_token if pair else None


__all__ = ["TokenPair", "TokenStore", "decode_expiry"]
