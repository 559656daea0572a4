"""Proactive access-token refresh.

Before each request the transport asks the coordinator for the access token
to send. When the token expires within the skew window (or its expiry cannot
be read) the coordinator makes one refresh call. Failures are logged and the
stale token is used; the next request cycle tries again.

The refresh call deliberately bypasses the retry executor so a failing auth
backend sees at most one refresh per request cycle.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests

from medlink.auth.tokens import TokenPair, TokenStore, decode_expiry
from medlink.errors import TokenRefreshError
from medlink.utils.logging import log_event

logger = logging.getLogger(__name__)


class TokenRefreshCoordinator:
    """Single-flight refresh of the shared token pair.

    Example:
        >>> store = TokenStore(TokenPair(access, refresh))
        >>> coordinator = TokenRefreshCoordinator(
        ...     store, "https://field.example/api/auth/refresh", session
        ... )
        >>> headers["Authorization"] = f"Bearer {coordinator.ensure_fresh()}"
    """

    DEFAULT_SKEW_SECONDS = 60.0
    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        store: TokenStore,
        refresh_url: str,
        session: requests.Session | None = None,
        skew_seconds: float = DEFAULT_SKEW_SECONDS,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Shared token pair holder.
            refresh_url: Absolute URL of the refresh endpoint.
            session: requests session used for the refresh call.
            skew_seconds: Refresh when fewer seconds than this remain.
            timeout: Timeout of the refresh call.
            clock: Time source returning Unix seconds.
        """
        self._store = store
        self._refresh_url = refresh_url
        self._session = session or requests.Session()
        self._skew = skew_seconds
        self._timeout = timeout
        self._clock = clock
        self._refresh_lock = threading.Lock()

    @property
    def store(self) -> TokenStore:
        return self._store

    def needs_refresh(self, access_token: str) -> bool:
        """True if the token is malformed or expires within the skew window."""
        expiry = decode_expiry(access_token)
        if expiry is None:
            return True
        return expiry - self._clock() < self._skew

    def ensure_fresh(self) -> str | None:
        """Return the access token to send, refreshing it first if needed.

        Returns:
            Current access token, or None if no credentials are set.
        """
        pair = self._store.get()
        if pair is None:
            return None
        if not self.needs_refresh(pair.access_token):
            return pair.access_token

        with self._refresh_lock:
            current = self._store.get()
            if current is None:
                return None
            # Another thread may have refreshed while this one waited
            if current is not pair and not self.needs_refresh(current.access_token):
                return current.access_token
            self._attempt_refresh(current)

        latest = self._store.get()
        return latest.access_token if latest else None

    def force_refresh(self) -> bool:
        """Refresh regardless of expiry (used after a 401 response).

        Returns:
            True if a new pair was stored.
        """
        pair = self._store.get()
        if pair is None:
            return False
        with self._refresh_lock:
            current = self._store.get()
            if current is None:
                return False
            if current is not pair:
                # Someone else refreshed while we waited for the lock
                return True
            return self._attempt_refresh(current)

    def _attempt_refresh(self, pair: TokenPair) -> bool:
        """Make one refresh call; absorb and log failures. Caller holds the lock."""
        if not pair.refresh_token:
            logger.debug("Access token needs refresh but no refresh token is available")
            return False

        try:
            new_pair = self._request_refresh(pair)
        except TokenRefreshError as e:
            log_event(
                logger,
                "auth.refresh_failed",
                level=logging.WARNING,
                message=f"Token refresh failed, continuing with stale token: {e}",
                code=e.code.value,
            )
            return False

        if not self._store.replace_if_current(pair, new_pair):
            logger.info("Token pair replaced during refresh, discarding refreshed pair")
            return False

        log_event(logger, "auth.refreshed", message="Access token refreshed")
        return True

    def _request_refresh(self, pair: TokenPair) -> TokenPair:
        """POST to the refresh endpoint with the refresh token as bearer.

        Raises:
            TokenRefreshError: On network failure, non-2xx status or bad payload.
        """
        try:
            response = self._session.post(
                self._refresh_url,
                headers={"Authorization": f"Bearer {pair.refresh_token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise TokenRefreshError(f"Refresh request failed: {e}", cause=e) from e

        if not 200 <= response.status_code < 300:
            raise TokenRefreshError(
                f"Refresh rejected with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return TokenPair.from_response(response.json(), previous=pair)
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRefreshError(f"Malformed refresh response: {e}", cause=e) from e


__all__ = ["TokenRefreshCoordinator"]
