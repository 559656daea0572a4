"""Request descriptors and the HTTP transport boundary.

The transport is the only place that touches the network for ordinary
requests. It stamps auth and device headers at send time and turns non-2xx
responses into ``requests.HTTPError`` so the retry executor can classify them
by status.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from medlink.auth.refresh import TokenRefreshCoordinator
from medlink.config import ResilienceConfig

logger = logging.getLogger(__name__)


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RequestDescriptor:
    """A fully specified outbound request. Immutable once created.

    Attributes:
        method: HTTP method.
        path: Path relative to the configured base URL, or an absolute URL.
        headers: Extra headers for this request.
        params: Query string parameters.
        json: JSON body.
        data: Raw body, used when ``json`` is None.
        timeout: Per-attempt timeout in seconds; None uses the configured default.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze(self.headers))
        object.__setattr__(self, "params", _freeze(self.params))

    def describe(self) -> str:
        """Short form for log lines."""
        return f"{self.method} {self.path}"


def create_session(config: ResilienceConfig) -> requests.Session:
    """Create a requests session with default headers and no urllib3 retries."""
    session = requests.Session()

    # Retries are owned by the backoff executor
    adapter = HTTPAdapter(max_retries=Retry(total=0))
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update(
        {
            "User-Agent": config.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
    )
    if config.device_id:
        session.headers["X-Device-ID"] = config.device_id

    return session


class HttpTransport:
    """Sends a RequestDescriptor over a requests session.

    Example:
        >>> transport = HttpTransport(ResilienceConfig(base_url="http://api:3001/api"))
        >>> response = transport.send(RequestDescriptor("GET", "/patients"))
    """

    def __init__(
        self,
        config: ResilienceConfig,
        session: requests.Session | None = None,
        token_coordinator: TokenRefreshCoordinator | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Base URL, timeouts and header settings.
            session: Optional requests session to use.
            token_coordinator: Supplies a fresh bearer token per send.
        """
        self._config = config
        self._session = session or create_session(config)
        self._tokens = token_coordinator

    @property
    def session(self) -> requests.Session:
        return self._session

    def _build_headers(self, descriptor: RequestDescriptor, access_token: str | None) -> dict[str, str]:
        headers = dict(descriptor.headers)
        if access_token and "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _dispatch(self, descriptor: RequestDescriptor, access_token: str | None) -> requests.Response:
        return self._session.request(
            method=descriptor.method,
            url=self._config.url_for(descriptor.path),
            headers=self._build_headers(descriptor, access_token),
            params=dict(descriptor.params) or None,
            json=descriptor.json,
            data=descriptor.data,
            timeout=descriptor.timeout or self._config.request_timeout,
        )

    def send(self, descriptor: RequestDescriptor) -> requests.Response:
        """Send one attempt of a request.

        Returns:
            The 2xx/3xx response.

        Raises:
            requests.HTTPError: For 4xx/5xx responses (``.response`` is set).
            requests.RequestException: For network-level failures.
        """
        access_token = self._tokens.ensure_fresh() if self._tokens else None
        response = self._dispatch(descriptor, access_token)

        if (
            response.status_code == 401
            and self._tokens is not None
            and self._config.retry_on_unauthorized
            and access_token is not None
            and "Authorization" not in descriptor.headers
        ):
            logger.info("Got 401 for %s, forcing token refresh", descriptor.describe())
            if self._tokens.force_refresh():
                response = self._dispatch(descriptor, self._tokens.store.access_token)

        response.raise_for_status()
        return response

    def close(self) -> None:
        """Close the session and release pooled connections."""
        self._session.close()


__all__ = ["RequestDescriptor", "HttpTransport", "create_session"]
