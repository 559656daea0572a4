"""Test doubles shared across the medlink test suite.

Nothing here touches the network: HTTP goes through MagicMock sessions that
return real ``requests.Response`` objects, timers go through FakeScheduler and
duplex connections through FakeConnectionFactory.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import jwt
import requests

from medlink.reliability.duplex import DuplexHandlers

TEST_SIGNING_KEY = "medlink-test-signing-key-0123456789abcdef"


# =============================================================================
# HTTP helpers
# =============================================================================


def make_response(
    status: int = 200,
    body: object | None = None,
    url: str = "http://backend.test/api/resource",
) -> requests.Response:
    """Build a real Response with an optional JSON body."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    if body is not None:
        response._content = json.dumps(body).encode()
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = b""
    return response


def http_error(status: int) -> requests.HTTPError:
    """HTTPError carrying a response with ``status``."""
    return requests.HTTPError(f"{status} Error", response=make_response(status))


def make_jwt(exp: float | None, **claims: object) -> str:
    """Signed JWT with the given expiry (signature is never checked)."""
    payload: dict[str, object] = {"sub": "medic-7", **claims}
    if exp is not None:
        payload["exp"] = int(exp)
    return jwt.encode(payload, TEST_SIGNING_KEY, algorithm="HS256")


def mock_session(*responses: object) -> MagicMock:
    """MagicMock session whose ``request`` yields ``responses`` in order."""
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


# =============================================================================
# Timer and duplex fakes
# =============================================================================


class FakeTimer:
    """Timer handle recorded by FakeScheduler."""

    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback unless cancelled (mirrors threading.Timer)."""
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


class FakeScheduler:
    """Scheduler that only runs callbacks when the test says so."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        timer.fire()
        return timer


class FakeConnection:
    """Duplex connection whose events are raised by the test."""

    def __init__(self, url, protocols, headers, handlers: DuplexHandlers) -> None:
        self.url = url
        self.protocols = protocols
        self.headers = headers
        self.handlers = handlers
        self.sent: list[object] = []
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def open(self) -> None:
        self.handlers.on_open()

    def receive(self, data) -> None:
        self.handlers.on_message(data)

    def drop(self) -> None:
        """Simulate the peer or network closing the connection."""
        self.handlers.on_close()

    def send(self, data) -> None:
        self.sent.append(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.handlers.on_close()


class FakeConnectionFactory:
    """Records every connection attempt; can be told to fail construction."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.failures_remaining = 0

    def __call__(self, url, protocols, headers, handlers) -> FakeConnection:
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise OSError("connection refused")
        conn = FakeConnection(url, protocols, headers, handlers)
        self.connections.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]

