"""Unit tests for the auto-reconnecting duplex channel."""

from unittest.mock import MagicMock

import pytest

from medlink.reliability.duplex import DuplexReconnectManager, DuplexState
from tests.helpers import FakeConnectionFactory


@pytest.fixture
def callbacks():
    return {
        "on_message": MagicMock(),
        "on_open": MagicMock(),
        "on_close": MagicMock(),
        "on_error": MagicMock(),
    }


def _manager(scheduler, factory, callbacks=None, **kwargs):
    kwargs.setdefault("rng", lambda low, high: 0.0)
    return DuplexReconnectManager(
        "wss://field.test/api/chat",
        scheduler=scheduler,
        connection_factory=factory,
        **(callbacks or {}),
        **kwargs,
    )


class TestConnect:
    """Tests for opening the channel."""

    def test_connect_opens_connection(self, scheduler, connection_factory, callbacks):
        """connect() creates a connection and on_open marks it open."""
        manager = _manager(scheduler, connection_factory, callbacks, protocols=["v1"])

        manager.connect()
        assert manager.state is DuplexState.CONNECTING
        conn = connection_factory.latest
        assert conn.url == "wss://field.test/api/chat"
        assert conn.protocols == ["v1"]

        conn.open()
        assert manager.state is DuplexState.OPEN
        assert manager.is_connected
        callbacks["on_open"].assert_called_once()

    def test_messages_delivered(self, scheduler, connection_factory, callbacks):
        """Inbound messages reach on_message."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        connection_factory.latest.open()

        connection_factory.latest.receive('{"type": "triage"}')

        callbacks["on_message"].assert_called_once_with('{"type": "triage"}')

    def test_errors_delivered(self, scheduler, connection_factory, callbacks):
        """Connection errors reach on_error."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        error = ConnectionResetError("reset")

        connection_factory.latest.handlers.on_error(error)

        callbacks["on_error"].assert_called_once_with(error)

    def test_headers_built_per_attempt(self, scheduler, connection_factory):
        """The header provider is consulted on every attempt."""
        tokens = iter(["first", "second"])
        manager = _manager(
            scheduler,
            connection_factory,
            header_provider=lambda: {"Authorization": f"Bearer {next(tokens)}"},
        )

        manager.connect()
        connection_factory.latest.drop()
        scheduler.fire_next()

        auth = [c.headers["Authorization"] for c in connection_factory.connections]
        assert auth == ["Bearer first", "Bearer second"]

    def test_connect_replaces_previous_connection(self, scheduler, connection_factory, callbacks):
        """A second connect() closes the old connection without scheduling a reconnect."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        old = connection_factory.latest
        old.open()

        manager.connect()

        assert old.closed
        assert len(connection_factory.connections) == 2
        assert scheduler.timers == []
        callbacks["on_close"].assert_not_called()

    def test_connection_started_after_handle_stored(self, scheduler, connection_factory):
        """The read loop is started only once the manager holds the connection."""
        manager = _manager(scheduler, connection_factory)

        manager.connect()

        assert connection_factory.latest.started

    def test_open_during_construction_can_send(self, scheduler):
        """An open reported while the connection is being built still allows sends from on_open."""

        class EagerFactory(FakeConnectionFactory):
            def __call__(self, url, protocols, headers, handlers):
                conn = super().__call__(url, protocols, headers, handlers)
                conn.open()
                return conn

        factory = EagerFactory()
        seen = []
        manager = _manager(scheduler, factory)
        manager.on_open = lambda: seen.append((manager.is_connected, manager.send("join")))

        manager.connect()

        assert seen == [(True, True)]
        assert factory.latest.sent == ["join"]
        assert manager.state is DuplexState.OPEN

    def test_close_during_construction_schedules_reconnect(self, scheduler):
        """A connection that opens and closes before it is stored is not started."""

        class FlakyFactory(FakeConnectionFactory):
            def __call__(self, url, protocols, headers, handlers):
                conn = super().__call__(url, protocols, headers, handlers)
                conn.open()
                conn.drop()
                return conn

        factory = FlakyFactory()
        on_open = MagicMock()
        manager = _manager(scheduler, factory, on_open=on_open)

        manager.connect()

        on_open.assert_not_called()
        assert not factory.latest.started
        assert manager.state is DuplexState.CLOSED_RETRYING
        assert manager.reconnect_pending


class TestSend:
    """Tests for outbound messages."""

    def test_send_when_open(self, scheduler, connection_factory):
        """Messages go to the open connection."""
        manager = _manager(scheduler, connection_factory)
        manager.connect()
        connection_factory.latest.open()

        assert manager.send("hello") is True
        assert connection_factory.latest.sent == ["hello"]

    def test_send_dropped_when_not_open(self, scheduler, connection_factory):
        """Messages sent before open or while reconnecting are dropped, not buffered."""
        manager = _manager(scheduler, connection_factory)
        assert manager.send("too early") is False

        manager.connect()
        assert manager.send("still connecting") is False

        connection_factory.latest.open()
        assert connection_factory.latest.sent == []

    def test_send_failure_returns_false(self, scheduler, connection_factory):
        """A send that raises OSError reports failure."""
        manager = _manager(scheduler, connection_factory)
        manager.connect()
        conn = connection_factory.latest
        conn.open()
        conn.send = MagicMock(side_effect=OSError("broken pipe"))

        assert manager.send("x") is False


class TestReconnect:
    """Tests for backoff reconnection."""

    def test_unexpected_close_schedules_reconnect(self, scheduler, connection_factory, callbacks):
        """A drop moves to CLOSED_RETRYING and schedules a timer."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        connection_factory.latest.open()

        connection_factory.latest.drop()

        assert manager.state is DuplexState.CLOSED_RETRYING
        assert manager.reconnect_pending
        assert manager.retry_count == 1
        assert scheduler.pending[0].delay == 1.0
        callbacks["on_close"].assert_called_once()

    def test_delays_grow_and_cap(self, scheduler, connection_factory):
        """Delays double per retry up to max_delay."""
        manager = _manager(scheduler, connection_factory, base_delay=1, max_delay=5, max_retries=6)
        manager.connect()

        for _ in range(5):
            connection_factory.latest.drop()
            scheduler.fire_next()

        assert [t.delay for t in scheduler.timers] == [1, 2, 4, 5, 5]

    def test_jitter_added_to_delay(self, scheduler, connection_factory):
        """The rng value is added on top of the capped delay."""
        rng = MagicMock(return_value=0.75)
        manager = _manager(scheduler, connection_factory, jitter=1.0, rng=rng)
        manager.connect()

        connection_factory.latest.drop()

        assert scheduler.timers[0].delay == 1.75
        rng.assert_called_once_with(0.0, 1.0)

    def test_successful_open_resets_retries(self, scheduler, connection_factory):
        """Retry count returns to zero once a reconnect opens."""
        manager = _manager(scheduler, connection_factory)
        manager.connect()
        connection_factory.latest.drop()
        connection_factory.latest.drop()
        scheduler.fire_next()

        connection_factory.latest.open()

        assert manager.retry_count == 0
        assert manager.state is DuplexState.OPEN

    def test_gives_up_after_max_retries(self, scheduler, connection_factory):
        """No timer is scheduled once max_retries reconnects are spent."""
        manager = _manager(scheduler, connection_factory, max_retries=2)
        manager.connect()

        connection_factory.latest.drop()
        scheduler.fire_next()
        connection_factory.latest.drop()
        scheduler.fire_next()
        connection_factory.latest.drop()

        assert len(scheduler.timers) == 2
        assert not manager.reconnect_pending
        assert manager.state is DuplexState.CLOSED_RETRYING
        assert len(connection_factory.connections) == 3

    def test_construction_failure_schedules_reconnect(self, scheduler, connection_factory, callbacks):
        """A factory exception counts as a close and retries."""
        connection_factory.failures_remaining = 1
        manager = _manager(scheduler, connection_factory, callbacks)

        manager.connect()

        assert manager.state is DuplexState.CLOSED_RETRYING
        assert manager.reconnect_pending
        callbacks["on_close"].assert_called_once()

        scheduler.fire_next()
        assert len(connection_factory.connections) == 1

    def test_stale_connection_events_ignored(self, scheduler, connection_factory, callbacks):
        """Events from a replaced connection do not affect the manager."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        old = connection_factory.latest
        old.drop()
        scheduler.fire_next()

        old.receive("late message")
        old.drop()

        callbacks["on_message"].assert_not_called()
        assert callbacks["on_close"].call_count == 1
        assert not manager.reconnect_pending

    def test_connect_resets_retry_budget(self, scheduler, connection_factory):
        """An explicit connect() after giving up starts a fresh budget."""
        manager = _manager(scheduler, connection_factory, max_retries=1)
        manager.connect()
        connection_factory.latest.drop()
        scheduler.fire_next()
        connection_factory.latest.drop()
        assert not manager.reconnect_pending

        manager.connect()
        connection_factory.latest.drop()

        assert manager.reconnect_pending
        assert manager.retry_count == 1


class TestDisconnect:
    """Tests for intentional close."""

    def test_disconnect_closes_without_reconnect(self, scheduler, connection_factory, callbacks):
        """An intentional close does not schedule a reconnect."""
        manager = _manager(scheduler, connection_factory, callbacks)
        manager.connect()
        conn = connection_factory.latest
        conn.open()

        manager.disconnect()

        assert conn.closed
        assert manager.state is DuplexState.CLOSED_INTENTIONAL
        assert scheduler.timers == []
        callbacks["on_close"].assert_called_once()

    def test_disconnect_cancels_pending_timer(self, scheduler, connection_factory):
        """disconnect() during backoff cancels the timer."""
        manager = _manager(scheduler, connection_factory)
        manager.connect()
        connection_factory.latest.drop()
        timer = scheduler.timers[0]

        manager.disconnect()

        assert timer.cancelled
        assert not manager.reconnect_pending

    def test_late_timer_after_disconnect_is_noop(self, scheduler, connection_factory):
        """A timer callback that races disconnect() opens nothing."""
        manager = _manager(scheduler, connection_factory)
        manager.connect()
        connection_factory.latest.drop()
        timer = scheduler.timers[0]
        manager.disconnect()

        timer.callback()

        assert len(connection_factory.connections) == 1
        assert manager.state is DuplexState.CLOSED_INTENTIONAL

    def test_disconnect_before_connect(self, scheduler, connection_factory):
        """Disconnecting an idle channel is harmless."""
        manager = _manager(scheduler, connection_factory)

        manager.disconnect()

        assert manager.state is DuplexState.CLOSED_INTENTIONAL
        assert connection_factory.connections == []
