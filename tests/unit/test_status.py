"""Unit tests for the connection status publisher."""

from unittest.mock import MagicMock

import pytest

from medlink.reliability.offline import OfflineQueue
from medlink.reliability.status import ConnectionStatus, ConnectionStatusPublisher
from medlink.reliability.transport import RequestDescriptor
from tests.helpers import make_response


def run_now(fn):
    fn()


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute_with_retry.return_value = make_response(200)
    return executor


@pytest.fixture
def queue(executor):
    return OfflineQueue(executor)


class TestInitialState:
    """Tests for the starting snapshot."""

    def test_defaults_online_without_host_signal(self, queue):
        """No connectivity signal means online."""
        status = ConnectionStatusPublisher(queue).get_status()

        assert status == ConnectionStatus(
            is_online=True, is_backend_healthy=True, queued_request_count=0
        )

    def test_uses_initial_snapshot(self, queue):
        """A host snapshot of offline is honoured."""
        assert not ConnectionStatusPublisher(queue, initial_online=False).is_online

    def test_queue_count_is_live(self, queue):
        """get_status reads the queue depth at call time."""
        publisher = ConnectionStatusPublisher(queue, initial_online=False)
        queue.enqueue(RequestDescriptor("GET", "/a"))
        queue.enqueue(RequestDescriptor("GET", "/b"))

        assert publisher.get_status().queued_request_count == 2

    def test_to_dict(self):
        """Snapshots serialize to plain dicts."""
        status = ConnectionStatus(is_online=False, is_backend_healthy=True, queued_request_count=3)

        assert status.to_dict() == {
            "is_online": False,
            "is_backend_healthy": True,
            "queued_request_count": 3,
        }


class TestSubscriptions:
    """Tests for subscribe/unsubscribe and notification edges."""

    def test_notified_on_change(self, queue):
        """Subscribers get the new snapshot on each transition."""
        publisher = ConnectionStatusPublisher(queue, dispatcher=run_now)
        callback = MagicMock()
        publisher.subscribe(callback)

        publisher.set_online(False)

        callback.assert_called_once()
        assert callback.call_args.args[0].is_online is False

    def test_no_notification_without_change(self, queue):
        """Repeating the current value is silent."""
        publisher = ConnectionStatusPublisher(queue, dispatcher=run_now)
        callback = MagicMock()
        publisher.subscribe(callback)

        publisher.set_online(True)
        publisher.set_backend_healthy(True)

        callback.assert_not_called()

    def test_backend_health_transition(self, queue):
        """Health changes are published with the online flag untouched."""
        publisher = ConnectionStatusPublisher(queue, dispatcher=run_now)
        callback = MagicMock()
        publisher.subscribe(callback)

        publisher.set_backend_healthy(False)

        status = callback.call_args.args[0]
        assert status.is_online is True
        assert status.is_backend_healthy is False

    def test_unsubscribe(self, queue):
        """Unsubscribed callbacks stop receiving updates; double unsubscribe is safe."""
        publisher = ConnectionStatusPublisher(queue, dispatcher=run_now)
        callback = MagicMock()
        unsubscribe = publisher.subscribe(callback)

        unsubscribe()
        unsubscribe()
        publisher.set_online(False)

        callback.assert_not_called()

    def test_failing_subscriber_isolated(self, queue):
        """One raising subscriber does not stop the others."""
        publisher = ConnectionStatusPublisher(queue, dispatcher=run_now)
        good = MagicMock()
        publisher.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        publisher.subscribe(good)

        publisher.set_online(False)

        good.assert_called_once()


class TestDrainOnReconnect:
    """Tests for draining the offline queue when connectivity returns."""

    def test_online_transition_drains_queue(self, queue, executor):
        """Going online replays queued requests."""
        publisher = ConnectionStatusPublisher(queue, initial_online=False, dispatcher=run_now)
        future = queue.enqueue(RequestDescriptor("POST", "/reports"))

        publisher.set_online(True)

        assert future.result().status_code == 200
        assert len(queue) == 0
        executor.execute_with_retry.assert_called_once()

    def test_offline_transition_does_not_drain(self, queue):
        """Going offline never dispatches a drain."""
        dispatcher = MagicMock()
        publisher = ConnectionStatusPublisher(queue, dispatcher=dispatcher)
        queue.enqueue(RequestDescriptor("GET", "/a"))

        publisher.set_online(False)

        dispatcher.assert_not_called()

    def test_empty_queue_skips_dispatch(self, queue):
        """No drain is dispatched when nothing is queued."""
        dispatcher = MagicMock()
        publisher = ConnectionStatusPublisher(queue, initial_online=False, dispatcher=dispatcher)

        publisher.set_online(True)

        dispatcher.assert_not_called()

    def test_drain_halts_when_offline_again(self, queue, executor):
        """Connectivity lost mid-drain leaves the rest queued."""
        publisher = ConnectionStatusPublisher(queue, initial_online=False, dispatcher=run_now)

        def send(descriptor):
            publisher.set_online(False)
            return make_response(200)

        executor.execute_with_retry.side_effect = send
        first = queue.enqueue(RequestDescriptor("GET", "/a"))
        second = queue.enqueue(RequestDescriptor("GET", "/b"))

        publisher.set_online(True)

        assert first.done()
        assert not second.done()
        assert len(queue) == 1

    def test_subscribers_see_queue_depth_before_drain(self, queue):
        """The online notification reports the queue before it is replayed."""
        publisher = ConnectionStatusPublisher(queue, initial_online=False, dispatcher=run_now)
        seen = []
        publisher.subscribe(lambda s: seen.append(s.queued_request_count))
        queue.enqueue(RequestDescriptor("GET", "/a"))

        publisher.set_online(True)

        assert seen == [1]
        assert len(queue) == 0
