"""Tests for upload progress channels."""

import pytest

from assetgate import ProgressChannel, ProgressHub, UploadPhase, UploadProgressEvent


def event(sent: int, total: int | None = 100, phase=UploadPhase.UPLOADING, op="op1"):
    return UploadProgressEvent.create(op, sent, total, phase)


class TestUploadProgressEvent:
    """Test UploadProgressEvent.create()."""

    def test_percentage(self):
        assert event(25).percentage == 25
        assert event(100).percentage == 100

    def test_percentage_unknown_total(self):
        assert event(25, total=None).percentage is None

    def test_empty_file_completed(self):
        assert event(0, total=0, phase=UploadPhase.COMPLETED).percentage == 100

    def test_percentage_capped(self):
        assert event(150).percentage == 100

    def test_terminal_phases(self):
        assert UploadPhase.COMPLETED.is_terminal
        assert UploadPhase.FAILED.is_terminal
        assert not UploadPhase.STARTING.is_terminal
        assert not UploadPhase.UPLOADING.is_terminal


class TestProgressChannel:
    """Test ProgressChannel."""

    def test_offer_and_drain(self):
        channel = ProgressChannel()
        assert channel.offer(event(1))
        assert channel.offer(event(2))
        assert [e.bytes_sent for e in channel.drain()] == [1, 2]
        assert channel.qsize() == 0

    def test_full_channel_drops_without_blocking(self):
        channel = ProgressChannel(maxsize=2)

        accepted = [channel.offer(event(i)) for i in range(5)]

        assert accepted == [True, True, False, False, False]
        assert channel.dropped == 3
        assert [e.bytes_sent for e in channel.drain()] == [0, 1]

    @pytest.mark.asyncio
    async def test_iterates_until_terminal(self):
        channel = ProgressChannel()
        channel.offer(event(0, phase=UploadPhase.STARTING))
        channel.offer(event(50))
        channel.offer(event(100, phase=UploadPhase.COMPLETED))
        channel.offer(event(100))

        phases = [e.phase async for e in channel]

        assert phases == [UploadPhase.STARTING, UploadPhase.UPLOADING, UploadPhase.COMPLETED]
        assert channel.qsize() == 1

    @pytest.mark.asyncio
    async def test_get(self):
        channel = ProgressChannel()
        channel.offer(event(7))
        assert (await channel.get()).bytes_sent == 7


class TestProgressHub:
    """Test ProgressHub routing."""

    def test_publish_without_listeners_is_noop(self):
        hub = ProgressHub()
        assert hub.publish(event(1)) == 0
        assert not hub.has_listeners("op1")

    def test_routes_by_operation_id(self):
        hub = ProgressHub()
        first = hub.subscribe("op1")
        second = hub.subscribe("op1")
        other = hub.subscribe("op2")

        assert hub.publish(event(10, op="op1")) == 2

        assert first.qsize() == 1
        assert second.qsize() == 1
        assert other.qsize() == 0

    def test_unsubscribe(self):
        hub = ProgressHub()
        channel = hub.subscribe("op1")
        hub.unsubscribe("op1", channel)

        assert not hub.has_listeners("op1")
        assert hub.publish(event(1)) == 0
        hub.unsubscribe("op1", channel)

    def test_slow_subscriber_does_not_affect_others(self):
        hub = ProgressHub(queue_size=1)
        slow = hub.subscribe("op1")
        fast = hub.subscribe("op1", maxsize=10)

        for i in range(3):
            hub.publish(event(i))

        assert slow.qsize() == 1
        assert slow.dropped == 2
        assert fast.qsize() == 3

    @pytest.mark.parametrize("phase", [UploadPhase.COMPLETED, UploadPhase.FAILED])
    def test_terminal_event_releases_subscriptions(self, phase):
        hub = ProgressHub()
        channel = hub.subscribe("op1")
        other = hub.subscribe("op2")

        hub.publish(event(10))
        assert hub.publish(event(100, phase=phase)) == 1

        assert not hub.has_listeners("op1")
        assert hub.has_listeners("op2")
        assert [e.phase for e in channel.drain()] == [UploadPhase.UPLOADING, phase]
        assert other.qsize() == 0

    def test_events_after_terminal_are_not_routed(self):
        hub = ProgressHub()
        channel = hub.subscribe("op1")

        hub.publish(event(100, phase=UploadPhase.COMPLETED))

        assert hub.publish(event(100, phase=UploadPhase.COMPLETED)) == 0
        assert channel.qsize() == 1
