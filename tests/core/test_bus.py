# tests/core/test_bus.py
"""Tests for the in-process publish/subscribe bus."""

import threading

import pytest

from lasvpe.contracts import MessageBus, SizeLimitExceeded, Subscription
from lasvpe.core.bus import InMemoryBus

TRACKLETS = "lasvpe.tracklet"
URLS = "lasvpe.url"


class TestPublish:
    def test_satisfies_protocols(self, bus: InMemoryBus) -> None:
        assert isinstance(bus, MessageBus)
        assert isinstance(bus.subscribe([URLS], group="g"), Subscription)

    def test_rejects_oversize_message(self) -> None:
        bus = InMemoryBus(max_message_bytes=10)

        with pytest.raises(SizeLimitExceeded) as exc_info:
            bus.publish(URLS, "T1", b"x" * 11)

        assert (exc_info.value.size, exc_info.value.limit) == (11, 10)
        assert bus.published(URLS) == []

    def test_limit_is_inclusive(self) -> None:
        bus = InMemoryBus(max_message_bytes=10)

        bus.publish(URLS, "T1", b"x" * 10)

        assert len(bus.published(URLS)) == 1

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError):
            InMemoryBus(max_message_bytes=0)


class TestSubscribe:
    def test_new_group_reads_from_start(self, bus: InMemoryBus) -> None:
        bus.publish(URLS, "T1", b"a")
        sub = bus.subscribe([URLS], group="late")

        assert [r.value for r in sub.poll()] == [b"a"]

    def test_records_delivered_in_publish_order(self, bus: InMemoryBus) -> None:
        sub = bus.subscribe([URLS], group="g")
        for i in range(5):
            bus.publish(URLS, "T1", str(i).encode())

        records = sub.poll()

        assert [r.value for r in records] == [b"0", b"1", b"2", b"3", b"4"]
        assert {(r.channel, r.key) for r in records} == {(URLS, "T1")}
        assert sub.poll() == []

    def test_each_group_gets_every_record(self, bus: InMemoryBus) -> None:
        first = bus.subscribe([URLS], group="g1")
        second = bus.subscribe([URLS], group="g2")
        bus.publish(URLS, "T1", b"a")

        assert len(first.poll()) == 1
        assert len(second.poll()) == 1

    def test_group_members_share_offsets(self, bus: InMemoryBus) -> None:
        first = bus.subscribe([URLS], group="g")
        second = bus.subscribe([URLS], group="g")
        bus.publish(URLS, "T1", b"a")

        assert len(first.poll()) + len(second.poll()) == 1

    def test_only_subscribed_channels(self, bus: InMemoryBus) -> None:
        sub = bus.subscribe([TRACKLETS], group="g")
        bus.publish(URLS, "T1", b"a")

        assert sub.poll() == []

    def test_max_records(self, bus: InMemoryBus) -> None:
        sub = bus.subscribe([URLS, TRACKLETS], group="g")
        for i in range(3):
            bus.publish(URLS, "T1", b"u%d" % i)
            bus.publish(TRACKLETS, "T1", b"t%d" % i)

        batches = [sub.poll(max_records=4), sub.poll(max_records=4), sub.poll(max_records=4)]

        assert [len(b) for b in batches] == [4, 2, 0]
        assert bus.pending("g") == 0

    def test_invalid_max_records(self, bus: InMemoryBus) -> None:
        with pytest.raises(ValueError):
            bus.subscribe([URLS], group="g").poll(max_records=0)

    def test_empty_channel_set(self, bus: InMemoryBus) -> None:
        with pytest.raises(ValueError):
            bus.subscribe([], group="g")

    def test_poll_times_out_empty(self, bus: InMemoryBus) -> None:
        assert bus.subscribe([URLS], group="g").poll(timeout=0.01) == []

    def test_poll_wakes_on_publish(self, bus: InMemoryBus) -> None:
        sub = bus.subscribe([URLS], group="g")
        publisher = threading.Timer(0.05, bus.publish, args=(URLS, "T1", b"a"))
        publisher.start()

        records = sub.poll(timeout=5.0)
        publisher.join()

        assert [r.value for r in records] == [b"a"]

    def test_closed_subscription(self, bus: InMemoryBus) -> None:
        with bus.subscribe([URLS], group="g") as sub:
            pass

        assert sub.closed
        sub.close()
        with pytest.raises(RuntimeError, match="closed"):
            sub.poll()


class TestRedeliver:
    def test_rewind_delivers_again(self, bus: InMemoryBus) -> None:
        sub = bus.subscribe([URLS], group="g")
        bus.publish(URLS, "T1", b"a")
        bus.publish(URLS, "T1", b"b")
        sub.poll()

        bus.redeliver("g", URLS, offset=1)

        assert [r.value for r in sub.poll()] == [b"b"]

    def test_pending(self, bus: InMemoryBus) -> None:
        bus.subscribe([URLS], group="g")
        bus.publish(URLS, "T1", b"a")
        bus.publish(URLS, "T2", b"b")

        assert bus.pending("g") == 2
        assert bus.pending("unknown") == 0

    def test_offset_out_of_range(self, bus: InMemoryBus) -> None:
        bus.subscribe([URLS], group="g")

        with pytest.raises(ValueError, match="Offset"):
            bus.redeliver("g", URLS, offset=3)
