"""Tests for events."""

import threading

from events import ClientStatus, EventBus, RefreshProgress


class TestEventBus:
    def test_publish_order_is_kept(self) -> None:
        bus = EventBus()
        for i in range(5):
            bus.publish(RefreshProgress(completed=i, total=5))
        assert len(bus) == 5
        assert [e.completed for e in bus.drain()] == [0, 1, 2, 3, 4]
        assert len(bus) == 0

    def test_get_times_out_with_none(self) -> None:
        assert EventBus().get(timeout=0.01) is None

    def test_producers_on_other_threads(self) -> None:
        bus = EventBus()

        def produce(n: int) -> None:
            for i in range(50):
                bus.publish(RefreshProgress(completed=i, total=50, label=str(n)))

        threads = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        events = bus.drain()
        assert len(events) == 200
        for n in range(4):
            # per-producer order survives interleaving
            assert [e.completed for e in events if e.label == str(n)] == list(range(50))

    def test_get_returns_published_event(self) -> None:
        bus = EventBus()
        bus.publish(ClientStatus(connected=True, message="Connected"))
        assert bus.get(timeout=0.1) == ClientStatus(connected=True, message="Connected")
