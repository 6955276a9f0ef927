"""Tests for the display queue."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from streamnotify.clock import ManualClock
from streamnotify.display_queue import DisplayQueue, QueueFullError
from streamnotify.events import Platform
from streamnotify.models import QueueItem
from streamnotify.notification_config import NotificationsConfig
from streamnotify.shaper import Shaper

DATA = {
    "chat": {"username": "Viewer", "message": "hi"},
    "follow": {"username": "Fan"},
    "member": {"username": "Sub"},
    "gift": {"username": "Donor", "amount": 5, "currency": "USD", "gift_type": "Super Chat"},
    "giftmember": {"username": "Gifter", "gift_count": 3},
    "raid": {"username": "Raider", "viewer_count": 10},
}


@pytest.fixture
def make_item():
    """Build a queue item of a kind, enqueued at a given time."""
    clock = ManualClock(1_000)
    shaper = Shaper(clock)
    config = NotificationsConfig()

    def _make(kind, enqueued_at=1_000, duration=None):
        notification = shaper.shape(kind, Platform.TWITCH, DATA[kind], config)
        if duration is not None:
            notification = notification.model_copy(update={"duration": duration})
        return QueueItem.from_notification(notification, enqueued_at)

    return _make


class TestDisplayQueue:
    """Tests for DisplayQueue ordering and limits."""

    def test_pops_highest_priority_first(self, make_item):
        """Higher priority items pop first regardless of arrival."""
        queue = DisplayQueue()
        for kind in ("follow", "gift", "raid", "member"):
            queue.add_item(make_item(kind))
        assert [queue.pop_next().priority for _ in range(4)] == [6, 4, 3, 2]
        assert queue.pop_next() is None

    def test_later_higher_priority_jumps_ahead(self, make_item):
        """A higher priority item admitted later still pops first."""
        queue = DisplayQueue()
        queue.add_item(make_item("follow", enqueued_at=1_000))
        queue.add_item(make_item("giftmember", enqueued_at=2_000))
        assert queue.pop_next().type == "platform:giftmember"

    def test_equal_priority_is_fifo(self, make_item):
        """Equal priorities pop in enqueue order."""
        queue = DisplayQueue()
        first = make_item("follow", enqueued_at=1_000)
        second = make_item("follow", enqueued_at=1_500)
        third = make_item("follow", enqueued_at=1_500)
        queue.add_item(second)
        queue.add_item(first)
        queue.add_item(third)
        assert [queue.pop_next().id for _ in range(3)] == [first.id, second.id, third.id]

    def test_chat_optimization_keeps_newest_chat(self, make_item):
        """Only the latest chat message stays queued."""
        queue = DisplayQueue(chat_optimization=True)
        queue.add_item(make_item("chat"))
        queue.add_item(make_item("follow"))
        newest = make_item("chat")
        queue.add_item(newest)
        assert len(queue) == 2
        assert [item.type for item in queue.items()] == ["platform:follow", "platform:chat"]
        assert queue.last_chat_item is newest

    def test_chat_optimization_off_keeps_all(self, make_item):
        queue = DisplayQueue(chat_optimization=False)
        queue.add_item(make_item("chat"))
        queue.add_item(make_item("chat"))
        assert len(queue) == 2

    def test_capacity(self, make_item):
        """Adding past max_queue_size raises."""
        queue = DisplayQueue(max_queue_size=2)
        queue.add_item(make_item("follow"))
        queue.add_item(make_item("raid"))
        with pytest.raises(QueueFullError):
            queue.add_item(make_item("gift"))
        assert len(queue) == 2

    def test_peek_and_clear(self, make_item):
        queue = DisplayQueue()
        raid = make_item("raid")
        queue.add_item(make_item("follow"))
        queue.add_item(raid)
        assert queue.peek() is raid
        assert len(queue) == 2
        queue.clear()
        assert queue.peek() is None


class TestDisplayQueueConsumer:
    """Tests for the overlay consumer loop."""

    @pytest.mark.asyncio
    async def test_run_shows_items_in_priority_order(self, make_item):
        """The consumer shows queued items, highest priority first."""
        queue = DisplayQueue()
        queue.add_item(make_item("follow", duration=0))
        queue.add_item(make_item("raid", duration=0))
        shown = []
        renderer = AsyncMock()
        renderer.show.side_effect = lambda item: shown.append(item.type)

        task = asyncio.create_task(queue.run(renderer))
        for _ in range(20):
            if len(shown) == 2:
                break
            await asyncio.sleep(0)
        queue.stop()
        await asyncio.wait_for(task, timeout=1)

        assert shown == ["platform:raid", "platform:follow"]

    @pytest.mark.asyncio
    async def test_run_survives_renderer_errors(self, make_item):
        """A failing renderer does not stop the loop."""
        queue = DisplayQueue()
        queue.add_item(make_item("raid", duration=0))
        queue.add_item(make_item("follow", duration=0))
        renderer = AsyncMock()
        renderer.show.side_effect = [RuntimeError("overlay down"), None]

        task = asyncio.create_task(queue.run(renderer))
        for _ in range(20):
            if renderer.show.await_count == 2:
                break
            await asyncio.sleep(0)
        queue.stop()
        await asyncio.wait_for(task, timeout=1)

        assert renderer.show.await_count == 2
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_run_waits_for_new_items(self, make_item):
        """An idle consumer wakes up when an item is added."""
        queue = DisplayQueue()
        renderer = AsyncMock()
        task = asyncio.create_task(queue.run(renderer))
        await asyncio.sleep(0)

        queue.add_item(make_item("follow", duration=0))
        for _ in range(20):
            if renderer.show.await_count:
                break
            await asyncio.sleep(0)
        queue.stop()
        await asyncio.wait_for(task, timeout=1)

        renderer.show.assert_awaited_once()
