"""Priority display queue feeding the overlay."""

import asyncio
import heapq
import itertools
import logging
import threading
from typing import Optional, Protocol

from .events import IntentKind
from .models import QueueItem

logger = logging.getLogger(__name__)


class QueueFullError(RuntimeError):
    """Raised when the queue is at capacity."""


class DisplaySink(Protocol):
    """Anything that accepts queue items for display."""

    def add_item(self, item: QueueItem) -> None: ...


class OverlayRenderer(Protocol):
    """Presents one item on screen."""

    async def show(self, item: QueueItem) -> None: ...


class DisplayQueue:
    """Max-heap of pending notifications.

    Items are ordered by priority (highest first), then by enqueue time,
    then by arrival order. All mutation happens under one lock.
    """

    def __init__(
        self,
        max_queue_size: Optional[int] = 100,
        chat_optimization: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.max_queue_size = max_queue_size
        self.chat_optimization = chat_optimization
        self.logger = logger or logging.getLogger(__name__)
        self.last_chat_item: Optional[QueueItem] = None
        self._heap: list[tuple[int, int, int, QueueItem]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._item_added = asyncio.Event()
        self._running = False

    def add_item(self, item: QueueItem) -> None:
        """Admit an item.

        Raises:
            QueueFullError: If the queue holds max_queue_size items
        """
        with self._lock:
            if item.kind is IntentKind.CHAT and self.chat_optimization:
                # Only the newest chat message is worth showing
                stale = [entry for entry in self._heap if entry[3].kind is IntentKind.CHAT]
                if stale:
                    self._heap = [entry for entry in self._heap if entry[3].kind is not IntentKind.CHAT]
                    heapq.heapify(self._heap)
                    self.logger.debug(f"Removed {len(stale)} stale chat messages")
                self.last_chat_item = item

            if self.max_queue_size and len(self._heap) >= self.max_queue_size:
                raise QueueFullError(f"Queue at capacity ({self.max_queue_size})")

            heapq.heappush(self._heap, (-item.priority, item.enqueued_at, next(self._seq), item))
            size = len(self._heap)

        self.logger.debug(f"Queued {item.type} (priority {item.priority}), queue length {size}")
        self._item_added.set()

    def pop_next(self) -> Optional[QueueItem]:
        """Remove and return the head item, or None if empty."""
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[3]

    def peek(self) -> Optional[QueueItem]:
        with self._lock:
            return self._heap[0][3] if self._heap else None

    def clear(self) -> None:
        with self._lock:
            self._heap.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def items(self) -> list[QueueItem]:
        """Snapshot of queued items in dispatch order."""
        with self._lock:
            return [entry[3] for entry in sorted(self._heap)]

    async def run(self, renderer: OverlayRenderer) -> None:
        """Show queued items one at a time until stop() is called.

        Each item stays on screen for its duration. Renderer errors are
        logged and the loop moves on to the next item.
        """
        self._running = True
        self.logger.info("Display queue consumer started")
        while self._running:
            self._item_added.clear()
            item = self.pop_next()
            if item is None:
                await self._item_added.wait()
                continue
            try:
                await renderer.show(item)
            except Exception as e:
                self.logger.warning(f"Overlay failed to show {item.id}: {e}")
                continue
            await asyncio.sleep(item.duration / 1000)
        self.logger.info("Display queue consumer stopped")

    def stop(self) -> None:
        self._running = False
        self._item_added.set()
