"""Room-scoped "state changed" broadcast.

Delivery is best-effort and carries no payload beyond the room code: a
receiver treats every ping as a hint to re-fetch the full room state. Pings
may be lost or coalesced; a subscriber whose queue is full already has a
re-fetch pending, so the extra ping is dropped.
"""
from typing import Dict, Optional, Set
import asyncio
import logging

logger = logging.getLogger(__name__)

STATE_CHANGED = "STATE_CHANGED"
SUBSCRIPTION_QUEUE_SIZE = 16


class Channel:
    """Publishing side of one room's broadcast channel."""

    def __init__(self, notifier: "ChangeNotifier", code: str):
        self.notifier = notifier
        self.code = code

    async def publish(self) -> int:
        return await self.notifier.publish(self.code)


class Subscription(Channel):
    """A subscriber's handle. Must be closed to release the channel."""

    def __init__(self, notifier: "ChangeNotifier", code: str):
        super().__init__(notifier, code)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIPTION_QUEUE_SIZE)
        self.closed = False

    def _deliver(self, message: dict):
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            pass

    async def receive(self, timeout: Optional[float] = None) -> dict:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self):
        if not self.closed:
            self.closed = True
            self.notifier._remove(self)


class ChangeNotifier:
    """In-process pub/sub, one topic per room code."""

    def __init__(self):
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def channel(self, code: str) -> Channel:
        return Channel(self, code)

    def subscribe(self, code: str) -> Subscription:
        sub = Subscription(self, code)
        self._subscribers.setdefault(code, set()).add(sub)
        logger.debug("Subscribed to room %s (%d subscribers)", code, len(self._subscribers[code]))
        return sub

    def _remove(self, sub: Subscription):
        subs = self._subscribers.get(sub.code)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.code]
        logger.debug("Unsubscribed from room %s", sub.code)

    def subscriber_count(self, code: str) -> int:
        return len(self._subscribers.get(code, ()))

    async def publish(self, code: str) -> int:
        """Ping every subscriber of ``code``. Returns how many were pinged."""
        subs = list(self._subscribers.get(code, ()))
        message = {"type": STATE_CHANGED, "code": code}
        for sub in subs:
            sub._deliver(message)
        return len(subs)
