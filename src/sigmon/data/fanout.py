from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, List, Literal, TypeVar

import structlog

log = structlog.get_logger("fanout")

E = TypeVar("E")
Callback = Callable[[E], Any]
OverflowPolicy = Literal["drop_newest", "drop_oldest"]


class SubscriberRegistry(Generic[E]):
    """
    Ordered list of per-event callbacks.

    publish() calls every callback synchronously, in subscription order, with
    the same event. A callback that raises is logged and removed; delivery to
    the remaining callbacks continues.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._subs: List[Callback] = []
        self.removed_on_error = 0

    def __len__(self) -> int:
        return len(self._subs)

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register; returns a function that unsubscribes it."""
        self._subs.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callback) -> bool:
        try:
            self._subs.remove(callback)
            return True
        except ValueError:
            return False

    def publish(self, event: E) -> int:
        """Returns how many callbacks received the event without error."""
        delivered = 0
        for cb in list(self._subs):
            try:
                cb(event)
                delivered += 1
            except Exception as e:
                self.unsubscribe(cb)
                self.removed_on_error += 1
                log.warning("subscriber_removed", registry=self.name,
                            subscriber=getattr(cb, "__name__", repr(cb)), err=str(e))
        return delivered


class QueueSubscriber(Generic[E]):
    """
    Callback adapter around a bounded asyncio.Queue for a consumer task that
    may fall behind. On overflow:
      - drop_newest: the incoming event is discarded
      - drop_oldest: the oldest queued event is discarded to make room
    """

    def __init__(self, maxsize: int = 1000, policy: OverflowPolicy = "drop_newest"):
        if policy not in ("drop_newest", "drop_oldest"):
            raise ValueError(f"unknown overflow policy: {policy!r}")
        self.q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.policy = policy
        self.dropped = 0

    def __call__(self, event: E) -> None:
        try:
            self.q.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass
        self.dropped += 1
        if self.policy == "drop_newest":
            return
        try:
            self.q.get_nowait()
        except asyncio.QueueEmpty:
            pass
        self.q.put_nowait(event)

    async def get(self) -> E:
        return await self.q.get()

    def qsize(self) -> int:
        return self.q.qsize()
