from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List

from .utils import utc_iso


# ============================================================
# Event Bus (event-driven backbone)
# ============================================================
@dataclass
class Event:
    type: str                 # "property" | "event"
    ts: str                   # ISO time
    source: str               # thing name, e.g. "water", "filterpump"
    data: Dict[str, Any]      # payload
    seq: int = 0              # event sequence

    @property
    def name(self) -> str:
        return str(self.data.get("name", ""))


def make_event(type_: str, source: str, name: str, value: Any) -> Event:
    return Event(type=type_, ts=utc_iso(), source=source, data={"name": name, "value": value})


class EventBus:
    """
    Simple asyncio-based pub/sub event bus.
    Subscribers receive ALL events, can filter locally.
    """
    def __init__(self, max_queue: int = 20000):
        self._subs: List[asyncio.Queue] = []
        self._seq = 0
        self._max_queue = max_queue
        self._lock = asyncio.Lock()

    async def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        async with self._lock:
            self._subs.append(q)
        return q

    async def unsubscribe(self, q: asyncio.Queue) -> None:
        async with self._lock:
            if q in self._subs:
                self._subs.remove(q)

    async def publish(self, ev: Event) -> None:
        self._seq += 1
        ev.seq = self._seq
        # deliver to all; if some queue is full, drop for that subscriber
        async with self._lock:
            for q in self._subs:
                try:
                    q.put_nowait(ev)
                except asyncio.QueueFull:
                    pass


def drain(q: asyncio.Queue) -> List[Event]:
    out: List[Event] = []
    while True:
        try:
            out.append(q.get_nowait())
        except asyncio.QueueEmpty:
            return out
