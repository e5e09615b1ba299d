import asyncio
from typing import Callable, List, Optional

from ..schemas.goal import ChangeEvent


class ChangeFeed:
    """Point-in-time stream of change events for one (table, user) subscription."""

    def __init__(self, table: str, user_id: str, on_close: Optional[Callable[["ChangeFeed"], None]] = None) -> None:
        self.table = table
        self.user_id = user_id
        self._queue: "asyncio.Queue[Optional[ChangeEvent]]" = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def publish(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        self._queue.put_nowait(event)

    async def get(self) -> Optional[ChangeEvent]:
        # None signals the feed was closed.
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> List[ChangeEvent]:
        events: List[ChangeEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)
        if self._on_close:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event
