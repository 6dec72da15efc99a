"""
The deduplicating rate-limited work queue for the reconciliation workers.

The work items are the keys of the objects to reconcile, not the objects
themselves: the workers always re-read the current state from the caches.
This is why multiple notifications about the same object can be safely
coalesced into one work item, and the items can be reconciled in any order.

For every item, the queue guarantees that:

* there is at most one pending entry in the queue at a time;
* it is processed by at most one worker at a time;
* if it is added while being processed, it is re-queued when done.

The failed items are re-added after a delay, which grows exponentially
with every consecutive failure of the same item, until it is forgotten.
"""
import asyncio
import collections
import enum
import logging
from collections.abc import Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

ItemT = TypeVar('ItemT', bound=Hashable)


# A marker for the workers that the queue is shut down and they should exit.
# See: https://www.python.org/dev/peps/pep-0484/#support-for-singleton-types-in-unions
class Shutdown(enum.Enum):
    token = enum.auto()


class ExponentialBackoff(Generic[ItemT]):
    """
    A per-item delay: ``base * 2 ** failures``, but never above the cap.
    """

    def __init__(self, *, base: float = 0.005, cap: float = 1000) -> None:
        super().__init__()
        self.base = base
        self.cap = cap
        self._failures: dict[ItemT, int] = {}

    def when(self, item: ItemT) -> float:
        exp = self._failures.get(item, 0)
        self._failures[item] = exp + 1
        delay = self.base * 2 ** exp if exp < 64 else float('inf')
        return min(delay, self.cap)

    def failures(self, item: ItemT) -> int:
        return self._failures.get(item, 0)

    def forget(self, item: ItemT) -> None:
        self._failures.pop(item, None)


class WorkQueue(Generic[ItemT]):

    def __init__(
            self,
            *,
            name: str = 'queue',
            backoff: ExponentialBackoff[ItemT] | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self._backoff: ExponentialBackoff[ItemT] = backoff if backoff is not None else ExponentialBackoff()
        self._queue: collections.deque[ItemT] = collections.deque()
        self._dirty: set[ItemT] = set()
        self._processing: set[ItemT] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __repr__(self) -> str:
        return (f'<{self.__class__.__name__}: {self.name}: {len(self._queue)} queued, '
                f'{len(self._processing)} processing, {len(self._timers)} delayed>')

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: ItemT) -> None:
        if self._shutting_down:
            return
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return  # re-queued when done
        self._queue.append(item)
        self._wakeup.set()

    def add_after(self, item: ItemT, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: ItemT) -> None:
        self.add_after(item, self._backoff.when(item))

    def forget(self, item: ItemT) -> None:
        self._backoff.forget(item)

    def requeues(self, item: ItemT) -> int:
        return self._backoff.failures(item)

    async def get(self) -> ItemT | Shutdown:
        """
        Take the next item for processing; block until there is one.

        Once the queue is shut down, no more items are given out, even if
        there are some still queued: only the items in processing are finished.
        """
        while True:
            if self._shutting_down:
                return Shutdown.token
            if self._queue:
                item = self._queue.popleft()
                self._dirty.discard(item)
                self._processing.add(item)
                if not self._queue:
                    self._wakeup.clear()
                return item
            self._wakeup.clear()
            await self._wakeup.wait()

    def done(self, item: ItemT) -> None:
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._queue.append(item)
            self._wakeup.set()

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._wakeup.set()
