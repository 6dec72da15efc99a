"""
Tracking of the last seen conditions of the watched resources.

The tracker tells whether the conditions of a resource have changed since
they were last seen, so that only the real transitions are reconciled,
not every update of the resource (e.g. of its metadata or spec).

The state is in memory only: after a restart, all resources are considered
new, and are reconciled once each (at-least-once, not exactly-once).
"""
import asyncio
from collections.abc import Hashable, Mapping


class StatusTracker:

    def __init__(self) -> None:
        super().__init__()
        self._seen: dict[Hashable, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self._seen)} resources>'

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: object) -> bool:
        return key in self._seen

    async def observe(self, key: Hashable, conditions: Mapping[str, str]) -> bool:
        """
        Remember the conditions, and tell if they differ from the remembered ones.

        Any difference counts: added, removed, or changed conditions.
        The order of the conditions does not matter.
        """
        new = dict(conditions)
        async with self._lock:
            if key in self._seen and self._seen[key] == new:
                return False
            self._seen[key] = new
            return True

    async def forget(self, key: Hashable) -> None:
        async with self._lock:
            self._seen.pop(key, None)
