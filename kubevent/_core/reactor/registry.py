"""
The registry of the watched resource kinds, one watch per kind.

The kinds are added on demand (usually, from the loaded triggers), never removed.
All watches notify the same callback, and report their "synced" state into
the same toggle set, which is used as the startup barrier.

A failure of any watch is fatal: it is re-raised from :meth:`WatchRegistry.guard`,
which is one of the root tasks of the controller.
"""
import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Collection

from kubevent._cogs.aiokits import aiotasks, aiotoggles
from kubevent._cogs.configs import configuration
from kubevent._cogs.structs import bodies, references
from kubevent._core.reactor import caching

logger = logging.getLogger(__name__)

# Same as the watch callbacks, but also with the kind as it was requested.
RegistryCallback = Callable[..., Awaitable[None]]


class WatchSyncError(Exception):
    """ Raised when the watches do not sync before the startup is over. """


class WatchRegistry:

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            callback: RegistryCallback,
            synced: aiotoggles.ToggleSet | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.synced = synced if synced is not None else aiotoggles.ToggleSet(all)
        self._callback = callback
        self._watches: dict[str, caching.Watch] = {}
        self._lock = asyncio.Lock()
        self._failures: asyncio.Queue[BaseException] = asyncio.Queue()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {list(self._watches)!r}>'

    def __len__(self) -> int:
        return len(self._watches)

    def __contains__(self, kind: object) -> bool:
        return kind in self._watches

    @property
    def kinds(self) -> Collection[str]:
        return frozenset(self._watches)

    async def ensure_watch(self, kind: str) -> caching.Watch:
        """
        Start watching the kind unless it is already watched. Idempotent.
        """
        async with self._lock:
            if kind in self._watches:
                return self._watches[kind]

            resource = references.resource_for_kind(kind)
            toggle = await self.synced.make_toggle(name=repr(resource))
            watch = caching.Watch(
                resource=resource,
                callback=functools.partial(self._callback, kind=kind),
                synced=toggle,
                settings=self.settings,
            )
            self._watches[kind] = watch
            task = watch.start()
            task.add_done_callback(self._check_failure)
            logger.info(f"Watching {kind} as {resource} cluster-wide.")
            return watch

    def _check_failure(self, task: aiotasks.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self._failures.put_nowait(task.exception())

    def get(self, kind: str, key: str) -> bodies.RawBody | None:
        watch = self._watches.get(kind)
        return watch.cache.get(key) if watch is not None else None

    async def guard(self) -> None:
        """ Wait forever, or until any of the watches fails; re-raise its error. """
        error = await self._failures.get()
        raise error

    async def stop(self) -> None:
        async with self._lock:
            watches = list(self._watches.values())
        tasks = [watch.task for watch in watches if watch.task is not None]
        await aiotasks.stop(tasks, title="watchers", quiet=True, logger=logger)


async def wait_synced(
        synced: aiotoggles.ToggleSet,
        *,
        timeout: float | None,
        stop_flag: aiotasks.Flag | None = None,
) -> None:
    """
    Block until all the watches are synced, or fail if it is not going to happen.
    """
    waiter = asyncio.create_task(synced.wait_for(True), name="sync waiter")
    stopper = asyncio.create_task(aiotasks.wait_flag(stop_flag), name="sync stopper")
    try:
        done, _ = await aiotasks.wait([waiter, stopper], timeout=timeout,
                                      return_when=asyncio.FIRST_COMPLETED)
    finally:
        await aiotasks.stop([waiter, stopper], title="sync waiters", quiet=True)

    if waiter not in done:
        pending = ', '.join(sorted(synced.names(False))) or 'none'
        reason = 'the controller is stopped' if stopper in done else f'timed out after {timeout}s'
        raise WatchSyncError(f"The watches are not synced: {reason}; not synced: {pending}.")
    logger.info(f"All {len(synced)} watches are synced.")
