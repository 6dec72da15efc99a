"""
Local caches of the watched resources, and the watches that populate them.

Every watch is a never-ending list-then-watch stream of one resource kind
cluster-wide. Every received object is stored in the watch's cache by its key
(``namespace/name``), and then the watch's callback is notified about it.
The workers never use the notified objects directly, but read the caches.

A watch is "synced" once its first listing is over: from that moment, its
cache holds all the objects of that kind as they were at the listing's time.
On every re-listing (after the reconnects), the objects that disappeared
while the stream was disconnected are removed from the cache and notified
as if they were deleted, since their real deletion events were missed.
"""
import logging
from collections.abc import Awaitable, Callable, Iterator

from kubevent._cogs.aiokits import aiotasks, aiotoggles
from kubevent._cogs.clients import watching
from kubevent._cogs.configs import configuration
from kubevent._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

WatchCallback = Callable[[bodies.RawEvent], Awaitable[None]]


class ObjectCache:
    """ The latest known state of the objects of one resource kind. """

    def __init__(self) -> None:
        super().__init__()
        self._objects: dict[str, bodies.RawBody] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self._objects)} objects>'

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, key: object) -> bool:
        return key in self._objects

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._objects))

    def get(self, key: str) -> bodies.RawBody | None:
        return self._objects.get(key)

    def store(self, body: bodies.RawBody) -> str:
        key = bodies.make_key(body)
        self._objects[key] = body
        return key

    def discard(self, body: bodies.RawBody) -> str:
        key = bodies.make_key(body)
        self._objects.pop(key, None)
        return key

    def prune(self, keep: set[str]) -> list[bodies.RawBody]:
        """ Remove and return the objects that are not in the kept keys. """
        gone = [key for key in self._objects if key not in keep]
        return [self._objects.pop(key) for key in gone]


class Watch:
    """
    A watch of one resource kind, with its cache and its "synced" toggle.
    """

    def __init__(
            self,
            *,
            resource: references.Resource,
            callback: WatchCallback,
            synced: aiotoggles.Toggle | None = None,
            settings: configuration.OperatorSettings,
    ) -> None:
        super().__init__()
        self.resource = resource
        self.cache = ObjectCache()
        self.synced = synced if synced is not None else aiotoggles.Toggle()
        self.task: aiotasks.Task | None = None
        self._callback = callback
        self._settings = settings
        self._listed_keys: set[str] | None = None  # only while listing

    def __repr__(self) -> str:
        synced = 'synced' if self.synced.is_on() else 'not synced'
        return f'<{self.__class__.__name__}: {self.resource}: {synced}, {len(self.cache)} objects>'

    def start(self) -> aiotasks.Task:
        self.task = aiotasks.create_guarded_task(
            coro=self.run(),
            name=f"watcher for {self.resource}",
            logger=logger,
        )
        return self.task

    async def stop(self) -> None:
        if self.task is not None:
            await aiotasks.stop([self.task], title=f"watcher for {self.resource}",
                                quiet=True, logger=logger)

    async def run(self) -> None:
        stream = watching.infinite_watch(
            settings=self._settings,
            resource=self.resource,
        )
        async for item in stream:
            await self.process(item)

    async def process(self, item: watching.Bookmark | bodies.RawEvent) -> None:
        """
        Process a single item of the watch-stream: update the cache & notify.
        """
        match item:
            case watching.Bookmark.LISTING:
                self._listed_keys = set()
            case watching.Bookmark.LISTED:
                listed_keys = self._listed_keys or set()
                self._listed_keys = None
                for body in self.cache.prune(listed_keys):
                    await self._notify({'type': 'DELETED', 'object': body})
                if self.synced.is_off():
                    logger.debug(f"The watch-stream for {self.resource} is synced: "
                                 f"{len(self.cache)} objects.")
                    await self.synced.turn_to(True)
            case {'type': 'DELETED', 'object': body}:
                self._restore_kind(body)
                self.cache.discard(body)
                await self._notify(item)
            case {'type': None | 'ADDED' | 'MODIFIED', 'object': body}:
                self._restore_kind(body)
                key = self.cache.store(body)
                if item['type'] is None and self._listed_keys is not None:
                    self._listed_keys.add(key)
                await self._notify(item)
            case _:
                logger.warning(f"Ignoring an unsupported item of the watch-stream: {item!r}")

    def _restore_kind(self, body: bodies.RawBody) -> None:
        # The watch-events usually have it, the listings only have it for the whole list.
        if self.resource.kind is not None:
            body.setdefault('kind', self.resource.kind)
            body.setdefault('apiVersion', self.resource.api_version)

    async def _notify(self, raw_event: bodies.RawEvent) -> None:
        # One broken notification should not break the whole stream of all objects.
        try:
            await self._callback(raw_event)
        except Exception:
            key = bodies.make_key(raw_event['object'])
            logger.exception(f"Failed to process a notification about {self.resource} {key}.")
