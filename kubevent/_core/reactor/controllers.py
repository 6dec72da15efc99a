"""
The controllers: from the watch notifications to the work items to the jobs.

Every controller has its own queue and its own pool of workers.
The watch callbacks only decide whether a notification is worth reconciling,
and enqueue the object's key. The workers take the keys from the queue,
re-read the current state of the objects from the caches, match all the
triggers against that state, and submit a job for every matched trigger.

If the object is not in the cache anymore, it is considered deleted:
nothing is submitted, and the work item is forgotten. If any of the jobs
cannot be submitted, the whole work item is retried later, with all the
triggers re-matched; the already submitted jobs then collapse by their names.

Two controllers exist:

* :class:`EventController` reacts to the core-v1 Events in the cluster,
  classified by their reasons into creations, updates, deletions.
* :class:`StatusController` reacts to the changes of the status conditions
  of the resource kinds as referenced by the triggers.
"""
import asyncio
import logging
from collections.abc import Collection, Hashable
from typing import Generic, NamedTuple, Protocol, TypeVar

from kubevent._cogs.aiokits import aiotasks, aiotoggles
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import bodies, references, triggers
from kubevent._core.actions import loggers
from kubevent._core.engines import loading, reporting, synthesis
from kubevent._core.intents import classification, matching
from kubevent._core.reactor import caching, queueing, registry, tracking

logger = logging.getLogger(__name__)

ItemT = TypeVar('ItemT', bound=Hashable)


class ReconciliationError(Exception):
    """ Raised when some of the matched triggers failed to submit their jobs. """


class JobSubmitter(Protocol):
    async def __call__(
            self,
            job: bodies.RawBody,
            *,
            settings: configuration.OperatorSettings,
            logger: typedefs.Logger,
    ) -> str: ...


class ObjectRef(NamedTuple):
    """ A work item of the status path: the same names in different kinds differ. """
    kind: str
    key: str

    def __str__(self) -> str:
        return f'{self.kind} {self.key}'


class Controller(Generic[ItemT]):
    """
    The common part of the controllers: the queue, the workers, the reconciliation.

    The descendant classes define how the work items are looked up
    in the caches and turned into the changes, and what happens
    if the objects are not found there anymore.
    """
    name: str = 'controller'

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            snapshot: loading.TriggerSnapshot,
            reporter: reporting.StatusReporter | None = None,
            submitter: JobSubmitter = synthesis.create_job,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.snapshot = snapshot
        self.reporter = reporter
        self.submitter = submitter
        self.queue: queueing.WorkQueue[ItemT] = queueing.WorkQueue(
            name=self.name,
            backoff=queueing.ExponentialBackoff(
                base=settings.queueing.backoff_base,
                cap=settings.queueing.backoff_max,
            ),
        )

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {self.queue!r}>'

    async def lookup(self, item: ItemT) -> triggers.Change | None:
        raise NotImplementedError

    async def on_missing(self, item: ItemT) -> None:
        pass

    async def reconcile(self, item: ItemT) -> None:
        change = await self.lookup(item)
        if change is None:
            logger.debug(f"{self.name.capitalize()} item {item} is gone; forgetting it.")
            await self.on_missing(item)
            return

        object_logger = loggers.ObjectLogger(kind=change.kind, name=change.name,
                                             namespace=change.namespace)
        all_triggers = await self.snapshot.get()
        matched = [trigger for trigger in all_triggers if matching.matches(trigger, change)]
        if not matched:
            object_logger.debug(f"No triggers match the {change.mode} change of {change.kind}.")
            return

        failed: list[str] = []
        for trigger in matched:
            try:
                job = synthesis.render_job(trigger, change, settings=self.settings)
                name = await self.submitter(job, settings=self.settings, logger=object_logger)
            except Exception as e:
                object_logger.error(f"Trigger {trigger.id} failed to submit a job: {e!r}")
                failed.append(trigger.id)
            else:
                object_logger.info(f"Trigger {trigger.id} submitted job {name!r}.")
                if self.reporter is not None:
                    await self.reporter.record(trigger, logger=object_logger)

        if failed:
            raise ReconciliationError(f"Failed triggers: {', '.join(failed)}")

    async def worker(self) -> None:
        while True:
            item = await self.queue.get()
            if item is queueing.Shutdown.token:
                break
            try:
                await self.reconcile(item)
            except (ReconciliationError, loading.TriggerLoadError) as e:
                retries = self.queue.requeues(item)
                logger.error(f"Failed to reconcile {item} (retry #{retries + 1} follows): {e}")
                self.queue.add_rate_limited(item)
            except Exception as e:
                logger.exception(f"Unexpected error in reconciling {item}: {e!r}")
                self.queue.add_rate_limited(item)
            else:
                self.queue.forget(item)
            finally:
                self.queue.done(item)

    async def serve(self, started: asyncio.Event | None = None) -> None:
        """
        Reconcile the work items until cancelled, once the startup is over.

        On cancellation, the queue stops giving out new items, and the workers
        are given some time to finish the items that are already in processing.
        """
        if started is not None:
            await started.wait()

        tasks = [
            aiotasks.create_guarded_task(
                coro=self.worker(),
                name=f"{self.name} worker #{idx}",
                finishable=True,
                logger=logger,
            )
            for idx in range(self.settings.queueing.workers)
        ]
        logger.debug(f"{self.name.capitalize()} started {len(tasks)} workers.")
        try:
            await aiotasks.wait(tasks)
        finally:
            self.queue.shutdown()
            _, pending = await aiotasks.wait(tasks, timeout=self.settings.queueing.exit_timeout)
            await aiotasks.stop(pending, title=f"{self.name} workers", quiet=True, logger=logger)


class EventController(Controller[str]):
    """
    Reconciles the core-v1 Events, by their keys (``namespace/name``).
    """
    name = 'event controller'

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            snapshot: loading.TriggerSnapshot,
            reporter: reporting.StatusReporter | None = None,
            submitter: JobSubmitter = synthesis.create_job,
            labels_source: registry.WatchRegistry | None = None,
            synced: aiotoggles.Toggle | None = None,
            labels_synced: aiotoggles.ToggleSet | None = None,
    ) -> None:
        super().__init__(settings=settings, snapshot=snapshot, reporter=reporter, submitter=submitter)
        self.labels_source = labels_source
        self.labels = registry.WatchRegistry(
            settings=settings,
            callback=self.cache_labels,
            synced=labels_synced,
        )
        self.watch = caching.Watch(
            resource=references.EVENTS,
            callback=self.notify,
            synced=synced,
            settings=settings,
        )

    async def watch_labels(self, all_triggers: Collection[triggers.TriggerSpec]) -> None:
        """
        Watch the involved kinds for the label selectors of the event triggers.

        The kinds already watched by the labels source are not watched twice.
        """
        kinds = {trigger.filter.kind for trigger in all_triggers
                 if trigger.mode == triggers.TriggerMode.EVENT and trigger.filter.label_selector}
        for kind in sorted(kinds):
            if self.labels_source is None or kind not in self.labels_source:
                await self.labels.ensure_watch(kind)

    async def cache_labels(self, raw_event: bodies.RawEvent, *, kind: str) -> None:
        pass  # the involved objects are only looked up, never reconciled

    def get_labels(self, kind: str, key: str) -> bodies.Labels:
        for source in [self.labels_source, self.labels]:
            body = source.get(kind, key) if source is not None else None
            if body is not None:
                return bodies.get_labels(body)
        return {}

    def classify(self, body: bodies.RawBody) -> triggers.EventType | None:
        involved = body.get('involvedObject') or {}  # type: ignore[typeddict-item]
        return classification.classify(
            reason=body.get('reason'),  # type: ignore[typeddict-item]
            kind=involved.get('kind'),
            fallback_kinds=self.settings.classification.fallback_kinds,
        )

    async def notify(self, raw_event: bodies.RawEvent) -> None:
        # The deletions of the Events are their expiration, not the deletions of the resources.
        if raw_event['type'] == 'DELETED':
            return

        body = raw_event['object']
        key = bodies.make_key(body)
        if self.classify(body) is None:
            reason = body.get('reason')  # type: ignore[typeddict-item]
            logger.debug(f"Ignoring an unclassifiable event {key} with reason {reason!r}.")
            return

        self.queue.add(key)

    async def lookup(self, item: str) -> triggers.Change | None:
        body = self.watch.cache.get(item)
        if body is None:
            return None

        event_type = self.classify(body)
        if event_type is None:
            return None

        involved = body.get('involvedObject') or {}  # type: ignore[typeddict-item]
        kind = involved.get('kind') or ''
        name = involved.get('name') or ''
        namespace = involved.get('namespace') or ''
        resource_key = f'{namespace}/{name}' if namespace else name

        metadata = body.get('metadata', {})
        return triggers.Change(
            kind=kind,
            name=name,
            namespace=namespace,
            labels=self.get_labels(kind, resource_key),
            event_type=event_type,
            source_uid=metadata.get('uid'),
            source_version=metadata.get('resourceVersion'),
            source_namespace=metadata.get('namespace'),
        )


class StatusController(Controller[ObjectRef]):
    """
    Reconciles the watched resources on the changes of their status conditions.
    """
    name = 'status controller'

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            snapshot: loading.TriggerSnapshot,
            reporter: reporting.StatusReporter | None = None,
            submitter: JobSubmitter = synthesis.create_job,
            synced: aiotoggles.ToggleSet | None = None,
            tracker: tracking.StatusTracker | None = None,
    ) -> None:
        super().__init__(settings=settings, snapshot=snapshot, reporter=reporter, submitter=submitter)
        self.tracker = tracker if tracker is not None else tracking.StatusTracker()
        self.registry = registry.WatchRegistry(
            settings=settings,
            callback=self.notify,
            synced=synced,
        )

    async def notify(self, raw_event: bodies.RawEvent, *, kind: str) -> None:
        body = raw_event['object']
        ref = ObjectRef(kind, bodies.make_key(body))

        # The worker will not find it in the cache, and will clear the tracker.
        if raw_event['type'] == 'DELETED':
            self.queue.add(ref)
            return

        # The vanished conditions are a change too: their return must be noticed.
        conditions = triggers.extract_conditions(body)
        if not conditions:
            if ref in self.tracker:
                await self.tracker.forget(ref)
            return

        if await self.tracker.observe(ref, conditions):
            self.queue.add(ref)

    async def lookup(self, item: ObjectRef) -> triggers.Change | None:
        body = self.registry.get(item.kind, item.key)
        if body is None:
            return None

        metadata = body.get('metadata', {})
        return triggers.Change(
            kind=item.kind,
            name=metadata.get('name') or '',
            namespace=metadata.get('namespace') or '',
            labels=bodies.get_labels(body),
            conditions=triggers.extract_conditions(body),
            source_uid=metadata.get('uid'),
            source_version=metadata.get('resourceVersion'),
        )

    async def on_missing(self, item: ObjectRef) -> None:
        await self.tracker.forget(item)
