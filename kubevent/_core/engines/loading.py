"""
Loading the triggers from their sources.

The triggers are loaded once and are then served from a snapshot: there is
no live watching of the triggers themselves. The snapshot can be reloaded
out-of-band, in which case the new triggers replace the old ones atomically,
i.e. every reconciliation sees either the old set or the new set, never a mix.

A trigger that cannot be interpreted is skipped with a warning; the rest load.
A source that cannot be read at all fails the whole loading.
"""
import asyncio
import logging
from collections.abc import Collection, Iterable
from typing import Protocol

import aiohttp
import yaml

from kubevent._cogs.clients import errors, fetching
from kubevent._cogs.configs import configuration
from kubevent._cogs.structs import bodies, references, triggers

logger = logging.getLogger(__name__)


class TriggerLoadError(Exception):
    """ Raised when the triggers cannot be loaded from their source. """


class TriggerSource(Protocol):
    async def load(self) -> Collection[triggers.TriggerSpec]: ...


def parse_triggers(objs: Iterable[bodies.RawBody], *, source: str) -> list[triggers.TriggerSpec]:
    result: list[triggers.TriggerSpec] = []
    for obj in objs:
        try:
            result.append(triggers.parse_trigger(obj))
        except triggers.InvalidTriggerError as e:
            logger.warning(f"Skipping an invalid trigger from {source}: {e}")
    return result


class ApiTriggerSource:
    """ Triggers as the custom resources in the cluster, in all namespaces. """

    def __init__(self, *, settings: configuration.OperatorSettings) -> None:
        super().__init__()
        self.settings = settings
        self.resource = references.triggers_resource(settings)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {self.resource}>'

    async def load(self) -> Collection[triggers.TriggerSpec]:
        try:
            objs, _ = await fetching.list_objs(
                settings=self.settings,
                resource=self.resource,
                logger=logger,
            )
        except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TriggerLoadError(f"Cannot list the triggers {self.resource}: {e!r}") from e
        for obj in objs:
            obj.setdefault('apiVersion', self.resource.api_version)
            obj.setdefault('kind', self.settings.triggers.kind)
        return parse_triggers(objs, source=repr(self.resource))


class FileTriggerSource:
    """
    Triggers from the local YAML files, e.g. for development or tests.

    Every file can contain multiple documents; the documents of other kinds
    (or of other API groups) are ignored. The triggers from the files have
    no uids, so the jobs are not owned by them and their status is not reported.
    """

    def __init__(self, paths: Iterable[str], *, settings: configuration.OperatorSettings) -> None:
        super().__init__()
        self.paths = list(paths)
        self.settings = settings

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {self.paths!r}>'

    async def load(self) -> Collection[triggers.TriggerSpec]:
        loop = asyncio.get_running_loop()
        result: list[triggers.TriggerSpec] = []
        for path in self.paths:
            try:
                docs = await loop.run_in_executor(None, _read_yaml_documents, path)
            except (OSError, yaml.YAMLError) as e:
                raise TriggerLoadError(f"Cannot read the triggers from {path}: {e}") from e
            objs = [doc for doc in docs if self._is_trigger(doc)]
            result.extend(parse_triggers(objs, source=path))
        return result

    def _is_trigger(self, doc: object) -> bool:
        if not isinstance(doc, dict):
            return False
        group, _, _ = str(doc.get('apiVersion', '')).rpartition('/')
        return doc.get('kind') == self.settings.triggers.kind and group == self.settings.triggers.group


def _read_yaml_documents(path: str) -> list[object]:
    with open(path, encoding='utf-8') as f:
        return [doc for doc in yaml.safe_load_all(f) if doc is not None]


class TriggerSnapshot:
    """
    The triggers as currently known: loaded lazily once, and then cached.

    If the loading fails, nothing is cached, and the next call tries again.
    """

    def __init__(self, source: TriggerSource) -> None:
        super().__init__()
        self._source = source
        self._triggers: tuple[triggers.TriggerSpec, ...] | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        loaded = 'not loaded' if self._triggers is None else f'{len(self._triggers)} triggers'
        return f'<{self.__class__.__name__}: {self._source!r}: {loaded}>'

    @property
    def loaded(self) -> bool:
        return self._triggers is not None

    async def get(self) -> Collection[triggers.TriggerSpec]:
        current = self._triggers
        if current is not None:
            return current
        async with self._lock:
            if self._triggers is None:
                self._triggers = await self._load()
            return self._triggers

    async def reload(self) -> Collection[triggers.TriggerSpec]:
        async with self._lock:
            self._triggers = await self._load()
            return self._triggers

    async def _load(self) -> tuple[triggers.TriggerSpec, ...]:
        loaded = tuple(await self._source.load())
        logger.info(f"Loaded {len(loaded)} triggers from {self._source!r}.")
        return loaded
