import asyncio
from unittest.mock import AsyncMock

import pytest

from kubevent._core.engines.loading import TriggerSnapshot
from kubevent._core.reactor import caching


class StaticTriggerSource:
    def __init__(self, triggers=()):
        self.triggers = list(triggers)

    def __repr__(self):
        return '<StaticTriggerSource>'

    async def load(self):
        return self.triggers


@pytest.fixture()
def source(event_trigger, status_trigger):
    return StaticTriggerSource([event_trigger, status_trigger])


@pytest.fixture()
def snapshot(source):
    return TriggerSnapshot(source)


@pytest.fixture()
def submitter():
    return AsyncMock(return_value='job-name')


@pytest.fixture()
def reporter():
    return AsyncMock()


@pytest.fixture()
def idle_watches(mocker):
    """ Keep the watches of the registries running, but never streaming from the API. """
    async def run(self):
        await asyncio.Event().wait()

    mocker.patch.object(caching.Watch, 'run', new=run)
