import dataclasses

import pytest

from kubevent._cogs.structs.triggers import EventType, ResourceFilter
from kubevent._core.reactor.controllers import EventController, StatusController


class FakeLabelsSource:
    def __init__(self, objects):
        self.objects = objects

    def get(self, kind, key):
        return self.objects.get((kind, key))


def _event(name='web-1.abc', reason='Created', kind='Pod', involved_name='web-1',
           involved_namespace='prod', namespace='prod'):
    return {
        'kind': 'Event',
        'apiVersion': 'v1',
        'metadata': {'name': name, 'namespace': namespace, 'uid': 'uid-event', 'resourceVersion': '100'},
        'reason': reason,
        'involvedObject': {'kind': kind, 'name': involved_name, 'namespace': involved_namespace},
    }


@pytest.fixture()
def labels_source():
    return FakeLabelsSource({('Pod', 'prod/web-1'): {'metadata': {'labels': {'app': 'web'}}}})


@pytest.fixture()
def controller(settings, snapshot, submitter, labels_source):
    return EventController(settings=settings, snapshot=snapshot, submitter=submitter,
                           labels_source=labels_source)


async def test_classified_events_are_queued(controller):
    await controller.notify({'type': 'ADDED', 'object': _event()})
    assert len(controller.queue) == 1
    assert await controller.queue.get() == 'prod/web-1.abc'


async def test_repeated_events_are_queued_once(controller):
    await controller.notify({'type': 'ADDED', 'object': _event()})
    await controller.notify({'type': 'MODIFIED', 'object': _event()})
    assert len(controller.queue) == 1


async def test_expired_events_are_ignored(controller):
    await controller.notify({'type': 'DELETED', 'object': _event()})
    assert len(controller.queue) == 0


async def test_unclassifiable_events_are_ignored(controller, caplog):
    caplog.set_level('DEBUG')
    await controller.notify({'type': 'ADDED', 'object': _event(reason='ScalingReplicaSet', kind='Deployment')})
    assert len(controller.queue) == 0
    assert "Ignoring an unclassifiable event prod/web-1.abc with reason 'ScalingReplicaSet'" in caplog.text


async def test_unrecognised_reasons_of_fallback_kinds_are_queued(controller):
    await controller.notify({'type': 'ADDED', 'object': _event(reason='Pulled')})
    assert len(controller.queue) == 1


async def test_lookup_builds_the_change(controller):
    await controller.watch.process({'type': 'ADDED', 'object': _event()})
    change = await controller.lookup('prod/web-1.abc')
    assert change.kind == 'Pod'
    assert change.name == 'web-1'
    assert change.namespace == 'prod'
    assert change.labels == {'app': 'web'}
    assert change.event_type == EventType.CREATE
    assert change.source_uid == 'uid-event'
    assert change.source_version == '100'
    assert change.source_namespace == 'prod'


async def test_lookup_of_unknown_resources_has_no_labels(controller):
    await controller.watch.process({'type': 'ADDED', 'object': _event(involved_name='web-2')})
    change = await controller.lookup('prod/web-1.abc')
    assert change.labels == {}


async def test_lookup_of_cluster_scoped_resources(controller):
    event = _event(kind='Node', reason='Killing', involved_namespace=None, namespace='default')
    await controller.watch.process({'type': 'ADDED', 'object': event})
    change = await controller.lookup('default/web-1.abc')
    assert change.namespace == ''
    assert change.source_namespace == 'default'
    assert change.event_type == EventType.DELETE


async def test_lookup_of_absent_events(controller):
    assert await controller.lookup('prod/web-1.abc') is None


async def test_reconciliation_submits_the_matched_jobs(controller, submitter, settings):
    await controller.watch.process({'type': 'ADDED', 'object': _event()})
    await controller.reconcile('prod/web-1.abc')

    submitter.assert_awaited_once()
    job, = submitter.await_args.args
    assert submitter.await_args.kwargs['settings'] is settings
    assert job['metadata']['namespace'] == 'prod'
    assert job['metadata']['labels']['kubevent-event-type'] == 'CREATE'
    assert job['spec']['template']['spec']['containers'][0]['args'] == ['Pod', 'prod/web-1']


async def test_reconciliation_of_unmatched_events(controller, submitter):
    await controller.watch.process({'type': 'ADDED', 'object': _event(reason='Updated')})
    await controller.reconcile('prod/web-1.abc')
    assert not submitter.called


async def test_reconciliation_of_absent_events(controller, submitter):
    await controller.reconcile('prod/web-1.abc')
    assert not submitter.called


@pytest.fixture()
def labelled_trigger(event_trigger):
    return dataclasses.replace(event_trigger, filter=ResourceFilter(
        kind='Pod', label_selector={'matchLabels': {'app': 'web'}}))


@pytest.fixture()
async def watching_controller(settings, snapshot, submitter, source, labelled_trigger, idle_watches):
    source.triggers[:] = [labelled_trigger]
    controller = EventController(settings=settings, snapshot=snapshot, submitter=submitter)
    yield controller
    await controller.labels.stop()


async def test_label_selectors_are_matched_against_the_watched_kinds(
        watching_controller, labelled_trigger, submitter):
    controller = watching_controller
    await controller.watch_labels([labelled_trigger])
    assert controller.labels.kinds == {'Pod'}

    watch = await controller.labels.ensure_watch('Pod')
    watch.cache.store({'metadata': {'name': 'web-1', 'namespace': 'prod', 'labels': {'app': 'web'}}})
    await controller.watch.process({'type': 'ADDED', 'object': _event()})
    await controller.reconcile('prod/web-1.abc')

    submitter.assert_awaited_once()


async def test_label_selectors_do_not_match_the_unlabelled_objects(
        watching_controller, labelled_trigger, submitter):
    controller = watching_controller
    await controller.watch_labels([labelled_trigger])

    watch = await controller.labels.ensure_watch('Pod')
    watch.cache.store({'metadata': {'name': 'web-1', 'namespace': 'prod', 'labels': {'app': 'db'}}})
    await controller.watch.process({'type': 'ADDED', 'object': _event()})
    await controller.reconcile('prod/web-1.abc')

    assert not submitter.called


async def test_triggers_without_selectors_watch_nothing(watching_controller, event_trigger):
    await watching_controller.watch_labels([event_trigger])
    assert len(watching_controller.labels) == 0


async def test_kinds_of_the_status_watches_are_not_watched_twice(
        settings, snapshot, source, submitter, labelled_trigger, idle_watches):
    source.triggers[:] = [labelled_trigger]
    status_controller = StatusController(settings=settings, snapshot=snapshot, submitter=submitter)
    controller = EventController(settings=settings, snapshot=snapshot, submitter=submitter,
                                 labels_source=status_controller.registry)
    try:
        watch = await status_controller.registry.ensure_watch('Pod')
        await controller.watch_labels([labelled_trigger])
        assert len(controller.labels) == 0

        watch.cache.store({'metadata': {'name': 'web-1', 'namespace': 'prod', 'labels': {'app': 'web'}}})
        await controller.watch.process({'type': 'ADDED', 'object': _event()})
        await controller.reconcile('prod/web-1.abc')
        submitter.assert_awaited_once()
    finally:
        await controller.labels.stop()
        await status_controller.registry.stop()
