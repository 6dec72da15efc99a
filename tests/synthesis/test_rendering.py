import copy
import dataclasses
import re

import pytest

from kubevent._cogs.structs.triggers import Change, EventType, ResourceFilter, TriggerMode, \
                                            TriggerSpec
from kubevent._core.engines.synthesis import make_label_value, make_name, make_prefix, render_job
from kubevent._core.intents.matching import matches


def _containers(job):
    return job['spec']['template']['spec']['containers']


def _env(container):
    return {item['name']: item.get('value') for item in container.get('env', [])}


def test_created_pod_scenario(settings):
    trigger = TriggerSpec(
        name='on-test-pods',
        namespace='default',
        mode=TriggerMode.EVENT,
        filter=ResourceFilter(kind='Pod', name_pattern='test-*'),
        event_types=frozenset({'CREATE', 'DELETE'}),
        job_template={'spec': {'template': {'spec': {'containers': [
            {'name': 'main', 'image': 'busybox', 'args': ['echo $RESOURCE_NAME']},
        ]}}}},
    )
    change = Change(kind='Pod', name='test-pod', namespace='default', event_type=EventType.CREATE)
    assert matches(trigger, change)

    job = render_job(trigger, change, settings=settings)
    container, = _containers(job)
    assert container['args'] == ['echo test-pod']
    assert _env(container) == {
        'RESOURCE_KIND': 'Pod',
        'RESOURCE_NAME': 'test-pod',
        'RESOURCE_NAMESPACE': 'default',
        'EVENT_TYPE': 'CREATE',
    }


def test_job_basics(settings, event_trigger, event_change):
    job = render_job(event_trigger, event_change, settings=settings)
    assert job['apiVersion'] == 'batch/v1'
    assert job['kind'] == 'Job'
    assert job['metadata']['name'].startswith('on-create-pod-create-')
    assert 'generateName' not in job['metadata']
    assert job['spec']['template']['spec']['restartPolicy'] == 'Never'


def test_event_labels(settings, event_trigger, event_change):
    job = render_job(event_trigger, event_change, settings=settings)
    assert job['metadata']['labels'] == {
        'team': 'platform',
        'kubevent-trigger': 'on-create',
        'kubevent-resource-kind': 'Pod',
        'kubevent-resource-name': 'web-1',
        'kubevent-event-type': 'CREATE',
    }


def test_status_labels_sanitise_condition_types(settings, status_trigger, status_change):
    trigger = dataclasses.replace(status_trigger, conditions=(('cluster.x-k8s.io/Ready now', 'True'),))
    change = dataclasses.replace(status_change, conditions={'cluster.x-k8s.io/Ready now': 'True'})
    job = render_job(trigger, change, settings=settings)
    labels = job['metadata']['labels']
    assert labels['kubevent-trigger-type'] == 'status'
    assert labels['condition-cluster-x-k8s-io/Ready-now'] == 'True'
    assert 'kubevent-event-type' not in labels


def test_status_labels_only_for_matched_conditions(settings, status_trigger, status_change):
    job = render_job(status_trigger, status_change, settings=settings)
    labels = job['metadata']['labels']
    assert labels['condition-Available'] == 'True'
    assert 'condition-Progressing' not in labels


def test_label_prefix_is_configurable(settings, event_trigger, event_change):
    settings.jobs.label_prefix = 'acme'
    job = render_job(event_trigger, event_change, settings=settings)
    assert job['metadata']['labels']['acme-trigger'] == 'on-create'


def test_status_variables(settings, status_trigger, status_change):
    trigger = dataclasses.replace(status_trigger, conditions=(('Available', 'True'), ('x.io/Ok', 'True')),
                                  job_template={'spec': {'template': {'spec': {'containers': [
                                      {'name': 'main', 'args': ['$STATUS_Available', '$STATUS_x_io_Ok']},
                                  ]}}}})
    change = dataclasses.replace(status_change, conditions={'Available': 'True', 'x.io/Ok': 'True'})
    job = render_job(trigger, change, settings=settings)
    container, = _containers(job)
    assert container['args'] == ['True', 'True']
    assert _env(container) == {
        'RESOURCE_KIND': 'Deployment',
        'RESOURCE_NAME': 'api',
        'RESOURCE_NAMESPACE': 'prod',
        'TRIGGER_TYPE': 'status',
        'STATUS_Available': 'True',
        'STATUS_x_io_Ok': 'True',
    }


def test_declared_env_vars_are_not_overwritten(settings, event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, job_template={'spec': {'template': {'spec': {
        'containers': [
            {'name': 'first', 'env': [{'name': 'RESOURCE_KIND', 'value': 'custom'}]},
            {'name': 'second'},
        ],
    }}}})
    job = render_job(trigger, event_change, settings=settings)
    first, second = _containers(job)
    assert first['env'][0] == {'name': 'RESOURCE_KIND', 'value': 'custom'}
    assert [item['name'] for item in first['env']].count('RESOURCE_KIND') == 1
    assert _env(first)['RESOURCE_NAME'] == 'web-1'
    assert _env(second)['RESOURCE_KIND'] == 'Pod'


def test_init_containers_are_processed_too(settings, event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, job_template={'spec': {'template': {'spec': {
        'initContainers': [{'name': 'init', 'command': ['echo', '$RESOURCE_KIND']}],
        'containers': [{'name': 'main'}],
    }}}})
    job = render_job(trigger, event_change, settings=settings)
    init, = job['spec']['template']['spec']['initContainers']
    assert init['command'] == ['echo', 'Pod']
    assert _env(init)['EVENT_TYPE'] == 'CREATE'


def test_template_is_not_modified(settings, event_trigger, event_change):
    original = copy.deepcopy(event_trigger.job_template)
    render_job(event_trigger, event_change, settings=settings)
    assert event_trigger.job_template == original


def test_rendering_is_idempotent(settings, event_trigger, event_change):
    job1 = render_job(event_trigger, event_change, settings=settings)
    job2 = render_job(event_trigger, event_change, settings=settings)
    assert job1 == job2


def test_generated_naming(settings, event_trigger, event_change):
    settings.jobs.naming = 'generated'
    job = render_job(event_trigger, event_change, settings=settings)
    assert job['metadata']['generateName'] == 'on-create-pod-create-'
    assert 'name' not in job['metadata']


def test_names_differ_for_different_notifications(event_trigger, event_change):
    change = dataclasses.replace(event_change, source_version='101')
    assert make_name(event_trigger, event_change) != make_name(event_trigger, change)


def test_names_differ_for_different_triggers(event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, uid='uid-other')
    assert make_name(event_trigger, event_change) != make_name(trigger, event_change)


def test_names_are_truncated_to_label_length(event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, name='x' * 100)
    name = make_name(trigger, event_change)
    prefix, digest = name.rsplit('-', 1)
    assert len(name) <= 63
    assert prefix == 'x' * 52
    assert len(digest) == 10


def test_names_never_have_double_dashes_after_truncation(event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, name='x' * 51)
    name = make_name(trigger, event_change)
    assert '--' not in name
    assert name.startswith('x' * 51 + '-')


def test_prefix_of_status_changes(status_trigger, status_change):
    assert make_prefix(status_trigger, status_change) == 'on-ready-deployment-status'


@pytest.mark.parametrize('resource_namespace, event_namespace, expected', [
    ('prod', 'prod', 'prod'),
    ('', 'default', 'default'),  # cluster-scoped resources, e.g. nodes
    ('', None, 'default'),
])
def test_event_jobs_go_to_the_resource_namespace(settings, event_trigger, event_change,
                                                 resource_namespace, event_namespace, expected):
    change = dataclasses.replace(event_change, namespace=resource_namespace,
                                 source_namespace=event_namespace)
    job = render_job(event_trigger, change, settings=settings)
    assert job['metadata']['namespace'] == expected


def test_status_jobs_go_to_the_trigger_namespace(settings, status_trigger, status_change):
    job = render_job(status_trigger, status_change, settings=settings)
    assert job['metadata']['namespace'] == 'ops'


def test_owner_reference_in_the_same_namespace(settings, status_trigger, status_change):
    job = render_job(status_trigger, status_change, settings=settings)
    assert job['metadata']['ownerReferences'] == [{
        'controller': True,
        'blockOwnerDeletion': True,
        'apiVersion': 'kubevent.dev/v1alpha1',
        'kind': 'EventTriggeredJob',
        'name': 'on-ready',
        'uid': 'uid-trigger',
    }]


def test_no_owner_reference_across_namespaces(settings, event_trigger, event_change):
    job = render_job(event_trigger, event_change, settings=settings)  # default vs. prod
    assert 'ownerReferences' not in job['metadata']


def test_no_owner_reference_for_triggers_without_uids(settings, status_trigger, status_change):
    trigger = dataclasses.replace(status_trigger, uid=None)
    job = render_job(trigger, status_change, settings=settings)
    assert 'ownerReferences' not in job['metadata']


def test_annotations_are_copied(settings, event_trigger, event_change):
    trigger = dataclasses.replace(event_trigger, job_template={
        'metadata': {'annotations': {'note': 'hello'}},
        'spec': {'template': {'spec': {'containers': []}}},
    })
    job = render_job(trigger, event_change, settings=settings)
    assert job['metadata']['annotations'] == {'note': 'hello'}


def test_short_label_values_are_kept():
    assert make_label_value('web-1') == 'web-1'
    assert make_label_value('x' * 63) == 'x' * 63


def test_long_resource_names_fit_into_labels(settings, event_trigger, event_change):
    long_name = 'web-' + 'x' * 100
    change = dataclasses.replace(event_change, name=long_name)
    job = render_job(event_trigger, change, settings=settings)
    value = job['metadata']['labels']['kubevent-resource-name']
    assert len(value) <= 63
    assert value.startswith('web-xxx')
    assert re.fullmatch(r'.*-[0-9a-f]{10}', value)
    assert value != make_label_value(long_name + 'y')
