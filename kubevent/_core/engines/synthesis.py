"""
Rendering the jobs from the matched triggers, and submitting them.

The rendering is pure and deterministic: the same trigger and the same change
always produce the same job body. With the deterministic naming, this makes
the repeated submissions of the same change (e.g. on retries of a work item
after a partial failure) collapse into one job on the server side.

The job template of a trigger is used as is, except for:

* the name, the namespace, the labels, and the owner reference of the job;
* the substitution of the ``$VARIABLES`` in the containers' commands & args;
* the environment variables added to the containers (unless already declared).
"""
import copy
import hashlib
import json
import re
from collections.abc import Mapping, MutableMapping
from typing import Any

from kubevent._cogs.clients import creating, errors
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import bodies, references, triggers

MAX_LABEL_LENGTH = 63
# 63 chars for the names (as labels), minus 10 chars of a digest and 1 char of a dash.
MAX_PREFIX_LENGTH = 52
DIGEST_LENGTH = 10

CONTAINER_KINDS = ('initContainers', 'containers')
SUBSTITUTED_FIELDS = ('command', 'args')
DEFAULT_NAMESPACE = 'default'


def make_prefix(trigger: triggers.TriggerSpec, change: triggers.Change) -> str:
    suffix = str(change.event_type).lower() if change.event_type is not None else 'status'
    return f'{trigger.name}-{change.kind.lower()}-{suffix}'


def make_digest(trigger: triggers.TriggerSpec, change: triggers.Change) -> str:
    """
    A short digest of the change as seen by the trigger: for the job names.

    It includes only what identifies the change (but not the whole objects):
    the trigger, the notification's uid & version, and the matched values.
    """
    payload = json.dumps(dict(
        trigger=[trigger.namespace, trigger.name, trigger.uid],
        source=[change.kind, change.namespace, change.name, change.source_uid, change.source_version],
        event_type=str(change.event_type) if change.event_type is not None else None,
        conditions=get_matched_conditions(trigger, change),
    ), sort_keys=True)
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()[:DIGEST_LENGTH]


def make_name(trigger: triggers.TriggerSpec, change: triggers.Change) -> str:
    prefix = make_prefix(trigger, change)[:MAX_PREFIX_LENGTH].rstrip('-')
    return f'{prefix}-{make_digest(trigger, change)}'


def make_label_value(value: str) -> str:
    """
    Fit a value into a label, which is limited to 63 chars (unlike the names).

    The long values are cut and suffixed with a digest of the full value,
    so that the different long names stay distinguishable in the selectors.
    """
    if len(value) <= MAX_LABEL_LENGTH:
        return value
    digest = hashlib.sha256(value.encode('utf-8')).hexdigest()[:DIGEST_LENGTH]
    return f'{value[:MAX_PREFIX_LENGTH].rstrip("-_.")}-{digest}'


def get_matched_conditions(trigger: triggers.TriggerSpec, change: triggers.Change) -> dict[str, str]:
    observed = change.conditions or {}
    return {type_: observed[type_] for type_, _ in trigger.conditions if type_ in observed}


def get_namespace(trigger: triggers.TriggerSpec, change: triggers.Change) -> str:
    """
    The event-triggered jobs go to the resource's namespace (or the event's one
    for the cluster-scoped resources); the status-triggered jobs go to the trigger's.
    """
    if change.mode == triggers.TriggerMode.EVENT:
        return change.namespace or change.source_namespace or DEFAULT_NAMESPACE
    else:
        return trigger.namespace or DEFAULT_NAMESPACE


def sanitize_label_key(condition_type: str) -> str:
    return condition_type.replace('.', '-').replace(' ', '-')


def sanitize_variable(condition_type: str) -> str:
    return re.sub(r'[^A-Za-z0-9]', '_', condition_type)


def build_variables(trigger: triggers.TriggerSpec, change: triggers.Change) -> dict[str, str]:
    """
    The variables as injected into the environment, in their order.
    The same names with a ``$`` prefix are substituted in the commands.
    """
    variables = {
        'RESOURCE_KIND': change.kind,
        'RESOURCE_NAME': change.name,
        'RESOURCE_NAMESPACE': change.namespace,
    }
    if change.event_type is not None:
        variables['EVENT_TYPE'] = str(change.event_type)
    else:
        variables['TRIGGER_TYPE'] = 'status'
        for type_, value in get_matched_conditions(trigger, change).items():
            variables[f'STATUS_{sanitize_variable(type_)}'] = value
    return variables


def build_labels(
        trigger: triggers.TriggerSpec,
        change: triggers.Change,
        *,
        settings: configuration.OperatorSettings,
) -> dict[str, str]:
    prefix = settings.jobs.label_prefix
    labels = dict(trigger.job_template.get('metadata', {}).get('labels') or {})
    labels[f'{prefix}-trigger'] = make_label_value(trigger.name)
    labels[f'{prefix}-resource-kind'] = make_label_value(change.kind)
    labels[f'{prefix}-resource-name'] = make_label_value(change.name)
    if change.event_type is not None:
        labels[f'{prefix}-event-type'] = str(change.event_type)
    else:
        labels[f'{prefix}-trigger-type'] = 'status'
        for type_, value in get_matched_conditions(trigger, change).items():
            labels[f'condition-{sanitize_label_key(type_)}'] = make_label_value(value)
    return labels


def substitute(text: str, values: Mapping[str, str]) -> str:
    """
    Replace all ``$NAME`` tokens in one pass, never re-substituting the values.

    The longer tokens win over their own prefixes: e.g. ``$RESOURCE_NAMESPACE``
    is not treated as ``$RESOURCE_NAME`` followed by ``SPACE``.
    """
    if not values:
        return text
    tokens = sorted(values, key=len, reverse=True)
    pattern = re.compile('|'.join(re.escape(f'${token}') for token in tokens))
    return pattern.sub(lambda m: values[m.group(0)[1:]], text)


def inject(container: MutableMapping[str, Any], variables: Mapping[str, str]) -> None:
    for field in SUBSTITUTED_FIELDS:
        if isinstance(container.get(field), list):
            container[field] = [
                substitute(item, variables) if isinstance(item, str) else item
                for item in container[field]
            ]

    env = list(container.get('env') or [])
    declared = {item.get('name') for item in env if isinstance(item, Mapping)}
    for name, value in variables.items():
        if name not in declared:
            env.append({'name': name, 'value': value})
    container['env'] = env


def render_job(
        trigger: triggers.TriggerSpec,
        change: triggers.Change,
        *,
        settings: configuration.OperatorSettings,
) -> bodies.RawBody:
    template = trigger.job_template
    namespace = get_namespace(trigger, change)
    annotations = dict(template.get('metadata', {}).get('annotations') or {})

    metadata: dict[str, Any] = {'namespace': namespace}
    if settings.jobs.naming == 'generated':
        metadata['generateName'] = make_prefix(trigger, change) + '-'
    else:
        metadata['name'] = make_name(trigger, change)
    metadata['labels'] = build_labels(trigger, change, settings=settings)
    if annotations:
        metadata['annotations'] = annotations

    # Namespaced owners in other namespaces are treated as absent by the garbage collector.
    if trigger.uid and trigger.namespace == namespace:
        metadata['ownerReferences'] = [bodies.build_owner_reference(
            api_version=trigger.api_version,
            kind=trigger.kind,
            name=trigger.name,
            uid=trigger.uid,
        )]

    spec = copy.deepcopy(dict(template.get('spec') or {}))
    variables = build_variables(trigger, change)
    pod_spec = spec.get('template', {}).get('spec', {})
    for container_kind in CONTAINER_KINDS:
        for container in pod_spec.get(container_kind) or []:
            inject(container, variables)

    return {
        'apiVersion': references.JOBS.api_version,
        'kind': 'Job',
        'metadata': metadata,  # type: ignore[typeddict-item]
        'spec': spec,
    }


async def create_job(
        job: bodies.RawBody,
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> str:
    """
    Submit the job, and return its name as assigned by the server.

    A conflict for the explicitly named job means it was already submitted
    by one of the previous attempts, so this attempt is considered successful.
    """
    metadata = job.get('metadata', {})
    namespace = metadata.get('namespace')
    name = metadata.get('name')
    try:
        created = await creating.create_obj(
            settings=settings,
            resource=references.JOBS,
            body=job,
            logger=logger,
        )
    except errors.APIConflictError:
        if not name:
            raise
        logger.info(f"Job {namespace}/{name} already exists; considering it as submitted.")
        return name
    created_name = created.get('metadata', {}).get('name') or name or ''
    logger.info(f"Job {namespace}/{created_name} is created.")
    return created_name
