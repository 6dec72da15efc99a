"""
Triggers and changes: what is watched for, and what is observed.

A trigger is parsed from an ``EventTriggeredJob`` object (or a YAML document
of the same layout) once, and is then immutable. It has exactly one
activation mode: either by the lifecycle events of the resources
(``spec.eventSelector``), or by their status conditions (``spec.statusSelector``).

A change is what the controllers build from the observed cluster state
for every work item, to be matched against all the triggers.
"""
import dataclasses
import enum
from collections.abc import Collection, Mapping
from typing import Any

from kubevent._cogs.structs import bodies, selectors


class InvalidTriggerError(Exception):
    """ Raised when a trigger object cannot be interpreted. """


class TriggerMode(str, enum.Enum):
    EVENT = 'event'
    STATUS = 'status'

    def __str__(self) -> str:
        return str(self.value)


class EventType(str, enum.Enum):
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'

    def __str__(self) -> str:
        return str(self.value)


@dataclasses.dataclass(frozen=True)
class ResourceFilter:
    kind: str
    name_pattern: str = ''
    namespace_pattern: str = ''
    label_selector: Mapping[str, Any] | None = None


@dataclasses.dataclass(frozen=True)
class TriggerSpec:
    name: str
    namespace: str | None
    mode: TriggerMode
    filter: ResourceFilter
    job_template: Mapping[str, Any]
    event_types: frozenset[str] = frozenset()
    conditions: tuple[tuple[str, str], ...] = ()
    uid: str | None = None
    api_version: str | None = None
    kind: str | None = None
    jobs_created: int = 0  # as last reported in the object's status

    @property
    def id(self) -> str:
        return f'{self.namespace}/{self.name}' if self.namespace else self.name


@dataclasses.dataclass(frozen=True)
class Change:
    """
    An observed change of a resource, as matched against the triggers.

    In the event mode, the change is built from a core-v1 Event object
    about the involved resource; in the status mode, from the resource itself.
    The source's uid & version identify the notification that caused it,
    and are only used for naming the jobs.
    """
    kind: str
    name: str
    namespace: str
    labels: bodies.Labels = dataclasses.field(default_factory=dict)
    event_type: EventType | None = None
    conditions: Mapping[str, str] | None = None
    source_uid: str | None = None
    source_version: str | None = None
    source_namespace: str | None = None  # of the Event object, in the event mode

    @property
    def mode(self) -> TriggerMode:
        return TriggerMode.EVENT if self.event_type is not None else TriggerMode.STATUS


def extract_conditions(body: bodies.RawBody | Mapping[str, Any]) -> dict[str, str]:
    """
    Get the conditions of an object as ``{type: status}``.

    The entries without a type or a status are ignored. The statuses
    are usually strings ("True", "False", "Unknown"), but are stringified
    for the objects that put booleans there.
    """
    conditions: dict[str, str] = {}
    raw_conditions = (body.get('status') or {}).get('conditions') or []
    if not isinstance(raw_conditions, Collection):
        return conditions
    for condition in raw_conditions:
        if not isinstance(condition, Mapping):
            continue
        type_ = condition.get('type')
        status = condition.get('status')
        if type_ and status is not None and status != '':
            conditions[str(type_)] = _stringify(status)
    return conditions


def parse_trigger(body: bodies.RawBody | Mapping[str, Any]) -> TriggerSpec:
    """
    Parse a trigger object, or fail with :class:`InvalidTriggerError`.
    """
    metadata = body.get('metadata') or {}
    spec = body.get('spec') or {}
    if not isinstance(metadata, Mapping) or not isinstance(spec, Mapping):
        raise InvalidTriggerError("The trigger has a metadata or spec which is not a mapping.")
    name = metadata.get('name')
    if not name or not isinstance(name, str):
        raise InvalidTriggerError("The trigger has no name.")

    event_selector = spec.get('eventSelector')
    status_selector = spec.get('statusSelector')
    if event_selector is not None and status_selector is not None:
        raise InvalidTriggerError(f"Trigger {name!r} has both eventSelector and statusSelector.")
    elif event_selector is None and status_selector is None:
        raise InvalidTriggerError(f"Trigger {name!r} has neither eventSelector nor statusSelector.")

    job_template = spec.get('jobTemplate')
    if not isinstance(job_template, Mapping):
        raise InvalidTriggerError(f"Trigger {name!r} has no jobTemplate or it is not a mapping.")
    if not isinstance(job_template.get('spec'), Mapping):
        raise InvalidTriggerError(f"Trigger {name!r} has no jobTemplate.spec or it is not a mapping.")

    selector = event_selector if event_selector is not None else status_selector
    mode = TriggerMode.EVENT if event_selector is not None else TriggerMode.STATUS
    if not isinstance(selector, Mapping):
        raise InvalidTriggerError(f"Trigger {name!r} has a {mode} selector which is not a mapping.")

    return TriggerSpec(
        name=name,
        namespace=metadata.get('namespace') or None,
        uid=metadata.get('uid') or None,
        api_version=body.get('apiVersion'),
        kind=body.get('kind'),
        mode=mode,
        filter=_parse_filter(name, selector),
        event_types=_parse_event_types(name, selector) if mode == TriggerMode.EVENT else frozenset(),
        conditions=_parse_conditions(name, selector) if mode == TriggerMode.STATUS else (),
        job_template=job_template,
        jobs_created=_parse_jobs_created(name, body.get('status') or {}),
    )


def _parse_filter(name: str, selector: Mapping[str, Any]) -> ResourceFilter:
    kind = selector.get('resourceKind')
    if not kind or not isinstance(kind, str):
        raise InvalidTriggerError(f"Trigger {name!r} has no resourceKind.")

    label_selector = selector.get('labelSelector')
    if label_selector is not None:
        if not isinstance(label_selector, Mapping):
            raise InvalidTriggerError(f"Trigger {name!r} has a labelSelector which is not a mapping.")
        try:
            selectors.validate_selector(label_selector)
        except ValueError as e:
            raise InvalidTriggerError(f"Trigger {name!r} has an invalid labelSelector: {e}") from e
        label_selector = selectors.normalize_selector(label_selector)

    name_pattern = selector.get('namePattern') or ''
    namespace_pattern = selector.get('namespacePattern') or ''
    if not isinstance(name_pattern, str):
        raise InvalidTriggerError(f"Trigger {name!r} has a namePattern which is not a string.")
    if not isinstance(namespace_pattern, str):
        raise InvalidTriggerError(f"Trigger {name!r} has a namespacePattern which is not a string.")

    return ResourceFilter(
        kind=kind,
        name_pattern=name_pattern,
        namespace_pattern=namespace_pattern,
        label_selector=label_selector or None,
    )


def _parse_event_types(name: str, selector: Mapping[str, Any]) -> frozenset[str]:
    raw_types = selector.get('eventTypes') or []
    if isinstance(raw_types, str) or not isinstance(raw_types, Collection):
        raise InvalidTriggerError(f"Trigger {name!r} has eventTypes which is not a list.")
    known = {str(event_type) for event_type in EventType}
    unknown = [event_type for event_type in raw_types
               if not isinstance(event_type, str) or event_type not in known]
    if unknown:
        raise InvalidTriggerError(f"Trigger {name!r} has unknown eventTypes: {unknown!r}.")
    return frozenset(raw_types)


def _parse_conditions(name: str, selector: Mapping[str, Any]) -> tuple[tuple[str, str], ...]:
    raw_conditions = selector.get('conditions') or []
    if isinstance(raw_conditions, str) or not isinstance(raw_conditions, Collection):
        raise InvalidTriggerError(f"Trigger {name!r} has conditions which is not a list.")

    conditions: dict[str, str] = {}
    for condition in raw_conditions:
        if not isinstance(condition, Mapping):
            raise InvalidTriggerError(f"Trigger {name!r} has a malformed condition: {condition!r}.")
        type_ = condition.get('type')
        status = condition.get('status')
        operator = condition.get('operator') or 'Equal'
        if not type_ or status is None:
            raise InvalidTriggerError(f"Trigger {name!r} has a malformed condition: {condition!r}.")
        if operator != 'Equal':
            raise InvalidTriggerError(f"Trigger {name!r} has an unsupported operator: {operator!r}.")
        conditions[str(type_)] = _stringify(status)
    return tuple(conditions.items())


def _parse_jobs_created(name: str, status: Any) -> int:
    raw_count = (status.get('jobsCreated') if isinstance(status, Mapping) else None) or 0
    if isinstance(raw_count, bool) or not isinstance(raw_count, int) or raw_count < 0:
        raise InvalidTriggerError(f"Trigger {name!r} has a malformed status.jobsCreated: {raw_count!r}.")
    return raw_count


def _stringify(value: Any) -> str:
    # YAML turns the unquoted True/False into booleans, while the API has them as strings.
    if isinstance(value, bool):
        return 'True' if value else 'False'
    return str(value)
