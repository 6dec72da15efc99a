"""
The shapes of the objects as they come from (and go to) the Kubernetes API.

Only the fields the controller reads or writes are declared; the objects
carry everything else at runtime, undeclared. "Raw" means JSON-decoded
and otherwise untouched: the events, the watched objects, the jobs.
"""
from collections.abc import Mapping
from typing import Any, Literal, TypedDict, cast

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

# The listed objects are fed to the caches as if they were streamed with no type.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR', 'BOOKMARK']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class OwnerReference(TypedDict, total=False):
    apiVersion: str
    kind: str
    name: str
    uid: str
    controller: bool
    blockOwnerDeletion: bool


class RawMeta(TypedDict, total=False):
    name: str
    generateName: str
    namespace: str
    uid: str
    resourceVersion: str
    creationTimestamp: str
    labels: Labels
    annotations: Annotations
    ownerReferences: list[OwnerReference]


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


class RawError(TypedDict, total=False):
    """ The payload of the ``ERROR`` lines of a watch-stream: a ``Status``. """
    apiVersion: str
    kind: str
    code: int
    status: str
    reason: str
    message: str


class RawInput(TypedDict):
    type: RawInputType
    object: RawBody | RawError


class RawEvent(TypedDict):
    type: RawEventType
    object: RawBody


def build_owner_reference(
        *,
        api_version: str | None,
        kind: str | None,
        name: str | None,
        uid: str | None,
) -> OwnerReference:
    """
    Point to the owner of a child object, e.g. from a submitted job to its trigger.

    The owner controls the child, and the child's deletion blocks the owner's
    foreground deletion: https://kubernetes.io/docs/concepts/architecture/garbage-collection/
    """
    fields = {'apiVersion': api_version, 'kind': kind, 'name': name, 'uid': uid}
    known = {key: val for key, val in fields.items() if val}
    return cast(OwnerReference, {'controller': True, 'blockOwnerDeletion': True, **known})


def make_key(body: RawBody | Mapping[str, Any]) -> str:
    metadata = body.get('metadata', {})
    namespace, name = metadata.get('namespace'), metadata.get('name') or ''
    return f'{namespace}/{name}' if namespace else name


def get_labels(body: RawBody | Mapping[str, Any] | None) -> Labels:
    labels = (body or {}).get('metadata', {}).get('labels')
    return dict(labels or {})
