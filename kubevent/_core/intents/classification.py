"""
Classification of the core-v1 Events into the lifecycle event types.

The Events carry only a free-text reason (e.g. ``Created``, ``Killing``,
``ScalingReplicaSet``), which is not standardised across the controllers.
We guess the type of a change by the well-known words in that reason.
The vocabularies are checked in the order of priority, so a reason that
contains the words of several vocabularies gets the type of the first one.
"""
from collections.abc import Collection, Sequence

from kubevent._cogs.structs import triggers

VOCABULARIES: Sequence[tuple[triggers.EventType, Collection[str]]] = [
    (triggers.EventType.CREATE, ('Created', 'Scheduled', 'Started')),
    (triggers.EventType.DELETE, ('Deleted', 'Killing')),
    (triggers.EventType.UPDATE, ('Updated', 'Modified')),
]


def classify(
        reason: str | None,
        kind: str | None,
        *,
        fallback_kinds: Collection[str] = ('Pod',),
) -> triggers.EventType | None:
    """
    Guess the event type of a reason, or return ``None`` if it is unrecognised.

    For the fallback kinds, all unrecognised reasons are considered
    as creations (e.g. ``Pulled``, ``BackOff`` for pods).
    """
    for event_type, words in VOCABULARIES:
        if reason and any(word in reason for word in words):
            return event_type
    if kind is not None and kind in fallback_kinds:
        return triggers.EventType.CREATE
    return None
