"""
Matching of the triggers against the observed changes.

The matching is pure: no API calls, no state, no side effects.
Every trigger is matched independently of all other triggers.
The checks go from the cheapest to the most expensive ones.
"""
from collections.abc import Callable, Mapping
from typing import Any

from kubevent._cogs.structs import bodies, selectors, triggers

SelectorEvaluator = Callable[[Mapping[str, Any], bodies.Labels], bool]


def match_pattern(pattern: str | None, value: str | None) -> bool:
    """
    Match a name or a namespace against a pattern.

    An empty pattern matches everything. A pattern with a trailing ``*``
    matches by the prefix before it (all other characters are literal,
    including other asterisks). Any other pattern must be equal to the value.
    """
    if not pattern:
        return True
    value = value or ''
    if pattern.endswith('*'):
        return value.startswith(pattern[:-1])
    return value == pattern


def match_conditions(
        required: tuple[tuple[str, str], ...],
        observed: Mapping[str, str] | None,
) -> bool:
    """
    Check that all the required conditions are observed with the same values.

    The conditions that are observed but not required do not matter.
    No required conditions means no match (such triggers are inert).
    """
    if not required or observed is None:
        return False
    return all(type_ in observed and observed[type_] == value for type_, value in required)


def matches(
        trigger: triggers.TriggerSpec,
        change: triggers.Change,
        *,
        evaluator: SelectorEvaluator = selectors.match_selector,
) -> bool:
    flt = trigger.filter

    if flt.kind != change.kind:
        return False

    if trigger.mode != change.mode:
        return False
    elif trigger.mode == triggers.TriggerMode.EVENT:
        if change.event_type is None or str(change.event_type) not in trigger.event_types:
            return False
    elif not match_conditions(trigger.conditions, change.conditions):
        return False

    if not match_pattern(flt.name_pattern, change.name):
        return False

    if not match_pattern(flt.namespace_pattern, change.namespace):
        return False

    if flt.label_selector and not evaluator(flt.label_selector, change.labels):
        return False

    return True
