"""
Label selectors, as used in Kubernetes.

See https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#resources-that-support-set-based-requirements

Both parts of a selector are combined: all ``matchLabels`` must be present
with the same values, and all ``matchExpressions`` must hold. An empty
selector (or an absent one) matches everything, as it does in the cluster.
"""
from collections.abc import Collection, Mapping
from typing import Any, Literal, TypedDict

from kubevent._cogs.structs import bodies

Operator = Literal['In', 'NotIn', 'Exists', 'DoesNotExist']
OPERATORS: Collection[str] = ('In', 'NotIn', 'Exists', 'DoesNotExist')


class MatchExpression(TypedDict, total=False):
    key: str
    operator: Operator
    values: Collection[str] | None


class LabelSelector(TypedDict, total=False):
    matchLabels: Mapping[str, str]
    matchExpressions: Collection[MatchExpression]


def validate_selector(selector: Mapping[str, Any]) -> None:
    """
    Raise ``ValueError`` if the selector cannot be evaluated.

    The checks are the same as in the cluster: the set-based operators
    need some values, the existence operators need none.
    """
    match_labels = selector.get('matchLabels') or {}
    if not isinstance(match_labels, Mapping):
        raise ValueError(f"matchLabels must be a mapping, got {match_labels!r}.")
    for expr in selector.get('matchExpressions') or []:
        if not isinstance(expr, Mapping) or not expr.get('key'):
            raise ValueError(f"A match expression must have a key: {expr!r}.")
        operator = expr.get('operator')
        values = expr.get('values') or []
        if isinstance(values, (str, Mapping)) or not isinstance(values, Collection):
            raise ValueError(f"The values must be a list: {expr!r}.")
        elif operator not in OPERATORS:
            raise ValueError(f"Unsupported operator {operator!r} in {expr!r}.")
        elif operator in ('In', 'NotIn') and not values:
            raise ValueError(f"Operator {operator!r} requires non-empty values: {expr!r}.")
        elif operator in ('Exists', 'DoesNotExist') and values:
            raise ValueError(f"Operator {operator!r} accepts no values: {expr!r}.")


def normalize_selector(selector: Mapping[str, Any]) -> LabelSelector:
    """
    Turn the values into strings, as the labels are always strings.

    The YAML documents have the unquoted values as booleans or numbers
    (e.g. ``enabled: true``), which would never equal the labels otherwise.
    """
    normalized: LabelSelector = {}
    if selector.get('matchLabels'):
        normalized['matchLabels'] = {
            str(key): _stringify(value) for key, value in selector['matchLabels'].items()
        }
    if selector.get('matchExpressions'):
        normalized['matchExpressions'] = [
            MatchExpression(
                key=str(expr['key']),
                operator=expr['operator'],
                values=[_stringify(value) for value in expr.get('values') or []],
            )
            for expr in selector['matchExpressions']
        ]
    return normalized


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def match_selector(selector: LabelSelector | Mapping[str, Any] | None, labels: bodies.Labels) -> bool:
    if not selector:
        return True

    for key, value in (selector.get('matchLabels') or {}).items():
        if key not in labels or labels[key] != value:
            return False

    for expr in selector.get('matchExpressions') or []:
        if not match_expression(expr, labels):
            return False

    return True


def match_expression(expr: MatchExpression | Mapping[str, Any], labels: bodies.Labels) -> bool:
    key = expr['key']
    operator = expr.get('operator')
    values = expr.get('values') or []
    match operator:
        case 'In':
            return key in labels and labels[key] in values
        case 'NotIn':
            return key not in labels or labels[key] not in values
        case 'Exists':
            return key in labels
        case 'DoesNotExist':
            return key not in labels
        case _:
            raise ValueError(f"Unsupported operator {operator!r} in {expr!r}.")
