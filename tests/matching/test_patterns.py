import pytest

from kubevent._core.intents.matching import match_conditions, match_pattern


@pytest.mark.parametrize('value', ['', 'anything', None])
def test_empty_pattern_matches_everything(value):
    assert match_pattern('', value)
    assert match_pattern(None, value)


@pytest.mark.parametrize('pattern, value, expected', [
    ('web-*', 'web-1', True),
    ('web-*', 'web-', True),
    ('web-*', 'web', False),
    ('web-*', 'api-1', False),
    ('*', 'anything', True),
    ('*', '', True),
    ('a*b*', 'a*b-1', True),  # only the last star is a wildcard
    ('a*b*', 'axb-1', False),
])
def test_prefix_patterns(pattern, value, expected):
    assert match_pattern(pattern, value) == expected


@pytest.mark.parametrize('pattern, value, expected', [
    ('web', 'web', True),
    ('web', 'web-1', False),
    ('*web', 'xweb', False),  # leading stars are literal
    ('*web', '*web', True),
    ('prod', '', False),
    ('prod', None, False),
])
def test_exact_patterns(pattern, value, expected):
    assert match_pattern(pattern, value) == expected


def test_conditions_must_all_match():
    required = (('Ready', 'True'), ('Available', 'True'))
    assert match_conditions(required, {'Ready': 'True', 'Available': 'True'})
    assert match_conditions(required, {'Ready': 'True', 'Available': 'True', 'Extra': 'False'})
    assert not match_conditions(required, {'Ready': 'True', 'Available': 'False'})
    assert not match_conditions(required, {'Ready': 'True'})


def test_no_required_conditions_never_match():
    assert not match_conditions((), {'Ready': 'True'})
    assert not match_conditions((), {})


def test_no_observed_conditions_never_match():
    assert not match_conditions((('Ready', 'True'),), None)
    assert not match_conditions((('Ready', 'True'),), {})
