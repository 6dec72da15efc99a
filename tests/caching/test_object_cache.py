from kubevent._core.reactor.caching import ObjectCache


def _body(name, namespace='ns'):
    return {'metadata': {'name': name, 'namespace': namespace}}


def test_storing_and_getting():
    cache = ObjectCache()
    key = cache.store(_body('a'))
    assert key == 'ns/a'
    assert 'ns/a' in cache
    assert cache.get('ns/a') == _body('a')
    assert cache.get('ns/b') is None
    assert len(cache) == 1


def test_cluster_scoped_keys():
    cache = ObjectCache()
    assert cache.store(_body('node1', namespace=None)) == 'node1'


def test_storing_replaces():
    cache = ObjectCache()
    cache.store({'metadata': {'name': 'a', 'namespace': 'ns', 'resourceVersion': '1'}})
    cache.store({'metadata': {'name': 'a', 'namespace': 'ns', 'resourceVersion': '2'}})
    assert len(cache) == 1
    assert cache.get('ns/a')['metadata']['resourceVersion'] == '2'


def test_discarding():
    cache = ObjectCache()
    cache.store(_body('a'))
    assert cache.discard(_body('a')) == 'ns/a'
    assert cache.discard(_body('a')) == 'ns/a'  # no errors for the absent ones
    assert len(cache) == 0


def test_pruning():
    cache = ObjectCache()
    cache.store(_body('a'))
    cache.store(_body('b'))
    cache.store(_body('c'))
    gone = cache.prune({'ns/b'})
    assert sorted(body['metadata']['name'] for body in gone) == ['a', 'c']
    assert list(cache) == ['ns/b']
