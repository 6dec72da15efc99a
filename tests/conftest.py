import io
import json
import logging
import re
import sys
from unittest.mock import AsyncMock, MagicMock

import aiohttp.web
import pytest
from aresponses import ResponsesMockServer

from kubevent._cogs.clients import auth
from kubevent._cogs.configs.configuration import OperatorSettings
from kubevent._cogs.structs.credentials import ConnectionInfo
from kubevent._cogs.structs.triggers import Change, EventType, ResourceFilter, \
                                            TriggerMode, TriggerSpec
from kubevent._core.actions.loggers import ObjectPrefixingTextFormatter, configure


@pytest.fixture()
def settings():
    settings = OperatorSettings()
    settings.networking.error_backoffs = []  # no retries unless explicitly tested
    settings.watching.reconnect_backoff = 0
    return settings


@pytest.fixture()
def logger():
    return logging.getLogger('kubevent.tests')


#
# Mocks for the Kubernetes API. Reasons:
# 1. We do not test aiohttp, we test the layers on top of it,
#    so everything low-level is faked on the server side by `aresponses`.
# 2. No external calls must be made under any circumstances.
#    The unit-tests must be fully isolated from the environment.
#


@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def aresponses():
    """
    The fake API server: all hostnames are resolved to it while the test runs.

    Note: `aresponses` excludes a response once it is matched (unless repeated).
    So, the responses are matched in the order they were added.
    """
    async with ResponsesMockServer() as server:
        yield server


@pytest.fixture()
async def api_context(hostname):
    context = auth.APIContext(ConnectionInfo(server=f'https://{hostname}'))
    try:
        yield context
    finally:
        await context.close()


@pytest.fixture()
def kube_api(api_context, aresponses):
    """
    The fake API with the context set as if we run inside the controller.

    The context variable is set in a sync fixture, so that the tests' tasks
    inherit it from the main context.
    """
    token = auth.context_var.set(api_context)
    try:
        yield aresponses
    finally:
        auth.context_var.reset(token)


@pytest.fixture()
def resp_mocker(kube_api):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The value of the fixture is a function, which returns a coroutine mock.
    That coroutine mock should be passed to `aresponses.add` as a response
    callback function. When called, it calls the mock defined by the function's
    arguments (specifically, return_value or side_effect).

    The difference from passing the responses directly to `aresponses.add`
    is that it is possible to assert on whether the response was handled
    by that callback at all (i.e. HTTP URL & method matched), and on what
    was sent in the requests.

    Sample usage::

        def test_me(resp_mocker, kube_api, hostname):
            callback = resp_mocker(return_value=aiohttp.web.json_response({'a': 'b'}))
            kube_api.add(hostname, '/path/', 'get', callback)
            do_something()
            assert callback.call_count == 1
            assert callback.call_args[0][0]['data'] == {...}
    """
    def resp_maker(*args, **kwargs):
        actual_response = MagicMock(*args, **kwargs)

        async def resp_mock_effect(request):

            # The request's content can be read inside of the handler only. We preserve
            # the data in the request itself, so that they could be asserted later.
            text = await request.text()
            try:
                request['data'] = json.loads(text) if text else None
            except json.JSONDecodeError:
                request['data'] = text

            # Get a response/error as it was intended (via return_value/side_effect).
            return actual_response()

        # `aresponses` stores a copy of the response for every repeat of a route;
        # the copy must be the same mock, so that all calls are counted on it.
        return _SharedAsyncMock(side_effect=resp_mock_effect)
    return resp_maker


class _SharedAsyncMock(AsyncMock):
    """ A callback mock that stays the same object when `aresponses` copies it. """
    def __copy__(self):
        return self


@pytest.fixture()
def jsonlines():
    """ A factory of the pre-rendered watch-streams (for simplicity, no actual streaming). """
    def render(events):
        return aiohttp.web.Response(text=''.join(json.dumps(event) + '\n' for event in events))
    return render


#
# Triggers & changes for the matching & rendering tests.
#

JOB_TEMPLATE = {
    'metadata': {'labels': {'team': 'platform'}},
    'spec': {
        'template': {
            'spec': {
                'restartPolicy': 'Never',
                'containers': [{
                    'name': 'main',
                    'image': 'busybox',
                    'command': ['echo'],
                    'args': ['$RESOURCE_KIND', '$RESOURCE_NAMESPACE/$RESOURCE_NAME'],
                }],
            },
        },
    },
}


@pytest.fixture()
def event_trigger():
    return TriggerSpec(
        name='on-create',
        namespace='default',
        uid='uid-trigger',
        api_version='kubevent.dev/v1alpha1',
        kind='EventTriggeredJob',
        mode=TriggerMode.EVENT,
        filter=ResourceFilter(kind='Pod'),
        event_types=frozenset({'CREATE'}),
        job_template=JOB_TEMPLATE,
    )


@pytest.fixture()
def status_trigger():
    return TriggerSpec(
        name='on-ready',
        namespace='ops',
        uid='uid-trigger',
        api_version='kubevent.dev/v1alpha1',
        kind='EventTriggeredJob',
        mode=TriggerMode.STATUS,
        filter=ResourceFilter(kind='Deployment'),
        conditions=(('Available', 'True'),),
        job_template=JOB_TEMPLATE,
    )


@pytest.fixture()
def event_change():
    return Change(
        kind='Pod',
        name='web-1',
        namespace='prod',
        labels={'app': 'web'},
        event_type=EventType.CREATE,
        source_uid='uid-event',
        source_version='100',
        source_namespace='prod',
    )


@pytest.fixture()
def status_change():
    return Change(
        kind='Deployment',
        name='api',
        namespace='prod',
        labels={'app': 'api'},
        conditions={'Available': 'True', 'Progressing': 'True'},
        source_uid='uid-deployment',
        source_version='200',
    )


#
# Helpers for the logging checks.
#


@pytest.fixture()
def logstream(caplog):
    """ Prefixing is done at the final output. We have to intercept it. """

    logger = logging.getLogger()
    handlers = list(logger.handlers)

    # Setup all log levels of sub-libraries. A side-effect: the handlers are also added.
    configure(verbose=True)

    # Remove any stream handlers added in the step above. But keep the caplog's handlers.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stderr:
            logger.removeHandler(handler)

    # Inject our stream-intercepting handler.
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    formatter = ObjectPrefixingTextFormatter('prefix %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    try:
        with caplog.at_level(logging.DEBUG):
            yield stream
    finally:
        logger.removeHandler(handler)
        logger.handlers[:] = handlers  # undo `configure()`


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    def assert_logs_fn(patterns, prohibited=(), strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn

