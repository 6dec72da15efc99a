"""
The list-then-watch streams of the resource kinds.

A stream starts with a full listing of the kind, which is framed by the
:class:`Bookmark` marks, so that the caches can tell when the listing is over
and which objects vanished since the previous one. Then, the changes are
watched since the listing's resource version, and the watch is re-requested
with the latest seen version every time the server closes it.

Once the version is expired ("410 Gone") or the listing fails on the network,
the whole sequence starts over. Only the unexpected errors end the stream.
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from typing import cast

import aiohttp

from kubevent._cogs.clients import api, errors, fetching
from kubevent._cogs.configs import configuration
from kubevent._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_GONE = 410
HTTP_TOO_MANY_REQUESTS = 429
THROTTLING_DELAY = 1  # seconds, unless the server suggests its own delay

NETWORK_ERRORS = (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError)


class WatchingError(Exception):
    """ An error reported by the server inside the watch-stream. """


class Bookmark(enum.Enum):
    """ The marks of the listing's boundaries among the raw events. """
    LISTING = enum.auto()
    LISTED = enum.auto()


def _describe(resource: references.Resource, namespace: references.Namespace) -> str:
    return f'{resource} in {namespace!r}' if namespace is not None else f'{resource} cluster-wide'


async def infinite_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        _iterations: int | None = None,  # for tests only: how many list-then-watch cycles to do.
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    Stream the listings and the changes of a resource kind until cancelled.
    """
    what = _describe(resource, namespace)
    logger.debug(f"Starting the watch-stream for {what}.")
    cycles = 0
    try:
        while _iterations is None or cycles < _iterations:
            cycles += 1
            try:
                async for item in continuous_watch(settings=settings, resource=resource,
                                                   namespace=namespace):
                    yield item
            except errors.APIClientError as e:
                if e.status != HTTP_TOO_MANY_REQUESTS:
                    raise
                delay = (e.details or {}).get('retryAfterSeconds') or THROTTLING_DELAY
                logger.warning(f"The watch-stream for {what} is throttled; "
                               f"retrying in {delay}s: {e}")
                await asyncio.sleep(delay)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {what}.")


async def continuous_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    One list-then-watch cycle: it ends when the listing's version expires.

    The listed objects are sent as the events of type ``None``.
    """
    try:
        objs, version = await fetching.list_objs(
            settings=settings,
            resource=resource,
            namespace=namespace,
            logger=logger,
        )
    except NETWORK_ERRORS as e:
        logger.debug(f"Failed to list {_describe(resource, namespace)}: {e!r}")
        return

    yield Bookmark.LISTING
    for obj in objs:
        yield {'type': None, 'object': obj}
    yield Bookmark.LISTED

    # Every single watch-request is closed by the server sooner or later, even if all is fine.
    while True:
        async for raw_input in watch_objs(settings=settings, resource=resource,
                                          namespace=namespace, since=version):
            event_type = raw_input['type']
            if event_type == 'ERROR':
                status = cast(bodies.RawError, raw_input['object'])
                if status.get('code') == HTTP_GONE:
                    logger.debug(f"The resource version {version!r} is gone; "
                                 f"re-listing {_describe(resource, namespace)}.")
                    return
                raise WatchingError(f"Error in the watch-stream: {status}")

            if event_type not in ('ADDED', 'MODIFIED', 'DELETED'):
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            body = cast(bodies.RawBody, raw_input['object'])
            version = body.get('metadata', {}).get('resourceVersion', version)
            yield cast(bodies.RawEvent, raw_input)


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        since: str | None = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Make a single watch-request and stream what it returns until it is closed.

    The network failures end the stream silently: the caller re-requests it.
    """
    params = {'watch': 'true'}
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    timeout = aiohttp.ClientTimeout(
        total=settings.watching.client_timeout,
        sock_connect=next((value for value in [settings.watching.connect_timeout,
                                               settings.networking.connect_timeout]
                           if value is not None), settings.networking.request_timeout),
    )
    try:
        async for raw_input in api.stream(
            url=resource.get_url(namespace=namespace, params=params),
            timeout=timeout,
            settings=settings,
            logger=logger,
        ):
            yield raw_input
    except NETWORK_ERRORS as e:
        logger.debug(f"The watch-request for {_describe(resource, namespace)} is closed: {e!r}")
