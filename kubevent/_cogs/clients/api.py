"""
The HTTP calls to the Kubernetes API, with retries of the transient errors.

Only the calls needed by the controller are here: the listings and the reads
of the objects, the streaming of the watch-requests, the creation of the Jobs,
and the patches of the triggers' statuses.
"""
import asyncio
import collections.abc
import itertools
import json
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

import aiohttp

from kubevent._cogs.clients import auth, errors
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs

RETRYABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


def _backoffs(settings: configuration.OperatorSettings) -> tuple[Iterable[float], int | None]:
    backoffs = settings.networking.error_backoffs
    if not isinstance(backoffs, collections.abc.Iterable):
        backoffs = [backoffs]
    attempts = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    return backoffs, attempts


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server's root, unless absolute.
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        context: auth.APIContext | None = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Send a request and return the successful response unread.

    The network errors and the server-side errors (5xx) are retried after
    the configured backoffs; the client-side errors (4xx) are raised at once.
    """
    if context is None:
        raise RuntimeError("API context is not injected by the decorator.")

    if '://' not in url:
        url = f"{context.server.rstrip('/')}/{url.lstrip('/')}"
    if timeout is None:
        timeout = aiohttp.ClientTimeout(total=settings.networking.request_timeout,
                                        sock_connect=settings.networking.connect_timeout)

    what = f"{method.upper()} {url}"
    backoffs, attempts = _backoffs(settings)
    for attempt, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        label = f"#{attempt}/{attempts}" if attempts is not None else f"#{attempt}"
        if attempt > 1:
            logger.debug(f"Request attempt {label}: {what}")
        try:
            response = await context.session.request(method=method, url=url, json=payload,
                                                      headers=headers, timeout=timeout)
            await errors.check_response(response)
        except RETRYABLE_ERRORS as e:
            if backoff is None:
                logger.error(f"Request attempt {label} failed; escalating: {what} -> {e!r}")
                raise
            logger.error(f"Request attempt {label} failed; will retry: {what} -> {e!r}")
            await asyncio.sleep(backoff)
        else:
            if attempt > 1:
                logger.debug(f"Request attempt {label} succeeded: {what}")
            return response

    raise RuntimeError("The retries are over without a result.")  # unreachable


async def _call_json(method: str, url: str, **kwargs: Any) -> Any:
    response = await request(method, url, **kwargs)
    async with response:
        return await response.json()


async def get(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        headers: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _call_json('get', url, headers=headers, settings=settings, logger=logger)


async def post(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _call_json('post', url, payload=payload, headers=headers,
                            settings=settings, logger=logger)


async def patch(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> Any:
    return await _call_json('patch', url, payload=payload, headers=headers,
                            settings=settings, logger=logger)


async def stream(
        url: str,
        *,
        settings: configuration.OperatorSettings,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    """ Parse the response as JSON-lines, one document per line, as they arrive. """
    response = await request('get', url, timeout=timeout, settings=settings, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Split the response's content into the non-empty lines.

    aiohttp's own line iteration (``async for line in response.content``)
    fails on the lines longer than its buffer's limit (128 KB), while
    the Kubernetes objects with big annotations or the Events with long
    messages can take megabytes. So, the lines are split from the chunks here.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        *lines, tail = (tail + chunk).split(b'\n')
        del chunk
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
