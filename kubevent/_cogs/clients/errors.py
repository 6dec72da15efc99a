"""
The errors of the Kubernetes API, as the controller sees them.

Every failed response (HTTP 4xx/5xx) becomes an :class:`APIError` or one of its
subclasses, with the original ``aiohttp`` error chained as its cause.
The statuses the controller reacts to have their own classes: e.g. a conflict
on the job creation means that the job exists already, and a gone watch-stream
means that the objects must be listed again.

The network and TLS errors are not wrapped: they are not about the API,
and are retried or escalated as they are.
"""
import json
from collections.abc import Collection, Mapping
from typing import Literal, TypedDict

import aiohttp


class RawStatusDetails(TypedDict, total=False):
    name: str
    kind: str
    retryAfterSeconds: int
    causes: Collection[Mapping[str, str]]


# https://kubernetes.io/docs/reference/kubernetes-api/common-definitions/status/
class RawStatus(TypedDict, total=False):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):
    """
    A failed API call. The ``Status`` payload, if the server has sent it, is
    available as the error's fields; other payloads are never exposed.
    """

    def __init__(self, payload: RawStatus | None, *, status: int) -> None:
        self.status = status
        self.payload: RawStatus = payload or {}
        super().__init__(self.payload.get('message'), payload)

    @property
    def code(self) -> int | None:
        return self.payload.get('code')

    @property
    def message(self) -> str | None:
        return self.payload.get('message')

    @property
    def details(self) -> RawStatusDetails | None:
        return self.payload.get('details')


class APIClientError(APIError):
    pass


class APIServerError(APIError):
    pass


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass


class APIConflictError(APIClientError):
    pass


class APIGoneError(APIClientError):
    pass


_ERROR_CLASSES: Mapping[int, type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
    410: APIGoneError,
}


def _classify(status: int) -> type[APIError]:
    default = APIServerError if status >= 500 else APIClientError
    return _ERROR_CLASSES.get(status, default)


async def _read_status(response: aiohttp.ClientResponse) -> RawStatus | None:
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        return None
    # Anything but a Status can carry the objects' data, which must not leak into the logs.
    if isinstance(payload, Mapping) and payload.get('kind') == 'Status':
        return payload  # type: ignore[return-value]
    return None


async def check_response(response: aiohttp.ClientResponse) -> None:
    """ Raise the matching :class:`APIError` if the response is not successful. """
    if response.status < 400:
        return

    # The body is unreadable once raise_for_status() has released the response.
    payload = await _read_status(response)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise _classify(response.status)(payload, status=response.status) from e
