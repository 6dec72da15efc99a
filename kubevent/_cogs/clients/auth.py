"""
The authenticated HTTP session of the controller.

The session is made once at startup from the :class:`ConnectionInfo`
and is stored in a context variable, so that all the tasks of the controller
share it without passing it around. There is no re-authentication:
the expired credentials end up as HTTP 401 errors like any other API errors.
"""
import base64
import contextlib
import functools
import ssl
import tempfile
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, TypeVar, cast

import aiohttp

from kubevent._cogs.helpers import versions
from kubevent._cogs.structs import credentials

context_var: ContextVar["APIContext"] = ContextVar('context_var')

_F = TypeVar('_F', bound=Callable[..., Any])


def authenticated(fn: _F) -> _F:
    """ Inject the controller's API context unless the caller gives its own. """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if kwargs.get('context') is None:
            try:
                kwargs['context'] = context_var.get()
            except LookupError:
                raise RuntimeError("API context is not set; use it within the operator.")
        return await fn(*args, **kwargs)

    return cast(_F, wrapper)


class APIContext:
    """ The server's URL and the session with the credentials for it. """

    def __init__(self, info: credentials.ConnectionInfo) -> None:
        super().__init__()
        self.server = info.server
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=make_ssl_context(info)),
            headers={
                'User-Agent': f'kubevent/{versions.version or "unknown"}',
                **make_auth_headers(info),
            },
            auth=aiohttp.BasicAuth(info.username, info.password)
                 if info.username and info.password else None,
        )

    async def close(self) -> None:
        await self.session.close()


def make_auth_headers(info: credentials.ConnectionInfo) -> dict[str, str]:
    if info.scheme or info.token:
        value = ' '.join(filter(None, [info.scheme or 'Bearer', info.token]))
        return {'Authorization': value}
    return {}


def make_ssl_context(info: credentials.ConnectionInfo) -> ssl.SSLContext:
    """
    Verify the server by the given CA, and present the client certificate if any.

    The certificates given as data (e.g. embedded into a kubeconfig) are
    loadable only from files, so they are put into the temporary files,
    which live only while they are loaded.
    """
    context = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cafile=info.ca_path,
        cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
    )
    with contextlib.ExitStack() as stack:
        cert_path = _as_file(stack, info.certificate_path, info.certificate_data)
        pkey_path = _as_file(stack, info.private_key_path, info.private_key_data)
        if cert_path and pkey_path:
            context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)

    if info.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _as_file(stack: contextlib.ExitStack, path: str | None, data: bytes | None) -> str | None:
    # No temporary files unless needed: the filesystem can be read-only.
    if path or not data:
        return path
    file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
    file.write(decode_to_pem(data).encode('ascii'))
    return file.name


def decode_to_pem(data: str | bytes) -> str:
    """ Accept both the PEM texts and the base64-encoded ones. """
    text = data.decode('ascii') if isinstance(data, bytes) else data
    if text.startswith('-----BEGIN '):
        return text
    return base64.b64decode(text).decode('ascii')
