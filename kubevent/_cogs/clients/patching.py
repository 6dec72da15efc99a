from collections.abc import Mapping
from typing import Any

from kubevent._cogs.clients import api, errors
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import bodies, references


async def patch_status(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        status: Mapping[str, Any],
        logger: typedefs.Logger,
) -> bodies.RawBody | None:
    """
    Merge-patch the status subresource of a resource.

    Returns ``None`` if the underlying object is absent, as detected by trying
    to patch it and failing with HTTP 404. This can happen if the object was
    deleted after it was loaded, so that we were unaware of it until the last moment.
    """
    try:
        patched_body: bodies.RawBody = await api.patch(
            url=resource.get_url(namespace=namespace, name=name, subresource='status'),
            headers={'Content-Type': 'application/merge-patch+json'},
            payload={'status': dict(status)},
            settings=settings,
            logger=logger,
        )
        return patched_body
    except errors.APINotFoundError:
        return None
