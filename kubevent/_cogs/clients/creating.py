from typing import cast

from kubevent._cogs.clients import api
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import bodies, references


async def create_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create a resource in the namespace of its body.

    The body is sent as is and is not modified. The created body
    is returned as reported by the server (e.g. with the generated name).
    """
    namespace = cast(references.Namespace, body.get('metadata', {}).get('namespace'))
    created_body: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=namespace),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return created_body
