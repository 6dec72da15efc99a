from collections.abc import Collection

from kubevent._cogs.clients import api
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import bodies, references


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        logger: typedefs.Logger,
) -> tuple[Collection[bodies.RawBody], str | None]:
    """
    List the objects of a kind (cluster-wide by default) and the list's version.

    The listed items come without their ``kind`` & ``apiVersion``, so they
    are taken from the list itself (``PodList`` -> ``Pod``), same as streamed.
    """
    url = resource.get_url(namespace=namespace)
    listing = await api.get(url, settings=settings, logger=logger)

    list_kind: str | None = listing.get('kind')
    item_kind = list_kind.removesuffix('List') if list_kind else None
    api_version: str | None = listing.get('apiVersion')

    items: list[bodies.RawBody] = []
    for item in listing.get('items') or []:
        if item_kind is not None:
            item.setdefault('kind', item_kind)
        if api_version is not None:
            item.setdefault('apiVersion', api_version)
        items.append(item)
    return items, listing.get('metadata', {}).get('resourceVersion')
