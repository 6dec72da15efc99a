import dataclasses
import urllib.parse
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, NewType

if TYPE_CHECKING:
    from kubevent._cogs.configs import configuration

# A namespace of a real object, as opposed to a namespace pattern of a trigger.
NamespaceName = NewType('NamespaceName', str)

# `None` means all the namespaces, i.e. the cluster-wide API calls.
Namespace = NamespaceName | None


@dataclasses.dataclass(frozen=True, eq=False, repr=False)
class Resource:
    """
    An API endpoint of a kind: its group, version, and plural name.

    The kind and the scope are informational: two resources are the same
    if their endpoints are the same, regardless of how they were named.
    """

    group: str  # e.g. "apps", "batch", or "" for the core API
    version: str  # e.g. "v1"
    plural: str  # e.g. "deployments", "eventtriggeredjobs"
    kind: str | None = None  # e.g. "Deployment", only for the logs
    namespaced: bool = True  # the guessed kinds are assumed to be namespaced

    def _endpoint(self) -> tuple[str, str, str]:
        return self.group, self.version, self.plural

    def __hash__(self) -> int:
        return hash(self._endpoint())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self._endpoint() == other._endpoint()

    def __repr__(self) -> str:
        return '.'.join(filter(None, [self.plural, self.version, self.group]))

    def __iter__(self) -> Iterator[str]:
        return iter(self._endpoint())

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: Namespace = None,
            name: str | None = None,
            subresource: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build the URL of a list of objects, of one object, or of its subresource.

        Without a namespace, the list is cluster-wide. The cluster-scoped
        resources ignore the namespace. The params go to the query string.
        """
        if subresource is not None and name is None:
            raise ValueError("Subresources can be used only with specific resources by their name.")
        if self.namespaced and namespace is None and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        segments = ['api'] if not self.group else ['apis', self.group]
        segments.append(self.version)
        if self.namespaced and namespace is not None:
            segments.extend(['namespaces', namespace])
        segments.append(self.plural)
        segments.extend(segment for segment in [name, subresource] if segment is not None)

        url = '/' + '/'.join(segments)
        if params:
            url += '?' + urllib.parse.urlencode(params)
        return url if server is None else server.rstrip('/') + url


EVENTS = Resource('', 'v1', 'events', kind='Event')
JOBS = Resource('batch', 'v1', 'jobs', kind='Job')

# The kinds, for which the API group & version cannot be guessed from the name.
KNOWN_KINDS: Mapping[str, Resource] = {
    'Pod': Resource('', 'v1', 'pods', kind='Pod'),
    'Deployment': Resource('apps', 'v1', 'deployments', kind='Deployment'),
    'StatefulSet': Resource('apps', 'v1', 'statefulsets', kind='StatefulSet'),
    'DaemonSet': Resource('apps', 'v1', 'daemonsets', kind='DaemonSet'),
    'Job': JOBS,
    'CronJob': Resource('batch', 'v1', 'cronjobs', kind='CronJob'),
}


def pluralize(kind: str) -> str:
    """
    Guess the plural name of a kind: ``Service`` -> ``services``, etc.

    This is a heuristic for the core v1 kinds, not a linguistic rule:
    ``Policy`` -> ``policies``, ``Endpoints`` -> ``endpoints`` (unchanged).
    """
    plural = kind.lower()
    if plural.endswith('y'):
        return plural[:-1] + 'ies'
    elif plural.endswith('s'):
        return plural
    else:
        return plural + 's'


def resource_for_kind(kind: str) -> Resource:
    """
    Map a kind to its API endpoint: either a well-known one, or a core v1 guess.
    """
    try:
        return KNOWN_KINDS[kind]
    except KeyError:
        return Resource('', 'v1', pluralize(kind), kind=kind)


def triggers_resource(settings: "configuration.OperatorSettings") -> Resource:
    return Resource(
        group=settings.triggers.group,
        version=settings.triggers.version,
        plural=settings.triggers.plural,
        kind=settings.triggers.kind,
    )
