"""
All configuration flags, options, settings to fine-tune the controller.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults). The CLI maps
its options onto these fields; the embedding code can build and pass
its own :class:`OperatorSettings` to :func:`kubevent.operator`.
"""
import dataclasses
from collections.abc import Collection, Iterable
from typing import Literal

NamingStrategy = Literal['deterministic', 'generated']


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for non-watching API requests (list, create, patch).
    """

    connect_timeout: float | None = None
    """
    A timeout for establishing a connection to the API, for all requests.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5, 8, 13, 21)
    """
    Backoff intervals between retries of failed API requests.

    Only the connection errors, timeouts, and HTTP 5xx responses are retried.
    Once the backoffs are exhausted, the last error is escalated to the caller.
    To disable retries, set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """

    sync_timeout: float | None = 5 * 60
    """
    How long to wait at startup until every watch has listed its resources.

    If any of the watches does not sync in time, the controller fails
    to start (there is no partial serving). ``None`` means waiting forever,
    or until the controller is stopped.
    """


@dataclasses.dataclass
class QueueingSettings:
    """
    Settings for the reconciliation queues and their workers.
    """

    workers: int = 2
    """
    How many workers pull the work items from one controller's queue.
    """

    backoff_base: float = 0.005
    """
    The delay before the first retry of a failed work item (in seconds).
    Every next failure of the same item doubles the delay.
    """

    backoff_max: float = 1000
    """
    The maximum delay between the retries of a failed work item (in seconds).
    """

    exit_timeout: float | None = 10.0
    """
    How long the in-flight reconciliations can take on exit before cancelled.
    ``None`` means waiting for them for as long as needed.
    """


@dataclasses.dataclass
class ClassificationSettings:

    fallback_kinds: Collection[str] = ('Pod',)
    """
    Resource kinds, for which the events with unrecognised reasons are
    treated as creations. For all other kinds, such events are dropped.
    """


@dataclasses.dataclass
class TriggersSettings:
    """
    Settings for the trigger resource and for its status reporting.
    """

    group: str = 'kubevent.dev'
    version: str = 'v1alpha1'
    plural: str = 'eventtriggeredjobs'
    kind: str = 'EventTriggeredJob'

    report_status: bool = True
    """
    Whether to patch ``status.jobsCreated`` & ``status.lastTriggeredTime``
    of the triggers after every successfully submitted job.
    Only the triggers loaded from the cluster are reported.
    """


@dataclasses.dataclass
class JobsSettings:

    naming: NamingStrategy = 'deterministic'
    """
    How the submitted jobs are named.

    With ``'deterministic'``, the name is derived from the trigger and
    the change that caused it, so the repeated submissions of the same change
    (e.g. on retries) collapse into one job. With ``'generated'``, the names
    are assigned by the server via ``metadata.generateName``, and every
    submission creates a new job.
    """

    label_prefix: str = 'kubevent'
    """
    The prefix of the labels put on the jobs, e.g. ``kubevent-trigger``.
    """


@dataclasses.dataclass
class OperatorSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    classification: ClassificationSettings = dataclasses.field(default_factory=ClassificationSettings)
    triggers: TriggersSettings = dataclasses.field(default_factory=TriggersSettings)
    jobs: JobsSettings = dataclasses.field(default_factory=JobsSettings)
