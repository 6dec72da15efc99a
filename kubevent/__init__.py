"""
The main Kubevent module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kubevent._cogs.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APIGoneError,
)
from kubevent._cogs.clients.watching import (
    WatchingError,
)
from kubevent._cogs.configs.configuration import (
    OperatorSettings,
)
from kubevent._cogs.helpers.piggybacking import (
    login,
)
from kubevent._cogs.helpers.typedefs import (
    Logger,
)
from kubevent._cogs.helpers.versions import (
    version as __version__,
)
from kubevent._cogs.structs.bodies import (
    RawEventType,
    RawEvent,
    RawBody,
    Labels,
    Annotations,
    OwnerReference,
    build_owner_reference,
)
from kubevent._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kubevent._cogs.structs.references import (
    Resource,
)
from kubevent._cogs.structs.selectors import (
    LabelSelector,
    match_selector,
)
from kubevent._cogs.structs.triggers import (
    InvalidTriggerError,
    TriggerMode,
    EventType,
    ResourceFilter,
    TriggerSpec,
    Change,
    parse_trigger,
)
from kubevent._core.actions.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from kubevent._core.engines.loading import (
    TriggerLoadError,
    TriggerSource,
    ApiTriggerSource,
    FileTriggerSource,
    TriggerSnapshot,
)
from kubevent._core.engines.reporting import (
    StatusReporter,
)
from kubevent._core.engines.synthesis import (
    render_job,
    create_job,
)
from kubevent._core.intents.classification import (
    classify,
)
from kubevent._core.intents.matching import (
    match_pattern,
    matches,
)
from kubevent._core.reactor.controllers import (
    ReconciliationError,
    EventController,
    StatusController,
)
from kubevent._core.reactor.queueing import (
    WorkQueue,
)
from kubevent._core.reactor.registry import (
    WatchSyncError,
    WatchRegistry,
)
from kubevent._core.reactor.running import (
    spawn_tasks,
    run_tasks,
    operator,
    run,
)
from kubevent._core.reactor.tracking import (
    StatusTracker,
)

__all__ = [
    'run', 'operator', 'spawn_tasks', 'run_tasks',
    'configure', 'LogFormat', 'ObjectLogger', 'Logger',
    'OperatorSettings',
    'login', 'LoginError', 'ConnectionInfo',
    'APIError', 'APIClientError', 'APIServerError',
    'APIUnauthorizedError', 'APIForbiddenError', 'APINotFoundError',
    'APIConflictError', 'APIGoneError',
    'WatchingError', 'WatchSyncError', 'ReconciliationError',
    'RawEventType', 'RawEvent', 'RawBody', 'Labels', 'Annotations',
    'OwnerReference', 'build_owner_reference',
    'Resource',
    'LabelSelector', 'match_selector',
    'InvalidTriggerError', 'TriggerMode', 'EventType',
    'ResourceFilter', 'TriggerSpec', 'Change', 'parse_trigger',
    'TriggerLoadError', 'TriggerSource', 'ApiTriggerSource', 'FileTriggerSource', 'TriggerSnapshot',
    'StatusReporter',
    'render_job', 'create_job',
    'classify', 'match_pattern', 'matches',
    'EventController', 'StatusController',
    'WorkQueue', 'WatchRegistry', 'StatusTracker',
]
