"""
Reporting the submitted jobs in the triggers' status.

The counters are kept in memory, seeded from the status of the triggers
as they were loaded, and are patched to the cluster after every submission.
The reporting is best-effort: the job already exists at this point, so
a failure to report it is only logged and does not cause any retries.
"""
import asyncio
import datetime

import aiohttp

from kubevent._cogs.clients import errors, patching
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import typedefs
from kubevent._cogs.structs import references, triggers


def format_timestamp(ts: datetime.datetime) -> str:
    return ts.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class StatusReporter:

    def __init__(self, *, settings: configuration.OperatorSettings) -> None:
        super().__init__()
        self.settings = settings
        self.resource = references.triggers_resource(settings)
        self._counters: dict[str, int] = {}
        self._lock = asyncio.Lock()

    def is_reportable(self, trigger: triggers.TriggerSpec) -> bool:
        return self.settings.triggers.report_status and bool(trigger.uid and trigger.namespace)

    async def record(
            self,
            trigger: triggers.TriggerSpec,
            *,
            logger: typedefs.Logger,
            now: datetime.datetime | None = None,
    ) -> None:
        if not self.is_reportable(trigger) or trigger.namespace is None:
            return

        async with self._lock:
            count = self._counters.get(trigger.id, trigger.jobs_created) + 1
            self._counters[trigger.id] = count

        status = {
            'jobsCreated': count,
            'lastTriggeredTime': format_timestamp(now or datetime.datetime.now(datetime.timezone.utc)),
        }
        try:
            patched = await patching.patch_status(
                settings=self.settings,
                resource=self.resource,
                namespace=references.NamespaceName(trigger.namespace),
                name=trigger.name,
                status=status,
                logger=logger,
            )
        except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to report the status of trigger {trigger.id}: {e!r}")
        else:
            if patched is None:
                logger.warning(f"Failed to report the status of trigger {trigger.id}: it is gone.")
            else:
                logger.debug(f"Reported {count} jobs created by trigger {trigger.id}.")
