"""
The assembly of the controller: the root tasks and their lifecycle.

The root tasks are:

* the stop-flag and OS-signals waiter, which exits when it is time to stop;
* the startup & cleanup task, which loads the triggers, starts the watches,
  lets the workers go once all the watches are synced, and then sleeps
  until the shutdown to stop the watches and to close the API session;
* the guards of both watch registries, which fail when any watch fails;
* the watch of the Events;
* the event controller and the status controller with their workers.

When any root task exits, all the others are stopped, and so is the whole
controller. Its errors, if any, are re-raised to the caller.
"""
import asyncio
import functools
import logging
import signal
import threading
from collections.abc import Collection, Iterable, Sequence

from kubevent._cogs.aiokits import aiotasks, aiotoggles
from kubevent._cogs.clients import auth
from kubevent._cogs.configs import configuration
from kubevent._cogs.helpers import piggybacking
from kubevent._cogs.structs import triggers
from kubevent._core.engines import loading, reporting
from kubevent._core.reactor import controllers, registry

logger = logging.getLogger(__name__)

ROOT_STOP_INTERVAL = 10  # seconds between the reports of the stuck root tasks
HUNG_STOP_INTERVAL = 1  # seconds between the reports of the stuck sub-tasks
HUNG_EXIT_TIMEOUT = 5  # seconds for the sub-tasks to exit on their own


def run(
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        settings: configuration.OperatorSettings | None = None,
        kubeconfig: str | None = None,
        context: str | None = None,
        server: str | None = None,
        trigger_files: Iterable[str] = (),
        stop_flag: aiotasks.Flag | None = None,
        ready_flag: aiotasks.Flag | None = None,
) -> None:
    """ Run the controller until it is stopped: blocking, with its own event loop. """
    coro = operator(settings=settings, kubeconfig=kubeconfig, context=context, server=server,
                    trigger_files=trigger_files, stop_flag=stop_flag, ready_flag=ready_flag)
    try:
        if loop is None:
            asyncio.run(coro)
        else:
            loop.run_until_complete(coro)
    except asyncio.CancelledError:
        pass


async def operator(
        *,
        settings: configuration.OperatorSettings | None = None,
        kubeconfig: str | None = None,
        context: str | None = None,
        server: str | None = None,
        trigger_files: Iterable[str] = (),
        stop_flag: aiotasks.Flag | None = None,
        ready_flag: aiotasks.Flag | None = None,
) -> None:
    """
    Run the controller in the current event loop, e.g. next to other services.

    The tasks that existed before it are left intact when it stops.
    """
    foreign_tasks = await aiotasks.all_tasks()
    root_tasks = await spawn_tasks(settings=settings, kubeconfig=kubeconfig, context=context,
                                   server=server, trigger_files=trigger_files,
                                   stop_flag=stop_flag, ready_flag=ready_flag)
    await run_tasks(root_tasks, ignored=foreign_tasks)


def make_source(files: Sequence[str], *, settings: configuration.OperatorSettings) -> loading.TriggerSource:
    if files:
        return loading.FileTriggerSource(files, settings=settings)
    return loading.ApiTriggerSource(settings=settings)


async def spawn_tasks(
        *,
        settings: configuration.OperatorSettings | None = None,
        kubeconfig: str | None = None,
        context: str | None = None,
        server: str | None = None,
        trigger_files: Iterable[str] = (),
        stop_flag: aiotasks.Flag | None = None,
        ready_flag: aiotasks.Flag | None = None,
) -> Collection[aiotasks.Task]:
    """
    Log in, build the controllers, and start the root tasks of the controller.
    """
    loop = asyncio.get_running_loop()
    settings = settings if settings is not None else configuration.OperatorSettings()

    # The kubeconfigs & the client libraries do the blocking I/O.
    login = functools.partial(piggybacking.login, kubeconfig=kubeconfig, context=context,
                              server=server, logger=logger)
    api_context = auth.APIContext(await loop.run_in_executor(None, login))
    auth.context_var.set(api_context)

    snapshot = loading.TriggerSnapshot(make_source(list(trigger_files), settings=settings))
    reporter = reporting.StatusReporter(settings=settings)
    synced = aiotoggles.ToggleSet(all)
    status_controller = controllers.StatusController(
        settings=settings, snapshot=snapshot, reporter=reporter, synced=synced)
    event_controller = controllers.EventController(
        settings=settings, snapshot=snapshot, reporter=reporter,
        labels_source=status_controller.registry, labels_synced=synced,
        synced=await synced.make_toggle(name='events'))

    signal_flag: aiotasks.Future = loop.create_future()
    started_flag = asyncio.Event()
    tasks: list[aiotasks.Task] = []
    tasks.append(asyncio.create_task(
        _wait_for_stop(signal_flag=signal_flag, stop_flag=stop_flag),
        name="stop-flag checker"))
    tasks.append(asyncio.create_task(
        _startup_and_cleanup(
            root_tasks=tasks,  # still being filled
            settings=settings,
            snapshot=snapshot,
            synced=synced,
            status_controller=status_controller,
            event_controller=event_controller,
            api_context=api_context,
            started_flag=started_flag,
            ready_flag=ready_flag,
            stop_flag=stop_flag),
        name="startup/cleanup activities"))
    tasks.append(aiotasks.create_guarded_task(
        status_controller.registry.guard(), name="watch registry guard", logger=logger))
    tasks.append(aiotasks.create_guarded_task(
        event_controller.labels.guard(), name="labels registry guard", logger=logger))
    tasks.append(event_controller.watch.start())
    tasks.extend(
        aiotasks.create_guarded_task(controller.serve(started_flag), name=controller.name, logger=logger)
        for controller in [event_controller, status_controller]
    )

    # Let the guards enter their coroutines before anything can cancel them.
    await asyncio.sleep(0)

    _catch_signals(loop, signal_flag)
    return tasks


def _catch_signals(loop: asyncio.AbstractEventLoop, signal_flag: aiotasks.Future) -> None:
    if threading.current_thread() is not threading.main_thread():
        logger.warning("OS signals are ignored: running not in the main thread.")
        return
    try:
        for signum in [signal.SIGINT, signal.SIGTERM]:
            loop.add_signal_handler(signum, signal_flag.set_result, signum)
    except NotImplementedError:
        logger.warning("OS signals are ignored: can't add signal handler in Windows.")


async def run_tasks(
        root_tasks: Collection[aiotasks.Task],
        *,
        ignored: Collection[aiotasks.Task] = frozenset(),
) -> None:
    """
    Wait until any root task exits, then stop all the tasks of the controller.

    The sub-tasks spawned by the root tasks (e.g. the watches of the kinds,
    the workers) get a few seconds to exit on their own before they are
    cancelled too. The first error of any task is re-raised at the end.
    """
    try:
        root_done, root_pending = await aiotasks.wait(root_tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await aiotasks.stop(root_tasks, title="Root", logger=logger, cancelled=True,
                            interval=ROOT_STOP_INTERVAL)
        await aiotasks.stop(await aiotasks.all_tasks(ignored=ignored), title="Hung", logger=logger,
                            cancelled=True, interval=HUNG_STOP_INTERVAL)
        raise

    root_stopped, _ = await aiotasks.stop(root_pending, title="Root", logger=logger)

    hung_tasks = await aiotasks.all_tasks(ignored=ignored)
    try:
        hung_done, hung_pending = await aiotasks.wait(hung_tasks, timeout=HUNG_EXIT_TIMEOUT)
    except asyncio.CancelledError:
        await aiotasks.stop(hung_tasks, title="Hung", logger=logger, cancelled=True,
                            interval=HUNG_STOP_INTERVAL)
        raise
    hung_stopped, _ = await aiotasks.stop(hung_pending, title="Hung", logger=logger,
                                          interval=HUNG_STOP_INTERVAL)

    await aiotasks.reraise(root_done | root_stopped | hung_done | hung_stopped)


async def _wait_for_stop(
        *,
        signal_flag: aiotasks.Future,
        stop_flag: aiotasks.Flag | None,
) -> None:
    """ Exit when the controller is signalled or asked to stop; this stops the rest. """
    waiters: list[aiotasks.Future] = [signal_flag]
    if stop_flag is not None:
        waiters.append(asyncio.create_task(aiotasks.wait_flag(stop_flag), name="stop-flag waiter"))
    try:
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        reason = await done.pop()
    except asyncio.CancelledError:
        return  # stopping for other reasons
    finally:
        for waiter in waiters[1:]:
            waiter.cancel()

    match reason:
        case None:
            logger.info("Stop-flag is raised. Controller is stopping.")
        case signal.Signals():
            logger.info(f"Signal {reason.name} is received. Controller is stopping.")
        case _:
            logger.info(f"Stop-flag is set to {reason!r}. Controller is stopping.")


async def _start_watching(
        *,
        settings: configuration.OperatorSettings,
        snapshot: loading.TriggerSnapshot,
        synced: aiotoggles.ToggleSet,
        status_controller: controllers.StatusController,
        event_controller: controllers.EventController,
        stop_flag: aiotasks.Flag | None,
) -> Collection[triggers.TriggerSpec]:
    """
    Watch the kinds of the status triggers and of the event triggers' label selectors.

    Fails if the triggers cannot be loaded or the watches do not sync in time.
    """
    all_triggers = await snapshot.get()
    status_kinds = {trigger.filter.kind for trigger in all_triggers
                    if trigger.mode == triggers.TriggerMode.STATUS}
    for kind in sorted(status_kinds):
        await status_controller.registry.ensure_watch(kind)
    await event_controller.watch_labels(all_triggers)
    await registry.wait_synced(synced, timeout=settings.watching.sync_timeout, stop_flag=stop_flag)
    return all_triggers


async def _startup_and_cleanup(
        *,
        root_tasks: Sequence[aiotasks.Task],
        settings: configuration.OperatorSettings,
        snapshot: loading.TriggerSnapshot,
        synced: aiotoggles.ToggleSet,
        status_controller: controllers.StatusController,
        event_controller: controllers.EventController,
        api_context: auth.APIContext,
        started_flag: asyncio.Event,
        ready_flag: aiotasks.Flag | None,
        stop_flag: aiotasks.Flag | None,
) -> None:
    """
    Start the watches and the workers; on the shutdown, release the resources.

    The cleanup waits for the other root tasks, since they still use the session.
    """
    try:
        try:
            all_triggers = await _start_watching(
                settings=settings, snapshot=snapshot, synced=synced, stop_flag=stop_flag,
                status_controller=status_controller, event_controller=event_controller)
        except asyncio.CancelledError:
            logger.warning("Startup activity is only partially executed due to cancellation.")
            raise

        started_flag.set()
        await aiotasks.raise_flag(ready_flag)
        logger.info(f"The controller is started with {len(all_triggers)} triggers.")

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            pass  # the shutdown has begun

        try:
            current = asyncio.current_task()
            await aiotasks.wait([task for task in root_tasks if task is not current])
        except asyncio.CancelledError:
            logger.warning("Cleanup activity is not fully executed due to cancellation.")
            raise

    finally:
        await status_controller.registry.stop()
        await event_controller.labels.stop()
        await api_context.close()
