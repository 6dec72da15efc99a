"""
The tasks of the controller and the flags that steer them from outside.

The controller runs as a handful of "root" tasks: the watches, the workers
of both controllers, the guards of the watch registries, and the startup.
None of them should ever exit on their own. Once one does, all the others
are stopped too (see :mod:`kubevent._core.reactor.running`).

The flags are whatever the hosting code can offer to stop the controller
or to learn that it is ready: an asyncio future or event, or a threading
event if the controller runs in a thread of its own.
"""
import asyncio
import threading
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from kubevent._cogs.helpers import typedefs

# asyncio's futures & tasks are only subscriptable for the type-checkers.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task

Flag = Future | asyncio.Event | threading.Event


async def wait_flag(flag: Flag | None) -> Any:
    """ Block until the flag is raised; the absent flag blocks forever. """
    match flag:
        case None:
            await asyncio.Event().wait()
        case asyncio.Future():
            return await flag
        case asyncio.Event():
            return await flag.wait()
        case threading.Event():
            return await asyncio.get_running_loop().run_in_executor(None, flag.wait)
        case _:
            raise TypeError(f"Unsupported type of a flag: {flag!r}")


async def raise_flag(flag: Flag | None) -> None:
    match flag:
        case None:
            pass
        case asyncio.Future():
            if not flag.done():
                flag.set_result(None)
        case asyncio.Event() | threading.Event():
            flag.set()
        case _:
            raise TypeError(f"Unsupported type of a flag: {flag!r}")


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    Run a task that is expected to run until cancelled, and log how it ends.

    The failures are logged with their tracebacks and re-raised.
    The exits are only expected from the finishable tasks, e.g. from
    the workers, which exit when their queue is shut down.
    """
    title = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    guarded = guard(coro, name, finishable=finishable, logger=logger)
    return asyncio.create_task(guarded, name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    # asyncio.wait() fails on an empty collection, which is a normal case here.
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout, return_when=return_when)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        cancelled: bool = False,
        interval: float | None = None,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until they are all done.

    With the interval, the still running tasks are reported every so often,
    so that the stuck ones are visible in the logs. In the quiet mode,
    only such stuck tasks are reported.
    """
    title = title.capitalize()
    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{title} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    def report(pending: set[Task], why: str, polls: int) -> None:
        if logger is not None and (not quiet or pending or polls > 1):
            are = 'are not' if pending else 'are'
            logger.debug(f"{title} tasks {are} stopped: {why}; tasks left: {pending!r}")

    polls = 0
    done: set[Task] = set()
    pending: set[Task] = set(tasks)
    while pending:
        polls += 1
        try:
            done_now, pending = await wait(pending, timeout=interval)
        except asyncio.CancelledError:
            pending = {task for task in tasks if not task.done()}
            report(pending, 'double-cancelling at stopping' if cancelled else 'cancelling at stopping', polls)
            raise
        report(pending, 'cancelling normally' if cancelled else 'finishing normally', polls)
        done |= done_now
    return done, pending


async def reraise(tasks: Collection[Task]) -> None:
    """ Re-raise the first error of the finished tasks, except the cancellations. """
    for task in tasks:
        if not task.cancelled():
            task.result()


async def all_tasks(*, ignored: Collection[Task] = frozenset()) -> Collection[Task]:
    """ All the tasks of the loop except the current one and the ignored ones. """
    current = asyncio.current_task()
    return {task for task in asyncio.all_tasks() if task is not current and task not in ignored}
