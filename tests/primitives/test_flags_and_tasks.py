import asyncio
import logging
import threading

import pytest

from kubevent._cogs.aiokits import aiotasks


@pytest.fixture(params=['future', 'event', 'threading'])
async def flag(request):
    match request.param:
        case 'future':
            return asyncio.get_running_loop().create_future()
        case 'event':
            return asyncio.Event()
        case 'threading':
            return threading.Event()


def is_raised(flag):
    return flag.done() if isinstance(flag, asyncio.Future) else flag.is_set()


async def test_flags_are_raised_and_checked(flag):
    assert not is_raised(flag)
    await aiotasks.raise_flag(flag)
    assert is_raised(flag)
    await asyncio.wait_for(aiotasks.wait_flag(flag), timeout=1)


async def test_raising_the_raised_flags(flag):
    await aiotasks.raise_flag(flag)
    await aiotasks.raise_flag(flag)
    assert is_raised(flag)


async def test_no_flags():
    await aiotasks.raise_flag(None)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(aiotasks.wait_flag(None), timeout=0.01)


async def test_unsupported_flags():
    with pytest.raises(TypeError):
        await aiotasks.raise_flag(object())
    with pytest.raises(TypeError):
        await aiotasks.wait_flag(object())


async def test_guarded_tasks_log_the_failures(caplog):
    async def fail():
        raise ValueError('boom')

    task = aiotasks.create_guarded_task(fail(), name='some task', logger=logging.getLogger('t'))
    with pytest.raises(ValueError):
        await task
    assert 'Some task has failed: boom' in caplog.text


async def test_guarded_tasks_warn_on_unexpected_exits(caplog):
    async def finish():
        pass

    await aiotasks.create_guarded_task(finish(), name='some task', logger=logging.getLogger('t'))
    assert 'Some task has finished unexpectedly.' in caplog.text


async def test_finishable_guarded_tasks(caplog):
    async def finish():
        pass

    await aiotasks.create_guarded_task(finish(), name='some task', finishable=True,
                                       logger=logging.getLogger('t'))
    assert 'finished unexpectedly' not in caplog.text


async def test_waiting_for_no_tasks():
    assert await aiotasks.wait([]) == (set(), set())


async def test_stopping_the_tasks():
    task1 = asyncio.create_task(asyncio.sleep(10))
    task2 = asyncio.create_task(asyncio.sleep(10))
    done, pending = await aiotasks.stop([task1, task2], title='sleepers')
    assert done == {task1, task2}
    assert not pending
    assert task1.cancelled() and task2.cancelled()


async def test_reraising_from_the_tasks():
    async def fail():
        raise ValueError('boom')

    task1 = asyncio.create_task(fail())
    task2 = asyncio.create_task(asyncio.sleep(10))
    task2.cancel()
    await asyncio.wait([task1, task2])
    with pytest.raises(ValueError, match='boom'):
        await aiotasks.reraise([task2, task1])


async def test_all_tasks_except_the_current_and_ignored():
    task1 = asyncio.create_task(asyncio.sleep(10))
    task2 = asyncio.create_task(asyncio.sleep(10))
    try:
        tasks = await aiotasks.all_tasks(ignored={task1})
        assert task2 in tasks
        assert task1 not in tasks
        assert asyncio.current_task() not in tasks
    finally:
        await aiotasks.stop([task1, task2], title='sleepers')


async def test_guarded_tasks_log_the_cancellations(caplog):
    caplog.set_level(logging.DEBUG)
    task = aiotasks.create_guarded_task(asyncio.sleep(10), name='some task',
                                        logger=logging.getLogger('t'))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert 'Some task is cancelled.' in caplog.text
