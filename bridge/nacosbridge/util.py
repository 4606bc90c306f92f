import asyncio
import functools


def _copy_outcome(future, task):
    if future.done():
        return
    try:
        future.set_result(task.result())
    except BaseException as exc:
        future.set_exception(exc)


async def task_cancel_and_wait(task):
    """
    Cancel the task and wait for it to exit.

    The wait is on a proxy future rather than the task itself, so that the caller
    remains cancellable even if the task ignores or delays its cancellation.
    """
    future = asyncio.get_running_loop().create_future()
    callback = functools.partial(_copy_outcome, future)
    task.add_done_callback(callback)
    try:
        task.cancel()
        await future
    except asyncio.CancelledError:
        pass
    finally:
        task.remove_done_callback(callback)


def call_in_loop(loop: asyncio.AbstractEventLoop, func, *args):
    """
    Calls the function in the given event loop.

    When called from a thread that is running the loop, the function is called
    immediately. From any other thread, the call is scheduled on the loop.
    """
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        func(*args)
    else:
        loop.call_soon_threadsafe(func, *args)
