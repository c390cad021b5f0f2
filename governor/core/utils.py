"""Utility functions for the governor."""

import asyncio
from typing import Any, Awaitable, Optional

from governor.exceptions import CallCancelledError


async def run_cancellable(
    aw: Awaitable[Any],
    cancel_event: Optional[asyncio.Event] = None,
    timeout: Optional[float] = None,
) -> Any:
    """Await ``aw`` while honouring a cancellation signal and a timeout.

    Args:
        aw: Coroutine or future to await
        cancel_event: Optional event; when set, ``aw`` is aborted
        timeout: Optional timeout in seconds

    Returns:
        The result of ``aw``

    Raises:
        CallCancelledError: If ``cancel_event`` fired first
        asyncio.TimeoutError: If ``timeout`` elapsed first
    """
    task = asyncio.ensure_future(aw)
    if cancel_event is None and timeout is None:
        return await task

    waiters = {task}
    cancel_waiter: Optional[asyncio.Future] = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    # Abort the pending work and let it unwind before reporting why.
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is None:
        # Finished before the cancellation landed; the result stands.
        return task.result()

    if cancel_waiter is not None and cancel_waiter in done:
        raise CallCancelledError()
    raise asyncio.TimeoutError()
