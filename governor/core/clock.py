"""Time source and cancellable delay primitives.

Every component that reads the time or waits takes a ``Clock`` so tests can
substitute a deterministic one.
"""

import asyncio
import time


class Clock:
    """Wall-clock time source backed by ``time.time`` and ``asyncio.sleep``.

    Epoch seconds are used (rather than a monotonic counter) because remote
    rate-limit headers report reset times as epoch or ISO timestamps.
    """

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    async def wait(self, event: asyncio.Event, timeout: float) -> bool:
        """Wait until ``event`` is set or ``timeout`` seconds elapse.

        Returns:
            True if the event was set, False on timeout
        """
        if event.is_set():
            return True
        try:
            await asyncio.wait_for(event.wait(), timeout=max(0.0, timeout))
            return True
        except asyncio.TimeoutError:
            return False
