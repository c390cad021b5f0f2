"""Per-key FIFO of calls waiting for rate-window capacity.

Each entry holds a completion handle (an asyncio future). The drain loop
resolves the handle of the head entry with its admission once capacity is
available; the waiting caller then runs its attempt.
"""

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterator, Optional

from governor.models import Call
from governor.ratelimit.models import AdmitResult


@dataclass(eq=False)
class QueueEntry:
    """A queued call, its completion handle and its arrival sequence number."""
    call: Call
    seq: int
    enqueued_at: float
    future: asyncio.Future = field(repr=False, default=None)

    def __post_init__(self) -> None:
        if self.future is None:
            self.future = asyncio.get_running_loop().create_future()

    @property
    def pending(self) -> bool:
        return not self.future.done()

    def grant(self, admission: AdmitResult) -> bool:
        """Resolve the entry with its admission. False if it already resolved."""
        if self.future.done():
            return False
        self.future.set_result(admission)
        return True

    def fail(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


class RequestQueue:
    """Strict FIFO by arrival sequence; no priority reordering."""

    def __init__(self, max_size: int = 0):
        """Initialize the queue.

        Args:
            max_size: Maximum pending entries, 0 for unbounded
        """
        self.max_size = max_size
        self._entries: Deque[QueueEntry] = deque()
        self._seq = itertools.count()
        self.total_enqueued = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries))

    @property
    def full(self) -> bool:
        return self.max_size > 0 and len(self._entries) >= self.max_size

    def push(self, call: Call, now: float) -> QueueEntry:
        entry = QueueEntry(call=call, seq=next(self._seq), enqueued_at=now)
        self._entries.append(entry)
        self.total_enqueued += 1
        return entry

    def peek(self) -> Optional[QueueEntry]:
        """Return the oldest entry still waiting, dropping resolved ones."""
        while self._entries and not self._entries[0].pending:
            self._entries.popleft()
        return self._entries[0] if self._entries else None

    def pop(self) -> Optional[QueueEntry]:
        entry = self.peek()
        if entry is not None:
            self._entries.popleft()
        return entry

    def remove(self, entry: QueueEntry) -> bool:
        try:
            self._entries.remove(entry)
            return True
        except ValueError:
            return False

    def fail_all(self, make_error: Callable[[], BaseException]) -> int:
        """Fail every waiting entry with a fresh error and empty the queue.

        Returns:
            Number of entries failed
        """
        failed = 0
        while self._entries:
            if self._entries.popleft().fail(make_error()):
                failed += 1
        return failed
