"""Tests for the per-key FIFO request queue."""

import pytest

from governor.exceptions import CircuitOpenError
from governor.models import Call
from governor.ratelimit import AdmitResult
from governor.services.request_queue import RequestQueue


async def _noop():
    return None


def _call():
    return Call(func=_noop)


def _admission():
    return AdmitResult(allowed=True, limit=1, remaining=0, reset_at=0.0)


class TestRequestQueue:
    """Test queue ordering and bookkeeping."""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        queue = RequestQueue()
        entries = [queue.push(_call(), now=float(i)) for i in range(3)]

        assert len(queue) == 3
        assert [queue.pop() for _ in range(3)] == entries
        assert queue.pop() is None
        assert [e.seq for e in entries] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_peek_skips_resolved_entries(self):
        queue = RequestQueue()
        first = queue.push(_call(), now=0.0)
        second = queue.push(_call(), now=0.0)

        first.future.cancel()

        assert queue.peek() is second
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_bounded_queue_reports_full(self):
        queue = RequestQueue(max_size=2)
        queue.push(_call(), now=0.0)
        assert not queue.full
        queue.push(_call(), now=0.0)
        assert queue.full

        assert not RequestQueue().full

    @pytest.mark.asyncio
    async def test_grant_resolves_once(self):
        queue = RequestQueue()
        entry = queue.push(_call(), now=0.0)
        admission = _admission()

        assert entry.grant(admission)
        assert not entry.grant(_admission())
        assert await entry.future is admission
        assert not entry.pending

    @pytest.mark.asyncio
    async def test_remove(self):
        queue = RequestQueue()
        first = queue.push(_call(), now=0.0)
        second = queue.push(_call(), now=0.0)

        assert queue.remove(first)
        assert not queue.remove(first)
        assert list(queue) == [second]

    @pytest.mark.asyncio
    async def test_fail_all_uses_fresh_errors(self):
        queue = RequestQueue()
        entries = [queue.push(_call(), now=0.0) for _ in range(3)]
        entries[1].future.cancel()

        failed = queue.fail_all(lambda: CircuitOpenError("billing"))

        assert failed == 2
        assert len(queue) == 0
        errors = [entries[0].future.exception(), entries[2].future.exception()]
        assert all(isinstance(e, CircuitOpenError) for e in errors)
        assert errors[0] is not errors[1]
        assert queue.total_enqueued == 3
