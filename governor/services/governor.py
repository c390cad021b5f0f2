"""Outbound request governor.

Every call submitted for a key goes through the same pipeline:

1. Fast-fail while the key's circuit is open.
2. Take one unit of rate-window capacity, or wait in the key's FIFO queue
   until the drain loop grants one.
3. Run the attempt on the worker pool, bounded by the call's timeout and
   abortable through its cancel event.
4. Feed the response headers back into the rate window and the outcome
   into the circuit breaker.
5. Retry transient failures with exponential backoff, re-entering the
   queue at the back for every retry.

All per-key state is mutated under the key's ``asyncio.Lock``; keys never
block each other.
"""

import asyncio
import random
import time
from collections import OrderedDict
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
import redis.asyncio as aioredis

from governor.breaker import CircuitBreaker, CircuitState
from governor.core.clock import Clock
from governor.core.config import settings
from governor.core.logging import get_logger, get_log_context
from governor.core.utils import run_cancellable
from governor.exceptions import (
    CallCancelledError,
    CircuitOpenError,
    GovernorClosedError,
    MaxRetriesExceededError,
    RateLimitExceeded,
    RemoteError,
    TransportTimeoutError,
)
from governor.models import Call, GovernorOptions, RetryContext
from governor.ratelimit import AdmitResult, RateWindow, RateWindowState, build_strategy
from governor.services.request_queue import QueueEntry, RequestQueue
from governor.transport.base import Transport, TransportRequest, TransportResponse
from governor.transport.httpx_transport import HttpxTransport

logger = get_logger(__name__)

# Shortest pause of the drain loop, so a zero wait still yields to the loop.
MIN_DRAIN_WAIT = 0.001


class _KeyState:
    """Everything the governor tracks for one key."""

    def __init__(
        self,
        key: str,
        options: GovernorOptions,
        clock: Clock,
        counter_store: Optional[Any],
        key_prefix: str,
    ):
        self.key = key
        self.options = options
        self.lock = asyncio.Lock()
        self.window = RateWindow(
            key,
            build_strategy(
                key,
                options.strategy,
                options.limit,
                options.window_seconds,
                counter_store=counter_store,
                key_prefix=key_prefix,
            ),
            clock,
        )
        self.breaker = CircuitBreaker(
            key,
            failure_threshold=options.failure_threshold,
            recovery_timeout=options.recovery_timeout,
            clock=clock,
        )
        self.queue = RequestQueue(options.max_queue_size)
        self.capacity_signal = asyncio.Event()
        self.drain_task: Optional[asyncio.Task] = None
        self.in_flight = 0

    @property
    def draining(self) -> bool:
        return self.drain_task is not None and not self.drain_task.done()

    @property
    def idle(self) -> bool:
        return self.in_flight == 0 and len(self.queue) == 0 and not self.draining


class Governor:
    """Rate limiting, queuing, circuit breaking and retries for outbound calls.

    Usage:
        async with Governor(HttpxTransport(base_url="https://api.example.com")) as gov:
            gov.configure("billing", limit=10, window_seconds=1.0)
            response = await gov.request("GET", "/invoices", key="billing")

    Calls wrapping an async callable instead of a request:
        result = await gov.submit(Call(func=lambda: client.fetch()), key="search")
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        *,
        options: Optional[GovernorOptions] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        counter_store: Optional[Any] = None,
        max_concurrency: Optional[int] = None,
        max_tracked_keys: Optional[int] = None,
    ):
        """Initialize the governor.

        Args:
            transport: Carries request calls; an HttpxTransport is created
                lazily when omitted
            options: Options for keys without explicit configuration,
                defaults to the environment settings
            clock: Time source
            rng: Random source for backoff jitter
            counter_store: Optional Redis client shared by sliding windows;
                created from settings when ``GOVERNOR_REDIS_ENABLED`` is set
            max_concurrency: Size of the worker pool shared by all keys
            max_tracked_keys: Idle keys beyond this count are forgotten
                least recently used first
        """
        self._transport = transport
        self.default_options = options or GovernorOptions.from_settings()
        self.clock = clock or Clock()
        self._rng = rng or random.Random()

        self._owns_counter_store = False
        if counter_store is None and settings.redis_enabled:
            counter_store = aioredis.from_url(settings.redis_url, decode_responses=True)
            self._owns_counter_store = True
        self._counter_store = counter_store

        self._workers = asyncio.Semaphore(max_concurrency or settings.max_concurrency)
        self._max_tracked_keys = max_tracked_keys or settings.max_tracked_keys
        self._options: Dict[str, GovernorOptions] = {}
        self._states: "OrderedDict[str, _KeyState]" = OrderedDict()
        self._closed = False

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            self._transport = HttpxTransport()
        return self._transport

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Configuration and per-key state
    # ------------------------------------------------------------------

    def configure(
        self, key: str, options: Optional[GovernorOptions] = None, **overrides: Any
    ) -> GovernorOptions:
        """Set the options for a key.

        Overrides are applied on top of ``options``, or on top of the key's
        current options when ``options`` is omitted. Configuring a key with
        the options it already has changes nothing.

        Returns:
            The key's effective options
        """
        base = options or self._options.get(key) or self.default_options
        new = GovernorOptions(**{**base.model_dump(), **overrides}) if overrides else base

        if self._options.get(key) == new:
            return new
        self._options[key] = new

        state = self._states.get(key)
        if state is not None:
            self._apply_options(state, new)
        logger.info(
            f"Configured '{key}': {new.limit} calls per {new.window_seconds:.2f}s "
            f"({new.strategy}), failure threshold {new.failure_threshold}",
            extra=get_log_context(key=key),
        )
        return new

    def options_for(self, key: str) -> GovernorOptions:
        return self._options.get(key, self.default_options)

    def _apply_options(self, state: _KeyState, new: GovernorOptions) -> None:
        old = state.options
        state.options = new
        state.breaker.configure(new.failure_threshold, new.recovery_timeout)
        state.queue.max_size = new.max_queue_size
        if (old.strategy, old.limit, old.window_seconds) != (
            new.strategy, new.limit, new.window_seconds
        ):
            state.window.replace_strategy(
                build_strategy(
                    state.key,
                    new.strategy,
                    new.limit,
                    new.window_seconds,
                    counter_store=self._counter_store,
                    key_prefix=settings.counter_key_prefix,
                )
            )
            state.capacity_signal.set()

    def _get_state(self, key: str) -> _KeyState:
        state = self._states.get(key)
        if state is not None:
            self._states.move_to_end(key)
            return state

        state = _KeyState(
            key,
            self.options_for(key),
            self.clock,
            self._counter_store,
            settings.counter_key_prefix,
        )
        self._states[key] = state
        self._evict_idle_keys()
        return state

    def _evict_idle_keys(self) -> None:
        excess = len(self._states) - self._max_tracked_keys
        if excess <= 0:
            return
        for key in list(self._states)[:-1]:
            if excess <= 0:
                break
            state = self._states[key]
            # An open breaker is remembered until it closes again.
            if state.idle and state.breaker.state == CircuitState.CLOSED:
                del self._states[key]
                excess -= 1
                logger.debug(f"Evicted idle key '{key}'", extra=get_log_context(key=key))

    def evict(self, key: str) -> bool:
        """Forget the runtime state of an idle key.

        Returns:
            True if the key was dropped, False if it is unknown or busy
        """
        state = self._states.get(key)
        if state is None or not state.idle:
            return False
        del self._states[key]
        return True

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        key: str = "default",
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> TransportResponse:
        """Build a request call and submit it.

        Keyword arguments are passed to ``TransportRequest`` (headers,
        params, json, content).
        """
        call = Call(
            request=TransportRequest(method=method, url=url, **kwargs),
            timeout=timeout,
        )
        if cancel_event is not None:
            call.cancel_event = cancel_event
        return await self.submit(call, key)

    async def submit(self, call: Call, key: str = "default") -> Any:
        """Run a call under the key's rate window, circuit breaker and retry policy.

        Args:
            call: The call to run
            key: Target identifier; all calls sharing a key share limits

        Returns:
            The call's result (the transport response for request calls)

        Raises:
            CircuitOpenError: The key's circuit is open
            RateLimitExceeded: No capacity and the call could not be queued
            CallCancelledError: The call's cancel event fired
            RemoteError: The remote answered with a non-retryable error status
            MaxRetriesExceededError: Retryable failures exhausted the retry budget
            GovernorClosedError: The governor was closed
        """
        if self._closed:
            raise GovernorClosedError()

        state = self._get_state(key)
        policy = state.options.backoff_policy(self._rng)
        ctx = RetryContext()
        call.enqueued_at = self.clock.now()
        state.in_flight += 1
        try:
            while True:
                if self._closed:
                    raise GovernorClosedError()
                if call.cancelled:
                    raise CallCancelledError()
                admission = await self._acquire(state, call)
                ctx.attempts += 1
                try:
                    result = await self._attempt(state, call, admission, ctx)
                except Exception as e:
                    ctx.last_error = e
                    if not policy.is_retryable(e):
                        logger.debug(
                            f"Non-retryable failure for '{key}': {type(e).__name__}: {e}",
                            extra=get_log_context(key=key, attempt=ctx.attempts),
                        )
                        raise

                    if ctx.retries >= policy.max_retries:
                        logger.warning(
                            f"Max retries ({policy.max_retries}) exceeded for '{key}': "
                            f"{type(e).__name__}: {e}",
                            extra=get_log_context(key=key, attempt=ctx.attempts),
                        )
                        raise MaxRetriesExceededError(e, ctx.attempts) from e

                    delay = policy.calculate_delay(ctx.retries)
                    logger.warning(
                        f"Retry {ctx.attempts}/{policy.max_retries} for '{key}' "
                        f"after {type(e).__name__}: {e}. Waiting {delay:.2f}s...",
                        extra=get_log_context(key=key, attempt=ctx.attempts, delay=delay),
                    )
                    await run_cancellable(self.clock.sleep(delay), call.cancel_event)
                    continue

                if ctx.attempts > 1:
                    logger.info(
                        f"Call to '{key}' succeeded on attempt {ctx.attempts}",
                        extra=get_log_context(key=key, attempt=ctx.attempts),
                    )
                return result
        finally:
            state.in_flight -= 1

    async def _acquire(self, state: _KeyState, call: Call) -> AdmitResult:
        """Take one unit of capacity, waiting in the queue if there is none."""
        async with state.lock:
            if self._closed:
                raise GovernorClosedError()
            state.breaker.check()

            # Callers already waiting go first.
            if state.queue.peek() is None:
                admission = await state.window.admit()
                if admission.allowed:
                    return admission
            else:
                admission = None

            if not state.options.queue_enabled or state.queue.full:
                now = self.clock.now()
                reset_at = admission.reset_at if admission else state.window.state.reset_at
                raise RateLimitExceeded(
                    state.key,
                    reset_at=reset_at,
                    retry_after=max(0.0, reset_at - now),
                )

            entry = state.queue.push(call, self.clock.now())
            self._ensure_drain(state)
            logger.debug(
                f"Queued call for '{state.key}' (position {len(state.queue)})",
                extra=get_log_context(key=state.key),
            )

        try:
            return await run_cancellable(entry.future, call.cancel_event)
        except (CallCancelledError, asyncio.CancelledError):
            await self._withdraw(state, entry)
            raise

    async def _withdraw(self, state: _KeyState, entry: QueueEntry) -> None:
        """Drop a cancelled entry, returning any capacity granted in the meantime."""
        async with state.lock:
            state.queue.remove(entry)
            future = entry.future
            if future.done() and not future.cancelled() and future.exception() is None:
                await self._release_capacity(state, future.result())

    async def _release_capacity(self, state: _KeyState, admission: AdmitResult) -> None:
        await state.window.release(admission.reservation)
        state.capacity_signal.set()

    def _ensure_drain(self, state: _KeyState) -> None:
        if not state.draining:
            state.drain_task = asyncio.create_task(
                self._drain(state), name=f"governor-drain:{state.key}"
            )

    async def _drain(self, state: _KeyState) -> None:
        """Grant capacity to queued calls in arrival order as it frees up."""
        while True:
            async with state.lock:
                entry = state.queue.peek()
                if entry is None:
                    return

                if state.breaker.is_open():
                    self._fail_queue(state)
                    continue

                try:
                    admission = await state.window.admit()
                except Exception as e:
                    logger.error(
                        f"Admission check failed for '{state.key}', failing "
                        f"{len(state.queue)} queued calls: {type(e).__name__}: {e}",
                        extra=get_log_context(key=state.key),
                        exc_info=True,
                    )
                    state.queue.fail_all(lambda: e)
                    return

                if admission.allowed:
                    state.queue.pop()
                    if not entry.grant(admission):
                        await state.window.release(admission.reservation)
                    continue

                wait = max(MIN_DRAIN_WAIT, admission.retry_after(self.clock.now()))
                state.capacity_signal.clear()

            logger.debug(
                f"No capacity for '{state.key}', {len(state.queue)} queued; "
                f"waiting {wait:.2f}s",
                extra=get_log_context(key=state.key, delay=wait),
            )
            await self.clock.wait(state.capacity_signal, wait)

    def _fail_queue(self, state: _KeyState) -> None:
        failed = state.queue.fail_all(
            lambda: CircuitOpenError(state.key, state.breaker.next_attempt_at)
        )
        if failed:
            logger.warning(
                f"Failed {failed} queued calls for '{state.key}': circuit is open",
                extra=get_log_context(key=state.key, circuit_state=state.breaker.state.value),
            )

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    async def _attempt(
        self, state: _KeyState, call: Call, admission: AdmitResult, ctx: RetryContext
    ) -> Any:
        async with state.lock:
            try:
                state.breaker.acquire()
            except CircuitOpenError:
                await self._release_capacity(state, admission)
                raise

        timeout = call.timeout or state.options.request_timeout
        start_time = time.perf_counter()
        try:
            result = await self._run(call, timeout)
        except (CallCancelledError, asyncio.CancelledError):
            async with state.lock:
                state.breaker.release()
                await self._release_capacity(state, admission)
            raise
        except Exception as e:
            if isinstance(e, httpx.HTTPStatusError):
                await self._observe(state, e.response.status_code, e.response.headers)
            await self._record_failure(state, e, ctx, start_time)
            raise

        status, headers = self._response_meta(result)
        if status is not None:
            await self._observe(state, status, headers)

        if status is not None and status >= 400:
            error = RemoteError(status, result)
            await self._record_failure(state, error, ctx, start_time)
            raise error

        async with state.lock:
            state.breaker.record_success()
        return result

    async def _run(self, call: Call, timeout: float) -> Any:
        """Run the call on the worker pool within its timeout."""
        await run_cancellable(self._workers.acquire(), call.cancel_event)
        try:
            if call.request is not None:
                work = self.transport.send(call.request, timeout)
            else:
                work = call.func()
            return await run_cancellable(work, call.cancel_event, timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(
                f"Call timed out after {timeout:.2f}s", cause=e
            ) from e
        finally:
            self._workers.release()

    @staticmethod
    def _response_meta(result: Any) -> Tuple[Optional[int], Mapping[str, str]]:
        if isinstance(result, (TransportResponse, httpx.Response)):
            return result.status_code, result.headers
        return None, {}

    async def _observe(self, state: _KeyState, status: int, headers: Mapping[str, str]) -> None:
        """Feed a response's rate-limit headers into the key's window."""
        async with state.lock:
            parsed = state.window.apply_headers(headers)
            if status == 429:
                state.window.apply_retry_after(parsed.retry_after, parsed.reset_at)
            elif parsed.remaining is not None and parsed.remaining > 0:
                state.capacity_signal.set()

    async def _record_failure(
        self, state: _KeyState, error: BaseException, ctx: RetryContext, start_time: float
    ) -> None:
        duration_ms = (time.perf_counter() - start_time) * 1000
        status_code = getattr(error, "status", None)
        async with state.lock:
            opened = state.breaker.record_failure()
            if opened:
                self._fail_queue(state)
        logger.info(
            f"Attempt {ctx.attempts} for '{state.key}' failed: {type(error).__name__}: {error}",
            extra=get_log_context(
                key=state.key,
                attempt=ctx.attempts,
                circuit_state=state.breaker.state.value,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
            ),
        )

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    # Stats of an untracked key describe a fresh key and do not start tracking it.

    def get_circuit_stats(self, key: str) -> dict:
        state = self._states.get(key)
        if state is None:
            options = self.options_for(key)
            return CircuitBreaker(
                key,
                failure_threshold=options.failure_threshold,
                recovery_timeout=options.recovery_timeout,
                clock=self.clock,
            ).get_stats()
        return state.breaker.get_stats()

    def get_rate_limit_state(self, key: str) -> dict:
        state = self._states.get(key)
        if state is None:
            fresh = RateWindowState(limit=self.options_for(key).limit)
            return fresh.to_dict(self.clock.now())
        return state.window.snapshot()

    def get_queue_stats(self, key: str) -> dict:
        state = self._states.get(key)
        if state is None:
            return {
                "pending": 0,
                "total_enqueued": 0,
                "max_size": self.options_for(key).max_queue_size,
                "in_flight": 0,
                "draining": False,
            }
        return {
            "pending": len(state.queue),
            "total_enqueued": state.queue.total_enqueued,
            "max_size": state.queue.max_size,
            "in_flight": state.in_flight,
            "draining": state.draining,
        }

    def get_stats(self) -> Dict[str, dict]:
        """Snapshot of every tracked key."""
        return {
            key: {
                "circuit": state.breaker.get_stats(),
                "rate_limit": state.window.snapshot(),
                "queue": self.get_queue_stats(key),
            }
            for key, state in list(self._states.items())
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop drain loops, fail queued calls and release owned resources."""
        if self._closed:
            return
        self._closed = True

        for state in list(self._states.values()):
            state.queue.fail_all(GovernorClosedError)
            task = state.drain_task
            state.drain_task = None
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._transport is not None:
            await self._transport.aclose()
        if self._owns_counter_store and self._counter_store is not None:
            await self._counter_store.aclose()
        logger.info("Governor closed")

    async def __aenter__(self) -> "Governor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Global governor instance
_governor: Optional[Governor] = None


def get_governor(transport: Optional[Transport] = None) -> Governor:
    """Get the global Governor instance (singleton pattern).

    Args:
        transport: Optional transport to use. Only used on first call.

    Returns:
        The global Governor instance
    """
    global _governor
    if _governor is None:
        _governor = Governor(transport)
    return _governor


def reset_governor() -> None:
    """Reset the global governor instance.

    This is useful for testing or when configuration changes.
    """
    global _governor
    _governor = None
