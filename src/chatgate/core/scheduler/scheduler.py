"""RequestScheduler: priority queue in front of the upstream provider.

Lifecycle of one submission::

    submit() ──► PriorityQueue ──► slot acquired ──► rate window permit
                     ▲                                       │
                     │ backoff (slot released)               ▼
                     └──────────── retryable failure ◄── task()
                                                             │
                                        success / terminal / exhausted
                                                             ▼
                                                   caller's future resolved

A single dispatcher coroutine claims an ``ExecutionSlots`` slot *before*
pulling from the queue, so the item it pulls is always the best one
ready when a slot frees up.  Each pulled item runs in its own task and
gives its slot back as soon as the attempt ends; a retry waits out its
backoff without holding a slot.

The scheduler never cancels or times out a running task: a call that
reached the provider is allowed to finish (at-least-once).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta
from typing import Any, TypeVar

from chatgate.configs.system import SchedulerConfig
from chatgate.core.signals.bus import Signaler
from chatgate.infra.concurrency.base import (
    ProviderTerminalFailure,
    RetriesExhausted,
    SchedulerClosed,
)
from chatgate.infra.concurrency.rate_window import Permit, RateWindow
from chatgate.infra.concurrency.semaphore import ExecutionSlots
from chatgate.infra.id_utils import REQUEST_PREFIX, generate_id
from chatgate.infra.metrics import (
    SCHEDULER_ATTEMPT_SECONDS,
    SCHEDULER_ATTEMPTS_TOTAL,
    SCHEDULER_QUEUE_DEPTH,
    SCHEDULER_SLOT_WAIT_SECONDS,
)
from chatgate.infra.telemetry import (
    ATTR_SCHEDULER_ATTEMPT,
    ATTR_SCHEDULER_DESCRIPTION,
    ATTR_SCHEDULER_OUTCOME,
    ATTR_SCHEDULER_PRIORITY,
    SPAN_SCHEDULER_EXECUTE,
    get_current_trace_id,
    tracer,
)

from .alerts import LoggingAlerter, OperatorAlerter
from .models import QueueItem, SizeEstimate, extract_usage
from .retry import RetryClassifier, backoff_delay, default_retry_classifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

OUTCOME_OK = "ok"
OUTCOME_RETRY = "retry"
OUTCOME_TERMINAL = "terminal"
OUTCOME_EXHAUSTED = "exhausted"


class RequestScheduler:
    """Admission, throttling and retry for provider calls.

    Usage::

        scheduler = RequestScheduler.from_config(config.scheduler, window)
        reply = await scheduler.submit(
            lambda: client.messages.create(...),
            priority=1,
            estimate=SizeEstimate.from_text(prompt, max_output_tokens=1024),
            conversation_key=unit.conversation_key,
        )
        ...
        await scheduler.aclose()
    """

    def __init__(
        self,
        rate_window: RateWindow,
        *,
        max_concurrency: int = 2,
        max_retries: int = 4,
        base_retry_delay: timedelta = timedelta(seconds=1),
        max_retry_delay: timedelta = timedelta(seconds=60),
        default_priority: int = 5,
        signaler: Signaler | None = None,
        alerter: OperatorAlerter | None = None,
        retry_classifier: RetryClassifier = default_retry_classifier,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._rate_window = rate_window
        self._slots = ExecutionSlots(max_concurrency)
        self._max_retries = max_retries
        self._base_delay = base_retry_delay.total_seconds()
        self._max_delay = max_retry_delay.total_seconds()
        self._default_priority = default_priority
        self._signaler = signaler
        self._alerter: OperatorAlerter = alerter or LoggingAlerter()
        self._classify_retry = retry_classifier
        self._clock = clock
        self._sleep = sleep

        self._queue: asyncio.PriorityQueue[QueueItem] = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._dispatcher: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task] = set()
        self._backoffs: dict[asyncio.Task, QueueItem] = {}
        self._closed = False

    @classmethod
    def from_config(
        cls, config: SchedulerConfig, rate_window: RateWindow, **kwargs: Any
    ) -> RequestScheduler:
        return cls(
            rate_window,
            max_concurrency=config.max_concurrency,
            max_retries=config.max_retries,
            base_retry_delay=config.base_retry_delay,
            max_retry_delay=config.max_retry_delay,
            default_priority=config.default_priority,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        return self._slots.in_use

    async def submit(
        self,
        task: Callable[[], Awaitable[T]],
        *,
        priority: int | None = None,
        estimate: SizeEstimate | None = None,
        description: str | None = None,
        tags: Iterable[str] = (),
        conversation_key: str | None = None,
        retryable: bool = True,
    ) -> T:
        """Queue *task* and wait for its final outcome.

        Lower *priority* numbers run first.  Raises
        ``ProviderTerminalFailure``, ``RetriesExhausted`` or
        ``SchedulerClosed``.
        """
        if self._closed:
            raise SchedulerClosed("Scheduler is closed")
        self._ensure_started()

        request_id = generate_id(REQUEST_PREFIX)
        now = self._clock()
        item = QueueItem(
            priority=self._default_priority if priority is None else priority,
            enqueued_at=now,
            seq=next(self._seq),
            request_id=request_id,
            task=task,
            future=asyncio.get_running_loop().create_future(),
            estimate=estimate or SizeEstimate(),
            description=description or request_id,
            tags=tuple(tags),
            conversation_key=conversation_key,
            retryable=retryable,
        )
        self._enqueue(item)
        logger.debug(
            "Queued %s (priority=%d, tags=%s, depth=%d)",
            item.description,
            item.priority,
            ",".join(item.tags),
            self._queue.qsize(),
        )
        return await item.future

    async def aclose(self) -> None:
        """Stop dispatching, let running attempts finish, reject the rest."""
        if self._closed:
            return
        self._closed = True

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass

        for backoff, item in list(self._backoffs.items()):
            backoff.cancel()
            self._reject_closed(item)
        self._backoffs.clear()

        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

        while not self._queue.empty():
            self._reject_closed(self._queue.get_nowait())
        SCHEDULER_QUEUE_DEPTH.set(0)
        logger.info("Request scheduler closed")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _ensure_started(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = asyncio.create_task(
                self._dispatch_loop(), name="request-scheduler"
            )

    def _enqueue(self, item: QueueItem) -> None:
        item.ready_at = self._clock()
        self._queue.put_nowait(item)
        SCHEDULER_QUEUE_DEPTH.set(self._queue.qsize())

    async def _dispatch_loop(self) -> None:
        while True:
            await self._slots.acquire()
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                self._slots.release()
                raise
            SCHEDULER_QUEUE_DEPTH.set(self._queue.qsize())

            if item.future.done():
                # Submitter stopped waiting before the item ran.
                self._slots.release()
                continue

            SCHEDULER_SLOT_WAIT_SECONDS.observe(self._clock() - item.ready_at)
            runner = asyncio.create_task(
                self._run(item), name=f"request:{item.request_id}"
            )
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)

    async def _run(self, item: QueueItem) -> None:
        try:
            await self._attempt(item)
        except asyncio.CancelledError:
            self._reject_closed(item)
            raise
        except Exception:
            logger.exception("Unexpected error running %s", item.description)
            if not item.future.done():
                item.future.set_exception(
                    ProviderTerminalFailure(f"{item.description} failed unexpectedly")
                )
        finally:
            self._slots.release()

    async def _attempt(self, item: QueueItem) -> None:
        attempt = item.retry_count + 1
        requeued = False
        await self._signal("started", item)
        start = self._clock()
        with tracer.start_as_current_span(SPAN_SCHEDULER_EXECUTE) as span:
            span.set_attribute(ATTR_SCHEDULER_PRIORITY, item.priority)
            span.set_attribute(ATTR_SCHEDULER_ATTEMPT, attempt)
            span.set_attribute(ATTR_SCHEDULER_DESCRIPTION, item.description)

            permit: Permit | None = None
            try:
                permit = await self._rate_window.reserve(
                    item.estimate.input_tokens, item.estimate.output_tokens
                )
                logger.info(
                    "Executing %s (attempt %d/%d, priority=%d)",
                    item.description,
                    attempt,
                    self._max_retries + 1,
                    item.priority,
                )
                result = await item.task()
            except Exception as exc:
                if permit is not None:
                    permit.complete(0, 0)
                outcome, requeued = await self._handle_failure(item, exc)
            else:
                usage = extract_usage(result)
                if usage is not None:
                    permit.complete(usage.input_tokens, usage.output_tokens)
                else:
                    permit.complete()
                outcome = OUTCOME_OK
                if not item.future.done():
                    item.future.set_result(result)
            finally:
                if not requeued:
                    await self._signal("stopped", item)

            span.set_attribute(ATTR_SCHEDULER_OUTCOME, outcome)

        SCHEDULER_ATTEMPTS_TOTAL.labels(outcome=outcome).inc()
        SCHEDULER_ATTEMPT_SECONDS.observe(self._clock() - start)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _handle_failure(
        self, item: QueueItem, exc: Exception
    ) -> tuple[str, bool]:
        """Resolve or requeue *item*.  Returns ``(outcome, requeued)``."""
        hint = None
        if item.retryable:
            try:
                hint = self._classify_retry(exc)
            except Exception:
                logger.exception("Retry classifier failed for %s", item.description)

        if hint is None:
            logger.warning("%s failed permanently: %s", item.description, exc)
            if isinstance(exc, ProviderTerminalFailure):
                failure = exc
            else:
                failure = ProviderTerminalFailure(f"{item.description} failed: {exc}")
                failure.__cause__ = exc
            self._fail(item, failure)
            return OUTCOME_TERMINAL, False

        if item.retry_count >= self._max_retries:
            attempts = item.retry_count + 1
            logger.error(
                "%s still failing after %d attempts; giving up", item.description, attempts
            )
            failure = RetriesExhausted(
                f"{item.description} failed after {attempts} attempts: {exc}",
                attempts=attempts,
            )
            failure.__cause__ = exc
            self._fail(item, failure)
            await self._alert(item, attempts, exc)
            return OUTCOME_EXHAUSTED, False

        if self._closed:
            self._reject_closed(item)
            return OUTCOME_TERMINAL, False

        delay = (
            hint.delay
            if hint.delay is not None
            else backoff_delay(item.retry_count, self._base_delay, self._max_delay)
        )
        item.retry_count += 1
        logger.warning(
            "%s will retry in %.2fs (retry %d/%d): %s",
            item.description,
            delay,
            item.retry_count,
            self._max_retries,
            exc,
        )
        backoff = asyncio.create_task(
            self._requeue_after(item, delay), name=f"backoff:{item.request_id}"
        )
        self._backoffs[backoff] = item
        backoff.add_done_callback(lambda done: self._backoffs.pop(done, None))
        return OUTCOME_RETRY, True

    async def _requeue_after(self, item: QueueItem, delay: float) -> None:
        await self._sleep(delay)
        if self._closed:
            self._reject_closed(item)
            return
        self._enqueue(item)

    def _fail(self, item: QueueItem, failure: Exception) -> None:
        if not item.future.done():
            item.future.set_exception(failure)

    def _reject_closed(self, item: QueueItem) -> None:
        self._fail(item, SchedulerClosed(f"Scheduler closed before {item.description} ran"))

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    async def _signal(self, kind: str, item: QueueItem) -> None:
        if self._signaler is None or item.conversation_key is None:
            return
        # Unique per request and stable across its retries.
        owner = (
            item.request_id
            if item.description == item.request_id
            else f"{item.description} ({item.request_id})"
        )
        try:
            if kind == "started":
                await self._signaler.started(item.conversation_key, owner)
            else:
                await self._signaler.stopped(item.conversation_key, owner)
        except Exception:
            logger.exception("Signal %s failed for %s", kind, item.description)

    async def _alert(self, item: QueueItem, attempts: int, exc: Exception) -> None:
        trace_id = get_current_trace_id()
        message = (
            f"Provider request {item.description} ({item.request_id}) "
            f"failed after {attempts} attempts: {exc}"
        )
        if item.conversation_key:
            message += f" [conversation={item.conversation_key}]"
        if trace_id:
            message += f" [trace={trace_id}]"
        try:
            await self._alerter.alert(message)
        except Exception:
            logger.exception("Operator alert failed for %s", item.description)
