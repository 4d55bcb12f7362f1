"""
Asynchronous, best-effort emitter for migration events and metrics.

The orchestrator publishes from inside its state lock, so publishing must
never block: items go into a bounded asyncio.Queue and a background worker
forwards them to metric sinks and subscribers. When the queue is full the
item is dropped and a warning is logged. Sink and subscriber errors are
logged and swallowed; nothing is retried.

Example:
    >>> sink = InMemoryMetricSink()
    >>> emitter = MetricEmitter(sinks=[sink])
    >>> emitter.subscribe(evaluator.handle)
    >>> emitter.publish_event(PhaseStarted(run_id=run_id, phase_id=phase))
    >>> await emitter.drain()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from cutover.events import MigrationEvent
from cutover.metrics import (
    DEFAULT_PERIOD_SECONDS,
    MetricDatum,
    MetricSink,
    event_to_datums,
)
from cutover.observability import ATTR_EVENT_COUNT, ATTR_EVENT_TYPE, Tracer, create_tracer

logger = logging.getLogger(__name__)

StreamItem = MigrationEvent | MetricDatum
"""Anything carried on the emitter stream."""

StreamHandler = Callable[[StreamItem], Awaitable[None] | None]
"""Subscriber callback; may be sync or async."""


class MetricEmitter:
    """
    Bounded, non-blocking publisher for events and metric datums.

    Each published event is followed on the stream by its count datum.
    Datum timestamps are aligned to ``period_seconds`` before delivery.

    Features:
    - Non-blocking publish (drop with warning when full)
    - Background worker started lazily on first publish
    - Error isolation between sinks and subscribers
    - Delivery statistics

    Args:
        sinks: Metric sinks receiving datums.
        max_queue_size: Capacity of the stream queue.
        period_seconds: Timestamp alignment for datums.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        sinks: Sequence[MetricSink] | None = None,
        *,
        max_queue_size: int = 10_000,
        period_seconds: int = DEFAULT_PERIOD_SECONDS,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if max_queue_size < 1:
            raise ValueError(f"max_queue_size must be >= 1, got {max_queue_size}")
        if period_seconds < 1:
            raise ValueError(f"period_seconds must be >= 1, got {period_seconds}")

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._sinks: list[MetricSink] = list(sinks or [])
        self._subscribers: list[StreamHandler] = []
        self._queue: asyncio.Queue[StreamItem] = asyncio.Queue(maxsize=max_queue_size)
        self._period_seconds = period_seconds
        self._worker: asyncio.Task[None] | None = None
        self._stats = {
            "events_published": 0,
            "metrics_published": 0,
            "items_dropped": 0,
            "sink_errors": 0,
            "subscriber_errors": 0,
        }

    @property
    def period_seconds(self) -> int:
        return self._period_seconds

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def add_sink(self, sink: MetricSink) -> None:
        self._sinks.append(sink)

    def subscribe(self, handler: StreamHandler) -> None:
        """Register a callback for every event and datum on the stream."""
        self._subscribers.append(handler)

    def unsubscribe(self, handler: StreamHandler) -> bool:
        try:
            self._subscribers.remove(handler)
            return True
        except ValueError:
            return False

    def publish_event(self, event: MigrationEvent) -> bool:
        """
        Enqueue an event followed by its count datum.

        Returns:
            False if the event was dropped because the queue is full.
        """
        if not self._offer(event):
            return False
        self._stats["events_published"] += 1
        for datum in event_to_datums(event):
            self.publish_metric(datum)
        return True

    def publish_metric(self, datum: MetricDatum) -> bool:
        """
        Enqueue a metric datum.

        Returns:
            False if the datum was dropped because the queue is full.
        """
        if not self._offer(datum.aligned(self._period_seconds)):
            return False
        self._stats["metrics_published"] += 1
        return True

    def _offer(self, item: StreamItem) -> bool:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._stats["items_dropped"] += 1
            logger.warning(
                "Emitter queue full, dropping %s",
                _describe(item),
                extra={"run_id": str(item.run_id), "queue_size": self._queue.maxsize},
            )
            return False
        self._ensure_worker()
        return True

    def _ensure_worker(self) -> None:
        if self.is_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the worker starts on start() or the next publish
            return
        self._worker = loop.create_task(self._run(), name="cutover-metric-emitter")

    async def start(self) -> None:
        self._ensure_worker()

    async def drain(self) -> None:
        """Wait until every queued item has been delivered."""
        self._ensure_worker()
        await self._queue.join()

    async def stop(self) -> None:
        """Deliver what is queued, then stop the worker."""
        if self._worker is None:
            return
        await self.drain()
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def _deliver(self, item: StreamItem) -> None:
        with self._tracer.span(
            "cutover.emitter.deliver",
            {ATTR_EVENT_TYPE: _describe(item), ATTR_EVENT_COUNT: 1},
        ):
            if isinstance(item, MetricDatum):
                for sink in list(self._sinks):
                    try:
                        await sink.send([item])
                    except Exception as e:
                        self._stats["sink_errors"] += 1
                        logger.error(
                            "Metric sink %s failed for %s: %s",
                            type(sink).__name__,
                            item.name,
                            e,
                            exc_info=True,
                        )

            for handler in list(self._subscribers):
                try:
                    result = handler(item)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    self._stats["subscriber_errors"] += 1
                    logger.error(
                        "Stream subscriber %s failed for %s: %s",
                        getattr(handler, "__qualname__", repr(handler)),
                        _describe(item),
                        e,
                        exc_info=True,
                    )


def _describe(item: Any) -> str:
    if isinstance(item, MetricDatum):
        return item.name
    return getattr(item, "event_type", type(item).__name__)


__all__ = ["MetricEmitter", "StreamItem", "StreamHandler"]
