"""
Tracers for the orchestrator, emitter and alert evaluator.

Each component receives a Tracer instead of importing OpenTelemetry
itself. Production code gets an OpenTelemetryTracer, tracing can be
switched off per component with enable_tracing=False, and tests pass a
MockTracer to assert on the spans a transition opened.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("cutover.orchestrator.pause", {ATTR_RUN_ID: str(run_id)}):
    ...     ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span, TracerProvider

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Creates spans around cutover operations."""

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span for the duration of the with-block.

        Args:
            name: Span name, ``cutover.<component>.<operation>``
            attributes: Attributes from cutover.observability.attributes

        Returns:
            Context manager yielding the active span, or None when the
            tracer does not record
        """
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans are actually recorded."""
        ...


class NullTracer:
    """Tracer used when tracing is disabled. Every span is a no-op."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the OpenTelemetry API.

    Spans go to the given provider, or to the process-wide one. With no
    SDK installed the API hands out non-recording spans, so the tracer is
    always safe to use.

    Args:
        tracer_name: Instrumentation scope (usually the module __name__)
        tracer_provider: Provider to use instead of the global one
    """

    def __init__(
        self,
        tracer_name: str,
        tracer_provider: TracerProvider | None = None,
    ) -> None:
        self._tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class SpanRecord(NamedTuple):
    """A span opened on a MockTracer."""

    name: str
    attributes: SpanAttributes | None


class MockTracer:
    """
    Tracer for tests. Records every span instead of exporting it.

    Example:
        >>> tracer = MockTracer()
        >>> orchestrator = RunOrchestrator(registry, emitter, tracer=tracer)
        >>> await orchestrator.start()
        >>> tracer.span_names
        ['cutover.orchestrator.start']
    """

    def __init__(self) -> None:
        self.spans: list[SpanRecord] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        self.spans.append(SpanRecord(name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [record.name for record in self.spans]

    def named(self, name: str) -> list[SpanRecord]:
        """Recorded spans with the given name, oldest first."""
        return [record for record in self.spans if record.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Components call this from their constructor when no tracer was
    injected:

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
    """
    return OpenTelemetryTracer(name) if enable_tracing else NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanRecord",
    "MockTracer",
    "create_tracer",
]
