"""
Unit tests for the tracer implementations.
"""

from unittest.mock import MagicMock, patch

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from cutover.observability import (
    ATTR_RUN_ID,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanRecord,
    Tracer,
    create_tracer,
)


class TestNullTracer:
    def test_span_yields_none(self) -> None:
        tracer = NullTracer()

        with tracer.span("cutover.test", {ATTR_RUN_ID: "abc"}) as span:
            assert span is None

        assert tracer.enabled is False
        assert isinstance(tracer, Tracer)


class TestMockTracer:
    def test_records_spans(self) -> None:
        tracer = MockTracer()

        with tracer.span("first", {"key": "value"}):
            pass
        with tracer.span("second"):
            pass

        assert tracer.spans == [("first", {"key": "value"}), ("second", None)]
        assert tracer.span_names == ["first", "second"]
        assert tracer.enabled is True

        tracer.clear()
        assert tracer.spans == []

    def test_named(self) -> None:
        tracer = MockTracer()

        with tracer.span("cutover.orchestrator.pause", {ATTR_RUN_ID: "a"}):
            pass
        with tracer.span("cutover.orchestrator.resume"):
            pass
        with tracer.span("cutover.orchestrator.pause", {ATTR_RUN_ID: "b"}):
            pass

        records = tracer.named("cutover.orchestrator.pause")
        assert [r.attributes[ATTR_RUN_ID] for r in records] == ["a", "b"]
        assert records[0] == SpanRecord("cutover.orchestrator.pause", {ATTR_RUN_ID: "a"})


class TestOpenTelemetryTracer:
    def test_delegates_to_opentelemetry(self) -> None:
        otel_tracer = MagicMock()
        with patch("cutover.observability.tracer.trace.get_tracer", return_value=otel_tracer):
            tracer = OpenTelemetryTracer("cutover.test")

        tracer.span("cutover.orchestrator.start", {ATTR_RUN_ID: "abc"})

        otel_tracer.start_as_current_span.assert_called_once_with(
            "cutover.orchestrator.start", attributes={ATTR_RUN_ID: "abc"}
        )
        assert tracer.enabled is True

    def test_exports_to_given_provider(self) -> None:
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        tracer = OpenTelemetryTracer("cutover.test", tracer_provider=provider)

        with tracer.span("cutover.alerts.evaluate", {ATTR_RUN_ID: "abc"}):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "cutover.alerts.evaluate"
        assert span.attributes[ATTR_RUN_ID] == "abc"

    def test_span_without_provider_is_usable(self) -> None:
        tracer = OpenTelemetryTracer("cutover.test")

        with tracer.span("cutover.test.noop") as span:
            assert span is not None


class TestCreateTracer:
    def test_enabled(self) -> None:
        assert isinstance(create_tracer("cutover.test", enable_tracing=True), OpenTelemetryTracer)

    def test_disabled(self) -> None:
        assert isinstance(create_tracer("cutover.test", enable_tracing=False), NullTracer)
