"""OpenTelemetry setup (optional; enabled through create_app(otel_enabled=True)).

Installs SDK tracer/meter providers and a logging filter that stamps the
current trace/span ids onto log records, which JSONFormatter then emits as
trace_id / span_id.
"""

import logging
from typing import Any, Optional

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor


class TraceContextLogFilter(logging.Filter):
    """Copy the active span's ids onto every record (otelTraceID / otelSpanID)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            record.otelTraceID = f"{ctx.trace_id:032x}"
            record.otelSpanID = f"{ctx.span_id:016x}"
        return True


def init_otel(
    service_name: str = "dealcore-api",
    span_exporter: Optional[Any] = None,
    metric_reader: Optional[Any] = None,
    log_correlation: bool = True,
) -> None:
    """Install global tracer and meter providers.

    Args:
        service_name: service.name resource attribute
        span_exporter: exporter for finished spans (tests pass an in-memory one)
        metric_reader: metric reader (tests pass an in-memory one)
        log_correlation: attach TraceContextLogFilter to root handlers
    """
    resource = Resource.create({"service.name": service_name})

    tracer_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    readers = [metric_reader] if metric_reader is not None else []
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    if log_correlation:
        for handler in logging.getLogger().handlers:
            if not any(isinstance(f, TraceContextLogFilter) for f in handler.filters):
                handler.addFilter(TraceContextLogFilter())
