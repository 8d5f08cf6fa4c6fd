"""OpenTelemetry bootstrap: tracing initialisation and helpers.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing is
enabled via ``TracingConfig``.  When disabled the module is a graceful no-op
and ``tracer`` hands out non-recording spans.

The httpx instrumentation is wired here because the OpenAI SDK (the usual
provider behind scheduler tasks) talks over httpx, so every provider call
shows up as a child of the ``scheduler.execute`` span.

Usage::

    from chatgate.infra.telemetry import SPAN_SCHEDULER_EXECUTE, tracer

    with tracer.start_as_current_span(SPAN_SCHEDULER_EXECUTE) as span:
        span.set_attribute(ATTR_SCHEDULER_PRIORITY, item.priority)
        ...
"""

from __future__ import annotations

import base64
import logging

from opentelemetry import trace
from opentelemetry.trace import format_trace_id

from chatgate.configs.system import TracingConfig

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("chatgate")

# ---------------------------------------------------------------------------
# Span names: single source of truth for all custom spans
# ---------------------------------------------------------------------------

SPAN_ADMISSION_CLASSIFY = "admission.classify"
SPAN_DEBOUNCE_FLUSH = "debounce.flush"
SPAN_RATE_WINDOW_RESERVE = "rate_window.reserve"
SPAN_SCHEDULER_EXECUTE = "scheduler.execute"
SPAN_OUTBOUND_DELIVER = "outbound.deliver"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_ADMISSION_VERDICT = "admission.verdict"
ATTR_ADMISSION_REASON = "admission.reason"

ATTR_DEBOUNCE_MESSAGE_COUNT = "debounce.message_count"

ATTR_RATE_WINDOW_WAIT = "rate_window.wait_seconds"
ATTR_RATE_WINDOW_INPUT_TOKENS = "rate_window.input_tokens"
ATTR_RATE_WINDOW_OUTPUT_TOKENS = "rate_window.output_tokens"

ATTR_SCHEDULER_PRIORITY = "scheduler.priority"
ATTR_SCHEDULER_ATTEMPT = "scheduler.attempt"
ATTR_SCHEDULER_DESCRIPTION = "scheduler.description"
ATTR_SCHEDULER_OUTCOME = "scheduler.outcome"

ATTR_OUTBOUND_ALLOWED = "outbound.allowed"


def init_telemetry(settings: TracingConfig | None = None) -> None:
    """Initialise the OTEL ``TracerProvider`` and httpx instrumentation.

    Parameters
    ----------
    settings:
        Tracing configuration.  When ``None`` or ``enabled`` is
        ``False``, this function is a no-op.
    """
    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return

    if not settings.endpoint:
        logger.warning(
            "Tracing enabled but no endpoint configured: "
            "skipping OpenTelemetry setup."
        )
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})

    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)

    headers: dict[str, str] = {}
    if settings.username and settings.password:
        credentials = f"{settings.username}:{settings.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        headers["Authorization"] = f"Basic {encoded}"

    exporter = OTLPSpanExporter(
        endpoint=settings.endpoint,
        headers=headers,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()

    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )


def get_current_trace_id() -> str | None:
    """Return the active OTEL trace ID as a 32-char hex string, or ``None``.

    Returns ``None`` when:
    - OTEL is not enabled, or
    - there is no active span, or
    - the span carries the invalid (all-zero) trace ID.
    """
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format_trace_id(ctx.trace_id)
