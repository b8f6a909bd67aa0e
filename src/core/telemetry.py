"""OpenTelemetry setup and the best-effort telemetry sink used by the webhook pipeline.

Spans, counters and duration histograms are exported over OTLP/HTTP to the
configured collector (Axiom accepts OTLP directly). When no endpoint or token
is configured the global no-op providers stay installed and every recording
is silent.

Nothing in this module may change the outcome of a request: every call made
through ``TelemetrySink`` swallows its own failures and reports them to the
local logger at debug level.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import context as context_api
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from src.core.config import Settings

logger = logging.getLogger(__name__)

_INSTRUMENTATION_NAME = "taskmind.webhooks"

# Installed SDK providers, kept so shutdown can flush them.
_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None


def init_telemetry(settings: Settings) -> bool:
    """Install OTLP/HTTP trace and metric exporters for this process.

    Safe to call more than once; only the first call with telemetry enabled
    installs providers.

    Args:
        settings: Application settings with the telemetry endpoint and credentials.

    Returns:
        bool: True if exporting providers are installed.
    """
    global _tracer_provider, _meter_provider

    if not settings.telemetry_enabled:
        logger.info("TELEMETRY_ENDPOINT or TELEMETRY_TOKEN not set, using no-op telemetry")
        return False

    if _tracer_provider is not None:
        logger.debug("Telemetry already initialized; reusing existing providers")
        return True

    # Import exporters only when needed
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    endpoint = settings.telemetry_endpoint.rstrip("/")
    headers = settings.telemetry_headers
    resource = Resource.create(
        {
            "service.name": settings.telemetry_service_name,
            "service.version": "0.1.0",
            "deployment.environment": settings.app_env,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces", headers=headers))
    )
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics", headers=headers)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)

    _tracer_provider = tracer_provider
    _meter_provider = meter_provider
    logger.info("Telemetry initialized: endpoint=%s dataset=%s", endpoint, settings.telemetry_dataset)
    return True


def shutdown_telemetry() -> None:
    """Flush and shut down any providers installed by init_telemetry."""
    global _tracer_provider, _meter_provider

    for provider in (_tracer_provider, _meter_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as e:
            logger.warning("Telemetry shutdown failed: %s", e)

    _tracer_provider = None
    _meter_provider = None


def _clean_attributes(attributes: dict[str, Any]) -> dict[str, str | bool | int | float]:
    """Drop None values and stringify anything OTel cannot carry as an attribute."""
    cleaned: dict[str, str | bool | int | float] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


class TelemetrySink:
    """Fire-and-forget recorder for webhook phases.

    Context manager usage::

        with sink.span("verify_webhook", request_id=request_id):
            ...

    Exceptions raised by the wrapped block are recorded on the span and
    re-raised unchanged. Exceptions raised by the telemetry machinery itself
    are swallowed.
    """

    def __init__(
        self,
        tracer: trace.Tracer | None = None,
        meter: metrics.Meter | None = None,
    ) -> None:
        self._tracer = tracer or trace.get_tracer(_INSTRUMENTATION_NAME)
        meter = meter or metrics.get_meter(_INSTRUMENTATION_NAME)
        self._events = meter.create_counter(
            "webhook.events",
            unit="1",
            description="Webhook processing milestones, labelled by metric name",
        )
        self._durations = meter.create_histogram(
            "webhook.operation.duration",
            unit="ms",
            description="Duration of each webhook processing phase",
        )

    def _safe(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            logger.debug("Telemetry call %s failed: %s", getattr(fn, "__name__", fn), e)
            return None

    def metric(self, name: str, value: int = 1, **attributes: Any) -> None:
        """Increment the webhook event counter for ``name``."""
        self._safe(self._events.add, value, _clean_attributes({"metric": name, **attributes}))

    def performance(self, operation: str, duration_ms: float, **attributes: Any) -> None:
        """Record how long a phase took."""
        self._safe(
            self._durations.record,
            duration_ms,
            _clean_attributes({"operation": operation, **attributes}),
        )

    def event(self, message: str, **attributes: Any) -> None:
        """Attach a named event to the current span."""
        self._safe(self._add_event, message, _clean_attributes(attributes))

    @staticmethod
    def _add_event(message: str, attributes: dict[str, Any]) -> None:
        trace.get_current_span().add_event(message, attributes)

    @contextmanager
    def span(self, name: str, **attributes: Any) -> Iterator[trace.Span]:
        """Open a span for one processing phase and time it."""
        span = self._safe(self._tracer.start_span, name, attributes=_clean_attributes(attributes))
        if span is None:
            span = trace.INVALID_SPAN
        token = self._safe(context_api.attach, trace.set_span_in_context(span))
        start = time.perf_counter()
        status = "success"

        try:
            yield span
        except Exception as exc:
            status = "error"
            self._safe(span.set_status, trace.Status(trace.StatusCode.ERROR, str(exc)))
            self._safe(span.record_exception, exc)
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.performance(name, duration_ms, status=status)
            self._safe(span.end)
            if token is not None:
                self._safe(context_api.detach, token)
