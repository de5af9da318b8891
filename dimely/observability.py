"""
OpenTelemetry tracing and metrics for the billing engine.

With OTEL_ENABLED=false everything is a no-op; with an
OTEL_EXPORTER_OTLP_ENDPOINT set, spans and metrics are exported over OTLP/HTTP.
"""
import os
import time
import functools
from typing import Optional, Dict, Any, Callable, Iterable
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.trace import Status, StatusCode

SERVICE_VERSION = "0.1.0"

_tracer: Optional[trace.Tracer] = None
_metrics_collector: Optional['MetricsCollector'] = None


def initialize_observability() -> None:
    """Set up the tracer and metrics collector once per process."""
    global _tracer, _metrics_collector

    if _tracer is not None:
        return

    if os.getenv("OTEL_ENABLED", "true").lower() != "true":
        _tracer = trace.NoOpTracer()
        _metrics_collector = MetricsCollector(metrics.NoOpMeter(__name__))
        return

    resource = Resource.create({
        "service.name": os.getenv("OTEL_SERVICE_NAME", "dimely-billing-engine"),
        "service.version": SERVICE_VERSION,
        "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development"),
    })
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")

    trace_provider = TracerProvider(resource=resource)
    metric_readers = []
    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(
            endpoint=f"{otlp_endpoint}/v1/traces",
            headers=_parse_otlp_headers("OTEL_EXPORTER_OTLP_TRACES_HEADERS"),
        )))
        metric_readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(
                endpoint=f"{otlp_endpoint}/v1/metrics",
                headers=_parse_otlp_headers("OTEL_EXPORTER_OTLP_METRICS_HEADERS"),
            ),
            export_interval_millis=int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")),
        ))

    trace.set_tracer_provider(trace_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))

    _tracer = trace.get_tracer(__name__)
    _metrics_collector = MetricsCollector(metrics.get_meter(__name__))


def _parse_otlp_headers(env_var_name: str) -> Dict[str, str]:
    """Parse `key=value,key2=value2` header lists."""
    headers = {}
    for header in os.getenv(env_var_name, "").split(","):
        if "=" in header:
            key, value = header.split("=", 1)
            headers[key.strip()] = value.strip()
    return headers


def get_tracer() -> trace.Tracer:
    if _tracer is None:
        initialize_observability()
    return _tracer


def get_metrics_collector() -> 'MetricsCollector':
    if _metrics_collector is None:
        initialize_observability()
    return _metrics_collector


def trace_function(
    span_name: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None
) -> Callable:
    """
    Run the decorated function inside a span, recording duration and errors.

    Usage:
        @trace_function(span_name="recurly.subscriptions.create", attributes={"operation": "create"})
        def create_subscription(self, account_code, spec):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            name = span_name or f"{func.__module__}.{func.__name__}"

            with get_tracer().start_as_current_span(name) as span:
                for key, value in (attributes or {}).items():
                    span.set_attribute(key, value)
                span.set_attribute("function.name", func.__name__)

                start_time = time.time()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("duration_ms", (time.time() - start_time) * 1000)
                    span.set_attribute("error.type", type(e).__name__)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise
                span.set_attribute("duration_ms", (time.time() - start_time) * 1000)
                span.set_status(Status(StatusCode.OK))
                return result

        return wrapper
    return decorator


class MetricsCollector:
    """Counters and histograms for opportunities, actions, rollbacks and Recurly calls."""

    def __init__(self, meter: metrics.Meter):
        self.opportunities_total = meter.create_counter(
            name="opportunities_total",
            description="Total number of opportunities processed",
            unit="1"
        )
        self.opportunity_duration = meter.create_histogram(
            name="opportunity_duration_ms",
            description="Opportunity processing duration in milliseconds",
            unit="ms"
        )
        self.actions_total = meter.create_counter(
            name="billing_actions_total",
            description="Total number of billing actions generated",
            unit="1"
        )
        self.rollbacks_total = meter.create_counter(
            name="rollbacks_total",
            description="Total number of compensation sequences started",
            unit="1"
        )

        # Provider metrics
        self.provider_calls_total = meter.create_counter(
            name="provider_calls_total",
            description="Total number of Recurly API calls",
            unit="1"
        )
        self.provider_call_duration = meter.create_histogram(
            name="provider_call_duration_ms",
            description="Recurly API call duration in milliseconds",
            unit="ms"
        )
        self.provider_errors_total = meter.create_counter(
            name="provider_errors_total",
            description="Total number of Recurly API errors",
            unit="1"
        )

    def record_opportunity(self, order_type: str, duration_ms: float, success: bool = True) -> None:
        attributes = {"order_type": order_type, "success": str(success)}
        self.opportunities_total.add(1, attributes)
        self.opportunity_duration.record(duration_ms, attributes)

    def record_actions(self, order_type: str, actions: Iterable) -> None:
        """Count emitted actions by type and risk level."""
        for action in actions:
            self.actions_total.add(1, {
                "order_type": order_type,
                "action_type": action.type.value,
                "risk_level": action.risk_level.value,
            })

    def record_rollback(self, order_type: str) -> None:
        self.rollbacks_total.add(1, {"order_type": order_type})

    def record_provider_call(self, operation: str, duration_ms: float, success: bool = True) -> None:
        attributes = {"operation": operation, "success": str(success)}
        self.provider_calls_total.add(1, attributes)
        self.provider_call_duration.record(duration_ms, attributes)

    def record_provider_error(self, operation: str, error_type: str = "unknown") -> None:
        self.provider_errors_total.add(1, {"operation": operation, "error_type": error_type})
