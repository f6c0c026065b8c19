"""OpenTelemetry wiring: request spans for the app, send spans for conversions.

Both are inert until `OTEL_ENABLED` is set; spans then go to the OTLP HTTP
endpoint under the service name.
"""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from donaflow.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Register an OTLP-exporting tracer provider when tracing is enabled."""

    if not settings.otel_enabled:
        return
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)


@contextmanager
def conversion_span(name: str, order_id: str, **attributes):
    """Span around one outbound conversion step, tagged with the order id.

    Falls back to the API's no-op tracer when no provider was registered.
    """

    tracer = trace.get_tracer("donaflow.conversions")
    span_attributes = {"donation.order_id": order_id or ""}
    span_attributes.update({f"conversion.{key}": value for key, value in attributes.items()})
    with tracer.start_as_current_span(name, attributes=span_attributes) as span:
        yield span
