"""Prometheus metric definitions for the donations service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


donations_created_total = Counter("donations_created_total", "Donation records created", ["service"])
payment_notifications_total = Counter(
    "payment_notifications_total",
    "Payment provider notifications received",
    ["service", "outcome"],
)
conversion_sends_total = Counter(
    "conversion_sends_total",
    "Conversion send invocations by final outcome",
    ["service", "outcome"],
)
conversion_send_tries_total = Counter(
    "conversion_send_tries_total",
    "Outbound HTTP calls made to the conversion endpoint",
    ["service"],
)
conversion_retries_total = Counter(
    "conversion_retries_total",
    "Conversion retries",
    ["service", "source"],
)
sweep_runs_total = Counter("sweep_runs_total", "Retry sweep ticks", ["service", "result"])
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
conversion_pending_total = Gauge(
    "conversion_pending_total",
    "Current count of conversion log rows not yet sent",
    ["service"],
)
conversion_oldest_pending_age_seconds = Gauge(
    "conversion_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending conversion log row",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
