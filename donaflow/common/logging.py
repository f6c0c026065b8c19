"""JSON logs on stdout, tagged with the request trace id and donation order id."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from donaflow.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
order_id_ctx: ContextVar[str] = ContextVar("order_id", default="")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.order_id = order_id_ctx.get()
        return True


@contextmanager
def order_context(order_id: str | None):
    """Tag every log line emitted inside the block with `order_id`."""

    token = order_id_ctx.set(order_id or "")
    try:
        yield
    finally:
        order_id_ctx.reset(token)


def configure_logging() -> None:
    """Route everything through one JSON stdout handler; safe to call twice."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(order_id)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # httpx logs every request at INFO, including geolocation lookups with donor IPs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger("donaflow")
