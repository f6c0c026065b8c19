"""Startup summary, log context and conversion spans."""

import logging

from donaflow.common.config import CommonSettings
from donaflow.common.logging import ContextFilter, order_context, order_id_ctx, trace_id_ctx
from donaflow.common.startup import log_startup_config
from donaflow.common.tracing import conversion_span


def test_startup_summary_redacts_secrets(caplog):
    config = CommonSettings(
        database_url="postgresql://donations:hunter2@db:5432/donations",
        api_key="s3cret",
        conversion_api_token="tok",
        conversion_max_attempts=3,
        sender_max_tries=2,
    )
    caplog.set_level(logging.INFO, logger="donaflow")

    log_startup_config(config, ["database_url", "api_key", "conversion_api_token", "conversion_test_event_code"])

    [record] = [r for r in caplog.records if r.getMessage().startswith("startup_config")]
    message = record.getMessage()
    assert "hunter2" not in message
    assert "postgresql://donations:***@db:5432/donations" in message
    assert "s3cret" not in message and "tok'" not in message
    assert "'conversion_test_event_code': '<unset>'" in message
    assert "'max_outbound_calls_per_log': 6" in message


def test_order_context_tags_records_and_resets():
    record = logging.LogRecord("donaflow", logging.INFO, __file__, 1, "msg", None, None)
    trace_token = trace_id_ctx.set("trace-1")
    try:
        with order_context("000000000001"):
            ContextFilter().filter(record)
            assert order_id_ctx.get() == "000000000001"
    finally:
        trace_id_ctx.reset(trace_token)

    assert record.order_id == "000000000001"
    assert record.trace_id == "trace-1"
    assert order_id_ctx.get() == ""


def test_conversion_span_works_without_a_provider():
    with conversion_span("conversion.send_try", "000000000001", attempt=1) as span:
        span.set_attribute("conversion.error", "boom")
