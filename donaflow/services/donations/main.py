"""HTTP surface for donations, payment notifications and the retry sweeper lifecycle."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse

from donaflow.common.config import settings
from donaflow.common.db import Base, SessionLocal, engine
from donaflow.common.logging import configure_logging, logger, trace_id_ctx
from donaflow.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from donaflow.common.startup import log_startup_config
from donaflow.common.tracing import instrument_app, setup_tracing
from donaflow.services.conversions.sender import ConversionSender
from donaflow.services.conversions.service import ConversionService
from donaflow.services.conversions.sweeper import RetrySweeper
from donaflow.services.donations.schemas import (
    ConversionLogResponse,
    DonationCreateRequest,
    DonationCreateResponse,
    DonationStatusResponse,
    LatestEventIdResponse,
)
from donaflow.services.donations.service import DonationService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "database_url",
        "api_key",
        "conversion_api_url",
        "conversion_api_token",
        "geo_lookup_urls",
        "conversion_max_attempts",
        "conversion_cooldown_seconds",
        "sweep_interval_seconds",
        "otel_enabled",
    ],
)
sender = ConversionSender(service_name=settings.service_name)
conversions = ConversionService(SessionLocal, sender=sender, service_name=settings.service_name)
sweeper = RetrySweeper(conversions)
donations = DonationService(SessionLocal, conversions, service_name=settings.service_name)


def get_donation_service() -> DonationService:
    return donations


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the retry sweeper with the application lifecycle."""

    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    sweeper.start()
    yield
    await sweeper.stop()
    await sender.close()


app = FastAPI(title="Donations", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_token = trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        trace_id_ctx.reset(trace_token)
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the peer address."""

    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if not settings.api_key or x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@app.post("/create-donation", response_model=DonationCreateResponse)
@app.post("/create-payment-intent", response_model=DonationCreateResponse)
def create_donation(
    req: DonationCreateRequest,
    request: Request,
    service: DonationService = Depends(get_donation_service),
):
    """Store the donor's attribution data and return the new order id."""

    try:
        donation = service.create_donation(req, client_ip(request), request.headers.get("user-agent", ""))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DonationCreateResponse(orderId=donation.order_id, amountCents=donation.amount_cents)


@app.post("/redsys-notification", response_class=PlainTextResponse)
async def payment_notification(request: Request, service: DonationService = Depends(get_donation_service)):
    """Payment provider callback; always acknowledged with `OK`."""

    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            body = await request.json()
        else:
            body = dict(await request.form())
    except Exception as exc:
        logger.warning("payment_notification_unreadable error=%s", exc)
        return "OK"
    if not isinstance(body, dict):
        logger.warning("payment_notification_unreadable error=body is not an object")
        return "OK"
    outcome = await service.handle_notification(body)
    logger.info("payment_notification_handled outcome=%s", outcome)
    return "OK"


@app.get("/donations/{order_id}", response_model=DonationStatusResponse)
def get_donation(order_id: str, service: DonationService = Depends(get_donation_service)):
    """Fetch conversion status for one order."""

    donation = service.get_donation(order_id)
    if donation is None:
        raise HTTPException(status_code=404, detail="donation not found")
    return DonationStatusResponse(
        orderId=donation.order_id,
        amountCents=donation.amount_cents,
        conversionSent=donation.conversion_sent,
    )


@app.get("/check-event-status")
def check_event_status(event_id: str, service: DonationService = Depends(get_donation_service)):
    """Tell the browser whether the server already reported this conversion."""

    donation = service.find_by_event_id(event_id)
    return {"sent": bool(donation and donation.conversion_sent)}


@app.get("/get-latest-event-id", response_model=LatestEventIdResponse)
def get_latest_event_id(email: str = "", service: DonationService = Depends(get_donation_service)):
    """Let the checkout page reuse the event id of the donor's previous donation."""

    if not email.strip():
        return LatestEventIdResponse()
    return LatestEventIdResponse(event_id=service.latest_event_id(email))


@app.get("/get-fbclid")
def get_fbclid(request: Request):
    return {"fbclid": request.cookies.get("fbclid", "")}


@app.get("/admin/conversion-logs", response_model=list[ConversionLogResponse])
def list_conversion_logs(
    status: str | None = None,
    limit: int = 100,
    x_api_key: str | None = Header(default=None),
    service: DonationService = Depends(get_donation_service),
):
    """Attempt-log rows, newest first, optionally filtered by status."""

    enforce_api_key(x_api_key)
    rows = service.list_conversion_logs(status=status, limit=min(max(limit, 1), 500))
    return [
        ConversionLogResponse(
            id=row.id,
            donation_id=row.donation_id,
            status=row.status,
            attempts=row.attempts,
            last_attempt=row.last_attempt,
            error=row.error,
        )
        for row in rows
    ]


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
