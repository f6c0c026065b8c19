"""Conversion sender: one conversion report per call to the ad platform.

The sender owns the inner retry policy (one immediate redo after a failed
try). The outer, cross-invocation policy belongs to the retry sweeper.
"""

import asyncio

import httpx

from donaflow.common.config import settings
from donaflow.common.logging import logger
from donaflow.common.metrics import conversion_retries_total, conversion_send_tries_total
from donaflow.common.tracing import conversion_span
from donaflow.services.conversions.geo import GeoLocator
from donaflow.services.conversions.schemas import SendResult


class ConversionSender:
    """Posts donation conversions to the configured conversions endpoint."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        geo: GeoLocator | None = None,
        client: httpx.AsyncClient | None = None,
        max_tries: int | None = None,
        backoff_seconds: float | None = None,
        service_name: str = "donations",
    ) -> None:
        self.url = url or settings.conversion_api_url
        self.token = token if token is not None else settings.conversion_api_token
        self.max_tries = max(1, max_tries if max_tries is not None else settings.sender_max_tries)
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.sender_retry_backoff_seconds
        )
        self.service_name = service_name
        self._client = client
        self.geo = geo or GeoLocator(settings.geo_lookup_urls, client=client, timeout=settings.http_timeout_seconds)

    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        return self._client

    def build_payload(self, donation, country: str) -> dict:
        """Conversion body as accepted by the conversions endpoint."""

        payload = {
            "name": donation.donor_name or "",
            "email": donation.donor_email or "",
            "amount": (donation.amount_cents or 0) / 100,
            "currency": donation.currency or settings.currency,
            "receiptId": donation.order_id,
            "eventId": donation.order_id or str(donation.id),
            "fbclid": donation.fbclid or "",
            "fbp": donation.fbp or "",
            "fbc": donation.fbc or "",
            "clientIpAddress": donation.client_ip_address or "",
            "clientUserAgent": donation.client_user_agent or "",
            "orderCompleteUrl": settings.order_complete_url,
            "country": country,
        }
        if settings.conversion_test_event_code:
            payload["testEventCode"] = settings.conversion_test_event_code
        return payload

    async def _post(self, payload: dict) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        conversion_send_tries_total.labels(service=self.service_name).inc()
        resp = await self.client().post(self.url, json=payload, headers=headers)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RuntimeError(f"conversion API error: {resp.status_code} - {resp.text}")
        try:
            body = resp.json()
        except ValueError:
            raise RuntimeError(f"conversion API returned non-JSON acknowledgement: {resp.text[:200]}")
        return body if isinstance(body, dict) else {"result": body}

    async def send(self, donation) -> SendResult:
        """Send one conversion for `donation`; failures come back in the result."""

        country = donation.country or ""
        if not country:
            try:
                country = await self.geo.lookup(donation.client_ip_address)
            except Exception as exc:
                logger.warning("country_lookup_aborted order_id=%s error=%s", donation.order_id, exc)
                country = ""

        payload = self.build_payload(donation, country)
        last_error = "unknown error"
        for attempt in range(1, self.max_tries + 1):
            with conversion_span("conversion.send_try", donation.order_id, attempt=attempt) as span:
                try:
                    body = await self._post(payload)
                except (httpx.HTTPError, RuntimeError) as exc:
                    body = None
                    last_error = str(exc) or exc.__class__.__name__
                    span.set_attribute("conversion.error", last_error)
            if body is None:
                logger.warning(
                    "conversion_try_failed order_id=%s try=%s error=%s",
                    donation.order_id,
                    attempt,
                    last_error,
                )
                if attempt < self.max_tries:
                    conversion_retries_total.labels(service=self.service_name, source="sender").inc()
                    if self.backoff_seconds > 0:
                        await asyncio.sleep(self.backoff_seconds)
                continue
            logger.info("conversion_sent order_id=%s try=%s", donation.order_id, attempt)
            return SendResult(success=True, attempts=attempt, country=country, response=body)

        logger.error("conversion_tries_exhausted order_id=%s tries=%s", donation.order_id, self.max_tries)
        return SendResult(success=False, attempts=self.max_tries, error=last_error, country=country)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        await self.geo.close()
