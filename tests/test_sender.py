"""Conversion sender: payload shape, bounded inner retry, country fallback."""

import asyncio
import json
from types import SimpleNamespace

import httpx

from donaflow.services.conversions.geo import GeoLocator
from donaflow.services.conversions.sender import ConversionSender


def donation(**fields):
    values = {
        "id": 1,
        "order_id": "000000000042",
        "amount_cents": 2550,
        "currency": "EUR",
        "fbclid": "FC1",
        "fbp": "fb.1.1700000000000.1234567890",
        "fbc": "fb.1.1700000000000.FC1",
        "client_ip_address": "203.0.113.7",
        "client_user_agent": "pytest-agent",
        "donor_name": "Ada",
        "donor_email": "ada@example.org",
        "country": "ES",
    }
    values.update(fields)
    return SimpleNamespace(**values)


def make_sender(handler, geo_urls=(), **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ConversionSender(
        url="https://capi.test/events",
        geo=GeoLocator(list(geo_urls), client=client),
        client=client,
        backoff_seconds=0,
        **kwargs,
    )


def test_success_posts_conversion_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"events_received": 1})

    sender = make_sender(handler, token="secret-token", max_tries=2)

    result = asyncio.run(sender.send(donation()))

    assert result.success is True
    assert result.attempts == 1
    assert result.response == {"events_received": 1}
    [request] = seen
    body = json.loads(request.content)
    assert request.headers["authorization"] == "Bearer secret-token"
    assert body["amount"] == 25.5
    assert body["receiptId"] == "000000000042"
    assert body["name"] == "Ada"
    assert body["email"] == "ada@example.org"
    assert body["fbclid"] == "FC1"
    assert body["fbc"] == "fb.1.1700000000000.FC1"
    assert body["country"] == "ES"
    assert body["orderCompleteUrl"]


def test_one_immediate_retry_then_success():
    responses = iter([httpx.Response(502, text="bad gateway"), httpx.Response(200, json={"ok": True})])
    sender = make_sender(lambda request: next(responses), token="", max_tries=2)

    result = asyncio.run(sender.send(donation()))

    assert result.success is True
    assert result.attempts == 2


def test_failure_after_bounded_tries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, text="invalid parameter")

    sender = make_sender(handler, token="", max_tries=2)

    result = asyncio.run(sender.send(donation()))

    assert result.success is False
    assert result.attempts == 2
    assert len(calls) == 2
    assert "400" in result.error
    assert "invalid parameter" in result.error


def test_transport_errors_are_captured():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    sender = make_sender(handler, token="", max_tries=2)

    result = asyncio.run(sender.send(donation()))

    assert result.success is False
    assert "connection refused" in result.error


def test_non_json_acknowledgement_is_a_failure():
    sender = make_sender(lambda request: httpx.Response(200, text="<html>ok</html>"), token="", max_tries=1)

    result = asyncio.run(sender.send(donation()))

    assert result.success is False
    assert result.attempts == 1


def test_country_lookup_failure_still_sends():
    bodies = []

    def handler(request):
        if request.url.host == "geo.test":
            return httpx.Response(500, text="geo down")
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    sender = make_sender(handler, geo_urls=["https://geo.test/{ip}"], token="", max_tries=2)

    result = asyncio.run(sender.send(donation(country=None)))

    assert result.success is True
    assert result.country == ""
    assert bodies[0]["country"] == ""


def test_country_is_resolved_when_missing():
    def handler(request):
        if request.url.host == "geo.test":
            return httpx.Response(200, json={"country_code": "pt"})
        return httpx.Response(200, json={"ok": True})

    sender = make_sender(handler, geo_urls=["https://geo.test/{ip}"], token="", max_tries=1)

    result = asyncio.run(sender.send(donation(country=None)))

    assert result.country == "PT"


def test_donor_country_skips_ip_lookup():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return httpx.Response(200, json={"ok": True})

    sender = make_sender(handler, geo_urls=["https://geo.test/{ip}"], token="", max_tries=1)

    result = asyncio.run(sender.send(donation(country="ES")))

    assert result.country == "ES"
    assert hosts == ["capi.test"]
