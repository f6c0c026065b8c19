"""HTTP surface: donation intake, provider notifications, status endpoints."""

import base64
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from donaflow.common.config import settings
from donaflow.services.conversions.models import ConversionLog
from donaflow.services.conversions.service import ConversionService
from donaflow.services.donations import main
from donaflow.services.donations.models import Donation, PaymentFailure
from donaflow.services.donations.service import DonationService

from conftest import FakeSender


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def client(session_factory, sender, clock):
    conversions = ConversionService(session_factory, sender=sender, clock=clock)
    service = DonationService(session_factory, conversions)
    main.app.dependency_overrides[main.get_donation_service] = lambda: service
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def merchant_parameters(**params) -> str:
    return base64.b64encode(json.dumps(params).encode("utf-8")).decode("ascii")


def notify(client, **params):
    return client.post(
        "/redsys-notification",
        data={
            "Ds_SignatureVersion": "HMAC_SHA256_V1",
            "Ds_MerchantParameters": merchant_parameters(**params),
            "Ds_Signature": "unused",
        },
    )


def donation_by_order(session_factory, order_id):
    with session_factory() as db:
        return db.execute(select(Donation).where(Donation.order_id == order_id)).scalar_one()


def test_create_donation_stores_client_data(client, session_factory):
    resp = client.post(
        "/create-donation",
        json={"amount": 10, "fbclid": "FC1", "email": "ada@example.org"},
        headers={"x-forwarded-for": "198.51.100.4, 10.0.0.1", "user-agent": "Mozilla/5.0"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["amountCents"] == 1000
    assert len(body["orderId"]) == 12 and body["orderId"].isdigit()
    donation = donation_by_order(session_factory, body["orderId"])
    assert donation.client_ip_address == "198.51.100.4"
    assert donation.client_user_agent == "Mozilla/5.0"
    assert donation.fbclid == "FC1"
    assert donation.fbp is None
    assert donation.donor_email == "ada@example.org"
    assert donation.conversion_sent is False


def test_payment_intent_alias(client):
    resp = client.post("/create-payment-intent", json={"amount": 5.5})

    assert resp.status_code == 200
    assert resp.json()["amountCents"] == 550


@pytest.mark.parametrize("amount,status", [(0, 422), (-3, 422), (0.001, 400)])
def test_create_donation_rejects_bad_amounts(client, amount, status):
    resp = client.post("/create-donation", json={"amount": amount})

    assert resp.status_code == status


def test_successful_notification_sends_conversion(client, session_factory, sender, make_donation):
    make_donation("000000000001", fbclid="FC1")

    resp = notify(client, Ds_Order="000000000001", Ds_Amount="1200", Ds_Response="0000")

    assert resp.status_code == 200
    assert resp.text == "OK"
    donation = donation_by_order(session_factory, "000000000001")
    assert donation.conversion_sent is True
    assert donation.amount_cents == 1200
    assert donation.fbc.endswith(".FC1")
    assert sender.calls == ["000000000001"]
    with session_factory() as db:
        [log] = db.execute(select(ConversionLog)).scalars().all()
    assert log.status == "sent"
    assert log.raw_payload["Ds_Order"] == "000000000001"


def test_duplicate_notification_does_not_resend(client, sender, make_donation):
    make_donation("000000000001")

    notify(client, Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0000")
    notify(client, Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0000")

    assert sender.calls == ["000000000001"]


def test_attribution_echoed_in_merchant_data_is_backfilled(client, session_factory, make_donation):
    make_donation("000000000001")

    notify(
        client,
        Ds_Order="000000000001",
        Ds_Amount="1000",
        Ds_Response="0099",
        Ds_MerchantData=json.dumps({"fbclid": "FROMPAY"}),
    )

    donation = donation_by_order(session_factory, "000000000001")
    assert donation.fbclid == "FROMPAY"
    assert donation.fbc.endswith(".FROMPAY")


def test_failed_payment_is_recorded_without_conversion(client, session_factory, sender, make_donation):
    make_donation("000000000001")

    resp = notify(client, Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0190")

    assert resp.text == "OK"
    assert sender.calls == []
    with session_factory() as db:
        [failure] = db.execute(select(PaymentFailure)).scalars().all()
    assert failure.order_id == "000000000001"
    assert failure.amount_cents == 1000
    assert donation_by_order(session_factory, "000000000001").conversion_sent is False


def test_conversion_failure_still_acknowledges(client, session_factory, sender, make_donation):
    make_donation("000000000001")
    sender.results = [False]

    resp = notify(client, Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0000")

    assert resp.status_code == 200
    assert resp.text == "OK"
    with session_factory() as db:
        [log] = db.execute(select(ConversionLog)).scalars().all()
    assert log.status == "pending"
    assert log.attempts == 1
    assert log.error


def test_sender_crash_still_acknowledges(client, make_donation, sender):
    make_donation("000000000001")

    async def explode(donation):
        raise RuntimeError("unexpected")

    sender.send = explode

    resp = notify(client, Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0000")

    assert resp.status_code == 200
    assert resp.text == "OK"


@pytest.mark.parametrize(
    "data",
    [
        {"Ds_MerchantParameters": "%%%not-base64%%%"},
        {"Ds_Order": "does-not-exist", "Ds_Response": "0000"},
        {},
    ],
)
def test_odd_notifications_are_acknowledged(client, sender, data):
    resp = client.post("/redsys-notification", data=data)

    assert resp.status_code == 200
    assert resp.text == "OK"
    assert sender.calls == []


def test_json_notification_body(client, sender, make_donation):
    make_donation("000000000001")

    resp = client.post(
        "/redsys-notification",
        json={
            "Ds_MerchantParameters": merchant_parameters(Ds_Order="000000000001", Ds_Amount="1000", Ds_Response="0"),
        },
    )

    assert resp.text == "OK"
    assert sender.calls == ["000000000001"]


def test_donation_status_and_event_status(client, make_donation):
    make_donation("000000000001", conversion_sent=True)

    status = client.get("/donations/000000000001")
    sent = client.get("/check-event-status", params={"event_id": "000000000001"})
    unknown = client.get("/check-event-status", params={"event_id": "nope"})

    assert status.json() == {"orderId": "000000000001", "amountCents": 1000, "conversionSent": True}
    assert sent.json() == {"sent": True}
    assert unknown.json() == {"sent": False}
    assert client.get("/donations/nope").status_code == 404


def test_get_fbclid_reads_cookie(client):
    client.cookies.set("fbclid", "FC9")

    assert client.get("/get-fbclid").json() == {"fbclid": "FC9"}


def test_admin_conversion_logs_require_api_key(client, monkeypatch, make_donation, make_log):
    monkeypatch.setattr(settings, "api_key", "s3cret")
    make_log(make_donation("000000000001"), attempts=3, status="failed", error="boom")

    denied = client.get("/admin/conversion-logs")
    allowed = client.get("/admin/conversion-logs", params={"status": "failed"}, headers={"x-api-key": "s3cret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    [row] = allowed.json()
    assert row["status"] == "failed"
    assert row["attempts"] == 3
    assert row["error"] == "boom"


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


@pytest.mark.parametrize("as_json", [False, True])
def test_unencoded_notification_fields_are_not_trusted(client, session_factory, sender, make_donation, as_json):
    make_donation("000000000001")
    fields = {"Ds_Order": "000000000001", "Ds_Amount": "1000", "Ds_Response": "0"}

    resp = client.post("/redsys-notification", **({"json": fields} if as_json else {"data": fields}))

    assert resp.text == "OK"
    assert sender.calls == []
    assert donation_by_order(session_factory, "000000000001").conversion_sent is False


CHECKOUT_FORM = {
    "donationAmount": 25,
    "email": "ada@example.org",
    "firstName": "Ada",
    "lastName": "Lovelace",
    "cardName": "A LOVELACE",
    "country": "es",
    "postalCode": "28001",
    "event_id": "event_1767268800000_K3J9XQ2PL",
}


def test_payment_intent_accepts_checkout_form(client, session_factory, sender):
    resp = client.post("/create-payment-intent", json=CHECKOUT_FORM)

    assert resp.status_code == 200
    order_id = resp.json()["orderId"]
    assert resp.json()["amountCents"] == 2500
    donation = donation_by_order(session_factory, order_id)
    assert donation.donor_name == "Ada Lovelace"
    assert donation.donor_email == "ada@example.org"
    assert donation.country == "ES"
    assert donation.event_id == "event_1767268800000_K3J9XQ2PL"

    before = client.get("/check-event-status", params={"event_id": CHECKOUT_FORM["event_id"]})
    notify(client, Ds_Order=order_id, Ds_Amount="2500", Ds_Response="0000")
    after = client.get("/check-event-status", params={"event_id": CHECKOUT_FORM["event_id"]})

    assert before.json() == {"sent": False}
    assert after.json() == {"sent": True}
    assert sender.calls == [order_id]


def test_card_name_used_when_name_fields_missing(client, session_factory):
    body = {"donationAmount": 5, "cardName": "A LOVELACE", "country": "Spain"}

    order_id = client.post("/create-payment-intent", json=body).json()["orderId"]

    donation = donation_by_order(session_factory, order_id)
    assert donation.donor_name == "A LOVELACE"
    assert donation.country is None


def test_latest_event_id_for_email(client, session_factory, make_donation):
    make_donation("000000000001", donor_email="ada@example.org", event_id="event_old")
    make_donation("000000000002", donor_email="ada@example.org", event_id="event_new")
    make_donation("000000000003", donor_email="ada@example.org")
    make_donation("000000000004", donor_email="other@example.org", event_id="event_other")

    latest = client.get("/get-latest-event-id", params={"email": "ada@example.org"})
    unknown = client.get("/get-latest-event-id", params={"email": "nobody@example.org"})
    blank = client.get("/get-latest-event-id")

    assert latest.json() == {"event_id": "event_new"}
    assert unknown.json() == {"event_id": None}
    assert blank.json() == {"event_id": None}
