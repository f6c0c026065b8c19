"""Shared fixtures: in-memory record store, controllable clock, fake senders."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from donaflow.common.db import Base, make_engine, make_session_factory
from donaflow.services.conversions.models import ConversionLog
from donaflow.services.conversions.schemas import SendResult
from donaflow.services.donations.models import Donation


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSender:
    """Sender double returning scripted results and recording each call."""

    def __init__(self, *results: bool, country: str = "") -> None:
        self.results = list(results)
        self.country = country
        self.calls: list[str] = []

    async def send(self, donation) -> SendResult:
        self.calls.append(donation.order_id)
        ok = self.results.pop(0) if self.results else True
        if ok:
            return SendResult(success=True, attempts=1, country=self.country, response={"ok": True})
        return SendResult(success=False, attempts=2, error="conversion API error: 500 - boom", country=self.country)

    async def close(self) -> None:
        pass


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_donation(session_factory):
    """Insert a donation and return its primary key."""

    def _make(order_id: str = "O1", **fields) -> int:
        values = {
            "amount_cents": 1000,
            "currency": "EUR",
            "client_ip_address": "203.0.113.7",
            "client_user_agent": "pytest-agent",
            "conversion_sent": False,
        }
        values.update(fields)
        with session_factory() as db:
            donation = Donation(order_id=order_id, **values)
            db.add(donation)
            db.commit()
            return donation.id

    return _make


@pytest.fixture
def make_log(session_factory):
    def _make(donation_id: int, **fields) -> str:
        values = {"attempts": 0, "status": "pending", "raw_payload": {"Ds_Response": "0000"}}
        values.update(fields)
        with session_factory() as db:
            log = ConversionLog(donation_id=donation_id, **values)
            db.add(log)
            db.commit()
            return log.id

    return _make
