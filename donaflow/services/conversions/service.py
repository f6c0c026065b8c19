"""Conversion orchestration.

Decides whether a donation still needs a conversion report, delegates the
send, and records the outcome against the donation and its attempt log.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from donaflow.common.config import settings
from donaflow.common.logging import logger, order_context
from donaflow.common.metrics import conversion_sends_total
from donaflow.common.state_machine import FAILED
from donaflow.services.conversions import attempts
from donaflow.services.conversions.attribution import backfill_values
from donaflow.services.conversions.schemas import ConversionOutcome
from donaflow.services.conversions.sender import ConversionSender
from donaflow.services.donations.models import Donation


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversionService:
    """Owns the at-least-once conversion reporting flow for donations."""

    def __init__(
        self,
        session_factory,
        sender: ConversionSender | None = None,
        max_attempts: int | None = None,
        clock=utcnow,
        service_name: str = "donations",
    ) -> None:
        self.session_factory = session_factory
        self.sender = sender or ConversionSender(service_name=service_name)
        self.max_attempts = max_attempts if max_attempts is not None else settings.conversion_max_attempts
        self.clock = clock
        self.service_name = service_name
        # donation id -> [lock, holders + waiters]
        self._locks: dict[int, list] = {}

    @asynccontextmanager
    async def _serialized(self, donation_id: int):
        """Run one donation's flow at a time; the lock is dropped once unused."""

        entry = self._locks.setdefault(donation_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[donation_id]

    def _backfill(self, donation: Donation, raw_payload: dict, now: datetime) -> None:
        """Attach the notification payload and fill attribution gaps (COALESCE)."""

        values = backfill_values(donation, raw_payload, now)
        if donation.notification_payload is None:
            values["notification_payload"] = raw_payload
        if not values:
            return
        for field, value in values.items():
            setattr(donation, field, value)
        logger.info("attribution_backfilled donation_id=%s fields=%s", donation.id, sorted(values))

    def _mark_conversion_sent(self, db, donation: Donation) -> bool:
        """Flip `conversion_sent` false -> true; returns False if it was already set."""

        result = db.execute(
            update(Donation)
            .where(Donation.id == donation.id, Donation.conversion_sent.is_(False))
            .values(conversion_sent=True, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        set_committed_value(donation, "conversion_sent", True)
        return result.rowcount == 1

    async def record_and_send(self, donation_id: int, raw_payload: dict | None = None) -> ConversionOutcome:
        """Make sure one conversion gets reported for a paid donation.

        `raw_payload` is the provider notification on the first attempt and
        None on sweeper retries. Sender failures end up in the attempt log;
        storage errors propagate to the caller.
        """

        async with self._serialized(donation_id):
            with self.session_factory() as db:
                donation = db.get(Donation, donation_id)
                if donation is None:
                    logger.warning("conversion_skipped_missing_donation donation_id=%s", donation_id)
                    return ConversionOutcome(status="missing", donation_id=donation_id)
                with order_context(donation.order_id):
                    return await self._record_and_send(db, donation, raw_payload)

    async def _record_and_send(self, db, donation: Donation, raw_payload: dict | None) -> ConversionOutcome:
        if donation.conversion_sent:
            logger.info("conversion_already_sent donation_id=%s", donation.id)
            return ConversionOutcome(status="already_sent", donation_id=donation.id)

        log = attempts.active_log_for(db, donation.id)
        if raw_payload is not None:
            self._backfill(donation, raw_payload, self.clock())
            if log is None:
                log = attempts.create_log(db, donation.id, raw_payload)
        elif log is None:
            logger.warning("conversion_retry_without_log donation_id=%s", donation.id)
            return ConversionOutcome(status="missing", donation_id=donation.id)
        # Release the connection before the outbound call.
        db.commit()

        if log.status == FAILED or log.attempts >= self.max_attempts:
            logger.warning(
                "conversion_attempts_exhausted donation_id=%s log_id=%s attempts=%s",
                donation.id,
                log.id,
                log.attempts,
            )
            return ConversionOutcome(
                status="exhausted",
                donation_id=donation.id,
                log_id=log.id,
                attempts=log.attempts,
                error=log.error,
            )

        result = await self.sender.send(donation)
        now = self.clock()
        if result.country and not donation.country:
            donation.country = result.country

        if result.success:
            if not self._mark_conversion_sent(db, donation):
                logger.warning("conversion_flag_already_set donation_id=%s", donation.id)
            attempts.mark_log_sent(db, log, now)
            db.commit()
            conversion_sends_total.labels(service=self.service_name, outcome="sent").inc()
            logger.info(
                "conversion_recorded donation_id=%s log_id=%s attempts=%s",
                donation.id,
                log.id,
                log.attempts,
            )
            return ConversionOutcome(status="sent", donation_id=donation.id, log_id=log.id, attempts=log.attempts)

        status = attempts.record_log_failure(db, log, now, result.error or "", self.max_attempts)
        db.commit()
        conversion_sends_total.labels(service=self.service_name, outcome=status).inc()
        logger.warning(
            "conversion_attempt_failed donation_id=%s log_id=%s attempts=%s status=%s error=%s",
            donation.id,
            log.id,
            log.attempts,
            status,
            result.error,
        )
        return ConversionOutcome(
            status="failed",
            donation_id=donation.id,
            log_id=log.id,
            attempts=log.attempts,
            error=result.error,
        )
