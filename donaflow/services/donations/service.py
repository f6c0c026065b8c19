"""Donation intake and payment notification handling."""

import secrets

from sqlalchemy import or_, select

from donaflow.common.config import settings
from donaflow.common.logging import logger, order_context
from donaflow.common.metrics import donations_created_total, payment_notifications_total
from donaflow.services.conversions.models import ConversionLog
from donaflow.services.conversions.service import ConversionService
from donaflow.services.donations import notifications
from donaflow.services.donations.models import Donation, PaymentFailure


def new_order_id() -> str:
    """Twelve digit order number, as accepted by the payment gateway."""

    return f"{secrets.randbelow(10**12):012d}"


class DonationService:
    """Creates donation records and reacts to payment provider callbacks."""

    def __init__(
        self,
        session_factory,
        conversions: ConversionService,
        decoder=notifications.default_decoder,
        service_name: str = "donations",
    ) -> None:
        self.session_factory = session_factory
        self.conversions = conversions
        self.decoder = decoder
        self.service_name = service_name

    def create_donation(self, req, client_ip: str, user_agent: str) -> Donation:
        """Persist a donation before the donor is sent to the payment page."""

        amount_cents = round(req.amount * 100)
        if amount_cents <= 0:
            raise ValueError("Invalid donation amount.")

        with self.session_factory() as db:
            order_id = new_order_id()
            while db.execute(select(Donation.id).where(Donation.order_id == order_id)).first() is not None:
                order_id = new_order_id()
            donation = Donation(
                order_id=order_id,
                amount_cents=amount_cents,
                currency=settings.currency,
                fbclid=req.fbclid or None,
                fbp=req.fbp or None,
                fbc=req.fbc or None,
                client_ip_address=client_ip,
                client_user_agent=user_agent,
                donor_name=req.donor_name(),
                donor_email=(req.email or "").strip() or None,
                event_id=(req.event_id or "").strip() or None,
                country=req.country_code(),
                conversion_sent=False,
            )
            db.add(donation)
            db.commit()
        donations_created_total.labels(service=self.service_name).inc()
        logger.info("donation_created order_id=%s amount_cents=%s", order_id, amount_cents)
        return donation

    def get_donation(self, order_id: str) -> Donation | None:
        with self.session_factory() as db:
            return db.execute(select(Donation).where(Donation.order_id == order_id)).scalar_one_or_none()

    def find_by_event_id(self, event_id: str) -> Donation | None:
        """Match the browser event id, falling back to the order id."""

        with self.session_factory() as db:
            return db.execute(
                select(Donation)
                .where(or_(Donation.event_id == event_id, Donation.order_id == event_id))
                .order_by(Donation.conversion_sent.desc(), Donation.created_at.desc(), Donation.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def latest_event_id(self, email: str) -> str | None:
        """Newest stored browser event id for a donor email."""

        with self.session_factory() as db:
            return db.execute(
                select(Donation.event_id)
                .where(Donation.donor_email == email.strip(), Donation.event_id.is_not(None))
                .order_by(Donation.created_at.desc(), Donation.id.desc())
                .limit(1)
            ).scalar_one_or_none()

    def list_conversion_logs(self, status: str | None = None, limit: int = 100) -> list[ConversionLog]:
        with self.session_factory() as db:
            stmt = select(ConversionLog).order_by(ConversionLog.created_at.desc()).limit(limit)
            if status:
                stmt = stmt.where(ConversionLog.status == status)
            return list(db.execute(stmt).scalars())

    def _record_failure(self, params: dict, code: int) -> None:
        with self.session_factory() as db:
            db.add(
                PaymentFailure(
                    order_id=params.get("Ds_Order"),
                    amount_cents=notifications.amount_cents(params),
                    error=f"Ds_Response={code}",
                )
            )
            db.commit()

    def _prepare_paid_donation(self, order_id: str, paid_cents: int | None) -> tuple[int, bool] | None:
        """Sync the paid amount onto the donation; returns (id, conversion_sent)."""

        with self.session_factory() as db:
            donation = db.execute(select(Donation).where(Donation.order_id == order_id)).scalar_one_or_none()
            if donation is None:
                return None
            if paid_cents is not None and donation.amount_cents != paid_cents:
                logger.info(
                    "donation_amount_updated order_id=%s from=%s to=%s",
                    order_id,
                    donation.amount_cents,
                    paid_cents,
                )
                donation.amount_cents = paid_cents
                db.commit()
            return donation.id, donation.conversion_sent

    async def handle_notification(self, body: dict) -> str:
        """Process one provider callback and return a short outcome label.

        Never raises: the provider must always get its acknowledgement, so
        decoding, storage and conversion errors are logged and swallowed here.
        """

        try:
            params = self.decoder(body)
        except ValueError as exc:
            logger.warning("payment_notification_undecodable error=%s", exc)
            payment_notifications_total.labels(service=self.service_name, outcome="invalid").inc()
            return "invalid"

        order_id = str(params.get("Ds_Order") or "")
        with order_context(order_id):
            try:
                return await self._handle_notification(params, order_id)
            except Exception as exc:
                logger.exception("payment_notification_error order_id=%s error=%s", order_id, exc)
                payment_notifications_total.labels(service=self.service_name, outcome="error").inc()
                return "error"

    async def _handle_notification(self, params: dict, order_id: str) -> str:
        code = notifications.response_code(params)
        if code > settings.payment_success_max_code:
            logger.warning("payment_failed order_id=%s code=%s", order_id, code)
            self._record_failure(params, code)
            payment_notifications_total.labels(service=self.service_name, outcome="failed").inc()
            return "payment_failed"

        logger.info("payment_succeeded order_id=%s code=%s", order_id, code)
        prepared = self._prepare_paid_donation(order_id, notifications.amount_cents(params))
        if prepared is None:
            logger.warning("payment_notification_unknown_order order_id=%s", order_id)
            payment_notifications_total.labels(service=self.service_name, outcome="unknown_order").inc()
            return "unknown_order"
        donation_id, conversion_sent = prepared
        payment_notifications_total.labels(service=self.service_name, outcome="succeeded").inc()
        if conversion_sent:
            logger.info("conversion_already_sent order_id=%s", order_id)
            return "already_sent"

        raw_payload = {**params, **notifications.merchant_attribution(params)}
        outcome = await self.conversions.record_and_send(donation_id, raw_payload)
        return outcome.status
