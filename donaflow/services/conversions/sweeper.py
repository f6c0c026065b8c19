"""Periodic retry sweep for conversion reports that have not been sent yet."""

import asyncio

from donaflow.common.config import settings
from donaflow.common.logging import logger
from donaflow.common.metrics import conversion_retries_total, sweep_runs_total
from donaflow.services.conversions import attempts
from donaflow.services.conversions.schemas import SweepReport
from donaflow.services.conversions.service import ConversionService
from donaflow.services.donations.models import Donation


class SingleFlight:
    """At most one holder at a time; a busy guard is skipped, never waited on.

    Acquire and release happen on the event loop thread with no await in
    between the check and the set.
    """

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


class RetrySweeper:
    """Re-runs the orchestrator for attempt-log rows that are due for a retry."""

    def __init__(
        self,
        service: ConversionService,
        interval_seconds: float | None = None,
        cooldown_seconds: int | None = None,
        batch_limit: int | None = None,
    ) -> None:
        self.service = service
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds
        )
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.conversion_cooldown_seconds
        )
        self.batch_limit = batch_limit if batch_limit is not None else settings.sweep_batch_limit
        self.guard = SingleFlight()
        self._task: asyncio.Task | None = None

    def _candidates(self) -> list[tuple[str, int]]:
        with self.service.session_factory() as db:
            rows = attempts.select_retry_candidates(
                db,
                now=self.service.clock(),
                max_attempts=self.service.max_attempts,
                cooldown_seconds=self.cooldown_seconds,
                limit=self.batch_limit,
            )
            attempts.update_backlog_metrics(db, self.service.service_name, self.service.clock())
            return [(row.id, row.donation_id) for row in rows]

    def _donation_exists(self, donation_id: int) -> bool:
        with self.service.session_factory() as db:
            return db.get(Donation, donation_id) is not None

    async def sweep(self) -> SweepReport | None:
        """Retry every eligible row once; returns None when a sweep is already running."""

        if not self.guard.try_acquire():
            logger.info("retry_sweep_skipped reason=already_running")
            sweep_runs_total.labels(service=self.service.service_name, result="skipped").inc()
            return None
        try:
            report = SweepReport()
            candidates = self._candidates()
            report.selected = len(candidates)
            if candidates:
                logger.info("retry_sweep_started candidates=%s", len(candidates))
            for log_id, donation_id in candidates:
                try:
                    if not self._donation_exists(donation_id):
                        logger.warning(
                            "retry_sweep_missing_donation log_id=%s donation_id=%s", log_id, donation_id
                        )
                        report.skipped += 1
                        continue
                    conversion_retries_total.labels(service=self.service.service_name, source="sweeper").inc()
                    outcome = await self.service.record_and_send(donation_id)
                except Exception as exc:
                    logger.exception("retry_sweep_row_error log_id=%s donation_id=%s error=%s", log_id, donation_id, exc)
                    report.errors += 1
                    continue
                if outcome.status == "sent":
                    report.sent += 1
                elif outcome.status == "failed":
                    report.failed += 1
                else:
                    report.skipped += 1
            sweep_runs_total.labels(service=self.service.service_name, result="completed").inc()
            return report
        finally:
            self.guard.release()

    async def run(self) -> None:
        """Sweep every `interval_seconds` until cancelled."""

        logger.info("retry_sweeper_started interval_s=%s", self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                report = await self.sweep()
                if report is not None and report.selected:
                    logger.info("retry_sweep_finished report=%s", report.model_dump())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("retry_sweep_error error=%s", exc)
                sweep_runs_total.labels(service=self.service.service_name, result="error").inc()

    def start(self) -> asyncio.Task:
        """Schedule the sweep loop once on the running event loop."""

        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("retry_sweeper_stopped")
