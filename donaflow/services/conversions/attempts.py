"""Attempt-log data access shared by the orchestrator and the retry sweeper.

Every status change goes through `validate_transition` and a guarded UPDATE
so a row that was concurrently marked `sent` is never pulled back.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm.attributes import set_committed_value

from donaflow.common.metrics import conversion_oldest_pending_age_seconds, conversion_pending_total
from donaflow.common.state_machine import FAILED, PENDING, SENT, validate_transition
from donaflow.services.conversions.models import ConversionLog


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def select_retry_candidates(
    db,
    now: datetime,
    max_attempts: int,
    cooldown_seconds: int,
    limit: int = 100,
) -> list[ConversionLog]:
    """Rows still pending, under the attempt cap and past the cool-down window."""

    cooled_before = now - timedelta(seconds=cooldown_seconds)
    stmt = (
        select(ConversionLog)
        .where(
            ConversionLog.status == PENDING,
            ConversionLog.attempts < max_attempts,
            or_(ConversionLog.last_attempt.is_(None), ConversionLog.last_attempt <= cooled_before),
        )
        .order_by(ConversionLog.created_at, ConversionLog.id)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def active_log_for(db, donation_id: int) -> ConversionLog | None:
    """Most recent non-`sent` row for one donation, preferring a `pending` one."""

    return db.execute(
        select(ConversionLog)
        .where(ConversionLog.donation_id == donation_id, ConversionLog.status != SENT)
        .order_by(
            (ConversionLog.status == PENDING).desc(),
            ConversionLog.created_at.desc(),
            ConversionLog.id.desc(),
        )
        .limit(1)
    ).scalar_one_or_none()


def create_log(db, donation_id: int, raw_payload: dict | None) -> ConversionLog:
    log = ConversionLog(
        donation_id=donation_id,
        raw_payload=raw_payload,
        attempts=0,
        status=PENDING,
    )
    db.add(log)
    db.flush()
    return log


def _guarded_update(db, log: ConversionLog, new_status: str, **values) -> None:
    validate_transition(log.status, new_status)
    result = db.execute(
        update(ConversionLog)
        .where(ConversionLog.id == log.id, ConversionLog.status == log.status)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RuntimeError(f"conversion log {log.id} changed concurrently (expected status {log.status})")
    set_committed_value(log, "status", new_status)
    for key, value in values.items():
        set_committed_value(log, key, value)


def mark_log_sent(db, log: ConversionLog, now: datetime) -> None:
    """Record one acknowledged send; `sent` is terminal."""

    _guarded_update(db, log, SENT, attempts=log.attempts + 1, last_attempt=now, error=None)


def record_log_failure(db, log: ConversionLog, now: datetime, error: str, max_attempts: int) -> str:
    """Count one failed orchestration attempt and return the resulting status."""

    attempts = log.attempts + 1
    new_status = FAILED if attempts >= max_attempts else PENDING
    _guarded_update(db, log, new_status, attempts=attempts, last_attempt=now, error=error)
    return new_status


def reopen_log(db, log: ConversionLog) -> ConversionLog:
    """Open a fresh `pending` row next to an exhausted one.

    The `failed` row keeps its attempts and error as history; the new row
    carries the same notification payload and a full attempt budget.
    """

    if log.status != FAILED:
        raise ValueError(f"conversion log {log.id} has status={log.status}; only {FAILED} rows can be reopened")
    return create_log(db, log.donation_id, log.raw_payload)


def update_backlog_metrics(db, service_name: str, now: datetime | None = None) -> None:
    """Update gauges for pending conversion depth and oldest age."""

    now = now or datetime.now(timezone.utc)
    pending_count = db.execute(
        select(func.count()).select_from(ConversionLog).where(ConversionLog.status == PENDING)
    ).scalar_one()
    oldest_pending = as_utc(
        db.execute(select(func.min(ConversionLog.created_at)).where(ConversionLog.status == PENDING)).scalar_one()
    )
    age_seconds = 0.0
    if oldest_pending is not None:
        age_seconds = max(0.0, (now - oldest_pending).total_seconds())
    conversion_pending_total.labels(service=service_name).set(float(pending_count))
    conversion_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
