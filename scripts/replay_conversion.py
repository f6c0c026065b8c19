"""Give an exhausted conversion another round of retries.

Leaves the donation's `failed` attempt-log row as history and opens a new
`pending` row with the same notification payload; the running retry sweeper
picks it up on its next tick.
"""

import argparse

from sqlalchemy import select

from donaflow.common.db import SessionLocal
from donaflow.common.state_machine import FAILED
from donaflow.services.conversions.attempts import active_log_for, reopen_log
from donaflow.services.conversions.models import ConversionLog
from donaflow.services.donations.models import Donation


def find_log(db, order_id: str | None, log_id: str | None) -> ConversionLog | None:
    """Locate the row to replay by log id or by the donation's order id."""

    if log_id:
        return db.get(ConversionLog, log_id)
    donation = db.execute(select(Donation).where(Donation.order_id == order_id)).scalar_one_or_none()
    if donation is None:
        return None
    return db.execute(
        select(ConversionLog)
        .where(ConversionLog.donation_id == donation.id, ConversionLog.status == FAILED)
        .order_by(ConversionLog.created_at.desc(), ConversionLog.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def replay(session_factory, order_id: str | None, log_id: str | None, dry_run: bool) -> int:
    if not order_id and not log_id:
        raise ValueError("Provide --order-id or --log-id")

    with session_factory() as db:
        log = find_log(db, order_id, log_id)
        if log is None:
            print("No exhausted conversion log found.")
            return 1
        if log.status != FAILED:
            print(f"Conversion log {log.id} has status={log.status}; only '{FAILED}' rows can be replayed.")
            return 2
        print(f"Matched conversion log id={log.id} donation_id={log.donation_id} attempts={log.attempts}")
        active = active_log_for(db, log.donation_id)
        if active is not None and active.status != FAILED:
            print(f"Donation {log.donation_id} already has an open conversion log id={active.id}.")
            return 3
        if dry_run:
            print("Dry run only; no change performed.")
            return 0
        reopened = reopen_log(db, log)
        db.commit()
        print(f"Opened pending conversion log id={reopened.id}; the retry sweeper will pick it up.")
        return 0


def main() -> None:
    """CLI entrypoint for manual conversion replay."""

    parser = argparse.ArgumentParser(description="Open a fresh conversion log row for an exhausted donation.")
    parser.add_argument("--order-id", default=None, help="Donation order id")
    parser.add_argument("--log-id", default=None, help="Conversion log id")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    raise SystemExit(replay(SessionLocal, args.order_id, args.log_id, args.dry_run))


if __name__ == "__main__":
    main()
