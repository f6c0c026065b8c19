"""Attribution token helpers for the ad platform's click/browser identifiers.

`fbp` identifies the browser, `fbc` the ad click. `fbc` is derived from the
`fbclid` query parameter when the browser did not already supply one.
"""

import secrets
from datetime import datetime, timezone

ATTRIBUTION_FIELDS = ("fbclid", "fbp", "fbc")


def _epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def generate_fbp(now: datetime | None = None) -> str:
    """Browser id in the pixel's own format: `fb.1.<ms>.<10 random digits>`."""

    now = now or datetime.now(timezone.utc)
    random_number = 1_000_000_000 + secrets.randbelow(9_000_000_000)
    return f"fb.1.{_epoch_ms(now)}.{random_number}"


def derive_fbc(fbclid: str | None, now: datetime | None = None) -> str | None:
    if not fbclid:
        return None
    now = now or datetime.now(timezone.utc)
    return f"fb.1.{_epoch_ms(now)}.{fbclid}"


def backfill_values(donation, payload: dict | None, now: datetime | None = None) -> dict[str, str]:
    """Values to write onto `donation`, limited to fields that are still null.

    Tokens carried in the notification payload take precedence over derived
    ones. A value already present on the donation is never replaced.
    """

    now = now or datetime.now(timezone.utc)
    payload = payload or {}
    current = {field: getattr(donation, field) for field in ATTRIBUTION_FIELDS}
    updates: dict[str, str] = {}

    for field in ATTRIBUTION_FIELDS:
        candidate = payload.get(field)
        if current[field] is None and isinstance(candidate, str) and candidate:
            updates[field] = candidate

    if current["fbp"] is None and "fbp" not in updates:
        updates["fbp"] = generate_fbp(now)

    if current["fbc"] is None and "fbc" not in updates:
        fbc = derive_fbc(current["fbclid"] or updates.get("fbclid"), now)
        if fbc is not None:
            updates["fbc"] = fbc
    return updates
