"""Result shapes passed between the sender, orchestrator and sweeper."""

from typing import Any

from pydantic import BaseModel


class SendResult(BaseModel):
    """Outcome of one sender invocation (up to `sender_max_tries` HTTP calls)."""

    success: bool
    attempts: int
    error: str | None = None
    country: str = ""
    response: dict[str, Any] | None = None


class ConversionOutcome(BaseModel):
    """What `record_and_send` did for one donation."""

    # sent | failed | exhausted | already_sent | missing
    status: str
    donation_id: int
    log_id: str | None = None
    attempts: int = 0
    error: str | None = None


class SweepReport(BaseModel):
    selected: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
