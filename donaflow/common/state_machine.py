"""Conversion log status transitions enforced by the orchestrator."""

PENDING = "pending"
SENT = "sent"
FAILED = "failed"

# `sent` and `failed` are terminal; operator replay opens a new row instead.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {PENDING, SENT, FAILED},
    FAILED: set(),
    SENT: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
