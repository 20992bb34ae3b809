"""Interposer lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    IDLE ──> RUNNING ──┬──> AWAITING_ANSWER ──> RUNNING
                       │
                       └──> TERMINATED

    IDLE, AWAITING_ANSWER ──> TERMINATED  (launch failure / worker gone)

AWAITING_ANSWER does not pause the read loop. It only marks that a
resolve cycle is outstanding, so a second question is rejected instead
of being answered with the wrong request id.
"""
from __future__ import annotations

from .models import InterposerState

VALID_TRANSITIONS: dict[InterposerState, set[InterposerState]] = {
    InterposerState.IDLE: {
        InterposerState.RUNNING,
        InterposerState.TERMINATED,
    },
    InterposerState.RUNNING: {
        InterposerState.AWAITING_ANSWER,
        InterposerState.TERMINATED,
    },
    InterposerState.AWAITING_ANSWER: {
        InterposerState.RUNNING,
        InterposerState.TERMINATED,
    },
    InterposerState.TERMINATED: set(),
}


def validate_transition(
    current: InterposerState, target: InterposerState,
) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(
            sorted(s.value for s in allowed)
        ) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
