"""Renderer loop state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    STREAMING ──┬──> COMPLETING ──┐
                │                 │
                ├──> CANCELLING ──┼──> FINALIZED
                │                 │
                └──> ERRORING ────┘
"""
from __future__ import annotations

from .models import LoopState

VALID_TRANSITIONS: dict[LoopState, set[LoopState]] = {
    LoopState.STREAMING: {
        LoopState.COMPLETING,
        LoopState.CANCELLING,
        LoopState.ERRORING,
    },
    LoopState.COMPLETING: {LoopState.FINALIZED},
    LoopState.CANCELLING: {LoopState.FINALIZED},
    LoopState.ERRORING: {LoopState.FINALIZED},
    LoopState.FINALIZED: set(),
}


def validate_transition(current: LoopState, target: LoopState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
