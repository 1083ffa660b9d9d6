# app/transactions/state_machine.py
from __future__ import annotations

from app.errors import InvalidTransition

CREATED = "created"
CAPTURED = "captured"
DISPENSING = "dispensing"
DISPENSED = "dispensed"
FAILED = "failed"
EXPIRED = "expired"
CANCELLED = "cancelled"
DROPPED = "dropped"

# sentinel for "no row yet"
NEW = None

STATUSES = (CREATED, CAPTURED, DISPENSING, DISPENSED, FAILED, EXPIRED, CANCELLED, DROPPED)
TERMINAL_STATUSES = frozenset({DISPENSED, FAILED, EXPIRED, CANCELLED, DROPPED})
ACTIONABLE_STATUSES = (CAPTURED, DISPENSING)

ALLOWED: dict[str | None, set[str]] = {
    NEW: {CREATED, CAPTURED},  # NEW->CAPTURED when the webhook is the first sighting
    CREATED: {CAPTURED, FAILED, EXPIRED, CANCELLED, DROPPED},
    CAPTURED: {DISPENSING, FAILED},
    DISPENSING: {DISPENSING, DISPENSED, FAILED},  # DISPENSING->DISPENSING for progress / resume
    DISPENSED: set(),
    FAILED: set(),
    EXPIRED: set(),
    CANCELLED: set(),
    DROPPED: set(),
}


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(old: str | None, new: str) -> bool:
    return new in ALLOWED.get(old, set())


def assert_transition(old: str | None, new: str) -> None:
    if not can_transition(old, new):
        raise InvalidTransition(f"Illegal transaction transition: {old or '(none)'} -> {new}")


def guard_statuses(from_statuses: tuple[str, ...], new: str) -> tuple[str, ...]:
    """
    Expected-status guard for a conditional update. Every listed source must
    have a legal edge to `new`; callers never get an unconditional overwrite.
    """
    for old in from_statuses:
        assert_transition(old, new)
    if not from_statuses:
        raise InvalidTransition(f"No source status given for transition to {new}")
    return tuple(from_statuses)
