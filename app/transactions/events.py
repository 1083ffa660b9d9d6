# app/transactions/events.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional

from services.metrics import increment_transition
from services.observability import get_request_id


logger = logging.getLogger("smartchange.transitions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransitionEvent:
    transaction_id: str
    from_status: Optional[str]
    to_status: str
    cause: str
    request_id: Optional[str] = None
    detail: dict = field(default_factory=dict)
    at: datetime = field(default_factory=_utcnow)


Listener = Callable[[TransitionEvent], None]


class TransitionEmitter:
    """
    Structured record of every applied state change.

    Each event is logged on `smartchange.transitions`, counted, and handed to
    subscribed listeners. A failing listener is logged and skipped; it never
    undoes a transition that the store already committed.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(
        self,
        *,
        transaction_id: str,
        from_status: str | None,
        to_status: str,
        cause: str,
        **detail,
    ) -> TransitionEvent:
        event = TransitionEvent(
            transaction_id=transaction_id,
            from_status=from_status,
            to_status=to_status,
            cause=cause,
            request_id=get_request_id(),
            detail=detail,
        )
        logger.info(
            "transaction_transition transaction_id=%s from=%s to=%s cause=%s request_id=%s detail=%s",
            event.transaction_id,
            event.from_status or "none",
            event.to_status,
            event.cause,
            event.request_id,
            event.detail,
        )
        increment_transition(from_status, to_status, cause)

        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("transition listener failed transaction_id=%s", transaction_id)
        return event
