# app/webhooks/ingestor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.errors import AuthenticationFailure, MalformedPayload, WebhookMisconfigured
from app.transactions import state_machine as sm
from app.transactions.amount_policy import AmountPolicy
from app.transactions.events import TransitionEmitter
from app.transactions.store import TransactionStore, UpdateResult
from app.webhooks.normalize import NormalizedEvent, normalize_event, parse_payload
from app.webhooks.signing import verify_signature
from services.metrics import increment_webhook_conflict


logger = logging.getLogger("smartchange.webhooks")

_PAID_STATUSES = (sm.CAPTURED, sm.DISPENSING, sm.DISPENSED)


@dataclass(frozen=True)
class WebhookAck:
    provider: str
    transaction_id: Optional[str]
    event_type: str
    status: Optional[str]
    applied: bool
    reason: Optional[str] = None
    payload: Optional[dict[str, Any]] = None

    @property
    def ignored(self) -> bool:
        return not self.applied

    def to_response(self) -> dict[str, Any]:
        resp: dict[str, Any] = {
            "ok": True,
            "provider": self.provider,
            "transaction_id": self.transaction_id,
            "event_type": self.event_type,
            "status": self.status,
            "applied": self.applied,
        }
        if self.ignored:
            resp["ignored"] = True
            resp["reason"] = self.reason
        return resp


class WebhookIngestor:
    """
    Authenticate -> normalize -> reconcile amount -> apply -> acknowledge.

    Authentication and structural errors raise (the provider retries those).
    Everything else returns an ack, including events that were deliberately
    not applied, so the provider stops redelivering them.
    """

    def __init__(
        self,
        *,
        provider: str,
        secret: str | None,
        store: TransactionStore,
        policy: AmountPolicy,
        emitter: TransitionEmitter,
    ):
        self.provider = provider.upper()
        self.secret = secret
        self.store = store
        self.policy = policy
        self.emitter = emitter

    def ingest(self, raw_payload: bytes, signature_header: str | None) -> WebhookAck:
        ok, err = verify_signature(raw=raw_payload, signature_header=signature_header, secret=self.secret)
        if err == "WEBHOOK_SECRET_NOT_CONFIGURED":
            raise WebhookMisconfigured(err, provider=self.provider)
        if not ok:
            raise AuthenticationFailure(err or "INVALID_SIGNATURE")

        payload = parse_payload(raw_payload)
        event = normalize_event(payload, provider=self.provider)

        if event.target_status is None:
            return self._ignored(event, "UNMAPPED_EVENT", payload=payload)

        if not event.transaction_id:
            raise MalformedPayload("MISSING_TRANSACTION_ID")

        if event.is_success:
            return self._apply_capture(event, payload)
        return self._apply_provider_outcome(event, payload)

    # ---------------------------------------------

    def _apply_capture(self, event: NormalizedEvent, payload: dict[str, Any]) -> WebhookAck:
        if event.amount_reported and not self.policy.validate(event.amount):
            logger.warning(
                "webhook_amount_rejected provider=%s transaction_id=%s amount=%r policy=%s-%s",
                self.provider,
                event.transaction_id,
                event.amount,
                self.policy.lower_bound,
                self.policy.upper_bound,
            )
            return self._ignored(event, "AMOUNT_OUT_OF_POLICY", payload=payload)

        result = self.store.capture(
            transaction_id=event.transaction_id,
            amount=event.amount,
            provider=self.provider,
            provider_reference=event.provider_reference,
            provider_event_type=event.event_type,
        )
        if result.applied:
            return self._applied(event, result, payload)

        if result.transaction is None:
            # no row and no amount to originate one with
            return self._ignored(event, "MISSING_AMOUNT", payload=payload)

        return self._not_applied(event, result, payload)

    def _apply_provider_outcome(self, event: NormalizedEvent, payload: dict[str, Any]) -> WebhookAck:
        result = self.store.transition(
            event.transaction_id,
            from_statuses=(sm.CREATED,),
            to_status=event.target_status,
            provider=self.provider,
            provider_reference=event.provider_reference,
            provider_event_type=event.event_type,
            failure_reason="PROVIDER_FAILED" if event.target_status == sm.FAILED else None,
        )
        if result.applied:
            return self._applied(event, result, payload)

        if result.transaction is None:
            return self._ignored(event, "TRANSACTION_NOT_FOUND", payload=payload)

        return self._not_applied(event, result, payload)

    # ---------------------------------------------

    def _applied(self, event: NormalizedEvent, result: UpdateResult, payload: dict[str, Any]) -> WebhookAck:
        tx = result.transaction
        self.emitter.emit(
            transaction_id=tx.id,
            from_status=result.previous_status,
            to_status=tx.status,
            cause=f"webhook:{event.event_type}",
            provider=self.provider,
            amount=tx.amount,
        )
        return WebhookAck(
            provider=self.provider,
            transaction_id=tx.id,
            event_type=event.event_type,
            status=tx.status,
            applied=True,
            payload=payload,
        )

    def _not_applied(self, event: NormalizedEvent, result: UpdateResult, payload: dict[str, Any]) -> WebhookAck:
        current = result.transaction.status
        reason = f"ALREADY_{current.upper()}"

        duplicate = (event.is_success and current in _PAID_STATUSES) or current == event.target_status
        if not duplicate:
            # out-of-order outcome that contradicts the stored one (e.g. paid after failed)
            logger.warning(
                "webhook_conflict provider=%s transaction_id=%s event_type=%s stored_status=%s",
                self.provider,
                event.transaction_id,
                event.event_type,
                current,
            )
            increment_webhook_conflict(self.provider, reason)

        return self._ignored(event, reason, status=current, payload=payload)

    def _ignored(
        self,
        event: NormalizedEvent,
        reason: str,
        *,
        status: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WebhookAck:
        logger.info(
            "webhook_ignored provider=%s transaction_id=%s event_type=%s reason=%s",
            self.provider,
            event.transaction_id,
            event.event_type,
            reason,
        )
        return WebhookAck(
            provider=self.provider,
            transaction_id=event.transaction_id,
            event_type=event.event_type,
            status=status,
            applied=False,
            reason=reason,
            payload=payload,
        )
