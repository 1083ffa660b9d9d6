# routes/webhooks.py
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.errors import AuthenticationFailure, MalformedPayload, SmartChangeError
from app.transactions.amount_policy import AmountPolicy
from app.transactions.events import TransitionEmitter
from app.transactions.store import TransactionStore
from app.webhooks.ingestor import WebhookAck
from deps.services import (
    build_webhook_ingestor,
    get_amount_policy,
    get_emitter,
    get_store,
    supported_webhook_providers,
)
from services.http_errors import raise_http_from_domain_error
from services.metrics import increment_webhook_event
from services.observability import get_request_id
from services.redaction import redact_dict


router = APIRouter(tags=["webhooks"])
logger = logging.getLogger("smartchange.webhooks")


def _payload_summary(ack: WebhookAck) -> dict[str, Any]:
    payload = ack.payload or {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    summary = {
        "event_type": ack.event_type,
        "event_time": payload.get("event_time"),
        "transaction_id": ack.transaction_id,
        "order": data.get("order"),
        "payment": data.get("payment"),
        "customer_details": data.get("customer_details"),
    }
    return redact_dict({k: v for k, v in summary.items() if v is not None})


def _record_ack(ack: WebhookAck, request_id: str | None) -> None:
    increment_webhook_event(provider=ack.provider, signature_valid=True, applied=ack.applied)
    logger.info(
        "webhook_received request_id=%s provider=%s transaction_id=%s event_type=%s applied=%s reason=%s status=%s summary=%s",
        request_id,
        ack.provider,
        ack.transaction_id,
        ack.event_type,
        ack.applied,
        ack.reason,
        ack.status,
        _payload_summary(ack),
    )


async def _handle_webhook(
    req: Request,
    background: BackgroundTasks,
    *,
    provider: str,
    store: TransactionStore,
    policy: AmountPolicy,
    emitter: TransitionEmitter,
) -> dict[str, Any]:
    raw = await req.body()
    sig_header = req.headers.get("X-Signature")
    request_id = get_request_id()

    ingestor = build_webhook_ingestor(provider, store=store, policy=policy, emitter=emitter)

    try:
        ack = await run_in_threadpool(ingestor.ingest, raw, sig_header)
    except AuthenticationFailure as e:
        increment_webhook_event(provider=ingestor.provider, signature_valid=False, applied=False)
        logger.warning("webhook_rejected request_id=%s provider=%s reason=%s", request_id, ingestor.provider, e.code)
        raise_http_from_domain_error(e)
    except MalformedPayload as e:
        increment_webhook_event(provider=ingestor.provider, signature_valid=True, applied=False)
        logger.warning("webhook_malformed request_id=%s provider=%s reason=%s", request_id, ingestor.provider, e.code)
        raise_http_from_domain_error(e)
    except SmartChangeError as e:
        logger.error("webhook_failed request_id=%s provider=%s reason=%s", request_id, ingestor.provider, e.code)
        raise_http_from_domain_error(e)

    # runs after the response is sent
    background.add_task(_record_ack, ack, request_id)
    return ack.to_response()


@router.post("/cashfree-webhook", include_in_schema=False)
async def cashfree_webhook_legacy(
    req: Request,
    background: BackgroundTasks,
    store: TransactionStore = Depends(get_store),
    policy: AmountPolicy = Depends(get_amount_policy),
    emitter: TransitionEmitter = Depends(get_emitter),
):
    return await _handle_webhook(req, background, provider="CASHFREE", store=store, policy=policy, emitter=emitter)


@router.post("/v1/webhooks/{provider}")
async def provider_webhook(
    provider: str,
    req: Request,
    background: BackgroundTasks,
    store: TransactionStore = Depends(get_store),
    policy: AmountPolicy = Depends(get_amount_policy),
    emitter: TransitionEmitter = Depends(get_emitter),
):
    normalized = provider.strip().upper()
    if normalized not in supported_webhook_providers():
        raise HTTPException(status_code=404, detail={"error": "UNKNOWN_PROVIDER", "provider": provider})
    return await _handle_webhook(req, background, provider=normalized, store=store, policy=policy, emitter=emitter)
