# routes/dispense.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header

from app.dispense.controller import DEFAULT_DEVICE_ID, DispenseController
from app.errors import NotFound, SmartChangeError
from app.transactions.model import Transaction
from app.transactions.store import TransactionStore
from deps.services import get_dispense_controller, get_store
from schemas import DispenseResult, NextTransactionResponse, ProgressRequest, TransactionView
from services.http_errors import raise_http_from_domain_error

router = APIRouter(tags=["dispense"])


def device_id_header(x_device_id: str | None = Header(default=None, alias="X-Device-Id")) -> str:
    value = (x_device_id or "").strip()
    return value[:64] if value else DEFAULT_DEVICE_ID


def _next_response(tx: Transaction | None) -> NextTransactionResponse:
    if tx is None:
        return NextTransactionResponse(paid=False)
    return NextTransactionResponse(
        paid=True,
        transaction_id=tx.id,
        txnid=tx.id,
        amount=tx.amount,
        dispensed_count=tx.dispensed_count,
        status=tx.status,
    )


def _result(tx: Transaction) -> DispenseResult:
    return DispenseResult(
        transaction_id=tx.id,
        status=tx.status,
        dispensed=tx.dispensed,
        dispensed_count=tx.dispensed_count,
        locked_by=tx.locked_by,
    )


@router.get("/v1/dispense/next", response_model=NextTransactionResponse)
def next_transaction(controller: DispenseController = Depends(get_dispense_controller)):
    try:
        return _next_response(controller.fetch_next())
    except SmartChangeError as e:
        raise_http_from_domain_error(e)


# polled by older firmware
@router.get("/latest-payment", response_model=NextTransactionResponse, include_in_schema=False)
def latest_payment(controller: DispenseController = Depends(get_dispense_controller)):
    return next_transaction(controller)


@router.post("/v1/dispense/{transaction_id}/lock", response_model=DispenseResult)
def lock_transaction(
    transaction_id: str,
    device_id: str = Depends(device_id_header),
    controller: DispenseController = Depends(get_dispense_controller),
):
    try:
        return _result(controller.lock(transaction_id, device_id=device_id))
    except SmartChangeError as e:
        raise_http_from_domain_error(e)


@router.post("/v1/dispense/{transaction_id}/progress", response_model=DispenseResult)
def report_progress(
    transaction_id: str,
    body: ProgressRequest,
    device_id: str = Depends(device_id_header),
    controller: DispenseController = Depends(get_dispense_controller),
):
    try:
        tx = controller.report_progress(transaction_id, body.dispensed_count, device_id=device_id)
    except SmartChangeError as e:
        raise_http_from_domain_error(e)
    return _result(tx)


@router.post("/v1/dispense/{transaction_id}/complete", response_model=DispenseResult)
def complete_transaction(
    transaction_id: str,
    device_id: str = Depends(device_id_header),
    controller: DispenseController = Depends(get_dispense_controller),
):
    try:
        return _result(controller.complete(transaction_id, device_id=device_id))
    except SmartChangeError as e:
        raise_http_from_domain_error(e)


@router.post("/v1/dispense/{transaction_id}/fail", response_model=DispenseResult)
def fail_transaction(
    transaction_id: str,
    device_id: str = Depends(device_id_header),
    controller: DispenseController = Depends(get_dispense_controller),
):
    try:
        tx = controller.report_failure(transaction_id, device_id=device_id)
    except SmartChangeError as e:
        raise_http_from_domain_error(e)
    return _result(tx)


@router.get("/v1/transactions/{transaction_id}", response_model=TransactionView)
def get_transaction(transaction_id: str, store: TransactionStore = Depends(get_store)):
    try:
        tx = store.get(transaction_id)
        if tx is None:
            raise NotFound(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    except SmartChangeError as e:
        raise_http_from_domain_error(e)

    return TransactionView(
        transaction_id=tx.id,
        amount=tx.amount,
        status=tx.status,
        dispensed=tx.dispensed,
        dispensed_count=tx.dispensed_count,
        provider=tx.provider,
        provider_reference=tx.provider_reference,
        provider_event_type=tx.provider_event_type,
        failure_reason=tx.failure_reason,
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )
