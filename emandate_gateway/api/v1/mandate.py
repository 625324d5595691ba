"""Mandate create/webhook redirect channel and mandate record lookup"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from emandate_gateway.api.dependencies import get_gateway_client, get_payload_codec, get_request_id, get_settings
from emandate_gateway.api.v1.schemas import MandateRecordResponse, UserMandateSchema, money
from emandate_gateway.config import Settings
from emandate_gateway.domain.exceptions import NotFoundError
from emandate_gateway.infrastructure.clients.gateway import GatewayClient
from emandate_gateway.infrastructure.codecs.registry import PayloadCodec
from emandate_gateway.infrastructure.database.repositories import TransactionRepository, UserMandateRepository
from emandate_gateway.infrastructure.database.session import SessionFactory, get_db, get_session_factory
from emandate_gateway.services.mandate_orchestrator import MandateOrchestrator
from emandate_gateway.services.reconciliation import ReconciliationWorker

router = APIRouter()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


@router.api_route("/mandate/create", methods=["GET", "POST"])
async def create_mandate(
    request: Request,
    enc_response: Optional[str] = Query(None, alias="encResponse"),
    enc_request: Optional[str] = Query(None, alias="encReq"),
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    codec: PayloadCodec = Depends(get_payload_codec),
    config: Settings = Depends(get_settings),
):
    """
    Start mandate registration from an encrypted merchant hand-off.

    Flow:
    1. Decrypt the legacy payload and resolve merchant, slab and payer
    2. Record the transaction and register the mandate with the gateway
    3. Redirect to the bank authorisation page

    Any failure redirects to the return URL with an encrypted FAILED payload.
    """
    orchestrator = MandateOrchestrator(db, gateway, codec, config, request_id=get_request_id(request))
    redirect_url = await orchestrator.create_mandate(enc_response or enc_request)
    return RedirectResponse(redirect_url, status_code=302)


@router.get("/mandate/web-hook/{consumer_id}")
async def mandate_webhook(
    consumer_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    codec: PayloadCodec = Depends(get_payload_codec),
    config: Settings = Depends(get_settings),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    """
    Gateway callback after the payer finishes at the bank.

    The enquiry result is queued as a reconciliation task and applied after
    the response; the redirect carries the transaction as stored right now.
    """
    orchestrator = MandateOrchestrator(db, gateway, codec, config, request_id=get_request_id(request))
    outcome = await orchestrator.handle_webhook(consumer_id)

    if outcome.task_id is not None:
        worker = ReconciliationWorker.from_settings(session_factory, config)
        background_tasks.add_task(worker.process, outcome.task_id)

    return RedirectResponse(outcome.redirect_url, status_code=302)


@router.get("/mandates/{transaction_id}", response_model=MandateRecordResponse)
def get_mandate(transaction_id: str, db: Session = Depends(get_db)):
    """Transaction with its bank mandate registration, if reconciled"""
    transaction = TransactionRepository(db).get(transaction_id)
    if not transaction:
        raise NotFoundError("Transaction not found")

    mandate = UserMandateRepository(db).get_by_transaction_id(transaction_id)
    mandate_schema = None
    if mandate:
        mandate_schema = UserMandateSchema(
            amount=money(mandate.amount),
            due_date=_iso(mandate.due_date),
            paid_date=_iso(mandate.paid_date),
            bank_account_number=mandate.bank_account_number,
            bank_account_type=mandate.bank_account_type,
            bank_ifsc=mandate.bank_ifsc,
            bank_holder_name=mandate.bank_holder_name,
            bank_name=mandate.bank_name,
            frequency=mandate.frequency,
            registration_status=mandate.registration_status,
            bank_status_message=mandate.bank_status_message,
        )

    return MandateRecordResponse(
        transaction_id=transaction.transaction_id,
        client_transaction_id=transaction.client_transaction_id,
        sabpaisa_txn_id=transaction.sabpaisa_txn_id,
        merchant_id=transaction.merchant_id,
        user_id=transaction.user_id,
        amount=money(transaction.amount),
        monthly_emi=money(transaction.monthly_emi),
        max_amount=money(transaction.max_amount),
        start_date=_iso(transaction.start_date),
        end_date=_iso(transaction.end_date),
        purpose=transaction.purpose,
        status=transaction.status,
        created_at=transaction.created_at.isoformat(),
        mandate=mandate_schema,
    )
