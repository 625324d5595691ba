"""Mandate orchestration: create path, webhook reconciliation and failure redirects"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from emandate_gateway.config import Settings
from emandate_gateway.domain.calculation import calculate, parse_amount
from emandate_gateway.domain.exceptions import DomainException, NotFoundError, ValidationError
from emandate_gateway.domain.mandates import MandateState, reconciled_status
from emandate_gateway.domain.models import CustomerDetails, EnquiryResult, MandateRequest
from emandate_gateway.infrastructure.clients.gateway import GatewayClient
from emandate_gateway.infrastructure.codecs.registry import LEGACY, PayloadCodec
from emandate_gateway.infrastructure.database.models import Merchant, Transaction, User
from emandate_gateway.infrastructure.database.repositories import (
    CorrelationRepository,
    MerchantRepository,
    ReconciliationTaskRepository,
    TransactionRepository,
    UserRepository,
)
from emandate_gateway.infrastructure.observability.logging import log_mandate_step
from emandate_gateway.infrastructure.observability.metrics import record_mandate_outcome, webhook_counter
from emandate_gateway.services.slab_store import SlabStore
from emandate_gateway.utils.date_utils import schedule_dates, utcnow

logger = logging.getLogger(__name__)

# Namespace for transaction ids derived from merchant code + client transaction id
TRANSACTION_NAMESPACE = uuid.UUID("8f6b2d1e-4c3a-5b7e-9d0f-1a2b3c4d5e6f")

RESPONSE_PARAM = "enachResponse"
GENERIC_FAILURE_MESSAGE = "Mandate registration failed"


def transaction_id_for(client_code: str, client_txn_id: str | None) -> str:
    """Stable id for a client transaction so replays update the same row"""
    if not client_txn_id:
        return str(uuid.uuid4())
    return str(uuid.uuid5(TRANSACTION_NAMESPACE, f"{client_code}:{client_txn_id}"))


def _iso(value: date | datetime | None) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


@dataclass
class MandateContext:
    """Identifiers captured so far, echoed in failure payloads"""

    state: MandateState = MandateState.INITIATED
    client_code: Optional[str] = None
    client_txn_id: Optional[str] = None
    sabpaisa_txn_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[str] = None

    def capture_transaction(self, transaction: Transaction, merchant: Optional[Merchant] = None) -> None:
        self.transaction_id = transaction.transaction_id
        self.client_txn_id = transaction.client_transaction_id
        self.sabpaisa_txn_id = transaction.sabpaisa_txn_id
        self.amount = str(transaction.amount) if transaction.amount is not None else None
        if merchant is not None:
            self.client_code = merchant.merchant_code


@dataclass
class WebhookOutcome:
    """Where to send the caller, and the outbox task queued for persistence"""

    redirect_url: str
    task_id: Optional[uuid.UUID] = None


class MandateOrchestrator:
    """
    Coordinates mandate creation and webhook reconciliation.

    Create: decrypt -> merchant -> slab -> user -> transaction -> gateway -> redirect
    Webhook: enquiry -> transaction lookup -> outbox task -> encrypted redirect

    Neither path raises to the caller; every failure becomes an encrypted
    FAILED payload on the configured return URL.
    """

    def __init__(
        self,
        db: Session,
        gateway: GatewayClient,
        codec: PayloadCodec,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        request_id: str | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.codec = codec
        self.settings = settings
        self.clock = clock
        self.request_id = request_id

        self.merchants = MerchantRepository(db)
        self.users = UserRepository(db)
        self.transactions = TransactionRepository(db)
        self.correlations = CorrelationRepository(db)
        self.tasks = ReconciliationTaskRepository(db)
        self.slab_store = SlabStore(db, clock=clock)

    def _step(self, context: MandateContext, state: MandateState, **fields: Any) -> None:
        context.state = state
        log_mandate_step(state.value, context.transaction_id, self.request_id, **fields)

    # Create path

    async def create_mandate(self, encrypted_request: str | None) -> str:
        """Register a mandate and return the URL the payer should be sent to"""
        context = MandateContext()

        try:
            params = self.codec.decode(encrypted_request, LEGACY)
            context.client_code = params.get("clientCode")
            context.client_txn_id = params.get("clientTxnId")
            context.sabpaisa_txn_id = params.get("sabpaisaTxnId")
            context.amount = params.get("amount")
            self._step(context, MandateState.INITIATED, client_code=context.client_code)

            if not context.client_code:
                raise ValidationError("clientCode is required")
            if not params.get("payerEmail"):
                raise ValidationError("payerEmail is required")
            amount = parse_amount(params.get("amount"))

            merchant = self.merchants.upsert_by_code(context.client_code)
            self._step(context, MandateState.MERCHANT_USER_RESOLVED, merchant_id=merchant.merchant_id)

            slab = self.slab_store.find_applicable_slab(merchant.merchant_id, amount)
            self._step(context, MandateState.SLAB_RESOLVED, slab_id=slab.slab_id)

            customer = CustomerDetails(
                name=" ".join(part for part in (params.get("payerName"), params.get("payerLName")) if part),
                email=params["payerEmail"],
                mobile=params.get("payerMobile") or "",
            )
            user = self.users.upsert_by_email(customer)
            log_mandate_step("USER_RESOLVED", request_id=self.request_id, user_id=user.user_id)

            now = self.clock()
            terms = calculate(slab, amount, now=now)
            start_date, end_date = schedule_dates(now, slab.frequency, slab.duration, slab.expiry_date)
            if end_date is None:
                end_date = datetime.combine(terms.end_date, now.time())

            context.transaction_id = transaction_id_for(context.client_code, context.client_txn_id)
            consumer_id = context.sabpaisa_txn_id or uuid.uuid4().hex
            context.sabpaisa_txn_id = consumer_id

            self.transactions.upsert(
                {
                    "transaction_id": context.transaction_id,
                    "client_transaction_id": context.client_txn_id,
                    "sabpaisa_txn_id": consumer_id,
                    "user_id": user.user_id,
                    "merchant_id": merchant.merchant_id,
                    "amount": amount,
                    "monthly_emi": terms.emi_amount,
                    "max_amount": terms.emi_amount,
                    "start_date": start_date,
                    "end_date": end_date,
                    "purpose": slab.mandate_category or "NA",
                    "status": MandateState.TRANSACTION_RECORDED.value,
                }
            )
            self.correlations.record(consumer_id, context.transaction_id)
            self.db.commit()
            self._step(context, MandateState.TRANSACTION_RECORDED, consumer_id=consumer_id)

            result = await self.gateway.create_mandate(
                MandateRequest(
                    consumer_id=consumer_id,
                    customer=customer,
                    start_date=start_date.date(),
                    end_date=end_date.date(),
                    max_amount=terms.emi_amount,
                    frequency=slab.frequency,
                    mandate_category=slab.mandate_category,
                    client_code=context.client_code,
                )
            )

            self.transactions.update_fields(
                context.transaction_id, status=MandateState.GATEWAY_REDIRECT_ISSUED.value
            )
            self.db.commit()
            self._step(context, MandateState.GATEWAY_REDIRECT_ISSUED)
            record_mandate_outcome(redirected=True)
            return result["bank_details_url"]

        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Mandate creation failed at {context.state.value}: {e}",
                extra={"request_id": self.request_id, "transaction_id": context.transaction_id},
            )
            self._mark_failed(context)
            record_mandate_outcome(redirected=False)
            return self.failure_redirect(context, e)

    def _mark_failed(self, context: MandateContext) -> None:
        if context.state not in (MandateState.TRANSACTION_RECORDED, MandateState.GATEWAY_REDIRECT_ISSUED):
            return
        try:
            self.transactions.update_fields(context.transaction_id, status=MandateState.FAILED.value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not mark transaction failed: {e}", extra={"transaction_id": context.transaction_id})

    # Webhook path

    async def handle_webhook(self, enquiry_id: str) -> WebhookOutcome:
        """Reconcile a gateway callback and return the encrypted result redirect"""
        context = MandateContext(sabpaisa_txn_id=enquiry_id)
        task_id = None

        try:
            enquiry = await self.gateway.mandate_enquiry(enquiry_id)
            self._step(context, MandateState.ENQUIRY_FETCHED, consumer_id=enquiry.consumer_id)

            transaction = self._locate_transaction(enquiry.consumer_id)
            context.capture_transaction(transaction)

            user = self.users.get_by_user_id(transaction.user_id) if transaction.user_id else None
            if user is None:
                raise NotFoundError(f"User not found for transaction {transaction.transaction_id}")

            task = self.tasks.enqueue(transaction.transaction_id, enquiry.consumer_id, enquiry.to_payload())
            self.db.commit()
            task_id = task.id

            # Response reflects the stored transaction; the outbox task applies the enquiry later
            transaction = self.transactions.get(transaction.transaction_id)
            merchant = self.merchants.get_by_merchant_id(transaction.merchant_id) if transaction.merchant_id else None
            context.capture_transaction(transaction, merchant)

            payload = self.build_webhook_payload(enquiry, transaction, merchant, user)
            redirect_url = self._return_url(self.codec.encode(LEGACY, payload))

            self._step(context, MandateState(payload["mandateStatus"]), task_id=str(task_id))
            webhook_counter.labels(outcome=payload["mandateStatus"]).inc()
            return WebhookOutcome(redirect_url=redirect_url, task_id=task_id)

        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Webhook processing failed at {context.state.value}: {e}",
                extra={"request_id": self.request_id, "consumer_id": enquiry_id},
            )
            webhook_counter.labels(outcome="error").inc()
            if context.transaction_id is None:
                await self._recover_context(context, enquiry_id)
            # A committed task is still handed to the worker
            return WebhookOutcome(redirect_url=self.failure_redirect(context, e), task_id=task_id)

    def _locate_transaction(self, consumer_id: str) -> Transaction:
        """Correlation index first, then the most recent transaction with that gateway id"""
        transaction = self.correlations.transaction_for(consumer_id)
        if transaction is None:
            transaction = self.transactions.latest_by_sabpaisa_txn_id(consumer_id)
            if transaction is not None:
                logger.warning(
                    "Transaction resolved by recency fallback",
                    extra={"consumer_id": consumer_id, "transaction_id": transaction.transaction_id},
                )
        if transaction is None:
            raise NotFoundError(f"No transaction found for consumer id {consumer_id}")
        return transaction

    async def _recover_context(self, context: MandateContext, enquiry_id: str) -> None:
        """Second enquiry to fill identifiers into a failure payload"""
        try:
            enquiry = await self.gateway.mandate_enquiry(enquiry_id)
            transaction = self._locate_transaction(enquiry.consumer_id)
            merchant = self.merchants.get_by_merchant_id(transaction.merchant_id) if transaction.merchant_id else None
            context.capture_transaction(transaction, merchant)
        except (DomainException, SQLAlchemyError) as e:
            logger.warning(f"Could not recover transaction context: {e}", extra={"consumer_id": enquiry_id})

    @staticmethod
    def build_webhook_payload(
        enquiry: EnquiryResult,
        transaction: Transaction,
        merchant: Optional[Merchant],
        user: User,
    ) -> Dict[str, Any]:
        """Flat response payload; dates and purpose come from the transaction"""
        return {
            "clientCode": merchant.merchant_code if merchant else None,
            "clientTxnId": transaction.client_transaction_id,
            "transactionId": transaction.transaction_id,
            "sabpaisaTxnId": transaction.sabpaisa_txn_id,
            "consumerId": None,
            "payerName": user.name,
            "payerEmail": user.email,
            "payerMobile": user.mobile,
            "amount": transaction.amount,
            "monthlyEmi": transaction.monthly_emi,
            "maxAmount": enquiry.max_amount,
            "startDate": _iso(transaction.start_date),
            "endDate": _iso(transaction.end_date),
            "purpose": transaction.purpose,
            "frequency": enquiry.frequency,
            "registrationStatus": enquiry.registration_status,
            "mandateStatus": reconciled_status(enquiry.registration_status).value,
            "bankStatusMessage": enquiry.bank_status_message,
            "umrn": enquiry.umrn,
            "accountNumber": enquiry.account_number,
            "accountType": enquiry.account_type,
            "accountHolderName": enquiry.account_holder_name,
            "bankName": enquiry.bank_name,
            "ifscCode": enquiry.ifsc_code,
            "createdOn": None,
            "redirectUrl": None,
        }

    # Failure handling

    def _return_url(self, encrypted_payload: str) -> str:
        separator = "&" if "?" in self.settings.return_url else "?"
        return f"{self.settings.return_url}{separator}{RESPONSE_PARAM}={encrypted_payload}"

    def failure_redirect(self, context: MandateContext, error: Exception) -> str:
        """Return URL carrying an encrypted FAILED payload for the captured context"""
        message = str(error) if isinstance(error, DomainException) else GENERIC_FAILURE_MESSAGE
        payload = {
            "clientCode": context.client_code,
            "clientTxnId": context.client_txn_id,
            "transactionId": context.transaction_id,
            "sabpaisaTxnId": context.sabpaisa_txn_id,
            "amount": context.amount,
            "mandateStatus": MandateState.FAILED.value,
            "statusMessage": message,
        }
        try:
            return self._return_url(self.codec.encode(LEGACY, payload))
        except DomainException as e:
            logger.error(f"Could not encrypt failure payload: {e}", extra={"request_id": self.request_id})
            separator = "&" if "?" in self.settings.return_url else "?"
            return f"{self.settings.return_url}{separator}mandateStatus={MandateState.FAILED.value}"
