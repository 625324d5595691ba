"""Reconciliation outbox worker with exponential backoff retry logic"""

import asyncio
import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dateutil import parser as date_parser
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from emandate_gateway.config import Settings
from emandate_gateway.domain.exceptions import NotFoundError
from emandate_gateway.domain.mandates import reconciled_status
from emandate_gateway.infrastructure.database.models import ReconciliationTask
from emandate_gateway.infrastructure.database.repositories import (
    ReconciliationTaskRepository,
    TransactionRepository,
    UserMandateRepository,
)
from emandate_gateway.infrastructure.database.session import SessionFactory
from emandate_gateway.infrastructure.observability.logging import log_mandate_step
from emandate_gateway.infrastructure.observability.metrics import reconciliation_counter
from emandate_gateway.utils.date_utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

PENDING = "pending"
DONE = "done"
FAILED = "failed"
SKIPPED = "skipped"
MISSING = "missing"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_naive_utc(date_parser.isoparse(str(value)))
    except (ValueError, OverflowError):
        logger.warning("Ignoring unparseable enquiry date", extra={"value": str(value)})
        return None


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        logger.warning("Ignoring unparseable enquiry amount", extra={"value": str(value)})
        return None
    return amount if amount.is_finite() else None


def _without_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class ReconciliationWorker:
    """
    Applies queued webhook enquiry results to transactions and user mandates.

    Delivery is at-least-once: a task stays pending until applied, and every
    write is an upsert keyed by transaction_id, so reapplying is harmless.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.sleep = sleep

    @classmethod
    def from_settings(cls, session_factory: SessionFactory, settings: Settings) -> "ReconciliationWorker":
        return cls(
            session_factory,
            max_retries=settings.reconciliation_max_retries,
            backoff_base=settings.reconciliation_backoff_base,
        )

    async def process(self, task_id: uuid.UUID) -> str:
        """
        Apply one task, retrying failures.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base ... between attempts
        - After max_retries failed attempts the task is marked failed

        Never raises; the outcome is returned and recorded on the task.
        """
        attempt = 0
        while True:
            try:
                status = self._run_once(task_id)
            except Exception as e:
                attempt += 1
                final = attempt >= self.max_retries
                self._record_failure(task_id, e, final)

                if final:
                    reconciliation_counter.labels(outcome=FAILED).inc()
                    logger.error(
                        f"Reconciliation gave up after {attempt} attempts: {e}",
                        extra={"task_id": str(task_id)},
                    )
                    return FAILED

                reconciliation_counter.labels(outcome="retry").inc()
                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    f"Reconciliation attempt {attempt} failed, retrying in {backoff}s: {e}",
                    extra={"task_id": str(task_id)},
                )
                await self.sleep(backoff)
                continue

            if status == DONE:
                reconciliation_counter.labels(outcome=DONE).inc()
            return status

    async def drain_pending(self, limit: int = 100) -> List[str]:
        """Re-process tasks left pending, oldest first"""
        db = self.session_factory()
        try:
            task_ids = [task.id for task in ReconciliationTaskRepository(db).pending(limit)]
        finally:
            db.close()

        if task_ids:
            logger.info("Draining pending reconciliation tasks", extra={"count": len(task_ids)})
        return [await self.process(task_id) for task_id in task_ids]

    def _run_once(self, task_id: uuid.UUID) -> str:
        db = self.session_factory()
        try:
            task = ReconciliationTaskRepository(db).get(task_id)
            if task is None:
                logger.warning("Reconciliation task not found", extra={"task_id": str(task_id)})
                return MISSING
            if task.status != PENDING:
                return SKIPPED

            self.apply(db, task)

            task.status = DONE
            task.attempts += 1
            task.last_error = None
            task.last_attempt_at = utcnow()
            db.commit()

            log_mandate_step("RECONCILED", task.transaction_id, task_id=str(task_id))
            return DONE
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_failure(self, task_id: uuid.UUID, error: Exception, final: bool) -> None:
        db = self.session_factory()
        try:
            task = ReconciliationTaskRepository(db).get(task_id)
            if task is None:
                return
            task.attempts += 1
            task.last_error = str(error)[:2000]
            task.last_attempt_at = utcnow()
            if final:
                task.status = FAILED
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not record reconciliation failure: {e}", extra={"task_id": str(task_id)})
        finally:
            db.close()

    @staticmethod
    def apply(db: Session, task: ReconciliationTask) -> None:
        """Upsert transaction and user mandate from the stored enquiry result"""
        transactions = TransactionRepository(db)
        transaction = transactions.get(task.transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {task.transaction_id} not found")

        enquiry = task.payload or {}
        start_date = _parse_datetime(enquiry.get("start_date"))
        end_date = _parse_datetime(enquiry.get("end_date"))
        max_amount = _parse_amount(enquiry.get("max_amount"))
        status = reconciled_status(enquiry.get("registration_status")).value

        transactions.update_fields(
            transaction.transaction_id,
            **_without_none(
                {
                    "start_date": start_date,
                    "end_date": end_date,
                    "max_amount": max_amount,
                    "purpose": enquiry.get("purpose") or None,
                    "status": status,
                }
            ),
        )

        UserMandateRepository(db).upsert(
            {
                "transaction_id": transaction.transaction_id,
                "user_id": transaction.user_id,
                "amount": max_amount if max_amount is not None else transaction.max_amount,
                "due_date": start_date or transaction.start_date,
                "bank_account_number": enquiry.get("account_number"),
                "bank_account_type": enquiry.get("account_type"),
                "bank_ifsc": enquiry.get("ifsc_code"),
                "bank_holder_name": enquiry.get("account_holder_name"),
                "bank_name": enquiry.get("bank_name"),
                "frequency": enquiry.get("frequency"),
                "registration_status": enquiry.get("registration_status"),
                "bank_status_message": enquiry.get("bank_status_message"),
            }
        )
