"""Unit tests for the reconciliation outbox worker"""

import asyncio
import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session
from emandate_gateway.domain.models import CustomerDetails
from emandate_gateway.infrastructure.database.models import ReconciliationTask, UserMandate
from emandate_gateway.infrastructure.database.repositories import (
    MerchantRepository,
    ReconciliationTaskRepository,
    TransactionRepository,
    UserRepository,
)
from emandate_gateway.services.reconciliation import ReconciliationWorker


ENQUIRY = {
    "consumer_id": "SP123",
    "registration_status": "ACTIVE",
    "bank_status_message": "Mandate approved by bank",
    "start_date": "2026-01-01T00:00:00Z",
    "end_date": "2027-01-01T05:30:00+05:30",
    "max_amount": "375.00",
    "purpose": "Loan EMI",
    "frequency": "MNTH",
    "account_number": "XXXXXX1234",
    "account_type": "SAVINGS",
    "account_holder_name": "Asha Verma",
    "bank_name": "State Bank",
    "ifsc_code": "SBIN0000001",
    "umrn": "UMRN000123",
}


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def transaction_id(db: Session) -> str:
    MerchantRepository(db).upsert_by_code("MERCH01")
    user = UserRepository(db).upsert_by_email(
        CustomerDetails(name="Asha Verma", email="asha@example.com", mobile="9876543210")
    )
    TransactionRepository(db).upsert(
        {
            "transaction_id": "txn-1",
            "client_transaction_id": "CL-1",
            "sabpaisa_txn_id": "SP123",
            "user_id": user.user_id,
            "merchant_id": "MERCH01",
            "amount": Decimal("5000"),
            "monthly_emi": Decimal("375"),
            "max_amount": Decimal("375"),
            "start_date": datetime(2025, 12, 1),
            "end_date": datetime(2026, 12, 1),
            "purpose": "L001",
            "status": "GATEWAY_REDIRECT_ISSUED",
        }
    )
    db.commit()
    return "txn-1"


def enqueue(db: Session, transaction_id: str, payload=None) -> ReconciliationTask:
    task = ReconciliationTaskRepository(db).enqueue(transaction_id, "SP123", payload or dict(ENQUIRY))
    db.commit()
    return task


def test_process_applies_enquiry(db: Session, session_factory, transaction_id: str):
    task = enqueue(db, transaction_id)
    worker = ReconciliationWorker(session_factory)

    assert asyncio.run(worker.process(task.id)) == "done"

    db.expire_all()
    transaction = TransactionRepository(db).get(transaction_id)
    assert transaction.status == "ACTIVE"
    assert transaction.start_date == datetime(2026, 1, 1)
    assert transaction.end_date == datetime(2027, 1, 1)
    assert transaction.max_amount == Decimal("375.00")
    assert transaction.purpose == "Loan EMI"

    mandate = db.query(UserMandate).filter(UserMandate.transaction_id == transaction_id).one()
    assert mandate.bank_account_number == "XXXXXX1234"
    assert mandate.bank_ifsc == "SBIN0000001"
    assert mandate.registration_status == "ACTIVE"
    assert mandate.user_id == transaction.user_id

    stored = db.get(ReconciliationTask, task.id)
    assert stored.status == "done"
    assert stored.attempts == 1


def test_process_is_idempotent(db: Session, session_factory, transaction_id: str):
    first = enqueue(db, transaction_id)
    second = enqueue(db, transaction_id, {**ENQUIRY, "bank_name": "Union Bank"})
    worker = ReconciliationWorker(session_factory)

    assert asyncio.run(worker.process(first.id)) == "done"
    assert asyncio.run(worker.process(first.id)) == "skipped"
    assert asyncio.run(worker.process(second.id)) == "done"

    db.expire_all()
    mandates = db.query(UserMandate).filter(UserMandate.transaction_id == transaction_id).all()
    assert len(mandates) == 1
    assert mandates[0].bank_name == "Union Bank"


def test_rejected_registration_marks_failed(db: Session, session_factory, transaction_id: str):
    task = enqueue(db, transaction_id, {**ENQUIRY, "registration_status": "REJECTED", "start_date": "garbage"})

    asyncio.run(ReconciliationWorker(session_factory).process(task.id))

    db.expire_all()
    transaction = TransactionRepository(db).get(transaction_id)
    assert transaction.status == "FAILED"
    assert transaction.start_date == datetime(2025, 12, 1)


def test_process_retries_with_backoff_then_fails(db: Session, session_factory):
    task = enqueue(db, "missing-transaction")
    sleep = RecordingSleep()
    worker = ReconciliationWorker(session_factory, max_retries=3, backoff_base=0.5, sleep=sleep)

    assert asyncio.run(worker.process(task.id)) == "failed"
    assert sleep.calls == [0.5, 1.0]

    db.expire_all()
    stored = db.get(ReconciliationTask, task.id)
    assert stored.status == "failed"
    assert stored.attempts == 3
    assert "not found" in stored.last_error


def test_process_recovers_after_transient_failure(db: Session, session_factory, transaction_id: str):
    class FlakyWorker(ReconciliationWorker):
        failures = 1

        def apply(self, db, task):
            if self.failures:
                self.failures -= 1
                raise RuntimeError("database is locked")
            ReconciliationWorker.apply(db, task)

    task = enqueue(db, transaction_id)
    sleep = RecordingSleep()

    assert asyncio.run(FlakyWorker(session_factory, backoff_base=1.0, sleep=sleep).process(task.id)) == "done"
    assert sleep.calls == [1.0]

    db.expire_all()
    stored = db.get(ReconciliationTask, task.id)
    assert stored.status == "done"
    assert stored.attempts == 2
    assert stored.last_error is None


def test_drain_pending(db: Session, session_factory, transaction_id: str):
    enqueue(db, transaction_id)
    enqueue(db, transaction_id)

    results = asyncio.run(ReconciliationWorker(session_factory).drain_pending())

    assert results == ["done", "done"]
    assert ReconciliationTaskRepository(db).pending() == []
