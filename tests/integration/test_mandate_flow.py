"""Integration tests for the mandate create and webhook redirect channel"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from emandate_gateway.domain.models import CustomerDetails, EnquiryResult
from emandate_gateway.infrastructure.codecs.registry import LEGACY, PayloadCodec
from emandate_gateway.infrastructure.database.models import MerchantSlab, ReconciliationTask, Transaction, UserMandate
from emandate_gateway.infrastructure.database.repositories import (
    ReconciliationTaskRepository,
    TransactionRepository,
    UserRepository,
)
from emandate_gateway.services.mandate_orchestrator import MandateOrchestrator, transaction_id_for


HANDOFF = {
    "clientCode": "MERCH01",
    "clientTxnId": "CL-1",
    "payerName": "Asha",
    "payerLName": "Verma",
    "payerEmail": "asha@example.com",
    "payerMobile": "9876543210",
    "amount": "5000",
    "sabpaisaTxnId": "SP123",
}


def start_mandate(client: TestClient, codec: PayloadCodec, method: str = "GET", **overrides):
    wire = codec.encode(LEGACY, {**HANDOFF, **overrides})
    return client.request(method, "/v1/mandate/create", params={"encResponse": wire})


def test_create_redirects_to_bank(
    client: TestClient, codec: PayloadCodec, db: Session, fake_gateway, merchant_with_slab: MerchantSlab
):
    response = start_mandate(client, codec)

    assert response.status_code == 302
    assert response.headers["location"] == "https://bank.example/authorise/SP123"

    request = fake_gateway.created[0]
    assert request.consumer_id == "SP123"
    assert request.max_amount == Decimal("375")
    assert request.customer.name == "Asha Verma"
    assert request.mandate_category == "L001"
    assert (request.end_date - request.start_date).days >= 365

    transaction = TransactionRepository(db).get(transaction_id_for("MERCH01", "CL-1"))
    assert transaction.status == "GATEWAY_REDIRECT_ISSUED"
    assert transaction.client_transaction_id == "CL-1"
    assert transaction.sabpaisa_txn_id == "SP123"
    assert transaction.monthly_emi == Decimal("375")
    assert transaction.purpose == "L001"


def test_create_stores_emi_without_rounding(
    client: TestClient, codec: PayloadCodec, db: Session, fake_gateway, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec, amount="5001", clientTxnId="CL-EMI")

    transaction = TransactionRepository(db).get(transaction_id_for("MERCH01", "CL-EMI"))
    ten_places = Decimal("0.0000000001")
    # (5001 - 500) / 12 does not terminate
    assert transaction.monthly_emi != Decimal("375.08")
    assert transaction.monthly_emi.quantize(ten_places) == (Decimal("4501") / 12).quantize(ten_places)
    assert transaction.max_amount == transaction.monthly_emi

    record = client.get(f"/v1/mandates/{transaction.transaction_id}").json()
    assert record["monthly_emi"] == "375.08"


def test_create_accepts_post_and_enc_req(client: TestClient, codec: PayloadCodec, merchant_with_slab: MerchantSlab):
    wire = codec.encode(LEGACY, HANDOFF)

    response = client.post("/v1/mandate/create", params={"encReq": wire})

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://bank.example/")


def test_create_replay_updates_same_transaction(
    client: TestClient, codec: PayloadCodec, db: Session, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    start_mandate(client, codec, amount="6000")

    transactions = db.query(Transaction).filter(Transaction.client_transaction_id == "CL-1").all()
    assert len(transactions) == 1
    db.refresh(transactions[0])
    assert transactions[0].amount == Decimal("6000.00")


def test_create_upserts_user_by_email(
    client: TestClient, codec: PayloadCodec, db: Session, merchant_with_slab: MerchantSlab
):
    UserRepository(db).upsert_by_email(
        CustomerDetails(name="A. Verma", email="asha@example.com", mobile="", pan="ABCDE1234F")
    )
    db.commit()

    start_mandate(client, codec)

    user = UserRepository(db).upsert_by_email(CustomerDetails(name="", email="asha@example.com", mobile=""))
    assert user.name == "Asha Verma"
    assert user.mobile == "9876543210"
    assert user.pan == "ABCDE1234F"


def test_create_amount_outside_slabs_redirects_failure(
    client: TestClient, codec: PayloadCodec, redirect_payload, fake_gateway, merchant_with_slab: MerchantSlab
):
    response = start_mandate(client, codec, amount="20000")

    assert response.status_code == 302
    payload = redirect_payload(response.headers["location"])
    assert payload["mandateStatus"] == "FAILED"
    assert payload["clientCode"] == "MERCH01"
    assert payload["clientTxnId"] == "CL-1"
    assert payload["amount"] == "20000"
    assert payload["transactionId"] is None
    assert "not within any active slab" in payload["statusMessage"]
    assert fake_gateway.created == []


@pytest.mark.parametrize("amount", ["0", "-5", "five"])
def test_create_invalid_amount_redirects_failure(
    client: TestClient, codec: PayloadCodec, redirect_payload, merchant_with_slab: MerchantSlab, amount
):
    payload = redirect_payload(start_mandate(client, codec, amount=amount).headers["location"])

    assert payload["mandateStatus"] == "FAILED"
    assert payload["statusMessage"].startswith("Payment amount")


def test_create_gateway_failure_marks_transaction_failed(
    client: TestClient, codec: PayloadCodec, db: Session, redirect_payload, fake_gateway,
    merchant_with_slab: MerchantSlab,
):
    fake_gateway.fail_create = True

    payload = redirect_payload(start_mandate(client, codec).headers["location"])

    transaction_id = transaction_id_for("MERCH01", "CL-1")
    assert payload["mandateStatus"] == "FAILED"
    assert payload["transactionId"] == transaction_id
    assert payload["sabpaisaTxnId"] == "SP123"
    assert TransactionRepository(db).get(transaction_id).status == "FAILED"


def test_create_undecryptable_request(client: TestClient, redirect_payload):
    response = client.get("/v1/mandate/create", params={"encResponse": "definitely-not-ciphertext"})

    payload = redirect_payload(response.headers["location"])
    assert payload["mandateStatus"] == "FAILED"
    assert payload["statusMessage"] == "Decryption error"
    assert payload["clientCode"] is None


def test_create_missing_payload(client: TestClient, redirect_payload):
    payload = redirect_payload(client.get("/v1/mandate/create").headers["location"])
    assert payload["statusMessage"] == "Encrypted payload is missing"


def test_webhook_redirects_with_transaction_payload(
    client: TestClient, codec: PayloadCodec, db: Session, redirect_payload, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    transaction_id = transaction_id_for("MERCH01", "CL-1")
    before = TransactionRepository(db).get(transaction_id)
    start_date = before.start_date.date().isoformat()

    response = client.get("/v1/mandate/web-hook/SP123")

    assert response.status_code == 302
    payload = redirect_payload(response.headers["location"])
    assert payload["mandateStatus"] == "ACTIVE"
    assert payload["registrationStatus"] == "ACTIVE"
    assert payload["transactionId"] == transaction_id
    assert payload["clientCode"] == "MERCH01"
    assert payload["payerEmail"] == "asha@example.com"
    assert payload["umrn"] == "UMRN000123"
    assert payload["ifscCode"] == "SBIN0000001"
    # Dates and purpose come from the stored transaction, not the enquiry
    assert payload["startDate"] == start_date
    assert payload["purpose"] == "L001"
    assert payload["consumerId"] is None
    assert payload["createdOn"] is None
    assert payload["redirectUrl"] is None


def test_webhook_background_reconciliation(
    client: TestClient, codec: PayloadCodec, db: Session, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    transaction_id = transaction_id_for("MERCH01", "CL-1")

    client.get("/v1/mandate/web-hook/SP123")

    db.expire_all()
    transaction = TransactionRepository(db).get(transaction_id)
    assert transaction.status == "ACTIVE"
    assert transaction.start_date == datetime(2026, 1, 1)
    assert transaction.purpose == "Loan EMI"

    mandate = db.query(UserMandate).filter(UserMandate.transaction_id == transaction_id).one()
    assert mandate.bank_name == "State Bank"

    record = client.get(f"/v1/mandates/{transaction_id}").json()
    assert record["status"] == "ACTIVE"
    assert record["max_amount"] == "375.00"
    assert record["mandate"]["bank_account_number"] == "XXXXXX1234"


def test_pending_tasks_redelivered_on_startup(
    client: TestClient, codec: PayloadCodec, db: Session, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    transaction_id = transaction_id_for("MERCH01", "CL-1")
    # Committed by a process that stopped before its background work ran
    task = ReconciliationTaskRepository(db).enqueue(
        transaction_id,
        "SP123",
        EnquiryResult(consumer_id="SP123", registration_status="ACTIVE", bank_name="State Bank").to_payload(),
    )
    db.commit()

    with client:
        pass

    db.expire_all()
    assert db.get(ReconciliationTask, task.id).status == "done"
    assert TransactionRepository(db).get(transaction_id).status == "ACTIVE"


def test_startup_drain_can_be_disabled(
    client: TestClient, codec: PayloadCodec, db: Session, test_settings, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    task = ReconciliationTaskRepository(db).enqueue(
        transaction_id_for("MERCH01", "CL-1"), "SP123", EnquiryResult(consumer_id="SP123").to_payload()
    )
    db.commit()
    test_settings.reconciliation_drain_on_startup = False

    with client:
        pass

    db.expire_all()
    assert db.get(ReconciliationTask, task.id).status == "pending"


def test_webhook_failure_after_enqueue_still_reconciles(
    client: TestClient, codec: PayloadCodec, db: Session, redirect_payload, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    transaction_id = transaction_id_for("MERCH01", "CL-1")

    with patch.object(MandateOrchestrator, "build_webhook_payload", side_effect=RuntimeError("template broke")):
        response = client.get("/v1/mandate/web-hook/SP123")

    assert redirect_payload(response.headers["location"])["mandateStatus"] == "FAILED"
    db.expire_all()
    assert TransactionRepository(db).get(transaction_id).status == "ACTIVE"
    assert db.query(ReconciliationTask).one().status == "done"


def test_webhook_rejected_registration(
    client: TestClient, codec: PayloadCodec, db: Session, redirect_payload, fake_gateway,
    merchant_with_slab: MerchantSlab,
):
    start_mandate(client, codec)
    fake_gateway.registration_status = "REJECTED"

    payload = redirect_payload(client.get("/v1/mandate/web-hook/SP123").headers["location"])

    assert payload["mandateStatus"] == "FAILED"
    assert payload["registrationStatus"] == "REJECTED"
    db.expire_all()
    assert TransactionRepository(db).get(transaction_id_for("MERCH01", "CL-1")).status == "FAILED"


def test_webhook_unknown_consumer(client: TestClient, redirect_payload, fake_gateway):
    payload = redirect_payload(client.get("/v1/mandate/web-hook/UNKNOWN").headers["location"])

    assert payload["mandateStatus"] == "FAILED"
    assert payload["statusMessage"] == "No transaction found for consumer id UNKNOWN"
    # A second enquiry tries to recover context for the failure payload
    assert fake_gateway.enquiries == ["UNKNOWN", "UNKNOWN"]


def test_webhook_enquiry_failure(
    client: TestClient, codec: PayloadCodec, redirect_payload, fake_gateway, merchant_with_slab: MerchantSlab
):
    start_mandate(client, codec)
    fake_gateway.fail_enquiry = True

    payload = redirect_payload(client.get("/v1/mandate/web-hook/SP123").headers["location"])

    assert payload["mandateStatus"] == "FAILED"
    assert payload["sabpaisaTxnId"] == "SP123"


def test_webhook_uses_correlation_for_retried_attempt(
    client: TestClient, codec: PayloadCodec, redirect_payload, merchant_with_slab: MerchantSlab
):
    """Same gateway id reused by a second attempt resolves to the newer transaction"""
    start_mandate(client, codec, clientTxnId="CL-1")
    start_mandate(client, codec, clientTxnId="CL-2")

    payload = redirect_payload(client.get("/v1/mandate/web-hook/SP123").headers["location"])

    assert payload["clientTxnId"] == "CL-2"
    assert payload["transactionId"] == transaction_id_for("MERCH01", "CL-2")


def test_webhook_falls_back_to_most_recent_transaction(
    client: TestClient, db: Session, redirect_payload, merchant_with_slab: MerchantSlab
):
    """Without a correlation row the newest transaction for the gateway id wins"""
    user = UserRepository(db).upsert_by_email(
        CustomerDetails(name="Asha Verma", email="asha@example.com", mobile="9876543210")
    )
    created = datetime(2026, 1, 1, 10, 0, 0)
    for index, offset in (("old", 0), ("new", 1)):
        TransactionRepository(db).upsert(
            {
                "transaction_id": f"txn-{index}",
                "client_transaction_id": f"CL-{index}",
                "sabpaisa_txn_id": "SP999",
                "user_id": user.user_id,
                "merchant_id": "MERCH01",
                "amount": Decimal("5000"),
                "created_at": created + timedelta(microseconds=offset),
            }
        )
    db.commit()

    payload = redirect_payload(client.get("/v1/mandate/web-hook/SP999").headers["location"])

    assert payload["transactionId"] == "txn-new"


def test_get_unknown_mandate(client: TestClient):
    response = client.get("/v1/mandates/missing")
    assert response.status_code == 404
