"""Pytest fixtures for testing"""

import pytest
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Generator, List, Optional
from urllib.parse import parse_qs, urlsplit
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from emandate_gateway.api.dependencies import get_gateway_client, get_settings
from emandate_gateway.api.main import create_app
from emandate_gateway.config import Settings
from emandate_gateway.domain.exceptions import GatewayError
from emandate_gateway.domain.models import EnquiryResult, MandateRequest
from emandate_gateway.infrastructure.codecs.registry import LEGACY, PayloadCodec
from emandate_gateway.infrastructure.database.models import Base, MerchantSlab
from emandate_gateway.infrastructure.database.repositories import MerchantRepository
from emandate_gateway.infrastructure.database.session import engine_options, get_db, get_session_factory
from emandate_gateway.services.slab_store import SlabStore
from emandate_gateway.utils.date_utils import utcnow


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

RETURN_URL = "https://merchant.example/mandate/response"


class FakeGatewayClient:
    """In-memory stand-in for the payment gateway"""

    def __init__(self):
        self.created: List[MandateRequest] = []
        self.enquiries: List[str] = []
        self.fail_create = False
        self.fail_enquiry = False
        self.registration_status = "ACTIVE"
        self.enquiry_consumer_id: Optional[str] = None

    async def create_mandate(self, request: MandateRequest) -> Dict[str, str]:
        if self.fail_create:
            raise GatewayError("Gateway error: 503")
        self.created.append(request)
        return {"bank_details_url": f"https://bank.example/authorise/{request.consumer_id}"}

    async def mandate_enquiry(self, consumer_id: str) -> EnquiryResult:
        self.enquiries.append(consumer_id)
        if self.fail_enquiry:
            raise GatewayError("Gateway timeout after 10.0s")
        return EnquiryResult(
            consumer_id=self.enquiry_consumer_id or consumer_id,
            registration_status=self.registration_status,
            bank_status_message="Mandate approved by bank",
            start_date="2026-01-01T00:00:00Z",
            end_date="2027-01-01T00:00:00Z",
            max_amount="375.00",
            purpose="Loan EMI",
            frequency="MNTH",
            account_number="XXXXXX1234",
            account_type="SAVINGS",
            account_holder_name="Asha Verma",
            bank_name="State Bank",
            ifsc_code="SBIN0000001",
            umrn="UMRN000123",
        )


@pytest.fixture
def test_settings() -> Settings:
    """Settings with valid key material for both codecs"""
    return Settings(
        database_url=TEST_DATABASE_URL,
        gateway_base_url="http://gateway.test/",
        gateway_api_key="test-api-key",
        base_url="http://testserver/",
        return_url=RETURN_URL,
        auth_key="0123456789abcdef",
        auth_iv="fedcba9876543210",
        api_aes_key="a2tra2tra2tra2tra2tra2tra2tra2tra2tra2tra2s=",
        api_hmac_key="aG1hYy1zaWduaW5nLWtleS1mb3ItdGVzdHMtb25seS0wMTIzNDU2Nzg5YWJjZGVm",
        reconciliation_backoff_base=0.0,
    )


@pytest.fixture
def codec(test_settings: Settings) -> PayloadCodec:
    return PayloadCodec.from_settings(test_settings)


@pytest.fixture
def fake_gateway() -> FakeGatewayClient:
    return FakeGatewayClient()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Independent sessions on the test database, as background work uses"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session, test_settings: Settings, fake_gateway: FakeGatewayClient) -> TestClient:
    """Create FastAPI test client with test database, settings and gateway"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_gateway_client] = lambda: fake_gateway
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def merchant_with_slab(db: Session) -> MerchantSlab:
    """Merchant MERCH01 with one active monthly slab 1000-10000"""
    MerchantRepository(db).create(merchant_id="MERCH01", merchant_code="MERCH01", name="Acme Retail")
    slab = SlabStore(db).create_slab(
        "MERCH01",
        {
            "slab_from": Decimal("1000"),
            "slab_to": Decimal("10000"),
            "base_amount": Decimal("500"),
            "emi_amount": Decimal("0"),
            "emi_tenure": 12,
            "duration": 12,
            "frequency": "MNTH",
            "processing_fee": Decimal("2.5"),
            "mandate_category": "L001",
            "effective_date": utcnow() - timedelta(days=1),
        },
    )
    db.commit()
    return slab


@pytest.fixture
def redirect_payload(codec: PayloadCodec):
    """Decrypt the enachResponse parameter of a return-URL redirect"""

    def decode(location: str) -> Dict[str, Optional[str]]:
        assert location.startswith(RETURN_URL)
        query = parse_qs(urlsplit(location).query)
        return codec.decode(query["enachResponse"][0], LEGACY)

    return decode
