"""SQLAlchemy ORM models for merchants, slabs and the mandate pipeline"""

import uuid
from sqlalchemy import Column, String, Numeric, DateTime, Integer, ForeignKey, Text, JSON, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship

from emandate_gateway.utils.date_utils import utcnow

Base = declarative_base()

# Configured amounts keep two decimals, fee percentages four; computed amounts keep full scale
Amount = Numeric(14, 2)
ComputedAmount = Numeric(28, 10)
Percentage = Numeric(9, 4)


class Merchant(Base):
    """Merchant registered with the gateway"""

    __tablename__ = "merchant"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(64), nullable=False, unique=True)
    merchant_code = Column(String(64), nullable=False, unique=True)
    name = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="Active")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    slabs = relationship("MerchantSlab", back_populates="merchant")


class MerchantSlab(Base):
    """Fee/EMI slab for an amount range of one merchant"""

    __tablename__ = "merchant_slab"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(64), ForeignKey("merchant.merchant_id"), nullable=False, index=True)
    slab_from = Column(Amount, nullable=False)
    slab_to = Column(Amount, nullable=False)
    base_amount = Column(Amount, nullable=False, default=0)
    emi_amount = Column(Amount, nullable=False, default=0)
    emi_tenure = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=True)
    frequency = Column(String(8), nullable=False)
    processing_fee = Column(Percentage, nullable=False, default=0)
    mandate_category = Column(String(8), nullable=True)
    status = Column(Integer, nullable=False, default=1)
    effective_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant", back_populates="slabs")


class User(Base):
    """Payer; upserted by email during mandate creation"""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, unique=True)
    name = Column(Text, nullable=True)
    mobile = Column(String(32), nullable=True)
    email = Column(String(255), nullable=False, unique=True)
    pan = Column(String(16), nullable=False, default="")
    telephone = Column(String(32), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Transaction(Base):
    """One mandate-creation attempt"""

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_sabpaisa_recency", "sabpaisa_txn_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(64), nullable=False, unique=True)
    client_transaction_id = Column(String(128), nullable=True, index=True)
    sabpaisa_txn_id = Column(String(128), nullable=True)
    user_id = Column(String(64), ForeignKey("users.user_id"), nullable=True, index=True)
    merchant_id = Column(String(64), ForeignKey("merchant.merchant_id"), nullable=True, index=True)
    amount = Column(Amount, nullable=False)
    monthly_emi = Column(ComputedAmount, nullable=True)
    max_amount = Column(ComputedAmount, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    purpose = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="INITIATED")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant")
    user = relationship("User")
    mandate = relationship("UserMandate", back_populates="transaction", uselist=False)


class UserMandate(Base):
    """Bank-side mandate registration, one per transaction"""

    __tablename__ = "user_mandate"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(64), ForeignKey("transactions.transaction_id"), nullable=False, unique=True)
    user_id = Column(String(64), ForeignKey("users.user_id"), nullable=False, index=True)
    amount = Column(ComputedAmount, nullable=True)
    due_date = Column(DateTime, nullable=True)
    paid_date = Column(DateTime, nullable=True)
    bank_account_number = Column(String(64), nullable=True)
    bank_account_type = Column(String(32), nullable=True)
    bank_ifsc = Column(String(16), nullable=True)
    bank_holder_name = Column(Text, nullable=True)
    bank_name = Column(Text, nullable=True)
    frequency = Column(String(8), nullable=True)
    registration_status = Column(String(32), nullable=True)
    bank_status_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    transaction = relationship("Transaction", back_populates="mandate")


class GatewayCorrelation(Base):
    """Gateway consumer id issued for a mandate attempt"""

    __tablename__ = "gateway_correlation"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    consumer_id = Column(String(128), nullable=False, unique=True)
    transaction_id = Column(String(64), ForeignKey("transactions.transaction_id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ReconciliationTask(Base):
    """Outbox of webhook enquiry results awaiting persistence"""

    __tablename__ = "reconciliation_task"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(64), nullable=False, index=True)
    consumer_id = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
