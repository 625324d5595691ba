"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

FrequencyCode = Literal["DAIL", "WEEK", "MNTH", "BIMN", "QURT", "MIAN", "YEAR"]
MandateCategory = Literal["A001", "B001", "D001", "E001", "I001", "I002", "L001", "L002", "M001", "U099"]


def money(value: Optional[Decimal]) -> Optional[str]:
    """Two-decimal display form of a stored amount"""
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


class MerchantCreateRequest(BaseModel):
    """Request body for POST /v1/merchants"""

    merchant_id: str = Field(..., min_length=1, max_length=64, description="Merchant identifier")
    merchant_code: str = Field(..., min_length=1, max_length=64, description="Business code (clientCode)")
    name: Optional[str] = None
    status: str = "Active"


class MerchantResponse(BaseModel):
    """Merchant details"""

    merchant_id: str
    merchant_code: str
    name: Optional[str] = None
    status: str
    created_at: str


class SlabCreateRequest(BaseModel):
    """Request body for POST /v1/merchants/{merchant_id}/slabs"""

    slab_from: Decimal = Field(..., ge=0, description="Lower bound of the amount range")
    slab_to: Decimal = Field(..., gt=0, description="Upper bound of the amount range")
    base_amount: Decimal = Field(Decimal("0"), ge=0, description="Down payment")
    emi_amount: Decimal = Decimal("0")
    emi_tenure: int = Field(..., description="Number of installments")
    duration: Optional[int] = Field(None, gt=0, description="Mandate length in frequency periods")
    frequency: FrequencyCode = "MNTH"
    processing_fee: Decimal = Field(Decimal("0"), description="Percentage of the payment amount")
    mandate_category: Optional[MandateCategory] = None
    status: Literal[0, 1] = 1
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    remarks: Optional[str] = None


class SlabUpdateRequest(BaseModel):
    """Request body for PATCH /v1/merchants/{merchant_id}/slabs/{slab_id}; only sent fields change"""

    slab_from: Optional[Decimal] = Field(None, ge=0)
    slab_to: Optional[Decimal] = Field(None, gt=0)
    base_amount: Optional[Decimal] = Field(None, ge=0)
    emi_amount: Optional[Decimal] = None
    emi_tenure: Optional[int] = None
    duration: Optional[int] = Field(None, gt=0)
    frequency: Optional[FrequencyCode] = None
    processing_fee: Optional[Decimal] = None
    mandate_category: Optional[MandateCategory] = None
    status: Optional[Literal[0, 1]] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    remarks: Optional[str] = None


class SlabResponse(BaseModel):
    """Slab with amounts formatted to two decimals"""

    slab_id: str
    merchant_id: str
    slab_from: str
    slab_to: str
    base_amount: str
    emi_amount: str
    emi_tenure: int
    duration: Optional[int] = None
    frequency: str
    processing_fee: str
    mandate_category: Optional[str] = None
    status: int
    is_active: bool
    effective_date: str
    expiry_date: Optional[str] = None
    remarks: Optional[str] = None


class SlabListResponse(BaseModel):
    """Response for GET /v1/merchants/{merchant_id}/slabs"""

    merchant_id: str
    slabs: List[SlabResponse]
    page: int
    limit: int
    total_pages: int
    total_results: int


class UserMandateSchema(BaseModel):
    """Bank registration attached to a transaction"""

    amount: Optional[str] = None
    due_date: Optional[str] = None
    paid_date: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_account_type: Optional[str] = None
    bank_ifsc: Optional[str] = None
    bank_holder_name: Optional[str] = None
    bank_name: Optional[str] = None
    frequency: Optional[str] = None
    registration_status: Optional[str] = None
    bank_status_message: Optional[str] = None


class MandateRecordResponse(BaseModel):
    """Response for GET /v1/mandates/{transaction_id}"""

    transaction_id: str
    client_transaction_id: Optional[str] = None
    sabpaisa_txn_id: Optional[str] = None
    merchant_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: str
    monthly_emi: Optional[str] = None
    max_amount: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    purpose: Optional[str] = None
    status: str
    created_at: str
    mandate: Optional[UserMandateSchema] = None


class EnvelopeMeta(BaseModel):
    status: bool
    message: str
    code: int


class EnvelopeResponse(BaseModel):
    """`{"meta": {...}, "data": {...}}` body of the external API"""

    meta: EnvelopeMeta
    data: Dict[str, Any] = Field(default_factory=dict)
