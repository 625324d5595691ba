"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Frequency:
    """Debit frequency as understood by the gateway"""

    code: str
    frequency_id: int
    description: str
    months_multiplier: int


@dataclass
class Slab:
    """Fee/EMI slab of a merchant for an amount range"""

    merchant_id: str
    slab_from: Decimal
    slab_to: Decimal
    emi_tenure: int
    effective_date: datetime
    base_amount: Decimal = Decimal("0")
    emi_amount: Decimal = Decimal("0")
    frequency: str = "MNTH"
    processing_fee: Decimal = Decimal("0")  # percentage of the payment amount
    expiry_date: Optional[datetime] = None
    mandate_category: Optional[str] = None
    status: int = 1
    duration: Optional[int] = None
    remarks: Optional[str] = None
    slab_id: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return (
            self.status == 1
            and self.effective_date <= now
            and (self.expiry_date is None or self.expiry_date > now)
        )


@dataclass
class MandateTerms:
    """Output of the EMI/fee calculation for one payment amount"""

    total_amount: Decimal
    number_of_payments: int
    emi_amount: Decimal
    total_emi_amount: Decimal
    processing_fee: Decimal
    total_payable: Decimal
    duration_in_months: int
    start_date: date
    end_date: date
    frequency: Frequency
    calculation_details: Dict[str, Any] = field(default_factory=dict)

    def to_flat_dict(self) -> Dict[str, Any]:
        """Flatten into the key set served by the external calculation API"""
        details = self.calculation_details
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_emis": self.number_of_payments,
            "convenience_fee": self.processing_fee,
            "emi_amount": self.emi_amount,
            "downpayment": details.get("base_amount"),
            "total_amount": self.total_amount,
            "total_emi_amount": self.total_emi_amount,
            "total_payable": self.total_payable,
            "frequency_code": self.frequency.code,
            "frequency_description": self.frequency.description,
            "frequency_id": self.frequency.frequency_id,
            "frequency_multiplier": self.frequency.months_multiplier,
            "duration": self.duration_in_months,
            **details,
        }


@dataclass
class CustomerDetails:
    """Payer identity carried in the mandate hand-off payload"""

    name: str
    email: str
    mobile: str
    pan: str = ""
    telephone: str = ""


@dataclass
class MandateRequest:
    """Mandate registration request sent to the gateway"""

    consumer_id: str
    customer: CustomerDetails
    start_date: date
    end_date: date
    max_amount: Decimal
    frequency: str
    mandate_category: Optional[str]
    client_code: str
    purpose: str = "NA"


@dataclass
class EnquiryResult:
    """Mandate status as reported by the gateway enquiry endpoint"""

    consumer_id: str
    registration_status: Optional[str] = None
    bank_status_message: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    max_amount: Optional[str] = None
    purpose: Optional[str] = None
    frequency: Optional[str] = None
    account_number: Optional[str] = None
    account_type: Optional[str] = None
    account_holder_name: Optional[str] = None
    bank_name: Optional[str] = None
    ifsc_code: Optional[str] = None
    umrn: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload.pop("raw")
        return payload
