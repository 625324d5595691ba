"""EMI and fee calculation engine - core business logic for mandate terms"""

import math
from datetime import datetime
from decimal import Decimal, InvalidOperation

from emandate_gateway.domain.exceptions import ValidationError
from emandate_gateway.domain.frequencies import resolve_frequency
from emandate_gateway.domain.models import MandateTerms, Slab
from emandate_gateway.utils.date_utils import add_months, utcnow


def parse_amount(raw) -> Decimal:
    """Positive finite decimal from a request field"""
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Payment amount must be a number") from None

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")
    return amount


def duration_in_months(frequency_code: str | None, tenure: int) -> int:
    """
    Mandate length in months for `tenure` installments at a frequency.

    Daily and weekly schedules are rounded up to whole months
    (30 days / 4 weeks per month). Unknown codes are treated as monthly.
    """
    frequency = resolve_frequency(frequency_code)

    if frequency.code == "DAIL":
        return math.ceil(tenure / 30)
    if frequency.code == "WEEK":
        return math.ceil(tenure / 4)
    return tenure * frequency.months_multiplier


def calculate(slab: Slab, payment_amount: Decimal, now: datetime | None = None) -> MandateTerms:
    """
    Derive EMI schedule, fees and mandate duration for a payment amount.

    Requirements:
    - EMI is spread over the slab tenure after the base (down) payment
    - Processing fee is a percentage of the full payment amount
    - No rounding; callers format for display

    Example:
        slab 1000-10000, base 500, tenure 12, fee 2.5%, monthly
        payment 5000 -> emi 375, total emi 4500, fee 125, payable 5125
    """
    if slab.emi_tenure is None or slab.emi_tenure <= 0:
        raise ValidationError("EMI tenure must be a positive number of installments")

    total_amount = Decimal(payment_amount)
    base_amount = Decimal(slab.base_amount)
    fee_percent = Decimal(slab.processing_fee or 0)
    number_of_payments = int(slab.emi_tenure)

    emi_amount = (total_amount - base_amount) / number_of_payments
    total_emi_amount = emi_amount * number_of_payments
    processing_fee = (fee_percent / 100) * total_amount
    total_payable = base_amount + total_emi_amount + processing_fee

    frequency = resolve_frequency(slab.frequency)
    months = duration_in_months(frequency.code, number_of_payments)

    start_date = (now or utcnow()).date()
    end_date = add_months(start_date, months)

    return MandateTerms(
        total_amount=total_amount,
        number_of_payments=number_of_payments,
        emi_amount=emi_amount,
        total_emi_amount=total_emi_amount,
        processing_fee=processing_fee,
        total_payable=total_payable,
        duration_in_months=months,
        start_date=start_date,
        end_date=end_date,
        frequency=frequency,
        calculation_details={
            "slab_from": slab.slab_from,
            "slab_to": slab.slab_to,
            "base_amount": base_amount,
            "emi_tenure": number_of_payments,
            "processing_fee_percentage": fee_percent,
            "mandate_category": slab.mandate_category,
        },
    )
