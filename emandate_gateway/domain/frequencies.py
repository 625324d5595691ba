"""Debit frequency lookup table shared by calculation and scheduling"""

from typing import Dict

from emandate_gateway.domain.models import Frequency

DEFAULT_FREQUENCY_CODE = "MNTH"

FREQUENCIES: Dict[str, Frequency] = {
    "DAIL": Frequency(code="DAIL", frequency_id=1, description="Daily", months_multiplier=1),
    "WEEK": Frequency(code="WEEK", frequency_id=2, description="Weekly", months_multiplier=1),
    "BIMN": Frequency(code="BIMN", frequency_id=3, description="Bi-Monthly", months_multiplier=2),
    "MNTH": Frequency(code="MNTH", frequency_id=4, description="Monthly", months_multiplier=1),
    "QURT": Frequency(code="QURT", frequency_id=5, description="Quarterly", months_multiplier=3),
    "MIAN": Frequency(code="MIAN", frequency_id=6, description="Semi-Annual", months_multiplier=6),
    "YEAR": Frequency(code="YEAR", frequency_id=7, description="Yearly", months_multiplier=12),
}


def resolve_frequency(code: str | None) -> Frequency:
    """Look up a frequency code; unknown codes behave as monthly"""
    return FREQUENCIES.get((code or "").upper(), FREQUENCIES[DEFAULT_FREQUENCY_CODE])
