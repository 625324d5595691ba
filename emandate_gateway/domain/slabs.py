"""Slab range rules: field validation, overlap detection and amount lookup"""

from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from emandate_gateway.domain.exceptions import NotFoundError, OverlapError, ValidationError
from emandate_gateway.domain.models import Slab


def ranges_overlap(from1: Decimal, to1: Decimal, from2: Decimal, to2: Decimal) -> bool:
    """Closed-interval overlap: touching bounds count as overlapping"""
    return from1 <= to2 and to1 >= from2


def validate_slab_fields(slab: Slab) -> None:
    """Reject ranges and pricing that can never be applied"""
    if slab.slab_from >= slab.slab_to:
        raise ValidationError("Slab from amount must be less than slab to amount")

    if slab.emi_amount is not None and slab.emi_tenure is not None:
        if slab.emi_amount < 0 and slab.emi_tenure <= 0:
            raise ValidationError("Invalid EMI amount or tenure")

    if slab.processing_fee is not None and slab.processing_fee < 0:
        raise ValidationError("Processing fee must be non-negative")

    if slab.expiry_date is not None and slab.expiry_date < slab.effective_date:
        raise ValidationError("Expiry date must not be before effective date")


def ensure_no_overlap(candidate: Slab, active_slabs: Iterable[Slab]) -> None:
    """Raise OverlapError if the candidate range meets any other active slab"""
    for existing in active_slabs:
        if candidate.slab_id is not None and existing.slab_id == candidate.slab_id:
            continue
        if ranges_overlap(candidate.slab_from, candidate.slab_to, existing.slab_from, existing.slab_to):
            raise OverlapError(
                "Slab range overlaps with existing active slab "
                f"{existing.slab_from}-{existing.slab_to}. Please check the current slab ranges."
            )


def merge_slab(existing: Slab, patch: Dict[str, Any]) -> Slab:
    """Existing slab with patched fields applied; unknown keys are ignored"""
    allowed = {k: v for k, v in patch.items() if k in Slab.__dataclass_fields__ and k != "slab_id"}
    return replace(existing, **allowed)


def find_applicable(slabs: List[Slab], amount: Decimal) -> Optional[Slab]:
    """First slab, by ascending lower bound, whose closed range contains amount"""
    for slab in sorted(slabs, key=lambda s: s.slab_from):
        if slab.slab_from <= amount <= slab.slab_to:
            return slab
    return None


def require_applicable(merchant_id: str, slabs: List[Slab], amount: Decimal) -> Slab:
    if not slabs:
        raise NotFoundError(f"No active slabs found for merchant {merchant_id}")

    slab = find_applicable(slabs, amount)
    if slab is None:
        raise NotFoundError(
            f"Payment amount {amount} is not within any active slab range for merchant {merchant_id}"
        )
    return slab
