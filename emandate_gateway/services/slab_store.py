"""Slab store: the only writer of merchant slabs, enforcing the overlap invariant"""

import logging
import math
import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from emandate_gateway.domain.exceptions import ConflictError, NotFoundError, ValidationError
from emandate_gateway.domain.models import Slab
from emandate_gateway.domain.slabs import ensure_no_overlap, merge_slab, require_applicable, validate_slab_fields
from emandate_gateway.infrastructure.database.models import MerchantSlab
from emandate_gateway.infrastructure.database.repositories import SLAB_SORT_COLUMNS, MerchantRepository, SlabRepository
from emandate_gateway.utils.date_utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

DATE_FIELDS = ("effective_date", "expiry_date")
SLAB_FIELDS = {f.name for f in fields(Slab)}
REQUIRED_FIELDS = ("slab_from", "slab_to", "emi_tenure")
DEFAULT_PAGE_SIZE = 10


@dataclass
class SlabPage:
    """One page of a slab listing"""

    results: List[Tuple[MerchantSlab, bool]]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)


def _parse_sort(sort_by: Optional[str]) -> Tuple[str, bool]:
    if not sort_by:
        return "slab_from", False
    field_name, _, direction = sort_by.partition(":")
    direction = (direction or "asc").lower()
    if field_name not in SLAB_SORT_COLUMNS or direction not in ("asc", "desc"):
        raise ValidationError(f"Cannot sort slabs by {sort_by}")
    return field_name, direction == "desc"


def _normalise(fields: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(fields)
    for name in DATE_FIELDS:
        if name in data:
            data[name] = to_naive_utc(data[name])
    return data


def _parse_slab_id(slab_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(slab_id, uuid.UUID):
        return slab_id
    try:
        return uuid.UUID(str(slab_id))
    except ValueError:
        raise ValidationError("Invalid slab ID format") from None


class SlabStore:
    """Create, update, delete and look up slabs for a merchant"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.slabs = SlabRepository(db)
        self.merchants = MerchantRepository(db)

    def _require_merchant(self, merchant_id: str) -> None:
        if self.merchants.get_by_merchant_id(merchant_id) is None:
            raise NotFoundError("Merchant not found")

    def _active_slabs(self, merchant_id: str) -> List[Slab]:
        return [self.slabs.to_domain(s) for s in self.slabs.active_for_merchant(merchant_id, self.clock())]

    def get_slab(self, slab_id: str | uuid.UUID, merchant_id: str | None = None) -> MerchantSlab:
        db_slab = self.slabs.get(_parse_slab_id(slab_id))
        if db_slab is None or (merchant_id is not None and db_slab.merchant_id != merchant_id):
            raise NotFoundError("Merchant slab not found")
        return db_slab

    def is_active(self, db_slab: MerchantSlab) -> bool:
        return self.slabs.to_domain(db_slab).is_active(self.clock())

    def list_slabs(
        self,
        merchant_id: str,
        active: Optional[bool] = None,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> SlabPage:
        """
        Page of a merchant's slabs paired with their current active flag.

        sort_by is "<field>" or "<field>:asc|desc"; the default is slab_from ascending.
        """
        self._require_merchant(merchant_id)
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        field_name, descending = _parse_sort(sort_by)

        rows, total = self.slabs.list_for_merchant(
            merchant_id,
            self.clock(),
            filters={**(filters or {}), "active": active},
            sort_by=field_name,
            descending=descending,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return SlabPage(results=[(s, self.is_active(s)) for s in rows], page=page, limit=limit, total=total)

    def create_slab(self, merchant_id: str, range_spec: Dict[str, Any]) -> MerchantSlab:
        """
        Validate and persist a new slab.

        Raises:
            NotFoundError: Merchant does not exist
            ValidationError: Range, fee or EMI fields are invalid
            OverlapError: Range meets an active slab of the merchant
        """
        self._require_merchant(merchant_id)

        missing = [name for name in REQUIRED_FIELDS if range_spec.get(name) is None]
        if missing:
            raise ValidationError(f"Missing slab fields: {', '.join(missing)}")
        unknown = sorted(set(range_spec) - SLAB_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown slab fields: {', '.join(unknown)}")

        data = _normalise(range_spec)
        data.pop("slab_id", None)
        data["merchant_id"] = merchant_id
        data.setdefault("effective_date", self.clock())
        slab = Slab(**data)

        validate_slab_fields(slab)
        ensure_no_overlap(slab, self._active_slabs(merchant_id))

        db_slab = self.slabs.create(slab)
        logger.info(
            "Merchant slab created",
            extra={"merchant_id": merchant_id, "slab_id": str(db_slab.id)},
        )
        return db_slab

    def update_slab(
        self,
        slab_id: str | uuid.UUID,
        patch: Dict[str, Any],
        merchant_id: str | None = None,
    ) -> MerchantSlab:
        """Apply a patch; validation and overlap run on the merged slab"""
        db_slab = self.get_slab(slab_id, merchant_id)
        current = self.slabs.to_domain(db_slab)

        merged = merge_slab(current, _normalise(patch))
        if merged.merchant_id != current.merchant_id:
            self._require_merchant(merged.merchant_id)

        validate_slab_fields(merged)
        ensure_no_overlap(merged, self._active_slabs(merged.merchant_id))

        self.slabs.update(db_slab, merged)
        logger.info("Merchant slab updated", extra={"merchant_id": merged.merchant_id, "slab_id": str(db_slab.id)})
        return db_slab

    def delete_slab(self, slab_id: str | uuid.UUID, merchant_id: str | None = None) -> None:
        """Delete an inactive or expired slab; active slabs are protected"""
        db_slab = self.get_slab(slab_id, merchant_id)
        if self.is_active(db_slab):
            raise ConflictError("Cannot delete active merchant slab")

        self.slabs.delete(db_slab)
        logger.info("Merchant slab deleted", extra={"merchant_id": db_slab.merchant_id, "slab_id": str(db_slab.id)})

    def find_applicable_slab(self, merchant_id: str, amount: Decimal) -> Slab:
        """
        Active slab whose closed range contains the amount.

        Raises:
            NotFoundError: Merchant missing, no active slabs, or amount out of range
        """
        self._require_merchant(merchant_id)
        return require_applicable(merchant_id, self._active_slabs(merchant_id), Decimal(amount))
