"""Merchant and slab administration endpoints"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from emandate_gateway.api.dependencies import get_request_id
from emandate_gateway.api.v1.schemas import (
    FrequencyCode,
    MandateCategory,
    MerchantCreateRequest,
    MerchantResponse,
    SlabCreateRequest,
    SlabListResponse,
    SlabResponse,
    SlabUpdateRequest,
    money,
)
from emandate_gateway.domain.exceptions import NotFoundError
from emandate_gateway.infrastructure.database.models import Merchant, MerchantSlab
from emandate_gateway.infrastructure.database.repositories import MerchantRepository
from emandate_gateway.infrastructure.database.session import get_db
from emandate_gateway.services.slab_store import SlabStore

router = APIRouter()

# Fields a PATCH may explicitly clear with null
CLEARABLE_FIELDS = {"expiry_date", "duration", "mandate_category", "remarks"}


def _merchant_response(merchant: Merchant) -> MerchantResponse:
    return MerchantResponse(
        merchant_id=merchant.merchant_id,
        merchant_code=merchant.merchant_code,
        name=merchant.name,
        status=merchant.status,
        created_at=merchant.created_at.isoformat(),
    )


def _slab_response(slab: MerchantSlab, is_active: bool) -> SlabResponse:
    return SlabResponse(
        slab_id=str(slab.id),
        merchant_id=slab.merchant_id,
        slab_from=money(slab.slab_from),
        slab_to=money(slab.slab_to),
        base_amount=money(slab.base_amount),
        emi_amount=money(slab.emi_amount),
        emi_tenure=slab.emi_tenure,
        duration=slab.duration,
        frequency=slab.frequency,
        processing_fee=money(slab.processing_fee),
        mandate_category=slab.mandate_category,
        status=slab.status,
        is_active=is_active,
        effective_date=slab.effective_date.isoformat(),
        expiry_date=slab.expiry_date.isoformat() if slab.expiry_date else None,
        remarks=slab.remarks,
    )


@router.post("/merchants", response_model=MerchantResponse, status_code=201)
def create_merchant(body: MerchantCreateRequest, request: Request, db: Session = Depends(get_db)):
    merchant = MerchantRepository(db).create(
        merchant_id=body.merchant_id,
        merchant_code=body.merchant_code,
        name=body.name,
        status=body.status,
    )
    db.commit()
    logging.info(
        "Merchant created",
        extra={"request_id": get_request_id(request), "merchant_id": merchant.merchant_id},
    )
    return _merchant_response(merchant)


@router.get("/merchants/{merchant_id}", response_model=MerchantResponse)
def get_merchant(merchant_id: str, db: Session = Depends(get_db)):
    merchant = MerchantRepository(db).get_by_merchant_id(merchant_id)
    if not merchant:
        raise NotFoundError("Merchant not found")
    return _merchant_response(merchant)


@router.post("/merchants/{merchant_id}/slabs", response_model=SlabResponse, status_code=201)
def create_slab(merchant_id: str, body: SlabCreateRequest, db: Session = Depends(get_db)):
    """
    Create a slab for a merchant.

    Returns 409 when the range overlaps an active slab of the merchant.
    """
    store = SlabStore(db)
    spec = body.model_dump(exclude_none=True)
    try:
        slab = store.create_slab(merchant_id, spec)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return _slab_response(slab, store.is_active(slab))


@router.get("/merchants/{merchant_id}/slabs", response_model=SlabListResponse)
def list_slabs(
    merchant_id: str,
    active: Optional[bool] = None,
    frequency: Optional[FrequencyCode] = None,
    mandate_category: Optional[MandateCategory] = None,
    status: Optional[int] = Query(None, ge=0, le=1),
    amount_min: Optional[Decimal] = Query(None, ge=0, description="Lowest slab_from"),
    amount_max: Optional[Decimal] = Query(None, gt=0, description="Highest slab_to"),
    sort_by: Optional[str] = Query(None, description="field or field:asc|desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List a merchant's slabs with filters, paging and sorting"""
    listed = SlabStore(db).list_slabs(
        merchant_id,
        active=active,
        filters={
            "frequency": frequency,
            "mandate_category": mandate_category,
            "status": status,
            "amount_min": amount_min,
            "amount_max": amount_max,
        },
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return SlabListResponse(
        merchant_id=merchant_id,
        slabs=[_slab_response(slab, is_active) for slab, is_active in listed.results],
        page=listed.page,
        limit=listed.limit,
        total_pages=listed.total_pages,
        total_results=listed.total,
    )


@router.get("/merchants/{merchant_id}/slabs/{slab_id}", response_model=SlabResponse)
def get_slab(merchant_id: str, slab_id: str, db: Session = Depends(get_db)):
    store = SlabStore(db)
    slab = store.get_slab(slab_id, merchant_id)
    return _slab_response(slab, store.is_active(slab))


@router.patch("/merchants/{merchant_id}/slabs/{slab_id}", response_model=SlabResponse)
def update_slab(merchant_id: str, slab_id: str, body: SlabUpdateRequest, db: Session = Depends(get_db)):
    store = SlabStore(db)
    patch = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in CLEARABLE_FIELDS
    }
    try:
        slab = store.update_slab(slab_id, patch, merchant_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return _slab_response(slab, store.is_active(slab))


@router.delete("/merchants/{merchant_id}/slabs/{slab_id}", status_code=204)
def delete_slab(merchant_id: str, slab_id: str, db: Session = Depends(get_db)):
    """Delete an inactive slab; active slabs answer 409"""
    store = SlabStore(db)
    try:
        store.delete_slab(slab_id, merchant_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return Response(status_code=204)
