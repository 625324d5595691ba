"""GET /v1/external/calculate-mandate - encrypted mandate terms for external callers"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from emandate_gateway.api.dependencies import get_payload_codec, get_request_id
from emandate_gateway.api.v1.schemas import EnvelopeMeta, EnvelopeResponse
from emandate_gateway.domain.calculation import calculate, parse_amount
from emandate_gateway.domain.exceptions import DomainException, ValidationError
from emandate_gateway.infrastructure.codecs.registry import AUTHENTICATED, PayloadCodec
from emandate_gateway.infrastructure.database.session import get_db
from emandate_gateway.infrastructure.observability.metrics import calculation_counter
from emandate_gateway.services.slab_store import SlabStore

router = APIRouter()


@router.get("/external/calculate-mandate", response_model=EnvelopeResponse)
def calculate_mandate(
    request: Request,
    enc_request: str = Query(..., alias="encReq"),
    db: Session = Depends(get_db),
    codec: PayloadCodec = Depends(get_payload_codec),
):
    """
    Calculate mandate terms for `merchant_id` and `payment_amount`.

    Request and response are HMAC-authenticated payloads; a tampered request
    is rejected with 401 before anything is decrypted. Nothing is persisted.
    """
    request_id = get_request_id(request)

    try:
        params = codec.decode(enc_request, AUTHENTICATED)

        merchant_id = params.get("merchant_id")
        if not merchant_id:
            raise ValidationError("merchant_id is required")
        amount = parse_amount(params.get("payment_amount"))

        slab = SlabStore(db).find_applicable_slab(merchant_id, amount)
        terms = calculate(slab, amount)
        encrypted = codec.encode(AUTHENTICATED, terms.to_flat_dict())

    except DomainException as e:
        calculation_counter.labels(outcome="rejected").inc()
        logging.warning(f"Mandate calculation rejected: {e}", extra={"request_id": request_id})
        raise

    calculation_counter.labels(outcome="ok").inc()
    logging.info(
        "Mandate calculated",
        extra={"request_id": request_id, "merchant_id": merchant_id, "slab_id": slab.slab_id},
    )
    return EnvelopeResponse(
        meta=EnvelopeMeta(status=True, message="Mandate calculated successfully", code=200),
        data={"encryptedResponse": encrypted},
    )
